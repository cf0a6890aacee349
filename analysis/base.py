from __future__ import annotations

import threading
from typing import Callable, Dict, Optional, Protocol, Type

from shared.models import CapturedWaveform

from .models import DecodeResult

ProgressCallback = Callable[[int], None]


class ProtocolDecoder(Protocol):
    name: str
    display_name: str

    def decode(
        self,
        waveform: CapturedWaveform,
        *,
        cancel_event: Optional[threading.Event] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> DecodeResult:
        """Walk the waveform and return every annotation in start-index order."""
        ...


DECODER_REGISTRY: Dict[str, Type[ProtocolDecoder]] = {}


def register_decoder(cls: Type[ProtocolDecoder]) -> Type[ProtocolDecoder]:
    if not hasattr(cls, "name"):
        raise ValueError(f"Decoder {cls} must have a 'name' attribute")
    DECODER_REGISTRY[cls.name] = cls
    return cls


__all__ = ["ProtocolDecoder", "ProgressCallback", "DECODER_REGISTRY", "register_decoder"]
