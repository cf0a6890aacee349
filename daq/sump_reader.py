from __future__ import annotations

import logging
import struct
import threading
import time
from typing import Callable, Iterator, Optional, Protocol

import numpy as np

from shared.errors import Cancelled, TransportError, UnexpectedEndOfStream
from shared.models import ChannelGroupLayout

from .sump_protocol import DeviceIdentity, DeviceType, classify_device_id

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


class Transport(Protocol):
    """Byte transport with the subset of the pyserial ``Serial`` API we rely on."""

    def read(self, size: int = 1) -> bytes:
        ...

    def write(self, data: bytes) -> Optional[int]:
        ...


class SampleStreamReader:
    """
    Reads SUMP results (device id, samples) from a byte transport.

    The reader owns the transport for the duration of a capture. Reads loop
    until a whole sample is available; partial reads are normal on serial
    links. Cancellation is observed between transport reads.

    With ``eof_on_empty=True`` (files, pipes, in-memory streams) an empty read
    is end of stream. Serial ports with a read timeout return empty reads while
    idle, so they use ``eof_on_empty=False`` and an optional ``idle_timeout``.
    """

    def __init__(
        self,
        transport: Transport,
        layout: ChannelGroupLayout,
        *,
        cancel_event: Optional[threading.Event] = None,
        eof_on_empty: bool = True,
        idle_timeout: Optional[float] = None,
    ) -> None:
        self._transport = transport
        self.layout = layout
        self._cancel_event = cancel_event
        self._eof_on_empty = bool(eof_on_empty)
        self._idle_timeout = idle_timeout

    @property
    def transport(self) -> Transport:
        return self._transport

    def set_cancel_event(self, cancel_event: Optional[threading.Event]) -> None:
        self._cancel_event = cancel_event

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise Cancelled("Data readout interrupted.")

    def _read_exact(self, count: int) -> bytes:
        buf = bytearray()
        idle_since: Optional[float] = None
        while len(buf) < count:
            self._check_cancelled()
            try:
                chunk = self._transport.read(count - len(buf))
            except (OSError, ValueError) as exc:
                raise TransportError(f"Data readout failed: {exc}") from exc
            self._check_cancelled()
            if chunk:
                buf.extend(chunk)
                idle_since = None
                continue
            if self._eof_on_empty:
                raise UnexpectedEndOfStream(
                    f"Data readout interrupted: EOF after {len(buf)} of {count} bytes."
                )
            if self._idle_timeout is not None:
                now = time.monotonic()
                if idle_since is None:
                    idle_since = now
                elif now - idle_since >= self._idle_timeout:
                    raise TransportError(f"Device did not respond within {self._idle_timeout:.1f}s")
        return bytes(buf)

    def read_device_id(self) -> DeviceIdentity:
        """Read the 4-byte big-endian identifier. Unknown devices are reported, not rejected."""
        (raw_id,) = struct.unpack(">I", self._read_exact(4))
        identity = classify_device_id(raw_id)
        if identity.device_type is DeviceType.SLA_V0:
            logger.info("Found (unsupported!) Sump Logic Analyzer (0x%08X)", raw_id)
        elif identity.device_type is DeviceType.SLA_V1:
            logger.info("Found Sump Logic Analyzer/LogicSniffer compatible device (0x%08X)", raw_id)
        else:
            logger.warning("Found unknown device: 0x%08X", raw_id)
        return identity

    def read_sample(self) -> int:
        """Read one sample (1..4 bytes) and expand it to its 32-bit logical value."""
        raw = self._read_exact(self.layout.enabled_group_count)
        return self.layout.expand(raw)

    def iter_samples(self, count: int) -> Iterator[int]:
        for _ in range(count):
            yield self.read_sample()

    def read_samples(self, count: int, progress: Optional[ProgressCallback] = None) -> np.ndarray:
        """Read `count` samples in arrival order."""
        if count < 0:
            raise ValueError("count must be non-negative")
        out = np.zeros(count, dtype=np.uint32)
        last_pct = -1
        for i in range(count):
            out[i] = self.read_sample()
            if progress is not None:
                pct = ((i + 1) * 100) // count
                if pct != last_pct:
                    last_pct = pct
                    progress(pct)
        return out

    def flush(self) -> None:
        """Drop any bytes buffered by the transport without closing it."""
        reset = getattr(self._transport, "reset_input_buffer", None)
        if callable(reset):
            reset()
            return
        waiting = getattr(self._transport, "in_waiting", 0) or 0
        while waiting:
            self._transport.read(waiting)
            waiting = getattr(self._transport, "in_waiting", 0) or 0

    def close(self) -> None:
        close = getattr(self._transport, "close", None)
        if callable(close):
            close()


__all__ = ["SampleStreamReader", "Transport", "ProgressCallback"]
