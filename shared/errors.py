"""Exception taxonomy shared by the acquisition, decoding and task layers."""

from __future__ import annotations

from typing import Optional


class TransportError(IOError):
    """I/O failure on the device connection; fatal to the current capture only."""


class UnexpectedEndOfStream(TransportError):
    """The device stream ended in the middle of a sample."""


class Cancelled(Exception):
    """Cooperative cancellation was observed. A normal outcome, not a failure."""


class ConfigurationError(ValueError):
    """A capture or decoder configuration was rejected before any work started."""


class UnrecognizedDevice(Exception):
    """Advisory raised only when strict device identification was requested."""

    def __init__(self, device_id: int, message: Optional[str] = None) -> None:
        self.device_id = int(device_id)
        super().__init__(message or f"Unrecognized device identifier 0x{self.device_id:08X}")


class TaskBusyError(RuntimeError):
    """A background task of the same kind is already running."""


__all__ = [
    "TransportError",
    "UnexpectedEndOfStream",
    "Cancelled",
    "ConfigurationError",
    "UnrecognizedDevice",
    "TaskBusyError",
]
