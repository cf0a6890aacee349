"""
Shared data structures available to the acquisition, decoding and GUI layers.
"""

from .errors import (
    Cancelled,
    ConfigurationError,
    TaskBusyError,
    TransportError,
    UnexpectedEndOfStream,
    UnrecognizedDevice,
)
from .models import CapturedWaveform, ChannelGroupLayout

__all__ = [
    "Cancelled",
    "CapturedWaveform",
    "ChannelGroupLayout",
    "ConfigurationError",
    "TaskBusyError",
    "TransportError",
    "UnexpectedEndOfStream",
    "UnrecognizedDevice",
]
