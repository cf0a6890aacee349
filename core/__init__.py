"""Core application utilities."""

from .edges import Edge, find_edges, first_level, level_at, next_edge, transition_indices
from .session import ACQUISITION, DECODE, CaptureSession, ModeDetected
from .tasks import TaskContext, TaskHandle, TaskOutcome, TaskRunner, TaskState
from shared.models import CapturedWaveform, ChannelGroupLayout, ChannelInfo, DeviceInfo, Capabilities

__all__ = [
    "CapturedWaveform",
    "ChannelGroupLayout",
    "ChannelInfo",
    "DeviceInfo",
    "Capabilities",
    "Edge",
    "find_edges",
    "first_level",
    "level_at",
    "next_edge",
    "transition_indices",
    "CaptureSession",
    "ModeDetected",
    "ACQUISITION",
    "DECODE",
    "TaskContext",
    "TaskHandle",
    "TaskOutcome",
    "TaskRunner",
    "TaskState",
]
