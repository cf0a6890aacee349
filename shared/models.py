from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Tuple

import numpy as np

from .errors import ConfigurationError

GROUP_COUNT = 4
CHANNELS_PER_GROUP = 8
MAX_CHANNELS = GROUP_COUNT * CHANNELS_PER_GROUP


def _freeze_array(array: Any, *, dtype: Any, ndim: int | None = None) -> np.ndarray:
    """Return a read-only, C-contiguous copy of `array`, validating dimensions."""
    arr = np.array(array, dtype=dtype, copy=True, order="C")
    if ndim is not None and arr.ndim != ndim:
        raise ValueError(f"array must be {ndim}D, got {arr.ndim}D")
    arr.setflags(write=False)
    return arr


# ----------------------------
# Device / Channel metadata
# ----------------------------

@dataclass(frozen=True)
class DeviceInfo:
    """A discoverable capture device (usually a serial port)."""

    id: str
    name: str
    vendor: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChannelInfo:
    """A single digital input channel."""

    id: int
    name: str
    group: int


@dataclass(frozen=True)
class Capabilities:
    """What a logic analyzer can do for a capture."""

    max_channels: int
    group_count: int
    max_sample_rate: int
    max_sample_count: int
    notes: Optional[str] = None


# ----------------------------
# Channel groups
# ----------------------------

@dataclass(frozen=True)
class ChannelGroupLayout:
    """
    Which of the four 8-channel groups take part in a capture.

    Only enabled groups are transmitted by the device, one byte each, in
    ascending group order. Expanded samples always keep every group at its
    logical bit offset so channel indices stay stable across layouts.
    """

    enabled: Tuple[bool, bool, bool, bool] = (True, True, True, True)

    def __post_init__(self) -> None:
        flags = tuple(bool(flag) for flag in self.enabled)
        if len(flags) != GROUP_COUNT:
            raise ConfigurationError(f"expected {GROUP_COUNT} group flags, got {len(flags)}")
        if not any(flags):
            raise ConfigurationError("at least one channel group must be enabled")
        object.__setattr__(self, "enabled", flags)

    @classmethod
    def all_enabled(cls) -> "ChannelGroupLayout":
        return cls((True,) * GROUP_COUNT)

    @classmethod
    def from_group_mask(cls, mask: int) -> "ChannelGroupLayout":
        """Build a layout from a bitmask where bit ``i`` enables group ``i``."""
        return cls(tuple(bool(mask & (1 << i)) for i in range(GROUP_COUNT)))

    @classmethod
    def from_groups(cls, groups: Iterable[int]) -> "ChannelGroupLayout":
        wanted = set()
        for group in groups:
            if not 0 <= int(group) < GROUP_COUNT:
                raise ConfigurationError(f"group index {group} out of range")
            wanted.add(int(group))
        return cls(tuple(i in wanted for i in range(GROUP_COUNT)))

    @classmethod
    def from_channel_mask(cls, mask: int) -> "ChannelGroupLayout":
        """A group is enabled when any of its channels is set in `mask`."""
        return cls(tuple(bool((mask >> (CHANNELS_PER_GROUP * i)) & 0xFF) for i in range(GROUP_COUNT)))

    @property
    def group_mask(self) -> int:
        return sum(1 << i for i, flag in enumerate(self.enabled) if flag)

    @property
    def enabled_group_count(self) -> int:
        """Bytes per sample on the wire."""
        return sum(1 for flag in self.enabled if flag)

    @property
    def enabled_groups(self) -> Tuple[int, ...]:
        return tuple(i for i, flag in enumerate(self.enabled) if flag)

    @property
    def channel_mask(self) -> int:
        mask = 0
        for i in self.enabled_groups:
            mask |= 0xFF << (CHANNELS_PER_GROUP * i)
        return mask

    def is_group_enabled(self, group: int) -> bool:
        return 0 <= group < GROUP_COUNT and self.enabled[group]

    @staticmethod
    def group_of(channel: int) -> int:
        if not 0 <= channel < MAX_CHANNELS:
            raise ValueError(f"channel {channel} out of range 0..{MAX_CHANNELS - 1}")
        return channel // CHANNELS_PER_GROUP

    def is_channel_enabled(self, channel: int) -> bool:
        return self.is_group_enabled(self.group_of(channel))

    def channels(self) -> List[ChannelInfo]:
        return [
            ChannelInfo(id=ch, name=f"Channel {ch}", group=ch // CHANNELS_PER_GROUP)
            for ch in range(MAX_CHANNELS)
            if self.enabled[ch // CHANNELS_PER_GROUP]
        ]

    def expand(self, raw: bytes | bytearray | memoryview) -> int:
        """Place each received group byte at its logical offset; disabled groups read as zero."""
        data = bytes(raw)
        if len(data) != self.enabled_group_count:
            raise ValueError(
                f"expected {self.enabled_group_count} sample bytes, got {len(data)}"
            )
        value = 0
        j = 0
        for i in range(GROUP_COUNT):
            if self.enabled[i]:
                value |= data[j] << (CHANNELS_PER_GROUP * i)
                j += 1
        return value


# ----------------------------
# Captured data
# ----------------------------

@dataclass(frozen=True, eq=False)
class CapturedWaveform:
    """
    Immutable result of one capture: expanded 32-bit samples plus their
    timestamps (in sample-clock ticks). Decoders only ever read from it, so
    several of them may work on the same instance concurrently.
    """

    values: np.ndarray
    timestamps: np.ndarray
    sample_rate: int
    enabled_channels: int = 0xFFFFFFFF
    trigger_position: Optional[int] = None
    absolute_length: Optional[int] = None

    def __post_init__(self) -> None:
        if self.sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        values = _freeze_array(self.values, dtype=np.uint32, ndim=1)
        timestamps = _freeze_array(self.timestamps, dtype=np.int64, ndim=1)
        if values.shape != timestamps.shape:
            raise ValueError("values and timestamps must have the same length")
        if timestamps.size > 1 and np.any(np.diff(timestamps) < 0):
            raise ValueError("timestamps must be non-decreasing")
        if self.trigger_position is not None and self.trigger_position < 0:
            raise ValueError("trigger_position must be non-negative")
        absolute_length = self.absolute_length
        if absolute_length is None:
            absolute_length = int(timestamps[-1]) + 1 if timestamps.size else 0

        object.__setattr__(self, "values", values)
        object.__setattr__(self, "timestamps", timestamps)
        object.__setattr__(self, "sample_rate", int(self.sample_rate))
        object.__setattr__(self, "enabled_channels", int(self.enabled_channels) & 0xFFFFFFFF)
        object.__setattr__(self, "absolute_length", int(absolute_length))

    @classmethod
    def from_samples(
        cls,
        values: Any,
        sample_rate: int,
        *,
        enabled_channels: int = 0xFFFFFFFF,
        trigger_position: Optional[int] = None,
    ) -> "CapturedWaveform":
        """Wrap evenly spaced samples, one timestamp tick per sample."""
        arr = np.asarray(values, dtype=np.uint32)
        return cls(
            values=arr,
            timestamps=np.arange(arr.size, dtype=np.int64),
            sample_rate=sample_rate,
            enabled_channels=enabled_channels,
            trigger_position=trigger_position,
        )

    def __len__(self) -> int:
        return int(self.values.size)

    @property
    def n_samples(self) -> int:
        return int(self.values.size)

    @property
    def duration(self) -> float:
        return self.absolute_length / float(self.sample_rate)

    def is_channel_enabled(self, channel: int) -> bool:
        return 0 <= channel < MAX_CHANNELS and bool(self.enabled_channels & (1 << channel))

    def channel_levels(self, channel: int) -> np.ndarray:
        """0/1 level of `channel` for every sample."""
        if not 0 <= channel < MAX_CHANNELS:
            raise ValueError(f"channel {channel} out of range 0..{MAX_CHANNELS - 1}")
        return ((self.values >> np.uint32(channel)) & np.uint32(1)).astype(np.uint8)

    def level(self, index: int, channel: int) -> int:
        return (int(self.values[index]) >> channel) & 1

    def timestamp_of(self, index: int) -> int:
        return int(self.timestamps[index])

    def time_of(self, index: int) -> float:
        """Seconds since the trigger (or since the first sample when untriggered)."""
        ticks = self.timestamp_of(index)
        if self.trigger_position is not None:
            ticks -= self.trigger_position
        return ticks / float(self.sample_rate)


__all__ = [
    "GROUP_COUNT",
    "CHANNELS_PER_GROUP",
    "MAX_CHANNELS",
    "DeviceInfo",
    "ChannelInfo",
    "Capabilities",
    "ChannelGroupLayout",
    "CapturedWaveform",
]
