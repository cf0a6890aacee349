"""
SUMP / OpenBench LogicSniffer command set.

Short commands are a single byte. Long commands are a command byte followed
by a 32-bit little-endian argument. Samples come back one byte per enabled
channel group, newest sample first.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum
from typing import List

from shared.errors import ConfigurationError
from shared.models import GROUP_COUNT, ChannelGroupLayout

# Short commands
CMD_RESET = 0x00
CMD_RUN = 0x01
CMD_ID = 0x02
CMD_XON = 0x11
CMD_XOFF = 0x13

# Long commands
CMD_SET_DIVIDER = 0x80
CMD_SET_READ_DELAY_COUNT = 0x81
CMD_SET_FLAGS = 0x82
CMD_SET_TRIGGER_MASK = 0xC0
CMD_SET_TRIGGER_VALUE = 0xC1
CMD_SET_TRIGGER_CONFIG = 0xC2

# Flags
FLAG_DEMUX = 0x0001
FLAG_FILTER = 0x0002
FLAG_GROUP_DISABLED_BASE = 0x0004
FLAG_EXTERNAL = 0x0040
FLAG_INVERTED = 0x0080
FLAG_RLE = 0x0100
FLAG_INTERNAL_TEST_MODE = 0x0800

TRIGGER_CAPTURE = 0x08000000

# Device identifiers ("SLA0" / "SLA1" as big-endian integers)
SLA_V0 = 0x534C4130
SLA_V1 = 0x534C4131

RESET_REPEAT = 5
DEFAULT_CLOCK = 100_000_000


class DeviceType(Enum):
    SLA_V0 = "sla_v0"
    SLA_V1 = "sla_v1"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class DeviceIdentity:
    """Result of the identification handshake."""

    raw_id: int
    device_type: DeviceType

    @property
    def recognized(self) -> bool:
        return self.device_type is not DeviceType.UNKNOWN

    @property
    def label(self) -> str:
        if self.device_type is DeviceType.SLA_V0:
            return "Sump Logic Analyzer (unsupported)"
        if self.device_type is DeviceType.SLA_V1:
            return "Sump Logic Analyzer/LogicSniffer compatible device"
        return f"unknown device 0x{self.raw_id:08X}"


def classify_device_id(raw_id: int) -> DeviceIdentity:
    if raw_id == SLA_V0:
        return DeviceIdentity(raw_id, DeviceType.SLA_V0)
    if raw_id == SLA_V1:
        return DeviceIdentity(raw_id, DeviceType.SLA_V1)
    return DeviceIdentity(raw_id, DeviceType.UNKNOWN)


@dataclass(frozen=True)
class CaptureSettings:
    """Parameters negotiated with the device for a single capture."""

    sample_rate: int
    sample_count: int
    layout: ChannelGroupLayout = ChannelGroupLayout()
    ratio: float = 0.5
    trigger_enabled: bool = False
    trigger_mask: int = 0
    trigger_value: int = 0
    noise_filter: bool = False
    test_mode: bool = False

    def validate(self, *, clock: int = DEFAULT_CLOCK, max_sample_count: int | None = None) -> None:
        if self.sample_rate <= 0:
            raise ConfigurationError("sample_rate must be positive")
        if self.sample_rate > clock:
            raise ConfigurationError(f"sample_rate {self.sample_rate} exceeds device clock {clock}")
        if self.sample_count < 4 or self.sample_count % 4:
            raise ConfigurationError("sample_count must be a positive multiple of 4")
        if max_sample_count is not None:
            # Memory is shared between groups: fewer groups, deeper captures.
            limit = max_sample_count * GROUP_COUNT // self.layout.enabled_group_count
            if self.sample_count > limit:
                raise ConfigurationError(
                    f"sample_count {self.sample_count} exceeds device memory ({limit} samples)"
                )
        if not 0.0 <= self.ratio <= 1.0:
            raise ConfigurationError("ratio must lie within [0, 1]")
        for name in ("trigger_mask", "trigger_value"):
            value = getattr(self, name)
            if not 0 <= value <= 0xFFFFFFFF:
                raise ConfigurationError(f"{name} must fit in 32 bits")

    @property
    def delay_count(self) -> int:
        """Samples still captured after the trigger fires."""
        if not self.trigger_enabled:
            return self.sample_count
        return int(self.sample_count * self.ratio)

    @property
    def trigger_position(self) -> int | None:
        if not self.trigger_enabled:
            return None
        return self.sample_count - self.delay_count

    def divider(self, clock: int = DEFAULT_CLOCK) -> int:
        return max(0, clock // self.sample_rate - 1)

    def actual_sample_rate(self, clock: int = DEFAULT_CLOCK) -> int:
        return clock // (self.divider(clock) + 1)

    def flags(self) -> int:
        flags = 0
        for group in range(GROUP_COUNT):
            if not self.layout.is_group_enabled(group):
                flags |= FLAG_GROUP_DISABLED_BASE << group
        if self.noise_filter:
            flags |= FLAG_FILTER
        if self.test_mode:
            flags |= FLAG_INTERNAL_TEST_MODE
        return flags


def short_command(cmd: int) -> bytes:
    return bytes([cmd & 0xFF])


def long_command(cmd: int, value: int) -> bytes:
    return struct.pack("<BI", cmd & 0xFF, value & 0xFFFFFFFF)


def reset_sequence() -> bytes:
    return short_command(CMD_RESET) * RESET_REPEAT


def size_word(read_count: int, delay_count: int) -> int:
    return (((delay_count - 4) & 0x3FFFC) << 14) | (((read_count - 4) & 0x3FFFC) >> 2)


def encode_capture_commands(settings: CaptureSettings, clock: int = DEFAULT_CLOCK) -> bytes:
    """Everything sent before RUN, in the order the firmware expects."""
    parts: List[bytes] = []
    if settings.trigger_enabled:
        mask, value = settings.trigger_mask, settings.trigger_value
    else:
        mask, value = 0, 0
    parts.append(long_command(CMD_SET_TRIGGER_MASK, mask))
    parts.append(long_command(CMD_SET_TRIGGER_VALUE, value))
    parts.append(long_command(CMD_SET_TRIGGER_CONFIG, TRIGGER_CAPTURE))
    parts.append(long_command(CMD_SET_DIVIDER, settings.divider(clock)))
    parts.append(
        long_command(CMD_SET_READ_DELAY_COUNT, size_word(settings.sample_count, settings.delay_count))
    )
    parts.append(long_command(CMD_SET_FLAGS, settings.flags()))
    return b"".join(parts)


__all__ = [
    "CMD_RESET",
    "CMD_RUN",
    "CMD_ID",
    "CMD_XON",
    "CMD_XOFF",
    "CMD_SET_DIVIDER",
    "CMD_SET_READ_DELAY_COUNT",
    "CMD_SET_FLAGS",
    "CMD_SET_TRIGGER_MASK",
    "CMD_SET_TRIGGER_VALUE",
    "CMD_SET_TRIGGER_CONFIG",
    "FLAG_DEMUX",
    "FLAG_FILTER",
    "FLAG_GROUP_DISABLED_BASE",
    "FLAG_EXTERNAL",
    "FLAG_INVERTED",
    "FLAG_RLE",
    "FLAG_INTERNAL_TEST_MODE",
    "TRIGGER_CAPTURE",
    "SLA_V0",
    "SLA_V1",
    "DEFAULT_CLOCK",
    "DeviceType",
    "DeviceIdentity",
    "classify_device_id",
    "CaptureSettings",
    "short_command",
    "long_command",
    "reset_sequence",
    "size_word",
    "encode_capture_commands",
]
