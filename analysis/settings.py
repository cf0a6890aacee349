from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from shared.errors import ConfigurationError
from shared.models import MAX_CHANNELS

UNASSIGNED = -1
MIN_BITS = 4
MAX_BITS = 16


class ClockEdge(Enum):
    RISING = "rising"
    FALLING = "falling"


class ClockMode(Enum):
    """SPI clocking mode: one of the four CPOL/CPHA pairs, or auto-detect."""

    MODE_0 = "mode0"
    MODE_1 = "mode1"
    MODE_2 = "mode2"
    MODE_3 = "mode3"
    AUTODETECT = "auto"

    @property
    def cpol(self) -> Optional[int]:
        return _POLARITY_PHASE[self][0]

    @property
    def cpha(self) -> Optional[int]:
        return _POLARITY_PHASE[self][1]

    @property
    def is_fixed(self) -> bool:
        return self is not ClockMode.AUTODETECT

    @property
    def sampling_edge(self) -> ClockEdge:
        """Clock edge on which data lines are sampled."""
        if self is ClockMode.MODE_0 or self is ClockMode.MODE_3:
            return ClockEdge.RISING
        if self is ClockMode.MODE_1 or self is ClockMode.MODE_2:
            return ClockEdge.FALLING
        raise ValueError("AUTODETECT has no sampling edge until it is resolved")

    @property
    def label(self) -> str:
        if self is ClockMode.AUTODETECT:
            return "Auto-detect"
        return f"Mode {self.value[-1]} (CPOL = {self.cpol}, CPHA = {self.cpha})"

    @classmethod
    def from_cpol_cpha(cls, cpol: int, cpha: int) -> "ClockMode":
        for mode, pair in _POLARITY_PHASE.items():
            if pair == (int(cpol), int(cpha)):
                return mode
        raise ValueError(f"no SPI mode for CPOL={cpol}, CPHA={cpha}")


_POLARITY_PHASE: Dict[ClockMode, Tuple[Optional[int], Optional[int]]] = {
    ClockMode.MODE_0: (0, 0),
    ClockMode.MODE_1: (0, 1),
    ClockMode.MODE_2: (1, 0),
    ClockMode.MODE_3: (1, 1),
    ClockMode.AUTODETECT: (None, None),
}


class BitOrder(Enum):
    MSB_FIRST = "msb-first"
    LSB_FIRST = "lsb-first"


# Preference keys shared with the settings front end.
_PREF_KEYS = {
    "clock": "sck",
    "miso": "miso",
    "mosi": "mosi",
    "cs": "cs",
    "mode": "mode",
    "bit_count": "bits",
    "bit_order": "order",
    "honour_cs": "honourCS",
    "report_cs": "reportCS",
}


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass(frozen=True)
class SPIConfig:
    """
    Immutable parameters for one SPI decode run.

    `miso` is the data-in line, `mosi` the data-out line; either may be
    UNASSIGNED but not both. `cs` is required when chip-select is honoured
    or reported.
    """

    clock: int = UNASSIGNED
    miso: int = UNASSIGNED
    mosi: int = UNASSIGNED
    cs: int = UNASSIGNED
    bit_count: int = 8
    bit_order: BitOrder = BitOrder.MSB_FIRST
    mode: ClockMode = ClockMode.MODE_0
    honour_cs: bool = False
    report_cs: bool = False
    channel_count: int = MAX_CHANNELS

    @property
    def has_miso(self) -> bool:
        return self.miso != UNASSIGNED

    @property
    def has_mosi(self) -> bool:
        return self.mosi != UNASSIGNED

    @property
    def has_cs(self) -> bool:
        return self.cs != UNASSIGNED

    def assigned_channels(self) -> Tuple[int, ...]:
        return tuple(ch for ch in (self.clock, self.miso, self.mosi, self.cs) if ch != UNASSIGNED)

    def validate(self) -> "SPIConfig":
        if not isinstance(self.mode, ClockMode):
            raise ConfigurationError(f"unknown clock mode {self.mode!r}")
        if not isinstance(self.bit_order, BitOrder):
            raise ConfigurationError(f"unknown bit order {self.bit_order!r}")
        if self.clock == UNASSIGNED:
            raise ConfigurationError("no clock (SCK) channel assigned")
        if not self.has_miso and not self.has_mosi:
            raise ConfigurationError("at least one of MISO/MOSI must be assigned")
        if not MIN_BITS <= self.bit_count <= MAX_BITS:
            raise ConfigurationError(f"bit_count must be between {MIN_BITS} and {MAX_BITS}")
        if (self.honour_cs or self.report_cs) and not self.has_cs:
            raise ConfigurationError("chip-select channel required to honour or report /CS")
        for name in ("clock", "miso", "mosi", "cs"):
            ch = getattr(self, name)
            if ch != UNASSIGNED and not 0 <= ch < self.channel_count:
                raise ConfigurationError(f"{name} channel {ch} out of range 0..{self.channel_count - 1}")
        assigned = self.assigned_channels()
        if len(set(assigned)) != len(assigned):
            raise ConfigurationError(f"channels must be distinct, got {assigned}")
        return self

    def with_mode(self, mode: ClockMode) -> "SPIConfig":
        return replace(self, mode=mode)

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any], **overrides: Any) -> "SPIConfig":
        """Build a config from stored preferences; missing keys keep defaults."""
        defaults = cls()
        values: Dict[str, Any] = {}
        for field_name, key in _PREF_KEYS.items():
            if key not in settings or settings[key] is None:
                continue
            raw = settings[key]
            try:
                if field_name == "mode":
                    values[field_name] = raw if isinstance(raw, ClockMode) else ClockMode(str(raw))
                elif field_name == "bit_order":
                    values[field_name] = raw if isinstance(raw, BitOrder) else BitOrder(str(raw))
                elif field_name in ("honour_cs", "report_cs"):
                    values[field_name] = _as_bool(raw)
                else:
                    values[field_name] = int(raw)
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(f"invalid value {raw!r} for preference {key!r}") from exc
        values.update(overrides)
        return replace(defaults, **values)

    def to_settings(self) -> Dict[str, Any]:
        data = asdict(self)
        out: Dict[str, Any] = {}
        for field_name, key in _PREF_KEYS.items():
            value = data[field_name]
            if isinstance(value, Enum):
                value = value.value
            out[key] = value
        return out


__all__ = [
    "UNASSIGNED",
    "MIN_BITS",
    "MAX_BITS",
    "ClockEdge",
    "ClockMode",
    "BitOrder",
    "SPIConfig",
]
