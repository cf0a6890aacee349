# analysis/models.py
from __future__ import annotations

import bisect
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Tuple, Union

from .settings import ClockMode


class BusLine(Enum):
    MOSI = "mosi"  # data-out
    MISO = "miso"  # data-in


class FramingEventType(Enum):
    CS_LOW = "CS_LOW"
    CS_HIGH = "CS_HIGH"


@dataclass(frozen=True)
class FramingEvent:
    kind: FramingEventType

    @property
    def name(self) -> str:
        return self.kind.value


@dataclass(frozen=True)
class DataWord:
    """One decoded word on one bus line."""

    value: int
    line: BusLine
    bit_count: int = 8

    def __post_init__(self) -> None:
        if self.bit_count <= 0:
            raise ValueError("bit_count must be positive")
        if not 0 <= self.value < (1 << self.bit_count):
            raise ValueError(f"value {self.value} does not fit in {self.bit_count} bits")


Payload = Union[FramingEvent, DataWord]


@dataclass(frozen=True)
class Annotation:
    """A decoded unit of meaning attached to a sample-index range."""

    start_sample_index: int
    end_sample_index: int
    payload: Payload

    def __post_init__(self) -> None:
        if self.start_sample_index < 0:
            raise ValueError("start_sample_index must be non-negative")
        if self.end_sample_index < self.start_sample_index:
            raise ValueError("end_sample_index must not precede start_sample_index")

    @property
    def is_event(self) -> bool:
        return isinstance(self.payload, FramingEvent)

    @property
    def is_data(self) -> bool:
        return isinstance(self.payload, DataWord)


@dataclass(frozen=True)
class Transaction:
    """MOSI/MISO words sharing a start index, merged for presentation."""

    start_sample_index: int
    end_sample_index: int
    mosi: Optional[int] = None
    miso: Optional[int] = None
    event: Optional[FramingEventType] = None


@dataclass(frozen=True)
class DecodeResult:
    """
    Ordered, read-only output of a decoder run.

    Annotations are kept in non-decreasing start index order; entries that
    share a start index keep the order in which the decoder produced them.
    `detected_mode` is only set when auto-detect resolved a clock mode.
    """

    annotations: Tuple[Annotation, ...] = ()
    resolved_mode: Optional[ClockMode] = None
    detected_mode: Optional[ClockMode] = None
    _starts: Tuple[int, ...] = field(default=(), init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.annotations, key=lambda ann: ann.start_sample_index))
        object.__setattr__(self, "annotations", ordered)
        object.__setattr__(self, "_starts", tuple(ann.start_sample_index for ann in ordered))

    def __len__(self) -> int:
        return len(self.annotations)

    def __iter__(self) -> Iterator[Annotation]:
        return iter(self.annotations)

    @property
    def is_empty(self) -> bool:
        return not self.annotations

    def in_range(self, start: int, end: int) -> List[Annotation]:
        """Annotations overlapping the inclusive sample range [start, end]."""
        if end < start:
            return []
        hi = bisect.bisect_right(self._starts, end)
        return [ann for ann in self.annotations[:hi] if ann.end_sample_index >= start]

    def events(self) -> List[Annotation]:
        return [ann for ann in self.annotations if ann.is_event]

    def data(self, line: Optional[BusLine] = None) -> List[Annotation]:
        return [
            ann
            for ann in self.annotations
            if ann.is_data and (line is None or ann.payload.line is line)  # type: ignore[union-attr]
        ]

    def values(self, line: BusLine) -> List[int]:
        return [ann.payload.value for ann in self.data(line)]  # type: ignore[union-attr]

    def coalesced(self) -> List[Transaction]:
        """Merge data annotations with identical start indices into one row each."""
        rows: List[Transaction] = []
        pending: Optional[Transaction] = None
        for ann in self.annotations:
            payload = ann.payload
            if isinstance(payload, FramingEvent):
                if pending is not None:
                    rows.append(pending)
                    pending = None
                rows.append(Transaction(ann.start_sample_index, ann.end_sample_index, event=payload.kind))
                continue
            if pending is not None and pending.start_sample_index != ann.start_sample_index:
                rows.append(pending)
                pending = None
            if pending is None:
                pending = Transaction(ann.start_sample_index, ann.end_sample_index)
            if payload.line is BusLine.MOSI:
                pending = _merge(pending, ann, mosi=payload.value)
            else:
                pending = _merge(pending, ann, miso=payload.value)
        if pending is not None:
            rows.append(pending)
        return rows


def _merge(row: Transaction, ann: Annotation, **values: int) -> Transaction:
    return Transaction(
        start_sample_index=row.start_sample_index,
        end_sample_index=max(row.end_sample_index, ann.end_sample_index),
        mosi=values.get("mosi", row.mosi),
        miso=values.get("miso", row.miso),
        event=row.event,
    )


__all__ = [
    "BusLine",
    "FramingEventType",
    "FramingEvent",
    "DataWord",
    "Payload",
    "Annotation",
    "Transaction",
    "DecodeResult",
]
