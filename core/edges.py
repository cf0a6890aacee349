"""Edge scanning over captured waveforms.

Every function here is pure: it reads the immutable waveform and returns
indices, so any number of decoders can scan the same capture at once.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional

import numpy as np

from shared.models import CapturedWaveform


class Edge(Enum):
    RISING = "rising"
    FALLING = "falling"
    ANY = "any"


def _check_index(waveform: CapturedWaveform, index: int) -> None:
    if not 0 <= index < len(waveform):
        raise IndexError(f"sample index {index} outside waveform of {len(waveform)} samples")


def _mask_for(channels: Iterable[int]) -> int:
    mask = 0
    for ch in channels:
        if not 0 <= ch < 32:
            raise ValueError(f"channel {ch} out of range 0..31")
        mask |= 1 << ch
    return mask


def level_at(waveform: CapturedWaveform, channel: int, index: int) -> int:
    _check_index(waveform, index)
    return waveform.level(index, channel)


def first_level(waveform: CapturedWaveform, channel: int) -> Optional[int]:
    """Resting level at the first sample, or None for an empty capture."""
    if len(waveform) == 0:
        return None
    return waveform.level(0, channel)


def next_edge(waveform: CapturedWaveform, channel: int, start: int) -> Optional[int]:
    """
    Index of the first sample after `start` whose level on `channel` differs
    from the level at `start`. None when the channel never changes again.
    """
    _check_index(waveform, start)
    bit = np.uint32(_mask_for((channel,)))
    tail = waveform.values[start:] & bit
    changed = np.flatnonzero(tail != tail[0])
    if changed.size == 0:
        return None
    return start + int(changed[0])


def transition_indices(waveform: CapturedWaveform, channels: Iterable[int], start: int = 0) -> np.ndarray:
    """
    All indices ``i > start`` where at least one of `channels` differs from
    sample ``i - 1``, in ascending order.
    """
    n = len(waveform)
    if n < 2 or start >= n - 1:
        return np.empty(0, dtype=np.int64)
    if start < 0:
        raise IndexError(f"sample index {start} outside waveform of {n} samples")
    mask = np.uint32(_mask_for(channels))
    masked = waveform.values[start:] & mask
    return np.flatnonzero(masked[1:] != masked[:-1]).astype(np.int64) + start + 1


def find_edges(waveform: CapturedWaveform, channel: int, edge: Edge = Edge.ANY) -> np.ndarray:
    """Indices where `channel` changes, optionally restricted to one direction."""
    idx = transition_indices(waveform, (channel,))
    if edge is Edge.ANY or idx.size == 0:
        return idx
    levels = waveform.channel_levels(channel)[idx]
    wanted = 1 if edge is Edge.RISING else 0
    return idx[levels == wanted]


__all__ = ["Edge", "level_at", "first_level", "next_edge", "transition_indices", "find_edges"]
