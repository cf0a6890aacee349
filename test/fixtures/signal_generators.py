"""
Synthetic logic-level signal generation utilities for testing.

These generators produce deterministic captures with known content so decoder
output can be compared against ground truth: the words that were shifted
out, the sample indices of their first and last sampling edges, and the
indices of every chip-select transition.

All generators follow a consistent API:
- channel assignments are keyword arguments with sensible defaults
- timing is expressed in samples (``half_period``, ``idle``)
- Returns: a :class:`SPIFrame` bundling the waveform with its ground truth
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from shared.models import CapturedWaveform

SAMPLE_RATE = 1_000_000

# Mode -> (CPOL, CPHA)
MODES: Dict[int, Tuple[int, int]] = {0: (0, 0), 1: (0, 1), 2: (1, 0), 3: (1, 1)}


@dataclass
class SPIFrame:
    """A synthetic SPI capture and what a correct decoder must find in it."""

    waveform: CapturedWaveform
    mosi_words: List[int]
    miso_words: List[int]
    word_spans: List[Tuple[int, int]] = field(default_factory=list)
    cs_falls: List[int] = field(default_factory=list)
    cs_rises: List[int] = field(default_factory=list)


def waveform_from_levels(
    levels: Dict[int, Sequence[int]],
    *,
    sample_rate: int = SAMPLE_RATE,
    enabled_channels: int = 0xFFFFFFFF,
) -> CapturedWaveform:
    """Pack per-channel 0/1 sequences (all the same length) into a capture.

    Example:
        >>> wf = waveform_from_levels({0: [0, 1, 0, 1], 1: [1, 1, 0, 0]})
        >>> wf.values.tolist()
        [2, 3, 0, 1]
    """
    lengths = {len(seq) for seq in levels.values()}
    if len(lengths) > 1:
        raise ValueError(f"channel sequences differ in length: {sorted(lengths)}")
    n = lengths.pop() if lengths else 0
    values = np.zeros(n, dtype=np.uint32)
    for ch, seq in levels.items():
        values |= (np.asarray(seq, dtype=np.uint32) & np.uint32(1)) << np.uint32(ch)
    return CapturedWaveform.from_samples(values, sample_rate, enabled_channels=enabled_channels)


def word_bits(word: int, bit_count: int, lsb_first: bool) -> List[int]:
    """Bits of `word` in the order they appear on the wire."""
    order = range(bit_count) if lsb_first else range(bit_count - 1, -1, -1)
    return [(word >> i) & 1 for i in order]


def make_spi_frame(
    mosi_words: Sequence[int],
    miso_words: Optional[Sequence[int]] = None,
    *,
    mode: int = 0,
    bit_count: int = 8,
    lsb_first: bool = False,
    clock_ch: int = 0,
    mosi_ch: int = 1,
    miso_ch: int = 2,
    cs_ch: int = 3,
    drive_cs: bool = True,
    cs_per_word: bool = False,
    half_period: int = 2,
    idle: int = 4,
    gap: int = 0,
    sample_rate: int = SAMPLE_RATE,
) -> SPIFrame:
    """Generate an SPI transfer of whole words on an ideal, glitch-free bus.

    For CPHA = 0 data is set up while the clock rests and sampled on the
    leading edge; for CPHA = 1 data changes on the leading edge and is sampled
    on the trailing edge. `/CS` (active low) frames the whole transfer, or
    each word when `cs_per_word` is set; with `drive_cs=False` it stays high.

    Args:
        mosi_words: Words shifted out by the controller.
        miso_words: Words shifted back by the peripheral (defaults to zeros).
        mode: SPI mode 0..3.
        bit_count: Bits per word.
        lsb_first: Shift the least significant bit first.
        half_period: Samples per clock half-period.
        idle: Samples of bus idle before and after the transfer (and around
            each word when `cs_per_word` is set).
        gap: Extra idle samples between consecutive words.

    Returns:
        SPIFrame with the waveform and the expected word spans.
    """
    if half_period < 1 or idle < 1:
        raise ValueError("half_period and idle must be at least one sample")
    mosi_words = [int(w) for w in mosi_words]
    miso_words = [int(w) for w in (miso_words if miso_words is not None else [0] * len(mosi_words))]
    if len(miso_words) != len(mosi_words):
        raise ValueError("mosi_words and miso_words must have the same length")

    cpol, cpha = MODES[mode]
    clk: List[int] = []
    mosi: List[int] = []
    miso: List[int] = []
    cs: List[int] = []
    frame = SPIFrame(waveform=None, mosi_words=mosi_words, miso_words=miso_words)  # type: ignore[arg-type]

    def push(n: int, c: int, d_out: int, d_in: int, sel: int) -> None:
        clk.extend([c] * n)
        mosi.extend([d_out] * n)
        miso.extend([d_in] * n)
        cs.extend([sel] * n)

    def select(level: int) -> None:
        if not drive_cs:
            return
        index = len(cs)
        if level == 0:
            frame.cs_falls.append(index)
        else:
            frame.cs_rises.append(index)

    idle_cs = 1
    push(idle, cpol, 0, 0, idle_cs)
    if not cs_per_word:
        select(0)
        push(idle, cpol, 0, 0, 0 if drive_cs else 1)

    for n_word, (w_out, w_in) in enumerate(zip(mosi_words, miso_words)):
        sel = 0 if drive_cs else 1
        if cs_per_word:
            select(0)
            push(idle, cpol, 0, 0, sel)
        elif n_word and gap:
            push(gap, cpol, 0, 0, sel)
        first_edge = last_edge = -1
        for b_out, b_in in zip(word_bits(w_out, bit_count, lsb_first), word_bits(w_in, bit_count, lsb_first)):
            if cpha == 0:
                push(half_period, cpol, b_out, b_in, sel)
                edge = len(clk)
                push(half_period, 1 - cpol, b_out, b_in, sel)
            else:
                push(half_period, 1 - cpol, b_out, b_in, sel)
                edge = len(clk)
                push(half_period, cpol, b_out, b_in, sel)
            if first_edge < 0:
                first_edge = edge
            last_edge = edge
        frame.word_spans.append((first_edge, last_edge))
        if cpha == 0:
            # Return the clock to rest before the next word or /CS change.
            push(half_period, cpol, 0, 0, sel)
        if cs_per_word:
            push(idle, cpol, 0, 0, sel)
            select(1)
            push(idle, cpol, 0, 0, idle_cs)

    if not cs_per_word:
        push(idle, cpol, 0, 0, 0 if drive_cs else 1)
        select(1)
    push(idle, cpol, 0, 0, idle_cs)

    frame.waveform = waveform_from_levels(
        {clock_ch: clk, mosi_ch: mosi, miso_ch: miso, cs_ch: cs},
        sample_rate=sample_rate,
    )
    return frame


__all__ = ["SAMPLE_RATE", "MODES", "SPIFrame", "waveform_from_levels", "word_bits", "make_spi_frame"]
