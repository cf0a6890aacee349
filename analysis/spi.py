"""
SPI protocol decoder.

Walks a captured waveform clock edge by clock edge and rebuilds the words
shifted over MOSI and/or MISO, optionally framed by an active-low
chip-select line.

Sampling edge per mode (CPOL, CPHA):
    mode 0 (0, 0) rising    mode 1 (0, 1) falling
    mode 2 (1, 0) falling   mode 3 (1, 1) rising

Auto-detect infers CPOL from the clock's resting level at the first /CS
falling edge (or at the first sample when /CS never falls) and assumes
CPHA = 0.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum, auto
from typing import List, Optional

from core.edges import Edge, find_edges, level_at, transition_indices
from shared.errors import Cancelled, ConfigurationError
from shared.models import CapturedWaveform

from .base import ProgressCallback, register_decoder
from .models import Annotation, BusLine, DataWord, DecodeResult, FramingEvent, FramingEventType
from .settings import BitOrder, ClockEdge, ClockMode, SPIConfig

logger = logging.getLogger(__name__)


class DecoderState(Enum):
    IDLE = auto()
    AWAITING_CLOCK_EDGE = auto()
    ACCUMULATING_BITS = auto()


@register_decoder
class SPIDecoder:
    name = "spi"
    display_name = "SPI"

    def __init__(self, config: SPIConfig) -> None:
        self.config = config.validate()

    def resolve_mode(self, waveform: CapturedWaveform) -> Optional[ClockMode]:
        """The configured mode, or the one inferred from the idle clock level."""
        cfg = self.config
        if cfg.mode.is_fixed:
            return cfg.mode
        if len(waveform) == 0:
            return None
        reference = 0
        if cfg.has_cs:
            falls = find_edges(waveform, cfg.cs, Edge.FALLING)
            if falls.size:
                reference = int(falls[0])
        cpol = level_at(waveform, cfg.clock, reference)
        return ClockMode.from_cpol_cpha(cpol, 0)

    def decode(
        self,
        waveform: CapturedWaveform,
        *,
        cancel_event: Optional[threading.Event] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> DecodeResult:
        self._check_channels(waveform)
        cfg = self.config
        if len(waveform) < 2:
            return DecodeResult(resolved_mode=cfg.mode if cfg.mode.is_fixed else None)

        mode = self.resolve_mode(waveform)
        assert mode is not None
        detected = None if cfg.mode.is_fixed else mode
        if detected is not None:
            logger.info("Auto-detected SPI %s", detected.label)

        run = _SPIRun(cfg, mode, waveform)
        annotations = run.execute(cancel_event, progress)
        logger.debug("SPI decode produced %d annotations", len(annotations))
        return DecodeResult(tuple(annotations), resolved_mode=mode, detected_mode=detected)

    def _check_channels(self, waveform: CapturedWaveform) -> None:
        for ch in self.config.assigned_channels():
            if not waveform.is_channel_enabled(ch):
                raise ConfigurationError(f"channel {ch} was not captured (its group is disabled)")


class _SPIRun:
    """State for a single pass over one waveform."""

    def __init__(self, config: SPIConfig, mode: ClockMode, waveform: CapturedWaveform) -> None:
        self.config = config
        self.waveform = waveform
        self.annotations: List[Annotation] = []
        self._sample_level = 1 if mode.sampling_edge is ClockEdge.RISING else 0
        self._clk_level = waveform.level(0, config.clock)
        self._track_cs = config.has_cs and (config.honour_cs or config.report_cs)
        self._cs_level = waveform.level(0, config.cs) if self._track_cs else 1
        self._selected = not config.honour_cs or self._cs_level == 0
        self.state = DecoderState.AWAITING_CLOCK_EDGE if self._selected else DecoderState.IDLE
        self._reset_word()

    def _reset_word(self) -> None:
        self._bit_index = 0
        self._word_start = -1
        self._mosi = 0
        self._miso = 0

    def execute(
        self,
        cancel_event: Optional[threading.Event],
        progress: Optional[ProgressCallback],
    ) -> List[Annotation]:
        cfg = self.config
        channels = [cfg.clock, cfg.cs] if self._track_cs else [cfg.clock]
        indices = transition_indices(self.waveform, channels)
        values = self.waveform.values
        total = int(indices.size)
        last_pct = -1

        for n, idx in enumerate(indices.tolist()):
            if cancel_event is not None and cancel_event.is_set():
                raise Cancelled("SPI decoding interrupted.")
            value = int(values[idx])

            # /CS first: a word starting on the same sample belongs to the new frame.
            if self._track_cs:
                cs_level = (value >> cfg.cs) & 1
                if cs_level != self._cs_level:
                    self._on_chip_select(idx, cs_level)

            clk_level = (value >> cfg.clock) & 1
            if clk_level != self._clk_level:
                self._clk_level = clk_level
                if clk_level == self._sample_level and self.state is not DecoderState.IDLE:
                    self._on_clock_edge(idx, value)

            if progress is not None:
                pct = ((n + 1) * 100) // total
                if pct != last_pct:
                    last_pct = pct
                    progress(pct)
        return self.annotations

    def _on_chip_select(self, idx: int, level: int) -> None:
        self._cs_level = level
        kind = FramingEventType.CS_LOW if level == 0 else FramingEventType.CS_HIGH
        self.annotations.append(Annotation(idx, idx, FramingEvent(kind)))
        if not self.config.honour_cs:
            # Informational only; the word in progress carries on.
            return
        self._reset_word()
        self._selected = level == 0
        self.state = DecoderState.AWAITING_CLOCK_EDGE if self._selected else DecoderState.IDLE

    def _on_clock_edge(self, idx: int, value: int) -> None:
        cfg = self.config
        if self._bit_index == 0:
            self._word_start = idx
        self.state = DecoderState.ACCUMULATING_BITS

        if cfg.has_mosi:
            self._mosi = self._shift(self._mosi, (value >> cfg.mosi) & 1)
        if cfg.has_miso:
            self._miso = self._shift(self._miso, (value >> cfg.miso) & 1)
        self._bit_index += 1

        if self._bit_index == cfg.bit_count:
            self._emit(idx)
            self._reset_word()
            self.state = DecoderState.AWAITING_CLOCK_EDGE

    def _shift(self, acc: int, bit: int) -> int:
        if self.config.bit_order is BitOrder.MSB_FIRST:
            return (acc << 1) | bit
        # First clock edge lands in bit 0.
        return acc | (bit << self._bit_index)

    def _emit(self, end_idx: int) -> None:
        cfg = self.config
        start = self._word_start
        if cfg.has_mosi:
            self.annotations.append(Annotation(start, end_idx, DataWord(self._mosi, BusLine.MOSI, cfg.bit_count)))
        if cfg.has_miso:
            self.annotations.append(Annotation(start, end_idx, DataWord(self._miso, BusLine.MISO, cfg.bit_count)))


__all__ = ["SPIDecoder", "DecoderState"]
