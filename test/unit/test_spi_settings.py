"""Unit tests for SPI clock modes and decoder configuration."""
from __future__ import annotations

import pytest

from analysis.settings import UNASSIGNED, BitOrder, ClockEdge, ClockMode, SPIConfig
from shared.errors import ConfigurationError


class TestClockMode:
    @pytest.mark.parametrize(
        "mode, cpol, cpha, edge",
        [
            (ClockMode.MODE_0, 0, 0, ClockEdge.RISING),
            (ClockMode.MODE_1, 0, 1, ClockEdge.FALLING),
            (ClockMode.MODE_2, 1, 0, ClockEdge.FALLING),
            (ClockMode.MODE_3, 1, 1, ClockEdge.RISING),
        ],
    )
    def test_polarity_phase_and_sampling_edge(self, mode, cpol, cpha, edge):
        assert mode.cpol == cpol
        assert mode.cpha == cpha
        assert mode.sampling_edge is edge
        assert ClockMode.from_cpol_cpha(cpol, cpha) is mode
        assert mode.is_fixed

    def test_autodetect_has_no_edge(self):
        assert not ClockMode.AUTODETECT.is_fixed
        assert ClockMode.AUTODETECT.cpol is None
        with pytest.raises(ValueError):
            _ = ClockMode.AUTODETECT.sampling_edge

    def test_labels(self):
        assert ClockMode.MODE_2.label == "Mode 2 (CPOL = 1, CPHA = 0)"
        assert ClockMode.AUTODETECT.label == "Auto-detect"


def base(**kwargs) -> SPIConfig:
    values = dict(clock=0, mosi=1, miso=2, cs=3)
    values.update(kwargs)
    return SPIConfig(**values)


class TestSPIConfigValidation:
    def test_valid_config(self):
        cfg = base()
        assert cfg.validate() is cfg
        assert cfg.assigned_channels() == (0, 2, 1, 3)

    def test_clock_required(self):
        with pytest.raises(ConfigurationError):
            base(clock=UNASSIGNED).validate()

    def test_one_data_line_is_enough(self):
        base(miso=UNASSIGNED).validate()
        base(mosi=UNASSIGNED).validate()

    def test_a_data_line_is_required(self):
        with pytest.raises(ConfigurationError):
            base(miso=UNASSIGNED, mosi=UNASSIGNED).validate()

    @pytest.mark.parametrize("bits", [3, 17, 0])
    def test_bit_count_range(self, bits):
        with pytest.raises(ConfigurationError):
            base(bit_count=bits).validate()

    @pytest.mark.parametrize("bits", [4, 8, 12, 16])
    def test_bit_count_accepted(self, bits):
        base(bit_count=bits).validate()

    def test_cs_required_for_honour_or_report(self):
        with pytest.raises(ConfigurationError):
            base(cs=UNASSIGNED, honour_cs=True).validate()
        with pytest.raises(ConfigurationError):
            base(cs=UNASSIGNED, report_cs=True).validate()
        base(cs=UNASSIGNED).validate()

    def test_channel_range(self):
        with pytest.raises(ConfigurationError):
            base(clock=32).validate()
        with pytest.raises(ConfigurationError):
            base(mosi=-2).validate()
        with pytest.raises(ConfigurationError):
            base(cs=8, channel_count=8).validate()

    def test_duplicate_channels(self):
        with pytest.raises(ConfigurationError):
            base(mosi=0).validate()

    def test_bad_enum_values(self):
        with pytest.raises(ConfigurationError):
            base(mode="mode0").validate()  # type: ignore[arg-type]
        with pytest.raises(ConfigurationError):
            base(bit_order="msb").validate()  # type: ignore[arg-type]

    def test_with_mode(self):
        cfg = base().with_mode(ClockMode.MODE_3)
        assert cfg.mode is ClockMode.MODE_3
        assert cfg.clock == 0


class TestSettingsRoundTrip:
    def test_to_and_from_settings(self):
        cfg = base(bit_count=12, bit_order=BitOrder.LSB_FIRST, mode=ClockMode.AUTODETECT, honour_cs=True)
        stored = cfg.to_settings()
        assert stored["sck"] == 0
        assert stored["mode"] == "auto"
        assert stored["order"] == "lsb-first"
        assert stored["honourCS"] is True
        assert SPIConfig.from_settings(stored) == cfg

    def test_from_string_preferences(self):
        cfg = SPIConfig.from_settings(
            {"sck": "4", "mosi": "5", "miso": "-1", "cs": "6", "mode": "mode3", "bits": "16",
             "order": "msb-first", "honourCS": "true", "reportCS": "0"}
        )
        assert cfg.clock == 4
        assert not cfg.has_miso
        assert cfg.mode is ClockMode.MODE_3
        assert cfg.bit_count == 16
        assert cfg.honour_cs and not cfg.report_cs

    def test_missing_keys_keep_defaults(self):
        cfg = SPIConfig.from_settings({"sck": 1}, mosi=2)
        assert cfg.clock == 1
        assert cfg.mosi == 2
        assert cfg.bit_count == 8
        assert cfg.mode is ClockMode.MODE_0

    def test_invalid_preference(self):
        with pytest.raises(ConfigurationError):
            SPIConfig.from_settings({"mode": "mode9"})
        with pytest.raises(ConfigurationError):
            SPIConfig.from_settings({"bits": "eight"})
