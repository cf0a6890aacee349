"""
Property-based tests for SUMP sample reassembly using Hypothesis.

Properties verified:
1. Group expansion matches a byte-at-a-time reference for every layout
2. A capture streamed newest-first, in arbitrary chunk sizes, comes back in
   chronological order with disabled groups reading as zero
3. The size word always encodes the requested read count
"""
from __future__ import annotations

from hypothesis import given, settings, strategies as st

from daq.logic_sniffer import LogicSnifferDevice
from daq.sump_protocol import CaptureSettings, size_word
from shared.models import GROUP_COUNT, ChannelGroupLayout
from test.fixtures.controlled_device import ControlledSumpPort, port_factory
from test.fixtures.reference_models import reference_expand

group_flags = st.lists(st.booleans(), min_size=GROUP_COUNT, max_size=GROUP_COUNT).filter(any)
sample_value = st.integers(min_value=0, max_value=0xFFFFFFFF)


class TestGroupExpansion:
    @given(enabled=group_flags, data=st.data())
    @settings(max_examples=200, deadline=None)
    def test_expand_matches_reference(self, enabled, data):
        layout = ChannelGroupLayout(tuple(enabled))
        raw = data.draw(st.binary(min_size=layout.enabled_group_count, max_size=layout.enabled_group_count))
        assert layout.expand(raw) == reference_expand(raw, enabled)

    @given(enabled=group_flags, raw=st.binary(min_size=1, max_size=4))
    @settings(max_examples=100, deadline=None)
    def test_expanded_value_stays_inside_channel_mask(self, enabled, raw):
        layout = ChannelGroupLayout(tuple(enabled))
        raw = (raw * 4)[: layout.enabled_group_count]
        assert layout.expand(raw) & ~layout.channel_mask == 0


class TestCaptureRoundTrip:
    @given(
        enabled=group_flags,
        samples=st.lists(sample_value, min_size=1, max_size=12).map(lambda s: s * 4),
        chunk=st.integers(min_value=1, max_value=9),
    )
    @settings(max_examples=50, deadline=None)
    def test_capture_is_chronological_and_masked(self, enabled, samples, chunk):
        layout = ChannelGroupLayout(tuple(enabled))
        port = ControlledSumpPort(samples=samples, chunk_size=chunk)
        device = LogicSnifferDevice(transport_factory=port_factory(port), eof_on_empty=True)
        device.open("fake")
        try:
            device.configure(CaptureSettings(sample_rate=1_000_000, sample_count=len(samples), layout=layout))
            wf = device.capture()
        finally:
            device.close()
        assert wf.values.tolist() == [s & layout.channel_mask for s in samples]
        assert port.enabled_groups == list(layout.enabled_groups)


class TestSizeWord:
    @given(
        read_quarters=st.integers(min_value=1, max_value=0x10000),
        delay_quarters=st.integers(min_value=1, max_value=0x10000),
    )
    def test_read_count_recoverable(self, read_quarters, delay_quarters):
        read, delay = read_quarters * 4, delay_quarters * 4
        word = size_word(read, delay)
        assert ((word & 0xFFFF) + 1) * 4 == read
        assert ((word >> 16) + 1) * 4 == delay
