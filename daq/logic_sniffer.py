from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Optional

import numpy as np

try:
    import serial
    import serial.tools.list_ports
except ImportError:
    serial = None

from shared.errors import Cancelled, ConfigurationError, TransportError, UnrecognizedDevice
from shared.models import (
    CHANNELS_PER_GROUP,
    Capabilities,
    ChannelGroupLayout,
    CapturedWaveform,
    ChannelInfo,
    DeviceInfo,
)

from .base_device import BaseDevice, ProgressCallback
from .profiles import DEFAULT_PROFILE_TYPE, DeviceProfile
from .sump_protocol import (
    CMD_ID,
    CMD_RUN,
    CaptureSettings,
    DeviceIdentity,
    encode_capture_commands,
    reset_sequence,
    short_command,
)
from .sump_reader import SampleStreamReader, Transport

_LOGGER = logging.getLogger(__name__)

TransportFactory = Callable[[str, int], Transport]

# Known USB ids of SUMP-compatible boards
_SUMP_VIDS = {
    0x04D8,  # Microchip (OLS PIC firmware)
    0x1D50,  # OpenMoko (OLS)
}

_SERIAL_READ_TIMEOUT = 0.1
_ID_TIMEOUT = 2.0


def _open_serial(port: str, baudrate: int) -> Transport:
    if serial is None:
        raise RuntimeError("pyserial module is not installed.")
    try:
        return serial.Serial(
            port=port,
            baudrate=baudrate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=_SERIAL_READ_TIMEOUT,
            write_timeout=1.0,
        )
    except serial.SerialException as exc:
        raise TransportError(f"Failed to open serial port {port}: {exc}") from exc


class LogicSnifferDevice(BaseDevice):
    """
    Driver for SUMP-compatible logic analyzers (OpenBench Logic Sniffer and
    clones) attached over a serial/CDC port.

    Capture protocol:
    - reset, identify (4-byte big-endian id), send trigger/divider/size/flags;
    - RUN arms the device; after the trigger it streams ``sample_count``
      samples, newest first, one byte per enabled channel group.
    """

    @classmethod
    def device_class_name(cls) -> str:
        return "SUMP Logic Analyzer"

    def __init__(
        self,
        profile: Optional[DeviceProfile] = None,
        *,
        baudrate: Optional[int] = None,
        strict_identification: bool = False,
        idle_timeout: Optional[float] = None,
        eof_on_empty: bool = False,
        transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        super().__init__()
        self.profile = profile or DeviceProfile(type=DEFAULT_PROFILE_TYPE)
        self.baudrate = int(baudrate or self.profile.default_baudrate)
        self._strict = bool(strict_identification)
        self._idle_timeout = idle_timeout
        self._eof_on_empty = bool(eof_on_empty)
        self._transport_factory = transport_factory
        self._transport: Optional[Transport] = None
        self.identity: Optional[DeviceIdentity] = None

    @classmethod
    def list_available_devices(cls) -> List[DeviceInfo]:
        if serial is None:
            raise RuntimeError("pyserial is not installed; serial ports cannot be enumerated.")
        candidates = []
        try:
            for p in serial.tools.list_ports.comports():
                likely = p.vid in _SUMP_VIDS or "sniffer" in str(p.description).lower()
                candidates.append(
                    DeviceInfo(
                        id=p.device,
                        name=f"{p.description or 'Serial port'} ({p.device})",
                        vendor="OpenBench" if likely else None,
                        details={"vid": p.vid, "pid": p.pid, "hwid": p.hwid, "likely_sump": likely},
                    )
                )
        except Exception as e:
            _LOGGER.error("Failed to scan serial ports: %s", e)
        # Likely candidates first
        candidates.sort(key=lambda info: not info.details.get("likely_sump", False))
        return candidates

    def get_capabilities(self, device_id: str) -> Capabilities:
        return Capabilities(
            max_channels=self.profile.channel_count,
            group_count=self.profile.channel_group_count,
            max_sample_rate=self.profile.clockspeed,
            max_sample_count=self.profile.max_sample_memory,
            notes=self.profile.description or None,
        )

    def list_available_channels(self, device_id: str) -> List[ChannelInfo]:
        return [
            ChannelInfo(id=i, name=f"Channel {i}", group=i // CHANNELS_PER_GROUP)
            for i in range(self.profile.channel_count)
        ]

    # ---- Lifecycle -----------------------------------------------------

    def _open_impl(self, device_id: str) -> None:
        factory = self._transport_factory or _open_serial
        transport = factory(device_id, self.baudrate)
        _LOGGER.info("Opening SUMP device %s at %d baud", device_id, self.baudrate)
        try:
            self._send(transport, reset_sequence())
            reader = SampleStreamReader(
                transport,
                layout=ChannelGroupLayout.all_enabled(),
                eof_on_empty=self._eof_on_empty,
                idle_timeout=_ID_TIMEOUT,
            )
            reader.flush()
            self._send(transport, short_command(CMD_ID))
            identity = reader.read_device_id()
        except Exception:
            self._close_transport(transport)
            raise
        if not identity.recognized and self._strict:
            self._close_transport(transport)
            raise UnrecognizedDevice(identity.raw_id)
        if not identity.recognized:
            _LOGGER.warning("Proceeding best-effort with %s", identity.label)
        self.identity = identity
        self._transport = transport

    def _close_impl(self) -> None:
        if self._transport is not None:
            try:
                self._send(self._transport, reset_sequence())
            except TransportError as e:
                _LOGGER.debug("Reset on close failed: %s", e)
            self._close_transport(self._transport)
            self._transport = None
        self.identity = None

    def _configure_impl(self, settings: CaptureSettings) -> CaptureSettings:
        settings.validate(clock=self.profile.clockspeed, max_sample_count=self.profile.max_sample_memory)
        for group in settings.layout.enabled_groups:
            if group >= self.profile.channel_group_count:
                raise ConfigurationError(
                    f"group {group} is not available on {self.profile.type} "
                    f"({self.profile.channel_group_count} groups)"
                )
        if settings.noise_filter and not self.profile.supports_noise_filter:
            raise ConfigurationError(f"{self.profile.type} has no noise filter")
        if settings.test_mode and not self.profile.supports_test_mode:
            raise ConfigurationError(f"{self.profile.type} has no test mode")
        actual_rate = settings.actual_sample_rate(self.profile.clockspeed)
        if actual_rate != settings.sample_rate:
            _LOGGER.info("Sample rate %d Hz rounded to %d Hz", settings.sample_rate, actual_rate)
        return settings

    # ---- Capture -------------------------------------------------------

    def _capture_impl(
        self,
        settings: CaptureSettings,
        cancel_event: Optional[threading.Event],
        progress: Optional[ProgressCallback],
    ) -> CapturedWaveform:
        transport = self._transport
        if transport is None:
            raise RuntimeError("Device is not open.")
        reader = SampleStreamReader(
            transport,
            settings.layout,
            cancel_event=cancel_event,
            eof_on_empty=self._eof_on_empty,
            idle_timeout=self._idle_timeout,
        )
        clock = self.profile.clockspeed
        count = settings.sample_count
        _LOGGER.info(
            "Arming capture: %d samples @ %d Hz, groups=%s, trigger=%s",
            count,
            settings.actual_sample_rate(clock),
            settings.layout.enabled_groups,
            settings.trigger_enabled,
        )
        try:
            reader.flush()
            self._send(transport, encode_capture_commands(settings, clock))
            self._send(transport, short_command(CMD_RUN))
            arrival = reader.read_samples(count, progress=progress)
        except Cancelled:
            self._abort(reader)
            raise

        # Newest sample arrives first.
        values = np.ascontiguousarray(arrival[::-1])
        return CapturedWaveform(
            values=values,
            timestamps=np.arange(count, dtype=np.int64),
            sample_rate=settings.actual_sample_rate(clock),
            enabled_channels=settings.layout.channel_mask,
            trigger_position=settings.trigger_position,
            absolute_length=count,
        )

    def _abort(self, reader: SampleStreamReader) -> None:
        """Stop the device and drop whatever is still in flight."""
        try:
            self._send(reader.transport, reset_sequence())
            time.sleep(0.01)
            reader.flush()
        except TransportError as e:
            _LOGGER.debug("Abort after cancel failed: %s", e)

    # ---- Helpers -------------------------------------------------------

    @staticmethod
    def _send(transport: Transport, data: bytes) -> None:
        try:
            transport.write(data)
            flush = getattr(transport, "flush", None)
            if callable(flush):
                flush()
        except (OSError, ValueError) as exc:
            raise TransportError(f"Failed to write to device: {exc}") from exc

    @staticmethod
    def _close_transport(transport: Transport) -> None:
        close = getattr(transport, "close", None)
        if callable(close):
            try:
                close()
            except OSError as e:
                _LOGGER.debug("Closing transport failed: %s", e)


__all__ = ["LogicSnifferDevice", "TransportFactory"]
