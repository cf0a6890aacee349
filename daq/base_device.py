from __future__ import annotations

"""
Base class for capture-style logic analyzers.

Goals:
- Simple, stable contract for the session / task layer.
- Clean lifecycle: open → configure → capture → close.
- Capability discovery for device pickers and validation.
- One capture at a time; the transport is never shared between captures.

Subclasses implement the *_impl() methods to integrate real hardware
(or simulators) while relying on the shared state handling here.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Literal, Optional

from shared.errors import Cancelled
from shared.models import Capabilities, CapturedWaveform, ChannelInfo, DeviceInfo

from .sump_protocol import CaptureSettings

logger = logging.getLogger(__name__)

State = Literal["closed", "open", "capturing"]
ProgressCallback = Callable[[int], None]


class BaseDevice(ABC):
    """
    Abstract base for all capture devices.

    Typical flow:
        devs = Driver.list_available_devices()
        device = Driver()
        device.open(devs[0].id)
        device.configure(CaptureSettings(sample_rate=1_000_000, sample_count=4096))
        waveform = device.capture(cancel_event=evt, progress=print)
        device.close()
    """

    @classmethod
    @abstractmethod
    def device_class_name(cls) -> str:
        """Return the human-friendly category name for this driver type."""
        raise NotImplementedError

    def __init__(self) -> None:
        self._state_lock = threading.RLock()
        self._state: State = "closed"
        self._device_id: Optional[str] = None
        self.config: Optional[CaptureSettings] = None

    # ------------------------
    # Device enumeration APIs
    # ------------------------

    @classmethod
    @abstractmethod
    def list_available_devices(cls) -> List[DeviceInfo]:
        """Return all devices visible to the driver."""
        raise NotImplementedError

    @abstractmethod
    def get_capabilities(self, device_id: str) -> Capabilities:
        raise NotImplementedError

    @abstractmethod
    def list_available_channels(self, device_id: str) -> List[ChannelInfo]:
        """Return all input channels for the device, in hardware order."""
        raise NotImplementedError

    # ----------
    # Lifecycle
    # ----------

    @property
    def state(self) -> State:
        return self._state

    @property
    def device_id(self) -> Optional[str]:
        return self._device_id

    def open(self, device_id: str) -> None:
        with self._state_lock:
            self._assert_state(expected=("closed",))
            self._open_impl(device_id)
            self._device_id = device_id
            self._state = "open"

    @abstractmethod
    def _open_impl(self, device_id: str) -> None:
        """Driver-specific resource acquisition."""
        raise NotImplementedError

    def close(self) -> None:
        with self._state_lock:
            if self._state == "closed":
                return
            self._close_impl()
            self._device_id = None
            self.config = None
            self._state = "closed"

    @abstractmethod
    def _close_impl(self) -> None:
        """Driver-specific resource release."""
        raise NotImplementedError

    # -------------
    # Configuration
    # -------------

    def configure(self, settings: CaptureSettings) -> CaptureSettings:
        """
        Validate and store the capture settings. May be called repeatedly
        while open. Returns the settings the driver will actually use.
        """
        with self._state_lock:
            self._assert_state(expected=("open",))
            actual = self._configure_impl(settings)
            self.config = actual
            return actual

    @abstractmethod
    def _configure_impl(self, settings: CaptureSettings) -> CaptureSettings:
        """Driver-specific validation. Should not talk to the device yet."""
        raise NotImplementedError

    # ---- Run control ----

    def capture(
        self,
        *,
        cancel_event: Optional[threading.Event] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> CapturedWaveform:
        """
        Run one blocking capture and return the complete waveform.

        Raises Cancelled when `cancel_event` is set before the last sample
        arrives; no partial waveform is ever returned.
        """
        with self._state_lock:
            self._assert_state(expected=("open",))
            if self.config is None:
                raise RuntimeError("configure() must be called before capture().")
            self._state = "capturing"
        try:
            waveform = self._capture_impl(self.config, cancel_event, progress)
        except Cancelled:
            logger.info("Capture on %s cancelled", self._device_id)
            raise
        finally:
            with self._state_lock:
                if self._state == "capturing":
                    self._state = "open"
        logger.info("Capture on %s finished: %d samples", self._device_id, len(waveform))
        return waveform

    @abstractmethod
    def _capture_impl(
        self,
        settings: CaptureSettings,
        cancel_event: Optional[threading.Event],
        progress: Optional[ProgressCallback],
    ) -> CapturedWaveform:
        raise NotImplementedError

    # ---------
    # Helpers
    # ---------

    def _assert_state(self, expected: tuple[State, ...]) -> None:
        if self._state not in expected:
            raise RuntimeError(f"Invalid state {self._state!r}; expected one of {expected}")


__all__ = ["BaseDevice", "State", "ProgressCallback"]
