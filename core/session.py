from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from analysis.base import ProtocolDecoder
from analysis.models import DecodeResult
from analysis.settings import ClockMode
from daq.base_device import BaseDevice
from daq.profiles import DeviceProfileRegistry
from daq.sump_protocol import CaptureSettings
from shared.app_settings import AppSettingsStore
from shared.errors import TaskBusyError
from shared.models import CapturedWaveform

from .tasks import DoneListener, EventListener, ProgressListener, TaskContext, TaskHandle, TaskOutcome, TaskRunner

logger = logging.getLogger(__name__)

ACQUISITION = "acquisition"
DECODE = "decode"


@dataclass(frozen=True)
class ModeDetected:
    """Emitted on the decode task when auto-detect resolved a clock mode."""

    mode: ClockMode


class CaptureSession:
    """
    Headless owner of one analyzer and the data captured from it.

    A capture replaces the current waveform only when it completes; while it
    runs there is no current waveform, so a decode can never read a
    half-filled one. Decodes run over whatever waveform was installed when
    they were started.
    """

    def __init__(
        self,
        device: BaseDevice,
        *,
        runner: Optional[TaskRunner] = None,
        profiles: Optional[DeviceProfileRegistry] = None,
        settings_store: Optional[AppSettingsStore] = None,
    ) -> None:
        self.device = device
        self.runner = runner or TaskRunner()
        self.profiles = profiles or DeviceProfileRegistry.with_defaults()
        self.settings_store = settings_store
        self._lock = threading.Lock()
        # Held from the busy check until the capture task is submitted.
        self._capture_lock = threading.Lock()
        self._waveform: Optional[CapturedWaveform] = None
        self._last_decode: Optional[DecodeResult] = None

    @property
    def waveform(self) -> Optional[CapturedWaveform]:
        with self._lock:
            return self._waveform

    @property
    def last_decode(self) -> Optional[DecodeResult]:
        with self._lock:
            return self._last_decode

    def load_waveform(self, waveform: Optional[CapturedWaveform]) -> None:
        """Install a waveform obtained elsewhere (a file, a test fixture)."""
        with self._lock:
            self._waveform = waveform
            self._last_decode = None

    # ---- Device --------------------------------------------------------

    def open(self, device_id: str) -> None:
        self.device.open(device_id)

    # ---- Tasks ---------------------------------------------------------

    def start_capture(
        self,
        settings: Optional[CaptureSettings] = None,
        *,
        on_progress: Optional[ProgressListener] = None,
        on_event: Optional[EventListener] = None,
        on_done: Optional[DoneListener] = None,
    ) -> TaskHandle:
        if settings is None:
            if self.settings_store is None:
                raise RuntimeError("No capture settings given and no settings store attached.")
            settings = self.settings_store.get().capture_settings()

        def body(ctx: TaskContext) -> CapturedWaveform:
            return self.device.capture(cancel_event=ctx.cancel_event, progress=ctx.report_progress)

        def finished(outcome: TaskOutcome) -> None:
            if outcome.ok:
                with self._lock:
                    self._waveform = outcome.value
                logger.info("Installed waveform with %d samples", len(outcome.value))
            if on_done is not None:
                on_done(outcome)

        with self._capture_lock:
            if self.runner.is_busy(ACQUISITION):
                raise TaskBusyError("a capture is already running")
            configured = self.device.configure(settings)
            with self._lock:
                self._waveform = None
                self._last_decode = None
            logger.info("Starting capture of %d samples", configured.sample_count)
            return self.runner.submit(
                ACQUISITION, body, on_progress=on_progress, on_event=on_event, on_done=finished
            )

    def start_decode(
        self,
        decoder: ProtocolDecoder,
        *,
        on_progress: Optional[ProgressListener] = None,
        on_event: Optional[EventListener] = None,
        on_done: Optional[DoneListener] = None,
    ) -> TaskHandle:
        waveform = self.waveform
        if waveform is None:
            raise RuntimeError("No waveform to decode; capture or load one first.")

        def body(ctx: TaskContext) -> DecodeResult:
            result = decoder.decode(waveform, cancel_event=ctx.cancel_event, progress=ctx.report_progress)
            if result.detected_mode is not None:
                ctx.emit(ModeDetected(result.detected_mode))
            return result

        def finished(outcome: TaskOutcome) -> None:
            if outcome.ok:
                with self._lock:
                    if self._waveform is waveform:
                        self._last_decode = outcome.value
            if on_done is not None:
                on_done(outcome)

        logger.info("Starting %s decode over %d samples", decoder.name, len(waveform))
        return self.runner.submit(DECODE, body, on_progress=on_progress, on_event=on_event, on_done=finished)

    def cancel_capture(self) -> bool:
        return self.runner.cancel(ACQUISITION)

    def cancel_decode(self) -> bool:
        return self.runner.cancel(DECODE)

    def close(self) -> None:
        self.runner.shutdown()
        self.device.close()
        with self._lock:
            self._waveform = None
            self._last_decode = None


__all__ = ["CaptureSession", "ModeDetected", "ACQUISITION", "DECODE"]
