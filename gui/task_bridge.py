"""TaskSignalBridge - Qt adapter for TaskRunner callbacks.

Task callbacks fire on worker threads. Re-emitting them as Qt signals lets
a front end connect slots that Qt delivers on the GUI thread through queued
connections, so widgets never touch task state directly.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from PySide6 import QtCore

from core.tasks import TaskOutcome


class TaskSignalBridge(QtCore.QObject):
    """Exposes TaskRunner progress, events and outcomes as Qt signals."""

    progressChanged = QtCore.Signal(str, int)
    eventEmitted = QtCore.Signal(str, object)
    taskFinished = QtCore.Signal(str, object)

    def __init__(self, parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent)

    def on_progress(self, kind: str, percent: int) -> None:
        self.progressChanged.emit(kind, int(percent))

    def on_event(self, kind: str, event: Any) -> None:
        self.eventEmitted.emit(kind, event)

    def on_done(self, outcome: TaskOutcome) -> None:
        self.taskFinished.emit(outcome.kind, outcome)

    def callbacks(self) -> Dict[str, Any]:
        """Keyword arguments for ``TaskRunner.submit`` / ``CaptureSession.start_*``."""
        return {
            "on_progress": self.on_progress,
            "on_event": self.on_event,
            "on_done": self.on_done,
        }


__all__ = ["TaskSignalBridge"]
