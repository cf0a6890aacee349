"""Background execution of captures and decodes.

Each task runs on its own daemon thread and talks to the caller only through
messages: progress percentages, optional events, and exactly one final
:class:`TaskOutcome`. Cancellation is cooperative; the task body checks the
shared ``threading.Event`` at its blocking reads and loop iterations.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from shared.errors import Cancelled, TaskBusyError

logger = logging.getLogger(__name__)

ProgressListener = Callable[[str, int], None]
EventListener = Callable[[str, Any], None]
DoneListener = Callable[["TaskOutcome"], None]


class TaskState(Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class TaskOutcome:
    kind: str
    state: TaskState
    value: Any = None
    error: Optional[BaseException] = None
    events: Tuple[Any, ...] = field(default=())

    @property
    def ok(self) -> bool:
        return self.state is TaskState.COMPLETED

    @property
    def cancelled(self) -> bool:
        return self.state is TaskState.CANCELLED


class TaskContext:
    """Handed to the task body: cancellation flag, progress and event reporting."""

    def __init__(
        self,
        kind: str,
        cancel_event: threading.Event,
        on_progress: Optional[ProgressListener] = None,
        on_event: Optional[EventListener] = None,
    ) -> None:
        self.kind = kind
        self.cancel_event = cancel_event
        self._on_progress = on_progress
        self._on_event = on_event
        self._progress = -1
        self._events: list[Any] = []
        self._lock = threading.Lock()

    @property
    def progress(self) -> int:
        with self._lock:
            return max(0, self._progress)

    @property
    def events(self) -> Tuple[Any, ...]:
        with self._lock:
            return tuple(self._events)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise Cancelled(f"{self.kind} task cancelled")

    def report_progress(self, percent: float) -> None:
        """Record progress (clamped to 0-100, never moving backwards)."""
        pct = int(max(0, min(100, percent)))
        with self._lock:
            if pct <= self._progress:
                return
            self._progress = pct
        if self._on_progress is not None:
            self._on_progress(self.kind, pct)

    def emit(self, event: Any) -> None:
        with self._lock:
            self._events.append(event)
        if self._on_event is not None:
            self._on_event(self.kind, event)


TaskBody = Callable[[TaskContext], Any]


class TaskHandle:
    """Caller-side view of a running task."""

    def __init__(self, kind: str, context: TaskContext) -> None:
        self.kind = kind
        self._context = context
        self._done = threading.Event()
        self._outcome: Optional[TaskOutcome] = None

    @property
    def progress(self) -> int:
        return self._context.progress

    @property
    def outcome(self) -> Optional[TaskOutcome]:
        return self._outcome

    def cancel(self) -> None:
        self._context.cancel_event.set()

    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> Optional[TaskOutcome]:
        """Block until the outcome is available; None on timeout."""
        if not self._done.wait(timeout):
            return None
        return self._outcome

    def _resolve(self, outcome: TaskOutcome) -> None:
        self._outcome = outcome
        self._done.set()


class TaskWorker(threading.Thread):
    """Runs one task body and turns its ending into a TaskOutcome."""

    def __init__(
        self,
        handle: TaskHandle,
        context: TaskContext,
        body: TaskBody,
        finished: Callable[[TaskHandle, TaskOutcome], None],
    ) -> None:
        super().__init__(name=f"TaskWorker-{handle.kind}", daemon=True)
        self._handle = handle
        self._context = context
        self._body = body
        self._finished = finished

    def run(self) -> None:  # type: ignore[override]
        ctx = self._context
        try:
            ctx.check_cancelled()
            value = self._body(ctx)
            # A body that returns after cancellation must not surface partial results.
            ctx.check_cancelled()
        except Cancelled:
            logger.info("%s task cancelled", ctx.kind)
            outcome = TaskOutcome(ctx.kind, TaskState.CANCELLED, events=ctx.events)
        except Exception as exc:
            logger.error("%s task failed: %s", ctx.kind, exc, exc_info=True)
            outcome = TaskOutcome(ctx.kind, TaskState.FAILED, error=exc, events=ctx.events)
        else:
            ctx.report_progress(100)
            outcome = TaskOutcome(ctx.kind, TaskState.COMPLETED, value=value, events=ctx.events)
        self._finished(self._handle, outcome)


class TaskRunner:
    """
    Serializes background work per kind: at most one "acquisition" and one
    "decode" (or any other kind) task is active at a time.

    Outcomes are delivered to the optional ``on_done`` callback, to
    ``outcome_queue`` and finally to the task handle, so anything ``on_done``
    does is visible once ``TaskHandle.wait()`` returns. The kind stays busy
    until ``on_done`` has returned.
    """

    def __init__(self, *, queue_size: int = 64) -> None:
        self._lock = threading.Lock()
        self._active: Dict[str, Tuple[TaskHandle, TaskWorker]] = {}
        self.outcome_queue: "queue.Queue[TaskOutcome]" = queue.Queue(maxsize=queue_size)

    def submit(
        self,
        kind: str,
        body: TaskBody,
        *,
        on_progress: Optional[ProgressListener] = None,
        on_event: Optional[EventListener] = None,
        on_done: Optional[DoneListener] = None,
    ) -> TaskHandle:
        with self._lock:
            if kind in self._active:
                raise TaskBusyError(f"a {kind!r} task is already running")
            context = TaskContext(kind, threading.Event(), on_progress, on_event)
            handle = TaskHandle(kind, context)

            def finished(h: TaskHandle, outcome: TaskOutcome) -> None:
                if on_done is not None:
                    try:
                        on_done(outcome)
                    except Exception as exc:
                        logger.error("on_done callback for %s task failed: %s", kind, exc, exc_info=True)
                try:
                    self.outcome_queue.put_nowait(outcome)
                except queue.Full:
                    try:
                        _ = self.outcome_queue.get_nowait()
                    except queue.Empty:
                        pass
                    self.outcome_queue.put_nowait(outcome)
                # Release the slot only after on_done has applied the outcome.
                with self._lock:
                    current = self._active.get(kind)
                    if current is not None and current[0] is h:
                        del self._active[kind]
                h._resolve(outcome)

            worker = TaskWorker(handle, context, body, finished)
            self._active[kind] = (handle, worker)
        logger.debug("Starting %s task", kind)
        worker.start()
        return handle

    def active(self, kind: str) -> Optional[TaskHandle]:
        with self._lock:
            entry = self._active.get(kind)
            return entry[0] if entry else None

    def is_busy(self, kind: Optional[str] = None) -> bool:
        with self._lock:
            return bool(self._active) if kind is None else kind in self._active

    def cancel(self, kind: str) -> bool:
        handle = self.active(kind)
        if handle is None:
            return False
        handle.cancel()
        return True

    def shutdown(self, timeout: Optional[float] = 2.0) -> None:
        """Cancel every active task and wait for the workers to finish."""
        with self._lock:
            entries = list(self._active.values())
        for handle, _worker in entries:
            handle.cancel()
        for _handle, worker in entries:
            worker.join(timeout=timeout)


__all__ = [
    "TaskState",
    "TaskOutcome",
    "TaskContext",
    "TaskHandle",
    "TaskWorker",
    "TaskRunner",
    "TaskBody",
]
