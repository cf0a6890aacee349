"""
Unit tests for the background task runner.

Each outcome must be delivered exactly once, cancellation must be reported as
CANCELLED rather than FAILED, and a second task of the same kind must be
refused while the first is active.
"""
from __future__ import annotations

import threading

import pytest

from core.tasks import TaskContext, TaskRunner, TaskState
from shared.errors import Cancelled, TaskBusyError

TIMEOUT = 5.0


class TestOutcomes:
    def test_completed_value(self):
        runner = TaskRunner()
        handle = runner.submit("work", lambda ctx: 42)
        outcome = handle.wait(TIMEOUT)
        assert outcome is not None
        assert outcome.state is TaskState.COMPLETED
        assert outcome.ok
        assert outcome.value == 42
        assert handle.done()
        assert handle.progress == 100

    def test_failure_is_captured(self):
        def body(ctx: TaskContext):
            raise RuntimeError("boom")

        outcome = TaskRunner().submit("work", body).wait(TIMEOUT)
        assert outcome.state is TaskState.FAILED
        assert isinstance(outcome.error, RuntimeError)
        assert outcome.value is None

    def test_cancelled_exception_is_cancelled_outcome(self):
        def body(ctx: TaskContext):
            raise Cancelled("stop")

        outcome = TaskRunner().submit("work", body).wait(TIMEOUT)
        assert outcome.state is TaskState.CANCELLED
        assert outcome.cancelled
        assert outcome.error is None

    def test_cooperative_cancel(self):
        started = threading.Event()

        def body(ctx: TaskContext):
            started.set()
            while True:
                ctx.check_cancelled()
                ctx.cancel_event.wait(0.01)

        runner = TaskRunner()
        handle = runner.submit("work", body)
        assert started.wait(TIMEOUT)
        assert runner.cancel("work")
        assert handle.wait(TIMEOUT).state is TaskState.CANCELLED

    def test_result_after_cancel_is_discarded(self):
        release = threading.Event()

        def body(ctx: TaskContext):
            release.wait(TIMEOUT)
            return "partial"

        runner = TaskRunner()
        handle = runner.submit("work", body)
        handle.cancel()
        release.set()
        outcome = handle.wait(TIMEOUT)
        assert outcome.state is TaskState.CANCELLED
        assert outcome.value is None

    def test_outcome_delivered_once_everywhere(self):
        runner = TaskRunner()
        done = []
        handle = runner.submit("work", lambda ctx: "x", on_done=done.append)
        outcome = handle.wait(TIMEOUT)
        assert done == [outcome]
        assert runner.outcome_queue.get(timeout=TIMEOUT) is outcome
        assert runner.outcome_queue.empty()

    def test_failing_on_done_does_not_block_handle(self):
        def on_done(outcome):
            raise ValueError("listener bug")

        handle = TaskRunner().submit("work", lambda ctx: 1, on_done=on_done)
        assert handle.wait(TIMEOUT).ok


class TestProgressAndEvents:
    def test_progress_clamped_and_monotonic(self):
        seen = []

        def body(ctx: TaskContext):
            for pct in (-5, 0, 10, 5, 10, 50, 250):
                ctx.report_progress(pct)

        TaskRunner().submit("work", body, on_progress=lambda kind, pct: seen.append(pct)).wait(TIMEOUT)
        assert seen == [0, 10, 50, 100]

    def test_events_are_forwarded_and_recorded(self):
        forwarded = []

        def body(ctx: TaskContext):
            ctx.emit("first")
            ctx.emit("second")

        outcome = TaskRunner().submit(
            "work", body, on_event=lambda kind, ev: forwarded.append((kind, ev))
        ).wait(TIMEOUT)
        assert forwarded == [("work", "first"), ("work", "second")]
        assert outcome.events == ("first", "second")


class TestConcurrency:
    def test_same_kind_is_refused_while_active(self):
        release = threading.Event()
        runner = TaskRunner()
        handle = runner.submit("acquisition", lambda ctx: release.wait(TIMEOUT))
        with pytest.raises(TaskBusyError):
            runner.submit("acquisition", lambda ctx: None)
        assert runner.is_busy("acquisition")
        release.set()
        handle.wait(TIMEOUT)
        assert not runner.is_busy("acquisition")
        assert runner.submit("acquisition", lambda ctx: 1).wait(TIMEOUT).ok

    def test_kind_stays_busy_while_on_done_runs(self):
        runner = TaskRunner()
        seen = []

        def on_done(outcome):
            seen.append(runner.is_busy("acquisition"))
            try:
                runner.submit("acquisition", lambda ctx: None)
            except TaskBusyError:
                seen.append("refused")

        handle = runner.submit("acquisition", lambda ctx: 1, on_done=on_done)
        assert handle.wait(TIMEOUT).ok
        assert seen == [True, "refused"]
        assert not runner.is_busy("acquisition")

    def test_different_kinds_run_together(self):
        both = threading.Barrier(2, timeout=TIMEOUT)
        runner = TaskRunner()
        a = runner.submit("acquisition", lambda ctx: both.wait())
        b = runner.submit("decode", lambda ctx: both.wait())
        assert a.wait(TIMEOUT).ok
        assert b.wait(TIMEOUT).ok

    def test_cancel_unknown_kind(self):
        assert TaskRunner().cancel("nothing") is False
        assert TaskRunner().active("nothing") is None

    def test_shutdown_cancels_active_tasks(self):
        started = threading.Event()

        def body(ctx: TaskContext):
            started.set()
            ctx.cancel_event.wait(TIMEOUT)
            ctx.check_cancelled()

        runner = TaskRunner()
        handle = runner.submit("work", body)
        assert started.wait(TIMEOUT)
        runner.shutdown(timeout=TIMEOUT)
        assert handle.wait(0).state is TaskState.CANCELLED
        assert not runner.is_busy()

    def test_wait_timeout_returns_none(self):
        release = threading.Event()
        runner = TaskRunner()
        handle = runner.submit("work", lambda ctx: release.wait(TIMEOUT))
        assert handle.wait(0.01) is None
        release.set()
        assert handle.wait(TIMEOUT).ok
