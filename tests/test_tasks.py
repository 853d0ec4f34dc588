from __future__ import annotations

import logging
import threading

import pytest

from territory_run.tasks import RepeatingTimer, TaskSupervisor


def _boom():
    raise RuntimeError("boom")


def test_inline_supervisor_runs_immediately() -> None:
    supervisor = TaskSupervisor(max_workers=0)
    seen = []

    assert supervisor.submit("record", seen.append, 1) is None

    assert supervisor.inline is True
    assert seen == [1]


def test_failures_are_logged_recorded_and_reported(caplog: pytest.LogCaptureFixture) -> None:
    supervisor = TaskSupervisor(max_workers=0, history=2)
    errors = []

    with caplog.at_level(logging.WARNING):
        for _ in range(3):
            supervisor.submit("explode", _boom, on_error=errors.append)

    assert len(errors) == 3
    assert all(str(error) == "boom" for error in errors)
    assert len(supervisor.failures()) == 2
    assert "Background task explode failed: boom" in caplog.text


def test_threaded_supervisor_wait_and_shutdown() -> None:
    supervisor = TaskSupervisor(max_workers=2)
    done = []
    future = supervisor.submit("work", done.append, "x")

    assert future is not None
    assert supervisor.wait(timeout=5) is True
    assert done == ["x"]

    supervisor.shutdown()
    assert supervisor.submit("late", done.append, "y") is None
    assert done == ["x"]


def test_cancel_pending_skips_queued_tasks() -> None:
    supervisor = TaskSupervisor(max_workers=1)
    started = threading.Event()
    gate = threading.Event()
    ran = []

    def blocker():
        started.set()
        gate.wait(5)

    supervisor.submit("blocker", blocker)
    assert started.wait(5)
    supervisor.submit("queued", ran.append, "queued")

    assert supervisor.cancel_pending() == 1
    gate.set()
    supervisor.shutdown(wait_for_tasks=True)

    assert ran == []


def test_cancel_pending_by_name_keeps_other_tasks() -> None:
    supervisor = TaskSupervisor(max_workers=1)
    started = threading.Event()
    gate = threading.Event()
    ran = []

    def blocker():
        started.set()
        gate.wait(5)

    supervisor.submit("blocker", blocker)
    assert started.wait(5)
    supervisor.submit("point-upsert", ran.append, "point-1")
    supervisor.submit("snap-batch", ran.append, "snap")
    supervisor.submit("point-upsert", ran.append, "point-2")

    assert supervisor.cancel_pending("snap-batch") == 1
    gate.set()
    supervisor.shutdown(wait_for_tasks=True)

    assert ran == ["point-1", "point-2"]


def test_repeating_timer_ticks_until_cancelled() -> None:
    ticks = threading.Semaphore(0)
    timer = RepeatingTimer(0.01, ticks.release, name="test-timer")
    timer.start()

    assert ticks.acquire(timeout=2)
    assert ticks.acquire(timeout=2)
    assert timer.running is True

    timer.cancel()
    assert timer.running is False


def test_repeating_timer_rejects_non_positive_interval() -> None:
    with pytest.raises(ValueError):
        RepeatingTimer(0, lambda: None)
