from __future__ import annotations

import logging
import threading

import pytest

from territory_run.live import LiveBroadcaster
from territory_run.models import City, Participant
from territory_run.storage import InMemoryStorage
from territory_run.tasks import TaskSupervisor


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def broadcaster(clock):
    storage = InMemoryStorage()
    live = LiveBroadcaster(
        storage,
        TaskSupervisor(max_workers=0),
        throttle_seconds=2.0,
        trail_points=3,
        clock=clock,
    )
    live.begin(Participant("p1", "Runner"), City("c1", "Testville"))
    return live


def test_publishes_at_most_once_per_window(broadcaster, clock, square_loop) -> None:
    fixes = square_loop(10)

    assert broadcaster.maybe_publish(fixes[:1]) is True
    clock.now += 1.0
    assert broadcaster.maybe_publish(fixes[:2]) is False
    clock.now += 1.0
    assert broadcaster.maybe_publish(fixes[:3]) is True

    calls = broadcaster.storage.live_calls
    assert len(calls) == 2
    assert calls[-1]["point"] == fixes[2].best


def test_trail_is_bounded_and_uses_best_estimate(broadcaster, square_loop) -> None:
    fixes = square_loop(10)
    fixes[-1] = fixes[-1].with_snap(51.0, -0.1)

    broadcaster.maybe_publish(fixes)

    call = broadcaster.storage.live_calls[0]
    assert call["point"] == (51.0, -0.1)
    assert call["trail_wkt"].startswith("LINESTRING")
    assert call["trail_wkt"].count(",") == 2
    assert call["is_live"] is True


def test_single_fix_has_no_trail(broadcaster, square_loop) -> None:
    broadcaster.maybe_publish(square_loop(10)[:1])
    assert broadcaster.storage.live_calls[0]["trail_wkt"] is None


def test_nothing_published_before_begin(square_loop) -> None:
    live = LiveBroadcaster(InMemoryStorage(), TaskSupervisor(max_workers=0))
    assert live.active is False
    assert live.maybe_publish(square_loop(10)) is False
    assert live.go_offline() is True


def test_offline_signal_failure_is_logged(broadcaster, caplog: pytest.LogCaptureFixture) -> None:
    broadcaster.storage.live_error = "network down"

    with caplog.at_level(logging.WARNING):
        assert broadcaster.go_offline() is False

    assert broadcaster.active is False
    assert broadcaster.storage.live_calls[-1]["is_live"] is False
    assert "Live offline signal failed" in caplog.text


def test_publish_failure_is_recorded_by_supervisor(broadcaster, square_loop) -> None:
    broadcaster.storage.live_error = "network down"

    assert broadcaster.maybe_publish(square_loop(10)) is True

    failures = broadcaster.supervisor.failures()
    assert [failure.name for failure in failures] == ["live-publish"]


def test_go_offline_waits_for_publish_already_running(gated_storage, square_loop) -> None:
    supervisor = TaskSupervisor(max_workers=2)
    live = LiveBroadcaster(gated_storage, supervisor, throttle_seconds=0.0)
    live.begin(Participant("p1", "Runner"), City("c1", "Testville"))
    try:
        assert live.maybe_publish(square_loop(10)) is True
        assert gated_storage.entered.wait(5)
        threading.Timer(0.2, gated_storage.gate.set).start()

        assert live.go_offline() is True
    finally:
        gated_storage.gate.set()
        supervisor.shutdown()

    assert [call["is_live"] for call in gated_storage.live_calls] == [True, False]
    assert gated_storage.live_players[("p1", "c1")].is_live is False


def test_go_offline_gives_up_waiting_after_timeout(
    gated_storage, square_loop, caplog: pytest.LogCaptureFixture
) -> None:
    supervisor = TaskSupervisor(max_workers=1)
    live = LiveBroadcaster(gated_storage, supervisor, offline_wait_seconds=0.05)
    live.begin(Participant("p1", "Runner"), City("c1", "Testville"))
    try:
        live.maybe_publish(square_loop(10))
        assert gated_storage.entered.wait(5)
        with caplog.at_level(logging.WARNING):
            assert live.go_offline() is True
    finally:
        gated_storage.gate.set()
        supervisor.shutdown()

    assert "still running" in caplog.text
