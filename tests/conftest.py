"""Global pytest fixtures & helpers.

Adds project root to path and provides fakes for the location provider and
the map-matching backend, plus track factories shared by the eligibility,
buffer and session tests. Tests reach all of these through fixtures.
"""
from __future__ import annotations

import math
import os
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from territory_run.errors import MatchServiceError
from territory_run.identity import CitySelectionStore, LocalProfileStore
from territory_run.local_store import MemoryStore
from territory_run.models import City, Fix, Participant
from territory_run.position_source import PositionReading, PositionSource
from territory_run.session_controller import SessionController
from territory_run.storage import InMemoryStorage
from territory_run.tasks import TaskSupervisor

BASE_TIME = datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)
ORIGIN = (51.5, -0.12)
METRES_PER_DEGREE = 6_371_000.0 * math.pi / 180.0


# --- Factory helpers -------------------------------------------------
def build_fix(lat: float, lng: float, seconds: float = 0.0, **kwargs: Any) -> Fix:
    return Fix(lat=lat, lng=lng, timestamp=BASE_TIME + timedelta(seconds=seconds), **kwargs)


def offset_point(origin: tuple[float, float], north_m: float, east_m: float) -> tuple[float, float]:
    lat0, lng0 = origin
    lat = lat0 + north_m / METRES_PER_DEGREE
    lng = lng0 + east_m / (METRES_PER_DEGREE * math.cos(math.radians(lat0)))
    return (lat, lng)


def _square_position(distance_m: float, side_m: float) -> tuple[float, float]:
    """Return (north, east) metres along a square walked E, N, W, S."""

    d = distance_m % (4 * side_m)
    if d <= side_m:
        return (0.0, d)
    if d <= 2 * side_m:
        return (d - side_m, side_m)
    if d <= 3 * side_m:
        return (side_m, side_m - (d - 2 * side_m))
    return (side_m - (d - 3 * side_m), 0.0)


def build_square_loop(
    count: int,
    *,
    side_m: float = 250.0,
    spacing_s: float = 12.0,
    origin: tuple[float, float] = ORIGIN,
) -> List[Fix]:
    """``count`` fixes evenly spaced around a square; the last equals the first."""

    perimeter = 4 * side_m
    step = perimeter / (count - 1)
    fixes = []
    for index in range(count):
        north, east = _square_position(index * step if index < count - 1 else 0.0, side_m)
        lat, lng = offset_point(origin, north, east)
        fixes.append(build_fix(lat, lng, index * spacing_s, accuracy=5.0))
    return fixes


def build_reading(fix: Fix) -> PositionReading:
    return PositionReading(
        latitude=fix.lat,
        longitude=fix.lng,
        timestamp=fix.timestamp,
        accuracy=fix.accuracy,
        speed=fix.speed_mps,
    )


# --- Fakes -----------------------------------------------------------
class FakeLocationProvider:
    """Synchronous provider: ``emit`` pushes a reading to every active watch."""

    def __init__(self) -> None:
        self.watches: Dict[int, tuple] = {}
        self.history: List[tuple] = []
        self.started = 0
        self.cleared = 0
        self._next = 0

    def watch_position(self, on_reading, on_error):
        self._next += 1
        self.started += 1
        self.watches[self._next] = (on_reading, on_error)
        self.history.append((on_reading, on_error))
        return self._next

    def clear_watch(self, watch_id):
        self.cleared += 1
        self.watches.pop(watch_id, None)

    def emit(self, reading: PositionReading) -> None:
        for on_reading, _ in list(self.watches.values()):
            on_reading(reading)

    def emit_fix(self, fix: Fix) -> None:
        self.emit(build_reading(fix))

    def fail(self, error) -> None:
        for _, on_error in list(self.watches.values()):
            on_error(error)


class FakeWakeLock:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.requested = 0
        self.released = 0

    @property
    def held(self) -> int:
        return self.requested - self.released

    def request(self):
        if self.fail:
            raise RuntimeError("NotAllowedError: wake lock denied")
        self.requested += 1
        return object()

    def release(self, handle) -> None:
        self.released += 1


class ScriptedMatchClient:
    """Map-matching fake: per-profile alignment list or exception to raise."""

    def __init__(self, responses: Optional[Dict[str, Any]] = None, default: Any = None):
        self.responses = responses or {}
        self.default = default
        self.calls: List[tuple[str, list]] = []

    def match(self, points, profile):
        self.calls.append((profile, list(points)))
        response = self.responses.get(profile, self.default)
        if response is None:
            raise MatchServiceError(f"profile {profile} not available")
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(points)
        return response


class SlowReading:
    """Reading whose conversion blocks until ``gate`` is set."""

    def __init__(self, fix: Fix) -> None:
        self.fix = fix
        self.entered = threading.Event()
        self.gate = threading.Event()

    def to_fix(self) -> Fix:
        self.entered.set()
        self.gate.wait(5)
        return self.fix


@dataclass
class GatedLiveStorage(InMemoryStorage):
    """Blocks every ``is_live=True`` publish until ``gate`` is set."""

    entered: threading.Event = field(default_factory=threading.Event)
    gate: threading.Event = field(default_factory=threading.Event)

    def publish_live_position(self, participant_id, city_id, display_name, point, trail_wkt, is_live):
        if is_live:
            self.entered.set()
            self.gate.wait(5)
        super().publish_live_position(
            participant_id, city_id, display_name, point, trail_wkt, is_live
        )


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def local_store():
    return MemoryStore()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def provider():
    return FakeLocationProvider()


@pytest.fixture
def wake_lock():
    return FakeWakeLock()


@pytest.fixture
def participant(local_store):
    profile = Participant(id="player-1", display_name="Runner")
    LocalProfileStore(local_store).save(profile)
    return profile


@pytest.fixture
def city(local_store):
    selected = City(id="city-1", name="Testville")
    CitySelectionStore(local_store).select(selected)
    return selected


@pytest.fixture
def make_controller(storage, provider, wake_lock, local_store):
    """Build a controller with inline tasks and no background timers."""

    def _make(**kwargs: Any) -> SessionController:
        kwargs.setdefault("supervisor", TaskSupervisor(max_workers=0))
        kwargs.setdefault("persist_interval", 0)
        kwargs.setdefault("idle_timeout", 0)
        kwargs.setdefault("local_store", local_store)
        return SessionController(
            kwargs.pop("storage", storage),
            PositionSource(provider, wake_lock),
            LocalProfileStore(local_store),
            CitySelectionStore(local_store),
            **kwargs,
        )

    return _make


@pytest.fixture
def origin():
    return ORIGIN


@pytest.fixture
def make_fix():
    return build_fix


@pytest.fixture
def offset():
    return offset_point


@pytest.fixture
def square_loop():
    return build_square_loop


@pytest.fixture
def make_reading():
    return build_reading


@pytest.fixture
def provider_factory():
    return FakeLocationProvider


@pytest.fixture
def wake_lock_factory():
    return FakeWakeLock


@pytest.fixture
def scripted_match():
    """Constructor for map-matching fakes: ``scripted_match({profile: response})``."""

    return ScriptedMatchClient


@pytest.fixture
def gated_storage():
    storage = GatedLiveStorage()
    yield storage
    storage.gate.set()


@pytest.fixture
def slow_reading():
    return SlowReading
