"""Rate-limited publishing of the participant's live position and trail."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, wait
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Set

from .config import LIVE_OFFLINE_WAIT_SECONDS, LIVE_THROTTLE_SECONDS, LIVE_TRAIL_POINTS
from .geometry import best_estimate, linestring_wkt
from .models import City, Fix, Participant
from .storage.base import StorageCollaborator
from .tasks import TaskSupervisor


@dataclass(slots=True)
class _LiveTarget:
    participant: Participant
    city: City


class LiveBroadcaster:
    """Publishes at most once per throttle window; calls inside it are dropped.

    The offline signal is sent synchronously on ``go_offline`` after any
    publish already handed to the pool has finished, so a late ``is_live=True``
    update cannot overwrite it. Its failure is logged, never raised, so session
    teardown always completes.
    """

    def __init__(
        self,
        storage: StorageCollaborator,
        supervisor: TaskSupervisor,
        *,
        throttle_seconds: float = LIVE_THROTTLE_SECONDS,
        trail_points: int = LIVE_TRAIL_POINTS,
        offline_wait_seconds: float = LIVE_OFFLINE_WAIT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.storage = storage
        self.supervisor = supervisor
        self.throttle_seconds = throttle_seconds
        self.trail_points = max(0, trail_points)
        self.offline_wait_seconds = max(0.0, offline_wait_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._target: Optional[_LiveTarget] = None
        self._last_sent: Optional[float] = None
        self._in_flight: Set[Future[Any]] = set()
        self._log = logging.getLogger(self.__class__.__name__)

    @property
    def active(self) -> bool:
        with self._lock:
            return self._target is not None

    def begin(self, participant: Participant, city: City) -> None:
        with self._lock:
            self._target = _LiveTarget(participant, city)
            self._last_sent = None

    def maybe_publish(self, fixes: Sequence[Fix]) -> bool:
        """Publish the latest fix and trail unless throttled; returns True when sent."""

        if not fixes:
            return False
        now = self._clock()
        trail = best_estimate(fixes[-self.trail_points :]) if self.trail_points else []
        position = fixes[-1].best
        with self._lock:
            target = self._target
            if target is None:
                return False
            if self._last_sent is not None and now - self._last_sent < self.throttle_seconds:
                return False
            self._last_sent = now
            # Submitted under the lock so go_offline sees every queued publish.
            future = self.supervisor.submit(
                "live-publish",
                self.storage.publish_live_position,
                target.participant.id,
                target.city.id,
                target.participant.display_name,
                position,
                linestring_wkt(trail),
                True,
            )
            if future is not None:
                self._in_flight.add(future)
        if future is not None:
            future.add_done_callback(self._discard)
        return True

    def _discard(self, future: Future[Any]) -> None:
        with self._lock:
            self._in_flight.discard(future)

    def go_offline(self) -> bool:
        """Send a single ``is_live=False`` update; returns False when it failed."""

        with self._lock:
            target = self._target
            self._target = None
            self._last_sent = None
            in_flight = list(self._in_flight)
        if target is None:
            return True
        if in_flight:
            _, not_done = wait(in_flight, timeout=self.offline_wait_seconds)
            if not_done:
                self._log.warning(
                    "%d live publish(es) still running after %.1fs for participant=%s",
                    len(not_done),
                    self.offline_wait_seconds,
                    target.participant.id,
                )
        try:
            self.storage.publish_live_position(
                target.participant.id,
                target.city.id,
                target.participant.display_name,
                None,
                None,
                False,
            )
        except Exception as exc:
            self._log.warning(
                "Live offline signal failed for participant=%s: %s",
                target.participant.id,
                exc,
            )
            return False
        return True


__all__ = ["LiveBroadcaster"]
