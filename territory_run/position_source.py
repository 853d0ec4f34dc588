"""Continuous position sampling with pause/resume and wake-lock handling."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Hashable, Optional, Protocol, Sequence

from .models import Fix, TrackingStatus, parse_timestamp

PERMISSION_DENIED = 1
POSITION_UNAVAILABLE = 2
TIMEOUT = 3


@dataclass(frozen=True, slots=True)
class PositionReading:
    latitude: float
    longitude: float
    timestamp: datetime
    accuracy: Optional[float] = None
    speed: Optional[float] = None

    def to_fix(self) -> Fix:
        return Fix(
            lat=float(self.latitude),
            lng=float(self.longitude),
            timestamp=parse_timestamp(self.timestamp),
            accuracy=self.accuracy,
            speed_mps=self.speed,
        )


@dataclass(frozen=True, slots=True)
class PositionError:
    code: int
    message: str


# Returning False tells the provider the reading was not consumed.
ReadingCallback = Callable[[PositionReading], Optional[bool]]
ErrorCallback = Callable[[PositionError], None]
FixCallback = Callable[[Fix], None]


class LocationProvider(Protocol):
    def watch_position(
        self, on_reading: ReadingCallback, on_error: ErrorCallback
    ) -> Hashable: ...

    def clear_watch(self, watch_id: Hashable) -> None: ...


class WakeLockProvider(Protocol):
    def request(self) -> Any: ...

    def release(self, handle: Any) -> None: ...


class PositionSource:
    """Wraps a location provider for one tracking session.

    At most one provider watch is active at a time. Readings from a watch that
    has since been cleared are dropped, and ``stop``/``pause`` wait for a fix
    that is already being delivered, so nothing is emitted after they return.
    They must therefore not be called while holding a lock the fix callback
    takes. Provider errors are recorded on ``status`` and never raised.
    """

    def __init__(
        self,
        provider: LocationProvider,
        wake_lock: WakeLockProvider | None = None,
    ) -> None:
        self.provider = provider
        self.wake_lock = wake_lock
        self._lock = threading.RLock()
        # Held for the whole of one delivery; re-entrant so a fix callback may stop us.
        self._delivery_lock = threading.RLock()
        self._status = TrackingStatus(wake_lock_supported=wake_lock is not None)
        self._watch_id: Optional[Hashable] = None
        self._generation = 0
        self._wake_handle: Any = None
        self._on_fix: Optional[FixCallback] = None
        self._on_error: Optional[ErrorCallback] = None
        self._log = logging.getLogger(self.__class__.__name__)

    @property
    def status(self) -> TrackingStatus:
        with self._lock:
            return replace(self._status)

    @property
    def watching(self) -> bool:
        with self._lock:
            return self._watch_id is not None

    def start(
        self, on_fix: FixCallback, on_error: Optional[ErrorCallback] = None
    ) -> None:
        with self._lock:
            self._on_fix = on_fix
            self._on_error = on_error
            self._status.is_tracking = True
            self._status.paused = False
            self._status.error = None
            self._begin_watch()

    def resume(self) -> None:
        with self._lock:
            if not self._status.is_tracking or self._on_fix is None:
                return
            self._status.paused = False
            self._begin_watch()

    def pause(self) -> None:
        with self._lock:
            if not self._status.is_tracking:
                return
            self._end_watch()
            self._status.paused = True
        self._drain_delivery()

    def stop(self) -> None:
        with self._lock:
            self._end_watch()
            self._status.is_tracking = False
            self._status.paused = False
            self._on_fix = None
            self._on_error = None
        self._drain_delivery()

    def set_visible(self, visible: bool) -> None:
        """Auto-pause when the host view is hidden, auto-resume when shown."""

        with self._lock:
            if not self._status.is_tracking:
                return
            hide = not visible and not self._status.paused
            show = visible and self._status.paused
        if hide:
            self._log.info("Host hidden; pausing position sampling")
            self.pause()
        elif show:
            self._log.info("Host visible; resuming position sampling")
            self.resume()

    def _drain_delivery(self) -> None:
        # The generation is already bumped, so the next delivery is dropped.
        with self._delivery_lock:
            pass

    # ------------------------------------------------------------------
    # Internals (callers hold self._lock)
    # ------------------------------------------------------------------
    def _begin_watch(self) -> None:
        if self._watch_id is not None:
            return
        self._acquire_wake_lock()
        self._generation += 1
        generation = self._generation
        try:
            self._watch_id = self.provider.watch_position(
                lambda reading: self._deliver(generation, reading),
                lambda error: self._report(generation, error),
            )
        except Exception as exc:
            self._log.error("Location provider failed to start: %s", exc)
            self._status.error = str(exc) or "Location provider unavailable."
            self._release_wake_lock()

    def _end_watch(self) -> None:
        watch_id = self._watch_id
        self._watch_id = None
        self._generation += 1
        if watch_id is not None:
            try:
                self.provider.clear_watch(watch_id)
            except Exception as exc:
                self._log.warning("Failed clearing location watch: %s", exc)
        self._release_wake_lock()

    def _acquire_wake_lock(self) -> None:
        if self.wake_lock is None:
            self._log.debug("Wake lock unsupported; screen may sleep while tracking")
            return
        if self._wake_handle is not None:
            return
        try:
            self._wake_handle = self.wake_lock.request()
            self._status.wake_lock_active = True
        except Exception as exc:
            self._log.info("Wake lock request failed: %s", exc)
            self._wake_handle = None
            self._status.wake_lock_active = False

    def _release_wake_lock(self) -> None:
        handle = self._wake_handle
        self._wake_handle = None
        self._status.wake_lock_active = False
        if handle is None or self.wake_lock is None:
            return
        try:
            self.wake_lock.release(handle)
        except Exception as exc:
            self._log.warning("Wake lock release failed: %s", exc)

    def _deliver(self, generation: int, reading: PositionReading) -> bool:
        """Hand one reading to the fix callback; False when the watch is stale."""

        with self._delivery_lock:
            with self._lock:
                if generation != self._generation or self._on_fix is None:
                    return False
                callback = self._on_fix
            try:
                fix = reading.to_fix()
            except (TypeError, ValueError) as exc:
                self._log.warning("Dropping malformed position reading: %s", exc)
                return True
            callback(fix)
            return True

    def _report(self, generation: int, error: PositionError) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._status.error = error.message
            callback = self._on_error
        self._log.warning("Location provider error code=%s: %s", error.code, error.message)
        if callback is not None:
            callback(error)


class ReplayLocationProvider:
    """Replays recorded fixes as provider readings on a background thread.

    Replay continues from the first unplayed reading when a new watch starts,
    so pause/resume behave like a live provider. A reading whose callback
    returns False stays unplayed for the next watch. ``finished`` is set once
    every reading has been delivered.
    """

    def __init__(self, fixes: Sequence[Fix], interval: float = 0.0) -> None:
        self._readings = [
            PositionReading(
                latitude=fix.lat,
                longitude=fix.lng,
                timestamp=fix.timestamp,
                accuracy=fix.accuracy,
                speed=fix.speed_mps,
            )
            for fix in fixes
        ]
        self.interval = max(0.0, interval)
        self.finished = threading.Event()
        self._cursor = 0
        self._lock = threading.Lock()
        # One watch thread plays at a time, so a reading is never sent twice.
        self._play_lock = threading.Lock()
        self._watches: dict[int, threading.Event] = {}
        self._next_id = 0
        if not self._readings:
            self.finished.set()

    def watch_position(
        self, on_reading: ReadingCallback, on_error: ErrorCallback
    ) -> Hashable:
        with self._lock:
            self._next_id += 1
            watch_id = self._next_id
            stop = threading.Event()
            self._watches[watch_id] = stop
        thread = threading.Thread(
            target=self._play,
            args=(stop, on_reading),
            name=f"replay-watch-{watch_id}",
            daemon=True,
        )
        thread.start()
        return watch_id

    def clear_watch(self, watch_id: Hashable) -> None:
        with self._lock:
            stop = self._watches.pop(watch_id, None)  # type: ignore[arg-type]
        if stop is not None:
            stop.set()

    def _play(self, stop: threading.Event, on_reading: ReadingCallback) -> None:
        while not stop.is_set():
            with self._play_lock:
                if stop.is_set():
                    return
                with self._lock:
                    index = self._cursor
                    if index >= len(self._readings):
                        self.finished.set()
                        return
                    reading = self._readings[index]
                if on_reading(reading) is False:
                    return
                with self._lock:
                    self._cursor = index + 1
            if self.interval and stop.wait(self.interval):
                return


__all__ = [
    "LocationProvider",
    "PERMISSION_DENIED",
    "POSITION_UNAVAILABLE",
    "PositionError",
    "PositionReading",
    "PositionSource",
    "ReplayLocationProvider",
    "TIMEOUT",
    "WakeLockProvider",
]
