"""Tracking session lifecycle: start → tracking ⇄ paused → stop/claim.

The controller is the single writer of session state. Every mutation happens
under one re-entrant lock, and network work (snapping, point upserts, live
publishes) is handed to a ``TaskSupervisor`` so a slow backend never delays
position ingestion. Failures of collaborators are converted into diagnostics
and ``StopOutcome`` values; only ``start`` raises (``SessionStartError``).
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from .config import BUFFER_PERSIST_INTERVAL_SECONDS, SESSION_IDLE_TIMEOUT_SECONDS
from .eligibility import DEFAULT_RULES, EligibilityRules, evaluate
from .errors import SessionStartError, StorageError
from .geometry import best_estimate, polygon_wkt
from .identity import CityProvider, IdentityProvider
from .live import LiveBroadcaster
from .local_store import KeyValueStore, MemoryStore
from .models import (
    City,
    ClaimStatus,
    EligibilitySnapshot,
    Fix,
    Participant,
    Session,
    SessionState,
    SnapOutcome,
    StopOutcome,
    TrackingMode,
    TrackingStatus,
)
from .position_source import PositionError, PositionSource
from .snapping import SnapReconciler
from .storage.base import StorageCollaborator
from .tasks import RepeatingTimer, TaskSupervisor
from .track_buffer import TrackBuffer

ACTIVE_SESSION_KEY = "territoryrun_active_session"

MISSING_IDENTITY_MESSAGE = "Missing player profile. Please set a username."
MISSING_CITY_MESSAGE = "No city selected. Choose a city before starting."
REQUIREMENTS_UNMET_MESSAGE = "Loop not closed or requirements unmet."
NOT_ENOUGH_POINTS_MESSAGE = "Need at least 3 points to claim."
BOUNDARY_REJECTION = "Point outside city boundary"


@dataclass(slots=True)
class SessionDiagnostics:
    status_message: Optional[str] = None
    snap_error: Optional[str] = None
    point_save_error: Optional[str] = None
    claim_error: Optional[str] = None
    snapped_count: int = 0
    unsnapped_count: int = 0
    last_snap_profile: Optional[str] = None


class SessionController:
    def __init__(
        self,
        storage: StorageCollaborator,
        position_source: PositionSource,
        identity: IdentityProvider,
        cities: CityProvider,
        *,
        reconciler: SnapReconciler | None = None,
        local_store: KeyValueStore | None = None,
        supervisor: TaskSupervisor | None = None,
        broadcaster: LiveBroadcaster | None = None,
        rules: EligibilityRules = DEFAULT_RULES,
        persist_interval: float = BUFFER_PERSIST_INTERVAL_SECONDS,
        idle_timeout: float = SESSION_IDLE_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.storage = storage
        self.position_source = position_source
        self.identity = identity
        self.cities = cities
        self.reconciler = reconciler
        self.local_store = local_store if local_store is not None else MemoryStore()
        self.buffer = TrackBuffer(self.local_store)
        self.supervisor = supervisor or TaskSupervisor()
        self.broadcaster = broadcaster or LiveBroadcaster(storage, self.supervisor)
        self.rules = rules
        self.persist_interval = persist_interval
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._now = now
        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._session: Optional[Session] = None
        self._participant: Optional[Participant] = None
        self._city: Optional[City] = None
        self._token = 0
        self._snapshot = EligibilitySnapshot()
        self._diagnostics = SessionDiagnostics()
        self._last_activity = 0.0
        self._persist_timer: Optional[RepeatingTimer] = None
        self._idle_timer: Optional[RepeatingTimer] = None
        self.last_outcome: Optional[StopOutcome] = None
        self._log = logging.getLogger(self.__class__.__name__)

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def session(self) -> Optional[Session]:
        with self._lock:
            return replace(self._session) if self._session else None

    @property
    def eligibility(self) -> EligibilitySnapshot:
        with self._lock:
            return self._snapshot

    @property
    def diagnostics(self) -> SessionDiagnostics:
        with self._lock:
            return replace(self._diagnostics)

    @property
    def tracking_status(self) -> TrackingStatus:
        return self.position_source.status

    @property
    def active(self) -> bool:
        with self._lock:
            return self._state in (SessionState.TRACKING, SessionState.PAUSED)

    def fixes(self) -> Tuple[Fix, ...]:
        return self.buffer.fixes()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self, mode: TrackingMode | str, live_mode: bool = False) -> Session:
        mode = TrackingMode.parse(mode)
        with self._lock:
            if self.active:
                raise SessionStartError("A tracking session is already active.")
            self._diagnostics = SessionDiagnostics()
            participant = self.identity.current_participant()
            if participant is None:
                self._diagnostics.status_message = MISSING_IDENTITY_MESSAGE
                raise SessionStartError(MISSING_IDENTITY_MESSAGE)
            city = self.cities.selected_city()
            if city is None:
                self._diagnostics.status_message = MISSING_CITY_MESSAGE
                raise SessionStartError(MISSING_CITY_MESSAGE)
            started_at = self._now()
            try:
                session_id = self.storage.create_session(
                    participant.id, city.id, mode, live_mode, started_at
                )
            except StorageError as exc:
                self._diagnostics.status_message = str(exc)
                self._log.warning("Session start rejected: %s", exc)
                raise SessionStartError(str(exc)) from exc

            session = Session(
                id=session_id,
                participant_id=participant.id,
                city_id=city.id,
                mode=mode,
                live_mode=live_mode,
                started_at=started_at,
            )
            self.buffer.clear()
            if self.reconciler is not None:
                self.reconciler.reset()
            self._activate(session, participant, city)
            self._log.info(
                "Session %s started mode=%s live=%s city=%s",
                session_id,
                mode.value,
                live_mode,
                city.id,
            )
            return replace(session)

    def resume_interrupted(self) -> Optional[Session]:
        """Restart tracking for a session interrupted by a process restart."""

        with self._lock:
            if self.active:
                return None
            session = self._load_active_session()
            if session is None:
                return None
            participant = self.identity.current_participant()
            city = self.cities.selected_city()
            if (
                participant is None
                or city is None
                or participant.id != session.participant_id
                or city.id != session.city_id
            ):
                self._log.warning(
                    "Dropping interrupted session %s: identity or city changed",
                    session.id,
                )
                self.local_store.delete(ACTIVE_SESSION_KEY)
                return None
            self._diagnostics = SessionDiagnostics()
            restored = self.buffer.rehydrate()
            if self.reconciler is not None:
                # Fixes recorded before the restart keep whatever snap they had.
                self.reconciler.reset(submitted=restored)
            self._activate(session, participant, city)
            self._log.info("Resumed session %s with %d fixes", session.id, restored)
            return replace(session)

    def _activate(self, session: Session, participant: Participant, city: City) -> None:
        self._session = session
        self._participant = participant
        self._city = city
        self._token += 1
        self._state = SessionState.TRACKING
        self._snapshot = evaluate(self.buffer.fixes(), session.mode, self.rules)
        self._last_activity = self._clock()
        self.local_store.set(ACTIVE_SESSION_KEY, json.dumps(session.to_dict()))
        if session.live_mode:
            self.broadcaster.begin(participant, city)
        self._start_persist_timer()
        self._start_idle_timer()
        self.position_source.start(self._on_fix, self._on_position_error)

    def pause(self) -> None:
        with self._lock:
            if self._state is not SessionState.TRACKING:
                return
        # Sampling stops first so a fix already being delivered is still recorded.
        self.position_source.pause()
        with self._lock:
            if self._state is not SessionState.TRACKING:
                return
            self._state = SessionState.PAUSED
            self._cancel_persist_timer()
        self._persist_buffer()
        self._log.info("Session paused")

    def resume(self) -> None:
        with self._lock:
            if self._state is not SessionState.PAUSED:
                return
            self._state = SessionState.TRACKING
            self._last_activity = self._clock()
            self.position_source.resume()
            self._start_persist_timer()
        self._log.info("Session resumed")

    def set_visible(self, visible: bool) -> None:
        """Visibility notification from the host: hidden pauses, shown resumes."""

        if visible:
            self.resume()
        else:
            self.pause()

    def stop(self) -> StopOutcome:
        with self._lock:
            session = self._session
            participant = self._participant
            city = self._city
            idle = not self.active or session is None or participant is None or city is None
            if idle:
                no_session = StopOutcome(
                    status=ClaimStatus.NO_SESSION,
                    message="No active session.",
                    snapshot=self._snapshot,
                )
            else:
                self._state = SessionState.STOPPING
                # Bumping the token makes any in-flight snap result stale.
                self._token += 1
        if idle:
            self.position_source.stop()
            return no_session

        outcome: Optional[StopOutcome] = None
        fixes: Tuple[Fix, ...] = ()
        snapshot = self._snapshot
        try:
            # Waits for a fix that is mid-delivery, so no callback runs after this.
            self.position_source.stop()
            self._cancel_timers()
            # Queued point upserts still run; only pending snap batches are dropped.
            self.supervisor.cancel_pending("snap-batch")
            fixes = self.buffer.fixes()
            snapshot = evaluate(fixes, session.mode, self.rules)
            with self._lock:
                self._snapshot = snapshot
            if session.live_mode:
                self.broadcaster.go_offline()
            outcome = self._claim(session, participant, city, fixes, snapshot)
        finally:
            finalized = self._finalize(session, outcome, snapshot)
            self._persist_buffer()
            self.local_store.delete(ACTIVE_SESSION_KEY)
            with self._lock:
                self._state = SessionState.STOPPED
                self._session = None
                if outcome is not None:
                    outcome.finalized = finalized
                    self._diagnostics.status_message = outcome.message
                self.last_outcome = outcome
        self._log.info(
            "Session %s stopped status=%s points=%d perimeter=%.1fm",
            session.id,
            outcome.status.value if outcome else "error",
            snapshot.point_count,
            snapshot.perimeter_estimate_m,
        )
        return outcome

    def shutdown(self) -> None:
        """Stop any active session and release background workers."""

        if self.active:
            self.stop()
        self._cancel_timers()
        self.supervisor.shutdown(wait_for_tasks=True)

    # ------------------------------------------------------------------
    # Claim / finalize
    # ------------------------------------------------------------------
    def _claim(
        self,
        session: Session,
        participant: Participant,
        city: City,
        fixes: Tuple[Fix, ...],
        snapshot: EligibilitySnapshot,
    ) -> StopOutcome:
        if not snapshot.claimable:
            return StopOutcome(
                status=ClaimStatus.REQUIREMENTS_UNMET,
                message=REQUIREMENTS_UNMET_MESSAGE,
                snapshot=snapshot,
                session_id=session.id,
            )
        polygon = polygon_wkt(best_estimate(fixes))
        if polygon is None:
            self._log.warning(
                "Session %s claimable but has fewer than 3 distinct points", session.id
            )
            return StopOutcome(
                status=ClaimStatus.NOT_ENOUGH_POINTS,
                message=NOT_ENOUGH_POINTS_MESSAGE,
                snapshot=snapshot,
                session_id=session.id,
            )
        try:
            result = self.storage.claim_territory(
                participant.id, city.id, session.id, polygon
            )
        except StorageError as exc:
            self._log.warning("Claim rejected for session %s: %s", session.id, exc)
            with self._lock:
                self._diagnostics.claim_error = str(exc)
            return StopOutcome(
                status=ClaimStatus.REJECTED,
                message=str(exc),
                snapshot=snapshot,
                session_id=session.id,
            )
        with self._lock:
            self._diagnostics.claim_error = None
        return StopOutcome(
            status=ClaimStatus.CLAIMED,
            message=result.message,
            snapshot=snapshot,
            session_id=session.id,
            claim_data=result.data,
        )

    def _finalize(
        self,
        session: Session,
        outcome: Optional[StopOutcome],
        snapshot: EligibilitySnapshot,
    ) -> bool:
        closed_loop = outcome is not None and outcome.claimed
        try:
            self.storage.finalize_session(
                session.id,
                self._now(),
                closed_loop,
                snapshot.path_length_m,
                snapshot.perimeter_estimate_m,
            )
        except Exception as exc:
            self._log.warning("Failed to finalize session %s: %s", session.id, exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------
    def _on_fix(self, fix: Fix) -> None:
        with self._lock:
            if self._state is not SessionState.TRACKING or self._session is None:
                return
            if not self.buffer.append(fix):
                return
            session = self._session
            token = self._token
            fixes = self.buffer.fixes()
            self._snapshot = evaluate(fixes, session.mode, self.rules)
            self._last_activity = self._clock()
            window = self.reconciler.next_window(fixes) if self.reconciler else None

        self._persist_buffer()
        self.broadcaster.maybe_publish(fixes)
        self.supervisor.submit(
            "point-upsert",
            self._upsert_fix,
            session.id,
            fix,
            on_error=self._record_point_error,
        )
        if window:
            self.supervisor.submit(
                "snap-batch", self._snap_batch, token, window, session.mode
            )

    def _on_position_error(self, error: PositionError) -> None:
        with self._lock:
            self._diagnostics.status_message = error.message

    def _snap_batch(self, token: int, window: List[Fix], mode: TrackingMode) -> None:
        if self.reconciler is None:
            return
        outcome = self.reconciler.reconcile(window, mode)
        self._apply_snap(token, outcome)

    def _apply_snap(self, token: int, outcome: SnapOutcome) -> None:
        with self._lock:
            if token != self._token or self._session is None or not self.active:
                self._log.debug("Discarding late snap result (%d fixes)", len(outcome.fixes))
                return
            session_id = self._session.id
            snapped = sum(1 for fix in outcome.fixes if fix.snapped)
            self._diagnostics.snapped_count += snapped
            self._diagnostics.unsnapped_count += len(outcome.fixes) - snapped
            self._diagnostics.snap_error = outcome.error
            if outcome.profile:
                self._diagnostics.last_snap_profile = outcome.profile
            changed = self.buffer.merge(outcome.fixes)
            if changed:
                self._snapshot = evaluate(self.buffer.fixes(), self._session.mode, self.rules)
        for fix in changed:
            self.supervisor.submit(
                "snapped-point-upsert",
                self._upsert_fix,
                session_id,
                fix,
                on_error=self._record_point_error,
            )

    def _upsert_fix(self, session_id: str, fix: Fix) -> None:
        self.storage.upsert_point(
            session_id,
            fix.timestamp,
            fix.raw,
            fix.snapped_point,
            fix.accuracy,
            fix.speed_mps,
        )
        with self._lock:
            self._diagnostics.point_save_error = None

    def _record_point_error(self, exc: BaseException) -> None:
        message = str(exc)
        with self._lock:
            self._diagnostics.point_save_error = message
            if BOUNDARY_REJECTION in message:
                self._diagnostics.status_message = f"{BOUNDARY_REJECTION}. Ignored."
            else:
                self._diagnostics.status_message = f"Point save failed: {message}"

    # ------------------------------------------------------------------
    # Timers and local persistence
    # ------------------------------------------------------------------
    def _persist_buffer(self) -> None:
        try:
            self.buffer.persist()
        except OSError as exc:
            self._log.warning("Failed to persist track buffer: %s", exc)

    def _start_persist_timer(self) -> None:
        if self.persist_interval <= 0 or self._persist_timer is not None:
            return
        self._persist_timer = RepeatingTimer(
            self.persist_interval, self._persist_buffer, name="buffer-persist"
        )
        self._persist_timer.start()

    def _cancel_persist_timer(self) -> None:
        timer = self._persist_timer
        self._persist_timer = None
        if timer is not None:
            timer.cancel()

    def _start_idle_timer(self) -> None:
        if self.idle_timeout <= 0 or self._idle_timer is not None:
            return
        interval = min(self.idle_timeout, 30.0)
        self._idle_timer = RepeatingTimer(interval, self._check_idle, name="session-idle")
        self._idle_timer.start()

    def _check_idle(self) -> None:
        with self._lock:
            if not self.active:
                return
            idle_for = self._clock() - self._last_activity
            if idle_for < self.idle_timeout:
                return
        self._log.warning("No fix for %.0fs; stopping idle session", idle_for)
        self.stop()

    def _cancel_timers(self) -> None:
        with self._lock:
            self._cancel_persist_timer()
            timer = self._idle_timer
            self._idle_timer = None
        if timer is not None:
            timer.cancel()

    def _load_active_session(self) -> Optional[Session]:
        raw = self.local_store.get(ACTIVE_SESSION_KEY)
        if not raw:
            return None
        try:
            return Session.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            self._log.warning("Ignoring unreadable active session record: %s", exc)
            self.local_store.delete(ACTIVE_SESSION_KEY)
            return None


__all__ = ["ACTIVE_SESSION_KEY", "SessionController", "SessionDiagnostics"]
