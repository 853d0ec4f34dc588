"""In-process storage collaborator for replay runs and tests."""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..errors import StorageError, StoragePolicyError
from ..models import LatLng, TrackingMode
from .base import DEFAULT_CLAIM_MESSAGE, ClaimResult

PointPolicy = Callable[[LatLng], Optional[str]]


@dataclass
class StoredSession:
    id: str
    participant_id: str
    city_id: str
    mode: TrackingMode
    live_mode: bool
    started_at: datetime
    ended_at: Optional[datetime] = None
    closed_loop: Optional[bool] = None
    distance_m: Optional[float] = None
    perimeter_m: Optional[float] = None


@dataclass
class StoredPoint:
    raw_point: LatLng
    snapped_point: Optional[LatLng] = None
    accuracy: Optional[float] = None
    speed: Optional[float] = None


@dataclass
class LivePlayer:
    display_name: str
    is_live: bool
    point: Optional[LatLng] = None
    trail_wkt: Optional[str] = None
    updates: int = 0


@dataclass
class InMemoryStorage:
    """Records every call; failure knobs simulate backend rejections.

    ``session_error``/``claim_error`` raise ``StoragePolicyError`` with the given
    message, ``live_error`` raises ``StorageError`` on every publish, and
    ``point_policy`` may return a rejection message per raw point (for example
    a city-boundary check).
    """

    session_error: Optional[str] = None
    claim_error: Optional[str] = None
    live_error: Optional[str] = None
    point_policy: Optional[PointPolicy] = None
    claim_message: str = DEFAULT_CLAIM_MESSAGE
    sessions: Dict[str, StoredSession] = field(default_factory=dict)
    points: Dict[Tuple[str, datetime], StoredPoint] = field(default_factory=dict)
    claims: List[Dict[str, Any]] = field(default_factory=list)
    live_players: Dict[Tuple[str, str], LivePlayer] = field(default_factory=dict)
    live_calls: List[Dict[str, Any]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def create_session(
        self,
        participant_id: str,
        city_id: str,
        mode: TrackingMode,
        live_mode: bool,
        started_at: datetime,
    ) -> str:
        if self.session_error:
            raise StoragePolicyError(self.session_error)
        session_id = str(uuid.uuid4())
        with self._lock:
            self.sessions[session_id] = StoredSession(
                id=session_id,
                participant_id=participant_id,
                city_id=city_id,
                mode=TrackingMode.parse(mode),
                live_mode=live_mode,
                started_at=started_at,
            )
        return session_id

    def upsert_point(
        self,
        session_id: str,
        timestamp: datetime,
        raw_point: LatLng,
        snapped_point: Optional[LatLng] = None,
        accuracy: Optional[float] = None,
        speed: Optional[float] = None,
    ) -> None:
        if self.point_policy is not None:
            rejection = self.point_policy(raw_point)
            if rejection:
                raise StoragePolicyError(rejection)
        key = (session_id, timestamp)
        with self._lock:
            if session_id not in self.sessions:
                raise StorageError(f"Unknown session {session_id}")
            existing = self.points.get(key)
            if existing is None:
                self.points[key] = StoredPoint(raw_point, snapped_point, accuracy, speed)
                return
            existing.raw_point = raw_point
            existing.accuracy = accuracy
            existing.speed = speed
            if snapped_point is not None:
                existing.snapped_point = snapped_point

    def claim_territory(
        self,
        participant_id: str,
        city_id: str,
        session_id: str,
        polygon_wkt: str,
    ) -> ClaimResult:
        if self.claim_error:
            raise StoragePolicyError(self.claim_error)
        record = {
            "participant_id": participant_id,
            "city_id": city_id,
            "session_id": session_id,
            "polygon_wkt": polygon_wkt,
        }
        with self._lock:
            self.claims.append(record)
            territory_id = len(self.claims)
        return ClaimResult(message=self.claim_message, data={"territory_id": territory_id})

    def finalize_session(
        self,
        session_id: str,
        ended_at: datetime,
        closed_loop: bool,
        distance_m: float,
        perimeter_m: float,
    ) -> None:
        with self._lock:
            stored = self.sessions.get(session_id)
            if stored is None:
                raise StorageError(f"Unknown session {session_id}")
            stored.ended_at = ended_at
            stored.closed_loop = closed_loop
            stored.distance_m = distance_m
            stored.perimeter_m = perimeter_m

    def publish_live_position(
        self,
        participant_id: str,
        city_id: str,
        display_name: str,
        point: Optional[LatLng],
        trail_wkt: Optional[str],
        is_live: bool,
    ) -> None:
        with self._lock:
            self.live_calls.append(
                {
                    "participant_id": participant_id,
                    "city_id": city_id,
                    "point": point,
                    "trail_wkt": trail_wkt,
                    "is_live": is_live,
                }
            )
        if self.live_error:
            raise StorageError(self.live_error)
        with self._lock:
            player = self.live_players.setdefault(
                (participant_id, city_id), LivePlayer(display_name, is_live)
            )
            player.display_name = display_name
            player.is_live = is_live
            if is_live:
                player.point = point
                player.trail_wkt = trail_wkt
            player.updates += 1


__all__ = ["InMemoryStorage", "LivePlayer", "StoredPoint", "StoredSession"]
