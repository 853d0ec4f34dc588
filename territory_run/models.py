"""Dataclasses describing fixes, sessions and derived tracking state."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

# (lat, lng) in WGS84 degrees.
LatLng = Tuple[float, float]


class TrackingMode(str, Enum):
    WALK_RUN = "walk_run"
    CYCLE = "cycle"

    @classmethod
    def parse(cls, value: "TrackingMode | str") -> "TrackingMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown tracking mode: {value!r}") from exc


class SessionState(str, Enum):
    IDLE = "idle"
    TRACKING = "tracking"
    PAUSED = "paused"
    STOPPING = "stopping"
    STOPPED = "stopped"


def parse_timestamp(value: Any) -> datetime:
    """Return a timezone-aware datetime for ISO strings, epoch seconds or datetimes."""

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    text = str(value).strip()
    try:
        return datetime.fromtimestamp(float(text), tz=timezone.utc)
    except ValueError:
        pass
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class Fix:
    """One GPS sample. Raw coordinates never change; snapping only adds fields."""

    lat: float
    lng: float
    timestamp: datetime
    accuracy: Optional[float] = None
    speed_mps: Optional[float] = None
    snapped: bool = False
    snapped_lat: Optional[float] = None
    snapped_lng: Optional[float] = None

    @property
    def raw(self) -> LatLng:
        return (self.lat, self.lng)

    @property
    def snapped_point(self) -> Optional[LatLng]:
        if self.snapped_lat is None or self.snapped_lng is None:
            return None
        return (self.snapped_lat, self.snapped_lng)

    @property
    def best(self) -> LatLng:
        """Best-estimate coordinate: snapped when available, raw otherwise."""

        snapped = self.snapped_point
        return snapped if snapped is not None else self.raw

    def with_snap(self, lat: float, lng: float) -> "Fix":
        return replace(self, snapped=True, snapped_lat=float(lat), snapped_lng=float(lng))

    def unsnapped(self) -> "Fix":
        """Copy flagged as not snapped by the current batch (existing fields kept)."""

        return replace(self, snapped=self.snapped_point is not None)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "lat": self.lat,
            "lng": self.lng,
            "ts": format_timestamp(self.timestamp),
            "snapped": self.snapped,
        }
        if self.accuracy is not None:
            payload["accuracy"] = self.accuracy
        if self.speed_mps is not None:
            payload["speed"] = self.speed_mps
        if self.snapped_point is not None:
            payload["snappedLat"] = self.snapped_lat
            payload["snappedLng"] = self.snapped_lng
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Fix":
        snapped_lat = payload.get("snappedLat")
        snapped_lng = payload.get("snappedLng")
        has_snap = snapped_lat is not None and snapped_lng is not None
        return cls(
            lat=float(payload["lat"]),
            lng=float(payload["lng"]),
            timestamp=parse_timestamp(payload["ts"]),
            accuracy=_optional_float(payload.get("accuracy")),
            speed_mps=_optional_float(payload.get("speed")),
            snapped=bool(payload.get("snapped", False)) and has_snap,
            snapped_lat=float(snapped_lat) if has_snap else None,
            snapped_lng=float(snapped_lng) if has_snap else None,
        )


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(slots=True)
class TrackingStatus:
    is_tracking: bool = False
    paused: bool = False
    error: Optional[str] = None
    wake_lock_supported: bool = False
    wake_lock_active: bool = False


@dataclass(slots=True)
class Participant:
    id: str
    display_name: str


@dataclass(slots=True)
class City:
    id: str
    name: str = ""
    center_lat: Optional[float] = None
    center_lng: Optional[float] = None
    default_zoom: Optional[float] = None


@dataclass(slots=True)
class Session:
    id: str
    participant_id: str
    city_id: str
    mode: TrackingMode
    live_mode: bool
    started_at: datetime
    ended_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "participant_id": self.participant_id,
            "city_id": self.city_id,
            "mode": self.mode.value,
            "live_mode": self.live_mode,
            "started_at": format_timestamp(self.started_at),
            "ended_at": format_timestamp(self.ended_at) if self.ended_at else None,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Session":
        ended = payload.get("ended_at")
        return cls(
            id=str(payload["id"]),
            participant_id=str(payload["participant_id"]),
            city_id=str(payload["city_id"]),
            mode=TrackingMode.parse(payload["mode"]),
            live_mode=bool(payload.get("live_mode", False)),
            started_at=parse_timestamp(payload["started_at"]),
            ended_at=parse_timestamp(ended) if ended else None,
        )


@dataclass(frozen=True, slots=True)
class EligibilitySnapshot:
    elapsed_seconds: float = 0.0
    point_count: int = 0
    path_length_m: float = 0.0
    close_enough: bool = False
    perimeter_estimate_m: float = 0.0
    claimable: bool = False


@dataclass(slots=True)
class SnapOutcome:
    """Result of one snap batch; ``fixes`` is index-aligned with the request."""

    fixes: list[Fix]
    profile: Optional[str] = None
    error: Optional[str] = None
    attempts: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.profile is not None


class ClaimStatus(str, Enum):
    CLAIMED = "claimed"
    REJECTED = "rejected"
    REQUIREMENTS_UNMET = "requirements_unmet"
    NOT_ENOUGH_POINTS = "not_enough_points"
    NO_SESSION = "no_session"


@dataclass(slots=True)
class StopOutcome:
    status: ClaimStatus
    message: str
    snapshot: EligibilitySnapshot
    session_id: Optional[str] = None
    claim_data: Any = None
    finalized: bool = False

    @property
    def claimed(self) -> bool:
        return self.status is ClaimStatus.CLAIMED
