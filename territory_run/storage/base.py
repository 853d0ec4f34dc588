"""Contract of the remote storage/claim collaborator."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Protocol

from ..models import LatLng, TrackingMode

DEFAULT_CLAIM_MESSAGE = "Territory claimed!"


@dataclass(slots=True)
class ClaimResult:
    message: str
    data: Any = None


class StorageCollaborator(Protocol):
    """Remote procedures the session controller depends on.

    Implementations raise ``StorageError`` (or ``StoragePolicyError`` for
    policy rejections such as boundary violations); the controller turns those
    into status data.
    """

    def create_session(
        self,
        participant_id: str,
        city_id: str,
        mode: TrackingMode,
        live_mode: bool,
        started_at: datetime,
    ) -> str: ...

    def upsert_point(
        self,
        session_id: str,
        timestamp: datetime,
        raw_point: LatLng,
        snapped_point: Optional[LatLng] = None,
        accuracy: Optional[float] = None,
        speed: Optional[float] = None,
    ) -> None: ...

    def claim_territory(
        self,
        participant_id: str,
        city_id: str,
        session_id: str,
        polygon_wkt: str,
    ) -> ClaimResult: ...

    def finalize_session(
        self,
        session_id: str,
        ended_at: datetime,
        closed_loop: bool,
        distance_m: float,
        perimeter_m: float,
    ) -> None: ...

    def publish_live_position(
        self,
        participant_id: str,
        city_id: str,
        display_name: str,
        point: Optional[LatLng],
        trail_wkt: Optional[str],
        is_live: bool,
    ) -> None: ...


__all__ = ["ClaimResult", "DEFAULT_CLAIM_MESSAGE", "StorageCollaborator"]
