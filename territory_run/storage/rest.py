"""PostgREST-backed storage client (sessions, points, live players, claims).

Geometries are sent as EWKT strings (``SRID=4326;POINT(lng lat)``) and
validated server-side; this client never second-guesses a polygon. Error
bodies are surfaced verbatim so claim rejections reach the participant as the
server phrased them.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

import requests

from ..config import (
    REQUEST_TIMEOUT,
    STORAGE_ACCESS_TOKEN,
    STORAGE_API_KEY,
    STORAGE_BASE_URL,
)
from ..errors import StorageError, StoragePolicyError
from ..geometry import point_wkt, to_ewkt
from ..http_client import create_storage_session, extract_error, safe_json
from ..models import LatLng, TrackingMode, format_timestamp
from .base import DEFAULT_CLAIM_MESSAGE, ClaimResult

LOGGER = logging.getLogger(__name__)

# Client errors that represent a server-side rule rejecting the request.
_POLICY_STATUSES = {400, 401, 403, 409, 422}


class RestStorageClient:
    def __init__(
        self,
        base_url: str = STORAGE_BASE_URL,
        *,
        api_key: str = STORAGE_API_KEY,
        access_token: str = STORAGE_ACCESS_TOKEN,
        session: requests.Session | None = None,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required (set STORAGE_BASE_URL)")
        self.base_url = base_url.rstrip("/")
        self.session = session or create_storage_session(api_key, access_token)
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    def _url(self, path: str) -> str:
        return f"{self.base_url}/rest/v1/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        context: str,
        *,
        json_body: Any = None,
        params: Optional[Mapping[str, str]] = None,
        prefer: Optional[str] = None,
    ) -> Any:
        headers: Dict[str, str] = {}
        if prefer:
            headers["Prefer"] = prefer
        try:
            response = self.session.request(
                method,
                self._url(path),
                json=json_body,
                params=dict(params or {}),
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            LOGGER.warning("%s request failed: %s", context, exc)
            raise StorageError(f"{context} failed: {exc}") from exc
        status = response.status_code
        if status >= 400:
            detail = extract_error(response) or f"status {status}"
            if status in _POLICY_STATUSES:
                LOGGER.info("%s rejected (status %s): %s", context, status, detail)
                raise StoragePolicyError(detail)
            LOGGER.warning("%s failed (status %s): %s", context, status, detail)
            raise StorageError(detail)
        if status == 204 or not getattr(response, "content", b""):
            return None
        return safe_json(response)

    # ------------------------------------------------------------------
    # Collaborator contract
    # ------------------------------------------------------------------
    def create_session(
        self,
        participant_id: str,
        city_id: str,
        mode: TrackingMode,
        live_mode: bool,
        started_at: datetime,
    ) -> str:
        rows = self._request(
            "POST",
            "sessions",
            "Session create",
            json_body={
                "user_id": participant_id,
                "city_id": city_id,
                "mode": TrackingMode.parse(mode).value,
                "live_mode": live_mode,
                "started_at": format_timestamp(started_at),
            },
            params={"select": "id"},
            prefer="return=representation",
        )
        row = rows[0] if isinstance(rows, list) and rows else rows
        if not isinstance(row, dict) or not row.get("id"):
            raise StorageError("Session create returned no id")
        return str(row["id"])

    def upsert_point(
        self,
        session_id: str,
        timestamp: datetime,
        raw_point: LatLng,
        snapped_point: Optional[LatLng] = None,
        accuracy: Optional[float] = None,
        speed: Optional[float] = None,
    ) -> None:
        row: Dict[str, Any] = {
            "session_id": session_id,
            "ts": format_timestamp(timestamp),
            "raw_geom": to_ewkt(point_wkt(raw_point)),
            "accuracy_m": accuracy,
            "speed_mps": speed,
        }
        # Omitting the snapped columns keeps a previously stored snap intact
        # when the raw upsert lands after the snapped one.
        if snapped_point is not None:
            row["snapped_geom"] = to_ewkt(point_wkt(snapped_point))
            row["snapped"] = True
        self._request(
            "POST",
            "session_points",
            "Point upsert",
            json_body=row,
            params={"on_conflict": "session_id,ts"},
            prefer="resolution=merge-duplicates,return=minimal",
        )

    def claim_territory(
        self,
        participant_id: str,
        city_id: str,
        session_id: str,
        polygon_wkt: str,
    ) -> ClaimResult:
        data = self._request(
            "POST",
            "rpc/claim_territory",
            "Territory claim",
            json_body={
                "p_user_id": participant_id,
                "p_city_id": city_id,
                "p_session_id": session_id,
                "p_polygon": to_ewkt(polygon_wkt),
            },
        )
        message = DEFAULT_CLAIM_MESSAGE
        if isinstance(data, dict) and data.get("message"):
            message = str(data["message"])
        return ClaimResult(message=message, data=data)

    def finalize_session(
        self,
        session_id: str,
        ended_at: datetime,
        closed_loop: bool,
        distance_m: float,
        perimeter_m: float,
    ) -> None:
        self._request(
            "PATCH",
            "sessions",
            "Session finalize",
            json_body={
                "ended_at": format_timestamp(ended_at),
                "closed_loop": closed_loop,
                "distance_m": distance_m,
                "perimeter_m": perimeter_m,
            },
            params={"id": f"eq.{session_id}"},
            prefer="return=minimal",
        )

    def publish_live_position(
        self,
        participant_id: str,
        city_id: str,
        display_name: str,
        point: Optional[LatLng],
        trail_wkt: Optional[str],
        is_live: bool,
    ) -> None:
        now = format_timestamp(datetime.now(timezone.utc))
        if not is_live:
            self._request(
                "PATCH",
                "live_players",
                "Live offline",
                json_body={"is_live": False, "updated_at": now, "last_ts": now},
                params={"user_id": f"eq.{participant_id}", "city_id": f"eq.{city_id}"},
                prefer="return=minimal",
            )
            return
        self._request(
            "POST",
            "live_players",
            "Live upsert",
            json_body={
                "user_id": participant_id,
                "city_id": city_id,
                "username": display_name,
                "is_live": True,
                "last_ts": now,
                "last_point": to_ewkt(point_wkt(point)) if point else None,
                "last_trail": to_ewkt(trail_wkt) if trail_wkt else None,
            },
            params={"on_conflict": "user_id,city_id"},
            prefer="resolution=merge-duplicates,return=minimal",
        )


__all__ = ["RestStorageClient"]
