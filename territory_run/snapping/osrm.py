"""Thin client for an OSRM-compatible ``/match`` endpoint."""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

import requests

from ..config import MATCH_REQUEST_TIMEOUT, OSRM_BASE_URL
from ..errors import MatchServiceError
from ..http_client import create_match_session, extract_error, safe_json
from ..models import LatLng

LOGGER = logging.getLogger(__name__)

# Per-input alignment: (lat, lng) or None when the service dropped the point.
Alignment = List[Optional[LatLng]]


class OsrmMatchClient:
    """Map a window of (lat, lng) points onto the network for one profile."""

    def __init__(
        self,
        base_url: str = OSRM_BASE_URL,
        *,
        session: requests.Session | None = None,
        timeout: float = MATCH_REQUEST_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or create_match_session()
        self.timeout = timeout

    def build_url(self, points: Sequence[LatLng], profile: str) -> str:
        coords = ";".join(f"{lng:.6f},{lat:.6f}" for lat, lng in points)
        return f"{self.base_url}/match/v1/{profile}/{coords}"

    def match(self, points: Sequence[LatLng], profile: str) -> Alignment:
        """Return the alignment for ``points``; raises ``MatchServiceError`` on failure.

        The alignment is OSRM's ``tracepoints`` list, index-aligned with the
        request. Network errors propagate as ``requests.RequestException`` so the
        caller can record them alongside service errors.
        """

        if not points:
            return []
        url = self.build_url(points, profile)
        params = {"geometries": "geojson", "overview": "full", "tidy": "true"}
        LOGGER.debug("GET %s profile=%s points=%d", self.base_url, profile, len(points))
        response = self.session.get(url, params=params, timeout=self.timeout)
        if response.status_code >= 400:
            detail = extract_error(response)
            message = f"OSRM {profile} failed (status {response.status_code})"
            raise MatchServiceError(f"{message} | {detail}" if detail else message)
        data = safe_json(response)
        if not isinstance(data, dict):
            raise MatchServiceError(f"OSRM {profile} returned a non-JSON payload")
        code = data.get("code")
        if code != "Ok":
            detail = data.get("message") or code or "unknown error"
            raise MatchServiceError(f"OSRM {profile} returned {detail}")
        return _parse_tracepoints(data.get("tracepoints"), len(points))


def _parse_tracepoints(raw: Any, expected: int) -> Alignment:
    if not isinstance(raw, list):
        raise MatchServiceError("OSRM response missing tracepoints")
    if len(raw) != expected:
        LOGGER.warning(
            "OSRM tracepoints length mismatch (expected=%d got=%d); merging by position",
            expected,
            len(raw),
        )
    return [_parse_location(entry) for entry in raw[:expected]]


def _parse_location(entry: Any) -> Optional[LatLng]:
    if not isinstance(entry, dict):
        return None
    location = entry.get("location")
    if not isinstance(location, (list, tuple)) or len(location) < 2:
        return None
    try:
        lng, lat = float(location[0]), float(location[1])
    except (TypeError, ValueError):
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        return None
    return (lat, lng)


__all__ = ["Alignment", "OsrmMatchClient"]
