"""Shared HTTP response helpers for the routing and storage backends."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests
from requests.exceptions import JSONDecodeError as RequestsJSONDecodeError


__all__ = ["extract_error", "safe_json"]


def extract_error(resp: Optional[requests.Response]) -> Optional[str]:
    """Return compact string with backend error info (message + details) if present."""

    if resp is None:
        return None
    data = safe_json(resp)
    if data is None:
        return _extract_error_text(resp)
    if not isinstance(data, dict):
        return None
    parts = _collect_error_parts(data)
    return " | ".join(parts) if parts else None


def safe_json(resp: requests.Response) -> Optional[Any]:
    """Safely parse JSON; return None if parsing fails."""

    try:
        return resp.json()
    except (
        ValueError,
        RequestsJSONDecodeError,
    ) as exc:  # pragma: no cover - logging path
        logging.debug(
            "Failed to decode JSON from %s: %s", getattr(resp, "url", "?"), exc
        )
        return None


def _extract_error_text(resp: requests.Response) -> Optional[str]:
    """Best-effort plain-text extraction when JSON parsing fails."""

    text = getattr(resp, "text", "")
    if not isinstance(text, str):
        return None
    trimmed = text.strip()
    if not trimmed:
        return None
    return (trimmed[:297] + "...") if len(trimmed) > 300 else trimmed


def _collect_error_parts(data: Dict[str, Any]) -> List[str]:
    """Build error snippets from PostgREST and OSRM error bodies.

    PostgREST returns ``message``/``details``/``hint``/``code``; OSRM returns
    ``code`` and ``message``. The message always comes first so callers can
    surface it verbatim.
    """

    parts: List[str] = []
    message = data.get("message") or data.get("error")
    if message:
        parts.append(str(message))
    for key in ("details", "hint"):
        value = data.get(key)
        if value:
            parts.append(str(value))
    code = data.get("code")
    if code and not parts:
        parts.append(str(code))
    return parts
