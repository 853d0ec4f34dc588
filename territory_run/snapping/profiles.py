"""Movement-profile fallback ladder for map matching."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

from ..config import MATCH_CYCLE_PROFILE, MATCH_WALK_PROFILE
from ..models import TrackingMode

# Semantic profiles first, "driving" last: it is the one profile every OSRM
# deployment is most likely to serve.
_FALLBACKS: Dict[TrackingMode, Tuple[str, ...]] = {
    TrackingMode.CYCLE: ("cycling", "bike", "driving"),
    TrackingMode.WALK_RUN: ("walking", "foot", "driving"),
}

_CONFIGURED: Dict[TrackingMode, str] = {
    TrackingMode.CYCLE: MATCH_CYCLE_PROFILE,
    TrackingMode.WALK_RUN: MATCH_WALK_PROFILE,
}


def dedupe(values: Iterable[Optional[str]]) -> List[str]:
    """Drop blanks and repeats while keeping first-seen order."""

    seen: set[str] = set()
    ordered: List[str] = []
    for value in values:
        if not value:
            continue
        name = value.strip()
        if not name or name in seen:
            continue
        seen.add(name)
        ordered.append(name)
    return ordered


def resolve_profiles(
    mode: TrackingMode | str,
    configured: Optional[str] = None,
) -> List[str]:
    """Return the ordered profile candidates for ``mode``.

    ``configured`` overrides the environment-provided preferred profile; pass
    an empty string to ignore it.
    """

    mode = TrackingMode.parse(mode)
    preferred = _CONFIGURED[mode] if configured is None else configured
    return dedupe([preferred, *_FALLBACKS[mode]])


__all__ = ["dedupe", "resolve_profiles"]
