"""Snap windows of raw fixes onto the path network with profile fallback."""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional, Protocol, Sequence

import requests

from ..config import SNAP_BATCH_SIZE
from ..errors import MatchServiceError
from ..models import Fix, LatLng, SnapOutcome, TrackingMode
from .profiles import resolve_profiles


class MatchClient(Protocol):
    def match(self, points: Sequence[LatLng], profile: str) -> List[Optional[LatLng]]: ...


class SnapReconciler:
    """Best-effort snapping of the most recent fixes.

    Each profile in the ladder is tried once per batch. The first profile whose
    alignment contains at least one coordinate wins and its alignment is applied
    by request position; earlier failed attempts contribute nothing. When every
    profile fails the window comes back unmodified and the batch is reported as
    snap-failed, which never interrupts tracking.
    """

    def __init__(
        self,
        client: MatchClient | None = None,
        *,
        batch_size: int = SNAP_BATCH_SIZE,
        profile_resolver: Callable[[TrackingMode], List[str]] = resolve_profiles,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if client is None:
            from .osrm import OsrmMatchClient

            client = OsrmMatchClient()
        self.client = client
        self.batch_size = batch_size
        self._profile_resolver = profile_resolver
        self._lock = threading.Lock()
        self._last_submitted = 0
        self._last_error: Optional[str] = None
        self._log = logging.getLogger(self.__class__.__name__)

    @property
    def last_error(self) -> Optional[str]:
        with self._lock:
            return self._last_error

    @property
    def last_submitted(self) -> int:
        with self._lock:
            return self._last_submitted

    def reset(self, submitted: int = 0) -> None:
        with self._lock:
            self._last_submitted = max(0, submitted)
            self._last_error = None

    def next_window(self, fixes: Sequence[Fix]) -> Optional[List[Fix]]:
        """Claim the next window once the track grew by a full batch.

        Returns None when there is nothing new to snap, which guarantees the
        same window is never submitted twice.
        """

        count = len(fixes)
        with self._lock:
            if count < self.batch_size:
                return None
            if count - self._last_submitted < self.batch_size:
                return None
            self._last_submitted = count
        return list(fixes[-self.batch_size :])

    def reconcile(self, window: Sequence[Fix], mode: TrackingMode | str) -> SnapOutcome:
        mode = TrackingMode.parse(mode)
        window = list(window)
        if not window:
            return SnapOutcome(fixes=[])
        points = [fix.raw for fix in window]
        failures: List[str] = []
        attempts: List[str] = []
        for profile in self._profile_resolver(mode):
            attempts.append(profile)
            try:
                alignment = self.client.match(points, profile)
            except (MatchServiceError, requests.RequestException) as exc:
                failures.append(f"{profile}: {exc}")
                self._log.info("Snap profile %s failed: %s", profile, exc)
                continue
            if not any(location is not None for location in alignment):
                failures.append(f"{profile}: empty match")
                self._log.debug("Snap profile %s returned no alignment", profile)
                continue
            snapped = apply_alignment(window, alignment)
            with self._lock:
                self._last_error = None
            self._log.debug(
                "Snapped %d/%d fixes with profile=%s",
                sum(1 for fix in snapped if fix.snapped),
                len(snapped),
                profile,
            )
            return SnapOutcome(fixes=snapped, profile=profile, attempts=attempts)

        error = "; ".join(failures) or "no map-matching profiles configured"
        with self._lock:
            self._last_error = error
        self._log.warning("Snap batch failed for %d fixes: %s", len(window), error)
        return SnapOutcome(
            fixes=[fix.unsnapped() for fix in window],
            error=error,
            attempts=attempts,
        )


def apply_alignment(
    window: Sequence[Fix], alignment: Sequence[Optional[LatLng]]
) -> List[Fix]:
    """Apply ``alignment`` to ``window`` by position; gaps stay unsnapped."""

    merged: List[Fix] = []
    for index, fix in enumerate(window):
        location = alignment[index] if index < len(alignment) else None
        if location is None:
            merged.append(fix.unsnapped())
            continue
        merged.append(fix.with_snap(*location))
    return merged


__all__ = ["MatchClient", "SnapReconciler", "apply_alignment"]
