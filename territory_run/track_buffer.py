"""Ordered, timestamp-keyed store of record for the active session's fixes."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Tuple

from .local_store import KeyValueStore, MemoryStore
from .models import Fix

STORAGE_KEY = "territoryrun_session_buffer"


class TrackBuffer:
    """Append-only track with snap merges and local persistence.

    ``append`` keeps the first fix seen for a timestamp. ``merge`` only ever
    fills in snapped coordinates of fixes already present, so it is idempotent
    and commutative with appends: a late snap result for an older fix lands on
    the right entry regardless of how many fixes arrived since.
    """

    def __init__(self, store: KeyValueStore | None = None, key: str = STORAGE_KEY):
        self._store = store if store is not None else MemoryStore()
        self._key = key
        self._fixes: List[Fix] = []
        self._index: Dict[datetime, int] = {}
        self._lock = threading.RLock()
        self._persist_lock = threading.Lock()
        self._log = logging.getLogger(self.__class__.__name__)

    def __len__(self) -> int:
        with self._lock:
            return len(self._fixes)

    def fixes(self) -> Tuple[Fix, ...]:
        with self._lock:
            return tuple(self._fixes)

    def window(self, size: int) -> List[Fix]:
        """Return the ``size`` most recent fixes."""

        with self._lock:
            return list(self._fixes[-size:]) if size > 0 else []

    def append(self, fix: Fix) -> bool:
        """Add ``fix``; returns False when its timestamp is already recorded."""

        with self._lock:
            if fix.timestamp in self._index:
                self._log.debug("Ignoring duplicate fix at %s", fix.timestamp)
                return False
            if self._fixes and fix.timestamp < self._fixes[-1].timestamp:
                # Providers occasionally deliver a stale cached reading.
                self._log.debug(
                    "Out-of-order fix at %s (last=%s)",
                    fix.timestamp,
                    self._fixes[-1].timestamp,
                )
            self._index[fix.timestamp] = len(self._fixes)
            self._fixes.append(fix)
            return True

    def merge(self, fixes: Iterable[Fix]) -> List[Fix]:
        """Apply snapped coordinates by timestamp; returns the fixes that changed."""

        changed: List[Fix] = []
        with self._lock:
            for incoming in fixes:
                position = self._index.get(incoming.timestamp)
                if position is None:
                    continue
                snapped = incoming.snapped_point
                if snapped is None:
                    continue
                current = self._fixes[position]
                if current.snapped and current.snapped_point == snapped:
                    continue
                updated = current.with_snap(*snapped)
                self._fixes[position] = updated
                changed.append(updated)
        return changed

    def _serialise(self) -> str:
        with self._lock:
            payload = [fix.to_dict() for fix in self._fixes]
        return json.dumps(payload, separators=(",", ":"))

    def persist(self) -> None:
        """Write a consistent snapshot of the whole track to the local store."""

        with self._persist_lock:
            self._store.set(self._key, self._serialise())

    def rehydrate(self) -> int:
        """Replace the in-memory track with the last persisted snapshot."""

        raw = self._store.get(self._key)
        loaded: List[Fix] = []
        if raw:
            try:
                loaded = [Fix.from_dict(item) for item in json.loads(raw)]
            except (ValueError, KeyError, TypeError) as exc:
                self._log.warning("Discarding unreadable persisted track: %s", exc)
                loaded = []
        with self._lock:
            self._fixes = []
            self._index = {}
            for fix in loaded:
                if fix.timestamp in self._index:
                    continue
                self._index[fix.timestamp] = len(self._fixes)
                self._fixes.append(fix)
            count = len(self._fixes)
        self._log.info("Rehydrated %d fixes from local store", count)
        return count

    def clear(self) -> None:
        with self._persist_lock:
            with self._lock:
                self._fixes = []
                self._index = {}
            self._store.delete(self._key)


__all__ = ["TrackBuffer", "STORAGE_KEY"]
