"""Key-value stores backing local (device) state.

The track buffer, the local profile and the selected city are stored as JSON
strings under fixed keys. ``JsonFileStore`` keeps one file per key and writes
through a temporary file so a crash never leaves a half-written value behind.
"""

from __future__ import annotations

import logging
import re
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol

from .config import LOCAL_STATE_DIR

_LOGGER = logging.getLogger(__name__)
_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """Process-local store, used in tests and throwaway runs."""

    def __init__(self, initial: Dict[str, str] | None = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._data)


class JsonFileStore:
    """Directory-backed store: ``<base>/<key>.json``."""

    def __init__(self, base_dir: str | Path | None = None) -> None:
        base = Path(base_dir if base_dir is not None else LOCAL_STATE_DIR)
        self._base_dir = base if base.is_absolute() else Path.cwd() / base
        self._lock = threading.Lock()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _file_path(self, key: str) -> Path:
        return self._base_dir / f"{_SAFE_KEY.sub('_', key)}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._file_path(key)
        try:
            with path.open("r", encoding="utf-8") as handle:
                return handle.read()
        except FileNotFoundError:
            return None
        except OSError as exc:
            _LOGGER.error("Failed reading local state file %s: %s", path, exc)
            return None

    def set(self, key: str, value: str) -> None:
        path = self._file_path(key)
        with self._lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = path.with_suffix(".tmp")
            with temp_path.open("w", encoding="utf-8") as handle:
                handle.write(value)
            temp_path.replace(path)

    def delete(self, key: str) -> None:
        with self._lock:
            try:
                self._file_path(key).unlink()
            except FileNotFoundError:
                return


__all__ = ["KeyValueStore", "MemoryStore", "JsonFileStore"]
