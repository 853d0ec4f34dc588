"""Central error types used across the application."""

from __future__ import annotations


class TerritoryRunError(RuntimeError):
    """Base error for tracking, snapping and storage failures."""


class SessionStartError(TerritoryRunError):
    """Raised when a session cannot be started (identity, city or storage)."""


class StorageError(TerritoryRunError):
    """Raised when the storage collaborator request fails."""


class StoragePolicyError(StorageError):
    """Raised when the storage collaborator rejects a request on policy grounds."""


class MatchServiceError(TerritoryRunError):
    """Raised when a map-matching request fails for a single profile."""


class TrackFormatError(TerritoryRunError):
    """Raised when a recorded track file cannot be parsed."""


__all__ = [
    "TerritoryRunError",
    "SessionStartError",
    "StorageError",
    "StoragePolicyError",
    "MatchServiceError",
    "TrackFormatError",
]
