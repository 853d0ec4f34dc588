"""Snap-to-path reconciliation."""

from .osrm import OsrmMatchClient
from .profiles import resolve_profiles
from .reconciler import MatchClient, SnapReconciler, apply_alignment

__all__ = [
    "MatchClient",
    "OsrmMatchClient",
    "SnapReconciler",
    "apply_alignment",
    "resolve_profiles",
]
