"""HTTP plumbing shared by the map-matching and storage clients."""

from .response_handling import extract_error, safe_json
from .session import create_match_session, create_session, create_storage_session

__all__ = [
    "create_session",
    "create_match_session",
    "create_storage_session",
    "extract_error",
    "safe_json",
]
