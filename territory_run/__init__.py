"""GPS loop tracking, path snapping and territory claims."""

from .eligibility import EligibilityRules, evaluate
from .errors import SessionStartError, StorageError, TerritoryRunError
from .models import EligibilitySnapshot, Fix, Session, TrackingMode
from .session_controller import SessionController

__all__ = [
    "EligibilityRules",
    "EligibilitySnapshot",
    "Fix",
    "Session",
    "SessionController",
    "SessionStartError",
    "StorageError",
    "TerritoryRunError",
    "TrackingMode",
    "evaluate",
]
