"""Storage/claim collaborator implementations."""

from .base import ClaimResult, StorageCollaborator
from .memory import InMemoryStorage
from .rest import RestStorageClient

__all__ = [
    "ClaimResult",
    "InMemoryStorage",
    "RestStorageClient",
    "StorageCollaborator",
]
