"""Storage layer - Persistent de-duplication state."""

from bullhorn.storage.models import Base, SeenEventModel
from bullhorn.storage.seen import SeenEventStore, StoreError, sqlite_url

__all__ = [
    "Base",
    "SeenEventModel",
    "SeenEventStore",
    "StoreError",
    "sqlite_url",
]
