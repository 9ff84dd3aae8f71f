"""StillMind - offline-first journaling with multi-device sync."""

from stillmind.core.entry import Entry, EntryRef, SyncStatus
from stillmind.errors import (
    AuthError,
    NetworkError,
    SessionExpired,
    StillMindError,
    StorageError,
    StorageUnavailable,
    ValidationError,
)

__version__ = "0.1.0"

__all__ = [
    # Core models
    "Entry",
    "EntryRef",
    "SyncStatus",
    # Errors
    "StillMindError",
    "ValidationError",
    "AuthError",
    "SessionExpired",
    "NetworkError",
    "StorageError",
    "StorageUnavailable",
    # Version
    "__version__",
]
