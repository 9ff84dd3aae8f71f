"""Core data structures for StillMind."""

from stillmind.core.entry import (
    ByClientId,
    ById,
    ByServerId,
    Entry,
    EntryRef,
    SyncStatus,
    count_words,
)

__all__ = [
    "ByClientId",
    "ById",
    "ByServerId",
    "Entry",
    "EntryRef",
    "SyncStatus",
    "count_words",
]
