"""Local entry storage backends."""

from stillmind.storage.base import EntryStore
from stillmind.storage.factory import open_entry_store
from stillmind.storage.memory_store import InMemoryEntryStore
from stillmind.storage.sqlite_store import SQLiteEntryStore

__all__ = [
    "EntryStore",
    "InMemoryEntryStore",
    "SQLiteEntryStore",
    "open_entry_store",
]
