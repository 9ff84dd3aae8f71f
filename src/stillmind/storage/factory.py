"""Storage factory for creating the local entry store from configuration."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from stillmind.errors import StorageUnavailable
from stillmind.storage.memory_store import InMemoryEntryStore
from stillmind.storage.sqlite_store import SQLiteEntryStore

if TYPE_CHECKING:
    from stillmind.storage.base import EntryStore
    from stillmind.unified_config import UnifiedConfig

logger = logging.getLogger(__name__)


async def open_entry_store(config: UnifiedConfig) -> EntryStore:
    """
    Open the configured entry store.

    SQLite is the durable default. When the database cannot be opened the
    store degrades to an in-memory one so the app keeps working for the
    session; unsynced writes are lost at exit in that mode.

    Args:
        config: Client configuration

    Returns:
        An initialized EntryStore
    """
    if config.storage.backend == "memory":
        return InMemoryEntryStore()

    store = SQLiteEntryStore(config.db_path)
    try:
        await store.initialize()
    except StorageUnavailable:
        logger.warning(
            "Journal database unavailable at %s, falling back to in-memory store",
            config.db_path,
            exc_info=True,
        )
        return InMemoryEntryStore()
    return store
