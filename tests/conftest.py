"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio

from stillmind.auth.session import TOKEN_KEY
from stillmind.storage.memory_store import InMemoryEntryStore
from stillmind.storage.sqlite_store import SQLiteEntryStore


@pytest.fixture
def memory_store() -> InMemoryEntryStore:
    """Create an empty in-memory store."""
    return InMemoryEntryStore()


@pytest_asyncio.fixture
async def sqlite_store(tmp_path: Path) -> AsyncGenerator[SQLiteEntryStore, None]:
    """Create an initialized SQLite store in a temp directory."""
    store = SQLiteEntryStore(tmp_path / "journal.db")
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def signed_in_store(memory_store: InMemoryEntryStore) -> InMemoryEntryStore:
    """In-memory store holding a persisted session token."""
    await memory_store.put_setting(TOKEN_KEY, "session-token")
    return memory_store
