"""Tests for the storage factory."""

from __future__ import annotations

from pathlib import Path

from stillmind.storage.factory import open_entry_store
from stillmind.storage.memory_store import InMemoryEntryStore
from stillmind.storage.sqlite_store import SQLiteEntryStore
from stillmind.unified_config import StorageConfig, UnifiedConfig


async def test_memory_backend(tmp_path: Path) -> None:
    config = UnifiedConfig(data_dir=tmp_path, storage=StorageConfig(backend="memory"))

    store = await open_entry_store(config)

    assert isinstance(store, InMemoryEntryStore)


async def test_sqlite_backend(tmp_path: Path) -> None:
    config = UnifiedConfig(data_dir=tmp_path)

    store = await open_entry_store(config)
    try:
        assert isinstance(store, SQLiteEntryStore)
        assert (tmp_path / "journal.db").exists()
    finally:
        await store.close()


async def test_unavailable_sqlite_degrades_to_memory(tmp_path: Path) -> None:
    (tmp_path / "journal.db").mkdir()
    config = UnifiedConfig(data_dir=tmp_path)

    store = await open_entry_store(config)

    assert isinstance(store, InMemoryEntryStore)
