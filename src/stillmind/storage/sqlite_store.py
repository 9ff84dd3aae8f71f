"""SQLite storage backend for the local journal."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

import aiosqlite

from stillmind.errors import StorageUnavailable
from stillmind.storage.base import EntryStore
from stillmind.storage.sqlite_entries import SQLiteEntryMixin
from stillmind.storage.sqlite_schema import SCHEMA, SCHEMA_VERSION, run_migrations
from stillmind.storage.sqlite_settings import SQLiteSettingsMixin

logger = logging.getLogger(__name__)


class SQLiteEntryStore(SQLiteEntryMixin, SQLiteSettingsMixin, EntryStore):
    """SQLite-based entry store.

    Data persists to disk and survives restarts.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path).resolve()
        self._conn: aiosqlite.Connection | None = None

    @property
    def db_path(self) -> Path:
        return self._db_path

    async def initialize(self) -> None:
        """Open the database and bring the schema up to date.

        Raises:
            StorageUnavailable: If the database cannot be opened
        """
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = await aiosqlite.connect(self._db_path)
            self._conn.row_factory = aiosqlite.Row

            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA synchronous=NORMAL")

            await self._conn.execute(
                "CREATE TABLE IF NOT EXISTS schema_version (version INTEGER PRIMARY KEY)"
            )
            await self._conn.commit()

            async with self._conn.execute("SELECT version FROM schema_version") as cursor:
                row = await cursor.fetchone()

            if row is not None and row["version"] < SCHEMA_VERSION:
                await run_migrations(self._conn, row["version"])

            await self._conn.executescript(SCHEMA)

            if row is None:
                await self._conn.execute(
                    "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
                )
                await self._conn.commit()
        except (OSError, sqlite3.Error) as e:
            await self.close()
            raise StorageUnavailable(f"Cannot open journal database at {self._db_path}") from e

        logger.info("Journal database opened: %s", self._db_path)

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _ensure_conn(self) -> aiosqlite.Connection:
        """Ensure the connection is available."""
        if self._conn is None:
            raise StorageUnavailable("Database not initialized. Call initialize() first.")
        return self._conn
