"""SQLite entry operations mixin."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from stillmind.core.entry import (
    ByClientId,
    ById,
    ByServerId,
    Entry,
    EntryRef,
    SyncStatus,
    normalize_entry,
)
from stillmind.errors import StorageError

if TYPE_CHECKING:
    import aiosqlite

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, client_id, server_id, content, created_at, last_modified, "
    "duration_minutes, prompt_id, word_count, sync_status, deleted, pushed"
)


class SQLiteEntryMixin:
    """Mixin: CRUD and status queries over the entries table."""

    def _ensure_conn(self) -> aiosqlite.Connection:
        raise NotImplementedError

    async def put(self, entry: Entry) -> int:
        normalized = normalize_entry(entry)
        conn = self._ensure_conn()

        try:
            # server_id and pushed never revert once recorded
            await conn.execute(
                f"""INSERT INTO entries ({_COLUMNS})
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       client_id = excluded.client_id,
                       server_id = COALESCE(excluded.server_id, entries.server_id),
                       content = excluded.content,
                       created_at = excluded.created_at,
                       last_modified = excluded.last_modified,
                       duration_minutes = excluded.duration_minutes,
                       prompt_id = excluded.prompt_id,
                       word_count = excluded.word_count,
                       sync_status = excluded.sync_status,
                       deleted = excluded.deleted,
                       pushed = MAX(excluded.pushed, entries.pushed)""",
                (
                    normalized.id,
                    normalized.client_id,
                    normalized.server_id,
                    normalized.content,
                    normalized.created_at,
                    normalized.last_modified,
                    normalized.duration_minutes,
                    normalized.prompt_id,
                    normalized.word_count,
                    normalized.sync_status.value,
                    1 if normalized.deleted else 0,
                    1 if normalized.pushed else 0,
                ),
            )
            await conn.commit()
        except sqlite3.Error as e:
            logger.error("Error saving entry %s", normalized.id, exc_info=True)
            raise StorageError(f"Failed to save entry {normalized.id}") from e

        logger.debug("Entry saved: %s", normalized.id)
        return normalized.id

    async def get(self, entry_id: int) -> Entry | None:
        return await self._fetch_one("SELECT * FROM entries WHERE id = ?", (entry_id,))

    async def list(self, limit: int = 20, offset: int = 0) -> list[Entry]:
        return await self._fetch_many(
            """SELECT * FROM entries WHERE deleted = 0
               ORDER BY last_modified DESC, id DESC
               LIMIT ? OFFSET ?""",
            (max(limit, 0), max(offset, 0)),
        )

    async def delete(self, entry_id: int) -> None:
        conn = self._ensure_conn()
        try:
            await conn.execute("DELETE FROM entries WHERE id = ?", (entry_id,))
            await conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete entry {entry_id}") from e
        logger.debug("Entry deleted: %s", entry_id)

    async def list_unsynced(self) -> list[Entry]:
        entries = await self._fetch_many(
            "SELECT * FROM entries WHERE sync_status != ? ORDER BY id ASC",
            (SyncStatus.SYNCED.value,),
        )
        logger.debug("Found %d unsynced entries", len(entries))
        return entries

    async def resolve(self, ref: EntryRef) -> Entry | None:
        if isinstance(ref, ById):
            return await self.get(ref.id)
        if isinstance(ref, ByClientId):
            return await self._fetch_one(
                "SELECT * FROM entries WHERE client_id = ? ORDER BY id LIMIT 1",
                (ref.client_id,),
            )
        if isinstance(ref, ByServerId):
            return await self._fetch_one(
                "SELECT * FROM entries WHERE server_id = ? ORDER BY id LIMIT 1",
                (ref.server_id,),
            )
        return None

    async def count(self) -> int:
        conn = self._ensure_conn()
        async with conn.execute("SELECT COUNT(*) AS n FROM entries") as cursor:
            row = await cursor.fetchone()
        return int(row["n"]) if row else 0

    async def clear_user_data(self) -> None:
        conn = self._ensure_conn()
        try:
            await conn.execute("DELETE FROM entries")
            await conn.commit()
        except sqlite3.Error as e:
            raise StorageError("Failed to clear user data") from e
        logger.info("User data cleared")

    async def mark_pushed(self, entry_ids: Iterable[int]) -> None:
        ids = list(entry_ids)
        if not ids:
            return
        conn = self._ensure_conn()
        placeholders = ", ".join("?" for _ in ids)
        try:
            await conn.execute(
                f"UPDATE entries SET pushed = 1 WHERE id IN ({placeholders})", tuple(ids)
            )
            await conn.commit()
        except sqlite3.Error as e:
            raise StorageError("Failed to mark entries as pushed") from e

    # ── Row helpers ─────────────────────────────────────────────────

    async def _fetch_one(self, sql: str, params: tuple[Any, ...]) -> Entry | None:
        conn = self._ensure_conn()
        try:
            async with conn.execute(sql, params) as cursor:
                row = await cursor.fetchone()
        except sqlite3.DatabaseError as e:
            logger.error("Error fetching entry", exc_info=True)
            raise StorageError("Failed to read entry") from e
        if row is None:
            return None
        return _row_to_entry(row)

    async def _fetch_many(self, sql: str, params: tuple[Any, ...]) -> list[Entry]:
        conn = self._ensure_conn()
        try:
            async with conn.execute(sql, params) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.DatabaseError:
            logger.error("Error fetching entries", exc_info=True)
            return []
        return _rows_to_entries(rows)


def _rows_to_entries(rows: Iterable[Any]) -> list[Entry]:
    entries: list[Entry] = []
    for row in rows:
        entry = _row_to_entry(row)
        if entry is not None:
            entries.append(entry)
    return entries


def _row_to_entry(row: Any) -> Entry | None:
    """Convert a database row to an Entry. Corrupt rows are logged and skipped."""
    try:
        return Entry(
            id=int(row["id"]),
            content=str(row["content"] or ""),
            client_id=row["client_id"],
            server_id=int(row["server_id"]) if row["server_id"] is not None else None,
            created_at=int(row["created_at"]),
            last_modified=int(row["last_modified"]),
            duration_minutes=(
                int(row["duration_minutes"]) if row["duration_minutes"] is not None else None
            ),
            prompt_id=row["prompt_id"],
            word_count=int(row["word_count"] or 0),
            sync_status=SyncStatus(row["sync_status"]),
            deleted=bool(row["deleted"]),
            pushed=bool(row["pushed"]),
        )
    except (KeyError, TypeError, ValueError):
        logger.warning("Skipping corrupt entry row: %r", tuple(row), exc_info=True)
        return None
