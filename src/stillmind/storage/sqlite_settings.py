"""SQLite mixin for opaque settings persistence."""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import TYPE_CHECKING, Any

from stillmind.errors import StorageError

if TYPE_CHECKING:
    import aiosqlite

logger = logging.getLogger(__name__)


class SQLiteSettingsMixin:
    """Mixin: key/value settings stored as JSON text."""

    def _ensure_conn(self) -> aiosqlite.Connection:
        raise NotImplementedError

    async def get_setting(self, key: str, default: Any = None) -> Any:
        conn = self._ensure_conn()

        try:
            async with conn.execute("SELECT value FROM settings WHERE key = ?", (key,)) as cursor:
                row = await cursor.fetchone()
        except sqlite3.DatabaseError:
            logger.error("Error fetching setting %r", key, exc_info=True)
            return default

        if row is None:
            return default

        try:
            return json.loads(row["value"])
        except (json.JSONDecodeError, TypeError):
            logger.warning("Corrupt setting value for %r, using default", key)
            return default

    async def put_setting(self, key: str, value: Any) -> None:
        conn = self._ensure_conn()
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Setting {key!r} is not JSON-serializable") from e

        try:
            await conn.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                (key, payload),
            )
            await conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save setting {key!r}") from e
        logger.debug("Setting saved: %s", key)

    async def delete_setting(self, key: str) -> None:
        conn = self._ensure_conn()
        try:
            await conn.execute("DELETE FROM settings WHERE key = ?", (key,))
            await conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete setting {key!r}") from e
