"""Server-side SQLite store: users, auth tokens and per-user entries."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import aiosqlite

from stillmind.core.entry import count_words
from stillmind.utils.timeutils import now_ms

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT UNIQUE NOT NULL,
    created_at INTEGER NOT NULL,
    last_login INTEGER
);

CREATE TABLE IF NOT EXISTS auth_tokens (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    token TEXT UNIQUE NOT NULL,
    email TEXT NOT NULL,
    type TEXT NOT NULL,  -- 'magic' or 'session'
    expires_at INTEGER NOT NULL,
    used INTEGER NOT NULL DEFAULT 0,
    created_at INTEGER NOT NULL,
    client_ip TEXT
);

CREATE TABLE IF NOT EXISTS entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id),
    client_id TEXT,
    timestamp INTEGER NOT NULL,
    duration INTEGER,
    entry TEXT NOT NULL,
    prompt_id TEXT,
    word_count INTEGER NOT NULL DEFAULT 0,
    created_at INTEGER NOT NULL,
    last_modified INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_auth_tokens_expires ON auth_tokens(expires_at);
CREATE INDEX IF NOT EXISTS idx_entries_user_timestamp ON entries(user_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_entries_user_client ON entries(user_id, client_id);
"""

_ENTRY_COLUMNS = "id, timestamp, duration, entry, prompt_id, word_count, created_at, last_modified"


class ServerDatabase:
    """Async access to the service database.

    All timestamps are epoch milliseconds. Entry queries are always
    scoped to a user id.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._conn: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        if self._db_path != Path(":memory:"):
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.executescript(SCHEMA)
        await self._conn.commit()
        logger.info("Service database initialized: %s", self._db_path)

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _ensure_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    # ========== Users ==========

    async def create_user(self, email: str) -> int:
        """Create the user if needed. Returns the user id."""
        conn = self._ensure_conn()
        normalized = email.lower()
        await conn.execute(
            "INSERT INTO users (email, created_at) VALUES (?, ?) ON CONFLICT DO NOTHING",
            (normalized, now_ms()),
        )
        await conn.commit()
        user = await self.get_user_by_email(normalized)
        if user is None:
            raise RuntimeError(f"User {normalized} missing after insert")
        return int(user["id"])

    async def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        conn = self._ensure_conn()
        async with conn.execute("SELECT * FROM users WHERE email = ?", (email.lower(),)) as cursor:
            row = await cursor.fetchone()
        return dict(row) if row else None

    async def update_last_login(self, user_id: int) -> None:
        conn = self._ensure_conn()
        await conn.execute("UPDATE users SET last_login = ? WHERE id = ?", (now_ms(), user_id))
        await conn.commit()

    # ========== Tokens ==========

    async def save_token(
        self,
        token: str,
        email: str,
        token_type: str,
        expires_at: int,
        client_ip: str | None = None,
    ) -> None:
        conn = self._ensure_conn()
        await conn.execute(
            """INSERT INTO auth_tokens (token, email, type, expires_at, created_at, client_ip)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (token, email.lower(), token_type, expires_at, now_ms(), client_ip),
        )
        await conn.commit()

    async def get_token(self, token: str, token_type: str) -> dict[str, Any] | None:
        conn = self._ensure_conn()
        async with conn.execute(
            "SELECT * FROM auth_tokens WHERE token = ? AND type = ?", (token, token_type)
        ) as cursor:
            row = await cursor.fetchone()
        return dict(row) if row else None

    async def mark_token_used(self, token: str) -> None:
        conn = self._ensure_conn()
        await conn.execute("UPDATE auth_tokens SET used = 1 WHERE token = ?", (token,))
        await conn.commit()

    async def delete_token(self, token: str) -> None:
        conn = self._ensure_conn()
        await conn.execute("DELETE FROM auth_tokens WHERE token = ?", (token,))
        await conn.commit()

    async def cleanup_expired_tokens(self) -> int:
        conn = self._ensure_conn()
        cursor = await conn.execute("DELETE FROM auth_tokens WHERE expires_at < ?", (now_ms(),))
        await conn.commit()
        return cursor.rowcount

    # ========== Entries ==========

    async def create_entry(self, user_id: int, data: dict[str, Any]) -> int:
        """Insert an entry. Returns the new server id.

        ``data`` uses wire names: timestamp, duration, entry, promptId,
        clientId, createdAt, lastModified.
        """
        conn = self._ensure_conn()
        now = now_ms()
        timestamp = data.get("timestamp") or now
        last_modified = data.get("lastModified") or now
        created_at = data.get("createdAt") or timestamp
        created_at = min(created_at, last_modified)
        content = data["entry"]

        cursor = await conn.execute(
            """INSERT INTO entries
               (user_id, client_id, timestamp, duration, entry, prompt_id,
                word_count, created_at, last_modified)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                user_id,
                data.get("clientId"),
                timestamp,
                data.get("duration") or None,
                content,
                data.get("promptId") or None,
                count_words(content),
                created_at,
                last_modified,
            ),
        )
        await conn.commit()
        if cursor.lastrowid is None:
            raise RuntimeError("Insert returned no row id")
        return cursor.lastrowid

    async def list_entries(self, user_id: int, limit: int = 50, offset: int = 0) -> list[dict[str, Any]]:
        conn = self._ensure_conn()
        async with conn.execute(
            f"""SELECT {_ENTRY_COLUMNS} FROM entries
                WHERE user_id = ?
                ORDER BY timestamp DESC, id DESC
                LIMIT ? OFFSET ?""",
            (user_id, limit, offset),
        ) as cursor:
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def get_entry(self, user_id: int, entry_id: int) -> dict[str, Any] | None:
        conn = self._ensure_conn()
        async with conn.execute(
            f"SELECT {_ENTRY_COLUMNS} FROM entries WHERE user_id = ? AND id = ?",
            (user_id, entry_id),
        ) as cursor:
            row = await cursor.fetchone()
        return dict(row) if row else None

    async def find_entry_by_client_id(self, user_id: int, client_id: str) -> int | None:
        conn = self._ensure_conn()
        async with conn.execute(
            "SELECT id FROM entries WHERE user_id = ? AND client_id = ?", (user_id, client_id)
        ) as cursor:
            row = await cursor.fetchone()
        return int(row["id"]) if row else None

    async def update_entry(self, user_id: int, entry_id: int, data: dict[str, Any]) -> bool:
        """Overwrite content fields. Returns False if not found or not owned."""
        conn = self._ensure_conn()
        content = data["entry"]
        cursor = await conn.execute(
            """UPDATE entries
               SET entry = ?, duration = ?, prompt_id = ?, word_count = ?, last_modified = ?
               WHERE user_id = ? AND id = ?""",
            (
                content,
                data.get("duration") or None,
                data.get("promptId") or None,
                count_words(content),
                data.get("lastModified") or now_ms(),
                user_id,
                entry_id,
            ),
        )
        await conn.commit()
        return cursor.rowcount > 0

    async def delete_entry(self, user_id: int, entry_id: int) -> bool:
        conn = self._ensure_conn()
        cursor = await conn.execute(
            "DELETE FROM entries WHERE user_id = ? AND id = ?", (user_id, entry_id)
        )
        await conn.commit()
        return cursor.rowcount > 0
