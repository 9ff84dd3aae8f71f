"""SQLite schema definition for the local journal store."""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import aiosqlite

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 3

# Each entry maps (from_version -> to_version) with a list of SQL statements.
# Migrations run sequentially in initialize() when db version < SCHEMA_VERSION.
MIGRATIONS: dict[tuple[int, int], list[str]] = {
    (1, 2): [
        "ALTER TABLE entries ADD COLUMN deleted INTEGER NOT NULL DEFAULT 0",
    ],
    (2, 3): [
        "ALTER TABLE entries ADD COLUMN pushed INTEGER NOT NULL DEFAULT 0",
        "UPDATE entries SET pushed = 1 WHERE server_id IS NOT NULL",
    ],
}


async def run_migrations(conn: aiosqlite.Connection, current_version: int) -> int:
    """Apply all pending migrations from current_version to SCHEMA_VERSION.

    Returns the final schema version after all migrations.
    """
    version = current_version

    while version < SCHEMA_VERSION:
        next_version = version + 1

        for sql in MIGRATIONS.get((version, next_version), []):
            try:
                await conn.execute(sql)
            except sqlite3.OperationalError as e:
                # Column may already exist after a partial migration
                if "duplicate column" in str(e).lower() or "already exists" in str(e).lower():
                    logger.debug("Migration already applied: %s", e)
                else:
                    raise

        version = next_version

    await conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))
    await conn.commit()

    return version


SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Journal entries, keyed by creation timestamp (ms)
CREATE TABLE IF NOT EXISTS entries (
    id INTEGER PRIMARY KEY,
    client_id TEXT NOT NULL,
    server_id INTEGER,
    content TEXT NOT NULL DEFAULT '',
    created_at INTEGER NOT NULL,
    last_modified INTEGER NOT NULL,
    duration_minutes INTEGER,
    prompt_id TEXT,
    word_count INTEGER NOT NULL DEFAULT 0,
    sync_status TEXT NOT NULL DEFAULT 'local',
    deleted INTEGER NOT NULL DEFAULT 0,
    pushed INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_entries_sync_status ON entries(sync_status);
CREATE INDEX IF NOT EXISTS idx_entries_last_modified ON entries(last_modified);
CREATE INDEX IF NOT EXISTS idx_entries_client_id ON entries(client_id);
CREATE INDEX IF NOT EXISTS idx_entries_server_id ON entries(server_id);

-- Opaque key/value settings (JSON values)
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""
