"""In-memory entry store, used for tests and as the degraded fallback."""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable
from dataclasses import replace
from typing import Any

from stillmind.core.entry import (
    ByClientId,
    ById,
    ByServerId,
    Entry,
    EntryRef,
    SyncStatus,
    normalize_entry,
)
from stillmind.storage.base import EntryStore

logger = logging.getLogger(__name__)


class InMemoryEntryStore(EntryStore):
    """Dict-backed store.

    Data is lost when the process exits.
    """

    def __init__(self) -> None:
        self._entries: dict[int, Entry] = {}
        self._settings: dict[str, Any] = {}

    async def put(self, entry: Entry) -> int:
        normalized = normalize_entry(entry)
        existing = self._entries.get(normalized.id)
        if existing is not None:
            # server_id and pushed never revert once recorded
            normalized = replace(
                normalized,
                server_id=(
                    normalized.server_id
                    if normalized.server_id is not None
                    else existing.server_id
                ),
                pushed=normalized.pushed or existing.pushed,
            )
        self._entries[normalized.id] = normalized
        logger.debug("Entry saved: %s", normalized.id)
        return normalized.id

    async def get(self, entry_id: int) -> Entry | None:
        return self._entries.get(entry_id)

    async def list(self, limit: int = 20, offset: int = 0) -> list[Entry]:
        visible = [e for e in self._entries.values() if not e.deleted]
        visible.sort(key=lambda e: (e.last_modified or 0, e.id), reverse=True)
        return visible[max(offset, 0) : max(offset, 0) + max(limit, 0)]

    async def delete(self, entry_id: int) -> None:
        self._entries.pop(entry_id, None)

    async def list_unsynced(self) -> list[Entry]:
        return sorted(
            (e for e in self._entries.values() if e.sync_status != SyncStatus.SYNCED),
            key=lambda e: e.id,
        )

    async def resolve(self, ref: EntryRef) -> Entry | None:
        if isinstance(ref, ById):
            return self._entries.get(ref.id)
        for entry in self._entries.values():
            if isinstance(ref, ByClientId) and entry.client_id == ref.client_id:
                return entry
            if isinstance(ref, ByServerId) and entry.server_id == ref.server_id:
                return entry
        return None

    async def count(self) -> int:
        return len(self._entries)

    async def clear_user_data(self) -> None:
        self._entries.clear()
        logger.info("User data cleared")

    async def mark_pushed(self, entry_ids: Iterable[int]) -> None:
        for entry_id in entry_ids:
            entry = self._entries.get(entry_id)
            if entry is not None:
                self._entries[entry_id] = replace(entry, pushed=True)

    async def get_setting(self, key: str, default: Any = None) -> Any:
        if key not in self._settings:
            return default
        return copy.deepcopy(self._settings[key])

    async def put_setting(self, key: str, value: Any) -> None:
        self._settings[key] = copy.deepcopy(value)

    async def delete_setting(self, key: str) -> None:
        self._settings.pop(key, None)
