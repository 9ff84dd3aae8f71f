"""Abstract base class for local entry storage backends."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import replace
from typing import Any

from stillmind.core.entry import ByClientId, ById, ByServerId, Entry, EntryRef, SyncStatus
from stillmind.utils.timeutils import now_ms

logger = logging.getLogger(__name__)


class EntryStore(ABC):
    """
    Abstract interface for the on-device journal store.

    Implementations provide durable CRUD over entries, status-indexed
    queries and an opaque settings map. The store is the source of truth
    while offline; the sync engine is its only writer besides the UI.
    """

    async def initialize(self) -> None:  # noqa: B027
        """Open the backing store. No-op by default."""

    async def close(self) -> None:  # noqa: B027
        """Release the backing store. No-op by default."""

    # ========== Entry Operations ==========

    @abstractmethod
    async def put(self, entry: Entry) -> int:
        """
        Insert or overwrite an entry by id.

        Defaults (created_at, last_modified, word_count, sync_status,
        client_id) are filled before persisting.

        Args:
            entry: The entry to save

        Returns:
            The entry id

        Raises:
            ValidationError: If the entry violates an invariant
            StorageError: If the write fails
        """
        ...

    @abstractmethod
    async def get(self, entry_id: int) -> Entry | None:
        """Get an entry by local id.

        Raises:
            StorageError: If the read fails (a missing entry returns None)
        """
        ...

    @abstractmethod
    async def list(self, limit: int = 20, offset: int = 0) -> list[Entry]:
        """
        List visible entries, most recently modified first.

        Tombstones are excluded. There is no snapshot isolation between
        pages: concurrent writes may shift entries across calls.
        """
        ...

    @abstractmethod
    async def delete(self, entry_id: int) -> None:
        """Remove an entry by id. Deleting a missing id is not an error."""
        ...

    @abstractmethod
    async def list_unsynced(self) -> list[Entry]:
        """All entries whose sync_status is not synced, tombstones included."""
        ...

    @abstractmethod
    async def resolve(self, ref: EntryRef) -> Entry | None:
        """Look up an entry by local id, client id or server id."""
        ...

    @abstractmethod
    async def count(self) -> int:
        """Number of stored entries, tombstones included."""
        ...

    @abstractmethod
    async def clear_user_data(self) -> None:
        """Remove every entry (used on logout). Settings are kept."""
        ...

    @abstractmethod
    async def mark_pushed(self, entry_ids: Iterable[int]) -> None:
        """Record that these entries were sent to the server.

        Called before the request goes out, so an entry whose create
        reply was lost is still known to exist remotely.
        """
        ...

    # ========== Settings ==========

    @abstractmethod
    async def get_setting(self, key: str, default: Any = None) -> Any:
        """Get an opaque setting value, or default if absent or unreadable."""
        ...

    @abstractmethod
    async def put_setting(self, key: str, value: Any) -> None:
        """Store an opaque, JSON-serializable setting value (last write wins)."""
        ...

    @abstractmethod
    async def delete_setting(self, key: str) -> None:
        """Remove a setting. Missing keys are ignored."""
        ...

    # ========== Sync State ==========

    async def mark_synced(self, identifier: EntryRef | int | str) -> bool:
        """
        Set sync_status to synced for the referenced entry.

        Raw identifiers are matched by local id first, then by client id
        (strings) or server id (integers).

        Returns:
            True if an entry was updated
        """
        entry = await self._lookup(identifier)
        if entry is None:
            logger.debug("mark_synced: no entry matches %r", identifier)
            return False
        if entry.sync_status != SyncStatus.SYNCED:
            await self.put(replace(entry, sync_status=SyncStatus.SYNCED))
        return True

    async def set_server_id(self, entry_id: int, server_id: int) -> bool:
        """
        Record the server id of an entry and mark it synced.

        A server id is assigned at most once; a conflicting id is logged
        and ignored.

        Returns:
            True if the entry exists
        """
        entry = await self.get(entry_id)
        if entry is None:
            logger.warning("set_server_id: entry %s not found", entry_id)
            return False

        current = entry.server_id
        if current is not None and current != server_id:
            logger.warning(
                "Entry %s already has server id %s, ignoring %s",
                entry_id,
                current,
                server_id,
            )
            server_id = current

        await self.put(replace(entry, server_id=server_id, sync_status=SyncStatus.SYNCED))
        return True

    async def remove(self, entry_id: int) -> None:
        """User delete.

        Entries never sent to the server are dropped immediately. Anything
        that may exist remotely becomes a tombstone that the next push
        deletes by server id or client id.
        """
        entry = await self.get(entry_id)
        if entry is None:
            return
        if entry.server_id is None and not entry.pushed:
            await self.delete(entry_id)
            return
        stamp = max(now_ms(), entry.last_modified or 0)
        await self.put(
            replace(entry, deleted=True, last_modified=stamp, sync_status=SyncStatus.LOCAL)
        )

    async def _lookup(self, identifier: EntryRef | int | str) -> Entry | None:
        if isinstance(identifier, ById | ByClientId | ByServerId):
            return await self.resolve(identifier)
        if isinstance(identifier, bool):
            return None
        if isinstance(identifier, int):
            entry = await self.resolve(ById(identifier))
            if entry is None:
                entry = await self.resolve(ByServerId(identifier))
            return entry
        if isinstance(identifier, str):
            return await self.resolve(ByClientId(identifier))
        return None
