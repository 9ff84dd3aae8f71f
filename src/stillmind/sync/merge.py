"""Last-write-wins merge of remote entries into the local store."""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from stillmind.core.entry import Entry, SyncStatus, count_words

if TYPE_CHECKING:
    from stillmind.storage.base import EntryStore
    from stillmind.sync.protocol import RemoteEntry

logger = logging.getLogger(__name__)


class MergeOutcome(StrEnum):
    """What happened to one remote entry during the pull phase."""

    INSERTED = "inserted"  # absent locally
    UPDATED = "updated"  # remote strictly newer, local overwritten
    IGNORED = "ignored"  # local same-or-newer, remote discarded


def remote_wins(local: Entry | None, remote: RemoteEntry) -> bool:
    """Decide a conflict by modification time.

    The remote record wins only when the local one is absent or strictly
    older; ties keep the local record.
    """
    if local is None:
        return True
    return (local.last_modified or 0) < remote.last_modified


def entry_from_remote(remote: RemoteEntry, local: Entry | None = None) -> Entry:
    """Build the local representation of a remote record.

    Local identity fields (client id, an already assigned server id,
    the original creation time) survive the overwrite.
    """
    server_id = remote.server_id
    created_at = remote.created_at
    client_id = None
    if local is not None:
        client_id = local.client_id
        if local.server_id is not None:
            server_id = local.server_id
        if local.created_at is not None:
            created_at = local.created_at
    if created_at is not None and created_at > remote.last_modified:
        created_at = remote.last_modified

    return Entry(
        id=remote.local_id,
        content=remote.content,
        client_id=client_id,
        server_id=server_id,
        created_at=created_at,
        last_modified=remote.last_modified,
        duration_minutes=remote.duration_minutes,
        prompt_id=remote.prompt_id,
        word_count=count_words(remote.content),
        sync_status=SyncStatus.SYNCED,
        pushed=True,
    )


async def merge_remote_entry(store: EntryStore, remote: RemoteEntry) -> MergeOutcome:
    """Merge one remote entry into the store.

    Each call reads and writes a single entry, so a failure part way
    through a pull leaves earlier merges in place. Merging the same
    remote entry twice is a no-op the second time.
    """
    local = await store.get(remote.local_id)

    if not remote_wins(local, remote):
        logger.debug(
            "Conflict ignored for entry %s: local %s >= remote %s",
            remote.local_id,
            local.last_modified if local else None,
            remote.last_modified,
        )
        return MergeOutcome.IGNORED

    await store.put(entry_from_remote(remote, local))
    return MergeOutcome.INSERTED if local is None else MergeOutcome.UPDATED
