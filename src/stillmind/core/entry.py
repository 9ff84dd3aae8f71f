"""Journal entry data structures."""

from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass, replace
from enum import StrEnum

from stillmind.errors import ValidationError
from stillmind.utils.timeutils import now_ms


class SyncStatus(StrEnum):
    """Where an entry stands relative to the remote service."""

    LOCAL = "local"  # created or modified before the last successful push
    OFFLINE = "offline"  # created while disconnected
    SYNCED = "synced"  # reconciled with server state


def count_words(text: str | None) -> int:
    """Count whitespace-delimited non-empty tokens."""
    if not text or not isinstance(text, str):
        return 0
    return len(text.split())


def new_client_id(now: int | None = None) -> str:
    """Generate an opaque client-side correlation id."""
    return f"local_{now if now is not None else now_ms()}_{secrets.token_hex(5)[:9]}"


_id_lock = threading.Lock()
_last_issued_id = 0


def next_entry_id() -> int:
    """Issue a local entry id: the creation time in ms, strictly increasing."""
    global _last_issued_id
    with _id_lock:
        candidate = max(now_ms(), _last_issued_id + 1)
        _last_issued_id = candidate
        return candidate


@dataclass(frozen=True)
class Entry:
    """
    A single journal record.

    Entries are immutable; edits produce a new instance via ``revise``
    and are persisted with ``EntryStore.put``.

    Attributes:
        id: Local identity, the creation timestamp in ms (primary key)
        content: Free-form text body
        client_id: Opaque id correlating a local entry with its server record
        server_id: Id assigned by the remote service, None until first synced
        created_at: Creation time (ms epoch), immutable once set
        last_modified: Time of the most recent mutation (ms epoch)
        duration_minutes: Optional positive writing duration
        prompt_id: Optional reference to a writing prompt
        word_count: Derived from content
        sync_status: Local sync state
        deleted: Tombstone awaiting server-side deletion
        pushed: Sent to the server at least once, whether or not a reply arrived
    """

    id: int
    content: str = ""
    client_id: str | None = None
    server_id: int | None = None
    created_at: int | None = None
    last_modified: int | None = None
    duration_minutes: int | None = None
    prompt_id: str | None = None
    word_count: int = 0
    sync_status: SyncStatus = SyncStatus.LOCAL
    deleted: bool = False
    pushed: bool = False

    @classmethod
    def create(
        cls,
        content: str,
        duration_minutes: int | None = None,
        prompt_id: str | None = None,
        *,
        offline: bool = False,
        entry_id: int | None = None,
    ) -> Entry:
        """
        Factory method to create a new local entry.

        Args:
            content: The entry text
            duration_minutes: Optional writing duration
            prompt_id: Optional prompt reference
            offline: Mark the entry as created while disconnected
            entry_id: Explicit id (issued from the clock if not provided)

        Returns:
            A new, not yet persisted Entry
        """
        eid = entry_id if entry_id is not None else next_entry_id()
        return cls(
            id=eid,
            content=content,
            client_id=new_client_id(eid),
            created_at=eid,
            last_modified=eid,
            duration_minutes=duration_minutes,
            prompt_id=prompt_id,
            word_count=count_words(content),
            sync_status=SyncStatus.OFFLINE if offline else SyncStatus.LOCAL,
        )

    def revise(
        self,
        *,
        content: str | None = None,
        duration_minutes: int | None = None,
        prompt_id: str | None = None,
        now: int | None = None,
    ) -> Entry:
        """Return an edited copy marked for the next push."""
        new_content = self.content if content is None else content
        stamp = now if now is not None else now_ms()
        if self.created_at is not None:
            stamp = max(stamp, self.created_at)
        return replace(
            self,
            content=new_content,
            duration_minutes=(
                self.duration_minutes if duration_minutes is None else duration_minutes
            ),
            prompt_id=self.prompt_id if prompt_id is None else prompt_id,
            word_count=count_words(new_content),
            last_modified=stamp,
            sync_status=SyncStatus.LOCAL,
        )

    @property
    def is_synced(self) -> bool:
        return self.sync_status == SyncStatus.SYNCED


def normalize_entry(entry: Entry, *, now: int | None = None) -> Entry:
    """Fill defaults and enforce entry invariants before persisting.

    Raises:
        ValidationError: If the entry cannot be made consistent
    """
    if not isinstance(entry.id, int) or isinstance(entry.id, bool) or entry.id <= 0:
        raise ValidationError(f"Entry id must be a positive integer, got {entry.id!r}")
    if not isinstance(entry.content, str):
        raise ValidationError("Entry content must be a string")
    if entry.duration_minutes is not None and (
        not isinstance(entry.duration_minutes, int) or entry.duration_minutes <= 0
    ):
        raise ValidationError(
            f"duration_minutes must be a positive integer, got {entry.duration_minutes!r}"
        )

    last_modified = entry.last_modified if entry.last_modified is not None else (
        now if now is not None else now_ms()
    )
    if entry.created_at is None:
        created_at = min(entry.id, last_modified)
    else:
        created_at = entry.created_at
        if last_modified < created_at:
            raise ValidationError(
                f"Entry {entry.id}: last_modified {last_modified} precedes created_at {created_at}"
            )

    return replace(
        entry,
        client_id=entry.client_id or new_client_id(entry.id),
        created_at=created_at,
        last_modified=last_modified,
        word_count=count_words(entry.content),
        sync_status=SyncStatus(entry.sync_status or SyncStatus.LOCAL),
    )


# ── Entry references ─────────────────────────────────────────────────


@dataclass(frozen=True)
class ById:
    """Reference an entry by its local id."""

    id: int


@dataclass(frozen=True)
class ByClientId:
    """Reference an entry by its client correlation id."""

    client_id: str


@dataclass(frozen=True)
class ByServerId:
    """Reference an entry by its server-assigned id."""

    server_id: int


EntryRef = ById | ByClientId | ByServerId
