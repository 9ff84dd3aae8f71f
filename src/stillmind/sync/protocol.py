"""Wire structures exchanged with the remote entry service."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from stillmind.core.entry import Entry

logger = logging.getLogger(__name__)


class SyncAction(StrEnum):
    """Per-item outcome of a batch sync request."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    ERROR = "error"


def parse_timestamp_ms(value: Any) -> int | None:
    """Parse a remote timestamp into epoch milliseconds.

    Accepts integers (ms), numeric strings and ISO-8601 / SQLite
    ``YYYY-MM-DD HH:MM:SS`` strings. Naive datetimes are taken as UTC.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.lstrip("-").isdigit():
            return int(text)
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Unparsable remote timestamp: %r", value)
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return int(parsed.timestamp() * 1000)
    return None


@dataclass(frozen=True)
class PushItem:
    """A single element of a batch push: an entry or a tombstone."""

    entry_id: int
    client_id: str
    server_id: int | None
    content: str
    duration_minutes: int | None
    prompt_id: str | None
    created_at: int | None
    last_modified: int | None
    deleted: bool = False

    @classmethod
    def from_entry(cls, entry: Entry) -> PushItem:
        return cls(
            entry_id=entry.id,
            client_id=entry.client_id or "",
            server_id=entry.server_id,
            content=entry.content,
            duration_minutes=entry.duration_minutes,
            prompt_id=entry.prompt_id,
            created_at=entry.created_at,
            last_modified=entry.last_modified,
            deleted=entry.deleted,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.server_id,
            "clientId": self.client_id,
            "timestamp": self.entry_id,
            "entry": self.content,
            "duration": self.duration_minutes,
            "promptId": self.prompt_id,
            "createdAt": self.created_at,
            "lastModified": self.last_modified,
            "deleted": self.deleted,
        }


@dataclass(frozen=True)
class BatchResult:
    """Outcome reported by the server for one pushed element."""

    action: SyncAction
    server_id: int | None = None
    client_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.action != SyncAction.ERROR

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BatchResult | None:
        """Create from dictionary. Returns None if the action is missing or unknown."""
        try:
            action = SyncAction(data.get("action"))
        except ValueError:
            return None

        raw_id = data.get("id")
        server_id: int | None = None
        client_id = data.get("clientId")
        if isinstance(raw_id, int) and not isinstance(raw_id, bool):
            server_id = raw_id
        elif isinstance(raw_id, str):
            # Error results echo whichever identity the element carried
            if raw_id.isdigit():
                server_id = int(raw_id)
            elif client_id is None:
                client_id = raw_id

        return cls(
            action=action,
            server_id=server_id,
            client_id=client_id,
            error=data.get("error"),
        )


@dataclass(frozen=True)
class RemoteEntry:
    """An entry as served by ``GET /entries``.

    ``local_id`` is the creating device's id (the ``timestamp`` column);
    records without one are keyed by their server id.
    """

    server_id: int | None
    local_id: int
    content: str
    last_modified: int
    created_at: int | None = None
    duration_minutes: int | None = None
    prompt_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteEntry | None:
        """Create from dictionary. Returns None if required fields are missing."""
        raw_server_id = data.get("id")
        server_id = raw_server_id if isinstance(raw_server_id, int) else None
        local_id = parse_timestamp_ms(data.get("timestamp"))
        if local_id is None:
            local_id = server_id
        if local_id is None or local_id <= 0:
            return None

        content = data.get("entry")
        if not isinstance(content, str):
            return None

        created_at = parse_timestamp_ms(data.get("created_at"))
        last_modified = parse_timestamp_ms(data.get("last_modified"))
        if last_modified is None:
            last_modified = created_at if created_at is not None else local_id
        if created_at is not None and created_at > last_modified:
            created_at = last_modified

        duration = data.get("duration")
        return cls(
            server_id=server_id,
            local_id=local_id,
            content=content,
            last_modified=last_modified,
            created_at=created_at,
            duration_minutes=duration if isinstance(duration, int) and duration > 0 else None,
            prompt_id=data.get("prompt_id"),
        )
