"""HTTP client for the remote entry service."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from stillmind.errors import NetworkError
from stillmind.sync.protocol import BatchResult, PushItem, RemoteEntry

if TYPE_CHECKING:
    from stillmind.auth.session import AuthSession, FetchResponse
    from stillmind.core.entry import Entry

logger = logging.getLogger(__name__)


class RemoteEntryClient:
    """
    Typed access to the ``/entries`` endpoints.

    All requests go through the auth session, so credential expiry
    surfaces as SessionExpired and transport failures as NetworkError.
    """

    def __init__(self, session: AuthSession, *, page_size: int = 100) -> None:
        self._session = session
        self._page_size = max(1, page_size)

    async def list_entries(self, limit: int = 50, offset: int = 0) -> list[RemoteEntry]:
        """Fetch one page of entries, newest first."""
        entries, _ = await self._fetch_page(limit, offset)
        return entries

    async def fetch_all_entries(self) -> list[RemoteEntry]:
        """Fetch the user's whole remote collection, page by page."""
        collected: list[RemoteEntry] = []
        offset = 0
        while True:
            entries, raw_count = await self._fetch_page(self._page_size, offset)
            collected.extend(entries)
            if raw_count < self._page_size:
                break
            offset += raw_count

        logger.debug("Fetched %d remote entries", len(collected))
        return collected

    async def _fetch_page(self, limit: int, offset: int) -> tuple[list[RemoteEntry], int]:
        """Returns the parsed entries and the number of records the server sent."""
        response = await self._session.authenticated_fetch(
            "/entries", params={"limit": limit, "offset": offset}
        )
        data = _expect_ok(response, "Failed to fetch entries")
        raw_entries = data.get("entries", []) if isinstance(data, dict) else []

        entries: list[RemoteEntry] = []
        for raw in raw_entries:
            remote = RemoteEntry.from_dict(raw) if isinstance(raw, dict) else None
            if remote is None:
                logger.warning("Skipping malformed remote entry: %r", raw)
                continue
            entries.append(remote)
        return entries, len(raw_entries)

    async def get_entry(self, server_id: int) -> RemoteEntry | None:
        response = await self._session.authenticated_fetch(f"/entries/{server_id}")
        if response.status == 404:
            return None
        data = _expect_ok(response, f"Failed to fetch entry {server_id}")
        return RemoteEntry.from_dict(data) if isinstance(data, dict) else None

    async def create_entry(self, entry: Entry) -> int:
        """Create a single entry. Returns the server id."""
        response = await self._session.authenticated_fetch(
            "/entries",
            method="POST",
            json={
                "timestamp": entry.id,
                "duration": entry.duration_minutes,
                "entry": entry.content,
                "promptId": entry.prompt_id,
            },
        )
        data = _expect_ok(response, "Failed to create entry")
        return int(data["id"])

    async def update_entry(self, server_id: int, entry: Entry) -> bool:
        """Update a single entry. Returns False if it is not found or not owned."""
        response = await self._session.authenticated_fetch(
            f"/entries/{server_id}",
            method="PUT",
            json={
                "duration": entry.duration_minutes,
                "entry": entry.content,
                "promptId": entry.prompt_id,
            },
        )
        if response.status == 404:
            return False
        _expect_ok(response, f"Failed to update entry {server_id}")
        return True

    async def delete_entry(self, server_id: int) -> bool:
        """Delete a single entry. Returns False if it is not found or not owned."""
        response = await self._session.authenticated_fetch(
            f"/entries/{server_id}", method="DELETE"
        )
        if response.status == 404:
            return False
        _expect_ok(response, f"Failed to delete entry {server_id}")
        return True

    async def sync_batch(self, items: Sequence[PushItem]) -> list[BatchResult]:
        """Push a batch of entries and tombstones in one request.

        The request as a whole either fails (NetworkError) or returns one
        result per element; per-element failures come back as
        ``action == "error"``.
        """
        response = await self._session.authenticated_fetch(
            "/entries/sync",
            method="POST",
            json={"entries": [item.to_dict() for item in items]},
        )
        data = _expect_ok(response, "Failed to sync entries")

        results: list[BatchResult] = []
        for raw in data.get("results", []) if isinstance(data, dict) else []:
            result = BatchResult.from_dict(raw) if isinstance(raw, dict) else None
            if result is None:
                logger.warning("Ignoring malformed sync result: %r", raw)
                continue
            results.append(result)
        return results


def _expect_ok(response: FetchResponse, message: str) -> Any:
    if not response.ok:
        raise NetworkError(message, status_code=response.status)
    return response.data
