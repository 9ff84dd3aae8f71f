"""Tests for RemoteEntryClient."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from stillmind.auth.session import FetchResponse
from stillmind.core.entry import Entry
from stillmind.errors import NetworkError
from stillmind.sync.protocol import PushItem, SyncAction
from stillmind.sync.remote import RemoteEntryClient


def _record(server_id: int, timestamp: int, content: str = "remote") -> dict[str, Any]:
    return {
        "id": server_id,
        "timestamp": timestamp,
        "entry": content,
        "duration": None,
        "prompt_id": None,
        "created_at": timestamp,
        "last_modified": timestamp,
    }


def _make_session(*responses: FetchResponse) -> MagicMock:
    session = MagicMock()
    session.authenticated_fetch = AsyncMock(side_effect=list(responses))
    return session


class TestListing:
    async def test_list_entries_page(self) -> None:
        session = _make_session(
            FetchResponse(200, {"entries": [_record(1, 100), _record(2, 200)], "count": 2})
        )
        client = RemoteEntryClient(session)

        entries = await client.list_entries(limit=10, offset=20)

        assert [e.server_id for e in entries] == [1, 2]
        session.authenticated_fetch.assert_awaited_once_with(
            "/entries", params={"limit": 10, "offset": 20}
        )

    async def test_fetch_all_pages_until_short_page(self) -> None:
        session = _make_session(
            FetchResponse(200, {"entries": [_record(1, 100), _record(2, 200)]}),
            FetchResponse(200, {"entries": [_record(3, 300), _record(4, 400)]}),
            FetchResponse(200, {"entries": [_record(5, 500)]}),
        )
        client = RemoteEntryClient(session, page_size=2)

        entries = await client.fetch_all_entries()

        assert [e.local_id for e in entries] == [100, 200, 300, 400, 500]
        offsets = [c.kwargs["params"]["offset"] for c in session.authenticated_fetch.call_args_list]
        assert offsets == [0, 2, 4]

    async def test_malformed_records_skipped_without_stopping_paging(self) -> None:
        session = _make_session(
            FetchResponse(200, {"entries": [{"id": 1}, _record(2, 200)]}),
            FetchResponse(200, {"entries": []}),
        )
        client = RemoteEntryClient(session, page_size=2)

        entries = await client.fetch_all_entries()

        assert [e.server_id for e in entries] == [2]
        assert session.authenticated_fetch.await_count == 2

    async def test_server_error_raises(self) -> None:
        client = RemoteEntryClient(_make_session(FetchResponse(500, "oops")))
        with pytest.raises(NetworkError) as exc_info:
            await client.fetch_all_entries()
        assert exc_info.value.status_code == 500


class TestSingleEntry:
    async def test_get_entry(self) -> None:
        client = RemoteEntryClient(_make_session(FetchResponse(200, _record(9, 900))))
        entry = await client.get_entry(9)
        assert entry is not None
        assert entry.local_id == 900

    async def test_get_missing_entry(self) -> None:
        client = RemoteEntryClient(_make_session(FetchResponse(404, {"error": "Entry not found"})))
        assert await client.get_entry(9) is None

    async def test_create_entry(self) -> None:
        session = _make_session(FetchResponse(201, {"success": True, "id": 31}))
        client = RemoteEntryClient(session)
        entry = Entry.create("hello", 3, "p", entry_id=1000)

        assert await client.create_entry(entry) == 31
        assert session.authenticated_fetch.call_args.kwargs["json"] == {
            "timestamp": 1000,
            "duration": 3,
            "entry": "hello",
            "promptId": "p",
        }

    async def test_update_and_delete_missing(self) -> None:
        session = _make_session(FetchResponse(404, {}), FetchResponse(404, {}))
        client = RemoteEntryClient(session)
        entry = Entry.create("x", entry_id=1)

        assert not await client.update_entry(5, entry)
        assert not await client.delete_entry(5)

    async def test_update_and_delete(self) -> None:
        session = _make_session(FetchResponse(200, {"success": True}), FetchResponse(200, {}))
        client = RemoteEntryClient(session)
        entry = Entry.create("x", entry_id=1)

        assert await client.update_entry(5, entry)
        assert await client.delete_entry(5)
        assert session.authenticated_fetch.call_args.kwargs["method"] == "DELETE"


class TestSyncBatch:
    async def test_sync_batch_parses_results(self) -> None:
        session = _make_session(
            FetchResponse(
                200,
                {
                    "success": True,
                    "results": [
                        {"action": "created", "id": 1, "clientId": "c1"},
                        {"action": "error", "id": "c2", "error": "bad"},
                        {"action": "mystery"},
                    ],
                },
            )
        )
        client = RemoteEntryClient(session)
        items = [
            PushItem.from_entry(Entry.create("a", entry_id=1)),
            PushItem.from_entry(Entry.create("b", entry_id=2)),
        ]

        results = await client.sync_batch(items)

        assert [r.action for r in results] == [SyncAction.CREATED, SyncAction.ERROR]
        assert results[1].client_id == "c2"
        body = session.authenticated_fetch.call_args.kwargs["json"]
        assert [e["timestamp"] for e in body["entries"]] == [1, 2]
        assert session.authenticated_fetch.call_args.args == ("/entries/sync",)

    async def test_sync_batch_request_failure(self) -> None:
        client = RemoteEntryClient(_make_session(FetchResponse(502, "bad gateway")))
        with pytest.raises(NetworkError):
            await client.sync_batch([])
