"""Tests for the SyncEngine push/pull cycle."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import replace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from stillmind.auth.session import LAST_SYNC_KEY
from stillmind.core.entry import Entry, SyncStatus
from stillmind.errors import NetworkError, SessionExpired
from stillmind.storage.memory_store import InMemoryEntryStore
from stillmind.sync.protocol import BatchResult, PushItem, RemoteEntry, SyncAction
from stillmind.sync.sync_engine import SyncEngine, SyncState

# ── Helpers ───────────────────────────────────────────────────────────────────


class FakeEntryService:
    """In-process stand-in for the remote entry service."""

    def __init__(self) -> None:
        self.records: dict[int, dict[str, Any]] = {}
        self.batches: list[list[PushItem]] = []
        self.fail_client_ids: set[str] = set()
        self.gate: asyncio.Event | None = None
        self.on_push: Any = None
        self._next_id = 1
        self._client_ids: dict[str, int] = {}
        self.lose_replies = False

    async def sync_batch(self, items: Sequence[PushItem]) -> list[BatchResult]:
        self.batches.append(list(items))
        if self.on_push is not None:
            await self.on_push()
        if self.gate is not None:
            await self.gate.wait()

        results: list[BatchResult] = []
        for item in items:
            if item.client_id in self.fail_client_ids:
                results.append(
                    BatchResult(SyncAction.ERROR, client_id=item.client_id, error="rejected")
                )
            elif item.deleted:
                target = item.server_id
                if target is None:
                    target = self._client_ids.get(item.client_id or "")
                self.records.pop(target or -1, None)
                results.append(
                    BatchResult(SyncAction.DELETED, server_id=target, client_id=item.client_id)
                )
            elif item.server_id is not None:
                self.records[item.server_id].update(
                    entry=item.content, last_modified=item.last_modified
                )
                results.append(
                    BatchResult(SyncAction.UPDATED, server_id=item.server_id, client_id=item.client_id)
                )
            else:
                server_id = self._next_id
                self._next_id += 1
                self.records[server_id] = {
                    "timestamp": item.entry_id,
                    "entry": item.content,
                    "created_at": item.created_at,
                    "last_modified": item.last_modified,
                }
                if item.client_id:
                    self._client_ids[item.client_id] = server_id
                results.append(
                    BatchResult(SyncAction.CREATED, server_id=server_id, client_id=item.client_id)
                )
        if self.lose_replies:
            raise NetworkError("connection reset before reply")
        return results

    async def fetch_all_entries(self) -> list[RemoteEntry]:
        return [
            RemoteEntry(
                server_id=server_id,
                local_id=record["timestamp"],
                content=record["entry"],
                last_modified=record["last_modified"],
                created_at=record["created_at"],
            )
            for server_id, record in sorted(self.records.items())
        ]

    def seed(self, server_id: int, timestamp: int, content: str, last_modified: int) -> None:
        self.records[server_id] = {
            "timestamp": timestamp,
            "entry": content,
            "created_at": min(timestamp, last_modified),
            "last_modified": last_modified,
        }
        self._next_id = max(self._next_id, server_id + 1)


def _make_session(authenticated: bool = True) -> MagicMock:
    session = MagicMock()
    session.is_authenticated.return_value = authenticated
    return session


def _engine(
    store: InMemoryEntryStore,
    service: FakeEntryService,
    *,
    authenticated: bool = True,
    monitor: Any = None,
    sync_enabled: bool = True,
) -> SyncEngine:
    return SyncEngine(
        store,
        _make_session(authenticated),
        service,  # type: ignore[arg-type]
        monitor=monitor,
        sync_enabled=sync_enabled,
    )


# ── Scenarios ─────────────────────────────────────────────────────────────────


class TestScenarios:
    async def test_offline_entry_gets_server_identity(
        self, memory_store: InMemoryEntryStore
    ) -> None:
        """An entry created offline is pushed once with its client id and becomes synced."""
        service = FakeEntryService()
        service._next_id = 55
        entry = Entry.create("written offline", offline=True, entry_id=1000)
        await memory_store.put(entry)

        report = await _engine(memory_store, service).sync()

        assert len(service.batches) == 1
        (pushed,) = service.batches[0]
        assert pushed.client_id == entry.client_id
        assert pushed.server_id is None
        stored = await memory_store.get(1000)
        assert stored is not None
        assert stored.server_id == 55
        assert stored.sync_status == SyncStatus.SYNCED
        assert report.pushed == 1
        assert report.created == 1

    async def test_newer_remote_edit_wins(self, memory_store: InMemoryEntryStore) -> None:
        """Remote last_modified 900 beats local 500 for entry 2000."""
        await memory_store.put(
            Entry(
                id=2000,
                content="local version",
                server_id=7,
                last_modified=500,
                sync_status=SyncStatus.SYNCED,
            )
        )
        service = FakeEntryService()
        service.seed(7, 2000, "edited on another device", 900)

        report = await _engine(memory_store, service).sync()

        stored = await memory_store.get(2000)
        assert stored is not None
        assert stored.content == "edited on another device"
        assert stored.last_modified == 900
        assert stored.sync_status == SyncStatus.SYNCED
        assert report.merged == 1
        assert service.batches == []


class TestCycle:
    async def test_push_then_pull_converges_across_devices(self) -> None:
        service = FakeEntryService()
        phone = InMemoryEntryStore()
        laptop = InMemoryEntryStore()
        for i, text in enumerate(["first light", "rain on the window today", "done"], start=1):
            await phone.put(Entry.create(text, entry_id=1000 * i))

        await _engine(phone, service).sync()
        await _engine(laptop, service).sync()

        assert await phone.list_unsynced() == []
        phone_entries = {e.id: (e.content, e.word_count, e.server_id) for e in await phone.list()}
        laptop_entries = {e.id: (e.content, e.word_count, e.server_id) for e in await laptop.list()}
        assert phone_entries == laptop_entries
        assert len(laptop_entries) == 3
        assert laptop_entries[2000] == ("rain on the window today", 5, 2)

    async def test_partial_batch_failure_isolated(self, memory_store: InMemoryEntryStore) -> None:
        """Item 3 of 5 fails; the other four are synced and item 3 is retried."""
        entries = [Entry.create(f"entry {i}", entry_id=i * 100) for i in range(1, 6)]
        for entry in entries:
            await memory_store.put(entry)
        service = FakeEntryService()
        service.fail_client_ids = {entries[2].client_id or ""}
        engine = _engine(memory_store, service)

        report = await engine.sync()

        assert report.failed == 1
        assert report.created == 4
        assert [e.id for e in await memory_store.list_unsynced()] == [300]

        service.fail_client_ids.clear()
        await engine.sync()

        assert [item.entry_id for item in service.batches[1]] == [300]
        assert await memory_store.list_unsynced() == []

    async def test_pull_only_when_nothing_to_push(self, memory_store: InMemoryEntryStore) -> None:
        await memory_store.put_setting(LAST_SYNC_KEY, 1)
        service = FakeEntryService()
        service.seed(1, 1000, "from elsewhere", 1000)

        report = await _engine(memory_store, service).sync()

        assert service.batches == []
        assert report.pulled == 1
        assert await memory_store.get(1000) is not None

    async def test_last_sync_time_recorded(self, memory_store: InMemoryEntryStore) -> None:
        engine = _engine(memory_store, FakeEntryService())
        assert await engine.last_sync_time() == 0

        report = await engine.sync()

        assert await engine.last_sync_time() >= report.started_at
        assert report.finished_at is not None
        assert engine.state == SyncState.IDLE

    async def test_force_sync_resets_last_sync_time(
        self, memory_store: InMemoryEntryStore
    ) -> None:
        engine = _engine(memory_store, FakeEntryService())
        await memory_store.put_setting(LAST_SYNC_KEY, 5)
        seen: list[int] = []
        original_sync = engine.sync

        async def spy() -> Any:
            seen.append(await engine.last_sync_time())
            return await original_sync()

        engine.sync = spy  # type: ignore[method-assign]
        await engine.force_sync()

        assert seen == [0]
        assert await engine.last_sync_time() > 5

    async def test_tombstone_deleted_remotely_then_locally(
        self, memory_store: InMemoryEntryStore
    ) -> None:
        service = FakeEntryService()
        await memory_store.put(Entry.create("to be removed", entry_id=1000))
        engine = _engine(memory_store, service)
        await engine.sync()

        await memory_store.remove(1000)
        tombstone = await memory_store.get(1000)
        assert tombstone is not None
        assert tombstone.deleted

        report = await engine.sync()

        assert report.deleted == 1
        assert service.records == {}
        assert await memory_store.get(1000) is None

    async def test_update_marks_synced(self, memory_store: InMemoryEntryStore) -> None:
        service = FakeEntryService()
        await memory_store.put(Entry.create("draft", entry_id=1000))
        engine = _engine(memory_store, service)
        await engine.sync()

        stored = await memory_store.get(1000)
        assert stored is not None
        await memory_store.put(stored.revise(content="final words", now=stored.created_at + 10))
        report = await engine.sync()

        assert report.updated == 1
        assert service.records[1]["entry"] == "final words"
        stored = await memory_store.get(1000)
        assert stored is not None
        assert stored.is_synced

    async def test_edit_during_push_stays_unsynced(
        self, memory_store: InMemoryEntryStore
    ) -> None:
        service = FakeEntryService()
        await memory_store.put(Entry.create("first draft", entry_id=1000))

        async def edit_while_in_flight() -> None:
            current = await memory_store.get(1000)
            assert current is not None
            await memory_store.put(current.revise(content="second draft", now=5000))

        service.on_push = edit_while_in_flight
        engine = _engine(memory_store, service)
        await engine.sync()

        stored = await memory_store.get(1000)
        assert stored is not None
        assert stored.content == "second draft"
        assert stored.server_id == 1
        assert stored.sync_status == SyncStatus.LOCAL

        # The next push updates the record created above instead of duplicating it
        service.on_push = None
        await engine.sync()
        assert len(service.records) == 1
        assert service.records[1]["entry"] == "second draft"


class TestGuards:
    async def test_not_authenticated_is_noop(self, memory_store: InMemoryEntryStore) -> None:
        service = FakeEntryService()
        await memory_store.put(Entry.create("x", entry_id=1))

        report = await _engine(memory_store, service, authenticated=False).sync()

        assert report.skipped == "not_authenticated"
        assert not report.ran
        assert service.batches == []

    async def test_disabled_is_noop(self, memory_store: InMemoryEntryStore) -> None:
        report = await _engine(memory_store, FakeEntryService(), sync_enabled=False).sync()
        assert report.skipped == "disabled"

    async def test_offline_is_noop(self, memory_store: InMemoryEntryStore) -> None:
        monitor = MagicMock()
        monitor.is_online = False

        report = await _engine(memory_store, FakeEntryService(), monitor=monitor).sync()

        assert report.skipped == "offline"

    async def test_at_most_one_cycle_in_flight(self, memory_store: InMemoryEntryStore) -> None:
        service = FakeEntryService()
        service.gate = asyncio.Event()
        await memory_store.put(Entry.create("x", entry_id=1))
        engine = _engine(memory_store, service)

        first = asyncio.create_task(engine.sync())
        while not service.batches:
            await asyncio.sleep(0)
        assert engine.state == SyncState.RUNNING

        overlapping = await asyncio.gather(engine.sync(), engine.sync())

        assert [r.skipped for r in overlapping] == ["in_progress", "in_progress"]
        service.gate.set()
        report = await first
        assert report.ran
        assert len(service.batches) == 1


class TestFailures:
    async def test_network_error_aborts_cycle(self, memory_store: InMemoryEntryStore) -> None:
        await memory_store.put(Entry.create("x", entry_id=1))
        await memory_store.put_setting(LAST_SYNC_KEY, 42)
        remote = MagicMock()
        remote.sync_batch = AsyncMock(side_effect=NetworkError("down"))
        remote.fetch_all_entries = AsyncMock(return_value=[])
        engine = SyncEngine(memory_store, _make_session(), remote)

        with pytest.raises(NetworkError):
            await engine.sync()

        assert engine.state == SyncState.FAILED
        assert isinstance(engine.last_error, NetworkError)
        assert await engine.last_sync_time() == 42
        remote.fetch_all_entries.assert_not_called()

        # The next cycle starts fresh
        remote.sync_batch = AsyncMock(
            return_value=[BatchResult(SyncAction.CREATED, server_id=9, client_id=None)]
        )
        await engine.sync()
        assert engine.state == SyncState.IDLE
        assert engine.last_error is None

    async def test_session_expiry_propagates(self, memory_store: InMemoryEntryStore) -> None:
        remote = MagicMock()
        remote.fetch_all_entries = AsyncMock(side_effect=SessionExpired())
        engine = SyncEngine(memory_store, _make_session(), remote)

        with pytest.raises(SessionExpired):
            await engine.sync()
        assert not engine.is_running

    async def test_failure_mid_pull_keeps_merged_entries(
        self, memory_store: InMemoryEntryStore
    ) -> None:
        good = RemoteEntry(server_id=1, local_id=1000, content="kept", last_modified=1000)
        bad = replace(good, server_id=2, local_id=2000, created_at=3000, last_modified=2000)
        remote = MagicMock()
        remote.fetch_all_entries = AsyncMock(return_value=[good, bad])
        original_put = memory_store.put

        async def failing_put(entry: Entry) -> int:
            if entry.id == 2000:
                raise NetworkError("simulated")
            return await original_put(entry)

        memory_store.put = failing_put  # type: ignore[method-assign]
        engine = SyncEngine(memory_store, _make_session(), remote)

        with pytest.raises(NetworkError):
            await engine.sync()

        assert await memory_store.get(1000) is not None
        assert await memory_store.get(2000) is None

    async def test_delete_after_lost_create_reply_reaches_server(
        self, memory_store: InMemoryEntryStore
    ) -> None:
        """A delete after a lost create reply still removes the server record."""
        service = FakeEntryService()
        await memory_store.put(Entry.create("sent but unconfirmed", entry_id=1000))
        engine = _engine(memory_store, service)

        service.lose_replies = True
        with pytest.raises(NetworkError):
            await engine.sync()
        assert len(service.records) == 1

        pending = await memory_store.get(1000)
        assert pending is not None
        assert pending.server_id is None
        assert pending.pushed

        await memory_store.remove(1000)
        tombstone = await memory_store.get(1000)
        assert tombstone is not None
        assert tombstone.deleted

        service.lose_replies = False
        report = await engine.sync()

        assert report.deleted == 1
        assert service.records == {}
        assert report.pulled == 0
        assert await memory_store.get(1000) is None
