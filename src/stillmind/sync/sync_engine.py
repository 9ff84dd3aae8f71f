"""Sync engine: one push-then-pull reconciliation cycle at a time."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import TYPE_CHECKING

from stillmind.auth.session import LAST_SYNC_KEY
from stillmind.core.entry import ByClientId, ById, ByServerId, Entry
from stillmind.sync.merge import MergeOutcome, merge_remote_entry
from stillmind.sync.protocol import BatchResult, PushItem, SyncAction
from stillmind.utils.timeutils import now_ms

if TYPE_CHECKING:
    from stillmind.auth.session import AuthSession
    from stillmind.storage.base import EntryStore
    from stillmind.sync.connectivity import ConnectivityMonitor
    from stillmind.sync.remote import RemoteEntryClient

logger = logging.getLogger(__name__)


class SyncState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    FAILED = "failed"


@dataclass
class SyncReport:
    """Counters for one sync cycle. ``skipped`` is set when the cycle was a no-op."""

    started_at: int
    finished_at: int | None = None
    skipped: str | None = None
    pushed: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0
    pulled: int = 0
    merged: int = 0
    ignored: int = 0

    @property
    def ran(self) -> bool:
        return self.skipped is None


class SyncEngine:
    """Reconciles the local store with the remote entry service.

    A cycle is:
    1. Collect unsynced entries (new, edited and tombstones)
    2. Push them in one batch and apply the per-entry results
    3. Pull the full remote collection and merge it last-write-wins
    4. Record the sync time

    At most one cycle runs at a time. Overlapping calls return a skipped
    report instead of waiting.
    """

    def __init__(
        self,
        store: EntryStore,
        session: AuthSession,
        remote: RemoteEntryClient,
        *,
        monitor: ConnectivityMonitor | None = None,
        sync_enabled: bool = True,
    ) -> None:
        self._store = store
        self._session = session
        self._remote = remote
        self._monitor = monitor
        self._sync_enabled = sync_enabled
        self._running = False
        self._state = SyncState.IDLE
        self._last_error: Exception | None = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_error(self) -> Exception | None:
        return self._last_error

    async def last_sync_time(self) -> int:
        """Epoch ms of the last successful cycle, 0 if none."""
        value = await self._store.get_setting(LAST_SYNC_KEY, 0)
        if isinstance(value, bool) or not isinstance(value, int | float):
            return 0
        return int(value)

    async def force_sync(self) -> SyncReport:
        """Forget the last sync time and run a cycle now."""
        await self._store.put_setting(LAST_SYNC_KEY, 0)
        return await self.sync()

    async def sync(self) -> SyncReport:
        """Run one sync cycle.

        Returns:
            The cycle report; ``skipped`` names the reason for a no-op

        Raises:
            SessionExpired: If the server rejected the credential
            NetworkError: If a request failed
            StorageError: If a local write failed
        """
        report = SyncReport(started_at=now_ms())

        # Checked and set with no await in between: single flight.
        skip_reason = self._skip_reason()
        if skip_reason is not None:
            report.skipped = skip_reason
            report.finished_at = report.started_at
            logger.debug("Sync skipped: %s", skip_reason)
            return report
        self._running = True
        self._state = SyncState.RUNNING

        try:
            await self._run_cycle(report)
        except Exception as e:
            self._state = SyncState.FAILED
            self._last_error = e
            logger.warning("Sync cycle failed: %s", e)
            raise
        finally:
            self._running = False

        self._state = SyncState.IDLE
        self._last_error = None
        report.finished_at = now_ms()
        logger.info(
            "Sync complete: pushed=%d created=%d updated=%d deleted=%d failed=%d "
            "pulled=%d merged=%d ignored=%d",
            report.pushed,
            report.created,
            report.updated,
            report.deleted,
            report.failed,
            report.pulled,
            report.merged,
            report.ignored,
        )
        return report

    def _skip_reason(self) -> str | None:
        if not self._sync_enabled:
            return "disabled"
        if not self._session.is_authenticated():
            return "not_authenticated"
        if self._running:
            return "in_progress"
        if self._monitor is not None and not self._monitor.is_online:
            return "offline"
        return None

    async def _run_cycle(self, report: SyncReport) -> None:
        unsynced = await self._store.list_unsynced()

        if unsynced:
            await self._push(unsynced, report)
        elif await self.last_sync_time() > 0:
            logger.debug("Nothing to push, pulling only")

        await self._pull(report)
        await self._store.put_setting(LAST_SYNC_KEY, now_ms())

    # ── Push ────────────────────────────────────────────────────────

    async def _push(self, unsynced: list[Entry], report: SyncReport) -> None:
        items = [PushItem.from_entry(entry) for entry in unsynced]
        report.pushed = len(items)
        logger.info("Pushing %d entries", len(items))

        sent_by_id = {entry.id: entry for entry in unsynced}
        # Before sending: the reply may never arrive
        await self._store.mark_pushed(sent_by_id)
        results = await self._remote.sync_batch(items)

        for result in results:
            current = await find_entry(self._store, result.client_id, result.server_id)
            sent = sent_by_id.get(current.id) if current is not None else None
            if current is None or sent is None:
                if not result.ok:
                    report.failed += 1
                logger.warning("Sync result matches no pushed entry: %r", result)
                continue
            await self._apply_result(sent, current, result, report)

    async def _apply_result(
        self, sent: Entry, current: Entry, result: BatchResult, report: SyncReport
    ) -> None:
        if not result.ok:
            report.failed += 1
            logger.warning("Server rejected entry %s: %s", sent.id, result.error)
            return

        edited = current.last_modified != sent.last_modified

        if result.action == SyncAction.CREATED:
            report.created += 1
            if result.server_id is None:
                logger.warning("Created result for entry %s carries no server id", sent.id)
                return
            if not edited:
                await self._store.set_server_id(current.id, result.server_id)
            elif current.server_id is None:
                # Keep the id so the next push updates instead of duplicating
                await self._store.put(replace(current, server_id=result.server_id))
        elif result.action == SyncAction.UPDATED:
            report.updated += 1
            if not edited:
                await self._store.mark_synced(ById(current.id))
        elif result.action == SyncAction.DELETED:
            report.deleted += 1
            if current.deleted:
                await self._store.delete(current.id)

        if edited:
            logger.debug("Entry %s changed while in flight, left unsynced", sent.id)

    # ── Pull ────────────────────────────────────────────────────────

    async def _pull(self, report: SyncReport) -> None:
        remote_entries = await self._remote.fetch_all_entries()
        report.pulled = len(remote_entries)

        for remote in remote_entries:
            outcome = await merge_remote_entry(self._store, remote)
            if outcome == MergeOutcome.IGNORED:
                report.ignored += 1
            else:
                report.merged += 1


async def find_entry(store: EntryStore, client_id: str | None, server_id: int | None) -> Entry | None:
    """Resolve an entry by client id, falling back to server id."""
    if client_id:
        entry = await store.resolve(ByClientId(client_id))
        if entry is not None:
            return entry
    if server_id is not None:
        return await store.resolve(ByServerId(server_id))
    return None
