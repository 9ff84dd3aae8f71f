"""Application context: the explicitly wired set of client components."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from stillmind.auth.session import AuthSession, FetchResponse
from stillmind.core.entry import Entry
from stillmind.errors import NetworkError
from stillmind.storage.base import EntryStore
from stillmind.storage.factory import open_entry_store
from stillmind.sync.connectivity import ConnectivityMonitor, Probe, QueuedRequest
from stillmind.sync.remote import RemoteEntryClient
from stillmind.sync.scheduler import SyncScheduler
from stillmind.sync.sync_engine import SyncEngine
from stillmind.unified_config import UnifiedConfig, get_config

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Everything a running client needs, constructed once at startup.

    Usage:
        ctx = await create_context()
        ctx.start()
        await ctx.create_entry("Morning pages", duration_minutes=10)
        ...
        await ctx.close()
    """

    config: UnifiedConfig
    store: EntryStore
    session: AuthSession
    remote: RemoteEntryClient
    monitor: ConnectivityMonitor
    engine: SyncEngine
    scheduler: SyncScheduler

    def start(self) -> None:
        """Start the heartbeat and, when signed in, periodic sync."""
        self.monitor.start()
        self.scheduler.start()

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.monitor.stop()
        await self.session.close()
        await self.store.close()

    # ── Journal operations ──────────────────────────────────────────

    async def create_entry(
        self,
        content: str,
        duration_minutes: int | None = None,
        prompt_id: str | None = None,
    ) -> Entry:
        """Save a new entry locally. It reaches the server on the next cycle."""
        entry = Entry.create(
            content,
            duration_minutes,
            prompt_id,
            offline=not self.monitor.is_online,
        )
        await self.store.put(entry)
        return entry

    async def edit_entry(
        self,
        entry_id: int,
        *,
        content: str | None = None,
        duration_minutes: int | None = None,
        prompt_id: str | None = None,
    ) -> Entry | None:
        entry = await self.store.get(entry_id)
        if entry is None or entry.deleted:
            return None
        revised = entry.revise(
            content=content, duration_minutes=duration_minutes, prompt_id=prompt_id
        )
        await self.store.put(revised)
        return revised

    async def delete_entry(self, entry_id: int) -> None:
        await self.store.remove(entry_id)

    # ── Outbound requests ───────────────────────────────────────────

    async def send_or_queue(
        self, method: str, url: str, json: Any = None
    ) -> FetchResponse | None:
        """Send an authenticated request, queueing it for replay on network failure.

        Returns:
            The response, or None if the request was queued
        """
        try:
            return await self.session.authenticated_fetch(url, method=method, json=json)
        except NetworkError:
            self.monitor.queue_request(QueuedRequest(method=method, url=url, json=json))
            return None

    async def replay_request(self, request: QueuedRequest) -> FetchResponse:
        """Sender for the connectivity retry queue."""
        response = await self.session.authenticated_fetch(
            request.url, method=request.method, json=request.json
        )
        if response.status >= 500:
            raise NetworkError(
                f"Replay of {request.method} {request.url} failed",
                status_code=response.status,
            )
        if not response.ok:
            logger.warning(
                "Replayed request %s %s rejected with HTTP %d",
                request.method,
                request.url,
                response.status,
            )
        return response


async def create_context(
    config: UnifiedConfig | None = None,
    *,
    store: EntryStore | None = None,
    probe: Probe | None = None,
) -> AppContext:
    """Build and wire the client components.

    Args:
        config: Client configuration (loaded from disk if not provided)
        store: An already initialized store, overriding the configured one
        probe: Connectivity probe override

    Returns:
        An AppContext with the persisted session restored
    """
    if config is None:
        config = get_config()
    if store is None:
        store = await open_entry_store(config)

    session = AuthSession(store, config.sync.api_base_url, timeout=config.sync.request_timeout)
    await session.load()

    remote = RemoteEntryClient(session, page_size=config.sync.page_size)
    monitor = ConnectivityMonitor.from_config(config.connectivity, probe=probe)
    engine = SyncEngine(
        store, session, remote, monitor=monitor, sync_enabled=config.sync.enabled
    )
    scheduler = SyncScheduler(
        engine,
        session,
        interval_seconds=config.sync.interval_seconds,
        monitor=monitor,
        enabled=config.sync.enabled,
    )

    ctx = AppContext(
        config=config,
        store=store,
        session=session,
        remote=remote,
        monitor=monitor,
        engine=engine,
        scheduler=scheduler,
    )
    monitor.set_sender(ctx.replay_request)
    logger.debug("Client context ready (authenticated=%s)", session.is_authenticated())
    return ctx
