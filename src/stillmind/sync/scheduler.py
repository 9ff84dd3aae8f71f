"""Background sync scheduling.

Runs a sync cycle at start, then every ``interval_seconds`` while the
session is authenticated. Stops on logout. A connectivity transition to
online triggers an extra cycle.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from stillmind.errors import SessionExpired

if TYPE_CHECKING:
    from stillmind.auth.session import AuthSession
    from stillmind.sync.connectivity import ConnectivityMonitor
    from stillmind.sync.sync_engine import SyncEngine, SyncReport

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Owns the periodic sync task.

    Failures of background cycles are logged and swallowed; the next tick
    starts a fresh cycle.
    """

    def __init__(
        self,
        engine: SyncEngine,
        session: AuthSession,
        *,
        interval_seconds: float = 30.0,
        monitor: ConnectivityMonitor | None = None,
        enabled: bool = True,
    ) -> None:
        self._engine = engine
        self._session = session
        self._interval = interval_seconds
        self._monitor = monitor
        self._enabled = enabled
        self._task: asyncio.Task[None] | None = None
        self._stopping = False
        self._last_online: bool | None = None
        self._unsubscribers: list[Callable[[], None]] = []

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task[None] | None:
        """Start periodic syncing. Guards against double-start.

        Returns:
            The background task, or None if sync is disabled or there is no session
        """
        if self.is_running:
            return self._task
        if not self._enabled:
            logger.info("Sync disabled, scheduler not started")
            return None
        if not self._session.is_authenticated():
            logger.debug("Not authenticated, scheduler not started")
            return None

        self._stopping = False
        self._unsubscribers.append(self._session.on_logout(self.stop))
        if self._monitor is not None:
            self._unsubscribers.append(self._monitor.subscribe(self._on_connectivity))

        task = asyncio.create_task(self._loop())
        task.add_done_callback(_log_task_exception)
        self._task = task
        logger.info("Sync scheduler started: every %.0fs", self._interval)
        return task

    async def stop(self) -> None:
        """Stop periodic syncing and wait for the task to finish."""
        self._stopping = True
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self._last_online = None

        task = self._task
        self._task = None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            # Stopped from inside a cycle (session expiry): the loop sees the flag
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Sync scheduler stopped")

    async def trigger(self) -> SyncReport | None:
        """Run a cycle now. Overlaps with a running cycle are no-ops."""
        try:
            return await self._engine.sync()
        except SessionExpired:
            logger.warning("Background sync stopped: session expired")
        except Exception:
            logger.warning("Background sync failed", exc_info=True)
        return None

    async def _loop(self) -> None:
        while not self._stopping:
            await self.trigger()
            if self._stopping:
                break
            await asyncio.sleep(self._interval)

    async def _on_connectivity(self, online: bool) -> None:
        came_online = online and self._last_online is False
        self._last_online = online
        if came_online and not self._stopping:
            logger.debug("Back online, triggering sync")
            await self.trigger()


def _log_task_exception(task: asyncio.Task[None]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Sync scheduler task raised unhandled exception: %s", exc)
