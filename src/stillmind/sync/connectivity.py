"""
Connectivity monitor: online/offline belief, heartbeat probing and a
retry queue for failed outbound requests.

Platform signals (``set_platform_state``) are authoritative and applied
immediately. A background heartbeat probes a lightweight resource every
``heartbeat_interval`` seconds to correct missed signals in either
direction. Requests queued while offline are replayed sequentially once
the monitor sees the network again.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import aiohttp

from stillmind.errors import SessionExpired
from stillmind.utils.timeutils import now_ms

if TYPE_CHECKING:
    from stillmind.unified_config import ConnectivityConfig

logger = logging.getLogger(__name__)

StateListener = Callable[[bool], Any]
Probe = Callable[[], Awaitable[bool]]


@dataclass
class QueuedRequest:
    """A previously failed outbound request awaiting replay."""

    method: str
    url: str
    json: Any = None
    enqueued_at: int = field(default_factory=now_ms)
    attempts: int = 0
    next_attempt_at: float = 0.0  # time.monotonic() seconds


RequestSender = Callable[[QueuedRequest], Awaitable[Any]]


class ConnectivityMonitor:
    """Tracks whether the remote service is reachable.

    Retry policy for queued requests: capped exponential backoff
    (``retry_base_delay * 2 ** (attempts - 1)``, at most ``retry_max_delay``)
    and at most ``max_attempts`` attempts, after which the request is
    dropped. Requests rejected with SessionExpired are dropped at once.
    """

    def __init__(
        self,
        *,
        probe_url: str = "",
        heartbeat_interval: float = 30.0,
        probe_timeout: float = 5.0,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 300.0,
        max_attempts: int = 10,
        sender: RequestSender | None = None,
        probe: Probe | None = None,
        initial_online: bool = True,
    ) -> None:
        self._probe_url = probe_url
        self._heartbeat_interval = heartbeat_interval
        self._probe_timeout = probe_timeout
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay
        self._max_attempts = max(1, max_attempts)
        self._sender = sender
        self._probe = probe or self._http_probe

        self._online = initial_online
        self._listeners: list[StateListener] = []
        self._queue: list[QueuedRequest] = []
        self._drain_lock = asyncio.Lock()
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._callback_tasks: set[asyncio.Future[Any]] = set()

    @classmethod
    def from_config(
        cls,
        config: ConnectivityConfig,
        *,
        sender: RequestSender | None = None,
        probe: Probe | None = None,
    ) -> ConnectivityMonitor:
        return cls(
            probe_url=config.probe_url,
            heartbeat_interval=config.heartbeat_interval,
            probe_timeout=config.probe_timeout,
            retry_base_delay=config.retry_base_delay,
            retry_max_delay=config.retry_max_delay,
            max_attempts=config.max_attempts,
            sender=sender,
            probe=probe,
        )

    @property
    def is_online(self) -> bool:
        """Current connectivity belief."""
        return self._online

    @property
    def pending_requests(self) -> list[QueuedRequest]:
        return list(self._queue)

    @property
    def is_running(self) -> bool:
        return self._heartbeat_task is not None and not self._heartbeat_task.done()

    def set_sender(self, sender: RequestSender) -> None:
        self._sender = sender

    # ── Subscriptions ───────────────────────────────────────────────

    def subscribe(self, callback: StateListener) -> Callable[[], None]:
        """Register a state listener.

        The callback is invoked immediately with the current state, then on
        every transition. Coroutine callbacks are scheduled on the running loop.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(callback)
        self._invoke(callback, self._online)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _invoke(self, callback: StateListener, online: bool) -> None:
        try:
            result = callback(online)
        except Exception:
            logger.warning("Connectivity listener failed", exc_info=True)
            return
        if asyncio.iscoroutine(result):
            self._track(asyncio.ensure_future(result))

    def _track(self, task: asyncio.Future[Any]) -> None:
        self._callback_tasks.add(task)
        task.add_done_callback(self._on_callback_done)

    def _on_callback_done(self, task: asyncio.Future[Any]) -> None:
        self._callback_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Connectivity background task failed", exc_info=task.exception())

    # ── State transitions ───────────────────────────────────────────

    async def set_platform_state(self, online: bool) -> None:
        """Apply a platform online/offline signal."""
        self._transition(online, source="platform")

    async def check_connection(self) -> bool:
        """Probe once and correct the state if the probe disagrees."""
        try:
            reachable = await self._probe()
        except Exception:
            logger.debug("Connectivity probe raised", exc_info=True)
            reachable = False

        if reachable != self._online:
            self._transition(reachable, source="heartbeat")
        return reachable

    def _transition(self, online: bool, *, source: str) -> None:
        if online == self._online:
            return

        self._online = online
        if online:
            logger.info("Connection restored (%s)", source)
        else:
            logger.info("Connection lost (%s)", source)

        for callback in list(self._listeners):
            self._invoke(callback, online)

        if online and self._queue:
            self._track(asyncio.ensure_future(self.drain_queue()))

    async def _http_probe(self) -> bool:
        if not self._probe_url:
            return self._online
        timeout = aiohttp.ClientTimeout(total=self._probe_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as http:
                async with http.head(
                    self._probe_url, headers={"Cache-Control": "no-store"}
                ) as resp:
                    return resp.status < 400
        except (aiohttp.ClientError, TimeoutError):
            return False

    # ── Heartbeat ───────────────────────────────────────────────────

    def start(self) -> None:
        """Start the background heartbeat."""
        if self.is_running:
            return
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def stop(self) -> None:
        """Stop the heartbeat and any background drain or listener task."""
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        current = asyncio.current_task()
        pending = [t for t in self._callback_tasks if not t.done() and t is not current]
        for t in pending:
            t.cancel()
        # Results were already logged by the done callback
        await asyncio.gather(*pending, return_exceptions=True)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            try:
                await self.check_connection()
                if self._online and self._queue:
                    await self.drain_queue()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("Heartbeat iteration failed", exc_info=True)

    # ── Retry queue ─────────────────────────────────────────────────

    def queue_request(self, request: QueuedRequest) -> None:
        """Queue a failed request for replay when the network returns."""
        self._queue.append(request)
        logger.info("Request queued for retry: %s %s", request.method, request.url)

    def _backoff(self, attempts: int) -> float:
        return min(self._retry_base_delay * (2 ** max(attempts - 1, 0)), self._retry_max_delay)

    async def drain_queue(self) -> dict[str, int]:
        """Replay queued requests one at a time.

        Returns:
            Counts of sent, requeued and dropped requests
        """
        stats = {"sent": 0, "requeued": 0, "dropped": 0}
        sender = self._sender
        if sender is None or not self._queue:
            return stats

        async with self._drain_lock:
            if not self._online:
                return stats

            pending = self._queue
            self._queue = []
            logger.info("Processing %d queued requests", len(pending))

            index = 0
            try:
                for index, request in enumerate(pending):
                    if not self._online:
                        # Went offline mid-drain: keep the rest for later
                        self._queue.extend(pending[index:])
                        stats["requeued"] += len(pending) - index
                        break

                    if request.next_attempt_at > time.monotonic():
                        self._queue.append(request)
                        stats["requeued"] += 1
                        continue

                    stats[await self._send_queued(sender, request)] += 1
            except asyncio.CancelledError:
                # Stopped mid-drain: the in-flight request and the rest stay queued
                self._queue.extend(pending[index:])
                raise

        return stats

    async def _send_queued(self, sender: RequestSender, request: QueuedRequest) -> str:
        """Send one queued request; returns "sent", "requeued" or "dropped"."""
        try:
            await sender(request)
        except SessionExpired:
            logger.warning(
                "Dropping queued request %s %s: session expired",
                request.method,
                request.url,
            )
            return "dropped"
        except Exception:
            request.attempts += 1
            if request.attempts >= self._max_attempts:
                logger.warning(
                    "Dropping queued request %s %s after %d attempts",
                    request.method,
                    request.url,
                    request.attempts,
                    exc_info=True,
                )
                return "dropped"
            request.next_attempt_at = time.monotonic() + self._backoff(request.attempts)
            self._queue.append(request)
            logger.debug(
                "Queued request %s %s failed (attempt %d), retrying later",
                request.method,
                request.url,
                request.attempts,
            )
            return "requeued"

        logger.debug("Queued request succeeded: %s %s", request.method, request.url)
        return "sent"
