"""Shared dependencies for API routes."""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Annotated, Any

from fastapi import Depends, Header, HTTPException, Request

from stillmind.server.config import ServerConfig
from stillmind.server.database import ServerDatabase
from stillmind.server.email import MagicLinkSender
from stillmind.utils.timeutils import now_ms

logger = logging.getLogger(__name__)

SESSION_TOKEN = "session"
MAGIC_TOKEN = "magic"


async def get_database() -> ServerDatabase:
    """
    Dependency to get the database.

    This is overridden by the application at startup.
    """
    raise NotImplementedError("Database not configured")


async def get_server_config() -> ServerConfig:
    """Overridden by the application at startup."""
    raise NotImplementedError("Server config not configured")


async def get_magic_link_sender() -> MagicLinkSender:
    """Overridden by the application at startup."""
    raise NotImplementedError("Magic link sender not configured")


def bearer_token(authorization: str | None) -> str | None:
    """Extract the credential from an ``Authorization: Bearer`` header."""
    if not authorization:
        return None
    scheme, _, credential = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credential.strip():
        return None
    return credential.strip()


async def get_current_user(
    db: Annotated[ServerDatabase, Depends(get_database)],
    authorization: Annotated[str | None, Header()] = None,
) -> dict[str, Any]:
    """Resolve the session credential to a user.

    Missing credential -> 401; unknown, expired or orphaned credential -> 403.
    """
    token = bearer_token(authorization)
    if token is None:
        raise HTTPException(status_code=401, detail="Access token required")

    record = await db.get_token(token, SESSION_TOKEN)
    if record is None or record["expires_at"] < now_ms():
        raise HTTPException(status_code=403, detail="Invalid or expired token")

    user = await db.get_user_by_email(record["email"])
    if user is None:
        raise HTTPException(status_code=403, detail="User not found")
    return user


class RateLimiter:
    """Sliding-window request limit per client address."""

    def __init__(self, max_requests: int, window_seconds: float) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._hits: dict[str, deque[float]] = {}
        self._last_purge = time.monotonic()

    @property
    def tracked_keys(self) -> int:
        return len(self._hits)

    def allow(self, key: str) -> bool:
        now = time.monotonic()
        cutoff = now - self._window

        # Purge idle addresses once per window to keep the map bounded
        if now - self._last_purge >= self._window:
            idle = [k for k, h in self._hits.items() if not h or h[-1] <= cutoff]
            for k in idle:
                del self._hits[k]
            self._last_purge = now

        hits = self._hits.setdefault(key, deque())
        while hits and hits[0] <= cutoff:
            hits.popleft()
        if len(hits) >= self._max_requests:
            return False
        hits.append(now)
        return True

    async def __call__(self, request: Request) -> None:
        host = request.client.host if request.client else "unknown"
        if not self.allow(host):
            logger.warning("Rate limit exceeded for %s on %s", host, request.url.path)
            raise HTTPException(
                status_code=429,
                detail="Too many requests from this IP, please try again later.",
            )


async def get_rate_limiter() -> RateLimiter:
    """Overridden by the application at startup."""
    raise NotImplementedError("Rate limiter not configured")


async def rate_limit(
    request: Request, limiter: Annotated[RateLimiter, Depends(get_rate_limiter)]
) -> None:
    await limiter(request)
