"""Magic link delivery.

Email transport lives outside this package; the service hands each link
to a ``MagicLinkSender``. The default sender only logs it.
"""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class MagicLinkSender(Protocol):
    async def send(self, email: str, link: str) -> None: ...


class LoggingMagicLinkSender:
    """Development sender: writes the link to the log instead of mailing it."""

    async def send(self, email: str, link: str) -> None:
        logger.info("Magic link for %s: %s", email, link)


class RecordingMagicLinkSender:
    """Keeps sent links in memory, for tests and local tooling."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send(self, email: str, link: str) -> None:
        self.sent.append((email, link))

    @property
    def last_token(self) -> str | None:
        if not self.sent:
            return None
        _, link = self.sent[-1]
        return link.rsplit("token=", 1)[-1]
