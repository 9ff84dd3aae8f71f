"""Reference server settings, read from ``STILLMIND_SERVER_*`` environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int, low: int, high: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return max(low, min(int(raw), high))
    except ValueError:
        logger.warning("Invalid %s=%r, using %d", name, raw, default)
        return default


@dataclass(frozen=True)
class ServerConfig:
    """Settings for the reference entry service."""

    db_path: Path = Path("data/stillmind.db")
    frontend_url: str = "http://localhost:8080"
    magic_link_ttl_minutes: int = 15
    session_ttl_days: int = 30
    rate_limit_window_seconds: int = 300
    rate_limit_max_requests: int = 3
    cors_origins: tuple[str, ...] = ("http://localhost:8080",)

    @classmethod
    def from_env(cls) -> ServerConfig:
        frontend_url = os.environ.get("STILLMIND_SERVER_FRONTEND_URL", cls.frontend_url)
        origins_raw = os.environ.get("STILLMIND_SERVER_CORS_ORIGINS", "")
        origins = tuple(o.strip() for o in origins_raw.split(",") if o.strip()) or (
            frontend_url,
        )
        return cls(
            db_path=Path(os.environ.get("STILLMIND_SERVER_DB_PATH", str(cls.db_path))),
            frontend_url=frontend_url.rstrip("/"),
            magic_link_ttl_minutes=_env_int(
                "STILLMIND_SERVER_MAGIC_LINK_TTL_MINUTES", 15, 1, 24 * 60
            ),
            session_ttl_days=_env_int("STILLMIND_SERVER_SESSION_TTL_DAYS", 30, 1, 365),
            rate_limit_window_seconds=_env_int(
                "STILLMIND_SERVER_RATE_LIMIT_WINDOW_SECONDS", 300, 1, 86400
            ),
            rate_limit_max_requests=_env_int(
                "STILLMIND_SERVER_RATE_LIMIT_MAX_REQUESTS", 3, 1, 10_000
            ),
            cors_origins=origins,
        )
