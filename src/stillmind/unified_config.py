"""Unified configuration for the StillMind client.

Configuration is stored in ~/.stillmind/config.toml
The local journal is stored in ~/.stillmind/journal.db (SQLite)
"""

from __future__ import annotations

import logging
import os
import tempfile
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_URL_MAX_LEN = 256


def get_stillmind_dir() -> Path:
    """Get StillMind data directory.

    Priority:
    1. STILLMIND_DIR environment variable
    2. ~/.stillmind/
    """
    env_dir = os.environ.get("STILLMIND_DIR")
    if env_dir:
        return Path(env_dir)
    return Path.home() / ".stillmind"


def _clamp_int(value: Any, default: int, low: int, high: int) -> int:
    try:
        return max(low, min(int(value), high))
    except (ValueError, TypeError):
        return default


def _clamp_float(value: Any, default: float, low: float, high: float) -> float:
    try:
        return max(low, min(float(value), high))
    except (ValueError, TypeError):
        return default


def _sanitize_url(value: Any, default: str) -> str:
    """Accept http(s) URLs and relative API paths; anything else falls back."""
    if not isinstance(value, str):
        return default
    cleaned = value.strip()[:_URL_MAX_LEN]
    if not cleaned.startswith(("http://", "https://", "/")) or '"' in cleaned:
        return default
    return cleaned.rstrip("/") or default


@dataclass(frozen=True)
class SyncConfig:
    """Sync engine and scheduler settings."""

    enabled: bool = True
    api_base_url: str = "http://localhost:3000/api"
    interval_seconds: int = 30
    request_timeout: float = 30.0
    page_size: int = 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "api_base_url": self.api_base_url,
            "interval_seconds": self.interval_seconds,
            "request_timeout": self.request_timeout,
            "page_size": self.page_size,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncConfig:
        return cls(
            enabled=bool(data.get("enabled", True)),
            api_base_url=_sanitize_url(data.get("api_base_url"), cls.api_base_url),
            interval_seconds=_clamp_int(data.get("interval_seconds", 30), 30, 10, 86400),
            request_timeout=_clamp_float(data.get("request_timeout", 30.0), 30.0, 1.0, 300.0),
            page_size=_clamp_int(data.get("page_size", 100), 100, 1, 100),
        )


@dataclass(frozen=True)
class ConnectivityConfig:
    """Heartbeat probing and retry queue settings."""

    heartbeat_interval: float = 30.0
    probe_url: str = "http://localhost:3000/manifest.json"
    probe_timeout: float = 5.0
    retry_base_delay: float = 1.0
    retry_max_delay: float = 300.0
    max_attempts: int = 10

    def to_dict(self) -> dict[str, Any]:
        return {
            "heartbeat_interval": self.heartbeat_interval,
            "probe_url": self.probe_url,
            "probe_timeout": self.probe_timeout,
            "retry_base_delay": self.retry_base_delay,
            "retry_max_delay": self.retry_max_delay,
            "max_attempts": self.max_attempts,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConnectivityConfig:
        return cls(
            heartbeat_interval=_clamp_float(data.get("heartbeat_interval", 30), 30.0, 1.0, 3600.0),
            probe_url=_sanitize_url(data.get("probe_url"), cls.probe_url),
            probe_timeout=_clamp_float(data.get("probe_timeout", 5), 5.0, 0.5, 60.0),
            retry_base_delay=_clamp_float(data.get("retry_base_delay", 1), 1.0, 0.0, 60.0),
            retry_max_delay=_clamp_float(data.get("retry_max_delay", 300), 300.0, 1.0, 86400.0),
            max_attempts=_clamp_int(data.get("max_attempts", 10), 10, 1, 1000),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Local store settings."""

    backend: str = "sqlite"  # sqlite, memory
    db_name: str = "journal.db"

    def to_dict(self) -> dict[str, Any]:
        return {"backend": self.backend, "db_name": self.db_name}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StorageConfig:
        backend = str(data.get("backend", "sqlite"))
        if backend not in ("sqlite", "memory"):
            logger.warning("Unknown storage backend %r, using sqlite", backend)
            backend = "sqlite"
        db_name = str(data.get("db_name", "journal.db"))
        if "/" in db_name or "\\" in db_name or not db_name.endswith(".db"):
            db_name = "journal.db"
        return cls(backend=backend, db_name=db_name)


@dataclass
class UnifiedConfig:
    """Client configuration for StillMind.

    Storage location: ~/.stillmind/config.toml
    """

    data_dir: Path = field(default_factory=get_stillmind_dir)
    sync: SyncConfig = field(default_factory=SyncConfig)
    connectivity: ConnectivityConfig = field(default_factory=ConnectivityConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    version: str = "1.0"

    @classmethod
    def load(cls, config_path: Path | None = None) -> UnifiedConfig:
        """Load configuration from file, or create default if doesn't exist."""
        if config_path is None:
            data_dir = get_stillmind_dir()
            config_path = data_dir / "config.toml"
        else:
            data_dir = config_path.parent

        if not config_path.exists():
            config = cls(data_dir=data_dir)
            config.save()
            return config

        with open(config_path, "rb") as f:
            data = tomllib.load(f)

        return cls(
            data_dir=data_dir,
            sync=SyncConfig.from_dict(data.get("sync", {})),
            connectivity=ConnectivityConfig.from_dict(data.get("connectivity", {})),
            storage=StorageConfig.from_dict(data.get("storage", {})),
            version=str(data.get("version", "1.0")),
        )

    def save(self) -> None:
        """Save configuration to TOML file (atomic write via temp+rename)."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        config_path = self.config_path

        lines = [
            "# StillMind Configuration",
            "",
            f'version = "{self.version}"',
            "",
            "# Sync engine settings",
            "[sync]",
            f"enabled = {'true' if self.sync.enabled else 'false'}",
            f'api_base_url = "{self.sync.api_base_url}"',
            f"interval_seconds = {self.sync.interval_seconds}",
            f"request_timeout = {self.sync.request_timeout}",
            f"page_size = {self.sync.page_size}",
            "",
            "# Connectivity monitor settings",
            "[connectivity]",
            f"heartbeat_interval = {self.connectivity.heartbeat_interval}",
            f'probe_url = "{self.connectivity.probe_url}"',
            f"probe_timeout = {self.connectivity.probe_timeout}",
            f"retry_base_delay = {self.connectivity.retry_base_delay}",
            f"retry_max_delay = {self.connectivity.retry_max_delay}",
            f"max_attempts = {self.connectivity.max_attempts}",
            "",
            "# Local storage settings",
            "[storage]",
            f'backend = "{self.storage.backend}"',
            f'db_name = "{self.storage.db_name}"',
        ]

        content = "\n".join(lines) + "\n"
        fd, tmp_path = tempfile.mkstemp(dir=str(self.data_dir), suffix=".toml.tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            Path(tmp_path).replace(config_path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    @property
    def config_path(self) -> Path:
        """Get path to config file."""
        return self.data_dir / "config.toml"

    @property
    def db_path(self) -> Path:
        """Get path to the local journal database."""
        return self.data_dir / self.storage.db_name


# Singleton instance for easy access
_config: UnifiedConfig | None = None


def get_config(reload: bool = False) -> UnifiedConfig:
    """Get the unified configuration (singleton).

    Args:
        reload: Force reload from disk

    Returns:
        UnifiedConfig instance
    """
    global _config
    if _config is None or reload:
        _config = UnifiedConfig.load()
    return _config
