"""Error taxonomy shared by the store, the auth session and the sync engine."""

from __future__ import annotations


class StillMindError(Exception):
    """Base class for all StillMind errors."""


class ValidationError(StillMindError):
    """Malformed email, token or entry content, rejected before any side effect."""


class AuthError(StillMindError):
    """Invalid or missing credential. The current operation is terminated."""


class SessionExpired(AuthError):
    """The server rejected the bearer credential (HTTP 401/403).

    The session has already been invalidated when this is raised; callers
    must not retry the request.
    """

    def __init__(self, message: str = "Session expired. Please login again.") -> None:
        super().__init__(message)


class NetworkError(StillMindError):
    """Transport failure or unexpected HTTP status from the remote service."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StorageError(StillMindError):
    """Local persistence failure."""


class StorageUnavailable(StorageError):
    """The backing store cannot be opened or is no longer reachable."""
