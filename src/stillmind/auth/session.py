"""Authenticated session against the remote entry service."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import aiohttp

from stillmind.errors import AuthError, NetworkError, SessionExpired, ValidationError

if TYPE_CHECKING:
    from stillmind.storage.base import EntryStore

logger = logging.getLogger(__name__)

TOKEN_KEY = "auth_token"
USER_KEY = "auth_user"
LAST_SYNC_KEY = "lastSyncTime"

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_MAGIC_TOKEN_PATTERN = re.compile(r"^[a-f0-9]{64}$")
_CALLBACK_PATTERN = re.compile(r"auth-success\?token=([^&]+)")

LogoutListener = Callable[[], Any]


@dataclass(frozen=True)
class FetchResponse:
    """A fully read HTTP response."""

    status: int
    data: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def is_valid_email(email: str) -> bool:
    return isinstance(email, str) and bool(_EMAIL_PATTERN.match(email))


def is_valid_magic_token(token: str) -> bool:
    return isinstance(token, str) and bool(_MAGIC_TOKEN_PATTERN.match(token))


class AuthSession:
    """
    Bearer-token session for the remote entry service.

    The credential is persisted in the store's settings so it survives
    restarts. Any 401/403 from the server invalidates the session and
    raises SessionExpired; callers must not retry on it.

    Usage:
        session = AuthSession(store, "https://journal.example.com/api")
        await session.load()
        if session.is_authenticated():
            response = await session.authenticated_fetch("/entries")
    """

    def __init__(
        self,
        store: EntryStore,
        base_url: str,
        *,
        timeout: float = 30.0,
    ) -> None:
        self._store = store
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._token: str | None = None
        self._user: dict[str, Any] | None = None
        self._http: aiohttp.ClientSession | None = None
        self._logout_listeners: list[LogoutListener] = []

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def current_user(self) -> dict[str, Any] | None:
        return self._user

    @property
    def token(self) -> str | None:
        return self._token

    def is_authenticated(self) -> bool:
        return bool(self._token)

    def build_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    async def load(self) -> None:
        """Restore a persisted session."""
        token = await self._store.get_setting(TOKEN_KEY)
        user = await self._store.get_setting(USER_KEY)
        self._token = token if isinstance(token, str) and token else None
        self._user = user if isinstance(user, dict) else None

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        if self._http:
            await self._http.close()
            self._http = None

    def on_logout(self, callback: LogoutListener) -> Callable[[], None]:
        """Register a callback for session end (logout or expiry)."""
        self._logout_listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._logout_listeners:
                self._logout_listeners.remove(callback)

        return unsubscribe

    # ── Login ───────────────────────────────────────────────────────

    async def request_magic_link(self, email: str) -> dict[str, Any]:
        """Ask the server to email a sign-in link.

        Raises:
            ValidationError: If the email is malformed or rejected
            NetworkError: On transport failure or server error
        """
        if not is_valid_email(email):
            raise ValidationError("Valid email required")

        response = await self._send(
            "POST", self.build_url("/auth/request"), json={"email": email}
        )
        data = response.data if isinstance(response.data, dict) else {}
        if response.status == 400:
            raise ValidationError(data.get("error") or "Valid email required")
        if not response.ok:
            raise NetworkError(
                data.get("error") or "Failed to send magic link", status_code=response.status
            )
        return data

    async def verify_magic_link(self, token: str) -> dict[str, Any]:
        """Exchange a magic-link token for a session token.

        Raises:
            ValidationError: If the token is malformed
            AuthError: If the token is unknown, expired or already used
        """
        if not is_valid_magic_token(token):
            raise ValidationError("Invalid token format")

        response = await self._send(
            "GET",
            self.build_url("/auth/verify"),
            params={"token": token},
            headers={"Accept": "application/json"},
        )
        data = response.data if isinstance(response.data, dict) else {}
        if response.status == 400:
            raise AuthError(data.get("error") or "Invalid or expired token")
        if not response.ok or not data.get("token"):
            raise NetworkError("Failed to verify magic link", status_code=response.status)

        user = {"email": data["email"]} if data.get("email") else None
        await self.set_session(str(data["token"]), user)
        return data

    async def handle_auth_callback(self, url: str) -> bool:
        """Pick up a session token from an ``#auth-success?token=...`` redirect."""
        match = _CALLBACK_PATTERN.search(url)
        if not match:
            return False
        await self.set_session(match.group(1), None)
        return True

    async def set_session(self, token: str, user: dict[str, Any] | None) -> None:
        """Store a session credential."""
        self._token = token
        self._user = user
        await self._store.put_setting(TOKEN_KEY, token)
        if user is not None:
            await self._store.put_setting(USER_KEY, user)
        else:
            await self._store.delete_setting(USER_KEY)
        logger.info("Session established")

    # ── Logout ──────────────────────────────────────────────────────

    async def invalidate(self) -> None:
        """Drop the credential and cached user, keeping local entries."""
        was_authenticated = self.is_authenticated()
        self._token = None
        self._user = None
        await self._store.delete_setting(TOKEN_KEY)
        await self._store.delete_setting(USER_KEY)
        if was_authenticated:
            await self._notify_logout()

    async def logout(self) -> None:
        """Clear the credential and purge the user's local data."""
        await self.invalidate()
        await self._store.clear_user_data()
        await self._store.delete_setting(LAST_SYNC_KEY)
        logger.info("Logged out")

    async def _notify_logout(self) -> None:
        for callback in list(self._logout_listeners):
            try:
                result = callback()
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.warning("Logout listener failed", exc_info=True)

    # ── Requests ────────────────────────────────────────────────────

    async def authenticated_fetch(
        self,
        url: str,
        *,
        method: str = "GET",
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> FetchResponse:
        """Make an API request with the bearer credential attached.

        Raises:
            AuthError: If there is no session
            SessionExpired: If the server rejects the credential
            NetworkError: On transport failure
        """
        if not self._token:
            raise AuthError("Not authenticated")

        response = await self._send(
            method,
            self.build_url(url),
            json=json,
            params=params,
            headers={"Authorization": f"Bearer {self._token}"},
        )

        if response.status in (401, 403):
            logger.warning("Server rejected credential (HTTP %d), ending session", response.status)
            await self.invalidate()
            raise SessionExpired()

        return response

    async def _send(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> FetchResponse:
        """Perform one HTTP request and read the body."""
        if self._http is None:
            self._http = aiohttp.ClientSession(timeout=self._timeout)

        try:
            async with self._http.request(
                method, url, json=json, params=params, headers=headers
            ) as resp:
                if resp.content_type == "application/json":
                    data = await resp.json()
                else:
                    data = await resp.text()
                return FetchResponse(status=resp.status, data=data)
        except (aiohttp.ClientError, TimeoutError) as e:
            raise NetworkError(f"Connection error: {e}") from e
