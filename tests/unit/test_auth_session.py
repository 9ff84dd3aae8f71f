"""Tests for AuthSession."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from stillmind.auth.session import (
    LAST_SYNC_KEY,
    TOKEN_KEY,
    USER_KEY,
    AuthSession,
    FetchResponse,
    is_valid_email,
    is_valid_magic_token,
)
from stillmind.core.entry import Entry
from stillmind.errors import AuthError, NetworkError, SessionExpired, ValidationError
from stillmind.storage.memory_store import InMemoryEntryStore

BASE_URL = "https://journal.example.com/api"
MAGIC = "ab" * 32


def _session(store: InMemoryEntryStore, *responses: FetchResponse) -> AuthSession:
    session = AuthSession(store, BASE_URL + "/")
    session._send = AsyncMock(side_effect=list(responses))  # type: ignore[method-assign]
    return session


class TestValidators:
    @pytest.mark.parametrize("email", ["a@b.co", "first.last@example.org"])
    def test_valid_email(self, email: str) -> None:
        assert is_valid_email(email)

    @pytest.mark.parametrize("email", ["", "no-at-sign", "a@b", "a b@c.de"])
    def test_invalid_email(self, email: str) -> None:
        assert not is_valid_email(email)

    def test_magic_token_format(self) -> None:
        assert is_valid_magic_token(MAGIC)
        assert not is_valid_magic_token("AB" * 32)
        assert not is_valid_magic_token("ab" * 31)


class TestSessionState:
    async def test_load_restores_persisted_session(self, memory_store: InMemoryEntryStore) -> None:
        await memory_store.put_setting(TOKEN_KEY, "tok")
        await memory_store.put_setting(USER_KEY, {"email": "a@b.co"})
        session = AuthSession(memory_store, BASE_URL)

        await session.load()

        assert session.is_authenticated()
        assert session.token == "tok"
        assert session.current_user == {"email": "a@b.co"}

    async def test_load_without_session(self, memory_store: InMemoryEntryStore) -> None:
        session = AuthSession(memory_store, BASE_URL)
        await session.load()
        assert not session.is_authenticated()
        assert session.current_user is None

    def test_build_url(self, memory_store: InMemoryEntryStore) -> None:
        session = AuthSession(memory_store, BASE_URL + "/")
        assert session.build_url("/entries") == f"{BASE_URL}/entries"
        assert session.build_url("entries/sync") == f"{BASE_URL}/entries/sync"
        assert session.build_url("https://other.test/x") == "https://other.test/x"

    async def test_handle_auth_callback(self, memory_store: InMemoryEntryStore) -> None:
        session = AuthSession(memory_store, BASE_URL)

        assert await session.handle_auth_callback("https://app.test/#auth-success?token=xyz&x=1")
        assert session.token == "xyz"
        assert await memory_store.get_setting(TOKEN_KEY) == "xyz"

        assert not await session.handle_auth_callback("https://app.test/#today")


class TestMagicLink:
    async def test_request_magic_link(self, memory_store: InMemoryEntryStore) -> None:
        session = _session(memory_store, FetchResponse(200, {"success": True, "message": "sent"}))

        data = await session.request_magic_link("a@b.co")

        assert data["success"] is True
        method, url = session._send.call_args.args  # type: ignore[attr-defined]
        assert method == "POST"
        assert url == f"{BASE_URL}/auth/request"
        assert session._send.call_args.kwargs["json"] == {"email": "a@b.co"}  # type: ignore[attr-defined]

    async def test_request_rejects_bad_email_locally(
        self, memory_store: InMemoryEntryStore
    ) -> None:
        session = _session(memory_store)

        with pytest.raises(ValidationError):
            await session.request_magic_link("nope")
        session._send.assert_not_called()  # type: ignore[attr-defined]

    async def test_request_server_rejection(self, memory_store: InMemoryEntryStore) -> None:
        session = _session(memory_store, FetchResponse(400, {"error": "Valid email required"}))
        with pytest.raises(ValidationError, match="Valid email required"):
            await session.request_magic_link("a@b.co")

    async def test_request_server_error(self, memory_store: InMemoryEntryStore) -> None:
        session = _session(memory_store, FetchResponse(500, {"error": "mail down"}))
        with pytest.raises(NetworkError) as exc_info:
            await session.request_magic_link("a@b.co")
        assert exc_info.value.status_code == 500

    async def test_verify_stores_session(self, memory_store: InMemoryEntryStore) -> None:
        session = _session(
            memory_store,
            FetchResponse(200, {"success": True, "token": "session-tok", "email": "a@b.co"}),
        )

        await session.verify_magic_link(MAGIC)

        assert session.token == "session-tok"
        assert session.current_user == {"email": "a@b.co"}
        assert await memory_store.get_setting(TOKEN_KEY) == "session-tok"
        assert await memory_store.get_setting(USER_KEY) == {"email": "a@b.co"}
        headers = session._send.call_args.kwargs["headers"]  # type: ignore[attr-defined]
        assert headers["Accept"] == "application/json"

    async def test_verify_rejected_token(self, memory_store: InMemoryEntryStore) -> None:
        session = _session(memory_store, FetchResponse(400, {"error": "Token has expired"}))
        with pytest.raises(AuthError, match="expired"):
            await session.verify_magic_link(MAGIC)
        assert not session.is_authenticated()

    async def test_verify_bad_format(self, memory_store: InMemoryEntryStore) -> None:
        session = _session(memory_store)
        with pytest.raises(ValidationError):
            await session.verify_magic_link("short")


class TestAuthenticatedFetch:
    async def test_attaches_bearer_token(self, signed_in_store: InMemoryEntryStore) -> None:
        session = _session(signed_in_store, FetchResponse(200, {"entries": []}))
        await session.load()

        response = await session.authenticated_fetch("/entries", params={"limit": 5})

        assert response.ok
        kwargs = session._send.call_args.kwargs  # type: ignore[attr-defined]
        assert kwargs["headers"] == {"Authorization": "Bearer session-token"}
        assert kwargs["params"] == {"limit": 5}

    async def test_requires_session(self, memory_store: InMemoryEntryStore) -> None:
        session = _session(memory_store)
        with pytest.raises(AuthError):
            await session.authenticated_fetch("/entries")

    @pytest.mark.parametrize("status", [401, 403])
    async def test_rejected_credential_expires_session(
        self, signed_in_store: InMemoryEntryStore, status: int
    ) -> None:
        await signed_in_store.put(Entry.create("keep me", entry_id=1000))
        session = _session(signed_in_store, FetchResponse(status, {"error": "Invalid"}))
        await session.load()
        logged_out = AsyncMock()
        session.on_logout(logged_out)

        with pytest.raises(SessionExpired):
            await session.authenticated_fetch("/entries")

        assert not session.is_authenticated()
        assert await signed_in_store.get_setting(TOKEN_KEY) is None
        logged_out.assert_awaited_once()
        # Expiry does not purge local data
        assert await signed_in_store.get(1000) is not None

    async def test_transport_error_propagates(self, signed_in_store: InMemoryEntryStore) -> None:
        session = AuthSession(signed_in_store, BASE_URL)
        session._send = AsyncMock(side_effect=NetworkError("down"))  # type: ignore[method-assign]
        await session.load()

        with pytest.raises(NetworkError):
            await session.authenticated_fetch("/entries")
        assert session.is_authenticated()


class TestLogout:
    async def test_logout_purges_user_data(self, signed_in_store: InMemoryEntryStore) -> None:
        await signed_in_store.put(Entry.create("private", entry_id=1000))
        await signed_in_store.put_setting(LAST_SYNC_KEY, 12345)
        session = AuthSession(signed_in_store, BASE_URL)
        await session.load()
        calls: list[str] = []
        session.on_logout(lambda: calls.append("sync"))

        await session.logout()

        assert not session.is_authenticated()
        assert await signed_in_store.count() == 0
        assert await signed_in_store.get_setting(LAST_SYNC_KEY) is None
        assert calls == ["sync"]

    async def test_unsubscribed_listener_not_called(
        self, signed_in_store: InMemoryEntryStore
    ) -> None:
        session = AuthSession(signed_in_store, BASE_URL)
        await session.load()
        listener = AsyncMock()
        unsubscribe = session.on_logout(listener)
        unsubscribe()

        await session.logout()

        listener.assert_not_called()

    async def test_failing_listener_does_not_block_logout(
        self, signed_in_store: InMemoryEntryStore
    ) -> None:
        session = AuthSession(signed_in_store, BASE_URL)
        await session.load()
        session.on_logout(AsyncMock(side_effect=RuntimeError("boom")))

        await session.logout()

        assert not session.is_authenticated()
