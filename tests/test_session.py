"""Tests for Session."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from newsfeed_sync.local_state import LocalState, MemoryKeyValueStore
from newsfeed_sync.models import ApiError, UserProfile
from newsfeed_sync.query_client import QueryClient
from newsfeed_sync.session import Session, SessionError

USER = UserProfile(id=7, first_name="Ana", role="student")


def create_session(api: MagicMock | None = None):
    """Helper returning a Session and its collaborators."""
    api = api or MagicMock()
    api.sign_in.return_value = (USER, "jwt")
    connections = MagicMock()
    connections.connect = AsyncMock()
    connections.disconnect = AsyncMock()
    local_state = LocalState(MemoryKeyValueStore())
    queries = QueryClient()
    session = Session(api, local_state, connections, queries)
    return session, api, connections, local_state, queries


class TestSessionSignIn:
    """Tests for sign-in and restore."""

    def test_sign_in_persists_and_connects(self) -> None:
        """Sign-in stores the session, swaps the API token and connects."""
        session, api, connections, local_state, _ = create_session()

        user = asyncio.run(session.sign_in("ana@example.edu", "secret"))

        assert user == USER
        assert session.is_authenticated is True
        assert session.api is api.with_token.return_value
        api.with_token.assert_called_once_with("jwt")
        connections.connect.assert_awaited_once_with("jwt")
        assert local_state.load_session() == (USER, "jwt")

    def test_sign_in_failure_raises(self) -> None:
        """A rejected sign-in raises and stores nothing."""
        api = MagicMock()
        session, api, connections, local_state, _ = create_session(api)
        api.sign_in.side_effect = ApiError("unauthorized", "Invalid credentials", 401)

        with pytest.raises(SessionError, match="Invalid credentials"):
            asyncio.run(session.sign_in("ana@example.edu", "wrong"))

        assert session.is_authenticated is False
        connections.connect.assert_not_awaited()
        assert local_state.load_session() is None

    def test_restore_stored_session(self) -> None:
        """A stored session is restored and connected."""
        session, _, connections, local_state, _ = create_session()
        local_state.save_session(USER, "jwt")

        assert asyncio.run(session.restore()) is True
        assert session.user == USER
        connections.connect.assert_awaited_once_with("jwt")

    def test_restore_without_stored_session(self) -> None:
        """Nothing stored means nothing to restore."""
        session, _, connections, _, _ = create_session()

        assert asyncio.run(session.restore()) is False
        assert session.is_authenticated is False
        connections.connect.assert_not_awaited()


class TestSessionSignOut:
    """Tests for sign-out."""

    def test_sign_out_clears_everything(self) -> None:
        """Sign-out disconnects, tells the server and clears local data."""
        session, api, connections, local_state, queries = create_session()
        queries.store.write(("bookmarks", 7), [])

        async def run():
            await session.sign_in("ana@example.edu", "secret")
            await session.sign_out()

        asyncio.run(run())

        connections.disconnect.assert_awaited_once()
        api.with_token.return_value.sign_out.assert_called_once()
        assert session.is_authenticated is False
        assert session.api is api
        assert local_state.load_session() is None
        assert queries.store.keys() == []

    def test_server_failure_still_clears_local_state(self) -> None:
        """Local state is cleared even if the server call fails."""
        session, api, _, local_state, _ = create_session()
        api.with_token.return_value.sign_out.side_effect = ApiError("connection_error", "down")

        async def run():
            await session.sign_in("ana@example.edu", "secret")
            await session.sign_out()

        asyncio.run(run())

        assert session.user is None
        assert session.token is None
        assert local_state.load_session() is None

    def test_not_authenticated_while_logging_out(self) -> None:
        """The session reads as signed out before the channel closes."""
        session, _, connections, _, _ = create_session()
        observed = []

        async def record_state():
            observed.append(session.is_authenticated)

        connections.disconnect.side_effect = record_state

        async def run():
            await session.sign_in("ana@example.edu", "secret")
            await session.sign_out()

        asyncio.run(run())

        assert observed == [False]


class TestUpdatePassword:
    """Tests for update_password()."""

    def test_missing_fields(self) -> None:
        """Empty fields are rejected before any request."""
        session, *_ = create_session()
        result = asyncio.run(session.update_password("", "new", "new"))
        assert result.message == "Please fill in all password fields."

    def test_mismatch(self) -> None:
        """Mismatched new passwords are rejected."""
        session, *_ = create_session()
        result = asyncio.run(session.update_password("old", "new", "other"))
        assert result.message == "New passwords don't match."

    def test_success(self) -> None:
        """A valid change is sent for the signed-in user."""
        session, api, *_ = create_session()

        async def run():
            await session.sign_in("ana@example.edu", "secret")
            return await session.update_password("old", "new", "new")

        result = asyncio.run(run())

        assert result.ok is True
        api.with_token.return_value.update_password.assert_called_once_with(7, "old", "new")

    def test_server_rejection(self) -> None:
        """A server rejection gives a failure message."""
        session, api, *_ = create_session()
        api.with_token.return_value.update_password.side_effect = ApiError(
            "unauthorized", "wrong password", 401
        )

        async def run():
            await session.sign_in("ana@example.edu", "secret")
            return await session.update_password("old", "new", "new")

        result = asyncio.run(run())

        assert result.ok is False
        assert result.message == "Failed to update password."
