"""Authenticated session.

Holds the signed-in user and credential, persists them through
LocalState, and owns the event channel lifecycle: connected on sign-in
or restore, disconnected as soon as sign-out starts.
"""

import asyncio
import logging

from .api_client import NewsApiClient
from .events import ConnectionManager
from .local_state import LocalState
from .models import ApiError, UserProfile
from .mutations import MutationResult
from .query_client import QueryClient

logger = logging.getLogger(__name__)


class SessionError(Exception):
    """Raised when signing in fails."""


class Session:
    """The current user, their credential and their event channel."""

    def __init__(
        self,
        api: NewsApiClient,
        local_state: LocalState,
        connections: ConnectionManager,
        queries: QueryClient,
    ) -> None:
        """Initialize Session.

        Args:
            api: Unauthenticated API client (re-created with the credential)
            local_state: Persisted state for the stored session
            connections: Event channel manager
            queries: QueryClient whose cache is dropped on sign-out
        """
        self._anonymous_api = api
        self._api = api
        self._local_state = local_state
        self.connections = connections
        self.queries = queries
        self.user: UserProfile | None = None
        self.token: str | None = None
        self.is_logging_out = False

    @property
    def api(self) -> NewsApiClient:
        return self._api

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None and bool(self.token) and not self.is_logging_out

    async def restore(self) -> bool:
        """Resume a stored session.

        Returns:
            True when a stored session was found
        """
        stored = self._local_state.load_session()
        if stored is None:
            logger.info("No stored session")
            return False
        user, token = stored
        await self._start(user, token)
        logger.info("Session restored for user %s", user.id)
        return True

    async def sign_in(self, email: str, password: str) -> UserProfile:
        """Sign in and connect the event channel.

        Raises:
            SessionError: If the server rejects the credentials or is unreachable
        """
        try:
            user, token = await asyncio.to_thread(self._anonymous_api.sign_in, email, password)
        except ApiError as e:
            logger.error("Sign-in failed: %s", e)
            raise SessionError(e.message or "Failed to login") from e

        self._local_state.save_session(user, token)
        await self._start(user, token)
        logger.info("Signed in user %s", user.id)
        return user

    async def sign_out(self) -> None:
        """Sign out. Local state is cleared even if the server call fails."""
        self.is_logging_out = True
        await self.connections.disconnect()
        try:
            await asyncio.to_thread(self._api.sign_out)
        except ApiError as e:
            logger.error("Sign-out request failed: %s", e)
        finally:
            self._local_state.clear_session()
            self.queries.store.clear()
            self.user = None
            self.token = None
            self._api = self._anonymous_api
            self.is_logging_out = False
        logger.info("Signed out")

    async def update_password(
        self, current_password: str, new_password: str, confirm_password: str
    ) -> MutationResult:
        if not current_password or not new_password or not confirm_password:
            return MutationResult(ok=False, message="Please fill in all password fields.")
        if new_password != confirm_password:
            return MutationResult(ok=False, message="New passwords don't match.")
        if self.user is None:
            return MutationResult(ok=False, message="Not signed in.")

        try:
            await asyncio.to_thread(
                self._api.update_password, self.user.id, current_password, new_password
            )
        except ApiError as e:
            logger.error("Password update failed: %s", e)
            return MutationResult(ok=False, message="Failed to update password.", error=e)
        return MutationResult(ok=True, message="Password updated successfully.")

    async def _start(self, user: UserProfile, token: str) -> None:
        self.user = user
        self.token = token
        self.is_logging_out = False
        self._api = self._anonymous_api.with_token(token)
        await self.connections.connect(token)
