"""Mutations with optimistic cache updates.

Bookmark and like mutations write the expected result to the cache
before the request is sent and snapshot the previous entries. A failed
request restores the snapshots and reports a user-facing message, so no
partial state is left behind.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from .api_client import NewsApiClient
from .cache_store import CacheStore
from .config import PRIVILEGED_ROLE
from .filters import contains_news
from .keys import CacheKey, bookmark_key, bookmarks_key, comments_key, comments_prefix, likes_key
from .models import CommentPage, LikeState, NewsItem, UserProfile

logger = logging.getLogger(__name__)


@dataclass
class MutationResult:
    """Outcome of a mutation.

    Attributes:
        ok: Whether the server accepted the change
        message: Text to show the user
        data: Server-confirmed value, when there is one
        error: The failure, when ok is False
    """

    ok: bool
    message: str
    data: Any = None
    error: Exception | None = None


def is_privileged(user: UserProfile | None) -> bool:
    return user is not None and user.role == PRIVILEGED_ROLE


class _Snapshots:
    """Entry snapshots taken before an optimistic write."""

    def __init__(self, store: CacheStore, keys: list[CacheKey]) -> None:
        self._store = store
        self._saved = {key: store.snapshot(key) for key in keys}
        for key in keys:
            store.cancel_fetch(key)

    def restore(self) -> None:
        for key, snapshot in self._saved.items():
            self._store.restore(key, snapshot)


class BookmarkMutations:
    """Add and remove bookmarks for one user."""

    def __init__(self, api: NewsApiClient, store: CacheStore, user_id: int) -> None:
        self._api = api
        self._store = store
        self._user_id = user_id

    async def add(self, news: NewsItem | int) -> MutationResult:
        """Bookmark a news item.

        With a full NewsItem the item is appended to the cached bookmark
        list right away. With only an id, just the bookmarked flag is set
        and the list catches up when it is refetched.

        Args:
            news: The item, or its id

        Returns:
            MutationResult
        """
        news_id = news.id if isinstance(news, NewsItem) else int(news)
        list_key = bookmarks_key(self._user_id)
        flag_key = bookmark_key(news_id, self._user_id)
        snapshots = _Snapshots(self._store, [list_key, flag_key])

        if isinstance(news, NewsItem):
            self._store.patch(
                list_key, lambda items: items if contains_news(items, news_id) else [*items, news]
            )
        else:
            logger.info("Bookmarking %s by id only; list insert deferred to refetch", news_id)
        self._store.write(flag_key, True)

        try:
            data = await asyncio.to_thread(self._api.add_bookmark, news_id)
        except Exception as e:
            snapshots.restore()
            logger.error("Failed to add bookmark %s: %s", news_id, e)
            return MutationResult(ok=False, message="Failed to save news", error=e)

        self._store.invalidate(list_key)
        return MutationResult(ok=True, message="News Bookmarked!", data=data)

    async def remove(self, news_id: int) -> MutationResult:
        """Remove a bookmark, dropping the item from the cached list first."""
        list_key = bookmarks_key(self._user_id)
        flag_key = bookmark_key(news_id, self._user_id)
        snapshots = _Snapshots(self._store, [list_key, flag_key])

        self._store.patch(
            list_key, lambda items: [i for i in items if getattr(i, "id", None) != news_id]
        )
        self._store.write(flag_key, False)

        try:
            await asyncio.to_thread(self._api.remove_bookmark, news_id)
        except Exception as e:
            snapshots.restore()
            logger.error("Failed to remove bookmark %s: %s", news_id, e)
            return MutationResult(ok=False, message="Failed to unsave news", error=e)

        self._store.invalidate(list_key)
        return MutationResult(ok=True, message="Unbookmarked!")


class LikeMutations:
    """Toggle the viewer's like on news items."""

    def __init__(self, api: NewsApiClient, store: CacheStore, user_id: int | None) -> None:
        self._api = api
        self._store = store
        self._user_id = user_id

    async def toggle(self, news_id: int) -> MutationResult:
        """Flip the like locally, then apply the server's returned state."""
        key = likes_key(news_id)
        snapshots = _Snapshots(self._store, [key])

        current = self._store.get_value(key)
        if isinstance(current, LikeState):
            self._store.write(key, current.toggled())

        try:
            state = await asyncio.to_thread(self._api.toggle_like, news_id, self._user_id)
        except Exception as e:
            snapshots.restore()
            logger.error("Failed to toggle like on %s: %s", news_id, e)
            return MutationResult(ok=False, message="Failed to update like", error=e)

        self._store.write(key, state)
        return MutationResult(ok=True, message="", data=state)


class CommentMutations:
    """Comment actions on one news item."""

    def __init__(
        self, api: NewsApiClient, store: CacheStore, news_id: int, user: UserProfile | None
    ) -> None:
        self._api = api
        self._store = store
        self._news_id = news_id
        self._user = user

    async def add(self, content: str) -> MutationResult:
        if not content.strip():
            return MutationResult(ok=False, message="Comment cannot be empty.")
        user_id = self._user.id if self._user else None
        try:
            await asyncio.to_thread(self._api.add_comment, self._news_id, user_id, content)
        except Exception as e:
            logger.error("Failed to add comment on %s: %s", self._news_id, e)
            return MutationResult(ok=False, message="Failed to submit comment.", error=e)

        self._store.invalidate(comments_prefix(self._news_id), exact=False)
        if is_privileged(self._user):
            return MutationResult(ok=True, message="Comment added successfully.")
        return MutationResult(
            ok=True,
            message="We have received your comment successfully and will review.",
        )

    async def edit(self, comment_id: int, content: str) -> MutationResult:
        try:
            await asyncio.to_thread(self._api.edit_comment, comment_id, content)
        except Exception as e:
            logger.error("Failed to edit comment %s: %s", comment_id, e)
            return MutationResult(ok=False, message="Failed to edit comment.", error=e)

        self._store.invalidate(comments_prefix(self._news_id), exact=False)
        return MutationResult(ok=True, message="Comment updated successfully.")

    async def delete(self, comment_id: int, page: int) -> MutationResult:
        """Delete a comment and drop it from the cached page."""
        try:
            await asyncio.to_thread(self._api.delete_comment, comment_id)
        except Exception as e:
            logger.error("Failed to delete comment %s: %s", comment_id, e)
            return MutationResult(ok=False, message="Failed to delete comment.", error=e)

        def drop(value: CommentPage) -> CommentPage:
            comments = [c for c in value.comments if c.id != comment_id]
            removed = len(value.comments) - len(comments)
            return CommentPage(
                comments=comments,
                total_count=max(value.total_count - removed, 0),
                page=value.page,
            )

        self._store.patch(comments_key(self._news_id, page), drop)
        return MutationResult(ok=True, message="Comment deleted successfully.")

    async def approve(self, comment_id: int) -> MutationResult:
        if not is_privileged(self._user):
            return MutationResult(ok=False, message="Only administrators can approve comments.")
        try:
            await asyncio.to_thread(self._api.approve_comment, comment_id)
        except Exception as e:
            logger.error("Failed to approve comment %s: %s", comment_id, e)
            return MutationResult(ok=False, message="Failed to approve comment.", error=e)

        self._store.invalidate(comments_prefix(self._news_id), exact=False)
        return MutationResult(ok=True, message="Comment approved successfully.")
