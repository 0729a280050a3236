"""Screen view-models.

Each screen owns its cache keys and a FeedReconciler for them. focus()
subscribes to those keys, turns the reconciler on and invalidates the
keys so loaded data is refetched. blur() turns the reconciler off.
Rendering is left to the caller, which reads the properties below or
passes an on_change callback.
"""

import logging
from typing import Callable

from .cache_store import CacheEntry
from .config import BOOKMARK_UPDATE_INVALIDATE_DELAY_SECONDS, INVALIDATE_DELAY_SECONDS, PAGE_SIZE
from .filters import build_news_list, visible_comments
from .keys import (
    CacheKey,
    all_news_key,
    bookmark_key,
    bookmarks_key,
    breaking_news_key,
    categories_key,
    comments_key,
    likes_key,
    news_key,
    news_unavailable_key,
    search_news_key,
)
from .local_state import LocalState
from .models import Category, Comment, CommentPage, LikeState, NewsItem, PagedNews
from .mutations import BookmarkMutations, CommentMutations, LikeMutations, MutationResult, is_privileged
from .query_client import QueryResult
from .reconciler import FeedReconciler, ReconcileTargets
from .session import Session

logger = logging.getLogger(__name__)

OnChange = Callable[[CacheEntry], None]


def _skipped(data=None) -> QueryResult:
    return QueryResult(status="success", data=data, from_cache=True)


class Screen:
    """Base class for screens backed by reconciled cache keys."""

    invalidate_delay = INVALIDATE_DELAY_SECONDS
    update_invalidate_delay: float | None = None

    def __init__(self, session: Session, on_change: OnChange | None = None) -> None:
        self.session = session
        self.store = session.queries.store
        self.queries = session.queries
        self.focused = False
        self._on_change = on_change or (lambda entry: None)
        self._unsubscribers: list[Callable[[], None]] = []
        self.reconciler = FeedReconciler(
            self.store,
            self.targets(),
            invalidate_delay=self.invalidate_delay,
            update_invalidate_delay=self.update_invalidate_delay,
        )

    def targets(self) -> ReconcileTargets:
        raise NotImplementedError

    def focus(self) -> None:
        """Screen gained focus: watch keys, react to events, refetch."""
        self.focused = True
        if not self.session.is_authenticated:
            logger.info("%s focused without a session; staying inactive", type(self).__name__)
            return
        self.reconciler.retarget(self.targets())
        self._watch()
        self.reconciler.activate(self.session.connections.current())
        for key in self.reconciler.targets.all_keys:
            self.store.invalidate(key, exact=True)

    def blur(self) -> None:
        self.focused = False
        self.reconciler.deactivate()
        self._unwatch()

    def _retarget(self) -> None:
        self.reconciler.retarget(self.targets())
        if self.focused and self.session.is_authenticated:
            self._watch()

    def _watch(self) -> None:
        self._unwatch()
        self._unsubscribers = [
            self.store.subscribe(key, self._on_change) for key in self.reconciler.targets.all_keys
        ]

    def _unwatch(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []


class HomeFeed(Screen):
    """Breaking news carousel plus the category-filtered infinite feed."""

    def __init__(
        self,
        session: Session,
        local_state: LocalState,
        category_id: int = 0,
        on_change: OnChange | None = None,
    ) -> None:
        self.category_id = category_id
        self.local_state = local_state
        super().__init__(session, on_change)

    @property
    def breaking_key(self) -> CacheKey:
        user_id = self.session.user.id if self.session.user else None
        return breaking_news_key(user_id, self.session.token)

    @property
    def feed_key(self) -> CacheKey:
        user_id = self.session.user.id if self.session.user else None
        return all_news_key(user_id, self.session.token, self.category_id)

    def targets(self) -> ReconcileTargets:
        return ReconcileTargets(flat_keys=[self.breaking_key], paged_keys=[self.feed_key])

    @property
    def breaking_news(self) -> list[NewsItem]:
        return self.store.get_value(self.breaking_key, [])

    @property
    def news(self) -> list[NewsItem]:
        value = self.store.get_value(self.feed_key)
        return value.items if isinstance(value, PagedNews) else []

    @property
    def has_more(self) -> bool:
        value = self.store.get_value(self.feed_key)
        return isinstance(value, PagedNews) and value.next_offset is not None

    @property
    def categories(self) -> list[Category]:
        return self.store.get_value(categories_key(), [])

    async def load_categories(self) -> QueryResult:
        """Load the category tabs shown above the feed."""
        if not self.session.is_authenticated:
            return _skipped([])
        return await self.queries.fetch(categories_key(), self.session.api.get_categories)

    async def load(self) -> tuple[QueryResult, QueryResult]:
        """Load breaking news and the first feed page."""
        if not self.session.is_authenticated:
            logger.info("Skipping home feed load without a session")
            return _skipped([]), _skipped(PagedNews())
        breaking = await self.queries.fetch(self.breaking_key, self.session.api.get_breaking_news)
        feed = await self.queries.fetch_pages(self.feed_key, self._fetch_page)
        return breaking, feed

    async def load_more(self) -> QueryResult:
        if not self.session.is_authenticated:
            return _skipped(PagedNews())
        return await self.queries.fetch_next_page(self.feed_key, self._fetch_page)

    async def change_category(self, category_id: int) -> QueryResult:
        """Switch the feed to another category (0 = all)."""
        if not self.session.is_authenticated:
            return _skipped(PagedNews())
        logger.info("Category changed to %s", category_id)
        self.category_id = category_id
        self._retarget()
        self.store.invalidate(self.feed_key, exact=True)
        return await self.queries.fetch_pages(self.feed_key, self._fetch_page)

    async def refresh(self) -> tuple[QueryResult, QueryResult]:
        """Pull-to-refresh: restart the slider and refetch both queries."""
        if not self.session.is_authenticated:
            return _skipped([]), _skipped(PagedNews())
        self.local_state.clear_slide_index()
        breaking = await self.queries.fetch(
            self.breaking_key, self.session.api.get_breaking_news, force=True
        )
        feed = await self.queries.fetch_pages(self.feed_key, self._fetch_page, force=True)
        return breaking, feed

    def _fetch_page(self, offset: int):
        return self.session.api.get_news_page(
            offset=offset, limit=PAGE_SIZE, category_id=self.category_id
        )


class SavedNews(Screen):
    """The user's bookmarked news."""

    update_invalidate_delay = BOOKMARK_UPDATE_INVALIDATE_DELAY_SECONDS

    @property
    def key(self) -> CacheKey:
        return bookmarks_key(self.session.user.id if self.session.user else None)

    def targets(self) -> ReconcileTargets:
        return ReconcileTargets(flat_keys=[self.key], require_title=True)

    @property
    def news(self) -> list[NewsItem]:
        return self.store.get_value(self.key, [])

    async def load(self) -> QueryResult:
        if not self.session.is_authenticated:
            return _skipped([])
        return await self.queries.fetch(self.key, self._fetch_bookmarked_news)

    def _fetch_bookmarked_news(self) -> list[NewsItem]:
        bookmarks = self.session.api.get_bookmarks(self.session.user.id)
        items = [
            b.news.with_extra(
                bookmarkCreatedAt=b.created_at.isoformat() if b.created_at else None
            )
            for b in bookmarks
            if b.news is not None
        ]
        return build_news_list(items, require_title=True, context="bookmarks")


class NewsDetail(Screen):
    """A single news item with its likes and bookmark state."""

    def __init__(self, session: Session, news_id: int, on_change: OnChange | None = None) -> None:
        self.news_id = news_id
        super().__init__(session, on_change)

    def targets(self) -> ReconcileTargets:
        return ReconcileTargets(
            detail_id=self.news_id,
            detail_keys=[news_key(self.news_id), likes_key(self.news_id)],
        )

    @property
    def _user_id(self) -> int | None:
        return self.session.user.id if self.session.user else None

    @property
    def news(self) -> NewsItem | None:
        return self.store.get_value(news_key(self.news_id))

    @property
    def likes(self) -> LikeState:
        return self.store.get_value(
            likes_key(self.news_id), LikeState(news_id=self.news_id, likes_count=0, is_liked=False)
        )

    @property
    def is_bookmarked(self) -> bool:
        return bool(self.store.get_value(bookmark_key(self.news_id, self._user_id), False))

    @property
    def is_unavailable(self) -> bool:
        return bool(self.store.get_value(news_unavailable_key(self.news_id), False))

    async def load(self) -> QueryResult:
        """Load the item, then its likes and bookmark state.

        A 404 moves the screen to the unavailable state; it is not retried.
        An item already marked unavailable is re-checked with the server and
        cleared when it comes back.
        """
        if not self.session.is_authenticated:
            return _skipped()
        api = self.session.api
        was_unavailable = self.is_unavailable
        result = await self.queries.fetch(
            news_key(self.news_id), lambda: api.get_news(self.news_id), force=was_unavailable
        )
        if result.not_found:
            self.store.write(news_unavailable_key(self.news_id), True)
            return result
        if not result.ok:
            return result
        if was_unavailable:
            self.store.write(news_unavailable_key(self.news_id), False)
        elif self.is_unavailable:
            # Deleted or paused while the fetch was running
            return result

        await self.queries.fetch(likes_key(self.news_id), lambda: api.get_likes(self.news_id))
        await self.queries.fetch(
            bookmark_key(self.news_id, self._user_id), self._fetch_is_bookmarked
        )
        return result

    async def toggle_like(self) -> MutationResult:
        return await LikeMutations(self.session.api, self.store, self._user_id).toggle(self.news_id)

    async def add_bookmark(self) -> MutationResult:
        mutations = BookmarkMutations(self.session.api, self.store, self._user_id)
        return await mutations.add(self.news if self.news is not None else self.news_id)

    async def remove_bookmark(self) -> MutationResult:
        mutations = BookmarkMutations(self.session.api, self.store, self._user_id)
        return await mutations.remove(self.news_id)

    def _fetch_is_bookmarked(self) -> bool:
        bookmarks = self.session.api.get_bookmarks(self._user_id)
        return any(b.news_id == self.news_id for b in bookmarks)


class NewsSearch:
    """Free-text news search."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.query = ""

    async def search(self, query: str) -> QueryResult:
        self.query = query.strip()
        if not self.query:
            return _skipped([])
        api = self.session.api
        return await self.session.queries.fetch(
            search_news_key(self.query, self.session.token),
            lambda: api.search_news(self.query),
        )


class CommentThread:
    """Paged comments for one news item."""

    def __init__(self, session: Session, news_id: int) -> None:
        self.session = session
        self.news_id = news_id
        self.page = 1

    @property
    def store(self):
        return self.session.queries.store

    @property
    def privileged(self) -> bool:
        return is_privileged(self.session.user)

    @property
    def comments(self) -> list[Comment]:
        """Visible comments from every loaded page, in page order."""
        visible: list[Comment] = []
        for page in range(1, self.page + 1):
            value = self.store.get_value(comments_key(self.news_id, page))
            visible.extend(visible_comments(value, self.privileged))
        return visible

    @property
    def has_more(self) -> bool:
        value = self.store.get_value(comments_key(self.news_id, self.page))
        if not isinstance(value, CommentPage):
            return False
        loaded = sum(
            len(self.store.get_value(comments_key(self.news_id, p), CommentPage([], 0)).comments)
            for p in range(1, self.page + 1)
        )
        return value.total_count > loaded

    async def load(self) -> QueryResult:
        return await self._fetch(self.page)

    async def load_more(self) -> QueryResult:
        self.page += 1
        return await self._fetch(self.page)

    @property
    def mutations(self) -> CommentMutations:
        return CommentMutations(self.session.api, self.store, self.news_id, self.session.user)

    async def add(self, content: str) -> MutationResult:
        return await self.mutations.add(content)

    async def edit(self, comment_id: int, content: str) -> MutationResult:
        return await self.mutations.edit(comment_id, content)

    async def delete(self, comment_id: int) -> MutationResult:
        page = self._page_of(comment_id)
        return await self.mutations.delete(comment_id, page)

    async def approve(self, comment_id: int) -> MutationResult:
        return await self.mutations.approve(comment_id)

    def _page_of(self, comment_id: int) -> int:
        for page in range(1, self.page + 1):
            value = self.store.get_value(comments_key(self.news_id, page))
            if isinstance(value, CommentPage) and any(c.id == comment_id for c in value.comments):
                return page
        return self.page

    async def _fetch(self, page: int) -> QueryResult:
        if not self.session.is_authenticated:
            return _skipped(CommentPage([], 0, page))
        api = self.session.api
        return await self.session.queries.fetch(
            comments_key(self.news_id, page),
            lambda: api.get_comments(self.news_id, page=page),
        )
