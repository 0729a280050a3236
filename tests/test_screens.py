"""Tests for screen view-models."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from newsfeed_sync.events import EventChannel
from newsfeed_sync.keys import (
    all_news_key,
    bookmark_key,
    bookmarks_key,
    categories_key,
    comments_key,
)
from newsfeed_sync.local_state import LocalState, MemoryKeyValueStore
from newsfeed_sync.models import (
    ApiError,
    Bookmark,
    Category,
    Comment,
    CommentAuthor,
    CommentPage,
    LikeState,
    NewsItem,
    Page,
    UserProfile,
)
from newsfeed_sync.query_client import QueryClient
from newsfeed_sync.screens import CommentThread, HomeFeed, NewsDetail, NewsSearch, SavedNews
from newsfeed_sync.session import Session

USER = UserProfile(id=7, role="student")


def create_news(news_id: int, title: str | None = None) -> NewsItem:
    return NewsItem(
        id=news_id,
        title=title if title is not None else f"News {news_id}",
        category=Category(name="Campus"),
    )


def page_at(offset: int, limit: int = 10, category_id: int = 0) -> Page:
    return Page(
        items=[create_news(offset + 1), create_news(offset + 2)],
        has_more=offset < 10,
        next_offset=offset + limit,
    )


def create_comment(comment_id: int, status: str = "approved") -> Comment:
    return Comment(
        id=comment_id,
        content="text",
        created_at=None,
        author=CommentAuthor(id=1),
        status=status,
    )


def create_session(signed_in: bool = True, user: UserProfile = USER):
    """Helper returning a Session backed by a mocked API and channel."""
    api = MagicMock()
    api.get_breaking_news.return_value = [create_news(1), create_news(2)]
    api.get_news_page.side_effect = page_at

    socket_client = MagicMock()
    socket_client.connected = True
    channel = EventChannel("https://news.example.edu", "jwt", client=socket_client)
    connections = MagicMock()
    connections.current.return_value = channel
    connections.connect = AsyncMock(return_value=channel)
    connections.disconnect = AsyncMock()

    session = Session(api, LocalState(MemoryKeyValueStore()), connections, QueryClient())
    if signed_in:
        session.user = user
        session.token = "jwt"
    return session, api, channel


class TestHomeFeed:
    """Tests for HomeFeed."""

    def test_load(self) -> None:
        """Load fetches breaking news and the first feed page."""
        session, api, _ = create_session()
        screen = HomeFeed(session, session._local_state)

        breaking, feed = asyncio.run(screen.load())

        assert breaking.ok and feed.ok
        assert [i.id for i in screen.breaking_news] == [1, 2]
        assert [i.id for i in screen.news] == [1, 2]
        assert screen.has_more is True
        api.get_news_page.assert_called_once_with(offset=0, limit=10, category_id=0)

    def test_load_without_session_skips_fetch(self) -> None:
        """Signed-out screens make no requests."""
        session, api, _ = create_session(signed_in=False)
        screen = HomeFeed(session, session._local_state)

        breaking, feed = asyncio.run(screen.load())

        assert breaking.from_cache and feed.from_cache
        api.get_breaking_news.assert_not_called()
        api.get_news_page.assert_not_called()

    def test_load_categories(self) -> None:
        """Categories are fetched once and cached under the shared key."""
        session, api, _ = create_session()
        api.get_categories.return_value = [
            Category(id=1, name="Campus"),
            Category(id=2, name="Events"),
        ]
        screen = HomeFeed(session, session._local_state)

        async def run():
            first = await screen.load_categories()
            second = await screen.load_categories()
            return first, second

        first, second = asyncio.run(run())

        assert first.ok is True
        assert second.from_cache is True
        assert [c.name for c in screen.categories] == ["Campus", "Events"]
        assert session.queries.store.get_value(categories_key()) == screen.categories
        api.get_categories.assert_called_once_with()

    def test_load_categories_without_session(self) -> None:
        """Signed-out screens show no categories and make no request."""
        session, api, _ = create_session(signed_in=False)
        screen = HomeFeed(session, session._local_state)

        result = asyncio.run(screen.load_categories())

        assert result.data == []
        assert screen.categories == []
        api.get_categories.assert_not_called()

    def test_load_more(self) -> None:
        """load_more() appends the next page."""
        session, _, _ = create_session()
        screen = HomeFeed(session, session._local_state)

        async def run():
            await screen.load()
            return await screen.load_more()

        asyncio.run(run())

        assert [i.id for i in screen.news] == [1, 2, 11, 12]
        assert screen.has_more is False

    def test_event_while_focused_patches_both_lists(self) -> None:
        """A focused screen patches breaking news and the feed."""
        session, _, channel = create_session()
        screen = HomeFeed(session, session._local_state)
        asyncio.run(screen.load())

        screen.focus()
        channel.dispatch("news:deleted", {"id": 1})

        assert [i.id for i in screen.breaking_news] == [2]
        assert [i.id for i in screen.news] == [2]

    def test_blurred_screen_ignores_events(self) -> None:
        """A blurred screen no longer reacts to events."""
        session, _, channel = create_session()
        screen = HomeFeed(session, session._local_state)
        asyncio.run(screen.load())

        screen.focus()
        screen.blur()
        channel.dispatch("news:deleted", {"id": 1})

        assert [i.id for i in screen.breaking_news] == [1, 2]
        assert screen.reconciler.is_active is False

    def test_focus_without_session_stays_inactive(self) -> None:
        """Focus without a session does not activate the reconciler."""
        session, _, _ = create_session(signed_in=False)
        screen = HomeFeed(session, session._local_state)

        screen.focus()

        assert screen.reconciler.is_active is False

    def test_focus_marks_keys_stale(self) -> None:
        """Focus invalidates the screen's keys."""
        session, _, _ = create_session()
        screen = HomeFeed(session, session._local_state)
        asyncio.run(screen.load())

        screen.focus()

        assert session.queries.store.is_stale(screen.breaking_key) is True
        assert session.queries.store.is_stale(screen.feed_key) is True

    def test_on_change_receives_updates(self) -> None:
        """on_change is called when a watched key changes."""
        session, _, channel = create_session()
        on_change = MagicMock()
        screen = HomeFeed(session, session._local_state, on_change=on_change)
        asyncio.run(screen.load())
        screen.focus()
        on_change.reset_mock()

        channel.dispatch("news:updated", {"id": 2, "title": "Renamed"})

        assert on_change.called
        assert screen.breaking_news[1].title == "Renamed"

    def test_change_category_switches_key(self) -> None:
        """Changing category moves the feed and the reconciler to the new key."""
        session, api, _ = create_session()
        screen = HomeFeed(session, session._local_state)
        screen.focus()

        asyncio.run(screen.change_category(3))

        assert screen.feed_key == all_news_key(7, "jwt", 3)
        assert screen.reconciler.targets.paged_keys == [all_news_key(7, "jwt", 3)]
        api.get_news_page.assert_called_with(offset=0, limit=10, category_id=3)

    def test_refresh_resets_slide_index(self) -> None:
        """Refresh restarts the slider and refetches."""
        session, api, _ = create_session()
        local_state = session._local_state
        local_state.set_slide_index(3)
        screen = HomeFeed(session, local_state)

        async def run():
            await screen.load()
            await screen.refresh()

        asyncio.run(run())

        assert local_state.get_slide_index() == 0
        assert api.get_breaking_news.call_count == 2


class TestSavedNews:
    """Tests for SavedNews."""

    def test_load_maps_bookmarks(self) -> None:
        """Bookmarks map to news items, dropping untitled or missing ones."""
        session, api, _ = create_session()
        created = datetime(2024, 3, 2, 8, 0, tzinfo=timezone.utc)
        api.get_bookmarks.return_value = [
            Bookmark(news_id=1, created_at=created, news=create_news(1)),
            Bookmark(news_id=2, created_at=created, news=create_news(2, title="")),
            Bookmark(news_id=3, created_at=None, news=None),
        ]
        screen = SavedNews(session)

        asyncio.run(screen.load())

        assert [i.id for i in screen.news] == [1]
        assert screen.news[0].extra["bookmarkCreatedAt"] == created.isoformat()
        api.get_bookmarks.assert_called_once_with(7)

    def test_uses_longer_update_delay(self) -> None:
        """The saved screen requires titles and waits longer after updates."""
        session, _, _ = create_session()
        screen = SavedNews(session)
        assert screen.reconciler.targets.require_title is True
        assert screen.reconciler._update_delay == 0.2

    def test_paused_event_removes_saved_item(self) -> None:
        """A paused item leaves the saved list."""
        session, api, channel = create_session()
        api.get_bookmarks.return_value = [
            Bookmark(news_id=1, news=create_news(1)),
            Bookmark(news_id=2, news=create_news(2)),
        ]
        screen = SavedNews(session)
        asyncio.run(screen.load())
        screen.focus()

        channel.dispatch("news:paused", {"id": 2, "isPaused": True})

        assert [i.id for i in screen.news] == [1]


class TestNewsDetail:
    """Tests for NewsDetail."""

    def test_load_fetches_item_likes_and_bookmark(self) -> None:
        """Load fetches the item, its likes and its bookmark state."""
        session, api, _ = create_session()
        api.get_news.return_value = create_news(5)
        api.get_likes.return_value = LikeState(news_id=5, likes_count=2, is_liked=True)
        api.get_bookmarks.return_value = [Bookmark(news_id=5)]
        screen = NewsDetail(session, 5)

        result = asyncio.run(screen.load())

        assert result.ok is True
        assert screen.news.id == 5
        assert screen.likes.likes_count == 2
        assert screen.is_bookmarked is True
        assert screen.is_unavailable is False

    def test_not_found_marks_unavailable(self) -> None:
        """A 404 marks the item unavailable without a retry."""
        session, api, _ = create_session()
        api.get_news.side_effect = ApiError("not_found", "gone", status_code=404)
        screen = NewsDetail(session, 5)

        result = asyncio.run(screen.load())

        assert result.not_found is True
        assert screen.is_unavailable is True
        api.get_news.assert_called_once_with(5)
        api.get_likes.assert_not_called()

    def test_delete_event_marks_unavailable(self) -> None:
        """A delete event marks the open item unavailable."""
        session, api, channel = create_session()
        api.get_news.return_value = create_news(5)
        api.get_likes.return_value = LikeState(news_id=5, likes_count=0, is_liked=False)
        api.get_bookmarks.return_value = []
        screen = NewsDetail(session, 5)
        asyncio.run(screen.load())
        screen.focus()

        channel.dispatch("news:deleted", {"id": 5})

        assert screen.is_unavailable is True

    def test_reopened_item_is_available_after_resume(self) -> None:
        """A paused then resumed item loads normally when reopened."""
        session, api, channel = create_session()
        api.get_news.return_value = create_news(5)
        api.get_likes.return_value = LikeState(news_id=5, likes_count=0, is_liked=False)
        api.get_bookmarks.return_value = []
        screen = NewsDetail(session, 5)
        asyncio.run(screen.load())
        screen.focus()
        channel.dispatch("news:paused", {"id": 5, "isPaused": True})
        channel.dispatch("news:paused", {"id": 5, "isPaused": False})
        screen.blur()

        reopened = NewsDetail(session, 5)
        result = asyncio.run(reopened.load())

        assert result.ok is True
        assert reopened.is_unavailable is False
        assert reopened.news.id == 5
        assert api.get_news.call_count == 2
        assert api.get_likes.call_count == 2

    def test_unavailable_cleared_when_item_returns(self) -> None:
        """A later successful load clears an earlier 404."""
        session, api, _ = create_session()
        api.get_news.side_effect = [
            ApiError("not_found", "gone", status_code=404),
            create_news(5),
        ]
        api.get_likes.return_value = LikeState(news_id=5, likes_count=0, is_liked=False)
        api.get_bookmarks.return_value = []

        first = asyncio.run(NewsDetail(session, 5).load())
        screen = NewsDetail(session, 5)
        second = asyncio.run(screen.load())

        assert first.not_found is True
        assert second.ok is True
        assert screen.is_unavailable is False
        api.get_likes.assert_called_once_with(5)

    def test_still_missing_item_stays_unavailable(self) -> None:
        """Reopening an item the server still reports missing keeps the flag."""
        session, api, _ = create_session()
        api.get_news.side_effect = ApiError("not_found", "gone", status_code=404)

        asyncio.run(NewsDetail(session, 5).load())
        screen = NewsDetail(session, 5)
        result = asyncio.run(screen.load())

        assert result.not_found is True
        assert screen.is_unavailable is True
        assert api.get_news.call_count == 2

    def test_update_event_merges_detail(self) -> None:
        """An update event changes the open item."""
        session, api, channel = create_session()
        api.get_news.return_value = create_news(5)
        api.get_likes.return_value = LikeState(news_id=5, likes_count=0, is_liked=False)
        api.get_bookmarks.return_value = []
        screen = NewsDetail(session, 5)
        asyncio.run(screen.load())
        screen.focus()

        channel.dispatch("news:updated", {"id": 5, "title": "Updated"})

        assert screen.news.title == "Updated"

    def test_add_bookmark_inserts_cached_item(self) -> None:
        """Bookmarking inserts the cached item into the saved list."""
        session, api, _ = create_session()
        store = session.queries.store
        store.write(bookmarks_key(7), [create_news(1)])
        store.write(("news", 5), create_news(5))
        screen = NewsDetail(session, 5)

        result = asyncio.run(screen.add_bookmark())

        assert result.ok is True
        assert [i.id for i in store.get_value(bookmarks_key(7))] == [1, 5]
        assert store.get_value(bookmark_key(5, 7)) is True
        api.add_bookmark.assert_called_once_with(5)

    def test_toggle_like(self) -> None:
        """Toggling stores the server's like state."""
        session, api, _ = create_session()
        api.toggle_like.return_value = LikeState(news_id=5, likes_count=1, is_liked=True)
        screen = NewsDetail(session, 5)

        result = asyncio.run(screen.toggle_like())

        assert result.ok is True
        assert screen.likes.is_liked is True


class TestNewsSearch:
    """Tests for NewsSearch."""

    def test_empty_query_skips_fetch(self) -> None:
        """A blank query makes no request."""
        session, api, _ = create_session()

        result = asyncio.run(NewsSearch(session).search("   "))

        assert result.data == []
        api.search_news.assert_not_called()

    def test_search(self) -> None:
        """The query is trimmed before searching."""
        session, api, _ = create_session()
        api.search_news.return_value = [create_news(3)]

        result = asyncio.run(NewsSearch(session).search(" exam "))

        assert [i.id for i in result.data] == [3]
        api.search_news.assert_called_once_with("exam")


class TestCommentThread:
    """Tests for CommentThread."""

    def test_regular_user_sees_approved_across_pages(self) -> None:
        """Regular users see approved comments from every loaded page."""
        session, api, _ = create_session()
        api.get_comments.side_effect = [
            CommentPage([create_comment(1), create_comment(2, "pending")], total_count=4),
            CommentPage([create_comment(3), create_comment(4)], total_count=4, page=2),
        ]
        thread = CommentThread(session, 5)

        async def run():
            await thread.load()
            first_has_more = thread.has_more
            await thread.load_more()
            return first_has_more

        first_has_more = asyncio.run(run())

        assert first_has_more is True
        assert [c.id for c in thread.comments] == [1, 3, 4]
        assert thread.has_more is False

    def test_admin_sees_pending(self) -> None:
        """Admins also see pending comments."""
        session, api, _ = create_session(user=UserProfile(id=1, role="admin"))
        api.get_comments.return_value = CommentPage(
            [create_comment(1), create_comment(2, "pending")], total_count=2
        )
        thread = CommentThread(session, 5)

        asyncio.run(thread.load())

        assert [c.id for c in thread.comments] == [1, 2]

    def test_delete_patches_the_right_page(self) -> None:
        """Deleting only changes the page holding the comment."""
        session, api, _ = create_session()
        store = session.queries.store
        store.write(comments_key(5, 1), CommentPage([create_comment(1)], total_count=2))
        store.write(comments_key(5, 2), CommentPage([create_comment(2)], total_count=2, page=2))
        thread = CommentThread(session, 5)
        thread.page = 2

        asyncio.run(thread.delete(1))

        assert store.get_value(comments_key(5, 1)).comments == []
        assert len(store.get_value(comments_key(5, 2)).comments) == 1
        api.delete_comment.assert_called_once_with(1)
