"""Client-side cache and real-time reconciliation for a campus news feed.

This package keeps fetched feed, bookmark, like and comment data in a
keyed cache and patches it from server-pushed news events:
- CacheStore / QueryClient: Cached query results with refetch on invalidate
- EventChannel / ConnectionManager: Socket.IO event channel per session
- FeedReconciler: Event-to-patch mapping for one screen's keys
- Screens: HomeFeed, SavedNews, NewsDetail, NewsSearch, CommentThread
"""

from .app import NewsApp, create_app
from .cache_store import CacheEntry, CacheStore
from .events import ConnectionManager, EventChannel, NewsDeleted, NewsPaused, NewsUpdated
from .models import ApiError, NewsItem, Page, PagedNews
from .query_client import QueryClient, QueryResult
from .reconciler import FeedReconciler, ReconcileTargets
from .screens import CommentThread, HomeFeed, NewsDetail, NewsSearch, SavedNews
from .session import Session, SessionError

__all__ = [
    "ApiError",
    "CacheEntry",
    "CacheStore",
    "CommentThread",
    "ConnectionManager",
    "EventChannel",
    "FeedReconciler",
    "HomeFeed",
    "NewsApp",
    "NewsDeleted",
    "NewsDetail",
    "NewsItem",
    "NewsPaused",
    "NewsSearch",
    "NewsUpdated",
    "Page",
    "PagedNews",
    "QueryClient",
    "QueryResult",
    "ReconcileTargets",
    "SavedNews",
    "Session",
    "SessionError",
    "create_app",
]
