"""Cache key builders.

A cache key is a tuple of the query name followed by its parameters.
Keys compare structurally, and a shorter tuple acts as a prefix that
matches every longer key starting with it.
"""

from typing import Hashable

CacheKey = tuple[Hashable, ...]


def breaking_news_key(user_id: int | None, token: str | None) -> CacheKey:
    return ("breakingNews", user_id, token)


def all_news_key(user_id: int | None, token: str | None, category_id: int = 0) -> CacheKey:
    return ("allNews", user_id, token, category_id)


def all_news_prefix(user_id: int | None, token: str | None) -> CacheKey:
    """Prefix matching every category variant of the infinite feed."""
    return ("allNews", user_id, token)


def bookmarks_key(user_id: int | None) -> CacheKey:
    return ("bookmarks", user_id)


def bookmark_key(news_id: int, user_id: int | None) -> CacheKey:
    """Whether one news item is bookmarked by the user."""
    return ("bookmark", news_id, user_id)


def news_key(news_id: int) -> CacheKey:
    return ("news", news_id)


def news_unavailable_key(news_id: int) -> CacheKey:
    """Set to True once the item was deleted, paused or answered 404."""
    return ("newsUnavailable", news_id)


def likes_key(news_id: int) -> CacheKey:
    return ("likes", news_id)


def comments_key(news_id: int, page: int) -> CacheKey:
    return ("comments", news_id, page)


def comments_prefix(news_id: int) -> CacheKey:
    return ("comments", news_id)


def search_news_key(query: str, token: str | None) -> CacheKey:
    return ("searchNews", query, token)


def categories_key() -> CacheKey:
    return ("categories",)


def matches(key: CacheKey, prefix: CacheKey) -> bool:
    """Return True when ``key`` starts with ``prefix``."""
    return key[: len(prefix)] == prefix
