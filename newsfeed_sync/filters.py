"""List construction and patch helpers for cached news.

Every list shown in a feed is built with build_news_list(), which keeps
the first occurrence of each id and drops items that may not be shown.
The patch helpers are pure: they return a new value and leave anything
they do not recognize unchanged.
"""

import logging
from dataclasses import replace
from typing import Any, Iterable

from .models import Comment, CommentPage, NewsItem, Page, PagedNews

logger = logging.getLogger(__name__)


def is_displayable(item: NewsItem, require_title: bool = False) -> bool:
    """Check whether an item may appear in a feed or bookmark list.

    Args:
        item: The news item
        require_title: Also require a non-empty title (saved news view)

    Returns:
        False for paused items and items without a named category
    """
    if item.is_paused:
        return False
    if item.category is None or not item.category.name:
        return False
    if require_title and not item.title:
        return False
    return True


def build_news_list(
    items: Iterable[NewsItem], require_title: bool = False, context: str = "feed"
) -> list[NewsItem]:
    """Deduplicate by id and drop undisplayable items, keeping response order.

    Args:
        items: Items in server response order
        require_title: Passed through to is_displayable()
        context: Name used in duplicate warnings

    Returns:
        List with each id at the position of its first occurrence
    """
    seen: set[int] = set()
    result: list[NewsItem] = []
    for item in items:
        if item.id in seen:
            logger.warning("Duplicate news ID found in %s: %s", context, item.id)
            continue
        if not is_displayable(item, require_title=require_title):
            continue
        seen.add(item.id)
        result.append(item)
    return result


def parse_news_list(raw: Any) -> list[NewsItem]:
    """Parse raw news payloads, skipping malformed entries.

    Args:
        raw: List of news objects from the API (anything else yields [])

    Returns:
        Parsed items in response order
    """
    if not isinstance(raw, list):
        return []

    items = []
    for entry in raw:
        try:
            items.append(NewsItem.from_dict(entry))
        except ValueError as e:
            logger.warning("Skipping malformed news entry: %s", e)
    return items


def _patch_pages(value: PagedNews, transform) -> PagedNews:
    pages = [replace(page, items=transform(page.items)) for page in value.pages]
    return PagedNews(pages=pages, page_offsets=list(value.page_offsets))


def _apply(value: Any, transform) -> Any:
    if isinstance(value, PagedNews):
        return _patch_pages(value, transform)
    if isinstance(value, list) and all(isinstance(v, NewsItem) for v in value):
        return transform(value)
    return value


def remove_news(value: Any, news_id: int) -> Any:
    """Remove an item from a flat list or every page of a paged feed."""
    return _apply(value, lambda items: [i for i in items if i.id != news_id])


def merge_news(value: Any, news_id: int, fields: dict[str, Any]) -> Any:
    """Merge changed fields into the matching item.

    Works on a flat list, a paged feed or a single NewsItem.
    """
    if isinstance(value, NewsItem):
        return value.merged(fields) if value.id == news_id else value
    return _apply(
        value,
        lambda items: [i.merged(fields) if i.id == news_id else i for i in items],
    )


def refilter(value: Any, require_title: bool = False) -> Any:
    """Re-apply the display filter after a patch.

    Duplicates are checked across pages so a paged feed keeps ids unique
    as a whole.
    """
    if isinstance(value, PagedNews):
        seen: set[int] = set()
        pages = []
        for page in value.pages:
            kept = []
            for item in build_news_list(page.items, require_title=require_title):
                if item.id not in seen:
                    seen.add(item.id)
                    kept.append(item)
            pages.append(replace(page, items=kept))
        return PagedNews(pages=pages, page_offsets=list(value.page_offsets))
    if isinstance(value, list) and all(isinstance(v, NewsItem) for v in value):
        return build_news_list(value, require_title=require_title)
    return value


def contains_news(value: Any, news_id: int) -> bool:
    if isinstance(value, PagedNews):
        return any(item.id == news_id for item in value.items)
    if isinstance(value, list):
        return any(isinstance(i, NewsItem) and i.id == news_id for i in value)
    return False


def append_page(value: PagedNews | None, offset: int, page: Page) -> PagedNews:
    """Return a paged feed with ``page`` appended at ``offset``.

    Items already present on earlier pages are dropped from the new page.
    """
    if value is None:
        value = PagedNews()
    seen = {item.id for item in value.items}
    items = [item for item in page.items if item.id not in seen]
    return PagedNews(
        pages=[*value.pages, replace(page, items=items)],
        page_offsets=[*value.page_offsets, offset],
    )


def visible_comments(page: CommentPage | None, privileged: bool) -> list[Comment]:
    """Comments a viewer may see: privileged viewers see every status."""
    if page is None:
        return []
    if privileged:
        return list(page.comments)
    return [c for c in page.comments if c.status == "approved"]
