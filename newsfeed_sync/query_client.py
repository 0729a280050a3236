"""Query orchestration over the Cache Store.

This module provides the QueryClient class, which fetches query results
with a cache-first strategy, one bounded retry, in-flight coalescing and
background refetch of invalidated keys. Fetchers are plain blocking
callables (typically NewsApiClient methods) run off the event loop.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal

from .cache_store import CacheStore
from .config import FETCH_RETRIES
from .filters import append_page
from .keys import CacheKey
from .models import ApiError, Page, PagedNews

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Any]
PageFetcher = Callable[[int], Page]


@dataclass
class QueryResult:
    """Outcome of a fetch, as consumed by screens.

    Attributes:
        status: "success" or "error"
        data: Fetched value, or the stale cached value after an error
        error: The final error when status is "error"
        from_cache: True when no network call was made
    """

    status: Literal["success", "error"]
    data: Any = None
    error: Exception | None = None
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @property
    def not_found(self) -> bool:
        return isinstance(self.error, ApiError) and self.error.is_not_found


class QueryClient:
    """Fetches query results into a CacheStore.

    Implements cache-first reads, last-fetch-wins resolution and
    background refetch when an observed key is invalidated.
    """

    def __init__(self, store: CacheStore | None = None, retries: int = FETCH_RETRIES) -> None:
        """Initialize QueryClient.

        Args:
            store: CacheStore to populate (a new one by default)
            retries: Extra attempts after a failed fetch
        """
        self.store = store if store is not None else CacheStore()
        self.store.on_stale = self._on_stale
        self._retries = retries
        self._refetchers: dict[CacheKey, Callable[[], Awaitable[QueryResult]]] = {}
        self._inflight: dict[CacheKey, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()

    async def fetch(self, key: CacheKey, fetcher: Fetcher, force: bool = False) -> QueryResult:
        """Fetch a single-value query.

        Args:
            key: Cache key of the query
            fetcher: Blocking callable returning the value
            force: If True, bypass the cache and supersede any running fetch

        Returns:
            QueryResult (never raises for fetch errors)
        """
        self._refetchers[key] = lambda: self.fetch(key, fetcher, force=True)

        if not force and not self.store.is_stale(key):
            return QueryResult(status="success", data=self.store.get_value(key), from_cache=True)

        return await self._run(key, lambda: self._call_with_retry(key, fetcher), force)

    async def fetch_pages(
        self, key: CacheKey, page_fetcher: PageFetcher, force: bool = False
    ) -> QueryResult:
        """Fetch (or refetch) every loaded page of an infinite query.

        The first load fetches offset 0. A refetch requests the same offsets
        that are cached, stopping early once the server reports no more pages.

        Args:
            key: Cache key of the feed
            page_fetcher: Blocking callable taking an offset, returning a Page
            force: If True, bypass the cache

        Returns:
            QueryResult whose data is a PagedNews
        """
        self._refetchers[key] = lambda: self.fetch_pages(key, page_fetcher, force=True)

        if not force and not self.store.is_stale(key):
            return QueryResult(status="success", data=self.store.get_value(key), from_cache=True)

        async def load() -> PagedNews:
            current = self.store.get_value(key)
            offsets = [0]
            if isinstance(current, PagedNews) and current.page_offsets:
                offsets = list(current.page_offsets)

            value = PagedNews()
            for offset in offsets:
                page = await self._call_with_retry(key, lambda o=offset: page_fetcher(o))
                value = append_page(value, offset, page)
                if not page.has_more:
                    break
            return value

        return await self._run(key, load, force)

    async def fetch_next_page(self, key: CacheKey, page_fetcher: PageFetcher) -> QueryResult:
        """Append the next page of an infinite query.

        An offset that is already cached, or an exhausted feed, is served
        from the cache without a network call.
        """
        inflight = self._inflight.get(key)
        if inflight is not None and not inflight.done():
            await asyncio.shield(inflight)

        current = self.store.get_value(key)
        if not isinstance(current, PagedNews) or not current.pages:
            return await self.fetch_pages(key, page_fetcher)

        offset = current.next_offset
        if offset is None or offset in current.page_offsets:
            return QueryResult(status="success", data=current, from_cache=True)

        async def load() -> PagedNews:
            page = await self._call_with_retry(key, lambda: page_fetcher(offset))
            latest = self.store.get_value(key)
            if not isinstance(latest, PagedNews):
                latest = current
            if offset in latest.page_offsets:
                return latest
            return append_page(latest, offset, page)

        return await self._run(key, load, force=True)

    def invalidate(self, key: CacheKey, exact: bool = True) -> None:
        self.store.invalidate(key, exact=exact)

    async def close(self) -> None:
        """Cancel running fetches and background refetches."""
        tasks = [*self._background, *self._inflight.values()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()
        self._inflight.clear()

    async def _run(
        self, key: CacheKey, load: Callable[[], Awaitable[Any]], force: bool
    ) -> QueryResult:
        task = self._inflight.get(key)
        if task is None or task.done() or force:
            version = self.store.begin_fetch(key)
            task = asyncio.ensure_future(self._resolve(key, version, load))
            self._inflight[key] = task
        return await asyncio.shield(task)

    async def _resolve(
        self, key: CacheKey, version: int, load: Callable[[], Awaitable[Any]]
    ) -> QueryResult:
        try:
            value = await load()
        except Exception as e:
            logger.error("Fetch failed for %s: %s", key, e)
            if self.store.is_current(key, version):
                self.store.fail(key, e)
            return QueryResult(status="error", data=self.store.get_value(key), error=e)
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]

        if not self.store.is_current(key, version):
            logger.debug("Discarding superseded result for %s", key)
            return QueryResult(status="success", data=self.store.get_value(key, value))

        self.store.write(key, value)
        return QueryResult(status="success", data=value)

    async def _call_with_retry(self, key: CacheKey, fetcher: Fetcher) -> Any:
        attempts = self._retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.to_thread(fetcher)
            except Exception as e:
                not_found = isinstance(e, ApiError) and e.is_not_found
                if not_found or attempt >= attempts:
                    raise
                logger.warning(
                    "Fetch for %s failed (attempt %d/%d): %s", key, attempt, attempts, e
                )

    def _on_stale(self, key: CacheKey) -> None:
        refetch = self._refetchers.get(key)
        if refetch is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; %s stays stale until next fetch", key)
            return

        task = loop.create_task(refetch())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
