"""Feed Reconciler.

Applies real-time news events to the cache keys of one screen. Each event
is first patched into the cached lists so the change shows immediately,
then the same keys are invalidated after a short delay so a refetch
brings counts and ordering back in line with the server.

| event                      | patch                         | delayed invalidation |
|----------------------------|-------------------------------|----------------------|
| news:deleted               | remove; detail -> unavailable | list keys            |
| news:paused (paused)       | remove; detail -> unavailable | list keys            |
| news:paused (resumed)      | none                          | list keys            |
| news:updated               | merge into lists and detail   | list + detail keys   |
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from .cache_store import CacheStore
from .config import INVALIDATE_DELAY_SECONDS
from .events import EventChannel, NewsDeleted, NewsEvent, NewsPaused, NewsUpdated
from .filters import merge_news, refilter, remove_news
from .keys import CacheKey, news_key, news_unavailable_key

logger = logging.getLogger(__name__)


@dataclass
class ReconcileTargets:
    """Cache keys one screen holds.

    Attributes:
        flat_keys: Keys whose value is a list of NewsItem
        paged_keys: Keys whose value is a PagedNews
        detail_id: Id of the item shown in a detail view, if any
        detail_keys: Keys refetched when the detail item is updated
        require_title: Filter rule of the lists (saved view needs titles)
    """

    flat_keys: list[CacheKey] = field(default_factory=list)
    paged_keys: list[CacheKey] = field(default_factory=list)
    detail_id: int | None = None
    detail_keys: list[CacheKey] = field(default_factory=list)
    require_title: bool = False

    @property
    def list_keys(self) -> list[CacheKey]:
        return [*self.flat_keys, *self.paged_keys]

    @property
    def all_keys(self) -> list[CacheKey]:
        return [*self.list_keys, *self.detail_keys]


class FeedReconciler:
    """Keeps one screen's cache keys in step with pushed events.

    Inactive until activate() is called with a live channel; deactivate()
    unsubscribes and cancels any invalidation that has not fired yet.
    """

    def __init__(
        self,
        store: CacheStore,
        targets: ReconcileTargets,
        invalidate_delay: float = INVALIDATE_DELAY_SECONDS,
        update_invalidate_delay: float | None = None,
    ) -> None:
        """Initialize FeedReconciler.

        Args:
            store: Shared CacheStore
            targets: Keys to patch
            invalidate_delay: Seconds between a patch and its invalidation
            update_invalidate_delay: Delay after news:updated (default: invalidate_delay)
        """
        self._store = store
        self._targets = targets
        self._delay = invalidate_delay
        self._update_delay = (
            update_invalidate_delay if update_invalidate_delay is not None else invalidate_delay
        )
        self._unsubscribers: list[Callable[[], None]] = []
        self._pending: set[asyncio.TimerHandle] = set()

    @property
    def targets(self) -> ReconcileTargets:
        return self._targets

    @property
    def is_active(self) -> bool:
        return bool(self._unsubscribers)

    @property
    def pending_invalidations(self) -> int:
        return len(self._pending)

    def activate(self, channel: EventChannel | None) -> bool:
        """Subscribe to ``channel``.

        Returns:
            True when active afterwards; False without a channel
        """
        self.deactivate()
        if channel is None:
            return False
        self._unsubscribers = [
            channel.subscribe(self.handle),
            channel.on_reconnect(self._on_reconnect),
        ]
        return True

    def deactivate(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._cancel_pending()

    def retarget(self, targets: ReconcileTargets) -> None:
        """Switch to a new key set, dropping invalidations aimed at the old one."""
        self._cancel_pending()
        self._targets = targets

    def handle(self, event: NewsEvent) -> None:
        """Apply one event to the target keys."""
        if isinstance(event, NewsDeleted):
            logger.info("News deleted: %s", event.id)
            self._remove(event.id)
            self._mark_unavailable(event.id)
            self._schedule_invalidation(self._targets.list_keys, self._delay)

        elif isinstance(event, NewsPaused):
            logger.info("News paused: %s (isPaused=%s)", event.id, event.is_paused)
            if event.is_paused:
                self._remove(event.id)
                self._mark_unavailable(event.id)
            self._schedule_invalidation(self._targets.list_keys, self._delay)

        elif isinstance(event, NewsUpdated):
            logger.info("News updated: %s %s", event.id, sorted(event.fields))
            self._merge(event.id, event.fields)
            keys = self._targets.list_keys
            if self._targets.detail_id == event.id:
                keys = self._targets.all_keys
            self._schedule_invalidation(keys, self._update_delay)

        else:
            logger.warning("Ignoring unsupported event: %r", event)

    def _remove(self, news_id: int) -> None:
        require_title = self._targets.require_title
        for key in self._targets.list_keys:
            self._store.patch(key, lambda v: refilter(remove_news(v, news_id), require_title))

    def _merge(self, news_id: int, fields: dict) -> None:
        require_title = self._targets.require_title
        for key in self._targets.list_keys:
            self._store.patch(
                key, lambda v: refilter(merge_news(v, news_id, fields), require_title)
            )
        if self._targets.detail_id == news_id:
            self._store.patch(news_key(news_id), lambda v: merge_news(v, news_id, fields))

    def _mark_unavailable(self, news_id: int) -> None:
        if self._targets.detail_id == news_id:
            self._store.write(news_unavailable_key(news_id), True)

    def _schedule_invalidation(self, keys: Iterable[CacheKey], delay: float) -> None:
        keys = list(keys)
        if not keys:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._invalidate(keys)
            return

        def fire() -> None:
            self._pending.discard(handle)
            self._invalidate(keys)

        handle = loop.call_later(delay, fire)
        self._pending.add(handle)

    def _invalidate(self, keys: Iterable[CacheKey]) -> None:
        for key in keys:
            self._store.invalidate(key, exact=True)

    def _on_reconnect(self) -> None:
        logger.info("Event channel reconnected; invalidating %d keys", len(self._targets.all_keys))
        self._invalidate(self._targets.all_keys)

    def _cancel_pending(self) -> None:
        for handle in self._pending:
            handle.cancel()
        self._pending.clear()
