"""Cache Store for query results.

This module provides an in-process cache keyed by composite tuple keys,
with staleness tracking, fetch versioning and change subscriptions.
All mutation goes through write(), patch(), invalidate() and fail();
each of them synchronously notifies the subscribers of the touched key.
"""

import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Literal

from .config import STALE_TIME_SECONDS
from .keys import CacheKey, matches

logger = logging.getLogger(__name__)

Staleness = Literal["fresh", "stale"]
FetchState = Literal["idle", "in_flight", "error"]
Subscriber = Callable[["CacheEntry"], None]


@dataclass
class CacheEntry:
    """A cached query result.

    Attributes:
        key: Composite cache key
        value: Cached value (None until the first successful fetch)
        status: Freshness flag set by write() and invalidate()
        fetch_state: Whether a fetch is running or last failed
        updated_at: Clock time of the last successful write
        error: Last fetch error, cleared by write()
        version: Incremented by every begin_fetch()
    """

    key: CacheKey
    value: Any = None
    status: Staleness = "stale"
    fetch_state: FetchState = "idle"
    updated_at: float | None = None
    error: Exception | None = None
    version: int = 0

    @property
    def has_value(self) -> bool:
        return self.updated_at is not None


class CacheStore:
    """Holds query results and notifies subscribers on change.

    Provides point reads and writes, best-effort patches and
    exact or prefix invalidation.
    """

    def __init__(
        self,
        stale_time: float = STALE_TIME_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize CacheStore.

        Args:
            stale_time: Seconds after a write before an entry counts as stale
            clock: Monotonic time source
        """
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._subscribers: dict[CacheKey, list[Subscriber]] = {}
        self._stale_time = stale_time
        self._clock = clock
        self.on_stale: Callable[[CacheKey], None] | None = None

    def read(self, key: CacheKey) -> CacheEntry | None:
        """Return the entry for ``key`` without side effects."""
        return self._entries.get(key)

    def get_value(self, key: CacheKey, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None or not entry.has_value:
            return default
        return entry.value

    def keys(self) -> list[CacheKey]:
        return list(self._entries)

    def is_stale(self, key: CacheKey) -> bool:
        """Check whether ``key`` needs a fetch.

        Returns:
            True when absent, never written, invalidated or past stale_time
        """
        entry = self._entries.get(key)
        if entry is None or not entry.has_value or entry.status == "stale":
            return True
        return self._clock() - entry.updated_at > self._stale_time

    def write(self, key: CacheKey, value: Any) -> CacheEntry:
        """Replace the value, mark it fresh and reset the fetch state."""
        entry = self._entry(key)
        entry.value = value
        entry.status = "fresh"
        entry.fetch_state = "idle"
        entry.error = None
        entry.updated_at = self._clock()
        self._notify(entry)
        return entry

    def patch(self, key: CacheKey, updater: Callable[[Any], Any]) -> CacheEntry | None:
        """Apply a pure transformation to the current value.

        A missing entry is left alone, and an updater that raises leaves the
        value unchanged. This method never raises.

        Args:
            key: Cache key to patch
            updater: Function from the current value to the new value

        Returns:
            The patched entry, or None when nothing was patched
        """
        entry = self._entries.get(key)
        if entry is None or not entry.has_value:
            return None

        try:
            new_value = updater(entry.value)
        except Exception:
            logger.exception("Patch failed for %s; keeping cached value", key)
            return None

        entry.value = new_value
        self._notify(entry)
        return entry

    def invalidate(self, key: CacheKey, exact: bool = True) -> list[CacheEntry]:
        """Mark matching entries stale and request a refetch of observed ones.

        Args:
            key: Exact key, or a key prefix when ``exact`` is False
            exact: Match only ``key`` itself

        Returns:
            The entries that were marked stale
        """
        if exact:
            targets = [self._entries[key]] if key in self._entries else []
        else:
            targets = [e for k, e in self._entries.items() if matches(k, key)]

        for entry in targets:
            entry.status = "stale"
            self._notify(entry)
            if self._subscribers.get(entry.key) and self.on_stale is not None:
                self.on_stale(entry.key)
        return targets

    def begin_fetch(self, key: CacheKey) -> int:
        """Start a fetch for ``key`` and return its version token.

        A fetch may only write its result while its version is current.
        """
        entry = self._entry(key)
        entry.version += 1
        entry.fetch_state = "in_flight"
        self._notify(entry)
        return entry.version

    def is_current(self, key: CacheKey, version: int) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.version == version

    def cancel_fetch(self, key: CacheKey) -> None:
        """Make any running fetch for ``key`` resolve as a no-op."""
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.version += 1
        if entry.fetch_state == "in_flight":
            entry.fetch_state = "idle"

    def snapshot(self, key: CacheKey) -> CacheEntry | None:
        """Copy an entry so it can be put back with restore()."""
        entry = self._entries.get(key)
        return replace(entry) if entry is not None else None

    def restore(self, key: CacheKey, snapshot: CacheEntry | None) -> None:
        """Put back a snapshot taken before an optimistic change.

        A None snapshot means the key had no entry, so the entry is dropped.
        When fetches were started or cancelled after the snapshot, the
        current fetch state is kept instead of the snapshot's.
        """
        if snapshot is None:
            entry = self._entries.pop(key, None)
            if entry is not None:
                self._notify(CacheEntry(key=key, version=entry.version))
            return
        current = self._entry(key)
        if current.version > snapshot.version:
            entry = replace(snapshot, version=current.version, fetch_state=current.fetch_state)
        else:
            entry = replace(snapshot)
        self._entries[key] = entry
        self._notify(entry)

    def fail(self, key: CacheKey, error: Exception) -> CacheEntry:
        """Record a fetch error; the cached value stays visible."""
        entry = self._entry(key)
        entry.fetch_state = "error"
        entry.error = error
        self._notify(entry)
        return entry

    def subscribe(self, key: CacheKey, callback: Subscriber) -> Callable[[], None]:
        """Subscribe to changes of one key.

        Returns:
            A callable that removes the subscription
        """
        self._subscribers.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(key, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._subscribers.pop(key, None)

        return unsubscribe

    def has_subscribers(self, key: CacheKey) -> bool:
        return bool(self._subscribers.get(key))

    def clear(self) -> None:
        """Drop every entry (session teardown). Subscriptions are kept."""
        self._entries.clear()

    def _entry(self, key: CacheKey) -> CacheEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key)
            self._entries[key] = entry
        return entry

    def _notify(self, entry: CacheEntry) -> None:
        for callback in list(self._subscribers.get(entry.key, [])):
            try:
                callback(entry)
            except Exception:
                logger.exception("Cache subscriber failed for %s", entry.key)
