"""In-memory TTL cache driver with LRU eviction.

Thread-safe, per-process storage. Entries are replaced whole under a lock, so
a reader never observes a partially written entry.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from fnmatch import fnmatchcase
from typing import Any, Callable

from tablegate.adapters.cache.base import AbstractCacheStorage, CacheEntry

logger = logging.getLogger(__name__)


class InMemoryCacheStorage(AbstractCacheStorage):
    """Thread-safe, in-memory TTL cache with LRU eviction.

    Attributes:
        max_entries: Maximum number of cached items (None for unlimited).
    """

    driver_name = "memory"

    def __init__(
        self,
        max_entries: int | None = 4096,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._max_entries = max_entries
        self._clock = clock
        self._store: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.RLock()
        self._evictions = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"InMemoryCacheStorage(max_entries={self._max_entries}, "
            f"size={len(self._store)}, evictions={self._evictions})"
        )

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None

            if entry.is_expired(self._clock()):
                self._evict_single(key)
                logger.debug("cache.expired", extra={"cache_key": key[:48]})
                return None

            self._store.move_to_end(key)  # mark as recently used
            return entry.value

    def set(self, key: str, value: Any, ttl: int) -> bool:
        with self._lock:
            self._evict_expired_locked()
            self._store[key] = CacheEntry(key=key, value=value, created_at=self._clock(), ttl=ttl)
            self._store.move_to_end(key)
            self._evict_if_over_capacity_locked()
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            self._store.pop(key, None)
        return True

    def delete_pattern(self, pattern: str) -> bool:
        with self._lock:
            matched = [key for key in self._store if fnmatchcase(key, pattern)]
            for key in matched:
                del self._store[key]
        return True

    def clear(self) -> bool:
        with self._lock:
            self._store.clear()
            self._evictions = 0
        return True

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                self._evict_single(key)
                return False
            return True

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            now = self._clock()
            expired = sum(1 for entry in self._store.values() if entry.is_expired(now))
            return {
                "driver": self.driver_name,
                "size": len(self._store),
                "valid_entries": len(self._store) - expired,
                "expired_entries": expired,
                "max_entries": self._max_entries,
                "evictions": self._evictions,
            }

    def _evict_single(self, key: str) -> None:
        if key in self._store:
            self._store.pop(key, None)
            self._evictions += 1

    def _evict_expired_locked(self) -> None:
        now = self._clock()
        expired_keys = [k for k, entry in self._store.items() if entry.is_expired(now)]
        for key in expired_keys:
            self._evict_single(key)

    def _evict_if_over_capacity_locked(self) -> None:
        if self._max_entries is None:
            return

        while len(self._store) > self._max_entries:
            # popitem(last=False) removes the least recently used entry
            self._store.popitem(last=False)
            self._evictions += 1
