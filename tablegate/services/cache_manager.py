"""Response cache management.

Computes cache keys, resolves TTLs, and performs table-scoped invalidation on
top of any ``AbstractCacheStorage`` driver.

Key format::

    api:table:<table>:action:<action>:params:<sha256 of sorted JSON>[:apikey:<hash16>]

Parameters are serialized with sorted keys so equivalent parameter sets share
an entry regardless of their order. Every key for a table starts with
``api:table:<table>:``, which makes ``invalidate_table`` independent of the
variation suffix.

Driver failures never fail a request: reads degrade to a miss, writes and
invalidations to a no-op. Both are logged.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from collections.abc import Iterable, Mapping
from typing import Any

from tablegate.adapters.cache.base import AbstractCacheStorage

logger = logging.getLogger(__name__)

READ_ACTIONS = frozenset({"list", "count", "read"})
WRITE_ACTIONS = frozenset({"create", "update", "delete", "bulk_create", "bulk_delete"})


def _table_prefix(table: str) -> str:
    return f"api:table:{table}:"


def hash_variation(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]


class CacheManager:
    """Cache policy (eligibility, keys, TTL, invalidation) over a storage driver."""

    def __init__(
        self,
        storage: AbstractCacheStorage,
        *,
        enabled: bool = True,
        default_ttl: int = 300,
        per_table_ttl: Mapping[str, int] | None = None,
        exclude_tables: Iterable[str] = (),
    ) -> None:
        self._storage = storage
        self._enabled = enabled
        self._default_ttl = default_ttl
        self._per_table_ttl = dict(per_table_ttl or {})
        self._exclude_tables = frozenset(exclude_tables)
        self._lock = threading.Lock()
        self._stats = {"hits": 0, "misses": 0, "writes": 0, "invalidations": 0}

    @property
    def storage(self) -> AbstractCacheStorage:
        return self._storage

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _bump(self, counter: str) -> None:
        with self._lock:
            self._stats[counter] += 1

    def should_cache(self, table: str) -> bool:
        """True when ``table`` participates in caching at all."""
        return self._enabled and table not in self._exclude_tables

    def is_cacheable_read(self, table: str | None, action: str) -> bool:
        return table is not None and action in READ_ACTIONS and self.should_cache(table)

    def is_invalidating_write(self, table: str | None, action: str) -> bool:
        return table is not None and action in WRITE_ACTIONS and self.should_cache(table)

    def generate_key(
        self,
        table: str,
        action: str,
        params: Mapping[str, Any],
        variation: str | None = None,
    ) -> str:
        """Build a deterministic cache key.

        Args:
            table: Table name.
            action: Read action name.
            params: Query parameters that shape the result.
            variation: Optional raw variation value (e.g. API key); only its
                hash ends up in the key.

        Returns:
            Cache key string.
        """
        serialized = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
        digest = hashlib.sha256(serialized.encode("utf-8")).hexdigest()
        key = f"{_table_prefix(table)}action:{action}:params:{digest}"
        if variation:
            key += f":apikey:{hash_variation(variation)}"
        return key

    def get_ttl(self, table: str) -> int:
        """Per-table override if configured, else the global default."""
        return int(self._per_table_ttl.get(table, self._default_ttl))

    def get(self, key: str) -> Any | None:
        if not self._enabled:
            return None

        try:
            value = self._storage.get(key)
        except Exception as exc:
            logger.warning(
                "cache.read_failed",
                extra={"cache_key": key[:48], "error_type": type(exc).__name__},
            )
            value = None

        if value is None:
            self._bump("misses")
            logger.debug("cache.miss", extra={"cache_key": key[:48]})
            return None

        self._bump("hits")
        logger.debug("cache.hit", extra={"cache_key": key[:48]})
        return value

    def set(self, key: str, value: Any, table: str) -> bool:
        if not self._enabled:
            return False

        ttl = self.get_ttl(table)
        try:
            stored = self._storage.set(key, value, ttl)
        except Exception as exc:
            logger.warning(
                "cache.write_failed",
                extra={"cache_key": key[:48], "error_type": type(exc).__name__},
            )
            return False

        if stored:
            self._bump("writes")
            logger.debug("cache.set", extra={"cache_key": key[:48], "ttl_s": ttl})
        return stored

    def invalidate_table(self, table: str) -> bool:
        """Drop every cached entry for ``table`` across all variations."""
        if not self._enabled:
            return False

        try:
            done = self._storage.delete_pattern(f"{_table_prefix(table)}*")
        except Exception as exc:
            logger.warning(
                "cache.invalidate_failed",
                extra={"table": table, "error_type": type(exc).__name__},
            )
            return False

        if done:
            self._bump("invalidations")
            logger.info("cache.invalidated", extra={"table": table})
        return done

    def has(self, key: str) -> bool:
        if not self._enabled:
            return False
        try:
            return self._storage.has(key)
        except Exception as exc:
            logger.warning(
                "cache.read_failed",
                extra={"cache_key": key[:48], "error_type": type(exc).__name__},
            )
            return False

    def delete(self, key: str) -> bool:
        if not self._enabled:
            return False
        return self._storage.delete(key)

    def clear(self) -> bool:
        if not self._enabled:
            return False
        return self._storage.clear()

    def get_stats(self) -> dict[str, Any]:
        """Driver stats merged with manager counters and hit ratio."""
        with self._lock:
            counters = dict(self._stats)

        total = counters["hits"] + counters["misses"]
        hit_ratio = round(counters["hits"] / total, 3) if total else 0.0

        try:
            driver_stats = self._storage.get_stats()
        except Exception as exc:
            logger.warning("cache.stats_failed", extra={"error_type": type(exc).__name__})
            driver_stats = {"driver": self._storage.driver_name}

        return {**driver_stats, **counters, "hit_ratio": hit_ratio}
