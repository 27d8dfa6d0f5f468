"""Redis cache driver.

Values are stored as JSON strings under ``<prefix><key>`` with a native
expiry, so Redis handles TTL removal. Pattern deletes walk the keyspace with
``SCAN`` (never ``KEYS``) and delete in batches.
"""

from __future__ import annotations

import json
from typing import Any

from redis import Redis

from tablegate.adapters.cache.base import AbstractCacheStorage

_SCAN_BATCH = 500


class RedisCacheStorage(AbstractCacheStorage):
    """Cache driver backed by a synchronous Redis client."""

    driver_name = "redis"

    def __init__(self, client: Redis, *, prefix: str = "api_cache:") -> None:
        self._redis = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, *, prefix: str = "api_cache:") -> "RedisCacheStorage":
        return cls(Redis.from_url(url), prefix=prefix)

    def _k(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _delete_matching(self, match: str) -> None:
        batch: list[Any] = []
        for redis_key in self._redis.scan_iter(match=match, count=_SCAN_BATCH):
            batch.append(redis_key)
            if len(batch) >= _SCAN_BATCH:
                self._redis.delete(*batch)
                batch.clear()
        if batch:
            self._redis.delete(*batch)

    def get(self, key: str) -> Any | None:
        raw = self._redis.get(self._k(key))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl: int) -> bool:
        payload = json.dumps(value, default=str)
        return bool(self._redis.set(self._k(key), payload, ex=ttl))

    def delete(self, key: str) -> bool:
        self._redis.delete(self._k(key))
        return True

    def delete_pattern(self, pattern: str) -> bool:
        self._delete_matching(self._k(pattern))
        return True

    def clear(self) -> bool:
        self._delete_matching(f"{self._prefix}*")
        return True

    def has(self, key: str) -> bool:
        return bool(self._redis.exists(self._k(key)))

    def get_stats(self) -> dict[str, Any]:
        size = sum(1 for _ in self._redis.scan_iter(match=f"{self._prefix}*", count=_SCAN_BATCH))
        return {
            "driver": self.driver_name,
            "size": size,
            "prefix": self._prefix,
        }
