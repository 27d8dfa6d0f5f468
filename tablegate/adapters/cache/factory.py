"""Factory pattern for creating cache storage drivers."""

from __future__ import annotations

import time
from typing import Callable

from tablegate.adapters.cache.base import AbstractCacheStorage
from tablegate.adapters.cache.file_cache import FileCacheStorage
from tablegate.adapters.cache.in_memory import InMemoryCacheStorage
from tablegate.core.config import CacheSettings
from tablegate.core.errors import ValidationAppError


def create_cache_storage(
    config: CacheSettings,
    *,
    clock: Callable[[], float] = time.time,
) -> AbstractCacheStorage:
    """Instantiate the cache driver named in configuration.

    Args:
        config: Cache settings.
        clock: Time source for drivers that track expiry themselves.

    Returns:
        AbstractCacheStorage: Configured driver instance.

    Raises:
        ValidationAppError: If the driver name is unknown.
    """
    driver = config.driver.lower()

    if driver == "memory":
        return InMemoryCacheStorage(max_entries=config.max_entries, clock=clock)

    if driver == "file":
        return FileCacheStorage(config.file_path, clock=clock)

    if driver == "redis":
        # Imported lazily so memory/file deployments never open a connection.
        from tablegate.adapters.cache.redis_cache import RedisCacheStorage

        return RedisCacheStorage.from_url(config.redis_url, prefix=config.redis_prefix)

    raise ValidationAppError(
        code="cache_unknown_driver",
        message=(
            f"Unknown cache driver: '{config.driver}'. "
            "Supported drivers: memory, file, redis"
        ),
    )
