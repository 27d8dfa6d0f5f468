"""Cache storage drivers.

Drivers implement ``AbstractCacheStorage``; the cache manager never depends on
a concrete driver.
"""

from __future__ import annotations

from tablegate.adapters.cache.base import AbstractCacheStorage, CacheEntry
from tablegate.adapters.cache.factory import create_cache_storage
from tablegate.adapters.cache.file_cache import FileCacheStorage
from tablegate.adapters.cache.in_memory import InMemoryCacheStorage

__all__ = [
    "AbstractCacheStorage",
    "CacheEntry",
    "FileCacheStorage",
    "InMemoryCacheStorage",
    "create_cache_storage",
]
