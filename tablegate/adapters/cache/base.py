"""Cache storage interfaces.

The cache manager depends on this abstraction (not the concrete driver) so
the storage can be swapped between process memory, disk and Redis without
touching the request pipeline.

Patterns passed to ``delete_pattern`` use shell-style globbing where ``*``
matches any run of characters (``api:table:orders:*``).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class CacheEntry:
    """Stored value with expiration metadata.

    An entry is absent once ``expires_at <= now``.
    """

    key: str
    value: Any
    created_at: float
    ttl: int

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


class AbstractCacheStorage(ABC):
    """Interface for cache drivers."""

    driver_name: str = "abstract"

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Return the cached value, or None if absent or expired."""
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, value: Any, ttl: int) -> bool:
        """Store ``value`` under ``key`` for ``ttl`` seconds (atomic overwrite)."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove one key. Deleting a missing key succeeds."""
        raise NotImplementedError

    @abstractmethod
    def delete_pattern(self, pattern: str) -> bool:
        """Remove every key matching the glob ``pattern``."""
        raise NotImplementedError

    @abstractmethod
    def clear(self) -> bool:
        """Remove every entry owned by this driver."""
        raise NotImplementedError

    @abstractmethod
    def has(self, key: str) -> bool:
        """Return True when ``key`` holds a non-expired entry."""
        raise NotImplementedError

    @abstractmethod
    def get_stats(self) -> dict[str, Any]:
        """Return driver metrics; always includes ``driver`` and ``size``."""
        raise NotImplementedError
