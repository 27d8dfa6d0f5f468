"""Rate limit storage interfaces.

The sliding-window limiter depends on this abstraction (not a concrete
backend) so window state can live in process memory, on disk, or in a shared
store without changing the limiter.

Keys handed to a storage backend are already one-way hashes of the request
identifier; backends never see raw user names, API keys or addresses.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class AbstractRateLimitStorage(ABC):
    """Interface for per-identifier timestamp storage."""

    @abstractmethod
    def read(self, key: str) -> list[float]:
        """Return the persisted timestamps for ``key``.

        Args:
            key: Hashed identifier.

        Returns:
            Timestamps in insertion order; an empty list when the record is
            absent or cannot be decoded.
        """
        raise NotImplementedError

    @abstractmethod
    def write(self, key: str, timestamps: list[float]) -> None:
        """Atomically replace the record for ``key``.

        Raises:
            OSError: If the backend cannot persist the record.
        """
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove the record for ``key``. Returns True when nothing remains."""
        raise NotImplementedError

    @abstractmethod
    def sweep(self, older_than_seconds: float, now: float) -> int:
        """Remove records whose last modification is older than the threshold.

        Args:
            older_than_seconds: Maximum age of a record's last write.
            now: Current UNIX time in seconds.

        Returns:
            Number of removed records.
        """
        raise NotImplementedError
