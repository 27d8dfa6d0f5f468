"""In-memory rate limit storage.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: a single lock guards the map, and records are replaced whole,
  so readers never observe a partially updated window.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

from tablegate.adapters.rate_limit.base import AbstractRateLimitStorage


@dataclass(frozen=True)
class _WindowRecord:
    timestamps: tuple[float, ...]
    modified_at: float


class InMemoryRateLimitStorage(AbstractRateLimitStorage):
    """Lock-guarded map of hashed identifier -> timestamps."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize the in-memory storage.

        Args:
            clock: Time source used to stamp last-modified times.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._records: dict[str, _WindowRecord] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def read(self, key: str) -> list[float]:
        with self._lock:
            record = self._records.get(key)
        return list(record.timestamps) if record else []

    def write(self, key: str, timestamps: list[float]) -> None:
        record = _WindowRecord(timestamps=tuple(timestamps), modified_at=self._clock())
        with self._lock:
            self._records[key] = record

    def delete(self, key: str) -> bool:
        with self._lock:
            self._records.pop(key, None)
        return True

    def sweep(self, older_than_seconds: float, now: float) -> int:
        with self._lock:
            stale = [
                key
                for key, record in self._records.items()
                if now - record.modified_at > older_than_seconds
            ]
            for key in stale:
                del self._records[key]
        return len(stale)
