"""Sliding-window rate limiter.

Each identifier owns a list of request timestamps. A check prunes timestamps
that left the trailing window, compares the remaining count against the limit
*before* counting the new request, and persists the pruned list either way,
so rejected calls still bound the stored window under sustained abuse.

Failure policy (fail-open):
- A storage read/decode failure is treated as "no prior requests".
- A storage write failure is logged and ignored.

The read-prune-append sequence is not atomic across concurrent requests; under
heavy concurrency slightly more than ``max_requests`` may be admitted.
"""

from __future__ import annotations

import hashlib
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from tablegate.adapters.rate_limit import (
    AbstractRateLimitStorage,
    FileRateLimitStorage,
    InMemoryRateLimitStorage,
)
from tablegate.core.config import RateLimitSettings
from tablegate.core.errors import RateLimitExceededError, ValidationAppError
from tablegate.core.logging import hash_for_log

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitStatus:
    """Snapshot of an identifier's window.

    Attributes:
        limit: Max requests per window.
        window_seconds: Window size in seconds.
        request_count: Requests currently inside the window.
        remaining: ``max(0, limit - request_count)``.
        reset_after: Seconds until the oldest counted request leaves the window.
    """

    limit: int
    window_seconds: int
    request_count: int
    remaining: int
    reset_after: int


def storage_key(identifier: str) -> str:
    """One-way hash of an identifier used as the storage key."""
    return hashlib.sha256(identifier.encode("utf-8")).hexdigest()


class SlidingWindowRateLimiter:
    """Admission control over a trailing time window per identifier."""

    def __init__(
        self,
        storage: AbstractRateLimitStorage,
        *,
        max_requests: int = 100,
        window_seconds: int = 60,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the limiter.

        Args:
            storage: Backend persisting timestamps per hashed identifier.
            max_requests: Maximum requests allowed per window.
            window_seconds: Size of the sliding window in seconds.
            enabled: When False every check is admitted.
            clock: Time source returning UNIX time in seconds.

        Raises:
            ValueError: If max_requests or window_seconds are invalid.
        """
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")

        self._storage = storage
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._enabled = enabled
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @property
    def window_seconds(self) -> int:
        return self._window_seconds

    def _load(self, identifier: str) -> list[float]:
        try:
            return self._storage.read(storage_key(identifier))
        except Exception as exc:
            logger.warning(
                "rate_limit.read_failed",
                extra={
                    "key_hash": hash_for_log(identifier),
                    "error_type": type(exc).__name__,
                },
            )
            return []

    def _save(self, identifier: str, timestamps: list[float]) -> None:
        try:
            self._storage.write(storage_key(identifier), timestamps)
        except Exception as exc:
            logger.warning(
                "rate_limit.write_failed",
                extra={
                    "key_hash": hash_for_log(identifier),
                    "error_type": type(exc).__name__,
                },
            )

    @staticmethod
    def _prune(timestamps: list[float], now: float, window: int) -> list[float]:
        return [ts for ts in timestamps if now - ts < window]

    def check_limit(
        self,
        identifier: str,
        max_requests: int | None = None,
        window_seconds: int | None = None,
    ) -> bool:
        """Admit or reject one request for ``identifier``.

        Args:
            identifier: Partition key (user, hashed API key or IP).
            max_requests: Per-call override of the limit.
            window_seconds: Per-call override of the window.

        Returns:
            True when the request is admitted and counted, False otherwise.
        """
        if not self._enabled:
            return True

        limit = max_requests if max_requests is not None else self._max_requests
        window = window_seconds if window_seconds is not None else self._window_seconds

        now = self._clock()
        active = self._prune(self._load(identifier), now, window)

        if len(active) >= limit:
            self._save(identifier, active)
            return False

        active.append(now)
        self._save(identifier, active)
        return True

    def status(self, identifier: str) -> RateLimitStatus:
        """Return count/remaining/reset for ``identifier`` without counting a request."""
        if not self._enabled:
            return RateLimitStatus(
                limit=self._max_requests,
                window_seconds=self._window_seconds,
                request_count=0,
                remaining=self._max_requests,
                reset_after=0,
            )

        now = self._clock()
        active = self._prune(self._load(identifier), now, self._window_seconds)
        count = len(active)
        reset_after = 0
        if active:
            reset_after = max(0, int(math.ceil(min(active) + self._window_seconds - now)))

        return RateLimitStatus(
            limit=self._max_requests,
            window_seconds=self._window_seconds,
            request_count=count,
            remaining=max(0, self._max_requests - count),
            reset_after=reset_after,
        )

    def request_count(self, identifier: str) -> int:
        return self.status(identifier).request_count

    def remaining(self, identifier: str) -> int:
        return self.status(identifier).remaining

    def reset_time(self, identifier: str) -> int:
        return self.status(identifier).reset_after

    def headers(self, identifier: str) -> dict[str, str]:
        """Build ``X-RateLimit-*`` headers; empty when the limiter is disabled."""
        if not self._enabled:
            return {}

        current = self.status(identifier)
        return {
            "X-RateLimit-Limit": str(current.limit),
            "X-RateLimit-Remaining": str(current.remaining),
            "X-RateLimit-Reset": str(int(self._clock()) + current.reset_after),
            "X-RateLimit-Window": str(current.window_seconds),
        }

    def exceeded(self, identifier: str) -> RateLimitExceededError:
        """Build the typed 429 outcome for a rejected identifier."""
        current = self.status(identifier)
        reset_at = int(self._clock()) + current.reset_after
        headers = {"Retry-After": str(current.reset_after), **self.headers(identifier)}

        return RateLimitExceededError(
            code="rate_limit_exceeded",
            message=f"Too many requests. Please try again in {current.reset_after} seconds.",
            details={"retry_after": current.reset_after},
            limit=current.limit,
            window=current.window_seconds,
            retry_after=current.reset_after,
            reset_at=reset_at,
            headers=headers,
        )

    def reset(self, identifier: str) -> bool:
        """Forget all recorded requests for ``identifier`` (admin use)."""
        try:
            return self._storage.delete(storage_key(identifier))
        except Exception as exc:
            logger.warning(
                "rate_limit.reset_failed",
                extra={
                    "key_hash": hash_for_log(identifier),
                    "error_type": type(exc).__name__,
                },
            )
            return False

    def cleanup(self, older_than_seconds: int = 3600) -> int:
        """Remove records untouched for longer than ``older_than_seconds``.

        Returns:
            Number of removed records (0 when disabled).
        """
        if not self._enabled:
            return 0

        deleted = self._storage.sweep(older_than_seconds, self._clock())
        logger.info(
            "rate_limit.cleanup",
            extra={"deleted": deleted, "older_than_s": older_than_seconds},
        )
        return deleted


def format_reset_at(reset_at: int) -> str:
    """Render a reset timestamp for the 429 body."""
    return datetime.fromtimestamp(reset_at, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def build_rate_limiter(
    config: RateLimitSettings,
    *,
    clock: Callable[[], float] = time.time,
) -> SlidingWindowRateLimiter:
    """Factory function to instantiate the limiter and its storage backend.

    Args:
        config: Rate limit settings.
        clock: Time source shared by limiter and storage.

    Returns:
        SlidingWindowRateLimiter: Configured limiter instance.

    Raises:
        ValidationAppError: If the storage backend is unknown.
    """
    backend = config.storage.lower()

    storage: AbstractRateLimitStorage
    if backend == "memory":
        storage = InMemoryRateLimitStorage(clock=clock)
    elif backend == "file":
        storage = FileRateLimitStorage(config.storage_dir)
    else:
        raise ValidationAppError(
            code="rate_limit_unknown_storage",
            message=(
                f"Unknown rate limit storage: '{config.storage}'. "
                "Supported storages: memory, file"
            ),
        )

    return SlidingWindowRateLimiter(
        storage,
        max_requests=config.max_requests,
        window_seconds=config.window_seconds,
        enabled=config.enabled,
        clock=clock,
    )
