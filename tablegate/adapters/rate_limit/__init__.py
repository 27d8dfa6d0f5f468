"""Rate limiting storage adapters.

This package provides a small abstraction layer so sliding-window state can
start in process memory and move to disk or a shared store without changing
the limiter or the pipeline.
"""

from __future__ import annotations

from tablegate.adapters.rate_limit.base import AbstractRateLimitStorage
from tablegate.adapters.rate_limit.file_store import FileRateLimitStorage
from tablegate.adapters.rate_limit.in_memory import InMemoryRateLimitStorage

__all__ = [
    "AbstractRateLimitStorage",
    "FileRateLimitStorage",
    "InMemoryRateLimitStorage",
]
