"""Pytest configuration and fixtures shared across all test modules.

Environment defaults are set before anything imports ``tablegate.core.config``
so the module-level settings never depend on a developer's .env file.
"""

import os
from unittest.mock import Mock

import pytest

# CRITICAL: Set these before any imports that might load settings
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("AUTH_ENABLED", "true")
os.environ.setdefault("AUTH_METHOD", "apikey")
os.environ.setdefault("AUTH_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("RATE_LIMIT_CLEANUP_INTERVAL_SECONDS", "0")
os.environ.setdefault("CACHE_DRIVER", "memory")
os.environ.setdefault("LOG_LEVEL", "WARNING")

API_KEY = "test-api-key-123"
OTHER_API_KEY = "test-api-key-456"


@pytest.fixture
def clock() -> Mock:
    """Controllable time source (UNIX seconds)."""
    return Mock(return_value=1000.0)


@pytest.fixture
def api_headers() -> dict[str, str]:
    return {"X-API-Key": API_KEY}
