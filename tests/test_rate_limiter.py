"""Unit tests for the sliding-window rate limiter."""

from unittest.mock import Mock

import pytest

from tablegate.adapters.rate_limit import AbstractRateLimitStorage, InMemoryRateLimitStorage
from tablegate.core.config import RateLimitSettings
from tablegate.core.errors import RateLimitExceededError, ValidationAppError
from tablegate.core.rate_limit import (
    SlidingWindowRateLimiter,
    build_rate_limiter,
    format_reset_at,
    storage_key,
)


def _limiter(clock: Mock, **kwargs) -> SlidingWindowRateLimiter:
    params = {"max_requests": 3, "window_seconds": 60, **kwargs}
    return SlidingWindowRateLimiter(InMemoryRateLimitStorage(clock=clock), clock=clock, **params)


def test_admits_up_to_limit_then_rejects(clock: Mock) -> None:
    limiter = _limiter(clock)

    assert [limiter.check_limit("ip:1.2.3.4") for _ in range(3)] == [True, True, True]
    assert limiter.check_limit("ip:1.2.3.4") is False


def test_admission_resumes_after_oldest_timestamp_ages_out(clock: Mock) -> None:
    limiter = _limiter(clock, max_requests=2, window_seconds=10)

    assert limiter.check_limit("k") is True
    clock.return_value = 1005.0
    assert limiter.check_limit("k") is True
    assert limiter.check_limit("k") is False

    # now - ts == window counts as expired
    clock.return_value = 1010.0
    assert limiter.check_limit("k") is True
    assert limiter.check_limit("k") is False


def test_rejected_requests_are_not_counted(clock: Mock) -> None:
    limiter = _limiter(clock, max_requests=1)

    assert limiter.check_limit("k") is True
    for _ in range(5):
        assert limiter.check_limit("k") is False

    assert limiter.request_count("k") == 1


def test_identifiers_are_isolated(clock: Mock) -> None:
    limiter = _limiter(clock, max_requests=1)

    assert limiter.check_limit("user:alice") is True
    assert limiter.check_limit("user:alice") is False
    assert limiter.check_limit("user:bob") is True


def test_per_call_overrides(clock: Mock) -> None:
    limiter = _limiter(clock, max_requests=1)

    assert limiter.check_limit("k", max_requests=2) is True
    assert limiter.check_limit("k", max_requests=2) is True
    assert limiter.check_limit("k", max_requests=2) is False


def test_remaining_is_never_negative(clock: Mock) -> None:
    limiter = _limiter(clock, max_requests=2)

    assert limiter.remaining("k") == 2
    limiter.check_limit("k")
    assert limiter.remaining("k") == 1
    limiter.check_limit("k")
    limiter.check_limit("k")
    assert limiter.remaining("k") == 0


def test_remaining_clamped_when_stored_window_exceeds_limit(clock: Mock) -> None:
    storage = InMemoryRateLimitStorage(clock=clock)
    storage.write(storage_key("k"), [999.0, 999.5, 999.8, 999.9])
    limiter = SlidingWindowRateLimiter(storage, max_requests=2, window_seconds=60, clock=clock)

    assert limiter.request_count("k") == 4
    assert limiter.remaining("k") == 0


def test_reset_time_tracks_oldest_timestamp(clock: Mock) -> None:
    limiter = _limiter(clock, window_seconds=60)

    limiter.check_limit("k")
    clock.return_value = 1020.0
    limiter.check_limit("k")

    assert limiter.reset_time("k") == 40


def test_headers(clock: Mock) -> None:
    limiter = _limiter(clock, max_requests=5, window_seconds=60)
    limiter.check_limit("k")

    headers = limiter.headers("k")

    assert headers == {
        "X-RateLimit-Limit": "5",
        "X-RateLimit-Remaining": "4",
        "X-RateLimit-Reset": "1060",
        "X-RateLimit-Window": "60",
    }


def test_exceeded_builds_typed_error(clock: Mock) -> None:
    limiter = _limiter(clock, max_requests=1, window_seconds=30)
    limiter.check_limit("k")
    clock.return_value = 1010.0

    exc = limiter.exceeded("k")

    assert isinstance(exc, RateLimitExceededError)
    assert exc.status_code == 429
    assert exc.code == "rate_limit_exceeded"
    assert exc.retry_after == 20
    assert exc.reset_at == 1030
    assert exc.limit == 1
    assert exc.window == 30
    assert exc.headers["Retry-After"] == "20"
    assert exc.headers["X-RateLimit-Remaining"] == "0"


def test_disabled_limiter_admits_everything_and_emits_no_headers(clock: Mock) -> None:
    limiter = _limiter(clock, max_requests=1, enabled=False)

    assert all(limiter.check_limit("k") for _ in range(10))
    assert limiter.headers("k") == {}
    assert limiter.cleanup() == 0


def test_storage_key_is_hashed(clock: Mock) -> None:
    storage = InMemoryRateLimitStorage(clock=clock)
    limiter = SlidingWindowRateLimiter(storage, clock=clock)

    limiter.check_limit("ip:10.0.0.1")

    assert storage.read(storage_key("ip:10.0.0.1")) == [1000.0]
    assert storage.read("ip:10.0.0.1") == []
    assert len(storage_key("x")) == 64


def test_fails_open_when_storage_read_fails(clock: Mock) -> None:
    storage = Mock(spec=AbstractRateLimitStorage)
    storage.read.side_effect = OSError("disk gone")
    limiter = SlidingWindowRateLimiter(storage, max_requests=1, clock=clock)

    assert limiter.check_limit("k") is True
    assert limiter.check_limit("k") is True


def test_fails_open_when_storage_write_fails(clock: Mock) -> None:
    storage = Mock(spec=AbstractRateLimitStorage)
    storage.read.return_value = []
    storage.write.side_effect = OSError("read-only filesystem")
    limiter = SlidingWindowRateLimiter(storage, max_requests=1, clock=clock)

    assert limiter.check_limit("k") is True


def test_pruned_window_is_persisted_on_rejection(clock: Mock) -> None:
    storage = InMemoryRateLimitStorage(clock=clock)
    storage.write(storage_key("k"), [900.0, 990.0, 995.0])
    limiter = SlidingWindowRateLimiter(storage, max_requests=2, window_seconds=60, clock=clock)

    assert limiter.check_limit("k") is False
    assert storage.read(storage_key("k")) == [990.0, 995.0]


def test_reset_forgets_identifier(clock: Mock) -> None:
    limiter = _limiter(clock, max_requests=1)
    limiter.check_limit("k")

    assert limiter.reset("k") is True
    assert limiter.check_limit("k") is True


def test_cleanup_removes_stale_records(clock: Mock) -> None:
    storage = InMemoryRateLimitStorage(clock=clock)
    limiter = SlidingWindowRateLimiter(storage, clock=clock)
    limiter.check_limit("old")
    clock.return_value = 5000.0
    limiter.check_limit("fresh")

    assert limiter.cleanup(older_than_seconds=3600) == 1
    assert len(storage) == 1


def test_format_reset_at() -> None:
    assert format_reset_at(0) == "1970-01-01 00:00:00"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_requests": 0, "window_seconds": 60},
        {"max_requests": 1, "window_seconds": 0},
    ],
)
def test_invalid_configuration_raises(kwargs: dict, clock: Mock) -> None:
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(InMemoryRateLimitStorage(clock=clock), clock=clock, **kwargs)


def test_build_rate_limiter_file_backend(tmp_path, clock: Mock) -> None:
    config = RateLimitSettings(storage="file", storage_dir=str(tmp_path), max_requests=1)
    limiter = build_rate_limiter(config, clock=clock)

    assert limiter.check_limit("k") is True
    assert limiter.check_limit("k") is False
    assert list(tmp_path.glob("ratelimit_*.json"))


def test_build_rate_limiter_unknown_backend(clock: Mock) -> None:
    with pytest.raises(ValidationAppError) as exc_info:
        build_rate_limiter(RateLimitSettings(storage="memcached"), clock=clock)

    assert exc_info.value.code == "rate_limit_unknown_storage"
