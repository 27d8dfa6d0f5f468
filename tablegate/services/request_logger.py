"""Request, security and rate-limit event logging.

``log_request`` is the single hook every terminal response passes through.
The other methods record events that happen before the terminal response
(failed authentication, rate-limit rejection, faults).
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger("tablegate.requests")
security_logger = logging.getLogger("tablegate.security")


class RequestRecord(Protocol):
    method: str
    action: str
    table: str | None
    identifier: str
    user: str | None
    role: str | None
    status_code: int
    response_size: int
    elapsed_ms: float
    cache_hit: bool | None


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLogger:
    """Structured logging for pipeline outcomes."""

    def __init__(self, log: logging.Logger | None = None, security: logging.Logger | None = None) -> None:
        self._log = log or logger
        self._security = security or security_logger

    def log_request(self, record: RequestRecord) -> None:
        self._log.log(
            _level_for(record.status_code),
            "request.completed",
            extra={
                "method": record.method,
                "action": record.action,
                "table": record.table,
                "identifier": record.identifier,
                "user": record.user,
                "role": record.role,
                "status_code": record.status_code,
                "response_size": record.response_size,
                "elapsed_ms": round(record.elapsed_ms, 2),
                "cache_hit": record.cache_hit,
            },
        )

    def log_rate_limit(self, identifier: str, *, limit: int, window: int, retry_after: int) -> None:
        self._log.warning(
            "rate_limit.exceeded",
            extra={
                "identifier": identifier,
                "limit": limit,
                "window_s": window,
                "retry_after_s": retry_after,
            },
        )

    def record_security_event(self, event: str, **context: Any) -> None:
        self._security.warning(event, extra=context)

    def log_error(self, exc: BaseException, **context: Any) -> None:
        self._log.error(
            "request.unhandled_exception",
            exc_info=(type(exc), exc, exc.__traceback__),
            extra={"error_type": type(exc).__name__, **context},
        )
