"""Application-level exception types.

Expected terminal states of a request (rate limited, unauthenticated,
forbidden, invalid action, wrong method, bad input) are modelled as typed
``AppError`` subclasses carrying their HTTP status. The pipeline converts them
to responses. Any other exception is a fault and is reported as a generic 500.

``PluginLoadError`` is raised only while the application starts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    table: str
    action: str
    role: str
    method: str
    plugin: str
    dependency: str
    cycle: list[str]
    retry_after: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    status_code: ClassVar[int] = 400

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class InvalidActionError(AppError):
    """Raised when the requested action name is not registered."""


class UnauthenticatedError(AppError):
    """Raised when credentials are missing or invalid."""

    status_code: ClassVar[int] = 401


class ForbiddenError(AppError):
    """Raised when a role is missing or lacks permission for an action."""

    status_code: ClassVar[int] = 403


class NotFoundAppError(AppError):
    """Raised by data sources when a table or row does not exist."""

    status_code: ClassVar[int] = 404


class MethodNotAllowedError(AppError):
    """Raised when a mutating action is called with the wrong HTTP verb."""

    status_code: ClassVar[int] = 405


@dataclass
class RateLimitExceededError(AppError):
    """Raised when an identifier exceeded its sliding-window budget.

    Attributes:
        limit: Maximum requests per window.
        window: Window size in seconds.
        retry_after: Seconds until the oldest counted request leaves the window.
        reset_at: UNIX time at which admission resumes.
        headers: ``Retry-After`` and ``X-RateLimit-*`` headers for the response.
    """

    limit: int = 0
    window: int = 0
    retry_after: int = 0
    reset_at: int = 0
    headers: dict[str, str] = field(default_factory=dict)

    status_code: ClassVar[int] = 429


class PluginLoadError(AppError):
    """Raised when the plugin set cannot be loaded (startup only)."""

    status_code: ClassVar[int] = 500


class CyclicDependencyError(PluginLoadError):
    """Raised when plugin dependencies form a cycle."""


class MissingDependencyError(PluginLoadError):
    """Raised when a plugin depends on a plugin that was not discovered."""
