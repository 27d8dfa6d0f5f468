"""Transport-neutral request/response and action types.

The HTTP layer converts a Starlette request into an ``ApiRequest``; the
pipeline returns an ``ApiResponse``. Action handlers (built-in or plugin)
receive an ``ActionCall`` and return an ``ActionResult`` or a bare
JSON-serializable payload.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Union

from pydantic import BaseModel, Field


class Action(str, Enum):
    """Built-in action names."""

    TABLES = "tables"
    COLUMNS = "columns"
    LIST = "list"
    COUNT = "count"
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    BULK_CREATE = "bulk_create"
    BULK_DELETE = "bulk_delete"
    LOGIN = "login"


@dataclass(frozen=True)
class ApiRequest:
    """Inbound request as seen by the pipeline.

    Attributes:
        method: Upper-case HTTP verb.
        query: Query-string parameters (first value per name).
        headers: Header map with lower-case names.
        body: Parsed JSON or form body (None when absent).
        client_host: Peer address reported by the server.
    """

    method: str
    query: Mapping[str, str] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    client_host: str | None = None

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    @property
    def action(self) -> str:
        return self.query.get("action", "")

    @property
    def table(self) -> str | None:
        return self.query.get("table") or None


@dataclass
class ApiResponse:
    """Terminal response produced by the pipeline."""

    status_code: int
    payload: Any = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ActionCall:
    """Validated input handed to an action handler."""

    action: str
    table: str | None
    params: Mapping[str, str]
    body: Any
    method: str
    user: str | None = None
    role: str | None = None


@dataclass
class ActionResult:
    """Handler output; ``status_code`` defaults to 200."""

    payload: Any
    status_code: int = 200
    headers: dict[str, str] = field(default_factory=dict)


ActionHandler = Callable[[ActionCall], Union[ActionResult, Any]]


class LoginRequest(BaseModel):
    """Credentials posted to the ``login`` action."""

    username: str = Field(..., min_length=1, description="Account name")
    password: str = Field(..., min_length=1, description="Account password")


class TokenResponse(BaseModel):
    """Bearer token issued by the ``login`` action."""

    token: str = Field(..., description="Signed bearer token")
    expires_at: int = Field(..., description="UNIX time at which the token expires")
    user: str = Field(..., description="Authenticated account name")
    role: str | None = Field(None, description="Role embedded in the token")
