"""Per-request pipeline.

Stages run in a fixed order and any stage may end the request early:

1. preflight      ``OPTIONS`` answers 204
2. admission      sliding-window rate limit per identifier (429)
3. resolution     action name and table name (400)
4. authentication skipped for the anonymous ``login`` action (401)
5. authorization  role/table/action check (403)
6. cache lookup   eligible reads are served from cache on hit
7. dispatch       verb check (405), hooks, handler, cache fill/invalidation

Expected outcomes are ``AppError`` subclasses converted to responses in one
place. Any other exception is a fault: it is logged with context and answered
with a generic 500. Every response, early or not, is recorded exactly once by
``RequestLogger.log_request``.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable

from tablegate.core.auth import AbstractAuthenticator, extract_api_key
from tablegate.core.config import CorsSettings
from tablegate.core.errors import (
    AppError,
    ForbiddenError,
    InvalidActionError,
    MethodNotAllowedError,
    RateLimitExceededError,
    ValidationAppError,
)
from tablegate.core.logging import get_request_id
from tablegate.core.rate_limit import SlidingWindowRateLimiter, format_reset_at
from tablegate.core.rbac import Rbac
from tablegate.plugins.hooks import HookManager
from tablegate.schemas.actions import (
    Action,
    ActionCall,
    ActionHandler,
    ActionResult,
    ApiRequest,
    ApiResponse,
)
from tablegate.services.actions import ActionRegistry
from tablegate.services.cache_manager import CacheManager
from tablegate.services.request_logger import RequestLogger
from tablegate.utils.query_validators import is_valid_table

logger = logging.getLogger(__name__)

# Query parameters that select the route rather than shape the result.
ROUTING_PARAMS = frozenset({"action", "table", "api_key"})

INTERNAL_ERROR_MESSAGE = "An unexpected error occurred. Please try again later."


@dataclass
class PipelineContext:
    """Transient state of one request."""

    request: ApiRequest
    started_at: float
    action: str = ""
    table: str | None = None
    identifier: str = "unknown"
    user: str | None = None
    role: str | None = None
    cache_hit: bool | None = None
    rate_limit_headers: dict[str, str] = field(default_factory=dict)
    status_code: int = 0
    response_size: int = 0
    elapsed_ms: float = 0.0

    @property
    def method(self) -> str:
        return self.request.method


def resolve_identifier(request: ApiRequest, authenticator: AbstractAuthenticator) -> str:
    """Rate-limit partition key: user, then hashed API key, then client IP.

    The API key partitions only under API-key authentication.
    """
    user = authenticator.current_user(request)
    if user:
        return f"user:{user}"

    api_key = extract_api_key(request) if authenticator.method == "apikey" else None
    if api_key:
        return "apikey:" + hashlib.sha256(api_key.encode("utf-8")).hexdigest()

    forwarded = request.header("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return f"ip:{first}"

    real_ip = request.header("X-Real-IP")
    if real_ip:
        return f"ip:{real_ip.strip()}"

    if request.client_host:
        return f"ip:{request.client_host}"

    return "ip:unknown"


def cors_headers(cfg: CorsSettings) -> dict[str, str]:
    headers = {
        "Access-Control-Allow-Origin": cfg.allow_origin,
        "Access-Control-Allow-Methods": cfg.allow_methods,
        "Access-Control-Allow-Headers": cfg.allow_headers,
        "Access-Control-Max-Age": str(cfg.max_age),
    }
    if cfg.allow_credentials:
        headers["Access-Control-Allow-Credentials"] = "true"
    return headers


def _payload_size(payload: Any) -> int:
    if payload is None:
        return 0
    try:
        return len(json.dumps(payload, default=str))
    except (TypeError, ValueError):
        return 0


class Pipeline:
    """Composes admission, auth, authorization, caching and dispatch."""

    def __init__(
        self,
        *,
        rate_limiter: SlidingWindowRateLimiter,
        authenticator: AbstractAuthenticator,
        rbac: Rbac,
        cache: CacheManager,
        actions: ActionRegistry,
        hooks: HookManager,
        request_logger: RequestLogger,
        auth_enabled: bool = True,
        cors: CorsSettings | None = None,
        vary_cache_by_api_key: bool = True,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._limiter = rate_limiter
        self._auth = authenticator
        self._rbac = rbac
        self._cache = cache
        self._actions = actions
        self._hooks = hooks
        self._request_logger = request_logger
        self._auth_enabled = auth_enabled
        self._cors = cors_headers(cors) if cors is not None and cors.enabled else {}
        self._vary_by_api_key = vary_cache_by_api_key
        self._timer = timer

    def handle(self, request: ApiRequest) -> ApiResponse:
        """Run one request to completion; never raises."""
        ctx = PipelineContext(
            request=request,
            started_at=self._timer(),
            action=request.action,
            table=request.table,
        )

        try:
            response = self._run(ctx)
        except AppError as exc:
            response = self._error_response(ctx, exc)
        except Exception as exc:
            self._request_logger.log_error(
                exc,
                method=request.method,
                action=ctx.action,
                table=ctx.table,
                identifier=ctx.identifier,
            )
            response = ApiResponse(
                status_code=500,
                payload={
                    "error": {
                        "code": "internal_server_error",
                        "message": INTERNAL_ERROR_MESSAGE,
                        "request_id": get_request_id(),
                    }
                },
            )

        response.headers = {**self._cors, **ctx.rate_limit_headers, **response.headers}

        ctx.status_code = response.status_code
        ctx.response_size = _payload_size(response.payload)
        ctx.elapsed_ms = (self._timer() - ctx.started_at) * 1000
        self._request_logger.log_request(ctx)
        return response

    def _run(self, ctx: PipelineContext) -> ApiResponse:
        request = ctx.request

        if request.method == "OPTIONS":
            return ApiResponse(status_code=204)

        self._admit(ctx)
        handler = self._resolve(ctx)

        if self._auth_enabled and ctx.action != Action.LOGIN.value:
            if not self._auth.authenticate(request):
                self._request_logger.record_security_event(
                    "auth.failed",
                    method=self._auth.method,
                    action=ctx.action,
                    table=ctx.table,
                    identifier=ctx.identifier,
                )
                return self._auth.require_auth(request)
            ctx.user = self._auth.current_user(request)
            ctx.role = self._auth.current_user_role(request)

        if self._auth_enabled and ctx.table is not None:
            self._authorize(ctx)

        params = {k: v for k, v in request.query.items() if k not in ROUTING_PARAMS}

        cache_key: str | None = None
        if self._cache.is_cacheable_read(ctx.table, ctx.action):
            assert ctx.table is not None
            variation = extract_api_key(request) if self._vary_by_api_key else None
            cache_key = self._cache.generate_key(ctx.table, ctx.action, params, variation)
            cached = self._cache.get(cache_key)
            if cached is not None:
                ctx.cache_hit = True
                return ApiResponse(
                    status_code=200,
                    payload=cached,
                    headers=self._cache_headers(ctx.table, hit=True),
                )

        return self._dispatch(ctx, handler, params, cache_key)

    def _admit(self, ctx: PipelineContext) -> None:
        ctx.identifier = resolve_identifier(ctx.request, self._auth)
        if not self._limiter.enabled:
            return

        if not self._limiter.check_limit(ctx.identifier):
            exc = self._limiter.exceeded(ctx.identifier)
            self._request_logger.log_rate_limit(
                ctx.identifier,
                limit=exc.limit,
                window=exc.window,
                retry_after=exc.retry_after,
            )
            raise exc

        ctx.rate_limit_headers = self._limiter.headers(ctx.identifier)

    def _resolve(self, ctx: PipelineContext) -> ActionHandler:
        handler = self._actions.resolve(ctx.action) if ctx.action else None
        if handler is None:
            raise InvalidActionError(
                code="invalid_action",
                message="Invalid action",
                details={"action": ctx.action},
            )

        if not self._actions.requires_table(ctx.action) and self._actions.is_builtin(ctx.action):
            # tables/login ignore any table that was passed.
            ctx.table = None
        if ctx.table is not None and not is_valid_table(ctx.table):
            raise ValidationAppError(
                code="invalid_table",
                message="Invalid table name",
                details={"table": ctx.table},
            )
        if ctx.table is None and self._actions.requires_table(ctx.action):
            raise ValidationAppError(
                code="missing_table",
                message="Table parameter is required",
                details={"action": ctx.action},
            )
        return handler

    def _authorize(self, ctx: PipelineContext) -> None:
        assert ctx.table is not None
        if not ctx.role:
            self._request_logger.record_security_event(
                "auth.no_role",
                action=ctx.action,
                table=ctx.table,
                user=ctx.user,
            )
            raise ForbiddenError(code="no_role", message="Forbidden: No role assigned")

        permission = self._actions.permission_for(ctx.action)
        if not self._rbac.is_allowed(ctx.role, ctx.table, permission):
            self._request_logger.record_security_event(
                "auth.forbidden",
                action=ctx.action,
                table=ctx.table,
                role=ctx.role,
                user=ctx.user,
            )
            raise ForbiddenError(
                code="forbidden",
                message=f"Forbidden: {ctx.role} cannot {ctx.action} on {ctx.table}",
                details={"role": ctx.role, "table": ctx.table, "action": ctx.action},
            )

    def _dispatch(
        self,
        ctx: PipelineContext,
        handler: ActionHandler,
        params: Mapping[str, str],
        cache_key: str | None,
    ) -> ApiResponse:
        request = ctx.request
        if self._actions.requires_post(ctx.action) and request.method != "POST":
            raise MethodNotAllowedError(
                code="method_not_allowed",
                message="Method not allowed",
                details={"method": request.method, "action": ctx.action},
            )

        context: dict[str, Any] = {
            "action": ctx.action,
            "table": ctx.table,
            "params": dict(params),
            "body": request.body,
            "user": ctx.user,
            "role": ctx.role,
        }
        self._hooks.run("before", ctx.action, context)

        call = ActionCall(
            action=ctx.action,
            table=ctx.table,
            params=context["params"],
            body=context["body"],
            method=request.method,
            user=ctx.user,
            role=ctx.role,
        )
        outcome = handler(call)
        result = outcome if isinstance(outcome, ActionResult) else ActionResult(payload=outcome)

        # The write is committed at this point, whatever the after-hooks do.
        if self._cache.is_invalidating_write(ctx.table, ctx.action):
            assert ctx.table is not None
            self._cache.invalidate_table(ctx.table)

        context["result"] = result.payload
        self._hooks.run("after", ctx.action, context)
        payload = context["result"]

        headers = dict(result.headers)
        if cache_key is not None and ctx.table is not None:
            if result.status_code == 200:
                self._cache.set(cache_key, payload, ctx.table)
            ctx.cache_hit = False
            headers.update(self._cache_headers(ctx.table, hit=False))

        return ApiResponse(status_code=result.status_code, payload=payload, headers=headers)

    def _cache_headers(self, table: str, *, hit: bool) -> dict[str, str]:
        return {
            "X-Cache-Hit": "true" if hit else "false",
            "X-Cache-TTL": str(self._cache.get_ttl(table)),
        }

    def _error_response(self, ctx: PipelineContext, exc: AppError) -> ApiResponse:
        if isinstance(exc, RateLimitExceededError):
            return ApiResponse(
                status_code=exc.status_code,
                payload={
                    "error": "Rate limit exceeded",
                    "message": exc.message,
                    "retry_after": exc.retry_after,
                    "reset_at": format_reset_at(exc.reset_at),
                    "limit": exc.limit,
                    "window": exc.window,
                },
                headers=dict(exc.headers),
            )

        logger.debug(
            "pipeline.app_error",
            extra={"error_code": exc.code, "status_code": exc.status_code, "action": ctx.action},
        )
        error: dict[str, Any] = {
            "code": exc.code,
            "message": exc.message,
            "request_id": get_request_id(),
        }
        if exc.details:
            error["details"] = exc.details
        return ApiResponse(status_code=exc.status_code, payload={"error": error})
