"""Tests for the per-request pipeline stage order and terminal responses."""

from unittest.mock import Mock

import pytest

from tablegate.adapters.cache import InMemoryCacheStorage
from tablegate.adapters.data import AbstractTableDataSource, InMemoryTableDataSource
from tablegate.adapters.rate_limit import InMemoryRateLimitStorage
from tablegate.core.auth import AbstractAuthenticator, ApiKeyAuthenticator, JwtAuthenticator
from tablegate.core.config import CorsSettings
from tablegate.core.rate_limit import SlidingWindowRateLimiter
from tablegate.core.rbac import Rbac
from tablegate.plugins import PluginManager
from tablegate.plugins.hello_world import HelloWorldPlugin
from tablegate.plugins.hooks import HookManager
from tablegate.schemas.actions import ApiRequest
from tablegate.services.actions import build_action_registry
from tablegate.services.cache_manager import CacheManager
from tablegate.services.pipeline import Pipeline, resolve_identifier
from tablegate.services.request_logger import RequestLogger

ADMIN_KEY = "admin-key"
READONLY_KEY = "readonly-key"

ROLES = {
    "admin": {"*": ["list", "read", "create", "update", "delete"]},
    "readonly": {"*": ["list", "read"], "orders": []},
}


class KeyRoleAuthenticator(ApiKeyAuthenticator):
    """API keys mapped to individual roles."""

    def __init__(self, roles_by_key: dict[str, str]) -> None:
        super().__init__(set(roles_by_key), None)
        self._roles_by_key = roles_by_key

    def current_user_role(self, request):
        return self._roles_by_key.get(request.header("X-API-Key") or "")


def _request(action: str, table: str | None = None, method: str = "GET", key: str | None = ADMIN_KEY, body=None, **query) -> ApiRequest:
    params = {"action": action, **query}
    if table is not None:
        params["table"] = table
    headers = {"x-api-key": key} if key else {}
    return ApiRequest(method=method, query=params, headers=headers, body=body, client_host="10.0.0.9")


def build_pipeline(
    clock: Mock,
    *,
    data_source: AbstractTableDataSource | None = None,
    max_requests: int = 100,
    auth_enabled: bool = True,
    plugins: PluginManager | None = None,
    cache: CacheManager | None = None,
    request_logger: RequestLogger | None = None,
    authenticator: AbstractAuthenticator | None = None,
    hooks: HookManager | None = None,
):
    data = data_source or InMemoryTableDataSource(
        {"orders": [{"total": 10}, {"total": 20}], "products": [{"name": "pen"}]}
    )
    authenticator = authenticator or KeyRoleAuthenticator({ADMIN_KEY: "admin", READONLY_KEY: "readonly"})
    hooks = hooks or (plugins.hooks if plugins else HookManager())
    custom = plugins.custom_actions if plugins else {}
    pipeline = Pipeline(
        rate_limiter=SlidingWindowRateLimiter(
            InMemoryRateLimitStorage(clock=clock),
            max_requests=max_requests,
            window_seconds=60,
            clock=clock,
        ),
        authenticator=authenticator,
        rbac=Rbac(ROLES).with_grants(plugins.permissions if plugins else {}),
        cache=cache or CacheManager(InMemoryCacheStorage(clock=clock), default_ttl=120),
        actions=build_action_registry(data, authenticator, custom),
        hooks=hooks,
        request_logger=request_logger or Mock(spec=RequestLogger),
        auth_enabled=auth_enabled,
        cors=CorsSettings(),
    )
    return pipeline, data


def test_list_returns_rows_with_rate_limit_and_cache_headers(clock: Mock) -> None:
    pipeline, _ = build_pipeline(clock)

    response = pipeline.handle(_request("list", "orders"))

    assert response.status_code == 200
    assert response.payload["meta"]["total"] == 2
    assert response.headers["X-RateLimit-Limit"] == "100"
    assert response.headers["X-RateLimit-Remaining"] == "99"
    assert response.headers["X-Cache-Hit"] == "false"
    assert response.headers["X-Cache-TTL"] == "120"
    assert response.headers["Access-Control-Allow-Origin"] == "*"


def test_preflight_answers_204_without_admission(clock: Mock) -> None:
    pipeline, _ = build_pipeline(clock, max_requests=1)

    for _ in range(3):
        response = pipeline.handle(_request("list", "orders", method="OPTIONS", key=None))
        assert response.status_code == 204
        assert "Access-Control-Allow-Methods" in response.headers

    assert pipeline.handle(_request("list", "orders")).status_code == 200


def test_create_denied_before_data_layer_runs(clock: Mock) -> None:
    data = Mock(spec=AbstractTableDataSource)
    pipeline, _ = build_pipeline(clock, data_source=data)

    response = pipeline.handle(
        _request("create", "orders", method="POST", key=READONLY_KEY, body={"total": 5})
    )

    assert response.status_code == 403
    assert response.payload["error"]["message"] == "Forbidden: readonly cannot create on orders"
    data.create.assert_not_called()


def test_explicit_deny_entry_blocks_reads(clock: Mock) -> None:
    pipeline, _ = build_pipeline(clock)

    assert pipeline.handle(_request("list", "orders", key=READONLY_KEY)).status_code == 403
    assert pipeline.handle(_request("list", "products", key=READONLY_KEY)).status_code == 200


def test_missing_role_is_forbidden(clock: Mock) -> None:
    pipeline, _ = build_pipeline(clock)
    pipeline._auth._roles_by_key = {}

    response = pipeline.handle(_request("list", "orders"))

    assert response.status_code == 403
    assert response.payload["error"]["message"] == "Forbidden: No role assigned"


def test_missing_credentials_return_authenticator_response(clock: Mock) -> None:
    request_logger = Mock(spec=RequestLogger)
    pipeline, _ = build_pipeline(clock, request_logger=request_logger)

    response = pipeline.handle(_request("list", "orders", key=None))

    assert response.status_code == 401
    assert response.payload == {"error": "Unauthorized"}
    request_logger.record_security_event.assert_called_once()
    assert request_logger.record_security_event.call_args.args[0] == "auth.failed"


def test_unknown_action_is_400_before_authentication(clock: Mock) -> None:
    pipeline, _ = build_pipeline(clock)

    response = pipeline.handle(_request("explode", "orders", key=None))

    assert response.status_code == 400
    assert response.payload["error"]["code"] == "invalid_action"


@pytest.mark.parametrize("table", ["orders;drop", "a b", "../x"])
def test_invalid_table_name_is_400(clock: Mock, table: str) -> None:
    pipeline, _ = build_pipeline(clock)

    response = pipeline.handle(_request("list", table))

    assert response.status_code == 400
    assert response.payload["error"]["code"] == "invalid_table"


def test_missing_table_is_400(clock: Mock) -> None:
    pipeline, _ = build_pipeline(clock)

    assert pipeline.handle(_request("list")).status_code == 400


def test_mutating_action_requires_post(clock: Mock) -> None:
    pipeline, _ = build_pipeline(clock)

    response = pipeline.handle(_request("create", "orders", method="GET", body={"total": 1}))

    assert response.status_code == 405


def test_rate_limit_rejection(clock: Mock) -> None:
    pipeline, _ = build_pipeline(clock, max_requests=2)

    pipeline.handle(_request("list", "orders"))
    pipeline.handle(_request("list", "orders"))
    clock.return_value = 1015.0
    response = pipeline.handle(_request("list", "orders"))

    assert response.status_code == 429
    assert response.payload["error"] == "Rate limit exceeded"
    assert response.payload["retry_after"] == 45
    assert response.payload["limit"] == 2
    assert response.payload["window"] == 60
    assert response.payload["reset_at"] == "1970-01-01 00:17:40"
    assert response.headers["Retry-After"] == "45"
    assert response.headers["X-RateLimit-Remaining"] == "0"


def test_every_response_is_logged_exactly_once(clock: Mock) -> None:
    request_logger = Mock(spec=RequestLogger)
    pipeline, _ = build_pipeline(clock, max_requests=1, request_logger=request_logger)

    pipeline.handle(_request("list", "orders"))
    pipeline.handle(_request("list", "orders"))
    pipeline.handle(_request("list", "orders", method="OPTIONS"))

    assert request_logger.log_request.call_count == 3
    statuses = [c.args[0].status_code for c in request_logger.log_request.call_args_list]
    assert statuses == [200, 429, 204]


def test_unhandled_exception_becomes_generic_500(clock: Mock) -> None:
    data = Mock(spec=AbstractTableDataSource)
    data.list.side_effect = RuntimeError("connection string: postgres://secret")
    request_logger = Mock(spec=RequestLogger)
    pipeline, _ = build_pipeline(clock, data_source=data, request_logger=request_logger)

    response = pipeline.handle(_request("list", "orders"))

    assert response.status_code == 500
    assert response.payload["error"]["code"] == "internal_server_error"
    assert "secret" not in str(response.payload)
    request_logger.log_error.assert_called_once()
    request_logger.log_request.assert_called_once()


def test_cache_hit_skips_handler(clock: Mock) -> None:
    data = Mock(spec=AbstractTableDataSource)
    data.list.return_value = {"data": [{"id": 1}], "meta": {"page": 1, "page_size": 20, "total": 1}}
    pipeline, _ = build_pipeline(clock, data_source=data)

    first = pipeline.handle(_request("list", "orders", page="1"))
    second = pipeline.handle(_request("list", "orders", page="1"))

    assert data.list.call_count == 1
    assert first.headers["X-Cache-Hit"] == "false"
    assert second.headers["X-Cache-Hit"] == "true"
    assert second.headers["X-Cache-TTL"] == first.headers["X-Cache-TTL"]
    assert second.payload == first.payload


def test_write_invalidates_table_cache(clock: Mock) -> None:
    pipeline, _ = build_pipeline(clock)

    pipeline.handle(_request("count", "orders"))
    created = pipeline.handle(_request("create", "orders", method="POST", body={"total": 30}))
    after = pipeline.handle(_request("count", "orders"))

    assert created.status_code == 201
    assert after.headers["X-Cache-Hit"] == "false"
    assert after.payload == {"count": 3}


def test_cache_varies_by_api_key(clock: Mock) -> None:
    pipeline, _ = build_pipeline(clock)

    pipeline.handle(_request("list", "products"))
    other = pipeline.handle(_request("list", "products", key=READONLY_KEY))

    assert other.headers["X-Cache-Hit"] == "false"


def test_auth_disabled_skips_authentication_and_authorization(clock: Mock) -> None:
    pipeline, _ = build_pipeline(clock, auth_enabled=False)

    response = pipeline.handle(_request("create", "orders", method="POST", key=None, body={"total": 1}))

    assert response.status_code == 201


def test_bulk_actions_use_base_permissions(clock: Mock) -> None:
    pipeline, _ = build_pipeline(clock)

    created = pipeline.handle(
        _request("bulk_create", "products", method="POST", body=[{"name": "a"}, {"name": "b"}])
    )
    deleted = pipeline.handle(
        _request("bulk_delete", "products", method="POST", body={"ids": created.payload["ids"]})
    )
    readonly = pipeline.handle(
        _request("bulk_delete", "products", method="POST", key=READONLY_KEY, body={"ids": [1]})
    )

    assert created.status_code == 201
    assert deleted.payload == {"success": True, "deleted": 2}
    assert readonly.status_code == 403


def test_read_missing_row_is_404(clock: Mock) -> None:
    pipeline, _ = build_pipeline(clock)

    response = pipeline.handle(_request("read", "orders", id="99"))

    assert response.status_code == 404


def test_invalid_sort_is_400(clock: Mock) -> None:
    pipeline, _ = build_pipeline(clock)

    response = pipeline.handle(_request("list", "orders", sort="total;drop"))

    assert response.status_code == 400
    assert response.payload["error"]["code"] == "invalid_sort"


def test_tables_action_needs_no_table(clock: Mock) -> None:
    pipeline, _ = build_pipeline(clock)

    response = pipeline.handle(_request("tables"))

    assert response.payload == ["orders", "products"]


def test_plugin_action_and_hooks(clock: Mock) -> None:
    plugins = PluginManager([HelloWorldPlugin])
    plugins.load_all()
    pipeline, _ = build_pipeline(clock, plugins=plugins)

    hello = pipeline.handle(_request("hello", who="me"))
    created = pipeline.handle(_request("create", "orders", method="POST", body={"total": 1}))

    assert hello.payload == {"message": "Hello from plugin", "query": {"who": "me"}}
    assert created.payload["plugin_meta"] == {"hello_world": "created"}


def test_identifier_precedence() -> None:
    auth = Mock()
    auth.method = "apikey"
    auth.current_user.return_value = None

    forwarded = ApiRequest(
        method="GET",
        headers={"x-forwarded-for": "1.1.1.1, 2.2.2.2", "x-real-ip": "3.3.3.3"},
        client_host="4.4.4.4",
    )
    assert resolve_identifier(forwarded, auth) == "ip:1.1.1.1"

    keyed = ApiRequest(method="GET", headers={"x-api-key": "k"}, client_host="4.4.4.4")
    assert resolve_identifier(keyed, auth).startswith("apikey:")
    assert "k" != resolve_identifier(keyed, auth)[7:]

    auth.current_user.return_value = "alice"
    assert resolve_identifier(keyed, auth) == "user:alice"

    auth.current_user.return_value = None
    assert resolve_identifier(ApiRequest(method="GET"), auth) == "ip:unknown"


def test_rotating_api_keys_do_not_reset_window_under_jwt(clock: Mock) -> None:
    auth = JwtAuthenticator("s" * 32, users={"admin": "pw"}, user_roles={"admin": "admin"}, clock=clock)
    pipeline, _ = build_pipeline(clock, max_requests=2, authenticator=auth)

    statuses = [
        pipeline.handle(
            _request(
                "login",
                method="POST",
                key=f"bogus-{n}",
                body={"username": "admin", "password": "guess"},
            )
        ).status_code
        for n in range(4)
    ]

    assert statuses == [401, 401, 429, 429]


def test_identifier_ignores_api_key_for_other_auth_methods() -> None:
    auth = Mock()
    auth.method = "jwt"
    auth.current_user.return_value = None

    keyed = ApiRequest(method="GET", headers={"x-api-key": "k"}, client_host="4.4.4.4")

    assert resolve_identifier(keyed, auth) == "ip:4.4.4.4"


def test_failing_after_hook_still_invalidates_written_table(clock: Mock) -> None:
    hooks = HookManager()

    def explode(ctx) -> None:
        raise RuntimeError("after hook failed")

    hooks.register("create", explode, "after")
    pipeline, _ = build_pipeline(clock, hooks=hooks)

    before = pipeline.handle(_request("count", "orders"))
    created = pipeline.handle(_request("create", "orders", method="POST", body={"total": 30}))
    after = pipeline.handle(_request("count", "orders"))

    assert before.payload == {"count": 2}
    assert created.status_code == 500
    assert after.headers["X-Cache-Hit"] == "false"
    assert after.payload == {"count": 3}


def test_tables_action_ignores_malformed_table(clock: Mock) -> None:
    pipeline, _ = build_pipeline(clock)

    response = pipeline.handle(_request("tables", "bad-name"))

    assert response.status_code == 200
    assert response.payload == ["orders", "products"]


@pytest.mark.parametrize("row_id", ["²", "٣", "1e3"])
def test_non_ascii_digit_id_is_400(clock: Mock, row_id: str) -> None:
    pipeline, _ = build_pipeline(clock)

    response = pipeline.handle(_request("read", "orders", id=row_id))

    assert response.status_code == 400
    assert response.payload["error"]["code"] == "invalid_id"
