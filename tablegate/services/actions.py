"""Built-in action handlers and the action registry.

Handlers validate their inputs and delegate to an ``AbstractTableDataSource``.
The registry merges built-ins with plugin-registered actions and answers the
questions the pipeline asks during action resolution: does the action exist,
does it need a table, which permission guards it, which verb it requires.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from tablegate.adapters.data.base import AbstractTableDataSource, ListOptions
from tablegate.core.auth import AbstractAuthenticator
from tablegate.core.errors import ValidationAppError
from tablegate.schemas.actions import Action, ActionCall, ActionHandler, ActionResult, LoginRequest
from tablegate.utils.query_validators import (
    is_valid_sort,
    normalize_page,
    normalize_page_size,
    parse_id,
)

logger = logging.getLogger(__name__)

TABLE_ACTIONS = frozenset(
    {
        Action.COLUMNS.value,
        Action.LIST.value,
        Action.COUNT.value,
        Action.READ.value,
        Action.CREATE.value,
        Action.UPDATE.value,
        Action.DELETE.value,
        Action.BULK_CREATE.value,
        Action.BULK_DELETE.value,
    }
)

POST_ONLY_ACTIONS = frozenset(
    {
        Action.CREATE.value,
        Action.UPDATE.value,
        Action.BULK_CREATE.value,
        Action.BULK_DELETE.value,
    }
)

# Actions checked against the permission of the action they derive from.
PERMISSION_ALIASES: dict[str, str] = {
    Action.COLUMNS.value: Action.READ.value,
    Action.COUNT.value: Action.LIST.value,
    Action.BULK_CREATE.value: Action.CREATE.value,
    Action.BULK_DELETE.value: Action.DELETE.value,
}


def _list_options(params: Mapping[str, Any]) -> ListOptions:
    sort = params.get("sort") or None
    if sort is not None and not is_valid_sort(sort):
        raise ValidationAppError(
            code="invalid_sort",
            message="Invalid sort parameter. Expected field:asc|desc pairs",
            details={"hint": "e.g. sort=name:asc,created_at:desc"},
        )

    return ListOptions(
        filter=params.get("filter") or None,
        sort=sort,
        page=normalize_page(params.get("page", 1)),
        page_size=normalize_page_size(params.get("page_size", 20)),
        fields=params.get("fields") or None,
    )


def _require_object(body: Any) -> dict[str, Any]:
    if not isinstance(body, dict) or not body:
        raise ValidationAppError(
            code="invalid_body",
            message="Request body must be a non-empty JSON object",
        )
    return body


class TableActions:
    """Built-in CRUD handlers bound to a data source."""

    def __init__(self, data_source: AbstractTableDataSource) -> None:
        self._data = data_source

    def tables(self, call: ActionCall) -> ActionResult:
        return ActionResult(payload=self._data.tables())

    def columns(self, call: ActionCall) -> ActionResult:
        return ActionResult(payload=self._data.columns(call.table or ""))

    def list(self, call: ActionCall) -> ActionResult:
        return ActionResult(payload=self._data.list(call.table or "", _list_options(call.params)))

    def count(self, call: ActionCall) -> ActionResult:
        return ActionResult(payload=self._data.count(call.table or "", _list_options(call.params)))

    def read(self, call: ActionCall) -> ActionResult:
        row_id = parse_id(call.params.get("id"))
        return ActionResult(payload=self._data.read(call.table or "", row_id))

    def create(self, call: ActionCall) -> ActionResult:
        data = _require_object(call.body)
        return ActionResult(payload=self._data.create(call.table or "", data), status_code=201)

    def update(self, call: ActionCall) -> ActionResult:
        row_id = parse_id(call.params.get("id"))
        data = _require_object(call.body)
        return ActionResult(payload=self._data.update(call.table or "", row_id, data))

    def delete(self, call: ActionCall) -> ActionResult:
        row_id = parse_id(call.params.get("id"))
        return ActionResult(payload=self._data.delete(call.table or "", row_id))

    def bulk_create(self, call: ActionCall) -> ActionResult:
        rows = call.body
        if not isinstance(rows, list) or not rows or not all(isinstance(r, dict) for r in rows):
            raise ValidationAppError(
                code="invalid_body",
                message="Request body must be a non-empty JSON array of objects",
            )
        return ActionResult(payload=self._data.bulk_create(call.table or "", rows), status_code=201)

    def bulk_delete(self, call: ActionCall) -> ActionResult:
        raw_ids = call.body.get("ids") if isinstance(call.body, dict) else None
        if not isinstance(raw_ids, list) or not raw_ids:
            raise ValidationAppError(
                code="invalid_body",
                message="Request body must contain a non-empty 'ids' array",
            )
        ids = [parse_id(value, field_name="ids") for value in raw_ids]
        return ActionResult(payload=self._data.bulk_delete(call.table or "", ids))

    def handlers(self) -> dict[str, ActionHandler]:
        return {
            Action.TABLES.value: self.tables,
            Action.COLUMNS.value: self.columns,
            Action.LIST.value: self.list,
            Action.COUNT.value: self.count,
            Action.READ.value: self.read,
            Action.CREATE.value: self.create,
            Action.UPDATE.value: self.update,
            Action.DELETE.value: self.delete,
            Action.BULK_CREATE.value: self.bulk_create,
            Action.BULK_DELETE.value: self.bulk_delete,
        }


def login_handler(authenticator: AbstractAuthenticator) -> ActionHandler:
    """Build the anonymous ``login`` handler for token-issuing authenticators."""

    def login(call: ActionCall) -> ActionResult:
        try:
            credentials = LoginRequest.model_validate(call.body or {})
        except ValidationError as exc:
            raise ValidationAppError(
                code="invalid_login_payload",
                message="Login requires 'username' and 'password'",
                details={"context": {"errors": exc.error_count()}},
            ) from exc
        token = authenticator.login(credentials)
        return ActionResult(payload=token.model_dump())

    return login


class ActionRegistry:
    """Immutable view over built-in and plugin actions."""

    def __init__(
        self,
        builtins: Mapping[str, ActionHandler],
        custom: Mapping[str, ActionHandler] | None = None,
    ) -> None:
        self._builtins = dict(builtins)
        self._custom = dict(custom or {})

    def resolve(self, action: str) -> ActionHandler | None:
        return self._builtins.get(action) or self._custom.get(action)

    def is_builtin(self, action: str) -> bool:
        return action in self._builtins

    def requires_table(self, action: str) -> bool:
        return action in TABLE_ACTIONS

    def requires_post(self, action: str) -> bool:
        return action in POST_ONLY_ACTIONS

    def permission_for(self, action: str) -> str:
        return PERMISSION_ALIASES.get(action, action)

    def names(self) -> list[str]:
        return sorted({*self._builtins, *self._custom})


def build_action_registry(
    data_source: AbstractTableDataSource,
    authenticator: AbstractAuthenticator,
    custom: Mapping[str, ActionHandler] | None = None,
) -> ActionRegistry:
    builtins = TableActions(data_source).handlers()
    if authenticator.supports_login:
        builtins[Action.LOGIN.value] = login_handler(authenticator)

    registry = ActionRegistry(builtins, custom)
    logger.info("actions.registered", extra={"actions": registry.names()})
    return registry
