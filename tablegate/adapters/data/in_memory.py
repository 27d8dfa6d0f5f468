"""In-memory table data source.

Used for local runs and tests. Rows are dicts keyed by an auto-increment
integer ``id``. Supports the same filter/sort/pagination options as the SQL
backends: ``filter=col:op:value`` (ops ``eq``, ``neq``, ``gt``, ``gte``,
``lt``, ``lte``, ``like``), comma separated for AND.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from typing import Any, Callable

from tablegate.adapters.data.base import AbstractTableDataSource, ListOptions
from tablegate.core.errors import NotFoundAppError, ValidationAppError

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "eq": lambda a, b: str(a) == b,
    "neq": lambda a, b: str(a) != b,
    "gt": lambda a, b: _num(a) > _num(b),
    "gte": lambda a, b: _num(a) >= _num(b),
    "lt": lambda a, b: _num(a) < _num(b),
    "lte": lambda a, b: _num(a) <= _num(b),
    "like": lambda a, b: b.strip("%").lower() in str(a).lower(),
}


def _num(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float("nan")


def _sort_key(value: Any) -> tuple[int, float | str]:
    """Missing values last, numbers before other values, text compared as str."""
    if value is None:
        return (2, "")
    if isinstance(value, (int, float)):
        return (0, value)
    return (1, str(value))


class InMemoryTableDataSource(AbstractTableDataSource):
    """Thread-safe dict-backed tables."""

    def __init__(self, tables: Mapping[str, Iterable[Mapping[str, Any]]] | None = None) -> None:
        self._lock = threading.RLock()
        self._tables: dict[str, dict[int, dict[str, Any]]] = {}
        self._next_id: dict[str, int] = {}
        for name, rows in (tables or {}).items():
            self._tables[name] = {}
            self._next_id[name] = 1
            for row in rows:
                self._insert(name, dict(row))

    def _insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        row_id = int(row.get("id") or self._next_id[table])
        row["id"] = row_id
        self._tables[table][row_id] = row
        self._next_id[table] = max(self._next_id[table], row_id + 1)
        return row

    def _rows(self, table: str) -> dict[int, dict[str, Any]]:
        rows = self._tables.get(table)
        if rows is None:
            raise NotFoundAppError(
                code="table_not_found",
                message=f"Table '{table}' does not exist",
                details={"table": table},
            )
        return rows

    def _filtered(self, table: str, expression: str | None) -> list[dict[str, Any]]:
        rows = list(self._rows(table).values())
        if not expression:
            return rows

        for clause in expression.split(","):
            parts = clause.split(":", 2)
            if len(parts) != 3 or parts[1] not in _OPERATORS:
                raise ValidationAppError(
                    code="invalid_filter",
                    message=f"Invalid filter clause '{clause}'",
                    details={"table": table},
                )
            column, op, value = parts
            compare = _OPERATORS[op]
            rows = [row for row in rows if column in row and compare(row[column], value)]
        return rows

    def tables(self) -> list[str]:
        with self._lock:
            return sorted(self._tables)

    def columns(self, table: str) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._rows(table)
            names: dict[str, str] = {"id": "int"}
            for row in rows.values():
                for key, value in row.items():
                    names.setdefault(key, type(value).__name__)
            return [{"name": name, "type": kind} for name, kind in names.items()]

    def list(self, table: str, options: ListOptions) -> dict[str, Any]:
        with self._lock:
            rows = self._filtered(table, options.filter)

        if options.sort:
            for part in reversed(options.sort.split(",")):
                column, direction = part.split(":", 1)
                rows.sort(
                    key=lambda row: _sort_key(row.get(column)),
                    reverse=direction.lower() == "desc",
                )

        total = len(rows)
        start = (options.page - 1) * options.page_size
        page = rows[start : start + options.page_size]

        if options.fields:
            wanted = [f.strip() for f in options.fields.split(",") if f.strip()]
            page = [{k: row.get(k) for k in wanted} for row in page]
        else:
            page = [dict(row) for row in page]

        return {
            "data": page,
            "meta": {"page": options.page, "page_size": options.page_size, "total": total},
        }

    def count(self, table: str, options: ListOptions) -> dict[str, int]:
        with self._lock:
            return {"count": len(self._filtered(table, options.filter))}

    def read(self, table: str, row_id: int) -> dict[str, Any]:
        with self._lock:
            row = self._rows(table).get(row_id)
            if row is None:
                raise NotFoundAppError(
                    code="row_not_found",
                    message=f"Row {row_id} not found in '{table}'",
                    details={"table": table},
                )
            return dict(row)

    def create(self, table: str, data: dict[str, Any]) -> dict[str, Any]:
        if not data:
            raise ValidationAppError(
                code="empty_payload",
                message="Request body must contain at least one column",
                details={"table": table},
            )
        with self._lock:
            self._rows(table)
            row = self._insert(table, {k: v for k, v in data.items() if k != "id"})
            return {"success": True, "id": row["id"]}

    def update(self, table: str, row_id: int, data: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            row = self._rows(table).get(row_id)
            if row is None:
                raise NotFoundAppError(
                    code="row_not_found",
                    message=f"Row {row_id} not found in '{table}'",
                    details={"table": table},
                )
            row.update({k: v for k, v in data.items() if k != "id"})
            return {"success": True, "id": row_id}

    def delete(self, table: str, row_id: int) -> dict[str, Any]:
        with self._lock:
            removed = self._rows(table).pop(row_id, None)
            return {"success": removed is not None, "id": row_id}

    def bulk_create(self, table: str, rows: list[dict[str, Any]]) -> dict[str, Any]:
        with self._lock:
            self._rows(table)
            ids = [
                self._insert(table, {k: v for k, v in row.items() if k != "id"})["id"]
                for row in rows
            ]
            return {"success": True, "created": len(ids), "ids": ids}

    def bulk_delete(self, table: str, ids: list[int]) -> dict[str, Any]:
        with self._lock:
            rows = self._rows(table)
            deleted = sum(1 for row_id in ids if rows.pop(row_id, None) is not None)
            return {"success": True, "deleted": deleted}
