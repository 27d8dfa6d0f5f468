"""Table data source interface.

Schema introspection and SQL generation live behind this contract. The
pipeline only validates inputs and delegates; implementations raise
``NotFoundAppError`` for unknown tables/rows and ``ValidationAppError`` for
payloads they cannot store.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ListOptions:
    """Validated options for ``list``/``count``.

    Attributes:
        filter: Raw filter expression (``col:op:value`` pairs, comma separated).
        sort: Validated ``field:asc|desc`` pairs, comma separated.
        page: 1-based page number.
        page_size: Rows per page (1..100).
        fields: Comma-separated projection.
    """

    filter: str | None = None
    sort: str | None = None
    page: int = 1
    page_size: int = 20
    fields: str | None = None


class AbstractTableDataSource(ABC):
    """Interface for the relational data layer."""

    @abstractmethod
    def tables(self) -> list[str]:
        raise NotImplementedError

    @abstractmethod
    def columns(self, table: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def list(self, table: str, options: ListOptions) -> dict[str, Any]:
        """Return ``{"data": rows, "meta": {"page", "page_size", "total"}}``."""
        raise NotImplementedError

    @abstractmethod
    def count(self, table: str, options: ListOptions) -> dict[str, int]:
        raise NotImplementedError

    @abstractmethod
    def read(self, table: str, row_id: int) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def create(self, table: str, data: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def update(self, table: str, row_id: int, data: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def delete(self, table: str, row_id: int) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def bulk_create(self, table: str, rows: list[dict[str, Any]]) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def bulk_delete(self, table: str, ids: list[int]) -> dict[str, Any]:
        raise NotImplementedError
