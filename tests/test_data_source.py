"""Tests for the in-memory table data source and query validators."""

import pytest

from tablegate.adapters.data import InMemoryTableDataSource, ListOptions
from tablegate.core.errors import NotFoundAppError, ValidationAppError
from tablegate.utils.query_validators import (
    is_valid_sort,
    is_valid_table,
    normalize_page,
    normalize_page_size,
    parse_id,
)


@pytest.fixture
def source() -> InMemoryTableDataSource:
    return InMemoryTableDataSource(
        {
            "products": [
                {"name": "pen", "price": 2},
                {"name": "pencil", "price": 1},
                {"name": "notebook", "price": 5},
            ]
        }
    )


def test_list_paginates_and_reports_total(source: InMemoryTableDataSource) -> None:
    result = source.list("products", ListOptions(page=2, page_size=2))

    assert [row["name"] for row in result["data"]] == ["notebook"]
    assert result["meta"] == {"page": 2, "page_size": 2, "total": 3}


def test_filter_sort_and_projection(source: InMemoryTableDataSource) -> None:
    result = source.list(
        "products",
        ListOptions(filter="name:like:pen%", sort="price:asc", fields="name"),
    )

    assert result["data"] == [{"name": "pencil"}, {"name": "pen"}]


def test_sort_tolerates_mixed_value_types() -> None:
    source = InMemoryTableDataSource(
        {"items": [{"code": "b"}, {"code": 3}, {"code": None}, {"code": "a"}, {"code": 1}]}
    )

    ascending = source.list("items", ListOptions(sort="code:asc"))
    descending = source.list("items", ListOptions(sort="code:desc"))

    assert [row["code"] for row in ascending["data"]] == [1, 3, "a", "b", None]
    assert [row["code"] for row in descending["data"]] == [None, "b", "a", 3, 1]


def test_invalid_filter_clause(source: InMemoryTableDataSource) -> None:
    with pytest.raises(ValidationAppError):
        source.count("products", ListOptions(filter="price:between:1"))


def test_unknown_table_and_row(source: InMemoryTableDataSource) -> None:
    with pytest.raises(NotFoundAppError):
        source.list("ghosts", ListOptions())
    with pytest.raises(NotFoundAppError):
        source.read("products", 42)


def test_crud_cycle(source: InMemoryTableDataSource) -> None:
    created = source.create("products", {"name": "eraser", "id": 999})
    assert created == {"success": True, "id": 4}

    source.update("products", 4, {"price": 3})
    assert source.read("products", 4) == {"id": 4, "name": "eraser", "price": 3}

    assert source.delete("products", 4) == {"success": True, "id": 4}
    assert source.count("products", ListOptions()) == {"count": 3}


def test_columns_and_tables(source: InMemoryTableDataSource) -> None:
    assert source.tables() == ["products"]
    assert {"name": "price", "type": "int"} in source.columns("products")


@pytest.mark.parametrize(
    ("table", "valid"),
    [("orders", True), ("order_items_2", True), ("", False), (None, False), ("a-b", False), ("x;y", False)],
)
def test_is_valid_table(table, valid: bool) -> None:
    assert is_valid_table(table) is valid


def test_parse_id() -> None:
    assert parse_id("7") == 7
    assert parse_id(0) == 0
    for bad in (None, "", "-1", "1.5", "abc", "²", "٣"):
        with pytest.raises(ValidationAppError):
            parse_id(bad)


def test_pagination_normalization() -> None:
    assert normalize_page("0") == 1
    assert normalize_page("x") == 1
    assert normalize_page("3") == 3
    assert normalize_page_size("500") == 100
    assert normalize_page_size("0") == 1
    assert normalize_page_size(None) == 20


def test_sort_validation() -> None:
    assert is_valid_sort("name:asc,price:DESC") is True
    assert is_valid_sort("name") is False
    assert is_valid_sort("name:up") is False
    assert is_valid_sort("na me:asc") is False
