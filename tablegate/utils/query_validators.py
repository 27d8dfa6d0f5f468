"""Query parameter validation.

Whitelists table names, ids and sort expressions before anything reaches the
data layer, and normalizes pagination values.
"""

from __future__ import annotations

import re
from typing import Any

from tablegate.core.errors import ValidationAppError

_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_]+$")

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20


def is_valid_table(table: str | None) -> bool:
    """Return True for non-empty alphanumeric/underscore table names."""
    return bool(table) and bool(_IDENTIFIER_RE.match(table or ""))


def parse_id(raw: Any, *, field_name: str = "id") -> int:
    """Parse a non-negative integer id.

    Raises:
        ValidationAppError: If ``raw`` is missing or not a non-negative integer.
    """
    text = str(raw).strip() if raw is not None else ""
    if not (text.isascii() and text.isdigit()):
        raise ValidationAppError(
            code="invalid_id",
            message=f"Invalid or missing {field_name} parameter",
        )
    return int(text)


def normalize_page(raw: Any) -> int:
    """Clamp the page number to >= 1 (invalid values become 1)."""
    try:
        page = int(raw)
    except (TypeError, ValueError):
        return 1
    return page if page > 0 else 1


def normalize_page_size(raw: Any) -> int:
    """Clamp the page size into ``1..MAX_PAGE_SIZE``."""
    try:
        size = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_PAGE_SIZE
    return max(1, min(MAX_PAGE_SIZE, size))


def is_valid_sort(sort: str) -> bool:
    """Validate comma-separated ``field:asc|desc`` pairs.

    Examples:
        >>> is_valid_sort("name:asc,created_at:desc")
        True
        >>> is_valid_sort("name")
        False
    """
    for part in sort.split(","):
        if ":" not in part:
            return False
        column, direction = part.split(":", 1)
        if not _IDENTIFIER_RE.match(column):
            return False
        if direction.lower() not in {"asc", "desc"}:
            return False
    return True
