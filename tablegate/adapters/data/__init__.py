"""Data layer adapters."""

from __future__ import annotations

from tablegate.adapters.data.base import AbstractTableDataSource, ListOptions
from tablegate.adapters.data.in_memory import InMemoryTableDataSource

__all__ = ["AbstractTableDataSource", "InMemoryTableDataSource", "ListOptions"]
