"""File-based cache driver.

Each entry is one JSON document named after the SHA-256 of its key and spread
over 256 two-character subdirectories. The document stores the original key so
pattern deletes can match on it. Writes are atomic (temp file + ``os.replace``).
Corrupt or expired documents are removed on read.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import time
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any, Callable, Iterator

from tablegate.adapters.cache.base import AbstractCacheStorage, CacheEntry

logger = logging.getLogger(__name__)

CACHE_EXTENSION = ".cache"


class FileCacheStorage(AbstractCacheStorage):
    """Persist cache entries as JSON files under ``cache_path``."""

    driver_name = "file"

    def __init__(
        self,
        cache_path: str | Path,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._root = Path(cache_path)
        self._root.mkdir(parents=True, exist_ok=True)
        self._clock = clock

    def _path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self._root / digest[:2] / f"{digest}{CACHE_EXTENSION}"

    def _files(self) -> Iterator[Path]:
        return self._root.glob(f"*/*{CACHE_EXTENSION}")

    def _load(self, path: Path) -> CacheEntry | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

        try:
            data = json.loads(raw)
            return CacheEntry(
                key=data["key"],
                value=data["value"],
                created_at=float(data["created_at"]),
                ttl=int(data["ttl"]),
            )
        except (ValueError, KeyError, TypeError):
            logger.warning("cache.file_corrupt", extra={"path": str(path)})
            path.unlink(missing_ok=True)
            return None

    def get(self, key: str) -> Any | None:
        path = self._path(key)
        entry = self._load(path)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            path.unlink(missing_ok=True)
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl: int) -> bool:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)

        document = {
            "key": key,
            "value": value,
            "created_at": self._clock(),
            "ttl": ttl,
        }

        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp_")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, default=str)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return True

    def delete(self, key: str) -> bool:
        self._path(key).unlink(missing_ok=True)
        return True

    def delete_pattern(self, pattern: str) -> bool:
        for path in list(self._files()):
            entry = self._load(path)
            if entry is not None and fnmatchcase(entry.key, pattern):
                path.unlink(missing_ok=True)
        return True

    def clear(self) -> bool:
        for path in list(self._files()):
            path.unlink(missing_ok=True)
        return True

    def has(self, key: str) -> bool:
        path = self._path(key)
        entry = self._load(path)
        if entry is None:
            return False
        if entry.is_expired(self._clock()):
            path.unlink(missing_ok=True)
            return False
        return True

    def get_stats(self) -> dict[str, Any]:
        now = self._clock()
        total_size = 0
        total_files = 0
        expired = 0

        for path in self._files():
            try:
                total_size += path.stat().st_size
            except FileNotFoundError:
                continue
            total_files += 1
            entry = self._load(path)
            if entry is not None and entry.is_expired(now):
                expired += 1

        return {
            "driver": self.driver_name,
            "cache_path": str(self._root),
            "size": total_files,
            "valid_entries": total_files - expired,
            "expired_entries": expired,
            "total_bytes": total_size,
        }
