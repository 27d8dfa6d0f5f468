"""File-backed rate limit storage.

One JSON file per hashed identifier (``ratelimit_<hash>.json``). Writes go to
a temporary file in the same directory and are moved into place with
``os.replace`` so concurrent readers see either the old or the new window,
never a partial one. The file's mtime is the record's last-modified time used
by the maintenance sweep.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from tablegate.adapters.rate_limit.base import AbstractRateLimitStorage

logger = logging.getLogger(__name__)

_PREFIX = "ratelimit_"
_SUFFIX = ".json"


class FileRateLimitStorage(AbstractRateLimitStorage):
    """Persist sliding windows as small JSON documents on disk."""

    def __init__(self, storage_dir: str | Path) -> None:
        self._dir = Path(storage_dir)
        self._dir.mkdir(parents=True, exist_ok=True)

    @property
    def storage_dir(self) -> Path:
        return self._dir

    def _path(self, key: str) -> Path:
        return self._dir / f"{_PREFIX}{key}{_SUFFIX}"

    def read(self, key: str) -> list[float]:
        path = self._path(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as exc:
            logger.warning(
                "rate_limit.storage_read_failed",
                extra={"key_hash": key[:16], "error_type": type(exc).__name__},
            )
            return []

        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("rate_limit.storage_corrupt", extra={"key_hash": key[:16]})
            return []

        if not isinstance(data, list):
            return []
        return [
            float(item)
            for item in data
            if isinstance(item, (int, float)) and not isinstance(item, bool)
        ]

    def write(self, key: str, timestamps: list[float]) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=".tmp_", suffix=_SUFFIX)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(timestamps, handle)
            os.replace(tmp_name, self._path(key))
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def delete(self, key: str) -> bool:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError:
            return False
        return True

    def sweep(self, older_than_seconds: float, now: float) -> int:
        deleted = 0
        for path in self._dir.glob(f"{_PREFIX}*{_SUFFIX}"):
            try:
                if now - path.stat().st_mtime > older_than_seconds:
                    path.unlink()
                    deleted += 1
            except FileNotFoundError:
                continue
        return deleted
