"""
Durable key/value storage.

A small local stand-in for browser local storage: each key holds one string
blob, kept as ``<directory>/<key>.json``. The total size of all blobs is
capped by a byte quota, and writes go through a temporary file so a failed
write never leaves a truncated blob behind.
"""
from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

# Browsers typically allow about 5 MiB per origin
DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class StorageError(Exception):
    """Reading from or writing to durable storage failed."""


class QuotaExceededError(StorageError):
    """A write would take the storage over its byte quota."""


class LocalStorage:
    """File-backed key/value store with a byte quota."""

    def __init__(self, directory: Path | str, quota_bytes: int | None = DEFAULT_QUOTA_BYTES):
        """
        Args:
            directory: Directory holding one file per key. Created on first write.
            quota_bytes: Maximum total size of all stored values, or None for no limit.
        """
        self.directory = Path(directory).expanduser()
        self.quota_bytes = quota_bytes

    def _path(self, key: str) -> Path:
        if not isinstance(key, str) or not _KEY_PATTERN.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}.json"

    def keys(self) -> list[str]:
        """Return all stored keys, sorted."""
        if not self.directory.is_dir():
            return []
        return sorted(p.stem for p in self.directory.glob("*.json") if p.is_file())

    def get_item(self, key: str) -> str | None:
        """Return the value stored under key, or None if absent.

        Raises:
            StorageError: If the value exists but cannot be read.
        """
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    def usage(self, exclude: str | None = None) -> int:
        """Return the total stored size in bytes, optionally ignoring one key."""
        total = 0
        for key in self.keys():
            if key == exclude:
                continue
            try:
                total += self._path(key).stat().st_size
            except (OSError, ValueError):
                continue
        return total

    def set_item(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value.

        Raises:
            QuotaExceededError: If the write would exceed the quota.
            StorageError: If the file cannot be written.
        """
        path = self._path(key)
        data = value.encode("utf-8")

        if self.quota_bytes is not None:
            needed = self.usage(exclude=key) + len(data)
            if needed > self.quota_bytes:
                raise QuotaExceededError(
                    f"Storing {len(data)} bytes under '{key}' exceeds the quota "
                    f"({needed} > {self.quota_bytes} bytes)"
                )

        tmp_name = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", suffix=".tmp", dir=self.directory)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

        logger.debug("Stored %d bytes under %s", len(data), key)
