#!/usr/bin/env python3
"""Key-value stores for persisted settings and history.

Values are opaque strings; callers serialize their own structured data.
MemoryStore keeps values for the lifetime of the process. JsonFileStore
keeps them in a single JSON object on disk and rewrites the file on every
change.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Exception raised when the backing file cannot be read or written."""

    pass


class MemoryStore:
    """In-process key-value store."""

    def __init__(self, values: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(values or {})

    def get(self, key: str) -> str | None:
        """Return the value stored under key, or None."""
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        """Store value under key."""
        self._values[key] = value


class JsonFileStore:
    """Key-value store persisted as one JSON object in a file.

    The file is loaded once on construction. Writes go to a temporary file
    that replaces the original, so a crash mid-write leaves the previous
    contents intact.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        """Open the store at path, loading it if it exists.

        Args:
            path: Location of the JSON file. Parent directories are created
                on first write.

        Raises:
            StoreError: If the file exists but is unreadable or not a JSON
                object of strings.
        """
        self.path = Path(path)
        self._values: dict[str, str] = self._load()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError, RecursionError) as e:
            raise StoreError(f"Cannot read state file {self.path}: {e}") from e
        if not isinstance(data, dict) or not all(isinstance(v, str) for v in data.values()):
            raise StoreError(f"State file {self.path} is not a key-value object")
        return data

    def get(self, key: str) -> str | None:
        """Return the value stored under key, or None."""
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        """Store value under key and rewrite the file."""
        self._values[key] = value
        self._flush()

    def _flush(self) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(self._values), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StoreError(f"Cannot write state file {self.path}: {e}") from e
        logger.debug("Wrote state file %s", self.path)
