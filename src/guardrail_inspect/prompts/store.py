"""Persistent key-value stores backing prompt fields."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

LOG = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Protocol for a string key-value store."""

    def get(self, key: str) -> str | None:
        """Return the stored string, or None if absent."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store a string under ``key``."""
        ...


class MemoryStore:
    """Dict-backed store for tests and throwaway sessions."""

    def __init__(self, data: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(data or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value


class JsonFileStore:
    """Store persisted as a single JSON object on disk.

    The file is loaded once on construction and rewritten atomically on every
    ``set``. A missing, unreadable or corrupt file starts an empty store.
    Write failures are logged and the in-memory value is kept.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path).expanduser()
        self._data: dict[str, str] = self._load()

    def _load(self) -> dict[str, str]:
        if not self.path.is_file():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            LOG.warning("Failed to load prompt store %s: %s", self.path, e)
            return {}
        if not isinstance(raw, dict):
            LOG.warning("Prompt store %s is not a JSON object; ignoring it", self.path)
            return {}
        return {str(k): v for k, v in raw.items() if isinstance(v, str)}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        try:
            self._flush()
        except OSError as e:
            LOG.warning("Failed to save %s to %s: %s", key, self.path, e)

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, ensure_ascii=False)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
