"""Bounded version history for editable prompt fields."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from .store import KeyValueStore

LOG = logging.getLogger(__name__)

MAX_HISTORY = 10


@dataclass(frozen=True)
class PromptVersion:
    """One history entry as shown to the operator."""

    label: str
    text: str
    is_current: bool


def history_key(key: str) -> str:
    return f"{key}_history"


def _decode_history(key: str, raw: str | None) -> list[str]:
    """Decode a persisted history, treating anything malformed as empty."""
    if raw is None:
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        LOG.warning("Ignoring unreadable history for %s", key)
        return []
    if not isinstance(data, list) or not all(isinstance(s, str) for s in data):
        LOG.warning("Ignoring malformed history for %s", key)
        return []
    return data[:MAX_HISTORY]


class PromptField:
    """A prompt block with a current value and a newest-first history.

    State is read from the store lazily on first access. Every change to the
    value or the history is written back immediately, under ``<key>`` and
    ``<key>_history``.
    """

    def __init__(self, key: str, default: str, store: KeyValueStore) -> None:
        self.key = key
        self.default = default
        self._store = store
        self._value = default
        self._history: list[str] = []
        self._loaded = False

    def load(self) -> None:
        """(Re)read value and history from the store."""
        stored = self._store.get(self.key)
        self._value = self.default if stored is None else stored
        self._history = _decode_history(self.key, self._store.get(history_key(self.key)))
        self._loaded = True

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    @property
    def value(self) -> str:
        self._ensure_loaded()
        return self._value

    @property
    def history(self) -> tuple[str, ...]:
        self._ensure_loaded()
        return tuple(self._history)

    def set_value(self, value: str) -> None:
        self._ensure_loaded()
        self._value = value
        self._store.set(self.key, value)

    def commit(self) -> bool:
        """Record the current value as the newest version.

        Empty / whitespace-only values and repeats of the newest version are
        ignored.

        Returns:
            True if the history changed.
        """
        self._ensure_loaded()
        if not self._value.strip():
            return False
        if self._history and self._history[0] == self._value:
            return False
        self._history = [self._value, *self._history][:MAX_HISTORY]
        self._store.set(history_key(self.key), json.dumps(self._history))
        LOG.debug("Committed %s version v%s", self.key, len(self._history))
        return True

    def restore(self, value: str) -> None:
        """Make a past version current without touching the history."""
        self.set_value(value)

    def versions(self) -> list[PromptVersion]:
        """History entries newest first, labelled ``v{n}`` down to ``v1``."""
        self._ensure_loaded()
        n = len(self._history)
        return [
            PromptVersion(label=f"v{n - idx}", text=text, is_current=text == self._value)
            for idx, text in enumerate(self._history)
        ]
