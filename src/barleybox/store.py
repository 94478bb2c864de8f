"""Key/value persistence for the dashboard session.

Remembers the last device identity and broker, and the last config JSON sent to
each device, so a restarted dashboard can reconnect and pre-fill the config form.
"""

from __future__ import annotations

import json
import logging
import threading
from json import JSONDecodeError
from typing import TYPE_CHECKING, Final, Protocol

if TYPE_CHECKING:
    from pathlib import Path

KEY_DEVICE_ID: Final = "deviceId"
KEY_BROKER: Final = "mqttBroker"


def config_key(device_id: str) -> str:
    return f"config_{device_id}"


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStore:
    """Process-local store (tests, throwaway sessions)."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileStore:
    """Store persisted to a single JSON file, rewritten on every `set()`."""

    path: Path

    def __init__(self, path: Path) -> None:
        self.path = path
        self._log = logging.getLogger("JsonFileStore")
        self._lock = threading.Lock()
        self._data: dict[str, str] = self._load()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value
            self._save()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}

        try:
            raw = json.loads(self.path.read_text())
        except (OSError, JSONDecodeError) as e:
            self._log.warning("[IGNORING] Unreadable store %s: %s", self.path, e)
            return {}

        if not isinstance(raw, dict):
            self._log.warning("[IGNORING] Store %s is not a JSON object", self.path)
            return {}

        return {k: v for k, v in raw.items() if isinstance(v, str)}

    def _save(self) -> None:
        """Rewrite the file; on failure the value is kept in memory only."""

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(self._data, indent=2))
        except OSError as e:
            self._log.warning("[IGNORING] Could not write store %s: %s", self.path, e)
