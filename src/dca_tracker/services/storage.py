"""Data persistence: device-local key-value stores for the ledger and preferences."""

from __future__ import annotations

import json
import os
import threading
from typing import Any, Dict, Optional

import structlog

from dca_tracker.config.constants import LEDGER_FILE, PREFERENCES_FILE
from dca_tracker.errors import StorageError

logger = structlog.get_logger(__name__)


class KeyValueStore:
    """Minimal key -> JSON-compatible value store."""

    def get(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def __contains__(self, key: str) -> bool:
        sentinel = object()
        return self.get(key, sentinel) is not sentinel


class MemoryStore(KeyValueStore):
    """In-process store; used by tests and by --no-persist runs."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})
        self.writes = 0

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self.writes += 1

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore(KeyValueStore):
    """
    Store backed by one JSON object in a local file.

    The whole file is rewritten on every set() via a temp file and os.replace,
    so a crash mid-write leaves the previous document intact. The file is
    created with owner-only permissions and is never synced anywhere.
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError("Could not read store", details={"path": self.path}, cause=e) from e
        if not isinstance(data, dict):
            raise StorageError("Store file is not a JSON object", details={"path": self.path})
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        directory = os.path.dirname(self.path)
        tmp_path = f"{self.path}.tmp"
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=4)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError("Could not write store", details={"path": self.path}, cause=e) from e

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)
        logger.debug("store_key_written", path=self.path, key=key)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)


def default_ledger_store() -> JsonFileStore:
    """Return the store holding the ledger document."""
    return JsonFileStore(LEDGER_FILE)


def default_preferences_store() -> JsonFileStore:
    """Return the store holding scalar preferences."""
    return JsonFileStore(PREFERENCES_FILE)
