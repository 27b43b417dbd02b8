"""Key/value persistence substrate.

String keys, JSON values, in the shape of browser local storage:
- MemoryStore: process-local, values kept JSON-encoded so callers never
  share mutable state with the store
- JsonFileStore: a single JSON object on disk, rewritten on every write

The trust list and verification cache each own one key.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from community_verifier.core.exceptions import StorageError

log = logging.getLogger(__name__)


class KeyValueStore:
    """Interface for string-keyed JSON-valued stores."""

    def get(self, key: str) -> Optional[Any]:
        """Return the decoded value for key, or None if absent."""
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        """Replace the value stored under key."""
        raise NotImplementedError

    def delete(self, key: str) -> None:
        """Remove key. No-op if absent."""
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    """In-memory store holding JSON-encoded strings."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)


class JsonFileStore(KeyValueStore):
    """Store backed by one JSON object in a file.

    Writes go to a sibling temp file which then replaces the original, so a
    crash mid-write leaves the previous contents intact.
    """

    def __init__(self, path: str):
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StorageError(f"Invalid JSON in {self._path}: {e}")
        if not isinstance(data, dict):
            raise StorageError(f"Expected JSON object in {self._path}, got {type(data).__name__}")
        return data

    def _write_all(self, data: Dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self._path)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._read_all().get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            self._write_all(data)
            log.debug(f"Persisted key {key} to {self._path}")

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read_all()
            if key in data:
                del data[key]
                self._write_all(data)


# Module-level singleton
_store: Optional[KeyValueStore] = None


def get_store() -> KeyValueStore:
    """Get the process store, file-backed when CV_STORAGE_PATH is set."""
    global _store
    if _store is None:
        from community_verifier.core.config import STORAGE_PATH

        if STORAGE_PATH:
            _store = JsonFileStore(STORAGE_PATH)
            log.info(f"Using JSON file store at {STORAGE_PATH}")
        else:
            _store = MemoryStore()
            log.info("Using in-memory store")
    return _store


def reset_store() -> None:
    """Reset the module-level store singleton (for testing)."""
    global _store
    _store = None
