"""Keyed JSON document storage used by the state store."""

from __future__ import annotations

import copy
import logging
import os
import threading
from typing import Any, Callable

import config
from trading.errors import ConfigurationError
from utils.state_file import read_json_locked, update_json_locked, write_json_atomic_locked

logger = logging.getLogger(__name__)


class BlobStore:
    """Whole-document get/set plus an atomic read-modify-write."""

    def get_json(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    def set_json(self, key: str, payload: Any) -> None:
        raise NotImplementedError

    def update_json(self, key: str, mutate: Callable[[Any], Any], default: Any = None) -> Any:
        raise NotImplementedError


class FileBlobStore(BlobStore):
    """One `<key>.json` file per document under `root`, guarded by `<key>.json.lock`."""

    def __init__(self, root: str | None = None, *, lock_timeout_seconds: float | None = None) -> None:
        self.root = os.path.abspath(root or config.STATE_DIR)
        self.lock_timeout_seconds = float(
            config.STATE_LOCK_TIMEOUT_SECONDS if lock_timeout_seconds is None else lock_timeout_seconds
        )
        try:
            os.makedirs(self.root, exist_ok=True)
        except OSError as exc:
            raise ConfigurationError(f"STATE_DIR is not writable: {self.root} ({exc})") from exc
        if not os.access(self.root, os.W_OK):
            raise ConfigurationError(f"STATE_DIR is not writable: {self.root}")

    def path_for(self, key: str) -> str:
        name = str(key or "").strip()
        if not name or os.sep in name or name.startswith("."):
            raise ValueError(f"invalid blob key: {key!r}")
        return os.path.join(self.root, f"{name}.json")

    def get_json(self, key: str, default: Any = None) -> Any:
        return read_json_locked(self.path_for(key), default, timeout_seconds=self.lock_timeout_seconds)

    def set_json(self, key: str, payload: Any) -> None:
        write_json_atomic_locked(self.path_for(key), payload, timeout_seconds=self.lock_timeout_seconds)

    def update_json(self, key: str, mutate: Callable[[Any], Any], default: Any = None) -> Any:
        return update_json_locked(
            self.path_for(key),
            mutate,
            default,
            timeout_seconds=self.lock_timeout_seconds,
        )


class MemoryBlobStore(BlobStore):
    """In-process store for tests and dry runs. Documents are deep-copied in and out."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._docs: dict[str, Any] = copy.deepcopy(dict(initial or {}))
        self._lock = threading.Lock()

    def get_json(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key not in self._docs:
                return default
            return copy.deepcopy(self._docs[key])

    def set_json(self, key: str, payload: Any) -> None:
        with self._lock:
            self._docs[key] = copy.deepcopy(payload)

    def update_json(self, key: str, mutate: Callable[[Any], Any], default: Any = None) -> Any:
        with self._lock:
            current = copy.deepcopy(self._docs.get(key, default))
            updated = mutate(current)
            self._docs[key] = copy.deepcopy(updated)
            return copy.deepcopy(updated)
