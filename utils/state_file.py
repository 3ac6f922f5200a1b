"""Inter-process locking and atomic JSON documents for the file-backed blob store."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator

try:  # pragma: no cover - platform specific
    import fcntl
except ImportError:  # pragma: no cover - platform specific
    fcntl = None  # type: ignore[assignment]

try:  # pragma: no cover - platform specific
    import msvcrt
except ImportError:  # pragma: no cover - platform specific
    msvcrt = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

E_STATE_LOCKED = "E_STATE_LOCKED"
E_JSON_CORRUPT = "E_JSON_CORRUPT"


class StateFileLockError(RuntimeError):
    """Raised when the document lock cannot be acquired in time."""

    code = E_STATE_LOCKED


class StateFileCorruptError(ValueError):
    """Raised when a stored document is not valid UTF-8 JSON."""

    code = E_JSON_CORRUPT


def _acquire(handle: Any) -> None:
    if fcntl is not None:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            raise BlockingIOError(str(exc)) from exc
        return
    if msvcrt is not None:  # pragma: no cover - windows-only runtime path
        handle.seek(0)
        try:
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        except OSError as exc:
            raise BlockingIOError(str(exc)) from exc


def _release(handle: Any) -> None:
    if fcntl is not None:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        return
    if msvcrt is not None:  # pragma: no cover - windows-only runtime path
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)


@contextmanager
def state_file_lock(
    target_path: str,
    *,
    timeout_seconds: float = 2.0,
    poll_seconds: float = 0.05,
) -> Iterator[None]:
    """Hold an exclusive lock on `<target>.lock` for the duration of the block."""

    lock_path = f"{target_path}.lock"
    os.makedirs(os.path.dirname(lock_path) or ".", exist_ok=True)
    deadline = time.monotonic() + max(0.05, float(timeout_seconds))
    poll = max(0.01, float(poll_seconds))

    with open(lock_path, "a+b") as handle:
        handle.seek(0, os.SEEK_END)
        if handle.tell() == 0:
            handle.write(b"0")
            handle.flush()
        while True:
            try:
                _acquire(handle)
                break
            except BlockingIOError as exc:
                if time.monotonic() >= deadline:
                    raise StateFileLockError(f"{E_STATE_LOCKED}: lock timeout path={target_path}") from exc
                time.sleep(poll)
        try:
            yield
        finally:
            try:
                _release(handle)
            except OSError:
                pass


def atomic_write_json(path: str, payload: Any, *, indent: int = 2) -> None:
    """Write JSON via temp file + os.replace in the same directory."""

    state_dir = os.path.dirname(path) or "."
    os.makedirs(state_dir, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=f"{os.path.basename(path)}.", suffix=".tmp", dir=state_dir, text=True)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=indent)
            f.flush()
            try:
                os.fsync(f.fileno())
            except OSError:
                pass
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.remove(tmp_path)
        except OSError:
            pass
        raise


def _read_json(path: str, default: Any) -> Any:
    if not os.path.exists(path):
        return default
    try:
        with open(path, "r", encoding="utf-8-sig") as f:
            raw = f.read()
    except UnicodeDecodeError as exc:
        raise StateFileCorruptError(f"{E_JSON_CORRUPT}: path={path} error={exc}") from exc
    if not raw.strip():
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise StateFileCorruptError(f"{E_JSON_CORRUPT}: path={path} error={exc}") from exc


def read_json_locked(path: str, default: Any = None, *, timeout_seconds: float = 2.0) -> Any:
    with state_file_lock(path, timeout_seconds=timeout_seconds):
        return _read_json(path, default)


def write_json_atomic_locked(path: str, payload: Any, *, timeout_seconds: float = 2.0) -> None:
    with state_file_lock(path, timeout_seconds=timeout_seconds):
        atomic_write_json(path, payload)


def update_json_locked(
    path: str,
    mutate: Callable[[Any], Any],
    default: Any = None,
    *,
    timeout_seconds: float = 2.0,
) -> Any:
    """Read-modify-write a document under one lock. `mutate` returns the new payload."""

    with state_file_lock(path, timeout_seconds=timeout_seconds):
        try:
            current = _read_json(path, default)
        except StateFileCorruptError as exc:
            logger.warning("STATE_CORRUPT path=%s action=reset_default error=%s", path, exc)
            current = default
        updated = mutate(current)
        atomic_write_json(path, updated)
        return updated
