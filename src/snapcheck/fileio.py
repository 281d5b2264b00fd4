"""
Atomic file writes and per-file write locks.

Every file this package writes goes through ``atomic_write_bytes``: data is
written to a temporary file in the target directory, fsynced and renamed over
the target, so an interrupted run never leaves a half-written file behind.
"""
from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional

from .errors import ConcurrentWriteLost, IoFailure

logger = logging.getLogger(__name__)

_locks: dict[str, threading.Lock] = {}
_locks_guard = threading.Lock()


def file_lock(path: Path) -> threading.Lock:
    """In-process lock serialising writers of one file."""
    key = os.path.abspath(path)
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = _locks[key] = threading.Lock()
        return lock


def _write_once(path: Path, data: bytes) -> None:
    fd, temp_path = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        try:
            os.replace(temp_path, path)
        except OSError as e:
            raise ConcurrentWriteLost(path, e) from e
    except BaseException:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Atomically replace ``path`` with ``data``.

    A failed rename is retried once before surfacing as ``IoFailure``.
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise IoFailure(path.parent, str(e), e) from e

    for attempt in (1, 2):
        try:
            _write_once(path, data)
            return
        except ConcurrentWriteLost as e:
            if attempt == 2:
                raise IoFailure(path, "rename failed twice", e) from e
            logger.debug(f"Retrying write of {path}: {e.__cause__}")
        except OSError as e:
            raise IoFailure(path, str(e), e) from e


def atomic_write_text(path: Path, text: str) -> None:
    atomic_write_bytes(path, text.encode("utf-8"))


def read_text(path: Path) -> Optional[str]:
    """Read a UTF-8 file; ``None`` if it does not exist."""
    try:
        with open(path, encoding="utf-8", newline="") as f:
            return f.read()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise IoFailure(path, str(e), e) from e


def remove_file(path: Path) -> bool:
    """Delete ``path``; ``False`` if it was already gone."""
    try:
        os.unlink(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        raise IoFailure(path, str(e), e) from e
