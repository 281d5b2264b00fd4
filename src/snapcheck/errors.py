"""
Error kinds raised by the snapshot engine.

Only a few of these ever escape to test code: ``SnapshotAssertionError`` fails
a test, ``IoFailure`` surfaces filesystem problems. The rest are collected by
the review engine and reported per snapshot.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional


class SnapshotError(Exception):
    """Base class for all snapcheck errors."""


class SerializationGap(SnapshotError):
    """A value could not be represented and was replaced by a debug leaf."""

    def __init__(self, type_name: str, reason: str):
        super().__init__(f"Cannot serialize {type_name}: {reason}")
        self.type_name = type_name
        self.reason = reason


class ReferenceMissing(SnapshotError):
    """No accepted reference exists for an identity."""


class AnchorDrift(SnapshotError):
    """The source file no longer matches what was recorded for an inline snapshot."""

    def __init__(self, path: Path, line: int, reason: str):
        super().__init__(f"{path}:{line}: {reason}")
        self.path = Path(path)
        self.line = line
        self.reason = reason


class IoFailure(SnapshotError):
    """A filesystem read or write failed."""

    def __init__(self, path: Path, reason: str, cause: Optional[BaseException] = None):
        super().__init__(f"I/O failure on {path}: {reason}")
        self.path = Path(path)
        self.reason = reason
        self.__cause__ = cause


class ConcurrentWriteLost(SnapshotError):
    """An atomic rename failed, most likely because another writer raced us."""

    def __init__(self, path: Path, cause: Optional[BaseException] = None):
        super().__init__(f"Concurrent write to {path} was lost")
        self.path = Path(path)
        self.__cause__ = cause


class PendingNotFound(SnapshotError):
    """A review key does not match any pending snapshot."""

    def __init__(self, key: str):
        super().__init__(f"No pending snapshot for {key!r}")
        self.key = key


class SnapshotAssertionError(AssertionError):
    """Raised inside a test when a snapshot does not match its reference."""

    def __init__(self, message: str, outcome=None):
        super().__init__(message)
        self.outcome = outcome
