"""
Snapshot testing for Python.

This package serializes test values into canonical text, compares them with
accepted references stored next to the tests (or inline in the test source)
and manages the review of new and changed snapshots.
"""

import logging
import sys

__version__ = "0.1.0"

# Configure logging for the package
def configure_logging(level=logging.INFO):
    """Configure logging for the snapcheck package."""
    # Configure the package-level logger
    logger = logging.getLogger('snapcheck')

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter('%(levelname)s: %(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    for handler in logger.handlers:
        handler.setLevel(level)
    logger.setLevel(level)

    return logger

# Configure logging by default
configure_logging()

# Import main classes for public API
from .cli import SnapshotCLI, main
from .comparator import Comparator, ComparisonConfig, Outcome, OutcomeKind
from .config import ConfigManager, SnapshotConfig, UpdateMode
from .contents import SnapshotFile, SnapshotMetadata
from .errors import (
    AnchorDrift,
    ConcurrentWriteLost,
    IoFailure,
    PendingNotFound,
    ReferenceMissing,
    SerializationGap,
    SnapshotAssertionError,
    SnapshotError,
)
from .identity import TestIdentity
from .inline import FilePatcher, SourceAnchor
from .pending import PendingManager, PendingSnapshot
from .review import ReviewAction, ReviewEngine, ReviewReport, ReviewResult
from .runtime import SnapshotContext, assert_inline_snapshot, assert_snapshot, run_and_check
from .serializer import serialize, to_tree
from .storage import ReferenceStore

__all__ = [
    # Version
    "__version__",
    "configure_logging",
    # Serializer
    "serialize",
    "to_tree",
    # Identity and storage
    "TestIdentity",
    "ReferenceStore",
    "SnapshotFile",
    "SnapshotMetadata",
    "SourceAnchor",
    "FilePatcher",
    # Comparator
    "Comparator",
    "ComparisonConfig",
    "Outcome",
    "OutcomeKind",
    # Pending and review
    "PendingManager",
    "PendingSnapshot",
    "ReviewAction",
    "ReviewEngine",
    "ReviewReport",
    "ReviewResult",
    # Runtime
    "SnapshotContext",
    "assert_snapshot",
    "assert_inline_snapshot",
    "run_and_check",
    # Config
    "ConfigManager",
    "SnapshotConfig",
    "UpdateMode",
    # Errors
    "SnapshotError",
    "SerializationGap",
    "ReferenceMissing",
    "AnchorDrift",
    "IoFailure",
    "ConcurrentWriteLost",
    "PendingNotFound",
    "SnapshotAssertionError",
    # CLI
    "SnapshotCLI",
    "main",
]
