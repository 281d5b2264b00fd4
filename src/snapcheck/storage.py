"""
Snapshot reference storage.

Standalone references live in ``snapshots/`` next to the test file that owns
them, one ``.snap`` file per identity. Inline references live in the test
source itself and are read and written through ``snapcheck.inline``.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Sequence

from .contents import SnapshotFile, SnapshotMetadata
from .errors import ConcurrentWriteLost, IoFailure, ReferenceMissing
from .fileio import atomic_write_text, file_lock, read_text, remove_file
from .identity import TestIdentity
from .inline import DEFAULT_INLINE_NAMES, FilePatcher, SourceAnchor

logger = logging.getLogger(__name__)

SNAPSHOT_SUFFIX = ".snap"
DEFAULT_SNAPSHOT_DIR = "snapshots"


class ReferenceStore:
    """Reads and writes accepted snapshots."""

    def __init__(
        self,
        snapshot_dir_name: str = DEFAULT_SNAPSHOT_DIR,
        snapshot_root: Optional[Path] = None,
        inline_names: Sequence[str] = DEFAULT_INLINE_NAMES,
    ):
        self.snapshot_dir_name = snapshot_dir_name
        self.snapshot_root = Path(snapshot_root) if snapshot_root else None
        self.inline_names = tuple(inline_names)

    def path_for(self, identity: TestIdentity) -> Path:
        """Deterministic reference path for an identity."""
        filename = identity.file_stem + SNAPSHOT_SUFFIX
        if self.snapshot_root is not None:
            module_dir = Path(*identity.module.split(".")[:-1]) if "." in identity.module else Path()
            return self.snapshot_root / module_dir / filename
        if identity.source_file is not None:
            return Path(identity.source_file).parent / self.snapshot_dir_name / filename
        return Path(self.snapshot_dir_name) / filename

    def load_file(self, identity: TestIdentity) -> Optional[SnapshotFile]:
        return self.load_path(self.path_for(identity))

    def load_path(self, path: Path) -> Optional[SnapshotFile]:
        text = read_text(path)
        if text is None:
            return None
        return SnapshotFile.parse(text)

    def load(self, identity: TestIdentity) -> Optional[str]:
        """Accepted snapshot text for ``identity``, or ``None`` on first run."""
        snapshot = self.load_file(identity)
        return snapshot.contents if snapshot is not None else None

    def require(self, identity: TestIdentity) -> str:
        """Accepted snapshot text for ``identity``; raises ``ReferenceMissing`` if there is none."""
        value = self.load(identity)
        if value is None:
            raise ReferenceMissing(f"No reference for {identity.key} at {self.path_for(identity)}")
        return value

    def store(
        self,
        identity: TestIdentity,
        value: str,
        metadata: Optional[SnapshotMetadata] = None,
    ) -> Path:
        """Write ``value`` as the accepted reference for ``identity``."""
        path = self.path_for(identity)
        return self.store_path(path, SnapshotFile((metadata or SnapshotMetadata()).reference(), value))

    def store_path(self, path: Path, snapshot: SnapshotFile) -> Path:
        with file_lock(path):
            atomic_write_text(path, snapshot.render())
        logger.debug(f"Stored reference {path}")
        return path

    def delete(self, identity: TestIdentity) -> bool:
        """Delete a reference file."""
        path = self.path_for(identity)
        with file_lock(path):
            return remove_file(path)

    def list_references(self, root: Path) -> list[Path]:
        """All reference files under ``root``."""
        found = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            found.extend(Path(dirpath) / f for f in sorted(filenames) if f.endswith(SNAPSHOT_SUFFIX))
        return found

    def locate_inline(self, anchor: SourceAnchor) -> Optional[str]:
        """Snapshot text currently stored in the literal at ``anchor``."""
        return FilePatcher(anchor.path, self.inline_names).locate(anchor)

    def write_inline(self, anchor: SourceAnchor, value: str) -> SourceAnchor:
        """Replace the literal at ``anchor`` with ``value``; returns the new anchor."""
        patcher = FilePatcher(anchor.path, self.inline_names)
        patcher.set_new_content(anchor, value)
        try:
            return patcher.save()[0]
        except ConcurrentWriteLost as e:
            logger.debug(f"{anchor.path} changed while patching, retrying")
            patcher = FilePatcher(anchor.path, self.inline_names)
            patcher.set_new_content(anchor, value)
            try:
                return patcher.save()[0]
            except ConcurrentWriteLost:
                raise IoFailure(anchor.path, "file kept changing during the update", e) from e
