"""
Pending snapshot management.

A pending snapshot is a candidate produced by a test run that has not been
reviewed yet. It never touches the accepted reference:

* standalone candidates are written next to their reference as
  ``<name>.snap.new`` (same format as ``.snap`` plus provenance fields);
* inline candidates are written next to the test source as
  ``.<source file>.L<line>.pending-snap`` JSON documents.

Both suffixes are transient and belong in ``.gitignore``.
"""
from __future__ import annotations

import json
import logging
import os
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Union

from .contents import SnapshotFile, SnapshotMetadata
from .fileio import atomic_write_text, file_lock, read_text, remove_file
from .identity import TestIdentity, parse_key
from .inline import SourceAnchor
from .storage import SNAPSHOT_SUFFIX, ReferenceStore

logger = logging.getLogger(__name__)

PENDING_SUFFIX = ".new"
INLINE_PENDING_SUFFIX = ".pending-snap"
DEFAULT_EXCLUDE_DIRS = frozenset(
    {"__pycache__", "node_modules", "venv", "env", "build", "dist", "site-packages"}
)

KIND_FILE = "file"
KIND_INLINE = "inline"

# One id per interpreter; lets the runner tell candidates of this run apart
RUN_ID = uuid.uuid4().hex


@dataclass
class PendingSnapshot:
    """A candidate snapshot awaiting review."""

    kind: str
    key: str
    new: str
    path: Path  # the pending artifact itself
    target: Path  # reference file, or source file for inline snapshots
    old: Optional[str] = None
    identity: Optional[TestIdentity] = None
    anchor: Optional[SourceAnchor] = None
    metadata: SnapshotMetadata = field(default_factory=SnapshotMetadata)

    @property
    def is_inline(self) -> bool:
        return self.kind == KIND_INLINE

    @property
    def run_id(self) -> Optional[str]:
        return self.metadata.run_id

    @property
    def location(self) -> str:
        if self.anchor is not None:
            return f"{self.anchor.path}:{self.anchor.line}"
        line = self.metadata.assertion_line
        source = self.metadata.source or str(self.target)
        return f"{source}:{line}" if line else source


PendingKey = Union[str, TestIdentity, SourceAnchor]


class PendingManager:
    """Owns pending artifacts until a review decision accepts or deletes them."""

    def __init__(
        self,
        store: ReferenceStore,
        workspace_root: Optional[Path] = None,
        exclude_dirs: Iterable[str] = DEFAULT_EXCLUDE_DIRS,
    ):
        self.store = store
        self.workspace_root = Path(workspace_root) if workspace_root else Path.cwd()
        self.exclude_dirs = frozenset(exclude_dirs)

    def pending_path_for(self, identity: TestIdentity) -> Path:
        reference = self.store.path_for(identity)
        return reference.with_name(reference.name + PENDING_SUFFIX)

    def inline_pending_path(self, anchor: SourceAnchor) -> Path:
        source = Path(anchor.path)
        return source.with_name(f".{source.name}.L{anchor.line}{INLINE_PENDING_SUFFIX}")

    def _metadata(self, metadata: Optional[SnapshotMetadata], key: str) -> SnapshotMetadata:
        return replace(
            metadata or SnapshotMetadata(),
            identity=key,
            run_id=RUN_ID,
            created=datetime.now().isoformat(timespec="seconds"),
        )

    def record_pending(
        self,
        identity: TestIdentity,
        candidate: str,
        old: Optional[str] = None,
        metadata: Optional[SnapshotMetadata] = None,
    ) -> PendingSnapshot:
        """Persist a standalone candidate. Last writer wins."""
        path = self.pending_path_for(identity)
        metadata = self._metadata(metadata, identity.key)
        if metadata.function is None:
            metadata.function = identity.function
        with file_lock(path):
            atomic_write_text(path, SnapshotFile(metadata, candidate).render(pending=True))
        logger.debug(f"Recorded pending snapshot {path}")
        return PendingSnapshot(
            kind=KIND_FILE,
            key=identity.key,
            new=candidate,
            old=old,
            path=path,
            target=self.store.path_for(identity),
            identity=identity,
            metadata=metadata,
        )

    def record_inline_pending(
        self,
        anchor: SourceAnchor,
        candidate: str,
        old: Optional[str] = None,
        metadata: Optional[SnapshotMetadata] = None,
    ) -> PendingSnapshot:
        """Persist an inline candidate keyed by source file and line."""
        metadata = self._metadata(metadata, anchor.key)
        metadata.assertion_line = anchor.line
        path = self._write_inline(anchor, candidate, old, metadata)
        logger.debug(f"Recorded pending inline snapshot {path}")
        return PendingSnapshot(
            kind=KIND_INLINE,
            key=anchor.key,
            new=candidate,
            old=old,
            path=path,
            target=Path(anchor.path),
            anchor=anchor,
            metadata=metadata,
        )

    def _write_inline(
        self, anchor: SourceAnchor, candidate: str, old: Optional[str], metadata: SnapshotMetadata
    ) -> Path:
        path = self.inline_pending_path(anchor)
        document = {
            "source": Path(anchor.path).name,
            "line": anchor.line,
            "expected": anchor.expected,
            "old": old,
            "new": candidate,
            "metadata": {k: v for k, v in metadata.to_dict().items() if v is not None},
        }
        with file_lock(path):
            atomic_write_text(path, json.dumps(document, indent=2, ensure_ascii=False) + "\n")
        return path

    def load(self, path: Path) -> Optional[PendingSnapshot]:
        """Load a pending artifact; ``None`` if it vanished or is corrupt."""
        path = Path(path)
        try:
            text = read_text(path)
        except UnicodeDecodeError as e:
            logger.warning(f"Skipping unreadable pending snapshot {path}: {e}")
            return None
        if text is None:
            return None
        try:
            if path.name.endswith(INLINE_PENDING_SUFFIX):
                return self._load_inline(path, text)
            return self._load_file(path, text)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Skipping corrupt pending snapshot {path}: {e}")
            return None

    def _load_file(self, path: Path, text: str) -> PendingSnapshot:
        snapshot = SnapshotFile.parse(text)
        target = path.with_name(path.name[: -len(PENDING_SUFFIX)])
        metadata = snapshot.metadata
        if metadata.identity:
            module, name = parse_key(metadata.identity)
        else:
            module, _, name = target.name[: -len(SNAPSHOT_SUFFIX)].partition("__")
        identity = TestIdentity(
            module=module,
            function=metadata.function or name,
            snapshot_name=name,
            source_file=self.workspace_root / metadata.source if metadata.source else None,
        )
        reference = self.store.load_path(target)
        return PendingSnapshot(
            kind=KIND_FILE,
            key=identity.key,
            new=snapshot.contents,
            old=reference.contents if reference is not None else None,
            path=path,
            target=target,
            identity=identity,
            metadata=metadata,
        )

    def _load_inline(self, path: Path, text: str) -> PendingSnapshot:
        document = json.loads(text)
        source = path.with_name(document["source"])
        anchor = SourceAnchor(path=source, line=int(document["line"]), expected=document.get("expected"))
        return PendingSnapshot(
            kind=KIND_INLINE,
            key=anchor.key,
            new=document["new"],
            old=document.get("old"),
            path=path,
            target=source,
            anchor=anchor,
            metadata=SnapshotMetadata.from_dict(document.get("metadata") or {}),
        )

    def _walk(self) -> Iterable[Path]:
        for dirpath, dirnames, filenames in os.walk(self.workspace_root):
            dirnames[:] = sorted(
                d for d in dirnames if not d.startswith(".") and d not in self.exclude_dirs
            )
            for filename in sorted(filenames):
                if filename.endswith(SNAPSHOT_SUFFIX + PENDING_SUFFIX) or filename.endswith(
                    INLINE_PENDING_SUFFIX
                ):
                    yield Path(dirpath) / filename

    def list_pending(self) -> list[PendingSnapshot]:
        """All pending snapshots under the workspace root, in path order."""
        pending = []
        for path in self._walk():
            loaded = self.load(path)
            if loaded is not None:
                pending.append(loaded)
        return pending

    def get_pending(self, key: PendingKey) -> Optional[PendingSnapshot]:
        """Look up a pending snapshot by identity, anchor, key string or artifact path."""
        if isinstance(key, TestIdentity):
            return self.load(self.pending_path_for(key))
        if isinstance(key, SourceAnchor):
            return self.load(self.inline_pending_path(key))
        for pending in self.list_pending():
            if key in (pending.key, str(pending.path)) or _same_path(key, pending.path):
                return pending
        return None

    def move_inline(self, pending: PendingSnapshot, line: int, discard: bool = True) -> PendingSnapshot:
        """Re-key an inline candidate after lines above it were rewritten."""
        anchor = replace(pending.anchor, line=line)
        metadata = replace(pending.metadata, identity=anchor.key, assertion_line=line)
        if discard:
            self.discard(pending)
        path = self._write_inline(anchor, pending.new, pending.old, metadata)
        return replace(pending, key=anchor.key, path=path, anchor=anchor, metadata=metadata)

    def discard(self, pending: PendingSnapshot) -> bool:
        """Delete a pending artifact."""
        with file_lock(pending.path):
            return remove_file(pending.path)


def _same_path(key: str, path: Path) -> bool:
    try:
        return Path(key).resolve() == path.resolve()
    except (OSError, RuntimeError):
        return False
