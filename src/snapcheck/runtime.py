"""
Snapshot assertions as called from tests.

A ``SnapshotContext`` belongs to one test invocation. It turns values into
snapshot text, derives identities, compares against the accepted reference
and, depending on the update mode, fails the test, records a pending
candidate or writes the reference directly.

Source files are never modified here; inline candidates always go through
the pending manager and are written back by the review engine.
"""
from __future__ import annotations

import contextlib
import logging
import sys
from collections import OrderedDict
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Iterator, Optional

from .comparator import Comparator, ComparisonConfig, Outcome
from .config import ConfigManager, SnapshotConfig, UpdateMode
from .contents import SnapshotMetadata
from .errors import SnapshotAssertionError
from .fileio import file_lock, read_text, remove_file
from .identity import OrdinalCounter, TestIdentity, base_name_for, module_name_for
from .inline import SourceAnchor, normalize_inline
from .pending import RUN_ID, PendingManager
from .report import render_outcome
from .serializer import serialize
from .storage import ReferenceStore

logger = logging.getLogger(__name__)

_current: ContextVar[Optional["SnapshotContext"]] = ContextVar("snapcheck_context", default=None)


def build_store(config: SnapshotConfig) -> ReferenceStore:
    return ReferenceStore(
        snapshot_dir_name=config.snapshot_dir_name,
        snapshot_root=config.get_snapshot_root(),
        inline_names=config.inline_names,
    )


def build_pending(config: SnapshotConfig, store: ReferenceStore) -> PendingManager:
    return PendingManager(store, config.get_workspace_root(), config.exclude_dirs)


class SnapshotContext:
    """Snapshot state of a single test invocation."""

    def __init__(
        self,
        module: str,
        function: str,
        source_file: Optional[Path] = None,
        config: Optional[SnapshotConfig] = None,
        store: Optional[ReferenceStore] = None,
        pending: Optional[PendingManager] = None,
        comparator: Optional[Comparator] = None,
    ):
        self.module = module
        self.function = function
        self.source_file = Path(source_file) if source_file else None
        self.config = config or ConfigManager().get_config()
        self.store = store or build_store(self.config)
        self.pending = pending or build_pending(self.config, self.store)
        self.comparator = comparator or Comparator(
            ComparisonConfig(
                normalize_line_endings=self.config.normalize_line_endings,
                trim_trailing_whitespace=self.config.trim_trailing_whitespace,
            )
        )
        self.counter = OrdinalCounter()
        self.outcomes: list[Outcome] = []

    @property
    def mode(self) -> UpdateMode:
        return self.config.mode

    @property
    def records_pending(self) -> bool:
        # CI only turns off recording for plain comparisons
        return self.mode is not UpdateMode.COMPARE or self.config.record_pending

    def next_identity(self, name: Optional[str] = None) -> TestIdentity:
        """Identity for the next assertion; repeated names get ordinal suffixes."""
        base = name or base_name_for(self.function)
        return TestIdentity(
            module=self.module,
            function=self.function,
            snapshot_name=self.counter.next(base),
            source_file=self.source_file,
        )

    def to_text(self, value: Any) -> str:
        """Strings are snapshotted as-is, everything else is serialized."""
        if isinstance(value, str):
            return value
        return serialize(value, sort_maps=self.config.sort_maps)

    def relative_source(self, path: Optional[Path] = None) -> Optional[str]:
        path = path or self.source_file
        if path is None:
            return None
        root = self.config.get_workspace_root()
        try:
            return Path(path).resolve().relative_to(root.resolve()).as_posix()
        except ValueError:
            return Path(path).as_posix()

    def assert_snapshot(self, value: Any, name: Optional[str] = None, expression: Optional[str] = None) -> Outcome:
        """Compare ``value`` with the standalone reference of the next identity."""
        return run_and_check(self, self.next_identity(name), value, expression)

    def assert_inline_snapshot(self, value: Any, expected: Optional[str] = None) -> Outcome:
        """Compare ``value`` with the string literal passed as ``expected``."""
        return self._check_inline(value, expected, sys._getframe(1))

    def _check_inline(self, value: Any, expected: Optional[str], frame) -> Outcome:
        anchor = SourceAnchor(path=Path(frame.f_code.co_filename), line=frame.f_lineno, expected=expected)
        new = self.to_text(value)
        reference = normalize_inline(expected) if expected is not None else None
        outcome = self.comparator.compare(new, reference)
        self.outcomes.append(outcome)
        label = f"{self.function} (inline)"

        if outcome.matched:
            _clear_stale(self.pending.inline_pending_path(anchor))
            return outcome

        pending_path = None
        if self.records_pending:
            metadata = SnapshotMetadata(
                source=self.relative_source(anchor.path),
                function=self.function,
            )
            pending_path = self.pending.record_inline_pending(anchor, new, reference, metadata).path
        if self.mode is UpdateMode.COMPARE:
            raise SnapshotAssertionError(
                render_outcome(
                    outcome,
                    label,
                    location=f"{anchor.path}:{anchor.line}",
                    pending_path=str(pending_path) if pending_path else None,
                    context=self.config.diff_context,
                ),
                outcome,
            )
        logger.debug(f"Recorded inline candidate for {anchor.key}")
        return outcome


def run_and_check(
    context: SnapshotContext,
    identity: TestIdentity,
    value: Any,
    expression: Optional[str] = None,
) -> Outcome:
    """Serialize ``value``, compare it with the reference and apply the update mode."""
    new = context.to_text(value)
    reference = context.store.load(identity)
    outcome = context.comparator.compare(new, reference)
    context.outcomes.append(outcome)

    if outcome.matched:
        _clear_stale(context.pending.pending_path_for(identity))
        return outcome

    metadata = SnapshotMetadata(source=context.relative_source(), expression=expression)
    if context.mode is UpdateMode.FORCE:
        path = context.store.store(identity, new, metadata)
        stale = context.pending.pending_path_for(identity)
        with file_lock(stale):
            remove_file(stale)
        logger.info(f"Updated snapshot {identity.key} -> {path}")
        return outcome

    pending_path = None
    if context.records_pending:
        pending_path = context.pending.record_pending(identity, new, reference, metadata).path
    if context.mode is UpdateMode.COMPARE:
        raise SnapshotAssertionError(
            render_outcome(
                outcome,
                identity.key,
                location=metadata.source,
                expression=expression,
                pending_path=str(pending_path) if pending_path else None,
                context=context.config.diff_context,
            ),
            outcome,
        )
    logger.debug(f"Recorded candidate for {identity.key}")
    return outcome


def _clear_stale(path: Path) -> None:
    """Drop a candidate left over from an earlier run once the assertion passes."""
    if not path.exists():
        return
    with file_lock(path):
        text = read_text(path)
        # Candidates from this run belong to an earlier iteration of the same call
        if text is not None and RUN_ID not in text:
            remove_file(path)


@contextlib.contextmanager
def bind_context(context: SnapshotContext) -> Iterator[SnapshotContext]:
    """Make ``context`` the target of the module-level assertion helpers."""
    token = _current.set(context)
    try:
        yield context
    finally:
        _current.reset(token)


def current_context() -> Optional[SnapshotContext]:
    return _current.get()


# Contexts created outside pytest, one per test function. The entry holds the
# frame of the running invocation so a later call, even one reusing the same
# address, is recognised as a new run of the function.
_FRAME_CACHE_SIZE = 128
_frame_contexts: "OrderedDict[tuple[str, str], tuple[Any, SnapshotContext]]" = OrderedDict()


def _context_for_frame(frame) -> SnapshotContext:
    bound = _current.get()
    if bound is not None:
        return bound
    code = frame.f_code
    function = getattr(code, "co_qualname", code.co_name)
    key = (code.co_filename, function)
    cached = _frame_contexts.get(key)
    if cached is not None and cached[0] is frame:
        _frame_contexts.move_to_end(key)
        return cached[1]

    config = ConfigManager().get_config()
    source_file = Path(code.co_filename)
    module = frame.f_globals.get("__name__") or module_name_for(source_file, config.get_workspace_root())
    if module == "__main__":
        module = module_name_for(source_file, config.get_workspace_root())
    context = SnapshotContext(module, function, source_file, config)
    _frame_contexts[key] = (frame, context)
    _frame_contexts.move_to_end(key)
    while len(_frame_contexts) > _FRAME_CACHE_SIZE:
        _frame_contexts.popitem(last=False)
    return context


def assert_snapshot(value: Any, name: Optional[str] = None, expression: Optional[str] = None) -> Outcome:
    """Module-level ``SnapshotContext.assert_snapshot`` for the calling test."""
    return _context_for_frame(sys._getframe(1)).assert_snapshot(value, name, expression)


def assert_inline_snapshot(value: Any, expected: Optional[str] = None) -> Outcome:
    """Module-level ``SnapshotContext.assert_inline_snapshot`` for the calling test."""
    frame = sys._getframe(1)
    return _context_for_frame(frame)._check_inline(value, expected, frame)
