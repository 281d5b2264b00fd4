"""
Review engine: accepts or rejects pending snapshots.

This is the only component that modifies test source files. It is meant to
run after the test session, single-threaded. Batch operations never stop at
the first failure; every key ends up in exactly one bucket of the returned
``ReviewReport``.
"""
from __future__ import annotations

import enum
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional

from .contents import SnapshotFile
from .errors import ConcurrentWriteLost, IoFailure, PendingNotFound, SnapshotError
from .inline import FilePatcher
from .pending import PendingKey, PendingManager, PendingSnapshot
from .report import render_pending
from .storage import ReferenceStore

logger = logging.getLogger(__name__)

_REVIEW_ERRORS = (SnapshotError, OSError, ValueError)


class ReviewAction(enum.Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    SKIPPED = "skipped"
    NOOP = "noop"  # nothing pending for the key


@dataclass
class ReviewResult:
    key: str
    action: ReviewAction
    path: Optional[Path] = None


@dataclass
class ReviewReport:
    """Aggregate outcome of a batch review."""

    accepted: list[str] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: dict[str, Exception] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def total(self) -> int:
        return len(self.accepted) + len(self.rejected) + len(self.skipped) + len(self.errors)

    def record(self, result: ReviewResult) -> None:
        if result.action is ReviewAction.ACCEPTED:
            self.accepted.append(result.key)
        elif result.action is ReviewAction.REJECTED:
            self.rejected.append(result.key)
        elif result.action is ReviewAction.SKIPPED:
            self.skipped.append(result.key)


class ReviewEngine:
    """Applies review decisions to pending snapshots."""

    def __init__(self, store: ReferenceStore, pending: PendingManager, diff_context: int = 3):
        self.store = store
        self.pending = pending
        self.diff_context = diff_context

    def _key(self, key: PendingKey) -> str:
        return key if isinstance(key, str) else key.key

    def accept(self, key: PendingKey) -> ReviewResult:
        """Promote a pending snapshot to the reference; no-op if nothing is pending."""
        pending = self.pending.get_pending(key)
        if pending is None:
            return ReviewResult(self._key(key), ReviewAction.NOOP)
        report = ReviewReport()
        self._accept_batch([pending], report)
        if report.errors:
            raise report.errors[pending.key]
        return ReviewResult(pending.key, ReviewAction.ACCEPTED, pending.target)

    def reject(self, key: PendingKey) -> ReviewResult:
        """Delete a pending snapshot, leaving the reference untouched."""
        pending = self.pending.get_pending(key)
        if pending is None:
            return ReviewResult(self._key(key), ReviewAction.NOOP)
        self.pending.discard(pending)
        logger.debug(f"Rejected {pending.key}")
        return ReviewResult(pending.key, ReviewAction.REJECTED, pending.path)

    def skip(self, key: PendingKey) -> ReviewResult:
        """Leave a pending snapshot in place for a later decision."""
        pending = self.pending.get_pending(key)
        if pending is None:
            return ReviewResult(self._key(key), ReviewAction.NOOP)
        return ReviewResult(pending.key, ReviewAction.SKIPPED, pending.path)

    def accept_all(self, pendings: Optional[Iterable[PendingSnapshot]] = None) -> ReviewReport:
        report = ReviewReport()
        self._accept_batch(list(pendings) if pendings is not None else self.pending.list_pending(), report)
        return report

    def reject_all(self, pendings: Optional[Iterable[PendingSnapshot]] = None) -> ReviewReport:
        report = ReviewReport()
        for pending in pendings if pendings is not None else self.pending.list_pending():
            try:
                self.pending.discard(pending)
                report.rejected.append(pending.key)
            except _REVIEW_ERRORS as e:
                logger.warning(f"Failed to reject {pending.key}: {e}")
                report.errors[pending.key] = e
        return report

    def diff_for(self, key: PendingKey) -> str:
        pending = self.pending.get_pending(key)
        if pending is None:
            raise PendingNotFound(self._key(key))
        return render_pending(pending, self.diff_context)

    def review_interactive(
        self,
        prompt: Callable[[str], str],
        write: Callable[[str], None],
        pendings: Optional[Iterable[PendingSnapshot]] = None,
    ) -> ReviewReport:
        """Ask for a decision on every pending snapshot, then apply them.

        Decisions are collected first so that inline snapshots of one file are
        rewritten in a single pass.
        """
        to_accept: list[PendingSnapshot] = []
        to_reject: list[PendingSnapshot] = []
        report = ReviewReport()
        remaining = list(pendings) if pendings is not None else self.pending.list_pending()

        for index, pending in enumerate(remaining):
            write(render_pending(pending, self.diff_context))
            choice = ""
            while choice not in ("a", "r", "s", "q"):
                choice = prompt("[a]ccept, [r]eject, [s]kip, [q]uit? ").strip().lower()[:1]
            if choice == "a":
                to_accept.append(pending)
            elif choice == "r":
                to_reject.append(pending)
            elif choice == "s":
                report.skipped.append(pending.key)
            else:
                report.skipped.extend(p.key for p in remaining[index:])
                break

        self._accept_batch(to_accept, report)
        rejected = self.reject_all(to_reject)
        report.rejected.extend(rejected.rejected)
        report.errors.update(rejected.errors)
        return report

    def _accept_batch(self, pendings: list[PendingSnapshot], report: ReviewReport) -> None:
        by_source: OrderedDict[Path, list[PendingSnapshot]] = OrderedDict()
        for pending in pendings:
            if pending.is_inline:
                by_source.setdefault(Path(pending.target), []).append(pending)
                continue
            try:
                self._accept_file(pending)
                report.accepted.append(pending.key)
            except _REVIEW_ERRORS as e:
                logger.warning(f"Failed to accept {pending.key}: {e}")
                report.errors[pending.key] = e

        for source, group in by_source.items():
            self._accept_inline_group(source, group, report)

    def _accept_file(self, pending: PendingSnapshot) -> None:
        self.store.store_path(pending.target, SnapshotFile(pending.metadata.reference(), pending.new))
        self.pending.discard(pending)
        logger.debug(f"Accepted {pending.key} -> {pending.target}")

    def _accept_inline_group(
        self, source: Path, group: list[PendingSnapshot], report: ReviewReport
    ) -> None:
        applied: list[PendingSnapshot] = []
        patcher: Optional[FilePatcher] = None
        for attempt in (1, 2):
            applied = []
            try:
                patcher = FilePatcher(source, self.store.inline_names)
            except _REVIEW_ERRORS as e:
                for pending in group:
                    report.errors[pending.key] = e
                return
            for pending in group:
                try:
                    patcher.set_new_content(pending.anchor, pending.new)
                    applied.append(pending)
                except _REVIEW_ERRORS as e:
                    logger.warning(f"Failed to accept {pending.key}: {e}")
                    report.errors[pending.key] = e
            try:
                patcher.save()
                break
            except ConcurrentWriteLost as e:
                if attempt == 2:
                    failure = IoFailure(source, "file kept changing during the update", e)
                    for pending in applied:
                        report.errors[pending.key] = failure
                    return
                for pending in group:
                    report.errors.pop(pending.key, None)
            except _REVIEW_ERRORS as e:
                for pending in applied:
                    report.errors[pending.key] = e
                return

        for pending in applied:
            try:
                self.pending.discard(pending)
                report.accepted.append(pending.key)
            except _REVIEW_ERRORS as e:
                report.errors[pending.key] = e
        if applied and patcher is not None:
            self._shift_remaining(source, patcher, {p.key for p in applied})

    def _shift_remaining(self, source: Path, patcher: FilePatcher, done: set[str]) -> None:
        """Move still-pending inline snapshots of ``source`` to their new line numbers."""
        shifts = patcher.line_shifts()
        if not any(delta for _, delta in shifts):
            return
        moves = []
        for pending in self.pending.list_pending():
            if not pending.is_inline or pending.key in done:
                continue
            if Path(pending.target).resolve() != source.resolve():
                continue
            delta = sum(d for end_line, d in shifts if end_line < pending.anchor.line)
            if delta:
                moves.append((pending, pending.anchor.line + delta))

        # Remove all old artifacts first so a move never lands on a file still to be moved
        discarded = []
        for pending, line in moves:
            try:
                self.pending.discard(pending)
                discarded.append((pending, line))
            except _REVIEW_ERRORS as e:
                logger.warning(f"Could not relocate pending snapshot {pending.key}: {e}")
        for pending, line in discarded:
            try:
                self.pending.move_inline(pending, line, discard=False)
            except _REVIEW_ERRORS as e:
                logger.warning(f"Could not relocate pending snapshot {pending.key}: {e}")
