"""
Human-readable rendering of snapshot outcomes.

Everything here is a pure function of its arguments: no filesystem access,
no printing. The runtime puts the rendered text into assertion messages and
the CLI hands it to the logger.
"""
from __future__ import annotations

import difflib
from typing import Any, Iterable, Optional

from .comparator import Outcome, OutcomeKind

OLD_LABEL = "old snapshot"
NEW_LABEL = "new results"
REVIEW_HINT = (
    "To review pending snapshots run `snapcheck review`, "
    "or re-run with SNAPCHECK_UPDATE=always to accept all."
)


def render_diff(old: str, new: str, context: int = 3) -> str:
    """Unified diff between two snapshot texts."""
    lines = difflib.unified_diff(
        old.splitlines(),
        new.splitlines(),
        fromfile=OLD_LABEL,
        tofile=NEW_LABEL,
        n=context,
        lineterm="",
    )
    return "\n".join(lines)


def render_new(new: str) -> str:
    return "\n".join(f"+{line}" for line in new.splitlines()) or "+"


def render_outcome(
    outcome: Outcome,
    label: str,
    location: Optional[str] = None,
    expression: Optional[str] = None,
    pending_path: Optional[str] = None,
    context: int = 3,
    hint: bool = True,
) -> str:
    """Describe a comparison outcome for a test failure message."""
    if outcome.kind is OutcomeKind.MATCH:
        return f"Snapshot matches: {label}"

    title = "New snapshot" if outcome.kind is OutcomeKind.NEW_SNAPSHOT else "Snapshot mismatch"
    lines = [f"{title}: {label}"]
    if location:
        lines.append(f"Source: {location}")
    if expression:
        lines.append(f"Expression: {expression}")
    lines.append("")
    if outcome.kind is OutcomeKind.NEW_SNAPSHOT:
        lines.append(render_new(outcome.new))
    else:
        diff = render_diff(outcome.reference or "", outcome.new, context)
        # Differences only in whitespace normalisation still get a readable message
        lines.append(diff or "(snapshots differ only in whitespace)")
    if pending_path:
        lines.append("")
        lines.append(f"Pending snapshot written to {pending_path}")
    if hint:
        lines.append(REVIEW_HINT)
    return "\n".join(lines)


def render_pending(pending: Any, context: int = 3) -> str:
    """Header plus diff for one pending snapshot (used by interactive review)."""
    kind = "inline snapshot" if pending.is_inline else "snapshot"
    lines = [f"Reviewing {kind}: {pending.key}", f"Source: {pending.location}"]
    if pending.metadata.expression:
        lines.append(f"Expression: {pending.metadata.expression}")
    lines.append("")
    if pending.old is None:
        lines.append(render_new(pending.new))
    else:
        lines.append(render_diff(pending.old, pending.new, context) or "(no textual changes)")
    return "\n".join(lines)


def render_pending_list(pendings: Iterable[Any]) -> str:
    lines = []
    for pending in pendings:
        kind = "inline" if pending.is_inline else "file"
        state = "new" if pending.old is None else "changed"
        lines.append(f"{pending.key}  [{kind}, {state}]  {pending.path}")
    if not lines:
        return "No pending snapshots."
    return "\n".join(lines)


def render_summary(report: Any) -> str:
    """One-paragraph summary of a review report."""
    lines = [
        f"Accepted: {len(report.accepted)}",
        f"Rejected: {len(report.rejected)}",
        f"Skipped: {len(report.skipped)}",
    ]
    if report.errors:
        lines.append(f"Errors: {len(report.errors)}")
        for key, error in report.errors.items():
            lines.append(f"  {key}: {error}")
    return "\n".join(lines)
