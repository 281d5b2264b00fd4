"""
Comparison engine for snapshot testing.

Snapshots are compared as text: the serializer already canonicalises
structure, so equality is plain string equality after a symmetric
normalisation of line endings and trailing whitespace.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Optional


class OutcomeKind(enum.Enum):
    MATCH = "match"
    NEW_SNAPSHOT = "new"
    MISMATCH = "mismatch"


@dataclass(frozen=True)
class Outcome:
    """Result of comparing a fresh snapshot against its reference."""

    kind: OutcomeKind
    new: str
    reference: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.kind is OutcomeKind.MATCH

    @property
    def is_new(self) -> bool:
        return self.kind is OutcomeKind.NEW_SNAPSHOT


@dataclass
class ComparisonConfig:
    """Configuration for comparison operations."""

    normalize_line_endings: bool = True
    trim_trailing_whitespace: bool = True


class Comparator:
    """Compares snapshot texts with configurable normalisation."""

    def __init__(self, config: Optional[ComparisonConfig] = None):
        self.config = config or ComparisonConfig()

    def normalize(self, text: str) -> str:
        if self.config.normalize_line_endings:
            text = text.replace("\r\n", "\n").replace("\r", "\n")
        if self.config.trim_trailing_whitespace:
            text = "\n".join(line.rstrip() for line in text.split("\n"))
            text = text.rstrip("\n")
        return text

    def compare(self, new: str, reference: Optional[str]) -> Outcome:
        """Compare a new snapshot with its reference (``None`` when there is none yet)."""
        if reference is None:
            return Outcome(OutcomeKind.NEW_SNAPSHOT, new)
        if self.normalize(new) == self.normalize(reference):
            return Outcome(OutcomeKind.MATCH, new, reference)
        return Outcome(OutcomeKind.MISMATCH, new, reference)

    def get_summary_stats(self, outcomes: list[Outcome]) -> dict[str, Any]:
        """Get summary statistics for a list of outcomes."""
        total = len(outcomes)
        matches = sum(1 for o in outcomes if o.kind is OutcomeKind.MATCH)
        new = sum(1 for o in outcomes if o.kind is OutcomeKind.NEW_SNAPSHOT)
        failures = total - matches - new

        return {
            "total": total,
            "matches": matches,
            "new": new,
            "failures": failures,
            "success_rate": matches / total if total > 0 else 0,
        }
