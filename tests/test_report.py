"""Tests for outcome and review rendering."""

from snapcheck.comparator import Outcome, OutcomeKind
from snapcheck.report import (
    REVIEW_HINT,
    render_diff,
    render_outcome,
    render_pending,
    render_pending_list,
    render_summary,
)
from snapcheck.review import ReviewReport


class TestDiff:
    """Tests for unified diffs."""

    def test_labels_and_lines(self):
        """Test diff headers and changed lines."""
        diff = render_diff("a\nb", "a\nc")
        assert diff.splitlines()[:2] == ["--- old snapshot", "+++ new results"]
        assert "-b" in diff.splitlines()
        assert "+c" in diff.splitlines()

    def test_identical(self):
        """Test identical texts produce no diff."""
        assert render_diff("a", "a") == ""


class TestOutcome:
    """Tests for assertion failure messages."""

    def test_match(self):
        """Test a matching outcome."""
        assert render_outcome(Outcome(OutcomeKind.MATCH, "x", "x"), "m::n") == "Snapshot matches: m::n"

    def test_new_snapshot(self):
        """Test a new snapshot lists the whole value."""
        text = render_outcome(
            Outcome(OutcomeKind.NEW_SNAPSHOT, "a: 1\nb: 2"),
            "tests.test_mod::foo",
            location="tests/test_mod.py",
            expression="result",
            pending_path="snapshots/test_mod__foo.snap.new",
        )
        lines = text.splitlines()
        assert lines[0] == "New snapshot: tests.test_mod::foo"
        assert "Source: tests/test_mod.py" in lines
        assert "Expression: result" in lines
        assert "+a: 1" in lines
        assert "+b: 2" in lines
        assert "Pending snapshot written to snapshots/test_mod__foo.snap.new" in lines
        assert lines[-1] == REVIEW_HINT

    def test_mismatch(self):
        """Test a mismatch shows the diff."""
        text = render_outcome(Outcome(OutcomeKind.MISMATCH, "a: 2", "a: 1"), "m::n", hint=False)
        assert text.startswith("Snapshot mismatch: m::n")
        assert "-a: 1" in text.splitlines()
        assert "+a: 2" in text.splitlines()
        assert REVIEW_HINT not in text

    def test_whitespace_only_mismatch(self):
        """Test a mismatch without textual diff still explains itself."""
        text = render_outcome(Outcome(OutcomeKind.MISMATCH, "a", "a"), "m::n", hint=False)
        assert "differ only in whitespace" in text


class FakePending:
    def __init__(self, key, new, old=None, is_inline=False):
        self.key = key
        self.new = new
        self.old = old
        self.is_inline = is_inline
        self.path = f"{key}.new"
        self.location = "tests/test_mod.py:3"
        self.metadata = type("Metadata", (), {"expression": None})()


class TestPendingRendering:
    """Tests for pending snapshot listings."""

    def test_render_pending_new(self):
        """Test a candidate without reference."""
        text = render_pending(FakePending("m::n", "x"))
        assert text.splitlines()[0] == "Reviewing snapshot: m::n"
        assert "+x" in text.splitlines()

    def test_render_pending_changed_inline(self):
        """Test a changed inline candidate."""
        text = render_pending(FakePending("t.py:3", "new", old="old", is_inline=True))
        assert text.splitlines()[0] == "Reviewing inline snapshot: t.py:3"
        assert "-old" in text.splitlines()

    def test_list(self):
        """Test one line per candidate."""
        text = render_pending_list([FakePending("m::a", "x"), FakePending("t.py:3", "y", "z", True)])
        assert text.splitlines() == ["m::a  [file, new]  m::a.new", "t.py:3  [inline, changed]  t.py:3.new"]

    def test_empty_list(self):
        """Test an empty listing."""
        assert render_pending_list([]) == "No pending snapshots."


class TestSummary:
    """Tests for review summaries."""

    def test_counts(self):
        """Test counts per bucket."""
        report = ReviewReport(accepted=["a", "b"], rejected=["c"])
        assert render_summary(report) == "Accepted: 2\nRejected: 1\nSkipped: 0"

    def test_errors_listed(self):
        """Test errors are listed per key."""
        report = ReviewReport(errors={"t.py:3": ValueError("boom")})
        assert render_summary(report).splitlines()[-2:] == ["Errors: 1", "  t.py:3: boom"]
