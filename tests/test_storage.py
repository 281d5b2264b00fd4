"""Tests for the reference store and atomic file writes."""

import os
import threading

import pytest

from snapcheck.contents import SnapshotMetadata
from snapcheck.errors import AnchorDrift, IoFailure, ReferenceMissing
from snapcheck.fileio import atomic_write_text, read_text, remove_file
from snapcheck.identity import TestIdentity
from snapcheck.inline import SourceAnchor
from snapcheck.serializer import serialize
from snapcheck.storage import ReferenceStore


@pytest.fixture
def identity(source_file):
    return TestIdentity("tests.test_mod", "test_foo", "foo", source_file)


class TestPaths:
    """Tests for reference locations."""

    def test_next_to_source(self, store, identity, temp_dir):
        """Test references live in snapshots/ beside the test file."""
        assert store.path_for(identity) == temp_dir / "snapshots" / "test_mod__foo.snap"

    def test_custom_directory_name(self, identity, temp_dir):
        """Test the snapshot directory name is configurable."""
        store = ReferenceStore(snapshot_dir_name="__snapshots__")
        assert store.path_for(identity) == temp_dir / "__snapshots__" / "test_mod__foo.snap"

    def test_central_root(self, identity, temp_dir):
        """Test a central snapshot root mirrors the module path."""
        store = ReferenceStore(snapshot_root=temp_dir / "snaps")
        assert store.path_for(identity) == temp_dir / "snaps" / "tests" / "test_mod__foo.snap"


class TestStoreAndLoad:
    """Tests for writing and reading references."""

    def test_missing_reference(self, store, identity):
        """Test loading a reference that does not exist."""
        assert store.load(identity) is None
        assert store.load_file(identity) is None
        with pytest.raises(ReferenceMissing):
            store.require(identity)

    def test_round_trip(self, store, identity):
        """Test load returns exactly what was stored."""
        value = serialize({"a": 1, "b": [1, 2], "text": "x\ny"})
        store.store(identity, value, SnapshotMetadata(source="test_mod.py", expression="result"))
        assert store.load(identity) == value
        assert store.require(identity) == value

    def test_file_contents(self, store, identity):
        """Test the file on disk."""
        path = store.store(identity, "a: 1", SnapshotMetadata(source="test_mod.py"))
        assert path.read_text(encoding="utf-8") == "---\nsource: test_mod.py\n---\na: 1\n"

    def test_provenance_not_stored(self, store, identity):
        """Test pending-only fields never reach a reference."""
        store.store(identity, "x", SnapshotMetadata(run_id="abc", assertion_line=3))
        snapshot = store.load_file(identity)
        assert snapshot.metadata.run_id is None
        assert snapshot.metadata.assertion_line is None

    def test_overwrite(self, store, identity):
        """Test storing again replaces the reference."""
        store.store(identity, "old")
        store.store(identity, "new")
        assert store.load(identity) == "new"

    def test_no_temporary_files_left(self, store, identity):
        """Test atomic writes clean up after themselves."""
        path = store.store(identity, "x")
        assert os.listdir(path.parent) == [path.name]

    def test_delete(self, store, identity):
        """Test deleting a reference."""
        store.store(identity, "x")
        assert store.delete(identity)
        assert not store.delete(identity)
        assert store.load(identity) is None

    def test_list_references(self, store, source_file, temp_dir):
        """Test all reference files are found."""
        for name in ("b", "a"):
            store.store(TestIdentity("tests.test_mod", "test_x", name, source_file), name)
        found = store.list_references(temp_dir)
        assert [p.name for p in found] == ["test_mod__a.snap", "test_mod__b.snap"]


class TestConcurrentWrites:
    """Tests for writers running in parallel threads."""

    def test_distinct_identities(self, store, source_file):
        """Test parallel writers of different identities do not interfere."""
        identities = [TestIdentity("tests.test_mod", "test_x", f"snap-{i}", source_file) for i in range(16)]

        threads = [
            threading.Thread(target=store.store, args=(identity, f"value {i}"))
            for i, identity in enumerate(identities)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        for i, identity in enumerate(identities):
            assert store.load(identity) == f"value {i}"

    def test_same_identity_last_writer_wins(self, store, identity):
        """Test parallel writers of one identity leave a complete file."""
        values = [f"value {i}\n" * 50 for i in range(8)]
        threads = [threading.Thread(target=store.store, args=(identity, v)) for v in values]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert store.load(identity) + "\n" in values


class TestFileIO:
    """Tests for the low-level file helpers."""

    def test_atomic_write_creates_directories(self, temp_dir):
        """Test missing parent directories are created."""
        path = temp_dir / "a" / "b" / "file.txt"
        atomic_write_text(path, "hello")
        assert read_text(path) == "hello"

    def test_read_missing(self, temp_dir):
        """Test reading a missing file."""
        assert read_text(temp_dir / "missing") is None

    def test_read_keeps_line_endings(self, temp_dir):
        """Test reads do not translate newlines."""
        path = temp_dir / "crlf.txt"
        path.write_bytes(b"a\r\nb")
        assert read_text(path) == "a\r\nb"

    def test_remove_missing(self, temp_dir):
        """Test removing a missing file is not an error."""
        assert remove_file(temp_dir / "missing") is False

    def test_write_into_file_fails(self, temp_dir):
        """Test a write that cannot succeed surfaces as IoFailure."""
        blocker = temp_dir / "blocker"
        blocker.write_text("x")
        with pytest.raises(IoFailure):
            atomic_write_text(blocker / "child.txt", "data")


class TestInlineReferences:
    """Tests for inline references read and written through the store."""

    def test_locate_and_write(self, store, temp_dir):
        """Test reading and replacing an inline literal."""
        path = temp_dir / "test_inline.py"
        path.write_text('def test_x():\n    assert_inline_snapshot(x, "old")\n', encoding="utf-8")
        anchor = SourceAnchor(path, 2, "old")

        assert store.locate_inline(anchor) == "old"
        new_anchor = store.write_inline(anchor, "new")

        assert path.read_text(encoding="utf-8") == 'def test_x():\n    assert_inline_snapshot(x, "new")\n'
        assert new_anchor.expected == "new"
        assert store.locate_inline(new_anchor) == "new"

    def test_write_drifted(self, store, temp_dir):
        """Test an edited literal is not overwritten."""
        path = temp_dir / "test_inline.py"
        path.write_text('assert_inline_snapshot(x, "edited")\n', encoding="utf-8")
        with pytest.raises(AnchorDrift):
            store.write_inline(SourceAnchor(path, 1, "old"), "new")
        assert path.read_text(encoding="utf-8") == 'assert_inline_snapshot(x, "edited")\n'
