"""
Pytest configuration and shared fixtures for snapcheck tests.
"""

import shutil
import tempfile
from pathlib import Path

import pytest

from snapcheck.config import SnapshotConfig, UpdateMode
from snapcheck.pending import PendingManager
from snapcheck.review import ReviewEngine
from snapcheck.runtime import SnapshotContext
from snapcheck.storage import ReferenceStore

_ENV_VARS = ("SNAPCHECK_UPDATE", "SNAPCHECK_WORKSPACE", "SNAPCHECK_SORT_MAPS", "SNAPCHECK_CONFIG", "CI")


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the caller's snapshot settings out of the tests."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    # Cleanup
    if temp_path.exists():
        shutil.rmtree(temp_path)


@pytest.fixture
def source_file(temp_dir):
    """A test module the snapshots belong to."""
    path = temp_dir / "test_mod.py"
    path.write_text("def test_foo():\n    pass\n", encoding="utf-8")
    return path


@pytest.fixture
def snap_config(temp_dir):
    """Configuration rooted at the temporary directory, no environment applied."""
    return SnapshotConfig(workspace_root=str(temp_dir))


@pytest.fixture
def store():
    return ReferenceStore()


@pytest.fixture
def pending_manager(store, temp_dir):
    return PendingManager(store, temp_dir)


@pytest.fixture
def engine(store, pending_manager):
    return ReviewEngine(store, pending_manager)


@pytest.fixture
def make_context(snap_config, store, pending_manager, source_file):
    """Factory for the snapshot context of one ``test_foo`` invocation."""

    def factory(mode=UpdateMode.COMPARE, function="test_foo"):
        snap_config.update_mode = mode.value
        return SnapshotContext(
            module="tests.test_mod",
            function=function,
            source_file=source_file,
            config=snap_config,
            store=store,
            pending=pending_manager,
        )

    return factory
