"""
pytest integration.

Registered through the ``pytest11`` entry point. Provides the ``snapshot``
fixture, binds a ``SnapshotContext`` to every running test so the
module-level helpers work, and finalises the session: in force mode the
inline candidates of this run are written into the test sources, otherwise
outstanding candidates are summarised in the terminal report.
"""
from __future__ import annotations

import logging
from pathlib import Path

import pytest

from .comparator import Comparator
from .config import ConfigManager, SnapshotConfig, UpdateMode
from .identity import module_name_for
from .pending import RUN_ID
from .report import REVIEW_HINT, render_summary
from .review import ReviewEngine
from .runtime import SnapshotContext, bind_context, build_pending, build_store

logger = logging.getLogger(__name__)

_config_key = pytest.StashKey[SnapshotConfig]()
_context_key = pytest.StashKey[SnapshotContext]()
_summary_key = pytest.StashKey[list]()
_outcomes_key = pytest.StashKey[list]()


def pytest_addoption(parser):
    group = parser.getgroup("snapcheck", "snapshot testing")
    group.addoption(
        "--snapcheck-update",
        dest="snapcheck_update",
        default=None,
        metavar="MODE",
        help="Snapshot update mode: no, always or pending (overrides SNAPCHECK_UPDATE)",
    )


def pytest_configure(config):
    snap_config = ConfigManager().get_config()
    option = config.getoption("snapcheck_update", default=None)
    if option:
        snap_config.update_mode = UpdateMode.parse(option).value
    if not snap_config.workspace_root:
        snap_config.workspace_root = str(config.rootpath)
    config.stash[_config_key] = snap_config


def _function_name(item) -> str:
    cls = getattr(item, "cls", None)
    return f"{cls.__name__}.{item.name}" if cls is not None else item.name


def context_for_item(item) -> SnapshotContext:
    """The snapshot context of a test item, created on first use."""
    context = item.stash.get(_context_key, None)
    if context is None:
        snap_config = item.config.stash[_config_key]
        source_file = Path(item.path)
        context = SnapshotContext(
            module=module_name_for(source_file, item.config.rootpath),
            function=_function_name(item),
            source_file=source_file,
            config=snap_config,
        )
        item.stash[_context_key] = context
    return context


@pytest.fixture
def snapshot(request) -> SnapshotContext:
    """Snapshot assertions bound to the requesting test."""
    return context_for_item(request.node)


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_call(item):
    context = context_for_item(item)
    with bind_context(context):
        yield
    item.config.stash.setdefault(_outcomes_key, []).extend(context.outcomes)


def _stats_line(outcomes: list) -> str:
    stats = Comparator().get_summary_stats(outcomes)
    return (
        f"{stats['total']} snapshot(s) checked: {stats['matches']} matched, "
        f"{stats['new']} new, {stats['failures']} changed"
    )


def pytest_sessionfinish(session, exitstatus):
    if hasattr(session.config, "workerinput"):
        # xdist workers; the controller finalises
        return
    snap_config = session.config.stash.get(_config_key, None)
    if snap_config is None:
        return

    lines = []
    outcomes = session.config.stash.get(_outcomes_key, [])
    if outcomes and not snap_config.quiet:
        lines.append(_stats_line(outcomes))

    store = build_store(snap_config)
    manager = build_pending(snap_config, store)
    this_run = [p for p in manager.list_pending() if p.run_id == RUN_ID]
    if this_run and snap_config.mode is UpdateMode.FORCE:
        inline = [p for p in this_run if p.is_inline]
        report = ReviewEngine(store, manager, snap_config.diff_context).accept_all(inline)
        lines.append(f"Updated {len(report.accepted)} inline snapshot(s)")
        if report.errors:
            lines.extend(render_summary(report).splitlines())
    elif this_run and not snap_config.quiet:
        lines.append(f"{len(this_run)} snapshot(s) pending review")
        lines.extend(f"  {pending.key}" for pending in this_run)
        lines.append(REVIEW_HINT)

    for line in lines:
        logger.debug(line)
    session.config.stash[_summary_key] = lines


def pytest_terminal_summary(terminalreporter, exitstatus, config):
    lines = config.stash.get(_summary_key, None)
    if not lines:
        return
    terminalreporter.section("snapcheck")
    for line in lines:
        terminalreporter.write_line(line)
