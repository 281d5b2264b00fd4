"""
Command-line interface for snapshot review.

This module provides CLI commands for listing, showing, accepting and
rejecting pending snapshots, plus an interactive review loop.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, Optional

from . import configure_logging
from .config import ConfigManager
from .errors import PendingNotFound
from .pending import PendingManager
from .report import render_pending_list, render_summary
from .review import ReviewAction, ReviewEngine, ReviewReport
from .runtime import build_pending, build_store

logger = logging.getLogger(__name__)


class SnapshotCLI:
    """Command-line interface for snapshot review."""

    def __init__(self, prompt: Callable[[str], str] = input):
        self.prompt = prompt
        self.config_manager = ConfigManager()
        self.config = self.config_manager.get_config()

    def run(self, args: Optional[list[str]] = None) -> int:
        """Run the CLI with given arguments."""
        parser = self._create_parser()
        parsed_args = parser.parse_args(args)

        if parsed_args.config:
            self.config_manager = ConfigManager(parsed_args.config)
            self.config = self.config_manager.get_config()
        if parsed_args.verbose:
            self.config.verbose = True
            configure_logging(logging.DEBUG)
        if parsed_args.quiet:
            self.config.quiet = True
        if parsed_args.workspace:
            self.config.workspace_root = str(parsed_args.workspace)

        if not getattr(parsed_args, "func", None):
            parser.print_help()
            return 1

        try:
            return parsed_args.func(parsed_args)
        except KeyboardInterrupt:
            logger.info("\nInterrupted by user")
            return 1
        except Exception as e:
            logger.error(f"Error: {e}")
            if self.config.verbose:
                logger.exception("Traceback")
            return 1

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create the argument parser."""
        parser = argparse.ArgumentParser(
            prog="snapcheck",
            description="Review pending snapshots",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )

        parser.add_argument("--config", "-c", type=Path, help="Configuration file path")

        parser.add_argument("--workspace", "-w", type=Path, help="Workspace root to search")

        parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

        parser.add_argument("--quiet", "-q", action="store_true", help="Quiet output")

        subparsers = parser.add_subparsers(dest="command", help="Available commands")

        # Pending-list command
        list_parser = subparsers.add_parser("pending-list", help="List pending snapshots")
        list_parser.set_defaults(func=self._pending_list_command)

        # Show command
        show_parser = subparsers.add_parser("show", help="Show the diff of a pending snapshot")
        show_parser.add_argument("key", help="Identity key, inline key (file:line) or pending file")
        show_parser.set_defaults(func=self._show_command)

        # Accept command
        accept_parser = subparsers.add_parser("accept", help="Accept pending snapshots")
        accept_parser.add_argument("keys", nargs="*", help="Keys to accept")
        accept_parser.add_argument("--all", action="store_true", help="Accept every pending snapshot")
        accept_parser.set_defaults(func=self._accept_command)

        # Reject command
        reject_parser = subparsers.add_parser("reject", help="Reject pending snapshots")
        reject_parser.add_argument("keys", nargs="*", help="Keys to reject")
        reject_parser.add_argument("--all", action="store_true", help="Reject every pending snapshot")
        reject_parser.set_defaults(func=self._reject_command)

        # Review command
        review_parser = subparsers.add_parser("review", help="Review pending snapshots interactively")
        review_parser.set_defaults(func=self._review_command)

        # Config command
        config_parser = subparsers.add_parser("config", help="Configuration management")
        config_parser.add_argument(
            "--init", action="store_true", help="Initialize default configuration file"
        )
        config_parser.add_argument("--show", action="store_true", help="Show current configuration")
        config_parser.set_defaults(func=self._config_command)

        return parser

    def _engine(self) -> tuple[ReviewEngine, PendingManager]:
        store = build_store(self.config)
        pending = build_pending(self.config, store)
        return ReviewEngine(store, pending, self.config.diff_context), pending

    def _report(self, report: ReviewReport) -> int:
        if not self.config.quiet or report.errors:
            for line in render_summary(report).splitlines():
                logger.info(line)
        return 0 if report.ok else 1

    def _pending_list_command(self, args) -> int:
        """Handle the pending-list command."""
        _, pending = self._engine()
        for line in render_pending_list(pending.list_pending()).splitlines():
            logger.info(line)
        return 0

    def _show_command(self, args) -> int:
        """Handle the show command."""
        engine, _ = self._engine()
        try:
            diff = engine.diff_for(args.key)
        except PendingNotFound as e:
            logger.error(str(e))
            return 1
        for line in diff.splitlines():
            logger.info(line)
        return 0

    def _select(self, args, action: str) -> Optional[list]:
        if args.all == bool(args.keys):
            logger.error(f"Give keys to {action} or --all")
            return None
        return args.keys

    def _accept_command(self, args) -> int:
        """Handle the accept command."""
        keys = self._select(args, "accept")
        if keys is None:
            return 1
        engine, pending = self._engine()
        if args.all:
            return self._report(engine.accept_all())

        # One batch so inline snapshots of a file are patched together
        found = []
        for key in keys:
            candidate = pending.get_pending(key)
            if candidate is None:
                logger.warning(f"Nothing pending for {key}")
                continue
            found.append(candidate)
        return self._report(engine.accept_all(found))

    def _reject_command(self, args) -> int:
        """Handle the reject command."""
        keys = self._select(args, "reject")
        if keys is None:
            return 1
        engine, _ = self._engine()
        if args.all:
            return self._report(engine.reject_all())

        report = ReviewReport()
        for key in keys:
            result = engine.reject(key)
            if result.action is ReviewAction.NOOP:
                logger.warning(f"Nothing pending for {key}")
            else:
                report.record(result)
        return self._report(report)

    def _review_command(self, args) -> int:
        """Handle the review command."""
        engine, pending = self._engine()
        candidates = pending.list_pending()
        if not candidates:
            logger.info("No pending snapshots.")
            return 0

        def prompt(text: str) -> str:
            try:
                return self.prompt(text)
            except EOFError:
                return "q"

        def write(text: str) -> None:
            logger.info("")
            for line in text.splitlines():
                logger.info(line)

        report = engine.review_interactive(prompt, write, candidates)
        logger.info("")
        return self._report(report)

    def _config_command(self, args) -> int:
        """Handle the config command."""
        if args.init:
            self.config_manager.create_default_config()
            return 0

        if args.show:
            logger.info("Current configuration:")
            config_dict = self.config.to_dict()
            for key, value in config_dict.items():
                logger.info(f"  {key}: {value}")
            return 0

        logger.info("Use --init to create default config or --show to display current config")
        return 0


def main():
    """Main entry point for the CLI."""
    cli = SnapshotCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
