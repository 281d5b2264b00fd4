"""
Configuration management for snapshot testing.

Settings come from a JSON file (``snapcheck.json`` in the working directory
by default) and are then overridden by environment variables, which is how
test runners and CI select the update mode.
"""
from __future__ import annotations

import enum
import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional

from .inline import DEFAULT_INLINE_NAMES
from .pending import DEFAULT_EXCLUDE_DIRS
from .storage import DEFAULT_SNAPSHOT_DIR

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "snapcheck.json"
ENV_UPDATE = "SNAPCHECK_UPDATE"
ENV_WORKSPACE = "SNAPCHECK_WORKSPACE"
ENV_SORT_MAPS = "SNAPCHECK_SORT_MAPS"
ENV_CONFIG = "SNAPCHECK_CONFIG"

_TRUTHY = {"1", "true", "yes", "on"}


class UpdateMode(enum.Enum):
    """How ``run_and_check`` reacts to new and changed snapshots."""

    COMPARE = "no"  # fail on mismatch (and record a pending candidate)
    FORCE = "always"  # accept new values as if reviewed
    PENDING = "pending"  # never fail, only record candidates

    @classmethod
    def parse(cls, value: Optional[str]) -> "UpdateMode":
        if value is None or not value.strip():
            return cls.COMPARE
        value = value.strip().lower()
        aliases = {
            "no": cls.COMPARE,
            "compare": cls.COMPARE,
            "auto": cls.COMPARE,
            "0": cls.COMPARE,
            "always": cls.FORCE,
            "force": cls.FORCE,
            "1": cls.FORCE,
            "pending": cls.PENDING,
            "new": cls.PENDING,
        }
        if value not in aliases:
            raise ValueError(f"Unknown update mode {value!r}; use one of no, always, pending")
        return aliases[value]


def is_ci(environ: Mapping[str, str]) -> bool:
    value = environ.get("CI", "")
    return bool(value) and value.lower() not in ("0", "false")


@dataclass
class SnapshotConfig:
    """Configuration for snapshot testing."""

    # Directories
    snapshot_dir_name: str = DEFAULT_SNAPSHOT_DIR
    snapshot_root: Optional[str] = None
    workspace_root: Optional[str] = None
    exclude_dirs: list = field(default_factory=lambda: sorted(DEFAULT_EXCLUDE_DIRS))

    # Behaviour
    update_mode: str = UpdateMode.COMPARE.value
    record_pending: bool = True
    sort_maps: bool = False
    inline_names: list = field(default_factory=lambda: list(DEFAULT_INLINE_NAMES))

    # Comparison settings
    normalize_line_endings: bool = True
    trim_trailing_whitespace: bool = True

    # Output settings
    diff_context: int = 3
    verbose: bool = False
    quiet: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SnapshotConfig":
        """Create from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_file(cls, config_path: Path) -> "SnapshotConfig":
        """Load configuration from JSON file."""
        if not config_path.exists():
            return cls()

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return cls.from_dict(data)
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Failed to load config from {config_path}: {e}")
            return cls()

    def save_to_file(self, config_path: Path) -> None:
        """Save configuration to JSON file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
            f.write("\n")

    def apply_environment(self, environ: Optional[Mapping[str, str]] = None) -> "SnapshotConfig":
        """Apply ``SNAPCHECK_*`` and ``CI`` overrides in place."""
        environ = os.environ if environ is None else environ
        if environ.get(ENV_UPDATE):
            self.update_mode = UpdateMode.parse(environ[ENV_UPDATE]).value
        if environ.get(ENV_WORKSPACE):
            self.workspace_root = environ[ENV_WORKSPACE]
        if environ.get(ENV_SORT_MAPS):
            self.sort_maps = environ[ENV_SORT_MAPS].strip().lower() in _TRUTHY
        if is_ci(environ):
            # Nobody reviews candidates on CI
            self.record_pending = False
        return self

    @property
    def mode(self) -> UpdateMode:
        return UpdateMode.parse(self.update_mode)

    def get_workspace_root(self) -> Path:
        """Get workspace root as Path."""
        return Path(self.workspace_root) if self.workspace_root else Path.cwd()

    def get_snapshot_root(self) -> Optional[Path]:
        """Get the central snapshot directory, if one is configured."""
        if self.snapshot_root:
            return Path(self.snapshot_root)
        return None


class ConfigManager:
    """Manages configuration loading and saving."""

    def __init__(self, config_path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None):
        environ = os.environ if environ is None else environ
        self.config_path = Path(config_path or environ.get(ENV_CONFIG) or CONFIG_FILENAME)
        self.environ = environ
        self.config = self._load()

    def _load(self) -> SnapshotConfig:
        return SnapshotConfig.from_file(self.config_path).apply_environment(self.environ)

    def get_config(self) -> SnapshotConfig:
        """Get the current configuration."""
        return self.config

    def update_config(self, **kwargs) -> None:
        """Update configuration with new values."""
        for key, value in kwargs.items():
            if hasattr(self.config, key):
                setattr(self.config, key, value)

    def save_config(self) -> None:
        """Save configuration to file."""
        self.config.save_to_file(self.config_path)

    def reload_config(self) -> None:
        """Reload configuration from file."""
        self.config = self._load()

    def create_default_config(self) -> None:
        """Create a default configuration file."""
        default_config = SnapshotConfig()
        default_config.save_to_file(self.config_path)
        logger.info(f"Created default configuration at {self.config_path}")
