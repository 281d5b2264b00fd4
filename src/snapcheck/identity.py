"""
Test identities and the snapshot names derived from them.

An identity is ``module::snapshot_name``. Unnamed snapshots take the name of
the test function; repeated names inside one test get ``-2``, ``-3``, ...
suffixes in call order.
"""
from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def sanitize_name(name: str) -> str:
    """Make a name usable as a file name without introducing collisions."""
    cleaned = _UNSAFE_CHARS.sub("_", name)
    if cleaned != name or not cleaned:
        digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:8]
        cleaned = f"{cleaned}-{digest}"
    return cleaned


@dataclass(frozen=True)
class TestIdentity:
    """Stable key correlating one snapshot assertion across runs."""

    __test__ = False  # not a pytest test class

    module: str
    function: str
    snapshot_name: str
    source_file: Optional[Path] = field(default=None, compare=False)

    @property
    def key(self) -> str:
        return f"{self.module}::{self.snapshot_name}"

    @property
    def file_stem(self) -> str:
        leaf = self.module.rsplit(".", 1)[-1]
        return f"{sanitize_name(leaf)}__{sanitize_name(self.snapshot_name)}"

    def __str__(self) -> str:
        return self.key


def base_name_for(function: str) -> str:
    """Default snapshot name for a test function.

    ``test_parse`` -> ``parse``, ``TestCls.test_parse`` -> ``TestCls.parse``.
    Parametrize ids (``test_parse[a-1]``) are kept so each case gets its own file.
    """
    name, bracket, params = function.partition("[")
    head, dot, leaf = name.rpartition(".")
    if leaf.startswith("test_") and len(leaf) > 5:
        leaf = leaf[5:]
    return f"{head}{dot}{leaf}{bracket}{params}"


class OrdinalCounter:
    """Assigns ``name``, ``name-2``, ``name-3`` ... in call order.

    One counter lives inside each test invocation's context, so the numbering
    restarts for every test and is identical across repeated runs. A name is
    never handed out twice: an explicit ``foo-2`` after two unnamed ``foo``
    assertions becomes ``foo-2-2``.
    """

    def __init__(self):
        self._counts: dict[str, int] = {}
        self._issued: set[str] = set()

    def next(self, base: str) -> str:
        count = self._counts.get(base, 0)
        while True:
            count += 1
            name = base if count == 1 else f"{base}-{count}"
            if name not in self._issued:
                break
        self._counts[base] = count
        self._issued.add(name)
        return name


def parse_key(key: str) -> tuple[str, str]:
    """Split an identity key into ``(module, snapshot_name)``."""
    module, sep, name = key.partition("::")
    if not sep:
        raise ValueError(f"Not an identity key: {key!r}")
    return module, name


def module_name_for(source_file: Path, root: Optional[Path] = None) -> str:
    """Dotted module name of a test file relative to ``root``."""
    source_file = Path(source_file)
    if root is not None:
        try:
            source_file = source_file.resolve().relative_to(Path(root).resolve())
        except ValueError:
            pass
    parts = list(source_file.with_suffix("").parts)
    if not source_file.is_absolute():
        return ".".join(parts)
    return parts[-1]
