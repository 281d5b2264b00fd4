"""
On-disk format of standalone snapshot files.

A ``.snap`` file is a metadata header framed by two ``---`` delimiter lines,
followed by the snapshot text::

    ---
    source: tests/test_parser.py
    expression: parse(src)
    ---
    !Module
      body: []

Pending ``.snap.new`` files use the same layout with additional provenance
fields in the header. Header keys are always written in the same order so
that upgrading never produces whole-suite diffs.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Optional

logger = logging.getLogger(__name__)

DELIMITER = "---"
FORMAT_VERSION = 1

REFERENCE_KEYS = ("source", "expression", "description", "snapshot_format")
PENDING_KEYS = ("identity", "function", "assertion_line", "run_id", "created")
_INT_KEYS = {"assertion_line", "snapshot_format"}

_PLAIN_VALUE = re.compile(r"^[A-Za-z0-9_./@+-][^\n\"#]*$")


@dataclass
class SnapshotMetadata:
    """Header of a snapshot file."""

    source: Optional[str] = None
    expression: Optional[str] = None
    description: Optional[str] = None
    snapshot_format: int = FORMAT_VERSION
    # Provenance, only written for pending snapshots
    identity: Optional[str] = None
    function: Optional[str] = None
    assertion_line: Optional[int] = None
    run_id: Optional[str] = None
    created: Optional[str] = None
    extra: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SnapshotMetadata":
        """Create from dictionary, keeping unknown keys in ``extra``."""
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        extra = dict(kwargs.pop("extra", None) or {})
        extra.update({k: str(v) for k, v in data.items() if k not in known})
        return cls(**kwargs, extra=extra)

    def reference(self) -> "SnapshotMetadata":
        """Copy without pending-only provenance."""
        return SnapshotMetadata(
            source=self.source,
            expression=self.expression,
            description=self.description,
            snapshot_format=self.snapshot_format,
            extra=dict(self.extra),
        )

    def header_items(self, pending: bool = False) -> list[tuple[str, Any]]:
        keys = REFERENCE_KEYS + (PENDING_KEYS if pending else ())
        items = []
        for key in keys:
            value = getattr(self, key)
            if value is None:
                continue
            if key == "snapshot_format" and value == FORMAT_VERSION:
                continue
            items.append((key, value))
        items.extend(sorted(self.extra.items()))
        return items


def _encode_value(value: Any) -> str:
    text = str(value)
    if _PLAIN_VALUE.match(text) and text == text.strip():
        return text
    return json.dumps(text, ensure_ascii=False)


def _decode_value(key: str, raw: str) -> Any:
    raw = raw.strip()
    value: Any = raw
    if raw.startswith('"'):
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug(f"Malformed header value for {key!r}: {raw}")
    if key in _INT_KEYS:
        try:
            return int(value)
        except (TypeError, ValueError):
            return None
    return value


@dataclass
class SnapshotFile:
    """A parsed snapshot file: metadata plus snapshot text."""

    metadata: SnapshotMetadata
    contents: str

    def render(self, pending: bool = False) -> str:
        lines = [DELIMITER]
        for key, value in self.metadata.header_items(pending=pending):
            lines.append(f"{key}: {_encode_value(value)}")
        lines.append(DELIMITER)
        body = self.contents.rstrip("\n")
        return "\n".join(lines) + "\n" + body + "\n"

    @classmethod
    def parse(cls, text: str) -> "SnapshotFile":
        text = text.replace("\r\n", "\n")
        lines = text.split("\n")
        if not lines or lines[0].rstrip() != DELIMITER:
            # Headerless file, e.g. written by hand
            return cls(SnapshotMetadata(), text.rstrip("\n"))

        header: dict[str, Any] = {}
        for index in range(1, len(lines)):
            line = lines[index]
            if line.rstrip() == DELIMITER:
                body = "\n".join(lines[index + 1:])
                return cls(SnapshotMetadata.from_dict(header), body.rstrip("\n"))
            key, sep, raw = line.partition(":")
            if not sep:
                logger.debug(f"Ignoring malformed header line: {line!r}")
                continue
            header[key.strip()] = _decode_value(key.strip(), raw)

        raise ValueError("Snapshot header is not terminated by a delimiter line")
