"""
Inline snapshots: string literals embedded in test source.

An inline snapshot is the ``expected`` argument of an assertion call::

    snapshot.assert_inline_snapshot(render(doc), '''
        <p>hello</p>
        ''')

This module finds that literal for a given call line, renders new literals
and patches source files. Patching works on the raw bytes of the file: only
the byte span of the literal (or the insertion point when the call has no
literal yet) changes, everything else, including comments, line endings and
trailing content, is written back untouched.
"""
from __future__ import annotations

import ast
import bisect
import logging
import re
import textwrap
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, Sequence

from .errors import AnchorDrift, ConcurrentWriteLost, IoFailure
from .fileio import atomic_write_bytes, file_lock

logger = logging.getLogger(__name__)

DEFAULT_INLINE_NAMES = ("assert_inline_snapshot",)
EXPECTED_KEYWORD = "expected"

_BOM = b"\xef\xbb\xbf"
_NEEDS_ESCAPE = re.compile(r"[\x00-\x08\x0b-\x1f\x7f\ud800-\udfff]")


@dataclass(frozen=True)
class SourceAnchor:
    """Location of an inline snapshot literal.

    ``line`` is any 1-based line inside the assertion call and ``expected`` is
    the literal's value observed when the test ran (``None`` when the call had
    no literal). ``start``/``end`` are byte offsets of the literal once the
    anchor has been resolved against the current file; for a call without a
    literal both point at the insertion position.
    """

    path: Path
    line: int
    expected: Optional[str] = None
    start: Optional[int] = None
    end: Optional[int] = None
    indentation: str = ""
    insert_prefix: str = ""

    @property
    def key(self) -> str:
        return f"{self.path}:{self.line}"

    @property
    def resolved(self) -> bool:
        return self.start is not None


def normalize_inline(value: str) -> str:
    """Recover snapshot text from an inline literal's value.

    Block literals start with a newline and end with the indentation of the
    closing quotes; that indentation is stripped from every line.
    """
    if not value.startswith("\n"):
        return value
    body = value[1:]
    head, sep, last = body.rpartition("\n")
    if not sep or last.strip():
        return textwrap.dedent(body)
    lines = head.split("\n")
    if all(not line or line.startswith(last) for line in lines):
        return "\n".join(line[len(last):] for line in lines)
    return textwrap.dedent(head)


def _escaped(content: str, quote: str) -> str:
    """Fully escaped literal body; newlines stay literal for block form."""
    out = []
    for char in content:
        if char == "\\":
            out.append("\\\\")
        elif char == quote:
            out.append("\\" + quote)
        elif char == "\n":
            out.append("\n")
        elif char == "\t":
            out.append("\\t")
        elif char == "\r":
            out.append("\\r")
        elif _NEEDS_ESCAPE.match(char):
            code = ord(char)
            out.append(f"\\x{code:02x}" if code < 0x100 else f"\\u{code:04x}")
        else:
            out.append(char)
    return "".join(out)


def _single_line_literal(content: str) -> str:
    if _NEEDS_ESCAPE.search(content):
        return '"' + _escaped(content, '"') + '"'
    for quote in ('"', "'"):
        if quote in content:
            continue
        if "\\" not in content:
            return quote + content + quote
        if not content.endswith("\\"):
            return "r" + quote + content + quote
    return '"' + _escaped(content, '"') + '"'


def _block_literal(content: str, indentation: str, newline: str) -> str:
    lines = content.split("\n")
    delimiter = None
    if not _NEEDS_ESCAPE.search(content):
        for candidate in ('"""', "'''"):
            if candidate not in content:
                delimiter = candidate
                break
    if delimiter is None:
        delimiter = '"""'
        prefix = ""
        lines = _escaped(content, '"').split("\n")
    else:
        prefix = "r" if "\\" in content else ""
    body = newline.join(indentation + line if line else "" for line in lines)
    return f"{prefix}{delimiter}{newline}{body}{newline}{indentation}{delimiter}"


def to_inline_literal(content: str, indentation: str = "", newline: str = "\n") -> str:
    """Render snapshot text as a Python string literal.

    One-line content becomes ``"..."`` (or ``'...'``/raw when that avoids
    escapes); multi-line content becomes an indented triple-quoted block.
    """
    if "\n" not in content:
        return _single_line_literal(content)
    return _block_literal(content, indentation, newline)


def _callee_name(node: ast.Call) -> Optional[str]:
    func = node.func
    if isinstance(func, ast.Name):
        return func.id
    if isinstance(func, ast.Attribute):
        return func.attr
    return None


def _literal_arg(node: ast.Call) -> Optional[ast.expr]:
    for keyword in node.keywords:
        if keyword.arg == EXPECTED_KEYWORD:
            return keyword.value
    if len(node.args) >= 2:
        return node.args[1]
    return None


class SourceMap:
    """Byte offsets for ``(lineno, col_offset)`` positions reported by ``ast``."""

    def __init__(self, data: bytes):
        self.data = data
        self.line_starts = []
        offset = len(_BOM) if data.startswith(_BOM) else 0
        for line in data[offset:].splitlines(keepends=True):
            self.line_starts.append(offset)
            offset += len(line)
        self.line_starts.append(offset)

    def offset(self, lineno: int, col: int) -> int:
        return self.line_starts[lineno - 1] + col

    def lineno_at(self, offset: int) -> int:
        index = bisect.bisect_right(self.line_starts, offset)
        return min(max(1, index), len(self.line_starts) - 1)

    def line(self, lineno: int) -> bytes:
        return self.data[self.line_starts[lineno - 1]:self.line_starts[lineno]]

    def newline(self, lineno: int) -> str:
        return "\r\n" if self.line(lineno).endswith(b"\r\n") else "\n"

    def indentation(self, lineno: int) -> str:
        line = self.line(lineno).decode("utf-8", errors="replace")
        return line[: len(line) - len(line.lstrip(" \t"))]


def _insertion_point(source: SourceMap, node: ast.Call) -> tuple[int, str]:
    """Where to add a literal to a call that has none: ``(offset, prefix)``."""
    close = source.offset(node.end_lineno, node.end_col_offset) - 1
    arguments = list(node.args) + [k.value for k in node.keywords]
    if not arguments:
        return close, ""
    last = max(arguments, key=lambda a: (a.end_lineno, a.end_col_offset))
    after = source.offset(last.end_lineno, last.end_col_offset)

    # Skip closing parens of a parenthesized argument and find a trailing comma
    position, comma = after, None
    in_comment = False
    for index in range(after, close):
        char = source.data[index:index + 1]
        if in_comment:
            in_comment = char not in (b"\n", b"\r")
            continue
        if char == b"#":
            in_comment = True
        elif char == b")":
            position, comma = index + 1, None
        elif char == b",":
            comma = index + 1

    prefix = f"{EXPECTED_KEYWORD}=" if node.keywords else ""
    if comma is not None:
        return comma, " " + prefix
    return position, ", " + prefix


def find_inline_call(
    source: SourceMap, tree: ast.AST, anchor: SourceAnchor, names: Sequence[str]
) -> SourceAnchor:
    """Resolve ``anchor`` against parsed source, raising ``AnchorDrift`` if it no longer fits."""
    candidates = [
        node
        for node in ast.walk(tree)
        if isinstance(node, ast.Call)
        and _callee_name(node) in names
        and node.lineno <= anchor.line <= node.end_lineno
    ]
    if not candidates:
        raise AnchorDrift(anchor.path, anchor.line, "no inline snapshot assertion at this line")

    # Innermost call first, then by position
    candidates.sort(key=lambda n: (n.end_lineno - n.lineno, n.lineno, n.col_offset))
    mismatches = []
    for node in candidates:
        literal = _literal_arg(node)
        indentation = source.indentation(node.lineno)
        if literal is None:
            if anchor.expected is not None:
                mismatches.append("the snapshot literal was removed")
                continue
            position, prefix = _insertion_point(source, node)
            return replace(
                anchor, start=position, end=position, indentation=indentation, insert_prefix=prefix
            )
        if not (isinstance(literal, ast.Constant) and isinstance(literal.value, str)):
            mismatches.append("the snapshot argument is not a plain string literal")
            continue
        if anchor.expected is not None and literal.value != anchor.expected:
            mismatches.append("the snapshot literal was edited since the test ran")
            continue
        if anchor.expected is None and literal.value:
            mismatches.append("a snapshot literal was added since the test ran")
            continue
        return replace(
            anchor,
            start=source.offset(literal.lineno, literal.col_offset),
            end=source.offset(literal.end_lineno, literal.end_col_offset),
            indentation=indentation,
            insert_prefix="",
        )
    raise AnchorDrift(anchor.path, anchor.line, mismatches[0])


class FilePatcher:
    """Collects inline snapshot updates for one source file and writes them at once."""

    def __init__(self, path: Path, names: Sequence[str] = DEFAULT_INLINE_NAMES):
        self.path = Path(path)
        self.names = tuple(names)
        try:
            self.original = self.path.read_bytes()
        except OSError as e:
            raise IoFailure(self.path, str(e), e) from e
        self.source = SourceMap(self.original)
        try:
            self.tree = ast.parse(self.original, filename=str(self.path))
        except SyntaxError as e:
            raise AnchorDrift(self.path, e.lineno or 0, f"source no longer parses: {e.msg}") from e
        self._patches: dict[int, tuple[SourceAnchor, str]] = {}

    def resolve(self, anchor: SourceAnchor) -> SourceAnchor:
        return find_inline_call(self.source, self.tree, anchor, self.names)

    def locate(self, anchor: SourceAnchor) -> Optional[str]:
        """Current normalised snapshot text at ``anchor`` (``None`` without a literal)."""
        resolved = self.resolve(anchor)
        if resolved.start == resolved.end:
            return None
        literal = self.original[resolved.start:resolved.end].decode("utf-8")
        return normalize_inline(ast.literal_eval(literal))

    def set_new_content(self, anchor: SourceAnchor, content: str) -> SourceAnchor:
        """Schedule replacing the literal at ``anchor``; returns the resolved anchor."""
        resolved = self.resolve(anchor)
        newline = self.source.newline(self.source.lineno_at(resolved.start))
        literal = resolved.insert_prefix + to_inline_literal(content, resolved.indentation, newline)
        existing = self._patches.get(resolved.start)
        if existing is not None and existing[0].end != resolved.end:
            raise AnchorDrift(self.path, anchor.line, "overlapping inline snapshot updates")
        # The same call asserted repeatedly (e.g. in a loop): last one wins
        self._patches[resolved.start] = (resolved, literal)
        return resolved

    def render(self) -> tuple[bytes, list[SourceAnchor]]:
        """Patched file contents plus the anchors of the written literals."""
        data = self.original
        for start in sorted(self._patches, reverse=True):
            resolved, literal = self._patches[start]
            data = data[:start] + literal.encode("utf-8") + data[resolved.end:]

        anchors = []
        shift = 0
        for start in sorted(self._patches):
            resolved, literal = self._patches[start]
            encoded = literal.encode("utf-8")
            text = literal[len(resolved.insert_prefix):]
            new_start = start + shift + len(resolved.insert_prefix.encode("utf-8"))
            anchors.append(
                replace(
                    resolved,
                    expected=ast.literal_eval(text),
                    start=new_start,
                    end=start + shift + len(encoded),
                    insert_prefix="",
                )
            )
            shift += len(encoded) - (resolved.end - start)
        return data, anchors

    def line_shifts(self) -> list[tuple[int, int]]:
        """``(last original line of patch, added line count)`` for each scheduled patch."""
        shifts = []
        for start in sorted(self._patches):
            resolved, literal = self._patches[start]
            removed = self.original[start:resolved.end].count(b"\n")
            shifts.append((self.source.lineno_at(resolved.end), literal.count("\n") - removed))
        return shifts

    def save(self) -> list[SourceAnchor]:
        """Write all scheduled patches atomically; returns the new anchors."""
        if not self._patches:
            return []
        data, anchors = self.render()
        with file_lock(self.path):
            try:
                current = self.path.read_bytes()
            except OSError as e:
                raise IoFailure(self.path, str(e), e) from e
            if current != self.original:
                raise ConcurrentWriteLost(self.path)
            atomic_write_bytes(self.path, data)
        logger.debug(f"Patched {len(anchors)} inline snapshot(s) in {self.path}")
        return anchors
