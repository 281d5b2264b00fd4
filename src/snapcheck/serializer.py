"""
Canonical serializer for snapshot values.

Arbitrary Python values are first converted into a small closed tree of
nodes (``Scalar``, ``Sequence``, ``Mapping``, ``Record``, ``Opaque``) and the
tree is then rendered into a block-style text that is stable across runs,
platforms and interpreter restarts.
"""
from __future__ import annotations

import dataclasses
import datetime
import decimal
import enum
import functools
import json
import logging
import math
import re
import uuid
from collections.abc import Mapping as MappingABC
from collections.abc import Set as SetABC
from contextvars import ContextVar
from dataclasses import dataclass
from pathlib import PurePath
from typing import Any, Optional, Union

import numpy as np

from .errors import SerializationGap

logger = logging.getLogger(__name__)

# Fixed; reference files never depend on caller settings
INDENT = "  "

_PLAIN_KEY = re.compile(r"^[A-Za-z_][A-Za-z0-9_.-]*$")
_RESERVED_KEYS = {"true", "false", "null", "~"}
_BLOCK_UNSAFE = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")
_ADDRESS = re.compile(r" at 0x[0-9a-fA-F]+")


@dataclass(frozen=True)
class Scalar:
    """None, bool, int, float or str."""

    value: Union[None, bool, int, float, str]


@dataclass(frozen=True)
class Sequence:
    items: tuple = ()
    unordered: bool = False


@dataclass(frozen=True)
class Mapping:
    entries: tuple = ()  # tuple of (key node, value node)
    unordered: bool = False


@dataclass(frozen=True)
class Record:
    """A named structure whose field order is part of the snapshot."""

    name: str
    fields: tuple = ()  # tuple of (field name, value node)


@dataclass(frozen=True)
class Opaque:
    """A leaf rendered from a textual representation, e.g. ``!repr "<obj>"``."""

    text: str
    tag: str = "repr"


Node = Union[Scalar, Sequence, Mapping, Record, Opaque]
NODE_TYPES = (Scalar, Sequence, Mapping, Record, Opaque)

_active: ContextVar[frozenset] = ContextVar("snapcheck_active", default=frozenset())


def _gap(value: Any, reason: str) -> Opaque:
    gap = SerializationGap(type(value).__name__, reason)
    logger.warning(str(gap))
    return Opaque(_safe_repr(value))


def _safe_repr(value: Any) -> str:
    """``repr`` without memory addresses, which change on every run."""
    try:
        text = repr(value)
    except Exception as e:
        text = f"<{type(value).__name__} object (repr failed: {e})>"
    return _ADDRESS.sub("", text)


def _convert(value: Any) -> Node:
    """Convert a child value, guarding against cycles and failing hooks."""
    if isinstance(value, NODE_TYPES):
        return value
    key = id(value)
    active = _active.get()
    if key in active:
        return Opaque(f"<recursion on {type(value).__name__}>")
    token = _active.set(active | {key})
    try:
        return to_tree(value)
    except RecursionError:
        return _gap(value, "nesting too deep")
    except Exception as e:
        return _gap(value, str(e))
    finally:
        _active.reset(token)


@functools.singledispatch
def to_tree(value: Any) -> Node:
    """Convert a value into a serializer node.

    Register additional types with ``@to_tree.register``. Objects may also
    define ``__snapshot__()`` returning either a node or a plain value.
    """
    hook = getattr(type(value), "__snapshot__", None)
    if hook is not None:
        result = hook(value)
        return result if isinstance(result, NODE_TYPES) else _convert(result)

    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return Record(
            type(value).__name__,
            tuple((f.name, _convert(getattr(value, f.name))) for f in dataclasses.fields(value)),
        )

    if isinstance(value, MappingABC):
        return Mapping(tuple((_convert(k), _convert(v)) for k, v in value.items()))

    if isinstance(value, SetABC):
        return Sequence(tuple(_convert(v) for v in value), unordered=True)

    # Generators and other one-shot iterators cannot be captured without consuming them
    if hasattr(value, "__iter__") and hasattr(value, "__next__"):
        return _gap(value, "iterators cannot be snapshotted")

    if callable(value) or isinstance(value, type):
        name = getattr(value, "__qualname__", None) or type(value).__name__
        return Opaque(f"{getattr(value, '__module__', '')}.{name}", tag="callable")

    if hasattr(value, "__dict__") and vars(value):
        return Record(
            type(value).__name__,
            tuple((k, _convert(v)) for k, v in vars(value).items()),
        )

    return Opaque(_safe_repr(value))


@to_tree.register(type(None))
def _none_to_tree(value: None) -> Node:
    return Scalar(None)


@to_tree.register(bool)
def _bool_to_tree(value: bool) -> Node:
    return Scalar(bool(value))


@to_tree.register(int)
def _int_to_tree(value: int) -> Node:
    if isinstance(value, enum.Enum):
        return _enum_to_tree(value)
    return Scalar(int(value))


@to_tree.register(float)
def _float_to_tree(value: float) -> Node:
    if isinstance(value, enum.Enum):
        return _enum_to_tree(value)
    return Scalar(float(value))


@to_tree.register(str)
def _str_to_tree(value: str) -> Node:
    if isinstance(value, enum.Enum):
        return _enum_to_tree(value)
    return Scalar(str(value))


@to_tree.register(bytes)
@to_tree.register(bytearray)
@to_tree.register(memoryview)
def _bytes_to_tree(value) -> Node:
    return Opaque(bytes(value).hex(), tag="bytes")


@to_tree.register(complex)
def _complex_to_tree(value: complex) -> Node:
    return Opaque(repr(value), tag="complex")


@to_tree.register(enum.Enum)
def _enum_to_tree(value: enum.Enum) -> Node:
    return Opaque(f"{type(value).__name__}.{value.name}", tag="enum")


@to_tree.register(list)
def _list_to_tree(value: list) -> Node:
    return Sequence(tuple(_convert(v) for v in value))


@to_tree.register(tuple)
def _tuple_to_tree(value: tuple) -> Node:
    fields = getattr(type(value), "_fields", None)
    if fields is not None:
        # Named tuple
        return Record(type(value).__name__, tuple((f, _convert(v)) for f, v in zip(fields, value)))
    return Sequence(tuple(_convert(v) for v in value))


@to_tree.register(dict)
def _dict_to_tree(value: dict) -> Node:
    return Mapping(tuple((_convert(k), _convert(v)) for k, v in value.items()))


@to_tree.register(set)
@to_tree.register(frozenset)
def _set_to_tree(value) -> Node:
    return Sequence(tuple(_convert(v) for v in value), unordered=True)


@to_tree.register(PurePath)
def _path_to_tree(value: PurePath) -> Node:
    return Opaque(value.as_posix(), tag="path")


@to_tree.register(datetime.date)
@to_tree.register(datetime.time)
def _temporal_to_tree(value) -> Node:
    # datetime.datetime subclasses date
    return Opaque(value.isoformat(), tag=type(value).__name__)


@to_tree.register(datetime.timedelta)
def _timedelta_to_tree(value: datetime.timedelta) -> Node:
    return Opaque(repr(value.total_seconds()), tag="timedelta")


@to_tree.register(decimal.Decimal)
def _decimal_to_tree(value: decimal.Decimal) -> Node:
    return Opaque(str(value), tag="decimal")


@to_tree.register(uuid.UUID)
def _uuid_to_tree(value: uuid.UUID) -> Node:
    return Opaque(str(value), tag="uuid")


@to_tree.register(np.ndarray)
def _ndarray_to_tree(value: np.ndarray) -> Node:
    return Record(
        "ndarray",
        (
            ("dtype", Scalar(str(value.dtype))),
            ("shape", Sequence(tuple(Scalar(int(n)) for n in value.shape))),
            ("data", _convert(value.tolist())),
        ),
    )


@to_tree.register(np.generic)
def _numpy_scalar_to_tree(value: np.generic) -> Node:
    return _convert(value.item())


def format_float(value: float) -> str:
    """Shortest round-trippable float text."""
    if math.isnan(value):
        return ".nan"
    if math.isinf(value):
        return ".inf" if value > 0 else "-.inf"
    return repr(value)


def quote(text: str) -> str:
    """The single canonical escaping scheme for one-line strings."""
    ascii_only = any(0xD800 <= ord(c) <= 0xDFFF for c in text)
    return json.dumps(text, ensure_ascii=ascii_only)


def _is_block_string(text: str) -> bool:
    if "\n" not in text or "\r" in text or _BLOCK_UNSAFE.search(text):
        return False
    # Trailing whitespace would be lost by comparison normalisation
    return all(line == line.rstrip() for line in text.split("\n"))


class _Renderer:
    def __init__(self, sort_maps: bool = False):
        self.sort_maps = sort_maps

    def lines(self, node: Node) -> list[str]:
        text = self.inline(node)
        if text is not None:
            return [text]
        header, body = self.block(node)
        if header:
            return [header] + [INDENT + line if line else line for line in body]
        return body

    def inline(self, node: Node) -> Optional[str]:
        if isinstance(node, Scalar):
            if isinstance(node.value, str) and _is_block_string(node.value):
                return None
            return self.scalar(node.value)
        if isinstance(node, Opaque):
            return f"!{node.tag} {quote(node.text)}"
        if isinstance(node, Sequence) and not node.items:
            return "[]"
        if isinstance(node, Mapping) and not node.entries:
            return "{}"
        if isinstance(node, Record) and not node.fields:
            return f"!{node.name} {{}}"
        return None

    def scalar(self, value) -> str:
        if value is None:
            return "~"
        if value is True:
            return "true"
        if value is False:
            return "false"
        if isinstance(value, float):
            return format_float(value)
        if isinstance(value, int):
            return str(value)
        return quote(value)

    def block(self, node: Node) -> tuple[str, list[str]]:
        if isinstance(node, Scalar):
            return self._block_string(node.value)
        if isinstance(node, Sequence):
            body: list[str] = []
            for item in self._ordered_items(node):
                self._append(body, "-", "- ", item)
            return "", body
        if isinstance(node, Mapping):
            body = []
            for key, value in self._ordered_entries(node):
                self._append(body, f"{key}:", f"{key}: ", value)
            return "", body
        body = []
        for name, value in node.fields:
            self._append(body, f"{self.key_text(Scalar(name))}:", f"{self.key_text(Scalar(name))}: ", value)
        return f"!{node.name}", body

    def _append(self, body: list[str], bare: str, prefix: str, child: Node) -> None:
        text = self.inline(child)
        if text is not None:
            body.append(prefix + text)
            return
        header, child_body = self.block(child)
        if header:
            body.append(prefix + header)
            body.extend(INDENT + line if line else line for line in child_body)
        elif bare == "-":
            # Compact form: "- a: 1" with continuation lines aligned under "a"
            body.append(prefix + child_body[0])
            body.extend(INDENT + line if line else line for line in child_body[1:])
        else:
            body.append(bare)
            body.extend(INDENT + line if line else line for line in child_body)

    def _block_string(self, text: str) -> tuple[str, list[str]]:
        if text.endswith("\n\n"):
            return "|+", text[:-1].split("\n")
        if text.endswith("\n"):
            return "|", text[:-1].split("\n")
        return "|-", text.split("\n")

    def _ordered_items(self, node: Sequence) -> list[Node]:
        if node.unordered:
            return sorted(node.items, key=self.flow)
        return list(node.items)

    def _ordered_entries(self, node: Mapping) -> list[tuple[str, Node]]:
        entries = [(self.key_text(k), v) for k, v in node.entries]
        if node.unordered or self.sort_maps:
            entries.sort(key=lambda entry: entry[0])
        return entries

    def key_text(self, node: Node) -> str:
        if (
            isinstance(node, Scalar)
            and isinstance(node.value, str)
            and _PLAIN_KEY.match(node.value)
            and node.value.lower() not in _RESERVED_KEYS
        ):
            return node.value
        return self.flow(node)

    def flow(self, node: Node) -> str:
        """Single-line rendering used for keys and for sorting."""
        if isinstance(node, Scalar):
            return self.scalar(node.value)
        if isinstance(node, Opaque):
            return f"!{node.tag} {quote(node.text)}"
        if isinstance(node, Sequence):
            return "[" + ", ".join(self.flow(item) for item in self._ordered_items(node)) + "]"
        if isinstance(node, Mapping):
            parts = [f"{k}: {self.flow(v)}" for k, v in self._ordered_entries(node)]
            return "{" + ", ".join(parts) + "}"
        parts = [f"{self.key_text(Scalar(name))}: {self.flow(v)}" for name, v in node.fields]
        return f"!{node.name} {{" + ", ".join(parts) + "}"


def render(node: Node, sort_maps: bool = False) -> str:
    """Render a node tree into canonical snapshot text (no trailing newline)."""
    return "\n".join(_Renderer(sort_maps).lines(node))


def serialize(value: Any, sort_maps: bool = False) -> str:
    """Serialize any value into canonical snapshot text. Never raises."""
    return render(_convert(value), sort_maps=sort_maps)
