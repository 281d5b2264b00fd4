"""Tests for the canonical value serializer."""

import datetime
import decimal
import enum
import logging
import subprocess
import sys
import uuid
from collections import namedtuple
from dataclasses import dataclass, field
from pathlib import PurePosixPath

import numpy as np
import pytest

from snapcheck.serializer import Mapping, Opaque, Record, Scalar, Sequence, serialize, to_tree


@dataclass
class Point:
    x: int
    y: float


@dataclass
class Empty:
    pass


@dataclass
class Tree:
    name: str
    children: list = field(default_factory=list)


class Color(enum.Enum):
    RED = 1
    GREEN = 2


Pair = namedtuple("Pair", ["left", "right"])


class Money:
    def __init__(self, amount, currency):
        self.amount = amount
        self.currency = currency

    def __snapshot__(self):
        return f"{self.amount} {self.currency}"


class Broken:
    def __snapshot__(self):
        raise RuntimeError("no snapshot today")

    def __repr__(self):
        return "<Broken>"


class Plain:
    def __init__(self):
        self.a = 1
        self.b = [True, None]


class TestScalars:
    """Tests for scalar rendering."""

    def test_none_and_bools(self):
        """Test None and booleans."""
        assert serialize(None) == "~"
        assert serialize(True) == "true"
        assert serialize(False) == "false"

    def test_numbers(self):
        """Test ints and floats use their shortest exact text."""
        assert serialize(42) == "42"
        assert serialize(-7) == "-7"
        assert serialize(0.1) == "0.1"
        assert serialize(1e100) == "1e+100"
        assert serialize(2.0) == "2.0"

    def test_special_floats(self):
        """Test NaN and infinities."""
        assert serialize(float("nan")) == ".nan"
        assert serialize([float("inf"), float("-inf")]) == "- .inf\n- -.inf"

    def test_strings_are_quoted(self):
        """Test one-line strings use JSON escaping and keep non-ASCII."""
        assert serialize("hi") == '"hi"'
        assert serialize('say "x"') == '"say \\"x\\""'
        assert serialize("tab\there") == '"tab\\there"'
        assert serialize("café") == '"café"'

    def test_multiline_strings_use_blocks(self):
        """Test block string forms."""
        assert serialize("a\nb") == "|-\n  a\n  b"
        assert serialize("a\nb\n") == "|\n  a\n  b"

    def test_multiline_with_trailing_spaces_stays_quoted(self):
        """Test strings whose whitespace would be normalised away are quoted."""
        assert serialize("a \nb") == '"a \\nb"'

    def test_bool_is_not_an_int(self):
        """Test bools inside containers."""
        assert serialize([1, True]) == "- 1\n- true"


class TestContainers:
    """Tests for sequences and mappings."""

    def test_list(self):
        """Test list rendering."""
        assert serialize([1, "two", None]) == '- 1\n- "two"\n- ~'

    def test_empty_containers(self):
        """Test empty containers are rendered inline."""
        assert serialize([]) == "[]"
        assert serialize({}) == "{}"
        assert serialize({"items": []}) == "items: []"

    def test_dict_keeps_insertion_order(self):
        """Test dict order is preserved by default."""
        assert serialize({"b": 1, "a": 2}) == "b: 1\na: 2"

    def test_sort_maps(self):
        """Test sort_maps orders keys."""
        assert serialize({"b": 1, "a": 2}, sort_maps=True) == "a: 2\nb: 1"

    def test_nested_mapping(self):
        """Test nested mappings and sequences are indented by two spaces."""
        value = {"a": 1, "b": {"c": [1, 2]}}
        expected = "a: 1\nb:\n  c:\n    - 1\n    - 2"
        assert serialize(value) == expected

    def test_mapping_inside_sequence(self):
        """Test the compact form of mappings inside sequences."""
        assert serialize([{"a": 1, "b": 2}]) == "- a: 1\n  b: 2"

    def test_nested_sequences(self):
        """Test sequences inside sequences."""
        assert serialize([[1, 2], [3]]) == "- - 1\n  - 2\n- - 3"

    def test_block_string_in_mapping(self):
        """Test multi-line values inside a mapping."""
        assert serialize({"text": "x\ny"}) == "text: |-\n  x\n  y"

    def test_sets_are_sorted(self):
        """Test sets render in a stable order."""
        assert serialize({3, 1, 2}) == "- 1\n- 2\n- 3"
        assert serialize(frozenset({"b", "a"})) == '- "a"\n- "b"'

    def test_tuple_is_a_sequence(self):
        """Test plain tuples."""
        assert serialize((1, 2)) == "- 1\n- 2"

    def test_key_quoting(self):
        """Test keys that are not plain identifiers are quoted."""
        assert serialize({"has space": 1}) == '"has space": 1'
        assert serialize({"true": 1}) == '"true": 1'
        assert serialize({1: "a"}) == '1: "a"'


class TestRecords:
    """Tests for dataclasses, named tuples and objects."""

    def test_dataclass(self):
        """Test dataclasses become tagged records."""
        assert serialize(Point(1, 2.5)) == "!Point\n  x: 1\n  y: 2.5"

    def test_empty_dataclass(self):
        """Test records without fields."""
        assert serialize(Empty()) == "!Empty {}"

    def test_nested_dataclass(self):
        """Test records inside records."""
        tree = Tree("root", [Tree("leaf")])
        expected = '!Tree\n  name: "root"\n  children:\n    - !Tree\n      name: "leaf"\n      children: []'
        assert serialize(tree) == expected

    def test_named_tuple(self):
        """Test named tuples keep their field names."""
        assert serialize(Pair(1, 2)) == "!Pair\n  left: 1\n  right: 2"

    def test_plain_object(self):
        """Test objects with attributes."""
        assert serialize(Plain()) == "!Plain\n  a: 1\n  b:\n    - true\n    - ~"

    def test_snapshot_hook(self):
        """Test the __snapshot__ hook."""
        assert serialize(Money(5, "EUR")) == '"5 EUR"'

    def test_registered_type(self):
        """Test users can register their own conversion."""

        class Celsius:
            def __init__(self, degrees):
                self.degrees = degrees

        @to_tree.register(Celsius)
        def _celsius(value):
            return Opaque(f"{value.degrees}C", tag="temp")

        assert serialize([Celsius(21)]) == '- !temp "21C"'


class TestOpaqueLeaves:
    """Tests for values rendered through a debug representation."""

    def test_bytes(self):
        """Test bytes render as hex."""
        assert serialize(b"\x00\xff") == '!bytes "00ff"'

    def test_enum(self):
        """Test enum members."""
        assert serialize(Color.RED) == '!enum "Color.RED"'

    def test_path(self):
        """Test paths render with forward slashes."""
        assert serialize(PurePosixPath("a/b.txt")) == '!path "a/b.txt"'

    def test_temporal(self):
        """Test dates and datetimes."""
        assert serialize(datetime.date(2024, 1, 2)) == '!date "2024-01-02"'
        assert serialize(datetime.datetime(2024, 1, 2, 3, 4, 5)) == '!datetime "2024-01-02T03:04:05"'

    def test_decimal_and_uuid(self):
        """Test decimals keep their exponent and UUIDs their canonical text."""
        assert serialize(decimal.Decimal("1.50")) == '!decimal "1.50"'
        value = uuid.UUID("12345678-1234-5678-1234-567812345678")
        assert serialize(value) == '!uuid "12345678-1234-5678-1234-567812345678"'

    def test_callable(self):
        """Test functions render by qualified name."""
        assert serialize(serialize) == '!callable "snapcheck.serializer.serialize"'


class TestNumpy:
    """Tests for numpy values."""

    def test_array(self):
        """Test arrays become records with dtype, shape and data."""
        value = np.array([[1, 2], [3, 4]], dtype=np.int64)
        expected = (
            "!ndarray\n"
            '  dtype: "int64"\n'
            "  shape:\n"
            "    - 2\n"
            "    - 2\n"
            "  data:\n"
            "    - - 1\n"
            "      - 2\n"
            "    - - 3\n"
            "      - 4"
        )
        assert serialize(value) == expected

    def test_numpy_scalars(self):
        """Test numpy scalars behave like Python numbers."""
        assert serialize(np.float64(1.5)) == "1.5"
        assert serialize(np.int32(3)) == "3"
        assert serialize(np.bool_(True)) == "true"


class TestRobustness:
    """Tests for values that cannot be fully represented."""

    def test_cycle(self):
        """Test self-referencing containers terminate."""
        value = []
        value.append(value)
        assert serialize(value) == '- !repr "<recursion on list>"'

    def test_shared_reference_is_not_a_cycle(self):
        """Test the same object appearing twice is rendered twice."""
        shared = [1]
        assert serialize([shared, shared]) == "- - 1\n- - 1"

    def test_failing_hook_degrades(self, caplog):
        """Test a failing __snapshot__ hook becomes a debug leaf and logs a warning."""
        with caplog.at_level(logging.WARNING, logger="snapcheck"):
            assert serialize([Broken()]) == '- !repr "<Broken>"'
        assert "Cannot serialize Broken" in caplog.text

    def test_generator(self, caplog):
        """Test iterators are not consumed."""
        with caplog.at_level(logging.WARNING, logger="snapcheck"):
            text = serialize(x for x in range(3))
        assert text.startswith("!repr ")
        assert "iterators cannot be snapshotted" in caplog.text


class TestDeterminism:
    """Tests that equal values give identical text."""

    def test_repeated_serialization(self):
        """Test serializing the same value twice."""
        value = {"set": {"b", "a", "c"}, "point": Point(1, 0.1), "when": datetime.date(2020, 5, 1)}
        assert serialize(value) == serialize(value)

    def test_equal_sets_in_different_order(self):
        """Test set contents do not depend on insertion order."""
        assert serialize({"x", "y", "z"}) == serialize({"z", "y", "x"})

    @pytest.mark.parametrize("sort_maps", [False, True])
    def test_node_trees_render_directly(self, sort_maps):
        """Test prebuilt node trees are rendered as given."""
        tree = Mapping(((Scalar("k"), Sequence((Scalar(1),))), (Scalar("r"), Record("R", ()))))
        assert serialize(tree, sort_maps=sort_maps) == "k:\n  - 1\nr: !R {}"

    def test_default_repr_has_no_address(self):
        """Test object reprs drop the memory address."""
        assert serialize([object()]) == '- !repr "<object object>"'

    def test_same_text_across_processes(self):
        """Test a fresh interpreter produces identical text."""
        code = "from snapcheck.serializer import serialize; print(serialize([object(), {'k': {2, 1}}]))"
        outputs = [
            subprocess.run([sys.executable, "-c", code], capture_output=True, text=True, check=True).stdout
            for _ in range(2)
        ]
        assert outputs[0] == outputs[1]
        assert "0x" not in outputs[0]
