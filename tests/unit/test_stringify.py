import collections
import enum
import io
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import List, Optional

import pytest

import json_codec as jc
from json_codec import FieldSelection
from json_descriptor import json_field, register


class Color(enum.Enum):
    RED = "red"


@dataclass
class Nested:
    Nested: float = 0.0


@dataclass
class Sample:
    Foo: str = json_field("Foo", default="")
    Baz: bool = False
    Xam: Optional[Nested] = None


@dataclass
class Mapped:
    name: str = json_field("Name", default="")
    note: str = json_field(default="")
    internal: int = 0


class Account:
    def __init__(self, owner="", balance=0):
        self.owner = owner
        self.balance = balance

    @property
    def label(self):
        return f"{self.owner}:{self.balance}"


register(Account, {"owner": "Owner", "balance": None, "label": "Label"})


@pytest.mark.parametrize("value, expected", [
    ("foo", '"foo"'),
    ("foo\bbar", '"foo\\bbar"'),
    ("foo\fbar", '"foo\\fbar"'),
    ("foo\nbar", '"foo\\nbar"'),
    ("foo\rbar", '"foo\\rbar"'),
    ("foo\tbar", '"foo\\tbar"'),
    ("foo\abar", '"foo\\abar"'),
    ("foo\vbar", '"foo\\vbar"'),
    ("foo\\bar", '"foo\\\\bar"'),
    ('say "hi"', '"say \\"hi\\""'),
    ("café/\x01", '"café/\x01"'),
])
def test_stringify_strings(value, expected):
    assert jc.stringify(value) == expected


@pytest.mark.parametrize("value, expected", [
    (None, "null"),
    (True, "true"),
    (False, "false"),
    (10, "10"),
    (-5, "-5"),
    (55.7, "55.7"),
    (10.5, "10.5"),
    (Decimal("1.50"), "1.50"),
    (float("nan"), "null"),
    (float("inf"), "null"),
    (Color.RED, '"red"'),
])
def test_stringify_value_types(value, expected):
    assert jc.stringify(value) == expected


def test_stringify_datetime_is_utc_millis():
    tz = timezone(timedelta(hours=2))
    assert jc.stringify(datetime(2013, 5, 4, 12, 0, 0, 250000, tzinfo=tz)) == '"2013-05-04T10:00:00.250Z"'


def test_stringify_record():
    value = Sample(Foo="bar", Baz=False, Xam=Nested(10.5))
    assert jc.stringify(value) == '{"Foo":"bar","Baz":false,"Xam":{"Nested":10.5}}'


def test_stringify_anonymous_object():
    value = SimpleNamespace(Foo="bar", Baz=False, Xam=SimpleNamespace(Nested=10.5))
    assert jc.stringify(value) == '{"Foo":"bar","Baz":false,"Xam":{"Nested":10.5}}'


def test_stringify_mapping_in_order():
    value = {"Ten": 10, "Hoopla": True, "Monkey": "Awesome"}
    assert jc.stringify(value) == '{"Ten":10,"Hoopla":true,"Monkey":"Awesome"}'


def test_stringify_non_string_keys_are_quoted():
    assert jc.stringify({1: 2, 4: 3}) == '{"1":2,"4":3}'
    assert jc.stringify({True: None, Color.RED: 1}) == '{"true":null,"red":1}'


def test_stringify_sequences():
    assert jc.stringify([1, 2, 4, 3]) == "[1,2,4,3]"
    assert jc.stringify((1, 2)) == "[1,2]"
    assert jc.stringify(["hello", 10, SimpleNamespace(hi=5)]) == '["hello",10,{"hi":5}]'
    assert jc.stringify(collections.deque([[], {}])) == "[[],{}]"
    assert jc.stringify(x * 2 for x in range(3)) == "[0,2,4]"


def test_field_selection_modes():
    value = Mapped(name="n", note="x", internal=7)
    assert jc.stringify(value) == '{"Name":"n","note":"x","internal":7}'
    assert jc.stringify(value, FieldSelection.ONLY_BOUND_FIELDS) == '{"Name":"n","note":"x"}'


def test_only_bound_fields_applies_to_nested_records():
    value = [Mapped(name="a"), {"k": Mapped(name="b")}]
    assert jc.stringify(value, FieldSelection.ONLY_BOUND_FIELDS) == \
        '[{"Name":"a","note":""},{"k":{"Name":"b","note":""}}]'


def test_registered_class_emits_read_only_property():
    assert jc.stringify(Account("ann", 3)) == '{"Owner":"ann","balance":3,"Label":"ann:3"}'


def test_mapping_key_is_escaped():
    assert jc.stringify({'a"b': 1}) == '{"a\\"b":1}'


def test_cyclic_list_raises():
    items: List = [1]
    items.append(items)
    with pytest.raises(jc.CyclicReferenceError):
        jc.stringify(items)


def test_cyclic_record_raises():
    node = SimpleNamespace(name="loop")
    node.self = node
    with pytest.raises(jc.CyclicReferenceError):
        jc.stringify(node)


def test_shared_reference_is_not_a_cycle():
    shared = [1]
    assert jc.stringify([shared, shared]) == "[[1],[1]]"


def test_stringify_to_sink():
    sink = io.StringIO()
    jc.stringify_to({"a": [1, None]}, sink)
    assert sink.getvalue() == '{"a":[1,null]}'
