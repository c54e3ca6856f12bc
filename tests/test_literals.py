import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from trackscan.scan.events import Origin, SourceLocation, TrackingEvent
from trackscan.scan.literals import LiteralKind, LiteralValue, evaluate, mapping_entries, split_mapping
from trackscan.scan.syntax import Expr, ExprKind


def _s(value: str) -> Expr:
    return Expr(kind=ExprKind.STRING, text=repr(value), value=value)


def _n(value) -> Expr:
    return Expr(kind=ExprKind.NUMBER, text=str(value), value=value)


def test_scalars_map_directly():
    assert evaluate(_s("x")) == LiteralValue.string("x")
    assert evaluate(_n(3)) == LiteralValue.number(3)
    assert evaluate(Expr(kind=ExprKind.BOOLEAN, text="true", value=True)) == LiteralValue.boolean(True)
    assert evaluate(Expr(kind=ExprKind.NULL, text="null")) == LiteralValue.null()


def test_nested_structures_keep_order_and_types():
    inner = Expr(kind=ExprKind.LIST, text="[1, 2, 3]", items=(_n(1), _n(2), _n(3)))
    nested = Expr(kind=ExprKind.MAPPING, text="{'a': [1, 2, 3]}", entries=(("a", inner),))
    outer = Expr(
        kind=ExprKind.MAPPING,
        text="...",
        entries=(("key", _s("value")), ("nested", nested), ("flag", Expr(kind=ExprKind.BOOLEAN, text="True", value=True))),
    )

    value = evaluate(outer)
    assert value.kind is LiteralKind.MAPPING
    assert list(value.value) == ["key", "nested", "flag"]
    a = value.value["nested"].value["a"]
    assert a.kind is LiteralKind.LIST
    assert [v.value for v in a.value] == [1, 2, 3]
    assert all(v.kind is LiteralKind.NUMBER for v in a.value)
    assert value == LiteralValue.from_python({"key": "value", "nested": {"a": [1, 2, 3]}, "flag": True})


def test_non_literals_carry_source_text():
    for kind, text in [
        (ExprKind.NAME, "plan"),
        (ExprKind.CALL, "compute(x)"),
        (ExprKind.OTHER, "f'{x}'"),
        (ExprKind.OTHER, "a + 1"),
    ]:
        assert evaluate(Expr(kind=kind, text=text)) == LiteralValue.unresolved(text)


def test_unresolved_values_inside_structures_do_not_spread():
    mapping = Expr(
        kind=ExprKind.MAPPING,
        text="{'plan': plan}",
        entries=(("plan", Expr(kind=ExprKind.NAME, text="plan", dotted="plan")),),
    )
    value = evaluate(mapping)
    assert value.kind is LiteralKind.MAPPING
    assert value.value["plan"] == LiteralValue.unresolved("plan")


def test_computed_key_makes_mapping_unresolved():
    mapping = Expr(kind=ExprKind.MAPPING, text="{[k]: 1}", entries=((None, _n(1)),))
    assert evaluate(mapping) == LiteralValue.unresolved("{[k]: 1}")
    assert mapping_entries(mapping) is None


def test_duplicate_keys_keep_first_position_last_value():
    mapping = Expr(kind=ExprKind.MAPPING, text="...", entries=(("a", _n(1)), ("b", _n(2)), ("a", _n(3))))
    assert [(k, v.value) for k, v in mapping_entries(mapping)] == [("a", 3), ("b", 2)]


def test_missing_expression_is_empty_unresolved():
    assert evaluate(None) == LiteralValue.unresolved("")


def test_tagged_serialization():
    value = LiteralValue.from_python({"n": None, "l": [1.5, "x"], "b": False})
    assert value.to_dict() == {
        "type": "mapping",
        "entries": {
            "n": {"type": "null"},
            "l": {"type": "list", "items": [{"type": "number", "value": 1.5}, {"type": "string", "value": "x"}]},
            "b": {"type": "boolean", "value": False},
        },
    }
    assert LiteralValue.unresolved("x.y").to_dict() == {"type": "unresolved", "text": "x.y"}


def test_from_python_rejects_unknown_types():
    with pytest.raises(TypeError):
        LiteralValue.from_python({1, 2})


def test_as_mapping_requires_mapping():
    with pytest.raises(TypeError):
        LiteralValue.string("x").as_mapping()


def test_split_mapping_keeps_literal_entries_beside_spreads():
    spread = Expr(kind=ExprKind.OTHER, text="**base")
    mapping = Expr(kind=ExprKind.MAPPING, text="...", entries=((None, spread), ("plan", _s("pro")), ("n", _n(1))))
    entries, opaque = split_mapping(mapping)
    assert [(k, v.value) for k, v in entries] == [("plan", "pro"), ("n", 1)]
    assert opaque == ("**base",)
    assert split_mapping(_s("x")) is None


def test_mapping_values_are_read_only_and_hashable():
    value = LiteralValue.from_python({"a": [1, 2], "b": {"c": None}})
    with pytest.raises(TypeError):
        value.value["a"] = LiteralValue.number(3)
    assert hash(value) == hash(LiteralValue.from_python({"a": [1, 2], "b": {"c": None}}))
    assert len({value, LiteralValue.from_python({"a": [1, 2], "b": {"c": None}})}) == 1


def test_events_are_hashable_with_read_only_properties():
    props = {"plan": LiteralValue.string("pro")}
    event = TrackingEvent(
        location=SourceLocation("a.py", 1, 1),
        origin=Origin.custom("track"),
        event_name=LiteralValue.string("e"),
        user_id=None,
        properties=props,
        unresolved_entries=["**base"],
    )
    props["late"] = LiteralValue.number(1)
    assert list(event.properties) == ["plan"]
    with pytest.raises(TypeError):
        event.properties["x"] = LiteralValue.null()
    assert event.unresolved_entries == ("**base",)
    assert hash(event) == hash(
        TrackingEvent(
            location=SourceLocation("a.py", 1, 1),
            origin=Origin.custom("track"),
            event_name=LiteralValue.string("e"),
            user_id=None,
            properties={"plan": LiteralValue.string("pro")},
            unresolved_entries=("**base",),
        )
    )
