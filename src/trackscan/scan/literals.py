# src/trackscan/scan/literals.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from .syntax import Expr, ExprKind


class LiteralKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    NULL = "null"
    LIST = "list"
    MAPPING = "mapping"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class LiteralValue:
    """
    Canonical, language-independent value of an argument.

    `value` holds: str / int / float / bool / None for scalars, a tuple of
    LiteralValue for LIST, a read-only insertion-ordered mapping of
    str -> LiteralValue for MAPPING, and the verbatim source text for UNRESOLVED.
    Values are immutable and hashable all the way down.
    """
    kind: LiteralKind
    value: Any = None

    def __post_init__(self) -> None:
        if self.kind is LiteralKind.MAPPING:
            object.__setattr__(self, "value", MappingProxyType(dict(self.value or {})))
        elif self.kind is LiteralKind.LIST:
            object.__setattr__(self, "value", tuple(self.value or ()))

    def __hash__(self) -> int:
        if self.kind is LiteralKind.MAPPING:
            return hash((self.kind, tuple(self.value.items())))
        return hash((self.kind, self.value))

    # ---- constructors ---------------------------------------------------------

    @classmethod
    def string(cls, value: str) -> "LiteralValue":
        return cls(LiteralKind.STRING, value)

    @classmethod
    def number(cls, value) -> "LiteralValue":
        return cls(LiteralKind.NUMBER, value)

    @classmethod
    def boolean(cls, value: bool) -> "LiteralValue":
        return cls(LiteralKind.BOOLEAN, bool(value))

    @classmethod
    def null(cls) -> "LiteralValue":
        return cls(LiteralKind.NULL, None)

    @classmethod
    def list_of(cls, items) -> "LiteralValue":
        return cls(LiteralKind.LIST, tuple(items))

    @classmethod
    def mapping(cls, entries: Mapping[str, "LiteralValue"]) -> "LiteralValue":
        return cls(LiteralKind.MAPPING, dict(entries))

    @classmethod
    def unresolved(cls, text: str) -> "LiteralValue":
        return cls(LiteralKind.UNRESOLVED, text)

    @classmethod
    def from_python(cls, obj: Any) -> "LiteralValue":
        """Build a value from plain Python data (bool is checked before int)."""
        if isinstance(obj, LiteralValue):
            return obj
        if obj is None:
            return cls.null()
        if isinstance(obj, bool):
            return cls.boolean(obj)
        if isinstance(obj, (int, float)):
            return cls.number(obj)
        if isinstance(obj, str):
            return cls.string(obj)
        if isinstance(obj, (list, tuple)):
            return cls.list_of(cls.from_python(x) for x in obj)
        if isinstance(obj, dict):
            return cls.mapping({str(k): cls.from_python(v) for k, v in obj.items()})
        raise TypeError(f"Unsupported literal type: {type(obj).__name__}")

    # ---- accessors ------------------------------------------------------------

    @property
    def is_unresolved(self) -> bool:
        return self.kind is LiteralKind.UNRESOLVED

    def as_mapping(self) -> Dict[str, "LiteralValue"]:
        if self.kind is not LiteralKind.MAPPING:
            raise TypeError(f"{self.kind.value} literal is not a mapping")
        return dict(self.value)

    def to_dict(self) -> Dict[str, Any]:
        """Tagged plain-data form; mapping order is preserved."""
        if self.kind is LiteralKind.UNRESOLVED:
            return {"type": self.kind.value, "text": self.value}
        if self.kind is LiteralKind.NULL:
            return {"type": self.kind.value}
        if self.kind is LiteralKind.LIST:
            return {"type": self.kind.value, "items": [v.to_dict() for v in self.value]}
        if self.kind is LiteralKind.MAPPING:
            return {"type": self.kind.value, "entries": {k: v.to_dict() for k, v in self.value.items()}}
        return {"type": self.kind.value, "value": self.value}


_SCALARS = {
    ExprKind.STRING: LiteralKind.STRING,
    ExprKind.NUMBER: LiteralKind.NUMBER,
    ExprKind.BOOLEAN: LiteralKind.BOOLEAN,
    ExprKind.NULL: LiteralKind.NULL,
}


def evaluate(expr: Optional[Expr]) -> LiteralValue:
    """
    Reduce an argument expression to a LiteralValue without executing anything.

    Lists and mappings are evaluated element by element; a mapping with a computed
    key or a spread cannot be reduced and becomes Unresolved as a whole. Every
    other expression kind is Unresolved, carrying its source text.
    """
    if expr is None:
        return LiteralValue.unresolved("")

    scalar = _SCALARS.get(expr.kind)
    if scalar is not None:
        return LiteralValue(scalar, expr.value)

    if expr.kind is ExprKind.LIST:
        return LiteralValue.list_of(evaluate(item) for item in expr.items)

    if expr.kind is ExprKind.MAPPING:
        entries = mapping_entries(expr)
        if entries is None:
            return LiteralValue.unresolved(expr.text)
        return LiteralValue.mapping({k: evaluate(v) for k, v in entries})

    return LiteralValue.unresolved(expr.text)


def mapping_entries(expr: Expr) -> Optional[Tuple[Tuple[str, Expr], ...]]:
    """
    Literal key/value pairs of a MAPPING expression, or None when any key is not a
    literal. Duplicate keys keep their first position and their last value.
    """
    split = split_mapping(expr)
    if split is None or split[1]:
        return None
    return split[0]


def split_mapping(expr: Expr) -> Optional[Tuple[Tuple[Tuple[str, Expr], ...], Tuple[str, ...]]]:
    """
    Partition a MAPPING expression into its literal-key entries (deduplicated as in
    `mapping_entries`) and the source text of spread / computed-key entries, both
    in source order. None when the expression is not a mapping.
    """
    if expr.kind is not ExprKind.MAPPING:
        return None
    merged: Dict[str, Expr] = {}
    opaque = []
    for key, value in expr.entries:
        if key is None:
            opaque.append(value.text)
        else:
            merged[key] = value
    return tuple(merged.items()), tuple(opaque)
