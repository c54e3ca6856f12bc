# src/trackscan/scan/syntax.py
"""
Language-neutral call-expression tree produced by the syntax adapters.

An adapter turns one source file into a `SyntaxTree`: every call expression in
source (pre-)order, plus the scopes and name bindings needed to tell which object
a method is called on. Nothing here is mutated after the adapter returns.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from .discovery import Language

# (line, column), both 1-based
Position = Tuple[int, int]


# ==============================================================================
# Expressions
# ==============================================================================


class ExprKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    NULL = "null"
    LIST = "list"
    MAPPING = "mapping"
    NAME = "name"            # identifier or dotted attribute chain
    CALL = "call"
    OTHER = "other"          # anything else: arithmetic, f-strings, lambdas, ...


@dataclass(frozen=True)
class Expr:
    """
    One argument expression.

      - scalars carry `value` (str / int / float / bool / None)
      - LIST carries `items`
      - MAPPING carries `entries`; a key of None marks a computed key or a spread
      - NAME carries `dotted` ("a.b.c")
      - CALL carries `call`
    `text` is always the verbatim source of the expression.
    """
    kind: ExprKind
    text: str
    value: object = None
    items: Tuple["Expr", ...] = ()
    entries: Tuple[Tuple[Optional[str], "Expr"], ...] = ()
    dotted: Optional[str] = None
    call: Optional["CallNode"] = None


# ==============================================================================
# Calls
# ==============================================================================


class CalleeKind(str, Enum):
    NAME = "name"              # track(...)
    ATTRIBUTE = "attribute"    # client.track(...), a.b.track(...)
    CONSTRUCTED = "constructed"  # Client(...).track(...)
    OTHER = "other"            # (get_fn())(...), handlers[0](...)


@dataclass(frozen=True)
class Callee:
    """
    `path` is the dotted chain as written. For CONSTRUCTED callees it is the part
    after the receiver call (("track",) for `Client(k).track`) and `receiver` holds
    the constructing call.
    """
    kind: CalleeKind
    path: Tuple[str, ...] = ()
    receiver: Optional["CallNode"] = None
    text: str = ""

    @property
    def dotted(self) -> Optional[str]:
        if self.kind in (CalleeKind.NAME, CalleeKind.ATTRIBUTE) and self.path:
            return ".".join(self.path)
        return None


@dataclass(frozen=True)
class Argument:
    """A call argument. `star` is "*" / "**" for unpacked arguments, "" otherwise."""
    value: Expr
    keyword: Optional[str] = None
    star: str = ""


@dataclass(frozen=True)
class CallNode:
    callee: Callee
    arguments: Tuple[Argument, ...]
    position: Position
    scope: int
    text: str
    function: str = "global"   # innermost enclosing function name


# ==============================================================================
# Scopes & bindings
# ==============================================================================


class ScopeKind(str, Enum):
    MODULE = "module"
    CLASS = "class"
    FUNCTION = "function"


@dataclass(frozen=True)
class Scope:
    id: int
    kind: ScopeKind
    name: str
    parent: Optional[int]


class BindingKind(str, Enum):
    IMPORT = "import"            # import a.b as x / const x = require("m")
    CONSTRUCTED = "constructed"  # x = Client(...) / const x = new Client()
    REFERENCE = "reference"      # x = a.b


@dataclass(frozen=True)
class Binding:
    """
    `name` is bound to `target` in `scope`.

      - IMPORT: target is the fully qualified module/member path
      - CONSTRUCTED / REFERENCE: target is the dotted callee/value text as written,
        to be resolved at `target_position`

    The binding is visible to code starting at or after `position` (end of the
    binding statement).
    """
    name: str
    kind: BindingKind
    target: str
    scope: int
    position: Position
    target_position: Position


@dataclass(frozen=True)
class SyntaxTree:
    path: str
    language: Language
    calls: Tuple[CallNode, ...]
    scopes: Tuple[Scope, ...]
    bindings: Tuple[Binding, ...]

    def __post_init__(self) -> None:
        index: Dict[Tuple[int, str], Tuple[Binding, ...]] = {}
        for b in self.bindings:
            key = (b.scope, b.name)
            index[key] = index.get(key, ()) + (b,)
        object.__setattr__(self, "_by_scope_name", index)

    def scope(self, scope_id: int) -> Scope:
        return self.scopes[scope_id]

    def lookup(self, name: str, scope_id: int, position: Position) -> Optional[Binding]:
        """
        Find the binding `name` refers to at `position` inside `scope_id`.

        The innermost scope only sees bindings made before `position`. Enclosing
        scopes prefer bindings made before `position`, else their last binding
        (the enclosing code may run before the inner function is called). Class
        scopes are skipped once the search leaves the starting scope.
        """
        index: Dict[Tuple[int, str], Tuple[Binding, ...]] = getattr(self, "_by_scope_name")
        current: Optional[int] = scope_id
        first = True
        while current is not None:
            scope = self.scopes[current]
            if first or scope.kind is not ScopeKind.CLASS:
                candidates = index.get((current, name), ())
                before = [b for b in candidates if b.position <= position]
                if before:
                    return before[-1]
                if not first and candidates:
                    return candidates[-1]
            first = False
            current = scope.parent
        return None
