# src/trackscan/scan/ruby_driver.py
from __future__ import annotations

from typing import List, Optional, Tuple

from .syntax import (
    Argument,
    BindingKind,
    Callee,
    CalleeKind,
    CallNode,
    Expr,
    ExprKind,
    ScopeKind,
)
from .treesitter_base import TreeBuilder, TreeSitterDriver, load_grammar
from .treesitter_base import named as _named

_METHODS = frozenset({"method", "singleton_method"})
_BLOCKS = frozenset({"block", "do_block", "lambda"})
_CLASSES = frozenset({"class", "module", "singleton_class"})

# receivers written as `A::B` or `a.b` flatten to "A.B" / "a.b"
_NAMES = frozenset({
    "identifier",
    "constant",
    "self",
    "instance_variable",
    "class_variable",
    "global_variable",
})

_ESCAPES = {
    "n": "\n", "t": "\t", "r": "\r", "s": " ", "0": "\0", "e": "\x1b",
    "a": "\a", "b": "\b", "f": "\f", "v": "\v",
}


def _escape(seq: str) -> str:
    """Decode one escape_sequence node (`\\n`, `\\u00e9`, `\\x41`, `\\101`, ...)."""
    body = seq[1:]
    if not body:
        return seq
    head = body[0]
    try:
        if head == "u":
            digits = body[1:].strip("{}")
            return "".join(chr(int(d, 16)) for d in digits.split())
        if head == "x":
            return chr(int(body[1:], 16))
        if head.isdigit() and head not in "89" and len(body) > 1:
            return chr(int(body, 8))
    except ValueError:
        return seq
    return _ESCAPES.get(head, body)


def _integer(text: str) -> Optional[int]:
    t = text.replace("_", "").lower()
    sign = -1 if t.startswith("-") else 1
    t = t.lstrip("+-")
    try:
        if t.startswith("0d"):
            return sign * int(t[2:], 10)
        if len(t) > 1 and t.startswith("0") and t.isdigit():
            return sign * int(t, 8)
        return sign * int(t, 0)
    except ValueError:
        return None


# -----------------------------------------------------------------------------
# Tree → call tree
# -----------------------------------------------------------------------------


class _RubyTreeBuilder(TreeBuilder):
    """
    Ruby calls in source order. Bare `key: value` pairs at the end of an
    argument list become one trailing mapping argument, which is what the
    callee receives. `'x'.freeze` reads as the string itself.
    """

    def _enter(self, node) -> None:
        t = node.type
        if t in _METHODS:
            name = node.child_by_field_name("name")
            self._push_scope(ScopeKind.FUNCTION, self._text(name) if name is not None else "anonymous")
        elif t in _BLOCKS:
            self._push_scope(ScopeKind.FUNCTION, "block")
        elif t in _CLASSES:
            name = node.child_by_field_name("name")
            self._push_scope(ScopeKind.CLASS, self._text(name) if name is not None else "anonymous")
        elif t == "call" and node.child_by_field_name("arguments") is not None:
            self.calls.append(self._call_node(node))
        elif t == "assignment":
            left = node.child_by_field_name("left")
            right = node.child_by_field_name("right")
            if left is not None and left.type in ("identifier", "constant") and right is not None:
                self._bind_value(self._text(left), right, node)

    def _leave(self, node) -> None:
        if node.type in _METHODS or node.type in _BLOCKS or node.type in _CLASSES:
            self._scope_stack.pop()

    def _enclosing(self, node) -> str:
        """Innermost `def` name; blocks and lambdas report the method around them."""
        parent = node.parent
        while parent is not None:
            if parent.type in _METHODS:
                name = parent.child_by_field_name("name")
                if name is not None:
                    return self._text(name)
            parent = parent.parent
        return "global"

    # ---- bindings ----------------------------------------------------------------

    def _bind_value(self, name: str, value, stmt) -> None:
        value = self._strip(value)
        if value.type == "call":
            callee = self._callee(value)
            has_args = value.child_by_field_name("arguments") is not None
            if callee.kind in (CalleeKind.NAME, CalleeKind.ATTRIBUTE) and (has_args or callee.path[-1] == "new"):
                self._bind(name, BindingKind.CONSTRUCTED, ".".join(callee.path), stmt)
                return
        dotted = self._dotted(value)
        if dotted and dotted != name:
            self._bind(name, BindingKind.REFERENCE, dotted, stmt)

    # ---- calls -----------------------------------------------------------------

    def _strip(self, node):
        while node is not None and node.type == "parenthesized_statements":
            inner = _named(node)
            if len(inner) != 1:
                break
            node = inner[0]
        return node

    def _dotted(self, node) -> str:
        """`A::B.c` → "A.B.c"; "" unless every step is a plain name or an argument-less call."""
        node = self._strip(node)
        if node is None:
            return ""
        if node.type in _NAMES:
            return self._text(node)
        if node.type == "scope_resolution":
            scope = node.child_by_field_name("scope")
            name = node.child_by_field_name("name")
            if name is None:
                return ""
            if scope is None:
                return self._text(name)
            head = self._dotted(scope)
            return f"{head}.{self._text(name)}" if head else ""
        if node.type == "call" and node.child_by_field_name("arguments") is None and node.child_by_field_name("block") is None:
            receiver = node.child_by_field_name("receiver")
            method = node.child_by_field_name("method")
            if receiver is None or method is None:
                return ""
            head = self._dotted(receiver)
            return f"{head}.{self._text(method)}" if head else ""
        return ""

    def _call_node(self, node) -> CallNode:
        key = (node.start_byte, node.end_byte, node.type)
        cached = self._converted.get(key)
        if cached is not None:
            return cached
        args = node.child_by_field_name("arguments")
        arguments = self._arguments(args) if args is not None else ()
        call = CallNode(
            callee=self._callee(node),
            arguments=arguments,
            position=self._start(node),
            scope=self._scope_stack[-1],
            text=self._text(node),
            function=self._enclosing(node),
        )
        self._converted[key] = call
        return call

    def _callee(self, node) -> Callee:
        method = node.child_by_field_name("method")
        receiver = node.child_by_field_name("receiver")
        if method is None:
            return Callee(kind=CalleeKind.OTHER, text=self._text(node))
        text = self._raw[node.start_byte:method.end_byte].decode("utf-8", "replace")
        name = self._text(method)
        if receiver is None:
            return Callee(kind=CalleeKind.NAME, path=(name,), text=text)
        head = self._dotted(receiver)
        if head:
            return Callee(kind=CalleeKind.ATTRIBUTE, path=(*head.split("."), name), text=text)
        receiver = self._strip(receiver)
        if receiver.type == "call":
            return Callee(kind=CalleeKind.CONSTRUCTED, path=(name,), receiver=self._call_node(receiver), text=text)
        return Callee(kind=CalleeKind.OTHER, text=text)

    def _arguments(self, args) -> Tuple[Argument, ...]:
        out: List[Argument] = []
        pairs: List = []
        for child in _named(args):
            if child.type in ("pair", "hash_splat_argument"):
                pairs.append(child)
            elif child.type == "splat_argument":
                inner = _named(child)
                value = self._expr(inner[0]) if inner else Expr(kind=ExprKind.OTHER, text=self._text(child))
                out.append(Argument(value=value, star="*"))
            elif child.type == "block_argument":
                continue
            else:
                out.append(Argument(value=self._expr(child)))
        if pairs:
            text = self._raw[pairs[0].start_byte:pairs[-1].end_byte].decode("utf-8", "replace")
            entries = tuple(self._entry(p) for p in pairs)
            out.append(Argument(value=Expr(kind=ExprKind.MAPPING, text=text, entries=entries)))
        return tuple(out)

    # ---- expressions -----------------------------------------------------------

    def _expr(self, node) -> Expr:
        text = self._text(node)
        node = self._strip(node)
        t = node.type

        if t in ("string", "delimited_symbol"):
            value = self._string(node)
            if value is None:
                return Expr(kind=ExprKind.OTHER, text=text)
            return Expr(kind=ExprKind.STRING, text=text, value=value)
        if t == "simple_symbol":
            return Expr(kind=ExprKind.STRING, text=text, value=self._text(node)[1:])
        if t == "integer":
            value = _integer(self._text(node))
            if value is None:
                return Expr(kind=ExprKind.OTHER, text=text)
            return Expr(kind=ExprKind.NUMBER, text=text, value=value)
        if t == "float":
            try:
                return Expr(kind=ExprKind.NUMBER, text=text, value=float(self._text(node).replace("_", "")))
            except ValueError:
                return Expr(kind=ExprKind.OTHER, text=text)
        if t == "unary":
            operand = node.child_by_field_name("operand")
            operator = node.child_by_field_name("operator")
            if operand is not None and operator is not None and self._text(operator) in ("-", "+"):
                inner = self._expr(operand)
                if inner.kind is ExprKind.NUMBER:
                    value = -inner.value if self._text(operator) == "-" else inner.value
                    return Expr(kind=ExprKind.NUMBER, text=text, value=value)
            return Expr(kind=ExprKind.OTHER, text=text)
        if t in ("true", "false"):
            return Expr(kind=ExprKind.BOOLEAN, text=text, value=t == "true")
        if t == "nil":
            return Expr(kind=ExprKind.NULL, text=text)
        if t == "array":
            elements = _named(node)
            if any(el.type == "splat_argument" for el in elements):
                return Expr(kind=ExprKind.OTHER, text=text)
            return Expr(kind=ExprKind.LIST, text=text, items=tuple(self._expr(el) for el in elements))
        if t == "hash":
            return Expr(kind=ExprKind.MAPPING, text=text, entries=tuple(self._entry(p) for p in _named(node)))
        if t == "call":
            receiver = node.child_by_field_name("receiver")
            method = node.child_by_field_name("method")
            if (
                method is not None
                and self._text(method) in ("freeze", "dup", "to_s")
                and receiver is not None
                and node.child_by_field_name("arguments") is None
            ):
                inner = self._expr(receiver)
                if inner.kind is ExprKind.STRING:
                    return Expr(kind=ExprKind.STRING, text=text, value=inner.value)
            dotted = self._dotted(node)
            if dotted:
                return Expr(kind=ExprKind.NAME, text=text, dotted=dotted)
            return Expr(kind=ExprKind.CALL, text=text, call=self._call_node(node))
        dotted = self._dotted(node)
        if dotted:
            return Expr(kind=ExprKind.NAME, text=text, dotted=dotted)
        return Expr(kind=ExprKind.OTHER, text=text)

    def _string(self, node) -> Optional[str]:
        """Value of a string without interpolation; None when it interpolates."""
        parts: List[str] = []
        for child in node.named_children:
            if child.type == "string_content":
                parts.append(self._text(child))
            elif child.type == "escape_sequence":
                parts.append(_escape(self._text(child)))
            elif child.type == "interpolation":
                return None
        return "".join(parts)

    def _entry(self, pair) -> Tuple[Optional[str], Expr]:
        if pair.type != "pair":
            # **splat and anything unexpected
            return None, Expr(kind=ExprKind.OTHER, text=self._text(pair))
        key = self._key(pair.child_by_field_name("key"))
        value = pair.child_by_field_name("value")
        if key is None:
            return None, Expr(kind=ExprKind.OTHER, text=self._text(pair))
        if value is None:
            # `{user_id:}` shorthand
            return key, Expr(kind=ExprKind.NAME, text=key, dotted=key)
        return key, self._expr(value)

    def _key(self, key) -> Optional[str]:
        if key is None:
            return None
        if key.type in ("hash_key_symbol", "identifier", "constant"):
            return self._text(key)
        if key.type == "simple_symbol":
            return self._text(key)[1:]
        if key.type in ("string", "delimited_symbol"):
            return self._string(key)
        return None


# -----------------------------------------------------------------------------
# Ruby driver (Tree-sitter)
# -----------------------------------------------------------------------------


class RubyTreeSitterDriver(TreeSitterDriver):
    """Tree-sitter adapter for Ruby."""

    grammar_wheels = "tree_sitter_ruby"

    def _grammar_name(self) -> str:
        return "ruby"

    def _load(self):
        loaded = load_grammar("tree_sitter_ruby")
        if loaded is None:
            return None
        lang_obj, version = loaded
        return lang_obj, "tree-sitter-ruby", version

    def _builder(self, raw: bytes) -> _RubyTreeBuilder:
        return _RubyTreeBuilder(raw)
