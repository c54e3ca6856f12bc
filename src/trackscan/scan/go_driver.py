# src/trackscan/scan/go_driver.py
from __future__ import annotations

import re
from dataclasses import replace
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

_FUNCTIONS = frozenset({"function_declaration", "method_declaration", "func_literal"})

_STRINGS = frozenset({"interpreted_string_literal", "raw_string_literal"})

# `sp.NewString("x")` style pointer helpers read as their argument
_POINTER_HELPERS = frozenset({
    "NewString",
    "NewBool",
    "NewInt",
    "NewInt64",
    "NewUint64",
    "NewFloat64",
})

_VERSION_RE = re.compile(r"^v\d+$")

_ESCAPES = {
    "a": "\a", "b": "\b", "f": "\f", "n": "\n", "r": "\r", "t": "\t", "v": "\v",
    "\\": "\\", "'": "'", '"': '"',
}


def _unescape(body: str) -> str:
    out: List[str] = []
    i, n = 0, len(body)
    while i < n:
        ch = body[i]
        if ch != "\\" or i + 1 >= n:
            out.append(ch)
            i += 1
            continue
        nxt = body[i + 1]
        width = {"x": 2, "u": 4, "U": 8}.get(nxt)
        try:
            if width is not None:
                out.append(chr(int(body[i + 2:i + 2 + width], 16)))
                i += 2 + width
                continue
            if nxt in "01234567":
                out.append(chr(int(body[i + 1:i + 4], 8)))
                i += 4
                continue
        except ValueError:
            pass
        out.append(_ESCAPES.get(nxt, nxt))
        i += 2
    return "".join(out)


def _number(text: str):
    t = text.replace("_", "")
    try:
        if len(t) > 1 and t[0] == "0" and t.isdigit():
            return int(t, 8)
        return int(t, 0)
    except ValueError:
        pass
    try:
        if t.lower().startswith("0x"):
            return float.fromhex(t)
        return float(t)
    except ValueError:
        return None


def package_name(path: str) -> str:
    """
    Name a package is referred to by when imported without an alias:
    "github.com/segmentio/analytics-go/v3" → "analytics", "github.com/posthog/posthog-go" → "posthog".
    """
    parts = [p for p in path.split("/") if p]
    if len(parts) > 1 and _VERSION_RE.match(parts[-1]):
        parts.pop()
    name = parts[-1] if parts else path
    if name.startswith("go-"):
        name = name[3:]
    if name.endswith("-go"):
        name = name[:-3]
    return name.replace("-", "_").split(".")[0]


# -----------------------------------------------------------------------------
# Tree → call tree
# -----------------------------------------------------------------------------


class _GoTreeBuilder(TreeBuilder):
    """
    Go calls in source order. Composite literals of a named type
    (`analytics.Track{...}`) become constructor-like CALL values whose keyed
    fields are keyword arguments; map literals become mappings and
    `NewProperties().Set(k, v)` chains fold into one mapping.
    """

    def _enter(self, node) -> None:
        t = node.type
        if t in _FUNCTIONS:
            name = node.child_by_field_name("name")
            self._push_scope(ScopeKind.FUNCTION, self._text(name) if name is not None else "anonymous")
        elif t == "call_expression":
            self.calls.append(self._call_node(node))
        elif t == "import_spec":
            self._import(node)
        elif t == "short_var_declaration" or (t == "assignment_statement" and self._operator(node) == "="):
            self._assign(node.child_by_field_name("left"), node.child_by_field_name("right"), node)
        elif t in ("var_spec", "const_spec"):
            names = [c for c in node.children_by_field_name("name") if c.type == "identifier"]
            value = node.child_by_field_name("value")
            if names and value is not None:
                self._assign_names(names, _named(value), node)

    def _leave(self, node) -> None:
        if node.type in _FUNCTIONS:
            self._scope_stack.pop()

    def _operator(self, node) -> str:
        op = node.child_by_field_name("operator")
        return self._text(op) if op is not None else ""

    def _enclosing(self, node) -> str:
        """Innermost declared function or method; function literals report the one around them."""
        parent = node.parent
        while parent is not None:
            if parent.type in ("function_declaration", "method_declaration"):
                name = parent.child_by_field_name("name")
                if name is not None:
                    return self._text(name)
            parent = parent.parent
        return "global"

    # ---- bindings ----------------------------------------------------------------

    def _import(self, node) -> None:
        path_node = node.child_by_field_name("path")
        if path_node is None:
            return
        path = self._string(path_node)
        if not path:
            return
        alias = node.child_by_field_name("name")
        if alias is None:
            self._bind(package_name(path), BindingKind.IMPORT, path, node)
        elif alias.type == "package_identifier":
            self._bind(self._text(alias), BindingKind.IMPORT, path, node)
        # dot and blank imports bind nothing addressable

    def _assign(self, left, right, stmt) -> None:
        if left is None or right is None:
            return
        names = [n if n.type == "identifier" else None for n in _named(left)]
        self._assign_names(names, _named(right), stmt)

    def _assign_names(self, names, values, stmt) -> None:
        if len(values) == 1 and len(names) > 1:
            # client, err := posthog.NewWithConfig(...)
            names = names[:1]
        for target, value in zip(names, values):
            if target is None or self._text(target) == "_":
                continue
            self._bind_value(self._text(target), value, stmt)

    def _bind_value(self, name: str, value, stmt) -> None:
        value = self._strip(value)
        if value.type == "unary_expression":
            operand = value.child_by_field_name("operand")
            if operand is not None:
                value = self._strip(operand)
        if value.type == "call_expression":
            callee = self._dotted(value.child_by_field_name("function"))
            if callee:
                self._bind(name, BindingKind.CONSTRUCTED, callee, stmt)
        elif value.type == "composite_literal":
            type_name = self._type_name(value.child_by_field_name("type"))
            if type_name:
                self._bind(name, BindingKind.CONSTRUCTED, type_name, stmt)
        elif value.type in ("identifier", "selector_expression"):
            ref = self._dotted(value)
            if ref and ref != name and ref != "nil":
                self._bind(name, BindingKind.REFERENCE, ref, stmt)

    # ---- calls -----------------------------------------------------------------

    def _strip(self, node):
        while node is not None and node.type in ("parenthesized_expression", "literal_element"):
            inner = _named(node)
            if len(inner) != 1:
                break
            node = inner[0]
        return node

    def _dotted(self, node) -> str:
        node = self._strip(node)
        if node is None:
            return ""
        if node.type in ("identifier", "package_identifier", "field_identifier", "type_identifier"):
            return self._text(node)
        if node.type == "selector_expression":
            head = self._dotted(node.child_by_field_name("operand"))
            field = node.child_by_field_name("field")
            if head and field is not None:
                return f"{head}.{self._text(field)}"
        return ""

    def _type_name(self, node) -> str:
        """`analytics.Track` / `Event` / `*pkg.T`; "" for map, slice and anonymous types."""
        if node is None:
            return ""
        if node.type == "type_identifier":
            return self._text(node)
        if node.type == "qualified_type":
            package = node.child_by_field_name("package")
            name = node.child_by_field_name("name")
            if package is not None and name is not None:
                return f"{self._text(package)}.{self._text(name)}"
        if node.type in ("pointer_type", "generic_type"):
            inner = node.child_by_field_name("type") or (_named(node)[0] if _named(node) else None)
            return self._type_name(inner)
        return ""

    def _call_node(self, node) -> CallNode:
        key = (node.start_byte, node.end_byte, node.type)
        cached = self._converted.get(key)
        if cached is not None:
            return cached
        args = node.child_by_field_name("arguments")
        arguments: Tuple[Argument, ...] = ()
        if args is not None:
            arguments = tuple(self._argument(a) for a in _named(args))
        call = CallNode(
            callee=self._callee(node.child_by_field_name("function")),
            arguments=arguments,
            position=self._start(node),
            scope=self._scope_stack[-1],
            text=self._text(node),
            function=self._enclosing(node),
        )
        self._converted[key] = call
        return call

    def _literal_node(self, node, type_name: str) -> CallNode:
        """A keyed composite literal as a constructor call: `T{A: 1}` ≈ `T(A=1)`."""
        key = (node.start_byte, node.end_byte, node.type)
        cached = self._converted.get(key)
        if cached is not None:
            return cached
        arguments: List[Argument] = []
        body = node.child_by_field_name("body")
        for element in _named(body) if body is not None else []:
            if element.type == "keyed_element":
                field, value = self._keyed(element)
                if field is not None and value is not None:
                    arguments.append(Argument(value=self._expr(value), keyword=self._text(field)))
            else:
                arguments.append(Argument(value=self._expr(element)))
        type_node = node.child_by_field_name("type")
        call = CallNode(
            callee=Callee(kind=CalleeKind.ATTRIBUTE if "." in type_name else CalleeKind.NAME,
                          path=tuple(type_name.split(".")),
                          text=self._text(type_node) if type_node is not None else type_name),
            arguments=tuple(arguments),
            position=self._start(node),
            scope=self._scope_stack[-1],
            text=self._text(node),
            function=self._enclosing(node),
        )
        self._converted[key] = call
        return call

    def _callee(self, func) -> Callee:
        if func is None:
            return Callee(kind=CalleeKind.OTHER)
        text = self._text(func)
        func = self._strip(func)
        if func.type == "identifier":
            return Callee(kind=CalleeKind.NAME, path=(text,), text=text)
        if func.type != "selector_expression":
            return Callee(kind=CalleeKind.OTHER, text=text)

        parts: List[str] = []
        node = func
        while node is not None and node.type == "selector_expression":
            field = node.child_by_field_name("field")
            if field is None:
                return Callee(kind=CalleeKind.OTHER, text=text)
            parts.append(self._text(field))
            node = self._strip(node.child_by_field_name("operand"))
        parts.reverse()

        if node is not None and node.type in ("identifier", "package_identifier"):
            return Callee(kind=CalleeKind.ATTRIBUTE, path=(self._text(node), *parts), text=text)
        if node is not None and node.type == "call_expression":
            return Callee(kind=CalleeKind.CONSTRUCTED, path=tuple(parts), receiver=self._call_node(node), text=text)
        return Callee(kind=CalleeKind.OTHER, text=text)

    def _argument(self, node) -> Argument:
        if node.type == "variadic_argument":
            inner = _named(node)
            value = self._expr(inner[0]) if inner else Expr(kind=ExprKind.OTHER, text=self._text(node))
            return Argument(value=value, star="*")
        return Argument(value=self._expr(node))

    # ---- expressions -----------------------------------------------------------

    def _string(self, node) -> Optional[str]:
        raw = self._text(node)
        if node.type == "raw_string_literal":
            return raw[1:-1].replace("\r", "")
        if node.type == "interpreted_string_literal":
            return _unescape(raw[1:-1])
        return None

    def _expr(self, node) -> Expr:
        text = self._text(node)
        node = self._strip(node)
        t = node.type

        if t in _STRINGS:
            return Expr(kind=ExprKind.STRING, text=text, value=self._string(node))
        if t in ("int_literal", "float_literal"):
            value = _number(self._text(node))
            if value is None:
                return Expr(kind=ExprKind.OTHER, text=text)
            return Expr(kind=ExprKind.NUMBER, text=text, value=value)
        if t == "unary_expression":
            operator = node.child_by_field_name("operator")
            operand = node.child_by_field_name("operand")
            if operator is not None and operand is not None:
                op = self._text(operator)
                if op == "&":
                    # &T{...} carries the same fields as T{...}
                    inner = self._expr(operand)
                    if inner.kind in (ExprKind.CALL, ExprKind.MAPPING, ExprKind.LIST):
                        return inner
                if op in ("-", "+"):
                    inner = self._expr(operand)
                    if inner.kind is ExprKind.NUMBER:
                        return Expr(kind=ExprKind.NUMBER, text=text, value=-inner.value if op == "-" else inner.value)
            return Expr(kind=ExprKind.OTHER, text=text)
        if t in ("true", "false"):
            return Expr(kind=ExprKind.BOOLEAN, text=text, value=t == "true")
        if t == "nil":
            return Expr(kind=ExprKind.NULL, text=text)
        if t in ("identifier", "selector_expression"):
            dotted = self._dotted(node)
            if dotted:
                return Expr(kind=ExprKind.NAME, text=text, dotted=dotted)
            return Expr(kind=ExprKind.OTHER, text=text)
        if t in ("composite_literal", "literal_value"):
            return self._composite(node, text)
        if t == "call_expression":
            return self._call_expr(node, text)
        return Expr(kind=ExprKind.OTHER, text=text)

    def _composite(self, node, text: str) -> Expr:
        type_node = node.child_by_field_name("type") if node.type == "composite_literal" else None
        body = node.child_by_field_name("body") if node.type == "composite_literal" else node
        elements = _named(body) if body is not None else []

        if type_node is not None and type_node.type == "map_type":
            entries = []
            for element in elements:
                key, value = self._keyed(element) if element.type == "keyed_element" else (None, None)
                key_text = self._string(self._strip(key)) if key is not None else None
                if key_text is None or value is None:
                    entries.append((None, Expr(kind=ExprKind.OTHER, text=self._text(element))))
                else:
                    entries.append((key_text, self._expr(value)))
            return Expr(kind=ExprKind.MAPPING, text=text, entries=tuple(entries))

        type_name = self._type_name(type_node)
        if type_name:
            return Expr(kind=ExprKind.CALL, text=text, call=self._literal_node(node, type_name))

        if any(el.type == "keyed_element" for el in elements):
            return Expr(kind=ExprKind.OTHER, text=text)
        return Expr(kind=ExprKind.LIST, text=text, items=tuple(self._expr(el) for el in elements))

    def _keyed(self, element):
        """(key, value) nodes of a keyed_element across grammar revisions."""
        key = element.child_by_field_name("key")
        value = element.child_by_field_name("value")
        if key is None or value is None:
            parts = _named(element)
            if len(parts) < 2:
                return None, None
            key, value = parts[0], parts[-1]
        return self._strip(key), value

    def _call_expr(self, node, text: str) -> Expr:
        func = self._strip(node.child_by_field_name("function"))
        args = node.child_by_field_name("arguments")
        arguments = _named(args) if args is not None else []

        if func is not None and func.type == "selector_expression":
            field = func.child_by_field_name("field")
            method = self._text(field) if field is not None else ""
            if method in _POINTER_HELPERS and len(arguments) == 1:
                return replace(self._expr(arguments[0]), text=text)
            if method == "Set":
                entries = self._property_chain(node)
                if entries is not None:
                    return Expr(kind=ExprKind.MAPPING, text=text, entries=entries)
        return Expr(kind=ExprKind.CALL, text=text, call=self._call_node(node))

    def _property_chain(self, node) -> Optional[Tuple[Tuple[Optional[str], Expr], ...]]:
        """`NewProperties().Set("a", 1).Set("b", x)` → (("a", 1), ("b", x)); None for other chains."""
        entries: List[Tuple[Optional[str], Expr]] = []
        while node is not None and node.type == "call_expression":
            func = self._strip(node.child_by_field_name("function"))
            if func is None or func.type != "selector_expression":
                break
            field = func.child_by_field_name("field")
            if field is None or self._text(field) != "Set":
                break
            args_node = node.child_by_field_name("arguments")
            args = _named(args_node) if args_node is not None else []
            if len(args) != 2:
                return None
            key = self._strip(args[0])
            key_text = self._string(key) if key is not None else None
            if key_text is None:
                entries.append((None, Expr(kind=ExprKind.OTHER, text=self._text(node))))
            else:
                entries.append((key_text, self._expr(args[1])))
            node = self._strip(func.child_by_field_name("operand"))
        if node is None or node.type != "call_expression":
            return None
        root = self._dotted(node.child_by_field_name("function"))
        if not root.endswith("NewProperties"):
            return None
        entries.reverse()
        return tuple(entries)


# -----------------------------------------------------------------------------
# Go driver (Tree-sitter)
# -----------------------------------------------------------------------------


class GoTreeSitterDriver(TreeSitterDriver):
    """Tree-sitter adapter for Go."""

    grammar_wheels = "tree_sitter_go"

    def _grammar_name(self) -> str:
        return "go"

    def _load(self):
        loaded = load_grammar("tree_sitter_go")
        if loaded is None:
            return None
        lang_obj, version = loaded
        return lang_obj, "tree-sitter-go", version

    def _builder(self, raw: bytes) -> _GoTreeBuilder:
        return _GoTreeBuilder(raw)
