# src/trackscan/scan/ts_driver.py
from __future__ import annotations

from typing import List, Optional, Tuple

from .discovery import Language
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


def _load_language(name: str):
    """
    Obtain a tree-sitter language from the individual grammar wheels
    (tree_sitter_javascript / tree_sitter_typescript).
    Returns (language_obj, grammar_name, version_string) or None.
    """
    if name == "javascript":
        loaded = load_grammar("tree_sitter_javascript")
    elif name in ("typescript", "tsx"):
        loaded = load_grammar("tree_sitter_typescript", f"language_{name}")
    else:
        return None
    if loaded is None:
        return None
    lang_obj, version = loaded
    return lang_obj, f"tree-sitter-{name}", version


# -----------------------------------------------------------------------------
# Node helpers
# -----------------------------------------------------------------------------

# Wrappers that do not change the value of the wrapped expression
_TRANSPARENT = frozenset({
    "parenthesized_expression",
    "as_expression",
    "satisfies_expression",
    "non_null_expression",
})

_FUNCTIONS = frozenset({
    "function_declaration",
    "generator_function_declaration",
    "function_expression",
    "function",
    "generator_function",
    "arrow_function",
    "method_definition",
})

_DECLARATIONS = frozenset({"function_declaration", "generator_function_declaration", "method_definition"})

_CLASSES = frozenset({"class_declaration", "class", "abstract_class_declaration"})

# Callbacks passed to these are reported as `<Component>.<hook>`
_REACT_HOOKS = frozenset({
    "useEffect",
    "useLayoutEffect",
    "useInsertionEffect",
    "useCallback",
    "useMemo",
    "useReducer",
    "useState",
    "useImperativeHandle",
    "useDeferredValue",
    "useTransition",
})

_ESCAPES = {
    "n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f", "v": "\v",
    "0": "\0", "\\": "\\", "'": "'", '"': '"', "`": "`", "$": "$",
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
        if nxt in ("u", "x"):
            if nxt == "u" and body.startswith("{", i + 2):
                end = body.find("}", i + 3)
                digits, stop = (body[i + 3:end], end + 1) if end != -1 else ("", i + 2)
            else:
                width = 4 if nxt == "u" else 2
                digits, stop = body[i + 2:i + 2 + width], i + 2 + width
            try:
                out.append(chr(int(digits, 16)))
                i = stop
                continue
            except ValueError:
                pass
        if nxt == "\n":
            i += 2   # line continuation
            continue
        out.append(_ESCAPES.get(nxt, nxt))
        i += 2
    return "".join(out)


def _number(text: str):
    t = text.replace("_", "")
    if t.endswith("n"):
        return None   # BigInt
    try:
        return int(t, 0)
    except ValueError:
        pass
    try:
        return float(t)
    except ValueError:
        return None


# -----------------------------------------------------------------------------
# Tree → call tree
# -----------------------------------------------------------------------------


class _TreeBuilder(TreeBuilder):
    """
    Walks one tree-sitter tree (iteratively, source order) collecting calls,
    scopes and bindings. `new` expressions are receivers and argument values
    but not tracking call candidates themselves.
    """

    def _enter(self, node) -> None:
        t = node.type
        if t in _FUNCTIONS:
            self._push_scope(ScopeKind.FUNCTION, self._function_name(node) or "anonymous")
        elif t in _CLASSES:
            name_node = node.child_by_field_name("name")
            self._push_scope(ScopeKind.CLASS, self._text(name_node) if name_node is not None else "anonymous")
        elif t == "call_expression":
            self.calls.append(self._call_node(node))
        elif t == "variable_declarator":
            self._declarator(node)
        elif t == "assignment_expression":
            left = node.child_by_field_name("left")
            value = node.child_by_field_name("right")
            if left is not None and left.type == "identifier" and value is not None:
                self._bind_value(self._text(left), value, node)
        elif t == "import_statement":
            self._import(node)

    def _leave(self, node) -> None:
        if node.type in _FUNCTIONS or node.type in _CLASSES:
            self._scope_stack.pop()

    def _function_name(self, node) -> Optional[str]:
        """Declared or contextual name of a function node; None for unnamed callbacks."""
        name = node.child_by_field_name("name")
        if node.type in _DECLARATIONS:
            return self._text(name) if name is not None else None
        parent = node.parent
        while parent is not None and parent.type in _TRANSPARENT:
            parent = parent.parent
        if parent is not None:
            if parent.type == "variable_declarator":
                target = parent.child_by_field_name("name")
                if target is not None and target.type == "identifier":
                    return self._text(target)
            elif parent.type == "pair":
                key = parent.child_by_field_name("key")
                if key is not None:
                    return self._text(key).strip("'\"")
            elif parent.type == "assignment_expression":
                left = parent.child_by_field_name("left")
                if left is not None:
                    return self._text(left)
            elif parent.type in ("public_field_definition", "field_definition"):
                prop = parent.child_by_field_name("name") or parent.child_by_field_name("property")
                if prop is not None:
                    return self._text(prop)
        return self._text(name) if name is not None else None

    def _enclosing(self, node) -> str:
        """
        Reporting name for a call: the nearest named enclosing function, so
        unnamed callbacks inherit it. A callback handed to a React hook reports
        `<Component>.<hook>` (or just the hook at module level).
        """
        hook: Optional[str] = None
        parent = node.parent
        while parent is not None:
            if parent.type == "call_expression" and hook is None:
                fn = parent.child_by_field_name("function")
                if fn is not None and fn.type == "identifier" and self._text(fn) in _REACT_HOOKS:
                    hook = self._text(fn)
            elif parent.type in _FUNCTIONS:
                component = self._function_name(parent)
                if component is not None:
                    return f"{component}.{hook}" if hook else component
            parent = parent.parent
        return hook or "global"

    # ---- bindings ----------------------------------------------------------------

    def _declarator(self, node) -> None:
        target = node.child_by_field_name("name")
        value = node.child_by_field_name("value")
        if target is None or value is None:
            return
        if target.type == "identifier":
            self._bind_value(self._text(target), value, node)
        elif target.type == "object_pattern":
            module = self._required_module(_strip(value))
            if module is None:
                return
            for prop in _named(target):
                if prop.type == "shorthand_property_identifier_pattern":
                    name = self._text(prop)
                    self._bind(name, BindingKind.IMPORT, f"{module}.{name}", node)
                elif prop.type == "pair_pattern":
                    key = prop.child_by_field_name("key")
                    local = prop.child_by_field_name("value")
                    if key is not None and local is not None and local.type == "identifier":
                        self._bind(self._text(local), BindingKind.IMPORT, f"{module}.{self._text(key)}", node)

    def _bind_value(self, name: str, value, stmt) -> None:
        value = _strip(value)
        if value is not None and value.type == "await_expression":
            inner = _named(value)
            value = _strip(inner[0]) if inner else None
        if value is None:
            return

        module = self._required_module(value)
        if module is not None:
            self._bind(name, BindingKind.IMPORT, module, stmt)
            return

        if value.type == "member_expression":
            obj = _strip(value.child_by_field_name("object"))
            module = self._required_module(obj) if obj is not None else None
            prop = value.child_by_field_name("property")
            if module is not None and prop is not None:
                self._bind(name, BindingKind.IMPORT, f"{module}.{self._text(prop)}", stmt)
                return

        if value.type == "new_expression":
            ctor = self._dotted(value.child_by_field_name("constructor"))
            if ctor:
                self._bind(name, BindingKind.CONSTRUCTED, ctor, stmt)
        elif value.type == "call_expression":
            callee = self._dotted(value.child_by_field_name("function"))
            if callee:
                self._bind(name, BindingKind.CONSTRUCTED, callee, stmt)
        elif value.type in ("identifier", "member_expression"):
            ref = self._dotted(value)
            if ref and ref != "undefined":
                self._bind(name, BindingKind.REFERENCE, ref, stmt)

    def _required_module(self, node) -> Optional[str]:
        """`require("m")` → "m"."""
        if node is None or node.type != "call_expression":
            return None
        fn = node.child_by_field_name("function")
        if fn is None or fn.type != "identifier" or self._text(fn) != "require":
            return None
        args = node.child_by_field_name("arguments")
        first = _named(args) if args is not None else []
        if first and first[0].type == "string":
            return _unescape(self._text(first[0])[1:-1])
        return None

    def _import(self, node) -> None:
        source = node.child_by_field_name("source")
        if source is None:
            return
        module = _unescape(self._text(source)[1:-1])
        for clause in _named(node):
            if clause.type != "import_clause":
                continue
            for part in _named(clause):
                if part.type == "identifier":
                    self._bind(self._text(part), BindingKind.IMPORT, module, node)
                elif part.type == "namespace_import":
                    ids = [c for c in _named(part) if c.type == "identifier"]
                    if ids:
                        self._bind(self._text(ids[-1]), BindingKind.IMPORT, module, node)
                elif part.type == "named_imports":
                    for spec in _named(part):
                        if spec.type != "import_specifier":
                            continue
                        imported = spec.child_by_field_name("name")
                        alias = spec.child_by_field_name("alias")
                        if imported is None:
                            continue
                        local = alias if alias is not None else imported
                        self._bind(self._text(local), BindingKind.IMPORT, f"{module}.{self._text(imported)}", node)

    # ---- calls -----------------------------------------------------------------

    def _dotted(self, node) -> str:
        node = _strip(node)
        if node is None:
            return ""
        if node.type in ("identifier", "this"):
            return self._text(node)
        if node.type == "member_expression":
            head = self._dotted(node.child_by_field_name("object"))
            prop = node.child_by_field_name("property")
            if head and prop is not None:
                return f"{head}.{self._text(prop)}"
        return ""

    def _call_node(self, node) -> CallNode:
        key = (node.start_byte, node.end_byte, node.type)
        cached = self._converted.get(key)
        if cached is not None:
            return cached
        field = "constructor" if node.type == "new_expression" else "function"
        args = node.child_by_field_name("arguments")
        arguments: Tuple[Argument, ...] = ()
        if args is not None and args.type == "arguments":
            arguments = tuple(self._argument(a) for a in _named(args))
        call = CallNode(
            callee=self._callee(node.child_by_field_name(field)),
            arguments=arguments,
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
        func = _strip(func)
        if func.type == "identifier":
            return Callee(kind=CalleeKind.NAME, path=(text,), text=text)
        if func.type != "member_expression":
            return Callee(kind=CalleeKind.OTHER, text=text)

        parts: List[str] = []
        node = func
        while node is not None and node.type == "member_expression":
            prop = node.child_by_field_name("property")
            if prop is None or prop.type not in ("property_identifier", "private_property_identifier"):
                return Callee(kind=CalleeKind.OTHER, text=text)
            parts.append(self._text(prop))
            node = _strip(node.child_by_field_name("object"))
        parts.reverse()

        if node is not None and node.type in ("identifier", "this"):
            return Callee(kind=CalleeKind.ATTRIBUTE, path=(self._text(node), *parts), text=text)
        if node is not None and node.type in ("call_expression", "new_expression"):
            return Callee(kind=CalleeKind.CONSTRUCTED, path=tuple(parts), receiver=self._call_node(node), text=text)
        return Callee(kind=CalleeKind.OTHER, text=text)

    def _argument(self, node) -> Argument:
        if node.type == "spread_element":
            inner = _named(node)
            value = self._expr(inner[0]) if inner else Expr(kind=ExprKind.OTHER, text=self._text(node))
            return Argument(value=value, star="*")
        return Argument(value=self._expr(node))

    # ---- expressions -----------------------------------------------------------

    def _expr(self, node) -> Expr:
        text = self._text(node)
        node = _strip(node)
        t = node.type

        if t == "string":
            return Expr(kind=ExprKind.STRING, text=text, value=_unescape(self._text(node)[1:-1]))
        if t == "template_string":
            if any(c.type == "template_substitution" for c in node.named_children):
                return Expr(kind=ExprKind.OTHER, text=text)
            return Expr(kind=ExprKind.STRING, text=text, value=_unescape(self._text(node)[1:-1]))
        if t == "number":
            value = _number(self._text(node))
            if value is None:
                return Expr(kind=ExprKind.OTHER, text=text)
            return Expr(kind=ExprKind.NUMBER, text=text, value=value)
        if t == "unary_expression":
            op = node.child_by_field_name("operator")
            arg = node.child_by_field_name("argument")
            arg = _strip(arg) if arg is not None else None
            if op is not None and arg is not None and arg.type == "number" and self._text(op) in ("-", "+"):
                value = _number(self._text(arg))
                if value is not None:
                    return Expr(kind=ExprKind.NUMBER, text=text, value=-value if self._text(op) == "-" else value)
            return Expr(kind=ExprKind.OTHER, text=text)
        if t in ("true", "false"):
            return Expr(kind=ExprKind.BOOLEAN, text=text, value=t == "true")
        if t == "null":
            return Expr(kind=ExprKind.NULL, text=text)
        if t in ("identifier", "member_expression", "this"):
            dotted = self._dotted(node)
            if dotted:
                return Expr(kind=ExprKind.NAME, text=text, dotted=dotted)
            return Expr(kind=ExprKind.OTHER, text=text)
        if t == "array":
            elements = _named(node)
            if any(el.type == "spread_element" for el in elements):
                return Expr(kind=ExprKind.OTHER, text=text)
            return Expr(kind=ExprKind.LIST, text=text, items=tuple(self._expr(el) for el in elements))
        if t == "object":
            return Expr(kind=ExprKind.MAPPING, text=text, entries=tuple(self._entry(p) for p in _named(node)))
        if t in ("call_expression", "new_expression"):
            return Expr(kind=ExprKind.CALL, text=text, call=self._call_node(node))
        return Expr(kind=ExprKind.OTHER, text=text)

    def _entry(self, prop) -> Tuple[Optional[str], Expr]:
        if prop.type == "pair":
            key = self._key(prop.child_by_field_name("key"))
            value = prop.child_by_field_name("value")
            if key is None:
                # computed key: keep the whole entry so it can be reported
                return None, Expr(kind=ExprKind.OTHER, text=self._text(prop))
            return key, self._expr(value) if value is not None else Expr(kind=ExprKind.OTHER, text="")
        if prop.type == "shorthand_property_identifier":
            name = self._text(prop)
            return name, Expr(kind=ExprKind.NAME, text=name, dotted=name)
        if prop.type == "method_definition":
            key = prop.child_by_field_name("name")
            return self._key(key), Expr(kind=ExprKind.OTHER, text=self._text(prop))
        # spread_element and anything unexpected
        return None, Expr(kind=ExprKind.OTHER, text=self._text(prop))

    def _key(self, key) -> Optional[str]:
        if key is None:
            return None
        if key.type in ("property_identifier", "identifier", "private_property_identifier"):
            return self._text(key)
        if key.type == "string":
            return _unescape(self._text(key)[1:-1])
        if key.type == "number":
            value = _number(self._text(key))
            return str(value) if value is not None else None
        return None   # computed_property_name


# -----------------------------------------------------------------------------
# JS/TS driver (Tree-sitter)
# -----------------------------------------------------------------------------


class TSTreeSitterDriver(TreeSitterDriver):
    """Tree-sitter adapter for JavaScript/TypeScript (JS/TS/JSX/TSX)."""

    grammar_wheels = "tree_sitter_javascript / tree_sitter_typescript"

    def _grammar_name(self) -> str:
        return self._select_grammar_name(self._lang)

    def _load(self):
        return self._load_language_with_fallbacks(self._grammar_name(), self._lang)

    def _builder(self, raw: bytes) -> _TreeBuilder:
        return _TreeBuilder(raw)

    @staticmethod
    def _select_grammar_name(lang: Language) -> str:
        grammar_map = {
            Language.JS: "javascript",
            Language.TS: "typescript",
            Language.TSX: "tsx",
            Language.JSX: "javascript",  # the JS grammar parses JSX
        }
        return grammar_map.get(lang, "javascript")

    @staticmethod
    def _load_language_with_fallbacks(primary_name: str, lang: Language):
        res = _load_language(primary_name)
        if res is not None:
            if lang == Language.JSX:
                lang_obj, gname, version = res
                return lang_obj, gname + "+jsx", version
            return res

        # TSX fallback to TS grammar
        if lang == Language.TSX:
            res = _load_language("typescript")
            if res is not None:
                lang_obj, gname, version = res
                return lang_obj, gname + "+tsx", version
        return None
