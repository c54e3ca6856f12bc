# src/trackscan/scan/python_driver.py
from __future__ import annotations

from importlib import metadata
from typing import Dict, List, Optional, Tuple

import libcst as cst
from libcst.metadata import MetadataWrapper, PositionProvider

from .discovery import Language, SourceUnit
from .parser_registry import DriverInfo, ParserDriver, ParserError
from .syntax import (
    Argument,
    Binding,
    BindingKind,
    Callee,
    CalleeKind,
    CallNode,
    Expr,
    ExprKind,
    Position,
    Scope,
    ScopeKind,
    SyntaxTree,
)


def _dotted(node: cst.BaseExpression) -> str:
    """Flatten a Name/Attribute chain to "a.b.c"; "" for anything else."""
    if isinstance(node, cst.Name):
        return node.value
    if isinstance(node, cst.Attribute):
        head = _dotted(node.value)
        return f"{head}.{node.attr.value}" if head else ""
    return ""


def _split_chain(node: cst.BaseExpression) -> Tuple[Optional[cst.BaseExpression], Tuple[str, ...]]:
    """
    Split `root.a.b` into (root, ("a", "b")) when root is not a Name, or
    (None, ("root", "a", "b")) when it is.
    """
    parts: List[str] = []
    while isinstance(node, cst.Attribute):
        parts.append(node.attr.value)
        node = node.value
    if isinstance(node, cst.Name):
        parts.append(node.value)
        return None, tuple(reversed(parts))
    return node, tuple(reversed(parts))


# -----------------------------------------------------------------------------
# CST → call tree
# -----------------------------------------------------------------------------


class _CallCollector(cst.CSTVisitor):
    """
    Single pass over the module collecting calls (pre-order), scopes and name
    bindings. Attribute assignments (`analytics.write_key = ...`) never bind.
    """

    METADATA_DEPENDENCIES = (PositionProvider,)

    def __init__(self, module: cst.Module) -> None:
        super().__init__()
        self._module = module
        self.calls: List[CallNode] = []
        self.scopes: List[Scope] = [Scope(id=0, kind=ScopeKind.MODULE, name="<module>", parent=None)]
        self.bindings: List[Binding] = []
        self._scope_stack: List[int] = [0]
        self._function_stack: List[str] = []
        self._converted: Dict[int, CallNode] = {}

    # ---- positions -----------------------------------------------------------

    def _start(self, node: cst.CSTNode) -> Position:
        rng = self.get_metadata(PositionProvider, node)
        return rng.start.line, rng.start.column + 1

    def _end(self, node: cst.CSTNode) -> Position:
        rng = self.get_metadata(PositionProvider, node)
        return rng.end.line, rng.end.column + 1

    def _text(self, node: cst.CSTNode) -> str:
        return self._module.code_for_node(node).strip()

    # ---- scopes ----------------------------------------------------------------

    def _push_scope(self, kind: ScopeKind, name: str) -> None:
        scope = Scope(id=len(self.scopes), kind=kind, name=name, parent=self._scope_stack[-1])
        self.scopes.append(scope)
        self._scope_stack.append(scope.id)

    def visit_FunctionDef(self, node: cst.FunctionDef) -> None:
        self._push_scope(ScopeKind.FUNCTION, node.name.value)
        self._function_stack.append(node.name.value)

    def leave_FunctionDef(self, original_node: cst.FunctionDef) -> None:
        self._scope_stack.pop()
        self._function_stack.pop()

    def visit_ClassDef(self, node: cst.ClassDef) -> None:
        self._push_scope(ScopeKind.CLASS, node.name.value)

    def leave_ClassDef(self, original_node: cst.ClassDef) -> None:
        self._scope_stack.pop()

    # ---- bindings ----------------------------------------------------------------

    def _bind(self, name: str, kind: BindingKind, target: str, stmt: cst.CSTNode) -> None:
        self.bindings.append(
            Binding(
                name=name,
                kind=kind,
                target=target,
                scope=self._scope_stack[-1],
                position=self._end(stmt),
                target_position=self._start(stmt),
            )
        )

    def visit_Import(self, node: cst.Import) -> None:
        for alias in node.names:
            full = _dotted(alias.name)
            if not full:
                continue
            if alias.asname is not None and isinstance(alias.asname.name, cst.Name):
                self._bind(alias.asname.name.value, BindingKind.IMPORT, full, node)
            else:
                # `import a.b` binds `a`
                root = full.split(".")[0]
                self._bind(root, BindingKind.IMPORT, root, node)

    def visit_ImportFrom(self, node: cst.ImportFrom) -> None:
        if isinstance(node.names, cst.ImportStar):
            return
        base = "." * len(node.relative) + (_dotted(node.module) if node.module is not None else "")
        for alias in node.names:
            name = _dotted(alias.name)
            if not name:
                continue
            local = name
            if alias.asname is not None and isinstance(alias.asname.name, cst.Name):
                local = alias.asname.name.value
            target = f"{base}{name}" if base.endswith(".") else f"{base}.{name}"
            self._bind(local, BindingKind.IMPORT, target, node)

    def visit_Assign(self, node: cst.Assign) -> None:
        for target in node.targets:
            if isinstance(target.target, cst.Name):
                self._bind_value(target.target.value, node.value, node)

    def visit_AnnAssign(self, node: cst.AnnAssign) -> None:
        if node.value is not None and isinstance(node.target, cst.Name):
            self._bind_value(node.target.value, node.value, node)

    def _bind_value(self, name: str, value: cst.BaseExpression, stmt: cst.CSTNode) -> None:
        if isinstance(value, cst.Await):
            value = value.expression
        if isinstance(value, cst.Call):
            callee = _dotted(value.func)
            if callee:
                self._bind(name, BindingKind.CONSTRUCTED, callee, stmt)
        elif isinstance(value, (cst.Name, cst.Attribute)):
            ref = _dotted(value)
            if ref and ref not in ("True", "False", "None"):
                self._bind(name, BindingKind.REFERENCE, ref, stmt)

    # ---- calls -----------------------------------------------------------------

    def visit_Call(self, node: cst.Call) -> None:
        self.calls.append(self._call_node(node))

    def _call_node(self, node: cst.Call) -> CallNode:
        cached = self._converted.get(id(node))
        if cached is not None:
            return cached
        call = CallNode(
            callee=self._callee(node.func),
            arguments=tuple(self._argument(a) for a in node.args),
            position=self._start(node),
            scope=self._scope_stack[-1],
            text=self._text(node),
            function=self._function_stack[-1] if self._function_stack else "global",
        )
        self._converted[id(node)] = call
        return call

    def _callee(self, func: cst.BaseExpression) -> Callee:
        text = self._text(func)
        if isinstance(func, cst.Name):
            return Callee(kind=CalleeKind.NAME, path=(func.value,), text=text)
        if isinstance(func, cst.Attribute):
            root, path = _split_chain(func)
            if root is None:
                return Callee(kind=CalleeKind.ATTRIBUTE, path=path, text=text)
            if isinstance(root, cst.Call):
                return Callee(kind=CalleeKind.CONSTRUCTED, path=path, receiver=self._call_node(root), text=text)
        return Callee(kind=CalleeKind.OTHER, text=text)

    def _argument(self, arg: cst.Arg) -> Argument:
        keyword = arg.keyword.value if arg.keyword is not None else None
        return Argument(value=self._expr(arg.value), keyword=keyword, star=arg.star or "")

    # ---- expressions -----------------------------------------------------------

    def _expr(self, node: cst.BaseExpression) -> Expr:
        text = self._text(node)

        if isinstance(node, (cst.SimpleString, cst.ConcatenatedString)):
            value = node.evaluated_value
            if isinstance(value, str):
                return Expr(kind=ExprKind.STRING, text=text, value=value)
            return Expr(kind=ExprKind.OTHER, text=text)

        if isinstance(node, (cst.Integer, cst.Float)):
            return Expr(kind=ExprKind.NUMBER, text=text, value=node.evaluated_value)

        if isinstance(node, cst.UnaryOperation) and isinstance(node.expression, (cst.Integer, cst.Float)):
            if isinstance(node.operator, cst.Minus):
                return Expr(kind=ExprKind.NUMBER, text=text, value=-node.expression.evaluated_value)
            if isinstance(node.operator, cst.Plus):
                return Expr(kind=ExprKind.NUMBER, text=text, value=node.expression.evaluated_value)

        if isinstance(node, cst.Name):
            if node.value in ("True", "False"):
                return Expr(kind=ExprKind.BOOLEAN, text=text, value=node.value == "True")
            if node.value == "None":
                return Expr(kind=ExprKind.NULL, text=text)
            return Expr(kind=ExprKind.NAME, text=text, dotted=node.value)

        if isinstance(node, cst.Attribute):
            dotted = _dotted(node)
            if dotted:
                return Expr(kind=ExprKind.NAME, text=text, dotted=dotted)
            return Expr(kind=ExprKind.OTHER, text=text)

        if isinstance(node, (cst.List, cst.Tuple)):
            if any(isinstance(el, cst.StarredElement) for el in node.elements):
                return Expr(kind=ExprKind.OTHER, text=text)
            items = tuple(self._expr(el.value) for el in node.elements)
            return Expr(kind=ExprKind.LIST, text=text, items=items)

        if isinstance(node, cst.Dict):
            entries: List[Tuple[Optional[str], Expr]] = []
            for el in node.elements:
                key = self._dict_key(el.key) if isinstance(el, cst.DictElement) else None
                if key is not None:
                    entries.append((key, self._expr(el.value)))
                else:
                    # `**spread` or a computed key: kept verbatim
                    bare = el.with_changes(comma=cst.MaybeSentinel.DEFAULT)
                    entries.append((None, Expr(kind=ExprKind.OTHER, text=self._text(bare))))
            return Expr(kind=ExprKind.MAPPING, text=text, entries=tuple(entries))

        if isinstance(node, cst.Call):
            return Expr(kind=ExprKind.CALL, text=text, call=self._call_node(node))

        return Expr(kind=ExprKind.OTHER, text=text)

    @staticmethod
    def _dict_key(key: cst.BaseExpression) -> Optional[str]:
        if isinstance(key, (cst.SimpleString, cst.ConcatenatedString)):
            value = key.evaluated_value
            if isinstance(value, str):
                return value
        return None


# -----------------------------------------------------------------------------
# Python driver
# -----------------------------------------------------------------------------


class PythonLibCstDriver(ParserDriver):
    """
    Python syntax adapter built on libcst. The lossless CST gives verbatim source
    text for every expression, which is what Unresolved values carry.
    """

    def __init__(self) -> None:
        self._info = DriverInfo(language=Language.PY, grammar_name="libcst-python", version=self._libcst_version())

    def info(self) -> DriverInfo:
        return self._info

    def parse(self, unit: SourceUnit) -> SyntaxTree:
        try:
            module = cst.parse_module(unit.text)
        except cst.ParserSyntaxError as e:
            raise ParserError(
                code="PARSE_ERROR",
                message="libcst.parse_module failed",
                line=getattr(e, "raw_line", None),
                detail=str(e),
            )
        except Exception as e:
            raise ParserError(code="PARSE_ERROR", message="libcst.parse_module failed", detail=f"{type(e).__name__}: {e}")

        wrapper = MetadataWrapper(module)
        collector = _CallCollector(wrapper.module)
        wrapper.visit(collector)

        return SyntaxTree(
            path=unit.path,
            language=unit.language,
            calls=tuple(collector.calls),
            scopes=tuple(collector.scopes),
            bindings=tuple(collector.bindings),
        )

    @staticmethod
    def _libcst_version() -> str:
        try:
            return metadata.version("libcst")
        except metadata.PackageNotFoundError:
            return getattr(cst, "__version__", "unknown")
