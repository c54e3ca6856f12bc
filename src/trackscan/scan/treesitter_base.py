# src/trackscan/scan/treesitter_base.py
from __future__ import annotations

import importlib
import threading
from typing import Dict, List, Optional, Tuple

from .discovery import Language, SourceUnit
from .parser_registry import DriverInfo, ParserDriver, ParserError
from .syntax import Binding, BindingKind, CallNode, Position, Scope, ScopeKind, SyntaxTree

# -----------------------------------------------------------------------------
# Optional deps & grammar loaders
# -----------------------------------------------------------------------------

_TS_IMPORT_ERROR: Optional[Exception] = None
try:
    from tree_sitter import Parser as TSParser  # type: ignore
except Exception as e:  # pragma: no cover
    _TS_IMPORT_ERROR = e
    TSParser = None  # type: ignore


def load_grammar(module_name: str, attr: str = "language"):
    """
    Obtain a tree-sitter language from an individual grammar wheel
    (tree_sitter_javascript, tree_sitter_ruby, ...).
    Returns (language_obj, version_string) or None.
    """
    try:
        mod = importlib.import_module(module_name)
        lang_obj = getattr(mod, attr)()  # type: ignore[attr-defined]
        return lang_obj, getattr(mod, "__version__", "unknown")
    except Exception:
        return None


def named(node) -> List:
    return [c for c in node.named_children if c.type != "comment"]


# -----------------------------------------------------------------------------
# Shared tree walker
# -----------------------------------------------------------------------------


class TreeBuilder:
    """
    Base walker over one tree-sitter tree. Subclasses fill in `_enter` and
    `_leave`; positions, scopes and bindings are kept here.
    """

    def __init__(self, raw: bytes) -> None:
        self._raw = raw
        self.calls: List[CallNode] = []
        self.scopes: List[Scope] = [Scope(id=0, kind=ScopeKind.MODULE, name="<module>", parent=None)]
        self.bindings: List[Binding] = []
        self.errors: List[Tuple[int, str]] = []
        self._scope_stack: List[int] = [0]
        self._converted: Dict[Tuple[int, int, str], CallNode] = {}

    # ---- positions & text ------------------------------------------------------

    def _point(self, byte: int, point) -> Position:
        # tree-sitter columns are byte offsets; report characters
        col_bytes = int(point[1])
        prefix = self._raw[byte - col_bytes:byte].decode("utf-8", "replace")
        return int(point[0]) + 1, len(prefix) + 1

    def _start(self, node) -> Position:
        return self._point(node.start_byte, node.start_point)

    def _end(self, node) -> Position:
        return self._point(node.end_byte, node.end_point)

    def _text(self, node) -> str:
        return self._raw[node.start_byte:node.end_byte].decode("utf-8", "replace")

    # ---- traversal ---------------------------------------------------------------

    def walk(self, root) -> None:
        stack: List[Tuple[object, bool]] = [(root, False)]
        while stack:
            node, leaving = stack.pop()
            if leaving:
                self._leave(node)
                continue
            if node.type == "ERROR" or node.is_missing:
                self.errors.append((node.start_point[0] + 1, "missing syntax" if node.is_missing else "parse error"))
                continue
            self._enter(node)
            stack.append((node, True))
            for child in reversed(node.children):
                stack.append((child, False))

    def _enter(self, node) -> None:
        raise NotImplementedError

    def _leave(self, node) -> None:
        raise NotImplementedError

    def _push_scope(self, kind: ScopeKind, name: str) -> None:
        scope = Scope(id=len(self.scopes), kind=kind, name=name, parent=self._scope_stack[-1])
        self.scopes.append(scope)
        self._scope_stack.append(scope.id)

    def _bind(self, name: str, kind: BindingKind, target: str, stmt) -> None:
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


# -----------------------------------------------------------------------------
# Driver base
# -----------------------------------------------------------------------------


class TreeSitterDriver(ParserDriver):
    """
    Tree-sitter adapter base.

      - Lazy initialization so import/setup errors surface on first use.
      - A tree with ERROR/MISSING nodes is rejected with ParserError("SYNTAX_ERRORS")
        instead of yielding calls from a partial tree.
      - Parser objects are not shared across threads without the lock.
    """

    #: wheels named in GRAMMAR_LOAD_FAILED details
    grammar_wheels = ""

    def __init__(self, lang: Language) -> None:
        self._lang = lang
        self._init_error: Optional[ParserError] = None
        self._parser = None
        self._info: Optional[DriverInfo] = None
        self._lock = threading.Lock()

        if _TS_IMPORT_ERROR is not None or TSParser is None:
            self._init_error = ParserError(
                code="LIB_DEP_MISSING",
                message="tree_sitter import failed",
                detail=repr(_TS_IMPORT_ERROR),
            )

    # ---- hooks -----------------------------------------------------------------

    def _grammar_name(self) -> str:
        raise NotImplementedError

    def _load(self):
        """(language_obj, grammar_name, version) or None."""
        raise NotImplementedError

    def _builder(self, raw: bytes) -> TreeBuilder:
        raise NotImplementedError

    # ---- public API -----------------------------------------------------------

    def info(self) -> DriverInfo:
        if self._init_error:
            raise self._init_error
        with self._lock:
            if self._info is None:
                self._setup_parser()
        return self._info  # type: ignore[return-value]

    def parse(self, unit: SourceUnit) -> SyntaxTree:
        self.info()
        raw = unit.text.encode("utf-8")

        try:
            with self._lock:
                tree = self._parser.parse(raw)  # type: ignore[union-attr]
        except Exception as e:
            raise ParserError(code="PARSE_ERROR", message="Tree-sitter parse failed", detail=str(e))

        builder = self._builder(raw)
        builder.walk(tree.root_node)

        if builder.errors or tree.root_node.has_error:
            errors = builder.errors or [(1, "parse error")]
            details = "; ".join(f"line {line}: {msg}" for line, msg in errors[:5])
            if len(errors) > 5:
                details += f" (and {len(errors) - 5} more)"
            raise ParserError(
                code="SYNTAX_ERRORS",
                message=f"Found {len(errors)} syntax errors in {unit.path}",
                line=errors[0][0],
                detail=details,
            )

        return SyntaxTree(
            path=unit.path,
            language=unit.language,
            calls=tuple(builder.calls),
            scopes=tuple(builder.scopes),
            bindings=tuple(builder.bindings),
        )

    # ---- internals ------------------------------------------------------------

    def _setup_parser(self) -> None:
        loaded = self._load()
        if loaded is None:
            raise ParserError(
                code="GRAMMAR_LOAD_FAILED",
                message=f"Could not load grammar: {self._grammar_name()}",
                detail=f"Tried {self.grammar_wheels} wheels; none matched",
            )

        lang_obj, grammar_name, version = loaded
        # Modern wheels expose grammars as PyCapsule; wrap into tree_sitter.Language if needed.
        try:
            import tree_sitter as _ts  # type: ignore
            if not isinstance(lang_obj, _ts.Language):
                lang_obj = _ts.Language(lang_obj)  # type: ignore[arg-type]
        except Exception as e:
            raise ParserError(
                code="PARSER_INIT_FAILED",
                message="Could not wrap grammar into tree_sitter.Language",
                detail=str(e),
            )

        parser = TSParser()  # type: ignore[call-arg]
        try:
            # Support both APIs: set_language(Language) and the language property
            set_lang = getattr(parser, "set_language", None)
            if callable(set_lang):
                set_lang(lang_obj)
            else:
                parser.language = lang_obj
            parser.parse(b"")
        except Exception as e:
            raise ParserError(
                code="PARSER_INIT_FAILED",
                message="Failed to configure Tree-sitter language",
                detail=str(e),
            )

        self._parser = parser
        self._info = DriverInfo(language=self._lang, grammar_name=grammar_name, version=version)
