# src/trackscan/scan/parser_registry.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from .discovery import Language, SourceUnit
from .syntax import SyntaxTree

logger = logging.getLogger(__name__)


# ==============================================================================
# Driver contract and typed error
# ==============================================================================


@dataclass(frozen=True)
class DriverInfo:
    language: Language
    grammar_name: str
    version: str       # grammar/library version


class ParserError(Exception):
    """
    Rich driver error propagated to the aggregator, which records it as a
    per-file diagnostic.
    """
    def __init__(
        self,
        code: str,
        message: str,
        *,
        line: Optional[int] = None,
        detail: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.line = line
        self.detail = detail or ""

    def describe(self) -> str:
        text = f"{self.code}: {self.message}"
        if self.detail:
            text += f" | {self.detail}"
        return text


class ParserDriver:
    """
    Language-specific syntax adapter interface.

    Implementations MUST be thread-safe for concurrent parse calls and:
      - Return a DriverInfo with grammar_name/version populated.
      - Implement parse(unit) returning a complete SyntaxTree; on irrecoverable
        error raise ParserError rather than returning a partial, misleading tree.
    """

    def info(self) -> DriverInfo:
        raise NotImplementedError

    def parse(self, unit: SourceUnit) -> SyntaxTree:
        raise NotImplementedError


# ==============================================================================
# Registry
# ==============================================================================


class ParserRegistry:
    """
    Owns language → driver bindings. Drivers are built lazily on first use so a
    missing optional grammar only affects files of that language.
    """

    def __init__(self, drivers: Optional[Mapping[Language, ParserDriver]] = None) -> None:
        self._explicit = drivers is not None
        self._drivers: Dict[Language, ParserDriver] = dict(drivers or {})
        self._lock = threading.Lock()

    def driver_for(self, lang: Language) -> ParserDriver:
        with self._lock:
            drv = self._drivers.get(lang)
            if drv is None and not self._explicit:
                drv = _default_driver(lang)
                if drv is not None:
                    self._drivers[lang] = drv
        if drv is None:
            raise ParserError(
                code="UNSUPPORTED_LANGUAGE",
                message=f"No syntax adapter for language {lang.value}",
            )
        return drv

    def parse(self, unit: SourceUnit) -> SyntaxTree:
        drv = self.driver_for(unit.language)
        tree = drv.parse(unit)
        logger.debug("parsed %s: %d calls, %d bindings", unit.path, len(tree.calls), len(tree.bindings))
        return tree


def _default_driver(lang: Language) -> Optional[ParserDriver]:
    if lang is Language.PY:
        try:
            from .python_driver import PythonLibCstDriver
        except ImportError as e:
            raise ParserError(code="LIB_DEP_MISSING", message="libcst import failed", detail=repr(e))

        return PythonLibCstDriver()
    if lang in (Language.JS, Language.TS, Language.JSX, Language.TSX):
        from .ts_driver import TSTreeSitterDriver

        return TSTreeSitterDriver(lang)
    if lang is Language.RB:
        from .ruby_driver import RubyTreeSitterDriver

        return RubyTreeSitterDriver(lang)
    if lang is Language.GO:
        from .go_driver import GoTreeSitterDriver

        return GoTreeSitterDriver(lang)
    return None
