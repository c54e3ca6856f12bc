# src/trackscan/scan/discovery.py
from __future__ import annotations

import fnmatch
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional, Sequence, Set, Tuple

from .diagnostics import Diagnostic, DiagnosticKind, DiagnosticSink, Severity

logger = logging.getLogger(__name__)


# ---- Source model -------------------------------------------------------------


class Language(Enum):
    PY = "py"
    JS = "js"
    TS = "ts"
    JSX = "jsx"
    TSX = "tsx"
    RB = "rb"
    GO = "go"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, tag: str) -> "Language":
        """Map a language tag ("py", "python", "typescript", ...) to a Language."""
        key = (tag or "").strip().lower()
        for lang in cls:
            if lang.value == key:
                return lang
        return _LANGUAGE_ALIASES.get(key, cls.UNKNOWN)


_LANGUAGE_ALIASES = {
    "python": Language.PY,
    "javascript": Language.JS,
    "typescript": Language.TS,
    "ruby": Language.RB,
    "golang": Language.GO,
}

JS_FAMILY = frozenset({Language.JS, Language.TS, Language.JSX, Language.TSX})


@dataclass(frozen=True)
class SourceUnit:
    """
    One input of the engine: source text plus a language tag.
    `path` is whatever the caller wants reported in locations (repo-relative for
    discovered files).
    """
    path: str
    text: str
    language: Language


@dataclass(frozen=True)
class DiscoveryConfig:
    max_file_size_bytes: int = 5 * 1024 * 1024  # 5 MiB

    include_globs: Tuple[str, ...] = ()
    exclude_globs: Tuple[str, ...] = (
        ".git/**",
        ".hg/**",
        ".svn/**",
        "node_modules/**",
        "dist/**",
        "build/**",
        ".venv/**",
        "venv/**",
        "__pycache__/**",
        "*.min.js",
        "*.bundle.js",
        "*.d.ts",
    )

    enable_langs: Set[Language] = field(
        default_factory=lambda: {
            Language.PY, Language.JS, Language.TS, Language.JSX, Language.TSX, Language.RB, Language.GO,
        }
    )


# ---- Utility helpers ----------------------------------------------------------


def _posix_relpath(p: Path, root: Path) -> str:
    return p.relative_to(root).as_posix()


def _matches_any(path: str, patterns: Sequence[str]) -> bool:
    for pat in patterns:
        if fnmatch.fnmatch(path, pat):
            return True
        # "dir/**" should also catch the directory at any depth
        if pat.endswith("/**") and ("/" + path).find("/" + pat[:-2]) != -1:
            return True
    return False


_BOMS: Tuple[Tuple[bytes, str], ...] = (
    (b"\xff\xfe\x00\x00", "utf-32-le"),
    (b"\x00\x00\xfe\xff", "utf-32-be"),
    (b"\xef\xbb\xbf", "utf-8-sig"),
    (b"\xff\xfe", "utf-16-le"),
    (b"\xfe\xff", "utf-16-be"),
)


def _detect_bom(data: bytes) -> Optional[str]:
    for sig, name in _BOMS:
        if data.startswith(sig):
            return name
    return None


def _is_binary_sample(sample: bytes) -> bool:
    if not sample:
        return False
    if b"\x00" in sample:
        return True
    ctrl = sum(1 for b in sample if (b < 32 and b not in (9, 10, 11, 12, 13)))
    return ctrl / max(1, len(sample)) > 0.02


def ext_language(path: str) -> Language:
    p = path.lower()
    if p.endswith(".py"):
        return Language.PY
    if p.endswith(".cjs") or p.endswith(".mjs") or p.endswith(".js"):
        return Language.JS
    if p.endswith(".ts"):
        return Language.TS
    if p.endswith(".tsx"):
        return Language.TSX
    if p.endswith(".jsx"):
        return Language.JSX
    if p.endswith(".rb"):
        return Language.RB
    if p.endswith(".go"):
        return Language.GO
    return Language.UNKNOWN


def decode_source(raw: bytes) -> str:
    """BOM first, then strict UTF-8. Raises UnicodeDecodeError."""
    bom = _detect_bom(raw)
    if bom:
        # the explicit-endian codecs keep the BOM as U+FEFF
        return raw.decode(bom).lstrip("\ufeff")
    return raw.decode("utf-8")


# ---- Discovery core -----------------------------------------------------------


def iter_sources(
    root: Path,
    cfg: Optional[DiscoveryConfig] = None,
    sink: Optional[DiagnosticSink] = None,
) -> Iterator[SourceUnit]:
    """
    Walk a directory and yield SourceUnits for files in an enabled language.
    Ordering is deterministic (lexicographic, depth-first). Read and decode
    failures are recorded in `sink`; unsupported or excluded files are skipped silently.
    """
    cfg = cfg or DiscoveryConfig()
    sink = sink if sink is not None else DiagnosticSink()
    root = Path(root).resolve()
    if not root.is_dir():
        raise NotADirectoryError(f"Discovery root not found or not a directory: {root}")

    for path in _iter_paths_lex(root, sink):
        rel = _posix_relpath(path, root)
        if cfg.include_globs and not _matches_any(rel, cfg.include_globs):
            continue
        if _matches_any(rel, cfg.exclude_globs):
            continue

        lang = ext_language(rel)
        if lang not in cfg.enable_langs:
            continue

        try:
            size = path.stat().st_size
            if size > cfg.max_file_size_bytes:
                logger.debug("skipping %s: %d bytes over size budget", rel, size)
                continue
            raw = path.read_bytes()
        except OSError as e:
            sink.emit(Diagnostic(path=rel, message="Read failed", kind=DiagnosticKind.IO_ERROR, severity=Severity.WARN, detail=str(e)))
            continue

        if _detect_bom(raw) is None and _is_binary_sample(raw[: 64 * 1024]):
            logger.debug("skipping %s: binary content", rel)
            continue

        try:
            text = decode_source(raw)
        except UnicodeDecodeError as e:
            sink.emit(Diagnostic(path=rel, message="Could not decode source", kind=DiagnosticKind.ENCODING_ERROR, severity=Severity.WARN, detail=str(e)))
            continue

        yield SourceUnit(path=rel, text=text, language=lang)


def _iter_paths_lex(root: Path, sink: DiagnosticSink) -> Iterator[Path]:
    """
    Deterministic lexicographic directory walk. Symlinked directories are not followed.
    """
    stack: list[Path] = [root]

    while stack:
        cur = stack.pop()
        try:
            entries = sorted(os.scandir(cur), key=lambda e: e.name)
        except OSError as e:
            rel = _posix_relpath(cur, root) if cur != root else "."
            sink.emit(Diagnostic(path=rel, message="Directory read failed", kind=DiagnosticKind.IO_ERROR, severity=Severity.WARN, detail=str(e)))
            continue

        # Files of this directory first, then subdirectories in name order
        subdirs: list[Path] = []
        for entry in entries:
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
                is_file = entry.is_file(follow_symlinks=True)
            except OSError:
                continue
            if is_dir:
                subdirs.append(Path(entry.path))
            elif is_file:
                yield Path(entry.path)
        stack.extend(reversed(subdirs))
