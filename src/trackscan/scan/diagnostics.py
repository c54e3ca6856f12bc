# src/trackscan/scan/diagnostics.py
from __future__ import annotations

import enum
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence


class Severity(str, enum.Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class DiagnosticKind(str, enum.Enum):
    # Discovery / IO
    IO_ERROR = "IO_ERROR"
    ENCODING_ERROR = "ENCODING_ERROR"
    # Parsing
    PARSE_ERROR = "PARSE_ERROR"
    UNSUPPORTED_LANGUAGE = "UNSUPPORTED_LANGUAGE"
    # Limits & run control
    TIMEOUT = "TIMEOUT"
    ABORTED = "ABORTED"
    # Catch-all
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass(frozen=True)
class Diagnostic:
    """
    Per-file side-channel record. Never carries events; the event sequence of a run is
    independent of its diagnostics.
    """
    path: str
    message: str
    kind: DiagnosticKind = DiagnosticKind.PARSE_ERROR
    severity: Severity = Severity.ERROR
    detail: str = ""
    line: Optional[int] = None

    def to_dict(self) -> Dict:
        return {
            "file": self.path,
            "message": self.message,
            "kind": self.kind.value,
            "severity": self.severity.value,
            "detail": self.detail,
            "line": self.line,
        }


class DiagnosticSink:
    """
    Thread-safe diagnostic collector.

    - emit(): add a diagnostic, update counters
    - drain(): atomically return & clear buffered diagnostics
    - items(): snapshot without clearing
    - counters(): snapshot of counters (by kind and severity)
    """

    __slots__ = ("_lock", "_buffer", "_counts")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buffer: List[Diagnostic] = []
        self._counts: Dict[str, int] = {"total": 0}

    def emit(self, diagnostic: Diagnostic) -> None:
        with self._lock:
            self._buffer.append(diagnostic)
            self._counts["total"] = self._counts.get("total", 0) + 1
            kind_key = f"kind:{diagnostic.kind.value}"
            sev_key = f"sev:{diagnostic.severity.value}"
            self._counts[kind_key] = self._counts.get(kind_key, 0) + 1
            self._counts[sev_key] = self._counts.get(sev_key, 0) + 1

    def extend(self, diagnostics: Iterable[Diagnostic]) -> None:
        for d in diagnostics:
            self.emit(d)

    def drain(self) -> List[Diagnostic]:
        with self._lock:
            out = self._buffer
            self._buffer = []
            return out

    def items(self) -> Sequence[Diagnostic]:
        with self._lock:
            return tuple(self._buffer)

    def counters(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)
