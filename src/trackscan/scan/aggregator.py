# src/trackscan/scan/aggregator.py
from __future__ import annotations

import logging
import threading
import time
from concurrent import futures
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..core.config import env_int
from .defaults import default_registry
from .diagnostics import Diagnostic, DiagnosticKind, DiagnosticSink, Severity
from .discovery import SourceUnit
from .events import TrackingEvent
from .parser_registry import ParserError, ParserRegistry
from .resolver import CallResolver
from .signatures import SignatureRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanConfig:
    """
    Orchestration-level controls. Separate from DiscoveryConfig.
    """
    per_file_timeout_sec: float = 8.0
    max_workers: int = field(default_factory=lambda: env_int("scan.max_workers", 4))


# ==============================================================================
# Results
# ==============================================================================


@dataclass(frozen=True)
class FileScan:
    """Everything one file contributed; handed to the aggregator as a single unit."""
    path: str
    events: Tuple[TrackingEvent, ...] = ()
    diagnostics: Tuple[Diagnostic, ...] = ()
    parsed: bool = False
    elapsed_s: float = 0.0


@dataclass(frozen=True)
class ScanResult:
    events: Tuple[TrackingEvent, ...]
    diagnostics: Tuple[Diagnostic, ...]
    aborted: bool = False
    counters: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "events": [e.to_dict() for e in self.events],
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "aborted": self.aborted,
            "counters": dict(sorted(self.counters.items())),
        }


class EventAggregator:
    """
    Single-writer collector for the run's ordered event sequence.

    Each file arrives as one FileScan; the aggregator never interleaves two files
    and never reorders or drops what it already holds.
    """

    def __init__(self, sink: Optional[DiagnosticSink] = None) -> None:
        self._lock = threading.Lock()
        self._events: List[TrackingEvent] = []
        self._sink = sink if sink is not None else DiagnosticSink()
        self._files_total = 0
        self._files_parsed = 0

    @property
    def sink(self) -> DiagnosticSink:
        return self._sink

    def add_file(self, scan: FileScan) -> None:
        with self._lock:
            self._events.extend(scan.events)
            self._files_total += 1
            if scan.parsed:
                self._files_parsed += 1
        if scan.diagnostics:
            self._sink.extend(scan.diagnostics)

    def record(self, diagnostic: Diagnostic) -> None:
        self._sink.emit(diagnostic)

    def result(self, aborted: bool = False) -> ScanResult:
        with self._lock:
            events = tuple(self._events)
            counters = {
                "files_total": self._files_total,
                "files_parsed": self._files_parsed,
                "events": len(events),
            }
        for key, value in self._sink.counters().items():
            counters[f"diagnostics_{key}"] = value
        return ScanResult(events=events, diagnostics=tuple(self._sink.items()), aborted=aborted, counters=counters)


# ==============================================================================
# Single file
# ==============================================================================


def scan_file(
    unit: SourceUnit,
    registry: Optional[SignatureRegistry] = None,
    *,
    parsers: Optional[ParserRegistry] = None,
    resolver: Optional[CallResolver] = None,
) -> FileScan:
    """
    Parse one source unit and resolve every call in it. Never raises for a bad
    file: parse failures and resolver faults come back as diagnostics.
    """
    start = time.perf_counter()
    parsers = parsers or ParserRegistry()
    resolver = resolver or CallResolver(registry or default_registry())

    try:
        tree = parsers.parse(unit)
    except ParserError as e:
        unsupported = e.code == "UNSUPPORTED_LANGUAGE"
        diag = Diagnostic(
            path=unit.path,
            message=e.message,
            kind=DiagnosticKind.UNSUPPORTED_LANGUAGE if unsupported else DiagnosticKind.PARSE_ERROR,
            severity=Severity.WARN if unsupported else Severity.ERROR,
            detail=e.describe(),
            line=e.line,
        )
        logger.warning("skipping %s: %s", unit.path, e.describe())
        return FileScan(path=unit.path, diagnostics=(diag,), elapsed_s=time.perf_counter() - start)
    except Exception as e:
        diag = Diagnostic(
            path=unit.path,
            message="Syntax adapter failed",
            kind=DiagnosticKind.PARSE_ERROR,
            detail=f"parse-exception:{type(e).__name__}:{e}",
        )
        logger.warning("skipping %s: %s", unit.path, diag.detail)
        return FileScan(path=unit.path, diagnostics=(diag,), elapsed_s=time.perf_counter() - start)

    events: List[TrackingEvent] = []
    diagnostics: List[Diagnostic] = []
    for call in tree.calls:
        try:
            event = resolver.resolve(tree, call)
        except Exception as e:
            diagnostics.append(
                Diagnostic(
                    path=unit.path,
                    message="Call resolution failed",
                    kind=DiagnosticKind.INTERNAL_ERROR,
                    detail=f"resolve-exception:{type(e).__name__}:{e} call={call.text[:120]}",
                    line=call.position[0],
                )
            )
            logger.warning("%s:%d: call resolution failed: %s", unit.path, call.position[0], e)
            continue
        if event is not None:
            events.append(event)

    logger.debug("scanned %s: %d calls, %d events", unit.path, len(tree.calls), len(events))
    return FileScan(
        path=unit.path,
        events=tuple(events),
        diagnostics=tuple(diagnostics),
        parsed=True,
        elapsed_s=time.perf_counter() - start,
    )


# ==============================================================================
# Parallel scanner
# ==============================================================================


class Scanner:
    """
    Scans many source units on a thread pool while keeping output in input order.

    Results are handed to the aggregator strictly in input order through a
    bounded sliding window. `abort()` may be called from any thread: no new file
    is submitted, files already finished are still flushed in order, and the
    result is marked aborted.
    """

    def __init__(
        self,
        registry: Optional[SignatureRegistry] = None,
        cfg: Optional[ScanConfig] = None,
        *,
        parsers: Optional[ParserRegistry] = None,
        aggregator: Optional[EventAggregator] = None,
    ) -> None:
        self._cfg = cfg or ScanConfig()
        self._resolver = CallResolver(registry or default_registry())
        self._parsers = parsers or ParserRegistry()
        self._aggregator = aggregator or EventAggregator()
        self._abort = threading.Event()

    @property
    def aggregator(self) -> EventAggregator:
        return self._aggregator

    def abort(self) -> None:
        self._abort.set()

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def scan_one(self, unit: SourceUnit) -> FileScan:
        return scan_file(unit, parsers=self._parsers, resolver=self._resolver)

    def run(self, units: Iterable[SourceUnit]) -> ScanResult:
        """
        Deterministic, order-preserving concurrent scan using a sliding window.
        """
        max_workers = max(1, self._cfg.max_workers)
        agg = self._aggregator
        start = time.perf_counter()

        pool = futures.ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="trackscan-scan")
        pending: Dict[int, futures.Future] = {}
        unit_by_idx: Dict[int, SourceUnit] = {}
        it = enumerate(units)
        next_submit = 0
        next_emit = 0
        exhausted = False

        def _fill() -> None:
            nonlocal next_submit, exhausted
            while not exhausted and len(pending) < max_workers and not self._abort.is_set():
                try:
                    i, unit = next(it)
                except StopIteration:
                    exhausted = True
                    break
                unit_by_idx[i] = unit
                pending[i] = pool.submit(self.scan_one, unit)
                next_submit = i + 1

        try:
            _fill()
            while next_emit < next_submit:
                if self._abort.is_set():
                    break

                fut = pending[next_emit]
                unit = unit_by_idx[next_emit]

                # Non-blocking poll loop with wall-time timeout
                start_wait = time.perf_counter()
                while not fut.done() and not self._abort.is_set():
                    if time.perf_counter() - start_wait >= self._cfg.per_file_timeout_sec:
                        break
                    time.sleep(0.002)

                if fut.done():
                    agg.add_file(fut.result())
                elif self._abort.is_set():
                    break
                else:
                    # Threads cannot be interrupted; the worker finishes in the background
                    fut.cancel()
                    agg.add_file(
                        FileScan(
                            path=unit.path,
                            diagnostics=(
                                Diagnostic(
                                    path=unit.path,
                                    message="File scan exceeded timeout",
                                    kind=DiagnosticKind.TIMEOUT,
                                    detail=f"per_file_timeout_sec={self._cfg.per_file_timeout_sec}",
                                ),
                            ),
                        )
                    )
                    logger.warning("timed out scanning %s", unit.path)

                del pending[next_emit]
                del unit_by_idx[next_emit]
                next_emit += 1
                _fill()

            if self._abort.is_set():
                self._flush_after_abort(pending, unit_by_idx, next_emit)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        result = agg.result(aborted=self._abort.is_set())
        logger.info(
            "scan finished: %d files, %d events, %d diagnostics in %.2fs%s",
            result.counters.get("files_total", 0),
            len(result.events),
            len(result.diagnostics),
            time.perf_counter() - start,
            " (aborted)" if result.aborted else "",
        )
        return result

    def _flush_after_abort(
        self,
        pending: Dict[int, futures.Future],
        unit_by_idx: Dict[int, SourceUnit],
        next_emit: int,
    ) -> None:
        """Hand over finished files in input order, cancel the rest, record the abort."""
        skipped = 0
        for i in sorted(pending):
            fut = pending[i]
            if i >= next_emit and fut.done() and not fut.cancelled():
                self._aggregator.add_file(fut.result())
            else:
                fut.cancel()
                skipped += 1
        pending.clear()
        unit_by_idx.clear()
        self._aggregator.record(
            Diagnostic(
                path="",
                message="Scan aborted",
                kind=DiagnosticKind.ABORTED,
                severity=Severity.WARN,
                detail=f"unfinished_files={skipped}",
            )
        )
        logger.warning("scan aborted; %d in-flight files dropped", skipped)
