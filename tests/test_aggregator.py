import sys
import threading
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from trackscan.scan.aggregator import EventAggregator, FileScan, ScanConfig, Scanner, scan_file
from trackscan.scan.api import scan_sources
from trackscan.scan.diagnostics import DiagnosticKind, Severity
from trackscan.scan.discovery import Language, SourceUnit
from trackscan.scan.parser_registry import ParserDriver, ParserError, ParserRegistry
from trackscan.scan.python_driver import PythonLibCstDriver
from trackscan.scan.signatures import SignatureRegistry

REGISTRY = SignatureRegistry.from_document({"version": 1, "custom_functions": ["track(EVENT_NAME, PROPERTIES)"]})


def _unit(name: str, *events: str) -> SourceUnit:
    body = "".join(f"track({e!r}, {{}})\n" for e in events)
    return SourceUnit(path=name, text=body, language=Language.PY)


def _names(result):
    return [(e.location.path, e.event_name.value) for e in result.events]


class _SlowDriver(ParserDriver):
    """Python driver that sleeps per file, longest for the first files."""

    def __init__(self, delays):
        self._inner = PythonLibCstDriver()
        self._delays = delays

    def info(self):
        return self._inner.info()

    def parse(self, unit):
        time.sleep(self._delays.get(unit.path, 0.0))
        return self._inner.parse(unit)


def test_events_follow_input_order_then_source_order():
    units = [_unit(f"f{i}.py", f"e{i}a", f"e{i}b") for i in range(6)]
    delays = {"f0.py": 0.05, "f1.py": 0.03, "f2.py": 0.01}
    scanner = Scanner(REGISTRY, ScanConfig(max_workers=4), parsers=ParserRegistry({Language.PY: _SlowDriver(delays)}))
    result = scanner.run(units)

    expected = [(f"f{i}.py", f"e{i}{s}") for i in range(6) for s in "ab"]
    assert _names(result) == expected
    assert result.counters["files_total"] == 6
    assert result.counters["files_parsed"] == 6
    assert result.counters["events"] == 12
    assert not result.aborted


def test_repeated_calls_are_not_deduplicated():
    result = scan_sources([_unit("a.py", "same", "same")], REGISTRY)
    assert [e.location.line for e in result.events] == [1, 2]


def test_parse_error_is_isolated_to_its_file():
    units = [
        _unit("good1.py", "one"),
        SourceUnit(path="bad.py", text="def broken(:\n", language=Language.PY),
        _unit("good2.py", "two"),
    ]
    result = scan_sources(units, REGISTRY)

    assert _names(result) == [("good1.py", "one"), ("good2.py", "two")]
    (diag,) = result.diagnostics
    assert diag.path == "bad.py"
    assert diag.kind is DiagnosticKind.PARSE_ERROR
    assert diag.to_dict()["file"] == "bad.py"
    assert diag.to_dict()["message"]
    assert result.counters["files_parsed"] == 2
    assert result.counters["diagnostics_kind:PARSE_ERROR"] == 1


def test_unsupported_language_is_a_warning():
    units = [SourceUnit(path="x.rs", text="track(\"a\");", language=Language.UNKNOWN), _unit("a.py", "ok")]
    result = scan_sources(units, REGISTRY)
    assert _names(result) == [("a.py", "ok")]
    assert result.diagnostics[0].kind is DiagnosticKind.UNSUPPORTED_LANGUAGE
    assert result.diagnostics[0].severity is Severity.WARN


def test_resolver_fault_becomes_internal_error_and_keeps_other_calls():
    class _Flaky:
        def resolve(self, tree, call):
            if call.arguments and call.arguments[0].value.value == "boom":
                raise RuntimeError("boom")
            from trackscan.scan.resolver import CallResolver

            return CallResolver(REGISTRY).resolve(tree, call)

    scan = scan_file(_unit("a.py", "before", "boom", "after"), resolver=_Flaky())
    assert [e.event_name.value for e in scan.events] == ["before", "after"]
    (diag,) = scan.diagnostics
    assert diag.kind is DiagnosticKind.INTERNAL_ERROR
    assert diag.line == 2
    assert scan.parsed


def test_parser_error_line_is_carried():
    class _Failing(ParserDriver):
        def info(self):
            raise NotImplementedError

        def parse(self, unit):
            raise ParserError("SYNTAX_ERRORS", "bad", line=7, detail="line 7: parse error")

    scan = scan_file(_unit("a.py", "x"), REGISTRY, parsers=ParserRegistry({Language.PY: _Failing()}))
    (diag,) = scan.diagnostics
    assert diag.line == 7
    assert "SYNTAX_ERRORS" in diag.detail
    assert not scan.parsed


def test_timeout_records_diagnostic_and_moves_on():
    delays = {"slow.py": 0.5}
    scanner = Scanner(
        REGISTRY,
        ScanConfig(per_file_timeout_sec=0.05, max_workers=2),
        parsers=ParserRegistry({Language.PY: _SlowDriver(delays)}),
    )
    result = scanner.run([_unit("slow.py", "late"), _unit("fast.py", "quick")])
    assert _names(result) == [("fast.py", "quick")]
    assert [d.kind for d in result.diagnostics] == [DiagnosticKind.TIMEOUT]
    assert result.diagnostics[0].path == "slow.py"


def test_abort_flushes_completed_files_and_marks_result():
    gate = threading.Event()
    units = [_unit("f0.py", "zero"), _unit("f1.py", "one"), _unit("f2.py", "two")]

    class _Gated(ParserDriver):
        def __init__(self):
            self._inner = PythonLibCstDriver()

        def info(self):
            return self._inner.info()

        def parse(self, unit):
            if unit.path == "f1.py":
                scanner.abort()
                gate.wait(1.0)
            return self._inner.parse(unit)

    scanner = Scanner(REGISTRY, ScanConfig(max_workers=1), parsers=ParserRegistry({Language.PY: _Gated()}))
    result = scanner.run(units)
    gate.set()

    assert result.aborted
    assert ("f0.py", "zero") in _names(result)
    assert ("f2.py", "two") not in _names(result)
    assert result.diagnostics[-1].kind is DiagnosticKind.ABORTED
    assert result.to_dict()["aborted"] is True


def test_aggregator_keeps_files_whole():
    agg = EventAggregator()
    first = scan_file(_unit("a.py", "a1", "a2"), REGISTRY)
    second = scan_file(_unit("b.py", "b1"), REGISTRY)
    agg.add_file(first)
    agg.add_file(FileScan(path="empty.py"))
    agg.add_file(second)
    result = agg.result()
    assert _names(result) == [("a.py", "a1"), ("a.py", "a2"), ("b.py", "b1")]
    assert result.counters["files_total"] == 3
    assert result.counters["files_parsed"] == 2


def test_result_serializes_to_plain_data():
    result = scan_sources([_unit("a.py", "x")], REGISTRY)
    data = result.to_dict()
    assert data["events"][0]["event_name"] == {"type": "string", "value": "x"}
    assert data["events"][0]["origin"] == {"kind": "custom", "name": "track"}
    assert data["events"][0]["location"] == {"file": "a.py", "line": 1, "column": 1}
    assert data["diagnostics"] == []
    assert list(data["counters"]) == sorted(data["counters"])
