import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from trackscan.scan.discovery import Language, SourceUnit
from trackscan.scan.go_driver import GoTreeSitterDriver, package_name
from trackscan.scan.parser_registry import ParserError
from trackscan.scan.syntax import BindingKind, CalleeKind, ExprKind


@pytest.mark.parametrize(
    "path, name",
    [
        ("github.com/segmentio/analytics-go/v3", "analytics"),
        ("github.com/posthog/posthog-go", "posthog"),
        ("github.com/mixpanel/mixpanel-go", "mixpanel"),
        ("github.com/amplitude/analytics-go/amplitude", "amplitude"),
        ("github.com/nats-io/go-nats", "nats"),
        ("gopkg.in/yaml.v3", "yaml"),
        ("context", "context"),
    ],
)
def test_package_name_guesses(path, name):
    assert package_name(path) == name


def _parse(source: str):
    pytest.importorskip("tree_sitter")
    pytest.importorskip("tree_sitter_go")
    return GoTreeSitterDriver(Language.GO).parse(SourceUnit(path="main.go", text=source, language=Language.GO))


def test_imports_and_bindings():
    source = """\
package main

import (
	"github.com/segmentio/analytics-go/v3"
	sp "github.com/snowplow/snowplow-golang-tracker/tracker"
	_ "embed"
)

func run() {
	client := analytics.New("key")
	tracker, err := sp.InitTracker()
	var ev = &analytics.Track{Event: "x"}
	alias := client
	_ = err
}
"""
    bindings = _parse(source).bindings
    found = {(b.name, b.kind, b.target) for b in bindings}
    assert ("analytics", BindingKind.IMPORT, "github.com/segmentio/analytics-go/v3") in found
    assert ("sp", BindingKind.IMPORT, "github.com/snowplow/snowplow-golang-tracker/tracker") in found
    assert ("client", BindingKind.CONSTRUCTED, "analytics.New") in found
    assert ("tracker", BindingKind.CONSTRUCTED, "sp.InitTracker") in found
    assert ("ev", BindingKind.CONSTRUCTED, "analytics.Track") in found
    assert ("alias", BindingKind.REFERENCE, "client") in found
    assert not any(b.name in ("err", "_") for b in bindings)


def test_struct_literal_payload_is_a_keyword_call():
    source = """\
package main

func send() {
	client.Enqueue(analytics.Track{
		UserId: "u1",
		Event:  "Signed Up",
		Properties: analytics.NewProperties().
			Set("plan", "pro").
			Set("seats", 3),
	})
}
"""
    tree = _parse(source)
    enqueue = tree.calls[0]
    assert enqueue.callee.path == ("client", "Enqueue")
    assert enqueue.function == "send"

    payload = enqueue.arguments[0].value
    assert payload.kind is ExprKind.CALL
    assert payload.call.callee.kind is CalleeKind.ATTRIBUTE
    assert payload.call.callee.path == ("analytics", "Track")
    args = {a.keyword: a.value for a in payload.call.arguments}
    assert args["UserId"].value == "u1"
    props = args["Properties"]
    assert props.kind is ExprKind.MAPPING
    assert [(k, v.value) for k, v in props.entries] == [("plan", "pro"), ("seats", 3)]


def test_literals_maps_and_pointer_helpers():
    source = """\
package main

func main() {
	f("a\\tb", `raw`, 0x10, -1.5, true, nil, []string{"x", "y"}, map[string]any{"k": 1, key: 2}, sp.NewString("s"), &Event{Name: "n"})
}
"""
    args = [a.value for a in _parse(source).calls[0].arguments]
    assert [a.value for a in args[:6]] == ["a\tb", "raw", 16, -1.5, True, None]
    assert [i.value for i in args[6].items] == ["x", "y"]
    assert args[7].kind is ExprKind.MAPPING
    assert [k for k, _ in args[7].entries] == ["k", None]
    assert (args[8].kind, args[8].value) == (ExprKind.STRING, "s")
    assert args[9].kind is ExprKind.CALL
    assert args[9].call.callee.path == ("Event",)


def test_func_literals_report_the_enclosing_function():
    source = """\
package main

func handler() {
	go func() {
		track("inside")
	}()
}
"""
    tree = _parse(source)
    track = next(c for c in tree.calls if c.callee.path == ("track",))
    assert track.function == "handler"


def test_syntax_errors_reject_the_file():
    with pytest.raises(ParserError) as info:
        _parse("package main\n\nfunc broken( {\n")
    assert info.value.code == "SYNTAX_ERRORS"
