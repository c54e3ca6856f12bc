import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

pytest.importorskip("tree_sitter")
pytest.importorskip("tree_sitter_ruby")

from trackscan.scan.discovery import Language, SourceUnit
from trackscan.scan.parser_registry import ParserError, ParserRegistry
from trackscan.scan.ruby_driver import RubyTreeSitterDriver
from trackscan.scan.syntax import BindingKind, CalleeKind, ExprKind


def _parse(source: str):
    return RubyTreeSitterDriver(Language.RB).parse(SourceUnit(path="sample.rb", text=source, language=Language.RB))


def test_calls_callees_and_positions():
    source = "def go\n  Segment::Analytics.track(event: 'x')\nend\nputs('y')\n"
    tree = _parse(source)

    track, puts = tree.calls
    assert track.callee.kind is CalleeKind.ATTRIBUTE
    assert track.callee.path == ("Segment", "Analytics", "track")
    assert track.position == (2, 3)
    assert track.function == "go"

    assert puts.callee.kind is CalleeKind.NAME
    assert puts.function == "global"


def test_calls_without_arguments_are_not_candidates():
    tree = _parse("client.flush\nitems.each { |i| i.save }\nlog('x')\n")
    assert [c.callee.path for c in tree.calls] == [("log",)]


def test_trailing_keyword_pairs_form_one_mapping():
    tree = _parse("a.track('e', user_id: uid, 'plan' => 'pro', **extra)\n")
    name, payload = (a.value for a in tree.calls[0].arguments)
    assert (name.kind, name.value) == (ExprKind.STRING, "e")
    assert payload.kind is ExprKind.MAPPING
    assert [k for k, _ in payload.entries] == ["user_id", "plan", None]
    assert payload.entries[0][1].kind is ExprKind.NAME
    assert payload.entries[2][1].text == "**extra"


def test_literal_expressions():
    source = "f(:sym, 1_000, -2.5, 0o17, true, nil, [1, 'a'], { a: { b: 'c' } }, \"tab\\tend\", \"x#{y}\", 'it'.freeze)\n"
    args = [a.value for a in _parse(source).calls[0].arguments]
    assert [a.value for a in args[:6]] == ["sym", 1000, -2.5, 15, True, None]
    assert [i.value for i in args[6].items] == [1, "a"]
    assert args[7].entries[0][1].entries[0][1].value == "c"
    assert args[8].value == "tab\tend"
    assert args[9].kind is ExprKind.OTHER
    assert (args[10].kind, args[10].value) == (ExprKind.STRING, "it")


def test_blocks_report_the_enclosing_method():
    source = """\
class Checkout
  def complete(order)
    order.items.each do |item|
      Analytics.track(event: 'Item Bought')
    end
  end
end
handler = -> { Analytics.track(event: 'Top') }
"""
    tree = _parse(source)
    assert [c.function for c in tree.calls] == ["complete", "global"]


def test_constructed_and_reference_bindings():
    source = """\
tracker = Mixpanel::Tracker.new('token')
client = PostHog::Client.new(api_key: 'k')
same = tracker
Segment = Segment::Analytics
"""
    found = {(b.name, b.kind, b.target) for b in _parse(source).bindings}
    assert ("tracker", BindingKind.CONSTRUCTED, "Mixpanel.Tracker.new") in found
    assert ("client", BindingKind.CONSTRUCTED, "PostHog.Client.new") in found
    assert ("same", BindingKind.REFERENCE, "tracker") in found
    assert ("Segment", BindingKind.REFERENCE, "Segment.Analytics") in found


def test_syntax_errors_reject_the_file():
    with pytest.raises(ParserError) as info:
        _parse("def broken(\n  Analytics.track(\n")
    assert info.value.code == "SYNTAX_ERRORS"


def test_registry_routes_ruby():
    info = ParserRegistry().driver_for(Language.RB).info()
    assert info.grammar_name == "tree-sitter-ruby"
