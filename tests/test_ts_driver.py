import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

pytest.importorskip("tree_sitter")
pytest.importorskip("tree_sitter_javascript")

from trackscan.scan.discovery import Language, SourceUnit
from trackscan.scan.parser_registry import ParserError
from trackscan.scan.syntax import BindingKind, CalleeKind, ExprKind
from trackscan.scan.ts_driver import TSTreeSitterDriver


def _parse(source: str, lang: Language = Language.JS, path: str = "sample.js"):
    return TSTreeSitterDriver(lang).parse(SourceUnit(path=path, text=source, language=lang))


def test_calls_callees_and_positions():
    source = "function go() {\n  window.analytics.track('x', { a: 1 });\n}\ngtag('event', 'y');\n"
    tree = _parse(source)

    track, gtag = tree.calls
    assert track.callee.kind is CalleeKind.ATTRIBUTE
    assert track.callee.path == ("window", "analytics", "track")
    assert track.position == (2, 3)
    assert track.function == "go"

    assert gtag.callee.kind is CalleeKind.NAME
    assert gtag.function == "global"


def test_function_names_for_anonymous_functions():
    source = """\
const viaArrow = () => { a.track('1'); };
const viaExpr = function () { a.track('2'); };
const obj = { method() { a.track('3'); }, prop: () => a.track('4') };
class C { run() { a.track('5'); } }
"""
    tree = _parse(source)
    assert [c.function for c in tree.calls] == ["viaArrow", "viaExpr", "method", "prop", "run"]


def test_object_and_array_literals():
    source = "f({ 'quoted': 1, plain: [true, null, -2.5], nested: { deep: `tpl` }, short, [k]: 1 }, { ...rest }, `a${b}`);\n"
    args = [a.value for a in _parse(source).calls[0].arguments]

    obj = args[0]
    assert obj.kind is ExprKind.MAPPING
    keys = [k for k, _ in obj.entries]
    assert keys == ["quoted", "plain", "nested", "short", None]
    plain = obj.entries[1][1]
    assert [i.value for i in plain.items] == [True, None, -2.5]
    assert obj.entries[2][1].entries[0][1].value == "tpl"
    assert obj.entries[3][1].kind is ExprKind.NAME

    assert args[1].entries[0][0] is None
    assert args[2].kind is ExprKind.OTHER


def test_string_escapes_are_decoded():
    tree = _parse("f('it\\'s', \"tab\\tend\", '\\u00e9');\n")
    assert [a.value.value for a in tree.calls[0].arguments] == ["it's", "tab\tend", "\u00e9"]


def test_require_import_and_new_bindings():
    source = """\
const Analytics = require('analytics-node');
const { PostHog } = require('posthog-node');
const Mixpanel = require('mixpanel').Mixpanel;
import Default, { named as local } from 'lib';
import * as ns from 'ns-lib';
const client = new Analytics('key');
let made = create();
let ref = client;
"""
    tree = _parse(source)
    found = {(b.name, b.kind, b.target) for b in tree.bindings}
    assert ("Analytics", BindingKind.IMPORT, "analytics-node") in found
    assert ("PostHog", BindingKind.IMPORT, "posthog-node.PostHog") in found
    assert ("Mixpanel", BindingKind.IMPORT, "mixpanel.Mixpanel") in found
    assert ("Default", BindingKind.IMPORT, "lib") in found
    assert ("local", BindingKind.IMPORT, "lib.named") in found
    assert ("ns", BindingKind.IMPORT, "ns-lib") in found
    assert ("client", BindingKind.CONSTRUCTED, "Analytics") in found
    assert ("made", BindingKind.CONSTRUCTED, "create") in found
    assert ("ref", BindingKind.REFERENCE, "client") in found


def test_new_expression_is_not_a_call_candidate():
    tree = _parse("new Analytics('k').track('e');\n")
    assert len(tree.calls) == 1
    call = tree.calls[0]
    assert call.callee.kind is CalleeKind.CONSTRUCTED
    assert call.callee.receiver.callee.path == ("Analytics",)


def test_syntax_errors_reject_the_file():
    with pytest.raises(ParserError) as info:
        _parse("analytics.track('a', {\n")
    assert info.value.code == "SYNTAX_ERRORS"
    assert info.value.line is not None


def test_typescript_wrappers_are_transparent():
    pytest.importorskip("tree_sitter_typescript")
    source = "analytics.track(('Signed Up' as string), { plan: plan!, tier: 'pro' as const });\n"
    tree = _parse(source, Language.TS, "sample.ts")
    name, props = (a.value for a in tree.calls[0].arguments)
    assert (name.kind, name.value) == (ExprKind.STRING, "Signed Up")
    assert props.entries[0][1].kind is ExprKind.NAME
    assert props.entries[1][1].value == "pro"


def test_driver_info_reports_grammar():
    info = TSTreeSitterDriver(Language.JSX).info()
    assert info.language is Language.JSX
    assert info.grammar_name == "tree-sitter-javascript+jsx"


def test_callbacks_take_the_enclosing_function_name():
    source = """\
function checkout(cart) {
  return pay(cart).then(() => analytics.track('Paid'));
}
items.forEach(function () { analytics.track('Top'); });
"""
    tree = _parse(source)
    track_paid = next(c for c in tree.calls if c.arguments and c.arguments[0].value.value == "Paid")
    track_top = next(c for c in tree.calls if c.arguments and c.arguments[0].value.value == "Top")
    assert track_paid.function == "checkout"
    assert track_top.function == "global"


def test_react_hook_callbacks_are_named_after_component_and_hook():
    source = """\
function Dashboard() {
  useEffect(() => {
    trackUserEvent('Viewed');
  }, []);
  const onClick = useCallback(() => trackUserEvent('Clicked'), []);
  return null;
}
"""
    tree = _parse(source, Language.JSX, "sample.jsx")
    functions = [c.function for c in tree.calls if c.callee.path == ("trackUserEvent",)]
    assert functions == ["Dashboard.useEffect", "Dashboard.useCallback"]


def test_spread_and_computed_entries_keep_their_text():
    tree = _parse("f({ ...base, plan: 'pro', [key]: 1 });\n")
    obj = tree.calls[0].arguments[0].value
    assert [k for k, _ in obj.entries] == [None, "plan", None]
    assert obj.entries[0][1].text == "...base"
    assert obj.entries[2][1].text == "[key]: 1"
