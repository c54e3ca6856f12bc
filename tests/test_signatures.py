import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from trackscan.scan.defaults import DEFAULT_REGISTRY, default_registry
from trackscan.scan.discovery import Language
from trackscan.scan.signatures import (
    BindingPolicy,
    MatchKind,
    RegistryError,
    RoleKind,
    SignatureRegistry,
    load_registry,
    parse_custom_signature,
)


def _kinds(sig):
    return [r.kind for r in sig.roles]


def test_bare_custom_name_defaults_to_event_and_properties():
    sig = parse_custom_signature("customTrackFunction0")
    assert sig.name == "customTrackFunction0"
    assert _kinds(sig) == [RoleKind.EVENT_NAME, RoleKind.PROPERTIES]


@pytest.mark.parametrize(
    "text, kinds",
    [
        ("track(userId, EVENT_NAME, PROPERTIES)", [RoleKind.USER_ID, RoleKind.EVENT_NAME, RoleKind.PROPERTIES]),
        ("track(EVENT_NAME, PROPERTIES)", [RoleKind.EVENT_NAME, RoleKind.PROPERTIES]),
        ("track(EVENT_NAME)", [RoleKind.EVENT_NAME, RoleKind.PROPERTIES]),
        ("track(EVENT_NAME, PROPERTIES, userEmail)", [RoleKind.EVENT_NAME, RoleKind.PROPERTIES, RoleKind.EXTRA]),
        (
            "track(userId, EVENT_NAME, userAddress, PROPERTIES, userEmail)",
            [RoleKind.USER_ID, RoleKind.EVENT_NAME, RoleKind.EXTRA, RoleKind.PROPERTIES, RoleKind.EXTRA],
        ),
        ("track(_, EVENT_NAME, PROPERTIES)", [RoleKind.IGNORE, RoleKind.EVENT_NAME, RoleKind.PROPERTIES]),
        ("track(USER_ID, EVENT_NAME)", [RoleKind.USER_ID, RoleKind.EVENT_NAME, RoleKind.PROPERTIES]),
    ],
)
def test_custom_signature_role_orders(text, kinds):
    assert _kinds(parse_custom_signature(text)) == kinds


def test_custom_signature_names_extras_and_user_id():
    sig = parse_custom_signature("customTrackFunction4(userId, EVENT_NAME, userAddress, PROPERTIES, userEmail)")
    assert [r.name for r in sig.roles] == ["userId", "event_name", "userAddress", "properties", "userEmail"]
    assert sig.roles[0].accepts("user_id")
    assert sig.roles[1].accepts("eventName")
    assert not sig.roles[1].accepts("event")


def test_dotted_custom_names():
    assert parse_custom_signature("CustomModule.track(userId, EVENT_NAME, PROPERTIES)").name == "CustomModule.track"
    assert parse_custom_signature("this.props.track(EVENT_NAME)").name == "this.props.track"


@pytest.mark.parametrize(
    "text",
    ["", "track(userId, PROPERTIES)", "track(EVENT_NAME, EVENT_NAME)", "bad name()", "a..b", "track(EVENT_NAME"],
)
def test_malformed_custom_signatures(text):
    with pytest.raises(RegistryError):
        parse_custom_signature(text)


def test_document_parsing_and_lookup_order():
    registry = SignatureRegistry.from_document(
        {
            "version": 1,
            "binding": "positional_first",
            "sdks": [
                {"id": "first", "match": {"kind": "global", "patterns": ["a"]}, "method": "track", "roles": ["event_name"]},
                {
                    "id": "second",
                    "languages": ["js"],
                    "match": {"kind": "constructor", "patterns": ["lib.Client"]},
                    "method": "track",
                    "roles": [{"role": "event_name", "name": "event", "aliases": ["name"]}],
                },
            ],
            "custom_functions": ["one(EVENT_NAME)", {"name": "two", "roles": ["user_id", "event_name"]}],
        }
    )
    assert registry.binding is BindingPolicy.POSITIONAL_FIRST
    assert len(registry) == 4
    assert [s.id for s in registry.sdk_signatures_for("track", Language.JS)] == ["first", "second"]
    assert [s.id for s in registry.sdk_signatures_for("track", Language.JSX)] == ["first", "second"]
    assert [s.id for s in registry.sdk_signatures_for("track", Language.PY)] == ["first"]
    assert registry.sdk_signatures_for("capture", Language.JS) == ()
    assert registry.sdks[1].match.kind is MatchKind.CONSTRUCTOR
    assert registry.sdks[1].roles[0].accepts("name")

    assert registry.custom_signature_for("two").name == "two"
    assert registry.custom_signature_for(None, "one").name == "one"
    assert registry.custom_signature_for("three") is None


def test_with_custom_functions_appends_and_keeps_original():
    base = SignatureRegistry.from_document({"version": 1, "custom_functions": ["a"]})
    extended = base.with_custom_functions(["b(EVENT_NAME)", "a(userId, EVENT_NAME)"])
    assert [c.name for c in base.custom_functions] == ["a"]
    assert [c.name for c in extended.custom_functions] == ["a", "b", "a"]
    # first configured entry wins
    assert extended.custom_signature_for("a") is extended.custom_functions[0]


@pytest.mark.parametrize(
    "doc",
    [
        {"version": 2},
        {"binding": "sideways"},
        {"sdks": {}},
        {"sdks": [{"id": "x", "match": {"kind": "import"}, "method": "track", "roles": []}]},
        {"sdks": [{"id": "x", "match": {"kind": "teleport", "patterns": ["a"]}, "method": "track"}]},
        {"sdks": [{"id": "x", "match": {"kind": "global"}, "method": "track", "roles": ["user_id", "user_id"]}]},
        {"sdks": [{"id": "x", "match": {"kind": "global"}, "method": "track", "roles": ["extra"]}]},
        {"sdks": [{"id": "x", "match": {"kind": "global"}, "method": "track", "languages": ["cobol"]}]},
        {"sdks": [{"match": {"kind": "global"}, "method": "track"}]},
        {"sdks": [{"id": "x", "match": {"kind": "global"}, "method": "gtag", "min_arguments": -1}]},
        {"sdks": [{"id": "x", "match": {"kind": "global"}, "method": "gtag", "argument_equals": {"first": "event"}}]},
        {"sdks": [{"id": "x", "match": {"kind": "global"}, "method": "gtag", "argument_equals": {"0": 1}}]},
        {"custom_functions": [42]},
    ],
)
def test_malformed_documents_raise_registry_error(doc):
    with pytest.raises(RegistryError):
        SignatureRegistry.from_document(doc)


def test_document_round_trips_through_to_document():
    registry = default_registry()
    again = SignatureRegistry.from_document(registry.to_document())
    assert again.sdks == registry.sdks
    assert again.binding is registry.binding


def test_default_registry_covers_known_sdks():
    ids = {s.id for s in default_registry().sdks}
    assert {"segment", "mixpanel", "amplitude", "rudderstack", "posthog", "snowplow"} <= ids
    assert DEFAULT_REGISTRY["version"] == 1


def test_load_registry_from_json(tmp_path):
    path = tmp_path / "registry.json"
    path.write_text(json.dumps({"version": 1, "custom_functions": ["trackIt(EVENT_NAME)"]}), encoding="utf-8")
    assert load_registry(path).custom_functions[0].name == "trackIt"

    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(RegistryError):
        load_registry(bad)
    with pytest.raises(RegistryError):
        load_registry(tmp_path / "missing.json")


def test_argument_guards_parse_and_round_trip():
    doc = {
        "version": 1,
        "sdks": [
            {
                "id": "ga",
                "match": {"kind": "global"},
                "method": "gtag",
                "min_arguments": 3,
                "argument_equals": {"0": "event"},
                "roles": ["ignore", "event_name", "properties"],
            }
        ],
    }
    (sig,) = SignatureRegistry.from_document(doc).sdks
    assert sig.min_arguments == 3
    assert sig.argument_equals == ((0, "event"),)
    assert SignatureRegistry.from_document(SignatureRegistry.from_document(doc).to_document()).sdks == (sig,)


def test_default_registry_covers_ruby_and_go():
    registry = default_registry()
    assert {s.id for s in registry.sdk_signatures_for("track", Language.RB)} >= {"segment", "mixpanel", "rudderstack"}
    assert {s.id for s in registry.sdk_signatures_for("Enqueue", Language.GO)} == {"segment", "posthog"}
    assert [s.id for s in registry.sdk_signatures_for("TrackStructEvent", Language.GO)] == ["snowplow"]
