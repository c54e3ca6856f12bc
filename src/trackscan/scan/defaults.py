# src/trackscan/scan/defaults.py
"""
Built-in registry document for the common analytics SDKs.

Plain data in the same format `load_registry` reads, so it can be dumped, edited
and passed back in. Constructor and import rules come before global ones so that
an explicitly constructed client wins over a same-named browser global.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict

from .signatures import SignatureRegistry

_PY = ["py"]
_JS = ["js", "ts"]
_RB = ["rb"]
_GO = ["go"]

_USER = {"role": "user_id", "name": "user_id", "aliases": ["distinct_id", "userId"]}
_EVENT = {"role": "event_name", "name": "event", "aliases": ["event_name"]}
_PROPS = "properties"
_RB_USER = {"role": "user_id", "name": "user_id", "aliases": ["anonymous_id"]}

_GO_SEGMENT = "github.com/segmentio/analytics-go/v3"
_GO_POSTHOG = "github.com/posthog/posthog-go"
_GO_AMPLITUDE = "github.com/amplitude/analytics-go/amplitude"
_GO_MIXPANEL = "github.com/mixpanel/mixpanel-go"
_GO_SNOWPLOW = ["github.com/snowplow/snowplow-golang-tracker/tracker", "github.com/snowplow/snowplow-golang-tracker/v2/tracker"]

DEFAULT_REGISTRY: Dict[str, Any] = {
    "version": 1,
    "binding": "keywords_first",
    "sdks": [
        # ---- Python -------------------------------------------------------------
        {
            "id": "segment",
            "languages": _PY,
            "match": {"kind": "import", "patterns": ["segment.analytics", "analytics"]},
            "method": "track",
            "roles": [_USER, _EVENT, _PROPS],
        },
        {
            "id": "rudderstack",
            "languages": _PY,
            "match": {"kind": "import", "patterns": ["rudderstack.analytics"]},
            "method": "track",
            "roles": [_USER, _EVENT, _PROPS],
        },
        {
            "id": "mixpanel",
            "languages": _PY,
            "match": {"kind": "constructor", "patterns": ["mixpanel.Mixpanel"]},
            "method": "track",
            "roles": [
                {"role": "user_id", "name": "distinct_id"},
                {"role": "event_name", "name": "event_name"},
                _PROPS,
            ],
        },
        {
            "id": "amplitude",
            "languages": _PY,
            "match": {"kind": "constructor", "patterns": ["amplitude.Amplitude"]},
            "method": "track",
            "roles": [{"role": "ignore", "name": "event"}],
            "event_object": {
                "argument": 0,
                "constructors": ["amplitude.BaseEvent"],
                "roles": [
                    {"role": "event_name", "name": "event_type"},
                    {"role": "user_id", "name": "user_id"},
                    {"role": "properties", "name": "event_properties"},
                ],
            },
        },
        {
            "id": "posthog",
            "languages": _PY,
            "match": {"kind": "constructor", "patterns": ["posthog.Posthog", "posthog.Client"]},
            "method": "capture",
            "roles": [{"role": "user_id", "name": "distinct_id"}, _EVENT, _PROPS],
        },
        {
            "id": "posthog",
            "languages": _PY,
            "match": {"kind": "import", "patterns": ["posthog"]},
            "method": "capture",
            "roles": [{"role": "user_id", "name": "distinct_id"}, _EVENT, _PROPS],
        },
        {
            "id": "snowplow",
            "languages": _PY,
            "match": {
                "kind": "constructor",
                "patterns": ["snowplow_tracker.Snowplow.create_tracker", "snowplow_tracker.Tracker"],
            },
            "method": "track",
            "roles": [{"role": "ignore", "name": "event"}],
            "event_object": {
                "argument": 0,
                "constructors": ["snowplow_tracker.StructuredEvent"],
                "roles": [{"role": "event_name", "name": "action"}],
                "remaining_as_properties": True,
            },
        },
        # ---- JavaScript / TypeScript (server SDKs) ----------------------------
        {
            "id": "segment",
            "languages": _JS,
            "match": {"kind": "constructor", "patterns": ["analytics-node", "@segment/analytics-node.Analytics"]},
            "method": "track",
            "roles": ["ignore"],
            "event_object": {
                "argument": 0,
                "roles": [{"role": "user_id", "name": "userId"}, _EVENT, _PROPS],
            },
        },
        {
            "id": "posthog",
            "languages": _JS,
            "match": {"kind": "constructor", "patterns": ["posthog-node.PostHog"]},
            "method": "capture",
            "roles": ["ignore"],
            "event_object": {
                "argument": 0,
                "roles": [{"role": "user_id", "name": "distinctId"}, _EVENT, _PROPS],
            },
        },
        # ---- JavaScript / TypeScript (browser globals) -------------------------
        {
            "id": "segment",
            "languages": _JS,
            "match": {"kind": "global", "patterns": ["analytics"]},
            "method": "track",
            "roles": ["event_name", _PROPS],
        },
        {
            "id": "mixpanel",
            "languages": _JS,
            "match": {"kind": "global", "patterns": ["mixpanel"]},
            "method": "track",
            "roles": ["event_name", _PROPS],
        },
        {
            "id": "amplitude",
            "languages": _JS,
            "match": {"kind": "global", "patterns": ["amplitude"]},
            "method": "track",
            "roles": ["event_name", _PROPS],
        },
        {
            "id": "amplitude",
            "languages": _JS,
            "match": {"kind": "global", "patterns": ["amplitude"]},
            "method": "logEvent",
            "roles": ["event_name", _PROPS],
        },
        {
            "id": "rudderstack",
            "languages": _JS,
            "match": {"kind": "global", "patterns": ["rudderanalytics"]},
            "method": "track",
            "roles": ["event_name", _PROPS],
        },
        {
            "id": "posthog",
            "languages": _JS,
            "match": {"kind": "global", "patterns": ["posthog"]},
            "method": "capture",
            "roles": ["event_name", _PROPS],
        },
        {
            "id": "mparticle",
            "languages": _JS,
            "match": {"kind": "global", "patterns": ["mParticle"]},
            "method": "logEvent",
            "roles": ["event_name", "ignore", _PROPS],
        },
        {
            "id": "pendo",
            "languages": _JS,
            "match": {"kind": "global", "patterns": ["pendo"]},
            "method": "track",
            "roles": ["event_name", _PROPS],
        },
        {
            "id": "heap",
            "languages": _JS,
            "match": {"kind": "global", "patterns": ["heap"]},
            "method": "track",
            "roles": ["event_name", _PROPS],
        },
        {
            "id": "datadog",
            "languages": _JS,
            "match": {"kind": "global", "patterns": ["datadogRum", "DD_RUM"]},
            "method": "addAction",
            "roles": ["event_name", _PROPS],
        },
        {
            "id": "snowplow",
            "languages": _JS,
            "match": {"kind": "global", "patterns": ["tracker"]},
            "method": "track",
            "roles": ["ignore"],
            "event_object": {
                "argument": 0,
                "constructors": ["buildStructEvent"],
                "roles": [{"role": "event_name", "name": "action"}],
                "remaining_as_properties": True,
            },
        },
        {
            "id": "gtm",
            "languages": _JS,
            "match": {"kind": "global", "patterns": ["dataLayer"]},
            "method": "push",
            "roles": ["ignore"],
            "event_object": {
                "argument": 0,
                "roles": [{"role": "event_name", "name": "event"}],
                "remaining_as_properties": True,
            },
        },
        {
            "id": "googleanalytics",
            "languages": _JS,
            "match": {"kind": "global", "patterns": []},
            "method": "gtag",
            "min_arguments": 3,
            "argument_equals": {"0": "event"},
            "roles": ["ignore", "event_name", _PROPS],
        },
        # ---- Ruby -----------------------------------------------------------------
        {
            "id": "segment",
            "languages": _RB,
            "match": {"kind": "constructor", "patterns": ["Segment.Analytics.new"]},
            "method": "track",
            "roles": ["ignore"],
            "event_object": {"argument": 0, "roles": [_RB_USER, _EVENT, _PROPS]},
        },
        {
            "id": "rudderstack",
            "languages": _RB,
            "match": {"kind": "constructor", "patterns": ["Rudder.Analytics.new", "RudderAnalytics.new"]},
            "method": "track",
            "roles": ["ignore"],
            "event_object": {"argument": 0, "roles": [_RB_USER, _EVENT, _PROPS]},
        },
        {
            "id": "mixpanel",
            "languages": _RB,
            "match": {"kind": "constructor", "patterns": ["Mixpanel.Tracker.new"]},
            "method": "track",
            "roles": [{"role": "user_id", "name": "distinct_id"}, "event_name", _PROPS],
        },
        {
            "id": "posthog",
            "languages": _RB,
            "match": {"kind": "constructor", "patterns": ["PostHog.Client.new"]},
            "method": "capture",
            "roles": ["ignore"],
            "event_object": {"argument": 0, "roles": [{"role": "user_id", "name": "distinct_id"}, _EVENT, _PROPS]},
        },
        {
            "id": "snowplow",
            "languages": _RB,
            "match": {"kind": "constructor", "patterns": ["SnowplowTracker.Tracker.new"]},
            "method": "track_struct_event",
            "roles": ["ignore"],
            "event_object": {
                "argument": 0,
                "roles": [{"role": "event_name", "name": "action"}],
                "remaining_as_properties": True,
            },
        },
        {
            "id": "segment",
            "languages": _RB,
            "match": {"kind": "global", "patterns": ["Analytics"]},
            "method": "track",
            "roles": ["ignore"],
            "event_object": {"argument": 0, "roles": [_RB_USER, _EVENT, _PROPS]},
        },
        {
            "id": "rudderstack",
            "languages": _RB,
            "match": {"kind": "global", "patterns": ["analytics"]},
            "method": "track",
            "roles": ["ignore"],
            "event_object": {"argument": 0, "roles": [_RB_USER, _EVENT, _PROPS]},
        },
        {
            "id": "posthog",
            "languages": _RB,
            "match": {"kind": "global", "patterns": ["posthog"]},
            "method": "capture",
            "roles": ["ignore"],
            "event_object": {"argument": 0, "roles": [{"role": "user_id", "name": "distinct_id"}, _EVENT, _PROPS]},
        },
        # ---- Go ---------------------------------------------------------------------
        {
            "id": "segment",
            "languages": _GO,
            "match": {"kind": "constructor", "patterns": [f"{_GO_SEGMENT}.New", f"{_GO_SEGMENT}.NewWithConfig"]},
            "method": "Enqueue",
            "roles": ["ignore"],
            "event_object": {
                "argument": 0,
                "constructors": [f"{_GO_SEGMENT}.Track"],
                "roles": [{"role": "user_id", "name": "UserId"}, _EVENT, _PROPS],
            },
        },
        {
            "id": "posthog",
            "languages": _GO,
            "match": {"kind": "constructor", "patterns": [f"{_GO_POSTHOG}.New", f"{_GO_POSTHOG}.NewWithConfig"]},
            "method": "Enqueue",
            "roles": ["ignore"],
            "event_object": {
                "argument": 0,
                "constructors": [f"{_GO_POSTHOG}.Capture"],
                "roles": [{"role": "user_id", "name": "DistinctId"}, _EVENT, _PROPS],
            },
        },
        {
            "id": "amplitude",
            "languages": _GO,
            "match": {"kind": "constructor", "patterns": [f"{_GO_AMPLITUDE}.NewClient"]},
            "method": "Track",
            "roles": ["ignore"],
            "event_object": {
                "argument": 0,
                "constructors": [f"{_GO_AMPLITUDE}.Event"],
                "roles": [
                    {"role": "user_id", "name": "UserID"},
                    {"role": "event_name", "name": "EventType"},
                    {"role": "properties", "name": "EventProperties"},
                ],
            },
        },
        {
            # the event is built (and reported) where NewEvent is called
            "id": "mixpanel",
            "languages": _GO,
            "match": {"kind": "constructor", "patterns": [f"{_GO_MIXPANEL}.NewApiClient"]},
            "method": "NewEvent",
            "roles": ["event_name", {"role": "user_id", "name": "distinctID"}, _PROPS],
        },
        {
            "id": "snowplow",
            "languages": _GO,
            "match": {"kind": "constructor", "patterns": [f"{p}.InitTracker" for p in _GO_SNOWPLOW]},
            "method": "TrackStructEvent",
            "roles": ["ignore"],
            "event_object": {
                "argument": 0,
                "constructors": [f"{p}.StructuredEvent" for p in _GO_SNOWPLOW],
                "roles": [{"role": "event_name", "name": "Action"}],
                "remaining_as_properties": True,
            },
        },
    ],
    "custom_functions": [],
}


@lru_cache(maxsize=1)
def default_registry() -> SignatureRegistry:
    return SignatureRegistry.from_document(DEFAULT_REGISTRY)
