# src/trackscan/scan/resolver.py
"""
Call Resolver: decides which signature (if any) a call node matches and binds
its arguments to roles.

Matching order is fixed: SDK signatures in configured order, then custom
functions in configured order; the first match wins. A call nothing matches is
dropped without a diagnostic.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from ..core.config import feature_enabled
from .events import Origin, SourceLocation, TrackingEvent
from .literals import LiteralValue, evaluate, split_mapping
from .signatures import (
    BindingPolicy,
    EventObjectRule,
    MatchKind,
    Role,
    RoleKind,
    SdkSignature,
    SignatureRegistry,
)
from .syntax import (
    Argument,
    BindingKind,
    CalleeKind,
    CallNode,
    Expr,
    ExprKind,
    Position,
    SyntaxTree,
)

logger = logging.getLogger(__name__)


# ==============================================================================
# Callee identity
# ==============================================================================


@dataclass(frozen=True)
class CalleeIdentity:
    """
    What a callee refers to.

      - raw: the dotted callee as written ("analytics.track"); None for
        `Client(...).track` style callees
      - qualified: import-resolved dotted name ("segment.analytics.track"); None
        when the receiver is an object instance
      - instance_of: qualified constructor of the receiver instance, if any
      - receiver: the receiver as written ("window.analytics"); None for bare calls
      - method: last path component
    """
    raw: Optional[str]
    qualified: Optional[str]
    instance_of: Optional[str]
    receiver: Optional[str]
    method: str


@dataclass(frozen=True)
class _Value:
    qualified: Optional[str]
    instance_of: Optional[str] = None


# ==============================================================================
# Argument binding
# ==============================================================================


def bind_arguments(
    roles: Sequence[Role],
    arguments: Sequence[Argument],
    *,
    keywords: bool = True,
    policy: BindingPolicy = BindingPolicy.KEYWORDS_FIRST,
) -> Tuple[Dict[int, Expr], List[Argument]]:
    """
    Bind call arguments to role slots.

    Keyword arguments go to the first unfilled role whose name (or alias)
    matches; positional arguments fill the remaining roles left to right. The
    policy decides which of the two passes runs first. Positional binding stops
    at the first `*args`; `**kwargs` never binds. Surplus arguments are dropped.

    Returns the filled slots (role index -> expression) and the keyword
    arguments no role accepted.
    """
    filled: Dict[int, Expr] = {}
    unused: List[Argument] = []

    positional: List[Argument] = []
    for arg in arguments:
        if arg.keyword is not None or arg.star == "**":
            continue
        if arg.star == "*":
            break
        positional.append(arg)

    def bind_keywords() -> None:
        for arg in arguments:
            if arg.keyword is None:
                continue
            if not keywords:
                unused.append(arg)
                continue
            for i, role in enumerate(roles):
                if i not in filled and role.accepts(arg.keyword):
                    filled[i] = arg.value
                    break
            else:
                unused.append(arg)

    def bind_positional() -> None:
        free = [i for i in range(len(roles)) if i not in filled]
        for i, arg in zip(free, positional):
            filled[i] = arg.value

    if policy is BindingPolicy.POSITIONAL_FIRST:
        bind_positional()
        bind_keywords()
    else:
        bind_keywords()
        bind_positional()
    return filled, unused


# ==============================================================================
# Resolver
# ==============================================================================


@dataclass(frozen=True)
class _Match:
    origin: Origin
    roles: Tuple[Role, ...]
    keywords: bool
    event_object: Optional[EventObjectRule] = None


class CallResolver:
    """
    Stateless per call; one instance can serve many files and threads.
    """

    MAX_ALIAS_DEPTH = 8

    def __init__(self, registry: SignatureRegistry, *, follow_aliases: Optional[bool] = None) -> None:
        self._registry = registry
        if follow_aliases is None:
            follow_aliases = feature_enabled("feature.resolve.follow_aliases", True)
        self._follow_aliases = follow_aliases

    @property
    def registry(self) -> SignatureRegistry:
        return self._registry

    # ---- identity -------------------------------------------------------------

    def identify(self, tree: SyntaxTree, call: CallNode) -> Optional[CalleeIdentity]:
        callee = call.callee
        if callee.kind is CalleeKind.NAME:
            value = self._resolve_parts(tree, callee.path, call.scope, call.position, 0)
            return CalleeIdentity(
                raw=callee.dotted,
                qualified=value.qualified,
                instance_of=None,
                receiver=None,
                method=callee.path[-1],
            )

        if callee.kind is CalleeKind.ATTRIBUTE:
            receiver_parts, method = callee.path[:-1], callee.path[-1]
            value = self._resolve_parts(tree, receiver_parts, call.scope, call.position, 0)
            return CalleeIdentity(
                raw=callee.dotted,
                qualified=f"{value.qualified}.{method}" if value.qualified else None,
                instance_of=value.instance_of,
                receiver=".".join(receiver_parts),
                method=method,
            )

        if callee.kind is CalleeKind.CONSTRUCTED and callee.path and callee.receiver is not None:
            instance_of = None
            if len(callee.path) == 1:
                instance_of = self._constructor_of(tree, callee.receiver)
            return CalleeIdentity(
                raw=None,
                qualified=None,
                instance_of=instance_of,
                receiver=None,
                method=callee.path[-1],
            )
        return None

    def _constructor_of(self, tree: SyntaxTree, ctor_call: CallNode) -> Optional[str]:
        c = ctor_call.callee
        if c.kind not in (CalleeKind.NAME, CalleeKind.ATTRIBUTE):
            return None
        return self._resolve_parts(tree, c.path, ctor_call.scope, ctor_call.position, 0).qualified

    def _resolve_parts(
        self,
        tree: SyntaxTree,
        parts: Tuple[str, ...],
        scope: int,
        position: Position,
        depth: int,
    ) -> _Value:
        written = ".".join(parts)
        if not parts or depth > self.MAX_ALIAS_DEPTH:
            return _Value(written or None)
        head, rest = parts[0], parts[1:]
        binding = tree.lookup(head, scope, position)
        if binding is None:
            return _Value(written)

        if binding.kind is BindingKind.IMPORT:
            return _Value(".".join((binding.target,) + rest))

        if binding.kind is BindingKind.CONSTRUCTED:
            if rest:
                return _Value(None)
            ctor = self._resolve_parts(
                tree, tuple(binding.target.split(".")), binding.scope, binding.target_position, depth + 1
            )
            return _Value(None, ctor.qualified)

        # reference alias: x = a.b
        if not self._follow_aliases:
            return _Value(written)
        return self._resolve_parts(
            tree, tuple(binding.target.split(".")) + rest, binding.scope, binding.target_position, depth + 1
        )

    # ---- matching -------------------------------------------------------------

    def match(self, tree: SyntaxTree, call: CallNode) -> Optional[_Match]:
        ident = self.identify(tree, call)
        if ident is None:
            return None

        for sig in self._registry.sdk_signatures_for(ident.method, tree.language):
            if self._sdk_matches(sig, ident, call):
                return _Match(Origin.sdk(sig.id), sig.roles, sig.keywords, sig.event_object)

        custom = self._registry.custom_signature_for(ident.raw, ident.qualified)
        if custom is not None:
            return _Match(Origin.custom(custom.name), custom.roles, custom.keywords)
        return None

    @staticmethod
    def _sdk_matches(sig: SdkSignature, ident: CalleeIdentity, call: CallNode) -> bool:
        if not _arguments_fit(sig, call):
            return False
        rule = sig.match
        if rule.kind is MatchKind.IMPORT:
            return ident.qualified is not None and any(
                ident.qualified == f"{p}.{sig.method}" for p in rule.patterns
            )
        if rule.kind is MatchKind.CONSTRUCTOR:
            return ident.instance_of is not None and ident.instance_of in rule.patterns
        # global
        if not rule.patterns:
            return call.callee.kind is CalleeKind.NAME and ident.raw == sig.method
        if ident.receiver is None:
            return False
        return any(ident.receiver == p or ident.receiver.endswith("." + p) for p in rule.patterns)

    # ---- events ---------------------------------------------------------------

    def resolve(self, tree: SyntaxTree, call: CallNode) -> Optional[TrackingEvent]:
        m = self.match(tree, call)
        if m is None:
            return None

        policy = self._registry.binding
        filled, _ = bind_arguments(m.roles, call.arguments, keywords=m.keywords, policy=policy)
        slots = [(m.roles[i], expr) for i, expr in sorted(filled.items())]
        leftovers: List[Tuple[str, Expr]] = []
        spreads: List[str] = []
        default_name = LiteralValue.unresolved("")

        if m.event_object is not None:
            eo = m.event_object
            payload = filled.get(eo.argument)
            payload_args = self._payload_arguments(tree, eo, payload)
            if payload_args is None:
                default_name = LiteralValue.unresolved(payload.text if payload is not None else "")
            else:
                inner, unused = bind_arguments(eo.roles, payload_args, keywords=True, policy=policy)
                slots.extend((eo.roles[i], expr) for i, expr in sorted(inner.items()))
                if eo.remaining_as_properties:
                    leftovers = [(a.keyword, a.value) for a in unused if a.keyword is not None]
                    spreads = [a.value.text for a in payload_args if a.star == "**"]

        event = self._build_event(tree, call, m.origin, slots, leftovers, spreads, default_name)
        logger.debug("%s:%d matched %s %s", tree.path, call.position[0], m.origin.kind.value, m.origin.name)
        return event

    def resolve_all(self, tree: SyntaxTree) -> List[TrackingEvent]:
        events: List[TrackingEvent] = []
        for call in tree.calls:
            event = self.resolve(tree, call)
            if event is not None:
                events.append(event)
        return events

    def _payload_arguments(
        self,
        tree: SyntaxTree,
        eo: EventObjectRule,
        payload: Optional[Expr],
    ) -> Optional[Sequence[Argument]]:
        """Arguments carried by an event payload, or None if it is not a recognized shape."""
        if payload is None:
            return None
        if not eo.constructors:
            return _entries_as_keywords(payload)
        if payload.kind is not ExprKind.CALL or payload.call is None:
            return None

        ctor = payload.call
        ident = self.identify(tree, ctor)
        if ident is None or not ({ident.raw, ident.qualified} & set(eo.constructors)):
            return None

        args = ctor.arguments
        if len(args) == 1 and args[0].keyword is None and not args[0].star:
            as_keywords = _entries_as_keywords(args[0].value)
            if as_keywords is not None:
                return as_keywords
        return args

    @staticmethod
    def _build_event(
        tree: SyntaxTree,
        call: CallNode,
        origin: Origin,
        slots: Sequence[Tuple[Role, Expr]],
        leftovers: Sequence[Tuple[str, Expr]],
        spreads: Sequence[str],
        event_name: LiteralValue,
    ) -> TrackingEvent:
        user_id: Optional[LiteralValue] = None
        properties: Dict[str, LiteralValue] = {}
        extras: Dict[str, LiteralValue] = {}
        unresolved_properties: Optional[str] = None
        unresolved_entries: List[str] = []

        for role, expr in slots:
            if role.kind is RoleKind.EVENT_NAME:
                event_name = evaluate(expr)
            elif role.kind is RoleKind.USER_ID:
                user_id = evaluate(expr)
            elif role.kind is RoleKind.PROPERTIES:
                split = split_mapping(expr)
                if split is not None:
                    # literal entries survive next to spread and computed ones
                    entries, opaque = split
                    properties = {k: evaluate(v) for k, v in entries}
                    unresolved_properties = None
                    unresolved_entries = list(opaque)
                else:
                    properties = {}
                    unresolved_properties = expr.text
                    unresolved_entries = []
            elif role.kind is RoleKind.EXTRA:
                extras[role.name] = evaluate(expr)

        for key, expr in leftovers:
            properties[key] = evaluate(expr)
        unresolved_entries.extend(spreads)

        return TrackingEvent(
            location=SourceLocation(path=tree.path, line=call.position[0], column=call.position[1]),
            origin=origin,
            event_name=event_name,
            user_id=user_id,
            properties=properties,
            extras=extras,
            function=call.function,
            unresolved_properties=unresolved_properties,
            unresolved_entries=tuple(unresolved_entries),
        )


def _arguments_fit(sig: SdkSignature, call: CallNode) -> bool:
    args = call.arguments
    if len(args) < sig.min_arguments:
        return False
    for index, expected in sig.argument_equals:
        if index >= len(args):
            return False
        value = args[index].value
        if value.kind is not ExprKind.STRING or value.value != expected:
            return False
    return True


def _entries_as_keywords(expr: Expr) -> Optional[List[Argument]]:
    """Mapping entries as keyword arguments; spread and computed entries become `**` arguments."""
    split = split_mapping(expr)
    if split is None:
        return None
    entries, opaque = split
    args = [Argument(value=value, keyword=key) for key, value in entries]
    args.extend(Argument(value=Expr(kind=ExprKind.OTHER, text=text), star="**") for text in opaque)
    return args
