# src/trackscan/scan/signatures.py
"""
Signature Registry and Custom Function table.

Both are read-only configuration built once from a plain-data registry document
(a mapping, or JSON on disk). Lookups return entries in configured order; the
matching itself lives in the resolver.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .discovery import Language

logger = logging.getLogger(__name__)


class RegistryError(ValueError):
    """Malformed registry document or custom signature string."""


# ==============================================================================
# Roles
# ==============================================================================


class RoleKind(str, Enum):
    USER_ID = "user_id"
    EVENT_NAME = "event_name"
    PROPERTIES = "properties"
    IGNORE = "ignore"
    EXTRA = "extra"


def normalize_keyword(name: str) -> str:
    """Keyword comparison key: case-insensitive, underscores dropped."""
    return name.replace("_", "").lower()


@dataclass(frozen=True)
class Role:
    kind: RoleKind
    name: str
    aliases: Tuple[str, ...] = ()

    def accepts(self, keyword: str) -> bool:
        key = normalize_keyword(keyword)
        return any(normalize_keyword(n) == key for n in (self.name, *self.aliases))

    def to_document(self) -> Union[str, Dict[str, Any]]:
        if self.kind is not RoleKind.EXTRA and self.name == self.kind.value and not self.aliases:
            return self.kind.value
        doc: Dict[str, Any] = {"role": self.kind.value, "name": self.name}
        if self.aliases:
            doc["aliases"] = list(self.aliases)
        return doc


# ==============================================================================
# Signatures
# ==============================================================================


class MatchKind(str, Enum):
    IMPORT = "import"              # qualified callee == <pattern>.<method>
    CONSTRUCTOR = "constructor"    # receiver built by calling <pattern>
    GLOBAL = "global"              # receiver as written == <pattern> (or ends with .<pattern>)


@dataclass(frozen=True)
class MatchRule:
    kind: MatchKind
    patterns: Tuple[str, ...] = ()


@dataclass(frozen=True)
class EventObjectRule:
    """
    The payload of a call is a constructed event object (or a mapping literal)
    whose keyword arguments / entries carry the roles.
    """
    argument: int = 0
    constructors: Tuple[str, ...] = ()
    roles: Tuple[Role, ...] = ()
    remaining_as_properties: bool = False


@dataclass(frozen=True)
class SdkSignature:
    id: str
    match: MatchRule
    method: str
    roles: Tuple[Role, ...]
    keywords: bool = True
    languages: FrozenSet[Language] = frozenset()   # empty: every language
    event_object: Optional[EventObjectRule] = None
    min_arguments: int = 0
    # (argument index, required string literal) pairs
    argument_equals: Tuple[Tuple[int, str], ...] = ()

    def applies_to(self, language: Language) -> bool:
        return not self.languages or language in self.languages


@dataclass(frozen=True)
class CustomFunctionSignature:
    name: str
    roles: Tuple[Role, ...]
    keywords: bool = True


class BindingPolicy(str, Enum):
    KEYWORDS_FIRST = "keywords_first"
    POSITIONAL_FIRST = "positional_first"


# ==============================================================================
# Custom function signature strings
# ==============================================================================

_SIGNATURE_RE = re.compile(r"^\s*([A-Za-z0-9_$.]+)\s*(?:\(([^)]*)\))?\s*$")
_USER_ID_TOKENS = frozenset({"userid", "distinctid"})


def parse_custom_signature(text: str) -> CustomFunctionSignature:
    """
    Parse "name" or "name(p1, p2, ...)".

    EVENT_NAME is required in a parameter list; PROPERTIES goes last when not
    given; USER_ID / userId / user_id / distinctId mark the user id; "_" is
    ignored; any other token is an extra captured under its own name. A bare
    name means (EVENT_NAME, PROPERTIES).
    """
    if not isinstance(text, str):
        raise RegistryError(f"Custom function signature must be a string, got {type(text).__name__}")
    m = _SIGNATURE_RE.match(text)
    if not m or not all(m.group(1).split(".")):
        raise RegistryError(f"Malformed custom function signature: {text!r}")
    name, params = m.group(1), m.group(2)

    if params is None:
        return CustomFunctionSignature(
            name=name,
            roles=(_role(RoleKind.EVENT_NAME), _role(RoleKind.PROPERTIES)),
        )

    tokens = [p.strip() for p in params.split(",") if p.strip()]
    upper = [t.upper() for t in tokens]
    if "EVENT_NAME" not in upper:
        raise RegistryError(f"EVENT_NAME is required in custom function signature: {text!r}")
    if upper.count("EVENT_NAME") > 1 or upper.count("PROPERTIES") > 1:
        raise RegistryError(f"Duplicate role in custom function signature: {text!r}")

    roles: List[Role] = []
    seen_user = False
    for token, up in zip(tokens, upper):
        if up == "EVENT_NAME":
            roles.append(_role(RoleKind.EVENT_NAME))
        elif up == "PROPERTIES":
            roles.append(_role(RoleKind.PROPERTIES))
        elif token == "_":
            roles.append(Role(RoleKind.IGNORE, "_"))
        elif not seen_user and (up == "USER_ID" or normalize_keyword(token) in _USER_ID_TOKENS):
            seen_user = True
            roles.append(Role(RoleKind.USER_ID, "user_id" if up == "USER_ID" else token))
        else:
            roles.append(Role(RoleKind.EXTRA, token))
    if "PROPERTIES" not in upper:
        roles.append(_role(RoleKind.PROPERTIES))

    return CustomFunctionSignature(name=name, roles=tuple(roles))


def _role(kind: RoleKind) -> Role:
    return Role(kind=kind, name=kind.value)


# ==============================================================================
# Document parsing
# ==============================================================================


def _require(doc: Mapping[str, Any], key: str, where: str) -> Any:
    if key not in doc:
        raise RegistryError(f"{where}: missing required field {key!r}")
    return doc[key]


def _str_list(value: Any, where: str) -> Tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) and v for v in value):
        raise RegistryError(f"{where}: expected a list of non-empty strings")
    return tuple(value)


def _parse_role(spec: Any, where: str) -> Role:
    if isinstance(spec, str):
        try:
            kind = RoleKind(spec)
        except ValueError:
            raise RegistryError(f"{where}: unknown role {spec!r}") from None
        if kind is RoleKind.EXTRA:
            raise RegistryError(f"{where}: an extra role needs a name")
        return _role(kind)
    if isinstance(spec, Mapping):
        raw_kind = _require(spec, "role", where)
        try:
            kind = RoleKind(raw_kind)
        except ValueError:
            raise RegistryError(f"{where}: unknown role {raw_kind!r}") from None
        name = spec.get("name", kind.value)
        if not isinstance(name, str) or not name:
            raise RegistryError(f"{where}: role name must be a non-empty string")
        aliases = _str_list(spec.get("aliases", []), f"{where}.aliases") if spec.get("aliases") else ()
        return Role(kind=kind, name=name, aliases=aliases)
    raise RegistryError(f"{where}: a role is a string or a mapping")


def _parse_roles(specs: Any, where: str) -> Tuple[Role, ...]:
    if not isinstance(specs, (list, tuple)):
        raise RegistryError(f"{where}: roles must be a list")
    roles = tuple(_parse_role(s, f"{where}[{i}]") for i, s in enumerate(specs))
    for kind in (RoleKind.USER_ID, RoleKind.EVENT_NAME, RoleKind.PROPERTIES):
        if sum(1 for r in roles if r.kind is kind) > 1:
            raise RegistryError(f"{where}: role {kind.value!r} appears more than once")
    return roles


def _parse_languages(value: Any, where: str) -> FrozenSet[Language]:
    if value is None:
        return frozenset()
    langs = set()
    for tag in _str_list(value, where):
        lang = Language.parse(tag)
        if lang is Language.UNKNOWN:
            raise RegistryError(f"{where}: unknown language {tag!r}")
        langs.add(lang)
        if lang is Language.JS:
            langs.add(Language.JSX)
        elif lang is Language.TS:
            langs.add(Language.TSX)
    return frozenset(langs)


def _parse_event_object(spec: Any, where: str) -> EventObjectRule:
    if not isinstance(spec, Mapping):
        raise RegistryError(f"{where}: expected a mapping")
    argument = spec.get("argument", 0)
    if not isinstance(argument, int) or isinstance(argument, bool) or argument < 0:
        raise RegistryError(f"{where}.argument: expected a non-negative integer")
    return EventObjectRule(
        argument=argument,
        constructors=_str_list(spec.get("constructors", []), f"{where}.constructors") if spec.get("constructors") else (),
        roles=_parse_roles(_require(spec, "roles", where), f"{where}.roles"),
        remaining_as_properties=bool(spec.get("remaining_as_properties", False)),
    )


def _parse_sdk(spec: Any, where: str) -> SdkSignature:
    if not isinstance(spec, Mapping):
        raise RegistryError(f"{where}: expected a mapping")
    sdk_id = _require(spec, "id", where)
    if not isinstance(sdk_id, str) or not sdk_id:
        raise RegistryError(f"{where}.id: expected a non-empty string")

    match = _require(spec, "match", where)
    if not isinstance(match, Mapping):
        raise RegistryError(f"{where}.match: expected a mapping")
    raw_kind = _require(match, "kind", f"{where}.match")
    try:
        kind = MatchKind(raw_kind)
    except ValueError:
        raise RegistryError(f"{where}.match: unknown match kind {raw_kind!r}") from None
    patterns = _str_list(match.get("patterns", []), f"{where}.match.patterns") if match.get("patterns") else ()
    if kind is not MatchKind.GLOBAL and not patterns:
        raise RegistryError(f"{where}.match: {kind.value} matching needs at least one pattern")

    method = _require(spec, "method", where)
    if not isinstance(method, str) or not method:
        raise RegistryError(f"{where}.method: expected a non-empty string")

    event_object = None
    if spec.get("event_object") is not None:
        event_object = _parse_event_object(spec["event_object"], f"{where}.event_object")

    min_arguments = spec.get("min_arguments", 0)
    if not isinstance(min_arguments, int) or isinstance(min_arguments, bool) or min_arguments < 0:
        raise RegistryError(f"{where}.min_arguments: expected a non-negative integer")

    return SdkSignature(
        id=sdk_id,
        match=MatchRule(kind=kind, patterns=patterns),
        method=method,
        roles=_parse_roles(spec.get("roles", []), f"{where}.roles"),
        keywords=bool(spec.get("keywords", True)),
        languages=_parse_languages(spec.get("languages"), f"{where}.languages"),
        event_object=event_object,
        min_arguments=min_arguments,
        argument_equals=_parse_argument_equals(spec.get("argument_equals"), f"{where}.argument_equals"),
    )


def _parse_argument_equals(value: Any, where: str) -> Tuple[Tuple[int, str], ...]:
    if value is None:
        return ()
    if not isinstance(value, Mapping):
        raise RegistryError(f"{where}: expected a mapping of argument index to string")
    out = []
    for index, expected in value.items():
        try:
            position = int(index)
        except (TypeError, ValueError):
            raise RegistryError(f"{where}: argument index {index!r} is not an integer") from None
        if position < 0 or not isinstance(expected, str):
            raise RegistryError(f"{where}.{index}: expected a string for a non-negative index")
        out.append((position, expected))
    return tuple(sorted(out))


def _parse_custom(spec: Any, where: str) -> CustomFunctionSignature:
    if isinstance(spec, CustomFunctionSignature):
        return spec
    if isinstance(spec, str):
        try:
            return parse_custom_signature(spec)
        except RegistryError as e:
            raise RegistryError(f"{where}: {e}") from None
    if isinstance(spec, Mapping):
        name = _require(spec, "name", where)
        if not isinstance(name, str) or not name:
            raise RegistryError(f"{where}.name: expected a non-empty string")
        roles = _parse_roles(_require(spec, "roles", where), f"{where}.roles")
        return CustomFunctionSignature(name=name, roles=roles, keywords=bool(spec.get("keywords", True)))
    raise RegistryError(f"{where}: a custom function is a signature string or a mapping")


# ==============================================================================
# Registry
# ==============================================================================


CustomSpec = Union[str, Mapping[str, Any], CustomFunctionSignature]


class SignatureRegistry:
    """
    Ordered, immutable tables of SDK and custom-function signatures with the
    lookups the resolver needs. Configured order is preserved everywhere.
    """

    def __init__(
        self,
        sdks: Sequence[SdkSignature] = (),
        custom_functions: Sequence[CustomFunctionSignature] = (),
        binding: BindingPolicy = BindingPolicy.KEYWORDS_FIRST,
    ) -> None:
        self._sdks: Tuple[SdkSignature, ...] = tuple(sdks)
        self._custom: Tuple[CustomFunctionSignature, ...] = tuple(custom_functions)
        self._binding = BindingPolicy(binding)

        by_method: Dict[str, List[SdkSignature]] = {}
        for sig in self._sdks:
            by_method.setdefault(sig.method, []).append(sig)
        self._by_method = {k: tuple(v) for k, v in by_method.items()}

    # ---- construction ---------------------------------------------------------

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "SignatureRegistry":
        if not isinstance(doc, Mapping):
            raise RegistryError("Registry document must be a mapping")
        version = doc.get("version", 1)
        if version != 1:
            raise RegistryError(f"Unsupported registry document version: {version!r}")
        raw_binding = doc.get("binding", BindingPolicy.KEYWORDS_FIRST.value)
        try:
            binding = BindingPolicy(raw_binding)
        except ValueError:
            raise RegistryError(f"Unknown binding policy: {raw_binding!r}") from None

        sdks_doc = doc.get("sdks", [])
        custom_doc = doc.get("custom_functions", [])
        if not isinstance(sdks_doc, (list, tuple)):
            raise RegistryError("sdks: expected a list")
        if not isinstance(custom_doc, (list, tuple)):
            raise RegistryError("custom_functions: expected a list")

        sdks = [_parse_sdk(s, f"sdks[{i}]") for i, s in enumerate(sdks_doc)]
        custom = [_parse_custom(c, f"custom_functions[{i}]") for i, c in enumerate(custom_doc)]
        return cls(sdks=sdks, custom_functions=custom, binding=binding)

    def with_custom_functions(self, specs: Iterable[CustomSpec]) -> "SignatureRegistry":
        """A new registry with `specs` appended after the existing custom functions."""
        added = [_parse_custom(s, f"custom_functions[+{i}]") for i, s in enumerate(specs)]
        return SignatureRegistry(self._sdks, self._custom + tuple(added), self._binding)

    def to_document(self) -> Dict[str, Any]:
        sdks = []
        for sig in self._sdks:
            doc: Dict[str, Any] = {
                "id": sig.id,
                "match": {"kind": sig.match.kind.value, "patterns": list(sig.match.patterns)},
                "method": sig.method,
                "keywords": sig.keywords,
                "roles": [r.to_document() for r in sig.roles],
            }
            if sig.languages:
                doc["languages"] = sorted(lang.value for lang in sig.languages)
            if sig.min_arguments:
                doc["min_arguments"] = sig.min_arguments
            if sig.argument_equals:
                doc["argument_equals"] = {str(i): v for i, v in sig.argument_equals}
            if sig.event_object is not None:
                eo = sig.event_object
                doc["event_object"] = {
                    "argument": eo.argument,
                    "constructors": list(eo.constructors),
                    "roles": [r.to_document() for r in eo.roles],
                    "remaining_as_properties": eo.remaining_as_properties,
                }
            sdks.append(doc)
        custom = [
            {"name": c.name, "roles": [r.to_document() for r in c.roles], "keywords": c.keywords}
            for c in self._custom
        ]
        return {"version": 1, "binding": self._binding.value, "sdks": sdks, "custom_functions": custom}

    # ---- lookups --------------------------------------------------------------

    @property
    def binding(self) -> BindingPolicy:
        return self._binding

    @property
    def sdks(self) -> Tuple[SdkSignature, ...]:
        return self._sdks

    @property
    def custom_functions(self) -> Tuple[CustomFunctionSignature, ...]:
        return self._custom

    def sdk_signatures_for(self, method: str, language: Language) -> Tuple[SdkSignature, ...]:
        return tuple(s for s in self._by_method.get(method, ()) if s.applies_to(language))

    def custom_signature_for(self, *names: Optional[str]) -> Optional[CustomFunctionSignature]:
        """First custom function, in configured order, named by any of `names`."""
        wanted = {n for n in names if n}
        if not wanted:
            return None
        for sig in self._custom:
            if sig.name in wanted:
                return sig
        return None

    def __len__(self) -> int:
        return len(self._sdks) + len(self._custom)


def load_registry(path: Union[str, Path]) -> SignatureRegistry:
    p = Path(path)
    try:
        doc = json.loads(p.read_text(encoding="utf-8"))
    except OSError as e:
        raise RegistryError(f"Could not read registry {p}: {e}") from e
    except json.JSONDecodeError as e:
        raise RegistryError(f"Registry {p} is not valid JSON: {e}") from e
    registry = SignatureRegistry.from_document(doc)
    logger.info("loaded registry %s: %d sdk signatures, %d custom functions", p, len(registry.sdks), len(registry.custom_functions))
    return registry
