# src/trackscan/scan/events.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from .literals import LiteralValue


class OriginKind(str, Enum):
    SDK = "sdk"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Origin:
    kind: OriginKind
    name: str          # sdk id, or the configured custom function name

    @classmethod
    def sdk(cls, sdk_id: str) -> "Origin":
        return cls(OriginKind.SDK, sdk_id)

    @classmethod
    def custom(cls, function_name: str) -> "Origin":
        return cls(OriginKind.CUSTOM, function_name)

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind.value, "name": self.name}


@dataclass(frozen=True)
class SourceLocation:
    path: str
    line: int       # 1-based
    column: int     # 1-based

    def to_dict(self) -> Dict[str, Any]:
        return {"file": self.path, "line": self.line, "column": self.column}


@dataclass(frozen=True)
class TrackingEvent:
    """
    One recognized call site.

    `user_id` is None when the matched signature has no user id role or the call
    did not supply it. `properties` is always a mapping; when the properties
    argument was not a mapping literal it is empty and `unresolved_properties`
    holds the argument's source text. A mapping literal with spread or computed
    entries keeps its literal entries in `properties` and lists the source text
    of the others in `unresolved_entries`.
    """
    location: SourceLocation
    origin: Origin
    event_name: LiteralValue
    user_id: Optional[LiteralValue]
    properties: Mapping[str, LiteralValue] = field(default_factory=dict)
    extras: Mapping[str, LiteralValue] = field(default_factory=dict)
    function: str = "global"
    unresolved_properties: Optional[str] = None
    unresolved_entries: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        # published events are read-only
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))
        object.__setattr__(self, "extras", MappingProxyType(dict(self.extras)))
        object.__setattr__(self, "unresolved_entries", tuple(self.unresolved_entries))

    def __hash__(self) -> int:
        return hash((
            self.location,
            self.origin,
            self.event_name,
            self.user_id,
            tuple(self.properties.items()),
            tuple(self.extras.items()),
            self.function,
            self.unresolved_properties,
            self.unresolved_entries,
        ))

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "location": self.location.to_dict(),
            "origin": self.origin.to_dict(),
            "event_name": self.event_name.to_dict(),
            "user_id": self.user_id.to_dict() if self.user_id is not None else None,
            "properties": {k: v.to_dict() for k, v in self.properties.items()},
            "function": self.function,
        }
        if self.extras:
            out["extras"] = {k: v.to_dict() for k, v in self.extras.items()}
        if self.unresolved_properties is not None:
            out["unresolved_properties"] = self.unresolved_properties
        if self.unresolved_entries:
            out["unresolved_entries"] = list(self.unresolved_entries)
        return out
