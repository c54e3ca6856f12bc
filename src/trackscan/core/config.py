"""Environment-driven configuration: feature flags and integer knobs."""

from __future__ import annotations

import os
from functools import lru_cache


_TRUE_VALUES = {"1", "true", "yes", "on"}
_ENV_PREFIX = "TRACKSCAN_"


def _env_key(name: str) -> str:
    return _ENV_PREFIX + name.upper().replace(".", "_")


@lru_cache(maxsize=None)
def feature_enabled(name: str, default: bool = False) -> bool:
    """Return True when the named feature flag is enabled via environment variable.

    Feature names map to environment variables using the pattern:
        feature.resolve.follow_aliases → TRACKSCAN_FEATURE_RESOLVE_FOLLOW_ALIASES
    Values are interpreted case-insensitively; "1", "true", "yes", "on" enable the flag.
    Any other value disables it.
    """

    raw = os.getenv(_env_key(name))
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


def env_int(name: str, default: int) -> int:
    """Return a positive integer knob from the environment, or `default`.

        scan.max_workers → TRACKSCAN_SCAN_MAX_WORKERS
    """
    raw = os.getenv(_env_key(name))
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    return value if value > 0 else default
