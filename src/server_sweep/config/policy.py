"""
server-sweep — external discovery policy.

File: src/server_sweep/config/policy.py

Purpose
- Build the bounded, immutable configuration the discovery engine runs under.

Functional requirements
- Defaults are derived from the host execution-time ceiling: larger ceilings
  imply a larger default file budget.
- Operator settings are coerced and clamped; invalid input is normalized and
  never raised, so the engine always receives a safe configuration.
- Operator-supplied forbidden paths extend the built-in set and never replace it.

Non-functional requirements
- Pure functions over plain mappings; no I/O beyond reading one env var.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Final

from server_sweep.constants import (
    DEFAULT_EXCEPTION_ALLOWED_SUBPATHS,
    DEFAULT_EXCEPTION_SKIPPED_DIR_NAMES,
    DEFAULT_EXCEPTION_SUBTREE_MARKERS,
    DEFAULT_FORBIDDEN_PATH_PREFIXES,
    DEFAULT_SAFETY_MARGIN_SECONDS,
    DEFAULT_SELF_EXCLUSION_MARKERS,
    DEFAULT_TIME_CEILING_SECONDS,
    HOST_TIME_CEILING_ENV,
)

_MIB: Final[int] = 1024 * 1024
_KIB: Final[int] = 1024

MIN_MAX_FILES: Final[int] = 500
MAX_MAX_FILES: Final[int] = 200_000
_DEFAULT_MAX_FILES_FLOOR: Final[int] = 10_000
_DEFAULT_MAX_FILES_CAP: Final[int] = 100_000
_FILES_PER_CEILING_SECOND: Final[int] = 500

UI_MODES: Final[tuple[str, ...]] = ("basic", "expert")
_SAFE_UI_MODE: Final[str] = "basic"

_BOOL_KEYS: Final[tuple[str, ...]] = ("enabled", "aggressive_mode")
# key -> (minimum, maximum or None)
_INT_BOUNDS: Final[dict[str, tuple[int, int | None]]] = {
    "max_files": (MIN_MAX_FILES, MAX_MAX_FILES),
    "max_file_size_mb": (1, None),
    "max_depth": (1, None),
    "chunk_size": (1, None),
    "exception_max_file_size_kb": (1, None),
    "safety_margin_seconds": (0, None),
}


@dataclass(frozen=True, slots=True)
class PolicyConfig:
    """Immutable discovery policy, rebuilt from operator settings each invocation."""

    enabled: bool = False
    max_files: int = _DEFAULT_MAX_FILES_FLOOR
    max_file_size_bytes: int = 100 * _MIB
    chunk_size: int = 60
    max_depth: int = 100
    forbidden_path_prefixes: frozenset[str] = field(
        default_factory=lambda: frozenset(DEFAULT_FORBIDDEN_PATH_PREFIXES)
    )
    exception_subtree_markers: frozenset[str] = field(
        default_factory=lambda: frozenset(DEFAULT_EXCEPTION_SUBTREE_MARKERS)
    )
    exception_allowed_subpaths: frozenset[str] = field(
        default_factory=lambda: frozenset(DEFAULT_EXCEPTION_ALLOWED_SUBPATHS)
    )
    exception_skipped_dir_names: frozenset[str] = field(
        default_factory=lambda: frozenset(DEFAULT_EXCEPTION_SKIPPED_DIR_NAMES)
    )
    exception_max_file_size_bytes: int = 100 * _MIB
    self_exclusion_markers: frozenset[str] = field(
        default_factory=lambda: frozenset(DEFAULT_SELF_EXCLUSION_MARKERS)
    )
    aggressive_mode: bool = True
    ui_mode: str = _SAFE_UI_MODE
    time_ceiling_seconds: int = DEFAULT_TIME_CEILING_SECONDS
    safety_margin_seconds: int = DEFAULT_SAFETY_MARGIN_SECONDS

    def __post_init__(self) -> None:
        clamped_files = _clamp(self.max_files, MIN_MAX_FILES, MAX_MAX_FILES)
        object.__setattr__(self, "max_files", clamped_files)
        for name in (
            "max_file_size_bytes",
            "chunk_size",
            "max_depth",
            "exception_max_file_size_bytes",
            "time_ceiling_seconds",
            "safety_margin_seconds",
        ):
            object.__setattr__(self, name, max(0, int(getattr(self, name))))
        if self.ui_mode not in UI_MODES:
            object.__setattr__(self, "ui_mode", _SAFE_UI_MODE)

    def to_dict(self) -> dict[str, object]:
        return {
            "enabled": self.enabled,
            "max_files": self.max_files,
            "max_file_size_bytes": self.max_file_size_bytes,
            "chunk_size": self.chunk_size,
            "max_depth": self.max_depth,
            "forbidden_path_prefixes": sorted(self.forbidden_path_prefixes),
            "exception_subtree_markers": sorted(self.exception_subtree_markers),
            "exception_allowed_subpaths": sorted(self.exception_allowed_subpaths),
            "exception_skipped_dir_names": sorted(self.exception_skipped_dir_names),
            "exception_max_file_size_bytes": self.exception_max_file_size_bytes,
            "self_exclusion_markers": sorted(self.self_exclusion_markers),
            "aggressive_mode": self.aggressive_mode,
            "ui_mode": self.ui_mode,
            "time_ceiling_seconds": self.time_ceiling_seconds,
            "safety_margin_seconds": self.safety_margin_seconds,
        }


def host_time_ceiling(environ: Mapping[str, str] | None = None) -> int:
    """Return the host execution-time ceiling in seconds (unset/invalid/0 -> 30)."""

    env = os.environ if environ is None else environ
    raw = env.get(HOST_TIME_CEILING_ENV, "")
    try:
        value = int(raw.strip())
    except ValueError:
        return DEFAULT_TIME_CEILING_SECONDS
    if value <= 0:
        return DEFAULT_TIME_CEILING_SECONDS
    return value


def default_max_files(time_ceiling_seconds: int) -> int:
    ceiling = max(DEFAULT_TIME_CEILING_SECONDS, time_ceiling_seconds)
    scaled = ceiling * _FILES_PER_CEILING_SECOND
    return min(_DEFAULT_MAX_FILES_CAP, max(_DEFAULT_MAX_FILES_FLOOR, scaled))


def defaults(time_ceiling_seconds: int | None = None) -> PolicyConfig:
    """Return environment-aware defaults.

    When ``time_ceiling_seconds`` is omitted the ceiling is read once from
    ``SWEEP_MAX_EXECUTION_TIME``.
    """

    ceiling = host_time_ceiling() if time_ceiling_seconds is None else time_ceiling_seconds
    if ceiling <= 0:
        ceiling = DEFAULT_TIME_CEILING_SECONDS
    return PolicyConfig(
        max_files=default_max_files(ceiling),
        time_ceiling_seconds=ceiling,
    )


def merge(
    user_settings: Mapping[str, object] | None,
    *,
    base: PolicyConfig | None = None,
) -> PolicyConfig:
    """Overlay operator settings onto ``base`` (or :func:`defaults`).

    Recognized keys: ``enabled``, ``aggressive_mode``, ``ui_mode``, ``max_files``,
    ``max_file_size_mb``, ``max_depth``, ``chunk_size``,
    ``exception_max_file_size_kb``, ``safety_margin_seconds``,
    ``forbidden_paths`` and ``exception_allowed_paths``. Anything else is ignored.
    """

    policy = base if base is not None else defaults()
    if not isinstance(user_settings, Mapping):
        return policy

    updates: dict[str, object] = {}

    for key in _BOOL_KEYS:
        if key in user_settings and user_settings[key] is not None:
            updates[key] = _coerce_bool(user_settings[key])

    if "ui_mode" in user_settings and user_settings["ui_mode"] is not None:
        raw_mode = user_settings["ui_mode"]
        updates["ui_mode"] = raw_mode if raw_mode in UI_MODES else _SAFE_UI_MODE

    for key, (minimum, maximum) in _INT_BOUNDS.items():
        if key not in user_settings or user_settings[key] is None:
            continue
        value = _coerce_int(user_settings[key], fallback=minimum)
        value = max(minimum, value)
        if maximum is not None:
            value = min(maximum, value)
        if key == "max_file_size_mb":
            updates["max_file_size_bytes"] = value * _MIB
        elif key == "exception_max_file_size_kb":
            updates["exception_max_file_size_bytes"] = value * _KIB
        else:
            updates[key] = value

    extra_forbidden = _sanitize_paths(user_settings.get("forbidden_paths"))
    if extra_forbidden:
        updates["forbidden_path_prefixes"] = policy.forbidden_path_prefixes | extra_forbidden

    allowed = _sanitize_paths(user_settings.get("exception_allowed_paths"), absolute_only=False)
    if allowed:
        updates["exception_allowed_subpaths"] = allowed

    if not updates:
        return policy
    return replace(policy, **updates)  # type: ignore[arg-type]


def _coerce_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in {"", "0", "false", "no", "off"}
    return bool(value)


def _coerce_int(value: object, *, fallback: int) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return fallback
        return int(value)
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return fallback
        return _coerce_int(parsed, fallback=fallback)
    return fallback


def _clamp(value: int, minimum: int, maximum: int) -> int:
    return max(minimum, min(maximum, int(value)))


def _sanitize_paths(raw: object, *, absolute_only: bool = True) -> frozenset[str]:
    if isinstance(raw, str):
        items: Iterable[object] = (raw,)
    elif isinstance(raw, (list, tuple, set, frozenset)):
        items = raw
    else:
        return frozenset()

    cleaned: set[str] = set()
    for item in items:
        if not isinstance(item, str):
            continue
        candidate = item.strip()
        if not candidate or "\x00" in candidate:
            continue
        if absolute_only and not candidate.startswith("/"):
            continue
        if len(candidate) > 1:
            candidate = candidate.rstrip("/") or "/"
        cleaned.add(candidate)
    return frozenset(cleaned)


__all__ = [
    "MAX_MAX_FILES",
    "MIN_MAX_FILES",
    "PolicyConfig",
    "UI_MODES",
    "default_max_files",
    "defaults",
    "host_time_ceiling",
    "merge",
]
