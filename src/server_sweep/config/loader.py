"""
server-sweep — runtime settings loader.

File: src/server_sweep/config/loader.py

Purpose
- Load effective settings from defaults, a TOML file, env vars and CLI overrides.

What should be included in this file
- Precedence logic: CLI > env (SWEEP_) > file > defaults.
- TOML loading via ``tomllib``.
- Deterministic environment variable mapping and coercion.
- Path normalization relative to the config file location.

Functional requirements
- Malformed files and uncoercible env values raise :class:`ConfigLoadError`.
- The ``[policy]`` table is passed through untouched; policy values are
  clamped later by :func:`server_sweep.config.policy.merge`, never rejected.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Final, Literal

from server_sweep.config import policy as policy_module
from server_sweep.config.policy import PolicyConfig
from server_sweep.constants import DEFAULT_SAFETY_MARGIN_SECONDS, LOG_DIR, STATE_DB_PATH

DEFAULT_CONFIG_FILE: Final[str] = "server-sweep.toml"
ENV_PREFIX: Final[str] = "SWEEP_"

_BOOLEAN_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_BOOLEAN_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})

_SECTIONS: Final[tuple[str, ...]] = ("paths", "host", "observability", "policy")
_PATH_FIELDS: Final[tuple[tuple[str, str], ...]] = (
    ("paths", "protected_root"),
    ("paths", "state_db"),
    ("observability", "log_dir"),
)


@dataclass(frozen=True, slots=True)
class _Binding:
    path: tuple[str, str]
    value_type: Literal["str", "int", "bool"]


_ENV_BINDINGS: Final[tuple[_Binding, ...]] = (
    _Binding(("paths", "protected_root"), "str"),
    _Binding(("paths", "state_db"), "str"),
    _Binding(("host", "max_execution_time"), "int"),
    _Binding(("host", "safety_margin_seconds"), "int"),
    _Binding(("observability", "log_level"), "str"),
    _Binding(("observability", "log_dir"), "str"),
    _Binding(("observability", "log_to_stdout"), "bool"),
    _Binding(("policy", "enabled"), "bool"),
    _Binding(("policy", "aggressive_mode"), "bool"),
    _Binding(("policy", "ui_mode"), "str"),
    _Binding(("policy", "max_files"), "int"),
    _Binding(("policy", "max_file_size_mb"), "int"),
    _Binding(("policy", "max_depth"), "int"),
    _Binding(("policy", "chunk_size"), "int"),
)


class ConfigLoadError(ValueError):
    """Raised when settings cannot be loaded or overrides cannot be coerced."""


@dataclass(frozen=True, slots=True)
class SweepSettings:
    """Effective runtime settings for one CLI invocation."""

    config_path: Path
    protected_root: Path | None
    state_db: Path
    time_ceiling_seconds: int
    safety_margin_seconds: int = DEFAULT_SAFETY_MARGIN_SECONDS
    log_level: str = "INFO"
    log_dir: Path = Path(LOG_DIR)
    log_to_stdout: bool = False
    policy_settings: Mapping[str, object] = field(default_factory=dict)

    def build_policy(self) -> PolicyConfig:
        base = policy_module.defaults(self.time_ceiling_seconds)
        base = replace(base, safety_margin_seconds=self.safety_margin_seconds)
        return policy_module.merge(self.policy_settings, base=base)

    def to_dict(self) -> dict[str, object]:
        return {
            "config_path": self.config_path.as_posix(),
            "paths": {
                "protected_root": (
                    None if self.protected_root is None else self.protected_root.as_posix()
                ),
                "state_db": self.state_db.as_posix(),
            },
            "host": {
                "max_execution_time": self.time_ceiling_seconds,
                "safety_margin_seconds": self.safety_margin_seconds,
            },
            "observability": {
                "log_level": self.log_level,
                "log_dir": self.log_dir.as_posix(),
                "log_to_stdout": self.log_to_stdout,
            },
            "policy": dict(self.policy_settings),
        }


def load_settings(
    config_path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    cli_overrides: Mapping[str, object] | None = None,
) -> SweepSettings:
    """Load effective settings with deterministic precedence: CLI > env > file > defaults."""

    resolved_path = _resolve_config_path(config_path)
    env_map = dict(os.environ if environ is None else environ)

    merged = default_settings(env_map)
    _merge_mapping(merged, _load_toml_file(resolved_path, required=config_path is not None))
    _merge_mapping(merged, _collect_env_overrides(env_map))
    _merge_mapping(merged, _materialize_cli_overrides(cli_overrides or {}))
    return _build_settings(merged, config_path=resolved_path)


def default_settings(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    return {
        "paths": {"protected_root": None, "state_db": STATE_DB_PATH.as_posix()},
        "host": {
            "max_execution_time": policy_module.host_time_ceiling(environ),
            "safety_margin_seconds": DEFAULT_SAFETY_MARGIN_SECONDS,
        },
        "observability": {
            "log_level": "INFO",
            "log_dir": LOG_DIR.as_posix(),
            "log_to_stdout": False,
        },
        "policy": {},
    }


def _resolve_config_path(config_path: str | Path | None) -> Path:
    if config_path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _load_toml_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}

    try:
        with path.open("rb") as handle:
            parsed = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc

    for section in _SECTIONS:
        if section in parsed and not isinstance(parsed[section], dict):
            raise ConfigLoadError(f"[{section}] must be a table in {path}")
    return parsed


def _collect_env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for binding in _ENV_BINDINGS:
        env_name = _env_name_for_path(binding.path)
        raw = environ.get(env_name)
        if raw is None:
            continue
        value = _coerce_env(raw, binding.value_type, env_name, binding.path)
        _set_nested(overrides, binding.path, value)
    return overrides


def _coerce_env(
    raw: str,
    value_type: Literal["str", "int", "bool"],
    env_name: str,
    path: tuple[str, ...],
) -> object:
    value = raw.strip()
    if value_type == "str":
        return value
    if value_type == "int":
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} -> {'.'.join(path)} must be an integer") from exc

    lowered = value.lower()
    if lowered in _BOOLEAN_TRUE:
        return True
    if lowered in _BOOLEAN_FALSE:
        return False
    raise ConfigLoadError(
        f"{env_name} -> {'.'.join(path)} must be a boolean (true/false/1/0/yes/no/on/off)"
    )


def _materialize_cli_overrides(cli_overrides: Mapping[str, object]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for key in sorted(cli_overrides):
        value = cli_overrides[key]
        if value is None:
            continue
        path = tuple(part for part in key.split(".") if part)
        if len(path) < 2:
            raise ConfigLoadError(f"invalid CLI override key {key!r}")
        _set_nested(payload, path, value)
    return payload


def _build_settings(merged: Mapping[str, Any], *, config_path: Path) -> SweepSettings:
    base_dir = config_path.parent
    paths = merged["paths"]
    host = merged["host"]
    observability = merged["observability"]

    raw_root = paths.get("protected_root")
    if raw_root is not None and not isinstance(raw_root, str):
        raise ConfigLoadError("paths.protected_root must be a string")
    protected_root = None if not raw_root else _normalize_one_path(raw_root, base_dir)

    state_db = paths.get("state_db")
    if not isinstance(state_db, str) or not state_db.strip():
        raise ConfigLoadError("paths.state_db must be a non-empty string")

    ceiling = _expect_int(host.get("max_execution_time"), "host.max_execution_time")
    if ceiling <= 0:
        raise ConfigLoadError("host.max_execution_time must be > 0")
    margin = _expect_int(host.get("safety_margin_seconds"), "host.safety_margin_seconds")
    if margin < 0:
        raise ConfigLoadError("host.safety_margin_seconds must be >= 0")

    log_level = observability.get("log_level")
    if not isinstance(log_level, str) or not log_level.strip():
        raise ConfigLoadError("observability.log_level must be a non-empty string")
    log_dir = observability.get("log_dir")
    if not isinstance(log_dir, str) or not log_dir.strip():
        raise ConfigLoadError("observability.log_dir must be a non-empty string")
    log_to_stdout = observability.get("log_to_stdout")
    if not isinstance(log_to_stdout, bool):
        raise ConfigLoadError("observability.log_to_stdout must be a boolean")

    policy_settings = merged.get("policy", {})
    if not isinstance(policy_settings, Mapping):
        raise ConfigLoadError("[policy] must be a table")

    return SweepSettings(
        config_path=config_path,
        protected_root=protected_root,
        state_db=_normalize_one_path(state_db, base_dir),
        time_ceiling_seconds=ceiling,
        safety_margin_seconds=margin,
        log_level=log_level.strip().upper(),
        log_dir=_normalize_one_path(log_dir, base_dir),
        log_to_stdout=log_to_stdout,
        policy_settings=dict(policy_settings),
    )


def _expect_int(value: object, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigLoadError(f"{name} must be an integer")
    return value


def _merge_mapping(target: dict[str, Any], source: Mapping[str, object]) -> None:
    for key in sorted(source):
        value = source[key]
        if isinstance(value, Mapping):
            child = target.get(key)
            if not isinstance(child, dict):
                child = {}
                target[key] = child
            _merge_mapping(child, value)
        else:
            target[key] = value


def _set_nested(target: dict[str, Any], path: tuple[str, ...], value: object) -> None:
    cursor = target
    for part in path[:-1]:
        next_node = cursor.get(part)
        if not isinstance(next_node, dict):
            next_node = {}
            cursor[part] = next_node
        cursor = next_node
    cursor[path[-1]] = value


def _normalize_one_path(raw: str, base_dir: Path) -> Path:
    expanded = os.path.expandvars(raw)
    candidate = Path(expanded).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(str(candidate)))


def _env_name_for_path(path: tuple[str, ...]) -> str:
    return ENV_PREFIX + "_".join(part.upper() for part in path)


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "SweepSettings",
    "default_settings",
    "load_settings",
]
