"""
server-sweep config package public API.

File: src/server_sweep/config/__init__.py

Purpose
- Export the discovery policy builders and the runtime settings loader.

Functional requirements
- Support loading from ``server-sweep.toml`` + ``SWEEP_`` env overrides.
- Policy construction never raises; settings loading fails fast with
  :class:`ConfigLoadError`.
"""

from server_sweep.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    SweepSettings,
    load_settings,
)
from server_sweep.config.policy import PolicyConfig, defaults, host_time_ceiling, merge

__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "PolicyConfig",
    "SweepSettings",
    "defaults",
    "host_time_ceiling",
    "load_settings",
    "merge",
]
