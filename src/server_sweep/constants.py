"""Stable constants shared across the discovery engine."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
DISCOVERY_STATE_SCHEMA_VERSION: Final[int] = 1
STATE_DB_SCHEMA_VERSION: Final[int] = 1

# Host execution-time ceiling.
HOST_TIME_CEILING_ENV: Final[str] = "SWEEP_MAX_EXECUTION_TIME"
DEFAULT_TIME_CEILING_SECONDS: Final[int] = 30
DEFAULT_SAFETY_MARGIN_SECONDS: Final[int] = 8

# Traversal cadence.
STATUS_BATCH_SIZE: Final[int] = 20
SCAN_LEASE_TTL_SECONDS: Final[float] = 300.0

# Default runtime paths (relative to the config file directory unless overridden).
STATE_DB_PATH: Final[PurePosixPath] = PurePosixPath("state/sweep.sqlite")
LOG_DIR: Final[PurePosixPath] = PurePosixPath("logs")

# Common external hiding spots, visited before the generic home subtree.
# Relative to the home root; listed in visiting order.
DEFAULT_PRIORITY_SUBPATHS: Final[tuple[str, ...]] = (
    "tmp/",
    "var/tmp/",
    "dev/shm/",
    "cache/",
    "caches/",
    "twig/",
    "compiled/",
    "compiles/",
    "template_cache/",
    "smarty_cache/",
    "var/cache/",
    "logs/",
    "access-logs/",
    "mail/",
    "error_logs/",
    ".cpanel/",
    ".trash/",
    ".softaculous/",
    ".cagefs/",
)

DEFAULT_FORBIDDEN_PATH_PREFIXES: Final[tuple[str, ...]] = (
    "/proc",
    "/sys",
    "/dev",
    "/etc",
    "/root",
    "/boot",
    "/lost+found",
    "/var/lib/mysql",
    "/var/lib/postgresql",
    "/var/log",
    "/var/cache",
    "/tmp",
    "/var/tmp",
    "/run",
)

# Restricted jail (CageFS) handling.
DEFAULT_EXCEPTION_SUBTREE_MARKERS: Final[tuple[str, ...]] = ("/.cagefs",)
DEFAULT_EXCEPTION_ALLOWED_SUBPATHS: Final[tuple[str, ...]] = ("/.cagefs",)
DEFAULT_EXCEPTION_SKIPPED_DIR_NAMES: Final[tuple[str, ...]] = ("session",)

# The application's own install, backup and quarantine directories.
DEFAULT_SELF_EXCLUSION_MARKERS: Final[tuple[str, ...]] = (
    "/server-sweep/",
    "/server_sweep/",
    "/server-sweep-backups/",
    "\\server-sweep\\",
    "\\server-sweep-backups\\",
)

__all__ = [
    "DEFAULT_EXCEPTION_ALLOWED_SUBPATHS",
    "DEFAULT_EXCEPTION_SKIPPED_DIR_NAMES",
    "DEFAULT_EXCEPTION_SUBTREE_MARKERS",
    "DEFAULT_FORBIDDEN_PATH_PREFIXES",
    "DEFAULT_PRIORITY_SUBPATHS",
    "DEFAULT_SAFETY_MARGIN_SECONDS",
    "DEFAULT_SELF_EXCLUSION_MARKERS",
    "DEFAULT_TIME_CEILING_SECONDS",
    "DISCOVERY_STATE_SCHEMA_VERSION",
    "HOST_TIME_CEILING_ENV",
    "LOG_DIR",
    "SCAN_LEASE_TTL_SECONDS",
    "STATE_DB_PATH",
    "STATE_DB_SCHEMA_VERSION",
    "STATUS_BATCH_SIZE",
]
