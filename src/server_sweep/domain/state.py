"""Discovery checkpoint record with versioned canonical serialization."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import NoReturn

from server_sweep.constants import DISCOVERY_STATE_SCHEMA_VERSION

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]


class DiscoveryPhase(StrEnum):
    NONE = "none"
    DISCOVERY = "discovery"
    COMPLETE = "complete"


class RunStatus(StrEnum):
    """Operator-facing scan status, re-read on every cancellation check."""

    IDLE = "idle"
    RUNNING = "running"
    CANCELLED = "cancelled"


class StateSchemaError(ValueError):
    """Raised when a persisted checkpoint cannot be decoded."""


@dataclass(slots=True)
class DiscoveryState:
    """Durable traversal checkpoint, owned by the engine between invocations.

    ``stack`` holds pending directories (trailing separator, LIFO order);
    ``seen`` holds canonical paths already collected or descended;
    ``in_progress`` is a directory popped but not fully drained when a
    mid-directory checkpoint was taken.
    """

    phase: DiscoveryPhase = DiscoveryPhase.NONE
    home_root: str = ""
    protected_root: str = ""
    stack: list[str] = field(default_factory=list)
    seen: set[str] = field(default_factory=set)
    collected_files: list[str] = field(default_factory=list)
    skipped_count: int = 0
    in_progress: str | None = None
    truncated: bool = False
    started_at: str | None = None
    updated_at: str | None = None
    schema_version: int = DISCOVERY_STATE_SCHEMA_VERSION

    @property
    def is_complete(self) -> bool:
        return self.phase is DiscoveryPhase.COMPLETE

    def touch(self) -> None:
        self.updated_at = utc_now_iso()

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "schema_version": self.schema_version,
            "phase": self.phase.value,
            "home_root": self.home_root,
            "protected_root": self.protected_root,
            "stack": list(self.stack),
            "seen": sorted(self.seen),
            "collected_files": list(self.collected_files),
            "skipped_count": self.skipped_count,
            "in_progress": self.in_progress,
            "truncated": self.truncated,
            "started_at": self.started_at,
            "updated_at": self.updated_at,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str) -> DiscoveryState:
        try:
            parsed = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as exc:
            _fail(f"invalid JSON: {exc}")
        if not isinstance(parsed, dict):
            _fail("JSON root must be an object")
        return cls.from_dict(parsed)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> DiscoveryState:
        version = data.get("schema_version")
        if version != DISCOVERY_STATE_SCHEMA_VERSION:
            _fail(
                f"unsupported schema_version {version!r}; "
                f"expected {DISCOVERY_STATE_SCHEMA_VERSION}"
            )

        raw_phase = data.get("phase")
        try:
            phase = DiscoveryPhase(raw_phase)
        except ValueError:
            _fail(f"unknown phase {raw_phase!r}")

        skipped = data.get("skipped_count", 0)
        if isinstance(skipped, bool) or not isinstance(skipped, int) or skipped < 0:
            _fail("skipped_count must be a non-negative integer")

        truncated = data.get("truncated", False)
        if not isinstance(truncated, bool):
            _fail("truncated must be a boolean")

        return cls(
            phase=phase,
            home_root=_expect_str(data, "home_root"),
            protected_root=_expect_str(data, "protected_root"),
            stack=_expect_str_list(data, "stack"),
            seen=set(_expect_str_list(data, "seen")),
            collected_files=_expect_str_list(data, "collected_files"),
            skipped_count=skipped,
            in_progress=_expect_optional_str(data, "in_progress"),
            truncated=truncated,
            started_at=_expect_optional_str(data, "started_at"),
            updated_at=_expect_optional_str(data, "updated_at"),
            schema_version=DISCOVERY_STATE_SCHEMA_VERSION,
        )


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _fail(message: str) -> NoReturn:
    raise StateSchemaError(f"DiscoveryState: {message}")


def _expect_str(data: Mapping[str, object], key: str) -> str:
    value = data.get(key, "")
    if not isinstance(value, str):
        _fail(f"{key} must be a string")
    return value


def _expect_optional_str(data: Mapping[str, object], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        _fail(f"{key} must be a string or null")
    return value


def _expect_str_list(data: Mapping[str, object], key: str) -> list[str]:
    value = data.get(key, [])
    if not isinstance(value, list):
        _fail(f"{key} must be a list")
    items: list[str] = []
    for index, item in enumerate(value):
        if not isinstance(item, str):
            _fail(f"{key}[{index}] must be a string")
        items.append(item)
    return items


__all__ = [
    "DiscoveryPhase",
    "DiscoveryState",
    "RunStatus",
    "StateSchemaError",
    "utc_now_iso",
]
