"""
server-sweep — security boundary enforcer

File: src/server_sweep/security/boundary.py

Purpose
- Classify every candidate path met during traversal as DESCEND, COLLECT or SKIP.

Functional requirements
- Rules are evaluated in a fixed order and the first match wins:
  containment, protected-root exclusion, symlinked directory, forbidden prefix,
  restricted-jail subtree, self-exclusion, then type/size checks.
- All checks run against the canonical path; a candidate outside the home
  root can never be collected, whatever the symlink layout.
- Filesystem errors become counted skips and are never raised.

Non-functional requirements
- Deterministic and side-effect free apart from filesystem reads.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum, StrEnum
from typing import TYPE_CHECKING

from server_sweep.utils.fs import EntryStat, is_within_prefix, strip_trailing_sep

if TYPE_CHECKING:
    from server_sweep.config.policy import PolicyConfig
    from server_sweep.domain.state import DiscoveryState
    from server_sweep.utils.fs import FileSystem


class BoundaryAction(Enum):
    DESCEND = "descend"
    COLLECT = "collect"
    SKIP = "skip"


class SkipReason(StrEnum):
    """Why a candidate was rejected."""

    OUTSIDE_HOME = "outside_home"
    PROTECTED_ROOT = "protected_root"
    SYMLINKED_DIRECTORY = "symlinked_directory"
    FORBIDDEN_PREFIX = "forbidden_prefix"
    EXCEPTION_NOT_ALLOWED = "exception_not_allowed"
    EXCEPTION_SKIPPED_DIR = "exception_skipped_dir"
    SELF_EXCLUDED = "self_excluded"
    TOO_DEEP = "too_deep"
    OVERSIZED = "oversized"
    UNREADABLE = "unreadable"
    VANISHED = "vanished"
    SPECIAL_FILE = "special_file"


# Rejections that are expected and not reported in the skipped counter.
_UNCOUNTED_REASONS = frozenset({SkipReason.PROTECTED_ROOT, SkipReason.OVERSIZED})


@dataclass(frozen=True, slots=True)
class BoundaryDecision:
    action: BoundaryAction
    canonical_path: str
    reason: SkipReason | None = None
    in_exception_subtree: bool = False

    @property
    def counted(self) -> bool:
        return self.reason is not None and self.reason not in _UNCOUNTED_REASONS

    def to_dict(self) -> dict[str, object]:
        return {
            "action": self.action.value,
            "canonical_path": self.canonical_path,
            "reason": None if self.reason is None else self.reason.value,
            "counted": self.counted,
            "in_exception_subtree": self.in_exception_subtree,
        }


class BoundaryEnforcer:
    """Bind ``(state, policy, fs)`` once per invocation and classify candidates."""

    def __init__(self, state: DiscoveryState, policy: PolicyConfig, *, fs: FileSystem) -> None:
        self._fs = fs
        self._policy = policy
        self._home_root = strip_trailing_sep(state.home_root)
        self._protected_root = strip_trailing_sep(state.protected_root)
        self._forbidden = _expand_prefixes(policy.forbidden_path_prefixes, fs)
        self._exception_markers = tuple(
            marker.lower() for marker in sorted(policy.exception_subtree_markers) if marker
        )
        self._exception_allowed = tuple(
            item.lower() for item in sorted(policy.exception_allowed_subpaths) if item
        )
        self._exception_skipped_names = frozenset(
            name.lower() for name in policy.exception_skipped_dir_names
        )
        self._self_markers = tuple(
            marker.lower() for marker in sorted(policy.self_exclusion_markers) if marker
        )

    @property
    def home_root(self) -> str:
        return self._home_root

    def in_exception_subtree(self, path: str) -> bool:
        lowered = path.lower()
        return any(marker in lowered for marker in self._exception_markers)

    def classify(self, candidate: str, *, parent_in_exception: bool = False) -> BoundaryDecision:
        fs = self._fs
        canonical = fs.canonicalize(candidate)

        if not self._home_root or not is_within_prefix(
            canonical, self._home_root, inclusive=False
        ):
            return _skip(canonical, SkipReason.OUTSIDE_HOME)

        if self._protected_root and is_within_prefix(canonical, self._protected_root):
            return _skip(canonical, SkipReason.PROTECTED_ROOT)

        in_exception = (
            parent_in_exception
            or self.in_exception_subtree(canonical)
            or self.in_exception_subtree(candidate)
        )

        entry = _safe_stat(fs, candidate)
        is_dir = entry is not None and entry.is_dir

        if is_dir and _safe_is_symlink(fs, candidate) and not in_exception:
            return _skip(canonical, SkipReason.SYMLINKED_DIRECTORY)

        if any(is_within_prefix(canonical, prefix) for prefix in self._forbidden):
            return _skip(canonical, SkipReason.FORBIDDEN_PREFIX, in_exception)

        if in_exception:
            lowered = canonical.lower()
            if not any(allowed in lowered for allowed in self._exception_allowed):
                return _skip(canonical, SkipReason.EXCEPTION_NOT_ALLOWED, in_exception)
            if is_dir and os.path.basename(canonical).lower() in self._exception_skipped_names:
                return _skip(canonical, SkipReason.EXCEPTION_SKIPPED_DIR, in_exception)

        probe = (canonical + os.sep if is_dir else canonical).lower()
        if any(marker in probe for marker in self._self_markers):
            return _skip(canonical, SkipReason.SELF_EXCLUDED, in_exception)

        if entry is None:
            return _skip(canonical, SkipReason.VANISHED, in_exception)

        if entry.is_dir:
            if self._depth(canonical) > self._policy.max_depth:
                return _skip(canonical, SkipReason.TOO_DEEP, in_exception)
            return BoundaryDecision(BoundaryAction.DESCEND, canonical, None, in_exception)

        if not entry.is_file:
            return _skip(canonical, SkipReason.SPECIAL_FILE, in_exception)
        if not _safe_is_readable(fs, candidate):
            return _skip(canonical, SkipReason.UNREADABLE, in_exception)

        size_cap = (
            self._policy.exception_max_file_size_bytes
            if in_exception
            else self._policy.max_file_size_bytes
        )
        if entry.size > size_cap:
            return _skip(canonical, SkipReason.OVERSIZED, in_exception)
        return BoundaryDecision(BoundaryAction.COLLECT, canonical, None, in_exception)

    def _depth(self, canonical: str) -> int:
        relative = strip_trailing_sep(canonical)[len(self._home_root) :].strip(os.sep)
        if not relative:
            return 0
        return relative.count(os.sep) + 1


def classify(
    candidate: str,
    state: DiscoveryState,
    policy: PolicyConfig,
    *,
    fs: FileSystem,
    parent_in_exception: bool = False,
) -> BoundaryDecision:
    """One-shot classification; prefer :class:`BoundaryEnforcer` inside loops."""

    enforcer = BoundaryEnforcer(state, policy, fs=fs)
    return enforcer.classify(candidate, parent_in_exception=parent_in_exception)


def _skip(canonical: str, reason: SkipReason, in_exception: bool = False) -> BoundaryDecision:
    return BoundaryDecision(BoundaryAction.SKIP, canonical, reason, in_exception)


def _expand_prefixes(prefixes: frozenset[str], fs: FileSystem) -> tuple[str, ...]:
    """Keep each forbidden prefix both as written and canonicalized."""

    expanded: set[str] = set()
    for prefix in prefixes:
        if not prefix:
            continue
        expanded.add(strip_trailing_sep(prefix))
        expanded.add(strip_trailing_sep(fs.canonicalize(prefix)))
    return tuple(sorted(expanded))


def _safe_stat(fs: FileSystem, path: str) -> EntryStat | None:
    try:
        return fs.stat(path)
    except OSError:
        return None


def _safe_is_symlink(fs: FileSystem, path: str) -> bool:
    try:
        return fs.is_symlink(path)
    except OSError:
        return False


def _safe_is_readable(fs: FileSystem, path: str) -> bool:
    try:
        return fs.is_readable(path)
    except OSError:
        return False


__all__ = [
    "BoundaryAction",
    "BoundaryDecision",
    "BoundaryEnforcer",
    "SkipReason",
    "classify",
]
