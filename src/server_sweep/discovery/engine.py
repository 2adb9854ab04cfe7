"""
server-sweep — resumable external discovery engine

File: src/server_sweep/discovery/engine.py

Purpose
- Enumerate files under the home root that live outside the protected root,
  one time-bounded invocation at a time, persisting a checkpoint at every
  yield point so the next invocation resumes where this one stopped.

Functional requirements
- Depth-first traversal over an explicit stack; listings are sorted by name and
  processed in reverse so LIFO pops visit entries in listing order.
- Priority sub-paths (common hiding spots) are visited before the rest of home.
- Every candidate passes through :class:`BoundaryEnforcer`; canonical paths
  already in ``seen`` are ignored.
- Time budget is sampled once per directory pop; cancellation is checked once
  per pop and once per batch of collected files.
- Only one invocation mutates state at a time (scan lease, renewed before
  every pop and every save).
- Filesystem errors are counted as skips and never abort the scan.
"""

from __future__ import annotations

import os
import time
import uuid
from collections.abc import Callable, Sequence
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

from server_sweep.constants import (
    DEFAULT_PRIORITY_SUBPATHS,
    SCAN_LEASE_TTL_SECONDS,
    STATUS_BATCH_SIZE,
)
from server_sweep.control_plane.budgets import TimeBudgetGovernor
from server_sweep.control_plane.liveness import AlwaysRunning
from server_sweep.discovery.status import DiscoveryStatus, build_status
from server_sweep.domain.state import (
    DiscoveryPhase,
    DiscoveryState,
    StateSchemaError,
    utc_now_iso,
)
from server_sweep.persistence.state_store import StateStoreBusyError
from server_sweep.security.boundary import BoundaryAction, BoundaryEnforcer
from server_sweep.utils.fs import LocalFileSystem, ensure_trailing_sep, strip_trailing_sep

if TYPE_CHECKING:
    from server_sweep.config.policy import PolicyConfig
    from server_sweep.control_plane.liveness import LivenessProvider
    from server_sweep.persistence.state_store import StateStore
    from server_sweep.utils.fs import FileSystem

Clock = Callable[[], float]


class DiscoveryNotCompleteError(RuntimeError):
    """Raised when the result is requested before discovery completes."""

    def __init__(self, phase: DiscoveryPhase) -> None:
        super().__init__(f"external discovery is not complete (phase={phase.value})")
        self.phase = phase


class _LeaseLostError(RuntimeError):
    """Another invocation took over the scan lease; nothing more may be saved."""


class _ScanOutcome(Enum):
    DRAINED = "drained"
    CANCELLED = "cancelled"
    TRUNCATED = "truncated"


class DiscoveryEngine:
    """Drive discovery for one protected root across many short invocations."""

    def __init__(
        self,
        protected_root: str | os.PathLike[str],
        store: StateStore,
        *,
        liveness: LivenessProvider | None = None,
        fs: FileSystem | None = None,
        clock: Clock = time.monotonic,
        priority_subpaths: Sequence[str] = DEFAULT_PRIORITY_SUBPATHS,
        logger: Any | None = None,
        lease_owner: str | None = None,
        lease_ttl_seconds: float = SCAN_LEASE_TTL_SECONDS,
        batch_size: int = STATUS_BATCH_SIZE,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        if lease_ttl_seconds <= 0:
            raise ValueError("lease_ttl_seconds must be > 0")

        self._fs: FileSystem = fs if fs is not None else LocalFileSystem()
        self._protected_root = strip_trailing_sep(self._fs.canonicalize(os.fspath(protected_root)))
        self._store = store
        self._liveness: LivenessProvider = liveness if liveness is not None else AlwaysRunning()
        self._clock = clock
        self._priority_subpaths = tuple(priority_subpaths)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._lease_owner = lease_owner or f"pid-{os.getpid()}-{uuid.uuid4().hex[:12]}"
        self._lease_ttl_seconds = lease_ttl_seconds
        self._batch_size = batch_size

    @property
    def protected_root(self) -> str:
        return self._protected_root

    @property
    def home_root(self) -> str:
        return os.path.dirname(self._protected_root) or os.sep

    def continue_discovery(
        self,
        policy: PolicyConfig,
        *,
        governor: TimeBudgetGovernor | None = None,
    ) -> DiscoveryStatus:
        """Advance discovery until done, out of time, or cancelled.

        Returns the status after the last saved checkpoint. When another
        invocation holds the scan lease nothing is mutated. The lease is
        renewed before every pop and every save; if a renewal fails the
        invocation stops without writing again.
        """

        budget = (
            governor
            if governor is not None
            else TimeBudgetGovernor.from_policy(policy, clock=self._clock, logger=self._logger)
        )
        budget.start()

        if not self._store.try_acquire_lease(self._lease_owner, self._lease_ttl_seconds):
            self._logger.info("discovery_busy", owner=self._lease_owner)
            return self.get_status()
        try:
            return self._advance(policy, budget)
        except _LeaseLostError:
            self._logger.warning("discovery_lease_lost", owner=self._lease_owner)
            return self.get_status()
        finally:
            self._store.release_lease(self._lease_owner)

    def get_status(self) -> DiscoveryStatus:
        return build_status(self._load_state(repair=False))

    def get_result(self) -> list[str]:
        state = self._load_state(repair=False)
        if not state.is_complete:
            raise DiscoveryNotCompleteError(state.phase)
        return list(state.collected_files)

    def reset(self) -> None:
        """Discard the checkpoint so the next invocation starts a new scan."""

        if not self._store.try_acquire_lease(self._lease_owner, self._lease_ttl_seconds):
            raise StateStoreBusyError("scan lease is held by another invocation")
        try:
            self._store.clear_state()
        finally:
            self._store.release_lease(self._lease_owner)
        self._logger.info("discovery_reset", protected_root=self._protected_root)

    def _advance(self, policy: PolicyConfig, budget: TimeBudgetGovernor) -> DiscoveryStatus:
        state = self._load_state(repair=True)
        if state.is_complete:
            return build_status(state)

        if not self._liveness.is_still_running():
            self._logger.info("discovery_cancelled", phase=state.phase.value, where="start")
            return build_status(state)

        if not policy.enabled:
            if state.phase is DiscoveryPhase.NONE:
                return self._complete_disabled(state)
            # A scan already under way is paused, not discarded.
            self._logger.info(
                "discovery_disabled",
                phase=state.phase.value,
                count=len(state.collected_files),
            )
            return build_status(state)

        if state.phase is DiscoveryPhase.NONE:
            state = self._initialize(policy)

        enforcer = BoundaryEnforcer(state, policy, fs=self._fs)
        if state.in_progress is not None:
            state.stack.append(state.in_progress)
            state.in_progress = None

        while state.stack:
            decision = budget.decide()
            if decision.should_checkpoint:
                self._checkpoint(state)
                self._logger.info(
                    "discovery_checkpoint",
                    reason="time_budget",
                    count=len(state.collected_files),
                    skipped=state.skipped_count,
                    pending=len(state.stack),
                    elapsed_seconds=decision.elapsed_seconds,
                )
                return build_status(state)

            if not self._liveness.is_still_running():
                self._checkpoint(state)
                self._logger.info(
                    "discovery_cancelled",
                    where="directory",
                    count=len(state.collected_files),
                    pending=len(state.stack),
                )
                return build_status(state)

            self._renew_lease()
            directory = state.stack.pop()
            state.in_progress = directory
            outcome = self._scan_directory(directory, state, enforcer, policy)
            if outcome is _ScanOutcome.CANCELLED:
                self._checkpoint(state)
                self._logger.info(
                    "discovery_cancelled",
                    where="batch",
                    directory=directory,
                    count=len(state.collected_files),
                )
                return build_status(state)
            state.in_progress = None
            if outcome is _ScanOutcome.TRUNCATED:
                state.stack.clear()
                state.truncated = True
                self._logger.warning(
                    "discovery_truncated",
                    max_files=policy.max_files,
                    directory=directory,
                )
                break

        return self._complete(state)

    def _initialize(self, policy: PolicyConfig) -> DiscoveryState:
        home = self.home_root
        state = DiscoveryState(
            phase=DiscoveryPhase.DISCOVERY,
            home_root=home,
            protected_root=self._protected_root,
            started_at=utc_now_iso(),
        )
        state.stack.append(ensure_trailing_sep(home))
        state.seen.add(home)

        # Pushed above home in reverse so the first priority path is popped first.
        enforcer = BoundaryEnforcer(state, policy, fs=self._fs)
        for subpath in reversed(self._priority_subpaths):
            candidate = os.path.join(home, strip_trailing_sep(subpath))
            if not _safe_is_dir(self._fs, candidate):
                continue
            decision = enforcer.classify(candidate)
            if decision.action is not BoundaryAction.DESCEND:
                continue
            if decision.canonical_path in state.seen:
                continue
            state.seen.add(decision.canonical_path)
            state.stack.append(ensure_trailing_sep(candidate))

        self._checkpoint(state)
        self._logger.info(
            "discovery_initialized",
            home_root=home,
            protected_root=self._protected_root,
            priority_dirs=len(state.stack) - 1,
        )
        return state

    def _scan_directory(
        self,
        directory: str,
        state: DiscoveryState,
        enforcer: BoundaryEnforcer,
        policy: PolicyConfig,
    ) -> _ScanOutcome:
        try:
            names = self._fs.list_dir(directory)
        except OSError as exc:
            state.skipped_count += 1
            self._logger.debug("discovery_listing_failed", directory=directory, error=str(exc))
            return _ScanOutcome.DRAINED

        parent_in_exception = enforcer.in_exception_subtree(self._fs.canonicalize(directory))
        for name in reversed(sorted(names)):
            candidate = ensure_trailing_sep(directory) + name
            decision = enforcer.classify(candidate, parent_in_exception=parent_in_exception)
            if decision.action is BoundaryAction.SKIP:
                if decision.counted:
                    state.skipped_count += 1
                continue
            if decision.canonical_path in state.seen:
                continue
            state.seen.add(decision.canonical_path)

            if decision.action is BoundaryAction.DESCEND:
                state.stack.append(ensure_trailing_sep(candidate))
                continue

            state.collected_files.append(candidate)
            if len(state.collected_files) >= policy.max_files:
                return _ScanOutcome.TRUNCATED
            # Batches span directories; the count is the scan-wide total.
            if len(state.collected_files) % self._batch_size == 0:
                self._checkpoint(state)
                if not self._liveness.is_still_running():
                    return _ScanOutcome.CANCELLED
        return _ScanOutcome.DRAINED

    def _complete(self, state: DiscoveryState) -> DiscoveryStatus:
        state.phase = DiscoveryPhase.COMPLETE
        state.stack.clear()
        state.in_progress = None
        self._checkpoint(state)
        self._logger.info(
            "discovery_completed",
            count=len(state.collected_files),
            skipped=state.skipped_count,
            truncated=state.truncated,
        )
        return build_status(state)

    def _complete_disabled(self, state: DiscoveryState) -> DiscoveryStatus:
        completed = DiscoveryState(
            phase=DiscoveryPhase.COMPLETE,
            home_root=state.home_root or self.home_root,
            protected_root=self._protected_root,
            started_at=state.started_at or utc_now_iso(),
        )
        self._checkpoint(completed)
        self._logger.info("discovery_completed", count=0, skipped=0, reason="disabled")
        return build_status(completed)

    def _checkpoint(self, state: DiscoveryState) -> None:
        self._renew_lease()
        state.touch()
        self._store.save_state(state)

    def _renew_lease(self) -> None:
        if not self._store.try_acquire_lease(self._lease_owner, self._lease_ttl_seconds):
            raise _LeaseLostError(self._lease_owner)

    def _load_state(self, *, repair: bool) -> DiscoveryState:
        try:
            state = self._store.load_state()
        except StateSchemaError as exc:
            self._logger.warning("discovery_checkpoint_invalid", error=str(exc), repaired=repair)
            if repair:
                self._store.clear_state()
            return DiscoveryState()

        if state.phase is not DiscoveryPhase.NONE and state.protected_root != self._protected_root:
            self._logger.warning(
                "discovery_checkpoint_invalid",
                error="protected root changed",
                stored=state.protected_root,
                configured=self._protected_root,
                repaired=repair,
            )
            if repair:
                self._store.clear_state()
            return DiscoveryState()
        return state


def _safe_is_dir(fs: FileSystem, path: str) -> bool:
    try:
        return fs.is_dir(path)
    except OSError:
        return False


__all__ = ["DiscoveryEngine", "DiscoveryNotCompleteError"]
