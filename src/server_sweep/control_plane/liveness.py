"""Cooperative cancellation signal for long-running discovery."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from server_sweep.domain.state import RunStatus

if TYPE_CHECKING:
    from server_sweep.persistence.state_store import StateStore


class LivenessProvider(Protocol):
    def is_still_running(self) -> bool: ...


class StoreLivenessProvider:
    """Re-read the persisted run status on every call (never cached)."""

    def __init__(self, store: StateStore) -> None:
        self._store = store

    def is_still_running(self) -> bool:
        return self._store.get_run_status() is RunStatus.RUNNING


class AlwaysRunning:
    def is_still_running(self) -> bool:
        return True


__all__ = ["AlwaysRunning", "LivenessProvider", "StoreLivenessProvider"]
