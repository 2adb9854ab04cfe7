"""
server-sweep — persistence

File: src/server_sweep/persistence/__init__.py

Purpose
- Checkpoint storage, run status and the scan lease.

Functional requirements
- Must support safe resume after a killed invocation.

Non-functional requirements
- SQLite-first; avoid heavy DB dependencies.
"""

from server_sweep.persistence.state_store import (
    InMemoryStateStore,
    SQLiteStateStore,
    StateStore,
    StateStoreBusyError,
    StateStoreError,
)

__all__ = [
    "InMemoryStateStore",
    "SQLiteStateStore",
    "StateStore",
    "StateStoreBusyError",
    "StateStoreError",
]
