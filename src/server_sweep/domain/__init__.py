"""
server-sweep — domain types

File: src/server_sweep/domain/__init__.py

Purpose
- The versioned discovery checkpoint and the operator run status.

Functional requirements
- Domain objects must be serializable and versioned.
"""

from server_sweep.domain.state import (
    DiscoveryPhase,
    DiscoveryState,
    RunStatus,
    StateSchemaError,
)

__all__ = ["DiscoveryPhase", "DiscoveryState", "RunStatus", "StateSchemaError"]
