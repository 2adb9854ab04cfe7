"""Control-plane public API: time budget and cooperative cancellation."""

from server_sweep.control_plane.budgets import BudgetAction, BudgetDecision, TimeBudgetGovernor
from server_sweep.control_plane.liveness import (
    AlwaysRunning,
    LivenessProvider,
    StoreLivenessProvider,
)

__all__ = [
    "AlwaysRunning",
    "BudgetAction",
    "BudgetDecision",
    "LivenessProvider",
    "StoreLivenessProvider",
    "TimeBudgetGovernor",
]
