"""Path classification rules guarding what discovery may enter or report."""

from server_sweep.security.boundary import (
    BoundaryAction,
    BoundaryDecision,
    BoundaryEnforcer,
    SkipReason,
    classify,
)

__all__ = [
    "BoundaryAction",
    "BoundaryDecision",
    "BoundaryEnforcer",
    "SkipReason",
    "classify",
]
