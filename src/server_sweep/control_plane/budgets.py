"""
Time budget governor for request-scoped discovery invocations.

Each invocation runs under a host execution-time ceiling. The governor keeps
the traversal inside ``ceiling - safety_margin`` so there is always time left
to persist a checkpoint before the host kills the process:
- `continue`: pop the next directory
- `checkpoint`: persist state and return to the caller

Elapsed time is sampled once per directory pop; the clock is injectable so
tests can drive interruptions deterministically.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from server_sweep.config.policy import PolicyConfig

Clock = Callable[[], float]

MIN_SAFE_WINDOW_SECONDS = 1.0


class BudgetAction(StrEnum):
    """Deterministic control action before the next directory pop."""

    CONTINUE = "continue"
    CHECKPOINT = "checkpoint"


@dataclass(frozen=True, slots=True)
class BudgetDecision:
    """Outcome of one elapsed-time sample."""

    action: BudgetAction
    elapsed_seconds: float
    safe_window_seconds: float | None

    @property
    def should_checkpoint(self) -> bool:
        return self.action is BudgetAction.CHECKPOINT

    def to_dict(self) -> dict[str, object]:
        return {
            "action": self.action.value,
            "elapsed_seconds": round(self.elapsed_seconds, 6),
            "safe_window_seconds": self.safe_window_seconds,
        }


class TimeBudgetGovernor:
    """Decide whether the current invocation may keep traversing.

    ``ceiling_seconds=None`` disables the budget entirely.
    """

    def __init__(
        self,
        ceiling_seconds: float | None,
        safety_margin_seconds: float = 0.0,
        *,
        clock: Clock = time.monotonic,
        logger: Any | None = None,
    ) -> None:
        if ceiling_seconds is not None and ceiling_seconds <= 0:
            raise ValueError("ceiling_seconds must be > 0 when provided")
        if safety_margin_seconds < 0:
            raise ValueError("safety_margin_seconds must be >= 0")

        self._ceiling = ceiling_seconds
        self._margin = safety_margin_seconds
        self._clock = clock
        self._started_at: float | None = None
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @classmethod
    def from_policy(
        cls,
        policy: PolicyConfig,
        *,
        clock: Clock = time.monotonic,
        logger: Any | None = None,
    ) -> TimeBudgetGovernor:
        ceiling = policy.time_ceiling_seconds if policy.time_ceiling_seconds > 0 else None
        return cls(ceiling, policy.safety_margin_seconds, clock=clock, logger=logger)

    @classmethod
    def unbounded(cls) -> TimeBudgetGovernor:
        return cls(None)

    @property
    def safe_window_seconds(self) -> float | None:
        if self._ceiling is None:
            return None
        return max(MIN_SAFE_WINDOW_SECONDS, float(self._ceiling) - float(self._margin))

    def start(self) -> None:
        self._started_at = self._clock()

    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return max(0.0, self._clock() - self._started_at)

    def decide(self) -> BudgetDecision:
        if self._started_at is None:
            self.start()
        window = self.safe_window_seconds
        if window is None:
            return BudgetDecision(BudgetAction.CONTINUE, 0.0, None)

        elapsed = self.elapsed()
        action = BudgetAction.CHECKPOINT if elapsed >= window else BudgetAction.CONTINUE
        decision = BudgetDecision(action, elapsed, window)
        if decision.should_checkpoint:
            self._logger.debug("control_plane_time_budget_exhausted", **decision.to_dict())
        return decision


__all__ = [
    "BudgetAction",
    "BudgetDecision",
    "MIN_SAFE_WINDOW_SECONDS",
    "TimeBudgetGovernor",
]
