"""Self-correction: bounded retry counter and failure context for re-planning."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .errors import RetryBudgetExhausted

logger = logging.getLogger(__name__)

STRATEGIES = ("append", "replace")


@dataclass
class SelfCorrection:
    """Per-run retry bookkeeping.

    ``append`` keeps the objective and hands the accumulated failure summary
    to the planner as failure context. ``replace`` hands the planner only the
    latest failure, phrased as a corrective objective.
    """

    max_retries: int = 2
    strategy: str = "append"
    retries: int = 0
    failures: list[str] = field(default_factory=list)

    def __post_init__(self):
        if self.strategy not in STRATEGIES:
            raise ValueError(f"Invalid correction strategy: {self.strategy!r}")

    @property
    def remaining(self) -> int:
        return max(self.max_retries - self.retries, 0)

    def reset(self) -> None:
        self.retries = 0
        self.failures.clear()

    def record(self, reason: str) -> bool:
        """Record a failure. True when a retry is granted (and counted)."""
        self.failures.append(reason)
        if self.retries < self.max_retries:
            self.retries += 1
            logger.info("retry %d/%d granted: %s", self.retries, self.max_retries, reason)
            return True
        return False

    def exhausted(self, reason: str | None = None) -> RetryBudgetExhausted:
        reason = reason or (self.failures[-1] if self.failures else "unknown failure")
        return RetryBudgetExhausted(
            f"Retry budget exhausted after {self.retries} retr"
            f"{'y' if self.retries == 1 else 'ies'}: {reason}"
        )

    def summary(self) -> str:
        return "\n".join(
            f"- Attempt {i} failed: {reason}" for i, reason in enumerate(self.failures, 1)
        )

    def planning_inputs(self, objective: str) -> tuple[str, str | None]:
        """(objective, failure_context) for the next call to the planner."""
        if not self.failures:
            return objective, None
        if self.strategy == "replace":
            return f"Fix the problem from the previous attempt: {self.failures[-1]}", None
        return objective, self.summary()
