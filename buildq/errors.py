"""Exception taxonomy for the orchestrator."""

from __future__ import annotations


class BuildqError(Exception):
    """Base class for all buildq errors."""


class MissingCredentialError(BuildqError):
    """One or more roles have no credential configured. Never retried."""

    def __init__(self, roles):
        self.roles = list(roles)
        names = ", ".join(r.label for r in self.roles)
        super().__init__(f"Missing API key for role(s): {names}")


class ProviderFailure(BuildqError):
    """A role invocation failed or returned output we could not use."""


class PlanValidationError(ProviderFailure):
    """The Architect returned a plan that violates the plan schema."""


class MutationApplyFailure(BuildqError):
    """A task's file mutations could not be applied to the project tree."""


class RetryBudgetExhausted(BuildqError):
    """Self-correction gave up. The message is surfaced as ``last_error``."""


class InvalidTransitionError(BuildqError):
    """A state transition not present in the transition table was requested."""


class ConcurrentEditError(BuildqError):
    """A manual edit was attempted while a run owns the project tree."""
