"""Core data models for buildq."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Status(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    AWAITING_REVIEW = "awaiting-review"
    EXECUTING = "executing"
    ANALYZING = "analyzing"
    SELF_CORRECTING = "self-correcting"
    FINISHED = "finished"
    ERROR = "error"


# States in which a run owns the project tree and may be cancelled.
ACTIVE_STATUSES = frozenset({
    Status.PLANNING,
    Status.AWAITING_REVIEW,
    Status.EXECUTING,
    Status.ANALYZING,
    Status.SELF_CORRECTING,
})


class Mode(str, Enum):
    AUTONOMOUS = "autonomous"   # plans execute without review
    GOD_MODE = "god-mode"       # every plan passes the review gate


class Role(str, Enum):
    ARCHITECT = "architect"
    CODER = "coder"
    REVIEWER = "reviewer"

    @property
    def label(self) -> str:
        return self.value.capitalize()


ALL_ROLES = (Role.ARCHITECT, Role.CODER, Role.REVIEWER)


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTING = "executing"


class ActionKind(str, Enum):
    HIGHLIGHT_CLICK = "highlight-click"
    HIGHLIGHT_TYPE = "highlight-type"
    CLEAR = "clear"


@dataclass(frozen=True)
class FileIntent:
    """File-level intent of a plan. The three path sets are pairwise disjoint."""

    create: tuple[str, ...] = ()
    update: tuple[str, ...] = ()
    delete: tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return not (self.create or self.update or self.delete)

    def all_paths(self) -> list[str]:
        return [*self.create, *self.update, *self.delete]


@dataclass(frozen=True)
class Plan:
    """Structured, reviewable plan produced by the Architect."""

    reasoning: str
    thoughts: str = ""
    tasks: tuple[str, ...] = ()
    intent: FileIntent = field(default_factory=FileIntent)

    def task_list(self) -> list[str]:
        """Ordered task descriptions; derived from the file intent when absent."""
        if self.tasks:
            return list(self.tasks)
        derived = [f"Create {p}" for p in self.intent.create]
        derived += [f"Update {p}" for p in self.intent.update]
        derived += [f"Delete {p}" for p in self.intent.delete]
        return derived


@dataclass
class FileChanges:
    """Mutation set for one task: full file contents, not diffs."""

    create: dict[str, str] = field(default_factory=dict)
    update: dict[str, str] = field(default_factory=dict)
    delete: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.create or self.update or self.delete)

    def touched(self) -> list[str]:
        return sorted({*self.create, *self.update, *self.delete})


@dataclass(frozen=True)
class UiTarget:
    """Preview element a task acts on, keyed by its test identifier."""

    selector: str
    action: str = "click"  # "click" | "type"


@dataclass
class CoderResult:
    """Raw result of asking the Coder role for one task."""

    thoughts: str
    changes: FileChanges
    target: UiTarget | None = None


@dataclass
class TaskResult:
    """Outcome of executing one task."""

    task: str
    index: int
    success: bool
    thoughts: str = ""
    error: str = ""
    files_changed: list[str] = field(default_factory=list)


@dataclass
class Verdict:
    """Reviewer judgement of the cumulative change."""

    passed: bool
    rationale: str
    thoughts: str = ""


@dataclass(frozen=True)
class AnnotationEvent:
    """Ephemeral UI-highlight instruction for the sandboxed preview."""

    selector: str
    action_kind: ActionKind


@dataclass
class Run:
    """The mutable record of one orchestration attempt (AgentState)."""

    status: Status = Status.IDLE
    objective: str = ""
    mode: Mode = Mode.AUTONOMOUS
    plan: list[str] = field(default_factory=list)
    current_task_index: int = 0
    thoughts: str = ""
    logs: list[str] = field(default_factory=list)
    last_error: str = ""
    plan_id: str = ""
    attempt: int = 0


@dataclass(frozen=True)
class RunSnapshot:
    """Read-only copy of a Run for display."""

    run_id: str
    status: Status
    objective: str
    mode: Mode
    plan: tuple[str, ...]
    current_task_index: int
    thoughts: str
    logs: tuple[str, ...]
    last_error: str
    plan_id: str
    attempt: int

    @classmethod
    def of(cls, run_id: str, run: Run) -> "RunSnapshot":
        return cls(
            run_id=run_id,
            status=run.status,
            objective=run.objective,
            mode=run.mode,
            plan=tuple(run.plan),
            current_task_index=run.current_task_index,
            thoughts=run.thoughts,
            logs=tuple(run.logs),
            last_error=run.last_error,
            plan_id=run.plan_id,
            attempt=run.attempt,
        )
