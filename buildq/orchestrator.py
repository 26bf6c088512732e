"""Orchestrator state machine: one Run, driven from objective to a terminal status."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Iterable

import anyio

from .annotations import AnnotationChannel
from .config import Config
from .correction import SelfCorrection
from .errors import (
    ConcurrentEditError,
    InvalidTransitionError,
    MissingCredentialError,
    MutationApplyFailure,
    ProviderFailure,
    RetryBudgetExhausted,
)
from .executor import ExecutionEngine
from .memory import classify_touched, format_entry, memory_changes, read_memory
from .models import ACTIVE_STATUSES, Mode, Plan, Role, Run, RunSnapshot, Status, Verdict
from .planner import PlanGenerator
from .review import ReviewGate
from .router import ProviderRouter
from .verifier import Verifier
from .workspace import ProjectTree, unified_diff

logger = logging.getLogger(__name__)

# (from, event) -> to. Cancel edges are added below for every active status.
TRANSITIONS: dict[tuple[Status, str], Status] = {
    (Status.IDLE, "start"): Status.PLANNING,
    (Status.FINISHED, "start"): Status.PLANNING,
    (Status.ERROR, "start"): Status.PLANNING,
    (Status.PLANNING, "plan-autonomous"): Status.EXECUTING,
    (Status.PLANNING, "plan-review"): Status.AWAITING_REVIEW,
    (Status.PLANNING, "fail"): Status.SELF_CORRECTING,
    (Status.AWAITING_REVIEW, "approve"): Status.EXECUTING,
    (Status.AWAITING_REVIEW, "reject"): Status.IDLE,
    (Status.EXECUTING, "task-done"): Status.EXECUTING,
    (Status.EXECUTING, "all-done"): Status.ANALYZING,
    (Status.EXECUTING, "fail"): Status.SELF_CORRECTING,
    (Status.ANALYZING, "pass"): Status.FINISHED,
    (Status.ANALYZING, "fail"): Status.SELF_CORRECTING,
    (Status.SELF_CORRECTING, "retry"): Status.PLANNING,
    (Status.SELF_CORRECTING, "exhausted"): Status.ERROR,
}
for _status in ACTIVE_STATUSES:
    TRANSITIONS[(_status, "cancel")] = Status.IDLE


def next_status(status: Status, event: str) -> Status:
    try:
        return TRANSITIONS[(status, event)]
    except KeyError:
        raise InvalidTransitionError(
            f"No transition from '{status.value}' on '{event}'"
        ) from None


@dataclass
class StartResult:
    started: bool
    missing: list[Role] = field(default_factory=list)
    reason: str = ""


Listener = Callable[[str, RunSnapshot], None]


class Orchestrator:
    """Owns the Run record and drives it through the transition table.

    ``start`` and ``cancel`` are synchronous. ``run`` awaits the role calls;
    after every await it checks the run generation and drops the result if
    the run was cancelled (or replaced) in the meantime.
    """

    def __init__(
        self,
        router: ProviderRouter,
        tree: ProjectTree,
        *,
        max_retries: int = 2,
        strategy: str = "append",
        channel: AnnotationChannel | None = None,
        gate: ReviewGate | None = None,
        memory_path: str | None = None,
        ui_context: Iterable[str] = (),
        default_mode: Mode | str = Mode.AUTONOMOUS,
    ):
        self.router = router
        self.tree = tree
        self.channel = channel
        self.gate = gate or ReviewGate()
        self.memory_path = memory_path
        self.ui_context = list(ui_context)
        self.max_retries = max_retries
        self.strategy = strategy
        self.default_mode = Mode(default_mode)

        self.planner = PlanGenerator(router)
        self.engine = ExecutionEngine(router, tree, channel)
        self.verifier = Verifier(router)
        self.correction = SelfCorrection(max_retries=max_retries, strategy=strategy)

        self.run_id = ""
        self._run = Run()
        self._generation = 0
        self._listeners: list[Listener] = []
        self._plan: Plan | None = None
        self._baseline: dict[str, str] = {}
        self._failure: tuple[str, bool] = ("", True)
        self._decision: anyio.Event | None = None
        self._driving: int | None = None

    @classmethod
    def from_config(
        cls,
        config: Config,
        tree: ProjectTree,
        router: ProviderRouter | None = None,
        channel: AnnotationChannel | None = None,
        **kwargs,
    ) -> "Orchestrator":
        return cls(
            router or ProviderRouter.for_config(config),
            tree,
            max_retries=config.budgets.max_retries,
            strategy=config.correction.strategy,
            channel=channel or AnnotationChannel(config.preview.source_tag),
            memory_path=config.memory.path if config.memory.enabled else None,
            default_mode=config.mode,
            **kwargs,
        )

    # ---------------------------------------------------------------
    # Observation
    # ---------------------------------------------------------------

    @property
    def status(self) -> Status:
        return self._run.status

    @property
    def plan(self) -> Plan | None:
        return self._plan

    def snapshot(self) -> RunSnapshot:
        return RunSnapshot.of(self.run_id, self._run)

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        """Call ``callback(line, snapshot)`` for every new log line."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _log(self, line: str) -> None:
        self._run.logs.append(line)
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(line, snap)
            except Exception:
                logger.exception("run listener failed")

    def _transition(self, event: str, line: str, thoughts: str | None = None) -> None:
        old = self._run.status
        self._run.status = next_status(old, event)
        if thoughts is not None:
            self._run.thoughts = thoughts
        logger.debug("run %s: %s -[%s]-> %s", self.run_id, old.value, event, self._run.status.value)
        if self._run.status not in ACTIVE_STATUSES:
            self.tree.release(self.run_id)
            if self._run.plan_id:
                self.gate.finish(self._run.plan_id)
        self._log(line)

    def _stale(self, generation: int) -> bool:
        return generation != self._generation

    # ---------------------------------------------------------------
    # Human controls
    # ---------------------------------------------------------------

    def start(self, objective: str, mode: Mode | str | None = None) -> StartResult:
        """Begin a new run. Refused while a run is active or any role is unready.

        ``mode`` defaults to the configured mode.
        """
        mode = Mode(mode) if mode is not None else self.default_mode
        if self._run.status in ACTIVE_STATUSES:
            return StartResult(False, reason="A run is already in progress")
        objective = objective.strip()
        if not objective:
            return StartResult(False, reason="Objective must not be empty")
        missing = self.router.missing_roles()
        if missing:
            return StartResult(False, missing, str(MissingCredentialError(missing)))

        run_id = uuid.uuid4().hex[:12]
        try:
            self.tree.acquire(run_id)
        except ConcurrentEditError as exc:
            return StartResult(False, reason=str(exc))

        self.run_id = run_id
        self._generation += 1
        self._run = Run(objective=objective, mode=mode)
        self._plan = None
        self._baseline = {}
        self._decision = None
        self.correction = SelfCorrection(max_retries=self.max_retries, strategy=self.strategy)
        self._transition("start", f"Starting {mode.value} run: {objective}")
        return StartResult(True)

    def approve(self, plan_id: str) -> bool:
        if self._run.status != Status.AWAITING_REVIEW or plan_id != self._run.plan_id:
            return False
        if not self.gate.approve(plan_id):
            return False
        self.gate.begin_execution(plan_id)
        self._transition("approve", f"Plan {plan_id} approved. Executing.")
        if self._decision is not None:
            self._decision.set()
        return True

    def reject(self, plan_id: str) -> bool:
        if self._run.status != Status.AWAITING_REVIEW or plan_id != self._run.plan_id:
            return False
        if not self.gate.reject(plan_id):
            return False
        self._run.plan = []
        self._run.current_task_index = 0
        self._transition("reject", f"Plan {plan_id} rejected by user.")
        if self._decision is not None:
            self._decision.set()
        return True

    def cancel(self) -> bool:
        """Stop the active run now. In-flight role results are discarded."""
        if self._run.status not in ACTIVE_STATUSES:
            return False
        if self._run.status == Status.AWAITING_REVIEW:
            self.gate.reject(self._run.plan_id)
        self._generation += 1
        self._run.plan = []
        self._run.current_task_index = 0
        self._transition("cancel", "Run cancelled by user.")
        if self.channel is not None:
            self.channel.clear()
        if self._decision is not None:
            self._decision.set()
        return True

    # ---------------------------------------------------------------
    # Driving
    # ---------------------------------------------------------------

    async def execute(self, objective: str, mode: Mode | str | None = None) -> RunSnapshot:
        """``start`` then ``run``. Raises if the run could not start."""
        result = self.start(objective, mode)
        if not result.started:
            if result.missing:
                raise MissingCredentialError(result.missing)
            raise InvalidTransitionError(result.reason)
        return await self.run()

    async def run(self) -> RunSnapshot:
        """Drive the started run until it leaves the active statuses."""
        generation = self._generation
        if self._driving == generation:
            raise InvalidTransitionError("This run is already being driven")
        self._driving = generation
        try:
            await self._drive(generation)
        except BaseException:
            if not self._stale(generation) and self._run.status in ACTIVE_STATUSES:
                self.cancel()
            raise
        finally:
            if self._driving == generation:
                self._driving = None
        return self.snapshot()

    async def _drive(self, generation: int) -> None:
        baseline = await self.tree.snapshot()
        if self._stale(generation):
            return
        self._baseline = baseline

        while not self._stale(generation):
            status = self._run.status
            if status == Status.PLANNING:
                await self._do_planning(generation)
            elif status == Status.AWAITING_REVIEW:
                await self._await_review()
            elif status == Status.EXECUTING:
                await self._do_task(generation)
            elif status == Status.ANALYZING:
                await self._do_analysis(generation)
            elif status == Status.SELF_CORRECTING:
                self._do_correction()
            else:
                return

    def _fail(self, reason: str, retryable: bool = True, thoughts: str | None = None) -> None:
        self._failure = (reason, retryable)
        if self._run.plan_id:
            self.gate.finish(self._run.plan_id)
        self._transition("fail", f"Failed: {reason}", thoughts=thoughts)

    async def _do_planning(self, generation: int) -> None:
        objective, failure_context = self.correction.planning_inputs(self._run.objective)
        try:
            snapshot = await self.tree.snapshot()
            if self._stale(generation):
                return
            memory = read_memory(snapshot, self.memory_path) if self.memory_path else ""
            plan = await self.planner.generate_plan(
                objective, snapshot, failure_context, memory, self.ui_context,
            )
        except MissingCredentialError as exc:
            if not self._stale(generation):
                self._fail(str(exc), retryable=False)
            return
        except ProviderFailure as exc:
            if not self._stale(generation):
                self._fail(f"Planning failed: {exc}")
            return
        if self._stale(generation):
            return

        self._plan = plan
        self._run.plan = plan.task_list()
        self._run.current_task_index = 0
        self._run.attempt += 1
        thoughts = plan.thoughts or plan.reasoning
        count = len(self._run.plan)

        if self._run.mode == Mode.AUTONOMOUS:
            self._run.plan_id = ""
            self._transition(
                "plan-autonomous",
                f"Plan ready ({count} task{'s' if count != 1 else ''}): {plan.reasoning}",
                thoughts=thoughts,
            )
        else:
            self._run.plan_id = self.gate.submit(plan)
            self._decision = anyio.Event()
            self._transition(
                "plan-review",
                f"Plan {self._run.plan_id} awaiting review ({count} task"
                f"{'s' if count != 1 else ''}): {plan.reasoning}",
                thoughts=thoughts,
            )

    async def _await_review(self) -> None:
        # set by approve, reject or cancel; each of them also moves the status
        if self._decision is None:
            self._decision = anyio.Event()
        await self._decision.wait()

    async def _do_task(self, generation: int) -> None:
        index = self._run.current_task_index
        tasks = list(self._run.plan)
        task = tasks[index]
        label = f"Task {index + 1}/{len(tasks)}"

        try:
            result = await self.engine.generate(self._run.objective, tasks, index)
        except MissingCredentialError as exc:
            if not self._stale(generation):
                self._fail(str(exc), retryable=False)
            return
        except ProviderFailure as exc:
            if not self._stale(generation):
                self._fail(f"{label} ({task}) failed: {exc}")
            return
        if self._stale(generation):
            return

        outcome = await self.engine.apply(task, index, result)
        if self._stale(generation):
            return
        if not outcome.success:
            self._fail(f"{label} ({task}) failed: {outcome.error}", thoughts=outcome.thoughts)
            return

        self._run.current_task_index = index + 1
        changed = ", ".join(outcome.files_changed) or "no file changes"
        if self._run.current_task_index < len(tasks):
            self._transition("task-done", f"{label} done: {task} [{changed}]",
                             thoughts=outcome.thoughts)
        else:
            self._transition("all-done", f"{label} done: {task} [{changed}]. Verifying.",
                             thoughts=outcome.thoughts)

    async def _do_analysis(self, generation: int) -> None:
        try:
            current = await self.tree.snapshot()
            if self._stale(generation):
                return
            reasoning = self._plan.reasoning if self._plan else ""
            verdict = await self.verifier.verify(
                self._run.objective, unified_diff(self._baseline, current), reasoning,
            )
        except MissingCredentialError as exc:
            if not self._stale(generation):
                self._fail(str(exc), retryable=False)
            return
        except ProviderFailure as exc:
            if not self._stale(generation):
                self._fail(f"Verification failed: {exc}")
            return
        if self._stale(generation):
            return

        if not verdict.passed:
            self._fail(f"Verification failed: {verdict.rationale}", thoughts=verdict.rationale)
            return

        if self.memory_path:
            await self._remember(current, verdict)
            if self._stale(generation):
                return
        self._transition("pass", f"Verification passed: {verdict.rationale}",
                         thoughts=verdict.rationale)

    async def _remember(self, current: dict[str, str], verdict: Verdict) -> None:
        entry = format_entry(
            self._run.objective, self._plan, classify_touched(self._baseline, current), verdict,
        )
        try:
            await self.tree.apply(memory_changes(current, self.memory_path, entry))
        except MutationApplyFailure as exc:
            logger.warning("could not update project memory: %s", exc)

    def _do_correction(self) -> None:
        reason, retryable = self._failure
        if retryable and self.correction.record(reason):
            self._transition(
                "retry",
                f"Self-correcting: retry {self.correction.retries}/{self.max_retries}, re-planning.",
            )
            return
        if retryable:
            error = self.correction.exhausted(reason)
        else:
            error = RetryBudgetExhausted(f"Not retryable: {reason}")
        self._run.last_error = str(error)
        self._transition("exhausted", f"Error: {error}")
