"""Plan Generator: objective + project snapshot → validated Plan."""

from __future__ import annotations

import json
import logging
from typing import Iterable

from .errors import MutationApplyFailure, PlanValidationError
from .models import FileIntent, Plan, Role
from .parsing import parse_json_object
from .router import ProviderRouter
from .workspace import normalize_path

logger = logging.getLogger(__name__)

_MAX_FILES_CHARS = 120_000

_SYSTEM_PROMPT = """You are the Architect of an autonomous software development agent.
Break the user's objective into a short, ordered list of small, verifiable tasks
and declare which files the plan will create, update or delete.

Respond with ONLY a JSON object (no markdown fences, no commentary):
{
  "thoughts": "your internal reasoning about the plan structure",
  "reasoning": "one or two sentences for the user explaining the plan",
  "tasks": ["task 1", "task 2"],
  "plan": {"create": ["path"], "update": ["path"], "delete": ["path"]}
}

Rules:
- A file path may appear in at most one of create / update / delete.
- Tasks run strictly in order; later tasks may rely on files created earlier.
- If you add a dependency, include a task to update the dependency manifest.
- If you create a component, include a task that imports and uses it.
- Do NOT write any code in this step."""


def _files_json(snapshot: dict[str, str]) -> str:
    text = json.dumps(snapshot, indent=2, ensure_ascii=False)
    return text[:_MAX_FILES_CHARS]  # Truncate very large projects


def build_prompt(
    objective: str,
    snapshot: dict[str, str],
    failure_context: str | None = None,
    memory: str = "",
    ui_context: Iterable[str] = (),
) -> str:
    parts = []
    parts.append(f"## Objective\n{objective}\n\n")
    if memory:
        parts.append(
            "## Project Memory & History\n"
            "Summary of previous work on this project. Use it to inform your plan.\n"
            f"{memory}\n\n"
        )
    ui_context = list(ui_context)
    if ui_context:
        parts.append("## Interactable Preview Elements (test ids)\n")
        for selector in ui_context:
            parts.append(f"- {selector}\n")
        parts.append("\n")
    parts.append(f"## Current Project Files\n```json\n{_files_json(snapshot)}\n```\n")
    if failure_context:
        parts.append(
            "\n## Previous Attempt Failed (your new plan MUST address this)\n"
            f"{failure_context}\n"
        )
    return "".join(parts)


# -------------------------------------------------------------------
# Output validation
# -------------------------------------------------------------------

def _clean_paths(values, field_name: str) -> tuple[str, ...]:
    if values is None:
        return ()
    if isinstance(values, str) or not isinstance(values, Iterable):
        raise PlanValidationError(f"plan.{field_name} must be a list of paths")
    paths = set()
    for value in values:
        if isinstance(value, str) and not value.strip():
            continue
        try:
            paths.add(normalize_path(value))
        except MutationApplyFailure as exc:
            raise PlanValidationError(f"plan.{field_name}: {exc}") from exc
    return tuple(sorted(paths))


def validate_plan(plan: Plan) -> Plan:
    """Validate and normalize a plan. Idempotent on already-valid plans.

    Raises PlanValidationError when the reasoning is missing, when the
    create/update/delete sets overlap, or when the plan has nothing to do.
    """
    reasoning = (plan.reasoning or "").strip()
    if not reasoning:
        raise PlanValidationError("plan is missing 'reasoning'")

    create = _clean_paths(plan.intent.create, "create")
    update = _clean_paths(plan.intent.update, "update")
    delete = _clean_paths(plan.intent.delete, "delete")
    for a_name, a, b_name, b in (
        ("create", create, "update", update),
        ("create", create, "delete", delete),
        ("update", update, "delete", delete),
    ):
        overlap = sorted(set(a) & set(b))
        if overlap:
            raise PlanValidationError(
                f"paths listed in both '{a_name}' and '{b_name}': {', '.join(overlap)}"
            )

    tasks = tuple(t.strip() for t in plan.tasks if isinstance(t, str) and t.strip())
    intent = FileIntent(create=create, update=update, delete=delete)
    if not tasks and intent.is_empty():
        raise PlanValidationError(f"plan contains no tasks: {reasoning}")

    return Plan(
        reasoning=reasoning,
        thoughts=(plan.thoughts or "").strip(),
        tasks=tasks,
        intent=intent,
    )


def plan_from_dict(data: dict) -> Plan:
    """Map the Architect's JSON onto a Plan (not yet validated).

    ``plan`` may be the file-intent object or, in the task-list dialect,
    an array of task strings.
    """
    raw_plan = data.get("plan") or {}
    tasks = data.get("tasks") or []
    if isinstance(raw_plan, list):
        tasks = tasks or raw_plan
        raw_plan = {}
    if not isinstance(raw_plan, dict):
        raise PlanValidationError("'plan' must be an object or a list of tasks")
    if not isinstance(tasks, list):
        raise PlanValidationError("'tasks' must be a list of strings")

    return Plan(
        reasoning=str(data.get("reasoning") or ""),
        thoughts=str(data.get("thoughts") or ""),
        tasks=tuple(tasks),
        intent=FileIntent(
            create=raw_plan.get("create") or (),
            update=raw_plan.get("update") or (),
            delete=raw_plan.get("delete") or (),
        ),
    )


class PlanGenerator:
    """Asks the Architect role for a plan."""

    def __init__(self, router: ProviderRouter):
        self.router = router

    async def generate_plan(
        self,
        objective: str,
        snapshot: dict[str, str],
        failure_context: str | None = None,
        memory: str = "",
        ui_context: Iterable[str] = (),
    ) -> Plan:
        user_prompt = build_prompt(objective, snapshot, failure_context, memory, ui_context)
        raw = await self.router.invoke(Role.ARCHITECT, _SYSTEM_PROMPT, user_prompt)
        plan = validate_plan(plan_from_dict(parse_json_object(raw)))
        logger.info("plan ready: %d task(s)", len(plan.task_list()))
        return plan
