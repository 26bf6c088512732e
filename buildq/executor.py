"""Execution Engine: turn one plan task into an applied mutation set."""

from __future__ import annotations

import json
import logging

from .annotations import AnnotationChannel
from .errors import MutationApplyFailure, ProviderFailure
from .models import CoderResult, FileChanges, Role, TaskResult, UiTarget
from .parsing import parse_json_object
from .router import ProviderRouter
from .workspace import ProjectTree

logger = logging.getLogger(__name__)

_MAX_FILES_CHARS = 120_000

_SYSTEM_PROMPT = """You are the Coder of an autonomous software development agent.
Implement exactly ONE task of an approved plan against the current project files.

Respond with ONLY a JSON object (no markdown fences, no commentary):
{
  "thoughts": "what you are about to change and why",
  "changes": {
    "create": {"path": "full file content"},
    "update": {"path": "full new file content"},
    "delete": ["path"]
  },
  "target": {"selector": "data-testid of the preview element", "action": "click" or "type"}
}

Rules:
- Always return the FULL content of created and updated files, never a diff.
- Only create files that do not exist yet; only update or delete files that do.
- A path may appear in at most one of create / update / delete.
- Include "target" only when the task is about a specific preview element."""


def _build_prompt(
    objective: str,
    tasks: list[str],
    index: int,
    snapshot: dict[str, str],
) -> str:
    parts = []
    parts.append(f"## Objective\n{objective}\n\n## Plan\n")
    for i, t in enumerate(tasks, 1):
        marker = "  <-- current" if i - 1 == index else ""
        parts.append(f"{i}. {t}{marker}\n")
    parts.append(f"\n## Current Task\n{tasks[index]}\n")
    files = json.dumps(snapshot, indent=2, ensure_ascii=False)[:_MAX_FILES_CHARS]
    parts.append(f"\n## Current Project Files\n```json\n{files}\n```\n")
    return "".join(parts)


def _as_str_dict(value, name: str) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ProviderFailure(f"'changes.{name}' must be an object of path → content")
    return {str(k): v for k, v in value.items()}


def parse_coder_result(raw: str) -> CoderResult:
    """Parse the Coder response into a CoderResult."""
    data = parse_json_object(raw)
    changes = data.get("changes") or {}
    if not isinstance(changes, dict):
        raise ProviderFailure("'changes' must be an object")
    delete = changes.get("delete") or []
    if not isinstance(delete, list):
        raise ProviderFailure("'changes.delete' must be a list of paths")

    target = None
    raw_target = data.get("target")
    if isinstance(raw_target, dict) and isinstance(raw_target.get("selector"), str):
        selector = raw_target["selector"].strip()
        action = raw_target.get("action", "click")
        if selector:
            target = UiTarget(
                selector=selector,
                action=action if action in ("click", "type") else "click",
            )

    return CoderResult(
        thoughts=str(data.get("thoughts") or ""),
        changes=FileChanges(
            create=_as_str_dict(changes.get("create"), "create"),
            update=_as_str_dict(changes.get("update"), "update"),
            delete=list(delete),
        ),
        target=target,
    )


class ExecutionEngine:
    """Runs plan tasks strictly one at a time.

    ``generate`` and ``apply`` are separate awaits so the caller can check
    for cancellation between asking the Coder and touching the tree.
    """

    def __init__(
        self,
        router: ProviderRouter,
        tree: ProjectTree,
        channel: AnnotationChannel | None = None,
    ):
        self.router = router
        self.tree = tree
        self.channel = channel

    async def generate(self, objective: str, tasks: list[str], index: int) -> CoderResult:
        snapshot = await self.tree.snapshot()
        user_prompt = _build_prompt(objective, tasks, index, snapshot)
        raw = await self.router.invoke(Role.CODER, _SYSTEM_PROMPT, user_prompt)
        return parse_coder_result(raw)

    async def apply(self, task: str, index: int, result: CoderResult) -> TaskResult:
        if result.target is not None and self.channel is not None:
            self.channel.highlight(result.target)
        try:
            files_changed = await self.tree.apply(result.changes)
        except MutationApplyFailure as exc:
            logger.warning("task %d failed to apply: %s", index + 1, exc)
            return TaskResult(
                task=task, index=index, success=False,
                thoughts=result.thoughts, error=str(exc),
            )
        finally:
            if self.channel is not None:
                self.channel.clear()

        return TaskResult(
            task=task, index=index, success=True,
            thoughts=result.thoughts, files_changed=files_changed,
        )

    async def run_task(self, objective: str, tasks: list[str], index: int) -> TaskResult:
        """Generate and apply one task. Provider failures become a failed result."""
        task = tasks[index]
        try:
            result = await self.generate(objective, tasks, index)
        except ProviderFailure as exc:
            if self.channel is not None:
                self.channel.clear()
            return TaskResult(task=task, index=index, success=False, error=str(exc))
        return await self.apply(task, index, result)
