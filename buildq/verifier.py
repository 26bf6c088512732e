"""Verifier: Reviewer role judges the cumulative change against the objective."""

from __future__ import annotations

import logging

from .errors import ProviderFailure
from .models import Role, Verdict
from .parsing import parse_json_object
from .router import ProviderRouter

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = """You are the Reviewer of an autonomous software development agent.
Compare the unified diff of the project with the user's objective and decide
whether the objective has been fully achieved.

Respond with ONLY a JSON object (no markdown fences, no commentary):
{
  "thoughts": "your step-by-step analysis",
  "taskCompleted": true or false,
  "analysis": "one or two sentences explaining the verdict"
}"""


def _build_prompt(objective: str, diff: str, plan_reasoning: str) -> str:
    parts = []
    parts.append(f"## Objective\n{objective}\n\n")
    if plan_reasoning:
        parts.append(f"## Plan Reasoning\n{plan_reasoning}\n\n")
    parts.append("## Unified Diff\n```diff\n")
    parts.append(diff[:50000] if diff else "(no changes)")  # Truncate very large diffs
    parts.append("\n```\n")
    return "".join(parts)


def parse_verdict(raw: str) -> Verdict:
    """Parse the Reviewer response. Default to fail on parse error."""
    try:
        data = parse_json_object(raw)
    except ProviderFailure:
        return Verdict(passed=False, rationale="Failed to parse reviewer response as JSON")

    if "taskCompleted" in data:
        passed = data["taskCompleted"] is True
    else:
        passed = data.get("verdict") == "pass"
    rationale = data.get("analysis") or data.get("summary") or ""
    return Verdict(
        passed=passed,
        rationale=str(rationale) or ("Objective achieved." if passed else "Objective not achieved."),
        thoughts=str(data.get("thoughts") or ""),
    )


class Verifier:
    def __init__(self, router: ProviderRouter):
        self.router = router

    async def verify(self, objective: str, diff: str, plan_reasoning: str = "") -> Verdict:
        user_prompt = _build_prompt(objective, diff, plan_reasoning)
        raw = await self.router.invoke(Role.REVIEWER, _SYSTEM_PROMPT, user_prompt)
        verdict = parse_verdict(raw)
        logger.info("review verdict: %s", "pass" if verdict.passed else "fail")
        return verdict
