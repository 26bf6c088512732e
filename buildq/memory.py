"""Project memory: a markdown log of completed objectives kept in the tree."""

from __future__ import annotations

from datetime import datetime, timezone

from .models import FileChanges, Plan, Verdict

_SEPARATOR = "\n\n---\n\n"


def read_memory(snapshot: dict[str, str], path: str) -> str:
    return snapshot.get(path, "").strip()


def format_entry(
    objective: str,
    plan: Plan | None,
    touched: dict[str, list[str]],
    verdict: Verdict | None,
    now: datetime | None = None,
) -> str:
    stamp = (now or datetime.now(timezone.utc)).isoformat(timespec="seconds")
    heading = (objective.strip().splitlines() or ["Objective"])[0][:80]
    lines = [f"### {heading}", "", f"_{stamp}_", ""]
    if plan is not None and plan.reasoning:
        lines.append(f"- Plan: {plan.reasoning}")
    for label in ("created", "updated", "deleted"):
        paths = touched.get(label) or []
        lines.append(f"- Files {label}: {', '.join(paths) if paths else 'None'}")
    if verdict is not None and verdict.rationale:
        lines.append(f"- Review: {verdict.rationale}")
    return "\n".join(lines) + "\n"


def memory_changes(snapshot: dict[str, str], path: str, entry: str) -> FileChanges:
    """Mutation set that appends ``entry`` to the memory file."""
    if path in snapshot:
        current = snapshot[path].rstrip()
        content = f"{current}{_SEPARATOR}{entry}" if current else entry
        return FileChanges(update={path: content})
    return FileChanges(create={path: f"# Project Memory\n\n{entry}"})


def classify_touched(before: dict[str, str], after: dict[str, str]) -> dict[str, list[str]]:
    """Split the paths that differ between two snapshots by kind of change."""
    return {
        "created": sorted(p for p in after if p not in before),
        "updated": sorted(p for p in after if p in before and before[p] != after[p]),
        "deleted": sorted(p for p in before if p not in after),
    }
