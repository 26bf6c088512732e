"""buildq CLI — typer-based command interface."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer

app = typer.Typer(
    name="buildq",
    help="buildq — Autonomous Task Orchestrator",
    no_args_is_help=True,
)

# -------------------------------------------------------------------
# Templates
# -------------------------------------------------------------------

DEFAULT_CONFIG_TEMPLATE = """\
# .buildq/config.yaml — team-shared configuration
mode: autonomous

roles:
  architect:
    provider: google
    model: gemini-2.5-flash
  coder:
    provider: groq
    model: llama-3.1-8b-instant
  reviewer:
    provider: openrouter
    model: mistralai/mistral-7b-instruct

budgets:
  max_retries: 2
  provider_max_attempts: 4

correction:
  strategy: append   # append | replace

memory:
  enabled: true
  path: .buildq/memory.md

preview:
  source_tag: buildq-agent
"""

DEFAULT_LOCAL_CONFIG_TEMPLATE = """\
# .buildq/local.config.yaml — personal overrides (DO NOT commit)
# providers:
#   google:
#     api_key: AIza-xxx
#   groq:
#     api_key: gsk_xxx
#   openrouter:
#     api_key: sk-or-xxx
"""

GITIGNORE_ENTRIES = [
    ".buildq/local.config.yaml",
    ".buildq/state.db",
    ".buildq/state.db-wal",
    ".buildq/state.db-shm",
]

_STATUS_ICONS = {
    "finished": "✅", "error": "❌", "idle": "⏹️",
    "planning": "🔄", "executing": "🔄", "analyzing": "🔄",
    "self-correcting": "🔄", "awaiting-review": "⚠️",
}


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------

def _get_project_root() -> Path:
    return Path.cwd()


def _run_async(coro):
    """Run an async coroutine from sync context."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None
    if loop and loop.is_running():
        import concurrent.futures
        with concurrent.futures.ThreadPoolExecutor() as pool:
            return pool.submit(asyncio.run, coro).result()
    return asyncio.run(coro)


async def _get_db(project_root: Path):
    from .db import Database
    db_path = project_root / ".buildq" / "state.db"
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = Database(str(db_path))
    await db.init()
    return db


def _make_orchestrator(root: Path):
    from .config import load_config
    from .orchestrator import Orchestrator
    from .router import ProviderRouter
    from .workspace import DirectoryTree

    config = load_config(root)
    # Re-read config on every role resolution so new keys apply mid-session
    router = ProviderRouter(lambda: load_config(root))
    return Orchestrator.from_config(config, DirectoryTree(root), router=router)


def _echo_line(line: str, snap) -> None:
    typer.echo(f"  [{snap.status.value}] {line}")


def _echo_plan(orch) -> None:
    plan = orch.plan
    if plan is None:
        return
    typer.echo(f"\n  Plan {orch.snapshot().plan_id}: {plan.reasoning}")
    for i, task in enumerate(plan.task_list(), 1):
        typer.echo(f"    {i}. {task}")
    for label, paths in (
        ("create", plan.intent.create),
        ("update", plan.intent.update),
        ("delete", plan.intent.delete),
    ):
        if paths:
            typer.echo(f"    {label}: {', '.join(paths)}")
    typer.echo("")


def _echo_result(snap) -> None:
    icon = _STATUS_ICONS.get(snap.status.value, "  ")
    typer.echo(f"\n  {icon} Run {snap.run_id}: {snap.status.value}")
    if snap.last_error:
        typer.echo(f"  {snap.last_error}")


async def _echo_annotations(channel) -> None:
    from .annotations import ACTION_LABELS

    async with channel.receive_stream as stream:
        async for message in stream:
            payload = message.get("payload")
            if payload:
                label = ACTION_LABELS.get(payload["actionType"], payload["actionType"])
                typer.echo(f"  👆 {label} {payload['selector']}")


def _refuse(result) -> None:
    if result.missing:
        names = ", ".join(r.label for r in result.missing)
        typer.echo(f"  API Key Missing for: {names}", err=True)
        typer.echo("  Set the provider keys in .buildq/local.config.yaml or the environment.",
                   err=True)
    else:
        typer.echo(f"  Cannot start: {result.reason}", err=True)
    raise typer.Exit(1)


# -------------------------------------------------------------------
# Commands
# -------------------------------------------------------------------

@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def init():
    """Initialize buildq in the current project."""
    root = _get_project_root()

    buildq_dir = root / ".buildq"
    buildq_dir.mkdir(exist_ok=True)

    config_path = buildq_dir / "config.yaml"
    if not config_path.exists():
        config_path.write_text(DEFAULT_CONFIG_TEMPLATE)
        typer.echo(f"  Created {config_path.relative_to(root)}")
    else:
        typer.echo(f"  Exists  {config_path.relative_to(root)}")

    local_path = buildq_dir / "local.config.yaml"
    if not local_path.exists():
        local_path.write_text(DEFAULT_LOCAL_CONFIG_TEMPLATE)
        typer.echo(f"  Created {local_path.relative_to(root)}")

    # .gitignore
    gitignore_path = root / ".gitignore"
    existing = ""
    if gitignore_path.exists():
        existing = gitignore_path.read_text()
    additions = [e for e in GITIGNORE_ENTRIES if e not in existing]
    if additions:
        with open(gitignore_path, "a") as f:
            if existing and not existing.endswith("\n"):
                f.write("\n")
            f.write("# buildq\n")
            for entry in additions:
                f.write(f"{entry}\n")
        typer.echo("  Updated .gitignore")

    typer.echo("\n  buildq initialized. Run `buildq roles` to check provider keys.")


@app.command("config")
def config_show():
    """Show merged configuration."""
    root = _get_project_root()

    from dataclasses import asdict

    import yaml

    from .config import load_config

    config = load_config(root)
    data = asdict(config)
    # Remove sensitive keys
    for p in data["providers"].values():
        if isinstance(p, dict) and p.get("api_key"):
            p["api_key"] = p["api_key"][:8] + "..."

    typer.echo("\n  buildq — Merged Configuration")
    typer.echo("  " + "─" * 40)
    typer.echo(yaml.dump(data, default_flow_style=False, allow_unicode=True))


@app.command()
def roles():
    """Show which roles have a provider key."""
    root = _get_project_root()

    from .config import load_config
    from .router import ProviderRouter

    router = ProviderRouter(lambda: load_config(root))
    typer.echo(f"\n  {'Role':<12} {'Provider/Model':<40} {'Key'}")
    typer.echo(f"  {'─' * 12} {'─' * 40} {'─' * 12}")
    for role, name, ready in router.readiness():
        key = "✅ ready" if ready else "❌ API Key Missing"
        typer.echo(f"  {role.label:<12} {name:<40} {key}")
    typer.echo("")


@app.command("preview-script")
def preview_script():
    """Print the highlight listener to inject into the preview page."""
    from .annotations import listener_script
    from .config import load_config

    config = load_config(_get_project_root())
    typer.echo(listener_script(config.preview.source_tag))


@app.command()
def auto(objective: str = typer.Argument(..., help="What to build")):
    """Plan, execute and verify an objective without review."""
    root = _get_project_root()

    async def _auto():
        import anyio

        from .models import Mode

        orch = _make_orchestrator(root)
        orch.subscribe(_echo_line)
        result = orch.start(objective, Mode.AUTONOMOUS)
        if not result.started:
            _refuse(result)

        db = await _get_db(root)
        try:
            async with anyio.create_task_group() as tg:
                tg.start_soon(_echo_annotations, orch.channel)
                try:
                    snap = await orch.run()
                finally:
                    orch.channel.close()
            await db.save_run(snap)
        finally:
            await db.close()
        _echo_result(snap)
        if snap.status.value == "error":
            raise typer.Exit(1)

    _run_async(_auto())


@app.command()
def build(
    objective: str = typer.Argument(..., help="What to build"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Approve every plan without asking"),
):
    """God-Mode: every plan waits for your approval before it runs."""
    root = _get_project_root()

    async def _build():
        import anyio

        from .models import Mode, Status

        orch = _make_orchestrator(root)
        send, receive = anyio.create_memory_object_stream(16)

        def on_line(line, snap):
            _echo_line(line, snap)
            if snap.status == Status.AWAITING_REVIEW:
                send.send_nowait(snap.plan_id)

        orch.subscribe(on_line)
        result = orch.start(objective, Mode.GOD_MODE)
        if not result.started:
            _refuse(result)

        async def review_loop():
            async with receive:
                async for plan_id in receive:
                    _echo_plan(orch)
                    approved = yes or await anyio.to_thread.run_sync(
                        lambda: typer.confirm("  Approve this plan?", default=True)
                    )
                    if approved:
                        orch.approve(plan_id)
                    else:
                        orch.reject(plan_id)

        db = await _get_db(root)
        try:
            async with anyio.create_task_group() as tg:
                tg.start_soon(review_loop)
                tg.start_soon(_echo_annotations, orch.channel)
                try:
                    snap = await orch.run()
                finally:
                    send.close()
                    orch.channel.close()
            await db.save_run(snap)
        finally:
            await db.close()
        _echo_result(snap)
        if snap.status.value == "error":
            raise typer.Exit(1)

    _run_async(_build())


@app.command()
def status(limit: int = typer.Option(20, help="Number of runs to show")):
    """Show recent runs."""
    root = _get_project_root()

    async def _status():
        db = await _get_db(root)
        try:
            runs = await db.list_runs(limit)
            if not runs:
                typer.echo("  No runs yet.")
                return
            typer.echo("\n  buildq — Recent Runs")
            typer.echo("  " + "─" * 60)
            for snap in runs:
                icon = _STATUS_ICONS.get(snap.status.value, "  ")
                objective = snap.objective.splitlines()[0][:40]
                typer.echo(
                    f"  {icon} {snap.run_id:<14} {snap.status.value:<16} {objective}"
                )
        finally:
            await db.close()

    _run_async(_status())


@app.command()
def logs(run_id: str = typer.Argument(..., help="Run ID")):
    """Show a run's log."""
    root = _get_project_root()

    async def _logs():
        db = await _get_db(root)
        try:
            snap = await db.get_run(run_id)
            if snap is None:
                typer.echo(f"  Run '{run_id}' not found.")
                return
            typer.echo(f"\n  Logs — {run_id} ({snap.mode.value}, attempt {snap.attempt})")
            typer.echo(f"  Objective: {snap.objective}")
            typer.echo("  " + "─" * 50)
            for entry in await db.get_logs(run_id):
                typer.echo(f"  [{entry['created_at']}] {entry['line']}")
            if snap.last_error:
                typer.echo(f"\n  Error: {snap.last_error}")
        finally:
            await db.close()

    _run_async(_logs())


if __name__ == "__main__":
    app()
