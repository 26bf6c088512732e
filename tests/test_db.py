"""Tests for the SQLite run journal."""

import pytest

from buildq.db import Database
from buildq.models import Mode, Run, RunSnapshot, Status


def _snap(run_id="run-1", status=Status.FINISHED, logs=("Starting", "Done"), **kw):
    run = Run(
        status=status,
        objective=kw.pop("objective", "Add a footer"),
        mode=kw.pop("mode", Mode.AUTONOMOUS),
        plan=list(kw.pop("plan", ["Update index.html"])),
        logs=list(logs),
        **kw,
    )
    return RunSnapshot.of(run_id, run)


# --- Basic CRUD ---

@pytest.mark.asyncio
async def test_save_and_get_run(memory_db):
    """Save a snapshot → read back with matching fields and logs."""
    await memory_db.save_run(_snap(attempt=2, thoughts="looks good", current_task_index=1))
    loaded = await memory_db.get_run("run-1")
    assert loaded.objective == "Add a footer"
    assert loaded.status == Status.FINISHED
    assert loaded.mode == Mode.AUTONOMOUS
    assert loaded.plan == ("Update index.html",)
    assert loaded.current_task_index == 1
    assert loaded.attempt == 2
    assert loaded.thoughts == "looks good"
    assert loaded.logs == ("Starting", "Done")


@pytest.mark.asyncio
async def test_get_missing_run_returns_none(memory_db):
    assert await memory_db.get_run("nope") is None


@pytest.mark.asyncio
async def test_save_is_idempotent_and_appends_only_new_lines(memory_db):
    """Repeated save of a growing snapshot → update, log lines not duplicated."""
    await memory_db.save_run(_snap(status=Status.EXECUTING, logs=("a",)))
    await memory_db.save_run(_snap(status=Status.EXECUTING, logs=("a", "b")))
    await memory_db.save_run(_snap(status=Status.ERROR, logs=("a", "b", "c"),
                                   last_error="Retry budget exhausted"))

    loaded = await memory_db.get_run("run-1")
    assert loaded.status == Status.ERROR
    assert loaded.last_error == "Retry budget exhausted"
    assert [e["line"] for e in await memory_db.get_logs("run-1")] == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_list_runs(memory_db):
    await memory_db.save_run(_snap("run-1"))
    await memory_db.save_run(_snap("run-2", mode=Mode.GOD_MODE, status=Status.IDLE))
    runs = await memory_db.list_runs()
    assert {r.run_id for r in runs} == {"run-1", "run-2"}
    assert all(r.logs == () for r in runs)
    assert len(await memory_db.list_runs(limit=1)) == 1


@pytest.mark.asyncio
async def test_logs_isolated_per_run(memory_db):
    await memory_db.save_run(_snap("run-1", logs=("one",)))
    await memory_db.save_run(_snap("run-2", logs=("two", "three")))
    assert [e["line"] for e in await memory_db.get_logs("run-1")] == ["one"]
    assert [e["line"] for e in await memory_db.get_logs("run-2")] == ["two", "three"]


# --- File database ---

@pytest.mark.asyncio
async def test_wal_mode_enabled(db):
    cursor = await db._conn.execute("PRAGMA journal_mode")
    (mode,) = await cursor.fetchone()
    assert mode.lower() == "wal"


@pytest.mark.asyncio
async def test_data_survives_reopen(tmp_path):
    path = str(tmp_path / "state.db")
    first = Database(path)
    await first.init()
    await first.save_run(_snap())
    await first.close()

    second = Database(path)
    await second.init()
    try:
        loaded = await second.get_run("run-1")
        assert loaded is not None
        assert loaded.logs == ("Starting", "Done")
    finally:
        await second.close()
