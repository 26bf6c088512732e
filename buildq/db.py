"""SQLite run journal with WAL mode."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import aiosqlite

from .models import Mode, RunSnapshot, Status

_SCHEMA = """
CREATE TABLE IF NOT EXISTS runs (
    id TEXT PRIMARY KEY,
    objective TEXT NOT NULL,
    mode TEXT NOT NULL,
    status TEXT NOT NULL,
    plan TEXT DEFAULT '[]',
    current_task_index INTEGER DEFAULT 0,
    thoughts TEXT DEFAULT '',
    last_error TEXT DEFAULT '',
    plan_id TEXT DEFAULT '',
    attempt INTEGER DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS run_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id TEXT NOT NULL REFERENCES runs(id),
    seq INTEGER NOT NULL,
    line TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_runs_status ON runs(status);
CREATE INDEX IF NOT EXISTS idx_run_log_run ON run_log(run_id);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def init(self) -> None:
        self._conn = await aiosqlite.connect(self.db_path)
        self._conn.row_factory = aiosqlite.Row
        if self.db_path != ":memory:":
            await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.executescript(_SCHEMA)
        await self._conn.commit()

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    # ---------------------------------------------------------------
    # Runs
    # ---------------------------------------------------------------

    async def save_run(self, snap: RunSnapshot) -> None:
        """Upsert a run and append the log lines not yet journaled."""
        now = _now()
        await self._conn.execute(
            """INSERT INTO runs
               (id, objective, mode, status, plan, current_task_index,
                thoughts, last_error, plan_id, attempt, created_at, updated_at)
               VALUES (?,?,?,?,?,?,?,?,?,?,?,?)
               ON CONFLICT(id) DO UPDATE SET
                 status=excluded.status,
                 plan=excluded.plan,
                 current_task_index=excluded.current_task_index,
                 thoughts=excluded.thoughts,
                 last_error=excluded.last_error,
                 plan_id=excluded.plan_id,
                 attempt=excluded.attempt,
                 updated_at=excluded.updated_at
            """,
            (
                snap.run_id, snap.objective, snap.mode.value, snap.status.value,
                json.dumps(list(snap.plan)), snap.current_task_index,
                snap.thoughts, snap.last_error, snap.plan_id, snap.attempt,
                now, now,
            ),
        )
        cursor = await self._conn.execute(
            "SELECT COUNT(*) FROM run_log WHERE run_id = ?", (snap.run_id,)
        )
        (logged,) = await cursor.fetchone()
        for seq, line in enumerate(snap.logs[logged:], logged):
            await self._conn.execute(
                "INSERT INTO run_log (run_id, seq, line, created_at) VALUES (?,?,?,?)",
                (snap.run_id, seq, line, now),
            )
        await self._conn.commit()

    async def get_run(self, run_id: str) -> RunSnapshot | None:
        cursor = await self._conn.execute("SELECT * FROM runs WHERE id = ?", (run_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        lines = [entry["line"] for entry in await self.get_logs(run_id)]
        return self._row_to_snapshot(row, lines)

    async def list_runs(self, limit: int = 20) -> list[RunSnapshot]:
        """Most recent runs first, without their logs."""
        cursor = await self._conn.execute(
            "SELECT * FROM runs ORDER BY updated_at DESC, rowid DESC LIMIT ?", (limit,)
        )
        rows = await cursor.fetchall()
        return [self._row_to_snapshot(r, []) for r in rows]

    # ---------------------------------------------------------------
    # Run Log
    # ---------------------------------------------------------------

    async def get_logs(self, run_id: str) -> list[dict]:
        cursor = await self._conn.execute(
            "SELECT * FROM run_log WHERE run_id = ? ORDER BY seq",
            (run_id,),
        )
        rows = await cursor.fetchall()
        return [{"seq": r["seq"], "line": r["line"], "created_at": r["created_at"]} for r in rows]

    # ---------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------

    @staticmethod
    def _row_to_snapshot(row, lines: list[str]) -> RunSnapshot:
        return RunSnapshot(
            run_id=row["id"],
            status=Status(row["status"]),
            objective=row["objective"],
            mode=Mode(row["mode"]),
            plan=tuple(json.loads(row["plan"]) if row["plan"] else []),
            current_task_index=row["current_task_index"],
            thoughts=row["thoughts"] or "",
            logs=tuple(lines),
            last_error=row["last_error"] or "",
            plan_id=row["plan_id"] or "",
            attempt=row["attempt"],
        )
