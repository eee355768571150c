"""Append-only logs: completed tasks and reported blockers."""

import sqlite3
from datetime import datetime, timedelta, timezone

from cofounder.core.errors import NotFoundError, ValidationError
from cofounder.core.tasks import parse_dt
from cofounder.db.engine import transaction
from cofounder.db.models import Blocker, CompletedTask


# ── Completed tasks ──────────────────────────────────────────────────────────


def log_completion(
    db: sqlite3.Connection,
    task: str,
    context: str | None,
    time_taken_minutes: int | None,
    notes: str | None,
    project: str | None,
) -> CompletedTask:
    with transaction(db):
        cur = db.execute(
            """INSERT INTO completed_tasks (task, context, time_taken_minutes, notes, project)
               VALUES (?, ?, ?, ?, ?)""",
            (task, context, time_taken_minutes, notes, project),
        )
    row = db.execute("SELECT * FROM completed_tasks WHERE id = ?", (cur.lastrowid,)).fetchone()
    return _row_to_completed(row)


def list_completed(
    db: sqlite3.Connection,
    since: datetime | None = None,
    project: str | None = None,
    limit: int | None = None,
) -> list[CompletedTask]:
    """Completed tasks, newest first."""
    query = "SELECT * FROM completed_tasks WHERE 1=1"
    params: list = []
    if since:
        query += " AND completed_at >= ?"
        params.append(since.isoformat(sep=" ", timespec="seconds"))
    if project:
        query += " AND project = ?"
        params.append(project)
    query += " ORDER BY completed_at DESC, id DESC"
    if limit is not None:
        query += " LIMIT ?"
        params.append(limit)
    return [_row_to_completed(r) for r in db.execute(query, params).fetchall()]


def get_stats(db: sqlite3.Connection, now: datetime | None = None) -> dict:
    """Completion counts: total, this week (since Sunday), today. Times are UTC."""
    now = now or datetime.now(timezone.utc).replace(tzinfo=None)
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    # isoweekday: Monday=1 .. Sunday=7; weeks start on Sunday
    start_of_week = start_of_day - timedelta(days=now.isoweekday() % 7)

    def _count_since(since: datetime | None) -> int:
        if since is None:
            return db.execute("SELECT COUNT(*) FROM completed_tasks").fetchone()[0]
        return db.execute(
            "SELECT COUNT(*) FROM completed_tasks WHERE completed_at >= ?",
            (since.isoformat(sep=" ", timespec="seconds"),),
        ).fetchone()[0]

    return {
        "total_completed": _count_since(None),
        "completed_this_week": _count_since(start_of_week),
        "completed_today": _count_since(start_of_day),
    }


# ── Blockers ──────────────────────────────────────────────────────────────────


def log_blocker(
    db: sqlite3.Connection,
    blocker: str,
    context: str | None = None,
    task_id: int | None = None,
) -> Blocker:
    if not blocker or not blocker.strip():
        raise ValidationError("Blocker description must not be empty", "blocker")
    with transaction(db):
        cur = db.execute(
            "INSERT INTO blockers (blocker, context, task_id) VALUES (?, ?, ?)",
            (blocker.strip(), context, task_id),
        )
    return get_blocker(db, cur.lastrowid)


def get_blocker(db: sqlite3.Connection, blocker_id: int) -> Blocker | None:
    row = db.execute("SELECT * FROM blockers WHERE id = ?", (blocker_id,)).fetchone()
    if not row:
        return None
    return _row_to_blocker(row)


def resolve_blocker(db: sqlite3.Connection, blocker_id: int, resolution: str) -> Blocker:
    with transaction(db):
        if not get_blocker(db, blocker_id):
            raise NotFoundError("Blocker", blocker_id)
        db.execute(
            "UPDATE blockers SET resolved_at = datetime('now'), resolution = ? WHERE id = ?",
            (resolution, blocker_id),
        )
    return get_blocker(db, blocker_id)


def list_blockers(db: sqlite3.Connection, active_only: bool = True) -> list[Blocker]:
    query = "SELECT * FROM blockers"
    if active_only:
        query += " WHERE resolved_at IS NULL"
    query += " ORDER BY identified_at DESC, id DESC"
    return [_row_to_blocker(r) for r in db.execute(query).fetchall()]


def get_blocker_stats(db: sqlite3.Connection) -> dict:
    row = db.execute(
        """SELECT
               SUM(CASE WHEN resolved_at IS NULL THEN 1 ELSE 0 END) AS active,
               SUM(CASE WHEN resolved_at IS NOT NULL THEN 1 ELSE 0 END) AS resolved
           FROM blockers"""
    ).fetchone()
    return {"active": row["active"] or 0, "resolved": row["resolved"] or 0}


# ── Row mapping ───────────────────────────────────────────────────────────────


def _row_to_completed(row: sqlite3.Row) -> CompletedTask:
    return CompletedTask(
        id=row["id"],
        task=row["task"],
        context=row["context"],
        completed_at=parse_dt(row["completed_at"]),
        time_taken_minutes=row["time_taken_minutes"],
        notes=row["notes"],
        project=row["project"],
    )


def _row_to_blocker(row: sqlite3.Row) -> Blocker:
    return Blocker(
        id=row["id"],
        blocker=row["blocker"],
        context=row["context"],
        task_id=row["task_id"],
        identified_at=parse_dt(row["identified_at"]),
        resolved_at=parse_dt(row["resolved_at"]),
        resolution=row["resolution"],
    )
