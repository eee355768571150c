"""Work sessions: timeboxed stretches of work with a running completion count.

At most one session is active (``ended_at IS NULL``); starting a new one
ends whatever was still open.
"""

import logging
import sqlite3

from cofounder.core.errors import ConflictError, NotFoundError, ValidationError
from cofounder.core.tasks import parse_dt
from cofounder.db.engine import transaction
from cofounder.db.models import ENERGY_LEVELS, WorkSession

logger = logging.getLogger(__name__)


def start_session(
    db: sqlite3.Connection,
    planned_minutes: int | None = None,
    energy_level: str | None = None,
) -> WorkSession:
    if planned_minutes is not None and planned_minutes <= 0:
        raise ValidationError("Planned minutes must be positive", "planned_minutes")
    if energy_level is not None and energy_level not in ENERGY_LEVELS:
        raise ValidationError(
            f"Energy level must be one of: {', '.join(ENERGY_LEVELS)}", "energy_level"
        )

    with transaction(db):
        db.execute("UPDATE work_sessions SET ended_at = datetime('now') WHERE ended_at IS NULL")
        cur = db.execute(
            "INSERT INTO work_sessions (planned_duration_minutes, energy_level) VALUES (?, ?)",
            (planned_minutes, energy_level),
        )
    logger.info("Started work session #%s", cur.lastrowid)
    return get_session(db, cur.lastrowid)


def end_session(
    db: sqlite3.Connection,
    notes: str | None = None,
    learnings: str | None = None,
) -> WorkSession:
    """End the active session."""
    with transaction(db):
        active = get_active_session(db)
        if active is None:
            raise ConflictError("No active session to end")
        db.execute(
            """UPDATE work_sessions SET ended_at = datetime('now'), notes = ?, learnings = ?
               WHERE id = ?""",
            (notes, learnings, active.id),
        )
    logger.info("Ended work session #%s", active.id)
    return get_session(db, active.id)


def get_session(db: sqlite3.Connection, session_id: int) -> WorkSession:
    row = db.execute("SELECT * FROM work_sessions WHERE id = ?", (session_id,)).fetchone()
    if not row:
        raise NotFoundError("Session", session_id)
    return _row_to_session(row)


def get_active_session(db: sqlite3.Connection) -> WorkSession | None:
    row = db.execute(
        """SELECT * FROM work_sessions WHERE ended_at IS NULL
           ORDER BY started_at DESC, id DESC LIMIT 1"""
    ).fetchone()
    return _row_to_session(row) if row else None


def increment_session_tasks(db: sqlite3.Connection) -> WorkSession | None:
    """Count a completion against the active session, if there is one."""
    with transaction(db):
        active = get_active_session(db)
        if active is None:
            return None
        db.execute(
            "UPDATE work_sessions SET tasks_completed = tasks_completed + 1 WHERE id = ?",
            (active.id,),
        )
    return get_session(db, active.id)


def list_sessions(db: sqlite3.Connection, limit: int = 10) -> list[WorkSession]:
    rows = db.execute(
        "SELECT * FROM work_sessions ORDER BY started_at DESC, id DESC LIMIT ?", (limit,)
    ).fetchall()
    return [_row_to_session(r) for r in rows]


def _row_to_session(row: sqlite3.Row) -> WorkSession:
    return WorkSession(
        id=row["id"],
        started_at=parse_dt(row["started_at"]),
        ended_at=parse_dt(row["ended_at"]),
        planned_duration_minutes=row["planned_duration_minutes"],
        tasks_completed=row["tasks_completed"],
        notes=row["notes"],
        learnings=row["learnings"],
        energy_level=row["energy_level"],
    )
