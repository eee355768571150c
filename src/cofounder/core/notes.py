"""Notes attached to tasks: progress, attempts, blockers and learnings."""

import sqlite3

from cofounder.core.errors import ValidationError
from cofounder.core.tasks import parse_dt
from cofounder.db.engine import transaction
from cofounder.db.models import NOTE_TYPES, TaskNote


def add_task_note(
    db: sqlite3.Connection,
    task_id: int,
    note: str,
    note_type: str = "progress",
    task_completed: bool = False,
    created_by: str | None = None,
) -> TaskNote:
    if not note or not note.strip():
        raise ValidationError("Note must not be empty", "note")
    if note_type not in NOTE_TYPES:
        raise ValidationError(f"Note type must be one of: {', '.join(NOTE_TYPES)}", "note_type")
    with transaction(db):
        cur = db.execute(
            """INSERT INTO task_notes (task_id, task_completed, note, note_type, created_by)
               VALUES (?, ?, ?, ?, ?)""",
            (task_id, int(task_completed), note.strip(), note_type, created_by),
        )
    row = db.execute("SELECT * FROM task_notes WHERE id = ?", (cur.lastrowid,)).fetchone()
    return _row_to_note(row)


def get_task_notes(
    db: sqlite3.Connection, task_id: int, task_completed: bool = False
) -> list[TaskNote]:
    """Notes on a task, oldest first."""
    rows = db.execute(
        """SELECT * FROM task_notes WHERE task_id = ? AND task_completed = ?
           ORDER BY created_at ASC, id ASC""",
        (task_id, int(task_completed)),
    ).fetchall()
    return [_row_to_note(r) for r in rows]


def count_task_notes(db: sqlite3.Connection, task_id: int, task_completed: bool = False) -> int:
    return db.execute(
        "SELECT COUNT(*) FROM task_notes WHERE task_id = ? AND task_completed = ?",
        (task_id, int(task_completed)),
    ).fetchone()[0]


def recent_notes(db: sqlite3.Connection, limit: int = 10) -> list[TaskNote]:
    rows = db.execute(
        "SELECT * FROM task_notes ORDER BY created_at DESC, id DESC LIMIT ?", (limit,)
    ).fetchall()
    return [_row_to_note(r) for r in rows]


def _row_to_note(row: sqlite3.Row) -> TaskNote:
    return TaskNote(
        id=row["id"],
        task_id=row["task_id"],
        task_completed=bool(row["task_completed"]),
        note=row["note"],
        note_type=row["note_type"],
        created_at=parse_dt(row["created_at"]),
        created_by=row["created_by"],
    )
