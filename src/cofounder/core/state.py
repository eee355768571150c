"""The singleton work state row: goal, current task, streak and status."""

import json
import sqlite3
from datetime import datetime, timezone

from cofounder.core.errors import ValidationError
from cofounder.core.tasks import parse_dt
from cofounder.db.engine import transaction
from cofounder.db.models import FOUNDER_STATUSES, WorkState

STATE_ID = 1

_FIELDS = (
    "goal",
    "goal_metric",
    "current_revenue",
    "subscribers",
    "current_task",
    "current_task_context",
    "current_task_id",
    "current_task_assigned_at",
    "current_task_snapshot",
    "streak_days",
    "last_checkin",
    "last_completion",
    "last_progress_update",
    "status",
)


def get_state(db: sqlite3.Connection) -> WorkState:
    row = db.execute("SELECT * FROM founder_state WHERE id = ?", (STATE_ID,)).fetchone()
    if not row:
        # init_db creates the row; recreate it if someone removed it by hand
        with transaction(db):
            db.execute("INSERT OR IGNORE INTO founder_state (id) VALUES (?)", (STATE_ID,))
        row = db.execute("SELECT * FROM founder_state WHERE id = ?", (STATE_ID,)).fetchone()
    return _row_to_state(row)


def update_state(db: sqlite3.Connection, **fields) -> WorkState:
    """Update some fields of the state row."""
    unknown = set(fields) - set(_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown state field(s): {', '.join(sorted(unknown))}")
    if not fields:
        raise ValidationError("At least one state field must be provided")
    if "status" in fields and fields["status"] not in FOUNDER_STATUSES:
        raise ValidationError(
            f"Status must be one of: {', '.join(FOUNDER_STATUSES)}", "status"
        )

    values = {}
    for key, value in fields.items():
        if isinstance(value, datetime):
            value = value.isoformat(sep=" ", timespec="seconds")
        elif key == "current_task_snapshot" and value is not None:
            value = json.dumps(value)
        values[key] = value

    with transaction(db):
        set_parts = [f"{k} = ?" for k in values]
        db.execute(
            f"UPDATE founder_state SET {', '.join(set_parts)} WHERE id = ?",
            list(values.values()) + [STATE_ID],
        )
    return get_state(db)


def assign_task(
    db: sqlite3.Connection,
    task: str,
    context: str | None,
    task_id: int | None,
    snapshot: dict | None = None,
) -> WorkState:
    return update_state(
        db,
        current_task=task,
        current_task_context=context,
        current_task_id=task_id,
        current_task_assigned_at=_now(),
        current_task_snapshot=snapshot,
        status="active",
    )


def clear_current_task(db: sqlite3.Connection) -> WorkState:
    return update_state(
        db,
        current_task=None,
        current_task_context=None,
        current_task_id=None,
        current_task_assigned_at=None,
        current_task_snapshot=None,
    )


def increment_streak(db: sqlite3.Connection) -> WorkState:
    with transaction(db):
        db.execute(
            """UPDATE founder_state
               SET streak_days = streak_days + 1, last_completion = datetime('now')
               WHERE id = ?""",
            (STATE_ID,),
        )
    return get_state(db)


def reset_streak(db: sqlite3.Connection) -> WorkState:
    return update_state(db, streak_days=0)


def record_checkin(db: sqlite3.Connection) -> WorkState:
    return update_state(db, last_checkin=_now())


def set_goal(db: sqlite3.Connection, goal: str, goal_metric: str | None = None) -> WorkState:
    if not goal or not goal.strip():
        raise ValidationError("Goal must not be empty", "goal")
    fields = {"goal": goal.strip()}
    if goal_metric is not None:
        fields["goal_metric"] = goal_metric
    return update_state(db, **fields)


def update_progress(
    db: sqlite3.Connection, current_revenue: str, subscribers: int
) -> WorkState:
    if subscribers < 0:
        raise ValidationError("Subscribers must be >= 0", "subscribers")
    return update_state(
        db,
        current_revenue=current_revenue,
        subscribers=subscribers,
        last_progress_update=_now(),
    )


def set_status(db: sqlite3.Connection, status: str) -> WorkState:
    return update_state(db, status=status)


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


def _row_to_state(row: sqlite3.Row) -> WorkState:
    snapshot = row["current_task_snapshot"]
    return WorkState(
        id=row["id"],
        goal=row["goal"],
        goal_metric=row["goal_metric"],
        current_revenue=row["current_revenue"],
        subscribers=row["subscribers"] or 0,
        current_task=row["current_task"],
        current_task_context=row["current_task_context"],
        current_task_id=row["current_task_id"],
        current_task_assigned_at=parse_dt(row["current_task_assigned_at"]),
        current_task_snapshot=json.loads(snapshot) if snapshot else None,
        streak_days=row["streak_days"],
        last_checkin=parse_dt(row["last_checkin"]),
        last_completion=parse_dt(row["last_completion"]),
        last_progress_update=parse_dt(row["last_progress_update"]),
        status=row["status"],
    )
