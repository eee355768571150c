"""Queue selection: canonical ordering and picking the next actionable task."""

import sqlite3

from cofounder.core.blocking import is_blocked
from cofounder.core.tasks import QUEUE_ORDER, _row_to_task
from cofounder.db.models import Task


def list_queue(db: sqlite3.Connection, limit: int | None = None) -> list[Task]:
    """List queued tasks by priority (highest first), then insertion order."""
    query = f"SELECT * FROM task_queue {QUEUE_ORDER}"
    params: list = []
    if limit is not None:
        query += " LIMIT ?"
        params.append(limit)
    return [_row_to_task(r) for r in db.execute(query, params).fetchall()]


def next_task(db: sqlite3.Connection) -> Task | None:
    """Head of the queue, blocked or not."""
    queue = list_queue(db, limit=1)
    return queue[0] if queue else None


def next_unblocked_task(
    db: sqlite3.Connection,
    current_in_progress_id: int | None,
    exclude: tuple[int, ...] = (),
) -> Task | None:
    """First task in queue order whose prerequisites are all resolved."""
    for task in list_queue(db):
        if task.id in exclude:
            continue
        if not is_blocked(db, task, current_in_progress_id):
            return task
    return None


def queue_position(db: sqlite3.Connection, task_id: int) -> int | None:
    """1-based position of a task in the queue, or None if not queued."""
    for position, task in enumerate(list_queue(db), start=1):
        if task.id == task_id:
            return position
    return None
