"""Dependency resolution between queued tasks.

A task is blocked while any id in its ``blocked_by`` list still names a
queued task or the task currently in progress. Ids that name neither (the
blocker was completed or deleted, never existed, or is the task itself)
are treated as resolved, so a bad reference can never lock a task forever.
"""

import sqlite3
from dataclasses import dataclass, field

from cofounder.core import tasks as tasks_mod
from cofounder.db.engine import transaction
from cofounder.db.models import Task


@dataclass
class BlockerDetail:
    id: int
    task: str
    exists: bool


@dataclass
class BlockedTask:
    task: Task
    blockers: list[BlockerDetail] = field(default_factory=list)


def _live_blockers(task: Task) -> list[int]:
    return [b for b in task.blocked_by if b != task.id]


def is_blocked(
    db: sqlite3.Connection,
    task: Task,
    current_in_progress_id: int | None,
) -> bool:
    """Return True if any of the task's blockers is still queued or in progress."""
    for blocker_id in _live_blockers(task):
        if current_in_progress_id is not None and blocker_id == current_in_progress_id:
            return True
        if tasks_mod.task_exists(db, blocker_id):
            return True
    return False


def tasks_unblocked_by(
    db: sqlite3.Connection,
    finished_id: int,
    current_in_progress_id: int | None,
) -> list[Task]:
    """Queued tasks that become actionable once ``finished_id`` is gone.

    Call before the finishing task leaves the store or the state row.
    ``finished_id`` and ``current_in_progress_id`` are both dropped from
    each candidate's blockers; whatever remains must name no queued task.
    """
    excluded = {finished_id, current_in_progress_id}
    unblocked = []
    for task in tasks_mod.search_tasks(db):
        if finished_id not in task.blocked_by:
            continue
        remaining = [b for b in _live_blockers(task) if b not in excluded]
        if not any(tasks_mod.task_exists(db, b) for b in remaining):
            unblocked.append(task)
    return unblocked


def remove_blocker_everywhere(db: sqlite3.Connection, finished_id: int) -> int:
    """Drop ``finished_id`` from every queued task's blocked_by. Returns the count."""
    updated = 0
    with transaction(db):
        for task in tasks_mod.search_tasks(db):
            if finished_id in task.blocked_by:
                tasks_mod.set_blocked_by(
                    db, task.id, [b for b in task.blocked_by if b != finished_id]
                )
                updated += 1
    return updated


def get_blocked_tasks(
    db: sqlite3.Connection,
    current_in_progress_id: int | None,
    current_task_text: str | None = None,
) -> list[BlockedTask]:
    """All blocked tasks, in queue order, with details on each blocker."""
    result = []
    for task in tasks_mod.search_tasks(db):
        if not task.blocked_by:
            continue
        details = []
        for blocker_id in task.blocked_by:
            blocker = tasks_mod.get_task(db, blocker_id) if blocker_id != task.id else None
            in_progress = (
                current_in_progress_id is not None and blocker_id == current_in_progress_id
            )
            if blocker:
                text = blocker.task
            elif in_progress:
                text = current_task_text or "In progress"
            else:
                text = "Completed/Removed"
            details.append(
                BlockerDetail(id=blocker_id, task=text, exists=blocker is not None or in_progress)
            )
        if any(d.exists for d in details):
            result.append(BlockedTask(task=task, blockers=details))
    return result
