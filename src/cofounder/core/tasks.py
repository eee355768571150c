"""Task store: the queue of tasks that are neither claimed nor done."""

import json
import logging
import sqlite3
from datetime import date, datetime

from cofounder.core import daily_log
from cofounder.core.errors import NotFoundError, ValidationError
from cofounder.db.engine import transaction
from cofounder.db.models import DEFAULT_PRIORITY, MAX_PRIORITY, MIN_PRIORITY, PROJECTS, Task

logger = logging.getLogger(__name__)

# Canonical queue order: most urgent first, then first-in first-out.
QUEUE_ORDER = "ORDER BY priority DESC, added_at ASC, id ASC"

UPDATABLE_FIELDS = (
    "task",
    "context",
    "estimated_minutes",
    "project",
    "blocked_by",
    "due_date",
    "tags",
)


# ── Validation ────────────────────────────────────────────────────────────────


def _check_priority(priority: int) -> int:
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise ValidationError("Priority must be an integer", "priority")
    if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
        raise ValidationError(
            f"Priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}", "priority"
        )
    return priority


def _check_project(project: str | None) -> str | None:
    if project is not None and project not in PROJECTS:
        raise ValidationError(
            f"Unknown project '{project}'. Valid: {', '.join(PROJECTS)}", "project"
        )
    return project


def _check_description(text: str) -> str:
    if not text or not text.strip():
        raise ValidationError("Task description must not be empty", "task")
    return text.strip()


def _normalize_ids(ids) -> list[int]:
    """De-duplicate blocking ids, keeping first-seen order."""
    result: list[int] = []
    for raw in ids or []:
        if isinstance(raw, bool):
            raise ValidationError(f"Invalid task id in blocked_by: {raw!r}", "blocked_by")
        try:
            value = int(raw)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid task id in blocked_by: {raw!r}", "blocked_by")
        if value not in result:
            result.append(value)
    return result


def _normalize_tags(tags) -> list[str]:
    result: list[str] = []
    for tag in tags or []:
        tag = str(tag).strip()
        if tag and tag not in result:
            result.append(tag)
    return result


def _coerce_due_date(value) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day).isoformat()
    try:
        return datetime.fromisoformat(str(value)).isoformat()
    except ValueError:
        raise ValidationError(f"Invalid due date: {value!r}", "due_date")


# ── Queries ───────────────────────────────────────────────────────────────────


def get_task(db: sqlite3.Connection, task_id: int) -> Task | None:
    """Get a queued task by ID."""
    row = db.execute("SELECT * FROM task_queue WHERE id = ?", (task_id,)).fetchone()
    if not row:
        return None
    return _row_to_task(row)


def require_task(db: sqlite3.Connection, task_id: int) -> Task:
    task = get_task(db, task_id)
    if not task:
        raise NotFoundError("Task", task_id)
    return task


def task_exists(db: sqlite3.Connection, task_id: int) -> bool:
    row = db.execute("SELECT 1 FROM task_queue WHERE id = ?", (task_id,)).fetchone()
    return row is not None


def queue_depth(db: sqlite3.Connection) -> int:
    return db.execute("SELECT COUNT(*) FROM task_queue").fetchone()[0]


def search_tasks(
    db: sqlite3.Connection,
    query: str = "",
    project: str | None = None,
    tag: str | None = None,
) -> list[Task]:
    """Case-insensitive search over description and context, in queue order."""
    sql = "SELECT * FROM task_queue WHERE 1=1"
    params: list = []
    if query:
        like = f"%{query.lower()}%"
        sql += " AND (LOWER(task) LIKE ? OR LOWER(COALESCE(context, '')) LIKE ?)"
        params += [like, like]
    if project:
        sql += " AND project = ?"
        params.append(project)
    sql += f" {QUEUE_ORDER}"

    tasks = [_row_to_task(r) for r in db.execute(sql, params).fetchall()]
    if tag:
        tasks = [t for t in tasks if tag in t.tags]
    return tasks


# ── Mutations ─────────────────────────────────────────────────────────────────


def add_task(
    db: sqlite3.Connection,
    task: str,
    priority: int = DEFAULT_PRIORITY,
    project: str | None = None,
    context: str | None = None,
    added_by: str | None = None,
    blocked_by: list[int] | None = None,
    due_date=None,
    tags: list[str] | None = None,
    estimated_minutes: int | None = None,
) -> Task:
    """Add a task to the queue."""
    description = _check_description(task)
    _check_priority(priority)
    _check_project(project)
    blockers = _normalize_ids(blocked_by)
    due = _coerce_due_date(due_date)
    labels = _normalize_tags(tags)

    with transaction(db):
        cur = db.execute(
            """INSERT INTO task_queue
               (task, context, priority, estimated_minutes, project, added_by,
                blocked_by, due_date, tags)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                description,
                context,
                priority,
                estimated_minutes,
                project,
                added_by,
                json.dumps(blockers),
                due,
                json.dumps(labels),
            ),
        )
        task_id = cur.lastrowid
        if task_id in blockers:
            raise ValidationError(f"Task {task_id} cannot block itself", "blocked_by")
        daily_log.increment(db, "tasks_assigned")

    logger.info("Added task #%s (P%s): %s", task_id, priority, description)
    return get_task(db, task_id)


def add_tasks(db: sqlite3.Connection, items: list[dict], added_by: str | None = None) -> list[Task]:
    """Add several tasks at once. One invalid item rejects the whole batch."""
    if not items:
        raise ValidationError("At least one task must be provided", "tasks")

    created = []
    with transaction(db):
        for item in items:
            if "task" not in item:
                raise ValidationError("Each item needs a 'task' description", "task")
            created.append(
                add_task(
                    db,
                    item["task"],
                    priority=item.get("priority", DEFAULT_PRIORITY),
                    project=item.get("project"),
                    context=item.get("context"),
                    added_by=item.get("added_by", added_by),
                    blocked_by=item.get("blocked_by"),
                    due_date=item.get("due_date"),
                    tags=item.get("tags"),
                    estimated_minutes=item.get("estimated_minutes"),
                )
            )
    return [get_task(db, t.id) for t in created]


def update_task(db: sqlite3.Connection, task_id: int, **updates) -> Task:
    """Partially update a queued task's details."""
    unknown = set(updates) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
    if not updates:
        raise ValidationError("At least one field to update must be provided")

    values: dict = {}
    for key, value in updates.items():
        if key == "task":
            values[key] = _check_description(value)
        elif key == "project":
            values[key] = _check_project(value)
        elif key == "blocked_by":
            ids = _normalize_ids(value)
            if task_id in ids:
                raise ValidationError(f"Task {task_id} cannot block itself", "blocked_by")
            values[key] = json.dumps(ids)
        elif key == "tags":
            values[key] = json.dumps(_normalize_tags(value))
        elif key == "due_date":
            values[key] = _coerce_due_date(value)
        else:
            values[key] = value

    with transaction(db):
        require_task(db, task_id)
        set_parts = [f"{k} = ?" for k in values]
        db.execute(
            f"UPDATE task_queue SET {', '.join(set_parts)} WHERE id = ?",
            list(values.values()) + [task_id],
        )
    return get_task(db, task_id)


def reprioritize(db: sqlite3.Connection, task_id: int, priority: int) -> Task:
    """Change a queued task's priority (0-10, higher is more urgent)."""
    _check_priority(priority)
    with transaction(db):
        require_task(db, task_id)
        db.execute("UPDATE task_queue SET priority = ? WHERE id = ?", (priority, task_id))
    return get_task(db, task_id)


def delete_task(db: sqlite3.Connection, task_id: int) -> Task:
    """Delete a queued task. Other tasks keep their (now dangling) references."""
    with transaction(db):
        task = require_task(db, task_id)
        remove_task(db, task_id)
    logger.info("Deleted task #%s", task_id)
    return task


def remove_task(db: sqlite3.Connection, task_id: int):
    with transaction(db):
        db.execute("DELETE FROM task_queue WHERE id = ?", (task_id,))


def set_blocked_by(db: sqlite3.Connection, task_id: int, blocked_by: list[int]):
    with transaction(db):
        db.execute(
            "UPDATE task_queue SET blocked_by = ? WHERE id = ?",
            (json.dumps(list(blocked_by)), task_id),
        )


def restore_task(db: sqlite3.Connection, task: Task):
    """Put a previously removed task back in the queue under its original id."""
    with transaction(db):
        db.execute(
            """INSERT INTO task_queue
               (id, task, context, priority, estimated_minutes, project, added_at,
                added_by, blocked_by, due_date, tags, notion_page_id)
               VALUES (?, ?, ?, ?, ?, ?, COALESCE(?, datetime('now')), ?, ?, ?, ?, ?)""",
            (
                task.id,
                task.task,
                task.context,
                task.priority,
                task.estimated_minutes,
                task.project,
                task.added_at.isoformat(sep=" ") if task.added_at else None,
                task.added_by,
                json.dumps(task.blocked_by),
                task.due_date.isoformat() if task.due_date else None,
                json.dumps(task.tags),
                task.notion_page_id,
            ),
        )


# ── Snapshots ─────────────────────────────────────────────────────────────────


def task_to_snapshot(task: Task) -> dict:
    return {
        "id": task.id,
        "task": task.task,
        "context": task.context,
        "priority": task.priority,
        "estimated_minutes": task.estimated_minutes,
        "project": task.project,
        "added_at": task.added_at.isoformat(sep=" ") if task.added_at else None,
        "added_by": task.added_by,
        "due_date": task.due_date.isoformat() if task.due_date else None,
        "tags": list(task.tags),
        "blocked_by": list(task.blocked_by),
        "notion_page_id": task.notion_page_id,
    }


def snapshot_to_task(data: dict) -> Task:
    return Task(
        id=data["id"],
        task=data["task"],
        context=data.get("context"),
        priority=data.get("priority", DEFAULT_PRIORITY),
        estimated_minutes=data.get("estimated_minutes"),
        project=data.get("project"),
        added_at=parse_dt(data.get("added_at")),
        added_by=data.get("added_by"),
        due_date=parse_dt(data.get("due_date")),
        tags=list(data.get("tags") or []),
        blocked_by=list(data.get("blocked_by") or []),
        notion_page_id=data.get("notion_page_id"),
    )


# ── Row mapping ───────────────────────────────────────────────────────────────


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        task=row["task"],
        context=row["context"],
        priority=row["priority"],
        estimated_minutes=row["estimated_minutes"],
        project=row["project"],
        added_at=parse_dt(row["added_at"]),
        added_by=row["added_by"],
        due_date=parse_dt(row["due_date"]),
        tags=json.loads(row["tags"] or "[]"),
        blocked_by=json.loads(row["blocked_by"] or "[]"),
        notion_page_id=row["notion_page_id"],
    )


def parse_dt(val: str | None) -> datetime | None:
    """Parse a stored ISO timestamp; NULL stays None."""
    if val is None:
        return None
    return datetime.fromisoformat(val)
