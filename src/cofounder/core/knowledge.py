"""Decision and learning logs, plus issues reported against the tool itself."""

import json
import sqlite3

from cofounder.core.errors import NotFoundError, ValidationError
from cofounder.core.tasks import parse_dt
from cofounder.db.engine import transaction
from cofounder.db.models import ISSUE_STATUSES, ISSUE_TYPES, Decision, Issue, Learning


def _require_text(value: str | None, field_name: str) -> str:
    if not value or not value.strip():
        raise ValidationError(f"{field_name.capitalize()} must not be empty", field_name)
    return value.strip()


# ── Decisions ────────────────────────────────────────────────────────────────


def log_decision(
    db: sqlite3.Connection,
    decision: str,
    rationale: str,
    alternatives: str | None = None,
    project: str | None = None,
    impact: str | None = None,
    decided_by: str | None = None,
) -> Decision:
    decision = _require_text(decision, "decision")
    rationale = _require_text(rationale, "rationale")
    with transaction(db):
        cur = db.execute(
            """INSERT INTO decisions (decision, rationale, alternatives, project, impact, decided_by)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (decision, rationale, alternatives, project, impact, decided_by),
        )
    row = db.execute("SELECT * FROM decisions WHERE id = ?", (cur.lastrowid,)).fetchone()
    return _row_to_decision(row)


def list_decisions(
    db: sqlite3.Connection, project: str | None = None, limit: int = 20
) -> list[Decision]:
    """Decisions, newest first."""
    query = "SELECT * FROM decisions"
    params: list = []
    if project:
        query += " WHERE project = ?"
        params.append(project)
    query += " ORDER BY decided_at DESC, id DESC LIMIT ?"
    params.append(limit)
    return [_row_to_decision(r) for r in db.execute(query, params).fetchall()]


# ── Learnings ────────────────────────────────────────────────────────────────


def log_learning(
    db: sqlite3.Connection,
    content: str,
    category: str | None = None,
    tags: list[str] | None = None,
    source: str | None = None,
    created_by: str | None = None,
) -> Learning:
    content = _require_text(content, "content")
    with transaction(db):
        cur = db.execute(
            """INSERT INTO learnings (content, category, tags, source, created_by)
               VALUES (?, ?, ?, ?, ?)""",
            (content, category, json.dumps(tags or []), source, created_by),
        )
    row = db.execute("SELECT * FROM learnings WHERE id = ?", (cur.lastrowid,)).fetchone()
    return _row_to_learning(row)


def list_learnings(
    db: sqlite3.Connection,
    category: str | None = None,
    tag: str | None = None,
    query: str | None = None,
    limit: int = 20,
) -> list[Learning]:
    """Learnings, newest first.

    ``query`` matches content or category case-insensitively; ``tag`` must
    be one of the learning's tags exactly.
    """
    sql = "SELECT * FROM learnings WHERE 1=1"
    params: list = []
    if category:
        sql += " AND category = ?"
        params.append(category)
    if query:
        sql += " AND (LOWER(content) LIKE ? OR LOWER(COALESCE(category, '')) LIKE ?)"
        pattern = f"%{query.lower()}%"
        params.extend([pattern, pattern])
    sql += " ORDER BY created_at DESC, id DESC"
    learnings = [_row_to_learning(r) for r in db.execute(sql, params).fetchall()]
    if tag:
        learnings = [item for item in learnings if tag in item.tags]
    return learnings[:limit]


# ── Issues ───────────────────────────────────────────────────────────────────


def _validate_priority(priority: int):
    if not 1 <= priority <= 10:
        raise ValidationError("Issue priority must be between 1 and 10", "priority")


def report_issue(
    db: sqlite3.Connection,
    issue_type: str,
    title: str,
    description: str,
    reported_by: str,
    priority: int = 5,
) -> Issue:
    if issue_type not in ISSUE_TYPES:
        raise ValidationError(f"Issue type must be one of: {', '.join(ISSUE_TYPES)}", "type")
    title = _require_text(title, "title")
    description = _require_text(description, "description")
    reported_by = _require_text(reported_by, "reported_by")
    _validate_priority(priority)
    with transaction(db):
        cur = db.execute(
            """INSERT INTO issues (type, title, description, reported_by, priority)
               VALUES (?, ?, ?, ?, ?)""",
            (issue_type, title, description, reported_by, priority),
        )
    return require_issue(db, cur.lastrowid)


def get_issue(db: sqlite3.Connection, issue_id: int) -> Issue | None:
    row = db.execute("SELECT * FROM issues WHERE id = ?", (issue_id,)).fetchone()
    return _row_to_issue(row) if row else None


def require_issue(db: sqlite3.Connection, issue_id: int) -> Issue:
    issue = get_issue(db, issue_id)
    if not issue:
        raise NotFoundError("Issue", issue_id)
    return issue


def list_issues(
    db: sqlite3.Connection,
    status: str | None = None,
    issue_type: str | None = None,
    limit: int = 10,
) -> list[Issue]:
    """Issues, highest priority first, then newest."""
    query = "SELECT * FROM issues WHERE 1=1"
    params: list = []
    if status:
        query += " AND status = ?"
        params.append(status)
    if issue_type:
        query += " AND type = ?"
        params.append(issue_type)
    query += " ORDER BY priority DESC, created_at DESC, id DESC LIMIT ?"
    params.append(limit)
    return [_row_to_issue(r) for r in db.execute(query, params).fetchall()]


_UNSET = object()


def update_issue(
    db: sqlite3.Connection,
    issue_id: int,
    status: str | None = None,
    resolution=_UNSET,
    priority: int | None = None,
) -> tuple[Issue, Issue]:
    """Change status, resolution or priority. Returns (before, after)."""
    updates: dict = {}
    if status is not None:
        if status not in ISSUE_STATUSES:
            raise ValidationError(
                f"Issue status must be one of: {', '.join(ISSUE_STATUSES)}", "status"
            )
        updates["status"] = status
    if resolution is not _UNSET:
        updates["resolution"] = resolution
    if priority is not None:
        _validate_priority(priority)
        updates["priority"] = priority
    if not updates:
        raise ValidationError("At least one field to update must be provided")

    with transaction(db):
        before = require_issue(db, issue_id)
        assignments = ", ".join(f"{key} = ?" for key in updates)
        db.execute(
            f"UPDATE issues SET {assignments}, updated_at = datetime('now') WHERE id = ?",
            [*updates.values(), issue_id],
        )
    return before, require_issue(db, issue_id)


def issue_stats(db: sqlite3.Connection) -> dict:
    row = db.execute(
        """SELECT
               SUM(CASE WHEN status = 'open' THEN 1 ELSE 0 END) AS open,
               SUM(CASE WHEN status = 'in_progress' THEN 1 ELSE 0 END) AS in_progress,
               SUM(CASE WHEN status = 'resolved' THEN 1 ELSE 0 END) AS resolved,
               SUM(CASE WHEN type = 'bug' THEN 1 ELSE 0 END) AS bugs,
               SUM(CASE WHEN type = 'feature' THEN 1 ELSE 0 END) AS features
           FROM issues"""
    ).fetchone()
    return {key: row[key] or 0 for key in ("open", "in_progress", "resolved", "bugs", "features")}


# ── Row mapping ───────────────────────────────────────────────────────────────


def _row_to_decision(row: sqlite3.Row) -> Decision:
    return Decision(
        id=row["id"],
        decision=row["decision"],
        rationale=row["rationale"],
        alternatives=row["alternatives"],
        project=row["project"],
        impact=row["impact"],
        decided_at=parse_dt(row["decided_at"]),
        decided_by=row["decided_by"],
    )


def _row_to_learning(row: sqlite3.Row) -> Learning:
    return Learning(
        id=row["id"],
        content=row["content"],
        category=row["category"],
        tags=json.loads(row["tags"] or "[]"),
        source=row["source"],
        created_at=parse_dt(row["created_at"]),
        created_by=row["created_by"],
    )


def _row_to_issue(row: sqlite3.Row) -> Issue:
    return Issue(
        id=row["id"],
        type=row["type"],
        title=row["title"],
        description=row["description"],
        reported_by=row["reported_by"],
        status=row["status"],
        priority=row["priority"],
        resolution=row["resolution"],
        created_at=parse_dt(row["created_at"]),
        updated_at=parse_dt(row["updated_at"]),
    )
