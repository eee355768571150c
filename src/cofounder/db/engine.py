"""SQLite database connection management and schema initialization."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path

SCHEMA = """
CREATE TABLE IF NOT EXISTS task_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task TEXT NOT NULL,
    context TEXT,
    priority INTEGER NOT NULL DEFAULT 5 CHECK (priority BETWEEN 0 AND 10),
    estimated_minutes INTEGER,
    project TEXT,
    added_at TEXT NOT NULL DEFAULT (datetime('now')),
    added_by TEXT,
    blocked_by TEXT NOT NULL DEFAULT '[]',
    due_date TEXT,
    tags TEXT NOT NULL DEFAULT '[]',
    notion_page_id TEXT
);

CREATE INDEX IF NOT EXISTS idx_task_queue_priority ON task_queue(priority);
CREATE INDEX IF NOT EXISTS idx_task_queue_due_date ON task_queue(due_date);

CREATE TABLE IF NOT EXISTS founder_state (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    goal TEXT NOT NULL DEFAULT '',
    goal_metric TEXT NOT NULL DEFAULT '',
    current_revenue TEXT,
    subscribers INTEGER DEFAULT 0,
    current_task TEXT,
    current_task_context TEXT,
    current_task_id INTEGER,
    current_task_assigned_at TEXT,
    streak_days INTEGER NOT NULL DEFAULT 0 CHECK (streak_days >= 0),
    last_checkin TEXT,
    last_completion TEXT,
    last_progress_update TEXT,
    status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'blocked', 'paused'))
);

CREATE TABLE IF NOT EXISTS completed_tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task TEXT NOT NULL,
    context TEXT,
    completed_at TEXT NOT NULL DEFAULT (datetime('now')),
    time_taken_minutes INTEGER,
    notes TEXT,
    project TEXT
);

CREATE INDEX IF NOT EXISTS idx_completed_tasks_date ON completed_tasks(completed_at);

CREATE TABLE IF NOT EXISTS blockers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    blocker TEXT NOT NULL,
    context TEXT,
    identified_at TEXT NOT NULL DEFAULT (datetime('now')),
    resolved_at TEXT,
    resolution TEXT
);

CREATE TABLE IF NOT EXISTS dispatch_jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    slack_message_ts TEXT,
    slack_channel_id TEXT,
    slack_thread_ts TEXT,
    agent TEXT NOT NULL CHECK (agent IN ('claude', 'gemini', 'qwen', 'cline')),
    target TEXT NOT NULL DEFAULT 'hetzner' CHECK (target IN ('hetzner', 'mac', 'cold_storage')),
    repo_path TEXT,
    task TEXT NOT NULL,
    track_as_task INTEGER NOT NULL DEFAULT 0,
    cofounder_task_id INTEGER,
    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'running', 'completed', 'failed')),
    result TEXT,
    error_message TEXT,
    dispatched_by TEXT,
    parent_dispatch_id INTEGER REFERENCES dispatch_jobs(id),
    depth INTEGER NOT NULL DEFAULT 0 CHECK (depth >= 0),
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    started_at TEXT,
    completed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_dispatch_jobs_status ON dispatch_jobs(status);
CREATE INDEX IF NOT EXISTS idx_dispatch_jobs_target ON dispatch_jobs(target);
CREATE INDEX IF NOT EXISTS idx_dispatch_jobs_slack_thread ON dispatch_jobs(slack_thread_ts);

CREATE TABLE IF NOT EXISTS work_sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    started_at TEXT NOT NULL DEFAULT (datetime('now')),
    ended_at TEXT,
    planned_duration_minutes INTEGER,
    tasks_completed INTEGER NOT NULL DEFAULT 0,
    notes TEXT,
    learnings TEXT,
    energy_level TEXT CHECK (energy_level IN ('high', 'medium', 'low'))
);

CREATE TABLE IF NOT EXISTS task_notes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id INTEGER NOT NULL,
    task_completed INTEGER NOT NULL DEFAULT 0,
    note TEXT NOT NULL,
    note_type TEXT NOT NULL DEFAULT 'progress'
        CHECK (note_type IN ('progress', 'attempt', 'blocker', 'learning')),
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    created_by TEXT
);

CREATE INDEX IF NOT EXISTS idx_task_notes_task ON task_notes(task_id, task_completed);

CREATE TABLE IF NOT EXISTS daily_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    date TEXT NOT NULL UNIQUE,
    tasks_completed INTEGER NOT NULL DEFAULT 0,
    tasks_assigned INTEGER NOT NULL DEFAULT 0,
    checkins INTEGER NOT NULL DEFAULT 0,
    notes TEXT,
    mood TEXT
);

CREATE TABLE IF NOT EXISTS decisions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    decision TEXT NOT NULL,
    rationale TEXT NOT NULL,
    alternatives TEXT,
    project TEXT,
    impact TEXT,
    decided_at TEXT NOT NULL DEFAULT (datetime('now')),
    decided_by TEXT
);

CREATE TABLE IF NOT EXISTS learnings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    content TEXT NOT NULL,
    category TEXT,
    tags TEXT NOT NULL DEFAULT '[]',
    source TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    created_by TEXT
);

CREATE TABLE IF NOT EXISTS issues (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type TEXT NOT NULL CHECK (type IN ('bug', 'feature')),
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    reported_by TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'open'
        CHECK (status IN ('open', 'in_progress', 'resolved', 'wontfix')),
    priority INTEGER NOT NULL DEFAULT 5 CHECK (priority BETWEEN 1 AND 10),
    resolution TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""


def _run_migrations(conn: sqlite3.Connection):
    """Run schema migrations idempotently."""
    migrations = [
        "ALTER TABLE founder_state ADD COLUMN current_task_snapshot TEXT",
        "ALTER TABLE blockers ADD COLUMN task_id INTEGER",
    ]
    for sql in migrations:
        try:
            conn.execute(sql)
        except sqlite3.OperationalError:
            pass  # Column already exists

    conn.execute("INSERT OR IGNORE INTO founder_state (id) VALUES (1)")
    conn.commit()


def init_db(db_path: Path) -> sqlite3.Connection:
    """Initialize the database, creating tables and the state row if needed."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.executescript(SCHEMA)
    _run_migrations(conn)
    conn.commit()
    return conn


@contextmanager
def get_db(db_path: Path):
    """Context manager for database connections."""
    conn = init_db(db_path)
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(db: sqlite3.Connection):
    """Run a block inside one write transaction.

    Takes the write lock up front (BEGIN IMMEDIATE) so check-then-write
    sequences cannot interleave with another writer. Nested use joins the
    outer transaction; only the outermost block commits or rolls back.
    """
    if db.in_transaction:
        yield db
        return

    db.execute("BEGIN IMMEDIATE")
    try:
        yield db
    except BaseException:
        db.rollback()
        raise
    else:
        db.commit()
