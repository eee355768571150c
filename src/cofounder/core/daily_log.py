"""Per-day activity counters and mood, keyed by UTC date."""

import sqlite3
from datetime import date, datetime, timezone

from cofounder.core.errors import ValidationError
from cofounder.db.engine import transaction
from cofounder.db.models import DailyLog

_COUNTERS = ("tasks_completed", "tasks_assigned", "checkins")


def today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def get_or_create_day(db: sqlite3.Connection, day: str | date | None = None) -> DailyLog:
    day = _day(day)
    with transaction(db):
        db.execute("INSERT OR IGNORE INTO daily_log (date) VALUES (?)", (day,))
    return get_day(db, day)


def get_day(db: sqlite3.Connection, day: str | date | None = None) -> DailyLog | None:
    row = db.execute("SELECT * FROM daily_log WHERE date = ?", (_day(day),)).fetchone()
    return _row_to_log(row) if row else None


def increment(db: sqlite3.Connection, counter: str, day: str | date | None = None) -> DailyLog:
    """Bump one of today's counters, creating the day's row on first use."""
    if counter not in _COUNTERS:
        raise ValidationError(f"Unknown daily counter: {counter}", "counter")
    day = _day(day)
    with transaction(db):
        db.execute("INSERT OR IGNORE INTO daily_log (date) VALUES (?)", (day,))
        db.execute(f"UPDATE daily_log SET {counter} = {counter} + 1 WHERE date = ?", (day,))
    return get_day(db, day)


def log_mood(
    db: sqlite3.Connection,
    mood: str,
    notes: str | None = None,
    day: str | date | None = None,
) -> DailyLog:
    """Record today's mood. Existing notes are kept when none are given."""
    if not mood or not mood.strip():
        raise ValidationError("Mood must not be empty", "mood")
    day = _day(day)
    with transaction(db):
        db.execute("INSERT OR IGNORE INTO daily_log (date) VALUES (?)", (day,))
        db.execute(
            "UPDATE daily_log SET mood = ?, notes = COALESCE(?, notes) WHERE date = ?",
            (mood.strip(), notes, day),
        )
    return get_day(db, day)


def recent_days(db: sqlite3.Connection, days: int = 7) -> list[DailyLog]:
    rows = db.execute(
        "SELECT * FROM daily_log ORDER BY date DESC LIMIT ?", (days,)
    ).fetchall()
    return [_row_to_log(r) for r in rows]


def _day(day: str | date | None) -> str:
    if day is None:
        return today()
    if isinstance(day, date):
        return day.isoformat()
    return day


def _row_to_log(row: sqlite3.Row) -> DailyLog:
    return DailyLog(
        id=row["id"],
        date=row["date"],
        tasks_completed=row["tasks_completed"],
        tasks_assigned=row["tasks_assigned"],
        checkins=row["checkins"],
        notes=row["notes"],
        mood=row["mood"],
    )
