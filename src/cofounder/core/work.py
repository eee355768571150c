"""Work state transitions: claim, complete, report blocked, mark done.

Each transition runs inside a single write transaction, so a rejected call
leaves the queue and the state row exactly as they were.
"""

import logging
import sqlite3
from dataclasses import dataclass, field

from cofounder.core import daily_log, history, knowledge, sessions
from cofounder.core import notes as notes_mod
from cofounder.core import tasks as tasks_mod
from cofounder.core.blocking import remove_blocker_everywhere, tasks_unblocked_by
from cofounder.core.errors import ConflictError, NotFoundError, ValidationError
from cofounder.core.queue import next_task, next_unblocked_task
from cofounder.core.state import (
    assign_task,
    clear_current_task,
    get_state,
    increment_streak,
    record_checkin,
    set_status,
)
from cofounder.db.engine import transaction
from cofounder.db.models import (
    Blocker,
    CompletedTask,
    Learning,
    Task,
    TaskNote,
    WorkSession,
    WorkState,
)

logger = logging.getLogger(__name__)


@dataclass
class ClaimResult:
    task: Task
    state: WorkState


@dataclass
class CompletionResult:
    completed: CompletedTask
    unblocked: list[Task] = field(default_factory=list)
    next_task: Task | None = None
    state: WorkState | None = None


@dataclass
class BlockedResult:
    blocker: Blocker
    skipped_task_id: int | None = None
    next_task: Task | None = None
    state: WorkState | None = None


@dataclass
class MarkDoneResult:
    task: Task
    completed: CompletedTask
    completed_by: str
    was_current: bool = False
    unblocked: list[Task] = field(default_factory=list)
    next_task: Task | None = None
    state: WorkState | None = None


@dataclass
class StartWorkResult:
    task: Task | None
    notes: list[TaskNote]
    session: WorkSession
    session_started: bool
    state: WorkState


@dataclass
class SessionSummary:
    session: WorkSession
    completed: list[CompletedTask] = field(default_factory=list)
    learnings: list[Learning] = field(default_factory=list)
    next_task: Task | None = None


def _take(db: sqlite3.Connection, task: Task) -> WorkState:
    """Move a queued task into the state row as the current task."""
    tasks_mod.remove_task(db, task.id)
    return assign_task(
        db, task.task, task.context, task.id, snapshot=tasks_mod.task_to_snapshot(task)
    )


def _advance(db: sqlite3.Connection, exclude: tuple[int, ...] = ()) -> Task | None:
    """Claim the next unblocked task, or go idle if there is none."""
    candidate = next_unblocked_task(db, None, exclude=exclude)
    if candidate:
        _take(db, candidate)
        logger.info("Assigned task #%s: %s", candidate.id, candidate.task)
        return candidate
    clear_current_task(db)
    set_status(db, "active")
    logger.info("Queue has no unblocked work; state is idle")
    return None


def _current_as_task(state: WorkState) -> Task:
    if state.current_task_snapshot:
        return tasks_mod.snapshot_to_task(state.current_task_snapshot)
    return Task(
        id=state.current_task_id,
        task=state.current_task,
        context=state.current_task_context,
    )


def claim_task(db: sqlite3.Connection, task_id: int | None = None) -> ClaimResult:
    """Claim a task as the current work item.

    Without an id the head of the queue is claimed, blocked or not.
    """
    with transaction(db):
        state = get_state(db)
        if not state.is_idle:
            raise ConflictError(
                f"Task #{state.current_task_id} is already in progress: {state.current_task}",
                {"current_task_id": state.current_task_id},
            )

        if task_id is None:
            task = next_task(db)
            if not task:
                raise NotFoundError("Task", "queue empty")
        else:
            task = tasks_mod.require_task(db, task_id)

        state = _take(db, task)

    logger.info("Claimed task #%s: %s", task.id, task.task)
    return ClaimResult(task=task, state=state)


def complete_task(
    db: sqlite3.Connection,
    task_id: int,
    time_taken_minutes: int | None = None,
    notes: str | None = None,
) -> CompletionResult:
    """Complete the current task and move on to the next unblocked one."""
    with transaction(db):
        state = get_state(db)
        if state.is_idle:
            raise ConflictError("No task is currently claimed")
        if task_id != state.current_task_id:
            raise ValidationError(
                f"Task #{task_id} is not the current task (current is #{state.current_task_id})",
                "task_id",
            )

        current = _current_as_task(state)
        unblocked = tasks_unblocked_by(db, task_id, state.current_task_id)
        completed = history.log_completion(
            db,
            current.task,
            current.context,
            time_taken_minutes,
            notes,
            current.project,
        )
        remove_blocker_everywhere(db, task_id)
        increment_streak(db)
        daily_log.increment(db, "tasks_completed")
        sessions.increment_session_tasks(db)
        clear_current_task(db)
        following = _advance(db)
        state = get_state(db)

    logger.info(
        "Completed task #%s (streak %s, %s unblocked)",
        task_id, state.streak_days, len(unblocked),
    )
    return CompletionResult(
        completed=completed, unblocked=unblocked, next_task=following, state=state
    )


def report_blocked(
    db: sqlite3.Connection,
    blocker: str,
    context: str | None = None,
    skip_to_next: bool = True,
) -> BlockedResult:
    """Log a blocker and optionally set the current task aside.

    A skipped task goes back into the queue under its original id, so it is
    never lost and never completable while not claimed.
    """
    with transaction(db):
        state = get_state(db)
        logged = history.log_blocker(db, blocker, context, state.current_task_id)

        if not skip_to_next or state.current_task_id is None:
            set_status(db, "blocked")
            logger.info("Blocker #%s logged; current task kept", logged.id)
            return BlockedResult(blocker=logged, state=get_state(db))

        skipped = _current_as_task(state)
        tasks_mod.restore_task(db, skipped)
        clear_current_task(db)
        following = _advance(db, exclude=(skipped.id,))
        if following is None:
            set_status(db, "blocked")
        state = get_state(db)

    logger.info(
        "Blocker #%s logged; task #%s returned to queue", logged.id, skipped.id
    )
    return BlockedResult(
        blocker=logged, skipped_task_id=skipped.id, next_task=following, state=state
    )


def mark_done(
    db: sqlite3.Connection,
    task_id: int,
    notes: str,
    completed_by: str = "unknown",
) -> MarkDoneResult:
    """Record a task finished outside the system. The streak is not touched."""
    if not notes or not notes.strip():
        raise ValidationError("Notes must not be empty", "notes")

    with transaction(db):
        state = get_state(db)
        was_current = state.current_task_id is not None and task_id == state.current_task_id
        task = tasks_mod.get_task(db, task_id)
        if task is None:
            if not was_current:
                raise NotFoundError("Task", task_id)
            task = _current_as_task(state)

        unblocked = tasks_unblocked_by(db, task_id, task_id if was_current else None)
        if not was_current and state.current_task_id is not None:
            # the task still in progress keeps blocking its dependents
            unblocked = [t for t in unblocked if state.current_task_id not in t.blocked_by]
        completed = history.log_completion(
            db,
            task.task,
            task.context,
            None,
            f"[Marked done by {completed_by}] {notes}",
            task.project,
        )
        tasks_mod.remove_task(db, task_id)
        remove_blocker_everywhere(db, task_id)

        following = None
        if was_current:
            clear_current_task(db)
            following = _advance(db)
        state = get_state(db)

    logger.info("Task #%s marked done by %s", task_id, completed_by)
    return MarkDoneResult(
        task=task,
        completed=completed,
        completed_by=completed_by,
        was_current=was_current,
        unblocked=unblocked,
        next_task=following,
        state=state,
    )


def resolve_blocker(db: sqlite3.Connection, blocker_id: int, resolution: str) -> Blocker:
    """Resolve a logged blocker. A blocked status returns to active."""
    with transaction(db):
        resolved = history.resolve_blocker(db, blocker_id, resolution)
        if get_state(db).status == "blocked" and not history.list_blockers(db):
            set_status(db, "active")
    logger.info("Resolved blocker #%s", blocker_id)
    return resolved


def check_in(db: sqlite3.Connection) -> WorkState:
    """Record a check-in on the state row and in today's log."""
    with transaction(db):
        daily_log.increment(db, "checkins")
        return record_checkin(db)


def start_work(
    db: sqlite3.Connection,
    task_id: int | None = None,
    planned_minutes: int | None = None,
    energy_level: str | None = None,
) -> StartWorkResult:
    """Check in, make sure a task is in hand and a session is running.

    A task already in progress is kept and ``task_id`` is ignored. Otherwise
    the requested task, or the head of the queue, is claimed. An empty queue
    is not an error; the session still starts.
    """
    with transaction(db):
        state = check_in(db)
        if not state.is_idle:
            task = _current_as_task(state)
        else:
            task = tasks_mod.require_task(db, task_id) if task_id is not None else next_task(db)
            if task is not None:
                _take(db, task)

        session = sessions.get_active_session(db)
        started = session is None
        if started:
            session = sessions.start_session(db, planned_minutes, energy_level)

        task_notes = notes_mod.get_task_notes(db, task.id) if task and task.id else []
        state = get_state(db)

    if task:
        logger.info("Working on task #%s in session #%s", task.id, session.id)
    return StartWorkResult(
        task=task, notes=task_notes, session=session, session_started=started, state=state
    )


def finish_session(
    db: sqlite3.Connection,
    notes: str | None = None,
    learnings: str | None = None,
) -> SessionSummary:
    """End the active session and gather what happened during it."""
    with transaction(db):
        ended = sessions.end_session(db, notes, learnings)
        completed = history.list_completed(db, since=ended.started_at)
        logged = [
            item
            for item in knowledge.list_learnings(db, limit=50)
            if item.created_at and ended.started_at <= item.created_at <= ended.ended_at
        ]
        following = next_unblocked_task(db, get_state(db).current_task_id)

    return SessionSummary(
        session=ended, completed=completed, learnings=logged, next_task=following
    )
