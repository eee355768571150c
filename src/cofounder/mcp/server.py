"""MCP server exposing the cofounder queue, work state and dispatch tools."""

from __future__ import annotations

import functools
import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from mcp.server.fastmcp import Context, FastMCP

from cofounder.config import Config, get_config
from cofounder.core import blocking, daily_log, history, knowledge, mappers, sessions, work
from cofounder.core import notes as notes_mod
from cofounder.core import queue as queue_mod
from cofounder.core import state as state_mod
from cofounder.core import tasks as tasks_mod
from cofounder.core.errors import CofounderError, ValidationError
from cofounder.db.engine import init_db
from cofounder.dispatch import orchestrator
from cofounder.dispatch.parser import parse_dispatch_command
from cofounder.dispatch.worker import DispatchWorker

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    db: sqlite3.Connection
    config: Config
    worker: DispatchWorker | None = None


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Open the database and start the dispatch worker; tear both down on exit."""
    config = get_config()
    db = init_db(config.db_path)

    worker = DispatchWorker(config)
    worker.start()

    try:
        yield AppContext(db=db, config=config, worker=worker)
    finally:
        worker.stop()
        db.close()


mcp = FastMCP("cofounder", lifespan=app_lifespan)


def _ctx(ctx: Context) -> AppContext:
    """Extract AppContext from MCP Context."""
    return ctx.request_context.lifespan_context


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _errors_as_results(fn):
    """Report CofounderError as an error payload instead of a failed call."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except CofounderError as e:
            logger.info("%s rejected: %s", fn.__name__, e.message)
            return e.to_dict()

    return wrapper


# ── Queue Tools ───────────────────────────────────────────────────────────────


@mcp.tool()
@_errors_as_results
def queue(ctx: Context, limit: int | None = None) -> dict:
    """Show the current task and the queue in priority order, marking blocked tasks."""
    app = _ctx(ctx)
    current = state_mod.get_state(app.db)
    items = []
    for task in queue_mod.list_queue(app.db, limit=limit):
        d = mappers.task_to_dict(task)
        d["status"] = (
            "blocked" if blocking.is_blocked(app.db, task, current.current_task_id) else "pending"
        )
        items.append(d)
    return {
        "current_task": (
            {"id": current.current_task_id, "task": current.current_task, "status": "current"}
            if not current.is_idle else None
        ),
        "queue": items,
        "queue_depth": tasks_mod.queue_depth(app.db),
    }


@mcp.tool()
@_errors_as_results
def add_task(
    ctx: Context,
    task: str,
    priority: int = 5,
    project: str | None = None,
    context: str | None = None,
    blocked_by: list[int] | None = None,
    due_date: str | None = None,
    tags: list[str] | None = None,
    estimated_minutes: int | None = None,
) -> dict:
    """Add a task to the queue. Priority 0-10, higher is more urgent (default 5).

    Projects: infinite_realms, infrastructure, sanctuary, other.
    blocked_by lists task ids that must be finished first.
    """
    app = _ctx(ctx)
    created = tasks_mod.add_task(
        app.db,
        task,
        priority=priority,
        project=project,
        context=context,
        added_by=app.config.owner,
        blocked_by=blocked_by,
        due_date=due_date,
        tags=tags,
        estimated_minutes=estimated_minutes,
    )
    result = mappers.task_to_dict(created)
    result["queue_position"] = queue_mod.queue_position(app.db, created.id)
    result["queue_depth"] = tasks_mod.queue_depth(app.db)
    return result


@mcp.tool()
@_errors_as_results
def add_tasks(ctx: Context, tasks: list[dict]) -> dict:
    """Add several tasks at once. Each item takes the same fields as add_task.
    If any item is invalid, nothing is added."""
    app = _ctx(ctx)
    created = tasks_mod.add_tasks(app.db, tasks, added_by=app.config.owner)
    return {
        "added": [mappers.task_to_dict(t) for t in created],
        "queue_depth": tasks_mod.queue_depth(app.db),
    }


@mcp.tool()
@_errors_as_results
def update_task(
    ctx: Context,
    task_id: int,
    task: str | None = None,
    context: str | None = None,
    project: str | None = None,
    blocked_by: list[int] | None = None,
    due_date: str | None = None,
    tags: list[str] | None = None,
    estimated_minutes: int | None = None,
) -> dict:
    """Update details of a queued task. Only the fields you pass are changed."""
    app = _ctx(ctx)
    fields = {
        "task": task,
        "context": context,
        "project": project,
        "blocked_by": blocked_by,
        "due_date": due_date,
        "tags": tags,
        "estimated_minutes": estimated_minutes,
    }
    updates = {k: v for k, v in fields.items() if v is not None}
    return mappers.task_to_dict(tasks_mod.update_task(app.db, task_id, **updates))


@mcp.tool()
@_errors_as_results
def reprioritize(ctx: Context, task_id: int, priority: int) -> dict:
    """Change a queued task's priority (0-10, higher is more urgent)."""
    app = _ctx(ctx)
    task = tasks_mod.reprioritize(app.db, task_id, priority)
    result = mappers.task_to_dict(task)
    result["queue_position"] = queue_mod.queue_position(app.db, task_id)
    return result


@mcp.tool()
@_errors_as_results
def delete_task(ctx: Context, task_id: int) -> dict:
    """Delete a task from the queue without completing it."""
    app = _ctx(ctx)
    task = tasks_mod.delete_task(app.db, task_id)
    return {"deleted": mappers.brief_task(task), "queue_depth": tasks_mod.queue_depth(app.db)}


@mcp.tool()
@_errors_as_results
def search_tasks(
    ctx: Context, query: str = "", project: str | None = None, tag: str | None = None
) -> dict:
    """Search queued tasks by text in the description or context, optionally by project or tag."""
    app = _ctx(ctx)
    found = tasks_mod.search_tasks(app.db, query, project=project, tag=tag)
    return {"tasks": [mappers.task_to_dict(t) for t in found], "count": len(found)}


@mcp.tool()
@_errors_as_results
def get_task(ctx: Context, task_id: int) -> dict:
    """Show one queued task with whether it is blocked and how many notes it has."""
    app = _ctx(ctx)
    task = tasks_mod.require_task(app.db, task_id)
    current = state_mod.get_state(app.db)
    result = mappers.task_to_dict(task)
    result["is_blocked"] = blocking.is_blocked(app.db, task, current.current_task_id)
    result["queue_position"] = queue_mod.queue_position(app.db, task_id)
    result["notes_count"] = notes_mod.count_task_notes(app.db, task_id)
    return result


@mcp.tool()
@_errors_as_results
def blocked_tasks(ctx: Context) -> dict:
    """List blocked tasks and what each one is waiting on."""
    app = _ctx(ctx)
    current = state_mod.get_state(app.db)
    found = blocking.get_blocked_tasks(app.db, current.current_task_id, current.current_task)
    return {"blocked": [mappers.blocked_task_to_dict(b) for b in found], "count": len(found)}


# ── Work Tools ────────────────────────────────────────────────────────────────


@mcp.tool()
@_errors_as_results
def claim_task(ctx: Context, task_id: int | None = None) -> dict:
    """Start working on a task. Without task_id, takes the head of the queue.
    Fails if another task is already in progress."""
    app = _ctx(ctx)
    return mappers.claim_to_dict(work.claim_task(app.db, task_id))


@mcp.tool()
@_errors_as_results
def complete(
    ctx: Context,
    task_id: int,
    time_taken_minutes: int | None = None,
    notes: str | None = None,
) -> dict:
    """Complete the current task. The next unblocked task is assigned automatically."""
    app = _ctx(ctx)
    result = work.complete_task(app.db, task_id, time_taken_minutes, notes)
    return mappers.completion_to_dict(result)


@mcp.tool()
@_errors_as_results
def blocked(
    ctx: Context, blocker: str, context: str | None = None, skip_to_next: bool = True
) -> dict:
    """Report that you are blocked on the current task.

    With skip_to_next the task goes back to the queue and the next unblocked
    task is assigned; otherwise the task stays current with status 'blocked'.
    """
    app = _ctx(ctx)
    return mappers.blocked_to_dict(work.report_blocked(app.db, blocker, context, skip_to_next))


@mcp.tool()
@_errors_as_results
def mark_done(ctx: Context, task_id: int, notes: str, completed_by: str = "unknown") -> dict:
    """Retroactively mark a queued task as done, for work finished outside the system."""
    app = _ctx(ctx)
    return mappers.mark_done_to_dict(work.mark_done(app.db, task_id, notes, completed_by))


# ── State Tools ───────────────────────────────────────────────────────────────


@mcp.tool()
@_errors_as_results
def checkin(ctx: Context) -> dict:
    """Check in at the start of a work conversation: goal, current task, streak and blockers."""
    app = _ctx(ctx)
    current = work.check_in(app.db)
    result = mappers.state_to_dict(current)
    if current.current_task_assigned_at:
        hours = (_utcnow() - current.current_task_assigned_at) / timedelta(hours=1)
        result["hours_since_assigned"] = round(hours, 1)
    result["queue_depth"] = tasks_mod.queue_depth(app.db)
    result["blockers"] = [b.blocker for b in history.list_blockers(app.db)]
    result["today"] = mappers.daily_log_to_dict(daily_log.get_or_create_day(app.db))
    active = sessions.get_active_session(app.db)
    result["session"] = mappers.session_to_dict(active) if active else None
    return result


@mcp.tool()
@_errors_as_results
def state(ctx: Context) -> dict:
    """Read the work state without recording a check-in."""
    app = _ctx(ctx)
    return mappers.state_to_dict(state_mod.get_state(app.db))


@mcp.tool()
@_errors_as_results
def set_goal(ctx: Context, goal: str, goal_metric: str | None = None) -> dict:
    """Set the overall goal and how it is measured."""
    app = _ctx(ctx)
    return mappers.state_to_dict(state_mod.set_goal(app.db, goal, goal_metric))


@mcp.tool()
@_errors_as_results
def update_progress(ctx: Context, current_revenue: str, subscribers: int) -> dict:
    """Record the latest revenue and subscriber numbers."""
    app = _ctx(ctx)
    return mappers.state_to_dict(state_mod.update_progress(app.db, current_revenue, subscribers))


@mcp.tool()
@_errors_as_results
def reset_streak(ctx: Context) -> dict:
    """Reset the completion streak to zero."""
    app = _ctx(ctx)
    return mappers.state_to_dict(state_mod.reset_streak(app.db))


@mcp.tool()
@_errors_as_results
def list_completed(
    ctx: Context, days: int | None = None, project: str | None = None, limit: int = 20
) -> dict:
    """List completed tasks, newest first, optionally within the last N days."""
    app = _ctx(ctx)
    since = _utcnow() - timedelta(days=days) if days else None
    done = history.list_completed(app.db, since=since, project=project, limit=limit)
    return {"completed": [mappers.completed_to_dict(c) for c in done], "count": len(done)}


@mcp.tool()
@_errors_as_results
def stats(ctx: Context) -> dict:
    """Progress statistics: completions, streak, blockers, queue depth and dispatch jobs."""
    app = _ctx(ctx)
    current = state_mod.get_state(app.db)
    result = history.get_stats(app.db)
    blockers = history.get_blocker_stats(app.db)
    result.update(
        goal=current.goal or "Not set",
        goal_metric=current.goal_metric or "Not set",
        current_revenue=current.current_revenue,
        subscribers=current.subscribers,
        streak_days=current.streak_days,
        queue_depth=tasks_mod.queue_depth(app.db),
        blockers_active=blockers["active"],
        blockers_resolved=blockers["resolved"],
        dispatch_jobs=orchestrator.dispatch_status_counts(app.db),
        status=current.status,
    )
    return result


@mcp.tool()
@_errors_as_results
def blockers(ctx: Context, include_resolved: bool = False) -> dict:
    """List logged blockers. Only unresolved ones unless include_resolved is set."""
    app = _ctx(ctx)
    found = history.list_blockers(app.db, active_only=not include_resolved)
    return {"blockers": [mappers.blocker_to_dict(b) for b in found], "count": len(found)}


@mcp.tool()
@_errors_as_results
def resolve_blocker(ctx: Context, blocker_id: int, resolution: str) -> dict:
    """Mark a logged blocker as resolved."""
    app = _ctx(ctx)
    return mappers.blocker_to_dict(work.resolve_blocker(app.db, blocker_id, resolution))


# ── Session Tools ─────────────────────────────────────────────────────────────


@mcp.tool()
@_errors_as_results
def start_work(
    ctx: Context,
    task_id: int | None = None,
    planned_minutes: int | None = None,
    energy_level: str | None = None,
) -> dict:
    """Check in, claim a task if none is in progress, and start a work session.

    Returns the task with its earlier notes. energy_level is high, medium or low.
    """
    app = _ctx(ctx)
    result = work.start_work(app.db, task_id, planned_minutes, energy_level)
    return mappers.start_work_to_dict(result)


@mcp.tool()
@_errors_as_results
def session_summary(ctx: Context, notes: str | None = None, learnings: str | None = None) -> dict:
    """End the active session and summarize what was completed and learned during it."""
    app = _ctx(ctx)
    return mappers.session_summary_to_dict(work.finish_session(app.db, notes, learnings))


@mcp.tool()
@_errors_as_results
def start_session(
    ctx: Context, planned_minutes: int | None = None, energy_level: str | None = None
) -> dict:
    """Start a work session. Any session still open is ended first."""
    app = _ctx(ctx)
    return mappers.session_to_dict(sessions.start_session(app.db, planned_minutes, energy_level))


@mcp.tool()
@_errors_as_results
def end_session(ctx: Context, notes: str | None = None, learnings: str | None = None) -> dict:
    """End the active work session."""
    app = _ctx(ctx)
    return mappers.session_to_dict(sessions.end_session(app.db, notes, learnings))


@mcp.tool()
@_errors_as_results
def get_session(ctx: Context) -> dict:
    """Show the active session with elapsed and remaining minutes."""
    app = _ctx(ctx)
    active = sessions.get_active_session(app.db)
    if active is None:
        return {"active": False, "message": "No active session"}
    return mappers.session_to_dict(active)


@mcp.tool()
@_errors_as_results
def add_task_note(
    ctx: Context,
    note: str,
    task_id: int | None = None,
    note_type: str = "progress",
) -> dict:
    """Attach a note to a task (the current task when task_id is omitted).

    note_type: progress, attempt, blocker or learning.
    """
    app = _ctx(ctx)
    if task_id is None:
        task_id = state_mod.get_state(app.db).current_task_id
        if task_id is None:
            raise ValidationError("No current task; pass task_id", "task_id")
    added = notes_mod.add_task_note(
        app.db, task_id, note, note_type, created_by=app.config.owner
    )
    return mappers.note_to_dict(added)


@mcp.tool()
@_errors_as_results
def get_task_notes(ctx: Context, task_id: int | None = None) -> dict:
    """List notes on a task, oldest first (the current task when task_id is omitted)."""
    app = _ctx(ctx)
    if task_id is None:
        task_id = state_mod.get_state(app.db).current_task_id
        if task_id is None:
            raise ValidationError("No current task; pass task_id", "task_id")
    found = notes_mod.get_task_notes(app.db, task_id)
    return {
        "task_id": task_id,
        "notes": [mappers.note_to_dict(n) for n in found],
        "count": len(found),
    }


@mcp.tool()
@_errors_as_results
def log_mood(ctx: Context, mood: str, notes: str | None = None) -> dict:
    """Record today's mood, with optional notes for the day."""
    app = _ctx(ctx)
    return mappers.daily_log_to_dict(daily_log.log_mood(app.db, mood, notes))


# ── Knowledge Tools ───────────────────────────────────────────────────────────


@mcp.tool()
@_errors_as_results
def log_decision(
    ctx: Context,
    decision: str,
    rationale: str,
    alternatives: str | None = None,
    project: str | None = None,
    impact: str | None = None,
) -> dict:
    """Record a decision and why it was made."""
    app = _ctx(ctx)
    logged = knowledge.log_decision(
        app.db, decision, rationale, alternatives, project, impact, decided_by=app.config.owner
    )
    return mappers.decision_to_dict(logged)


@mcp.tool()
@_errors_as_results
def get_decisions(ctx: Context, project: str | None = None, limit: int = 20) -> dict:
    """List recorded decisions, newest first."""
    app = _ctx(ctx)
    found = knowledge.list_decisions(app.db, project=project, limit=limit)
    return {"decisions": [mappers.decision_to_dict(d) for d in found], "count": len(found)}


@mcp.tool()
@_errors_as_results
def log_learning(
    ctx: Context,
    content: str,
    category: str | None = None,
    tags: list[str] | None = None,
    source: str | None = None,
) -> dict:
    """Record something learned, for later recall."""
    app = _ctx(ctx)
    logged = knowledge.log_learning(
        app.db, content, category, tags, source, created_by=app.config.owner
    )
    return mappers.learning_to_dict(logged)


@mcp.tool()
@_errors_as_results
def get_learnings(
    ctx: Context,
    category: str | None = None,
    tag: str | None = None,
    query: str | None = None,
    limit: int = 20,
) -> dict:
    """Search recorded learnings by category, tag or text."""
    app = _ctx(ctx)
    found = knowledge.list_learnings(app.db, category=category, tag=tag, query=query, limit=limit)
    return {"learnings": [mappers.learning_to_dict(item) for item in found], "count": len(found)}


@mcp.tool()
@_errors_as_results
def report_issue(
    ctx: Context,
    type: str,
    title: str,
    description: str,
    priority: int = 5,
    reported_by: str | None = None,
) -> dict:
    """Report a bug or feature request against the cofounder tool itself. Priority 1-10."""
    app = _ctx(ctx)
    issue = knowledge.report_issue(
        app.db, type, title, description, reported_by or app.config.owner, priority
    )
    result = mappers.issue_to_dict(issue)
    result["message"] = f"Issue #{issue.id} reported: {issue.title}"
    return result


@mcp.tool()
@_errors_as_results
def get_issues(
    ctx: Context, status: str | None = None, type: str | None = None, limit: int = 10
) -> dict:
    """List reported issues, highest priority first, with overall counts."""
    app = _ctx(ctx)
    found = knowledge.list_issues(app.db, status=status, issue_type=type, limit=limit)
    return {
        "issues": [mappers.issue_to_dict(i) for i in found],
        "count": len(found),
        "stats": knowledge.issue_stats(app.db),
    }


@mcp.tool()
@_errors_as_results
def update_issue(
    ctx: Context,
    issue_id: int,
    status: str | None = None,
    resolution: str | None = None,
    priority: int | None = None,
) -> dict:
    """Change an issue's status (open, in_progress, resolved, wontfix), resolution or priority."""
    app = _ctx(ctx)
    kwargs = {"resolution": resolution} if resolution is not None else {}
    before, after = knowledge.update_issue(
        app.db, issue_id, status=status, priority=priority, **kwargs
    )
    result = mappers.issue_to_dict(after)
    result["previous_status"] = before.status
    return result


# ── Dispatch Tools ────────────────────────────────────────────────────────────


@mcp.tool()
@_errors_as_results
def dispatch_task(
    ctx: Context,
    agent: str,
    task: str,
    target: str = "hetzner",
    repo_path: str | None = None,
    track_as_task: bool = False,
    parent_dispatch_id: int | None = None,
) -> dict:
    """Dispatch a task to an AI agent (claude, gemini, qwen, cline) on a target
    (hetzner, mac, cold_storage). Only claude runs on hetzner; hetzner jobs start
    immediately, other targets wait for their listener."""
    app = _ctx(ctx)
    job = orchestrator.queue_dispatch(
        app.db,
        app.config,
        orchestrator.DispatchRequest(
            agent=agent,
            task=task,
            target=target,
            repo_path=repo_path,
            track_as_task=track_as_task,
            dispatched_by="mcp-tool",
            parent_dispatch_id=parent_dispatch_id,
        ),
        worker=app.worker,
    )
    result = mappers.job_to_dict(job)
    result["message"] = f"Dispatch job {job.id} created for {job.target}:{job.agent}"
    return result


@mcp.tool()
@_errors_as_results
def dispatch_status(ctx: Context, job_id: int) -> dict:
    """Check the status of a dispatch job."""
    app = _ctx(ctx)
    return mappers.job_to_dict(orchestrator.require_dispatch_job(app.db, job_id))


@mcp.tool()
@_errors_as_results
def dispatch_list(
    ctx: Context, status: str | None = None, target: str | None = None, limit: int = 10
) -> dict:
    """List recent dispatch jobs, optionally filtered by status and target."""
    app = _ctx(ctx)
    jobs = orchestrator.list_dispatch_jobs(app.db, status=status, target=target, limit=limit)
    return {"jobs": [mappers.job_to_dict(j) for j in jobs], "count": len(jobs)}


@mcp.tool()
@_errors_as_results
def dispatch_cancel(ctx: Context, job_id: int) -> dict:
    """Cancel a dispatch job that has not started yet."""
    app = _ctx(ctx)
    return mappers.job_to_dict(orchestrator.cancel_dispatch(app.db, job_id))


@mcp.tool()
@_errors_as_results
def parse_dispatch(ctx: Context, text: str) -> dict:
    """Parse an '@dispatch [--track] [--repo=/path] [target:]agent: task' command
    without queueing it."""
    command = parse_dispatch_command(text)
    if command is None:
        return {"matched": False}
    return {
        "matched": True,
        "agent": command.agent.value,
        "target": command.target.value,
        "task": command.task,
        "repo_path": command.repo_path,
        "track_as_task": command.track_as_task,
    }
