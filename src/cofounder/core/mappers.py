"""Dict shapes shared by the MCP tools, the HTTP API and ``--json`` CLI output."""

from datetime import datetime, timezone

from cofounder.core.blocking import BlockedTask
from cofounder.core.work import (
    BlockedResult,
    ClaimResult,
    CompletionResult,
    MarkDoneResult,
    SessionSummary,
    StartWorkResult,
)
from cofounder.db.models import (
    Blocker,
    CompletedTask,
    DailyLog,
    Decision,
    DispatchJob,
    Issue,
    Learning,
    Task,
    TaskNote,
    WorkSession,
    WorkState,
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def task_to_dict(task: Task) -> dict:
    return {
        "id": task.id,
        "task": task.task,
        "context": task.context,
        "priority": task.priority,
        "project": task.project,
        "due_date": _iso(task.due_date),
        "tags": task.tags,
        "estimated_minutes": task.estimated_minutes,
        "added_at": _iso(task.added_at),
        "added_by": task.added_by,
        "blocked_by": task.blocked_by,
        "notion_page_id": task.notion_page_id,
    }


def brief_task(task: Task | None) -> dict | None:
    if task is None:
        return None
    return {"id": task.id, "task": task.task}


def state_to_dict(state: WorkState) -> dict:
    return {
        "goal": state.goal,
        "goal_metric": state.goal_metric,
        "current_revenue": state.current_revenue,
        "subscribers": state.subscribers,
        "current_task_id": state.current_task_id,
        "current_task": state.current_task,
        "current_task_context": state.current_task_context,
        "assigned_at": _iso(state.current_task_assigned_at),
        "streak_days": state.streak_days,
        "last_checkin": _iso(state.last_checkin),
        "last_completion": _iso(state.last_completion),
        "last_progress_update": _iso(state.last_progress_update),
        "status": state.status,
    }


def completed_to_dict(c: CompletedTask) -> dict:
    return {
        "id": c.id,
        "task": c.task,
        "context": c.context,
        "completed_at": _iso(c.completed_at),
        "time_taken_minutes": c.time_taken_minutes,
        "notes": c.notes,
        "project": c.project,
    }


def blocker_to_dict(b: Blocker) -> dict:
    return {
        "id": b.id,
        "blocker": b.blocker,
        "context": b.context,
        "task_id": b.task_id,
        "identified_at": _iso(b.identified_at),
        "resolved_at": _iso(b.resolved_at),
        "resolution": b.resolution,
    }


def blocked_task_to_dict(bt: BlockedTask) -> dict:
    d = task_to_dict(bt.task)
    d["blockers"] = [{"id": b.id, "task": b.task, "exists": b.exists} for b in bt.blockers]
    return d


def job_to_dict(job: DispatchJob) -> dict:
    return {
        "id": job.id,
        "agent": job.agent,
        "target": job.target,
        "task": job.task,
        "status": job.status,
        "result": job.result,
        "error_message": job.error_message,
        "repo_path": job.repo_path,
        "track_as_task": job.track_as_task,
        "cofounder_task_id": job.cofounder_task_id,
        "dispatched_by": job.dispatched_by,
        "parent_dispatch_id": job.parent_dispatch_id,
        "depth": job.depth,
        "slack_channel_id": job.slack_channel_id,
        "slack_thread_ts": job.slack_thread_ts,
        "created_at": _iso(job.created_at),
        "started_at": _iso(job.started_at),
        "completed_at": _iso(job.completed_at),
    }


def session_to_dict(s: WorkSession, now: datetime | None = None) -> dict:
    now = now or datetime.now(timezone.utc).replace(tzinfo=None)
    end = s.ended_at or now
    elapsed = int((end - s.started_at).total_seconds() // 60) if s.started_at else 0
    remaining = None
    if s.planned_duration_minutes and s.is_active:
        remaining = max(0, s.planned_duration_minutes - elapsed)
    return {
        "id": s.id,
        "started_at": _iso(s.started_at),
        "ended_at": _iso(s.ended_at),
        "active": s.is_active,
        "planned_minutes": s.planned_duration_minutes,
        "elapsed_minutes": elapsed,
        "remaining_minutes": remaining,
        "tasks_completed": s.tasks_completed,
        "energy_level": s.energy_level,
        "notes": s.notes,
        "learnings": s.learnings,
    }


def note_to_dict(n: TaskNote) -> dict:
    return {
        "id": n.id,
        "task_id": n.task_id,
        "note": n.note,
        "note_type": n.note_type,
        "created_at": _iso(n.created_at),
        "created_by": n.created_by,
    }


def daily_log_to_dict(d: DailyLog) -> dict:
    return {
        "date": d.date,
        "tasks_completed": d.tasks_completed,
        "tasks_assigned": d.tasks_assigned,
        "checkins": d.checkins,
        "mood": d.mood,
        "notes": d.notes,
    }


def decision_to_dict(d: Decision) -> dict:
    return {
        "id": d.id,
        "decision": d.decision,
        "rationale": d.rationale,
        "alternatives": d.alternatives,
        "project": d.project,
        "impact": d.impact,
        "decided_at": _iso(d.decided_at),
        "decided_by": d.decided_by,
    }


def learning_to_dict(item: Learning) -> dict:
    return {
        "id": item.id,
        "content": item.content,
        "category": item.category,
        "tags": item.tags,
        "source": item.source,
        "created_at": _iso(item.created_at),
        "created_by": item.created_by,
    }


def issue_to_dict(i: Issue) -> dict:
    return {
        "id": i.id,
        "type": i.type,
        "title": i.title,
        "description": i.description,
        "reported_by": i.reported_by,
        "status": i.status,
        "priority": i.priority,
        "resolution": i.resolution,
        "created_at": _iso(i.created_at),
        "updated_at": _iso(i.updated_at),
    }


# ── Work transition results ─────────────────────────────────────────────────


def claim_to_dict(r: ClaimResult) -> dict:
    return {
        "claimed": task_to_dict(r.task),
        "streak_days": r.state.streak_days,
        "message": f"Now working on #{r.task.id}: {r.task.task}",
    }


def completion_to_dict(r: CompletionResult) -> dict:
    return {
        "completed": completed_to_dict(r.completed),
        "unblocked_tasks": [brief_task(t) for t in r.unblocked],
        "next_task": brief_task(r.next_task),
        "streak_days": r.state.streak_days if r.state else None,
        "message": (
            f"Done. Next up: {r.next_task.task}" if r.next_task
            else "Done. Queue has no unblocked work."
        ),
    }


def blocked_to_dict(r: BlockedResult) -> dict:
    if r.skipped_task_id is None:
        message = "Blocker logged. Current task unchanged. Resolve blocker to continue."
    elif r.next_task:
        message = f"Skipped #{r.skipped_task_id}. Reassigned to: {r.next_task.task}"
    else:
        message = "No alternative tasks in queue. Add more tasks or resolve the blocker."
    return {
        "blocker": blocker_to_dict(r.blocker),
        "skipped_task_id": r.skipped_task_id,
        "next_task": brief_task(r.next_task),
        "status": r.state.status if r.state else None,
        "message": message,
    }


def mark_done_to_dict(r: MarkDoneResult) -> dict:
    unblocked = [brief_task(t) for t in r.unblocked]
    message = f"Task #{r.task.id} marked done."
    if unblocked:
        message = f"Task #{r.task.id} marked done. Unblocked {len(unblocked)} task(s)."
    return {
        "marked_done": {"id": r.task.id, "task": r.task.task, "project": r.task.project},
        "completed_by": r.completed_by,
        "was_current": r.was_current,
        "unblocked_tasks": unblocked,
        "next_task": brief_task(r.next_task),
        "message": message,
    }


def start_work_to_dict(r: StartWorkResult) -> dict:
    if r.task is None:
        message = "Session running. Queue is empty; add tasks to get going."
    elif r.notes:
        message = f"Working on #{r.task.id}: {r.task.task} ({len(r.notes)} earlier note(s))"
    else:
        message = f"Working on #{r.task.id}: {r.task.task}"
    return {
        "task": task_to_dict(r.task) if r.task else None,
        "notes": [note_to_dict(n) for n in r.notes],
        "session": session_to_dict(r.session),
        "session_started": r.session_started,
        "streak_days": r.state.streak_days,
        "message": message,
    }


def session_summary_to_dict(r: SessionSummary) -> dict:
    session = session_to_dict(r.session)
    return {
        "session": session,
        "completed": [completed_to_dict(c) for c in r.completed],
        "learnings": [learning_to_dict(item) for item in r.learnings],
        "next_task": brief_task(r.next_task),
        "message": (
            f"Session over after {session['elapsed_minutes']} min, "
            f"{len(r.completed)} task(s) completed."
        ),
    }
