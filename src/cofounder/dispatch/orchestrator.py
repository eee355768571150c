"""Dispatch job lifecycle: queue, process, finalize, cancel.

Jobs move ``pending -> running -> completed | failed`` and reach a terminal
status exactly once. Local jobs are handed to the background worker; jobs
for remote targets stay pending until that target's listener claims them
through the HTTP API.
"""

import logging
import sqlite3
from dataclasses import dataclass

from cofounder.config import Config
from cofounder.core import tasks as tasks_mod
from cofounder.core import work
from cofounder.core.tasks import parse_dt
from cofounder.core.errors import CofounderError, ConflictError, NotFoundError, ValidationError
from cofounder.db.engine import transaction
from cofounder.db.models import DISPATCH_STATUSES, LOCAL_TARGET, Agent, DispatchJob, Target
from cofounder.dispatch.parser import DispatchCommand, format_dispatch_message
from cofounder.dispatch.runner import run_local_agent
from cofounder.integrations.slack import (
    SlackError,
    add_reaction,
    format_dispatch_result,
    post_thread_reply,
    send_message,
)

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Cancelled by user"


@dataclass
class DispatchRequest:
    agent: Agent | str
    task: str
    target: Target | str = LOCAL_TARGET
    repo_path: str | None = None
    track_as_task: bool = False
    slack_message_ts: str | None = None
    slack_channel_id: str | None = None
    slack_thread_ts: str | None = None
    dispatched_by: str | None = None
    parent_dispatch_id: int | None = None
    depth: int = 0


# ── Row-to-model helpers ────────────────────────────────────────────────────


def _row_to_job(row: sqlite3.Row) -> DispatchJob:
    return DispatchJob(
        id=row["id"],
        agent=row["agent"],
        target=row["target"],
        task=row["task"],
        repo_path=row["repo_path"],
        track_as_task=bool(row["track_as_task"]),
        cofounder_task_id=row["cofounder_task_id"],
        status=row["status"],
        result=row["result"],
        error_message=row["error_message"],
        slack_message_ts=row["slack_message_ts"],
        slack_channel_id=row["slack_channel_id"],
        slack_thread_ts=row["slack_thread_ts"],
        dispatched_by=row["dispatched_by"],
        parent_dispatch_id=row["parent_dispatch_id"],
        depth=row["depth"],
        created_at=parse_dt(row["created_at"]),
        started_at=parse_dt(row["started_at"]),
        completed_at=parse_dt(row["completed_at"]),
    )


# ── Queries ───────────────────────────────────────────────────────────────────


def get_dispatch_job(db: sqlite3.Connection, job_id: int) -> DispatchJob | None:
    row = db.execute("SELECT * FROM dispatch_jobs WHERE id = ?", (job_id,)).fetchone()
    if not row:
        return None
    return _row_to_job(row)


def require_dispatch_job(db: sqlite3.Connection, job_id: int) -> DispatchJob:
    job = get_dispatch_job(db, job_id)
    if not job:
        raise NotFoundError("Dispatch job", job_id)
    return job


def list_dispatch_jobs(
    db: sqlite3.Connection,
    status: str | None = None,
    target: str | None = None,
    limit: int = 10,
) -> list[DispatchJob]:
    """Recent jobs, newest first."""
    if status and status not in DISPATCH_STATUSES:
        raise ValidationError(
            f"Status must be one of: {', '.join(DISPATCH_STATUSES)}", "status"
        )
    query = "SELECT * FROM dispatch_jobs WHERE 1=1"
    params: list = []
    if status:
        query += " AND status = ?"
        params.append(status)
    if target:
        query += " AND target = ?"
        params.append(_coerce(Target, target, "target").value)
    query += " ORDER BY created_at DESC, id DESC LIMIT ?"
    params.append(limit)
    return [_row_to_job(r) for r in db.execute(query, params).fetchall()]


def get_pending_jobs(db: sqlite3.Connection, target: str) -> list[DispatchJob]:
    """Pending jobs for a target, oldest first."""
    rows = db.execute(
        """SELECT * FROM dispatch_jobs
           WHERE target = ? AND status = 'pending'
           ORDER BY created_at ASC, id ASC""",
        (_coerce(Target, target, "target").value,),
    ).fetchall()
    return [_row_to_job(r) for r in rows]


def dispatch_status_counts(db: sqlite3.Connection) -> dict[str, int]:
    counts = {status: 0 for status in DISPATCH_STATUSES}
    for row in db.execute(
        "SELECT status, COUNT(*) AS n FROM dispatch_jobs GROUP BY status"
    ).fetchall():
        counts[row["status"]] = row["n"]
    return counts


# ── Queueing ──────────────────────────────────────────────────────────────────


def _coerce(enum_cls, value, field_name: str):
    try:
        return enum_cls(value.lower() if isinstance(value, str) else value)
    except ValueError:
        valid = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {field_name} '{value}'. Valid: {valid}", field_name)


def queue_dispatch(
    db: sqlite3.Connection,
    config: Config,
    request: DispatchRequest,
    worker=None,
) -> DispatchJob:
    """Create a pending job and hand local ones to the worker.

    Returns as soon as the row exists; execution happens in the background.
    """
    agent = _coerce(Agent, request.agent, "agent")
    target = _coerce(Target, request.target, "target")
    if not request.task or not request.task.strip():
        raise ValidationError("Dispatch task must not be empty", "task")
    task_text = request.task.strip()

    with transaction(db):
        depth = request.depth
        if request.parent_dispatch_id is not None:
            parent = require_dispatch_job(db, request.parent_dispatch_id)
            depth = parent.depth + 1
        if depth < 0:
            raise ValidationError("Dispatch depth must be >= 0", "depth")
        if depth >= config.dispatch_max_depth:
            raise ValidationError(
                f"Maximum dispatch chain depth ({config.dispatch_max_depth}) exceeded",
                "depth",
            )

        linked_task_id = None
        if request.track_as_task:
            linked = tasks_mod.add_task(
                db,
                f"[dispatch {target.value}:{agent.value}] {task_text}",
                context=f"Repository: {request.repo_path}" if request.repo_path else None,
                added_by=request.dispatched_by or "dispatch",
                tags=["dispatch"],
            )
            linked_task_id = linked.id

        cur = db.execute(
            """INSERT INTO dispatch_jobs
               (agent, target, task, repo_path, track_as_task, cofounder_task_id,
                slack_message_ts, slack_channel_id, slack_thread_ts, dispatched_by,
                parent_dispatch_id, depth, status)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending')""",
            (
                agent.value,
                target.value,
                task_text,
                request.repo_path,
                int(request.track_as_task),
                linked_task_id,
                request.slack_message_ts,
                request.slack_channel_id,
                request.slack_thread_ts,
                request.dispatched_by,
                request.parent_dispatch_id,
                depth,
            ),
        )
        job_id = cur.lastrowid

    job = get_dispatch_job(db, job_id)
    logger.info(
        "Queued dispatch job #%s for %s:%s (depth %s)", job.id, job.target, job.agent, job.depth
    )

    if target == LOCAL_TARGET:
        if worker is not None:
            worker.submit(job.id)
        else:
            logger.info("No dispatch worker attached; job #%s stays pending", job.id)
    else:
        job = _announce_remote(db, config, job)
    return job


def _announce_remote(db: sqlite3.Connection, config: Config, job: DispatchJob) -> DispatchJob:
    """Post a remote job to its target's Slack channel, when one is configured.

    A job that did not come from a Slack thread adopts the announcement as
    its thread, so the result is later posted as a reply to it.
    """
    channel = config.slack_dispatch_channels.get(job.target)
    if not channel:
        return job
    command = DispatchCommand(
        agent=Agent(job.agent),
        target=Target(job.target),
        task=job.task,
        repo_path=job.repo_path,
        track_as_task=job.track_as_task,
    )
    try:
        message = send_message(
            config.slack_bot_token, channel, format_dispatch_message(command, job.id)
        )
    except SlackError as e:
        logger.warning("Could not announce dispatch job #%s in %s: %s", job.id, channel, e)
        return job

    if job.slack_thread_ts:
        return job
    with transaction(db):
        db.execute(
            """UPDATE dispatch_jobs
               SET slack_channel_id = ?, slack_thread_ts = ?, slack_message_ts = ?
               WHERE id = ?""",
            (message.channel, message.ts, message.ts, job.id),
        )
    return get_dispatch_job(db, job.id)


# ── Processing ────────────────────────────────────────────────────────────────


def _start(db: sqlite3.Connection, job_id: int) -> tuple[DispatchJob, bool]:
    """Move a pending job to running. Returns the job and whether it moved."""
    with transaction(db):
        job = require_dispatch_job(db, job_id)
        if job.status != "pending":
            return job, False
        db.execute(
            """UPDATE dispatch_jobs SET status = 'running', started_at = datetime('now')
               WHERE id = ?""",
            (job_id,),
        )
    return get_dispatch_job(db, job_id), True


def _finalize(
    db: sqlite3.Connection, job_id: int, text: str, success: bool
) -> tuple[DispatchJob, bool]:
    """Write the terminal status. Jobs already terminal are left untouched."""
    with transaction(db):
        cur = db.execute(
            """UPDATE dispatch_jobs
               SET status = ?, result = ?, error_message = ?,
                   started_at = COALESCE(started_at, datetime('now')),
                   completed_at = datetime('now')
               WHERE id = ? AND status IN ('pending', 'running')""",
            (
                "completed" if success else "failed",
                text if success else None,
                None if success else text,
                job_id,
            ),
        )
        changed = cur.rowcount > 0
    return get_dispatch_job(db, job_id), changed


def process_dispatch_job(db: sqlite3.Connection, config: Config, job_id: int) -> DispatchJob:
    """Run a pending local job to completion.

    Runner failures, including timeouts, are recorded on the job and never
    raised to the caller.
    """
    job, started = _start(db, job_id)
    if not started:
        logger.info("Dispatch job #%s is not pending (status: %s), skipping", job_id, job.status)
        return job

    logger.info("Running dispatch job #%s on %s:%s", job_id, job.target, job.agent)
    try:
        output = run_local_agent(config, job.target, job.agent, job.task, job.repo_path)
    except CofounderError as e:
        logger.warning("Dispatch job #%s failed: %s", job_id, e.message)
        text, success = e.message, False
    except Exception as e:
        logger.exception("Dispatch job #%s failed", job_id)
        text, success = str(e) or e.__class__.__name__, False
    else:
        text, success = output, True

    job, _ = _finalize(db, job_id, text, success)
    _after_terminal(db, config, job, text, success)
    return job


def mark_job_running(db: sqlite3.Connection, job_id: int) -> DispatchJob:
    """A remote listener has picked up the job."""
    job, started = _start(db, job_id)
    if not started:
        logger.info("Dispatch job #%s is %s; not marking running", job_id, job.status)
    return job


def complete_job(
    db: sqlite3.Connection,
    config: Config,
    job_id: int,
    result: str,
    success: bool,
) -> DispatchJob:
    """Record the outcome reported by a remote listener."""
    require_dispatch_job(db, job_id)
    job, changed = _finalize(db, job_id, result, success)
    if not changed:
        logger.info("Dispatch job #%s already %s; ignoring result", job_id, job.status)
        return job
    logger.info("Dispatch job #%s %s (remote)", job_id, job.status)
    _after_terminal(db, config, job, result, success)
    return job


def cancel_dispatch(db: sqlite3.Connection, job_id: int) -> DispatchJob:
    """Cancel a job that has not started yet."""
    with transaction(db):
        job = require_dispatch_job(db, job_id)
        if job.status != "pending":
            raise ConflictError(
                f"Only pending jobs can be cancelled (job #{job_id} is {job.status})",
                {"status": job.status},
            )
        db.execute(
            """UPDATE dispatch_jobs
               SET status = 'failed', error_message = ?, completed_at = datetime('now')
               WHERE id = ?""",
            (CANCELLED_MESSAGE, job_id),
        )
    logger.info("Cancelled dispatch job #%s", job_id)
    return get_dispatch_job(db, job_id)


# ── Side effects of a terminal transition ────────────────────────────────────


def _after_terminal(
    db: sqlite3.Connection, config: Config, job: DispatchJob, text: str, success: bool
):
    if success and job.cofounder_task_id is not None:
        _close_linked_task(db, job)
    _notify(config, job, text, success)


def _close_linked_task(db: sqlite3.Connection, job: DispatchJob):
    try:
        work.mark_done(
            db,
            job.cofounder_task_id,
            f"Completed by dispatch job #{job.id}",
            completed_by=f"dispatch:{job.target}:{job.agent}",
        )
    except NotFoundError:
        logger.info(
            "Linked task #%s of dispatch job #%s is no longer queued",
            job.cofounder_task_id, job.id,
        )


def _notify(config: Config, job: DispatchJob, text: str, success: bool):
    """Post the outcome to the originating Slack thread (best-effort)."""
    if not (job.slack_channel_id and job.slack_thread_ts):
        return
    try:
        post_thread_reply(
            config.slack_bot_token,
            job.slack_channel_id,
            job.slack_thread_ts,
            format_dispatch_result(job.target, job.agent, text, success),
        )
        if job.slack_message_ts:
            add_reaction(
                config.slack_bot_token,
                job.slack_channel_id,
                job.slack_message_ts,
                "white_check_mark" if success else "x",
            )
    except Exception:
        logger.exception("Failed to post result of dispatch job #%s to Slack", job.id)
