"""CLI entry point for cofounder."""

import json
import logging
import sys
from contextlib import contextmanager

import click

from cofounder.config import get_config
from cofounder.core import blocking, daily_log, history, knowledge, mappers, sessions, work
from cofounder.core import notes as notes_mod
from cofounder.core import queue as queue_mod
from cofounder.core import state as state_mod
from cofounder.core import tasks as tasks_mod
from cofounder.core.errors import CofounderError
from cofounder.db.engine import get_db
from cofounder.dispatch import orchestrator
from cofounder.dispatch.parser import parse_dispatch_command


def _get_db():
    config = get_config()
    return get_db(config.db_path)


@contextmanager
def _reporting_errors():
    """Turn a CofounderError into 'Error: ...' on stderr and exit status 1."""
    try:
        yield
    except CofounderError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)


def _split_ids(value: str | None) -> list[int] | None:
    if not value:
        return None
    try:
        return [int(v) for v in value.split(",") if v.strip()]
    except ValueError:
        raise click.BadParameter(f"expected comma-separated task ids, got '{value}'")


def _split_tags(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [t.strip() for t in value.split(",") if t.strip()]


def _echo_json(data):
    click.echo(json.dumps(data, indent=2))


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr")
def main(verbose):
    """cf - cofounder task queue and agent dispatch"""
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ── Task Commands ─────────────────────────────────────────────────────────────


@main.group("task")
def task_group():
    """Manage the task queue."""
    pass


@task_group.command("add")
@click.argument("description")
@click.option("--priority", "-p", default=5, type=int, help="Priority 0-10, higher is more urgent")
@click.option("--project", default=None, help="infinite_realms, infrastructure, sanctuary or other")
@click.option("--context", "-c", default=None, help="Extra context for the task")
@click.option("--blocked-by", default=None, help="Comma-separated task ids this waits on")
@click.option("--due", default=None, help="Due date (YYYY-MM-DD)")
@click.option("--tags", default=None, help="Comma-separated tags")
@click.option("--estimate", type=int, default=None, help="Estimated minutes")
def task_add(description, priority, project, context, blocked_by, due, tags, estimate):
    """Add a task to the queue."""
    config = get_config()
    with _get_db() as db, _reporting_errors():
        task = tasks_mod.add_task(
            db,
            description,
            priority=priority,
            project=project,
            context=context,
            added_by=config.owner,
            blocked_by=_split_ids(blocked_by),
            due_date=due,
            tags=_split_tags(tags),
            estimated_minutes=estimate,
        )
        position = queue_mod.queue_position(db, task.id)
        click.echo(f"Added task #{task.id} (P{task.priority}) at position {position}: {task.task}")


@task_group.command("list")
@click.option("--limit", type=int, default=None, help="Show at most this many tasks")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def task_list(limit, json_output):
    """List the queue in priority order."""
    with _get_db() as db:
        current = state_mod.get_state(db)
        tasks = queue_mod.list_queue(db, limit=limit)

        if json_output:
            _echo_json([mappers.task_to_dict(t) for t in tasks])
            return

        if not current.is_idle:
            click.echo(f"  ● #{current.current_task_id}: {current.current_task} (in progress)")
        if not tasks:
            click.echo("Queue is empty.")
            return

        for task in tasks:
            is_blocked = blocking.is_blocked(db, task, current.current_task_id)
            icon = "✗" if is_blocked else "○"
            deps = f" [blocked by: {', '.join(map(str, task.blocked_by))}]" if task.blocked_by else ""
            project = f" ({task.project})" if task.project else ""
            click.echo(f"  {icon} P{task.priority} #{task.id}: {task.task}{project}{deps}")


@task_group.command("show")
@click.argument("task_id", type=int)
def task_show(task_id):
    """Show a queued task."""
    with _get_db() as db, _reporting_errors():
        task = tasks_mod.require_task(db, task_id)
        click.echo(f"Task #{task.id}")
        click.echo(f"  Description: {task.task}")
        click.echo(f"  Priority: P{task.priority}")
        click.echo(f"  Position: {queue_mod.queue_position(db, task.id)}")
        if task.project:
            click.echo(f"  Project: {task.project}")
        if task.context:
            click.echo(f"  Context: {task.context}")
        if task.blocked_by:
            click.echo(f"  Blocked by: {', '.join(map(str, task.blocked_by))}")
        if task.tags:
            click.echo(f"  Tags: {', '.join(task.tags)}")
        if task.due_date:
            click.echo(f"  Due: {task.due_date.date()}")
        if task.estimated_minutes:
            click.echo(f"  Estimate: {task.estimated_minutes} min")
        if task.added_at:
            click.echo(f"  Added: {task.added_at}")


@task_group.command("update")
@click.argument("task_id", type=int)
@click.option("--description", default=None, help="New description")
@click.option("--context", "-c", default=None, help="New context")
@click.option("--project", default=None, help="New project")
@click.option("--blocked-by", default=None, help="Replace blockers (comma-separated ids, '' to clear)")
@click.option("--due", default=None, help="New due date (YYYY-MM-DD)")
@click.option("--tags", default=None, help="Replace tags (comma-separated)")
@click.option("--estimate", type=int, default=None, help="Estimated minutes")
def task_update(task_id, description, context, project, blocked_by, due, tags, estimate):
    """Update details of a queued task."""
    updates = {}
    if description is not None:
        updates["task"] = description
    if context is not None:
        updates["context"] = context
    if project is not None:
        updates["project"] = project
    if blocked_by is not None:
        updates["blocked_by"] = _split_ids(blocked_by) or []
    if due is not None:
        updates["due_date"] = due
    if tags is not None:
        updates["tags"] = _split_tags(tags) or []
    if estimate is not None:
        updates["estimated_minutes"] = estimate

    with _get_db() as db, _reporting_errors():
        task = tasks_mod.update_task(db, task_id, **updates)
        click.echo(f"Updated task #{task.id}: {task.task}")


@task_group.command("priority")
@click.argument("task_id", type=int)
@click.argument("priority", type=int)
def task_priority(task_id, priority):
    """Change a task's priority (0-10)."""
    with _get_db() as db, _reporting_errors():
        task = tasks_mod.reprioritize(db, task_id, priority)
        position = queue_mod.queue_position(db, task_id)
        click.echo(f"Task #{task.id} is now P{task.priority} (position {position})")


@task_group.command("delete")
@click.argument("task_id", type=int)
def task_delete(task_id):
    """Delete a task from the queue."""
    with _get_db() as db, _reporting_errors():
        task = tasks_mod.delete_task(db, task_id)
        click.echo(f"Deleted task #{task.id}: {task.task}")


@task_group.command("search")
@click.argument("query", default="")
@click.option("--project", default=None, help="Filter by project")
@click.option("--tag", default=None, help="Filter by tag")
def task_search(query, project, tag):
    """Search queued tasks."""
    with _get_db() as db:
        found = tasks_mod.search_tasks(db, query, project=project, tag=tag)
        if not found:
            click.echo("No matching tasks.")
            return
        for task in found:
            click.echo(f"  P{task.priority} #{task.id}: {task.task}")


@task_group.command("blocked")
def task_blocked():
    """Show blocked tasks and what they wait on."""
    with _get_db() as db:
        current = state_mod.get_state(db)
        found = blocking.get_blocked_tasks(db, current.current_task_id, current.current_task)
        if not found:
            click.echo("No blocked tasks.")
            return
        for bt in found:
            click.echo(f"  #{bt.task.id}: {bt.task.task}")
            for b in bt.blockers:
                mark = "waiting on" if b.exists else "resolved"
                click.echo(f"    - {mark} #{b.id}: {b.task}")


@task_group.command("note")
@click.argument("note")
@click.option("--task", "task_id", type=int, default=None, help="Task id (default: current task)")
@click.option(
    "--type", "note_type", type=click.Choice(["progress", "attempt", "blocker", "learning"]),
    default="progress", help="Kind of note",
)
def task_note(note, task_id, note_type):
    """Attach a note to a task."""
    with _get_db() as db, _reporting_errors():
        if task_id is None:
            task_id = state_mod.get_state(db).current_task_id
            if task_id is None:
                raise click.UsageError("No current task; pass --task")
        added = notes_mod.add_task_note(db, task_id, note, note_type, created_by=get_config().owner)
        click.echo(f"Noted on #{added.task_id} ({added.note_type})")


@task_group.command("notes")
@click.argument("task_id", type=int)
def task_notes(task_id):
    """List notes on a task, oldest first."""
    with _get_db() as db:
        found = notes_mod.get_task_notes(db, task_id)
        if not found:
            click.echo(f"No notes on #{task_id}.")
            return
        for n in found:
            click.echo(f"  [{n.created_at}] {n.note_type}: {n.note}")


# ── Work Commands ─────────────────────────────────────────────────────────────


@main.group("work")
def work_group():
    """Claim, complete and report on the current task."""
    pass


@work_group.command("claim")
@click.argument("task_id", type=int, required=False)
def work_claim(task_id):
    """Claim a task (the head of the queue if no id is given)."""
    with _get_db() as db, _reporting_errors():
        result = work.claim_task(db, task_id)
        click.echo(f"Now working on #{result.task.id}: {result.task.task}")
        if result.task.context:
            click.echo(f"  Context: {result.task.context}")


@work_group.command("complete")
@click.argument("task_id", type=int)
@click.option("--minutes", type=int, default=None, help="Time taken in minutes")
@click.option("--notes", default=None, help="Completion notes")
def work_complete(task_id, minutes, notes):
    """Complete the current task and move to the next one."""
    with _get_db() as db, _reporting_errors():
        result = work.complete_task(db, task_id, minutes, notes)
        click.echo(f"Completed: {result.completed.task} (streak: {result.state.streak_days})")
        for t in result.unblocked:
            click.echo(f"  Unblocked #{t.id}: {t.task}")
        if result.next_task:
            click.echo(f"Next up #{result.next_task.id}: {result.next_task.task}")
        else:
            click.echo("No unblocked tasks left in the queue.")


@work_group.command("blocked")
@click.argument("blocker")
@click.option("--context", "-c", default=None, help="More detail on the blocker")
@click.option("--stay", is_flag=True, help="Keep the current task instead of skipping it")
def work_blocked(blocker, context, stay):
    """Report a blocker on the current task."""
    with _get_db() as db, _reporting_errors():
        result = work.report_blocked(db, blocker, context, skip_to_next=not stay)
        click.echo(mappers.blocked_to_dict(result)["message"])


@work_group.command("done")
@click.argument("task_id", type=int)
@click.argument("notes")
@click.option("--by", "completed_by", default="unknown", help="Who completed it")
def work_done(task_id, notes, completed_by):
    """Mark a task done that was finished outside the system."""
    with _get_db() as db, _reporting_errors():
        result = work.mark_done(db, task_id, notes, completed_by)
        click.echo(mappers.mark_done_to_dict(result)["message"])
        if result.next_task:
            click.echo(f"Next up #{result.next_task.id}: {result.next_task.task}")


@work_group.command("resolve")
@click.argument("blocker_id", type=int)
@click.argument("resolution")
def work_resolve(blocker_id, resolution):
    """Resolve a logged blocker."""
    with _get_db() as db, _reporting_errors():
        blocker = work.resolve_blocker(db, blocker_id, resolution)
        click.echo(f"Resolved blocker #{blocker.id}: {blocker.blocker}")


@work_group.command("start")
@click.argument("task_id", type=int, required=False)
@click.option("--minutes", type=int, default=None, help="Planned session length")
@click.option("--energy", type=click.Choice(["high", "medium", "low"]), default=None)
def work_start(task_id, minutes, energy):
    """Check in, pick up a task and start a work session."""
    with _get_db() as db, _reporting_errors():
        result = work.start_work(db, task_id, minutes, energy)
        click.echo(mappers.start_work_to_dict(result)["message"])
        for n in result.notes:
            click.echo(f"  [{n.note_type}] {n.note}")
        if result.session_started:
            click.echo(f"Started session #{result.session.id}")


@work_group.command("session")
def work_session():
    """Show the active work session."""
    with _get_db() as db:
        active = sessions.get_active_session(db)
        if active is None:
            click.echo("No active session.")
            return
        d = mappers.session_to_dict(active)
        click.echo(f"Session #{d['id']}: {d['elapsed_minutes']} min elapsed")
        if d["remaining_minutes"] is not None:
            click.echo(f"  Remaining: {d['remaining_minutes']} min")
        click.echo(f"  Tasks completed: {d['tasks_completed']}")


@work_group.command("finish")
@click.option("--notes", default=None, help="Session notes")
@click.option("--learnings", default=None, help="What you learned")
def work_finish(notes, learnings):
    """End the active session and summarize it."""
    with _get_db() as db, _reporting_errors():
        summary = work.finish_session(db, notes, learnings)
        click.echo(mappers.session_summary_to_dict(summary)["message"])
        for c in summary.completed:
            click.echo(f"  ✓ {c.task}")
        if summary.next_task:
            click.echo(f"Next up #{summary.next_task.id}: {summary.next_task.task}")


# ── State Commands ────────────────────────────────────────────────────────────


@main.group("state")
def state_group():
    """Goal, streak and progress."""
    pass


@state_group.command("show")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def state_show(json_output):
    """Show the work state."""
    with _get_db() as db:
        current = state_mod.get_state(db)
        if json_output:
            _echo_json(mappers.state_to_dict(current))
            return
        click.echo(f"Goal: {current.goal or 'Not set'}")
        if current.goal_metric:
            click.echo(f"  Metric: {current.goal_metric}")
        if current.is_idle:
            click.echo("Current task: none")
        else:
            click.echo(f"Current task: #{current.current_task_id} {current.current_task}")
            click.echo(f"  Assigned: {current.current_task_assigned_at}")
        click.echo(f"Status: {current.status}")
        click.echo(f"Streak: {current.streak_days}")
        click.echo(f"Queue depth: {tasks_mod.queue_depth(db)}")


@state_group.command("checkin")
def state_checkin():
    """Record a check-in."""
    with _get_db() as db:
        current = work.check_in(db)
        today = daily_log.get_day(db)
        click.echo(f"Checked in at {current.last_checkin}")
        click.echo(f"  Check-ins today: {today.checkins}")


@state_group.command("goal")
@click.argument("goal")
@click.option("--metric", default=None, help="How the goal is measured")
def state_goal(goal, metric):
    """Set the goal."""
    with _get_db() as db, _reporting_errors():
        current = state_mod.set_goal(db, goal, metric)
        click.echo(f"Goal set: {current.goal}")


@state_group.command("progress")
@click.argument("revenue")
@click.argument("subscribers", type=int)
def state_progress(revenue, subscribers):
    """Record revenue and subscriber numbers."""
    with _get_db() as db, _reporting_errors():
        current = state_mod.update_progress(db, revenue, subscribers)
        click.echo(f"Progress: {current.current_revenue}, {current.subscribers} subscribers")


@state_group.command("reset-streak")
def state_reset_streak():
    """Reset the streak to zero."""
    with _get_db() as db:
        state_mod.reset_streak(db)
        click.echo("Streak reset.")


@state_group.command("history")
@click.option("--project", default=None, help="Filter by project")
@click.option("--limit", type=int, default=20, help="How many entries")
def state_history(project, limit):
    """List completed tasks, newest first."""
    with _get_db() as db:
        done = history.list_completed(db, project=project, limit=limit)
        if not done:
            click.echo("Nothing completed yet.")
            return
        for c in done:
            took = f" ({c.time_taken_minutes} min)" if c.time_taken_minutes else ""
            click.echo(f"  [{c.completed_at}] {c.task}{took}")


@state_group.command("stats")
def state_stats():
    """Show completion statistics."""
    with _get_db() as db:
        stats = history.get_stats(db)
        blockers = history.get_blocker_stats(db)
        click.echo(f"Completed today: {stats['completed_today']}")
        click.echo(f"Completed this week: {stats['completed_this_week']}")
        click.echo(f"Completed total: {stats['total_completed']}")
        click.echo(f"Streak: {state_mod.get_state(db).streak_days}")
        click.echo(f"Blockers: {blockers['active']} active, {blockers['resolved']} resolved")


@state_group.command("blockers")
@click.option("--all", "show_all", is_flag=True, help="Include resolved blockers")
def state_blockers(show_all):
    """List logged blockers."""
    with _get_db() as db:
        found = history.list_blockers(db, active_only=not show_all)
        if not found:
            click.echo("No blockers.")
            return
        for b in found:
            mark = "✓" if b.resolved_at else "✗"
            task = f" (task #{b.task_id})" if b.task_id else ""
            click.echo(f"  {mark} #{b.id}: {b.blocker}{task}")


@state_group.command("mood")
@click.argument("mood")
@click.option("--notes", default=None, help="Notes for the day")
def state_mood(mood, notes):
    """Record today's mood."""
    with _get_db() as db, _reporting_errors():
        day = daily_log.log_mood(db, mood, notes)
        click.echo(f"Mood for {day.date}: {day.mood}")


@state_group.command("today")
def state_today():
    """Show today's counters."""
    with _get_db() as db:
        day = daily_log.get_or_create_day(db)
        click.echo(f"{day.date}")
        click.echo(f"  Completed: {day.tasks_completed}")
        click.echo(f"  Assigned: {day.tasks_assigned}")
        click.echo(f"  Check-ins: {day.checkins}")
        if day.mood:
            click.echo(f"  Mood: {day.mood}")


# ── Knowledge Commands ────────────────────────────────────────────────────────


@main.group("log")
def log_group():
    """Decisions and learnings."""
    pass


@log_group.command("decision")
@click.argument("decision")
@click.argument("rationale")
@click.option("--alternatives", default=None, help="Options considered")
@click.option("--project", default=None, help="Project")
@click.option("--impact", default=None, help="Expected impact")
def log_decision(decision, rationale, alternatives, project, impact):
    """Record a decision and its rationale."""
    with _get_db() as db, _reporting_errors():
        logged = knowledge.log_decision(
            db, decision, rationale, alternatives, project, impact, decided_by=get_config().owner
        )
        click.echo(f"Decision #{logged.id} recorded")


@log_group.command("decisions")
@click.option("--project", default=None, help="Filter by project")
@click.option("--limit", type=int, default=20)
def log_decisions(project, limit):
    """List decisions, newest first."""
    with _get_db() as db:
        for d in knowledge.list_decisions(db, project=project, limit=limit):
            click.echo(f"  #{d.id} {d.decision}")
            click.echo(f"      why: {d.rationale}")


@log_group.command("learning")
@click.argument("content")
@click.option("--category", default=None, help="Category")
@click.option("--tags", default=None, help="Comma-separated tags")
@click.option("--source", default=None, help="Where it came from")
def log_learning(content, category, tags, source):
    """Record something learned."""
    with _get_db() as db, _reporting_errors():
        logged = knowledge.log_learning(
            db, content, category, _split_tags(tags), source, created_by=get_config().owner
        )
        click.echo(f"Learning #{logged.id} recorded")


@log_group.command("learnings")
@click.option("--category", default=None)
@click.option("--tag", default=None)
@click.option("--query", "-q", default=None, help="Text to search for")
@click.option("--limit", type=int, default=20)
def log_learnings(category, tag, query, limit):
    """Search learnings."""
    with _get_db() as db:
        found = knowledge.list_learnings(db, category=category, tag=tag, query=query, limit=limit)
        if not found:
            click.echo("No learnings found.")
            return
        for item in found:
            label = f"[{item.category}] " if item.category else ""
            click.echo(f"  #{item.id} {label}{item.content}")


@main.group("issue")
def issue_group():
    """Bugs and feature requests against cofounder itself."""
    pass


@issue_group.command("report")
@click.argument("issue_type", type=click.Choice(["bug", "feature"]))
@click.argument("title")
@click.argument("description")
@click.option("--priority", "-p", type=int, default=5, help="Priority 1-10")
def issue_report(issue_type, title, description, priority):
    """Report an issue."""
    with _get_db() as db, _reporting_errors():
        issue = knowledge.report_issue(
            db, issue_type, title, description, get_config().owner, priority
        )
        click.echo(f"Issue #{issue.id} reported: {issue.title}")


@issue_group.command("list")
@click.option("--status", default=None)
@click.option("--type", "issue_type", default=None)
@click.option("--limit", type=int, default=10)
def issue_list(status, issue_type, limit):
    """List issues, highest priority first."""
    with _get_db() as db:
        found = knowledge.list_issues(db, status=status, issue_type=issue_type, limit=limit)
        if not found:
            click.echo("No issues.")
            return
        for i in found:
            click.echo(f"  #{i.id} [{i.type}/{i.status}] P{i.priority} {i.title}")


@issue_group.command("update")
@click.argument("issue_id", type=int)
@click.option("--status", type=click.Choice(["open", "in_progress", "resolved", "wontfix"]))
@click.option("--resolution", default=None)
@click.option("--priority", type=int, default=None)
def issue_update(issue_id, status, resolution, priority):
    """Change an issue's status, resolution or priority."""
    with _get_db() as db, _reporting_errors():
        kwargs = {"resolution": resolution} if resolution is not None else {}
        before, after = knowledge.update_issue(
            db, issue_id, status=status, priority=priority, **kwargs
        )
        click.echo(f"Issue #{after.id}: {before.status} -> {after.status}")


# ── Dispatch Commands ─────────────────────────────────────────────────────────


@main.group("dispatch")
def dispatch_group():
    """Dispatch tasks to AI agents."""
    pass


@dispatch_group.command("send")
@click.argument("agent")
@click.argument("task")
@click.option("--target", default="hetzner", help="hetzner, mac or cold_storage")
@click.option("--repo", "repo_path", default=None, help="Repository path for the agent")
@click.option("--track", is_flag=True, help="Track the job as a queue task")
@click.option("--wait", is_flag=True, help="Run a local job now and wait for it")
def dispatch_send(agent, task, target, repo_path, track, wait):
    """Queue a dispatch job."""
    config = get_config()
    with _get_db() as db, _reporting_errors():
        job = orchestrator.queue_dispatch(
            db,
            config,
            orchestrator.DispatchRequest(
                agent=agent,
                task=task,
                target=target,
                repo_path=repo_path,
                track_as_task=track,
                dispatched_by="cli",
            ),
        )
        click.echo(f"Dispatch job {job.id} created for {job.target}:{job.agent}")
        if wait and job.target == "hetzner":
            job = orchestrator.process_dispatch_job(db, config, job.id)
            _echo_job(job)


@dispatch_group.command("run")
@click.argument("job_id", type=int)
def dispatch_run(job_id):
    """Run a pending local job in the foreground."""
    config = get_config()
    with _get_db() as db, _reporting_errors():
        _echo_job(orchestrator.process_dispatch_job(db, config, job_id))


@dispatch_group.command("status")
@click.argument("job_id", type=int)
def dispatch_status(job_id):
    """Show a dispatch job."""
    with _get_db() as db, _reporting_errors():
        _echo_job(orchestrator.require_dispatch_job(db, job_id))


@dispatch_group.command("list")
@click.option("--status", default=None, help="pending, running, completed or failed")
@click.option("--target", default=None, help="Filter by target")
@click.option("--limit", type=int, default=10)
def dispatch_list(status, target, limit):
    """List recent dispatch jobs."""
    with _get_db() as db, _reporting_errors():
        jobs = orchestrator.list_dispatch_jobs(db, status=status, target=target, limit=limit)
        if not jobs:
            click.echo("No dispatch jobs found.")
            return
        for job in jobs:
            click.echo(f"  [{job.status.upper()}] #{job.id} {job.target}:{job.agent} {job.task}")


@dispatch_group.command("cancel")
@click.argument("job_id", type=int)
def dispatch_cancel(job_id):
    """Cancel a pending dispatch job."""
    with _get_db() as db, _reporting_errors():
        job = orchestrator.cancel_dispatch(db, job_id)
        click.echo(f"Cancelled dispatch job {job.id}")


@dispatch_group.command("parse")
@click.argument("text")
def dispatch_parse(text):
    """Parse an @dispatch command without queueing it."""
    command = parse_dispatch_command(text)
    if command is None:
        click.echo("No dispatch command found.", err=True)
        sys.exit(1)
    _echo_json({
        "agent": command.agent.value,
        "target": command.target.value,
        "task": command.task,
        "repo_path": command.repo_path,
        "track_as_task": command.track_as_task,
    })


def _echo_job(job):
    click.echo(f"Dispatch job #{job.id} {job.target}:{job.agent}")
    click.echo(f"  Status: {job.status}")
    click.echo(f"  Task: {job.task}")
    if job.depth:
        click.echo(f"  Depth: {job.depth}")
    if job.cofounder_task_id:
        click.echo(f"  Linked task: #{job.cofounder_task_id}")
    if job.result:
        click.echo(f"  Result: {job.result}")
    if job.error_message:
        click.echo(f"  Error: {job.error_message}")


# ── Server Commands ───────────────────────────────────────────────────────────


@main.command("serve")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8787, type=int, help="Port to listen on")
def serve_command(host, port):
    """Run the HTTP app (Slack events and the dispatch listener API)."""
    from cofounder.web.app import run_server

    click.echo(f"Listening on http://{host}:{port}", err=True)
    run_server(host=host, port=port)


@main.group("mcp")
def mcp_group():
    """MCP server commands."""
    pass


@mcp_group.command("serve")
def mcp_serve():
    """Start the MCP server (stdio transport)."""
    from cofounder.mcp.server import mcp
    from cofounder.mcp import prompts  # noqa: F401 - registers prompts

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
