"""MCP prompt templates for common workflows."""

from cofounder.mcp.server import mcp


@mcp.prompt()
def plan_work(goal: str) -> str:
    """Generate a prompt to break a goal down into queued tasks."""
    return (
        f"I need to accomplish the following goal:\n\n"
        f"{goal}\n\n"
        f"Break it down into concrete tasks that each fit in one sitting. For each task:\n"
        f"1. Write a short, specific description\n"
        f"2. Pick a priority from 0 to 10 (10 is most urgent)\n"
        f"3. Pick a project: infinite_realms, infrastructure, sanctuary or other\n"
        f"4. Note which tasks must be finished first (blocked_by)\n\n"
        f"Then add them all with a single add_tasks call. Tasks that depend on others "
        f"in the same batch should be added in a second call, once their ids are known."
    )


@mcp.prompt()
def daily_standup() -> str:
    """Generate a prompt for a start-of-day check-in."""
    return (
        "Start my work session.\n\n"
        "1. Call checkin to see my goal, current task, streak and open blockers\n"
        "2. If nothing is in progress, call claim_task to take the next task\n"
        "3. Call blocked_tasks to see what is waiting on what\n\n"
        "Then tell me in two or three sentences what I am working on, how long it has "
        "been in progress, and anything blocked that needs my attention."
    )


@mcp.prompt()
def weekly_review() -> str:
    """Generate a prompt for a weekly progress review."""
    return (
        "Review my progress for the week.\n\n"
        "Use stats for the totals, list_completed with days=7 for what got done, "
        "blockers for what is still open, and queue for what is next. Then give me:\n"
        "1. What was finished, grouped by project\n"
        "2. Blockers that have been open too long\n"
        "3. Whether the queue priorities still match the goal\n"
        "4. One suggestion for next week"
    )


@mcp.prompt()
def dispatch_work(task_id: int) -> str:
    """Generate a prompt to hand a queued task to an AI agent."""
    return (
        f"I want an AI agent to work on queued task #{task_id}.\n\n"
        f"1. Use search_tasks or queue to read the task and its context\n"
        f"2. Write clear, self-contained instructions for the agent\n"
        f"3. Call dispatch_task with agent='claude' and target='hetzner' for local work, "
        f"or target='mac' for gemini, qwen or cline. Set repo_path if the task is about "
        f"a specific repository\n"
        f"4. Check progress later with dispatch_status\n\n"
        f"Once the agent reports success, mark the task done with mark_done."
    )
