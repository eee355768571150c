"""Parsing of inline ``@dispatch`` commands out of chat text.

Format: ``@dispatch [--track] [--repo=/path] [target:]agent: task``

Examples::

    @dispatch claude: fix the bug in auth.py
    @dispatch mac:gemini: review this PR
    @dispatch --track --repo=/var/www/myapp claude: add tests
"""

import re
from dataclasses import dataclass

from cofounder.db.models import LOCAL_TARGET, Agent, Target

TRIGGER = "@dispatch"
TRACK_FLAG = "--track"

_REPO_RE = re.compile(r"^--repo=(\S+)")
_COMMAND_RE = re.compile(r"^(?:([a-z_]+):)?([a-z]+):\s*(.+)$", re.IGNORECASE | re.DOTALL)


@dataclass
class DispatchCommand:
    agent: Agent
    target: Target
    task: str
    repo_path: str | None = None
    track_as_task: bool = False


def is_dispatch_command(text: str | None) -> bool:
    return bool(text) and TRIGGER in text.lower()


def _strip_track(remaining: str) -> tuple[str, bool]:
    if remaining.startswith(TRACK_FLAG):
        return remaining[len(TRACK_FLAG):].strip(), True
    return remaining, False


def parse_dispatch_command(text: str | None) -> DispatchCommand | None:
    """Parse a dispatch command. Returns None when the text does not parse."""
    if not text:
        return None
    index = text.lower().find(TRIGGER)
    if index == -1:
        return None

    remaining = text[index + len(TRIGGER):].strip()

    remaining, track = _strip_track(remaining)

    repo_path = None
    if match := _REPO_RE.match(remaining):
        repo_path = match.group(1)
        remaining = remaining[match.end():].strip()

    # --track may also come after --repo
    remaining, track_after = _strip_track(remaining)
    track = track or track_after

    match = _COMMAND_RE.match(remaining)
    if not match:
        return None
    target_str, agent_str, task = match.groups()

    try:
        agent = Agent(agent_str.lower())
    except ValueError:
        return None

    target = LOCAL_TARGET
    if target_str:
        try:
            target = Target(target_str.lower())
        except ValueError:
            return None

    task = task.strip()
    if not task:
        return None

    return DispatchCommand(
        agent=agent,
        target=target,
        task=task,
        repo_path=repo_path,
        track_as_task=track,
    )


def format_dispatch_message(command: DispatchCommand, job_id: int) -> str:
    """Render a command back to text, e.g. for posting to a remote target's channel."""
    flags = []
    if command.track_as_task:
        flags.append(TRACK_FLAG)
    if command.repo_path:
        flags.append(f"--repo={command.repo_path}")
    flag_str = " ".join(flags) + " " if flags else ""
    return (
        f"{TRIGGER} {flag_str}{command.target.value}:{command.agent.value}: {command.task}\n"
        f"[Job ID: {job_id}]"
    )
