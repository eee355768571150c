"""Local execution of dispatch jobs.

Which agent can run where is a static table. Only Claude runs on the local
target; every other pair is rejected with a hint naming the remote target
that can run it.
"""

import logging
import os
import signal
import subprocess
from pathlib import Path
from typing import Callable

from cofounder.config import Config
from cofounder.core.errors import AgentUnavailableError, DispatchTimeoutError, ValidationError
from cofounder.db.models import LOCAL_TARGET, Agent, Target

logger = logging.getLogger(__name__)

Runner = Callable[[Config, str, str | None], str]

# Seconds to wait for pipes to drain after the process group is killed.
KILL_GRACE_SECONDS = 5

# Remote target able to run each agent that cannot run locally, and why.
_UNAVAILABLE = {
    Agent.GEMINI: (Target.MAC, "not authenticated"),
    Agent.QWEN: (Target.MAC, "not installed"),
    Agent.CLINE: (Target.MAC, "not installed"),
}


class AgentRunError(Exception):
    """The agent process ran but reported failure."""


def _kill_group(proc: subprocess.Popen) -> None:
    """SIGKILL the process group led by ``proc``, grandchildren included."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def run_claude(config: Config, task: str, repo_path: str | None = None) -> str:
    """Run ``claude -p <task> --print`` and return its output.

    The agent runs in its own session so that, on timeout and on every other
    exit path, the whole process group is killed rather than only the direct
    child. Output is decoded leniently; only the exit code signals failure.
    """
    if repo_path and not Path(repo_path).is_dir():
        raise ValidationError(f"Repository path does not exist: {repo_path}", "repo_path")

    timeout_ms = config.dispatch_timeout_ms
    cmd = [config.claude_command, "-p", task, "--print"]
    env = {**os.environ, "CLAUDE_CODE_HEADLESS": "1"}

    proc = subprocess.Popen(
        cmd,
        cwd=repo_path or None,
        env=env,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        encoding="utf-8",
        errors="replace",
        start_new_session=True,
    )
    logger.info("Started claude (PID %s) in %s", proc.pid, repo_path or os.getcwd())
    try:
        try:
            stdout, stderr = proc.communicate(timeout=timeout_ms / 1000)
        except subprocess.TimeoutExpired:
            _kill_group(proc)
            try:
                proc.communicate(timeout=KILL_GRACE_SECONDS)
            except subprocess.TimeoutExpired:
                logger.warning("Claude (PID %s) output still open after kill", proc.pid)
            raise DispatchTimeoutError(f"Claude execution timed out after {timeout_ms}ms")

        if proc.returncode != 0:
            raise AgentRunError(f"Claude exited with code {proc.returncode}: {stderr}")
        return stdout or stderr or "No output"
    finally:
        if proc.poll() is None:
            _kill_group(proc)


def _unavailable(agent: Agent) -> Runner:
    remote, reason = _UNAVAILABLE[agent]

    def runner(config: Config, task: str, repo_path: str | None = None) -> str:
        raise AgentUnavailableError(
            f"{agent.value.capitalize()} CLI is not available on {LOCAL_TARGET.value} "
            f"({reason}). Use {remote.value}:{agent.value}: instead.",
            "agent",
        )

    return runner


CAPABILITIES: dict[tuple[Target, Agent], Runner] = {
    (LOCAL_TARGET, Agent.CLAUDE): run_claude,
    **{(LOCAL_TARGET, agent): _unavailable(agent) for agent in _UNAVAILABLE},
}


def get_runner(target: Target | str, agent: Agent | str) -> Runner:
    """Look up the runner for a target/agent pair."""
    target, agent = Target(target), Agent(agent)
    runner = CAPABILITIES.get((target, agent))
    if runner is None:
        raise AgentUnavailableError(
            f"Cannot run {target.value}:{agent.value} jobs here; "
            f"they are picked up by the {target.value} listener.",
            "target",
        )
    return runner


def run_local_agent(config: Config, target: str, agent: str, task: str, repo_path: str | None) -> str:
    return get_runner(target, agent)(config, task, repo_path)
