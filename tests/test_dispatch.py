"""Tests for dispatch job lifecycle, local agent execution and the worker."""

import signal
import subprocess
import sys
import tempfile
import time
from pathlib import Path
from unittest.mock import MagicMock, call, patch

import pytest
from slack_sdk.errors import SlackApiError

from cofounder.config import Config
from cofounder.core import history
from cofounder.core import tasks as tasks_mod
from cofounder.core.errors import (
    AgentUnavailableError,
    ConflictError,
    DispatchTimeoutError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from cofounder.db.engine import init_db
from cofounder.dispatch import orchestrator
from cofounder.dispatch.orchestrator import DispatchRequest
from cofounder.dispatch.runner import KILL_GRACE_SECONDS, AgentRunError, get_runner, run_claude
from cofounder.dispatch.worker import DispatchWorker
from cofounder.integrations.slack import (
    MAX_RESULT_LENGTH,
    TRUNCATION_MARKER,
    SlackError,
    SlackMessage,
    add_reaction,
    format_dispatch_result,
    send_message,
    truncate_result,
)

POPEN = "cofounder.dispatch.runner.subprocess.Popen"
KILLPG = "cofounder.dispatch.runner.os.killpg"


@pytest.fixture
def config():
    """Config pointing at a temporary database."""
    with tempfile.TemporaryDirectory() as tmp:
        yield Config(db_path=Path(tmp) / "test.db", dispatch_timeout_ms=2000)


@pytest.fixture
def db(config):
    conn = init_db(config.db_path)
    yield conn
    conn.close()


def _fake_proc(stdout="", stderr="", returncode=0):
    proc = MagicMock()
    proc.pid = 4242
    proc.communicate.return_value = (stdout, stderr)
    proc.returncode = returncode
    proc.poll.return_value = returncode
    return proc


def _queue(db, config, **kwargs):
    kwargs.setdefault("agent", "claude")
    kwargs.setdefault("task", "summarize the logs")
    return orchestrator.queue_dispatch(db, config, DispatchRequest(**kwargs))


class TestQueueDispatch:
    def test_creates_pending_job(self, db, config):
        job = _queue(db, config, target="mac", dispatched_by="U1")
        assert job.id is not None
        assert job.status == "pending"
        assert job.target == "mac"
        assert job.agent == "claude"
        assert job.depth == 0
        assert job.dispatched_by == "U1"

    def test_default_target_is_local(self, db, config):
        assert _queue(db, config).target == "hetzner"

    def test_local_job_submitted_to_worker(self, db, config):
        worker = MagicMock()
        job = orchestrator.queue_dispatch(
            db, config, DispatchRequest(agent="claude", task="x"), worker=worker
        )
        worker.submit.assert_called_once_with(job.id)

    def test_remote_job_not_submitted(self, db, config):
        worker = MagicMock()
        orchestrator.queue_dispatch(
            db, config, DispatchRequest(agent="claude", task="x", target="mac"), worker=worker
        )
        worker.submit.assert_not_called()

    @pytest.mark.parametrize("field,value", [("agent", "gpt"), ("target", "moon")])
    def test_invalid_enum(self, db, config, field, value):
        with pytest.raises(ValidationError):
            _queue(db, config, **{field: value})
        assert orchestrator.list_dispatch_jobs(db) == []

    def test_empty_task(self, db, config):
        with pytest.raises(ValidationError):
            _queue(db, config, task="  ")


class TestDepth:
    def test_depth_limit(self, db, config):
        assert _queue(db, config, depth=4).depth == 4
        with pytest.raises(ValidationError, match=r"Maximum dispatch chain depth \(5\) exceeded"):
            _queue(db, config, depth=5)
        assert len(orchestrator.list_dispatch_jobs(db)) == 1

    def test_negative_depth(self, db, config):
        with pytest.raises(ValidationError):
            _queue(db, config, depth=-1)

    def test_depth_derived_from_parent(self, db, config):
        root = _queue(db, config)
        child = _queue(db, config, parent_dispatch_id=root.id, depth=0)
        assert child.depth == 1
        assert child.parent_dispatch_id == root.id

    def test_chain_stops_at_limit(self, db, config):
        job = _queue(db, config)
        for _ in range(config.dispatch_max_depth - 1):
            job = _queue(db, config, parent_dispatch_id=job.id)
        assert job.depth == config.dispatch_max_depth - 1
        with pytest.raises(ValidationError):
            _queue(db, config, parent_dispatch_id=job.id)

    def test_unknown_parent(self, db, config):
        with pytest.raises(NotFoundError):
            _queue(db, config, parent_dispatch_id=999)


class TestRunner:
    def test_success(self, config, tmp_path):
        proc = _fake_proc(stdout="All tests pass")
        with patch(POPEN, return_value=proc) as popen:
            assert run_claude(config, "run tests", str(tmp_path)) == "All tests pass"

        args, kwargs = popen.call_args
        assert args[0] == ["claude", "-p", "run tests", "--print"]
        assert kwargs["cwd"] == str(tmp_path)
        assert kwargs["env"]["CLAUDE_CODE_HEADLESS"] == "1"
        assert kwargs["stdin"] == subprocess.DEVNULL
        proc.communicate.assert_called_once_with(timeout=2.0)

    def test_falls_back_to_stderr(self, config):
        with patch(POPEN, return_value=_fake_proc(stderr="warning only")):
            assert run_claude(config, "x") == "warning only"

    def test_no_output(self, config):
        with patch(POPEN, return_value=_fake_proc()):
            assert run_claude(config, "x") == "No output"

    def test_nonzero_exit(self, config):
        with patch(POPEN, return_value=_fake_proc(stderr="boom", returncode=2)):
            with pytest.raises(AgentRunError, match="Claude exited with code 2: boom"):
                run_claude(config, "x")

    def test_timeout_kills_process_group(self, config):
        proc = _fake_proc()
        proc.communicate.side_effect = [
            subprocess.TimeoutExpired("claude", 2.0),
            ("", ""),
        ]
        proc.poll.return_value = -9
        with patch(POPEN, return_value=proc) as popen, patch(KILLPG) as killpg:
            with pytest.raises(DispatchTimeoutError, match="timed out after 2000ms"):
                run_claude(config, "x")
        assert popen.call_args[1]["start_new_session"] is True
        killpg.assert_called_once_with(4242, signal.SIGKILL)
        assert proc.communicate.call_args_list[1] == call(timeout=KILL_GRACE_SECONDS)

    def test_missing_repo(self, config):
        with patch(POPEN) as popen:
            with pytest.raises(ValidationError):
                run_claude(config, "x", "/definitely/not/a/real/path")
        popen.assert_not_called()

    def test_capabilities(self):
        assert get_runner("hetzner", "claude") is run_claude
        with pytest.raises(AgentUnavailableError, match="mac:gemini"):
            get_runner("hetzner", "gemini")(Config(), "x")
        with pytest.raises(AgentUnavailableError):
            get_runner("mac", "claude")


def _agent_script(tmp_path, body, name="agent.sh"):
    """Write an executable shell script that stands in for the claude CLI."""
    script = tmp_path / name
    script.write_text("#!/bin/sh\n" + body)
    script.chmod(0o755)
    return str(script)


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX process groups")
class TestRunnerProcesses:
    def test_timeout_kills_background_children(self, db, config, tmp_path):
        config.claude_command = _agent_script(tmp_path, "sleep 8 &\nsleep 8\n")
        config.dispatch_timeout_ms = 500
        job = _queue(db, config)

        started = time.monotonic()
        job = orchestrator.process_dispatch_job(db, config, job.id)
        elapsed = time.monotonic() - started

        assert job.status == "failed"
        assert job.error_message == "Claude execution timed out after 500ms"
        assert elapsed < 3

    def test_undecodable_output_still_completes(self, db, config, tmp_path):
        config.claude_command = _agent_script(tmp_path, "printf 'ok \\377\\376 done\\n'\n")
        job = _queue(db, config)
        job = orchestrator.process_dispatch_job(db, config, job.id)
        assert job.status == "completed"
        assert job.result.startswith("ok ")
        assert job.result.rstrip().endswith(" done")
        assert "�" in job.result

    def test_nonzero_exit_from_real_process(self, db, config, tmp_path):
        config.claude_command = _agent_script(tmp_path, "echo 'bad flag' >&2\nexit 3\n")
        job = orchestrator.process_dispatch_job(db, config, _queue(db, config).id)
        assert job.status == "failed"
        assert job.error_message == "Claude exited with code 3: bad flag\n"


class TestProcessDispatchJob:
    def test_success(self, db, config):
        job = _queue(db, config)
        with patch(POPEN, return_value=_fake_proc(stdout="done")):
            job = orchestrator.process_dispatch_job(db, config, job.id)
        assert job.status == "completed"
        assert job.result == "done"
        assert job.error_message is None
        assert job.started_at is not None
        assert job.completed_at is not None

    def test_unavailable_agent_fails_without_spawning(self, db, config):
        job = _queue(db, config, agent="gemini")
        with patch(POPEN) as popen:
            job = orchestrator.process_dispatch_job(db, config, job.id)
        popen.assert_not_called()
        assert job.status == "failed"
        assert "mac" in job.error_message

    def test_runner_failure_recorded(self, db, config):
        job = _queue(db, config)
        with patch(POPEN, return_value=_fake_proc(stderr="crash", returncode=1)):
            job = orchestrator.process_dispatch_job(db, config, job.id)
        assert job.status == "failed"
        assert "crash" in job.error_message

    def test_timeout_recorded(self, db, config):
        job = _queue(db, config)
        proc = _fake_proc()
        proc.communicate.side_effect = [subprocess.TimeoutExpired("claude", 2.0), ("", "")]
        with patch(POPEN, return_value=proc), patch(KILLPG):
            job = orchestrator.process_dispatch_job(db, config, job.id)
        assert job.status == "failed"
        assert job.error_message == "Claude execution timed out after 2000ms"

    def test_not_pending_is_noop(self, db, config):
        job = _queue(db, config)
        with patch(POPEN, return_value=_fake_proc(stdout="first")):
            orchestrator.process_dispatch_job(db, config, job.id)
        with patch(POPEN) as popen:
            again = orchestrator.process_dispatch_job(db, config, job.id)
        popen.assert_not_called()
        assert again.result == "first"

    def test_full_result_stored(self, db, config):
        job = _queue(db, config)
        long_output = "x" * (MAX_RESULT_LENGTH * 2)
        with patch(POPEN, return_value=_fake_proc(stdout=long_output)):
            job = orchestrator.process_dispatch_job(db, config, job.id)
        assert len(job.result) == MAX_RESULT_LENGTH * 2


class TestRemoteLifecycle:
    def test_pending_for_target(self, db, config):
        first = _queue(db, config, target="mac")
        second = _queue(db, config, target="mac")
        _queue(db, config, target="cold_storage")
        _queue(db, config)
        assert [j.id for j in orchestrator.get_pending_jobs(db, "mac")] == [first.id, second.id]

    def test_running_then_complete(self, db, config):
        job = _queue(db, config, target="mac")
        running = orchestrator.mark_job_running(db, job.id)
        assert running.status == "running"
        done = orchestrator.complete_job(db, config, job.id, "ok", True)
        assert done.status == "completed"
        assert done.result == "ok"
        assert orchestrator.get_pending_jobs(db, "mac") == []

    def test_complete_is_idempotent(self, db, config):
        job = _queue(db, config, target="mac")
        orchestrator.complete_job(db, config, job.id, "first", True)
        again = orchestrator.complete_job(db, config, job.id, "second", False)
        assert again.status == "completed"
        assert again.result == "first"
        assert again.error_message is None

    def test_failure(self, db, config):
        job = _queue(db, config, target="mac")
        done = orchestrator.complete_job(db, config, job.id, "gemini crashed", False)
        assert done.status == "failed"
        assert done.error_message == "gemini crashed"
        assert done.result is None

    def test_complete_unknown(self, db, config):
        with pytest.raises(NotFoundError):
            orchestrator.complete_job(db, config, 404, "x", True)

    def test_mark_running_terminal_is_noop(self, db, config):
        job = _queue(db, config, target="mac")
        orchestrator.complete_job(db, config, job.id, "ok", True)
        assert orchestrator.mark_job_running(db, job.id).status == "completed"


class TestCancel:
    def test_cancel_pending(self, db, config):
        job = _queue(db, config, target="mac")
        cancelled = orchestrator.cancel_dispatch(db, job.id)
        assert cancelled.status == "failed"
        assert cancelled.error_message == orchestrator.CANCELLED_MESSAGE

    def test_cancel_running(self, db, config):
        job = _queue(db, config, target="mac")
        orchestrator.mark_job_running(db, job.id)
        with pytest.raises(ConflictError):
            orchestrator.cancel_dispatch(db, job.id)

    def test_cancelled_job_ignores_late_result(self, db, config):
        job = _queue(db, config, target="mac")
        orchestrator.cancel_dispatch(db, job.id)
        late = orchestrator.complete_job(db, config, job.id, "finished anyway", True)
        assert late.status == "failed"
        assert late.result is None


class TestTrackedTasks:
    def test_tracked_job_creates_task(self, db, config):
        job = _queue(db, config, target="mac", track_as_task=True, repo_path="/srv/app")
        task = tasks_mod.get_task(db, job.cofounder_task_id)
        assert task.task == "[dispatch mac:claude] summarize the logs"
        assert task.tags == ["dispatch"]
        assert task.context == "Repository: /srv/app"

    def test_success_closes_task(self, db, config):
        job = _queue(db, config, target="mac", track_as_task=True)
        orchestrator.complete_job(db, config, job.id, "ok", True)
        assert tasks_mod.get_task(db, job.cofounder_task_id) is None
        done = history.list_completed(db)
        assert done[0].notes == f"[Marked done by dispatch:mac:claude] Completed by dispatch job #{job.id}"

    def test_failure_keeps_task(self, db, config):
        job = _queue(db, config, target="mac", track_as_task=True)
        orchestrator.complete_job(db, config, job.id, "nope", False)
        assert tasks_mod.get_task(db, job.cofounder_task_id) is not None

    def test_task_deleted_meanwhile(self, db, config):
        job = _queue(db, config, target="mac", track_as_task=True)
        tasks_mod.delete_task(db, job.cofounder_task_id)
        assert orchestrator.complete_job(db, config, job.id, "ok", True).status == "completed"


class TestNotifications:
    def test_result_posted_to_thread(self, db, config):
        job = _queue(
            db, config, target="mac",
            slack_channel_id="C1", slack_thread_ts="111.1", slack_message_ts="111.1",
        )
        with patch("cofounder.dispatch.orchestrator.post_thread_reply") as reply, \
                patch("cofounder.dispatch.orchestrator.add_reaction") as react:
            orchestrator.complete_job(db, config, job.id, "all good", True)
        args = reply.call_args[0]
        assert args[1:3] == ("C1", "111.1")
        assert "all good" in args[3]
        react.assert_called_once_with(None, "C1", "111.1", "white_check_mark")

    def test_notification_failure_is_swallowed(self, db, config):
        job = _queue(db, config, target="mac", slack_channel_id="C1", slack_thread_ts="111.1")
        with patch(
            "cofounder.dispatch.orchestrator.post_thread_reply",
            side_effect=SlackError("chat.postMessage", "channel_not_found"),
        ):
            done = orchestrator.complete_job(db, config, job.id, "ok", True)
        assert done.status == "completed"

    def test_no_thread_no_post(self, db, config):
        job = _queue(db, config, target="mac")
        with patch("cofounder.dispatch.orchestrator.post_thread_reply") as reply:
            orchestrator.complete_job(db, config, job.id, "ok", True)
        reply.assert_not_called()

    def test_truncation(self):
        text = "y" * (MAX_RESULT_LENGTH + 10)
        truncated = truncate_result(text)
        assert truncated.endswith(TRUNCATION_MARKER)
        assert len(truncated) == MAX_RESULT_LENGTH + len(TRUNCATION_MARKER)
        assert truncate_result("short") == "short"
        formatted = format_dispatch_result("hetzner", "claude", text, True)
        assert TRUNCATION_MARKER in formatted
        assert formatted.startswith(":white_check_mark: *hetzner:claude* completed")


class TestListing:
    def test_list_newest_first_and_filters(self, db, config):
        a = _queue(db, config, target="mac")
        b = _queue(db, config, target="cold_storage")
        orchestrator.complete_job(db, config, a.id, "ok", True)

        assert [j.id for j in orchestrator.list_dispatch_jobs(db)] == [b.id, a.id]
        assert [j.id for j in orchestrator.list_dispatch_jobs(db, status="completed")] == [a.id]
        assert [j.id for j in orchestrator.list_dispatch_jobs(db, target="cold_storage")] == [b.id]
        assert len(orchestrator.list_dispatch_jobs(db, limit=1)) == 1

    def test_invalid_status(self, db):
        with pytest.raises(ValidationError):
            orchestrator.list_dispatch_jobs(db, status="done")

    def test_counts(self, db, config):
        a = _queue(db, config, target="mac")
        _queue(db, config, target="mac")
        orchestrator.complete_job(db, config, a.id, "ok", True)
        counts = orchestrator.dispatch_status_counts(db)
        assert counts == {"pending": 1, "running": 0, "completed": 1, "failed": 0}


class TestWorker:
    def test_processes_submitted_job(self, db, config):
        worker = DispatchWorker(config, sweep_pending=False)
        worker.start()
        try:
            with patch(POPEN, return_value=_fake_proc(stdout="from worker")):
                job = orchestrator.queue_dispatch(
                    db, config, DispatchRequest(agent="claude", task="go"), worker=worker
                )
                worker.join()
        finally:
            worker.stop()

        job = orchestrator.get_dispatch_job(db, job.id)
        assert job.status == "completed"
        assert job.result == "from worker"
        assert not worker.is_running

    def test_sweeps_pending_on_start(self, db, config):
        job = _queue(db, config, agent="gemini")
        worker = DispatchWorker(config)
        worker.start()
        try:
            deadline = time.monotonic() + 5
            while time.monotonic() < deadline:
                if orchestrator.get_dispatch_job(db, job.id).is_terminal:
                    break
                time.sleep(0.05)
        finally:
            worker.stop()
        assert orchestrator.get_dispatch_job(db, job.id).status == "failed"

    def test_survives_bad_job_id(self, db, config):
        worker = DispatchWorker(config, sweep_pending=False)
        worker.start()
        try:
            worker.submit(999)
            job = _queue(db, config, agent="qwen")
            worker.submit(job.id)
            worker.join()
            assert worker.is_running
        finally:
            worker.stop()
        assert orchestrator.get_dispatch_job(db, job.id).status == "failed"

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell script agent")
    def test_jobs_run_concurrently(self, db, config, tmp_path):
        config.claude_command = _agent_script(tmp_path, "sleep 1.5\necho finished\n")
        config.dispatch_timeout_ms = 10000
        worker = DispatchWorker(config, sweep_pending=False)
        worker.start()
        try:
            started = time.monotonic()
            first = orchestrator.queue_dispatch(
                db, config, DispatchRequest(agent="claude", task="a"), worker=worker
            )
            second = orchestrator.queue_dispatch(
                db, config, DispatchRequest(agent="claude", task="b"), worker=worker
            )
            time.sleep(0.75)
            assert orchestrator.get_dispatch_job(db, first.id).status == "running"
            assert orchestrator.get_dispatch_job(db, second.id).status == "running"
            worker.join()
            elapsed = time.monotonic() - started
        finally:
            worker.stop()

        for job in (first, second):
            job = orchestrator.get_dispatch_job(db, job.id)
            assert job.status == "completed"
            assert job.result == "finished\n"
        assert elapsed < 2.8

    def test_concurrency_limit_of_one_serializes(self, db, config):
        config.dispatch_max_concurrent = 1
        worker = DispatchWorker(config, sweep_pending=False)
        worker.start()
        try:
            with patch(POPEN, return_value=_fake_proc(stdout="ok")):
                jobs = [
                    orchestrator.queue_dispatch(
                        db, config, DispatchRequest(agent="claude", task=f"t{i}"), worker=worker
                    )
                    for i in range(3)
                ]
                worker.join()
        finally:
            worker.stop()
        assert [orchestrator.get_dispatch_job(db, j.id).status for j in jobs] == ["completed"] * 3


class TestSlackErrors:
    def test_api_failure_is_external_service_error(self):
        client = MagicMock()
        client.chat_postMessage.side_effect = SlackApiError(
            "boom", {"ok": False, "error": "channel_not_found"}
        )
        with patch("cofounder.integrations.slack.get_client", return_value=client):
            with pytest.raises(ExternalServiceError) as exc_info:
                send_message("xoxb-test", "C404", "hello")
        err = exc_info.value
        assert err.code == "EXTERNAL_SERVICE_ERROR"
        assert err.message == "Slack chat.postMessage failed"
        assert err.details == {
            "service": "Slack",
            "operation": "chat.postMessage",
            "original_message": "channel_not_found",
        }

    def test_reaction_failure(self):
        client = MagicMock()
        client.reactions_add.side_effect = SlackApiError("boom", {"ok": False, "error": "invalid_name"})
        with patch("cofounder.integrations.slack.get_client", return_value=client):
            with pytest.raises(SlackError, match="Slack reactions.add failed"):
                add_reaction("xoxb-test", "C1", "1.0", "nope")

    def test_already_reacted_is_not_an_error(self):
        client = MagicMock()
        client.reactions_add.side_effect = SlackApiError(
            "boom", {"ok": False, "error": "already_reacted"}
        )
        with patch("cofounder.integrations.slack.get_client", return_value=client):
            add_reaction("xoxb-test", "C1", "1.0", "eyes")

    def test_missing_token(self):
        with pytest.raises(ExternalServiceError) as exc_info:
            send_message(None, "C1", "hello")
        assert exc_info.value.details["original_message"] == (
            "Slack not configured: SLACK_BOT_TOKEN not set"
        )
        assert exc_info.value.to_dict()["code"] == "EXTERNAL_SERVICE_ERROR"


SEND = "cofounder.dispatch.orchestrator.send_message"


class TestRemoteAnnouncement:
    def test_announced_to_target_channel(self, db, config):
        config.slack_dispatch_channels = {"mac": "CMAC"}
        posted = SlackMessage(channel="CMAC", ts="222.2", text="")
        with patch(SEND, return_value=posted) as send:
            job = _queue(db, config, target="mac", track_as_task=True, repo_path="/srv/app")

        send.assert_called_once_with(
            None,
            "CMAC",
            f"@dispatch --track --repo=/srv/app mac:claude: summarize the logs\n[Job ID: {job.id}]",
        )
        assert job.slack_channel_id == "CMAC"
        assert job.slack_thread_ts == "222.2"

        with patch("cofounder.dispatch.orchestrator.post_thread_reply") as reply, \
                patch("cofounder.dispatch.orchestrator.add_reaction"):
            orchestrator.complete_job(db, config, job.id, "done on mac", True)
        assert reply.call_args[0][1:3] == ("CMAC", "222.2")

    def test_slack_thread_kept(self, db, config):
        config.slack_dispatch_channels = {"mac": "CMAC"}
        with patch(SEND, return_value=SlackMessage(channel="CMAC", ts="3.3", text="")):
            job = _queue(db, config, target="mac", slack_channel_id="C1", slack_thread_ts="1.1")
        assert (job.slack_channel_id, job.slack_thread_ts) == ("C1", "1.1")

    def test_unconfigured_and_local_targets_not_announced(self, db, config):
        config.slack_dispatch_channels = {"mac": "CMAC"}
        with patch(SEND) as send:
            _queue(db, config, target="cold_storage")
            _queue(db, config)
        send.assert_not_called()

    def test_announcement_failure_keeps_job(self, db, config):
        config.slack_dispatch_channels = {"mac": "CMAC"}
        with patch(SEND, side_effect=SlackError("chat.postMessage", "not_in_channel")):
            job = _queue(db, config, target="mac")
        assert job.status == "pending"
        assert job.slack_thread_ts is None
        assert [j.id for j in orchestrator.get_pending_jobs(db, "mac")] == [job.id]

    def test_channels_from_env(self, monkeypatch):
        monkeypatch.setenv("SLACK_DISPATCH_CHANNELS", "mac=CMAC, Cold_Storage=CCOLD,bogus")
        monkeypatch.setenv("DISPATCH_MAX_CONCURRENT", "0")
        config = Config.from_env()
        assert config.slack_dispatch_channels == {"mac": "CMAC", "cold_storage": "CCOLD"}
        assert config.dispatch_max_concurrent == 1
