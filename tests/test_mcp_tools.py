"""Tests for the MCP tool functions, called directly with a stub context."""

import tempfile
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from cofounder.config import Config
from cofounder.db.engine import init_db
from cofounder.mcp import server
from cofounder.mcp.server import AppContext


@pytest.fixture
def ctx():
    """Stub MCP context whose lifespan context holds a temporary database."""
    with tempfile.TemporaryDirectory() as tmp:
        config = Config(db_path=Path(tmp) / "mcp.db", owner="tester")
        db = init_db(config.db_path)
        app = AppContext(db=db, config=config, worker=MagicMock())
        yield SimpleNamespace(request_context=SimpleNamespace(lifespan_context=app))
        db.close()


class TestQueueTools:
    def test_add_and_queue(self, ctx):
        first = server.add_task(ctx, "Design schema", priority=8)
        assert first["queue_position"] == 1
        assert first["added_by"] == "tester"

        server.add_task(ctx, "Build API", priority=9, blocked_by=[first["id"]])
        result = server.queue(ctx)
        assert result["queue_depth"] == 2
        assert [t["status"] for t in result["queue"]] == ["blocked", "pending"]
        assert result["current_task"] is None

    def test_errors_become_payloads(self, ctx):
        result = server.add_task(ctx, "Bad", priority=42)
        assert result["error"] is True
        assert result["code"] == "VALIDATION_FAILED"

        result = server.delete_task(ctx, 99)
        assert result["code"] == "NOT_FOUND"

    def test_add_tasks_atomic(self, ctx):
        result = server.add_tasks(ctx, [{"task": "ok"}, {"task": ""}])
        assert result["error"] is True
        assert server.queue(ctx)["queue_depth"] == 0

    def test_blocked_tasks(self, ctx):
        t1 = server.add_task(ctx, "First")
        server.add_task(ctx, "Second", blocked_by=[t1["id"]])
        result = server.blocked_tasks(ctx)
        assert result["count"] == 1
        assert result["blocked"][0]["blockers"] == [
            {"id": t1["id"], "task": "First", "exists": True}
        ]


class TestWorkTools:
    def test_claim_complete(self, ctx):
        t1 = server.add_task(ctx, "First", priority=9)
        t2 = server.add_task(ctx, "Second", priority=1, blocked_by=[t1["id"]])

        claimed = server.claim_task(ctx)
        assert claimed["claimed"]["id"] == t1["id"]
        assert server.claim_task(ctx)["code"] == "CONFLICT"

        done = server.complete(ctx, t1["id"], time_taken_minutes=15)
        assert done["unblocked_tasks"] == [{"id": t2["id"], "task": "Second"}]
        assert done["next_task"]["id"] == t2["id"]
        assert done["streak_days"] == 1

    def test_blocked_and_resolve(self, ctx):
        server.add_task(ctx, "Stuck", priority=9)
        other = server.add_task(ctx, "Other", priority=1)
        server.claim_task(ctx)

        result = server.blocked(ctx, "Waiting on review")
        assert result["next_task"]["id"] == other["id"]
        assert result["message"].startswith("Skipped #")

        blockers = server.blockers(ctx)
        assert blockers["count"] == 1
        resolved = server.resolve_blocker(ctx, blockers["blockers"][0]["id"], "approved")
        assert resolved["resolution"] == "approved"
        assert server.blockers(ctx)["count"] == 0
        assert server.blockers(ctx, include_resolved=True)["count"] == 1

    def test_mark_done(self, ctx):
        t1 = server.add_task(ctx, "Elsewhere")
        result = server.mark_done(ctx, t1["id"], "done by hand", completed_by="alex")
        assert result["marked_done"]["id"] == t1["id"]
        assert result["completed_by"] == "alex"
        assert server.list_completed(ctx)["count"] == 1


class TestStateTools:
    def test_checkin_and_stats(self, ctx):
        server.set_goal(ctx, "Launch", "signups")
        server.update_progress(ctx, "$0", 3)
        result = server.checkin(ctx)
        assert result["goal"] == "Launch"
        assert result["last_checkin"] is not None
        assert result["blockers"] == []
        assert result["today"]["checkins"] == 1
        assert result["session"] is None

        stats = server.stats(ctx)
        assert stats["subscribers"] == 3
        assert stats["dispatch_jobs"]["pending"] == 0
        assert stats["total_completed"] == 0


class TestSessionTools:
    def test_start_work_and_summary(self, ctx):
        t1 = server.add_task(ctx, "Write copy", priority=9)
        server.add_task_note(ctx, "drafted headline", task_id=t1["id"])

        started = server.start_work(ctx, planned_minutes=30, energy_level="high")
        assert started["task"]["id"] == t1["id"]
        assert [n["note"] for n in started["notes"]] == ["drafted headline"]
        assert started["session_started"] is True
        assert started["session"]["remaining_minutes"] == 30

        session = server.get_session(ctx)
        assert session["active"] is True
        assert server.checkin(ctx)["session"]["id"] == session["id"]

        server.complete(ctx, t1["id"])
        summary = server.session_summary(ctx, notes="done early")
        assert summary["session"]["tasks_completed"] == 1
        assert [c["task"] for c in summary["completed"]] == ["Write copy"]
        assert server.get_session(ctx)["active"] is False

    def test_end_session_without_one(self, ctx):
        assert server.end_session(ctx)["code"] == "CONFLICT"
        assert server.session_summary(ctx)["code"] == "CONFLICT"

    def test_start_and_end_session(self, ctx):
        assert server.start_session(ctx, energy_level="sleepy")["code"] == "VALIDATION_FAILED"
        started = server.start_session(ctx, planned_minutes=20)
        ended = server.end_session(ctx, learnings="short is fine")
        assert ended["id"] == started["id"]
        assert ended["active"] is False
        assert ended["remaining_minutes"] is None

    def test_notes_default_to_current_task(self, ctx):
        assert server.add_task_note(ctx, "orphan")["code"] == "VALIDATION_FAILED"

        t1 = server.add_task(ctx, "Fix login")
        server.claim_task(ctx)
        note = server.add_task_note(ctx, "cookie was stale", note_type="attempt")
        assert note["task_id"] == t1["id"]
        assert note["created_by"] == "tester"
        assert server.get_task_notes(ctx)["count"] == 1

    def test_get_task(self, ctx):
        t1 = server.add_task(ctx, "First")
        t2 = server.add_task(ctx, "Second", blocked_by=[t1["id"]])
        server.add_task_note(ctx, "needs first", task_id=t2["id"])

        shown = server.get_task(ctx, t2["id"])
        assert shown["is_blocked"] is True
        assert shown["notes_count"] == 1
        assert server.get_task(ctx, 99)["code"] == "NOT_FOUND"

    def test_log_mood(self, ctx):
        day = server.log_mood(ctx, "focused", notes="quiet morning")
        assert day["mood"] == "focused"
        assert server.log_mood(ctx, "")["code"] == "VALIDATION_FAILED"


class TestKnowledgeTools:
    def test_decisions_and_learnings(self, ctx):
        decision = server.log_decision(ctx, "Charge monthly", "Simpler billing", project="other")
        assert decision["decided_by"] == "tester"
        assert server.get_decisions(ctx, project="other")["count"] == 1

        server.log_learning(ctx, "Annual plans convert worse", category="pricing", tags=["growth"])
        assert server.get_learnings(ctx, tag="growth")["count"] == 1
        assert server.get_learnings(ctx, query="nothing like this")["count"] == 0

    def test_issue_lifecycle(self, ctx):
        issue = server.report_issue(ctx, "bug", "Stale queue", "After restart", priority=7)
        assert issue["status"] == "open"
        assert issue["reported_by"] == "tester"

        listed = server.get_issues(ctx, status="open")
        assert listed["count"] == 1
        assert listed["stats"]["bugs"] == 1

        updated = server.update_issue(ctx, issue["id"], status="resolved", resolution="fixed")
        assert updated["previous_status"] == "open"
        assert updated["status"] == "resolved"

    def test_issue_errors(self, ctx):
        assert server.report_issue(ctx, "idea", "x", "y")["code"] == "VALIDATION_FAILED"
        assert server.update_issue(ctx, 42, status="resolved")["code"] == "NOT_FOUND"


class TestDispatchTools:
    def test_dispatch_local_submits_to_worker(self, ctx):
        result = server.dispatch_task(ctx, "claude", "run the tests")
        assert result["status"] == "pending"
        assert result["target"] == "hetzner"
        assert result["dispatched_by"] == "mcp-tool"
        ctx.request_context.lifespan_context.worker.submit.assert_called_once_with(result["id"])

    def test_dispatch_depth_limit(self, ctx):
        job = server.dispatch_task(ctx, "claude", "root", target="mac")
        for _ in range(4):
            job = server.dispatch_task(ctx, "claude", "child", target="mac",
                                       parent_dispatch_id=job["id"])
        result = server.dispatch_task(ctx, "claude", "too deep", target="mac",
                                      parent_dispatch_id=job["id"])
        assert result["error"] is True
        assert "Maximum dispatch chain depth (5) exceeded" in result["message"]

    def test_status_list_cancel(self, ctx):
        job = server.dispatch_task(ctx, "gemini", "review", target="mac")
        assert server.dispatch_status(ctx, job["id"])["status"] == "pending"
        assert server.dispatch_list(ctx, target="mac")["count"] == 1
        assert server.dispatch_cancel(ctx, job["id"])["status"] == "failed"
        assert server.dispatch_cancel(ctx, job["id"])["code"] == "CONFLICT"

    def test_parse(self, ctx):
        assert server.parse_dispatch(ctx, "hello")["matched"] is False
        parsed = server.parse_dispatch(ctx, "@dispatch mac:qwen: refactor")
        assert parsed["agent"] == "qwen"
        assert parsed["target"] == "mac"
