"""Tests for dependency resolution between queued tasks."""

import tempfile
from pathlib import Path

import pytest

from cofounder.core import blocking
from cofounder.core import queue as queue_mod
from cofounder.core import tasks as tasks_mod
from cofounder.db.engine import init_db


@pytest.fixture
def db():
    """Create a temporary SQLite database for testing."""
    with tempfile.TemporaryDirectory() as tmp:
        conn = init_db(Path(tmp) / "test.db")
        yield conn
        conn.close()


def _force_blocked_by(db, task_id, ids):
    """Write blocked_by directly, bypassing validation."""
    tasks_mod.set_blocked_by(db, task_id, ids)
    return tasks_mod.get_task(db, task_id)


class TestIsBlocked:
    def test_no_blockers(self, db):
        task = tasks_mod.add_task(db, "Free")
        assert blocking.is_blocked(db, task, None) is False

    def test_blocked_by_queued_task(self, db):
        t1 = tasks_mod.add_task(db, "First")
        t2 = tasks_mod.add_task(db, "Second", blocked_by=[t1.id])
        assert blocking.is_blocked(db, t2, None) is True

    def test_blocked_by_in_progress_task(self, db):
        t1 = tasks_mod.add_task(db, "First")
        t2 = tasks_mod.add_task(db, "Second", blocked_by=[t1.id])
        tasks_mod.remove_task(db, t1.id)  # claimed elsewhere
        assert blocking.is_blocked(db, t2, t1.id) is True
        assert blocking.is_blocked(db, t2, None) is False

    def test_dangling_reference_does_not_block(self, db):
        task = tasks_mod.add_task(db, "Waiting", blocked_by=[404])
        assert blocking.is_blocked(db, task, None) is False

    def test_self_reference_does_not_block(self, db):
        task = _force_blocked_by(db, tasks_mod.add_task(db, "Loop").id, [])
        task = _force_blocked_by(db, task.id, [task.id])
        assert task.blocked_by == [task.id]
        assert blocking.is_blocked(db, task, None) is False

    def test_any_live_blocker_blocks(self, db):
        t1 = tasks_mod.add_task(db, "Live")
        t2 = tasks_mod.add_task(db, "Mixed", blocked_by=[404, t1.id])
        assert blocking.is_blocked(db, t2, None) is True


class TestTasksUnblockedBy:
    def test_single_blocker(self, db):
        t1 = tasks_mod.add_task(db, "First")
        t2 = tasks_mod.add_task(db, "Second", blocked_by=[t1.id])
        tasks_mod.remove_task(db, t1.id)
        unblocked = blocking.tasks_unblocked_by(db, t1.id, t1.id)
        assert [t.id for t in unblocked] == [t2.id]

    def test_still_blocked_by_another(self, db):
        t1 = tasks_mod.add_task(db, "First")
        t2 = tasks_mod.add_task(db, "Second")
        t3 = tasks_mod.add_task(db, "Third", blocked_by=[t1.id, t2.id])
        tasks_mod.remove_task(db, t1.id)
        assert blocking.tasks_unblocked_by(db, t1.id, t1.id) == []
        assert blocking.is_blocked(db, tasks_mod.get_task(db, t3.id), None) is True

    def test_other_blocker_already_gone(self, db):
        t1 = tasks_mod.add_task(db, "First")
        t3 = tasks_mod.add_task(db, "Third", blocked_by=[t1.id, 404])
        tasks_mod.remove_task(db, t1.id)
        assert [t.id for t in blocking.tasks_unblocked_by(db, t1.id, t1.id)] == [t3.id]

    def test_unrelated_tasks_excluded(self, db):
        t1 = tasks_mod.add_task(db, "First")
        tasks_mod.add_task(db, "Free")
        tasks_mod.remove_task(db, t1.id)
        assert blocking.tasks_unblocked_by(db, t1.id, t1.id) == []

    def test_computed_while_finishing_task_still_queued(self, db):
        t1 = tasks_mod.add_task(db, "First")
        t2 = tasks_mod.add_task(db, "Second", blocked_by=[t1.id])
        # the finishing task itself is excluded from the remaining blockers
        assert [t.id for t in blocking.tasks_unblocked_by(db, t1.id, t1.id)] == [t2.id]

    def test_in_progress_id_not_counted(self, db):
        t1 = tasks_mod.add_task(db, "First")
        t2 = tasks_mod.add_task(db, "Second")
        t3 = tasks_mod.add_task(db, "Third", blocked_by=[t1.id, t2.id])
        # t2 is still queued here, but is named as the in-progress id
        assert [t.id for t in blocking.tasks_unblocked_by(db, t1.id, t2.id)] == [t3.id]
        assert blocking.tasks_unblocked_by(db, t1.id, None) == []


class TestRemoveBlockerEverywhere:
    def test_removes_reference(self, db):
        t1 = tasks_mod.add_task(db, "First")
        t2 = tasks_mod.add_task(db, "Second")
        t3 = tasks_mod.add_task(db, "Third", blocked_by=[t1.id, t2.id])
        t4 = tasks_mod.add_task(db, "Fourth", blocked_by=[t1.id])

        assert blocking.remove_blocker_everywhere(db, t1.id) == 2
        assert tasks_mod.get_task(db, t3.id).blocked_by == [t2.id]
        assert tasks_mod.get_task(db, t4.id).blocked_by == []
        assert all(t1.id not in t.blocked_by for t in queue_mod.list_queue(db))

    def test_no_references(self, db):
        tasks_mod.add_task(db, "Free")
        assert blocking.remove_blocker_everywhere(db, 404) == 0


class TestGetBlockedTasks:
    def test_details(self, db):
        t1 = tasks_mod.add_task(db, "Design schema")
        t2 = tasks_mod.add_task(db, "Build API", blocked_by=[t1.id, 404])
        tasks_mod.add_task(db, "Free")

        found = blocking.get_blocked_tasks(db, None)
        assert len(found) == 1
        assert found[0].task.id == t2.id
        details = {d.id: d for d in found[0].blockers}
        assert details[t1.id].exists is True
        assert details[t1.id].task == "Design schema"
        assert details[404].exists is False
        assert details[404].task == "Completed/Removed"

    def test_in_progress_blocker(self, db):
        t1 = tasks_mod.add_task(db, "Design schema")
        t2 = tasks_mod.add_task(db, "Build API", blocked_by=[t1.id])
        tasks_mod.remove_task(db, t1.id)

        found = blocking.get_blocked_tasks(db, t1.id, "Design schema")
        assert [b.task.id for b in found] == [t2.id]
        assert found[0].blockers[0].task == "Design schema"
        assert found[0].blockers[0].exists is True

    def test_only_dangling_is_not_blocked(self, db):
        tasks_mod.add_task(db, "Orphan", blocked_by=[404])
        assert blocking.get_blocked_tasks(db, None) == []


class TestNextUnblocked:
    def test_skips_blocked(self, db):
        t1 = tasks_mod.add_task(db, "base", priority=1)
        tasks_mod.add_task(db, "urgent but blocked", priority=9, blocked_by=[t1.id])
        assert queue_mod.next_unblocked_task(db, None).id == t1.id

    def test_exclude(self, db):
        t1 = tasks_mod.add_task(db, "a", priority=9)
        t2 = tasks_mod.add_task(db, "b", priority=1)
        assert queue_mod.next_unblocked_task(db, None, exclude=(t1.id,)).id == t2.id

    def test_all_blocked(self, db):
        t1 = tasks_mod.add_task(db, "a")
        tasks_mod.add_task(db, "b", blocked_by=[t1.id])
        tasks_mod.remove_task(db, t1.id)
        assert queue_mod.next_unblocked_task(db, t1.id) is None

    def test_agrees_with_is_blocked(self, db):
        ids = [tasks_mod.add_task(db, f"t{i}", priority=i % 4).id for i in range(6)]
        tasks_mod.update_task(db, ids[3], blocked_by=[ids[0]])
        tasks_mod.update_task(db, ids[2], blocked_by=[ids[5], 404])
        chosen = queue_mod.next_unblocked_task(db, None)
        assert blocking.is_blocked(db, chosen, None) is False
        for task in queue_mod.list_queue(db):
            if task.id == chosen.id:
                break
            assert blocking.is_blocked(db, task, None) is True
