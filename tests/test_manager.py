"""Tests for todori.manager — task and subtask lifecycle."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest

from todori.errors import CycleError, NotFoundError, ValidationError
from todori.manager import SubtaskUpdate, TaskUpdate, apply_status, parent_id_of
from todori.tasks.model import Assignee, Priority, TaskStatus


# ═══════════════════════════════════════════════════════════════════
#  Tasks
# ═══════════════════════════════════════════════════════════════════


class TestCreate:
    """create_task."""

    def test_defaults(self, manager):
        task = manager.create_task("Write parser")
        uuid.UUID(task.id)
        assert task.status == TaskStatus.PENDING
        assert task.priority == Priority.MEDIUM
        assert task.dependencies == []
        assert task.metadata.created == task.metadata.updated
        assert task.metadata.completed_at is None

    def test_persisted(self, manager):
        task = manager.create_task("A", description="details", custom_fields={"k": "v"})
        loaded = manager.get_task(task.id)
        assert loaded.title == "A"
        assert loaded.description == "details"
        assert loaded.custom_fields == {"k": "v"}

    def test_created_done_gets_completed_at(self, manager):
        task = manager.create_task("A", status=TaskStatus.DONE)
        assert task.metadata.completed_at == task.metadata.created

    def test_empty_title_rejected(self, manager):
        with pytest.raises(ValidationError) as exc_info:
            manager.create_task("   ")
        assert exc_info.value.path == "title"

    def test_unknown_dependency_rejected(self, manager, repo):
        with pytest.raises(ValidationError) as exc_info:
            manager.create_task("B", dependencies=["missing"])
        assert exc_info.value.code == "E_UNKNOWN_DEPENDENCY"
        assert repo.load_tasks() == []

    def test_duplicate_dependencies_dropped(self, manager):
        a = manager.create_task("A")
        b = manager.create_task("B", dependencies=[a.id, a.id])
        assert b.dependencies == [a.id]

    def test_insertion_order_kept(self, manager):
        for title in ("one", "two", "three"):
            manager.create_task(title)
        assert [t.title for t in manager.get_all_tasks()] == ["one", "two", "three"]


class TestUpdate:
    """update_task, including the completed_at invariant."""

    def test_update_fields(self, manager):
        task = manager.create_task("A")
        updated = manager.update_task(
            task.id, TaskUpdate(title="A2", priority=Priority.HIGH, description="d")
        )
        assert updated.title == "A2"
        assert updated.priority == Priority.HIGH
        assert updated.metadata.updated >= task.metadata.updated
        assert manager.get_task(task.id).title == "A2"

    def test_completed_at_set_and_cleared(self, manager):
        task = manager.create_task("A")
        done = manager.update_task(task.id, TaskUpdate(status=TaskStatus.DONE))
        assert done.metadata.completed_at is not None

        reopened = manager.update_task(task.id, TaskUpdate(status=TaskStatus.IN_PROGRESS))
        assert reopened.metadata.completed_at is None
        assert manager.get_task(task.id).metadata.completed_at is None

    def test_done_to_done_keeps_completed_at(self, manager):
        task = manager.create_task("A", status=TaskStatus.DONE)
        again = manager.update_task(task.id, TaskUpdate(status=TaskStatus.DONE))
        assert again.metadata.completed_at == task.metadata.completed_at

    def test_missing_task(self, manager):
        with pytest.raises(NotFoundError) as exc_info:
            manager.update_task("nope", TaskUpdate(title="x"))
        assert exc_info.value.task_id == "nope"

    def test_replace_dependencies(self, manager):
        a = manager.create_task("A")
        b = manager.create_task("B")
        c = manager.create_task("C", dependencies=[a.id])
        updated = manager.update_task(c.id, TaskUpdate(dependencies=[b.id]))
        assert updated.dependencies == [b.id]

    def test_cycle_rejected_before_write(self, manager):
        a = manager.create_task("A")
        b = manager.create_task("B", dependencies=[a.id])
        with pytest.raises(CycleError) as exc_info:
            manager.update_task(a.id, TaskUpdate(dependencies=[b.id]))
        err = exc_info.value
        assert err.task_id == a.id
        assert err.dependencies == [b.id]
        assert set(err.nodes_in_cycle) == {a.id, b.id}
        assert manager.get_task(a.id).dependencies == []

    def test_self_dependency_is_a_cycle(self, manager):
        a = manager.create_task("A")
        with pytest.raises(CycleError):
            manager.update_task(a.id, TaskUpdate(dependencies=[a.id]))

    def test_dropping_edge_allows_reverse(self, manager):
        """Replacing deps removes the old edges before probing the new ones."""
        a = manager.create_task("A")
        b = manager.create_task("B", dependencies=[a.id])
        manager.update_task(b.id, TaskUpdate(dependencies=[]))
        updated = manager.update_task(a.id, TaskUpdate(dependencies=[b.id]))
        assert updated.dependencies == [b.id]


class TestAssign:
    def test_assign_and_clear(self, manager):
        task = manager.create_task("A")
        assigned = manager.assign_task(task.id, "agent-1")
        assert assigned.assignee.session_id == "agent-1"
        assert manager.get_task(task.id).assignee.session_id == "agent-1"

        cleared = manager.update_task(task.id, TaskUpdate(clear_assignee=True))
        assert cleared.assignee is None

    def test_explicit_assigned_at(self, manager):
        when = datetime(2024, 5, 1, tzinfo=timezone.utc)
        task = manager.create_task("A")
        manager.update_task(task.id, TaskUpdate(assignee=Assignee("agent-2", when)))
        assert manager.get_task(task.id).assignee.assigned_at == when


class TestDelete:
    def test_delete_strips_dependency_references(self, manager):
        a = manager.create_task("A")
        b = manager.create_task("B", dependencies=[a.id])
        manager.delete_task(a.id)
        assert [t.id for t in manager.get_all_tasks()] == [b.id]
        assert manager.get_task(b.id).dependencies == []

    def test_delete_missing(self, manager):
        with pytest.raises(NotFoundError):
            manager.delete_task("nope")


# ═══════════════════════════════════════════════════════════════════
#  Subtasks
# ═══════════════════════════════════════════════════════════════════


class TestSubtasks:
    """Subtask ids are <parent>.<n> and numbers are never reused."""

    def test_sequential_ids(self, manager):
        task = manager.create_task("A")
        manager.add_subtask(task.id, "one")
        updated = manager.add_subtask(task.id, "two")
        assert [s.id for s in updated.subtasks] == [f"{task.id}.1", f"{task.id}.2"]

    def test_delete_does_not_renumber(self, manager):
        task = manager.create_task("A")
        for title in ("one", "two", "three"):
            manager.add_subtask(task.id, title)
        updated = manager.delete_subtask(f"{task.id}.2")
        assert [s.id for s in updated.subtasks] == [f"{task.id}.1", f"{task.id}.3"]

    def test_deleted_highest_number_not_reused(self, manager):
        task = manager.create_task("A")
        manager.add_subtask(task.id, "one")
        manager.add_subtask(task.id, "two")
        manager.delete_subtask(f"{task.id}.2")
        updated = manager.add_subtask(task.id, "three")
        assert [s.id for s in updated.subtasks] == [f"{task.id}.1", f"{task.id}.3"]

    def test_update_subtask(self, manager):
        task = manager.create_task("A")
        manager.add_subtask(task.id, "one")
        updated = manager.update_subtask(
            f"{task.id}.1", SubtaskUpdate(status=TaskStatus.DONE, description="did it")
        )
        assert updated.subtasks[0].status == TaskStatus.DONE
        assert manager.get_subtasks(task.id)[0].description == "did it"

    def test_subtask_mutation_bumps_parent_updated(self, manager):
        task = manager.create_task("A")
        updated = manager.add_subtask(task.id, "one")
        assert updated.metadata.updated >= task.metadata.updated

    def test_missing_subtask(self, manager):
        task = manager.create_task("A")
        with pytest.raises(NotFoundError) as exc_info:
            manager.update_subtask(f"{task.id}.9", SubtaskUpdate(title="x"))
        assert exc_info.value.subtask_id == f"{task.id}.9"

    def test_missing_parent(self, manager):
        with pytest.raises(NotFoundError):
            manager.add_subtask("nope", "x")

    def test_malformed_subtask_id(self):
        with pytest.raises(ValidationError) as exc_info:
            parent_id_of("nodot")
        assert exc_info.value.code == "E_INVALID_SUBTASK_ID"

    def test_parent_id_of(self):
        assert parent_id_of("abc-123.4") == "abc-123"


class TestApplyStatus:
    def test_leaving_done_clears(self, make_task):
        task = make_task("A", status=TaskStatus.DONE)
        apply_status(task, TaskStatus.PENDING, task.metadata.updated)
        assert task.status == TaskStatus.PENDING
        assert task.metadata.completed_at is None

    def test_entering_done_sets(self, make_task):
        task = make_task("A")
        now = datetime(2024, 6, 1, tzinfo=timezone.utc)
        apply_status(task, TaskStatus.DONE, now)
        assert task.metadata.completed_at == now
