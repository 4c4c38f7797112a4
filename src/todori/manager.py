"""Task lifecycle: CRUD for tasks and subtasks.

Every mutation is a whole-collection read-modify-write through the
repository. Dependency edits are checked for unknown ids and cycles before
anything is written.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from todori import log
from todori.errors import CycleError, NotFoundError, ValidationError
from todori.graph import DependencyGraph
from todori.repository import TaskRepository
from todori.tasks.model import (
    Assignee,
    Priority,
    Subtask,
    Task,
    TaskMetadata,
    TaskStatus,
    utc_now,
)


@dataclass
class TaskUpdate:
    """Fields to change on a task. ``None`` leaves a field untouched."""

    title: str | None = None
    description: str | None = None
    status: TaskStatus | None = None
    priority: Priority | None = None
    dependencies: list[str] | None = None
    custom_fields: dict[str, Any] | None = None
    assignee: Assignee | None = None
    clear_assignee: bool = False


@dataclass
class SubtaskUpdate:
    title: str | None = None
    description: str | None = None
    status: TaskStatus | None = None


def _require_title(title: str | None, field_path: str = "title") -> str:
    if title is None or not title.strip():
        raise ValidationError(message="title must be a non-empty string", code="E_REQUIRED_FIELD", path=field_path)
    return title


def _dedupe(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))


def parent_id_of(subtask_id: str) -> str:
    parent, sep, _ = subtask_id.rpartition(".")
    if not sep or not parent:
        raise ValidationError(
            message=f"subtask id must look like <taskId>.<n>: {subtask_id}",
            code="E_INVALID_SUBTASK_ID",
            path="subtaskId",
        )
    return parent


def apply_status(task: Task, status: TaskStatus, now: datetime) -> None:
    """Set *status* and keep ``completed_at`` present iff the task is done."""
    if status == TaskStatus.DONE:
        if task.status != TaskStatus.DONE or task.metadata.completed_at is None:
            task.metadata.completed_at = now
    else:
        task.metadata.completed_at = None
    task.status = status


class TaskManager:
    def __init__(self, repository: TaskRepository) -> None:
        self.repository = repository

    # ── queries ──────────────────────────────────────────────────

    def get_all_tasks(self) -> list[Task]:
        return self.repository.load_tasks()

    def get_task(self, task_id: str) -> Task:
        for task in self.repository.load_tasks():
            if task.id == task_id:
                return task
        raise NotFoundError(message=f"Task not found: {task_id}", task_id=task_id)

    def get_subtasks(self, parent_id: str) -> list[Subtask]:
        return self.get_task(parent_id).subtasks

    # ── task mutations ───────────────────────────────────────────

    def create_task(
        self,
        title: str,
        description: str | None = None,
        status: TaskStatus = TaskStatus.PENDING,
        priority: Priority = Priority.MEDIUM,
        dependencies: list[str] | None = None,
        custom_fields: dict[str, Any] | None = None,
    ) -> Task:
        _require_title(title)
        tasks = self.repository.load_tasks()
        task_id = str(uuid.uuid4())
        deps = _dedupe(dependencies or [])
        self._check_dependencies(tasks, task_id, deps)

        now = utc_now()
        task = Task(
            id=task_id,
            title=title,
            description=description,
            priority=priority,
            dependencies=deps,
            metadata=TaskMetadata(created=now, updated=now),
            custom_fields=custom_fields,
        )
        apply_status(task, status, now)

        tasks.append(task)
        self.repository.save_tasks(tasks)
        log.debug(f"Created task {task.id}: {task.title}")
        return task

    def update_task(self, task_id: str, update: TaskUpdate) -> Task:
        tasks = self.repository.load_tasks()
        task = self._find(tasks, task_id)

        if update.dependencies is not None:
            deps = _dedupe(update.dependencies)
            self._check_dependencies(tasks, task_id, deps, replacing=task.dependencies)
            task.dependencies = deps

        now = utc_now()
        if update.title is not None:
            task.title = _require_title(update.title)
        if update.description is not None:
            task.description = update.description
        if update.priority is not None:
            task.priority = update.priority
        if update.custom_fields is not None:
            task.custom_fields = update.custom_fields
        if update.status is not None:
            apply_status(task, update.status, now)
        if update.clear_assignee:
            task.assignee = None
        elif update.assignee is not None:
            task.assignee = update.assignee
        task.metadata.updated = now

        self.repository.save_tasks(tasks)
        log.debug(f"Updated task {task_id}")
        return task

    def assign_task(self, task_id: str, session_id: str, assigned_at: datetime | None = None) -> Task:
        """Claim a task for a session; ``assigned_at`` defaults to now."""
        assignee = Assignee(session_id=session_id, assigned_at=assigned_at or utc_now())
        return self.update_task(task_id, TaskUpdate(assignee=assignee))

    def delete_task(self, task_id: str) -> None:
        """Remove a task and every reference to it from other tasks' dependencies."""
        tasks = self.repository.load_tasks()
        self._find(tasks, task_id)
        remaining = [t for t in tasks if t.id != task_id]
        for t in remaining:
            if task_id in t.dependencies:
                t.dependencies = [d for d in t.dependencies if d != task_id]
        self.repository.save_tasks(remaining)
        log.debug(f"Deleted task {task_id}")

    # ── subtask mutations ────────────────────────────────────────

    def add_subtask(self, parent_id: str, title: str, description: str | None = None) -> Task:
        _require_title(title)
        tasks = self.repository.load_tasks()
        task = self._find(tasks, parent_id)

        subtask = Subtask(id=task.next_subtask_id(), title=title, description=description)
        task.subtasks.append(subtask)
        task.subtask_seq = subtask.sequence
        task.metadata.updated = utc_now()

        self.repository.save_tasks(tasks)
        log.debug(f"Added subtask {subtask.id}")
        return task

    def update_subtask(self, subtask_id: str, update: SubtaskUpdate) -> Task:
        tasks = self.repository.load_tasks()
        task, subtask = self._find_subtask(tasks, subtask_id)

        if update.title is not None:
            subtask.title = _require_title(update.title)
        if update.description is not None:
            subtask.description = update.description
        if update.status is not None:
            subtask.status = update.status
        task.metadata.updated = utc_now()

        self.repository.save_tasks(tasks)
        return task

    def delete_subtask(self, subtask_id: str) -> Task:
        tasks = self.repository.load_tasks()
        task, subtask = self._find_subtask(tasks, subtask_id)

        # Remember the highest number issued so it is never handed out again.
        task.subtask_seq = max([task.subtask_seq] + [st.sequence for st in task.subtasks])
        task.subtasks = [st for st in task.subtasks if st.id != subtask.id]
        task.metadata.updated = utc_now()

        self.repository.save_tasks(tasks)
        log.debug(f"Deleted subtask {subtask_id}")
        return task

    # ── helpers ──────────────────────────────────────────────────

    def _find(self, tasks: list[Task], task_id: str) -> Task:
        for task in tasks:
            if task.id == task_id:
                return task
        raise NotFoundError(message=f"Task not found: {task_id}", task_id=task_id)

    def _find_subtask(self, tasks: list[Task], subtask_id: str) -> tuple[Task, Subtask]:
        parent_id = parent_id_of(subtask_id)
        task = self._find(tasks, parent_id)
        subtask = task.get_subtask(subtask_id)
        if subtask is None:
            raise NotFoundError(
                message=f"Subtask not found: {subtask_id}",
                task_id=parent_id,
                subtask_id=subtask_id,
            )
        return task, subtask

    def _check_dependencies(
        self,
        tasks: list[Task],
        task_id: str,
        dependencies: list[str],
        replacing: list[str] | None = None,
    ) -> None:
        """Reject unknown ids and edges that would close a cycle, before any write."""
        known = {t.id for t in tasks}
        for i, dep in enumerate(dependencies):
            if dep not in known and dep != task_id:
                raise ValidationError(
                    message=f"Dependency task not found: {dep}",
                    code="E_UNKNOWN_DEPENDENCY",
                    path=f"dependencies[{i}]",
                )

        graph = DependencyGraph.from_tasks(tasks)
        for dep in replacing or []:
            graph.remove_dependency(task_id, dep)
        for dep in dependencies:
            if graph.would_create_cycle(task_id, dep):
                graph.add_dependency(task_id, dep)
                cycle = graph.topological_sort(graph.nodes()).nodes_in_cycle
                raise CycleError(
                    message=f"Adding dependency {task_id} -> {dep} would create a cycle",
                    task_id=task_id,
                    dependencies=list(dependencies),
                    nodes_in_cycle=cycle,
                )
            graph.add_dependency(task_id, dep)
