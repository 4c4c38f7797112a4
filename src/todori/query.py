"""Filtering, sorting, statistics and the next-task recommendation.

Everything here works on one unlocked snapshot of the task list and never
writes. "No task" outcomes are results with a rationale, never errors.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Union

from todori.graph import DependencyGraph
from todori.manager import TaskManager
from todori.tasks.model import Priority, Task, TaskStatus

StatusFilter = Union[TaskStatus, str, Iterable[Union[TaskStatus, str]], None]
PriorityFilter = Union[Priority, str, Iterable[Union[Priority, str]], None]

WORKABLE_STATUSES: tuple[TaskStatus, ...] = (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)

# pending < in-progress < blocked < done < deferred < cancelled
STATUS_ORDER: dict[TaskStatus, int] = {status: i for i, status in enumerate(TaskStatus, start=1)}

NO_WORKABLE = "No pending or in-progress tasks available"
NO_MATCH = "No tasks match the specified filters"
ALL_BLOCKED = "All available tasks are blocked by incomplete dependencies"
BEST_AVAILABLE = "Best available task"


class SortField(str, Enum):
    PRIORITY = "priority"
    CREATED = "created"
    UPDATED = "updated"
    STATUS = "status"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass
class QueryOptions:
    status: StatusFilter = None
    priority: PriorityFilter = None
    created_after: datetime | None = None
    created_before: datetime | None = None
    updated_after: datetime | None = None
    updated_before: datetime | None = None
    offset: int | None = None
    limit: int | None = None


@dataclass
class NextTaskRecommendation:
    task: Task | None
    rationale: str


@dataclass
class TaskStats:
    total: int
    by_status: dict[str, int]
    by_priority: dict[str, int]
    blocked_count: int
    avg_completion_days: float
    max_depth: int
    average_deps_per_task: float

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "byStatus": self.by_status,
            "byPriority": self.by_priority,
            "blockedCount": self.blocked_count,
            "avgCompletionDays": self.avg_completion_days,
            "dependencyStats": {
                "maxDepth": self.max_depth,
                "averageDepsPerTask": self.average_deps_per_task,
            },
        }


@dataclass
class SessionContext:
    statistics: dict[str, int]
    next_task: Task | None
    recent_tasks: list[Task] = field(default_factory=list)
    total_tasks: int = 0


def _as_set(value: StatusFilter | PriorityFilter, kind: type[Enum]) -> set | None:
    """Normalize a filter to a set of *kind* members.

    Plain strings are coerced (``"pending"`` -> ``TaskStatus.PENDING``); an
    unknown value raises ``ValueError``.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return {kind(value)}
    values = {kind(v) for v in value}
    return values or None


def _round1(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


class QueryEngine:
    def __init__(self, manager: TaskManager) -> None:
        self.manager = manager

    # ── filtering / sorting ──────────────────────────────────────

    def query_tasks(self, options: QueryOptions | None = None) -> list[Task]:
        opts = options or QueryOptions()
        tasks = self.manager.get_all_tasks()

        statuses = _as_set(opts.status, TaskStatus)
        if statuses:
            tasks = [t for t in tasks if t.status in statuses]
        priorities = _as_set(opts.priority, Priority)
        if priorities:
            tasks = [t for t in tasks if t.priority in priorities]

        if opts.created_after is not None:
            tasks = [t for t in tasks if t.metadata.created >= opts.created_after]
        if opts.created_before is not None:
            tasks = [t for t in tasks if t.metadata.created <= opts.created_before]
        if opts.updated_after is not None:
            tasks = [t for t in tasks if t.metadata.updated >= opts.updated_after]
        if opts.updated_before is not None:
            tasks = [t for t in tasks if t.metadata.updated <= opts.updated_before]

        if opts.offset is not None or opts.limit is not None:
            start = opts.offset or 0
            # A limit of 0 means "no limit".
            stop = start + opts.limit if opts.limit else None
            tasks = tasks[start:stop]

        return tasks

    def sort_tasks(
        self,
        tasks: Iterable[Task],
        field: SortField = SortField.PRIORITY,
        order: SortOrder = SortOrder.ASC,
    ) -> list[Task]:
        """Stable sort by *field*; equal keys keep their input order in both directions."""
        if field == SortField.PRIORITY:
            key = lambda t: t.priority.weight  # noqa: E731
        elif field == SortField.CREATED:
            key = lambda t: t.metadata.created  # noqa: E731
        elif field == SortField.UPDATED:
            key = lambda t: t.metadata.updated  # noqa: E731
        else:
            key = lambda t: STATUS_ORDER[t.status]  # noqa: E731

        items = list(tasks)
        if order == SortOrder.DESC:
            # Reverse-then-reverse keeps ties in input order.
            return list(reversed(sorted(reversed(items), key=key)))
        return sorted(items, key=key)

    # ── recommendation ───────────────────────────────────────────

    def get_next_task(
        self,
        status: StatusFilter = None,
        priority: PriorityFilter = None,
        session_id: str | None = None,
    ) -> NextTaskRecommendation:
        """Recommend the task to work on next.

        Highest priority wins; among equal priorities the topological order of
        the unblocked candidates decides, and that order falls back to
        insertion order. The result is deterministic for a given file but
        depends on the order tasks were created in.
        """
        all_tasks = self.manager.get_all_tasks()
        return recommend(all_tasks, status=status, priority=priority, session_id=session_id)

    # ── aggregates ───────────────────────────────────────────────

    def get_stats(self) -> TaskStats:
        return compute_stats(self.manager.get_all_tasks())

    def session_context(self, recent: int = 5) -> SessionContext:
        """Snapshot used to resume work: status counts, next task, recently touched tasks."""
        tasks = self.manager.get_all_tasks()
        statistics = {s.value: 0 for s in TaskStatus}
        for t in tasks:
            statistics[t.status.value] += 1
        recent_tasks = sorted(tasks, key=lambda t: t.metadata.updated, reverse=True)[:recent]
        return SessionContext(
            statistics=statistics,
            next_task=recommend(tasks).task,
            recent_tasks=recent_tasks,
            total_tasks=len(tasks),
        )


def recommend(
    all_tasks: list[Task],
    status: StatusFilter = None,
    priority: PriorityFilter = None,
    session_id: str | None = None,
) -> NextTaskRecommendation:
    workable = [t for t in all_tasks if t.status in WORKABLE_STATUSES]
    if not workable:
        return NextTaskRecommendation(task=None, rationale=NO_WORKABLE)

    candidates = workable
    statuses = _as_set(status, TaskStatus)
    if statuses:
        candidates = [t for t in candidates if t.status in statuses]
    priorities = _as_set(priority, Priority)
    if priorities:
        candidates = [t for t in candidates if t.priority in priorities]
    if session_id is not None:
        candidates = [
            t for t in candidates if t.assignee is None or t.assignee.session_id == session_id
        ]
    if not candidates:
        return NextTaskRecommendation(task=None, rationale=NO_MATCH)

    # Readiness is judged against the whole collection, not the filtered view.
    graph = DependencyGraph.from_tasks(all_tasks)
    blocked = set(graph.blocked_tasks(all_tasks))
    unblocked = [t for t in candidates if t.id not in blocked]
    if not unblocked:
        return NextTaskRecommendation(task=None, rationale=ALL_BLOCKED)

    order = graph.topological_sort([t.id for t in unblocked]).sorted
    in_order = set(order)
    by_priority = sorted(unblocked, key=lambda t: t.priority.weight, reverse=True)

    chosen = next((t for t in by_priority if t.id in in_order), None)
    if chosen is None and order:
        chosen = next((t for t in unblocked if t.id == order[0]), None)
    if chosen is None:
        chosen = by_priority[0]

    return NextTaskRecommendation(task=chosen, rationale=_rationale(chosen, all_tasks, order))


def _rationale(task: Task, all_tasks: list[Task], order: list[str]) -> str:
    status_by_id = {t.id: t.status for t in all_tasks}
    reasons: list[str] = []
    if task.priority == Priority.HIGH:
        reasons.append("high priority")
    if not task.dependencies:
        reasons.append("no dependencies")
    elif all(status_by_id.get(dep) == TaskStatus.DONE for dep in task.dependencies):
        reasons.append("all dependencies completed")
    if order and order[0] == task.id:
        reasons.append("topologically first")
    if not reasons:
        return BEST_AVAILABLE
    return "Recommended: " + ", ".join(reasons)


def compute_stats(tasks: list[Task]) -> TaskStats:
    by_status = {s.value: 0 for s in TaskStatus}
    by_priority = {p.value: 0 for p in Priority}
    completion_days: list[float] = []
    total_deps = 0

    for t in tasks:
        by_status[t.status.value] += 1
        by_priority[t.priority.value] += 1
        total_deps += len(t.dependencies)
        if t.status == TaskStatus.DONE and t.metadata.completed_at is not None:
            elapsed = t.metadata.completed_at - t.metadata.created
            completion_days.append(elapsed.total_seconds() / 86400)

    graph = DependencyGraph.from_tasks(tasks)
    avg_days = sum(completion_days) / len(completion_days) if completion_days else 0.0
    avg_deps = total_deps / len(tasks) if tasks else 0.0

    return TaskStats(
        total=len(tasks),
        by_status=by_status,
        by_priority=by_priority,
        blocked_count=len(graph.blocked_tasks(tasks)),
        avg_completion_days=_round1(avg_days),
        max_depth=graph.depth([t.id for t in tasks]),
        average_deps_per_task=_round1(avg_deps),
    )
