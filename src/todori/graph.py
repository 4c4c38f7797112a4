"""Dependency graph over task ids with Kahn topological sort and cycle checks."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Iterable

from todori.tasks.model import Task, TaskStatus


@dataclass
class TopologicalSortResult:
    sorted: list[str]
    has_cycle: bool
    nodes_in_cycle: list[str] = field(default_factory=list)


class DependencyGraph:
    """Adjacency lists over task ids, rebuilt from the task list on demand.

    ``_dependents`` maps a task to the tasks that depend on it; ``_dependencies``
    is the reverse. Inner dicts are used as insertion-ordered sets so every
    traversal is deterministic.

    Usage::

        graph = DependencyGraph.from_tasks(tasks)
        graph.would_create_cycle("B", "A")       # check before mutating
        graph.topological_sort(["A", "B", "C"])  # order restricted to these ids
        graph.blocked_tasks(tasks)               # ids waiting on unfinished work
    """

    def __init__(self) -> None:
        self._dependents: dict[str, dict[str, None]] = {}
        self._dependencies: dict[str, dict[str, None]] = {}

    @classmethod
    def from_tasks(cls, tasks: Iterable[Task]) -> DependencyGraph:
        graph = cls()
        for task in tasks:
            for dep in task.dependencies:
                graph.add_dependency(task.id, dep)
        return graph

    # ── edges ────────────────────────────────────────────────────

    def add_dependency(self, task_id: str, depends_on: str) -> None:
        """Record that *task_id* requires *depends_on*. Idempotent."""
        self._dependents.setdefault(depends_on, {})[task_id] = None
        self._dependencies.setdefault(task_id, {})[depends_on] = None
        self._dependents.setdefault(task_id, {})
        self._dependencies.setdefault(depends_on, {})

    def remove_dependency(self, task_id: str, depends_on: str) -> None:
        self._dependents.get(depends_on, {}).pop(task_id, None)
        self._dependencies.get(task_id, {}).pop(depends_on, None)

    def nodes(self) -> list[str]:
        seen: dict[str, None] = dict.fromkeys(self._dependents)
        seen.update(dict.fromkeys(self._dependencies))
        return list(seen)

    def dependencies_of(self, task_id: str) -> list[str]:
        return list(self._dependencies.get(task_id, {}))

    def dependents_of(self, task_id: str) -> list[str]:
        return list(self._dependents.get(task_id, {}))

    # ── ordering ─────────────────────────────────────────────────

    def topological_sort(self, node_ids: Iterable[str]) -> TopologicalSortResult:
        """Kahn's algorithm over *node_ids*, ignoring edges that leave the set.

        Zero in-degree ties are emitted in the order the ids were supplied.
        """
        ids = list(dict.fromkeys(node_ids))
        members = set(ids)
        in_degree: dict[str, int] = {nid: 0 for nid in ids}
        local: dict[str, dict[str, None]] = {nid: {} for nid in ids}

        for nid in ids:
            for dep in self._dependencies.get(nid, {}):
                if dep in members:
                    in_degree[nid] += 1
                    local[dep][nid] = None

        queue: deque[str] = deque(nid for nid in ids if in_degree[nid] == 0)
        order: list[str] = []
        while queue:
            current = queue.popleft()
            order.append(current)
            for dependent in local[current]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    queue.append(dependent)

        if len(order) == len(ids):
            return TopologicalSortResult(sorted=order, has_cycle=False)

        emitted = set(order)
        return TopologicalSortResult(
            sorted=order,
            has_cycle=True,
            nodes_in_cycle=[nid for nid in ids if nid not in emitted],
        )

    def would_create_cycle(self, task_id: str, depends_on: str) -> bool:
        """Whether adding ``task_id -> depends_on`` would close a cycle. Does not mutate."""
        trial = DependencyGraph()
        for node, deps in self._dependencies.items():
            for dep in deps:
                trial.add_dependency(node, dep)
        trial.add_dependency(task_id, depends_on)
        return trial.topological_sort(trial.nodes()).has_cycle

    # ── readiness ────────────────────────────────────────────────

    def blocked_tasks(self, tasks: Iterable[Task]) -> list[str]:
        """Ids of unfinished tasks with at least one dependency that is not done.

        A dependency on an id that no longer exists counts as not done.
        """
        tasks = list(tasks)
        done = {t.id for t in tasks if t.status == TaskStatus.DONE}
        return [
            t.id
            for t in tasks
            if t.status != TaskStatus.DONE
            and t.dependencies
            and any(dep not in done for dep in t.dependencies)
        ]

    def depth(self, node_ids: Iterable[str] | None = None) -> int:
        """Length of the longest dependency chain (edges), ignoring nodes on cycles."""
        ids = list(node_ids) if node_ids is not None else self.nodes()
        result = self.topological_sort(ids)
        members = set(result.sorted)
        depth: dict[str, int] = {}
        for nid in result.sorted:
            deps = [d for d in self._dependencies.get(nid, {}) if d in members]
            depth[nid] = 1 + max(depth[d] for d in deps) if deps else 0
        return max(depth.values(), default=0)
