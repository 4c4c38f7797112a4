"""Task and TaskFile data models shared by storage, graph and query code."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from todori.session import SessionInfo

CURRENT_SCHEMA_VERSION = "1.0.0"


def utc_now() -> datetime:
    """Current time, UTC, truncated to the millisecond precision stored on disk."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    BLOCKED = "blocked"
    DONE = "done"
    DEFERRED = "deferred"
    CANCELLED = "cancelled"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def weight(self) -> int:
        """Total order used for sorting and recommendation: high=3, medium=2, low=1."""
        return _PRIORITY_WEIGHT[self]


_PRIORITY_WEIGHT: dict[Priority, int] = {
    Priority.HIGH: 3,
    Priority.MEDIUM: 2,
    Priority.LOW: 1,
}


@dataclass
class Subtask:
    id: str
    title: str
    status: TaskStatus = TaskStatus.PENDING
    description: str | None = None

    @property
    def sequence(self) -> int:
        """The 1-based number after the last dot, or 0 if the id is malformed."""
        _, _, tail = self.id.rpartition(".")
        return int(tail) if tail.isdigit() else 0


@dataclass(frozen=True)
class Assignee:
    session_id: str
    assigned_at: datetime


@dataclass
class TaskMetadata:
    created: datetime
    updated: datetime
    completed_at: datetime | None = None


@dataclass
class Task:
    id: str
    title: str
    metadata: TaskMetadata
    description: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    priority: Priority = Priority.MEDIUM
    dependencies: list[str] = field(default_factory=list)
    subtasks: list[Subtask] = field(default_factory=list)
    custom_fields: dict[str, Any] | None = None
    assignee: Assignee | None = None
    # Highest subtask number ever issued; 0 means "derive from subtasks".
    subtask_seq: int = 0

    def next_subtask_id(self) -> str:
        highest = max([self.subtask_seq] + [s.sequence for s in self.subtasks])
        return f"{self.id}.{highest + 1}"

    def get_subtask(self, subtask_id: str) -> Subtask | None:
        for st in self.subtasks:
            if st.id == subtask_id:
                return st
        return None


@dataclass
class TaskFileMetadata:
    created: datetime
    updated: datetime
    last_modified_by: SessionInfo | None = None


@dataclass
class TaskFile:
    project_root: str
    metadata: TaskFileMetadata
    tasks: list[Task] = field(default_factory=list)
    version: str = CURRENT_SCHEMA_VERSION
