"""YAML (de)serialization of the task file.

Disk keys are camelCase and timestamps are ISO-8601 UTC strings with
millisecond precision (``2024-05-01T12:00:00.000Z``). ``task_file_from_dict``
expects a document that already passed :func:`todori.tasks.validate.validate_task_file`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

import yaml

from todori.session import SessionInfo, SessionLock
from todori.tasks.model import (
    Assignee,
    Priority,
    Subtask,
    Task,
    TaskFile,
    TaskFileMetadata,
    TaskMetadata,
    TaskStatus,
)


# ── timestamps ───────────────────────────────────────────────────


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 string (``Z`` suffix allowed). Naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


# ── to plain data ────────────────────────────────────────────────


def session_to_dict(session: SessionInfo) -> dict[str, Any]:
    out: dict[str, Any] = {"pid": session.pid, "startTime": format_timestamp(session.start_time)}
    if session.hostname:
        out["hostname"] = session.hostname
    return out


def subtask_to_dict(subtask: Subtask) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": subtask.id,
        "title": subtask.title,
        "status": subtask.status.value,
    }
    if subtask.description is not None:
        out["description"] = subtask.description
    return out


def task_to_dict(task: Task, include_metadata: bool = True) -> dict[str, Any]:
    out: dict[str, Any] = {"id": task.id, "title": task.title}
    if task.description is not None:
        out["description"] = task.description
    out["status"] = task.status.value
    out["priority"] = task.priority.value
    out["dependencies"] = list(task.dependencies)
    out["subtasks"] = [subtask_to_dict(st) for st in task.subtasks]
    if include_metadata:
        meta: dict[str, Any] = {
            "created": format_timestamp(task.metadata.created),
            "updated": format_timestamp(task.metadata.updated),
        }
        if task.metadata.completed_at is not None:
            meta["completedAt"] = format_timestamp(task.metadata.completed_at)
        out["metadata"] = meta
    if task.custom_fields is not None:
        out["customFields"] = dict(task.custom_fields)
    if task.assignee is not None:
        out["assignee"] = {
            "sessionId": task.assignee.session_id,
            "assignedAt": format_timestamp(task.assignee.assigned_at),
        }
    if task.subtask_seq:
        out["subtaskSeq"] = task.subtask_seq
    return out


def task_file_to_dict(tf: TaskFile) -> dict[str, Any]:
    meta: dict[str, Any] = {
        "created": format_timestamp(tf.metadata.created),
        "updated": format_timestamp(tf.metadata.updated),
    }
    if tf.metadata.last_modified_by is not None:
        meta["lastModifiedBy"] = session_to_dict(tf.metadata.last_modified_by)
    return {
        "version": tf.version,
        "projectRoot": tf.project_root,
        "metadata": meta,
        "tasks": [task_to_dict(t) for t in tf.tasks],
    }


def project_fields(data: dict[str, Any], fields: Iterable[str] | None) -> dict[str, Any]:
    """Keep only *fields* (disk key names) of a serialized task; no fields keeps everything."""
    wanted = list(fields or [])
    if not wanted:
        return data
    return {name: data[name] for name in wanted if name in data}


# ── from plain data ──────────────────────────────────────────────


def session_from_dict(raw: dict[str, Any]) -> SessionInfo:
    return SessionInfo(
        pid=int(raw["pid"]),
        start_time=parse_timestamp(raw["startTime"]),
        hostname=raw.get("hostname"),
    )


def subtask_from_dict(raw: dict[str, Any]) -> Subtask:
    return Subtask(
        id=raw["id"],
        title=raw["title"],
        status=TaskStatus(raw["status"]),
        description=raw.get("description"),
    )


def task_from_dict(raw: dict[str, Any]) -> Task:
    meta = raw["metadata"]
    completed = meta.get("completedAt")
    assignee_raw = raw.get("assignee")
    assignee = None
    if assignee_raw:
        assignee = Assignee(
            session_id=assignee_raw["sessionId"],
            assigned_at=parse_timestamp(assignee_raw["assignedAt"]),
        )
    return Task(
        id=raw["id"],
        title=raw["title"],
        description=raw.get("description"),
        status=TaskStatus(raw["status"]),
        priority=Priority(raw["priority"]),
        dependencies=list(raw.get("dependencies") or []),
        subtasks=[subtask_from_dict(st) for st in raw.get("subtasks") or []],
        metadata=TaskMetadata(
            created=parse_timestamp(meta["created"]),
            updated=parse_timestamp(meta["updated"]),
            completed_at=parse_timestamp(completed) if completed else None,
        ),
        custom_fields=raw.get("customFields"),
        assignee=assignee,
        subtask_seq=int(raw.get("subtaskSeq") or 0),
    )


def task_file_from_dict(raw: dict[str, Any]) -> TaskFile:
    meta = raw["metadata"]
    writer = meta.get("lastModifiedBy")
    return TaskFile(
        version=raw["version"],
        project_root=raw["projectRoot"],
        metadata=TaskFileMetadata(
            created=parse_timestamp(meta["created"]),
            updated=parse_timestamp(meta["updated"]),
            last_modified_by=session_from_dict(writer) if writer else None,
        ),
        tasks=[task_from_dict(t) for t in raw.get("tasks") or []],
    )


# ── YAML ─────────────────────────────────────────────────────────


def load_yaml(text: str) -> Any:
    """Parse YAML text. Raises ``yaml.YAMLError`` on malformed input."""
    return yaml.safe_load(text)


def dump_yaml(data: Any) -> str:
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False, allow_unicode=True)


def dump_task_file(tf: TaskFile) -> str:
    return dump_yaml(task_file_to_dict(tf))


def session_lock_to_dict(lock: SessionLock) -> dict[str, Any]:
    return {
        "session": session_to_dict(lock.session),
        "acquiredAt": format_timestamp(lock.acquired_at),
        "lastActiveAt": format_timestamp(lock.last_active_at),
        "lockFile": str(lock.lock_file),
    }


def session_lock_from_dict(raw: dict[str, Any]) -> SessionLock:
    return SessionLock(
        session=session_from_dict(raw["session"]),
        acquired_at=parse_timestamp(raw["acquiredAt"]),
        last_active_at=parse_timestamp(raw["lastActiveAt"]),
        lock_file=Path(raw["lockFile"]),
    )
