"""Shape validation for parsed task documents.

Collects every problem instead of stopping at the first one, so a corrupted
file can be diagnosed in one pass. Version compatibility is checked
separately by :func:`check_version` because a mismatch is a distinct, fatal
condition rather than an ordinary shape error.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional

from todori.errors import SchemaVersionError
from todori.tasks.io import parse_timestamp
from todori.tasks.model import CURRENT_SCHEMA_VERSION, Priority, TaskStatus

ALLOWED_STATUSES: set[str] = {s.value for s in TaskStatus}
ALLOWED_PRIORITIES: set[str] = {p.value for p in Priority}


@dataclass(frozen=True)
class SchemaIssue:
    code: str
    message: str
    path: str

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message, "path": self.path}


def is_compatible_version(version: str) -> bool:
    # Exact match only until a migration path exists.
    return version == CURRENT_SCHEMA_VERSION


def check_version(data: dict[str, Any], file: Optional[str] = None) -> None:
    """Raise ``SchemaVersionError`` when the document declares another schema version."""
    version = data.get("version")
    if isinstance(version, str) and version.strip() and not is_compatible_version(version):
        raise SchemaVersionError(
            message=f"Incompatible schema version: {version}. Expected: {CURRENT_SCHEMA_VERSION}",
            path=file,
            file_version=version,
            expected_version=CURRENT_SCHEMA_VERSION,
        )


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and bool(v.strip())


def _is_list_of_str(v: Any) -> bool:
    return isinstance(v, list) and all(isinstance(x, str) for x in v)


def _is_timestamp(v: Any) -> bool:
    if isinstance(v, datetime):
        return True
    if not isinstance(v, str):
        return False
    try:
        parse_timestamp(v)
    except ValueError:
        return False
    return True


def validate_task_file(data: Any) -> list[SchemaIssue]:
    """Validate a parsed task document. Returns issues sorted by path; empty means valid."""
    if not isinstance(data, dict):
        return [SchemaIssue("E_INVALID_TOP_LEVEL", "top-level document must be a mapping", "")]

    issues: list[SchemaIssue] = []

    if not _is_non_empty_str(data.get("version")):
        issues.append(SchemaIssue("E_REQUIRED_FIELD", "version must be a non-empty string", "version"))

    if not _is_non_empty_str(data.get("projectRoot")):
        issues.append(
            SchemaIssue("E_REQUIRED_FIELD", "projectRoot must be a non-empty string", "projectRoot")
        )

    meta = data.get("metadata")
    if not isinstance(meta, dict):
        issues.append(SchemaIssue("E_REQUIRED_FIELD", "metadata must be a mapping", "metadata"))
    else:
        issues.extend(_timestamps(meta, ("created", "updated"), "metadata", required=True))
        writer = meta.get("lastModifiedBy")
        if writer is not None:
            issues.extend(_session(writer, "metadata.lastModifiedBy"))

    tasks = data.get("tasks")
    if not isinstance(tasks, list):
        issues.append(SchemaIssue("E_REQUIRED_FIELD", "tasks must be a list", "tasks"))
        return _sorted(issues)

    seen: set[str] = set()
    for i, raw in enumerate(tasks):
        path = f"tasks[{i}]"
        if not isinstance(raw, dict):
            issues.append(SchemaIssue("E_INVALID_TYPE", "task must be a mapping", path))
            continue
        tid = raw.get("id")
        if not _is_non_empty_str(tid):
            issues.append(SchemaIssue("E_REQUIRED_FIELD", "id must be a non-empty string", f"{path}.id"))
            continue
        if tid in seen:
            issues.append(SchemaIssue("E_DUPLICATE_ID", f"duplicate task id: {tid}", f"{path}.id"))
            continue
        seen.add(tid)
        issues.extend(_task(raw, path))

    # Referential integrity once every id is known.
    for i, raw in enumerate(tasks):
        if not isinstance(raw, dict) or not _is_list_of_str(raw.get("dependencies")):
            continue
        for di, dep in enumerate(raw["dependencies"]):
            if dep not in seen:
                issues.append(
                    SchemaIssue(
                        "E_UNKNOWN_DEPENDENCY",
                        f"dependencies references unknown id: {dep}",
                        f"tasks[{i}].dependencies[{di}]",
                    )
                )

    return _sorted(issues)


def _task(raw: dict[str, Any], path: str) -> list[SchemaIssue]:
    issues: list[SchemaIssue] = []
    tid = raw["id"]

    if not _is_non_empty_str(raw.get("title")):
        issues.append(SchemaIssue("E_REQUIRED_FIELD", "title must be a non-empty string", f"{path}.title"))

    description = raw.get("description")
    if description is not None and not isinstance(description, str):
        issues.append(SchemaIssue("E_INVALID_TYPE", "description must be a string", f"{path}.description"))

    if raw.get("status") not in ALLOWED_STATUSES:
        issues.append(
            SchemaIssue("E_INVALID_ENUM", f"status must be one of {sorted(ALLOWED_STATUSES)}", f"{path}.status")
        )
    if raw.get("priority") not in ALLOWED_PRIORITIES:
        issues.append(
            SchemaIssue(
                "E_INVALID_ENUM", f"priority must be one of {sorted(ALLOWED_PRIORITIES)}", f"{path}.priority"
            )
        )

    if not _is_list_of_str(raw.get("dependencies")):
        issues.append(
            SchemaIssue("E_INVALID_TYPE", "dependencies must be a list of strings", f"{path}.dependencies")
        )

    subtasks = raw.get("subtasks")
    if not isinstance(subtasks, list):
        issues.append(SchemaIssue("E_INVALID_TYPE", "subtasks must be a list", f"{path}.subtasks"))
    else:
        for si, st in enumerate(subtasks):
            issues.extend(_subtask(st, tid, f"{path}.subtasks[{si}]"))

    meta = raw.get("metadata")
    if not isinstance(meta, dict):
        issues.append(SchemaIssue("E_REQUIRED_FIELD", "metadata must be a mapping", f"{path}.metadata"))
    else:
        issues.extend(_timestamps(meta, ("created", "updated"), f"{path}.metadata", required=True))
        issues.extend(_timestamps(meta, ("completedAt",), f"{path}.metadata", required=False))

    custom = raw.get("customFields")
    if custom is not None and not isinstance(custom, dict):
        issues.append(SchemaIssue("E_INVALID_TYPE", "customFields must be a mapping", f"{path}.customFields"))

    assignee = raw.get("assignee")
    if assignee is not None:
        if not isinstance(assignee, dict) or not _is_non_empty_str(assignee.get("sessionId")):
            issues.append(
                SchemaIssue("E_INVALID_TYPE", "assignee must have a non-empty sessionId", f"{path}.assignee")
            )
        else:
            issues.extend(_timestamps(assignee, ("assignedAt",), f"{path}.assignee", required=True))

    seq = raw.get("subtaskSeq")
    if seq is not None and (not isinstance(seq, int) or isinstance(seq, bool) or seq < 0):
        issues.append(
            SchemaIssue("E_INVALID_TYPE", "subtaskSeq must be a non-negative integer", f"{path}.subtaskSeq")
        )

    return issues


def _subtask(raw: Any, parent_id: str, path: str) -> list[SchemaIssue]:
    if not isinstance(raw, dict):
        return [SchemaIssue("E_INVALID_TYPE", "subtask must be a mapping", path)]
    issues: list[SchemaIssue] = []
    sid = raw.get("id")
    if not _is_non_empty_str(sid):
        issues.append(SchemaIssue("E_REQUIRED_FIELD", "id must be a non-empty string", f"{path}.id"))
    elif not sid.startswith(f"{parent_id}."):
        issues.append(
            SchemaIssue("E_INVALID_SUBTASK_ID", f"subtask id must start with '{parent_id}.'", f"{path}.id")
        )
    if not _is_non_empty_str(raw.get("title")):
        issues.append(SchemaIssue("E_REQUIRED_FIELD", "title must be a non-empty string", f"{path}.title"))
    if raw.get("status") not in ALLOWED_STATUSES:
        issues.append(
            SchemaIssue("E_INVALID_ENUM", f"status must be one of {sorted(ALLOWED_STATUSES)}", f"{path}.status")
        )
    description = raw.get("description")
    if description is not None and not isinstance(description, str):
        issues.append(SchemaIssue("E_INVALID_TYPE", "description must be a string", f"{path}.description"))
    return issues


def _session(raw: Any, path: str) -> list[SchemaIssue]:
    if not isinstance(raw, dict):
        return [SchemaIssue("E_INVALID_TYPE", "session must be a mapping", path)]
    issues: list[SchemaIssue] = []
    pid = raw.get("pid")
    if not isinstance(pid, int) or isinstance(pid, bool):
        issues.append(SchemaIssue("E_INVALID_TYPE", "pid must be an integer", f"{path}.pid"))
    issues.extend(_timestamps(raw, ("startTime",), path, required=True))
    hostname = raw.get("hostname")
    if hostname is not None and not isinstance(hostname, str):
        issues.append(SchemaIssue("E_INVALID_TYPE", "hostname must be a string", f"{path}.hostname"))
    return issues


def _timestamps(
    raw: dict[str, Any], keys: Iterable[str], path: str, *, required: bool
) -> list[SchemaIssue]:
    issues: list[SchemaIssue] = []
    for key in keys:
        value = raw.get(key)
        if value is None:
            if required:
                issues.append(SchemaIssue("E_REQUIRED_FIELD", f"{key} is required", f"{path}.{key}"))
            continue
        if not _is_timestamp(value):
            issues.append(
                SchemaIssue("E_INVALID_TIMESTAMP", f"{key} must be an ISO-8601 timestamp", f"{path}.{key}")
            )
    return issues


def _sorted(issues: Iterable[SchemaIssue]) -> list[SchemaIssue]:
    return sorted(issues, key=lambda e: (e.path, e.code))
