"""Error taxonomy shared by the store, repository and domain layers.

Every error carries a stable ``code`` and the structured detail an agent needs
to decide whether to retry, report or give up (offending id, conflicting
dependency list, lock holder). ``to_dict()`` is what the CLI prints.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, is_dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from todori.session import SessionInfo


@dataclass(eq=False)
class TodoriError(Exception):
    """Base error envelope."""

    message: str
    code: str = "E_INTERNAL"

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None or value == []:
                continue
            out[_camel(f.name)] = _plain(value)
        return out


@dataclass(eq=False)
class NotFoundError(TodoriError):
    code: str = "E_NOT_FOUND"
    task_id: Optional[str] = None
    subtask_id: Optional[str] = None


@dataclass(eq=False)
class ValidationError(TodoriError):
    code: str = "E_VALIDATION"
    path: Optional[str] = None
    issues: list[dict[str, Any]] = field(default_factory=list)


@dataclass(eq=False)
class SchemaVersionError(ValidationError):
    code: str = "E_SCHEMA_VERSION"
    file_version: Optional[str] = None
    expected_version: Optional[str] = None


@dataclass(eq=False)
class CycleError(TodoriError):
    code: str = "E_DEPENDENCY_CYCLE"
    task_id: Optional[str] = None
    dependencies: list[str] = field(default_factory=list)
    nodes_in_cycle: list[str] = field(default_factory=list)


@dataclass(eq=False)
class LockError(TodoriError):
    code: str = "E_LOCK"
    path: Optional[str] = None
    holder: Optional[SessionInfo] = None
    attempts: int = 0


@dataclass(eq=False)
class FileIOError(TodoriError):
    code: str = "E_IO"
    path: Optional[str] = None
    os_code: Optional[str] = None


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _plain(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return {_camel(k): _plain(v) for k, v in asdict(value).items() if v is not None}
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value
