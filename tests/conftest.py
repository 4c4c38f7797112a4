"""Shared fixtures for todori tests.

File handling in tests:
- Use tmp_path for any directory or file creation so tests are isolated and cleaned up.
- Inject FakeLockProvider and a recording sleep instead of racing real processes.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from todori.config import Config
from todori.locking import RetryPolicy
from todori.manager import TaskManager
from todori.query import QueryEngine
from todori.repository import TaskRepository
from todori.session import SessionInfo
from todori.store import AtomicFileStore
from todori.tasks.model import Priority, Task, TaskMetadata, TaskStatus

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeLockProvider:
    """Lock provider that refuses the first ``busy_for`` attempts."""

    def __init__(self, busy_for: int = 0) -> None:
        self.busy_for = busy_for
        self.acquire_calls = 0
        self.release_calls = 0
        self.held = False

    def acquire(self, path: Path) -> bool:
        self.acquire_calls += 1
        if self.acquire_calls <= self.busy_for:
            return False
        self.held = True
        return True

    def release(self, path: Path) -> None:
        self.release_calls += 1
        self.held = False


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_session(pid: int = 4242, hostname: str | None = "test-host") -> SessionInfo:
    return SessionInfo(pid=pid, start_time=BASE_TIME, hostname=hostname)


def _make_task(
    id: str,
    title: str = "",
    status: TaskStatus = TaskStatus.PENDING,
    priority: Priority = Priority.MEDIUM,
    dependencies: list[str] | None = None,
    created: datetime | None = None,
    updated: datetime | None = None,
) -> Task:
    created = created or BASE_TIME
    completed_at = created + timedelta(days=1) if status == TaskStatus.DONE else None
    return Task(
        id=id,
        title=title or f"Task {id}",
        status=status,
        priority=priority,
        dependencies=dependencies or [],
        metadata=TaskMetadata(created=created, updated=updated or created, completed_at=completed_at),
    )


@pytest.fixture
def make_task():
    """Factory for in-memory tasks with fixed timestamps."""
    return _make_task


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def store(sleeper: RecordingSleep) -> AtomicFileStore:
    """Store with a never-contended fake lock and no real sleeping."""
    return AtomicFileStore(
        lock_provider=FakeLockProvider(),
        retry=RetryPolicy(),
        session=make_session(),
        sleep=sleeper,
    )


@pytest.fixture
def repo(tmp_path: Path, store: AtomicFileStore) -> TaskRepository:
    return TaskRepository(tmp_path, store=store, config=Config())


@pytest.fixture
def manager(repo: TaskRepository) -> TaskManager:
    return TaskManager(repo)


@pytest.fixture
def engine(manager: TaskManager) -> QueryEngine:
    return QueryEngine(manager)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer env overrides out of tests."""
    for name in ("TODORI_LOCK_RETRIES", "TODORI_LOCK_STALE_MS", "TODORI_PROJECT_ROOT"):
        monkeypatch.delenv(name, raising=False)
