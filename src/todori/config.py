"""Configuration defaults, env vars, and project-root resolution for todori."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from todori import log
from todori.locking import DirectoryLockProvider, RetryPolicy

STORAGE_DIR = ".todori"
TASKS_FILE = "tasks.yaml"
SESSION_LOCK_FILE = "session-lock.yaml"

ROOT_MARKERS: tuple[str, ...] = (".git", STORAGE_DIR)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        log.warn(f"Ignoring {name}={raw!r}: not an integer")
        return default


@dataclass
class Config:
    """Runtime configuration for the store and CLI."""

    # Layout
    storage_dir: str = STORAGE_DIR
    tasks_file: str = TASKS_FILE
    session_lock_file: str = SESSION_LOCK_FILE

    # Locking
    lock_retries: int = 3
    lock_min_timeout_ms: int = 100
    lock_max_timeout_ms: int = 1000
    lock_backoff_factor: float = 2
    lock_stale_ms: int = 5000

    # Misc
    verbose: bool = False

    def __post_init__(self) -> None:
        self.lock_retries = _env_int("TODORI_LOCK_RETRIES", self.lock_retries)
        self.lock_stale_ms = _env_int("TODORI_LOCK_STALE_MS", self.lock_stale_ms)
        if self.lock_retries < 0:
            self.lock_retries = 0

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            retries=self.lock_retries,
            min_delay=self.lock_min_timeout_ms / 1000,
            max_delay=self.lock_max_timeout_ms / 1000,
            factor=self.lock_backoff_factor,
        )

    def lock_provider(self) -> DirectoryLockProvider:
        return DirectoryLockProvider(stale_after=self.lock_stale_ms / 1000)

    def storage_path(self, project_root: Path) -> Path:
        return project_root / self.storage_dir

    def tasks_path(self, project_root: Path) -> Path:
        return self.storage_path(project_root) / self.tasks_file


def detect_project_root(start: Path) -> Path | None:
    """Walk up from *start* looking for a ``.git`` or ``.todori`` directory."""
    current = start.resolve()
    while True:
        for marker in ROOT_MARKERS:
            if (current / marker).exists():
                return current
        parent = current.parent
        if parent == current:
            return None
        current = parent


def resolve_project_root(explicit: str | Path | None = None) -> Path:
    """Return the project root: explicit path, ``TODORI_PROJECT_ROOT``, detection, then cwd."""
    if explicit:
        return Path(explicit).resolve()

    env_root = os.environ.get("TODORI_PROJECT_ROOT", "").strip()
    if env_root:
        return Path(env_root).resolve()

    detected = detect_project_root(Path.cwd())
    if detected is not None:
        return detected

    log.debug("No .git or .todori marker found; using current directory as project root")
    return Path.cwd().resolve()
