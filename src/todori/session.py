"""Process identity used to attribute locks and writes.

A ``SessionInfo`` is pure diagnostic metadata. Mutual exclusion is the
lock provider's job; nothing here is consulted to decide who owns a file.
"""

from __future__ import annotations

import os
import platform
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

# Captured at import time; close enough to process start for diagnostics.
_PROCESS_STARTED = datetime.now(timezone.utc)


@dataclass(frozen=True)
class SessionInfo:
    pid: int
    start_time: datetime
    hostname: str | None = None

    @property
    def session_id(self) -> str:
        """Compact identifier, e.g. ``1234@build-box``."""
        if self.hostname:
            return f"{self.pid}@{self.hostname}"
        return str(self.pid)


@dataclass(frozen=True)
class SessionLock:
    """Contents of ``session-lock.yaml`` while a writer holds the task file."""

    session: SessionInfo
    acquired_at: datetime
    last_active_at: datetime
    lock_file: Path


def current_session() -> SessionInfo:
    hostname = os.environ.get("HOSTNAME") or platform.node() or None
    started = _PROCESS_STARTED.replace(microsecond=_PROCESS_STARTED.microsecond // 1000 * 1000)
    return SessionInfo(pid=os.getpid(), start_time=started, hostname=hostname)


def format_session_info(session: SessionInfo) -> str:
    """Multi-line description of a lock holder for contention messages."""
    lines = [f"  PID: {session.pid}", f"  Started: {session.start_time.isoformat()}"]
    if session.hostname:
        lines.append(f"  Host: {session.hostname}")
    return "\n".join(lines)
