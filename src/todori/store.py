"""Crash-safe single-file persistence with advisory cross-process locking.

``write`` takes the lock, writes a sibling ``.tmp`` file, fsyncs it and
renames it over the target, so readers see either the old or the new bytes
and never a mix. ``read`` never locks: the repository reads to decide a
mutation and only the persist step is serialized. Two writers that both read
before either writes can still lose one update; the store guarantees byte
level mutual exclusion and crash safety, not compare-and-swap.

While the lock is held a ``session-lock.yaml`` record next to the file names
the holder. It exists only so contention messages can say who is in the way.

The lock is not refreshed during a write. A write that outlasts the lock
provider's staleness window (5 s by default) can be taken over by another
session and loses exclusivity for its remaining steps.
"""

from __future__ import annotations

import errno
import os
import time
from pathlib import Path
from typing import Callable

import yaml

from todori import log
from todori.config import SESSION_LOCK_FILE
from todori.errors import FileIOError, LockError
from todori.io_utils import read_text, write_text_synced
from todori.locking import DirectoryLockProvider, LockProvider, RetryPolicy
from todori.session import SessionInfo, SessionLock, current_session, format_session_info
from todori.tasks.io import dump_yaml, load_yaml, session_lock_from_dict, session_lock_to_dict
from todori.tasks.model import utc_now


def _os_code(exc: OSError) -> str | None:
    if exc.errno is None:
        return None
    return errno.errorcode.get(exc.errno, str(exc.errno))


def _wrap(exc: OSError, action: str, path: Path) -> FileIOError:
    code = _os_code(exc)
    if code == "EACCES":
        message = f"Permission denied {action} file: {path}"
    else:
        message = f"Failed {action} file: {exc.strerror or exc}"
    return FileIOError(message=message, path=str(path), os_code=code)


class AtomicFileStore:
    """Locked, atomic whole-file writes and lock-free reads."""

    def __init__(
        self,
        lock_provider: LockProvider | None = None,
        retry: RetryPolicy | None = None,
        session: SessionInfo | None = None,
        sleep: Callable[[float], None] = time.sleep,
        session_lock_name: str = SESSION_LOCK_FILE,
    ) -> None:
        self.lock_provider = lock_provider or DirectoryLockProvider()
        self.retry = retry or RetryPolicy()
        self.session = session or current_session()
        self._sleep = sleep
        self.session_lock_name = session_lock_name

    # ── public API ───────────────────────────────────────────────

    def read(self, path: Path) -> str | None:
        """Return the file contents, or ``None`` if *path* does not exist."""
        try:
            return read_text(path)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise _wrap(e, "reading", path) from e

    def write(self, path: Path, content: str) -> None:
        """Atomically replace *path* with *content* while holding the lock."""
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # The lock protects an existing file; create it on first write.
            path.touch(exist_ok=True)
        except OSError as e:
            raise _wrap(e, "preparing", path) from e

        self._acquire(path)
        try:
            self._write_session_lock(path)
            self._replace(path, content)
        finally:
            self._release(path)

    def session_lock_path(self, path: Path) -> Path:
        return Path(path).parent / self.session_lock_name

    def read_session_lock(self, path: Path) -> SessionLock | None:
        """The current holder record for *path*, or ``None`` if absent or unreadable."""
        record = self.session_lock_path(path)
        try:
            data = load_yaml(read_text(record))
            return session_lock_from_dict(data)
        except FileNotFoundError:
            return None
        except (OSError, yaml.YAMLError, KeyError, TypeError, ValueError) as e:
            log.debug(f"Ignoring unreadable session lock {record}: {e}")
            return None

    # ── locking ──────────────────────────────────────────────────

    def _acquire(self, path: Path) -> None:
        attempts = 0
        while True:
            attempts += 1
            try:
                acquired = self.lock_provider.acquire(path)
            except OSError as e:
                raise _wrap(e, "locking", path) from e
            if acquired:
                log.debug(f"Lock acquired on {path} (attempt {attempts})")
                return

            holder = self.read_session_lock(path)
            if attempts > self.retry.retries:
                detail = f"\n{format_session_info(holder.session)}" if holder else ""
                raise LockError(
                    message=(
                        f"Failed to acquire lock on {path} after {self.retry.retries} retries; "
                        f"held by another session{detail}"
                    ),
                    path=str(path),
                    holder=holder.session if holder else None,
                    attempts=attempts,
                )

            delay = self.retry.delay(attempts)
            detail = f"\n{format_session_info(holder.session)}" if holder else " (holder unknown)"
            log.warn(
                f"{path} is locked by another session; retry {attempts}/{self.retry.retries} "
                f"in {delay:.1f}s{detail}"
            )
            self._sleep(delay)

    def _release(self, path: Path) -> None:
        record = self.session_lock_path(path)
        try:
            record.unlink(missing_ok=True)
        except OSError as e:
            log.warn(f"Failed to remove session lock {record}: {e}")
        try:
            self.lock_provider.release(path)
        except OSError as e:
            log.warn(f"Failed to release lock for {path}: {e}")

    def _write_session_lock(self, path: Path) -> None:
        now = utc_now()
        record = SessionLock(session=self.session, acquired_at=now, last_active_at=now, lock_file=path)
        target = self.session_lock_path(path)
        try:
            write_text_synced(target, dump_yaml(session_lock_to_dict(record)), sync=False)
        except OSError as e:
            log.warn(f"Failed to write session lock {target}: {e}")

    # ── atomic replace ───────────────────────────────────────────

    def _replace(self, path: Path, content: str) -> None:
        tmp = path.with_name(path.name + ".tmp")
        try:
            write_text_synced(tmp, content)
            os.replace(tmp, path)
        except OSError as e:
            self._discard(tmp)
            raise _wrap(e, "writing", path) from e
        except BaseException:
            self._discard(tmp)
            raise

    def _discard(self, tmp: Path) -> None:
        try:
            tmp.unlink(missing_ok=True)
        except OSError as e:
            log.warn(f"Failed to remove temp file {tmp}: {e}")
