"""Advisory cross-process lock providers and the backoff policy around them.

The store only needs two operations from a lock: a single non-blocking
``acquire`` attempt and a ``release``. Retry, backoff and diagnostics live in
:mod:`todori.store`, so the policy can be exercised against a fake provider
without racing real processes.

``DirectoryLockProvider`` uses ``mkdir`` on ``<file>.lock`` as the atomic
primitive. A lock directory older than ``stale_after`` seconds (by mtime) is
treated as abandoned and taken over. The mtime is not refreshed while the
lock is held, so a holder that runs past the window loses exclusivity; its
``release`` then notices the takeover and leaves the new lock alone.
"""

from __future__ import annotations

import os
import shutil
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol

from todori import log


class LockProvider(Protocol):
    def acquire(self, path: Path) -> bool:
        """Try once to lock *path*. Return ``False`` if someone else holds it."""
        ...

    def release(self, path: Path) -> None:
        ...


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: ``min_delay * factor ** (n - 1)`` capped at ``max_delay``."""

    retries: int = 3
    min_delay: float = 0.1
    max_delay: float = 1.0
    factor: float = 2

    def delay(self, attempt: int) -> float:
        """Seconds to sleep before retry number *attempt* (1-based)."""
        return min(self.min_delay * self.factor ** (attempt - 1), self.max_delay)

    def delays(self) -> list[float]:
        return [self.delay(n) for n in range(1, self.retries + 1)]


def lock_dir_for(path: Path) -> Path:
    return path.with_name(path.name + ".lock")


class DirectoryLockProvider:
    """``mkdir``-based advisory lock with ownership tokens and staleness takeover.

    Each acquire drops an ``owner.<pid>.<nonce>`` file into the lock directory
    and ``release`` only removes a directory that still holds this provider's
    token. Takeover renames the stale directory aside first, so of several
    contenders that judged the same lock stale only one can move it.
    """

    def __init__(self, stale_after: float = 5.0, clock: Callable[[], float] = time.time) -> None:
        self.stale_after = stale_after
        self._clock = clock
        self._tokens: dict[Path, str] = {}

    def acquire(self, path: Path) -> bool:
        lock_dir = lock_dir_for(path)
        if self._claim(lock_dir):
            return True

        if not self._is_stale(lock_dir):
            return False
        return self._take_over(lock_dir)

    def release(self, path: Path) -> None:
        """Remove the lock if this provider still owns it.

        A lock that went stale and was taken over is left to its new owner.
        """
        lock_dir = lock_dir_for(path)
        token = self._tokens.pop(lock_dir, None)
        if token is None:
            log.warn(f"Not holding {lock_dir}; nothing to release")
            return
        try:
            (lock_dir / token).unlink()
        except FileNotFoundError:
            log.warn(f"Lock {lock_dir} was taken over by another session; leaving it in place")
            return
        # Unlinking the token bumped the directory mtime, so it is not stale here.
        lock_dir.rmdir()

    def owns(self, path: Path) -> bool:
        token = self._tokens.get(lock_dir_for(path))
        return token is not None and (lock_dir_for(path) / token).exists()

    def _claim(self, lock_dir: Path) -> bool:
        try:
            lock_dir.mkdir()
        except FileExistsError:
            return False
        token = f"owner.{os.getpid()}.{uuid.uuid4().hex}"
        try:
            (lock_dir / token).touch(exist_ok=False)
        except OSError:
            lock_dir.rmdir()
            raise
        self._tokens[lock_dir] = token
        return True

    def _take_over(self, lock_dir: Path) -> bool:
        aside = lock_dir.with_name(f"{lock_dir.name}.stale.{os.getpid()}.{uuid.uuid4().hex}")
        try:
            os.rename(lock_dir, aside)
        except FileNotFoundError:
            # Another contender moved or released it first.
            return False
        except OSError as e:
            log.warn(f"Could not move stale lock {lock_dir}: {e}")
            return False

        if not self._is_stale(aside):
            # Replaced by a fresh lock after the staleness check; put it back.
            try:
                os.rename(aside, lock_dir)
            except OSError as e:
                log.warn(f"Could not restore lock {lock_dir}: {e}")
            return False

        log.warn(f"Lock {lock_dir} exceeded {self.stale_after:g}s; taking it over")
        try:
            shutil.rmtree(aside)
        except OSError as e:
            log.warn(f"Could not remove stale lock {aside}: {e}")
        return self._claim(lock_dir)

    def _is_stale(self, lock_dir: Path) -> bool:
        try:
            mtime = os.stat(lock_dir).st_mtime
        except FileNotFoundError:
            # Released after our mkdir failed; the next attempt can take it.
            return False
        return self._clock() - mtime > self.stale_after
