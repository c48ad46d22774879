"""File lock manager for job mutual exclusion.

Manifesto:
    A job must never overlap itself, whether the overlapping run comes
    from the same scan, the next cron tick, or a manual invocation.  The
    lock manager gives each job an advisory, exclusive, non-blocking file
    lock.  Holding is defined purely by a successful lock call on an open
    handle, never by the file existing or by what it contains.

This module provides acquire/release of per-job lock files plus liveness
introspection (``lock_age``) used to detect runs exceeding ``max_runtime``.

Tags:
    jobspine, scheduling, file-locks, flock, concurrency, safety

Doc-Types:
    api-reference, architecture-diagram


    Lock File Lifecycle::

        missing ──acquire()──► "<pid>" (locked) ──release()──► "" (unlocked)
                                   ▲                               │
                                   └──────────acquire()────────────┘

        The file is never deleted: its mtime is the start time of the
        current (or last) holder, which lock_age() reports while the
        recorded PID is alive.

    Ownership:
        Each LockManager instance owns the handles it opened.  One
        BackgroundJob == one LockManager == at most one handle per path.
"""

from __future__ import annotations

import os
import re
import sys
import tempfile
import time
from pathlib import Path
from typing import IO

import psutil

from jobspine.core.errors import LockBusyError, LockError, LockLogicError
from jobspine.core.logging import get_logger

if sys.platform == "win32":
    import msvcrt
else:
    import fcntl

logger = get_logger(__name__)

DEFAULT_ATTEMPTS = 5
DEFAULT_RETRY_DELAY = 0.25  # seconds

_INVALID_CHARS = re.compile(r"[^a-z0-9_. -]+")
_REPEATED_UNDERSCORES = re.compile(r"_{2,}")


def _try_lock(handle: IO[str]) -> bool:
    """One non-blocking exclusive lock attempt on an open handle."""
    try:
        if sys.platform == "win32":
            handle.seek(0)
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        return False
    return True


def _unlock(handle: IO[str]) -> None:
    if sys.platform == "win32":
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class LockManager:
    """Per-job exclusive file locks with bounded non-blocking acquisition.

    Example:
        >>> manager = LockManager(lock_dir="/tmp")
        >>> lock_file = manager.lock_file_for("Nightly Backup")
        >>> manager.acquire(lock_file)
        >>> try:
        ...     pass  # run the job
        ... finally:
        ...     manager.release(lock_file)
    """

    def __init__(
        self,
        lock_dir: str | Path | None = None,
        *,
        attempts: int = DEFAULT_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ) -> None:
        """Initialize lock manager.

        Args:
            lock_dir: Directory used by ``lock_file_for()``. Defaults to the
                system temp directory.
            attempts: Non-blocking lock attempts before ``LockBusyError``
            retry_delay: Seconds to sleep between attempts
        """
        self.lock_dir = Path(lock_dir if lock_dir is not None else tempfile.gettempdir())
        self.attempts = attempts
        self.retry_delay = retry_delay
        self._handles: dict[str, IO[str]] = {}

    # === Naming ===

    @staticmethod
    def escape(name: str) -> str:
        """Turn a job name into a safe file name component.

        >>> LockManager.escape("With    Spaces!")
        'with_spaces'
        """
        value = _INVALID_CHARS.sub("", name.lower())
        value = value.strip().replace(" ", "_")
        return _REPEATED_UNDERSCORES.sub("_", value)

    def lock_file_for(self, job_name: str) -> Path:
        """Deterministic lock file path for a job name."""
        return self.lock_dir / f"{self.escape(job_name)}.lck"

    # === Acquire / Release ===

    def acquire(self, lock_file: str | Path) -> None:
        """Acquire the exclusive lock on ``lock_file`` and record our PID.

        Raises:
            LockLogicError: This instance already holds ``lock_file``
            LockError: The file cannot be created or opened
            LockBusyError: Another handle holds the lock after all attempts
        """
        path = Path(lock_file)
        key = str(path)
        if key in self._handles:
            raise LockLogicError(f"Lock already acquired (Lockfile: {path}).", lock_file=key)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.touch(exist_ok=True)
            handle = open(path, "r+", encoding="utf-8")
        except OSError as e:
            raise LockError(f"Unable to open file (File: {path}).", lock_file=key, cause=e) from e

        for attempt in range(1, self.attempts + 1):
            if _try_lock(handle):
                handle.seek(0)
                handle.truncate()
                handle.write(str(os.getpid()))
                handle.flush()
                self._handles[key] = handle
                logger.debug("lock.acquired", lock_file=key, attempt=attempt)
                return
            if attempt < self.attempts:
                time.sleep(self.retry_delay)

        handle.close()
        logger.debug("lock.busy", lock_file=key, attempts=self.attempts)
        raise LockBusyError(f"Job is still locked (Lockfile: {path})!", lock_file=key)

    def release(self, lock_file: str | Path) -> None:
        """Truncate and unlock ``lock_file``.

        Raises:
            LockLogicError: This instance does not hold ``lock_file``
        """
        key = str(Path(lock_file))
        handle = self._handles.pop(key, None)
        if handle is None:
            raise LockLogicError(f"Lock NOT held - bug? Lockfile: {key}", lock_file=key)

        try:
            handle.seek(0)
            handle.truncate()
            handle.flush()
            _unlock(handle)
        finally:
            handle.close()
        logger.debug("lock.released", lock_file=key)

    def is_held(self, lock_file: str | Path) -> bool:
        """Whether *this instance* currently holds ``lock_file``."""
        return str(Path(lock_file)) in self._handles

    # === Introspection ===

    @staticmethod
    def lock_age(lock_file: str | Path) -> int:
        """Seconds since the current holder acquired ``lock_file``.

        Returns 0 when the file is missing or unreadable, does not contain
        an ASCII PID, or the recorded PID is no longer alive (stale lock).
        """
        path = Path(lock_file)
        try:
            raw = path.read_bytes().strip()
            mtime = path.stat().st_mtime
        except OSError:
            return 0

        if not raw.isdigit():
            return 0
        if not psutil.pid_exists(int(raw)):
            return 0

        return max(0, int(time.time() - mtime))


__all__ = ["LockManager", "DEFAULT_ATTEMPTS", "DEFAULT_RETRY_DELAY"]
