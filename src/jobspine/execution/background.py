"""Background job — the per-job execution state machine.

Manifesto:
    One BackgroundJob runs one job once.  It decides whether the job may
    run at all, takes the job's lock, runs the body, reports the outcome
    and always gives the lock back.  Everything that can go wrong with a
    single job is contained here so that sibling jobs and the scanning
    process never see it.

Architecture:
    ::

        PENDING
           │
        SKIP_CHECK ── enabled? host? environment? halt marker? ──► SKIPPED
           │                                                    (no output)
        LOCKING ── previous lock age > max_runtime ──► FAILED (RUNTIME_EXCEEDED)
           │   └── 5 non-blocking attempts exhausted ──► LOCK_BUSY (INFO line)
           │
        RUNNING ── shell command via ProcessLauncher
           │    └─ callable in-process, stdout/stderr captured
           │
        SUCCEEDED | FAILED (COMMAND_FAILURE) ── ERROR line + mail
           │
        RELEASED

    Output lines written by the engine look like::

        [2024-01-01 03:00:00] ERROR: Job exited with status '2'

    The timestamp is the job's start time formatted with ``date_format``.

Guardrails:
    ❌ Killing a run that exceeds max_runtime
    ✅ Report it; the new run does not start this cycle
    ❌ Mailing on LOCK_BUSY
    ✅ Write an INFO line only
    ❌ Falling back to the caller's stdout when no output is configured
    ✅ Discard (null device / dropped buffer)

Tags:
    jobspine, execution, state-machine, locking, subprocess

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

import io
import socket
import traceback
from collections.abc import Callable
from contextlib import redirect_stderr, redirect_stdout
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from jobspine.core.errors import (
    CommandFailureError,
    ConfigError,
    JobSpineError,
    LockBusyError,
    LockError,
    LockLogicError,
    NotificationError,
    RuntimeExceededError,
)
from jobspine.core.logging import get_logger
from jobspine.core.scheduling.lock_manager import LockManager
from jobspine.core.settings import JobSpineSettings, get_application_env, get_settings
from jobspine.execution.config import JobConfig
from jobspine.execution.launcher import ProcessLauncher, get_launcher, open_output
from jobspine.framework.alerts.notifier import FailureNotifier

logger = get_logger(__name__)


class JobState(str, Enum):
    PENDING = "pending"
    SKIP_CHECK = "skip_check"
    SKIPPED = "skipped"
    LOCKING = "locking"
    LOCK_BUSY = "lock_busy"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    RELEASED = "released"


class SkipReason(str, Enum):
    DISABLED = "disabled"
    HOST_MISMATCH = "host_mismatch"
    ENVIRONMENT_MISMATCH = "environment_mismatch"
    HALTED = "halted"


class FailureReason(str, Enum):
    RUNTIME_EXCEEDED = "runtime_exceeded"
    COMMAND_FAILURE = "command_failure"
    LOCK_ERROR = "lock_error"
    INVALID_CONFIG = "invalid_config"


@dataclass(frozen=True)
class ExecutionOutcome:
    """What happened to one job in one scan."""

    state: JobState
    skip_reason: SkipReason | None = None
    failure_reason: FailureReason | None = None
    detail: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == JobState.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.state == JobState.FAILED

    @classmethod
    def success(cls) -> ExecutionOutcome:
        return cls(state=JobState.SUCCEEDED)

    @classmethod
    def failure(cls, reason: FailureReason, detail: str) -> ExecutionOutcome:
        return cls(state=JobState.FAILED, failure_reason=reason, detail=detail)

    @classmethod
    def skipped(cls, reason: SkipReason) -> ExecutionOutcome:
        return cls(state=JobState.SKIPPED, skip_reason=reason)

    @classmethod
    def lock_busy(cls, detail: str) -> ExecutionOutcome:
        return cls(state=JobState.LOCK_BUSY, detail=detail)


class BackgroundJob:
    """Runs a single job once, honouring locks, gates and max_runtime.

    Example:
        >>> config = JobConfig(work="/usr/local/bin/backup.sh", schedule="0 3 * * *",
        ...                    output="/var/log/backup.log")
        >>> outcome = BackgroundJob("backup", config).run()
        >>> outcome.state
        <JobState.SUCCEEDED: 'succeeded'>
    """

    def __init__(
        self,
        name: str,
        config: JobConfig,
        *,
        lock_manager: LockManager | None = None,
        launcher: ProcessLauncher | None = None,
        notifier: FailureNotifier | None = None,
        settings: JobSpineSettings | None = None,
        host: str | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.name = name
        self.config = config
        self.host = host or socket.gethostname()
        self.lock_manager = lock_manager or LockManager(
            settings.lock_dir,
            attempts=settings.lock_attempts,
            retry_delay=settings.lock_retry_delay,
        )
        self.launcher = launcher or get_launcher()
        self.notifier = notifier or FailureNotifier(host=self.host)
        self.lock_file = self.lock_manager.lock_file_for(name)
        self.started_at = datetime.now()
        self.state = JobState.PENDING
        self.transitions: list[JobState] = [JobState.PENDING]

    # === State machine ===

    def _transition(self, state: JobState) -> None:
        self.state = state
        self.transitions.append(state)

    def run(self) -> ExecutionOutcome:
        """Run the job once and return its outcome.

        Job failures never raise; ``LockLogicError`` (a bug) does.
        """
        self._transition(JobState.SKIP_CHECK)
        reason = self.skip_reason()
        if reason is not None:
            self._transition(JobState.SKIPPED)
            logger.debug("job.skipped", job=self.name, reason=reason.value)
            return ExecutionOutcome.skipped(reason)

        self._transition(JobState.LOCKING)
        try:
            self.check_max_runtime()
        except RuntimeExceededError as e:
            return self._fail(FailureReason.RUNTIME_EXCEEDED, e)

        try:
            self.lock_manager.acquire(self.lock_file)
        except LockBusyError as e:
            self._transition(JobState.LOCK_BUSY)
            self.log(f"INFO: {e.message}")
            logger.info("job.lock_busy", job=self.name, lock_file=str(self.lock_file))
            return ExecutionOutcome.lock_busy(e.message)
        except LockLogicError:
            raise
        except LockError as e:
            return self._fail(FailureReason.LOCK_ERROR, e)

        self._transition(JobState.RUNNING)
        if self.config.debug:
            self.log(f"INFO: Lock acquired (Lockfile: {self.lock_file})")
        try:
            outcome = self._run_locked()
        finally:
            self.lock_manager.release(self.lock_file)
            self._transition(JobState.RELEASED)
            if self.config.debug:
                self.log(f"INFO: Lock released (Lockfile: {self.lock_file})")
        return outcome

    def _run_locked(self) -> ExecutionOutcome:
        try:
            self.run_body()
        except CommandFailureError as e:
            return self._fail(FailureReason.COMMAND_FAILURE, e)
        except ConfigError as e:
            return self._fail(FailureReason.INVALID_CONFIG, e)

        self._transition(JobState.SUCCEEDED)
        logger.info("job.succeeded", job=self.name)
        return ExecutionOutcome.success()

    def _fail(self, reason: FailureReason, error: JobSpineError) -> ExecutionOutcome:
        self._transition(JobState.FAILED)
        self.log(f"ERROR: {error.message}")
        logger.error("job.failed", job=self.name, reason=reason.value, error=error.to_dict())
        self.mail(error.message)
        return ExecutionOutcome.failure(reason, error.message)

    # === Gates ===

    def skip_reason(self) -> SkipReason | None:
        """First matching reason not to run this job at all, if any."""
        config = self.config
        if not config.enabled:
            return SkipReason.DISABLED
        if config.host_filter is not None and config.host_filter != self.host:
            return SkipReason.HOST_MISMATCH
        if config.environment is not None and config.environment != get_application_env():
            return SkipReason.ENVIRONMENT_MISMATCH
        if config.halt_dir is not None and (Path(config.halt_dir) / self.name).exists():
            return SkipReason.HALTED
        return None

    def check_max_runtime(self) -> None:
        """Raise if the run currently holding the lock is older than allowed.

        Sampled before our own acquire attempt, which would otherwise
        overwrite the previous holder's PID and timestamp.
        """
        max_runtime = self.config.max_runtime
        if max_runtime is None:
            return

        runtime = self.lock_manager.lock_age(self.lock_file)
        if runtime > max_runtime:
            raise RuntimeExceededError(max_runtime, runtime, job=self.name)

    # === Body ===

    def run_body(self) -> None:
        work = self.config.resolve_work()
        if callable(work):
            self.run_callable(work)
        else:
            self.run_shell(work)

    def run_shell(self, command: str) -> None:
        config = self.config
        try:
            status = self.launcher.spawn(
                command,
                config.stdout_target,
                config.stderr_target,
                config.run_as_user,
            )
        except (OSError, KeyError, ValueError) as e:
            raise CommandFailureError(f"Unable to start job: {e}", job=self.name, cause=e) from e

        if status != 0:
            raise CommandFailureError(
                f"Job exited with status '{status}'", job=self.name, exit_code=status
            )

    def run_callable(self, func: Callable[[], Any]) -> None:
        stdout = io.StringIO()
        stderr = io.StringIO()
        error: CommandFailureError | None = None
        result: Any = None

        try:
            with redirect_stdout(stdout), redirect_stderr(stderr):
                result = func()
        except (Exception, SystemExit) as e:
            stderr.write(traceback.format_exc())
            error = CommandFailureError(f"Callable raised {e!r}", job=self.name, cause=e)
        finally:
            self._write_captured(stdout.getvalue(), stderr.getvalue())

        if error is not None:
            raise error
        if result is not True:
            raise CommandFailureError(
                f"Callable did not return True! Returned: {result!r}", job=self.name
            )

    # === Output ===

    def _write_captured(self, out: str, err: str) -> None:
        stdout_target = self.config.stdout_target
        stderr_target = self.config.stderr_target
        if stdout_target == stderr_target:
            self._append(stdout_target, out + err)
            return
        self._append(stdout_target, out)
        self._append(stderr_target, err)

    def _append(self, target: str | None, text: str) -> None:
        if target is None or not text:
            return
        try:
            with open_output(target) as fh:
                fh.write(text)
        except OSError as e:
            logger.warning("job.output_unwritable", job=self.name, output=target, error=str(e))

    def log(self, message: str) -> None:
        """Append a timestamped engine line to the job's output."""
        now = self.started_at.strftime(self.config.date_format)
        self._append(self.config.stdout_target, f"[{now}] {message}\n")

    def mail(self, message: str) -> None:
        """Notify recipients; delivery problems are logged, not raised."""
        try:
            self.notifier.notify(self.name, self.config, message)
        except NotificationError as e:
            logger.error("job.notify_failed", job=self.name, error=e.to_dict())
        except Exception as e:
            logger.error("job.notify_failed", job=self.name, error=repr(e))


__all__ = [
    "BackgroundJob",
    "ExecutionOutcome",
    "FailureReason",
    "JobState",
    "SkipReason",
]
