"""
Structured error types for jobspine.

Every failure the engine can observe is expressed as a ``JobSpineError``
subclass carrying an ``ErrorCategory``, the job it belongs to, and an
optional chained cause.  The executor uses the class of an error to decide
how the outcome is reported: some errors are written to the job output and
mailed, some are only logged, and some are programmer errors that must
surface immediately.

Manifesto:
    - **Typed outcomes:** A failed job, a busy lock and a bad cron string are
      different things and get different classes
    - **Contained failures:** Per-job errors never escape the job's executor
    - **Loud programmer errors:** Lock misuse raises ``LockLogicError`` and is
      never swallowed

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       JobSpineError                              │
        │            (category, job, context, cause)                       │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ConfigError        ParseError         LockError                 │
        │  (CONFIG)           (PARSE)            (LOCK)                    │
        │                                           │                      │
        │                                  LockLogicError  LockBusyError   │
        │                                                                  │
        │  ExecutionError     NotificationError                            │
        │  (EXECUTION)        (NOTIFY)                                     │
        │       │                                                          │
        │  RuntimeExceededError   CommandFailureError                      │
        └─────────────────────────────────────────────────────────────────┘

    Propagation:
        ConfigError           raised from JobRegistry.add()
        ParseError            raised from ScheduleChecker.is_due()
        LockBusyError         informational, logged only, never mailed
        RuntimeExceededError  failure, logged + mailed
        CommandFailureError   failure, logged + mailed
        LockLogicError        fatal, never caught by the engine

Examples:
    >>> err = CommandFailureError("Job exited with status '1'", job="backup")
    >>> err.category
    <ErrorCategory.EXECUTION: 'EXECUTION'>
    >>> err.to_dict()["job"]
    'backup'

Tags:
    error-handling, exception-hierarchy, jobspine, locking, execution

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories used for classification and log routing."""

    CONFIG = "CONFIG"  # Missing or invalid job configuration
    PARSE = "PARSE"  # Schedule expressions that cannot be parsed
    LOCK = "LOCK"  # Lock file creation, contention, misuse
    EXECUTION = "EXECUTION"  # Job body failures and runtime ceiling
    NOTIFY = "NOTIFY"  # Mail transport failures
    INTERNAL = "INTERNAL"  # Bugs, unexpected state


class JobSpineError(Exception):
    """
    Base exception for all jobspine errors.

    Subclasses set ``default_category``; the instance may override it.
    ``job`` names the job the error belongs to (``None`` for errors raised
    outside of a job, e.g. while parsing a schedule in isolation).

    Examples:
        >>> err = JobSpineError("boom", job="nightly")
        >>> err.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> err.with_context(attempts=5).context
        {'attempts': 5}
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        job: str | None = None,
        category: ErrorCategory | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.job = job
        self.category = category or self.default_category
        self.context: dict[str, Any] = dict(context or {})
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> JobSpineError:
        """Add context to this error (fluent API)."""
        self.context.update(kwargs)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logging."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        if self.job is not None:
            result["job"] = self.job
        if self.context:
            result["context"] = self.context
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION / PARSING
# =============================================================================


class ConfigError(JobSpineError):
    """Job configuration is missing a required key or holds an invalid value."""

    default_category = ErrorCategory.CONFIG


class MissingConfigError(ConfigError):
    """A required job option is absent."""

    def __init__(self, key: str, *, job: str | None = None):
        self.key = key
        super().__init__(f"'{key}' is required for '{job}' job", job=job)


class ParseError(JobSpineError):
    """A schedule expression could not be parsed."""

    default_category = ErrorCategory.PARSE

    def __init__(self, message: str, *, expression: Any = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.expression = expression


# =============================================================================
# LOCKING
# =============================================================================


class LockError(JobSpineError):
    """The lock file could not be created or opened."""

    default_category = ErrorCategory.LOCK

    def __init__(self, message: str, *, lock_file: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.lock_file = lock_file


class LockLogicError(LockError):
    """Double acquire or release-without-acquire by the same lock manager.

    This is a programming error; the engine never catches it.
    """


class LockBusyError(LockError):
    """Another process holds the lock; the job is skipped for this scan."""


# =============================================================================
# EXECUTION
# =============================================================================


class ExecutionError(JobSpineError):
    """The job ran (or was about to run) and failed."""

    default_category = ErrorCategory.EXECUTION


class RuntimeExceededError(ExecutionError):
    """The previous run has held the lock for longer than ``max_runtime``."""

    def __init__(self, max_runtime: int, runtime: int, **kwargs: Any):
        self.max_runtime = max_runtime
        self.runtime = runtime
        super().__init__(
            f"MaxRuntime of {max_runtime} secs exceeded! Current runtime: {runtime} secs",
            **kwargs,
        )


class CommandFailureError(ExecutionError):
    """A shell command exited nonzero or a callable did not return ``True``."""

    def __init__(self, message: str, *, exit_code: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.exit_code = exit_code


# =============================================================================
# NOTIFICATION
# =============================================================================


class NotificationError(JobSpineError):
    """A failure notification could not be delivered."""

    default_category = ErrorCategory.NOTIFY


__all__ = [
    "ErrorCategory",
    "JobSpineError",
    "ConfigError",
    "MissingConfigError",
    "ParseError",
    "LockError",
    "LockLogicError",
    "LockBusyError",
    "ExecutionError",
    "RuntimeExceededError",
    "CommandFailureError",
    "NotificationError",
]
