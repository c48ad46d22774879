"""Job execution: configuration, process launching and the per-job state machine."""

from jobspine.execution.background import (
    BackgroundJob,
    ExecutionOutcome,
    FailureReason,
    JobState,
    SkipReason,
)
from jobspine.execution.config import JobConfig
from jobspine.execution.launcher import ProcessLauncher, get_launcher

__all__ = [
    "BackgroundJob",
    "ExecutionOutcome",
    "FailureReason",
    "JobConfig",
    "JobState",
    "ProcessLauncher",
    "SkipReason",
    "get_launcher",
]
