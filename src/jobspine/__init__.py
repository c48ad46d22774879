"""
jobspine - cron job execution engine.

Register jobs once, call ``run()`` from a crontab line every minute::

    * * * * * cd /app && python jobs.py

.. code-block:: python

    from jobspine import JobRegistry

    registry = JobRegistry({"output": "logs/jobs.log", "recipients": "ops@example.com"})
    registry.add("backup", {"command": "/usr/local/bin/backup.sh", "schedule": "0 3 * * *"})
    registry.run()
"""

__version__ = "0.1.0"

from jobspine.core.errors import (
    ConfigError,
    JobSpineError,
    LockBusyError,
    LockLogicError,
    ParseError,
)
from jobspine.core.scheduling.lock_manager import LockManager
from jobspine.core.scheduling.registry import JobRegistry, ScanReport
from jobspine.core.scheduling.schedule import ScheduleChecker
from jobspine.execution.background import BackgroundJob, ExecutionOutcome, JobState
from jobspine.execution.config import JobConfig

__all__ = [
    "__version__",
    "BackgroundJob",
    "ConfigError",
    "ExecutionOutcome",
    "JobConfig",
    "JobRegistry",
    "JobSpineError",
    "JobState",
    "LockBusyError",
    "LockLogicError",
    "LockManager",
    "ParseError",
    "ScanReport",
    "ScheduleChecker",
]
