"""
Scheduling: due-time evaluation, per-job file locks and the job registry.

Modules:
    schedule      ScheduleChecker (cron / datetime / predicate)
    lock_manager  LockManager (flock / msvcrt advisory locks)
    registry      JobRegistry + ScanReport
"""

from jobspine.core.scheduling.lock_manager import LockManager
from jobspine.core.scheduling.registry import JobRegistry, ScanReport
from jobspine.core.scheduling.schedule import ScheduleChecker

__all__ = ["JobRegistry", "LockManager", "ScanReport", "ScheduleChecker"]
