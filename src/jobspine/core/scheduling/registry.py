"""Job registry — the entry point a crontab line calls once a minute.

Manifesto:
    One invocation is one scan.  The registry holds the jobs, asks the
    due-time evaluator about each of them against a single reference
    instant, and hands due jobs off so the scan itself returns in well
    under a minute regardless of how long any job takes.

Architecture:
    ::

        * * * * * cd /app && python jobs.py
                          │
                   JobRegistry.run()
                          │  one ScheduleChecker per scan
                          ▼
             for each (name, JobConfig):
               is_due?  no  ─► not_due
                 │ yes
                 ├─ detachable ─► launcher.detach(python -m jobspine.cli run-job ...)
                 └─ otherwise  ─► BackgroundJob(name, config).run()
                          │
                      ScanReport

    Shell commands and callables with an import path are detached; the
    scan does not wait for them.  Lambdas, closures and functions defined
    in ``__main__`` cannot be re-imported by a child process, so they run
    in-process and block the scan for their own duration only.

Examples:
    >>> registry = JobRegistry({"output": "/var/log/jobs.log"})
    >>> registry.add("backup", {"command": "/usr/local/bin/backup.sh", "schedule": "0 3 * * *"})
    >>> registry.add("heartbeat", {"handler": "app.jobs:heartbeat", "schedule": "* * * * *"})
    >>> report = registry.run()

Tags:
    jobspine, scheduling, registry, cron, dispatch

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from jobspine.core.errors import ConfigError, JobSpineError, LockLogicError, MissingConfigError
from jobspine.core.logging import get_logger
from jobspine.core.scheduling.schedule import ScheduleChecker
from jobspine.core.settings import JobSpineSettings, get_settings
from jobspine.execution.background import BackgroundJob, ExecutionOutcome
from jobspine.execution.config import JobConfig, normalise_options
from jobspine.execution.launcher import ProcessLauncher, get_launcher
from jobspine.framework.alerts.notifier import FailureNotifier
from jobspine.framework.alerts.transports import MailTransport

logger = get_logger(__name__)

CHILD_MODULE = "jobspine.cli"


@dataclass
class ScanReport:
    """What one ``JobRegistry.run()`` did with each job."""

    reference_time: datetime
    due: list[str] = field(default_factory=list)
    not_due: list[str] = field(default_factory=list)
    dispatched: list[tuple[str, int]] = field(default_factory=list)
    inline: list[tuple[str, ExecutionOutcome]] = field(default_factory=list)
    errors: list[tuple[str, str]] = field(default_factory=list)


class JobRegistry:
    """Holds job definitions and runs a scan over them.

    Args:
        config: Defaults shared by every job added afterwards
        launcher: Process launcher (platform default when omitted)
        transport: Mail transport for jobs run in-process
        settings: Process settings (cached ``get_settings()`` when omitted)
    """

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        *,
        launcher: ProcessLauncher | None = None,
        transport: MailTransport | None = None,
        settings: JobSpineSettings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.launcher = launcher or get_launcher()
        self.transport = transport
        self._config = self.get_default_config()
        self._jobs: list[tuple[str, JobConfig]] = []
        if config:
            self.set_config(config)

    # === Configuration ===

    @staticmethod
    def get_default_config() -> dict[str, Any]:
        return JobConfig.defaults()

    def get_config(self) -> dict[str, Any]:
        return dict(self._config)

    def set_config(self, config: dict[str, Any]) -> None:
        """Merge ``config`` into the defaults used by jobs added from now on."""
        self._config.update(normalise_options(config))

    def get_jobs(self) -> list[tuple[str, JobConfig]]:
        return list(self._jobs)

    def add(self, name: str, config: dict[str, Any]) -> JobConfig:
        """Register a job under ``name``.

        Raises:
            MissingConfigError: Neither ``work``/``command``/``handler`` nor
                ``schedule`` was given
            ConfigError: An option has an invalid value
        """
        options = normalise_options(config)
        if options.get("work") is None and options.get("handler") is None:
            raise MissingConfigError("work", job=name)
        if options.get("schedule") is None:
            raise MissingConfigError("schedule", job=name)

        try:
            job = JobConfig.model_validate({**self._config, **options})
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration for '{name}' job: {e}", job=name, cause=e) from e

        self._jobs.append((name, job))
        logger.debug("registry.job_added", job=name, callable=job.is_callable)
        return job

    # === Scan ===

    def run(self, reference_time: datetime | None = None) -> ScanReport:
        """Evaluate every job once and start the due ones.

        Per-job problems (bad schedules, failing predicates, spawn errors)
        are logged and recorded in the report; they never abort the scan.
        """
        checker = ScheduleChecker(reference_time)
        report = ScanReport(reference_time=checker.reference_time)
        logger.info("scan.started", jobs=len(self._jobs), at=checker.reference_time.isoformat())

        for name, job in self._jobs:
            try:
                due = checker.is_due(job.schedule)
            except Exception as e:
                logger.error("scan.schedule_failed", job=name, error=repr(e))
                report.errors.append((name, repr(e)))
                report.not_due.append(name)
                continue

            if not due:
                report.not_due.append(name)
                continue

            report.due.append(name)
            try:
                self._dispatch(name, job, report)
            except LockLogicError:
                raise
            except (OSError, JobSpineError) as e:
                logger.error("scan.dispatch_failed", job=name, error=repr(e))
                report.errors.append((name, repr(e)))
            except Exception as e:
                logger.exception("scan.job_crashed", job=name)
                report.errors.append((name, repr(e)))

        logger.info(
            "scan.finished",
            due=len(report.due),
            dispatched=len(report.dispatched),
            inline=len(report.inline),
            errors=len(report.errors),
        )
        return report

    def _dispatch(self, name: str, job: JobConfig, report: ScanReport) -> None:
        if job.detachable():
            pid = self.launcher.detach(self.child_command(name, job))
            report.dispatched.append((name, pid))
            logger.info("job.dispatched", job=name, pid=pid)
            return

        outcome = self.background_job(name, job).run()
        report.inline.append((name, outcome))
        logger.info("job.ran_inline", job=name, state=outcome.state.value)

    def child_command(self, name: str, job: JobConfig) -> list[str]:
        """argv of the detached child that runs ``name``."""
        return [
            self.settings.python_executable,
            "-m",
            CHILD_MODULE,
            "run-job",
            name,
            job.to_payload(),
            "--lock-dir",
            str(self.settings.lock_dir),
        ]

    def background_job(self, name: str, job: JobConfig) -> BackgroundJob:
        return BackgroundJob(
            name,
            job,
            launcher=self.launcher,
            notifier=FailureNotifier(transport=self.transport),
            settings=self.settings,
        )


__all__ = ["JobRegistry", "ScanReport"]
