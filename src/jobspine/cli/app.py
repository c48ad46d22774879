"""
Root Typer application for the jobspine CLI.

``run-job`` is what a scan detaches for each due job; the remaining
commands are small debugging aids for crontab authors.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from pathlib import Path

import typer
from typer import Typer

from jobspine import __version__
from jobspine.core.errors import JobSpineError
from jobspine.core.logging import bind_context, configure_logging, get_logger
from jobspine.core.scheduling.lock_manager import LockManager
from jobspine.core.scheduling.schedule import ScheduleChecker, parse_datetime
from jobspine.core.settings import get_settings
from jobspine.execution.background import BackgroundJob
from jobspine.execution.config import JobConfig

logger = get_logger(__name__)

app = Typer(
    name="jobspine",
    help="jobspine — cron job execution engine.",
    no_args_is_help=True,
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        try:
            v = pkg_version("jobspine")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"jobspine {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """jobspine CLI — run and inspect scheduled jobs."""


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("run-job")
def run_job(
    name: str = typer.Argument(..., help="Job name (also the lock identity)."),
    payload: str = typer.Argument(..., help="JSON job configuration."),
    lock_dir: Path | None = typer.Option(None, "--lock-dir", help="Directory for lock files."),
) -> None:
    """Run one job to completion.  Always exits 0; outcomes go to the job output."""
    settings = get_settings()
    if lock_dir is not None:
        settings = settings.model_copy(update={"lock_dir": lock_dir})
    configure_logging(level=settings.log_level, json_format=settings.json_logs())
    bind_context(job=name)

    try:
        config = JobConfig.from_payload(payload)
        outcome = BackgroundJob(name, config, settings=settings).run()
    except (JobSpineError, ValueError) as e:
        logger.error("run_job.failed", job=name, error=repr(e))
        return
    except Exception:
        logger.exception("run_job.crashed", job=name)
        return

    logger.info("run_job.finished", job=name, state=outcome.state.value)


@app.command("is-due")
def is_due(
    schedule: str = typer.Argument(..., help="Cron expression or 'YYYY-MM-DD HH:MM' string."),
    at: str | None = typer.Option(None, "--at", help="Reference time instead of now."),
) -> None:
    """Print whether SCHEDULE is due; exit status 1 when it is not."""
    reference = None
    if at is not None:
        reference = parse_datetime(at)
        if reference is None:
            typer.echo(f"Invalid --at value: {at!r}", err=True)
            raise typer.Exit(2)

    try:
        due = ScheduleChecker(reference).is_due(schedule)
    except JobSpineError as e:
        typer.echo(e.message, err=True)
        raise typer.Exit(2) from e

    typer.echo("due" if due else "not due")
    raise typer.Exit(0 if due else 1)


@app.command("lock-age")
def lock_age(
    name: str = typer.Argument(..., help="Job name."),
    lock_dir: Path | None = typer.Option(None, "--lock-dir", help="Directory for lock files."),
) -> None:
    """Print how many seconds the current holder of NAME's lock has held it."""
    manager = LockManager(lock_dir or get_settings().lock_dir)
    typer.echo(str(manager.lock_age(manager.lock_file_for(name))))


if __name__ == "__main__":
    app()
