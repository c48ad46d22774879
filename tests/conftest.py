"""
Shared pytest fixtures for jobspine tests.

This module provides:
- Process-state isolation (settings cache, structlog config, APPLICATION_ENV)
- Settings pointing lock files at a per-test temporary directory
- A recording mail transport
- A ``make_job`` factory for BackgroundJob instances

Usage:
    def test_something(make_job, tmp_path):
        job = make_job(work="echo hi", output=str(tmp_path / "job.log"))
        assert job.run().succeeded
"""

from pathlib import Path
from typing import Any, Generator

import pytest
import structlog

from jobspine.core.settings import JobSpineSettings, get_settings
from jobspine.execution.background import BackgroundJob
from jobspine.execution.config import JobConfig
from jobspine.framework.alerts.notifier import FailureNotifier

from _support import TEST_HOST, RecordingTransport


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolate_process_state(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Keep cached settings, logging config and APPLICATION_ENV test-local."""
    monkeypatch.delenv("APPLICATION_ENV", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
    structlog.reset_defaults()


# =============================================================================
# Settings / Transport
# =============================================================================


@pytest.fixture
def lock_dir(tmp_path: Path) -> Path:
    return tmp_path / "locks"


@pytest.fixture
def settings(lock_dir: Path) -> JobSpineSettings:
    return JobSpineSettings(lock_dir=lock_dir, lock_retry_delay=0.01, _env_file=None)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


# =============================================================================
# Jobs
# =============================================================================


@pytest.fixture
def make_job(settings: JobSpineSettings, transport: RecordingTransport):
    """Factory: ``make_job(name, launcher=None, lock_manager=None, **options)``."""

    def _make(
        name: str = "test job",
        *,
        launcher: Any = None,
        lock_manager: Any = None,
        **options: Any,
    ) -> BackgroundJob:
        options.setdefault("schedule", "* * * * *")
        return BackgroundJob(
            name,
            JobConfig(**options),
            lock_manager=lock_manager,
            launcher=launcher,
            notifier=FailureNotifier(transport=transport, host=TEST_HOST),
            settings=settings,
            host=TEST_HOST,
        )

    return _make

