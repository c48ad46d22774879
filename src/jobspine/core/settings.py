"""Process-wide settings for jobspine.

Job-level options live on :class:`~jobspine.execution.config.JobConfig`.
This module holds what is shared by every job in a process: where lock
files go, how hard to try for a lock, which interpreter runs detached
children, and how engine diagnostics are logged.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not mid-scan
    - **Environment-driven:** ``JOBSPINE_*`` variables and a ``.env`` file
    - **Sensible defaults:** Works out of the box from a crontab line

Examples:
    >>> from jobspine.core.settings import get_settings
    >>> settings = get_settings()
    >>> settings.lock_attempts
    5

Tags:
    settings, configuration, pydantic, environment, jobspine
"""

from __future__ import annotations

import os
import sys
import tempfile
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class JobSpineSettings(BaseSettings):
    """Settings shared by every job in the process.

    Fields
    ──────
    lock_dir          : Directory holding ``<job>.lck`` files
    lock_attempts     : Non-blocking lock attempts before giving up
    lock_retry_delay  : Seconds between lock attempts
    python_executable : Interpreter used to start detached job children
    log_level         : Structlog log level
    log_format        : ``json``, ``console`` or ``auto``
    """

    model_config = SettingsConfigDict(
        env_prefix="JOBSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Locking ──────────────────────────────────────────────────
    lock_dir: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()),
        description="Directory for per-job lock files",
    )
    lock_attempts: int = Field(default=5, ge=1)
    lock_retry_delay: float = Field(default=0.25, ge=0)

    # ── Execution ────────────────────────────────────────────────
    python_executable: str = Field(default_factory=lambda: sys.executable)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "auto"

    def json_logs(self) -> bool | None:
        """Map ``log_format`` onto ``configure_logging(json_format=...)``."""
        if self.log_format == "json":
            return True
        if self.log_format == "console":
            return False
        return None


@lru_cache(maxsize=1)
def get_settings() -> JobSpineSettings:
    """Return the cached settings singleton."""
    return JobSpineSettings()


def get_application_env() -> str | None:
    """Deployment environment used by the ``environment`` job filter."""
    return os.environ.get("APPLICATION_ENV")


__all__ = ["JobSpineSettings", "get_settings", "get_application_env"]
