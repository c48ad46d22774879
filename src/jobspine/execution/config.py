"""Job configuration model.

``JobConfig`` is the validated, immutable description of one job.  It is
built by ``JobRegistry.add()`` from the registry defaults merged with the
per-job options, and read-only from then on.

Option names are snake_case; camelCase spellings are accepted too
(``maxRuntime``, ``haltDir``, ``runOnHost`` ...), as is ``command`` for
``work``.

Example::

    JobConfig.model_validate({
        "command": "/usr/local/bin/backup.sh",
        "schedule": "0 3 * * *",
        "output": "/var/log/backup.log",
        "maxRuntime": 3600,
        "recipients": "ops@example.com,dev@example.com",
    })
"""

from __future__ import annotations

import json
import socket
from collections.abc import Callable
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from jobspine.core.errors import ConfigError
from jobspine.execution.handlers import handler_reference, resolve_handler

DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Options that describe *what* runs and *when*; everything else has a default.
WORK_FIELDS = ("work", "handler", "schedule")


class JobConfig(BaseModel):
    """Validated options for a single job."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        arbitrary_types_allowed=True,
        extra="ignore",
    )

    # ── What / when ──────────────────────────────────────────────
    work: str | Callable[..., Any] | None = Field(
        default=None, validation_alias=AliasChoices("work", "command", "closure")
    )
    handler: str | None = None
    schedule: str | Callable[..., Any] | None = None

    # ── Gates ────────────────────────────────────────────────────
    enabled: bool = True
    host_filter: str | None = Field(
        default=None, validation_alias=AliasChoices("host_filter", "hostFilter", "runOnHost")
    )
    halt_dir: str | None = None
    environment: str | None = None
    max_runtime: int | None = Field(default=None, ge=0)

    # ── Output ───────────────────────────────────────────────────
    output: str | None = None
    output_stdout: str | None = Field(
        default=None, validation_alias=AliasChoices("output_stdout", "outputStdout")
    )
    output_stderr: str | None = Field(
        default=None, validation_alias=AliasChoices("output_stderr", "outputStderr")
    )
    date_format: str = DEFAULT_DATE_FORMAT
    debug: bool = False

    # ── Execution ────────────────────────────────────────────────
    run_as_user: str | None = Field(
        default=None, validation_alias=AliasChoices("run_as_user", "runAsUser", "runAs")
    )

    # ── Mail ─────────────────────────────────────────────────────
    recipients: str | None = None
    mailer: Literal["sendmail", "smtp"] = "sendmail"
    mailer_dsn: str | None = None
    smtp_host: str = "localhost"
    smtp_port: int = 25
    smtp_username: str | None = Field(
        default=None, validation_alias=AliasChoices("smtp_username", "smtpUsername", "smtpUser")
    )
    smtp_password: str | None = None
    smtp_security: Literal["tls", "ssl"] | None = None
    smtp_sender: str | None = None
    smtp_sender_name: str = "jobspine"

    @model_validator(mode="after")
    def _check_work(self) -> JobConfig:
        if self.work is not None and self.handler is not None:
            raise ValueError("'work' and 'handler' are mutually exclusive")
        return self

    # === Defaults ===

    @classmethod
    def defaults(cls) -> dict[str, Any]:
        """Default value of every option except work/handler/schedule."""
        return {
            name: field.default
            for name, field in cls.model_fields.items()
            if name not in WORK_FIELDS
        }

    # === Derived values ===

    @property
    def is_callable(self) -> bool:
        """Whether the body is Python code rather than a shell command."""
        return self.handler is not None or callable(self.work)

    @property
    def recipient_list(self) -> list[str]:
        if not self.recipients:
            return []
        return [r.strip() for r in self.recipients.split(",") if r.strip()]

    @property
    def stdout_target(self) -> str | None:
        return self.output_stdout or self.output

    @property
    def stderr_target(self) -> str | None:
        return self.output_stderr or self.output

    @property
    def sender(self) -> str:
        return self.smtp_sender or f"jobspine@{socket.gethostname()}"

    def resolve_work(self) -> str | Callable[..., Any]:
        """The shell command or the callable to invoke."""
        if self.handler is not None:
            return resolve_handler(self.handler)
        if self.work is None:
            raise ConfigError("Job has no work configured")
        return self.work

    # === Detached-child payload ===

    def detachable(self) -> bool:
        """Whether this job can be re-created from ``to_payload()`` in a child."""
        if self.handler is not None or isinstance(self.work, str):
            return True
        return self.work is not None and handler_reference(self.work) is not None

    def to_payload(self) -> str:
        """JSON form handed to ``jobspine run-job``.

        Callable work is replaced by its import reference; a predicate
        schedule is dropped since the child never re-evaluates it.

        Raises:
            ConfigError: The callable has no importable reference
        """
        data = self.model_dump(mode="json", exclude={"work", "handler", "schedule"})
        if isinstance(self.work, str):
            data["work"] = self.work
        elif self.work is not None:
            reference = handler_reference(self.work)
            if reference is None:
                raise ConfigError(f"Callable {self.work!r} cannot be referenced by import path")
            data["handler"] = reference
        else:
            data["handler"] = self.handler
        if isinstance(self.schedule, str):
            data["schedule"] = self.schedule
        return json.dumps(data)

    @classmethod
    def from_payload(cls, payload: str) -> JobConfig:
        return cls.model_validate(json.loads(payload))


def _option_names() -> dict[str, str]:
    names: dict[str, str] = {}
    for name, field in JobConfig.model_fields.items():
        names[name] = name
        names[to_camel(name)] = name
        if isinstance(field.validation_alias, AliasChoices):
            for choice in field.validation_alias.choices:
                if isinstance(choice, str):
                    names[choice] = name
    return names


_OPTION_NAMES = _option_names()


def normalise_options(options: dict[str, Any]) -> dict[str, Any]:
    """Rewrite camelCase and legacy option keys to their field names.

    Unknown keys are kept as they are.

    >>> normalise_options({"maxRuntime": 60, "command": "ls"})
    {'max_runtime': 60, 'work': 'ls'}
    """
    return {_OPTION_NAMES.get(key, key): value for key, value in options.items()}


__all__ = ["JobConfig", "DEFAULT_DATE_FORMAT", "normalise_options"]
