"""Tests for JobRegistry: configuration merging and scan dispatch.

Detached dispatch is tested against a mocked launcher and, once, end to
end through UnixLauncher; jobs that run in-process go through a real
BackgroundJob.
"""

import json
import os
import time
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

import jobspine
from jobspine.core.errors import ConfigError, LockLogicError, MissingConfigError
from jobspine.core.scheduling.registry import JobRegistry
from jobspine.execution.background import BackgroundJob, ExecutionOutcome, JobState
from jobspine.execution.config import DEFAULT_DATE_FORMAT
from jobspine.execution.launcher import UnixLauncher

from _support import RecordingTransport, read, unix_only

NOON = datetime(2017, 4, 1, 12, 0)


@pytest.fixture
def launcher():
    mock = MagicMock()
    mock.detach.return_value = 4242
    return mock


@pytest.fixture
def registry(launcher, settings):
    return JobRegistry(launcher=launcher, settings=settings, transport=RecordingTransport())


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestConfig:
    def test_default_config(self):
        config = JobRegistry.get_default_config()
        assert config["recipients"] is None
        assert config["mailer"] == "sendmail"
        assert config["mailer_dsn"] is None
        assert config["max_runtime"] is None
        assert config["smtp_host"] == "localhost"
        assert config["smtp_port"] == 25
        assert config["smtp_username"] is None
        assert config["smtp_password"] is None
        assert config["smtp_sender_name"] == "jobspine"
        assert config["run_as_user"] is None
        assert config["environment"] is None
        assert config["output"] is None
        assert config["date_format"] == DEFAULT_DATE_FORMAT
        assert config["enabled"] is True
        assert config["debug"] is False

    def test_default_config_has_no_work_fields(self):
        config = JobRegistry.get_default_config()
        assert "work" not in config
        assert "handler" not in config
        assert "schedule" not in config

    def test_set_config_keeps_key_count(self, registry):
        before = len(registry.get_config())
        registry.set_config(registry.get_config())
        assert len(registry.get_config()) == before

    def test_set_config_accepts_camel_case(self, registry):
        before = len(registry.get_config())
        registry.set_config({"maxRuntime": 30, "runOnHost": "web1"})
        config = registry.get_config()
        assert len(config) == before
        assert config["max_runtime"] == 30
        assert config["host_filter"] == "web1"

    def test_constructor_config_becomes_defaults(self, launcher, settings, tmp_path):
        registry = JobRegistry({"output": str(tmp_path / "jobs.log")}, launcher=launcher, settings=settings)
        job = registry.add("backup", {"command": "true", "schedule": "* * * * *"})
        assert job.output == str(tmp_path / "jobs.log")

    def test_get_config_is_a_copy(self, registry):
        registry.get_config()["debug"] = True
        assert registry.get_config()["debug"] is False


# ---------------------------------------------------------------------------
# add()
# ---------------------------------------------------------------------------


class TestAdd:
    def test_missing_work(self, registry):
        with pytest.raises(MissingConfigError, match="'work' is required for 'backup' job"):
            registry.add("backup", {"schedule": "* * * * *"})

    def test_missing_schedule(self, registry):
        with pytest.raises(MissingConfigError, match="'schedule' is required for 'backup' job"):
            registry.add("backup", {"command": "true"})

    def test_invalid_value(self, registry):
        with pytest.raises(ConfigError, match="Invalid configuration for 'backup' job"):
            registry.add("backup", {"command": "true", "schedule": "* * * * *", "maxRuntime": -1})

    def test_work_and_handler_are_exclusive(self, registry):
        with pytest.raises(ConfigError):
            registry.add("both", {"command": "true", "handler": "json:dumps", "schedule": "* * * * *"})

    def test_aliases(self, registry):
        job = registry.add(
            "backup",
            {"command": "true", "schedule": "* * * * *", "maxRuntime": 5, "runAs": "www-data"},
        )
        assert job.work == "true"
        assert job.max_runtime == 5
        assert job.run_as_user == "www-data"

    def test_job_options_override_defaults(self, registry):
        registry.set_config({"debug": True})
        job = registry.add("quiet", {"command": "true", "schedule": "* * * * *", "debug": False})
        assert job.debug is False

    def test_duplicate_names_coexist(self, registry):
        registry.add("dup", {"command": "true", "schedule": "* * * * *"})
        registry.add("dup", {"command": "false", "schedule": "* * * * *"})
        assert [name for name, _ in registry.get_jobs()] == ["dup", "dup"]


# ---------------------------------------------------------------------------
# run()
# ---------------------------------------------------------------------------


class TestRun:
    def test_due_shell_job_is_detached(self, registry, launcher, settings):
        registry.add("backup", {"command": "echo hi", "schedule": "0 12 * * *"})

        report = registry.run(NOON)

        assert report.due == ["backup"]
        assert report.dispatched == [("backup", 4242)]
        argv = launcher.detach.call_args.args[0]
        assert argv[:5] == [settings.python_executable, "-m", "jobspine.cli", "run-job", "backup"]
        assert argv[6:] == ["--lock-dir", str(settings.lock_dir)]
        assert json.loads(argv[5])["work"] == "echo hi"

    def test_not_due_job_is_left_alone(self, registry, launcher):
        registry.add("nightly", {"command": "true", "schedule": "0 3 * * *"})

        report = registry.run(NOON)

        assert report.not_due == ["nightly"]
        launcher.detach.assert_not_called()

    def test_handler_job_is_detached(self, registry, launcher):
        registry.add("encode", {"handler": "json:dumps", "schedule": "* * * * *"})

        report = registry.run(NOON)

        assert report.dispatched == [("encode", 4242)]
        assert json.loads(launcher.detach.call_args.args[0][5])["handler"] == "json:dumps"

    def test_lambda_job_runs_inline(self, registry, launcher, tmp_path):
        log = tmp_path / "inline.log"
        registry.add("inline", {"work": lambda: print("ran") or True, "schedule": "* * * * *", "output": str(log)})

        report = registry.run(NOON)

        launcher.detach.assert_not_called()
        [(name, outcome)] = report.inline
        assert name == "inline"
        assert outcome.state == JobState.SUCCEEDED
        assert log.read_text() == "ran\n"

    def test_predicate_schedule(self, registry):
        registry.add("yes", {"command": "true", "schedule": lambda: True})
        registry.add("no", {"command": "true", "schedule": lambda: False})

        report = registry.run(NOON)

        assert report.due == ["yes"]
        assert report.not_due == ["no"]

    def test_failing_predicate_is_not_due(self, registry, launcher):
        registry.add("broken", {"command": "true", "schedule": lambda: 1 / 0})
        registry.add("fine", {"command": "true", "schedule": "* * * * *"})

        report = registry.run(NOON)

        assert "broken" in report.not_due
        assert report.errors[0][0] == "broken"
        assert report.dispatched == [("fine", 4242)]

    def test_malformed_cron_is_not_due(self, registry):
        registry.add("typo", {"command": "true", "schedule": "every minute"})

        report = registry.run(NOON)

        assert report.not_due == ["typo"]
        assert report.errors[0][0] == "typo"

    def test_spawn_failure_does_not_stop_scan(self, registry, launcher):
        launcher.detach.side_effect = [OSError("fork failed"), 77]
        registry.add("first", {"command": "true", "schedule": "* * * * *"})
        registry.add("second", {"command": "true", "schedule": "* * * * *"})

        report = registry.run(NOON)

        assert report.due == ["first", "second"]
        assert report.dispatched == [("second", 77)]
        assert report.errors[0][0] == "first"

    def test_one_reference_time_per_scan(self, registry):
        registry.add("a", {"command": "true", "schedule": "2017-04-01 12:00"})

        report = registry.run(NOON)

        assert report.reference_time == NOON
        assert report.due == ["a"]

    def test_empty_registry(self, registry):
        report = registry.run(NOON)
        assert report.due == []
        assert report.errors == []

    def test_mail_crash_does_not_stop_scan(self, launcher, settings, tmp_path):
        transport = MagicMock()
        transport.send.side_effect = RuntimeError("transport down")
        registry = JobRegistry(launcher=launcher, settings=settings, transport=transport)
        registry.add("a", {"work": lambda: False, "schedule": "* * * * *", "recipients": "ops@example.com"})
        registry.add("b", {"work": lambda: True, "schedule": "* * * * *"})

        report = registry.run(NOON)

        assert [(name, outcome.state) for name, outcome in report.inline] == [
            ("a", JobState.FAILED),
            ("b", JobState.SUCCEEDED),
        ]
        assert report.errors == []

    def test_inline_crash_does_not_stop_scan(self, registry):
        registry.add("a", {"work": lambda: True, "schedule": "* * * * *"})
        registry.add("b", {"work": lambda: True, "schedule": "* * * * *"})

        with patch.object(BackgroundJob, "run", side_effect=[RuntimeError("boom"), ExecutionOutcome.success()]):
            report = registry.run(NOON)

        assert report.errors == [("a", "RuntimeError('boom')")]
        assert [name for name, _ in report.inline] == ["b"]

    def test_lock_logic_error_propagates(self, registry):
        registry.add("a", {"work": lambda: True, "schedule": "* * * * *"})

        with patch.object(BackgroundJob, "run", side_effect=LockLogicError("Lock NOT held - bug?")):
            with pytest.raises(LockLogicError):
                registry.run(NOON)


# ---------------------------------------------------------------------------
# Detached children, end to end
# ---------------------------------------------------------------------------


@unix_only
class TestDetachedChild:
    """Real UnixLauncher: the scan returns while the child keeps running."""

    @pytest.fixture(autouse=True)
    def child_can_import_package(self, monkeypatch):
        src = str(Path(jobspine.__file__).resolve().parents[1])
        existing = os.environ.get("PYTHONPATH")
        monkeypatch.setenv("PYTHONPATH", src + (os.pathsep + existing if existing else ""))

    def _wait_for(self, path: Path, expected: str, timeout: float = 20.0) -> str:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            content = read(path)
            if content == expected:
                return content
            time.sleep(0.1)
        return read(path)

    def test_shell_job_runs_asynchronously(self, settings, tmp_path):
        log = tmp_path / "async.log"
        registry = JobRegistry(launcher=UnixLauncher(), settings=settings)
        registry.add("slow", {"command": "sleep 2; echo x", "schedule": "* * * * *", "output": str(log)})

        started = time.monotonic()
        report = registry.run()
        elapsed = time.monotonic() - started

        assert elapsed < 1
        [(name, pid)] = report.dispatched
        assert name == "slow"
        assert pid > 0
        assert read(log) == ""
        assert self._wait_for(log, "x\n") == "x\n"

    def test_handler_job_runs_in_child(self, settings, tmp_path):
        log = tmp_path / "handler.log"
        registry = JobRegistry(launcher=UnixLauncher(), settings=settings)
        registry.add("encode", {"handler": "json:dumps", "schedule": "* * * * *", "output": str(log)})

        report = registry.run()

        assert [name for name, _ in report.dispatched] == ["encode"]
        deadline = time.monotonic() + 20
        while "ERROR: Callable raised TypeError" not in read(log) and time.monotonic() < deadline:
            time.sleep(0.1)
        assert "ERROR: Callable raised TypeError" in read(log)
