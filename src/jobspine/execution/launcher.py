"""Process launcher — platform-specific spawning behind one contract.

Architecture:

    .. code-block:: text

        ProcessLauncher (protocol)
        ┌──────────────────────────────────────────────────────────────┐
        │  spawn(command, stdout_target, stderr_target, run_as_user)   │
        │      → exit status                      (blocking, shell)   │
        │  detach(argv) → pid                     (non-blocking)      │
        │  null_device() → "/dev/null" | "NUL"                        │
        └──────────────────────────────────────────────────────────────┘
                 │                                   │
          UnixLauncher                         WindowsLauncher
          - user= privilege drop               - run-as unsupported
          - start_new_session detach           - DETACHED_PROCESS detach

Output targets are file paths opened in append mode; missing parent
directories are created first.  A ``None`` target goes to the platform
null device; output is never inherited from the launching process.

Tags:
    jobspine, execution, subprocess, local-process, platform
"""

from __future__ import annotations

import subprocess
import sys
from abc import ABC, abstractmethod
from collections.abc import Sequence
from contextlib import ExitStack
from pathlib import Path
from typing import IO, Protocol, runtime_checkable

from jobspine.core.logging import get_logger

logger = get_logger(__name__)


def open_output(path: str | Path, mode: str = "a") -> IO:
    """Open an output target for appending, creating parent directories."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    return open(target, mode, encoding="utf-8")


@runtime_checkable
class ProcessLauncher(Protocol):
    """Contract shared by the Unix and Windows launchers."""

    name: str

    def spawn(
        self,
        command: str,
        stdout_target: str | None,
        stderr_target: str | None,
        run_as_user: str | None = None,
    ) -> int:
        """Run ``command`` through the shell and return its exit status."""
        ...

    def detach(self, argv: Sequence[str]) -> int:
        """Start ``argv`` independently of the caller and return its PID."""
        ...

    def null_device(self) -> str:
        ...


class _BaseLauncher(ABC):
    name = "base"

    @abstractmethod
    def null_device(self) -> str:
        ...

    def _popen_kwargs(self, run_as_user: str | None) -> dict:
        return {}

    def _detach_kwargs(self) -> dict:
        return {}

    def spawn(
        self,
        command: str,
        stdout_target: str | None,
        stderr_target: str | None,
        run_as_user: str | None = None,
    ) -> int:
        stdout_path = stdout_target or self.null_device()
        stderr_path = stderr_target or self.null_device()

        with ExitStack() as stack:
            stdout = stack.enter_context(open_output(stdout_path))
            if stderr_path == stdout_path:
                stderr = stdout
            else:
                stderr = stack.enter_context(open_output(stderr_path))

            logger.debug("launcher.spawn", launcher=self.name, command=command, run_as_user=run_as_user)
            completed = subprocess.run(
                command,
                shell=True,
                stdin=subprocess.DEVNULL,
                stdout=stdout,
                stderr=stderr,
                check=False,
                **self._popen_kwargs(run_as_user),
            )
        return completed.returncode

    def detach(self, argv: Sequence[str]) -> int:
        process = subprocess.Popen(
            list(argv),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            close_fds=True,
            **self._detach_kwargs(),
        )
        logger.debug("launcher.detached", launcher=self.name, pid=process.pid)
        return process.pid


class UnixLauncher(_BaseLauncher):
    """POSIX launcher: ``/bin/sh`` commands, optional switch to another user."""

    name = "unix"

    def null_device(self) -> str:
        return "/dev/null"

    def _popen_kwargs(self, run_as_user: str | None) -> dict:
        if run_as_user:
            return {"user": run_as_user}
        return {}

    def _detach_kwargs(self) -> dict:
        return {"start_new_session": True}


class WindowsLauncher(_BaseLauncher):
    """Windows launcher: ``cmd.exe`` commands, no user switching."""

    name = "windows"

    def null_device(self) -> str:
        return "NUL"

    def _popen_kwargs(self, run_as_user: str | None) -> dict:
        if run_as_user:
            logger.warning("launcher.run_as_unsupported", launcher=self.name, run_as_user=run_as_user)
        return {}

    def _detach_kwargs(self) -> dict:
        flags = getattr(subprocess, "DETACHED_PROCESS", 0x00000008)
        flags |= getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0x00000200)
        return {"creationflags": flags}


def get_launcher(platform: str | None = None) -> ProcessLauncher:
    """Launcher for ``platform`` (defaults to ``sys.platform``)."""
    if (platform or sys.platform) == "win32":
        return WindowsLauncher()
    return UnixLauncher()


__all__ = [
    "ProcessLauncher",
    "UnixLauncher",
    "WindowsLauncher",
    "get_launcher",
    "open_output",
]
