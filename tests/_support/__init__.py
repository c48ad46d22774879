"""Helpers shared by the jobspine test modules."""

import sys
from pathlib import Path

import pytest

TEST_HOST = "testhost"

unix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses /bin/sh commands")


class RecordingTransport:
    """Mail transport that keeps every message instead of sending it."""

    def __init__(self) -> None:
        self.sent: list = []

    def send(self, message) -> None:
        self.sent.append(message)


def read(path: Path) -> str:
    """File content, or "" if it was never created."""
    return path.read_text(encoding="utf-8") if path.exists() else ""
