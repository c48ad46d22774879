"""
CLI layer for jobspine.

Entry points::

    jobspine --help
    python -m jobspine.cli run-job NAME PAYLOAD
"""

from jobspine.cli.app import app

__all__ = ["app"]
