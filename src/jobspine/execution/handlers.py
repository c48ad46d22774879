"""Import-path references for callable jobs.

A Python function cannot be handed to a detached child process as-is.
What *can* cross the boundary is its import path: ``"package.module:func"``.
The child imports the module and looks the attribute up again, the same
way a process pool resolves its handlers.

Functions without a stable import path (lambdas, closures, anything
defined in ``__main__``) have no reference; the registry runs those jobs
in-process instead of detaching them.

Example::

    handler_reference(reports.build_daily)   # "reports:build_daily"
    resolve_handler("reports:build_daily")   # <function build_daily>
"""

from __future__ import annotations

import importlib
from collections.abc import Callable
from typing import Any

from jobspine.core.errors import ConfigError


def resolve_handler(reference: str) -> Callable[..., Any]:
    """Import and return the callable named by ``reference``.

    Accepts ``"module:attr.path"`` and, for convenience, the dotted form
    ``"module.attr"``.

    Raises:
        ConfigError: The module or attribute does not exist or is not callable
    """
    if ":" in reference:
        module_path, attr_path = reference.split(":", 1)
    elif "." in reference:
        module_path, attr_path = reference.rsplit(".", 1)
    else:
        raise ConfigError(f"Invalid handler reference: {reference!r}")

    try:
        target: Any = importlib.import_module(module_path)
        for part in attr_path.split("."):
            target = getattr(target, part)
    except (ImportError, AttributeError) as e:
        raise ConfigError(f"Cannot resolve handler {reference!r}: {e}", cause=e) from e

    if not callable(target):
        raise ConfigError(f"Handler {reference!r} is not callable")
    return target


def handler_reference(func: Callable[..., Any]) -> str | None:
    """Import path for ``func``, or ``None`` if a child process cannot find it."""
    module = getattr(func, "__module__", None)
    qualname = getattr(func, "__qualname__", None)
    if not module or not qualname or module == "__main__" or "<" in qualname:
        return None

    reference = f"{module}:{qualname}"
    try:
        resolved = resolve_handler(reference)
    except ConfigError:
        return None
    return reference if resolved is func else None


__all__ = ["resolve_handler", "handler_reference"]
