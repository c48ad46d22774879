"""Due-time evaluation for job schedules.

Manifesto:
    A scan must give every job the same answer to "is it time?", even if
    the scan itself takes a few seconds and wall-clock time crosses a
    minute boundary halfway through.  The checker therefore pins its
    reference instant once, at construction, and every ``is_due()`` call
    is a pure function of (schedule, reference instant).

Three schedule kinds are accepted:

- **cron expression** -- five fields (minute hour day-of-month month
  day-of-week) with ``*``, lists, ranges and ``*/N`` steps, evaluated with
  croniter using standard cron day-of-month OR day-of-week semantics;
- **datetime string** -- ``YYYY-MM-DD HH:MM[:SS]`` for a one-off run in
  that exact minute;
- **predicate** -- a zero-argument callable whose truthiness is the answer.

Tags:
    jobspine, scheduling, cron, croniter, due-time

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Union

from croniter import croniter

from jobspine.core.errors import ParseError

Schedule = Union[str, Callable[[], Any]]

DATETIME_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M")
CRON_FIELDS = 5


def _minute(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)


def parse_datetime(schedule: str) -> datetime | None:
    """Parse a one-off datetime schedule, or return ``None`` if it is not one."""
    for fmt in DATETIME_FORMATS:
        try:
            return datetime.strptime(schedule.strip(), fmt)
        except ValueError:
            continue
    return None


def validate_cron(expression: str) -> str:
    """Return the normalised expression or raise ``ParseError``."""
    normalised = " ".join(expression.split())
    if len(normalised.split(" ")) != CRON_FIELDS:
        raise ParseError(
            f"Cron expression must have {CRON_FIELDS} fields: {expression!r}",
            expression=expression,
        )
    if not croniter.is_valid(normalised):
        raise ParseError(f"Invalid cron expression: {expression!r}", expression=expression)
    return normalised


class ScheduleChecker:
    """Answers ``is_due(schedule)`` against one fixed reference instant.

    Example:
        >>> checker = ScheduleChecker(datetime(2017, 4, 1, 0, 0))
        >>> checker.is_due("0 0 1 */3 *")
        True
        >>> checker.is_due("2017-04-01 00:00:41")
        True
        >>> checker.is_due(lambda: False)
        False
    """

    def __init__(self, reference_time: datetime | None = None) -> None:
        self.reference_time = reference_time or datetime.now()

    def is_due(self, schedule: Schedule) -> bool:
        """Whether ``schedule`` matches the reference minute.

        Raises:
            ParseError: ``schedule`` is a string that is neither a valid
                five-field cron expression nor a datetime string
        """
        if callable(schedule):
            return bool(schedule())

        if not isinstance(schedule, str):
            raise ParseError(f"Unsupported schedule type: {type(schedule).__name__}", expression=schedule)

        when = parse_datetime(schedule)
        if when is not None:
            return _minute(when) == _minute(self.reference_time)

        return self._cron_matches(validate_cron(schedule))

    def _cron_matches(self, expression: str) -> bool:
        target = _minute(self.reference_time)
        try:
            upcoming = croniter(expression, target - timedelta(seconds=1)).get_next(datetime)
        except (ValueError, KeyError) as e:
            raise ParseError(f"Invalid cron expression: {expression!r}", expression=expression, cause=e) from e
        return upcoming == target


__all__ = ["ScheduleChecker", "Schedule", "parse_datetime", "validate_cron"]
