"""Tests for ScheduleChecker."""

from datetime import datetime

import pytest

from jobspine.core.errors import ParseError
from jobspine.core.scheduling.schedule import ScheduleChecker, parse_datetime, validate_cron


def _at(*args) -> ScheduleChecker:
    return ScheduleChecker(datetime(*args))


class TestCron:
    def test_every_minute(self):
        assert _at(2017, 4, 1, 13, 37).is_due("* * * * *") is True

    def test_quarterly_step(self):
        assert _at(2017, 4, 1, 0, 0).is_due("0 0 1 */3 *") is True
        assert _at(2017, 5, 1, 0, 0).is_due("0 0 1 */3 *") is False

    def test_minute_step(self):
        assert _at(2017, 4, 1, 10, 5).is_due("*/5 * * * *") is True
        assert _at(2017, 4, 1, 10, 6).is_due("*/5 * * * *") is False

    def test_range_and_list(self):
        assert _at(2017, 4, 1, 10, 10).is_due("1-10 * * * *") is True
        assert _at(2017, 4, 1, 10, 11).is_due("1-10 * * * *") is False
        assert _at(2017, 4, 1, 10, 30).is_due("0,30 * * * *") is True

    def test_day_of_month_or_day_of_week(self):
        # 2017-04-13 is a Thursday, 2017-04-14 a Friday
        assert _at(2017, 4, 13, 0, 0).is_due("0 0 13 * 5") is True
        assert _at(2017, 4, 14, 0, 0).is_due("0 0 13 * 5") is True
        assert _at(2017, 4, 12, 0, 0).is_due("0 0 13 * 5") is False

    def test_seconds_are_ignored(self):
        assert _at(2017, 4, 1, 0, 0, 59).is_due("0 0 * * *") is True

    def test_extra_whitespace(self):
        assert _at(2017, 4, 1, 0, 0).is_due("  0   0 * *  * ") is True


class TestDatetimeString:
    def test_same_minute_is_due(self):
        checker = _at(2017, 4, 1, 0, 0)
        assert checker.is_due("2017-04-01 00:00:41") is True
        assert checker.is_due("2017-04-01 00:00") is True

    def test_other_minute_is_not_due(self):
        assert _at(2017, 4, 1, 0, 0).is_due("2017-04-01 00:01") is False

    def test_parse_datetime(self):
        assert parse_datetime("2017-04-01 12:30") == datetime(2017, 4, 1, 12, 30)
        assert parse_datetime("0 0 * * *") is None


class TestPredicate:
    def test_truthiness(self):
        checker = _at(2017, 4, 1, 0, 0)
        assert checker.is_due(lambda: True) is True
        assert checker.is_due(lambda: 0) is False
        assert checker.is_due(lambda: "yes") is True

    def test_predicate_exception_propagates(self):
        with pytest.raises(ZeroDivisionError):
            _at(2017, 4, 1, 0, 0).is_due(lambda: 1 / 0)


class TestInvalid:
    @pytest.mark.parametrize("schedule", ["not a cron", "* * * *", "61 * * * *", "* * * * * *"])
    def test_malformed_cron_raises(self, schedule):
        with pytest.raises(ParseError):
            _at(2017, 4, 1, 0, 0).is_due(schedule)

    def test_unsupported_type(self):
        with pytest.raises(ParseError, match="Unsupported schedule type"):
            _at(2017, 4, 1, 0, 0).is_due(42)

    def test_validate_cron_normalises(self):
        assert validate_cron(" 0  3 * * * ") == "0 3 * * *"


class TestReferenceTime:
    def test_defaults_to_now(self):
        before = datetime.now()
        checker = ScheduleChecker()
        assert before <= checker.reference_time <= datetime.now()

    def test_reference_is_fixed(self):
        checker = _at(2017, 4, 1, 0, 0)
        assert checker.is_due("0 0 * * *") is True
        assert checker.reference_time == datetime(2017, 4, 1, 0, 0)
        assert checker.is_due("0 0 * * *") is True
