"""
Tests for the calendar helpers (payroll_kernel.domain.calendar).

Covers:
- Weekday parsing and date-to-weekday mapping
- ISO date normalization and the strict query-date variant
- Month arithmetic and the lookback window boundaries
- Working-day counts per month
"""

from datetime import date, datetime

import pytest

from payroll_kernel.domain.calendar import (
    DEFAULT_WORKING_DAYS,
    Weekday,
    add_months,
    date_key,
    days_in_year,
    effective_working_days,
    iter_days,
    lookback_window,
    month_bounds,
    normalize_date,
    normalize_weekdays,
    require_date,
)
from payroll_kernel.exceptions import InvalidQueryDateError


class TestWeekday:

    def test_of_date(self):
        assert Weekday.of(date(2024, 2, 4)) == Weekday.SUN
        assert Weekday.of(date(2024, 2, 9)) == Weekday.FRI
        assert Weekday.of(date(2024, 2, 10)) == Weekday.SAT

    @pytest.mark.parametrize("value", ["SUN", "sun", "Sunday", " sunday "])
    def test_parse_variants(self, value):
        assert Weekday.parse(value) == Weekday.SUN

    def test_parse_unknown_returns_none(self):
        assert Weekday.parse("XYZ") is None
        assert Weekday.parse(3) is None

    def test_default_working_days_sunday_to_thursday(self):
        assert DEFAULT_WORKING_DAYS == {
            Weekday.SUN, Weekday.MON, Weekday.TUE, Weekday.WED, Weekday.THU,
        }

    def test_normalize_weekdays_none_is_unconfigured(self):
        assert normalize_weekdays(None) is None

    def test_normalize_weekdays_drops_garbage(self):
        assert normalize_weekdays(["SUN", "bogus", "mon"]) == {Weekday.SUN, Weekday.MON}

    def test_normalize_weekdays_comma_string(self):
        assert normalize_weekdays("SUN,MON") == {Weekday.SUN, Weekday.MON}

    def test_normalize_weekdays_empty_list_is_empty_set(self):
        assert normalize_weekdays([]) == frozenset()


class TestNormalizeDate:

    def test_date_passthrough(self):
        assert normalize_date(date(2024, 2, 5)) == date(2024, 2, 5)

    def test_datetime_truncated(self):
        assert normalize_date(datetime(2024, 2, 5, 23, 59)) == date(2024, 2, 5)

    def test_iso_string(self):
        assert normalize_date("2024-02-05") == date(2024, 2, 5)

    def test_timestamp_string_uses_date_prefix(self):
        assert normalize_date("2024-02-05T10:00:00Z") == date(2024, 2, 5)

    @pytest.mark.parametrize("value", [None, "", "05/02/2024", "2024-13-01", "2023-09-31", 20240205])
    def test_unparseable_returns_none(self, value):
        assert normalize_date(value) is None

    def test_require_date_raises(self):
        with pytest.raises(InvalidQueryDateError) as exc_info:
            require_date("not-a-date", "on_date")
        assert exc_info.value.field_name == "on_date"
        assert exc_info.value.code == "INVALID_QUERY_DATE"

    def test_date_key(self):
        assert date_key(date(2024, 2, 5)) == "2024-02-05"


class TestMonthArithmetic:

    def test_add_months_simple(self):
        assert add_months(date(2024, 4, 15), -3) == date(2024, 1, 15)

    def test_add_months_clamps_to_month_end(self):
        assert add_months(date(2024, 3, 31), -1) == date(2024, 2, 29)
        assert add_months(date(2023, 3, 31), -1) == date(2023, 2, 28)

    def test_add_months_across_year(self):
        assert add_months(date(2024, 1, 31), -12) == date(2023, 1, 31)
        assert add_months(date(2024, 11, 30), 3) == date(2025, 2, 28)

    def test_lookback_window_excludes_query_date(self):
        start, end = lookback_window(date(2024, 4, 15), 3)
        assert start == date(2024, 1, 15)
        assert end == date(2024, 4, 14)

    def test_lookback_window_at_least_one_month(self):
        start, end = lookback_window(date(2024, 4, 15), 0)
        assert start == date(2024, 3, 15)
        assert end == date(2024, 4, 14)

    def test_lookback_window_stops_at_year_one(self):
        assert lookback_window(date(1, 3, 10), 2) == (date(1, 1, 10), date(1, 3, 9))
        assert lookback_window(date(1, 3, 10), 3) == (date.min, date(1, 3, 9))
        assert lookback_window(date(2024, 4, 15), 30000)[0] == date.min

    def test_month_bounds(self):
        assert month_bounds(date(2024, 2, 10)) == (date(2024, 2, 1), date(2024, 2, 29))

    def test_iter_days_inclusive(self):
        days = list(iter_days(date(2024, 2, 28), date(2024, 3, 1)))
        assert days == [date(2024, 2, 28), date(2024, 2, 29), date(2024, 3, 1)]

    def test_days_in_year(self):
        assert days_in_year(2024) == 366
        assert days_in_year(2025) == 365


class TestEffectiveWorkingDays:
    """February 2024 has 29 days starting on a Thursday."""

    def test_sunday_to_thursday(self):
        days = normalize_weekdays(["SUN", "MON", "TUE", "WED", "THU"])
        assert effective_working_days(days, date(2024, 2, 1)) == 21

    def test_sunday_to_friday(self):
        days = normalize_weekdays(["SUN", "MON", "TUE", "WED", "THU", "FRI"])
        assert effective_working_days(days, date(2024, 2, 1)) == 25

    def test_every_day(self):
        assert effective_working_days(frozenset(Weekday), date(2024, 2, 1)) == 29

    def test_none_uses_default_week(self):
        assert effective_working_days(None, date(2024, 2, 10)) == 21

    def test_empty_schedule_has_no_days(self):
        assert effective_working_days(frozenset(), date(2024, 2, 10)) == 0
