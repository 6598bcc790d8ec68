"""
Calendar -- Day-of-week and date normalization.

Responsibility:
    Canonicalizes the day and date representations used throughout the
    engines: weekday codes, ISO date parsing, month arithmetic, the
    lookback window used for leave valuation, and working-day counts.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Never reads the clock; every date is an explicit argument.

Invariants enforced:
    - Every date leaving this module is a ``datetime.date``.  Engines compare
      ``date`` objects, so ordering is calendar ordering regardless of how
      the caller spelled the value.
    - ``add_months`` clamps to the last day of the target month
      (Mar 31 - 1 month = Feb 29/28).

Failure modes:
    - ``normalize_date`` returns ``None`` for anything it cannot parse.
    - ``require_date`` raises ``InvalidQueryDateError`` for the same inputs;
      use it only for the primary query date of an operation.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterable, Iterator
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any

from payroll_kernel.exceptions import InvalidQueryDateError


class Weekday(str, Enum):
    """Day of week, Sunday-first as in the scheduling calendar."""

    SUN = "SUN"
    MON = "MON"
    TUE = "TUE"
    WED = "WED"
    THU = "THU"
    FRI = "FRI"
    SAT = "SAT"

    @classmethod
    def of(cls, value: date) -> Weekday:
        """Weekday of a calendar date."""
        # date.weekday(): Monday == 0
        return _BY_PYTHON_WEEKDAY[value.weekday()]

    @classmethod
    def parse(cls, value: Any) -> Weekday | None:
        """Parse a short code, full name, or date; None if unrecognized."""
        if isinstance(value, Weekday):
            return value
        if isinstance(value, date):
            return cls.of(value)
        if not isinstance(value, str):
            return None
        token = value.strip().upper()[:3]
        try:
            return cls(token)
        except ValueError:
            return None


_BY_PYTHON_WEEKDAY = (
    Weekday.MON,
    Weekday.TUE,
    Weekday.WED,
    Weekday.THU,
    Weekday.FRI,
    Weekday.SAT,
    Weekday.SUN,
)

DEFAULT_WORKING_DAYS: frozenset[Weekday] = frozenset({
    Weekday.SUN,
    Weekday.MON,
    Weekday.TUE,
    Weekday.WED,
    Weekday.THU,
})


def normalize_weekdays(values: Iterable[Any] | None) -> frozenset[Weekday] | None:
    """Parse a collection of weekday codes, dropping unrecognized items.

    Returns None when ``values`` is None so callers can tell "not
    configured" apart from "configured as empty".
    """
    if values is None:
        return None
    if isinstance(values, str):
        values = values.split(",")
    parsed = (Weekday.parse(v) for v in values)
    return frozenset(day for day in parsed if day is not None)


def normalize_date(value: Any) -> date | None:
    """Parse a date from a ``date``, ``datetime``, or ISO-prefixed string.

    Strings are read from their first ten characters, so full ISO
    timestamps (``2024-02-05T10:00:00Z``) normalize to their date part.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if len(text) < 10:
            return None
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None
    return None


def require_date(value: Any, field_name: str = "date") -> date:
    """Normalize the primary query date of an operation or raise."""
    parsed = normalize_date(value)
    if parsed is None:
        raise InvalidQueryDateError(field_name, value)
    return parsed


def date_key(value: date) -> str:
    """ISO ``YYYY-MM-DD`` key for a date."""
    return value.isoformat()


def add_months(base_date: date, months: int) -> date:
    """Shift a date by whole months, clamping the day to the month end."""
    year = base_date.year + (base_date.month - 1 + months) // 12
    month = (base_date.month - 1 + months) % 12 + 1
    day = min(base_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def lookback_window(target: date, months: int) -> tuple[date, date]:
    """Inclusive (start, end) of the ``months``-month window before ``target``.

    The window ends the day before ``target``; the query date itself is
    never part of its own reference period.  A window reaching past year 1
    starts at ``date.min``.
    """
    safe_months = max(1, int(months))
    end = target - timedelta(days=1)
    if (target.year - date.min.year) * 12 + target.month - 1 < safe_months:
        return date.min, end
    return add_months(target, -safe_months), end


def month_bounds(value: date) -> tuple[date, date]:
    """First and last day of the month containing ``value``."""
    last_day = calendar.monthrange(value.year, value.month)[1]
    return value.replace(day=1), value.replace(day=last_day)


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield each date from ``start`` to ``end`` inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def effective_working_days(
    working_days: Iterable[Weekday] | None,
    month_date: date,
) -> int:
    """Count the days in ``month_date``'s month that fall on working days.

    ``None`` means the employee has no explicit schedule and the default
    Sunday-Thursday week applies.
    """
    days = DEFAULT_WORKING_DAYS if working_days is None else frozenset(working_days)
    first, last = month_bounds(month_date)
    return sum(1 for day in iter_days(first, last) if Weekday.of(day) in days)


def is_leap_year(year: int) -> bool:
    return calendar.isleap(year)


def days_in_year(year: int) -> int:
    return 366 if calendar.isleap(year) else 365
