"""
Leave policy schema.

Typed configuration structs for leave accounting and leave valuation.
The loader turns YAML files and settings-table values into these types;
callers resolve them once and pass them explicitly into every engine call.

Key distinction:
  LeavePolicy     = how the leave balance is accounted (half days,
                    carryover, negative floor, holiday calendar)
  LeavePayPolicy  = how one day of leave is valued in money
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

YEARLY_RECURRENCE = "yearly"

HALF_DAY_RULE_TYPE = "half_day"


# ---------------------------------------------------------------------------
# Leave pay methods
# ---------------------------------------------------------------------------


class LeavePayMethod(str, Enum):
    """Formula used to value one day of leave."""

    LEGAL = "legal"  # better of lookback and 12-month daily wage
    AVG_HOURLY_X_AVG_DAY_HOURS = "avg_hourly_x_avg_day_hours"
    FIXED_RATE = "fixed_rate"

    @classmethod
    def parse(cls, value: Any) -> LeavePayMethod | None:
        """Parse a method string; None for unknown or non-string values."""
        if isinstance(value, LeavePayMethod):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip())
        except ValueError:
            return None


# ---------------------------------------------------------------------------
# Holiday calendar
# ---------------------------------------------------------------------------


def _in_year(value: date, year: int) -> date:
    """Move a month/day into ``year``; Feb 29 becomes Feb 28 off leap years."""
    last_day = calendar.monthrange(year, value.month)[1]
    return date(year, value.month, min(value.day, last_day))


@dataclass(frozen=True)
class HolidayRule:
    """A dated holiday or leave rule in a leave policy.

    ``type`` is the leave kind the rule grants (``system_paid``,
    ``employee_paid``, ``half_day``, ``holiday_unpaid``, ...).  Rules with
    ``recurrence == "yearly"`` repeat on the same month/day span each year.
    """

    id: str
    name: str
    type: str
    start_date: date
    end_date: date
    recurrence: str | None = None
    half_day: bool = False

    def __post_init__(self) -> None:
        if self.end_date < self.start_date:
            raise ValueError(
                f"HolidayRule end_date ({self.end_date}) cannot precede "
                f"start_date ({self.start_date})"
            )
        if self.type == HALF_DAY_RULE_TYPE and not self.half_day:
            object.__setattr__(self, "half_day", True)

    @property
    def is_yearly(self) -> bool:
        return self.recurrence == YEARLY_RECURRENCE

    def covers(self, on_date: date) -> bool:
        """True if ``on_date`` falls inside the rule's inclusive range."""
        if not self.is_yearly:
            return self.start_date <= on_date <= self.end_date
        start = _in_year(self.start_date, on_date.year)
        end = _in_year(self.end_date, on_date.year)
        if start <= end:
            return start <= on_date <= end
        # Span wraps the year end (e.g. Dec 30 - Jan 2)
        return on_date >= start or on_date <= end


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LeavePolicy:
    """Leave balance accounting rules.

    ``holiday_rules`` order is significant: the first rule covering a date
    wins.
    """

    allow_half_day: bool = False
    allow_negative_balance: bool = False
    negative_floor_days: Decimal = Decimal("0")
    carryover_enabled: bool = False
    carryover_max_days: Decimal = Decimal("0")
    holiday_rules: tuple[HolidayRule, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.carryover_max_days < 0:
            raise ValueError(
                f"carryover_max_days cannot be negative: {self.carryover_max_days}"
            )

    @property
    def granularity(self) -> Decimal:
        """Smallest unit of leave the ledger can express."""
        return Decimal("0.5") if self.allow_half_day else Decimal("1")


MAX_LOOKBACK_MONTHS = 120


@dataclass(frozen=True)
class LeavePayPolicy:
    """Leave day valuation rules."""

    default_method: LeavePayMethod = LeavePayMethod.LEGAL
    lookback_months: int = 3
    legal_allow_12m_if_better: bool = False
    fixed_rate_default: Decimal | None = None

    def __post_init__(self) -> None:
        if not 1 <= self.lookback_months <= MAX_LOOKBACK_MONTHS:
            raise ValueError(
                f"lookback_months must be between 1 and {MAX_LOOKBACK_MONTHS}, "
                f"got {self.lookback_months}"
            )
        if self.fixed_rate_default is not None and self.fixed_rate_default < 0:
            raise ValueError(
                f"fixed_rate_default cannot be negative: {self.fixed_rate_default}"
            )


DEFAULT_LEAVE_POLICY = LeavePolicy()

DEFAULT_LEAVE_PAY_POLICY = LeavePayPolicy()


@dataclass(frozen=True)
class PolicyBundle:
    """Both policies of one organization, as loaded from a single source."""

    leave_policy: LeavePolicy = DEFAULT_LEAVE_POLICY
    leave_pay_policy: LeavePayPolicy = DEFAULT_LEAVE_PAY_POLICY
    checksum: str = ""
