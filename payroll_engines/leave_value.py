"""
Module: payroll_engines.leave_value
Responsibility:
    Compute the monetary value of one day of leave for an employee on a
    given date, using one of three valuation methods:

    * ``legal`` -- average daily wage over the lookback window; when the
      policy allows it, the better of the lookback and trailing 12-month
      figures.
    * ``avg_hourly_x_avg_day_hours`` -- average hourly wage multiplied by
      the average hours per worked day, over the lookback window only.
    * ``fixed_rate`` -- the employee's fixed day rate, else the policy
      default.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    The leave pay policy is resolved by the caller (``LeaveValueContext``)
    and never looked up by key inside this module.

Invariants enforced:
    - Purity: no clock access; the query date is always an argument.
    - Decimal-only arithmetic; no intermediate rounding.
    - The lookback window ends the day before the query date.
    - Every ratio is guarded: zero hours or zero worked days is reported as
      insufficient data, never as a division error.
    - Leave dated before the employee's hire date is worth exactly 0.

Failure modes:
    - InvalidQueryError when the employee id is missing.
    - InvalidQueryDateError when the query date cannot be parsed.
    - EmployeeNotFoundError when the employee is not in the context.
    - Insufficient history is NOT an error: the value is 0, the diagnostics
      record says ``insufficient_data`` and an INFO record is logged.

Usage:
    from payroll_engines.leave_value import (
        LeaveValueContext, compute_leave_day_value,
    )

    context = LeaveValueContext.from_settings(
        employees=employees, entries=entries, services=services,
        settings=settings_rows,
    )
    value = compute_leave_day_value("h1", date(2024, 4, 15), context)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from functools import cached_property
from typing import Any

from payroll_config.loader import resolve_leave_pay_policy
from payroll_config.schema import DEFAULT_LEAVE_PAY_POLICY, LeavePayMethod, LeavePayPolicy
from payroll_engines.classification import (
    SESSION_ENTRY_TYPE,
    classify_entry,
    leave_value_multiplier,
)
from payroll_engines.tracer import traced_engine
from payroll_kernel.domain.calendar import lookback_window, normalize_date, require_date
from payroll_kernel.domain.records import (
    Employee,
    Service,
    WorkSessionEntry,
    index_by_id,
    load_records,
)
from payroll_kernel.domain.values import ZERO
from payroll_kernel.exceptions import EmployeeNotFoundError, InvalidQueryError
from payroll_kernel.logging_config import LogContext, get_logger

logger = get_logger("engines.leave_value")

TWELVE_MONTHS = 12

_WAGE_ENTRY_TYPES = frozenset({"hours", SESSION_ENTRY_TYPE})


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LeaveValueContext:
    """
    Everything the calculator reads, resolved once by the caller.

    Contract:
        Raw rows (mappings) are accepted and converted to records on
        construction; typed records pass through unchanged.
    Guarantees:
        - ``leave_pay_policy`` is a typed ``LeavePayPolicy``.
        - Soft-deleted entries are dropped.
    """

    employees: tuple[Employee, ...] = ()
    entries: tuple[WorkSessionEntry, ...] = ()
    services: tuple[Service, ...] = ()
    leave_pay_policy: LeavePayPolicy = DEFAULT_LEAVE_PAY_POLICY

    def __post_init__(self) -> None:
        object.__setattr__(self, "employees", load_records(Employee, self.employees))
        object.__setattr__(
            self,
            "entries",
            tuple(e for e in load_records(WorkSessionEntry, self.entries) if not e.deleted),
        )
        object.__setattr__(self, "services", load_records(Service, self.services))

    @classmethod
    def from_settings(
        cls,
        *,
        employees: Iterable[Any] = (),
        entries: Iterable[Any] = (),
        services: Iterable[Any] = (),
        leave_pay_policy: LeavePayPolicy | Mapping[str, Any] | str | None = None,
        settings: Any = None,
    ) -> LeaveValueContext:
        """Build a context, resolving the pay policy from a settings bag."""
        return cls(
            employees=tuple(employees or ()),
            entries=tuple(entries or ()),
            services=tuple(services or ()),
            leave_pay_policy=resolve_leave_pay_policy(leave_pay_policy, settings),
        )

    @cached_property
    def employees_by_id(self) -> dict[str, Employee]:
        return index_by_id(self.employees)

    @cached_property
    def services_by_id(self) -> dict[str, Service]:
        return index_by_id(self.services)


# ---------------------------------------------------------------------------
# Wage history
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WageHistory:
    """Payable work of one employee inside one lookback window."""

    total_earnings: Decimal
    total_hours: Decimal
    worked_days: int
    window_start: date
    window_end: date

    @property
    def average_hourly_rate(self) -> Decimal | None:
        if self.total_hours <= 0:
            return None
        return self.total_earnings / self.total_hours

    @property
    def average_day_hours(self) -> Decimal | None:
        if not self.worked_days:
            return None
        return self.total_hours / self.worked_days

    @property
    def average_daily_earnings(self) -> Decimal | None:
        if not self.worked_days:
            return None
        return self.total_earnings / self.worked_days


def entry_hours(entry: WorkSessionEntry, services_by_id: Mapping[str, Service]) -> Decimal:
    """Hours worked by an entry; session entries convert via the service."""
    if entry.hours is not None and entry.hours > 0:
        return entry.hours
    if entry.entry_type != SESSION_ENTRY_TYPE:
        return ZERO
    service = services_by_id.get(entry.service_id or "")
    if service is None or service.duration_hours is None:
        return ZERO
    if entry.sessions_count is None or entry.sessions_count <= 0:
        return ZERO
    return service.duration_hours * entry.sessions_count


def aggregate_wage_history(
    employee_id: str,
    entries: Iterable[WorkSessionEntry],
    services_by_id: Mapping[str, Service],
    window: tuple[date, date],
) -> WageHistory:
    """Sum payable hours/session work of one employee inside ``window``.

    A day counts as worked when an entry on it carries hours or a non-zero
    payment.
    """
    start, end = window
    earnings = ZERO
    hours = ZERO
    days: set[date] = set()

    for entry in entries:
        if entry.employee_id != employee_id or not entry.is_active:
            continue
        if not start <= entry.work_date <= end:
            continue
        if entry.payable is False or entry.entry_type not in _WAGE_ENTRY_TYPES:
            continue

        amount = entry.total_payment
        if amount is not None:
            earnings += amount
        worked = entry_hours(entry, services_by_id)
        if worked > 0:
            hours += worked
        if worked > 0 or (amount is not None and amount != 0):
            days.add(entry.work_date)

    return WageHistory(
        total_earnings=earnings,
        total_hours=hours,
        worked_days=len(days),
        window_start=start,
        window_end=end,
    )


# ---------------------------------------------------------------------------
# Valuation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LeaveDayValue:
    """
    Diagnostics form of a leave day valuation.

    ``value`` is 0 both for pre-hire dates and for insufficient history;
    the two flags tell them apart so a caller can show "no data" instead
    of a zero wage.
    """

    value: Decimal
    method: LeavePayMethod
    pre_start_date: bool = False
    insufficient_data: bool = False
    history: WageHistory | None = None
    reference_months: int | None = None


def resolve_method(employee: Employee, policy: LeavePayPolicy) -> LeavePayMethod:
    """Employee override first, then the policy default."""
    return LeavePayMethod.parse(employee.leave_pay_method) or policy.default_method


def _fixed_rate(employee: Employee, policy: LeavePayPolicy) -> Decimal | None:
    rate = employee.leave_fixed_day_rate
    if rate is not None and rate >= 0:
        return rate
    return policy.fixed_rate_default


def _daily_value(
    method: LeavePayMethod,
    employee_id: str,
    target: date,
    months: int,
    context: LeaveValueContext,
) -> tuple[Decimal, WageHistory]:
    history = aggregate_wage_history(
        employee_id,
        context.entries,
        context.services_by_id,
        lookback_window(target, months),
    )
    if not history.worked_days or history.total_earnings <= 0:
        return ZERO, history

    if method is LeavePayMethod.AVG_HOURLY_X_AVG_DAY_HOURS:
        hourly = history.average_hourly_rate
        if hourly is None:
            return ZERO, history
        return hourly * history.average_day_hours, history
    return history.average_daily_earnings, history


def _insufficient(
    employee: Employee,
    method: LeavePayMethod,
    history: WageHistory | None,
    months: int | None,
) -> LeaveDayValue:
    logger.info("leave_day_value_insufficient_data", extra={
        "employee_id": employee.id,
        "method": method.value,
        "total_earnings": history.total_earnings if history else ZERO,
        "total_hours": history.total_hours if history else ZERO,
        "worked_days": history.worked_days if history else 0,
    })
    return LeaveDayValue(
        value=ZERO,
        method=method,
        insufficient_data=True,
        history=history,
        reference_months=months,
    )


def evaluate_leave_day_value(
    employee: Employee,
    on_date: date,
    context: LeaveValueContext,
) -> LeaveDayValue:
    """Value one leave day of an already-resolved employee."""
    policy = context.leave_pay_policy
    method = resolve_method(employee, policy)

    if employee.start_date is not None and on_date < employee.start_date:
        return LeaveDayValue(value=ZERO, method=method, pre_start_date=True)

    months = policy.lookback_months
    match method:
        case LeavePayMethod.FIXED_RATE:
            rate = _fixed_rate(employee, policy)
            if rate is None:
                return _insufficient(employee, method, None, None)
            return LeaveDayValue(value=rate, method=method)

        case LeavePayMethod.LEGAL:
            value, history = _daily_value(method, employee.id, on_date, months, context)
            if policy.legal_allow_12m_if_better:
                yearly_value, yearly_history = _daily_value(
                    method, employee.id, on_date, TWELVE_MONTHS, context,
                )
                if yearly_value > value:
                    value, history, months = yearly_value, yearly_history, TWELVE_MONTHS

        case LeavePayMethod.AVG_HOURLY_X_AVG_DAY_HOURS:
            value, history = _daily_value(method, employee.id, on_date, months, context)

    if value <= 0:
        return _insufficient(employee, method, history, months)

    return LeaveDayValue(
        value=value,
        method=method,
        history=history,
        reference_months=months,
    )


@traced_engine("leave_value", "1.0", fingerprint_fields=("employee_id", "on_date"))
def compute_leave_day_value(
    employee_id: str,
    on_date: date | str,
    context: LeaveValueContext,
    *,
    collect_diagnostics: bool = False,
) -> Decimal | LeaveDayValue:
    """
    Compute the value of one leave day.

    Args:
        employee_id: Employee to value the day for.
        on_date: The leave date (``date`` or ISO string).
        context: Employees, entries, services and the resolved pay policy.
        collect_diagnostics: Return a ``LeaveDayValue`` instead of the bare
            amount.

    Raises:
        InvalidQueryError: ``employee_id`` is empty.
        InvalidQueryDateError: ``on_date`` is not a date.
        EmployeeNotFoundError: the employee is not in ``context``.
    """
    if not employee_id:
        raise InvalidQueryError("employee_id", "an employee id is required")
    target = require_date(on_date, "on_date")
    employee = context.employees_by_id.get(employee_id)
    if employee is None:
        raise EmployeeNotFoundError(employee_id)

    with LogContext.bind(employee_id=employee_id):
        result = evaluate_leave_day_value(employee, target, context)
    if collect_diagnostics:
        return result
    return result.value


# ---------------------------------------------------------------------------
# Report helpers
# ---------------------------------------------------------------------------


class LeaveDayValueResolver:
    """
    Memoized leave day values for report pages.

    Values are cached per (employee, date) for the lifetime of the
    resolver.  Unknown employees and unparseable dates resolve to 0 instead
    of raising, since report rows are historical data.
    """

    def __init__(self, context: LeaveValueContext):
        self._context = context
        self._cache: dict[tuple[str, date], Decimal] = {}

    @property
    def context(self) -> LeaveValueContext:
        return self._context

    def employee(self, employee_id: str | None) -> Employee | None:
        if not employee_id:
            return None
        return self._context.employees_by_id.get(employee_id)

    def __call__(self, employee_id: str | None, on_date: date | str | None) -> Decimal:
        target = normalize_date(on_date)
        if not employee_id or target is None:
            return ZERO

        key = (employee_id, target)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        employee = self.employee(employee_id)
        if employee is None:
            logger.warning("leave_day_value_unknown_employee", extra={
                "employee_id": employee_id,
                "date": target,
            })
            value = ZERO
        else:
            value = evaluate_leave_day_value(employee, target, self._context).value
            if value < 0:
                value = ZERO

        self._cache[key] = value
        return value

    def __len__(self) -> int:
        return len(self._cache)


@dataclass(frozen=True)
class LeaveEntryValue:
    """Value of a single leave time entry."""

    amount: Decimal
    multiplier: Decimal
    pre_start_date: bool = False


_NOT_PAYABLE = LeaveEntryValue(amount=ZERO, multiplier=ZERO)


def resolve_leave_entry_value(
    entry: WorkSessionEntry,
    resolver: LeaveDayValueResolver | None = None,
    employee: Employee | None = None,
) -> LeaveEntryValue:
    """
    Value one leave row: the day value times the row's leave multiplier.

    Unpaid and non-leave rows are worth 0 (multiplier 0) and never reach
    the resolver.  When no positive day value is available the row's own
    ``total_payment`` is used as recorded.
    """
    classification = classify_entry(entry)
    if not classification.is_leave or not classification.is_payable:
        return _NOT_PAYABLE

    multiplier = leave_value_multiplier(entry)
    if employee is None and resolver is not None:
        employee = resolver.employee(entry.employee_id)

    if (
        employee is not None
        and employee.start_date is not None
        and entry.work_date is not None
        and entry.work_date < employee.start_date
    ):
        return LeaveEntryValue(amount=ZERO, multiplier=multiplier, pre_start_date=True)

    if resolver is not None:
        base = resolver(entry.employee_id, entry.work_date)
        if base > 0:
            return LeaveEntryValue(amount=base * multiplier, multiplier=multiplier)

    fallback = entry.total_payment if entry.total_payment is not None else ZERO
    return LeaveEntryValue(amount=fallback, multiplier=multiplier)
