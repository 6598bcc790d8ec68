"""
Module: payroll_engines.aggregation
Responsibility:
    Sum worked hours, session counts and payment amounts across a date
    range, filtered by employee, employee type, employment scope and
    service.  Backs the
    report tables, the dashboard counters and the payroll export.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Depends on the entry classifier for bucket decisions and on the leave
    value calculator for valuing paid leave rows in period totals.

Invariants enforced:
    - Purity: no clock access, no I/O.
    - Decimal-only arithmetic; counts are ``int``.
    - Soft-deleted entries and entries without a usable date are never
      counted.
    - A malformed numeric field counts as 0: one corrupt row degrades an
      aggregate, it never fails the report.
    - ``"all"`` on a filter dimension means no filter on that dimension.
    - Global (salaried) employees are paid once per (employee, date), no
      matter how many rows the day has.

Failure modes:
    - InvalidQueryDateError when a filter date is present but unparseable.
    - NoWorkingDaysError from ``calculate_global_daily_rate`` when the
      employee's schedule has no working day in the month.  Inside
      ``aggregate_global_days`` and ``compute_period_totals`` the day is
      paid 0 and reported in the diagnostics instead.

Audit relevance:
    Every public entry point is traced via ``@traced_engine`` with the
    filters in the input fingerprint.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from payroll_engines.classification import (
    ADJUSTMENT_ENTRY_TYPE,
    HOURS_ENTRY_TYPE,
    SESSION_ENTRY_TYPE,
    classify_entry,
    leave_value_multiplier,
)
from payroll_engines.leave_value import LeaveDayValueResolver, resolve_leave_entry_value
from payroll_engines.tracer import traced_engine
from payroll_kernel.domain.calendar import (
    DEFAULT_WORKING_DAYS,
    Weekday,
    effective_working_days,
    require_date,
)
from payroll_kernel.domain.records import (
    Employee,
    EmployeeType,
    EmploymentScope,
    Service,
    WorkSessionEntry,
    index_by_id,
    load_records,
)
from payroll_kernel.domain.values import ZERO
from payroll_kernel.exceptions import NoWorkingDaysError
from payroll_kernel.logging_config import get_logger

logger = get_logger("engines.aggregation")

ALL = "all"

# Legacy session length codes, in hours per session
SESSION_TYPE_HOURS: dict[str, Decimal] = {
    "session_30": Decimal("0.5"),
    "session_45": Decimal("0.75"),
    "session_150": Decimal("2.5"),
}


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


def _optional_date(value: Any, field_name: str) -> date | None:
    if value is None or value == "":
        return None
    return require_date(value, field_name)


def _employment_scopes(value: Any) -> frozenset[EmploymentScope]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, Iterable) or isinstance(value, Mapping):
        return frozenset()
    parsed = (EmploymentScope.parse(item) for item in value)
    return frozenset(scope for scope in parsed if scope is not None)


def _filter_value(value: Any) -> str:
    if value is None:
        return ALL
    if isinstance(value, Enum):
        value = value.value
    text = str(value).strip()
    return text or ALL


@dataclass(frozen=True)
class EntryFilters:
    """
    Report filters shared by every aggregation.

    Contract:
        ``date_from`` / ``date_to`` are inclusive; ``None`` leaves that side
        open.  ``employee_type`` and ``service_id`` use ``"all"`` for no
        filter; ``selected_employee=None`` means every employee.  An empty
        ``employment_scopes`` means every scope; otherwise employees with
        no recorded scope are excluded.
    """

    date_from: date | None = None
    date_to: date | None = None
    employee_type: EmployeeType | str = ALL
    service_id: str = ALL
    selected_employee: str | None = None
    employment_scopes: frozenset[EmploymentScope] = frozenset()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> EntryFilters:
        """Accept snake_case keys or the camelCase keys of the report UI."""
        if not data:
            return cls()

        def pick(*keys: str) -> Any:
            for key in keys:
                if key in data:
                    return data[key]
            return None

        employee_type = _filter_value(pick("employee_type", "employeeType"))
        if employee_type != ALL:
            try:
                employee_type = EmployeeType(employee_type.lower())
            except ValueError:
                pass
        selected = pick("selected_employee", "selectedEmployee")

        return cls(
            date_from=_optional_date(pick("date_from", "dateFrom"), "date_from"),
            date_to=_optional_date(pick("date_to", "dateTo"), "date_to"),
            employee_type=employee_type,
            service_id=_filter_value(pick("service_id", "serviceId")),
            selected_employee=str(selected) if selected else None,
            employment_scopes=_employment_scopes(
                pick("employment_scopes", "employmentScopes"),
            ),
        )

    def matches(self, entry: WorkSessionEntry, employee: Employee) -> bool:
        """True if an active entry of ``employee`` passes every filter."""
        if not entry.is_active:
            return False
        if self.date_from is not None and entry.work_date < self.date_from:
            return False
        if self.date_to is not None and entry.work_date > self.date_to:
            return False
        if self.selected_employee and entry.employee_id != self.selected_employee:
            return False
        if self.employee_type != ALL and employee.employee_type != self.employee_type:
            return False
        if self.service_id != ALL and entry.service_id != self.service_id:
            return False
        scopes = self.employment_scopes
        if scopes and employee.employment_scope not in scopes:
            return False
        return True


def entry_matches_filters(
    entry: WorkSessionEntry,
    employee: Employee,
    filters: EntryFilters | Mapping[str, Any] | None = None,
) -> bool:
    return _as_filters(filters).matches(entry, employee)


def _as_filters(filters: EntryFilters | Mapping[str, Any] | None) -> EntryFilters:
    if isinstance(filters, EntryFilters):
        return filters
    return EntryFilters.from_mapping(filters)


def _rows_for_type(
    entries: Iterable[Any] | None,
    employees: Iterable[Any] | None,
    filters: EntryFilters,
    employee_type: EmployeeType,
    entry_type: str,
) -> Iterable[tuple[WorkSessionEntry, Employee]]:
    """Yield (entry, employee) pairs of one entry type for one employee type."""
    by_id = index_by_id(load_records(Employee, employees))
    for entry in load_records(WorkSessionEntry, entries):
        employee = by_id.get(entry.employee_id or "")
        if employee is None or not employee.is_type(employee_type):
            continue
        if entry.entry_type != entry_type or not filters.matches(entry, employee):
            continue
        yield entry, employee


def _or_zero(value: Decimal | None) -> Decimal:
    return value if value is not None else ZERO


# ---------------------------------------------------------------------------
# Hours, days and sessions
# ---------------------------------------------------------------------------


@traced_engine("aggregation", "1.0", fingerprint_fields=("filters",))
def sum_hourly_hours(
    entries: Iterable[Any] | None,
    employees: Iterable[Any] | None,
    filters: EntryFilters | Mapping[str, Any] | None = None,
) -> Decimal:
    """Sum ``hours`` of hours-type entries of hourly employees."""
    rows = _rows_for_type(
        entries, employees, _as_filters(filters), EmployeeType.HOURLY, HOURS_ENTRY_TYPE,
    )
    return sum((_or_zero(entry.hours) for entry, _ in rows), ZERO)


@traced_engine(
    "aggregation", "1.0",
    fingerprint_fields=("filters", "exclude_paid_leave", "restrict_to_working_days"),
)
def count_global_effective_days(
    entries: Iterable[Any] | None,
    employees: Iterable[Any] | None,
    filters: EntryFilters | Mapping[str, Any] | None = None,
    *,
    exclude_paid_leave: bool = True,
    restrict_to_working_days: bool = False,
) -> int:
    """
    Count distinct (employee, date) pairs worked by global employees.

    A day counts when it has an hours entry, or a payable leave entry when
    ``exclude_paid_leave`` is False.  Unpaid leave never makes a day
    effective.  With ``restrict_to_working_days`` only dates falling on the
    employee's working days (default Sunday-Thursday) are counted.
    """
    resolved = _as_filters(filters)
    by_id = index_by_id(load_records(Employee, employees))
    days: set[tuple[str, date]] = set()

    for entry in load_records(WorkSessionEntry, entries):
        employee = by_id.get(entry.employee_id or "")
        if employee is None or not employee.is_type(EmployeeType.GLOBAL):
            continue
        if not resolved.matches(entry, employee):
            continue

        classification = classify_entry(entry)
        if classification.is_leave:
            if exclude_paid_leave or not classification.is_payable:
                continue
        elif entry.entry_type != HOURS_ENTRY_TYPE:
            continue

        if restrict_to_working_days:
            working_days = (
                DEFAULT_WORKING_DAYS if employee.working_days is None else employee.working_days
            )
            if Weekday.of(entry.work_date) not in working_days:
                continue

        days.add((employee.id, entry.work_date))

    return len(days)


@traced_engine("aggregation", "1.0", fingerprint_fields=("filters",))
def sum_instructor_sessions(
    entries: Iterable[Any] | None,
    services: Iterable[Any] | None,
    employees: Iterable[Any] | None,
    filters: EntryFilters | Mapping[str, Any] | None = None,
) -> Decimal:
    """Sum ``sessions_count`` of instructor session entries of known services."""
    service_ids = {service.id for service in load_records(Service, services)}
    rows = _rows_for_type(
        entries, employees, _as_filters(filters), EmployeeType.INSTRUCTOR, SESSION_ENTRY_TYPE,
    )
    return sum(
        (_or_zero(entry.sessions_count) for entry, _ in rows if entry.service_id in service_ids),
        ZERO,
    )


def select_hourly_hours(
    entries: Iterable[Any] | None,
    employees: Iterable[Any] | None,
    filters: EntryFilters | Mapping[str, Any] | None = None,
) -> Decimal:
    return sum_hourly_hours(entries, employees, filters)


def session_entry_hours(
    entry: WorkSessionEntry,
    services_by_id: Mapping[str, Service],
) -> Decimal:
    """Hours-equivalent of a session entry for meeting-hour reports.

    Explicit ``hours`` win, then the service duration times the session
    count, then the legacy ``session_type`` length codes.
    """
    if entry.hours is not None:
        return entry.hours
    sessions = _or_zero(entry.sessions_count)
    service = services_by_id.get(entry.service_id or "")
    if service is not None and service.duration_hours is not None:
        return service.duration_hours * sessions
    per_session = SESSION_TYPE_HOURS.get(entry.session_type or "")
    if per_session is None:
        return ZERO
    return per_session * sessions


@traced_engine("aggregation", "1.0", fingerprint_fields=("filters",))
def select_meeting_hours(
    entries: Iterable[Any] | None,
    services: Iterable[Any] | None,
    employees: Iterable[Any] | None,
    filters: EntryFilters | Mapping[str, Any] | None = None,
) -> Decimal:
    """Hours-equivalent of instructor session entries."""
    services_by_id = index_by_id(load_records(Service, services))
    rows = _rows_for_type(
        entries, employees, _as_filters(filters), EmployeeType.INSTRUCTOR, SESSION_ENTRY_TYPE,
    )
    return sum((session_entry_hours(entry, services_by_id) for entry, _ in rows), ZERO)


@traced_engine("aggregation", "1.0", fingerprint_fields=("filters",))
def select_global_hours(
    entries: Iterable[Any] | None,
    employees: Iterable[Any] | None,
    filters: EntryFilters | Mapping[str, Any] | None = None,
) -> Decimal:
    """Sum ``hours`` of hours-type entries of global employees."""
    rows = _rows_for_type(
        entries, employees, _as_filters(filters), EmployeeType.GLOBAL, HOURS_ENTRY_TYPE,
    )
    return sum((_or_zero(entry.hours) for entry, _ in rows), ZERO)


def select_total_hours(
    entries: Iterable[Any] | None,
    services: Iterable[Any] | None,
    employees: Iterable[Any] | None,
    filters: EntryFilters | Mapping[str, Any] | None = None,
) -> Decimal:
    """Hourly hours plus instructor meeting hours plus global hours."""
    entries = load_records(WorkSessionEntry, entries)
    employees = load_records(Employee, employees)
    services = load_records(Service, services)
    resolved = _as_filters(filters)
    return (
        select_hourly_hours(entries, employees, resolved)
        + select_meeting_hours(entries, services, employees, resolved)
        + select_global_hours(entries, employees, resolved)
    )


# ---------------------------------------------------------------------------
# Global (salaried) days
# ---------------------------------------------------------------------------


def calculate_global_daily_rate(
    employee: Employee,
    on_date: date,
    monthly_rate: Decimal,
) -> Decimal:
    """Monthly rate divided by the working days of ``on_date``'s month.

    Raises:
        NoWorkingDaysError: The employee has no working day that month.
    """
    days = effective_working_days(employee.working_days, on_date)
    if not days:
        raise NoWorkingDaysError(employee.id, on_date)
    return monthly_rate / days


@dataclass(frozen=True)
class GlobalDay:
    """The single paid salary day of a global employee."""

    employee_id: str
    work_date: date
    daily_amount: Decimal
    first_entry_id: str | None
    day_type: str


@dataclass(frozen=True)
class GlobalDayAggregate:
    days: dict[tuple[str, date], GlobalDay]
    total: Decimal
    # days whose monthly snapshot could not be turned into a daily rate
    unrated_days: tuple[tuple[str, date], ...] = ()


@traced_engine("aggregation", "1.0")
def aggregate_global_days(
    entries: Iterable[Any] | None,
    employees: Iterable[Any] | Mapping[str, Employee] | None,
) -> GlobalDayAggregate:
    """
    One daily amount per (employee, date) for global employees.

    The first hours or payable leave row of a day sets its amount: its
    ``total_payment`` when recorded, else the daily rate derived from its
    ``rate_used`` monthly snapshot.  Unpaid leave and rows dated before the
    hire date are skipped.  A snapshot in a month without working days
    pays 0 and is listed in ``unrated_days``.
    """
    if isinstance(employees, Mapping):
        by_id = dict(employees)
    else:
        by_id = index_by_id(load_records(Employee, employees))

    days: dict[tuple[str, date], GlobalDay] = {}
    unrated: list[tuple[str, date]] = []
    total = ZERO
    for entry in load_records(WorkSessionEntry, entries):
        if not entry.is_active:
            continue
        employee = by_id.get(entry.employee_id or "")
        if employee is None or not employee.is_type(EmployeeType.GLOBAL):
            continue
        if employee.start_date is not None and entry.work_date < employee.start_date:
            continue

        classification = classify_entry(entry)
        if classification.is_leave:
            if not classification.is_payable:
                continue
        elif entry.entry_type != HOURS_ENTRY_TYPE:
            continue

        key = (employee.id, entry.work_date)
        if key in days:
            continue

        if entry.total_payment is not None:
            amount = entry.total_payment
        elif entry.rate_used is not None:
            try:
                amount = calculate_global_daily_rate(employee, entry.work_date, entry.rate_used)
            except NoWorkingDaysError as exc:
                logger.warning("global_day_unrated", extra={
                    "employee_id": exc.employee_id,
                    "work_date": entry.work_date,
                    "rate_used": entry.rate_used,
                    "error_code": exc.code,
                })
                unrated.append(key)
                amount = ZERO
        else:
            amount = ZERO

        days[key] = GlobalDay(
            employee_id=employee.id,
            work_date=entry.work_date,
            daily_amount=amount,
            first_entry_id=entry.entry_id,
            day_type=entry.entry_type,
        )
        total += amount

    return GlobalDayAggregate(days=days, total=total, unrated_days=tuple(unrated))


# ---------------------------------------------------------------------------
# Period totals
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EmployeeTotals:
    """Per-employee bucket of a period report."""

    employee_id: str
    pay: Decimal = ZERO
    hours: Decimal = ZERO
    sessions: Decimal = ZERO
    days_paid: Decimal = ZERO
    adjustments: Decimal = ZERO
    leave_pay: Decimal = ZERO


@dataclass(frozen=True)
class PeriodDiagnostics:
    """
    Side figures of a period report.

    ``unique_paid_days`` counts distinct (employee, date) pairs that carry
    pay or paid leave, across every employee type.  ``unrated_global_days``
    lists global days paid 0 because their month has no working day.
    """

    unique_paid_days: int = 0
    paid_leave_days: Decimal = ZERO
    adjustments_sum: Decimal = ZERO
    unrated_global_days: tuple[tuple[str, date], ...] = ()


@dataclass(frozen=True)
class PeriodTotals:
    """
    Report totals for a date range.

    Guarantees:
        - ``total_pay`` equals the sum of ``pay`` over
          ``totals_by_employee`` (the header equals the table).
    """

    total_pay: Decimal
    total_hours: Decimal
    total_sessions: Decimal
    totals_by_employee: tuple[EmployeeTotals, ...]
    diagnostics: PeriodDiagnostics
    filtered_entries: tuple[WorkSessionEntry, ...]

    def for_employee(self, employee_id: str) -> EmployeeTotals | None:
        for totals in self.totals_by_employee:
            if totals.employee_id == employee_id:
                return totals
        return None


class _Bucket:
    """Mutable accumulator behind ``EmployeeTotals``."""

    def __init__(self, employee_id: str):
        self.employee_id = employee_id
        self.pay = ZERO
        self.hours = ZERO
        self.sessions = ZERO
        self.days_paid = ZERO
        self.adjustments = ZERO
        self.leave_pay = ZERO

    def freeze(self) -> EmployeeTotals:
        return EmployeeTotals(
            employee_id=self.employee_id,
            pay=self.pay,
            hours=self.hours,
            sessions=self.sessions,
            days_paid=self.days_paid,
            adjustments=self.adjustments,
            leave_pay=self.leave_pay,
        )


@traced_engine(
    "aggregation", "1.0",
    fingerprint_fields=(
        "date_from", "date_to", "service_id", "selected_employee", "employee_type",
        "employment_scopes",
    ),
)
def compute_period_totals(
    entries: Iterable[Any] | None,
    employees: Iterable[Any] | None,
    date_from: date | str,
    date_to: date | str,
    *,
    service_id: str = ALL,
    selected_employee: str | None = None,
    employee_type: EmployeeType | str = ALL,
    employment_scopes: Iterable[Any] = (),
    leave_values: LeaveDayValueResolver | None = None,
) -> PeriodTotals:
    """
    Pay, hours and sessions for a period, overall and per employee.

    Global employees are paid once per day (see ``aggregate_global_days``).
    Paid leave of other employees is valued through ``leave_values`` when a
    resolver is supplied, otherwise at the row's recorded payment.  Rows
    dated before an employee's hire date are excluded.  ``employment_scopes``
    (system values or display labels) limits the report to those scopes.

    Raises:
        InvalidQueryDateError: ``date_from`` or ``date_to`` is not a date.
    """
    filters = EntryFilters.from_mapping({
        "date_from": require_date(date_from, "date_from"),
        "date_to": require_date(date_to, "date_to"),
        "service_id": service_id,
        "selected_employee": selected_employee,
        "employee_type": employee_type,
        "employment_scopes": employment_scopes,
    })
    by_id = index_by_id(load_records(Employee, employees))

    filtered: list[WorkSessionEntry] = []
    for entry in load_records(WorkSessionEntry, entries):
        employee = by_id.get(entry.employee_id or "")
        if employee is None or not filters.matches(entry, employee):
            continue
        if employee.start_date is not None and entry.work_date < employee.start_date:
            continue
        filtered.append(entry)

    global_days = aggregate_global_days(filtered, by_id)

    buckets: dict[str, _Bucket] = {}
    total_pay = ZERO
    total_hours = ZERO
    total_sessions = ZERO
    paid_leave_days = ZERO
    adjustments_sum = ZERO

    paid_global_days: set[tuple[str, date]] = set()
    paid_days: set[tuple[str, date]] = set()

    for entry in filtered:
        classification = classify_entry(entry)
        if not classification.is_countable:
            continue
        employee = by_id[entry.employee_id]
        bucket = buckets.setdefault(employee.id, _Bucket(employee.id))
        payment = _or_zero(entry.total_payment)
        is_global_day_row = employee.is_type(EmployeeType.GLOBAL) and (
            entry.entry_type == HOURS_ENTRY_TYPE or classification.is_paid_leave
        )

        if is_global_day_row:
            # first row of the day carries the daily amount
            key = (employee.id, entry.work_date)
            if key in paid_global_days:
                pay = ZERO
            else:
                paid_global_days.add(key)
                pay = global_days.days[key].daily_amount
        elif classification.is_paid_leave and leave_values is not None:
            pay = resolve_leave_entry_value(entry, leave_values, employee).amount
        elif classification.is_leave:
            pay = payment if classification.is_payable else ZERO
        else:
            pay = payment

        total_pay += pay
        bucket.pay += pay

        if entry.entry_type == ADJUSTMENT_ENTRY_TYPE:
            adjustments_sum += payment
            bucket.adjustments += payment
        elif entry.entry_type == HOURS_ENTRY_TYPE:
            total_hours += _or_zero(entry.hours)
            bucket.hours += _or_zero(entry.hours)
        elif entry.entry_type == SESSION_ENTRY_TYPE:
            total_sessions += _or_zero(entry.sessions_count)
            bucket.sessions += _or_zero(entry.sessions_count)

        if classification.is_paid_leave:
            multiplier = leave_value_multiplier(entry)
            bucket.leave_pay += pay
            bucket.days_paid += multiplier
            paid_leave_days += multiplier
            paid_days.add((employee.id, entry.work_date))
        elif pay and entry.payable is not False:
            paid_days.add((employee.id, entry.work_date))

    diagnostics = PeriodDiagnostics(
        unique_paid_days=len(paid_days),
        paid_leave_days=paid_leave_days,
        adjustments_sum=adjustments_sum,
        unrated_global_days=global_days.unrated_days,
    )
    logger.debug("period_totals_computed", extra={
        "entry_count": len(filtered),
        "employee_count": len(buckets),
        "total_pay": total_pay,
    })
    return PeriodTotals(
        total_pay=total_pay,
        total_hours=total_hours,
        total_sessions=total_sessions,
        totals_by_employee=tuple(bucket.freeze() for bucket in buckets.values()),
        diagnostics=diagnostics,
        filtered_entries=tuple(filtered),
    )
