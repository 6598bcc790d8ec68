"""
Tests for the leave day value calculator.

Covers:
- legal method: lookback average, 12-month comparison
- avg_hourly_x_avg_day_hours method, session hours via service duration
- fixed_rate method: employee rate, policy default
- Insufficient history and pre-hire diagnostics
- Query errors (missing id, bad date, unknown employee)
- Report helpers: memoized resolver and per-entry leave value
"""

from datetime import date
from decimal import Decimal

import pytest

from payroll_config.schema import LeavePayMethod, LeavePayPolicy
from payroll_engines.leave_value import (
    LeaveDayValue,
    LeaveDayValueResolver,
    LeaveValueContext,
    aggregate_wage_history,
    compute_leave_day_value,
    entry_hours,
    resolve_leave_entry_value,
    resolve_method,
)
from payroll_kernel.domain.records import Employee, EmployeeType, Service, WorkSessionEntry
from payroll_kernel.exceptions import (
    EmployeeNotFoundError,
    InvalidQueryDateError,
    InvalidQueryError,
    QueryError,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


QUERY_DATE = date(2024, 4, 15)


def _entry(
    work_date: date,
    entry_type: str = "hours",
    employee_id: str = "h1",
    **kwargs,
) -> WorkSessionEntry:
    for name in ("hours", "sessions_count", "total_payment", "leave_fraction"):
        if name in kwargs and kwargs[name] is not None:
            kwargs[name] = Decimal(str(kwargs[name]))
    return WorkSessionEntry(
        employee_id=employee_id,
        work_date=work_date,
        entry_type=entry_type,
        **kwargs,
    )


def _employee(**kwargs) -> Employee:
    kwargs.setdefault("id", "h1")
    kwargs.setdefault("employee_type", EmployeeType.HOURLY)
    return Employee(**kwargs)


def _context(entries=(), employees=None, services=(), **policy) -> LeaveValueContext:
    return LeaveValueContext(
        employees=employees if employees is not None else (_employee(),),
        entries=tuple(entries),
        services=tuple(services),
        leave_pay_policy=LeavePayPolicy(**policy),
    )


# 14 hours / 700 over two days inside the 3-month window, plus two older
# 650 days inside the 12-month window: 350 per day vs 500 per day.
LOOKBACK_DAYS = (
    _entry(date(2024, 4, 1), hours=7, total_payment=350),
    _entry(date(2024, 4, 2), hours=7, total_payment=350),
)
OLDER_DAYS = (
    _entry(date(2023, 10, 10), hours=10, total_payment=650),
    _entry(date(2023, 10, 11), hours=10, total_payment=650),
)


# =========================================================================
# 1. legal
# =========================================================================


class TestLegalMethod:

    def test_lookback_average(self):
        context = _context(LOOKBACK_DAYS + OLDER_DAYS)
        assert compute_leave_day_value("h1", QUERY_DATE, context) == Decimal("350")

    def test_better_twelve_month_figure(self):
        context = _context(LOOKBACK_DAYS + OLDER_DAYS, legal_allow_12m_if_better=True)
        assert compute_leave_day_value("h1", QUERY_DATE, context) == Decimal("500")

    def test_twelve_month_reference_reported(self):
        context = _context(LOOKBACK_DAYS + OLDER_DAYS, legal_allow_12m_if_better=True)
        result = compute_leave_day_value("h1", QUERY_DATE, context, collect_diagnostics=True)
        assert result.reference_months == 12
        assert result.history.worked_days == 4
        assert result.history.total_earnings == Decimal("2000")

    def test_worse_twelve_month_figure_ignored(self):
        older = (_entry(date(2023, 10, 10), hours=8, total_payment=50),)
        context = _context(LOOKBACK_DAYS + older, legal_allow_12m_if_better=True)
        result = compute_leave_day_value("h1", QUERY_DATE, context, collect_diagnostics=True)
        assert result.value == Decimal("350")
        assert result.reference_months == 3

    def test_implausible_settings_lookback_uses_default(self):
        context = LeaveValueContext.from_settings(
            employees=(_employee(),),
            entries=LOOKBACK_DAYS + OLDER_DAYS,
            settings={"leave_pay_policy": {"lookback_months": 30000}},
        )
        result = compute_leave_day_value("h1", QUERY_DATE, context, collect_diagnostics=True)
        assert result.value == Decimal("350")
        assert result.reference_months == 3

    def test_query_date_excluded_from_window(self):
        same_day = (_entry(QUERY_DATE, hours=8, total_payment=9999),)
        context = _context(LOOKBACK_DAYS + same_day)
        assert compute_leave_day_value("h1", QUERY_DATE, context) == Decimal("350")

    def test_unpayable_deleted_and_leave_rows_ignored(self):
        noise = (
            _entry(date(2024, 4, 3), hours=8, total_payment=1000, payable=False),
            _entry(date(2024, 4, 4), hours=8, total_payment=1000, deleted=True),
            _entry(date(2024, 4, 5), "leave_system_paid", total_payment=1000),
            _entry(date(2024, 4, 6), employee_id="h2", hours=8, total_payment=1000),
        )
        context = _context(LOOKBACK_DAYS + noise)
        assert compute_leave_day_value("h1", QUERY_DATE, context) == Decimal("350")

    def test_string_date_and_mapping_rows(self):
        context = LeaveValueContext(
            employees=[{"id": "h1", "employee_type": "hourly"}],
            entries=[
                {"employee_id": "h1", "date": "2024-04-01", "entry_type": "hours",
                 "hours": "7", "total_payment": "350"},
                {"employee_id": "h1", "date": "2024-04-02", "entry_type": "hours",
                 "hours": 7, "total_payment": 350},
            ],
        )
        assert compute_leave_day_value("h1", "2024-04-15", context) == Decimal("350")


# =========================================================================
# 2. avg_hourly_x_avg_day_hours
# =========================================================================


class TestAverageHourlyMethod:

    def test_hourly_rate_times_day_hours(self):
        entries = (
            _entry(date(2024, 4, 1), hours=8, total_payment=400),
            _entry(date(2024, 4, 2), hours=4, total_payment=200),
        )
        context = _context(entries, default_method=LeavePayMethod.AVG_HOURLY_X_AVG_DAY_HOURS)
        # 50 per hour, 6 hours per day
        assert compute_leave_day_value("h1", QUERY_DATE, context) == Decimal("300")

    def test_twelve_month_flag_not_applied(self):
        context = _context(
            LOOKBACK_DAYS + OLDER_DAYS,
            default_method=LeavePayMethod.AVG_HOURLY_X_AVG_DAY_HOURS,
            legal_allow_12m_if_better=True,
        )
        assert compute_leave_day_value("h1", QUERY_DATE, context) == Decimal("350")

    def test_payments_without_hours_are_insufficient(self):
        entries = (_entry(date(2024, 4, 1), "session", total_payment=400, service_id="s9"),)
        context = _context(entries, default_method=LeavePayMethod.AVG_HOURLY_X_AVG_DAY_HOURS)
        result = compute_leave_day_value("h1", QUERY_DATE, context, collect_diagnostics=True)
        assert result.value == Decimal("0")
        assert result.insufficient_data is True

    def test_session_hours_from_service(self, hour_service):
        employees = (_employee(id="i1", employee_type=EmployeeType.INSTRUCTOR),)
        entries = (
            _entry(date(2024, 4, 1), "session", employee_id="i1",
                   sessions_count=2, service_id="s1", total_payment=400),
        )
        context = _context(
            entries, employees, (hour_service,),
            default_method=LeavePayMethod.AVG_HOURLY_X_AVG_DAY_HOURS,
        )
        # 200 per hour, 2 hours on the one worked day
        assert compute_leave_day_value("i1", QUERY_DATE, context) == Decimal("400")


# =========================================================================
# 3. fixed_rate
# =========================================================================


class TestFixedRateMethod:

    def test_employee_rate(self):
        employees = (_employee(leave_fixed_day_rate=Decimal("420")),)
        context = _context(employees=employees, default_method=LeavePayMethod.FIXED_RATE)
        assert compute_leave_day_value("h1", QUERY_DATE, context) == Decimal("420")

    def test_policy_default_rate(self):
        context = _context(
            default_method=LeavePayMethod.FIXED_RATE, fixed_rate_default=Decimal("390"),
        )
        assert compute_leave_day_value("h1", QUERY_DATE, context) == Decimal("390")

    def test_employee_method_override(self):
        employees = (_employee(leave_pay_method="fixed_rate", leave_fixed_day_rate=Decimal("420")),)
        context = _context(LOOKBACK_DAYS, employees)
        assert compute_leave_day_value("h1", QUERY_DATE, context) == Decimal("420")

    def test_unknown_employee_method_uses_policy(self):
        employee = _employee(leave_pay_method="generous")
        assert resolve_method(employee, LeavePayPolicy()) is LeavePayMethod.LEGAL

    def test_no_rate_anywhere_is_insufficient(self):
        context = _context(default_method=LeavePayMethod.FIXED_RATE)
        result = compute_leave_day_value("h1", QUERY_DATE, context, collect_diagnostics=True)
        assert result.value == Decimal("0")
        assert result.insufficient_data is True
        assert result.history is None


# =========================================================================
# 4. Diagnostics
# =========================================================================


class TestDiagnostics:

    def test_no_entries_in_window(self, captured_logs):
        result = compute_leave_day_value("h1", QUERY_DATE, _context(), collect_diagnostics=True)
        assert isinstance(result, LeaveDayValue)
        assert result.value == Decimal("0")
        assert result.insufficient_data is True
        assert result.pre_start_date is False

        info = [r for r in captured_logs() if r["message"] == "leave_day_value_insufficient_data"]
        assert info[0]["employee_id"] == "h1"
        assert info[0]["level"] == "INFO"

    def test_before_hire_date(self):
        employees = (_employee(start_date=date(2024, 5, 1)),)
        context = _context(LOOKBACK_DAYS, employees)
        result = compute_leave_day_value("h1", QUERY_DATE, context, collect_diagnostics=True)
        assert result.value == Decimal("0")
        assert result.pre_start_date is True
        assert result.insufficient_data is False

    def test_bare_value_by_default(self):
        value = compute_leave_day_value("h1", QUERY_DATE, _context(LOOKBACK_DAYS))
        assert isinstance(value, Decimal)

    def test_traced(self, captured_logs):
        compute_leave_day_value("h1", QUERY_DATE, _context(LOOKBACK_DAYS))
        traces = [r for r in captured_logs() if r["message"] == "PAYROLL_ENGINE_TRACE"]
        assert traces[-1]["engine_name"] == "leave_value"
        assert len(traces[-1]["input_fingerprint"]) == 16


class TestQueryErrors:

    def test_missing_employee_id(self):
        with pytest.raises(InvalidQueryError):
            compute_leave_day_value("", QUERY_DATE, _context())

    def test_unparseable_date(self):
        with pytest.raises(InvalidQueryDateError):
            compute_leave_day_value("h1", "15/04/2024", _context())

    def test_unknown_employee(self):
        with pytest.raises(EmployeeNotFoundError) as exc_info:
            compute_leave_day_value("ghost", QUERY_DATE, _context())
        assert exc_info.value.employee_id == "ghost"

    @pytest.mark.parametrize("employee_id, on_date", [
        (None, QUERY_DATE), ("h1", None), ("ghost", QUERY_DATE),
    ])
    def test_all_are_query_errors(self, employee_id, on_date):
        with pytest.raises(QueryError):
            compute_leave_day_value(employee_id, on_date, _context())


# =========================================================================
# 5. Building blocks
# =========================================================================


class TestWageHistory:

    def test_entry_hours(self, hour_service):
        services = {"s1": hour_service}
        assert entry_hours(_entry(QUERY_DATE, hours=3), services) == Decimal("3")
        session = _entry(QUERY_DATE, "session", sessions_count=2, service_id="s1")
        assert entry_hours(session, services) == Decimal("2")
        assert entry_hours(_entry(QUERY_DATE, "adjustment"), services) == Decimal("0")

    def test_aggregate(self):
        history = aggregate_wage_history(
            "h1", LOOKBACK_DAYS + OLDER_DAYS, {}, (date(2024, 1, 15), date(2024, 4, 14)),
        )
        assert history.total_earnings == Decimal("700")
        assert history.total_hours == Decimal("14")
        assert history.worked_days == 2
        assert history.average_hourly_rate == Decimal("50")
        assert history.average_day_hours == Decimal("7")

    def test_zero_payment_without_hours_is_not_a_worked_day(self):
        entries = (_entry(date(2024, 4, 1), total_payment=0),)
        history = aggregate_wage_history("h1", entries, {}, (date(2024, 1, 15), date(2024, 4, 14)))
        assert history.worked_days == 0
        assert history.average_daily_earnings is None
        assert history.average_hourly_rate is None

    def test_context_from_settings(self):
        context = LeaveValueContext.from_settings(
            employees=[_employee()],
            entries=LOOKBACK_DAYS,
            settings=[{"key": "leave_pay_policy", "settings_value": {"default_method": "fixed_rate"}}],
        )
        assert context.leave_pay_policy.default_method is LeavePayMethod.FIXED_RATE
        assert context.employees_by_id["h1"].id == "h1"


class TestLeaveDayValueResolver:

    def test_values_are_cached(self):
        resolver = LeaveDayValueResolver(_context(LOOKBACK_DAYS))
        assert resolver("h1", QUERY_DATE) == Decimal("350")
        assert resolver("h1", "2024-04-15") == Decimal("350")
        assert len(resolver) == 1

    def test_unknown_employee_is_zero(self, captured_logs):
        resolver = LeaveDayValueResolver(_context())
        assert resolver("ghost", QUERY_DATE) == Decimal("0")
        assert any(r["message"] == "leave_day_value_unknown_employee" for r in captured_logs())

    def test_bad_input_is_zero(self):
        resolver = LeaveDayValueResolver(_context(LOOKBACK_DAYS))
        assert resolver(None, QUERY_DATE) == Decimal("0")
        assert resolver("h1", "whenever") == Decimal("0")
        assert len(resolver) == 0


class TestResolveLeaveEntryValue:

    @pytest.fixture
    def resolver(self):
        return LeaveDayValueResolver(_context(LOOKBACK_DAYS))

    def test_full_day(self, resolver):
        value = resolve_leave_entry_value(_entry(QUERY_DATE, "leave_system_paid"), resolver)
        assert value.amount == Decimal("350")
        assert value.multiplier == Decimal("1")

    def test_half_day(self, resolver):
        value = resolve_leave_entry_value(_entry(QUERY_DATE, "leave_half_day"), resolver)
        assert value.amount == Decimal("175")
        assert value.multiplier == Decimal("0.5")

    def test_unpaid_and_work_rows_are_zero(self, resolver):
        for entry in (_entry(QUERY_DATE, "leave_unpaid"), _entry(QUERY_DATE, hours=8)):
            value = resolve_leave_entry_value(entry, resolver)
            assert value.amount == Decimal("0")
            assert value.multiplier == Decimal("0")
        assert len(resolver) == 0

    def test_pre_hire(self):
        employee = _employee(start_date=date(2024, 5, 1))
        value = resolve_leave_entry_value(_entry(QUERY_DATE, "leave_system_paid"), None, employee)
        assert value.pre_start_date is True
        assert value.amount == Decimal("0")

    def test_recorded_payment_fallback(self):
        resolver = LeaveDayValueResolver(_context())
        entry = _entry(QUERY_DATE, "leave_employee_paid", total_payment=310)
        assert resolve_leave_entry_value(entry, resolver).amount == Decimal("310")
