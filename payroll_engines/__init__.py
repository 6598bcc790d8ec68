"""
Module: payroll_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines: entry classification, time aggregation, holiday
    rule resolution, leave day valuation and leave balances.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import payroll_kernel and payroll_config (and sibling engine
    modules).  Nothing in payroll_kernel or payroll_config imports back.

Invariants enforced:
    - Purity: engines NEVER call ``date.today()`` or ``datetime.now()``.
      Query dates are explicit parameters supplied by the caller.
    - Decimal-only arithmetic: hours, counts and money are ``Decimal``.
    - Determinism: identical inputs always produce identical outputs.

Failure modes:
    - QueryError subclasses for caller contract violations (missing
      employee, missing id, unparseable query date).
    - NoWorkingDaysError when a monthly rate is spread over a month
      without working days.
    - Dirty historical data is absorbed (counted as 0), never raised.

Audit relevance:
    Every public engine invocation is traced via ``@traced_engine`` (see
    ``payroll_engines.tracer``), emitting PAYROLL_ENGINE_TRACE records.

Usage:
    from payroll_engines import (
        EntryFilters, sum_hourly_hours,
        LeaveValueContext, compute_leave_day_value,
        compute_leave_remaining,
    )
"""

from payroll_kernel.logging_config import get_logger

logger = get_logger("engines")

from payroll_engines.aggregation import (
    ALL,
    EmployeeTotals,
    EntryFilters,
    GlobalDay,
    GlobalDayAggregate,
    PeriodDiagnostics,
    PeriodTotals,
    aggregate_global_days,
    calculate_global_daily_rate,
    compute_period_totals,
    count_global_effective_days,
    entry_matches_filters,
    select_global_hours,
    select_hourly_hours,
    select_meeting_hours,
    select_total_hours,
    sum_hourly_hours,
    sum_instructor_sessions,
)
from payroll_engines.classification import (
    EntryBucket,
    EntryClassification,
    LeaveKind,
    classify,
    classify_entry,
    is_leave_entry_type,
    is_payable_leave_kind,
    leave_base_kind,
    leave_kind_for_entry_type,
    leave_ledger_delta,
    leave_value_multiplier,
    normalize_leave_token,
)
from payroll_engines.holidays import holiday_rules_for_range, resolve_holiday_for_date
from payroll_engines.leave_balance import (
    BalanceProjection,
    LeaveSummary,
    base_quota_for_year,
    build_ledger_entry_for,
    compute_leave_remaining,
    compute_leave_summary,
    negative_balance_floor,
    project_balance_after_change,
)
from payroll_engines.leave_value import (
    LeaveDayValue,
    LeaveDayValueResolver,
    LeaveEntryValue,
    LeaveValueContext,
    WageHistory,
    aggregate_wage_history,
    compute_leave_day_value,
    evaluate_leave_day_value,
    resolve_leave_entry_value,
)
from payroll_engines.tracer import traced_engine

__all__ = [
    # Aggregation
    "ALL",
    "EmployeeTotals",
    "EntryFilters",
    "GlobalDay",
    "GlobalDayAggregate",
    "PeriodDiagnostics",
    "PeriodTotals",
    "aggregate_global_days",
    "calculate_global_daily_rate",
    "compute_period_totals",
    "count_global_effective_days",
    "entry_matches_filters",
    "select_global_hours",
    "select_hourly_hours",
    "select_meeting_hours",
    "select_total_hours",
    "sum_hourly_hours",
    "sum_instructor_sessions",
    # Classification
    "EntryBucket",
    "EntryClassification",
    "LeaveKind",
    "classify",
    "classify_entry",
    "is_leave_entry_type",
    "is_payable_leave_kind",
    "leave_base_kind",
    "leave_kind_for_entry_type",
    "leave_ledger_delta",
    "leave_value_multiplier",
    "normalize_leave_token",
    # Holidays
    "holiday_rules_for_range",
    "resolve_holiday_for_date",
    # Leave balance
    "BalanceProjection",
    "LeaveSummary",
    "base_quota_for_year",
    "build_ledger_entry_for",
    "compute_leave_remaining",
    "compute_leave_summary",
    "negative_balance_floor",
    "project_balance_after_change",
    # Leave value
    "LeaveDayValue",
    "LeaveDayValueResolver",
    "LeaveEntryValue",
    "LeaveValueContext",
    "WageHistory",
    "aggregate_wage_history",
    "compute_leave_day_value",
    "evaluate_leave_day_value",
    "resolve_leave_entry_value",
    # Tracing
    "traced_engine",
]
