"""
Pure domain layer.

Immutable records and calendar helpers with NO dependencies on:
- HTTP / storage
- Time/clock
- I/O

All domain objects are immutable and deterministic.
"""

from payroll_kernel.domain.calendar import (
    DEFAULT_WORKING_DAYS,
    Weekday,
    add_months,
    date_key,
    effective_working_days,
    lookback_window,
    normalize_date,
    require_date,
)
from payroll_kernel.domain.records import (
    Employee,
    EmployeeType,
    EmploymentScope,
    LeaveLedgerEntry,
    Service,
    WorkSessionEntry,
    index_by_id,
    load_records,
)
from payroll_kernel.domain.values import ParsedDecimal, coerce_bool, coerce_decimal

__all__ = [
    "DEFAULT_WORKING_DAYS",
    "Employee",
    "EmployeeType",
    "EmploymentScope",
    "LeaveLedgerEntry",
    "ParsedDecimal",
    "Service",
    "Weekday",
    "WorkSessionEntry",
    "add_months",
    "coerce_bool",
    "coerce_decimal",
    "date_key",
    "effective_working_days",
    "index_by_id",
    "load_records",
    "lookback_window",
    "normalize_date",
    "require_date",
]
