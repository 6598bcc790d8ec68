"""
Typed Exception Hierarchy for the payroll calculation engines.

===============================================================================
WHAT IS RAISED AND WHAT IS NOT
===============================================================================

The engines separate two kinds of trouble:

  - Dirty historical data (unparseable hours, unknown entry types, a rate
    that would divide by zero).  These are ABSORBED: coerced to zero or
    flagged in diagnostics.  One bad row must never abort a payroll report.

  - Caller-contract violations (no employee id, an employee that is not in
    the supplied collection, a query date that is not a date).  These are
    RAISED with one of the typed exceptions below, because they point at an
    integration mistake rather than at data.

Every exception carries a static ``code`` class attribute and stores its
context as attributes so it survives logging and serialization.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PayrollEngineError (base)
    |
    +-- QueryError
    |   +-- EmployeeNotFoundError
    |   +-- InvalidQueryError
    |   +-- InvalidQueryDateError
    |
    +-- ScheduleError
    |   +-- NoWorkingDaysError
    |
    +-- PolicyError
        +-- PolicyConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category   | Code                  | When Raised
-----------|-----------------------|-------------------------------------------
Query      | EMPLOYEE_NOT_FOUND    | Employee id not in the supplied employees
           | INVALID_QUERY         | Required query argument missing
           | INVALID_QUERY_DATE    | Query date cannot be parsed
-----------|-----------------------|-------------------------------------------
Schedule   | NO_WORKING_DAYS       | Daily rate requested for a month with no
           |                       | working days for the employee
-----------|-----------------------|-------------------------------------------
Policy     | POLICY_CONFIGURATION  | Policy file holds an invalid value
"""

from datetime import date
from typing import Any


class PayrollEngineError(Exception):
    """
    Base exception for all payroll engine errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "PAYROLL_ENGINE_ERROR"


# Query (caller contract) exceptions


class QueryError(PayrollEngineError):
    """Base exception for invalid engine queries."""

    code: str = "QUERY_ERROR"


class EmployeeNotFoundError(QueryError):
    """The queried employee is not part of the supplied employees."""

    code: str = "EMPLOYEE_NOT_FOUND"

    def __init__(self, employee_id: str):
        self.employee_id = employee_id
        super().__init__(f"Employee not found: {employee_id}")


class InvalidQueryError(QueryError):
    """A required query argument is missing or empty."""

    code: str = "INVALID_QUERY"

    def __init__(self, argument: str, reason: str):
        self.argument = argument
        self.reason = reason
        super().__init__(f"Invalid query argument '{argument}': {reason}")


class InvalidQueryDateError(QueryError):
    """The primary query date cannot be interpreted as a calendar date."""

    code: str = "INVALID_QUERY_DATE"

    def __init__(self, field_name: str, value: Any):
        self.field_name = field_name
        self.value = value
        super().__init__(
            f"Cannot interpret {field_name}={value!r} as a YYYY-MM-DD date"
        )


# Schedule exceptions


class ScheduleError(PayrollEngineError):
    """Base exception for working-schedule errors."""

    code: str = "SCHEDULE_ERROR"


class NoWorkingDaysError(ScheduleError):
    """The employee has no working days in the requested month."""

    code: str = "NO_WORKING_DAYS"

    def __init__(self, employee_id: str | None, month: date):
        self.employee_id = employee_id
        self.month = month
        super().__init__(
            f"Employee {employee_id} has no working days in "
            f"{month.year}-{month.month:02d}"
        )


# Policy exceptions


class PolicyError(PayrollEngineError):
    """Base exception for policy configuration errors."""

    code: str = "POLICY_ERROR"


class PolicyConfigurationError(PolicyError):
    """A policy file contains a value that cannot be used."""

    code: str = "POLICY_CONFIGURATION"

    def __init__(self, source: str, field_name: str, reason: str):
        self.source = source
        self.field_name = field_name
        self.reason = reason
        super().__init__(f"{source}: invalid '{field_name}': {reason}")
