"""
Shared pytest fixtures: JSON logging for the whole session, a log capture
helper, and a few small employees/services/policies used across modules.
"""

import json
import logging
from datetime import date
from decimal import Decimal

import pytest

from payroll_config.schema import HolidayRule, LeavePayMethod, LeavePayPolicy, LeavePolicy
from payroll_kernel.domain.records import Employee, EmployeeType, Service
from payroll_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)


@pytest.fixture(autouse=True, scope="session")
def _json_logging():
    reset_logging()
    configure_logging(level="DEBUG")
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _empty_log_context():
    LogContext.clear()
    yield
    LogContext.clear()


class _LogCapture(logging.Handler):
    """Keeps every formatted record as a parsed dict."""

    def __init__(self) -> None:
        super().__init__(level=logging.DEBUG)
        self.setFormatter(StructuredFormatter())
        self.records: list[dict] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(json.loads(self.format(record)))


@pytest.fixture
def captured_logs():
    """Callable returning the payroll_kernel records logged so far in the test.

        def test_trace(captured_logs):
            compute_period_totals(entries, employees, "2024-04-01", "2024-04-30")
            assert captured_logs()[-1]["message"] == "PAYROLL_ENGINE_TRACE"
    """
    capture = _LogCapture()
    root = logging.getLogger("payroll_kernel")
    saved_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(capture)
    yield lambda: list(capture.records)
    root.removeHandler(capture)
    root.setLevel(saved_level)


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def staff() -> tuple[Employee, ...]:
    """One employee of each pay type."""
    return (
        Employee(id="g1", employee_type=EmployeeType.GLOBAL),
        Employee(id="g2", employee_type=EmployeeType.GLOBAL),
        Employee(id="h1", employee_type=EmployeeType.HOURLY),
        Employee(id="i1", employee_type=EmployeeType.INSTRUCTOR),
    )


@pytest.fixture
def hour_service() -> Service:
    return Service(id="s1", duration_minutes=Decimal("60"))


@pytest.fixture
def half_day_policy() -> LeavePolicy:
    return LeavePolicy(
        allow_half_day=True,
        allow_negative_balance=True,
        negative_floor_days=Decimal("3"),
        carryover_enabled=True,
        carryover_max_days=Decimal("5"),
        holiday_rules=(
            HolidayRule(
                id="rule-1",
                name="Independence Day",
                type="system_paid",
                start_date=date(2025, 5, 11),
                end_date=date(2025, 5, 11),
            ),
            HolidayRule(
                id="rule-2",
                name="Holiday eve",
                type="half_day",
                start_date=date(2025, 4, 21),
                end_date=date(2025, 4, 21),
            ),
        ),
    )


@pytest.fixture
def legal_12m_policy() -> LeavePayPolicy:
    return LeavePayPolicy(
        default_method=LeavePayMethod.LEGAL,
        lookback_months=3,
        legal_allow_12m_if_better=True,
        fixed_rate_default=Decimal("360"),
    )
