"""
Module: payroll_engines.leave_balance
Responsibility:
    Compute an employee's annual leave quota and remaining balance as of a
    date, from the employee's hire date, nominal annual quota and a ledger
    of signed, dated balance deltas.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    The ledger is read-only here; writing new deltas is the caller's job
    (``build_ledger_entry_for`` only derives the row to write).

Invariants enforced:
    - Balances are derived, never stored: every call re-sums the ledger, so
      identical inputs always give identical summaries.
    - Accounting is per calendar year.  The hire year's quota is prorated
      by the days remaining in that year (leap years counted).
    - Carry-in is never negative and never exceeds ``carryover_max_days``.
    - ``remaining`` is floored to the ledger resolution: half days when the
      policy allows them, whole days otherwise.
    - Other summary fields keep three decimal places.

Failure modes:
    - InvalidQueryError when the employee id is missing.
    - InvalidQueryDateError when the query date cannot be parsed.
    - EmployeeNotFoundError when the employee is not in ``employees``.
    - Ledger rows without a usable date are ignored.

Audit relevance:
    The remaining balance gates leave approvals; each computation is traced
    via ``@traced_engine``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Any

from payroll_config.schema import DEFAULT_LEAVE_POLICY, LeavePolicy
from payroll_engines.classification import (
    HALF_DAY_MULTIPLIER,
    TIME_ENTRY_LEAVE_PREFIX,
    LeaveKind,
    leave_base_kind,
    leave_kind_for_entry_type,
    leave_ledger_delta,
)
from payroll_engines.tracer import traced_engine
from payroll_kernel.domain.calendar import days_in_year, require_date
from payroll_kernel.domain.records import (
    Employee,
    LeaveLedgerEntry,
    WorkSessionEntry,
    index_by_id,
    load_records,
)
from payroll_kernel.domain.values import ZERO
from payroll_kernel.exceptions import EmployeeNotFoundError, InvalidQueryError
from payroll_kernel.logging_config import LogContext, get_logger

logger = get_logger("engines.leave_balance")

_THREE_PLACES = Decimal("0.001")


def _q(value: Decimal) -> Decimal:
    return value.quantize(_THREE_PLACES, rounding=ROUND_HALF_UP)


def floor_to_granularity(value: Decimal, granularity: Decimal) -> Decimal:
    """Largest multiple of ``granularity`` not above ``value``."""
    steps = (value / granularity).to_integral_value(rounding=ROUND_FLOOR)
    return _q(steps * granularity)


@dataclass(frozen=True)
class LeaveSummary:
    """
    Leave position of one employee as of a date.

    Contract:
        ``quota`` includes ``carry_in``; ``adjustments`` is the net ledger
        delta of the year up to the query date; ``allocations`` is the base
        quota plus positive ledger deltas.
    """

    year: int
    quota: Decimal = ZERO
    remaining: Decimal = ZERO
    used: Decimal = ZERO
    carry_in: Decimal = ZERO
    allocations: Decimal = ZERO
    adjustments: Decimal = ZERO
    granularity: Decimal = Decimal("1")


def base_quota_for_year(employee: Employee, year: int) -> Decimal:
    """
    Nominal quota of ``year`` before carryover.

    Full quota for years after the hire year (or without a hire date), a
    share proportional to the days left in the year for the hire year, and
    nothing before it.
    """
    annual = employee.annual_leave_days
    if not annual or annual <= 0:
        return ZERO
    start = employee.start_date
    if start is None or start.year < year:
        return annual
    if start.year > year:
        return ZERO
    remaining_days = (date(year, 12, 31) - start).days + 1
    return annual * remaining_days / days_in_year(year)


def ledger_delta(entry: LeaveLedgerEntry, policy: LeavePolicy) -> Decimal:
    """Signed delta of a ledger row; half-day usage is exactly 0.5 day."""
    if (
        policy.allow_half_day
        and entry.balance < 0
        and leave_base_kind(entry.leave_type) is LeaveKind.HALF_DAY
    ):
        return -HALF_DAY_MULTIPLIER
    return entry.balance


def _entries_for_year(
    employee_id: str,
    year: int,
    ledger: Iterable[LeaveLedgerEntry],
    up_to: date | None,
) -> list[LeaveLedgerEntry]:
    return [
        entry
        for entry in ledger
        if entry.employee_id == employee_id
        and entry.effective_date is not None
        and entry.effective_date.year == year
        and (up_to is None or entry.effective_date <= up_to)
    ]


def compute_leave_summary(
    employee: Employee,
    as_of: date,
    ledger: Iterable[LeaveLedgerEntry],
    policy: LeavePolicy | None = None,
) -> LeaveSummary:
    """Walk calendar years from the hire year to ``as_of``'s year."""
    policy = policy or DEFAULT_LEAVE_POLICY
    granularity = policy.granularity
    if employee.start_date is not None and as_of < employee.start_date:
        return LeaveSummary(year=as_of.year, granularity=granularity)

    ledger = tuple(ledger)
    first_year = employee.start_date.year if employee.start_date else as_of.year
    carry = ZERO
    summary = LeaveSummary(year=as_of.year, granularity=granularity)

    for year in range(first_year, as_of.year + 1):
        is_current = year == as_of.year
        deltas = [
            ledger_delta(entry, policy)
            for entry in _entries_for_year(
                employee.id, year, ledger, as_of if is_current else None,
            )
        ]
        base_quota = base_quota_for_year(employee, year)
        quota = base_quota + carry
        net = sum(deltas, ZERO)
        balance = quota + net

        if is_current:
            summary = LeaveSummary(
                year=year,
                quota=_q(quota),
                remaining=floor_to_granularity(balance, granularity),
                used=_q(sum((-d for d in deltas if d < 0), ZERO)),
                carry_in=_q(carry),
                allocations=_q(base_quota + sum((d for d in deltas if d > 0), ZERO)),
                adjustments=_q(net),
                granularity=granularity,
            )
        elif policy.carryover_enabled:
            carry = max(ZERO, min(balance, policy.carryover_max_days))
        else:
            carry = ZERO

    return summary


def _resolve_employee(employee_id: str, employees: Iterable[Any] | None) -> Employee:
    if not employee_id:
        raise InvalidQueryError("employee_id", "an employee id is required")
    employee = index_by_id(load_records(Employee, employees)).get(employee_id)
    if employee is None:
        raise EmployeeNotFoundError(employee_id)
    return employee


@traced_engine("leave_balance", "1.0", fingerprint_fields=("employee_id", "as_of"))
def compute_leave_remaining(
    employee_id: str,
    as_of: date | str,
    *,
    employees: Iterable[Any] | None,
    ledger: Iterable[Any] | None,
    policy: LeavePolicy | None = None,
) -> LeaveSummary:
    """
    Quota and remaining balance of an employee as of a date.

    Raises:
        InvalidQueryError: ``employee_id`` is empty.
        InvalidQueryDateError: ``as_of`` is not a date.
        EmployeeNotFoundError: the employee is not in ``employees``.
    """
    target = require_date(as_of, "as_of")
    employee = _resolve_employee(employee_id, employees)
    with LogContext.bind(employee_id=employee_id):
        return compute_leave_summary(
            employee, target, load_records(LeaveLedgerEntry, ledger), policy,
        )


# ---------------------------------------------------------------------------
# Projections and ledger rows
# ---------------------------------------------------------------------------


def negative_balance_floor(policy: LeavePolicy | None = None) -> Decimal:
    """Lowest balance the policy tolerates (0 unless negatives are allowed)."""
    policy = policy or DEFAULT_LEAVE_POLICY
    if not policy.allow_negative_balance:
        return ZERO
    return -abs(policy.negative_floor_days)


@dataclass(frozen=True)
class BalanceProjection:
    summary: LeaveSummary
    delta: Decimal
    projected_remaining: Decimal
    floor: Decimal

    @property
    def breaches_floor(self) -> bool:
        return self.projected_remaining < self.floor


def project_balance_after_change(
    employee_id: str,
    as_of: date | str,
    delta: Decimal,
    *,
    employees: Iterable[Any] | None,
    ledger: Iterable[Any] | None,
    policy: LeavePolicy | None = None,
) -> BalanceProjection:
    """Remaining balance if a delta of ``delta`` days were booked on ``as_of``."""
    summary = compute_leave_remaining(
        employee_id, as_of, employees=employees, ledger=ledger, policy=policy,
    )
    projected = _q(summary.remaining + Decimal(delta))
    projection = BalanceProjection(
        summary=summary,
        delta=Decimal(delta),
        projected_remaining=projected,
        floor=negative_balance_floor(policy),
    )
    if projection.breaches_floor:
        logger.info("leave_balance_floor_breached", extra={
            "employee_id": employee_id,
            "projected_remaining": projected,
            "floor": projection.floor,
        })
    return projection


def build_ledger_entry_for(entry: WorkSessionEntry) -> LeaveLedgerEntry | None:
    """
    Ledger row a leave time entry should produce, or None.

    Non-leave entries and entries without an employee or date produce no
    row.  Persisting the row is up to the caller.
    """
    kind = leave_kind_for_entry_type(entry.entry_type)
    if kind is None or not entry.employee_id or entry.work_date is None:
        return None
    return LeaveLedgerEntry(
        employee_id=entry.employee_id,
        effective_date=entry.work_date,
        balance=leave_ledger_delta(kind),
        leave_type=f"{TIME_ENTRY_LEAVE_PREFIX}_{kind.value}",
        source_entry_id=entry.entry_id,
    )
