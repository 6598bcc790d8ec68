"""
Records -- Immutable input records for the calculation engines.

Responsibility:
    Frozen dataclass value objects for the collections the engines consume:
    employees, services, work-session (time) entries, and leave ledger
    rows.  Each record has a ``from_mapping`` constructor that is the single
    boundary where raw API rows become typed values.

Architecture position:
    Kernel > Domain -- pure data definitions with ZERO I/O.  Consumed by
    every engine in ``payroll_engines``.

Invariants enforced:
    * All records are ``frozen=True`` (read-only inputs; the surrounding
      application owns and mutates the source rows).
    * All hour, count and money fields are ``Decimal`` or ``None``.
    * All dates are ``datetime.date`` or ``None``.
    * Fields that failed to parse are listed in ``coercion_issues`` and the
      engines treat them as zero.

Failure modes
-------------
* ``from_mapping`` never raises for dirty values; it logs a
  ``record_coercion_issues`` warning and records the field names.
* Direct construction with a negative ``duration_minutes`` raises
  ``ValueError``.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, TypeVar

from payroll_kernel.domain.calendar import Weekday, normalize_date, normalize_weekdays
from payroll_kernel.domain.values import coerce_bool, coerce_decimal, coerce_text
from payroll_kernel.logging_config import get_logger

logger = get_logger("domain.records")

R = TypeVar("R")


class EmployeeType(str, Enum):
    """How an employee is paid and therefore how their time is recorded."""
    HOURLY = "hourly"
    GLOBAL = "global"  # monthly salary, tracked in effective days
    INSTRUCTOR = "instructor"  # paid per session of a service


class EmploymentScope(str, Enum):
    """Contracted share of a full-time position."""
    FULL_TIME = "full_time"
    HALF_TIME = "half_time"
    THREE_QUARTERS_TIME = "three_quarters_time"
    QUARTER_TIME = "quarter_time"

    @classmethod
    def parse(cls, value: Any) -> EmploymentScope | None:
        """Accept the system value in any case, or its Hebrew display label."""
        if isinstance(value, EmploymentScope):
            return value
        if not isinstance(value, str) or not value.strip():
            return None
        text = value.strip()
        try:
            return cls(text.lower())
        except ValueError:
            return _SCOPE_LABELS.get(text)


_SCOPE_LABELS = {
    "משרה מלאה": EmploymentScope.FULL_TIME,
    "חצי משרה": EmploymentScope.HALF_TIME,
    "75% משרה": EmploymentScope.THREE_QUARTERS_TIME,
    "25% משרה": EmploymentScope.QUARTER_TIME,
}


class _Issues:
    """Collects the names of fields that failed to parse."""

    def __init__(self) -> None:
        self.fields: list[str] = []

    def decimal(self, name: str, value: Any) -> Decimal | None:
        parsed = coerce_decimal(value)
        if not parsed.is_valid:
            self.fields.append(name)
        return parsed.value

    def first_decimal(self, name: str, *values: Any) -> Decimal | None:
        """First candidate that parses to a number; flags garbage only."""
        invalid = False
        for value in values:
            parsed = coerce_decimal(value)
            if parsed.value is not None:
                return parsed.value
            invalid = invalid or not parsed.is_valid
        if invalid:
            self.fields.append(name)
        return None

    def date(self, name: str, value: Any) -> date | None:
        parsed = normalize_date(value)
        if parsed is None and value not in (None, ""):
            self.fields.append(name)
        return parsed

    def report(self, record_type: str, record_id: Any) -> tuple[str, ...]:
        if self.fields:
            logger.warning("record_coercion_issues", extra={
                "record_type": record_type,
                "record_id": str(record_id) if record_id is not None else None,
                "fields": list(self.fields),
            })
        return tuple(self.fields)


def _parse_metadata(value: Any) -> Mapping[str, Any]:
    if isinstance(value, Mapping):
        return value
    if isinstance(value, str) and value.strip():
        try:
            parsed = json.loads(value)
        except ValueError:
            logger.warning("record_metadata_unparseable", extra={
                "length": len(value),
            })
            return {}
        if isinstance(parsed, dict):
            return parsed
    return {}


def _employee_type(value: Any) -> EmployeeType | str:
    text = coerce_text(value) or ""
    try:
        return EmployeeType(text.lower())
    except ValueError:
        return text


# ---------------------------------------------------------------------------
# Employees and services
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Employee:
    """An employee as seen by the engines.

    ``employee_type`` is kept as the raw string when it is not a known
    ``EmployeeType`` so that type filters simply never match it.
    """
    id: str
    employee_type: EmployeeType | str
    start_date: date | None = None
    annual_leave_days: Decimal | None = None
    leave_pay_method: str | None = None
    leave_fixed_day_rate: Decimal | None = None
    working_days: frozenset[Weekday] | None = None
    employment_scope: EmploymentScope | None = None
    coercion_issues: tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> Employee:
        issues = _Issues()
        employee_id = coerce_text(row.get("id")) or ""
        start_date = issues.date("start_date", row.get("start_date"))
        annual_leave_days = issues.decimal(
            "annual_leave_days", row.get("annual_leave_days"),
        )
        fixed_day_rate = issues.first_decimal(
            "leave_fixed_day_rate",
            row.get("leave_fixed_day_rate"),
            row.get("fixed_day_rate"),
        )
        return cls(
            id=employee_id,
            employee_type=_employee_type(row.get("employee_type")),
            start_date=start_date,
            annual_leave_days=annual_leave_days,
            leave_pay_method=coerce_text(row.get("leave_pay_method")),
            leave_fixed_day_rate=fixed_day_rate,
            working_days=normalize_weekdays(row.get("working_days")),
            employment_scope=EmploymentScope.parse(row.get("employment_scope")),
            coercion_issues=issues.report("employee", employee_id),
        )

    def is_type(self, employee_type: EmployeeType | str) -> bool:
        return self.employee_type == employee_type


@dataclass(frozen=True)
class Service:
    """A service offered by instructors, with its session length."""
    id: str
    duration_minutes: Decimal | None = None

    def __post_init__(self) -> None:
        if self.duration_minutes is not None and self.duration_minutes < 0:
            raise ValueError(
                f"Service duration cannot be negative: {self.duration_minutes}"
            )

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> Service:
        issues = _Issues()
        service_id = coerce_text(row.get("id")) or ""
        duration = issues.decimal("duration_minutes", row.get("duration_minutes"))
        issues.report("service", service_id)
        if duration is not None and duration < 0:
            duration = None
        return cls(id=service_id, duration_minutes=duration)

    @property
    def duration_hours(self) -> Decimal | None:
        if not self.duration_minutes:
            return None
        return self.duration_minutes / Decimal("60")


# ---------------------------------------------------------------------------
# Time entries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkSessionEntry:
    """A single time entry (hours, sessions, adjustment, or leave) on one date.

    Exactly one of ``hours`` / ``sessions_count`` is meaningful for a given
    ``entry_type``; the classifier decides which.
    """
    employee_id: str | None
    work_date: date | None
    entry_type: str
    hours: Decimal | None = None
    sessions_count: Decimal | None = None
    service_id: str | None = None
    total_payment: Decimal | None = None
    payable: bool | None = None
    rate_used: Decimal | None = None  # monthly rate snapshot for global staff
    session_type: str | None = None  # legacy session length code
    leave_fraction: Decimal | None = None
    deleted: bool = False
    entry_id: str | None = None
    coercion_issues: tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> WorkSessionEntry:
        issues = _Issues()
        metadata = _parse_metadata(row.get("metadata"))
        entry_id = coerce_text(row.get("id"))
        fields = {
            "employee_id": coerce_text(row.get("employee_id")),
            "work_date": issues.date("date", row.get("date")),
            "entry_type": coerce_text(row.get("entry_type")) or "",
            "hours": issues.decimal("hours", row.get("hours")),
            "sessions_count": issues.decimal("sessions_count", row.get("sessions_count")),
            "service_id": coerce_text(row.get("service_id")),
            "total_payment": issues.decimal("total_payment", row.get("total_payment")),
            "payable": coerce_bool(row.get("payable")),
            "rate_used": issues.decimal("rate_used", row.get("rate_used")),
            "session_type": coerce_text(row.get("session_type")),
            "leave_fraction": issues.first_decimal(
                "leave_fraction",
                row.get("leave_fraction"),
                row.get("fraction"),
                metadata.get("leave_fraction"),
                metadata.get("fraction"),
            ),
            "deleted": bool(coerce_bool(row.get("deleted"))),
            "entry_id": entry_id,
        }
        return cls(
            **fields,
            coercion_issues=issues.report("work_session_entry", entry_id),
        )

    @property
    def is_active(self) -> bool:
        """Not soft-deleted and placeable on the calendar."""
        return not self.deleted and self.work_date is not None


# ---------------------------------------------------------------------------
# Leave ledger
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LeaveLedgerEntry:
    """A signed leave-balance delta (positive = allocation, negative = usage)."""
    employee_id: str | None
    effective_date: date | None
    balance: Decimal
    leave_type: str | None = None
    source_entry_id: str | None = None  # time entry the row was derived from
    coercion_issues: tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> LeaveLedgerEntry:
        issues = _Issues()
        raw_date = next(
            (
                row.get(key)
                for key in ("effective_date", "date", "entry_date", "change_date", "created_at")
                if row.get(key)
            ),
            None,
        )
        balance = issues.first_decimal(
            "balance",
            row.get("balance"),
            row.get("days_delta"),
            row.get("delta_days"),
            row.get("delta"),
            row.get("amount"),
            row.get("days"),
        )
        leave_type = next(
            (
                coerce_text(row.get(key))
                for key in ("leave_type", "source", "type", "reason")
                if coerce_text(row.get(key))
            ),
            None,
        )
        effective_date = issues.date("effective_date", raw_date)
        return cls(
            employee_id=coerce_text(row.get("employee_id")),
            effective_date=effective_date,
            balance=balance if balance is not None else Decimal("0"),
            leave_type=leave_type,
            source_entry_id=coerce_text(row.get("work_session_id")),
            coercion_issues=issues.report("leave_ledger_entry", row.get("id")),
        )


# ---------------------------------------------------------------------------
# Collection helpers
# ---------------------------------------------------------------------------


def load_records(
    record_type: type[R],
    rows: Iterable[Mapping[str, Any] | R | None] | None,
) -> tuple[R, ...]:
    """Build a tuple of records from raw rows, passing typed records through.

    ``None`` items are skipped.
    """
    if not rows:
        return ()
    records: list[R] = []
    for row in rows:
        if row is None:
            continue
        if isinstance(row, record_type):
            records.append(row)
        else:
            records.append(record_type.from_mapping(row))  # type: ignore[attr-defined]
    return tuple(records)


def index_by_id(records: Iterable[Employee] | Iterable[Service]) -> dict[str, Any]:
    """Map record id to record; later duplicates do not replace earlier ones."""
    index: dict[str, Any] = {}
    for record in records:
        if record.id and record.id not in index:
            index[record.id] = record
    return index
