"""
Entry Classifier (``payroll_engines.classification``).

Responsibility
--------------
Decides, from a time entry's declared ``entry_type`` (and its optional
``payable`` flag), which aggregation bucket the entry belongs to, whether
it is leave, and whether it is payable.  Also owns the leave-kind
vocabulary shared by the valuation and balance engines: token
normalization, the leave value multiplier, and the ledger delta per kind.

Architecture position
---------------------
**Engines layer** -- pure functional core.  ZERO I/O, ZERO clock reads.

Invariants enforced
-------------------
* Unknown entry types NEVER raise: they classify as ``UNKNOWN``,
  non-leave, non-payable, non-countable, and are excluded from every
  aggregate.
* Leave is payable unless the entry says ``payable: false`` or the leave
  kind itself is unpaid.

Failure modes
-------------
* None.  Every input string (or None) yields a classification.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from functools import lru_cache

from payroll_kernel.domain.records import WorkSessionEntry

HOURS_ENTRY_TYPE = "hours"
SESSION_ENTRY_TYPE = "session"
ADJUSTMENT_ENTRY_TYPE = "adjustment"

TIME_ENTRY_LEAVE_PREFIX = "time_entry_leave"

_LEAVE_TOKEN_PREFIXES = ("time_entry_leave_", "usage_", "leave_", "policy_")

_UNPAID_SUBTYPES = frozenset({"holiday_unpaid", "vacation_unpaid"})

HALF_DAY_MULTIPLIER = Decimal("0.5")


class EntryBucket(str, Enum):
    """Aggregation bucket of a time entry."""
    WORKED_HOURS = "worked_hours"
    SESSION_COUNT = "session_count"
    ADJUSTMENT = "adjustment"
    PAID_LEAVE = "paid_leave"
    UNPAID_LEAVE = "unpaid_leave"
    UNKNOWN = "unknown"


class LeaveKind(str, Enum):
    """Kinds of leave an entry or ledger row can record."""
    SYSTEM_PAID = "system_paid"  # holiday paid by the employer, no quota use
    EMPLOYEE_PAID = "employee_paid"  # paid vacation deducted from the quota
    UNPAID = "unpaid"
    HALF_DAY = "half_day"


LEAVE_ENTRY_TYPES: dict[LeaveKind, str] = {
    LeaveKind.SYSTEM_PAID: "leave_system_paid",
    LeaveKind.EMPLOYEE_PAID: "leave_employee_paid",
    LeaveKind.UNPAID: "leave_unpaid",
    LeaveKind.HALF_DAY: "leave_half_day",
}

_ENTRY_TYPE_TO_KIND: dict[str, LeaveKind] = {
    **{entry_type: kind for kind, entry_type in LEAVE_ENTRY_TYPES.items()},
    # legacy spellings still present in historical rows
    "paid_leave": LeaveKind.SYSTEM_PAID,
    "leave": LeaveKind.UNPAID,
}

_PAYABLE_KINDS = frozenset({
    LeaveKind.SYSTEM_PAID,
    LeaveKind.EMPLOYEE_PAID,
    LeaveKind.HALF_DAY,
})


@dataclass(frozen=True)
class EntryClassification:
    """How the engines treat one entry type."""
    entry_type: str
    bucket: EntryBucket
    is_leave: bool
    is_payable: bool
    leave_kind: LeaveKind | None = None

    @property
    def is_countable(self) -> bool:
        """Whether the entry contributes to any aggregate at all."""
        return self.bucket is not EntryBucket.UNKNOWN

    @property
    def is_paid_leave(self) -> bool:
        return self.bucket is EntryBucket.PAID_LEAVE


# ---------------------------------------------------------------------------
# Leave vocabulary
# ---------------------------------------------------------------------------


def normalize_leave_token(value: str | None) -> str | None:
    """Strip the known leave prefixes from a leave type token."""
    if not isinstance(value, str):
        return None
    token = value.strip()
    if not token:
        return None
    for prefix in _LEAVE_TOKEN_PREFIXES:
        if token.startswith(prefix):
            return token[len(prefix):]
    return token


def leave_base_kind(value: str | None) -> LeaveKind | None:
    """Resolve a leave type token (``usage_half_day``, ``holiday_unpaid``...)."""
    token = normalize_leave_token(value)
    if token is None:
        return None
    if token in _UNPAID_SUBTYPES:
        return LeaveKind.UNPAID
    try:
        return LeaveKind(token)
    except ValueError:
        return None


def leave_kind_for_entry_type(entry_type: str | None) -> LeaveKind | None:
    if not entry_type:
        return None
    return _ENTRY_TYPE_TO_KIND.get(entry_type)


def is_leave_entry_type(entry_type: str | None) -> bool:
    return leave_kind_for_entry_type(entry_type) is not None


def is_payable_leave_kind(kind: LeaveKind | None) -> bool:
    return kind in _PAYABLE_KINDS


def leave_ledger_delta(kind: LeaveKind | None) -> Decimal:
    """Quota days consumed by one day of this kind of leave (as a delta)."""
    if kind is LeaveKind.EMPLOYEE_PAID:
        return Decimal("-1")
    if kind is LeaveKind.HALF_DAY:
        return -HALF_DAY_MULTIPLIER
    return Decimal("0")


def leave_value_multiplier(entry: WorkSessionEntry) -> Decimal:
    """Fraction of a full leave day's value an entry is worth.

    An explicit positive ``leave_fraction`` wins; half-day leave is worth
    0.5; everything else is a full day.
    """
    if entry.leave_fraction is not None and entry.leave_fraction > 0:
        return entry.leave_fraction
    if leave_kind_for_entry_type(entry.entry_type) is LeaveKind.HALF_DAY:
        return HALF_DAY_MULTIPLIER
    return Decimal("1")


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


@lru_cache(maxsize=256)
def _classify_type(entry_type: str, payable: bool | None) -> EntryClassification:
    if entry_type == HOURS_ENTRY_TYPE:
        return EntryClassification(entry_type, EntryBucket.WORKED_HOURS, False, payable is not False)
    if entry_type == SESSION_ENTRY_TYPE:
        return EntryClassification(entry_type, EntryBucket.SESSION_COUNT, False, payable is not False)
    if entry_type == ADJUSTMENT_ENTRY_TYPE:
        return EntryClassification(entry_type, EntryBucket.ADJUSTMENT, False, payable is not False)

    kind = leave_kind_for_entry_type(entry_type)
    if kind is None:
        return EntryClassification(entry_type, EntryBucket.UNKNOWN, False, False)

    is_payable = payable is not False and is_payable_leave_kind(kind)
    bucket = EntryBucket.PAID_LEAVE if is_payable else EntryBucket.UNPAID_LEAVE
    return EntryClassification(entry_type, bucket, True, is_payable, kind)


def classify(entry_type: str | None, payable: bool | None = None) -> EntryClassification:
    """Classify an entry type, honoring an explicit ``payable`` flag."""
    return _classify_type(entry_type or "", payable)


def classify_entry(entry: WorkSessionEntry) -> EntryClassification:
    return classify(entry.entry_type, entry.payable)
