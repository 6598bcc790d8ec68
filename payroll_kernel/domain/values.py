"""
Values -- Boundary coercion of raw numeric and boolean fields.

Responsibility:
    Turns the loosely typed values found in API rows (numbers, numeric
    strings, ``None``, garbage) into ``Decimal`` and ``bool`` values plus an
    explicit validity flag.  This is the only place dynamic coercion
    happens; everything past the record constructors works on typed values.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Hours, counts and money are ``Decimal``, never ``float``.  Floats are
      converted through ``str()`` so ``0.1`` becomes ``Decimal("0.1")``.
    - NaN and infinities are rejected as invalid, never propagated.

Failure modes:
    - None.  Invalid inputs yield ``ParsedDecimal(None, is_valid=False)``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

ZERO = Decimal("0")

_TRUE_TOKENS = frozenset({"true", "1", "yes", "paid"})
_FALSE_TOKENS = frozenset({"false", "0", "no", "unpaid"})


@dataclass(frozen=True, slots=True)
class ParsedDecimal:
    """
    Result of coercing a raw field to ``Decimal``.

    Contract:
        ``value`` is None when the field was absent or unparseable;
        ``is_valid`` distinguishes the two.
    """

    value: Decimal | None
    is_valid: bool = True

    def or_zero(self) -> Decimal:
        return self.value if self.value is not None else ZERO


def coerce_decimal(value: Any) -> ParsedDecimal:
    """Coerce a raw value to a finite ``Decimal``.

    ``None`` and blank strings are treated as an absent field (valid).
    Booleans are rejected: ``True`` is not a number of hours.
    """
    if value is None:
        return ParsedDecimal(None)
    if isinstance(value, bool):
        return ParsedDecimal(None, is_valid=False)
    if isinstance(value, Decimal):
        candidate = value
    elif isinstance(value, (int, float)):
        candidate = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return ParsedDecimal(None)
        try:
            candidate = Decimal(text)
        except InvalidOperation:
            return ParsedDecimal(None, is_valid=False)
    else:
        return ParsedDecimal(None, is_valid=False)

    if not candidate.is_finite():
        return ParsedDecimal(None, is_valid=False)
    return ParsedDecimal(candidate)


def coerce_bool(value: Any) -> bool | None:
    """Coerce a raw flag; None when the value carries no boolean meaning."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, Decimal)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        token = value.strip().lower()
        if token in _TRUE_TOKENS:
            return True
        if token in _FALSE_TOKENS:
            return False
    return None


def coerce_text(value: Any) -> str | None:
    """Strip a string field; empty and non-string values become None."""
    if isinstance(value, str):
        text = value.strip()
        return text or None
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return None
