"""
Policy Loader (``payroll_config.loader``).

Responsibility
--------------
Parses leave policies from YAML files and from the loosely typed values
stored in an organization's settings table into the typed
``payroll_config.schema`` structs.

Architecture position
---------------------
**Config layer** -- sits between the caller's settings fetch and the
engines.  Callers resolve policies once with these functions and pass the
typed structs into every engine call; engines never look settings up by
key themselves.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Settings values (``parse_*``) are lenient: a malformed field falls back
  to the documented default and logs ``policy_field_defaulted``.
* Policy files (``load_policy_file``) are strict: a malformed field raises
  ``PolicyConfigurationError``.
* ``compute_checksum`` produces a deterministic SHA-256 hash of a bundle.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML file  -> ``yaml.YAMLError`` propagates.
* Invalid field in a policy file  -> ``PolicyConfigurationError``.
* Malformed settings value  -> default policy, warning logged.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping, Sequence
from dataclasses import asdict, replace
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any

import yaml

from payroll_config.schema import (
    DEFAULT_LEAVE_PAY_POLICY,
    DEFAULT_LEAVE_POLICY,
    MAX_LOOKBACK_MONTHS,
    YEARLY_RECURRENCE,
    HolidayRule,
    LeavePayMethod,
    LeavePayPolicy,
    LeavePolicy,
    PolicyBundle,
)
from payroll_kernel.domain.calendar import normalize_date
from payroll_kernel.domain.values import coerce_bool, coerce_decimal, coerce_text
from payroll_kernel.exceptions import PolicyConfigurationError
from payroll_kernel.logging_config import get_logger

logger = get_logger("config.loader")

LEAVE_POLICY_KEY = "leave_policy"
LEAVE_PAY_POLICY_KEY = "leave_pay_policy"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_date(value: Any) -> date:
    """
    Parse a date from YAML (string or date object).

    Raises:
        ValueError: if ``value`` is not a valid date representation.
    """
    parsed = normalize_date(value)
    if parsed is None:
        raise ValueError(f"Cannot parse date from {value!r}")
    return parsed


class _FieldReader:
    """Reads policy fields, either defaulting (lenient) or raising (strict)."""

    def __init__(self, data: Mapping[str, Any], source: str, strict: bool):
        self.data = data
        self.source = source
        self.strict = strict

    def reject(self, name: str, reason: str) -> None:
        if self.strict:
            raise PolicyConfigurationError(self.source, name, reason)
        logger.warning("policy_field_defaulted", extra={
            "source": self.source,
            "field": name,
            "reason": reason,
        })

    def flag(self, name: str) -> bool:
        raw = self.data.get(name)
        if raw is None:
            return False
        parsed = coerce_bool(raw)
        if parsed is None:
            self.reject(name, f"not a boolean: {raw!r}")
            return False
        return parsed

    def non_negative(self, name: str, default: Decimal | None) -> Decimal | None:
        raw = self.data.get(name)
        parsed = coerce_decimal(raw)
        if parsed.value is None:
            if not parsed.is_valid:
                self.reject(name, f"not a number: {raw!r}")
            return default
        if parsed.value < 0:
            self.reject(name, f"cannot be negative: {parsed.value}")
            return default
        return parsed.value


def _as_mapping(value: Any, source: str) -> Mapping[str, Any]:
    """Unwrap a settings value that may be a mapping or a JSON/YAML string."""
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return value
    if isinstance(value, str):
        try:
            loaded = yaml.safe_load(value)
        except yaml.YAMLError:
            logger.warning("policy_value_unparseable", extra={"source": source})
            return {}
        if isinstance(loaded, Mapping):
            return loaded
    logger.warning("policy_value_unparseable", extra={
        "source": source,
        "value_type": type(value).__name__,
    })
    return {}


# ---------------------------------------------------------------------------
# Holiday rules
# ---------------------------------------------------------------------------


def parse_holiday_rule(
    data: Mapping[str, Any],
    position: int,
    *,
    source: str = "settings",
    strict: bool = False,
) -> HolidayRule | None:
    """
    Parse one holiday rule.

    A rule without a start date cannot match anything and is dropped (or
    rejected in strict mode).  A single ``date`` key is shorthand for a
    one-day rule.  Rules without an id get a positional id (``rule-1``...).
    """
    reader = _FieldReader(data, source, strict)
    start = normalize_date(data.get("start_date") or data.get("date"))
    end = normalize_date(data.get("end_date") or data.get("date")) or start
    if start is None or end is None:
        reader.reject(f"holiday_rules[{position}].start_date", "missing or invalid date")
        return None
    if end < start:
        reader.reject(
            f"holiday_rules[{position}].end_date",
            f"{end} precedes start_date {start}",
        )
        return None

    rule_type = coerce_text(data.get("type")) or "employee_paid"
    recurrence = coerce_text(data.get("recurrence"))
    if recurrence is not None and recurrence != YEARLY_RECURRENCE:
        reader.reject(
            f"holiday_rules[{position}].recurrence",
            f"unsupported recurrence {recurrence!r}",
        )
        recurrence = None

    return HolidayRule(
        id=coerce_text(data.get("id")) or f"rule-{position + 1}",
        name=coerce_text(data.get("name")) or "",
        type=rule_type,
        start_date=start,
        end_date=end,
        recurrence=recurrence,
        half_day=bool(coerce_bool(data.get("half_day"))),
    )


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


def _floor_days(reader: _FieldReader) -> Decimal:
    """Negative balance floor as a magnitude; ``3`` and ``-3`` both mean -3 days."""
    raw = reader.data.get("negative_floor_days")
    parsed = coerce_decimal(raw)
    if parsed.value is None:
        if not parsed.is_valid:
            reader.reject("negative_floor_days", f"not a number: {raw!r}")
        return Decimal("0")
    return abs(parsed.value)


def parse_leave_policy(
    value: Any,
    *,
    source: str = LEAVE_POLICY_KEY,
    strict: bool = False,
) -> LeavePolicy:
    """
    Parse a ``LeavePolicy`` from a mapping or a JSON/YAML string.

    Rule order is preserved exactly as given.
    """
    data = _as_mapping(value, source)
    if not data:
        return DEFAULT_LEAVE_POLICY
    reader = _FieldReader(data, source, strict)

    raw_rules = data.get("holiday_rules") or []
    if not isinstance(raw_rules, Sequence) or isinstance(raw_rules, str):
        reader.reject("holiday_rules", "must be a list")
        raw_rules = []
    rules: list[HolidayRule] = []
    for position, raw in enumerate(raw_rules):
        if not isinstance(raw, Mapping):
            reader.reject(f"holiday_rules[{position}]", "must be a mapping")
            continue
        rule = parse_holiday_rule(raw, position, source=source, strict=strict)
        if rule is not None:
            rules.append(rule)

    return LeavePolicy(
        allow_half_day=reader.flag("allow_half_day"),
        allow_negative_balance=reader.flag("allow_negative_balance"),
        negative_floor_days=_floor_days(reader),
        carryover_enabled=reader.flag("carryover_enabled"),
        carryover_max_days=reader.non_negative("carryover_max_days", Decimal("0")),
        holiday_rules=tuple(rules),
    )


def _lookback_months(reader: _FieldReader) -> int:
    raw = reader.data.get("lookback_months")
    parsed = coerce_decimal(raw)
    if parsed.value is None:
        if not parsed.is_valid:
            reader.reject("lookback_months", f"not a number: {raw!r}")
        return DEFAULT_LEAVE_PAY_POLICY.lookback_months
    months = int(parsed.value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if not 1 <= months <= MAX_LOOKBACK_MONTHS:
        reader.reject(
            "lookback_months",
            f"must be between 1 and {MAX_LOOKBACK_MONTHS}, got {parsed.value}",
        )
        return DEFAULT_LEAVE_PAY_POLICY.lookback_months
    return months


def parse_leave_pay_policy(
    value: Any,
    *,
    source: str = LEAVE_PAY_POLICY_KEY,
    strict: bool = False,
) -> LeavePayPolicy:
    """
    Parse a ``LeavePayPolicy`` from a mapping or a JSON/YAML string.

    An unknown ``default_method`` falls back to ``legal``; a
    ``lookback_months`` outside 1..120 falls back to 3 and fractional months
    are rounded.
    """
    data = _as_mapping(value, source)
    if not data:
        return DEFAULT_LEAVE_PAY_POLICY
    reader = _FieldReader(data, source, strict)

    raw_method = data.get("default_method")
    method = LeavePayMethod.parse(raw_method)
    if method is None:
        if raw_method is not None:
            reader.reject("default_method", f"unknown method {raw_method!r}")
        method = DEFAULT_LEAVE_PAY_POLICY.default_method

    return LeavePayPolicy(
        default_method=method,
        lookback_months=_lookback_months(reader),
        legal_allow_12m_if_better=reader.flag("legal_allow_12m_if_better"),
        fixed_rate_default=reader.non_negative(
            "fixed_rate_default", DEFAULT_LEAVE_PAY_POLICY.fixed_rate_default,
        ),
    )


def _settings_value(settings: Any, key: str) -> Any:
    """Find ``key`` in a settings mapping or a list of settings rows."""
    if isinstance(settings, Mapping):
        return settings.get(key)
    if isinstance(settings, Sequence) and not isinstance(settings, str):
        for record in settings:
            if isinstance(record, Mapping) and record.get("key") == key:
                for field_name in ("settings_value", "value", key):
                    if record.get(field_name) is not None:
                        return record[field_name]
                return None
    return None


def resolve_leave_pay_policy(
    leave_pay_policy: LeavePayPolicy | Mapping[str, Any] | str | None = None,
    settings: Any = None,
) -> LeavePayPolicy:
    """
    Resolve the leave pay policy once, for the caller to pass into engines.

    Precedence: an explicit policy, then the ``leave_pay_policy`` key of a
    settings mapping or settings-row list, then the default policy.
    """
    if isinstance(leave_pay_policy, LeavePayPolicy):
        return leave_pay_policy
    if leave_pay_policy:
        return parse_leave_pay_policy(leave_pay_policy)
    if settings:
        value = _settings_value(settings, LEAVE_PAY_POLICY_KEY)
        if value is not None:
            return parse_leave_pay_policy(value)
    return DEFAULT_LEAVE_PAY_POLICY


def resolve_leave_policy(
    leave_policy: LeavePolicy | Mapping[str, Any] | str | None = None,
    settings: Any = None,
) -> LeavePolicy:
    """Resolve the leave policy with the same precedence as the pay policy."""
    if isinstance(leave_policy, LeavePolicy):
        return leave_policy
    if leave_policy:
        return parse_leave_policy(leave_policy)
    if settings:
        value = _settings_value(settings, LEAVE_POLICY_KEY)
        if value is not None:
            return parse_leave_policy(value)
    return DEFAULT_LEAVE_POLICY


# ---------------------------------------------------------------------------
# Files and checksums
# ---------------------------------------------------------------------------


def load_policy_file(path: Path) -> PolicyBundle:
    """
    Load both policies from one YAML file (strict).

    The file holds two optional top-level mappings, ``leave_policy`` and
    ``leave_pay_policy``; an absent section yields the default policy.
    """
    data = load_yaml_file(path)
    source = str(path)
    if not isinstance(data, Mapping):
        raise PolicyConfigurationError(source, "<root>", "must be a mapping")

    bundle = PolicyBundle(
        leave_policy=parse_leave_policy(
            data.get(LEAVE_POLICY_KEY), source=f"{source}:{LEAVE_POLICY_KEY}", strict=True,
        ),
        leave_pay_policy=parse_leave_pay_policy(
            data.get(LEAVE_PAY_POLICY_KEY), source=f"{source}:{LEAVE_PAY_POLICY_KEY}", strict=True,
        ),
    )
    return replace(bundle, checksum=compute_checksum(bundle))


def compute_checksum(bundle: PolicyBundle) -> str:
    """
    Compute SHA-256 checksum of the canonical JSON form of a bundle.

    The ``checksum`` field itself is excluded, so a bundle's checksum is
    stable whether or not it has been filled in.
    """
    data = asdict(bundle)
    data.pop("checksum", None)
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
