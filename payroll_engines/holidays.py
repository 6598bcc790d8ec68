"""
Holiday/Policy Rule Resolver.

Finds the leave policy rule covering a date.  Rule order in the policy is
significant: when rules overlap, the first one listed wins.  Overlap is a
data-quality issue of the policy and is resolved deterministically rather
than reported.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import date

from payroll_config.schema import DEFAULT_LEAVE_POLICY, HolidayRule, LeavePolicy
from payroll_engines.tracer import traced_engine
from payroll_kernel.domain.calendar import iter_days, require_date


@traced_engine("holidays", "1.0", fingerprint_fields=("on_date",))
def resolve_holiday_for_date(
    policy: LeavePolicy | None,
    on_date: date | str,
) -> HolidayRule | None:
    """First rule of ``policy`` whose inclusive range contains ``on_date``."""
    target = require_date(on_date, "on_date")
    rules = (policy or DEFAULT_LEAVE_POLICY).holiday_rules
    for rule in rules:
        if rule.covers(target):
            return rule
    return None


def holiday_rules_for_range(
    policy: LeavePolicy | None,
    start: date | str,
    end: date | str,
) -> Iterator[tuple[date, HolidayRule]]:
    """Yield (date, rule) for every date in ``[start, end]`` a rule covers."""
    first = require_date(start, "start")
    last = require_date(end, "end")
    rules = (policy or DEFAULT_LEAVE_POLICY).holiday_rules
    if not rules:
        return
    for day in iter_days(first, last):
        rule = next((r for r in rules if r.covers(day)), None)
        if rule is not None:
            yield day, rule

