"""
payroll_config -- typed leave policies for the calculation engines.

Responsibility:
    Turns an organization's leave settings (YAML policy files or the
    loosely typed values of a settings table) into the frozen
    ``LeavePolicy`` / ``LeavePayPolicy`` structs.  Callers resolve these
    once per request and pass them explicitly into every engine call.

Architecture position:
    Configuration -- above ``payroll_kernel``, below ``payroll_engines``.
    The kernel MUST NEVER import from ``payroll_config``.

Invariants enforced:
    - Engines never fetch settings by key; resolution happens here.
    - Deterministic checksums: the same policies always produce the same
      bundle checksum.

Failure modes:
    - ``FileNotFoundError`` / ``yaml.YAMLError`` -- policy file missing or
      not valid YAML.
    - ``PolicyConfigurationError`` -- a policy file field is invalid.

Audit relevance:
    Every ``load_policy_bundle`` call emits a ``PAYROLL_CONFIG_TRACE`` log
    entry with the source path and checksum, tying each computed leave value
    back to the exact policy version that governed it.
"""

from __future__ import annotations

from pathlib import Path

from payroll_config.loader import (
    compute_checksum,
    load_policy_file,
    parse_leave_pay_policy,
    parse_leave_policy,
    resolve_leave_pay_policy,
    resolve_leave_policy,
)
from payroll_config.schema import (
    DEFAULT_LEAVE_PAY_POLICY,
    DEFAULT_LEAVE_POLICY,
    HolidayRule,
    LeavePayMethod,
    LeavePayPolicy,
    LeavePolicy,
    PolicyBundle,
)
from payroll_kernel.logging_config import get_logger

_logger = get_logger("config")

__all__ = [
    "DEFAULT_LEAVE_PAY_POLICY",
    "DEFAULT_LEAVE_POLICY",
    "HolidayRule",
    "LeavePayMethod",
    "LeavePayPolicy",
    "LeavePolicy",
    "PolicyBundle",
    "compute_checksum",
    "load_policy_bundle",
    "parse_leave_pay_policy",
    "parse_leave_policy",
    "resolve_leave_pay_policy",
    "resolve_leave_policy",
]


def load_policy_bundle(path: Path | str) -> PolicyBundle:
    """Load and validate an organization's policy file.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        PolicyConfigurationError: If a policy field is invalid.
    """
    source = Path(path)
    bundle = load_policy_file(source)

    _logger.info(
        "PAYROLL_CONFIG_TRACE",
        extra={
            "trace_type": "PAYROLL_CONFIG_TRACE",
            "source": str(source),
            "checksum": bundle.checksum,
            "leave_pay_method": bundle.leave_pay_policy.default_method.value,
            "lookback_months": bundle.leave_pay_policy.lookback_months,
            "holiday_rule_count": len(bundle.leave_policy.holiday_rules),
        },
    )
    return bundle
