"""
Invocation tracing for the payroll engines.

``@traced_engine`` wraps a pure engine function and, after each successful
call, logs one ``PAYROLL_ENGINE_TRACE`` record carrying the engine name and
version, the wall time in milliseconds, and a short fingerprint of the
arguments named in ``fingerprint_fields``.

Fingerprints are SHA-256 over a canonical text form, cut to 16 hex chars.
Mappings are key-sorted, records are expanded field by field, and entry or
employee collections collapse to their length, so a trace stays small and
two calls with equal scalar inputs always agree.  A named argument that was
not passed hashes as ``null``.  A call that raises logs nothing.

    @traced_engine("aggregation", "1.0", fingerprint_fields=("filters",))
    def sum_hourly_hours(entries, employees, filters=None):
        ...
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import inspect
import time
from collections.abc import Callable
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from payroll_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")


def _canonicalize(value: Any) -> str:
    """Produce a stable string representation of a value for fingerprinting.

    Collections of records are reduced to their length so a trace never
    carries a whole payroll history.
    """
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (bool, int, Decimal, date)):
        return str(value)
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple, set, frozenset)):
        return f"<{len(value)} items>"
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        fields = {
            f.name: getattr(value, f.name)
            for f in dataclasses.fields(value)
        }
        return type(value).__name__ + _canonicalize(fields)
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: dict[str, Any],
) -> str:
    """16 hex chars of SHA-256 over ``name=value`` pairs of the named arguments."""
    canonical = "|".join(
        f"{name}={_canonicalize(arguments.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def _argument_binder(func: Callable) -> Callable[..., dict[str, Any]]:
    signature = inspect.signature(func)

    def bind(args: tuple, kwargs: dict[str, Any]) -> dict[str, Any]:
        try:
            return dict(signature.bind_partial(*args, **kwargs).arguments)
        except TypeError:
            # the call itself will fail with the real error
            return dict(kwargs)

    return bind


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Log ``PAYROLL_ENGINE_TRACE`` after every successful call of the engine.

    ``fingerprint_fields`` names parameters, passed positionally or by
    keyword, whose values go into ``input_fingerprint``.  With no fields
    the fingerprint is the empty string.
    """

    def decorator(func: Callable) -> Callable:
        bind = _argument_binder(func)
        trace_fields = {
            "trace_type": "PAYROLL_ENGINE_TRACE",
            "engine_name": engine_name,
            "engine_version": engine_version,
            "function": func.__qualname__,
        }

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = (
                compute_input_fingerprint(fingerprint_fields, bind(args, kwargs))
                if fingerprint_fields else ""
            )
            started = time.perf_counter()
            result = func(*args, **kwargs)
            elapsed = time.perf_counter() - started
            _logger.info("PAYROLL_ENGINE_TRACE", extra={
                **trace_fields,
                "input_fingerprint": fingerprint,
                "duration_ms": round(elapsed * 1000, 2),
            })
            return result

        return wrapper

    return decorator
