"""
Payroll Kernel

Shared foundation for the time-aggregation and leave-valuation engines:
- Structured JSON logging
- Typed exception hierarchy
- Immutable domain records built from raw API rows
- Calendar helpers (weekdays, month arithmetic, lookback windows)
"""

__version__ = "0.1.0"
