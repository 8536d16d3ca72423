"""Payroll period ('YYYY-MM') helpers."""

from __future__ import annotations

import re
from datetime import date

from payroll_tax_engine.exceptions import InvalidPayrollInput

_PERIOD_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def parse_period(period: str) -> tuple[int, int]:
    """Split a 'YYYY-MM' period into (year, month)."""
    match = _PERIOD_RE.match(period) if isinstance(period, str) else None
    if match is None:
        raise InvalidPayrollInput("period", period, "expected YYYY-MM")
    return int(match.group(1)), int(match.group(2))


def period_start(period: str) -> date:
    """First calendar day of a period."""
    year, month = parse_period(period)
    return date(year, month, 1)
