"""Error taxonomy for the payroll tax engine.

Configuration errors are fatal to the single computation and are never
defaulted. Input errors are rejected before calculation and reported
per employee so a batch can continue past one bad record.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any


class PayrollEngineError(Exception):
    """Base class for all engine errors."""

    code = "ENGINE_ERROR"


# ===== Configuration errors =====


class ConfigurationError(PayrollEngineError):
    """A rate table is missing, incomplete, or inconsistent."""

    code = "CONFIGURATION_ERROR"


class RateTableNotFoundError(ConfigurationError):
    """Raised when no rate-table version is in force on a date."""

    code = "RATE_TABLE_NOT_FOUND"

    def __init__(self, effective_date: date):
        self.effective_date = effective_date
        super().__init__(f"No rate table in force on {effective_date}")


class RateTableLoadError(ConfigurationError):
    """Raised when a rate-table payload is malformed or breaks an invariant."""

    code = "RATE_TABLE_LOAD_ERROR"

    def __init__(self, version: str | None, reason: str):
        self.version = version
        self.reason = reason
        super().__init__(f"Rate table '{version or '?'}' rejected: {reason}")


class UnknownCategory(ConfigurationError):
    """Raised when no PTKP row matches a computed code."""

    code = "UNKNOWN_PTKP_CATEGORY"

    def __init__(self, ptkp_code: str, version: str):
        self.ptkp_code = ptkp_code
        self.version = version
        super().__init__(
            f"PTKP category '{ptkp_code}' not found in rate table '{version}'"
        )


class NoBracketForCategory(ConfigurationError):
    """Raised when a PTKP code has no published TER table."""

    code = "NO_TER_BRACKET"

    def __init__(self, ptkp_code: str, version: str, category: str | None = None):
        self.ptkp_code = ptkp_code
        self.version = version
        self.category = category
        if category is None:
            msg = f"PTKP code '{ptkp_code}' is not mapped to a TER category in '{version}'"
        else:
            msg = (
                f"TER category '{category}' (PTKP '{ptkp_code}') has no brackets "
                f"in '{version}'"
            )
        super().__init__(msg)


class UnsupportedProgram(ConfigurationError):
    """Raised for a BPJS program the engine does not know."""

    code = "UNSUPPORTED_BPJS_PROGRAM"

    def __init__(self, program: Any):
        self.program = program
        super().__init__(f"Unsupported BPJS program: {program!r}")


# ===== Input errors =====


class PayrollInputError(PayrollEngineError):
    """Input for one employee was rejected."""

    code = "INPUT_ERROR"


class InvalidPayrollInput(PayrollInputError):
    """Raised when an input value fails validation."""

    code = "INVALID_INPUT"

    def __init__(self, field: str, value: Any, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} {value!r}: {reason}")


class IncompleteAnnualHistory(PayrollInputError):
    """Raised when year-to-date income cannot be established."""

    code = "INCOMPLETE_ANNUAL_HISTORY"

    def __init__(
        self,
        employee_id: str | None,
        fiscal_year: int,
        missing_months: list[int] | None = None,
        reason: str | None = None,
    ):
        self.employee_id = employee_id
        self.fiscal_year = fiscal_year
        self.missing_months = missing_months or []
        detail = reason or f"missing months {self.missing_months}"
        super().__init__(
            f"Annual history for employee {employee_id} in {fiscal_year} "
            f"is incomplete: {detail}"
        )


class NotFoundError(PayrollEngineError):
    """Raised when a stored record or rate-table version does not exist."""

    code = "NOT_FOUND"

    def __init__(self, what: str, key: Any):
        self.what = what
        self.key = key
        super().__init__(f"{what} not found: {key}")


def require_non_negative(field: str, value: Decimal | None) -> Decimal:
    """Validate a currency amount, returning it as a Decimal."""
    if value is None:
        raise InvalidPayrollInput(field, value, "value is required")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except ArithmeticError:
        raise InvalidPayrollInput(field, value, "not a number") from None
    if not amount.is_finite():
        raise InvalidPayrollInput(field, value, "must be finite")
    if amount < 0:
        raise InvalidPayrollInput(field, value, "must not be negative")
    return amount
