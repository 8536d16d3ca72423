"""Fiscal-year state machine with transition validation."""

from __future__ import annotations

from enum import Enum

from payroll_tax_engine.exceptions import PayrollEngineError
from payroll_tax_engine.periods import parse_period

FINAL_MONTH = 12


class FiscalYearStatus(str, Enum):
    """Where an employee's fiscal year stands."""

    MONTHLY_WITHHOLDING = "monthly_withholding"
    ANNUAL_RECONCILIATION = "annual_reconciliation"
    FINALIZED = "finalized"


class InvalidTransitionError(PayrollEngineError):
    """Raised when an invalid state transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class FiscalYearStateMachine:
    """State machine for an employee's fiscal year.

    Allowed transitions:
    - monthly_withholding → annual_reconciliation
    - annual_reconciliation → monthly_withholding (reopen)
    - annual_reconciliation → finalized
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        FiscalYearStatus.MONTHLY_WITHHOLDING: [FiscalYearStatus.ANNUAL_RECONCILIATION],
        FiscalYearStatus.ANNUAL_RECONCILIATION: [
            FiscalYearStatus.MONTHLY_WITHHOLDING,
            FiscalYearStatus.FINALIZED,
        ],
        FiscalYearStatus.FINALIZED: [],  # Terminal state
    }

    # Statuses where records may still be recomputed and replaced
    RECALCULATION_ALLOWED = {
        FiscalYearStatus.MONTHLY_WITHHOLDING,
        FiscalYearStatus.ANNUAL_RECONCILIATION,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def can_recalculate(cls, status: str) -> bool:
        return status in cls.RECALCULATION_ALLOWED

    @staticmethod
    def is_final_period(month: int, terminated: bool = False) -> bool:
        """December, or the month employment ends."""
        return terminated or month == FINAL_MONTH

    @classmethod
    def status_for(cls, period: str, terminated: bool = False) -> FiscalYearStatus:
        """State a computation for ``period`` runs in."""
        _, month = parse_period(period)
        if cls.is_final_period(month, terminated):
            return FiscalYearStatus.ANNUAL_RECONCILIATION
        return FiscalYearStatus.MONTHLY_WITHHOLDING
