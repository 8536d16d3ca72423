"""Payroll tax engine services."""

from payroll_tax_engine.services.state_machine import (
    FiscalYearStateMachine,
    FiscalYearStatus,
    InvalidTransitionError,
)
from payroll_tax_engine.services.record_service import PayrollRecordService
from payroll_tax_engine.services.batch_service import BatchRecalculator, BatchResult, PayrollRequest

__all__ = [
    "FiscalYearStateMachine",
    "FiscalYearStatus",
    "InvalidTransitionError",
    "PayrollRecordService",
    "BatchRecalculator",
    "BatchResult",
    "PayrollRequest",
]
