"""ORM models."""

from payroll_tax_engine.models.base import Base, TimestampMixin
from payroll_tax_engine.models.payroll_record import PayrollRecordVersion
from payroll_tax_engine.models.rate_table import RateTableVersion

__all__ = [
    "Base",
    "TimestampMixin",
    "PayrollRecordVersion",
    "RateTableVersion",
]
