"""Versioned payroll records (one current version per employee-period)."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from payroll_tax_engine.models.base import Base, TimestampMixin


class PayrollRecordVersion(Base, TimestampMixin):
    """Stored payroll record.

    Rows are append-only: a recomputation with different content inserts the
    next version and flips ``is_current`` on the previous one.
    """

    __tablename__ = "payroll_record"

    payroll_record_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    record_id: Mapped[str] = mapped_column(String(64), nullable=False)
    employee_id: Mapped[str] = mapped_column(String, nullable=False)
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    fiscal_status: Mapped[str] = mapped_column(String, nullable=False)

    gross_salary: Mapped[Decimal] = mapped_column(nullable=False)
    taxable_income: Mapped[Decimal] = mapped_column(nullable=False)
    ptkp_status: Mapped[str] = mapped_column(String, nullable=False)
    ptkp_amount: Mapped[Decimal] = mapped_column(nullable=False)
    ter_category: Mapped[str] = mapped_column(String(1), nullable=False)
    ter_rate: Mapped[Decimal] = mapped_column(Numeric(8, 6), nullable=False)
    pph21: Mapped[Decimal] = mapped_column(nullable=False)
    pph21_adjustment: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    bpjs_employee_total: Mapped[Decimal] = mapped_column(nullable=False)
    bpjs_company_total: Mapped[Decimal] = mapped_column(nullable=False)
    net_salary: Mapped[Decimal] = mapped_column(nullable=False)
    total_cost_to_company: Mapped[Decimal] = mapped_column(nullable=False)
    tax_allowance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    pay_type: Mapped[str] = mapped_column(String, nullable=False)

    rate_table_version: Mapped[str] = mapped_column(String, nullable=False)
    inputs_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    computed_at: Mapped[datetime] = mapped_column(nullable=False)
    superseded_at: Mapped[datetime | None] = mapped_column(nullable=True)
    payload_json: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint(
            "employee_id", "period", "version", name="payroll_record_employee_period_version_key"
        ),
        CheckConstraint(
            "fiscal_status IN ('monthly_withholding', 'annual_reconciliation', 'finalized')",
            name="payroll_record_fiscal_status_check",
        ),
        CheckConstraint(
            "pay_type IN ('gross', 'gross_up')",
            name="payroll_record_pay_type_check",
        ),
        Index("payroll_record_employee_year_idx", "employee_id", "fiscal_year"),
    )
