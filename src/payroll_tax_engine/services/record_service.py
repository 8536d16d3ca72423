"""Versioned persistence of payroll records."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_tax_engine.calculators.types import (
    AnnualHistory,
    MonthlyIncome,
    PayrollRecord,
    PriorEmployment,
)
from payroll_tax_engine.models import PayrollRecordVersion
from payroll_tax_engine.periods import parse_period
from payroll_tax_engine.services.state_machine import (
    FiscalYearStateMachine,
    FiscalYearStatus,
    InvalidTransitionError,
)

logger = logging.getLogger(__name__)


class PayrollRecordService:
    """Stores records per (employee, period) with full version history.

    Key invariants:
    1. At most one current version per employee-period
    2. Saving a record whose record_id equals the current one is a no-op
    3. A different record becomes version N+1; the old row is only flagged
       as superseded
    4. Nothing in a finalized fiscal year can be replaced
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def save(self, record: PayrollRecord) -> tuple[PayrollRecord, bool]:
        """Persist a record.

        Returns the stored record (with its version) and whether a new
        version was written.

        Raises:
            InvalidTransitionError: If the fiscal year is already finalized
        """
        year, _ = parse_period(record.period)
        current = await self._get_current_row(record.employee_id, record.period)

        if current is not None and current.record_id == record.record_id:
            return self._to_record(current), False

        await self._ensure_year_open(record.employee_id, year, record.fiscal_status)

        version = 1
        if current is not None:
            current.is_current = False
            current.superseded_at = datetime.now(timezone.utc)
            version = current.version + 1
            logger.info(
                "Superseding %s %s version %d", record.employee_id, record.period, current.version
            )
            await self.session.flush()

        stored = replace(record, version=version)
        self.session.add(
            PayrollRecordVersion(
                record_id=stored.record_id,
                employee_id=stored.employee_id,
                period=stored.period,
                fiscal_year=year,
                version=version,
                is_current=True,
                fiscal_status=stored.fiscal_status,
                gross_salary=stored.gross_salary,
                taxable_income=stored.taxable_income,
                ptkp_status=stored.ptkp_status,
                ptkp_amount=stored.ptkp_amount,
                ter_category=stored.ter_category,
                ter_rate=stored.ter_rate,
                pph21=stored.pph21,
                pph21_adjustment=stored.pph21_adjustment,
                bpjs_employee_total=stored.bpjs_employee_total,
                bpjs_company_total=stored.bpjs_company_total,
                net_salary=stored.net_salary,
                total_cost_to_company=stored.total_cost_to_company,
                tax_allowance=stored.tax_allowance,
                pay_type=stored.pay_type.value,
                rate_table_version=stored.rate_table_version,
                inputs_fingerprint=stored.inputs_fingerprint,
                computed_at=stored.computed_at,
                payload_json=stored.to_dict(),
            )
        )
        await self.session.flush()
        return stored, True

    async def save_many(self, records: Iterable[PayrollRecord]) -> int:
        """Persist several records; returns the number of new versions."""
        written = 0
        for record in records:
            _, created = await self.save(record)
            if created:
                written += 1
        return written

    async def get_current(self, employee_id: str, period: str) -> PayrollRecord | None:
        row = await self._get_current_row(employee_id, period)
        return self._to_record(row) if row is not None else None

    async def list_versions(self, employee_id: str, period: str) -> list[PayrollRecord]:
        """Every stored version, oldest first."""
        result = await self.session.execute(
            select(PayrollRecordVersion)
            .where(
                PayrollRecordVersion.employee_id == employee_id,
                PayrollRecordVersion.period == period,
            )
            .order_by(PayrollRecordVersion.version)
        )
        return [self._to_record(row) for row in result.scalars().all()]

    async def list_for_year(self, employee_id: str, year: int) -> list[PayrollRecord]:
        """Current records of a fiscal year, by period."""
        rows = await self._current_rows_for_year(employee_id, year)
        return [self._to_record(row) for row in rows]

    async def history_for(
        self,
        employee_id: str,
        period: str,
        employment_start_month: int = 1,
        prior_employment: PriorEmployment | None = None,
    ) -> AnnualHistory:
        """Build the fiscal-year history preceding ``period`` from stored records."""
        year, month = parse_period(period)
        months: dict[int, MonthlyIncome] = {}
        for record in await self.list_for_year(employee_id, year):
            _, m = parse_period(record.period)
            if m < month:
                months[m] = MonthlyIncome(
                    gross=record.gross_salary,
                    pph21_withheld=record.total_pph21,
                )
        return AnnualHistory(
            fiscal_year=year,
            employment_start_month=employment_start_month,
            months=months,
            prior_employment=prior_employment,
        )

    async def finalize(self, employee_id: str, year: int) -> int:
        """Close a reconciled fiscal year; returns the number of records finalized.

        Raises:
            InvalidTransitionError: If the year has not been reconciled
        """
        rows = await self._current_rows_for_year(employee_id, year)
        FiscalYearStateMachine.validate_transition(
            self._year_status(rows).value, FiscalYearStatus.FINALIZED.value
        )

        for row in rows:
            row.fiscal_status = FiscalYearStatus.FINALIZED.value
        await self.session.flush()
        logger.info("Finalized fiscal year %d for %s (%d records)", year, employee_id, len(rows))
        return len(rows)

    async def reopen(self, employee_id: str, year: int) -> int:
        """Withdraw a year's reconciliation so monthly withholding can resume.

        The reconciled records are superseded; earlier months stay current.
        """
        rows = await self._current_rows_for_year(employee_id, year)
        reconciled = [
            r for r in rows if r.fiscal_status == FiscalYearStatus.ANNUAL_RECONCILIATION.value
        ]
        FiscalYearStateMachine.validate_transition(
            self._year_status(rows).value, FiscalYearStatus.MONTHLY_WITHHOLDING.value
        )

        now = datetime.now(timezone.utc)
        for row in reconciled:
            row.is_current = False
            row.superseded_at = now
        await self.session.flush()
        logger.info(
            "Reopened fiscal year %d for %s (%d records withdrawn)",
            year,
            employee_id,
            len(reconciled),
        )
        return len(reconciled)

    # === Internals ===

    async def _get_current_row(self, employee_id: str, period: str) -> PayrollRecordVersion | None:
        result = await self.session.execute(
            select(PayrollRecordVersion).where(
                PayrollRecordVersion.employee_id == employee_id,
                PayrollRecordVersion.period == period,
                PayrollRecordVersion.is_current.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def _current_rows_for_year(
        self, employee_id: str, year: int
    ) -> list[PayrollRecordVersion]:
        result = await self.session.execute(
            select(PayrollRecordVersion)
            .where(
                PayrollRecordVersion.employee_id == employee_id,
                PayrollRecordVersion.fiscal_year == year,
                PayrollRecordVersion.is_current.is_(True),
            )
            .order_by(PayrollRecordVersion.period)
        )
        return list(result.scalars().all())

    async def _ensure_year_open(self, employee_id: str, year: int, to_status: str) -> None:
        rows = await self._current_rows_for_year(employee_id, year)
        status = self._year_status(rows)
        if not FiscalYearStateMachine.can_recalculate(status):
            raise InvalidTransitionError(
                status.value, to_status, f"fiscal year {year} is finalized for {employee_id}"
            )

    @staticmethod
    def _year_status(rows: list[PayrollRecordVersion]) -> FiscalYearStatus:
        statuses = {row.fiscal_status for row in rows}
        if FiscalYearStatus.FINALIZED.value in statuses:
            return FiscalYearStatus.FINALIZED
        if FiscalYearStatus.ANNUAL_RECONCILIATION.value in statuses:
            return FiscalYearStatus.ANNUAL_RECONCILIATION
        return FiscalYearStatus.MONTHLY_WITHHOLDING

    @staticmethod
    def _to_record(row: PayrollRecordVersion) -> PayrollRecord:
        data = dict(row.payload_json)
        data["version"] = row.version
        data["fiscal_status"] = row.fiscal_status
        return PayrollRecord.from_dict(data)
