"""Batch "recalculate all" over a list of employees."""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Sequence

from payroll_tax_engine.calculators.types import (
    AnnualHistory,
    EmployeeTaxProfile,
    PayrollRecord,
    PayType,
    SalaryComponents,
)
from payroll_tax_engine.exceptions import PayrollEngineError
from payroll_tax_engine.services.record_service import PayrollRecordService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from payroll_tax_engine.calculators.engine import PayrollEngine

logger = logging.getLogger(__name__)

_SKIPPED = object()


@dataclass(frozen=True)
class PayrollRequest:
    """Inputs for one employee in a batch."""

    profile: EmployeeTaxProfile
    gross_salary: Decimal
    components: SalaryComponents | None = None
    history: AnnualHistory | None = None
    terminated: bool = False
    pay_type: PayType | str = PayType.GROSS


@dataclass(frozen=True)
class BatchFailure:
    """One employee the batch could not compute."""

    employee_id: str
    reason: str
    error_code: str


@dataclass
class BatchResult:
    """Outcome of a batch run, in request order."""

    period: str
    rate_table_version: str
    records: list[PayrollRecord] = field(default_factory=list)
    failures: list[BatchFailure] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def success_count(self) -> int:
        return len(self.records)

    @property
    def failure_count(self) -> int:
        return len(self.failures)


class BatchRecalculator:
    """Computes many employees independently on a thread pool.

    Workers share only the engine and its read-only rate snapshots. An input
    or configuration error for one employee becomes a BatchFailure and the
    rest of the batch continues. Cancellation is checked before each
    employee starts; employees already running finish normally.
    """

    def __init__(self, engine: PayrollEngine, workers: int = 4):
        self.engine = engine
        self.workers = max(1, workers)

    def run(
        self,
        period: str,
        requests: Sequence[PayrollRequest],
        cancel_event: threading.Event | None = None,
    ) -> BatchResult:
        """Run the batch.

        Raises:
            ConfigurationError: If no rate table serves the period; raised
                before any employee is computed
        """
        snapshot = self.engine.store.for_period(period)
        result = BatchResult(period=period, rate_table_version=snapshot.version)

        def compute(request: PayrollRequest) -> PayrollRecord | BatchFailure | object:
            if cancel_event is not None and cancel_event.is_set():
                return _SKIPPED
            employee_id = request.profile.employee_id
            try:
                return self.engine.compute_payroll(
                    request.profile,
                    period,
                    request.gross_salary,
                    components=request.components,
                    history=request.history,
                    terminated=request.terminated,
                    pay_type=request.pay_type,
                )
            except PayrollEngineError as e:
                logger.warning("Employee %s failed for %s: %s", employee_id, period, e)
                return BatchFailure(employee_id, str(e), e.code)
            except Exception as e:
                # Catch unexpected errors
                logger.exception("Unexpected error computing %s for %s", employee_id, period)
                return BatchFailure(employee_id, f"Unexpected error: {e}", "UNEXPECTED_ERROR")

        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            outcomes = list(pool.map(compute, requests))

        for request, outcome in zip(requests, outcomes):
            if outcome is _SKIPPED:
                result.skipped.append(request.profile.employee_id)
            elif isinstance(outcome, BatchFailure):
                result.failures.append(outcome)
            else:
                result.records.append(outcome)
        result.cancelled = bool(result.skipped)

        logger.info(
            "Batch %s (rates %s): %d computed, %d failed, %d skipped",
            period,
            snapshot.version,
            result.success_count,
            result.failure_count,
            len(result.skipped),
        )
        return result

    async def run_and_persist(
        self,
        session: AsyncSession,
        period: str,
        requests: Sequence[PayrollRequest],
        cancel_event: threading.Event | None = None,
    ) -> BatchResult:
        """Run the batch off the event loop, then store every computed record.

        An employee whose record cannot be stored (a finalized fiscal year)
        moves from ``records`` to ``failures``; the others are still saved.
        ``save`` rejects before writing, so nothing partial is left behind.
        """
        result = await asyncio.to_thread(self.run, period, requests, cancel_event)

        service = PayrollRecordService(session)
        stored: list[PayrollRecord] = []
        for record in result.records:
            try:
                saved, _ = await service.save(record)
            except PayrollEngineError as e:
                logger.warning("Employee %s not stored for %s: %s", record.employee_id, period, e)
                result.failures.append(BatchFailure(record.employee_id, str(e), e.code))
                continue
            stored.append(saved)
        result.records = stored
        return result
