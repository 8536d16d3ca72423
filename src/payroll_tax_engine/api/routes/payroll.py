"""Payroll calculation endpoints."""

import asyncio
from typing import Annotated

from fastapi import APIRouter, Path, status

from payroll_tax_engine.api.dependencies import DbSession, Engine
from payroll_tax_engine.api.schemas import (
    EmployeePayrollIn,
    ErrorResponse,
    FinalizeResponse,
    PayrollCalculateRequest,
    PayrollRecalculateRequest,
    PayrollRecalculateResponse,
    PayrollRecordResponse,
)
from payroll_tax_engine.calculators.types import AnnualHistory
from payroll_tax_engine.config import get_settings
from payroll_tax_engine.exceptions import NotFoundError
from payroll_tax_engine.periods import parse_period
from payroll_tax_engine.services.batch_service import BatchRecalculator
from payroll_tax_engine.services.record_service import PayrollRecordService

router = APIRouter(prefix="/payroll", tags=["payroll"])

PeriodParam = Annotated[str, Path(pattern=r"^\d{4}-(0[1-9]|1[0-2])$")]

ERROR_RESPONSES = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


async def _stored_history(
    service: PayrollRecordService, employee: EmployeePayrollIn, period: str
) -> AnnualHistory | None:
    """History from stored records when the employee asks for it.

    Inline ``history`` then only contributes the employment start month and
    prior employment.
    """
    if not employee.use_stored_history:
        return None
    inline = employee.history
    return await service.history_for(
        employee.employee_id,
        period,
        employment_start_month=inline.employment_start_month if inline else 1,
        prior_employment=inline.prior_employment_domain() if inline else None,
    )


@router.post(
    "/calculate",
    response_model=PayrollRecordResponse,
    status_code=status.HTTP_200_OK,
    responses=ERROR_RESPONSES,
)
async def calculate_payroll(
    db: DbSession,
    engine: Engine,
    payload: PayrollCalculateRequest,
) -> PayrollRecordResponse:
    """Compute one employee's record, optionally storing it."""
    year, _ = parse_period(payload.period)
    service = PayrollRecordService(db)
    history = await _stored_history(service, payload, payload.period)
    request = payload.to_request(year, history)

    record = engine.compute_payroll(
        request.profile,
        payload.period,
        request.gross_salary,
        components=request.components,
        history=request.history,
        terminated=request.terminated,
        pay_type=request.pay_type,
    )
    if payload.persist:
        record, _ = await service.save(record)
        await db.commit()
    return PayrollRecordResponse.from_record(record)


@router.post(
    "/recalculate",
    response_model=PayrollRecalculateResponse,
    status_code=status.HTTP_200_OK,
    responses=ERROR_RESPONSES,
)
async def recalculate_payroll(
    db: DbSession,
    engine: Engine,
    payload: PayrollRecalculateRequest,
) -> PayrollRecalculateResponse:
    """Recalculate every listed employee for a period."""
    year, _ = parse_period(payload.period)
    service = PayrollRecordService(db)
    requests = [
        employee.to_request(year, await _stored_history(service, employee, payload.period))
        for employee in payload.employees
    ]
    batch = BatchRecalculator(engine, workers=get_settings().batch_workers)

    if payload.persist:
        result = await batch.run_and_persist(db, payload.period, requests)
        await db.commit()
    else:
        result = await asyncio.to_thread(batch.run, payload.period, requests)
    return PayrollRecalculateResponse.from_result(result)


@router.get(
    "/{employee_id}/{period}",
    response_model=PayrollRecordResponse,
    responses=ERROR_RESPONSES,
)
async def get_payroll_record(
    db: DbSession,
    employee_id: str,
    period: PeriodParam,
) -> PayrollRecordResponse:
    """Get the current stored record for an employee-period."""
    record = await PayrollRecordService(db).get_current(employee_id, period)
    if record is None:
        raise NotFoundError("Payroll record", f"{employee_id}/{period}")
    return PayrollRecordResponse.from_record(record)


@router.get(
    "/{employee_id}/{period}/versions",
    response_model=list[PayrollRecordResponse],
    responses=ERROR_RESPONSES,
)
async def list_payroll_record_versions(
    db: DbSession,
    employee_id: str,
    period: PeriodParam,
) -> list[PayrollRecordResponse]:
    """Every stored version for an employee-period, oldest first."""
    records = await PayrollRecordService(db).list_versions(employee_id, period)
    if not records:
        raise NotFoundError("Payroll record", f"{employee_id}/{period}")
    return [PayrollRecordResponse.from_record(r) for r in records]


@router.post(
    "/{employee_id}/{fiscal_year}/finalize",
    response_model=FinalizeResponse,
    responses=ERROR_RESPONSES,
)
async def finalize_fiscal_year(
    db: DbSession,
    employee_id: str,
    fiscal_year: Annotated[int, Path(ge=2000, le=9999)],
) -> FinalizeResponse:
    """Close a reconciled fiscal year."""
    count = await PayrollRecordService(db).finalize(employee_id, fiscal_year)
    await db.commit()
    return FinalizeResponse(
        employee_id=employee_id, fiscal_year=fiscal_year, records_finalized=count
    )
