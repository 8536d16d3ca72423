"""Rate-table lookup endpoints."""

from datetime import date

from fastapi import APIRouter

from payroll_tax_engine.api.dependencies import RateStore
from payroll_tax_engine.api.schemas import ErrorResponse, RateTableResponse, RateTableSummary
from payroll_tax_engine.exceptions import NotFoundError, RateTableNotFoundError

router = APIRouter(prefix="/rate-tables", tags=["rate-tables"])


@router.get("", response_model=list[RateTableSummary])
async def list_rate_tables(store: RateStore) -> list[RateTableSummary]:
    """All loaded versions, oldest first."""
    return [
        RateTableSummary(
            version=s.version, effective_date=s.effective_date, fingerprint=s.fingerprint
        )
        for s in store.versions()
    ]


@router.get(
    "/{effective_date}",
    response_model=RateTableResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_rate_table(store: RateStore, effective_date: date) -> RateTableResponse:
    """The version in force on a date."""
    try:
        snapshot = store.get(effective_date)
    except RateTableNotFoundError:
        raise NotFoundError("Rate table", effective_date.isoformat()) from None
    return RateTableResponse.from_snapshot(snapshot)
