"""Health check endpoints."""

import logging
from datetime import date, datetime, timezone

from fastapi import APIRouter, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from payroll_tax_engine import __version__
from payroll_tax_engine.api.dependencies import DbSession, RateStore
from payroll_tax_engine.config import get_settings
from payroll_tax_engine.exceptions import RateTableNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response.

    ``degraded`` when the database is unreachable or no rate table is in
    force today.
    """

    status: str
    timestamp: datetime
    version: str
    engine_version: str
    database: str
    rate_tables: list[str]
    rate_table_in_force: str | None


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
)
async def health_check(db: DbSession, store: RateStore) -> HealthResponse:
    """Check database reachability and which rate table serves today."""
    db_status = "unhealthy"
    try:
        await db.execute(text("SELECT 1"))
        db_status = "healthy"
    except SQLAlchemyError:
        logger.warning("Database health check failed", exc_info=True)

    try:
        in_force = store.get(date.today()).version
    except RateTableNotFoundError:
        in_force = None

    return HealthResponse(
        status="healthy" if db_status == "healthy" and in_force else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=__version__,
        engine_version=get_settings().engine_version,
        database=db_status,
        rate_tables=[s.version for s in store.versions()],
        rate_table_in_force=in_force,
    )


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check(store: RateStore) -> dict[str, str]:
    """Ready once rate tables are loaded."""
    return {"status": "ready" if len(store) else "loading"}


@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, str]:
    """Liveness check for container orchestration."""
    return {"status": "alive"}
