"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_tax_engine.calculators import PayrollEngine, RateTableStore
from payroll_tax_engine.config import get_settings
from payroll_tax_engine.database import init_db


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


@lru_cache(maxsize=1)
def get_rate_store() -> RateTableStore:
    """Bundled rate tables plus any configured RATE_TABLE_DIR."""
    return RateTableStore.load(get_settings().rate_table_dir)


def get_payroll_engine(
    store: Annotated[RateTableStore, Depends(get_rate_store)],
) -> PayrollEngine:
    return PayrollEngine(store, engine_version=get_settings().engine_version)


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
RateStore = Annotated[RateTableStore, Depends(get_rate_store)]
Engine = Annotated[PayrollEngine, Depends(get_payroll_engine)]
