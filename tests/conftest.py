"""Pytest fixtures for payroll tax engine tests."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from payroll_tax_engine.calculators import PayrollEngine, RateTableStore
from payroll_tax_engine.calculators.types import AnnualHistory, MonthlyIncome
from payroll_tax_engine.models import Base

# In-memory SQLite shared across one test's connections
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

FIXED_NOW = datetime(2024, 1, 31, 12, 0, tzinfo=timezone.utc)


def bundled_payload() -> dict[str, Any]:
    """Fresh copy of the shipped 2024 rate table."""
    return RateTableStore.bundled().versions()[0].to_payload()


def flat_rate_payload(rate: str = "0.05", version: str = "flat-2024") -> dict[str, Any]:
    """Bundled table with one taxed TER bracket per category."""
    payload = bundled_payload()
    payload["version"] = version
    payload["ter_brackets"] = {
        "A": [["0", "0"], ["5400001", rate]],
        "B": [["0", "0"], ["6200001", rate]],
        "C": [["0", "0"], ["6600001", rate]],
    }
    return payload


def full_history(
    year: int,
    through_month: int,
    gross: str | Decimal,
    withheld: str | Decimal,
    start_month: int = 1,
) -> AnnualHistory:
    """History with the same income in every month before ``through_month``."""
    return AnnualHistory(
        fiscal_year=year,
        employment_start_month=start_month,
        months={
            m: MonthlyIncome(Decimal(gross), Decimal(withheld))
            for m in range(start_month, through_month)
        },
    )


@pytest.fixture
def payload() -> dict[str, Any]:
    return bundled_payload()


@pytest.fixture
def store() -> RateTableStore:
    return RateTableStore.bundled()


@pytest.fixture
def snapshot(store: RateTableStore):
    return store.versions()[0]


@pytest.fixture
def flat_store() -> RateTableStore:
    return RateTableStore.from_payloads([flat_rate_payload()])


@pytest.fixture
def engine(store: RateTableStore) -> PayrollEngine:
    return PayrollEngine(store, clock=lambda: FIXED_NOW)


@pytest.fixture
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()
