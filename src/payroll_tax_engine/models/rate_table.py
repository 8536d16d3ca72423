"""Persisted rate-table versions."""

from __future__ import annotations

from datetime import date
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Date, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payroll_tax_engine.models.base import Base, TimestampMixin


class RateTableVersion(Base, TimestampMixin):
    """One rate-table version, stored as its validated JSON payload."""

    __tablename__ = "rate_table_version"

    rate_table_version_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    version: Mapped[str] = mapped_column(String, nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    payload_json: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("version", name="rate_table_version_version_key"),
        UniqueConstraint("effective_date", name="rate_table_version_effective_date_key"),
    )
