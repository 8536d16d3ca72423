"""API routes."""

from payroll_tax_engine.api.routes.health import router as health_router
from payroll_tax_engine.api.routes.payroll import router as payroll_router
from payroll_tax_engine.api.routes.rate_tables import router as rate_tables_router

__all__ = ["health_router", "payroll_router", "rate_tables_router"]
