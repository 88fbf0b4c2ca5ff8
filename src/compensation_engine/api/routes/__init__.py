"""API routes."""

from compensation_engine.api.routes.health import router as health_router
from compensation_engine.api.routes.payroll_runs import router as payroll_runs_router
from compensation_engine.api.routes.structures import router as structures_router

__all__ = ["health_router", "payroll_runs_router", "structures_router"]
