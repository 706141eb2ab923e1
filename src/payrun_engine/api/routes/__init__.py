"""API routes."""

from payrun_engine.api.routes.health import router as health_router
from payrun_engine.api.routes.payroll_runs import router as payroll_runs_router
from payrun_engine.api.routes.payslips import router as payslips_router

__all__ = ["health_router", "payroll_runs_router", "payslips_router"]
