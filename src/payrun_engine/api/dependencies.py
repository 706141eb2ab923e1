"""Request-scoped dependencies: session, tenant, actor and run service."""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from payrun_engine.services.payroll_run_service import PayrollRunService


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """One session per request; the service commits its own work."""
    async with request.app.state.session_factory() as session:
        yield session


def _tenant_error(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


async def get_tenant_id(x_tenant_id: Annotated[str | None, Header()] = None) -> UUID:
    """Every run endpoint is scoped to the tenant in ``X-Tenant-ID``."""
    if not x_tenant_id:
        raise _tenant_error("X-Tenant-ID header is required")
    try:
        return UUID(x_tenant_id)
    except ValueError:
        raise _tenant_error(f"X-Tenant-ID is not a UUID: {x_tenant_id!r}") from None


async def get_actor(x_actor: Annotated[str | None, Header()] = None) -> str | None:
    """Optional ``X-Actor`` recorded in the run audit trail."""
    if x_actor is None:
        return None
    return x_actor.strip() or None


DbSession = Annotated[AsyncSession, Depends(get_db_session)]
TenantId = Annotated[UUID, Depends(get_tenant_id)]
Actor = Annotated[str | None, Depends(get_actor)]


async def get_payroll_run_service(request: Request, db: DbSession) -> PayrollRunService:
    return PayrollRunService(
        db,
        request.app.state.providers,
        settings=request.app.state.settings,
    )


RunService = Annotated[PayrollRunService, Depends(get_payroll_run_service)]
