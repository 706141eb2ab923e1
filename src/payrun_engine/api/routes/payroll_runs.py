"""Payroll run API endpoints."""

import math
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, Query, status

from payrun_engine.api.dependencies import Actor, RunService, TenantId
from payrun_engine.api.schemas import (
    ApprovalRequest,
    ErrorResponse,
    MarkPaidRequest,
    PayrollRunCreate,
    PayrollRunListResponse,
    PayrollRunResponse,
    PageMeta,
    PayslipFailureResponse,
    PayslipPageResponse,
    PayslipResponse,
    ProcessRequest,
    ProcessResponse,
    RunSummaryResponse,
)

router = APIRouter(prefix="/payroll-runs", tags=["payroll-runs"])


# ============================================================================
# Payroll Run CRUD
# ============================================================================


@router.post(
    "",
    response_model=PayrollRunResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}},
)
async def create_payroll_run(
    service: RunService,
    tenant_id: TenantId,
    actor: Actor,
    payload: PayrollRunCreate,
) -> PayrollRunResponse:
    """Create a new payroll run in DRAFT status."""
    run = await service.create_run(
        tenant_id, payload.month, payload.year, payload.remarks, actor=actor
    )
    run = await service.get_run(run.payroll_run_id)
    return PayrollRunResponse.model_validate(run)


@router.get("", response_model=PayrollRunListResponse)
async def list_payroll_runs(
    service: RunService,
    tenant_id: TenantId,
    year: Annotated[int | None, Query(ge=1900, le=9999)] = None,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
) -> PayrollRunListResponse:
    """List payroll runs for a tenant, newest period first."""
    runs = await service.list_runs(tenant_id, year=year, status=status_filter)
    return PayrollRunListResponse(
        items=[PayrollRunResponse.model_validate(r) for r in runs],
        total=len(runs),
    )


@router.get(
    "/{payroll_run_id}",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payroll_run(
    service: RunService,
    tenant_id: TenantId,
    payroll_run_id: Annotated[UUID, Path()],
) -> PayrollRunResponse:
    """Get a specific payroll run by ID."""
    run = await service.get_run(payroll_run_id, tenant_id)
    return PayrollRunResponse.model_validate(run)


@router.delete(
    "/{payroll_run_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def delete_payroll_run(
    service: RunService,
    tenant_id: TenantId,
    actor: Actor,
    payroll_run_id: Annotated[UUID, Path()],
) -> None:
    """Delete a DRAFT payroll run."""
    await service.delete_run(payroll_run_id, actor=actor, tenant_id=tenant_id)


# ============================================================================
# Lifecycle
# ============================================================================


@router.post(
    "/{payroll_run_id}/process",
    response_model=ProcessResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def process_payroll_run(
    service: RunService,
    tenant_id: TenantId,
    actor: Actor,
    payroll_run_id: Annotated[UUID, Path()],
    payload: ProcessRequest | None = None,
) -> ProcessResponse:
    """Compute payslips for every eligible employee.

    Runs synchronously; per-employee errors are reported in the run's
    failure list rather than failing the request.
    """
    payload = payload or ProcessRequest()
    result = await service.process(
        payroll_run_id,
        full_reset=payload.full_reset,
        actor=payload.actor or actor,
        tenant_id=tenant_id,
    )
    return ProcessResponse(
        run=PayrollRunResponse.model_validate(result.run),
        resumed=result.resumed,
        computed_count=len(result.computed),
        failed_count=len(result.failed),
        skipped_count=result.skipped,
    )


@router.post(
    "/{payroll_run_id}/approve",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def approve_payroll_run(
    service: RunService,
    tenant_id: TenantId,
    actor: Actor,
    payroll_run_id: Annotated[UUID, Path()],
    payload: ApprovalRequest | None = None,
) -> PayrollRunResponse:
    """Approve a COMPUTED run.

    Requires zero errors and at least one payslip unless ``override`` is set.
    """
    payload = payload or ApprovalRequest()
    run = await service.approve(
        payroll_run_id,
        actor=payload.approved_by or actor,
        override=payload.override,
        tenant_id=tenant_id,
    )
    return PayrollRunResponse.model_validate(run)


@router.post(
    "/{payroll_run_id}/mark-paid",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def mark_payroll_run_paid(
    service: RunService,
    tenant_id: TenantId,
    actor: Actor,
    payroll_run_id: Annotated[UUID, Path()],
    payload: MarkPaidRequest | None = None,
) -> PayrollRunResponse:
    """Mark an APPROVED run as PAID."""
    payload = payload or MarkPaidRequest()
    run = await service.mark_paid(
        payroll_run_id, actor=payload.actor or actor, tenant_id=tenant_id
    )
    return PayrollRunResponse.model_validate(run)


# ============================================================================
# Results
# ============================================================================


@router.get(
    "/{payroll_run_id}/summary",
    response_model=RunSummaryResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payroll_run_summary(
    service: RunService,
    tenant_id: TenantId,
    payroll_run_id: Annotated[UUID, Path()],
) -> RunSummaryResponse:
    """Get totals, counts and the failure list of a run."""
    summary = await service.get_run_summary(payroll_run_id, tenant_id)
    return RunSummaryResponse(
        run=PayrollRunResponse.model_validate(summary.run),
        failures=[PayslipFailureResponse.model_validate(f) for f in summary.failures],
    )


@router.get(
    "/{payroll_run_id}/failures",
    response_model=list[PayslipFailureResponse],
    responses={404: {"model": ErrorResponse}},
)
async def list_payroll_run_failures(
    service: RunService,
    tenant_id: TenantId,
    payroll_run_id: Annotated[UUID, Path()],
) -> list[PayslipFailureResponse]:
    """List employees that failed in the latest pass, with reasons."""
    summary = await service.get_run_summary(payroll_run_id, tenant_id)
    return [PayslipFailureResponse.model_validate(f) for f in summary.failures]


@router.get(
    "/{payroll_run_id}/payslips",
    response_model=PayslipPageResponse,
    responses={404: {"model": ErrorResponse}},
)
async def list_payroll_run_payslips(
    service: RunService,
    tenant_id: TenantId,
    payroll_run_id: Annotated[UUID, Path()],
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> PayslipPageResponse:
    """List the payslips of a run, one page at a time."""
    payslips, total = await service.get_payslip_page(
        payroll_run_id, tenant_id, page=page, limit=limit
    )
    return PayslipPageResponse(
        items=[PayslipResponse.model_validate(p) for p in payslips],
        meta=PageMeta(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)),
    )


@router.get(
    "/{payroll_run_id}/payslips/{employee_id}",
    response_model=PayslipResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payroll_run_payslip(
    service: RunService,
    tenant_id: TenantId,
    payroll_run_id: Annotated[UUID, Path()],
    employee_id: Annotated[UUID, Path()],
) -> PayslipResponse:
    """Get one employee's payslip in a run."""
    payslip = await service.get_payslip(payroll_run_id, employee_id, tenant_id)
    if payslip is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payslip not found",
        )
    return PayslipResponse.model_validate(payslip)
