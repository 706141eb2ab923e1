"""Employee payslip endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query

from payrun_engine.api.dependencies import RunService, TenantId
from payrun_engine.api.schemas import EmployeePayslipResponse, PayslipResponse

router = APIRouter(prefix="/employees", tags=["payslips"])


@router.get(
    "/{employee_id}/payslips",
    response_model=list[EmployeePayslipResponse],
)
async def list_employee_payslips(
    service: RunService,
    tenant_id: TenantId,
    employee_id: Annotated[UUID, Path()],
    include_unapproved: Annotated[bool, Query()] = False,
) -> list[EmployeePayslipResponse]:
    """List an employee's payslips, newest period first.

    Only payslips of APPROVED or PAID runs are returned by default.
    """
    rows = await service.get_payslips_for_employee(
        tenant_id, employee_id, include_unapproved=include_unapproved
    )
    return [
        EmployeePayslipResponse(
            month=run.month,
            year=run.year,
            run_status=run.status,
            payslip=PayslipResponse.model_validate(payslip),
        )
        for payslip, run in rows
    ]
