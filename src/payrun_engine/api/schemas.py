"""Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Payroll Run schemas
# ============================================================================


class PayrollRunCreate(BaseModel):
    """Schema for creating a new payroll run."""

    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1900, le=9999)
    remarks: str | None = None


class PayrollRunResponse(BaseModel):
    """Schema for payroll run response."""

    model_config = ConfigDict(from_attributes=True)

    payroll_run_id: UUID
    tenant_id: UUID
    month: int
    year: int
    status: str
    remarks: str | None = None
    total_gross: Decimal
    total_deductions: Decimal
    total_net: Decimal
    processed_count: int
    error_count: int
    processing_started_at: datetime | None = None
    heartbeat_at: datetime | None = None
    processed_at: datetime | None = None
    approved_at: datetime | None = None
    approved_by: str | None = None
    approval_override: bool = False
    paid_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class PayrollRunListResponse(BaseModel):
    """Schema for listing payroll runs."""

    items: list[PayrollRunResponse]
    total: int


# ============================================================================
# Lifecycle schemas
# ============================================================================


class ProcessRequest(BaseModel):
    """Schema for a processing request."""

    full_reset: bool = False
    actor: str | None = None


class ProcessResponse(BaseModel):
    """Schema for a processing pass outcome."""

    run: PayrollRunResponse
    resumed: bool
    computed_count: int
    failed_count: int
    skipped_count: int


class ApprovalRequest(BaseModel):
    """Schema for approval request."""

    approved_by: str | None = None
    override: bool = False


class MarkPaidRequest(BaseModel):
    """Schema for mark-paid request."""

    actor: str | None = None


# ============================================================================
# Payslip schemas
# ============================================================================


class LineItemResponse(BaseModel):
    """One earning or deduction line."""

    name: str
    amount: Decimal


class PayslipResponse(BaseModel):
    """Schema for payslip response."""

    model_config = ConfigDict(from_attributes=True)

    payslip_id: UUID
    payroll_run_id: UUID
    employee_id: UUID
    salary_structure_id: UUID
    base_pay: Decimal
    pro_rated_base: Decimal
    working_days: Decimal
    present_days: Decimal
    leave_days: Decimal
    lop_days: Decimal
    ot_hours: Decimal
    ot_rate: Decimal | None = None
    ot_pay: Decimal
    earnings: list[LineItemResponse]
    deductions: list[LineItemResponse]
    structure_snapshot: list[dict[str, Any]]
    gross_pay: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    net_clamped: bool
    shortfall: Decimal
    calculation_hash: str
    computed_at: datetime


class PageMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class PayslipPageResponse(BaseModel):
    """One page of a run's payslips, ordered by employee."""

    items: list[PayslipResponse]
    meta: PageMeta


class EmployeePayslipResponse(BaseModel):
    """Payslip as seen by the employee, with its period."""

    month: int
    year: int
    run_status: str
    payslip: PayslipResponse


class PayslipFailureResponse(BaseModel):
    """Schema for a per-employee failure."""

    model_config = ConfigDict(from_attributes=True)

    employee_id: UUID
    error_kind: str
    message: str
    attempts: int
    recorded_at: datetime


class RunSummaryResponse(BaseModel):
    """Counts, totals and failures of a run."""

    run: PayrollRunResponse
    failures: list[PayslipFailureResponse]


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error responses."""

    detail: str
    code: str | None = None
