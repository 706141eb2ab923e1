"""Payroll run, payslip, failure and audit models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payrun_engine.models.base import Base, Days, JSONType, Money, TimestampMixin, utcnow


class PayrollRun(Base, TimestampMixin):
    """One payroll run per tenant per month."""

    __tablename__ = "payroll_run"

    payroll_run_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="DRAFT")
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    total_gross: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    total_deductions: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0")
    )
    total_net: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    processed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Processing ownership (compare-and-swap + heartbeat)
    processing_token: Mapped[UUID | None] = mapped_column(nullable=True)
    processing_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    heartbeat_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    approval_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "month", "year", name="payroll_run_tenant_period_unique"),
        CheckConstraint("month BETWEEN 1 AND 12", name="payroll_run_month_check"),
        CheckConstraint(
            "status IN ('DRAFT', 'PROCESSING', 'COMPUTED', 'APPROVED', 'PAID')",
            name="payroll_run_status_check",
        ),
    )

    payslips: Mapped[list[Payslip]] = relationship(
        back_populates="payroll_run", cascade="all, delete-orphan", passive_deletes=True
    )
    failures: Mapped[list[PayslipFailure]] = relationship(
        back_populates="payroll_run", cascade="all, delete-orphan", passive_deletes=True
    )


class Payslip(Base, TimestampMixin):
    """Computed payslip for one employee in one run."""

    __tablename__ = "payslip"

    payslip_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.payroll_run_id", ondelete="CASCADE"),
        nullable=False,
    )
    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    employee_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    salary_structure_id: Mapped[UUID] = mapped_column(nullable=False)

    base_pay: Mapped[Decimal] = mapped_column(Money, nullable=False)
    pro_rated_base: Mapped[Decimal] = mapped_column(Money, nullable=False)
    working_days: Mapped[Decimal] = mapped_column(Days, nullable=False)
    present_days: Mapped[Decimal] = mapped_column(Days, nullable=False)
    leave_days: Mapped[Decimal] = mapped_column(Days, nullable=False, default=Decimal("0"))
    lop_days: Mapped[Decimal] = mapped_column(Days, nullable=False)
    ot_hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    ot_rate: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    ot_pay: Mapped[Decimal] = mapped_column(Money, nullable=False)

    # Serialized [{name, amount}] line items
    earnings: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False)
    deductions: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False)
    # Deep copy of the resolved structure components used for this payslip
    structure_snapshot: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False)

    gross_pay: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(Money, nullable=False)
    net_pay: Mapped[Decimal] = mapped_column(Money, nullable=False)
    net_clamped: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    shortfall: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))

    calculation_hash: Mapped[str] = mapped_column(String(32), nullable=False)
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint("payroll_run_id", "employee_id", name="payslip_run_employee_unique"),
        CheckConstraint("net_pay >= 0", name="payslip_net_pay_non_negative"),
        CheckConstraint("gross_pay >= 0", name="payslip_gross_pay_non_negative"),
    )

    payroll_run: Mapped[PayrollRun] = relationship(back_populates="payslips")


class PayslipFailure(Base):
    """Per-employee failure recorded during processing."""

    __tablename__ = "payslip_failure"

    payslip_failure_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.payroll_run_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    error_kind: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "payroll_run_id", "employee_id", name="payslip_failure_run_employee_unique"
        ),
    )

    payroll_run: Mapped[PayrollRun] = relationship(back_populates="failures")


class PayrollRunAudit(Base, TimestampMixin):
    """Append-only audit trail of run lifecycle actions."""

    __tablename__ = "payroll_run_audit"

    payroll_run_audit_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    # No FK: audit rows outlive deleted DRAFT runs
    payroll_run_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    actor: Mapped[str | None] = mapped_column(String, nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
