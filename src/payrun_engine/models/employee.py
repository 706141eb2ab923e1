"""Employee and attendance boundary records.

These tables are owned by the employee and attendance modules. The payroll
run engine only reads them through the database-backed providers.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payrun_engine.models.base import Base, Days, TimestampMixin


class Employee(Base, TimestampMixin):
    """Employee record (payroll-relevant columns only)."""

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    employee_code: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="ACTIVE")
    join_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    pay_type: Mapped[str] = mapped_column(String, nullable=False, default="SALARIED")
    hourly_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    ot_multiplier: Mapped[Decimal] = mapped_column(
        Numeric(6, 3), nullable=False, default=Decimal("1.5")
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('ACTIVE', 'INACTIVE', 'TERMINATED')",
            name="employee_status_check",
        ),
        CheckConstraint(
            "pay_type IN ('SALARIED', 'HOURLY')",
            name="employee_pay_type_check",
        ),
        CheckConstraint("ot_multiplier >= 0", name="employee_ot_multiplier_check"),
    )


class MonthlyAttendance(Base, TimestampMixin):
    """Approved monthly attendance facts published by the attendance module."""

    __tablename__ = "monthly_attendance"

    monthly_attendance_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    working_days: Mapped[Decimal] = mapped_column(Days, nullable=False)
    present_days: Mapped[Decimal] = mapped_column(Days, nullable=False)
    leave_days: Mapped[Decimal] = mapped_column(
        Days, nullable=False, default=Decimal("0")
    )
    lop_days: Mapped[Decimal] = mapped_column(
        Days, nullable=False, default=Decimal("0")
    )
    approved_ot_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint(
            "employee_id", "month", "year", name="monthly_attendance_employee_period_unique"
        ),
        CheckConstraint("month BETWEEN 1 AND 12", name="monthly_attendance_month_check"),
    )
