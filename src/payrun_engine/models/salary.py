"""Salary structure and employee salary assignment models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payrun_engine.models.base import Base, JSONType, TimestampMixin


class SalaryStructure(Base, TimestampMixin):
    """Named, reusable set of salary components."""

    __tablename__ = "salary_structure"

    salary_structure_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Ordered list of {name, type, calc_type, value}
    components: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="salary_structure_tenant_name_unique"),
    )

    assignments: Mapped[list[EmployeeSalary]] = relationship(back_populates="salary_structure")


class EmployeeSalary(Base, TimestampMixin):
    """Time-bounded binding of an employee to a structure and base pay."""

    __tablename__ = "employee_salary"

    employee_salary_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    employee_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    salary_structure_id: Mapped[UUID] = mapped_column(
        ForeignKey("salary_structure.salary_structure_id"),
        nullable=False,
    )
    base_pay: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("base_pay >= 0", name="employee_salary_base_pay_check"),
        CheckConstraint(
            "effective_to IS NULL OR effective_to >= effective_from",
            name="employee_salary_dates_check",
        ),
    )

    salary_structure: Mapped[SalaryStructure] = relationship(back_populates="assignments")

    def is_active_on(self, as_of_date: date) -> bool:
        """Check if the assignment covers a date."""
        if not self.is_active or self.effective_from > as_of_date:
            return False
        return self.effective_to is None or self.effective_to >= as_of_date
