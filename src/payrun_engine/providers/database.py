"""Database-backed collaborator implementations.

Each lookup opens its own short-lived session so that concurrent workers of
one payroll run never share a session.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from typing import AsyncGenerator
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payrun_engine.calculators.rate_resolver import CompensationTerms, OtRateResolver, PayType
from payrun_engine.calculators.types import (
    AttendanceFacts,
    PayPeriod,
    SalaryAssignment,
    StructureSnapshot,
)
from payrun_engine.models import Employee, EmployeeSalary, MonthlyAttendance, SalaryStructure
from payrun_engine.providers.base import FactProviderError, FactsNotFoundError

logger = logging.getLogger(__name__)


class DatabaseProvider:
    """Shared session handling for database-backed providers."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with self.session_factory() as session:
                yield session
        except OperationalError as e:
            raise FactProviderError(f"Database unavailable: {e}") from e


class DatabaseEmployeeDirectory(DatabaseProvider):
    """Eligible employees: ACTIVE and joined on or before the period end."""

    async def list_eligible_employees(self, tenant_id: UUID, period: PayPeriod) -> list[UUID]:
        async with self._session() as session:
            result = await session.execute(
                select(Employee.employee_id)
                .where(
                    Employee.tenant_id == tenant_id,
                    Employee.status == "ACTIVE",
                    or_(Employee.join_date.is_(None), Employee.join_date <= period.end),
                )
                .order_by(Employee.employee_id)
            )
            return list(result.scalars().all())


class DatabaseSalaryAssignmentProvider(DatabaseProvider):
    """Resolves assignments and structure snapshots from salary tables."""

    async def get_active_salary_assignment(
        self, tenant_id: UUID, employee_id: UUID, as_of: date
    ) -> SalaryAssignment | None:
        async with self._session() as session:
            result = await session.execute(
                select(EmployeeSalary)
                .where(
                    EmployeeSalary.tenant_id == tenant_id,
                    EmployeeSalary.employee_id == employee_id,
                    EmployeeSalary.is_active.is_(True),
                    EmployeeSalary.effective_from <= as_of,
                    or_(
                        EmployeeSalary.effective_to.is_(None),
                        EmployeeSalary.effective_to >= as_of,
                    ),
                )
                .order_by(EmployeeSalary.effective_from.desc())
            )
            rows = list(result.scalars().all())

        if not rows:
            return None
        if len(rows) > 1:
            logger.warning(
                "Employee %s has %d overlapping active salary assignments on %s; "
                "using the latest",
                employee_id,
                len(rows),
                as_of,
            )
        row = rows[0]
        return SalaryAssignment(
            employee_id=row.employee_id,
            salary_structure_id=row.salary_structure_id,
            base_pay=Decimal(row.base_pay),
            effective_from=row.effective_from,
            effective_to=row.effective_to,
        )

    async def get_structure_snapshot(
        self, tenant_id: UUID, structure_id: UUID
    ) -> StructureSnapshot:
        async with self._session() as session:
            result = await session.execute(
                select(SalaryStructure).where(
                    SalaryStructure.salary_structure_id == structure_id,
                    SalaryStructure.tenant_id == tenant_id,
                )
            )
            structure = result.scalar_one_or_none()

        if structure is None:
            raise FactProviderError(
                f"Salary structure {structure_id} not found", retryable=False
            )
        return StructureSnapshot.from_records(
            structure.salary_structure_id, structure.name, structure.components
        )


class DatabaseAttendanceFactProvider(DatabaseProvider):
    """Reads the monthly attendance feed."""

    async def get_attendance_facts(
        self, tenant_id: UUID, employee_id: UUID, period: PayPeriod
    ) -> AttendanceFacts:
        async with self._session() as session:
            result = await session.execute(
                select(MonthlyAttendance).where(
                    MonthlyAttendance.tenant_id == tenant_id,
                    MonthlyAttendance.employee_id == employee_id,
                    MonthlyAttendance.month == period.month,
                    MonthlyAttendance.year == period.year,
                )
            )
            row = result.scalar_one_or_none()

        if row is None:
            raise FactsNotFoundError(employee_id, period)
        return AttendanceFacts(
            working_days=Decimal(row.working_days),
            present_days=Decimal(row.present_days),
            leave_days=Decimal(row.leave_days),
            lop_days=Decimal(row.lop_days),
            approved_ot_minutes=row.approved_ot_minutes,
        )


class DatabaseOtRateProvider(DatabaseProvider):
    """Derives OT rates from the employee's compensation columns."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        resolver: OtRateResolver | None = None,
    ):
        super().__init__(session_factory)
        self.resolver = resolver or OtRateResolver()

    async def get_ot_rate(
        self, tenant_id: UUID, employee_id: UUID, assignment: SalaryAssignment
    ) -> Decimal | None:
        async with self._session() as session:
            result = await session.execute(
                select(Employee).where(
                    Employee.employee_id == employee_id,
                    Employee.tenant_id == tenant_id,
                )
            )
            employee = result.scalar_one_or_none()

        if employee is None:
            return None
        return self.resolver.try_resolve(
            CompensationTerms(
                employee_id=employee_id,
                pay_type=PayType(employee.pay_type),
                ot_multiplier=Decimal(employee.ot_multiplier),
                hourly_rate=(
                    Decimal(employee.hourly_rate) if employee.hourly_rate is not None else None
                ),
                base_pay=assignment.base_pay,
            )
        )
