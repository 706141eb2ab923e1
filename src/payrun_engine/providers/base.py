"""Protocols for the collaborators a payroll run depends on.

The orchestrator only talks to employees, salary assignments, attendance
and overtime through these interfaces. Implementations live in
``providers.database`` (production) and ``providers.memory`` (tests, local runs).
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from payrun_engine.calculators.types import (
    AttendanceFacts,
    PayPeriod,
    SalaryAssignment,
    StructureSnapshot,
)


class FactProviderError(Exception):
    """Raised when a collaborator cannot supply facts.

    ``retryable`` marks infrastructure failures (timeouts, unavailable
    backends) that are worth another attempt. Data gaps are not retryable.
    """

    def __init__(self, message: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)


class FactsNotFoundError(FactProviderError):
    """No attendance facts exist for the employee and period."""

    def __init__(self, employee_id: UUID, period: PayPeriod):
        self.employee_id = employee_id
        self.period = period
        super().__init__(
            f"No attendance facts for employee {employee_id} in {period}",
            retryable=False,
        )


class EmployeeDirectory(Protocol):
    """Lists employees eligible for payroll."""

    async def list_eligible_employees(self, tenant_id: UUID, period: PayPeriod) -> list[UUID]:
        """Return ids of active employees of the tenant for the period."""
        ...


class SalaryAssignmentProvider(Protocol):
    """Resolves salary assignments and structure snapshots."""

    async def get_active_salary_assignment(
        self, tenant_id: UUID, employee_id: UUID, as_of: date
    ) -> SalaryAssignment | None:
        """Return the assignment active on ``as_of`` or None."""
        ...

    async def get_structure_snapshot(
        self, tenant_id: UUID, structure_id: UUID
    ) -> StructureSnapshot:
        """Return an immutable copy of a salary structure."""
        ...


class AttendanceFactProvider(Protocol):
    """Supplies approved monthly attendance facts."""

    async def get_attendance_facts(
        self, tenant_id: UUID, employee_id: UUID, period: PayPeriod
    ) -> AttendanceFacts:
        """Return facts for the period.

        Raises:
            FactProviderError: If facts cannot be supplied
        """
        ...


class OtRateProvider(Protocol):
    """Supplies the resolved hourly overtime rate."""

    async def get_ot_rate(
        self, tenant_id: UUID, employee_id: UUID, assignment: SalaryAssignment
    ) -> Decimal | None:
        """Return the hourly OT rate, or None when not resolvable.

        Raises:
            FactProviderError: If the lookup itself fails
        """
        ...
