"""In-memory collaborator implementation.

Not for production use. Backs unit tests and local runs
without an attendance module. One object implements every provider
protocol.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from payrun_engine.calculators.rate_resolver import CompensationTerms, OtRateResolver, PayType
from payrun_engine.calculators.types import (
    AttendanceFacts,
    PayPeriod,
    SalaryAssignment,
    StructureSnapshot,
)
from payrun_engine.calculators.workdays import LeaveRecord, monthly_facts
from payrun_engine.providers.base import FactProviderError, FactsNotFoundError


@dataclass
class StubEmployee:
    """Employee record held by the in-memory directory."""

    employee_id: UUID
    tenant_id: UUID
    status: str = "ACTIVE"
    join_date: date | None = None
    pay_type: PayType = PayType.SALARIED
    hourly_rate: Decimal | None = None
    ot_multiplier: Decimal = Decimal("1.5")


@dataclass
class InMemoryProviders:
    """Dict-backed employees, assignments, structures and facts.

    ``transient_failures`` makes the next N fact lookups of an employee
    raise a retryable FactProviderError; ``fact_delay_seconds`` slows
    lookups to exercise timeouts.
    """

    employees: dict[UUID, StubEmployee] = field(default_factory=dict)
    assignments: dict[UUID, list[SalaryAssignment]] = field(default_factory=dict)
    structures: dict[UUID, StructureSnapshot] = field(default_factory=dict)
    facts: dict[tuple[UUID, int, int], AttendanceFacts] = field(default_factory=dict)
    ot_rates: dict[UUID, Decimal] = field(default_factory=dict)
    transient_failures: dict[UUID, int] = field(default_factory=dict)
    fact_delay_seconds: dict[UUID, float] = field(default_factory=dict)
    resolver: OtRateResolver = field(default_factory=OtRateResolver)
    fact_calls: dict[UUID, int] = field(default_factory=dict)

    # === Setup helpers ===

    def add_employee(self, employee: StubEmployee) -> StubEmployee:
        self.employees[employee.employee_id] = employee
        return employee

    def add_structure(self, structure: StructureSnapshot) -> StructureSnapshot:
        self.structures[structure.structure_id] = structure
        return structure

    def assign(self, assignment: SalaryAssignment) -> SalaryAssignment:
        self.assignments.setdefault(assignment.employee_id, []).append(assignment)
        return assignment

    def set_facts(self, employee_id: UUID, period: PayPeriod, facts: AttendanceFacts) -> None:
        self.facts[(employee_id, period.year, period.month)] = facts

    def record_attendance(
        self,
        employee_id: UUID,
        period: PayPeriod,
        present_days: Decimal,
        leaves: Iterable[LeaveRecord] = (),
        holidays: Iterable[date] = (),
        approved_ot_minutes: int = 0,
    ) -> AttendanceFacts:
        """Derive facts from calendar data (weekdays, holidays, leave)."""
        facts = monthly_facts(period, present_days, leaves, holidays, approved_ot_minutes)
        self.set_facts(employee_id, period, facts)
        return facts

    # === EmployeeDirectory ===

    async def list_eligible_employees(self, tenant_id: UUID, period: PayPeriod) -> list[UUID]:
        return sorted(
            (
                e.employee_id
                for e in self.employees.values()
                if e.tenant_id == tenant_id
                and e.status == "ACTIVE"
                and (e.join_date is None or e.join_date <= period.end)
            ),
            key=str,
        )

    # === SalaryAssignmentProvider ===

    async def get_active_salary_assignment(
        self, tenant_id: UUID, employee_id: UUID, as_of: date
    ) -> SalaryAssignment | None:
        candidates = [
            a
            for a in self.assignments.get(employee_id, [])
            if a.effective_from <= as_of and (a.effective_to is None or a.effective_to >= as_of)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda a: a.effective_from)

    async def get_structure_snapshot(
        self, tenant_id: UUID, structure_id: UUID
    ) -> StructureSnapshot:
        structure = self.structures.get(structure_id)
        if structure is None:
            raise FactProviderError(f"Salary structure {structure_id} not found", retryable=False)
        return structure

    # === AttendanceFactProvider ===

    async def get_attendance_facts(
        self, tenant_id: UUID, employee_id: UUID, period: PayPeriod
    ) -> AttendanceFacts:
        self.fact_calls[employee_id] = self.fact_calls.get(employee_id, 0) + 1

        delay = self.fact_delay_seconds.get(employee_id)
        if delay:
            await asyncio.sleep(delay)

        remaining = self.transient_failures.get(employee_id, 0)
        if remaining > 0:
            self.transient_failures[employee_id] = remaining - 1
            raise FactProviderError(f"Attendance service unavailable for {employee_id}")

        facts = self.facts.get((employee_id, period.year, period.month))
        if facts is None:
            raise FactsNotFoundError(employee_id, period)
        return facts

    # === OtRateProvider ===

    async def get_ot_rate(
        self, tenant_id: UUID, employee_id: UUID, assignment: SalaryAssignment
    ) -> Decimal | None:
        if employee_id in self.ot_rates:
            return self.ot_rates[employee_id]
        employee = self.employees.get(employee_id)
        if employee is None:
            return None
        return self.resolver.try_resolve(
            CompensationTerms(
                employee_id=employee_id,
                pay_type=employee.pay_type,
                ot_multiplier=employee.ot_multiplier,
                hourly_rate=employee.hourly_rate,
                base_pay=assignment.base_pay,
            )
        )
