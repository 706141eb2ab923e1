"""Type definitions for the payslip calculation pipeline."""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class ComponentType(str, Enum):
    """Whether a salary component adds to or subtracts from pay."""

    EARNING = "earning"
    DEDUCTION = "deduction"


class CalcType(str, Enum):
    """How a salary component amount is derived."""

    PERCENTAGE = "percentage"  # of un-prorated base pay
    FIXED = "fixed"


@dataclass(frozen=True)
class SalaryComponent:
    """One component of a salary structure."""

    name: str
    type: ComponentType
    calc_type: CalcType
    value: Decimal

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Component name must not be empty")
        if self.value < 0:
            raise ValueError(f"Component '{self.name}' has negative value {self.value}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SalaryComponent:
        """Build from a stored component record.

        Accepts both ``calc_type`` and the legacy ``calcType`` key.
        """
        calc_type = data.get("calc_type", data.get("calcType"))
        return cls(
            name=str(data["name"]),
            type=ComponentType(data["type"]),
            calc_type=CalcType(calc_type),
            value=Decimal(str(data["value"])),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON storage."""
        return {
            "name": self.name,
            "type": self.type.value,
            "calc_type": self.calc_type.value,
            "value": str(self.value),
        }


@dataclass(frozen=True)
class StructureSnapshot:
    """Immutable copy of a salary structure taken for one run."""

    structure_id: UUID
    name: str
    components: tuple[SalaryComponent, ...] = ()

    @classmethod
    def from_records(
        cls, structure_id: UUID, name: str, components: list[dict[str, Any]]
    ) -> StructureSnapshot:
        return cls(
            structure_id=structure_id,
            name=name,
            components=tuple(SalaryComponent.from_dict(c) for c in components or []),
        )

    def to_records(self) -> list[dict[str, Any]]:
        return [c.to_dict() for c in self.components]


@dataclass(frozen=True)
class SalaryAssignment:
    """Resolved salary assignment for one employee."""

    employee_id: UUID
    salary_structure_id: UUID
    base_pay: Decimal
    effective_from: date
    effective_to: date | None = None


@dataclass(frozen=True)
class AttendanceFacts:
    """Monthly attendance facts supplied by the attendance module."""

    working_days: Decimal
    present_days: Decimal
    lop_days: Decimal = Decimal("0")
    leave_days: Decimal = Decimal("0")
    approved_ot_minutes: int = 0


@dataclass(frozen=True)
class PayPeriod:
    """A calendar month."""

    month: int
    year: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be between 1 and 12, got {self.month}")

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass(frozen=True)
class LineItem:
    """A named payslip amount (earning or deduction)."""

    name: str
    amount: Decimal

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "amount": str(self.amount)}


@dataclass
class PayslipResult:
    """Output of the payslip calculator for one employee."""

    employee_id: UUID
    salary_structure_id: UUID
    base_pay: Decimal
    pro_rated_base: Decimal
    working_days: Decimal
    present_days: Decimal
    leave_days: Decimal
    lop_days: Decimal
    ot_hours: Decimal
    ot_rate: Decimal | None
    ot_pay: Decimal
    earnings: list[LineItem] = field(default_factory=list)
    deductions: list[LineItem] = field(default_factory=list)
    gross_pay: Decimal = Decimal("0")
    total_deductions: Decimal = Decimal("0")
    net_pay: Decimal = Decimal("0")
    net_clamped: bool = False
    shortfall: Decimal = Decimal("0")
    structure_snapshot: list[dict[str, Any]] = field(default_factory=list)
    calculation_hash: str = ""

    def to_canonical_dict(self) -> dict[str, Any]:
        """Return canonical dict for hashing (deterministic ordering)."""
        return {
            "employee_id": str(self.employee_id),
            "salary_structure_id": str(self.salary_structure_id),
            "base_pay": str(self.base_pay),
            "pro_rated_base": str(self.pro_rated_base),
            "working_days": str(self.working_days),
            "present_days": str(self.present_days),
            "leave_days": str(self.leave_days),
            "lop_days": str(self.lop_days),
            "ot_hours": str(self.ot_hours),
            "ot_rate": str(self.ot_rate) if self.ot_rate is not None else None,
            "ot_pay": str(self.ot_pay),
            "earnings": [e.to_dict() for e in self.earnings],
            "deductions": [d.to_dict() for d in self.deductions],
            "gross_pay": str(self.gross_pay),
            "total_deductions": str(self.total_deductions),
            "net_pay": str(self.net_pay),
            "structure_snapshot": self.structure_snapshot,
        }


# ===== Per-employee calculation errors =====


class CalculationError(Exception):
    """Base class for per-employee failures that never abort a run."""

    kind = "CALCULATION_ERROR"

    def __init__(self, employee_id: UUID | None, message: str):
        self.employee_id = employee_id
        self.message = message
        super().__init__(message)


class InvalidFactsError(CalculationError):
    """Attendance facts are inconsistent (e.g. lop_days > working_days)."""

    kind = "INVALID_FACTS"


class NoActiveAssignmentError(CalculationError):
    """No salary assignment covers the period."""

    kind = "NO_ACTIVE_ASSIGNMENT"


class MissingOtRateError(CalculationError):
    """Approved overtime exists but no OT rate could be resolved."""

    kind = "MISSING_OT_RATE"


class FactsUnavailableError(CalculationError):
    """Fact lookup timed out or failed after all retries."""

    kind = "FACTS_UNAVAILABLE"

    def __init__(self, employee_id: UUID | None, message: str, attempts: int = 1):
        self.attempts = attempts
        super().__init__(employee_id, message)


class UnexpectedCalculationError(CalculationError):
    """Any other exception raised while computing one employee."""

    kind = "UNEXPECTED"
