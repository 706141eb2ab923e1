"""Overtime rate resolution from employee compensation terms."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID


class PayType(str, Enum):
    """How an employee's pay is expressed."""

    SALARIED = "SALARIED"
    HOURLY = "HOURLY"


class OtRateNotFoundError(Exception):
    """Raised when no OT rate can be derived for an employee."""

    def __init__(self, employee_id: UUID, reason: str):
        self.employee_id = employee_id
        self.reason = reason
        super().__init__(f"No OT rate for employee {employee_id}: {reason}")


@dataclass(frozen=True)
class CompensationTerms:
    """Compensation inputs needed to derive an hourly OT rate."""

    employee_id: UUID
    pay_type: PayType
    ot_multiplier: Decimal
    hourly_rate: Decimal | None = None
    base_pay: Decimal | None = None


class OtRateResolver:
    """Derives the hourly overtime rate.

    Rate selection:
    1. Hourly staff: hourly_rate x ot_multiplier
    2. Salaried staff: base_pay / standard monthly hours x ot_multiplier
    3. Anything else (missing hourly rate, zero multiplier) is not resolvable
    """

    def __init__(self, standard_monthly_minutes: int = 12480):
        if standard_monthly_minutes <= 0:
            raise ValueError("standard_monthly_minutes must be positive")
        self.standard_monthly_hours = Decimal(standard_monthly_minutes) / Decimal("60")

    def resolve(self, terms: CompensationTerms) -> Decimal:
        """Resolve the hourly OT rate (full precision).

        Raises:
            OtRateNotFoundError: If the terms do not determine a rate
        """
        if terms.ot_multiplier is None or terms.ot_multiplier <= 0:
            raise OtRateNotFoundError(terms.employee_id, "OT multiplier is not positive")

        if terms.pay_type == PayType.HOURLY:
            if terms.hourly_rate is None or terms.hourly_rate <= 0:
                raise OtRateNotFoundError(
                    terms.employee_id, "hourly employee has no hourly rate"
                )
            return terms.hourly_rate * terms.ot_multiplier

        if terms.base_pay is None or terms.base_pay <= 0:
            raise OtRateNotFoundError(
                terms.employee_id, "salaried employee has no base pay"
            )
        return terms.base_pay / self.standard_monthly_hours * terms.ot_multiplier

    def try_resolve(self, terms: CompensationTerms) -> Decimal | None:
        """Resolve the OT rate, returning None when it cannot be derived."""
        try:
            return self.resolve(terms)
        except OtRateNotFoundError:
            return None
