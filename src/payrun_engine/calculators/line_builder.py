"""Line item builder with minor-unit rounding and idempotent hashing."""

from __future__ import annotations

import hashlib
import json
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Iterable

from payrun_engine.calculators.types import LineItem, PayslipResult


class LineItemBuilder:
    """Builds payslip line items and totals.

    Rounding:
    - Internal compute at full Decimal precision
    - Each reported figure rounded once, half-to-even, to the minor unit
    - Totals are sums of reported figures, so they need no further rounding

    Sign conventions:
    - Earnings and deductions are both stored as non-negative amounts;
      the list they live in carries the sign.
    """

    def __init__(self, minor_unit_digits: int = 2):
        self.minor_unit_digits = minor_unit_digits
        self.quantum = Decimal(1).scaleb(-minor_unit_digits)

    def round_money(self, amount: Decimal) -> Decimal:
        """Round to the currency minor unit (banker's rounding)."""
        return amount.quantize(self.quantum, rounding=ROUND_HALF_EVEN)

    @staticmethod
    def round_hours(hours: Decimal) -> Decimal:
        """Round hours for display (2 places)."""
        return hours.quantize(Decimal("0.01"), rounding=ROUND_HALF_EVEN)

    @staticmethod
    def round_rate(rate: Decimal) -> Decimal:
        """Round an OT rate to the 4 places a payslip stores."""
        return rate.quantize(Decimal("0.0001"), rounding=ROUND_HALF_EVEN)

    def create_line(self, name: str, amount: Decimal) -> LineItem:
        """Create a line item (amount is always non-negative)."""
        return LineItem(name=name, amount=self.round_money(abs(amount)))

    def sum_lines(self, lines: Iterable[LineItem]) -> Decimal:
        """Sum already-rounded line amounts."""
        total = self.round_money(Decimal("0"))
        for line in lines:
            total += line.amount
        return total

    @staticmethod
    def compute_payslip_hash(result: PayslipResult) -> str:
        """Compute deterministic hash for a payslip.

        The hash covers every computed figure, ensuring identical inputs
        produce identical hashes.
        """
        canonical = result.to_canonical_dict()
        json_str = json.dumps(canonical, sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]

    @staticmethod
    def validate_payslip(result: PayslipResult) -> list[str]:
        """Check the payslip conservation identities.

        Returns list of error messages (empty if all hold).
        """
        errors: list[str] = []

        earnings_total = sum((e.amount for e in result.earnings), Decimal("0"))
        deductions_total = sum((d.amount for d in result.deductions), Decimal("0"))
        expected_gross = result.pro_rated_base + earnings_total + result.ot_pay

        if result.gross_pay != expected_gross:
            errors.append(
                f"Gross mismatch: payslip shows {result.gross_pay}, "
                f"lines sum to {expected_gross}"
            )
        if result.total_deductions != deductions_total:
            errors.append(
                f"Deductions mismatch: payslip shows {result.total_deductions}, "
                f"lines sum to {deductions_total}"
            )
        expected_net = max(Decimal("0"), result.gross_pay - result.total_deductions)
        if result.net_pay != expected_net:
            errors.append(f"Net mismatch: payslip shows {result.net_pay}, expected {expected_net}")

        for line in [*result.earnings, *result.deductions]:
            if line.amount < 0:
                errors.append(f"Line '{line.name}' has negative amount {line.amount}")

        return errors
