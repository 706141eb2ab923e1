"""Payslip calculator - pure computation for one employee."""

from __future__ import annotations

import logging
from decimal import Decimal

from payrun_engine.calculators.line_builder import LineItemBuilder
from payrun_engine.calculators.types import (
    AttendanceFacts,
    CalcType,
    ComponentType,
    InvalidFactsError,
    LineItem,
    MissingOtRateError,
    PayPeriod,
    PayslipResult,
    SalaryAssignment,
    SalaryComponent,
    StructureSnapshot,
)

logger = logging.getLogger(__name__)

MINUTES_PER_HOUR = Decimal("60")


class PayslipCalculator:
    """Computes a payslip from an assignment, a structure snapshot and facts.

    Calculation pipeline (stable order):
    1) Validate facts
    2) Pro-rate base pay by loss-of-pay days
    3) Evaluate structure components against the un-prorated base
    4) Overtime pay from approved minutes and the resolved OT rate
    5) Aggregate gross, deductions and net (net clamped at zero)
    6) Hash the result for idempotency checks

    No I/O happens here; every input is passed in already resolved.
    """

    def __init__(self, minor_unit_digits: int = 2):
        self.line_builder = LineItemBuilder(minor_unit_digits)

    def compute(
        self,
        assignment: SalaryAssignment,
        structure: StructureSnapshot,
        facts: AttendanceFacts,
        period: PayPeriod,
        ot_rate: Decimal | None = None,
    ) -> PayslipResult:
        """Compute the payslip for one employee and period.

        Raises:
            InvalidFactsError: If facts are out of range
            MissingOtRateError: If approved OT exists without an OT rate
        """
        employee_id = assignment.employee_id
        self._validate(assignment, facts, period)

        working_days = Decimal(facts.working_days)
        lop_days = Decimal(facts.lop_days)
        base_pay = Decimal(assignment.base_pay)

        # 2) Pro-ration applies to the base-pay line only
        pro_rated_base = self.line_builder.round_money(
            base_pay * (working_days - lop_days) / working_days
        )

        # 3) Components. Each line is rounded on its own and totals add the
        # rounded lines, so a payslip always sums to its printed lines
        # (three 0.005 lines give 0.00, not 0.02)
        earnings: list[LineItem] = []
        deductions: list[LineItem] = []
        for component in structure.components:
            line = self.line_builder.create_line(
                component.name, self._component_amount(component, base_pay)
            )
            if component.type is ComponentType.EARNING:
                earnings.append(line)
            elif component.type is ComponentType.DEDUCTION:
                deductions.append(line)
            else:
                raise ValueError(f"Unsupported component type: {component.type}")

        # 4) Overtime
        ot_minutes = facts.approved_ot_minutes
        ot_hours_exact = Decimal(ot_minutes) / MINUTES_PER_HOUR
        if ot_minutes > 0:
            if ot_rate is None:
                raise MissingOtRateError(
                    employee_id,
                    f"{ot_minutes} approved OT minutes in {period} but no OT rate resolved",
                )
            ot_pay = self.line_builder.round_money(ot_hours_exact * ot_rate)
        else:
            ot_pay = self.line_builder.round_money(Decimal("0"))
        if ot_rate is not None:
            ot_rate = self.line_builder.round_rate(ot_rate)

        # 5) Aggregation
        gross_pay = pro_rated_base + self.line_builder.sum_lines(earnings) + ot_pay
        total_deductions = self.line_builder.sum_lines(deductions)
        difference = gross_pay - total_deductions
        net_clamped = difference < 0
        net_pay = self.line_builder.round_money(Decimal("0")) if net_clamped else difference
        shortfall = -difference if net_clamped else self.line_builder.round_money(Decimal("0"))

        if net_clamped:
            logger.warning(
                "Deductions exceed gross for employee %s in %s; net clamped to zero "
                "(shortfall %s)",
                employee_id,
                period,
                shortfall,
            )

        result = PayslipResult(
            employee_id=employee_id,
            salary_structure_id=structure.structure_id,
            base_pay=self.line_builder.round_money(base_pay),
            pro_rated_base=pro_rated_base,
            working_days=working_days,
            present_days=Decimal(facts.present_days),
            leave_days=Decimal(facts.leave_days),
            lop_days=lop_days,
            ot_hours=self.line_builder.round_hours(ot_hours_exact),
            ot_rate=ot_rate,
            ot_pay=ot_pay,
            earnings=earnings,
            deductions=deductions,
            gross_pay=gross_pay,
            total_deductions=total_deductions,
            net_pay=net_pay,
            net_clamped=net_clamped,
            shortfall=shortfall,
            structure_snapshot=structure.to_records(),
        )
        result.calculation_hash = LineItemBuilder.compute_payslip_hash(result)
        return result

    @staticmethod
    def _component_amount(component: SalaryComponent, base_pay: Decimal) -> Decimal:
        """Evaluate a component at full precision."""
        if component.calc_type is CalcType.PERCENTAGE:
            return base_pay * component.value / Decimal("100")
        if component.calc_type is CalcType.FIXED:
            return component.value
        raise ValueError(f"Unsupported calc_type: {component.calc_type}")

    @staticmethod
    def _validate(
        assignment: SalaryAssignment, facts: AttendanceFacts, period: PayPeriod
    ) -> None:
        """Validate calculation inputs, raising InvalidFactsError."""
        employee_id = assignment.employee_id
        problems: list[str] = []

        if assignment.base_pay < 0:
            problems.append(f"base_pay {assignment.base_pay} is negative")

        if facts.working_days <= 0:
            problems.append(f"working_days must be positive, got {facts.working_days}")
        else:
            for name in ("present_days", "leave_days", "lop_days"):
                value = getattr(facts, name)
                if value < 0 or value > facts.working_days:
                    problems.append(
                        f"{name} {value} outside [0, {facts.working_days}]"
                    )

        if facts.approved_ot_minutes < 0:
            problems.append(
                f"approved_ot_minutes must be non-negative, got {facts.approved_ot_minutes}"
            )

        if problems:
            raise InvalidFactsError(
                employee_id, f"Invalid facts for {period}: " + "; ".join(problems)
            )
