"""Payslip calculation."""

from payrun_engine.calculators.line_builder import LineItemBuilder
from payrun_engine.calculators.payslip_calculator import PayslipCalculator
from payrun_engine.calculators.rate_resolver import OtRateResolver

__all__ = [
    "PayslipCalculator",
    "LineItemBuilder",
    "OtRateResolver",
]
