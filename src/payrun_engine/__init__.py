"""Payroll run engine: monthly payslip computation and run lifecycle."""

__version__ = "0.1.0"
