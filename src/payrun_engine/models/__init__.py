"""ORM models for the payroll run engine."""

from payrun_engine.models.base import Base, TimestampMixin
from payrun_engine.models.employee import Employee, MonthlyAttendance
from payrun_engine.models.payroll import PayrollRun, PayrollRunAudit, Payslip, PayslipFailure
from payrun_engine.models.salary import EmployeeSalary, SalaryStructure

__all__ = [
    "Base",
    "TimestampMixin",
    "Employee",
    "MonthlyAttendance",
    "SalaryStructure",
    "EmployeeSalary",
    "PayrollRun",
    "Payslip",
    "PayslipFailure",
    "PayrollRunAudit",
]
