"""Collaborator interfaces and implementations."""

from payrun_engine.providers.base import (
    AttendanceFactProvider,
    EmployeeDirectory,
    FactProviderError,
    FactsNotFoundError,
    OtRateProvider,
    SalaryAssignmentProvider,
)
from payrun_engine.providers.database import (
    DatabaseAttendanceFactProvider,
    DatabaseEmployeeDirectory,
    DatabaseOtRateProvider,
    DatabaseSalaryAssignmentProvider,
)
from payrun_engine.providers.memory import InMemoryProviders, StubEmployee

__all__ = [
    "AttendanceFactProvider",
    "EmployeeDirectory",
    "FactProviderError",
    "FactsNotFoundError",
    "OtRateProvider",
    "SalaryAssignmentProvider",
    "DatabaseAttendanceFactProvider",
    "DatabaseEmployeeDirectory",
    "DatabaseOtRateProvider",
    "DatabaseSalaryAssignmentProvider",
    "InMemoryProviders",
    "StubEmployee",
]
