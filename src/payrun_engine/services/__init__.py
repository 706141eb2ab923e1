"""Business logic services."""

from payrun_engine.services.payroll_run_service import (
    PayrollProviders,
    PayrollRunService,
    ProcessResult,
    RunAlreadyProcessingError,
    RunSummary,
)
from payrun_engine.services.repository import (
    DuplicateRunError,
    PayrollRunNotFoundError,
    PayrollRunRepository,
    RunTotals,
)
from payrun_engine.services.state_machine import (
    InvalidTransitionError,
    PayrollRunStateMachine,
    PayrollRunStatus,
)

__all__ = [
    "PayrollProviders",
    "PayrollRunService",
    "ProcessResult",
    "RunAlreadyProcessingError",
    "RunSummary",
    "DuplicateRunError",
    "PayrollRunNotFoundError",
    "PayrollRunRepository",
    "RunTotals",
    "InvalidTransitionError",
    "PayrollRunStateMachine",
    "PayrollRunStatus",
]
