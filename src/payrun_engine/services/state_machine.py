"""Payroll run state machine with transition validation."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from payrun_engine.models import PayrollRun


class PayrollRunStatus(str, Enum):
    """Payroll run status values."""

    DRAFT = "DRAFT"
    PROCESSING = "PROCESSING"
    COMPUTED = "COMPUTED"
    APPROVED = "APPROVED"
    PAID = "PAID"


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PayrollRunStateMachine:
    """State machine for payroll run status transitions.

    Allowed transitions:
    - DRAFT → PROCESSING (process)
    - COMPUTED → PROCESSING (reprocess)
    - PROCESSING → COMPUTED (processing finished)
    - PROCESSING → DRAFT (first pass aborted by a run-level failure)
    - COMPUTED → APPROVED
    - APPROVED → PAID

    DRAFT runs may also be deleted. PAID is terminal.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PayrollRunStatus.DRAFT: [PayrollRunStatus.PROCESSING],
        PayrollRunStatus.PROCESSING: [PayrollRunStatus.COMPUTED, PayrollRunStatus.DRAFT],
        PayrollRunStatus.COMPUTED: [PayrollRunStatus.PROCESSING, PayrollRunStatus.APPROVED],
        PayrollRunStatus.APPROVED: [PayrollRunStatus.PAID],
        PayrollRunStatus.PAID: [],  # Terminal state
    }

    # Statuses from which process() may claim the run
    PROCESSABLE = {
        PayrollRunStatus.DRAFT,
        PayrollRunStatus.COMPUTED,
    }

    DELETABLE = {
        PayrollRunStatus.DRAFT,
    }

    # Statuses where payslips may no longer be written
    RESULTS_IMMUTABLE = {
        PayrollRunStatus.APPROVED,
        PayrollRunStatus.PAID,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def can_process(cls, status: str) -> bool:
        """Check if process() may claim a run in this status."""
        return status in cls.PROCESSABLE

    @classmethod
    def can_delete(cls, status: str) -> bool:
        return status in cls.DELETABLE

    @classmethod
    def are_results_immutable(cls, status: str) -> bool:
        """Check if payslips are frozen in this status."""
        return status in cls.RESULTS_IMMUTABLE

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])

    @classmethod
    def validate_run_for_transition(
        cls, run: PayrollRun, to_status: str, override: bool = False
    ) -> list[str]:
        """Validate a run for a specific transition, returning any errors.

        ``override`` lets approval proceed despite per-employee errors.
        Returns list of error messages (empty if valid).
        """
        errors: list[str] = []
        from_status = run.status

        if not cls.can_transition(from_status, to_status):
            errors.append(f"Cannot transition from '{from_status}' to '{to_status}'")
            return errors

        if to_status == PayrollRunStatus.APPROVED:
            if run.processed_count == 0 and not override:
                errors.append("Payroll run has no computed payslips")
            if run.error_count > 0 and not override:
                errors.append(
                    f"{run.error_count} employee(s) have calculation errors; "
                    "fix and reprocess, or approve with override"
                )

        return errors
