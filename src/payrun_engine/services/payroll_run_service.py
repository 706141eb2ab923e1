"""Payroll run service - orchestrates run lifecycle and payslip computation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payrun_engine.calculators.line_builder import LineItemBuilder
from payrun_engine.calculators.payslip_calculator import PayslipCalculator
from payrun_engine.calculators.rate_resolver import OtRateResolver
from payrun_engine.calculators.types import (
    CalculationError,
    FactsUnavailableError,
    NoActiveAssignmentError,
    PayPeriod,
    PayslipResult,
    StructureSnapshot,
    UnexpectedCalculationError,
)
from payrun_engine.config import Settings, get_settings
from payrun_engine.models import PayrollRun, Payslip, PayslipFailure
from payrun_engine.models.base import utcnow
from payrun_engine.providers.base import (
    AttendanceFactProvider,
    EmployeeDirectory,
    FactProviderError,
    OtRateProvider,
    SalaryAssignmentProvider,
)
from payrun_engine.providers.database import (
    DatabaseAttendanceFactProvider,
    DatabaseEmployeeDirectory,
    DatabaseOtRateProvider,
    DatabaseSalaryAssignmentProvider,
)
from payrun_engine.services.repository import PayrollRunRepository, RunTotals
from payrun_engine.services.state_machine import (
    InvalidTransitionError,
    PayrollRunStateMachine,
    PayrollRunStatus,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RunAlreadyProcessingError(Exception):
    """Raised when another caller owns a PROCESSING run."""

    def __init__(self, payroll_run_id: UUID, reason: str | None = None):
        self.payroll_run_id = payroll_run_id
        msg = f"Payroll run {payroll_run_id} is already being processed"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


@dataclass(frozen=True)
class PayrollProviders:
    """The collaborators a run needs to compute payslips."""

    directory: EmployeeDirectory
    assignments: SalaryAssignmentProvider
    attendance: AttendanceFactProvider
    ot_rates: OtRateProvider

    @classmethod
    def from_database(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
    ) -> PayrollProviders:
        settings = settings or get_settings()
        resolver = OtRateResolver(standard_monthly_minutes=settings.standard_monthly_minutes)
        return cls(
            directory=DatabaseEmployeeDirectory(session_factory),
            assignments=DatabaseSalaryAssignmentProvider(session_factory),
            attendance=DatabaseAttendanceFactProvider(session_factory),
            ot_rates=DatabaseOtRateProvider(session_factory, resolver),
        )

    @classmethod
    def from_single(cls, provider: Any) -> PayrollProviders:
        """Use one object implementing every protocol (e.g. InMemoryProviders)."""
        return cls(
            directory=provider,
            assignments=provider,
            attendance=provider,
            ot_rates=provider,
        )


@dataclass
class ProcessResult:
    """Outcome of one process() pass."""

    run: PayrollRun
    resumed: bool = False
    computed: list[UUID] = field(default_factory=list)
    failed: dict[UUID, str] = field(default_factory=dict)
    skipped: int = 0


@dataclass
class RunSummary:
    """Counts, totals and failures of a run."""

    run: PayrollRun
    failures: list[PayslipFailure]


class PayrollRunService:
    """Service for managing payroll run lifecycle.

    Operations:
    - create_run: Open a DRAFT run for (tenant, month, year)
    - process: Claim the run, compute payslips concurrently, finish as COMPUTED
    - approve: COMPUTED → APPROVED, gated on a clean run unless overridden
    - mark_paid: APPROVED → PAID
    - delete_run: Remove a DRAFT run

    Processing pipeline:
    1. Claim via compare-and-swap (DRAFT/COMPUTED → PROCESSING, or stale takeover)
    2. Fetch the eligible employee set once
    3. Compute pending employees under a bounded semaphore
    4. Persist each outcome through a lock-guarded writer
    5. Finish via token-guarded compare-and-swap with recomputed totals
    """

    def __init__(
        self,
        session: AsyncSession,
        providers: PayrollProviders,
        settings: Settings | None = None,
        calculator: PayslipCalculator | None = None,
    ):
        self.session = session
        self.providers = providers
        self.settings = settings or get_settings()
        self.calculator = calculator or PayslipCalculator(
            minor_unit_digits=self.settings.minor_unit_digits
        )
        self.repository = PayrollRunRepository(session)

    # === Queries ===

    async def get_run(self, payroll_run_id: UUID, tenant_id: UUID | None = None) -> PayrollRun:
        return await self.repository.get_run(payroll_run_id, tenant_id)

    async def list_runs(
        self,
        tenant_id: UUID,
        year: int | None = None,
        status: str | None = None,
    ) -> list[PayrollRun]:
        return await self.repository.list_runs(tenant_id, year=year, status=status)

    async def get_run_summary(
        self, payroll_run_id: UUID, tenant_id: UUID | None = None
    ) -> RunSummary:
        run = await self.repository.get_run(payroll_run_id, tenant_id)
        failures = await self.repository.list_failures(payroll_run_id)
        return RunSummary(run=run, failures=failures)

    async def list_payslips_for_run(
        self, payroll_run_id: UUID, tenant_id: UUID | None = None
    ) -> list[Payslip]:
        await self.repository.get_run(payroll_run_id, tenant_id)
        return await self.repository.list_payslips(payroll_run_id)

    async def get_payslip_page(
        self,
        payroll_run_id: UUID,
        tenant_id: UUID | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[Payslip], int]:
        """One page of a run's payslips plus the total count."""
        await self.repository.get_run(payroll_run_id, tenant_id)
        payslips = await self.repository.list_payslips(
            payroll_run_id, offset=(page - 1) * limit, limit=limit
        )
        return payslips, await self.repository.count_payslips(payroll_run_id)

    async def get_payslip(
        self,
        payroll_run_id: UUID,
        employee_id: UUID,
        tenant_id: UUID | None = None,
    ) -> Payslip | None:
        await self.repository.get_run(payroll_run_id, tenant_id)
        return await self.repository.get_payslip(payroll_run_id, employee_id)

    async def get_payslips_for_employee(
        self,
        tenant_id: UUID,
        employee_id: UUID,
        include_unapproved: bool = False,
    ) -> list[tuple[Payslip, PayrollRun]]:
        """Payslips visible to an employee.

        Only APPROVED and PAID runs are released unless ``include_unapproved``.
        """
        statuses = None if include_unapproved else PayrollRunStateMachine.RESULTS_IMMUTABLE
        return await self.repository.list_payslips_for_employee(
            tenant_id, employee_id, statuses=statuses
        )

    async def find_stale_runs(self) -> list[PayrollRun]:
        stale_before = utcnow() - timedelta(seconds=self.settings.stale_after_seconds)
        return await self.repository.find_stale_runs(stale_before)

    # === Lifecycle ===

    async def create_run(
        self,
        tenant_id: UUID,
        month: int,
        year: int,
        remarks: str | None = None,
        actor: str | None = None,
    ) -> PayrollRun:
        """Create a DRAFT run.

        Raises:
            ValueError: If month/year do not form a valid period
            DuplicateRunError: If a run already exists for the period
        """
        PayPeriod(month=month, year=year)
        run = await self.repository.create_run(tenant_id, month, year, remarks)
        await self.repository.add_audit(run, "create", actor, {"month": month, "year": year})
        await self.session.commit()
        logger.info("Created payroll run %s for %02d/%d", run.payroll_run_id, month, year)
        return run

    async def approve(
        self,
        payroll_run_id: UUID,
        actor: str | None = None,
        override: bool = False,
        tenant_id: UUID | None = None,
    ) -> PayrollRun:
        """Approve a COMPUTED run.

        Raises:
            InvalidTransitionError: If not COMPUTED, or has errors/no payslips
                without ``override``
        """
        run = await self.repository.get_run(payroll_run_id, tenant_id)
        target = PayrollRunStatus.APPROVED.value
        errors = PayrollRunStateMachine.validate_run_for_transition(run, target, override)
        if errors:
            raise InvalidTransitionError(run.status, target, "; ".join(errors))

        overridden = override and (run.error_count > 0 or run.processed_count == 0)
        won = await self.repository.compare_and_set_status(
            payroll_run_id,
            expected=[PayrollRunStatus.COMPUTED],
            new_status=target,
            values={
                "approved_at": utcnow(),
                "approved_by": actor,
                "approval_override": overridden,
            },
        )
        if not won:
            await self.session.rollback()
            current = await self.repository.get_run(payroll_run_id)
            raise InvalidTransitionError(current.status, target, "run changed concurrently")

        await self.repository.add_audit(
            run,
            "approve",
            actor,
            {"override": overridden, "error_count": run.error_count},
        )
        await self.session.commit()
        if overridden:
            logger.warning(
                "Payroll run %s approved with override (%d errors)",
                payroll_run_id,
                run.error_count,
            )
        return await self.repository.get_run(payroll_run_id)

    async def mark_paid(
        self,
        payroll_run_id: UUID,
        actor: str | None = None,
        tenant_id: UUID | None = None,
    ) -> PayrollRun:
        """Move an APPROVED run to PAID (terminal)."""
        run = await self.repository.get_run(payroll_run_id, tenant_id)
        target = PayrollRunStatus.PAID.value
        PayrollRunStateMachine.validate_transition(run.status, target)

        won = await self.repository.compare_and_set_status(
            payroll_run_id,
            expected=[PayrollRunStatus.APPROVED],
            new_status=target,
            values={"paid_at": utcnow()},
        )
        if not won:
            await self.session.rollback()
            current = await self.repository.get_run(payroll_run_id)
            raise InvalidTransitionError(current.status, target, "run changed concurrently")

        await self.repository.add_audit(run, "mark_paid", actor)
        await self.session.commit()
        return await self.repository.get_run(payroll_run_id)

    async def delete_run(
        self,
        payroll_run_id: UUID,
        actor: str | None = None,
        tenant_id: UUID | None = None,
    ) -> None:
        """Delete a DRAFT run.

        Raises:
            InvalidTransitionError: If the run is not DRAFT
        """
        run = await self.repository.get_run(payroll_run_id, tenant_id)
        if not PayrollRunStateMachine.can_delete(run.status):
            raise InvalidTransitionError(run.status, "DELETED", "only DRAFT runs can be deleted")

        deleted = await self.repository.delete_draft_run(payroll_run_id)
        if not deleted:
            await self.session.rollback()
            current = await self.repository.get_run(payroll_run_id)
            raise InvalidTransitionError(current.status, "DELETED", "run changed concurrently")

        await self.repository.add_audit(run, "delete", actor)
        await self.session.commit()
        logger.info("Deleted payroll run %s", payroll_run_id)

    # === Processing ===

    async def process(
        self,
        payroll_run_id: UUID,
        full_reset: bool = False,
        actor: str | None = None,
        tenant_id: UUID | None = None,
    ) -> ProcessResult:
        """Compute payslips for every eligible employee of the run.

        Per-employee errors are recorded as failures and never abort the
        pass. A default pass only computes employees without a successful
        payslip; ``full_reset`` recomputes everyone. A failure after the claim
        releases the run before it propagates.

        Raises:
            RunAlreadyProcessingError: If another caller owns the run
            InvalidTransitionError: If the run is APPROVED or PAID
            FactsUnavailableError: If the employee directory is unreachable;
                the claim is released before the error propagates
        """
        run = await self.repository.get_run(payroll_run_id, tenant_id)
        run_id = run.payroll_run_id
        prior_status = PayrollRunStatus(run.status)
        token, resumed = await self._claim(run, actor, full_reset)
        try:
            return await self._process_claimed(run, token, resumed, full_reset, actor)
        except Exception as e:
            await self._release(run_id, token, prior_status, resumed, actor, e)
            raise

    async def _process_claimed(
        self,
        run: PayrollRun,
        token: UUID,
        resumed: bool,
        full_reset: bool,
        actor: str | None,
    ) -> ProcessResult:
        payroll_run_id = run.payroll_run_id
        run_tenant = run.tenant_id
        period = PayPeriod(month=run.month, year=run.year)
        result = ProcessResult(run=run, resumed=resumed)

        eligible = await self._fetch(
            None,
            "employee directory",
            self.providers.directory.list_eligible_employees,
            run_tenant,
            period,
        )
        eligible_ids = set(eligible)

        lock = asyncio.Lock()
        async with lock:
            await self.repository.delete_failures_except(payroll_run_id, eligible_ids)
            if full_reset:
                dropped = await self.repository.delete_payslips_except(
                    payroll_run_id, eligible_ids
                )
                if dropped:
                    logger.info(
                        "Run %s: dropped %d payslips of ineligible employees",
                        payroll_run_id,
                        dropped,
                    )
                pending = list(eligible)
            else:
                done = await self.repository.succeeded_employee_ids(payroll_run_id)
                pending = [e for e in eligible if e not in done]
                result.skipped = len(eligible) - len(pending)
            await self.session.commit()

        logger.info(
            "Run %s (%s): %d eligible, %d to compute",
            payroll_run_id,
            period,
            len(eligible),
            len(pending),
        )

        semaphore = asyncio.Semaphore(self.settings.max_concurrency)
        structures: dict[UUID, StructureSnapshot] = {}

        async def work(employee_id: UUID) -> None:
            async with semaphore:
                outcome, attempts = await self._compute_employee(
                    run_tenant, employee_id, period, structures
                )
            async with lock:
                await self._write_outcome(
                    payroll_run_id, run_tenant, token, employee_id, outcome, attempts
                )
            if isinstance(outcome, CalculationError):
                result.failed[employee_id] = outcome.kind
            else:
                result.computed.append(employee_id)

        outcomes = await asyncio.gather(*(work(e) for e in pending), return_exceptions=True)
        write_errors = [o for o in outcomes if isinstance(o, BaseException)]
        if write_errors:
            await self.session.rollback()
            logger.error(
                "Run %s: %d payslip writes failed",
                payroll_run_id,
                len(write_errors),
            )
            raise write_errors[0]

        async with lock:
            totals = await self.repository.aggregate(payroll_run_id)
            await self._finish(run, token, totals, actor)

        result.run = await self.repository.get_run(payroll_run_id)
        logger.info(
            "Run %s computed: %d payslips, %d errors, net %s",
            payroll_run_id,
            totals.processed_count,
            totals.error_count,
            totals.total_net,
        )
        return result

    async def _claim(
        self, run: PayrollRun, actor: str | None, full_reset: bool
    ) -> tuple[UUID, bool]:
        """Take ownership of the run and commit before any work starts."""
        run_id = run.payroll_run_id
        token = uuid4()
        now = utcnow()
        resumed = False

        if PayrollRunStateMachine.can_process(run.status):
            won = await self.repository.compare_and_set_status(
                run_id,
                expected=PayrollRunStateMachine.PROCESSABLE,
                new_status=PayrollRunStatus.PROCESSING,
                values={
                    "processing_token": token,
                    "processing_started_at": now,
                    "heartbeat_at": now,
                },
            )
        elif run.status == PayrollRunStatus.PROCESSING:
            stale_before = now - timedelta(seconds=self.settings.stale_after_seconds)
            won = await self.repository.claim_stale_run(
                run_id, token, now, stale_before
            )
            if not won:
                await self.session.rollback()
                raise RunAlreadyProcessingError(run_id, "heartbeat is recent")
            resumed = True
        else:
            raise InvalidTransitionError(
                run.status,
                PayrollRunStatus.PROCESSING.value,
                "results are immutable once approved",
            )

        if not won:
            await self.session.rollback()
            current = await self.repository.get_run(run_id)
            if current.status == PayrollRunStatus.PROCESSING:
                raise RunAlreadyProcessingError(run_id)
            raise InvalidTransitionError(current.status, PayrollRunStatus.PROCESSING.value)

        await self.repository.add_audit(
            run,
            "process_resume" if resumed else "process_start",
            actor,
            {"full_reset": full_reset, "token": str(token)},
        )
        await self.session.commit()
        if resumed:
            logger.warning("Resuming stale payroll run %s", run_id)
        return token, resumed

    async def _release(
        self,
        payroll_run_id: UUID,
        token: UUID,
        prior_status: PayrollRunStatus,
        resumed: bool,
        actor: str | None,
        error: Exception,
    ) -> None:
        """Give up a claim after a run-level failure.

        A fresh claim returns the run to the status it was taken from, with
        totals recomputed from whatever payslips were written. A resumed run
        stays PROCESSING with its heartbeat cleared so the next caller can
        take it over at once. Nothing happens if ownership was already lost.
        """
        try:
            await self.session.rollback()
            values: dict[str, Any] = {"processing_token": None, "heartbeat_at": None}
            if resumed:
                target = PayrollRunStatus.PROCESSING
            else:
                target = prior_status
                totals = await self.repository.aggregate(payroll_run_id)
                values.update(
                    total_gross=totals.total_gross,
                    total_deductions=totals.total_deductions,
                    total_net=totals.total_net,
                    processed_count=totals.processed_count,
                    error_count=totals.error_count,
                )
            released = await self.repository.compare_and_set_status(
                payroll_run_id,
                expected=[PayrollRunStatus.PROCESSING],
                new_status=target,
                token=token,
                values=values,
            )
            if not released:
                await self.session.rollback()
                return
            run = await self.repository.get_run(payroll_run_id)
            await self.repository.add_audit(
                run,
                "process_abort",
                actor,
                {"status": target.value, "error": f"{type(error).__name__}: {error}"},
            )
            await self.session.commit()
        except SQLAlchemyError:
            logger.exception("Run %s: could not release processing claim", payroll_run_id)
            return
        logger.warning(
            "Run %s: processing aborted (%s), run released as %s",
            payroll_run_id,
            error,
            target.value,
        )

    async def _compute_employee(
        self,
        tenant_id: UUID,
        employee_id: UUID,
        period: PayPeriod,
        structures: dict[UUID, StructureSnapshot],
    ) -> tuple[PayslipResult | CalculationError, int]:
        """Gather facts and compute one payslip; errors are returned, not raised."""
        try:
            if self.settings.assignment_resolution == "period_end":
                as_of = period.end
            else:
                as_of = period.start
            assignment = await self._fetch(
                employee_id,
                "salary assignment",
                self.providers.assignments.get_active_salary_assignment,
                tenant_id,
                employee_id,
                as_of,
            )
            if assignment is None:
                raise NoActiveAssignmentError(
                    employee_id, f"No active salary assignment on {as_of.isoformat()}"
                )

            structure_id = assignment.salary_structure_id
            if structure_id not in structures:
                snapshot = await self._fetch(
                    employee_id,
                    "salary structure",
                    self.providers.assignments.get_structure_snapshot,
                    tenant_id,
                    structure_id,
                )
                structures.setdefault(structure_id, snapshot)
            structure = structures[structure_id]

            facts = await self._fetch(
                employee_id,
                "attendance facts",
                self.providers.attendance.get_attendance_facts,
                tenant_id,
                employee_id,
                period,
            )

            ot_rate = None
            if facts.approved_ot_minutes > 0:
                ot_rate = await self._fetch(
                    employee_id,
                    "OT rate",
                    self.providers.ot_rates.get_ot_rate,
                    tenant_id,
                    employee_id,
                    assignment,
                )

            result = self.calculator.compute(assignment, structure, facts, period, ot_rate)
            problems = LineItemBuilder.validate_payslip(result)
            if problems:
                raise UnexpectedCalculationError(employee_id, "; ".join(problems))
            return result, 1

        except FactsUnavailableError as e:
            logger.warning("Employee %s: %s", employee_id, e.message)
            return e, e.attempts
        except CalculationError as e:
            logger.info("Employee %s failed (%s): %s", employee_id, e.kind, e.message)
            return e, 1
        except Exception as e:
            logger.exception("Unexpected error computing payslip for employee %s", employee_id)
            return UnexpectedCalculationError(employee_id, f"{type(e).__name__}: {e}"), 1

    async def _fetch(
        self,
        employee_id: UUID | None,
        what: str,
        call: Callable[..., Awaitable[T]],
        *args: Any,
    ) -> T:
        """Call a provider with a timeout, retrying infrastructure errors.

        Raises:
            FactsUnavailableError: After the final attempt, or at once for
                non-retryable provider errors
        """
        max_attempts = self.settings.fact_retry_attempts
        timeout = self.settings.fact_timeout_seconds
        for attempt in range(1, max_attempts + 1):
            try:
                return await asyncio.wait_for(call(*args), timeout=timeout)
            except asyncio.TimeoutError:
                reason = f"{what} lookup timed out after {timeout}s"
            except FactProviderError as e:
                if not e.retryable:
                    raise FactsUnavailableError(employee_id, str(e), attempts=attempt) from e
                reason = f"{what} lookup failed: {e}"

            logger.debug(
                "Employee %s: %s (attempt %d/%d)", employee_id, reason, attempt, max_attempts
            )

        raise FactsUnavailableError(
            employee_id, f"{reason} ({max_attempts} attempts)", attempts=max_attempts
        )

    async def _write_outcome(
        self,
        payroll_run_id: UUID,
        tenant_id: UUID,
        token: UUID,
        employee_id: UUID,
        outcome: PayslipResult | CalculationError,
        attempts: int,
    ) -> None:
        """Persist one employee's outcome. Caller holds the writer lock."""
        now = utcnow()
        if not await self.repository.heartbeat(payroll_run_id, token, now):
            await self.session.rollback()
            raise RunAlreadyProcessingError(payroll_run_id, "processing ownership lost")

        if isinstance(outcome, CalculationError):
            await self.repository.delete_payslip(payroll_run_id, employee_id)
            await self.repository.record_failure(
                payroll_run_id,
                employee_id,
                outcome.kind,
                outcome.message,
                attempts,
                now,
            )
        else:
            await self.repository.upsert_payslip(payroll_run_id, tenant_id, outcome, now)
            await self.repository.clear_failure(payroll_run_id, employee_id)
        await self.session.commit()

    async def _finish(
        self,
        run: PayrollRun,
        token: UUID,
        totals: RunTotals,
        actor: str | None,
    ) -> None:
        won = await self.repository.compare_and_set_status(
            run.payroll_run_id,
            expected=[PayrollRunStatus.PROCESSING],
            new_status=PayrollRunStatus.COMPUTED,
            token=token,
            values={
                "total_gross": totals.total_gross,
                "total_deductions": totals.total_deductions,
                "total_net": totals.total_net,
                "processed_count": totals.processed_count,
                "error_count": totals.error_count,
                "processed_at": utcnow(),
                "processing_token": None,
                "heartbeat_at": None,
            },
        )
        if not won:
            await self.session.rollback()
            raise RunAlreadyProcessingError(run.payroll_run_id, "processing ownership lost")

        await self.repository.add_audit(
            run,
            "process_finish",
            actor,
            {
                "processed_count": totals.processed_count,
                "error_count": totals.error_count,
                "total_net": str(totals.total_net),
            },
        )
        await self.session.commit()
