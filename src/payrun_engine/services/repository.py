"""Durable storage for payroll runs, payslips and failures.

Key invariants:
1. One payroll_run per (tenant_id, month, year) (unique constraint)
2. One payslip per (payroll_run_id, employee_id) - writes are upserts
3. Run status only moves through conditional UPDATEs (compare-and-swap),
   so several orchestrator instances can share one database
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from payrun_engine.calculators.types import PayslipResult
from payrun_engine.models import PayrollRun, PayrollRunAudit, Payslip, PayslipFailure
from payrun_engine.services.state_machine import PayrollRunStatus

logger = logging.getLogger(__name__)


class PayrollRunNotFoundError(LookupError):
    """Raised when a payroll run does not exist (for the tenant)."""

    def __init__(self, payroll_run_id: UUID):
        self.payroll_run_id = payroll_run_id
        super().__init__(f"Payroll run {payroll_run_id} not found")


class DuplicateRunError(Exception):
    """Raised when a run already exists for the tenant and period."""

    def __init__(self, tenant_id: UUID, month: int, year: int):
        self.tenant_id = tenant_id
        self.month = month
        self.year = year
        super().__init__(f"Payroll run for {month}/{year} already exists")


@dataclass(frozen=True)
class RunTotals:
    """Aggregates recomputed from persisted payslips and failures."""

    total_gross: Decimal
    total_deductions: Decimal
    total_net: Decimal
    processed_count: int
    error_count: int


class PayrollRunRepository:
    """Repository for payroll runs and their payslips."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # === Runs ===

    async def create_run(
        self,
        tenant_id: UUID,
        month: int,
        year: int,
        remarks: str | None = None,
    ) -> PayrollRun:
        """Insert a DRAFT run.

        Raises:
            DuplicateRunError: If the tenant already has a run for the period
        """
        existing = await self.session.execute(
            select(PayrollRun.payroll_run_id).where(
                PayrollRun.tenant_id == tenant_id,
                PayrollRun.month == month,
                PayrollRun.year == year,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise DuplicateRunError(tenant_id, month, year)

        run = PayrollRun(
            tenant_id=tenant_id,
            month=month,
            year=year,
            status=PayrollRunStatus.DRAFT.value,
            remarks=remarks,
        )
        self.session.add(run)
        try:
            await self.session.flush()
        except IntegrityError as e:
            # Lost a race with a concurrent create for the same period
            await self.session.rollback()
            raise DuplicateRunError(tenant_id, month, year) from e
        return run

    async def get_run(self, payroll_run_id: UUID, tenant_id: UUID | None = None) -> PayrollRun:
        """Load a run, always refreshing from the database.

        Raises:
            PayrollRunNotFoundError: If missing or owned by another tenant
        """
        query = select(PayrollRun).where(PayrollRun.payroll_run_id == payroll_run_id)
        if tenant_id is not None:
            query = query.where(PayrollRun.tenant_id == tenant_id)
        result = await self.session.execute(query.execution_options(populate_existing=True))
        run = result.scalar_one_or_none()
        if run is None:
            raise PayrollRunNotFoundError(payroll_run_id)
        return run

    async def list_runs(
        self,
        tenant_id: UUID,
        year: int | None = None,
        status: str | None = None,
    ) -> list[PayrollRun]:
        query = select(PayrollRun).where(PayrollRun.tenant_id == tenant_id)
        if year is not None:
            query = query.where(PayrollRun.year == year)
        if status is not None:
            query = query.where(PayrollRun.status == status)
        query = query.order_by(PayrollRun.year.desc(), PayrollRun.month.desc())
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def compare_and_set_status(
        self,
        payroll_run_id: UUID,
        expected: Iterable[str],
        new_status: str,
        values: dict[str, Any] | None = None,
        token: UUID | None = None,
    ) -> bool:
        """Conditionally move a run to a new status.

        Equivalent to ``UPDATE ... SET status = :new WHERE status IN (:expected)``.
        When ``token`` is given the row must also hold that processing token.
        Returns True if this caller won the transition.
        """
        conditions = [
            PayrollRun.payroll_run_id == payroll_run_id,
            PayrollRun.status.in_([PayrollRunStatus(s).value for s in expected]),
        ]
        if token is not None:
            conditions.append(PayrollRun.processing_token == token)

        result = await self.session.execute(
            update(PayrollRun)
            .where(*conditions)
            .values(status=PayrollRunStatus(new_status).value, **(values or {}))
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1

    async def claim_stale_run(
        self,
        payroll_run_id: UUID,
        token: UUID,
        now: datetime,
        stale_before: datetime,
    ) -> bool:
        """Take over a PROCESSING run whose heartbeat is older than ``stale_before``."""
        result = await self.session.execute(
            update(PayrollRun)
            .where(
                PayrollRun.payroll_run_id == payroll_run_id,
                PayrollRun.status == PayrollRunStatus.PROCESSING.value,
                (PayrollRun.heartbeat_at.is_(None)) | (PayrollRun.heartbeat_at < stale_before),
            )
            .values(processing_token=token, heartbeat_at=now)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1

    async def heartbeat(self, payroll_run_id: UUID, token: UUID, now: datetime) -> bool:
        """Refresh the heartbeat of a run this caller is processing."""
        result = await self.session.execute(
            update(PayrollRun)
            .where(
                PayrollRun.payroll_run_id == payroll_run_id,
                PayrollRun.status == PayrollRunStatus.PROCESSING.value,
                PayrollRun.processing_token == token,
            )
            .values(heartbeat_at=now)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1

    async def find_stale_runs(self, stale_before: datetime) -> list[PayrollRun]:
        """Runs stuck in PROCESSING without a recent heartbeat."""
        result = await self.session.execute(
            select(PayrollRun)
            .where(
                PayrollRun.status == PayrollRunStatus.PROCESSING.value,
                (PayrollRun.heartbeat_at.is_(None)) | (PayrollRun.heartbeat_at < stale_before),
            )
            .order_by(PayrollRun.heartbeat_at)
        )
        return list(result.scalars().all())

    async def delete_draft_run(self, payroll_run_id: UUID) -> bool:
        """Delete a run only while it is DRAFT. Returns True if deleted."""
        result = await self.session.execute(
            delete(PayrollRun)
            .where(
                PayrollRun.payroll_run_id == payroll_run_id,
                PayrollRun.status == PayrollRunStatus.DRAFT.value,
            )
            .execution_options(synchronize_session=False)
        )
        if (result.rowcount or 0) != 1:
            return False
        # Children are normally empty for a DRAFT run; FK cascades are not
        # guaranteed on every backend
        await self.session.execute(
            delete(Payslip).where(Payslip.payroll_run_id == payroll_run_id)
        )
        await self.session.execute(
            delete(PayslipFailure).where(PayslipFailure.payroll_run_id == payroll_run_id)
        )
        return True

    # === Payslips ===

    async def upsert_payslip(
        self,
        payroll_run_id: UUID,
        tenant_id: UUID,
        result: PayslipResult,
        computed_at: datetime,
    ) -> None:
        """Insert or overwrite the payslip keyed on (run, employee)."""
        values = {
            "tenant_id": tenant_id,
            "salary_structure_id": result.salary_structure_id,
            "base_pay": result.base_pay,
            "pro_rated_base": result.pro_rated_base,
            "working_days": result.working_days,
            "present_days": result.present_days,
            "leave_days": result.leave_days,
            "lop_days": result.lop_days,
            "ot_hours": result.ot_hours,
            "ot_rate": result.ot_rate,
            "ot_pay": result.ot_pay,
            "earnings": [e.to_dict() for e in result.earnings],
            "deductions": [d.to_dict() for d in result.deductions],
            "structure_snapshot": result.structure_snapshot,
            "gross_pay": result.gross_pay,
            "total_deductions": result.total_deductions,
            "net_pay": result.net_pay,
            "net_clamped": result.net_clamped,
            "shortfall": result.shortfall,
            "calculation_hash": result.calculation_hash,
            "computed_at": computed_at,
        }
        stmt = self._insert(Payslip).values(
            payroll_run_id=payroll_run_id,
            employee_id=result.employee_id,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["payroll_run_id", "employee_id"],
            set_=values,
        )
        await self.session.execute(stmt)

    async def list_payslips(
        self,
        payroll_run_id: UUID,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[Payslip]:
        query = (
            select(Payslip)
            .where(Payslip.payroll_run_id == payroll_run_id)
            .order_by(Payslip.employee_id)
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return list(result.scalars().all())

    async def count_payslips(self, payroll_run_id: UUID) -> int:
        total = await self.session.scalar(
            select(func.count()).where(Payslip.payroll_run_id == payroll_run_id)
        )
        return total or 0

    async def get_payslip(self, payroll_run_id: UUID, employee_id: UUID) -> Payslip | None:
        result = await self.session.execute(
            select(Payslip)
            .where(
                Payslip.payroll_run_id == payroll_run_id,
                Payslip.employee_id == employee_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_payslips_for_employee(
        self,
        tenant_id: UUID,
        employee_id: UUID,
        statuses: Iterable[str] | None = None,
    ) -> list[tuple[Payslip, PayrollRun]]:
        """Payslips of one employee across runs, newest period first."""
        query = (
            select(Payslip, PayrollRun)
            .join(PayrollRun, Payslip.payroll_run_id == PayrollRun.payroll_run_id)
            .where(Payslip.tenant_id == tenant_id, Payslip.employee_id == employee_id)
        )
        if statuses is not None:
            query = query.where(
                PayrollRun.status.in_([PayrollRunStatus(s).value for s in statuses])
            )
        query = query.order_by(PayrollRun.year.desc(), PayrollRun.month.desc())
        result = await self.session.execute(query)
        return [(payslip, run) for payslip, run in result.all()]

    async def succeeded_employee_ids(self, payroll_run_id: UUID) -> set[UUID]:
        """Employees holding a payslip and no failure record in the run."""
        failed = (
            select(PayslipFailure.employee_id)
            .where(
                PayslipFailure.payroll_run_id == payroll_run_id,
                PayslipFailure.employee_id == Payslip.employee_id,
            )
            .exists()
        )
        result = await self.session.execute(
            select(Payslip.employee_id).where(
                Payslip.payroll_run_id == payroll_run_id,
                ~failed,
            )
        )
        return set(result.scalars().all())

    async def delete_payslip(self, payroll_run_id: UUID, employee_id: UUID) -> bool:
        """Drop one employee's payslip. Returns True if one existed."""
        result = await self.session.execute(
            delete(Payslip).where(
                Payslip.payroll_run_id == payroll_run_id,
                Payslip.employee_id == employee_id,
            )
        )
        return (result.rowcount or 0) == 1

    async def delete_payslips_except(self, payroll_run_id: UUID, keep: set[UUID]) -> int:
        """Drop payslips of employees outside ``keep`` (full reset)."""
        query = delete(Payslip).where(Payslip.payroll_run_id == payroll_run_id)
        if keep:
            query = query.where(Payslip.employee_id.not_in(keep))
        result = await self.session.execute(query)
        return result.rowcount or 0

    # === Failures ===

    async def record_failure(
        self,
        payroll_run_id: UUID,
        employee_id: UUID,
        error_kind: str,
        message: str,
        attempts: int,
        recorded_at: datetime,
    ) -> None:
        """Insert or overwrite the failure keyed on (run, employee)."""
        values = {
            "error_kind": error_kind,
            "message": message,
            "attempts": attempts,
            "recorded_at": recorded_at,
        }
        stmt = self._insert(PayslipFailure).values(
            payroll_run_id=payroll_run_id,
            employee_id=employee_id,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["payroll_run_id", "employee_id"],
            set_=values,
        )
        await self.session.execute(stmt)

    async def clear_failure(self, payroll_run_id: UUID, employee_id: UUID) -> None:
        await self.session.execute(
            delete(PayslipFailure).where(
                PayslipFailure.payroll_run_id == payroll_run_id,
                PayslipFailure.employee_id == employee_id,
            )
        )

    async def delete_failures_except(self, payroll_run_id: UUID, keep: set[UUID]) -> int:
        """Drop failures of employees outside ``keep``."""
        query = delete(PayslipFailure).where(PayslipFailure.payroll_run_id == payroll_run_id)
        if keep:
            query = query.where(PayslipFailure.employee_id.not_in(keep))
        result = await self.session.execute(query)
        return result.rowcount or 0

    async def list_failures(self, payroll_run_id: UUID) -> list[PayslipFailure]:
        result = await self.session.execute(
            select(PayslipFailure)
            .where(PayslipFailure.payroll_run_id == payroll_run_id)
            .order_by(PayslipFailure.employee_id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # === Aggregation ===

    async def aggregate(self, payroll_run_id: UUID) -> RunTotals:
        """Recompute run totals from persisted payslips and failures."""
        result = await self.session.execute(
            select(Payslip.gross_pay, Payslip.total_deductions, Payslip.net_pay).where(
                Payslip.payroll_run_id == payroll_run_id
            )
        )
        total_gross = Decimal("0")
        total_deductions = Decimal("0")
        total_net = Decimal("0")
        processed = 0
        for gross, deductions, net in result.all():
            total_gross += Decimal(gross)
            total_deductions += Decimal(deductions)
            total_net += Decimal(net)
            processed += 1

        error_count = await self.session.scalar(
            select(func.count()).where(PayslipFailure.payroll_run_id == payroll_run_id)
        )
        return RunTotals(
            total_gross=total_gross,
            total_deductions=total_deductions,
            total_net=total_net,
            processed_count=processed,
            error_count=error_count or 0,
        )

    # === Audit ===

    async def add_audit(
        self,
        run: PayrollRun,
        action: str,
        actor: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> PayrollRunAudit:
        event = PayrollRunAudit(
            payroll_run_id=run.payroll_run_id,
            tenant_id=run.tenant_id,
            action=action,
            actor=actor,
            details=details,
        )
        self.session.add(event)
        await self.session.flush()
        return event

    async def list_audit(self, payroll_run_id: UUID) -> list[PayrollRunAudit]:
        result = await self.session.execute(
            select(PayrollRunAudit)
            .where(PayrollRunAudit.payroll_run_id == payroll_run_id)
            .order_by(PayrollRunAudit.created_at)
        )
        return list(result.scalars().all())

    def _insert(self, model: Any) -> Any:
        """Dialect-specific INSERT supporting ON CONFLICT."""
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(model)
        if dialect == "sqlite":
            return sqlite_insert(model)
        raise NotImplementedError(f"Upsert not supported on dialect '{dialect}'")
