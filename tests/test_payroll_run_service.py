"""Tests for the payroll run service (orchestration and lifecycle)."""

from __future__ import annotations

import asyncio
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from payrun_engine.calculators.rate_resolver import PayType
from payrun_engine.calculators.types import (
    AttendanceFacts,
    CalcType,
    ComponentType,
    FactsUnavailableError,
    SalaryAssignment,
    SalaryComponent,
    StructureSnapshot,
)
from payrun_engine.models.base import utcnow
from payrun_engine.providers.base import FactProviderError
from payrun_engine.providers.memory import InMemoryProviders, StubEmployee
from payrun_engine.services.payroll_run_service import (
    PayrollProviders,
    PayrollRunService,
    RunAlreadyProcessingError,
)
from payrun_engine.services.repository import DuplicateRunError, PayrollRunNotFoundError
from payrun_engine.services.state_machine import InvalidTransitionError
from tests.conftest import PERIOD, add_staff, full_month, make_settings

FULL_MONTH_NET = Decimal("68200.00")  # 50000 + 40% HRA - 1800 PF


async def create_run(service: PayrollRunService, tenant_id):
    return await service.create_run(tenant_id, PERIOD.month, PERIOD.year)


class TestCreateRun:
    """Test run creation and uniqueness."""

    async def test_create_draft(self, service, tenant_id):
        """A new run starts in DRAFT with zero totals."""
        run = await create_run(service, tenant_id)

        run = await service.get_run(run.payroll_run_id)
        assert run.status == "DRAFT"
        assert run.processed_count == 0
        assert run.error_count == 0
        assert run.total_net == Decimal("0")

    async def test_duplicate_period_conflicts(self, service, tenant_id):
        """A second run for the same tenant and period is rejected."""
        await create_run(service, tenant_id)

        with pytest.raises(DuplicateRunError):
            await create_run(service, tenant_id)

        runs = await service.list_runs(tenant_id)
        assert len(runs) == 1

    async def test_same_period_other_tenant_allowed(self, service, tenant_id):
        await create_run(service, tenant_id)
        other = await create_run(service, uuid4())

        assert other.payroll_run_id is not None

    async def test_invalid_month(self, service, tenant_id):
        with pytest.raises(ValueError):
            await service.create_run(tenant_id, 13, 2025)

    async def test_tenant_isolation(self, service, tenant_id):
        """A run is invisible to other tenants."""
        run = await create_run(service, tenant_id)

        with pytest.raises(PayrollRunNotFoundError):
            await service.get_run(run.payroll_run_id, tenant_id=uuid4())


class TestProcess:
    """Test payslip computation over a run."""

    async def test_computes_every_eligible_employee(
        self, service, providers, structure, tenant_id
    ):
        """All eligible employees get payslips; totals are sums of payslips."""
        employees = add_staff(providers, tenant_id, structure, 3)
        run = await create_run(service, tenant_id)

        result = await service.process(run.payroll_run_id)

        assert sorted(result.computed, key=str) == sorted(employees, key=str)
        assert result.failed == {}
        assert result.run.status == "COMPUTED"
        assert result.run.processed_count == 3
        assert result.run.error_count == 0
        assert result.run.total_net == FULL_MONTH_NET * 3
        assert result.run.total_gross == Decimal("70000.00") * 3
        assert result.run.total_deductions == Decimal("1800.00") * 3
        assert result.run.processing_token is None

        payslips = await service.list_payslips_for_run(run.payroll_run_id)
        assert len(payslips) == 3
        assert sum(p.net_pay for p in payslips) == result.run.total_net
        for payslip in payslips:
            assert payslip.gross_pay - payslip.total_deductions == payslip.net_pay
            assert [d["name"] for d in payslip.deductions] == ["PF"]
            assert payslip.structure_snapshot == structure.to_records()

    async def test_partial_failure_isolated(self, service, providers, structure, tenant_id):
        """One employee without an assignment fails alone."""
        add_staff(providers, tenant_id, structure, 3)
        orphan = providers.add_employee(StubEmployee(employee_id=uuid4(), tenant_id=tenant_id))
        providers.set_facts(orphan.employee_id, PERIOD, full_month())
        run = await create_run(service, tenant_id)

        result = await service.process(run.payroll_run_id)

        assert result.run.status == "COMPUTED"
        assert result.run.processed_count == 3
        assert result.run.error_count == 1
        assert result.failed == {orphan.employee_id: "NO_ACTIVE_ASSIGNMENT"}

        summary = await service.get_run_summary(run.payroll_run_id)
        assert [f.employee_id for f in summary.failures] == [orphan.employee_id]
        assert summary.failures[0].error_kind == "NO_ACTIVE_ASSIGNMENT"

    async def test_reprocess_computes_only_missing(
        self, service, providers, structure, tenant_id
    ):
        """Reprocessing keeps existing payslips and fills in fixed employees."""
        add_staff(providers, tenant_id, structure, 2)
        orphan = providers.add_employee(StubEmployee(employee_id=uuid4(), tenant_id=tenant_id))
        providers.set_facts(orphan.employee_id, PERIOD, full_month())
        run = await create_run(service, tenant_id)
        await service.process(run.payroll_run_id)
        before = {p.employee_id: (p.payslip_id, p.calculation_hash)
                  for p in await service.list_payslips_for_run(run.payroll_run_id)}

        providers.assign(
            SalaryAssignment(
                employee_id=orphan.employee_id,
                salary_structure_id=structure.structure_id,
                base_pay=Decimal("50000"),
                effective_from=date(2024, 1, 1),
            )
        )
        result = await service.process(run.payroll_run_id)

        assert result.computed == [orphan.employee_id]
        assert result.skipped == 2
        assert result.run.processed_count == 3
        assert result.run.error_count == 0
        assert (await service.get_run_summary(run.payroll_run_id)).failures == []

        after = {p.employee_id: (p.payslip_id, p.calculation_hash)
                 for p in await service.list_payslips_for_run(run.payroll_run_id)}
        for employee_id, identity in before.items():
            assert after[employee_id] == identity

    async def test_repeated_process_is_idempotent(
        self, service, providers, structure, tenant_id
    ):
        """Processing twice with unchanged inputs changes nothing."""
        add_staff(providers, tenant_id, structure, 3)
        run = await create_run(service, tenant_id)

        first = await service.process(run.payroll_run_id)
        totals = (first.run.processed_count, first.run.total_net)
        second = await service.process(run.payroll_run_id, full_reset=True)

        assert (second.run.processed_count, second.run.total_net) == totals
        assert len(await service.list_payslips_for_run(run.payroll_run_id)) == 3

    async def test_full_reset_recomputes_and_drops_ineligible(
        self, service, providers, structure, tenant_id
    ):
        """A full reset picks up new inputs and drops employees no longer eligible."""
        employees = add_staff(providers, tenant_id, structure, 3)
        run = await create_run(service, tenant_id)
        await service.process(run.payroll_run_id)

        providers.employees[employees[0]].status = "TERMINATED"
        providers.set_facts(
            employees[1],
            PERIOD,
            AttendanceFacts(
                working_days=Decimal("30"), present_days=Decimal("28"), lop_days=Decimal("2")
            ),
        )
        result = await service.process(run.payroll_run_id, full_reset=True)

        payslips = {p.employee_id: p for p in await service.list_payslips_for_run(run.payroll_run_id)}
        assert set(payslips) == {employees[1], employees[2]}
        assert payslips[employees[1]].pro_rated_base == Decimal("46666.67")
        assert result.run.processed_count == 2

    async def test_full_reset_failure_then_fix(self, service, providers, structure, tenant_id):
        """An employee failing a full reset loses the old payslip and is retried next pass."""
        employees = add_staff(providers, tenant_id, structure, 2)
        run = await create_run(service, tenant_id)
        await service.process(run.payroll_run_id)

        providers.set_facts(
            employees[0],
            PERIOD,
            AttendanceFacts(
                working_days=Decimal("30"), present_days=Decimal("0"), lop_days=Decimal("31")
            ),
        )
        reset = await service.process(run.payroll_run_id, full_reset=True)

        assert reset.failed == {employees[0]: "INVALID_FACTS"}
        assert reset.run.processed_count == 1
        assert reset.run.error_count == 1
        assert reset.run.total_net == FULL_MONTH_NET
        assert await service.get_payslip(run.payroll_run_id, employees[0]) is None

        providers.set_facts(employees[0], PERIOD, full_month())
        fixed = await service.process(run.payroll_run_id)

        assert fixed.computed == [employees[0]]
        assert fixed.skipped == 1
        assert fixed.run.processed_count == 2
        assert fixed.run.error_count == 0
        assert fixed.run.total_net == FULL_MONTH_NET * 2

    async def test_structure_snapshot_taken_at_compute_time(
        self, service, providers, structure, tenant_id
    ):
        """Editing a structure later does not change computed payslips."""
        (employee_id,) = add_staff(providers, tenant_id, structure, 1)
        run = await create_run(service, tenant_id)
        await service.process(run.payroll_run_id)

        providers.add_structure(
            StructureSnapshot(
                structure_id=structure.structure_id,
                name="Standard",
                components=(
                    SalaryComponent(
                        "HRA", ComponentType.EARNING, CalcType.PERCENTAGE, Decimal("50")
                    ),
                ),
            )
        )
        await service.process(run.payroll_run_id)

        payslip = await service.get_payslip(run.payroll_run_id, employee_id)
        assert payslip.net_pay == FULL_MONTH_NET
        assert payslip.structure_snapshot == structure.to_records()

    async def test_empty_workforce(self, service, tenant_id):
        """A run with nobody eligible computes to zero and can't be approved."""
        run = await create_run(service, tenant_id)

        result = await service.process(run.payroll_run_id)

        assert result.run.status == "COMPUTED"
        assert result.run.processed_count == 0
        with pytest.raises(InvalidTransitionError):
            await service.approve(run.payroll_run_id)


class TestProcessFailures:
    """Test per-employee failure classification."""

    async def test_invalid_facts(self, service, providers, structure, tenant_id):
        (employee_id,) = add_staff(providers, tenant_id, structure, 1)
        providers.set_facts(
            employee_id,
            PERIOD,
            AttendanceFacts(
                working_days=Decimal("30"), present_days=Decimal("0"), lop_days=Decimal("31")
            ),
        )
        run = await create_run(service, tenant_id)

        result = await service.process(run.payroll_run_id)

        assert result.failed == {employee_id: "INVALID_FACTS"}
        assert result.run.processed_count == 0

    async def test_missing_ot_rate(self, service, providers, structure, tenant_id):
        """Hourly staff without an hourly rate can't be paid approved OT."""
        employee = providers.add_employee(
            StubEmployee(employee_id=uuid4(), tenant_id=tenant_id, pay_type=PayType.HOURLY)
        )
        providers.assign(
            SalaryAssignment(
                employee_id=employee.employee_id,
                salary_structure_id=structure.structure_id,
                base_pay=Decimal("30000"),
                effective_from=date(2024, 1, 1),
            )
        )
        providers.set_facts(employee.employee_id, PERIOD, full_month(ot_minutes=120))
        run = await create_run(service, tenant_id)

        result = await service.process(run.payroll_run_id)

        assert result.failed == {employee.employee_id: "MISSING_OT_RATE"}

    async def test_salaried_ot_rate_derived(self, service, providers, structure, tenant_id):
        """Salaried OT is paid at base / standard hours x multiplier."""
        (employee_id,) = add_staff(providers, tenant_id, structure, 1, base_pay=Decimal("41600"))
        providers.set_facts(employee_id, PERIOD, full_month(ot_minutes=60))
        run = await create_run(service, tenant_id)

        await service.process(run.payroll_run_id)

        payslip = await service.get_payslip(run.payroll_run_id, employee_id)
        # 41600 / 208h = 200/h x 1.5
        assert payslip.ot_pay == Decimal("300.00")

    async def test_missing_facts_not_retried(self, service, providers, structure, tenant_id):
        """A data gap fails at once without retries."""
        (employee_id,) = add_staff(providers, tenant_id, structure, 1)
        providers.facts.clear()
        run = await create_run(service, tenant_id)

        result = await service.process(run.payroll_run_id)

        assert result.failed == {employee_id: "FACTS_UNAVAILABLE"}
        assert providers.fact_calls[employee_id] == 1

    async def test_transient_errors_retried(self, service, providers, structure, tenant_id):
        """Infrastructure errors are retried up to the configured attempts."""
        (employee_id,) = add_staff(providers, tenant_id, structure, 1)
        providers.transient_failures[employee_id] = 2
        run = await create_run(service, tenant_id)

        result = await service.process(run.payroll_run_id)

        assert result.computed == [employee_id]
        assert providers.fact_calls[employee_id] == 3

    async def test_retries_exhausted(self, service, providers, structure, tenant_id):
        (employee_id,) = add_staff(providers, tenant_id, structure, 1)
        providers.transient_failures[employee_id] = 10
        run = await create_run(service, tenant_id)

        result = await service.process(run.payroll_run_id)

        assert result.failed == {employee_id: "FACTS_UNAVAILABLE"}
        summary = await service.get_run_summary(run.payroll_run_id)
        assert summary.failures[0].attempts == 3

    async def test_timeout_becomes_facts_unavailable(
        self, session, providers, structure, tenant_id, tmp_path
    ):
        """A slow provider is cut off and the employee fails alone."""
        slow, fast = add_staff(providers, tenant_id, structure, 2)
        providers.fact_delay_seconds[slow] = 0.5
        settings = make_settings(
            f"sqlite+aiosqlite:///{tmp_path / 'payrun.db'}",
            fact_timeout_seconds=0.05,
            fact_retry_attempts=2,
        )
        service = PayrollRunService(
            session, PayrollProviders.from_single(providers), settings=settings
        )
        run = await create_run(service, tenant_id)

        result = await service.process(run.payroll_run_id)

        assert result.failed == {slow: "FACTS_UNAVAILABLE"}
        assert result.computed == [fast]
        assert providers.fact_calls[slow] == 2


class TestRunLevelFailures:
    """Test failures that abort a whole pass."""

    async def test_directory_outage_releases_draft_run(
        self, service, providers, structure, tenant_id, monkeypatch
    ):
        """The run goes back to DRAFT and can be processed again at once."""
        add_staff(providers, tenant_id, structure, 2)
        run = await create_run(service, tenant_id)
        lookup = providers.list_eligible_employees

        async def directory_down(tenant_id, period):
            raise FactProviderError("employee directory unreachable")

        monkeypatch.setattr(providers, "list_eligible_employees", directory_down)
        with pytest.raises(FactsUnavailableError):
            await service.process(run.payroll_run_id)

        released = await service.get_run(run.payroll_run_id)
        assert released.status == "DRAFT"
        assert released.processing_token is None
        assert released.heartbeat_at is None
        audit = await service.repository.list_audit(run.payroll_run_id)
        assert audit[-1].action == "process_abort"

        monkeypatch.setattr(providers, "list_eligible_employees", lookup)
        result = await service.process(run.payroll_run_id)

        assert result.run.status == "COMPUTED"
        assert result.run.processed_count == 2

    async def test_directory_outage_keeps_computed_results(
        self, service, providers, structure, tenant_id, monkeypatch
    ):
        add_staff(providers, tenant_id, structure, 2)
        run = await create_run(service, tenant_id)
        await service.process(run.payroll_run_id)

        async def directory_down(tenant_id, period):
            raise FactProviderError("employee directory unreachable", retryable=False)

        monkeypatch.setattr(providers, "list_eligible_employees", directory_down)
        with pytest.raises(FactsUnavailableError):
            await service.process(run.payroll_run_id, full_reset=True)

        released = await service.get_run(run.payroll_run_id)
        assert released.status == "COMPUTED"
        assert released.processed_count == 2
        assert released.total_net == FULL_MONTH_NET * 2
        assert (await service.approve(run.payroll_run_id)).status == "APPROVED"

    async def test_payslip_write_error_releases_run(
        self, service, providers, structure, tenant_id, monkeypatch
    ):
        """A storage error aborts the pass; payslips already written are kept."""
        healthy, broken = add_staff(providers, tenant_id, structure, 2)
        run = await create_run(service, tenant_id)
        upsert = service.repository.upsert_payslip

        async def failing_upsert(payroll_run_id, tenant_id, result, computed_at):
            if result.employee_id == broken:
                raise OperationalError("INSERT INTO payslips", {}, Exception("disk I/O error"))
            await upsert(payroll_run_id, tenant_id, result, computed_at)

        monkeypatch.setattr(service.repository, "upsert_payslip", failing_upsert)
        with pytest.raises(OperationalError):
            await service.process(run.payroll_run_id)

        released = await service.get_run(run.payroll_run_id)
        assert released.status == "DRAFT"
        assert released.processing_token is None
        assert released.processed_count == 1
        assert await service.get_payslip(run.payroll_run_id, healthy) is not None

        monkeypatch.setattr(service.repository, "upsert_payslip", upsert)
        result = await service.process(run.payroll_run_id)

        assert result.computed == [broken]
        assert result.skipped == 1
        assert result.run.processed_count == 2

    async def test_resumed_run_stays_claimable(
        self, service, providers, structure, tenant_id, monkeypatch
    ):
        """A failed resume leaves the run PROCESSING with no owner."""
        add_staff(providers, tenant_id, structure, 1)
        run = await create_run(service, tenant_id)
        await service.repository.compare_and_set_status(
            run.payroll_run_id,
            expected=["DRAFT"],
            new_status="PROCESSING",
            values={"processing_token": uuid4(), "heartbeat_at": utcnow() - timedelta(hours=1)},
        )
        await service.session.commit()
        lookup = providers.list_eligible_employees

        async def directory_down(tenant_id, period):
            raise FactProviderError("employee directory unreachable", retryable=False)

        monkeypatch.setattr(providers, "list_eligible_employees", directory_down)
        with pytest.raises(FactsUnavailableError):
            await service.process(run.payroll_run_id)

        released = await service.get_run(run.payroll_run_id)
        assert released.status == "PROCESSING"
        assert released.processing_token is None

        monkeypatch.setattr(providers, "list_eligible_employees", lookup)
        result = await service.process(run.payroll_run_id)

        assert result.resumed is True
        assert result.run.status == "COMPUTED"


class ConcurrencyTrackingProviders(InMemoryProviders):
    """Records the peak number of concurrent attendance lookups."""

    in_flight = 0
    peak = 0

    async def get_attendance_facts(self, tenant_id, employee_id, period):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            return await super().get_attendance_facts(tenant_id, employee_id, period)
        finally:
            self.in_flight -= 1


class TestConcurrency:
    """Test worker bounds and run ownership."""

    async def test_worker_pool_bounded(self, session, structure, tenant_id, tmp_path):
        providers = ConcurrencyTrackingProviders()
        providers.add_structure(structure)
        add_staff(providers, tenant_id, structure, 8)
        settings = make_settings(
            f"sqlite+aiosqlite:///{tmp_path / 'payrun.db'}", max_concurrency=2
        )
        service = PayrollRunService(
            session, PayrollProviders.from_single(providers), settings=settings
        )
        run = await create_run(service, tenant_id)

        result = await service.process(run.payroll_run_id)

        assert len(result.computed) == 8
        assert 1 <= providers.peak <= 2

    async def test_process_rejected_while_owned(self, service, tenant_id):
        """A PROCESSING run with a fresh heartbeat can't be claimed."""
        run = await create_run(service, tenant_id)
        now = utcnow()
        await service.repository.compare_and_set_status(
            run.payroll_run_id,
            expected=["DRAFT"],
            new_status="PROCESSING",
            values={"processing_token": uuid4(), "heartbeat_at": now},
        )
        await service.session.commit()

        with pytest.raises(RunAlreadyProcessingError):
            await service.process(run.payroll_run_id)

        assert (await service.get_run(run.payroll_run_id)).status == "PROCESSING"

    async def test_stale_run_resumed(self, service, providers, structure, tenant_id):
        """A PROCESSING run with an old heartbeat is taken over and finished."""
        add_staff(providers, tenant_id, structure, 2)
        run = await create_run(service, tenant_id)
        await service.repository.compare_and_set_status(
            run.payroll_run_id,
            expected=["DRAFT"],
            new_status="PROCESSING",
            values={"processing_token": uuid4(), "heartbeat_at": utcnow() - timedelta(hours=1)},
        )
        await service.session.commit()

        stale = await service.find_stale_runs()
        assert [r.payroll_run_id for r in stale] == [run.payroll_run_id]

        result = await service.process(run.payroll_run_id)

        assert result.resumed is True
        assert result.run.status == "COMPUTED"
        assert result.run.processed_count == 2
        assert await service.find_stale_runs() == []

    async def test_compare_and_set_single_winner(self, service, tenant_id):
        """Only one of two identical status swaps succeeds."""
        run = await create_run(service, tenant_id)
        repository = service.repository

        first = await repository.compare_and_set_status(
            run.payroll_run_id, expected=["DRAFT"], new_status="PROCESSING"
        )
        second = await repository.compare_and_set_status(
            run.payroll_run_id, expected=["DRAFT"], new_status="PROCESSING"
        )

        assert first is True
        assert second is False


class TestLifecycle:
    """Test approval, payment and deletion."""

    async def test_approve_and_pay(self, service, providers, structure, tenant_id):
        add_staff(providers, tenant_id, structure, 2)
        run = await create_run(service, tenant_id)
        await service.process(run.payroll_run_id)

        approved = await service.approve(run.payroll_run_id, actor="hr-admin")
        assert approved.status == "APPROVED"
        assert approved.approved_by == "hr-admin"
        assert approved.approved_at is not None
        assert approved.approval_override is False

        paid = await service.mark_paid(run.payroll_run_id)
        assert paid.status == "PAID"
        assert paid.paid_at is not None

    async def test_paid_is_terminal(self, service, providers, structure, tenant_id):
        add_staff(providers, tenant_id, structure, 1)
        run = await create_run(service, tenant_id)
        await service.process(run.payroll_run_id)
        await service.approve(run.payroll_run_id)
        await service.mark_paid(run.payroll_run_id)

        with pytest.raises(InvalidTransitionError):
            await service.process(run.payroll_run_id)
        with pytest.raises(InvalidTransitionError):
            await service.mark_paid(run.payroll_run_id)
        with pytest.raises(InvalidTransitionError):
            await service.delete_run(run.payroll_run_id)

    async def test_approve_requires_computed(self, service, tenant_id):
        run = await create_run(service, tenant_id)

        with pytest.raises(InvalidTransitionError):
            await service.approve(run.payroll_run_id, override=True)

    async def test_approve_with_errors_needs_override(
        self, service, providers, structure, tenant_id
    ):
        add_staff(providers, tenant_id, structure, 1)
        providers.add_employee(StubEmployee(employee_id=uuid4(), tenant_id=tenant_id))
        run = await create_run(service, tenant_id)
        await service.process(run.payroll_run_id)

        with pytest.raises(InvalidTransitionError):
            await service.approve(run.payroll_run_id)
        assert (await service.get_run(run.payroll_run_id)).status == "COMPUTED"

        approved = await service.approve(run.payroll_run_id, actor="cfo", override=True)
        assert approved.status == "APPROVED"
        assert approved.approval_override is True

    async def test_delete_draft(self, service, tenant_id):
        run = await create_run(service, tenant_id)

        await service.delete_run(run.payroll_run_id)

        with pytest.raises(PayrollRunNotFoundError):
            await service.get_run(run.payroll_run_id)
        # The period is free again
        await create_run(service, tenant_id)

    async def test_delete_computed_rejected(self, service, providers, structure, tenant_id):
        add_staff(providers, tenant_id, structure, 1)
        run = await create_run(service, tenant_id)
        await service.process(run.payroll_run_id)

        with pytest.raises(InvalidTransitionError):
            await service.delete_run(run.payroll_run_id)

    async def test_audit_trail(self, service, providers, structure, tenant_id):
        add_staff(providers, tenant_id, structure, 1)
        run = await create_run(service, tenant_id)
        await service.process(run.payroll_run_id)
        await service.approve(run.payroll_run_id, actor="hr-admin")

        events = await service.repository.list_audit(run.payroll_run_id)

        assert [e.action for e in events] == [
            "create",
            "process_start",
            "process_finish",
            "approve",
        ]
        assert events[-1].actor == "hr-admin"


class TestEmployeePayslips:
    """Test the employee-facing payslip projection."""

    async def test_only_released_runs_visible(self, service, providers, structure, tenant_id):
        (employee_id,) = add_staff(providers, tenant_id, structure, 1)
        run = await create_run(service, tenant_id)
        await service.process(run.payroll_run_id)

        assert await service.get_payslips_for_employee(tenant_id, employee_id) == []
        unreleased = await service.get_payslips_for_employee(
            tenant_id, employee_id, include_unapproved=True
        )
        assert len(unreleased) == 1

        await service.approve(run.payroll_run_id)
        rows = await service.get_payslips_for_employee(tenant_id, employee_id)

        assert len(rows) == 1
        payslip, released_run = rows[0]
        assert payslip.net_pay == FULL_MONTH_NET
        assert released_run.status == "APPROVED"
        assert (released_run.month, released_run.year) == (PERIOD.month, PERIOD.year)
