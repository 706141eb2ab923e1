"""Pytest fixtures for payroll run engine tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from payrun_engine.calculators.types import (
    AttendanceFacts,
    CalcType,
    ComponentType,
    PayPeriod,
    SalaryAssignment,
    SalaryComponent,
    StructureSnapshot,
)
from payrun_engine.config import Settings
from payrun_engine.database import create_schema, get_engine, make_session_factory
from payrun_engine.providers.memory import InMemoryProviders, StubEmployee
from payrun_engine.services.payroll_run_service import PayrollProviders, PayrollRunService

# File-backed SQLite so provider sessions and the service session share data
# For full Postgres features, point DATABASE_URL at a test Postgres database

PERIOD = PayPeriod(month=3, year=2025)


def make_settings(database_url: str = "sqlite+aiosqlite://", **overrides) -> Settings:
    """Settings tuned for fast tests."""
    values = dict(
        database_url=database_url,
        engine_version="test",
        host="127.0.0.1",
        port=8000,
        debug=False,
        log_level="DEBUG",
        max_concurrency=4,
        fact_timeout_seconds=0.5,
        fact_retry_attempts=3,
        stale_after_seconds=60,
    )
    values.update(overrides)
    return Settings(**values)


def standard_structure(structure_id: UUID | None = None) -> StructureSnapshot:
    """Basic (0, base itself) + HRA 40% earning, PF fixed 1800 deduction."""
    return StructureSnapshot(
        structure_id=structure_id or uuid4(),
        name="Standard",
        components=(
            SalaryComponent("Basic", ComponentType.EARNING, CalcType.FIXED, Decimal("0")),
            SalaryComponent("HRA", ComponentType.EARNING, CalcType.PERCENTAGE, Decimal("40")),
            SalaryComponent("PF", ComponentType.DEDUCTION, CalcType.FIXED, Decimal("1800")),
        ),
    )


def full_month(ot_minutes: int = 0) -> AttendanceFacts:
    return AttendanceFacts(
        working_days=Decimal("30"),
        present_days=Decimal("30"),
        lop_days=Decimal("0"),
        approved_ot_minutes=ot_minutes,
    )


def add_staff(
    providers: InMemoryProviders,
    tenant_id: UUID,
    structure: StructureSnapshot,
    count: int,
    base_pay: Decimal = Decimal("50000"),
    period: PayPeriod = PERIOD,
) -> list[UUID]:
    """Add ``count`` active employees, each assigned and with full-month facts."""
    ids = []
    for _ in range(count):
        employee = providers.add_employee(StubEmployee(employee_id=uuid4(), tenant_id=tenant_id))
        providers.assign(
            SalaryAssignment(
                employee_id=employee.employee_id,
                salary_structure_id=structure.structure_id,
                base_pay=base_pay,
                effective_from=date(2024, 1, 1),
            )
        )
        providers.set_facts(employee.employee_id, period, full_month())
        ids.append(employee.employee_id)
    return ids


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Test settings pointing at a temporary SQLite file."""
    return make_settings(f"sqlite+aiosqlite:///{tmp_path / 'payrun.db'}")


@pytest.fixture
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine."""
    engine = get_engine(settings.database_url)
    await create_schema(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def structure() -> StructureSnapshot:
    return standard_structure()


@pytest.fixture
def providers(structure: StructureSnapshot) -> InMemoryProviders:
    """In-memory collaborators with the standard structure registered."""
    providers = InMemoryProviders()
    providers.add_structure(structure)
    return providers


@pytest.fixture
def service(
    session: AsyncSession,
    providers: InMemoryProviders,
    settings: Settings,
) -> PayrollRunService:
    """Run service wired to in-memory collaborators."""
    return PayrollRunService(session, PayrollProviders.from_single(providers), settings=settings)
