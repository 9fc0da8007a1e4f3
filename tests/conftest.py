"""Pytest fixtures for overtime engine tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import AsyncGenerator
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from overtime_engine.calculators.types import EffectiveSchedule
from overtime_engine.database import make_session_factory
from overtime_engine.models import (
    Base,
    Employee,
    Organization,
    TimeBankMovement,
    TimeBankSettings,
    WorkdaySummary,
)
from overtime_engine.services.collaborators import (
    AlertMessage,
    Collaborators,
    DirectApproverResolver,
    NotificationMessage,
)

# In-memory SQLite shared by every session of a test
TEST_DATABASE_URL = "sqlite+aiosqlite://"

APPROVER_USER_ID = UUID("00000000-0000-0000-0000-00000000a001")
EMPLOYEE_USER_ID = UUID("00000000-0000-0000-0000-00000000e001")


# ============================================================================
# Collaborator fakes
# ============================================================================


class FakeScheduleProvider:
    """Schedules keyed by (employee_id, day); optionally broken."""

    def __init__(self, fail: bool = False):
        self.schedules: dict[tuple[UUID, date], EffectiveSchedule] = {}
        self.fail = fail
        self.calls = 0

    def set(self, employee_id: UUID, day: date, schedule: EffectiveSchedule) -> None:
        self.schedules[(employee_id, day)] = schedule

    async def get_effective_schedule(
        self, session: AsyncSession, org_id: UUID, employee_id: UUID, day: date
    ) -> EffectiveSchedule | None:
        self.calls += 1
        if self.fail:
            raise RuntimeError("schedule service unavailable")
        return self.schedules.get((employee_id, day))


@dataclass
class RecordingNotifier:
    """Keeps delivered notifications in memory."""

    sent: list[NotificationMessage] = field(default_factory=list)
    fail_types: set[str] = field(default_factory=set)

    async def notify(self, session: AsyncSession, message: NotificationMessage) -> None:
        if message.notification_type in self.fail_types:
            raise RuntimeError("push gateway down")
        self.sent.append(message)

    def of_type(self, notification_type: str) -> list[NotificationMessage]:
        return [m for m in self.sent if m.notification_type == notification_type]


@dataclass
class RecordingAlertSink:
    """Keeps raised alerts in memory."""

    raised: list[AlertMessage] = field(default_factory=list)

    async def raise_alert(self, session: AsyncSession, alert: AlertMessage) -> None:
        self.raised.append(alert)


# ============================================================================
# Database
# ============================================================================


@pytest_asyncio.fixture
async def engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Collaborators
# ============================================================================


@pytest.fixture
def schedules() -> FakeScheduleProvider:
    return FakeScheduleProvider()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def alerts() -> RecordingAlertSink:
    return RecordingAlertSink()


@pytest.fixture
def collaborators(schedules, notifier, alerts) -> Collaborators:
    return Collaborators(
        schedule_provider=schedules,
        approver_resolver=DirectApproverResolver(),
        notifier=notifier,
        alert_sink=alerts,
    )


# ============================================================================
# Domain factories
# ============================================================================


async def create_policy(session: AsyncSession, org_id: UUID, **overrides) -> TimeBankSettings:
    """Create (or replace) an organization's settings row."""
    row = TimeBankSettings(org_id=org_id, **overrides)
    session.add(row)
    await session.flush()
    return row


async def create_employee(
    session: AsyncSession,
    org_id: UUID,
    *,
    weekly_hours: Decimal | None = Decimal("40"),
    approver_user_id: UUID | None = APPROVER_USER_ID,
    user_id: UUID | None = None,
    first_name: str = "Ana",
) -> Employee:
    employee = Employee(
        org_id=org_id,
        user_id=user_id or uuid4(),
        first_name=first_name,
        last_name="García",
        weekly_hours=weekly_hours,
        approver_user_id=approver_user_id,
    )
    session.add(employee)
    await session.flush()
    return employee


async def create_movement(
    session: AsyncSession,
    org_id: UUID,
    employee_id: UUID,
    *,
    minutes: int,
    movement_date: date = date(2025, 1, 1),
) -> TimeBankMovement:
    """Manual adjustment used to seed a balance."""
    movement = TimeBankMovement(
        org_id=org_id,
        employee_id=employee_id,
        movement_date=movement_date,
        minutes=minutes,
        movement_type="ADJUSTMENT",
        origin="CORRECTION",
        status="SETTLED",
        metadata_json={},
    )
    session.add(movement)
    await session.flush()
    return movement


async def create_summary(
    session: AsyncSession,
    org_id: UUID,
    employee_id: UUID,
    work_date: date,
    *,
    worked: int | Decimal,
    expected: int | Decimal | None,
    calc_status: str = "DIRTY",
    resolution_status: str | None = None,
    data_quality: str | None = None,
) -> WorkdaySummary:
    summary = WorkdaySummary(
        org_id=org_id,
        employee_id=employee_id,
        work_date=work_date,
        worked_minutes=Decimal(worked),
        expected_minutes=Decimal(expected) if expected is not None else None,
        overtime_calc_status=calc_status,
        resolution_status=resolution_status,
        data_quality=data_quality,
    )
    session.add(summary)
    await session.flush()
    return summary


@pytest_asyncio.fixture
async def org(session: AsyncSession) -> Organization:
    """Create a test organization in UTC."""
    organization = Organization(name="Test Org", timezone="UTC")
    session.add(organization)
    await session.commit()
    return organization


@pytest_asyncio.fixture
async def employee(session: AsyncSession, org: Organization) -> Employee:
    """Full-time employee with a direct approver."""
    employee = await create_employee(session, org.org_id, user_id=EMPLOYEE_USER_ID)
    await session.commit()
    return employee
