"""External collaborators of the engine and their default implementations.

The engine only depends on the protocols below. The defaults read the
engine's own tables (schedule-less operation, direct approver chain) and
write notification / alert rows to the outbox tables.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from overtime_engine.calculators.types import EffectiveSchedule
from overtime_engine.models import Alert, Employee, Notification, Organization

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationMessage:
    """A message for one recipient."""

    user_id: UUID
    org_id: UUID
    notification_type: str
    title: str
    message: str


@dataclass(frozen=True)
class AlertMessage:
    """An operational alert about one employee/day."""

    org_id: UUID
    employee_id: UUID
    alert_type: str
    severity: str
    description: str
    alert_date: date
    deviation_minutes: int | None = None


class ScheduleProvider(Protocol):
    """Effective schedule calculator."""

    async def get_effective_schedule(
        self, session: AsyncSession, org_id: UUID, employee_id: UUID, day: date
    ) -> EffectiveSchedule | None: ...


class ApproverResolver(Protocol):
    """Resolves the users allowed to approve an employee's overtime."""

    async def resolve_approvers(
        self, session: AsyncSession, org_id: UUID, employee_id: UUID
    ) -> list[UUID]: ...


class Notifier(Protocol):
    """Delivers user notifications."""

    async def notify(self, session: AsyncSession, message: NotificationMessage) -> None: ...


class AlertSink(Protocol):
    """Receives operational alerts."""

    async def raise_alert(self, session: AsyncSession, alert: AlertMessage) -> None: ...


class NullScheduleProvider:
    """No schedule source: expected minutes come from the workday summary only."""

    async def get_effective_schedule(
        self, session: AsyncSession, org_id: UUID, employee_id: UUID, day: date
    ) -> EffectiveSchedule | None:
        return None


class DirectApproverResolver:
    """The employee's direct approver, else the organization fallback approver."""

    async def resolve_approvers(
        self, session: AsyncSession, org_id: UUID, employee_id: UUID
    ) -> list[UUID]:
        employee = await session.get(Employee, employee_id)
        if employee is not None and employee.approver_user_id is not None:
            return [employee.approver_user_id]

        result = await session.execute(
            select(Organization.fallback_approver_user_id).where(Organization.org_id == org_id)
        )
        fallback = result.scalar_one_or_none()
        return [fallback] if fallback is not None else []


class OutboxNotifier:
    """Writes notifications to the notification table."""

    async def notify(self, session: AsyncSession, message: NotificationMessage) -> None:
        session.add(
            Notification(
                user_id=message.user_id,
                org_id=message.org_id,
                notification_type=message.notification_type,
                title=message.title,
                message=message.message,
            )
        )


class OutboxAlertSink:
    """Writes alerts to the alert table."""

    async def raise_alert(self, session: AsyncSession, alert: AlertMessage) -> None:
        session.add(
            Alert(
                org_id=alert.org_id,
                employee_id=alert.employee_id,
                alert_type=alert.alert_type,
                severity=alert.severity,
                description=alert.description,
                alert_date=alert.alert_date,
                deviation_minutes=alert.deviation_minutes,
            )
        )


@dataclass(frozen=True)
class Collaborators:
    """Bundle of collaborators passed to the services."""

    schedule_provider: ScheduleProvider = field(default_factory=NullScheduleProvider)
    approver_resolver: ApproverResolver = field(default_factory=DirectApproverResolver)
    notifier: Notifier = field(default_factory=OutboxNotifier)
    alert_sink: AlertSink = field(default_factory=OutboxAlertSink)


@dataclass
class Outbox:
    """Messages produced during a unit of work, delivered after it commits."""

    notifications: list[NotificationMessage] = field(default_factory=list)
    alerts: list[AlertMessage] = field(default_factory=list)

    def notify(self, message: NotificationMessage) -> None:
        self.notifications.append(message)

    def alert(self, alert: AlertMessage) -> None:
        self.alerts.append(alert)

    def extend(self, other: Outbox) -> None:
        self.notifications.extend(other.notifications)
        self.alerts.extend(other.alerts)

    def __len__(self) -> int:
        return len(self.notifications) + len(self.alerts)

    async def dispatch(self, session: AsyncSession, collaborators: Collaborators) -> int:
        """Deliver every message, isolating failures per message.

        Delivery failures are logged and never propagate: the ledger has
        already been committed.

        Returns:
            Number of messages delivered
        """
        delivered = 0
        for alert in self.alerts:
            try:
                await collaborators.alert_sink.raise_alert(session, alert)
                delivered += 1
            except Exception:
                logger.exception(
                    "Failed to raise %s alert for employee %s", alert.alert_type, alert.employee_id
                )
        for message in self.notifications:
            try:
                await collaborators.notifier.notify(session, message)
                delivered += 1
            except Exception:
                logger.exception(
                    "Failed to deliver %s notification to user %s",
                    message.notification_type,
                    message.user_id,
                )
        if delivered:
            await session.commit()
        self.notifications.clear()
        self.alerts.clear()
        return delivered
