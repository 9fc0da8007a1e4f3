"""ORM models."""

from overtime_engine.models.audit import AuditEvent
from overtime_engine.models.base import Base, TimestampMixin, UpdatedAtMixin, utcnow
from overtime_engine.models.jobs import OvertimeJob
from overtime_engine.models.organization import (
    Employee,
    Organization,
    TimeBankSettings,
    WorkdaySummary,
)
from overtime_engine.models.outbox import Alert, Notification
from overtime_engine.models.overtime import (
    OvertimeCandidate,
    OverworkAuthorization,
    TimeBankMovement,
    TimeBankRequest,
)

__all__ = [
    "Alert",
    "AuditEvent",
    "Base",
    "Employee",
    "Notification",
    "Organization",
    "OvertimeCandidate",
    "OvertimeJob",
    "OverworkAuthorization",
    "TimeBankMovement",
    "TimeBankRequest",
    "TimeBankSettings",
    "TimestampMixin",
    "UpdatedAtMixin",
    "WorkdaySummary",
    "utcnow",
]
