"""Job payloads: one queue per job kind, validated on the way in and out."""

from __future__ import annotations

from datetime import date
from typing import ClassVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from overtime_engine.timeutils import week_start as iso_week_start


class InvalidJobPayloadError(Exception):
    """Raised when a stored or submitted payload does not match its queue."""

    def __init__(self, queue: str, payload: object, reason: str | None = None):
        self.queue = queue
        self.payload = payload
        self.reason = reason
        msg = f"Invalid payload for queue '{queue}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class JobPayload(BaseModel):
    """Base class; subclasses set QUEUE and narrow the singleton key when needed."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    QUEUE: ClassVar[str] = ""

    org_id: UUID

    @property
    def queue(self) -> str:
        return self.QUEUE

    def singleton_key(self) -> str:
        """At most one active job per queue and organization."""
        return f"{self.QUEUE}:{self.org_id}"

    def to_json(self) -> dict:
        return self.model_dump(mode="json")


class WorkdayOvertimeJob(JobPayload):
    """Recalculate one employee/day."""

    QUEUE: ClassVar[str] = "overtime.workday"

    employee_id: UUID
    work_date: date

    def singleton_key(self) -> str:
        return f"{self.QUEUE}:{self.org_id}:{self.employee_id}:{self.work_date.isoformat()}"


class WeeklyReconciliationJob(JobPayload):
    """Reconcile one organization's ISO week."""

    QUEUE: ClassVar[str] = "overtime.weekly-reconciliation"

    week_start: date

    @field_validator("week_start")
    @classmethod
    def _monday(cls, value: date) -> date:
        if value != iso_week_start(value):
            raise ValueError("week_start must be a Monday")
        return value

    def singleton_key(self) -> str:
        return f"{self.QUEUE}:{self.org_id}:{self.week_start.isoformat()}"


class WorkdaySweepJob(JobPayload):
    """Re-enqueue DIRTY / CALCULATING summaries of the recent past."""

    QUEUE: ClassVar[str] = "overtime.workday-sweep"

    lookback_days: int = 2

    @field_validator("lookback_days")
    @classmethod
    def _clamp_lookback(cls, value: int) -> int:
        return max(1, min(14, value))


class AuthorizationExpireJob(JobPayload):
    """Expire stale PENDING authorizations."""

    QUEUE: ClassVar[str] = "overtime.authorization-expire"

    expiry_days: int = 7

    @field_validator("expiry_days")
    @classmethod
    def _clamp_expiry(cls, value: int) -> int:
        return max(1, min(90, value))


PAYLOAD_TYPES: dict[str, type[JobPayload]] = {
    payload_type.QUEUE: payload_type
    for payload_type in (
        WorkdayOvertimeJob,
        WeeklyReconciliationJob,
        WorkdaySweepJob,
        AuthorizationExpireJob,
    )
}


def parse_payload(queue: str, payload: dict) -> JobPayload:
    """Validate a raw payload against its queue's model."""
    payload_type = PAYLOAD_TYPES.get(queue)
    if payload_type is None:
        raise InvalidJobPayloadError(queue, payload, "unknown queue")
    try:
        return payload_type.model_validate(payload)
    except ValidationError as e:
        raise InvalidJobPayloadError(queue, payload, str(e)) from e
