"""Overtime candidate, authorization, time-bank ledger and request models."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from overtime_engine.models.base import Base, TimestampMixin, UpdatedAtMixin, utcnow


class OvertimeCandidate(Base, TimestampMixin, UpdatedAtMixin):
    """Computed assessment of one employee/day before settlement.

    One live row per (org, employee, date); recomputation overwrites it.
    """

    __tablename__ = "overtime_candidate"

    candidate_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.org_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    workday_summary_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("workday_summary.workday_summary_id", ondelete="SET NULL"),
        nullable=True,
    )

    expected_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    worked_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deviation_minutes_raw: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    candidate_minutes_raw: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    candidate_minutes_final: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    candidate_type: Mapped[str] = mapped_column(String, nullable=False, default="EXTRA")
    status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING_CALC")
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    calculation_mode: Mapped[str] = mapped_column(String, nullable=False)
    approval_mode: Mapped[str] = mapped_column(String, nullable=False)
    compensation_type: Mapped[str] = mapped_column(String, nullable=False)
    flags: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    policy_snapshot: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    overwork_authorization_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("overwork_authorization.authorization_id", ondelete="SET NULL"),
        nullable=True,
    )
    last_calculated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "org_id", "employee_id", "work_date", name="overtime_candidate_org_employee_date_unique"
        ),
        CheckConstraint(
            "status IN ('PENDING_CALC', 'READY', 'PENDING_APPROVAL', 'SETTLED', 'REJECTED', 'SKIPPED')",
            name="overtime_candidate_status_check",
        ),
        CheckConstraint(
            "candidate_type IN ('EXTRA', 'DEFICIT', 'COMPLEMENTARY', 'NON_WORKDAY')",
            name="overtime_candidate_type_check",
        ),
    )


class OverworkAuthorization(Base, TimestampMixin, UpdatedAtMixin):
    """Approval request for one employee/day's excess minutes."""

    __tablename__ = "overwork_authorization"

    authorization_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.org_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    minutes_approved: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")
    compensation_type: Mapped[str] = mapped_column(String, nullable=False)
    justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    approval_comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    requested_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    requested_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED', 'CANCELLED', 'EXPIRED')",
            name="overwork_authorization_status_check",
        ),
        CheckConstraint("minutes_approved >= 0", name="overwork_authorization_minutes_check"),
        Index("ix_overwork_authorization_org_status", "org_id", "status"),
    )


class TimeBankMovement(Base, TimestampMixin, UpdatedAtMixin):
    """Signed entry of an employee's time-bank ledger.

    The employee balance is the sum of all movement minutes.
    """

    __tablename__ = "time_bank_movement"

    movement_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.org_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    movement_date: Mapped[date] = mapped_column(Date, nullable=False)
    minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    movement_type: Mapped[str] = mapped_column(String, nullable=False)
    origin: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="SETTLED")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    workday_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("workday_summary.workday_summary_id", ondelete="SET NULL"),
        nullable=True,
    )
    overwork_authorization_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("overwork_authorization.authorization_id", ondelete="CASCADE"),
        nullable=True,
    )
    request_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("time_bank_request.request_id", ondelete="CASCADE"),
        nullable=True,
    )
    reconciliation_week_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    approved_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("overwork_authorization_id", name="time_bank_movement_authorization_unique"),
        UniqueConstraint("request_id", name="time_bank_movement_request_unique"),
        UniqueConstraint(
            "employee_id",
            "reconciliation_week_start",
            name="time_bank_movement_week_correction_unique",
        ),
        Index(
            "ux_time_bank_movement_auto_daily",
            "workday_id",
            unique=True,
            postgresql_where=text("origin = 'AUTO_DAILY'"),
            sqlite_where=text("origin = 'AUTO_DAILY'"),
        ),
        Index("ix_time_bank_movement_employee", "org_id", "employee_id"),
        CheckConstraint(
            "movement_type IN ('EXTRA', 'DEFICIT', 'CORRECTION', 'RECOVERY', 'FESTIVE', 'ADJUSTMENT')",
            name="time_bank_movement_type_check",
        ),
        CheckConstraint(
            "origin IN ('AUTO_DAILY', 'OVERTIME_AUTHORIZATION', 'EMPLOYEE_REQUEST', 'CORRECTION')",
            name="time_bank_movement_origin_check",
        ),
    )

    @property
    def clamped_by_limit(self) -> bool:
        """Whether the write was reduced to respect the balance limits."""
        return bool((self.metadata_json or {}).get("clampedByLimit"))


class TimeBankRequest(Base, TimestampMixin, UpdatedAtMixin):
    """Employee-initiated recovery or festive compensation request."""

    __tablename__ = "time_bank_request"

    request_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.org_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    request_type: Mapped[str] = mapped_column(String, nullable=False)
    request_date: Mapped[date] = mapped_column(Date, nullable=False)
    requested_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")
    reviewer_id: Mapped[UUID | None] = mapped_column(nullable=True)
    processed_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "request_type IN ('RECOVERY', 'FESTIVE_COMPENSATION')",
            name="time_bank_request_type_check",
        ),
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED', 'CANCELLED')",
            name="time_bank_request_status_check",
        ),
        CheckConstraint("requested_minutes > 0", name="time_bank_request_minutes_check"),
    )
