"""Organization, employee and workday summary models.

These tables are owned by the surrounding HR product; the engine reads them
and only writes the overtime calculation status of a workday summary.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from overtime_engine.models.base import Base, TimestampMixin, UpdatedAtMixin


class Organization(Base, TimestampMixin):
    """Tenant organization."""

    __tablename__ = "organization"

    org_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    timezone: Mapped[str | None] = mapped_column(String, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    fallback_approver_user_id: Mapped[UUID | None] = mapped_column(nullable=True)

    # Relationships
    time_bank_settings: Mapped[TimeBankSettings | None] = relationship(
        back_populates="organization", uselist=False
    )


class TimeBankSettings(Base, TimestampMixin, UpdatedAtMixin):
    """Organization overtime / time-bank settings.

    Every policy column is nullable: a missing value falls back to the
    engine default independently of the others.
    """

    __tablename__ = "time_bank_settings"

    time_bank_settings_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.org_id", ondelete="CASCADE"),
        nullable=False,
    )
    overtime_calculation_mode: Mapped[str | None] = mapped_column(String, nullable=True)
    overtime_approval_mode: Mapped[str | None] = mapped_column(String, nullable=True)
    overtime_compensation_type: Mapped[str | None] = mapped_column(String, nullable=True)
    overtime_tolerance_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    overtime_daily_limit_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    overtime_weekly_limit_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    overtime_monthly_limit_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    overtime_annual_limit_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    overtime_full_time_weekly_hours: Mapped[Decimal | None] = mapped_column(
        Numeric(5, 2), nullable=True
    )
    overtime_non_working_day_policy: Mapped[str | None] = mapped_column(String, nullable=True)
    overtime_weekly_reconciliation_enabled: Mapped[bool | None] = mapped_column(
        Boolean, nullable=True
    )
    rounding_increment_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    deficit_grace_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    excess_grace_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_positive_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_negative_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (UniqueConstraint("org_id", name="time_bank_settings_org_unique"),)

    # Relationships
    organization: Mapped[Organization] = relationship(back_populates="time_bank_settings")


class Employee(Base, TimestampMixin):
    """Employee record with the active contract's weekly hours."""

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.org_id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    weekly_hours: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    approver_user_id: Mapped[UUID | None] = mapped_column(nullable=True)

    @property
    def full_name(self) -> str:
        """Get full name."""
        return f"{self.first_name} {self.last_name}".strip()


class WorkdaySummary(Base, TimestampMixin, UpdatedAtMixin):
    """Daily worked/expected aggregate produced by the clock-in pipeline."""

    __tablename__ = "workday_summary"

    workday_summary_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.org_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    worked_minutes: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    expected_minutes: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    resolution_status: Mapped[str | None] = mapped_column(String, nullable=True)
    data_quality: Mapped[str | None] = mapped_column(String, nullable=True)
    overtime_calc_status: Mapped[str] = mapped_column(String, nullable=False, default="DIRTY")
    overtime_calc_updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "org_id", "employee_id", "work_date", name="workday_summary_org_employee_date_unique"
        ),
        CheckConstraint(
            "overtime_calc_status IN "
            "('DIRTY', 'CALCULATING', 'READY', 'PENDING_APPROVAL', 'SETTLED', 'SKIPPED')",
            name="workday_summary_calc_status_check",
        ),
        Index("ix_workday_summary_calc_status_date", "org_id", "overtime_calc_status", "work_date"),
    )
