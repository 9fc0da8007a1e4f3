"""Background job queue table."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from overtime_engine.models.base import Base, TimestampMixin, UpdatedAtMixin, utcnow


class OvertimeJob(Base, TimestampMixin, UpdatedAtMixin):
    """Queued unit of work.

    At most one PENDING or RUNNING job exists per singleton key; the partial
    unique index makes concurrent enqueues of the same key collapse.
    """

    __tablename__ = "overtime_job"

    job_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    queue: Mapped[str] = mapped_column(String(100), nullable=False)
    singleton_key: Mapped[str] = mapped_column(String(255), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    run_after: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    locked_until: Mapped[datetime | None] = mapped_column(nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'RUNNING', 'COMPLETED', 'DEAD')",
            name="overtime_job_status_check",
        ),
        Index(
            "ux_overtime_job_singleton_active",
            "singleton_key",
            unique=True,
            postgresql_where=text("status IN ('PENDING', 'RUNNING')"),
            sqlite_where=text("status IN ('PENDING', 'RUNNING')"),
        ),
        Index("ix_overtime_job_due", "status", "run_after"),
    )
