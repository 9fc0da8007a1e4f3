"""Time-bank ledger writer.

Every write is an idempotent upsert keyed by what produced it:
- AUTO_DAILY movements by workday summary
- authorization movements by authorization
- weekly corrections by (employee, week start)
- request movements by request

Every write is clamped so the employee balance stays inside
[-max_negative_minutes, +max_positive_minutes]. The balance used for
clamping is recomputed from the full ledger, excluding the row being
replaced.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from overtime_engine.calculators.types import (
    MovementOrigin,
    MovementStatus,
    MovementType,
    OvertimePolicy,
    TimeBankRequestStatus,
    TimeBankRequestType,
)
from overtime_engine.models import Employee, TimeBankMovement, TimeBankRequest, utcnow

logger = logging.getLogger(__name__)

LAST_MOVEMENTS_LIMIT = 8


@dataclass(frozen=True)
class ClampResult:
    """Outcome of clamping a movement against the balance limits."""

    attempted_minutes: int
    applied_minutes: int
    balance_before_minutes: int

    @property
    def clamped(self) -> bool:
        return self.applied_minutes != self.attempted_minutes


def clamp_movement_minutes(minutes: int, balance: int, policy: OvertimePolicy) -> ClampResult:
    """Reduce a movement so that balance + applied stays within the limits.

    A positive movement gets at most max_positive - balance, a negative one
    at most balance + max_negative in magnitude. No room means 0.
    """
    applied = minutes
    if minutes > 0:
        room = policy.max_positive_minutes - balance
        applied = 0 if room <= 0 else min(minutes, room)
    elif minutes < 0:
        room = balance + policy.max_negative_minutes
        applied = 0 if room <= 0 else max(minutes, -room)
    return ClampResult(
        attempted_minutes=minutes,
        applied_minutes=applied,
        balance_before_minutes=balance,
    )


def clamp_metadata(clamp: ClampResult, policy: OvertimePolicy) -> dict[str, Any]:
    """Metadata recorded on a movement reduced by the limits."""
    return {
        "clampedByLimit": True,
        "attemptedMinutes": clamp.attempted_minutes,
        "appliedMinutes": clamp.applied_minutes,
        "balanceBeforeMinutes": clamp.balance_before_minutes,
        "maxPositiveMinutes": policy.max_positive_minutes,
        "maxNegativeMinutes": policy.max_negative_minutes,
    }


@dataclass
class TimeBankSummary:
    """Balance overview of one employee."""

    total_minutes: int
    todays_minutes: int
    pending_requests: int
    breakdown: dict[str, int] = field(default_factory=dict)
    last_movements: list[TimeBankMovement] = field(default_factory=list)
    max_positive_minutes: int = 0
    max_negative_minutes: int = 0

    @property
    def total_hours(self) -> float:
        return self.total_minutes / 60


@dataclass
class EmployeeBalance:
    """One employee line of the organization overview."""

    employee_id: UUID
    first_name: str
    last_name: str
    total_minutes: int
    pending_requests: int = 0


@dataclass
class TimeBankAdminStats:
    """Organization-wide balances and pending requests."""

    total_positive_minutes: int = 0
    total_negative_minutes: int = 0
    pending_requests_count: int = 0
    employees: list[EmployeeBalance] = field(default_factory=list)

    @property
    def total_employees_with_balance(self) -> int:
        return len(self.employees)


class LedgerWriter:
    """Idempotent, clamped writes to the time-bank ledger."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_balance(
        self,
        org_id: UUID,
        employee_id: UUID,
        exclude_movement_id: UUID | None = None,
    ) -> int:
        """Sum of all movement minutes of an employee.

        Args:
            org_id: Organization
            employee_id: Employee
            exclude_movement_id: Movement left out of the sum (the row about
                to be replaced)
        """
        query = select(func.coalesce(func.sum(TimeBankMovement.minutes), 0)).where(
            TimeBankMovement.org_id == org_id,
            TimeBankMovement.employee_id == employee_id,
        )
        if exclude_movement_id is not None:
            query = query.where(TimeBankMovement.movement_id != exclude_movement_id)
        result = await self.session.execute(query)
        return int(result.scalar_one())

    async def get_auto_daily_movement(self, workday_id: UUID) -> TimeBankMovement | None:
        result = await self.session.execute(
            select(TimeBankMovement).where(
                TimeBankMovement.workday_id == workday_id,
                TimeBankMovement.origin == MovementOrigin.AUTO_DAILY.value,
            )
        )
        return result.scalar_one_or_none()

    async def get_authorization_movement(self, authorization_id: UUID) -> TimeBankMovement | None:
        result = await self.session.execute(
            select(TimeBankMovement).where(
                TimeBankMovement.overwork_authorization_id == authorization_id
            )
        )
        return result.scalar_one_or_none()

    async def get_weekly_correction(
        self, employee_id: UUID, week_start: date
    ) -> TimeBankMovement | None:
        result = await self.session.execute(
            select(TimeBankMovement).where(
                TimeBankMovement.employee_id == employee_id,
                TimeBankMovement.reconciliation_week_start == week_start,
            )
        )
        return result.scalar_one_or_none()

    async def get_request_movement(self, request_id: UUID) -> TimeBankMovement | None:
        result = await self.session.execute(
            select(TimeBankMovement).where(TimeBankMovement.request_id == request_id)
        )
        return result.scalar_one_or_none()

    async def remove_auto_daily_movement(self, workday_id: UUID) -> int:
        """Delete the AUTO_DAILY movement of a workday, if any."""
        result = await self.session.execute(
            delete(TimeBankMovement).where(
                TimeBankMovement.workday_id == workday_id,
                TimeBankMovement.origin == MovementOrigin.AUTO_DAILY.value,
            )
        )
        return result.rowcount or 0

    async def remove_authorization_movement(self, authorization_id: UUID) -> int:
        """Delete the movement materialized by an authorization, if any."""
        result = await self.session.execute(
            delete(TimeBankMovement).where(
                TimeBankMovement.overwork_authorization_id == authorization_id,
                TimeBankMovement.origin == MovementOrigin.OVERTIME_AUTHORIZATION.value,
            )
        )
        return result.rowcount or 0

    async def remove_weekly_corrections(
        self,
        org_id: UUID,
        week_start: date,
        keep_employee_ids: Collection[UUID] = (),
    ) -> int:
        """Delete the week's correction movements, except those of keep_employee_ids."""
        stmt = delete(TimeBankMovement).where(
            TimeBankMovement.org_id == org_id,
            TimeBankMovement.reconciliation_week_start == week_start,
            TimeBankMovement.origin == MovementOrigin.CORRECTION.value,
        )
        if keep_employee_ids:
            stmt = stmt.where(TimeBankMovement.employee_id.not_in(list(keep_employee_ids)))
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def _write(
        self,
        existing: TimeBankMovement | None,
        *,
        org_id: UUID,
        employee_id: UUID,
        attempted_minutes: int,
        policy: OvertimePolicy,
        values: dict[str, Any],
        metadata: dict[str, Any],
        label: str,
    ) -> TimeBankMovement | None:
        """Clamp and upsert one movement; shared by every origin.

        `values` must not contain minutes or metadata. A movement whose
        applied minutes come out as 0 is deleted (or never created).
        """
        balance = await self.get_balance(
            org_id,
            employee_id,
            exclude_movement_id=existing.movement_id if existing is not None else None,
        )
        clamp = clamp_movement_minutes(attempted_minutes, balance, policy)
        applied = clamp.applied_minutes

        if applied == 0:
            if existing is not None:
                await self.session.delete(existing)
                await self.session.flush()
            if clamp.clamped:
                logger.info(
                    "%s movement for employee %s dropped by limits: attempted %s, balance %s",
                    label,
                    employee_id,
                    attempted_minutes,
                    balance,
                )
            return None

        if clamp.clamped:
            metadata = {**clamp_metadata(clamp, policy), **metadata}
            logger.info(
                "%s movement for employee %s clamped: attempted %s, applied %s, balance %s",
                label,
                employee_id,
                attempted_minutes,
                applied,
                balance,
            )

        if existing is None:
            movement = TimeBankMovement(
                org_id=org_id,
                employee_id=employee_id,
                minutes=applied,
                metadata_json=metadata,
                **values,
            )
            self.session.add(movement)
            await self.session.flush()
            return movement

        if existing.minutes == applied:
            return existing

        existing.minutes = applied
        existing.metadata_json = metadata
        for key, value in values.items():
            setattr(existing, key, value)
        await self.session.flush()
        return existing

    async def upsert_auto_daily_movement(
        self,
        *,
        org_id: UUID,
        employee_id: UUID,
        workday_id: UUID,
        movement_date: date,
        minutes: int,
        policy: OvertimePolicy,
        candidate_type: str,
    ) -> TimeBankMovement | None:
        """Write the daily movement of a workday (unapproved path)."""
        existing = await self.get_auto_daily_movement(workday_id)
        if minutes == 0:
            if existing is not None:
                await self.session.delete(existing)
                await self.session.flush()
            return None

        values = {
            "workday_id": workday_id,
            "movement_date": movement_date,
            "movement_type": (MovementType.EXTRA if minutes > 0 else MovementType.DEFICIT).value,
            "origin": MovementOrigin.AUTO_DAILY.value,
            "status": MovementStatus.SETTLED.value,
            "description": "Automatic daily deviation",
        }
        return await self._write(
            existing,
            org_id=org_id,
            employee_id=employee_id,
            attempted_minutes=minutes,
            policy=policy,
            values=values,
            metadata={"candidateType": candidate_type},
            label="AUTO_DAILY",
        )

    async def upsert_authorization_movement(
        self,
        *,
        org_id: UUID,
        employee_id: UUID,
        workday_id: UUID | None,
        authorization_id: UUID,
        movement_date: date,
        minutes: int,
        policy: OvertimePolicy,
        candidate_type: str,
        approved_by_id: UUID | None = None,
        approved_at: datetime | None = None,
    ) -> TimeBankMovement | None:
        """Write the movement materialized by an approved authorization."""
        existing = await self.get_authorization_movement(authorization_id)
        if minutes == 0:
            if existing is not None:
                await self.session.delete(existing)
                await self.session.flush()
            return None

        values: dict[str, Any] = {
            "workday_id": workday_id,
            "overwork_authorization_id": authorization_id,
            "movement_date": movement_date,
            "movement_type": (MovementType.EXTRA if minutes > 0 else MovementType.DEFICIT).value,
            "origin": MovementOrigin.OVERTIME_AUTHORIZATION.value,
            "status": MovementStatus.SETTLED.value,
            "description": "Approved overtime",
        }
        if approved_by_id is not None:
            values["approved_by_id"] = approved_by_id
            values["approved_at"] = approved_at or utcnow()
        return await self._write(
            existing,
            org_id=org_id,
            employee_id=employee_id,
            attempted_minutes=minutes,
            policy=policy,
            values=values,
            metadata={"candidateType": candidate_type},
            label="OVERTIME_AUTHORIZATION",
        )

    async def upsert_weekly_correction(
        self,
        *,
        org_id: UUID,
        employee_id: UUID,
        week_start: date,
        week_end: date,
        correction_minutes: int,
        policy: OvertimePolicy,
        details: dict[str, Any],
    ) -> TimeBankMovement | None:
        """Write (or replace) the correction movement of one employee/week."""
        existing = await self.get_weekly_correction(employee_id, week_start)
        if correction_minutes == 0:
            if existing is not None:
                await self.session.delete(existing)
                await self.session.flush()
            return None

        balance = await self.get_balance(
            org_id,
            employee_id,
            exclude_movement_id=existing.movement_id if existing is not None else None,
        )
        clamp = clamp_movement_minutes(correction_minutes, balance, policy)
        metadata = {
            **details,
            "weekStart": week_start.isoformat(),
            "weekEnd": week_end.isoformat(),
            "correction": correction_minutes,
            "appliedMinutes": clamp.applied_minutes,
            "clampedByLimit": clamp.clamped,
            "balanceBeforeMinutes": balance,
            "maxPositiveMinutes": policy.max_positive_minutes,
            "maxNegativeMinutes": policy.max_negative_minutes,
        }

        if clamp.applied_minutes == 0:
            if existing is not None:
                await self.session.delete(existing)
                await self.session.flush()
            return None

        values: dict[str, Any] = {
            "minutes": clamp.applied_minutes,
            "movement_date": week_end,
            "movement_type": (
                MovementType.CORRECTION if clamp.applied_minutes >= 0 else MovementType.DEFICIT
            ).value,
            "origin": MovementOrigin.CORRECTION.value,
            "status": MovementStatus.SETTLED.value,
            "description": (
                "Automatic weekly adjustment (clamped by limit)"
                if clamp.clamped
                else "Automatic weekly adjustment"
            ),
            "metadata_json": metadata,
        }
        if clamp.clamped:
            logger.info(
                "Weekly correction for employee %s clamped: attempted %s, applied %s",
                employee_id,
                correction_minutes,
                clamp.applied_minutes,
            )

        if existing is None:
            movement = TimeBankMovement(
                org_id=org_id,
                employee_id=employee_id,
                reconciliation_week_start=week_start,
                **values,
            )
            self.session.add(movement)
            await self.session.flush()
            return movement

        changed = {k: v for k, v in values.items() if getattr(existing, k) != v}
        if changed:
            for key, value in changed.items():
                setattr(existing, key, value)
            await self.session.flush()
        return existing

    async def upsert_request_movement(
        self,
        request: TimeBankRequest,
        policy: OvertimePolicy,
        actor_user_id: UUID | None,
    ) -> TimeBankMovement | None:
        """Materialize an approved time-bank request.

        RECOVERY consumes balance (negative minutes); FESTIVE_COMPENSATION
        credits it.
        """
        if request.status != TimeBankRequestStatus.APPROVED.value:
            raise ValueError(f"Request {request.request_id} is not approved")

        is_recovery = request.request_type == TimeBankRequestType.RECOVERY.value
        minutes = -request.requested_minutes if is_recovery else request.requested_minutes
        existing = await self.get_request_movement(request.request_id)
        now = utcnow()
        values: dict[str, Any] = {
            "request_id": request.request_id,
            "movement_date": request.request_date,
            "movement_type": (MovementType.RECOVERY if is_recovery else MovementType.FESTIVE).value,
            "origin": MovementOrigin.EMPLOYEE_REQUEST.value,
            "status": MovementStatus.APPROVED.value,
            "description": request.reason or ("Time-bank recovery" if is_recovery else "Festive compensation"),
            "approved_by_id": actor_user_id,
            "approved_at": now,
        }
        return await self._write(
            existing,
            org_id=request.org_id,
            employee_id=request.employee_id,
            attempted_minutes=minutes,
            policy=policy,
            values=values,
            metadata={"requestType": request.request_type},
            label="EMPLOYEE_REQUEST",
        )

    async def get_summary(
        self,
        org_id: UUID,
        employee_id: UUID,
        policy: OvertimePolicy,
        today: date,
    ) -> TimeBankSummary:
        """Balance, per-type breakdown, recent movements and pending requests."""
        total = await self.get_balance(org_id, employee_id)

        grouped = await self.session.execute(
            select(TimeBankMovement.movement_type, func.sum(TimeBankMovement.minutes))
            .where(
                TimeBankMovement.org_id == org_id,
                TimeBankMovement.employee_id == employee_id,
            )
            .group_by(TimeBankMovement.movement_type)
            .order_by(TimeBankMovement.movement_type)
        )
        breakdown = {movement_type: int(minutes or 0) for movement_type, minutes in grouped.all()}

        last = await self.session.execute(
            select(TimeBankMovement)
            .where(
                TimeBankMovement.org_id == org_id,
                TimeBankMovement.employee_id == employee_id,
            )
            .order_by(TimeBankMovement.movement_date.desc(), TimeBankMovement.created_at.desc())
            .limit(LAST_MOVEMENTS_LIMIT)
        )

        todays = await self.session.execute(
            select(func.coalesce(func.sum(TimeBankMovement.minutes), 0)).where(
                TimeBankMovement.org_id == org_id,
                TimeBankMovement.employee_id == employee_id,
                TimeBankMovement.origin == MovementOrigin.AUTO_DAILY.value,
                TimeBankMovement.movement_date == today,
            )
        )

        pending = await self.session.execute(
            select(func.count()).select_from(TimeBankRequest).where(
                TimeBankRequest.org_id == org_id,
                TimeBankRequest.employee_id == employee_id,
                TimeBankRequest.status == TimeBankRequestStatus.PENDING.value,
            )
        )

        return TimeBankSummary(
            total_minutes=total,
            todays_minutes=int(todays.scalar_one()),
            pending_requests=int(pending.scalar_one()),
            breakdown=breakdown,
            last_movements=list(last.scalars().all()),
            max_positive_minutes=policy.max_positive_minutes,
            max_negative_minutes=policy.max_negative_minutes,
        )

    async def get_admin_stats(self, org_id: UUID) -> TimeBankAdminStats:
        """Balance of every employee with movements, largest first.

        Positive balances add to total_positive_minutes and negative ones, as
        magnitudes, to total_negative_minutes.
        """
        balances = await self.session.execute(
            select(
                TimeBankMovement.employee_id,
                Employee.first_name,
                Employee.last_name,
                func.sum(TimeBankMovement.minutes),
            )
            .outerjoin(Employee, Employee.employee_id == TimeBankMovement.employee_id)
            .where(TimeBankMovement.org_id == org_id)
            .group_by(TimeBankMovement.employee_id, Employee.first_name, Employee.last_name)
        )

        pending_rows = await self.session.execute(
            select(TimeBankRequest.employee_id, func.count())
            .where(
                TimeBankRequest.org_id == org_id,
                TimeBankRequest.status == TimeBankRequestStatus.PENDING.value,
            )
            .group_by(TimeBankRequest.employee_id)
        )
        pending = {employee_id: int(count) for employee_id, count in pending_rows.all()}

        stats = TimeBankAdminStats(pending_requests_count=sum(pending.values()))
        for employee_id, first_name, last_name, minutes in balances.all():
            total = int(minutes or 0)
            if total >= 0:
                stats.total_positive_minutes += total
            else:
                stats.total_negative_minutes += -total
            stats.employees.append(
                EmployeeBalance(
                    employee_id=employee_id,
                    first_name=first_name or "Unknown",
                    last_name=last_name or "",
                    total_minutes=total,
                    pending_requests=pending.get(employee_id, 0),
                )
            )
        stats.employees.sort(key=lambda e: e.total_minutes, reverse=True)
        return stats
