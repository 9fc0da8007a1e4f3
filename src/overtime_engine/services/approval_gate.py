"""Approval gate for overtime that needs a human decision.

Two entry points:
- recompute time (sync_for_candidate): keeps the authorization linked to a
  candidate in step with freshly computed minutes
- explicit actions (approve, reject, expire_stale)

Messages are never delivered here; they are appended to an Outbox that the
caller dispatches after committing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from overtime_engine.calculators.policy_resolver import PolicyResolver
from overtime_engine.calculators.types import (
    AuthorizationStatus,
    CalcStatus,
    CandidateStatus,
    CompensationType,
    OvertimePolicy,
)
from overtime_engine.models import (
    Employee,
    OvertimeCandidate,
    OverworkAuthorization,
    WorkdaySummary,
    utcnow,
)
from overtime_engine.services.collaborators import (
    AlertMessage,
    Collaborators,
    NotificationMessage,
    Outbox,
)
from overtime_engine.services.ledger_service import LedgerWriter
from overtime_engine.services.state_machine import (
    AuthorizationStateMachine,
    calc_status_for,
    resolve_candidate_status,
)

logger = logging.getLogger(__name__)

ALERT_TYPE_PENDING = "OVERTIME_PENDING_APPROVAL"
ALERT_SEVERITY_WARNING = "WARNING"
AUTO_JUSTIFICATION = "Generated automatically for excess working time"

MIN_EXPIRY_DAYS = 1
MAX_EXPIRY_DAYS = 90


class AuthorizationNotFoundError(Exception):
    """Raised when an overwork authorization does not exist for the tenant."""

    def __init__(self, authorization_id: UUID):
        self.authorization_id = authorization_id
        super().__init__(f"Overwork authorization {authorization_id} not found")


class ApprovalPermissionError(Exception):
    """Raised when the caller is not an approver of the employee."""

    def __init__(self, user_id: UUID, employee_id: UUID):
        self.user_id = user_id
        self.employee_id = employee_id
        super().__init__(f"User {user_id} cannot approve overtime of employee {employee_id}")


def _hours(minutes: int) -> str:
    return f"{minutes / 60:.1f}h"


@dataclass(frozen=True)
class GateSubject:
    """The employee/day a recompute is settling."""

    org_id: UUID
    employee_id: UUID
    work_date: date
    workday_id: UUID
    candidate_type: str
    authorization_id: UUID | None = None


@dataclass
class GateResult:
    """What the gate did for one candidate."""

    authorization_id: UUID | None
    authorization_status: str | None
    movement_written: bool


@dataclass
class ExpiryReport:
    """Outcome of an expiry run."""

    org_id: UUID
    cutoff: datetime
    expired: int = 0
    candidates_rejected: int = 0


class ApprovalGate:
    """Keeps overwork authorizations, candidates and the ledger consistent."""

    def __init__(self, session: AsyncSession, collaborators: Collaborators | None = None):
        self.session = session
        self.collaborators = collaborators or Collaborators()
        self.ledger = LedgerWriter(session)

    async def get_authorization(
        self, authorization_id: UUID, org_id: UUID | None = None
    ) -> OverworkAuthorization:
        """Load an authorization, scoped to a tenant when org_id is given."""
        authorization = await self.session.get(OverworkAuthorization, authorization_id)
        if authorization is None or (org_id is not None and authorization.org_id != org_id):
            raise AuthorizationNotFoundError(authorization_id)
        return authorization

    async def list_authorizations(
        self,
        org_id: UUID,
        status: AuthorizationStatus | None = AuthorizationStatus.PENDING,
        employee_id: UUID | None = None,
    ) -> list[OverworkAuthorization]:
        """List a tenant's authorizations, oldest first."""
        query = select(OverworkAuthorization).where(OverworkAuthorization.org_id == org_id)
        if status is not None:
            query = query.where(OverworkAuthorization.status == status.value)
        if employee_id is not None:
            query = query.where(OverworkAuthorization.employee_id == employee_id)
        result = await self.session.execute(
            query.order_by(OverworkAuthorization.work_date, OverworkAuthorization.requested_at)
        )
        return list(result.scalars().all())

    async def _approvers(self, org_id: UUID, employee_id: UUID) -> list[UUID]:
        return await self.collaborators.approver_resolver.resolve_approvers(
            self.session, org_id, employee_id
        )

    async def sync_for_candidate(
        self,
        subject: GateSubject,
        *,
        employee: Employee | None,
        final_minutes: int,
        requires_approval: bool,
        policy: OvertimePolicy,
        outbox: Outbox,
    ) -> GateResult:
        """Bring the ledger and authorization of a recomputed candidate in line.

        The candidate row is not touched here; the caller resolves its status
        from the returned GateResult and writes it once.
        """
        linked = None
        if subject.authorization_id is not None:
            linked = await self.session.get(OverworkAuthorization, subject.authorization_id)

        if final_minutes == 0 or not requires_approval:
            if linked is not None:
                if linked.status == AuthorizationStatus.PENDING.value:
                    linked.status = AuthorizationStatus.CANCELLED.value
                    linked.resolved_at = utcnow()
                await self.ledger.remove_authorization_movement(linked.authorization_id)
                await self.session.flush()

            movement = await self.ledger.upsert_auto_daily_movement(
                org_id=subject.org_id,
                employee_id=subject.employee_id,
                workday_id=subject.workday_id,
                movement_date=subject.work_date,
                minutes=final_minutes,
                policy=policy,
                candidate_type=subject.candidate_type,
            )
            return GateResult(
                authorization_id=linked.authorization_id if linked else None,
                # An authorization made obsolete by the recompute does not drive the status.
                authorization_status=None,
                movement_written=movement is not None,
            )

        # The daily movement never coexists with an authorization.
        await self.ledger.remove_auto_daily_movement(subject.workday_id)

        if linked is None or linked.status == AuthorizationStatus.CANCELLED.value:
            authorization = await self._create_pending(
                subject, employee=employee, minutes=final_minutes, policy=policy, outbox=outbox
            )
            return GateResult(
                authorization_id=authorization.authorization_id,
                authorization_status=authorization.status,
                movement_written=False,
            )

        movement_written = False
        if linked.status == AuthorizationStatus.PENDING.value:
            if (
                linked.minutes_approved != final_minutes
                or linked.compensation_type != policy.compensation_type.value
            ):
                linked.minutes_approved = final_minutes
                linked.compensation_type = policy.compensation_type.value
                await self.session.flush()

        elif linked.status == AuthorizationStatus.APPROVED.value:
            previous = linked.minutes_approved
            if previous != final_minutes:
                linked.minutes_approved = final_minutes
                await self.session.flush()
                self._queue_adjusted(linked, employee, previous, final_minutes, outbox)

            if CompensationType(linked.compensation_type).credits_time_bank:
                movement = await self.ledger.upsert_authorization_movement(
                    org_id=subject.org_id,
                    employee_id=subject.employee_id,
                    workday_id=subject.workday_id,
                    authorization_id=linked.authorization_id,
                    movement_date=subject.work_date,
                    minutes=final_minutes,
                    policy=policy,
                    candidate_type=subject.candidate_type,
                    approved_by_id=linked.approved_by_id,
                    approved_at=linked.resolved_at,
                )
                movement_written = movement is not None

        return GateResult(
            authorization_id=linked.authorization_id,
            authorization_status=linked.status,
            movement_written=movement_written,
        )

    async def _create_pending(
        self,
        subject: GateSubject,
        *,
        employee: Employee | None,
        minutes: int,
        policy: OvertimePolicy,
        outbox: Outbox,
    ) -> OverworkAuthorization:
        authorization = OverworkAuthorization(
            org_id=subject.org_id,
            employee_id=subject.employee_id,
            work_date=subject.work_date,
            minutes_approved=minutes,
            status=AuthorizationStatus.PENDING.value,
            compensation_type=policy.compensation_type.value,
            justification=AUTO_JUSTIFICATION,
            requested_by_id=employee.user_id if employee else None,
            requested_at=utcnow(),
        )
        self.session.add(authorization)
        await self.session.flush()

        name = employee.full_name if employee else "Employee"
        outbox.alert(
            AlertMessage(
                org_id=subject.org_id,
                employee_id=subject.employee_id,
                alert_type=ALERT_TYPE_PENDING,
                severity=ALERT_SEVERITY_WARNING,
                description=f"{name} logged overtime pending approval.",
                alert_date=subject.work_date,
                deviation_minutes=minutes,
            )
        )
        for approver_id in await self._approvers(subject.org_id, subject.employee_id):
            outbox.notify(
                NotificationMessage(
                    user_id=approver_id,
                    org_id=subject.org_id,
                    notification_type="OVERTIME_PENDING_APPROVAL",
                    title="Overtime pending approval",
                    message=f"{name} logged {_hours(minutes)} on {subject.work_date.isoformat()}.",
                )
            )
        logger.info(
            "Created pending authorization %s for employee %s on %s (%s min)",
            authorization.authorization_id,
            subject.employee_id,
            subject.work_date,
            minutes,
        )
        return authorization

    def _queue_adjusted(
        self,
        authorization: OverworkAuthorization,
        employee: Employee | None,
        previous: int,
        current: int,
        outbox: Outbox,
    ) -> None:
        day = authorization.work_date.isoformat()
        if employee is not None and employee.user_id is not None:
            outbox.notify(
                NotificationMessage(
                    user_id=employee.user_id,
                    org_id=authorization.org_id,
                    notification_type="OVERTIME_ADJUSTED",
                    title="Overtime adjusted",
                    message=(
                        f"Your overtime on {day} was adjusted from {_hours(previous)} "
                        f"to {_hours(current)} after a clock correction."
                    ),
                )
            )
        if authorization.approved_by_id is not None:
            name = employee.full_name if employee else "An employee"
            outbox.notify(
                NotificationMessage(
                    user_id=authorization.approved_by_id,
                    org_id=authorization.org_id,
                    notification_type="OVERTIME_ADJUSTED",
                    title="Overtime adjusted",
                    message=f"{name}'s overtime on {day} was adjusted to {_hours(current)}.",
                )
            )

    async def _linked_candidate(self, authorization_id: UUID) -> OvertimeCandidate | None:
        result = await self.session.execute(
            select(OvertimeCandidate).where(
                OvertimeCandidate.overwork_authorization_id == authorization_id
            )
        )
        return result.scalars().first()

    async def _set_summary_status(self, workday_summary_id: UUID | None, status: CalcStatus) -> None:
        if workday_summary_id is None:
            return
        summary = await self.session.get(WorkdaySummary, workday_summary_id)
        if summary is not None:
            summary.overtime_calc_status = status.value
            summary.overtime_calc_updated_at = utcnow()

    async def _ensure_approver(self, authorization: OverworkAuthorization, user_id: UUID) -> None:
        approvers = await self._approvers(authorization.org_id, authorization.employee_id)
        if user_id not in approvers:
            raise ApprovalPermissionError(user_id, authorization.employee_id)

    async def approve(
        self,
        authorization_id: UUID,
        approver_user_id: UUID,
        *,
        org_id: UUID | None = None,
        compensation_type: CompensationType | None = None,
        comments: str | None = None,
        outbox: Outbox,
    ) -> OverworkAuthorization:
        """Approve a PENDING authorization and settle it.

        Raises:
            AuthorizationNotFoundError: Unknown authorization
            ApprovalPermissionError: Caller is not an approver
            InvalidTransitionError: Authorization is not PENDING
        """
        authorization = await self.get_authorization(authorization_id, org_id)
        await self._ensure_approver(authorization, approver_user_id)
        AuthorizationStateMachine.validate_transition(
            authorization.status,
            AuthorizationStatus.APPROVED.value,
            "authorization was already processed",
        )

        selected = compensation_type or CompensationType(authorization.compensation_type)
        now = utcnow()
        authorization.status = AuthorizationStatus.APPROVED.value
        authorization.approved_by_id = approver_user_id
        authorization.resolved_at = now
        authorization.compensation_type = selected.value
        if comments:
            authorization.approval_comments = comments
        await self.session.flush()

        movement_written = False
        candidate = await self._linked_candidate(authorization.authorization_id)
        if selected.credits_time_bank:
            policy = await PolicyResolver(self.session).resolve(authorization.org_id)
            minutes = (
                candidate.candidate_minutes_final if candidate else authorization.minutes_approved
            )
            movement = await self.ledger.upsert_authorization_movement(
                org_id=authorization.org_id,
                employee_id=authorization.employee_id,
                workday_id=candidate.workday_summary_id if candidate else None,
                authorization_id=authorization.authorization_id,
                movement_date=authorization.work_date,
                minutes=minutes,
                policy=policy,
                candidate_type=candidate.candidate_type if candidate else "EXTRA",
                approved_by_id=approver_user_id,
                approved_at=now,
            )
            movement_written = movement is not None

        if candidate is not None:
            status = resolve_candidate_status(
                final_minutes=candidate.candidate_minutes_final,
                requires_approval=candidate.requires_approval,
                authorization_status=authorization.status,
                movement_written=movement_written,
            )
            candidate.status = status.value
            candidate.compensation_type = selected.value
            candidate.resolved_at = now if status == CandidateStatus.SETTLED else None
            await self._set_summary_status(candidate.workday_summary_id, calc_status_for(status))
        await self.session.flush()

        employee = await self.session.get(Employee, authorization.employee_id)
        if employee is not None and employee.user_id is not None:
            outbox.notify(
                NotificationMessage(
                    user_id=employee.user_id,
                    org_id=authorization.org_id,
                    notification_type="OVERTIME_APPROVED",
                    title="Overtime approved",
                    message=f"Your overtime on {authorization.work_date.isoformat()} was approved.",
                )
            )
        logger.info("Authorization %s approved by %s", authorization_id, approver_user_id)
        return authorization

    async def reject(
        self,
        authorization_id: UUID,
        approver_user_id: UUID,
        reason: str,
        *,
        org_id: UUID | None = None,
        outbox: Outbox,
    ) -> OverworkAuthorization:
        """Reject a PENDING authorization.

        Raises:
            AuthorizationNotFoundError: Unknown authorization
            ApprovalPermissionError: Caller is not an approver
            InvalidTransitionError: Authorization is not PENDING
        """
        authorization = await self.get_authorization(authorization_id, org_id)
        await self._ensure_approver(authorization, approver_user_id)
        AuthorizationStateMachine.validate_transition(
            authorization.status,
            AuthorizationStatus.REJECTED.value,
            "authorization was already processed",
        )

        now = utcnow()
        authorization.status = AuthorizationStatus.REJECTED.value
        authorization.approved_by_id = approver_user_id
        authorization.resolved_at = now
        authorization.rejection_reason = reason
        await self.ledger.remove_authorization_movement(authorization.authorization_id)

        candidate = await self._linked_candidate(authorization.authorization_id)
        if candidate is not None:
            candidate.status = CandidateStatus.REJECTED.value
            candidate.resolved_at = now
            await self._set_summary_status(candidate.workday_summary_id, CalcStatus.READY)
        await self.session.flush()

        employee = await self.session.get(Employee, authorization.employee_id)
        if employee is not None and employee.user_id is not None:
            outbox.notify(
                NotificationMessage(
                    user_id=employee.user_id,
                    org_id=authorization.org_id,
                    notification_type="OVERTIME_REJECTED",
                    title="Overtime rejected",
                    message=(
                        f"Your overtime on {authorization.work_date.isoformat()} was rejected. "
                        f"Reason: {reason}"
                    ),
                )
            )
        logger.info("Authorization %s rejected by %s", authorization_id, approver_user_id)
        return authorization

    async def expire_stale(
        self,
        org_id: UUID,
        expiry_days: int,
        today_start: datetime,
        *,
        outbox: Outbox,
    ) -> ExpiryReport:
        """Expire PENDING authorizations requested before today - expiry_days.

        Args:
            org_id: Organization
            expiry_days: Days an authorization may wait (clamped 1..90)
            today_start: UTC instant at which the organization's today began
            outbox: Collects employee and approver notifications
        """
        cutoff = expiry_cutoff(today_start, expiry_days)
        report = ExpiryReport(org_id=org_id, cutoff=cutoff)

        result = await self.session.execute(
            select(OverworkAuthorization)
            .where(
                OverworkAuthorization.org_id == org_id,
                OverworkAuthorization.status == AuthorizationStatus.PENDING.value,
                OverworkAuthorization.requested_at < cutoff,
            )
            .order_by(OverworkAuthorization.requested_at)
        )
        pending = list(result.scalars().all())
        if not pending:
            return report

        now = utcnow()
        approver_cache: dict[UUID, list[UUID]] = {}
        for authorization in pending:
            AuthorizationStateMachine.validate_transition(
                authorization.status, AuthorizationStatus.EXPIRED.value
            )
            authorization.status = AuthorizationStatus.EXPIRED.value
            authorization.resolved_at = now
            report.expired += 1

            candidate = await self._linked_candidate(authorization.authorization_id)
            if candidate is not None:
                candidate.status = CandidateStatus.REJECTED.value
                candidate.resolved_at = now
                await self._set_summary_status(candidate.workday_summary_id, CalcStatus.READY)
                report.candidates_rejected += 1

            await self._queue_expired(authorization, approver_cache, outbox)

        await self.session.flush()
        logger.info("Expired %s pending authorizations for org %s", report.expired, org_id)
        return report

    async def _queue_expired(
        self,
        authorization: OverworkAuthorization,
        approver_cache: dict[UUID, list[UUID]],
        outbox: Outbox,
    ) -> None:
        employee = await self.session.get(Employee, authorization.employee_id)
        day = authorization.work_date.isoformat()
        hours = _hours(authorization.minutes_approved)
        if employee is not None and employee.user_id is not None:
            outbox.notify(
                NotificationMessage(
                    user_id=employee.user_id,
                    org_id=authorization.org_id,
                    notification_type="OVERTIME_EXPIRED",
                    title="Overtime expired",
                    message=f"Your {hours} overtime request for {day} expired without review.",
                )
            )

        approvers = approver_cache.get(authorization.employee_id)
        if approvers is None:
            approvers = await self._approvers(authorization.org_id, authorization.employee_id)
            approver_cache[authorization.employee_id] = approvers
        name = employee.full_name if employee else "An employee"
        for approver_id in approvers:
            outbox.notify(
                NotificationMessage(
                    user_id=approver_id,
                    org_id=authorization.org_id,
                    notification_type="OVERTIME_EXPIRED",
                    title="Overtime expired",
                    message=f"The request of {name} ({hours}, {day}) expired without review.",
                )
            )


def expiry_cutoff(today_start: datetime, expiry_days: int) -> datetime:
    """Instant before which a PENDING authorization is considered stale."""
    days = max(MIN_EXPIRY_DAYS, min(MAX_EXPIRY_DAYS, int(expiry_days)))
    return today_start - timedelta(days=days)

