"""Employee time-bank requests: recovery of banked time and festive compensation."""

from __future__ import annotations

import logging
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from overtime_engine.calculators.policy_resolver import PolicyResolver
from overtime_engine.calculators.types import TimeBankRequestStatus, TimeBankRequestType
from overtime_engine.models import Employee, TimeBankRequest, utcnow
from overtime_engine.services.approval_gate import ApprovalPermissionError
from overtime_engine.services.collaborators import Collaborators, NotificationMessage, Outbox
from overtime_engine.services.ledger_service import LedgerWriter
from overtime_engine.services.state_machine import TimeBankRequestStateMachine

logger = logging.getLogger(__name__)


class TimeBankRequestNotFoundError(Exception):
    """Raised when a time-bank request does not exist for the tenant."""

    def __init__(self, request_id: UUID):
        self.request_id = request_id
        super().__init__(f"Time-bank request {request_id} not found")


class InsufficientBalanceError(Exception):
    """Raised when a recovery request exceeds the employee's balance."""

    def __init__(self, employee_id: UUID, balance: int, requested: int):
        self.employee_id = employee_id
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"Employee {employee_id} has {balance} minutes banked, cannot recover {requested}"
        )


class DuplicateRequestError(Exception):
    """Raised when an employee already has a pending request for the date."""

    def __init__(self, employee_id: UUID, request_date: date):
        self.employee_id = employee_id
        self.request_date = request_date
        super().__init__(
            f"Employee {employee_id} already has a pending request for {request_date.isoformat()}"
        )


def _describe(request_type: str) -> str:
    return "recovery" if request_type == TimeBankRequestType.RECOVERY.value else "compensation"


class TimeBankRequestService:
    """Submit, review and cancel employee time-bank requests."""

    def __init__(self, session: AsyncSession, collaborators: Collaborators | None = None):
        self.session = session
        self.collaborators = collaborators or Collaborators()
        self.ledger = LedgerWriter(session)

    async def get_request(self, request_id: UUID, org_id: UUID | None = None) -> TimeBankRequest:
        request = await self.session.get(TimeBankRequest, request_id)
        if request is None or (org_id is not None and request.org_id != org_id):
            raise TimeBankRequestNotFoundError(request_id)
        return request

    async def list_requests(
        self,
        org_id: UUID,
        *,
        employee_id: UUID | None = None,
        status: TimeBankRequestStatus | None = None,
    ) -> list[TimeBankRequest]:
        query = select(TimeBankRequest).where(TimeBankRequest.org_id == org_id)
        if employee_id is not None:
            query = query.where(TimeBankRequest.employee_id == employee_id)
        if status is not None:
            query = query.where(TimeBankRequest.status == status.value)
        result = await self.session.execute(
            query.order_by(TimeBankRequest.request_date.desc(), TimeBankRequest.submitted_at.desc())
        )
        return list(result.scalars().all())

    async def submit(
        self,
        *,
        org_id: UUID,
        employee_id: UUID,
        request_type: TimeBankRequestType,
        request_date: date,
        minutes: int,
        reason: str | None = None,
        outbox: Outbox,
    ) -> TimeBankRequest:
        """Create a request; without any approver it is approved on the spot.

        Raises:
            ValueError: Non-positive minutes
            InsufficientBalanceError: Recovery exceeds the current balance
            DuplicateRequestError: A PENDING request exists for the same date
        """
        if minutes <= 0:
            raise ValueError("Requested minutes must be positive")

        if request_type == TimeBankRequestType.RECOVERY:
            balance = await self.ledger.get_balance(org_id, employee_id)
            if balance < minutes:
                raise InsufficientBalanceError(employee_id, balance, minutes)

        result = await self.session.execute(
            select(TimeBankRequest.request_id).where(
                TimeBankRequest.org_id == org_id,
                TimeBankRequest.employee_id == employee_id,
                TimeBankRequest.request_date == request_date,
                TimeBankRequest.status == TimeBankRequestStatus.PENDING.value,
            )
        )
        if result.first() is not None:
            raise DuplicateRequestError(employee_id, request_date)

        approvers = await self.collaborators.approver_resolver.resolve_approvers(
            self.session, org_id, employee_id
        )
        requires_approval = bool(approvers)
        now = utcnow()
        request = TimeBankRequest(
            org_id=org_id,
            employee_id=employee_id,
            request_type=request_type.value,
            request_date=request_date,
            requested_minutes=minutes,
            reason=reason.strip() if reason else None,
            status=(
                TimeBankRequestStatus.PENDING if requires_approval else TimeBankRequestStatus.APPROVED
            ).value,
            reviewer_id=approvers[0] if requires_approval else None,
            submitted_at=now,
            processed_at=None if requires_approval else now,
        )
        self.session.add(request)
        await self.session.flush()

        employee = await self.session.get(Employee, employee_id)
        hours = minutes / 60
        if not requires_approval:
            policy = await PolicyResolver(self.session).resolve(org_id)
            await self.ledger.upsert_request_movement(
                request, policy, employee.user_id if employee else None
            )
            if employee is not None and employee.user_id is not None:
                outbox.notify(
                    NotificationMessage(
                        user_id=employee.user_id,
                        org_id=org_id,
                        notification_type="TIME_BANK_REQUEST_APPROVED",
                        title="Time-bank request approved",
                        message=(
                            f"Your {hours:g}h {_describe(request.request_type)} request "
                            "was approved automatically."
                        ),
                    )
                )
            logger.info("Time-bank request %s auto-approved (no approvers)", request.request_id)
            return request

        name = employee.full_name if employee else "An employee"
        for approver_id in approvers:
            outbox.notify(
                NotificationMessage(
                    user_id=approver_id,
                    org_id=org_id,
                    notification_type="TIME_BANK_REQUEST_SUBMITTED",
                    title="New time-bank request",
                    message=f"{name} requested {hours:g}h ({_describe(request.request_type)}).",
                )
            )
        return request

    async def review(
        self,
        request_id: UUID,
        reviewer_user_id: UUID,
        *,
        approve: bool,
        comments: str | None = None,
        org_id: UUID | None = None,
        outbox: Outbox,
    ) -> TimeBankRequest:
        """Approve or reject a PENDING request.

        Raises:
            TimeBankRequestNotFoundError: Unknown request
            ApprovalPermissionError: Reviewer is not an approver of the employee
            InvalidTransitionError: Request is not PENDING
        """
        request = await self.get_request(request_id, org_id)
        approvers = await self.collaborators.approver_resolver.resolve_approvers(
            self.session, request.org_id, request.employee_id
        )
        if reviewer_user_id not in approvers:
            raise ApprovalPermissionError(reviewer_user_id, request.employee_id)

        target = TimeBankRequestStatus.APPROVED if approve else TimeBankRequestStatus.REJECTED
        TimeBankRequestStateMachine.validate_transition(
            request.status, target.value, "request was already processed"
        )

        request.status = target.value
        request.reviewer_id = reviewer_user_id
        request.processed_by_id = reviewer_user_id
        request.processed_at = utcnow()
        request.metadata_json = {"reviewerComments": comments} if comments else None
        await self.session.flush()

        if approve:
            policy = await PolicyResolver(self.session).resolve(request.org_id)
            await self.ledger.upsert_request_movement(request, policy, reviewer_user_id)

        employee = await self.session.get(Employee, request.employee_id)
        if employee is not None and employee.user_id is not None:
            hours = request.requested_minutes / 60
            if approve:
                outbox.notify(
                    NotificationMessage(
                        user_id=employee.user_id,
                        org_id=request.org_id,
                        notification_type="TIME_BANK_REQUEST_APPROVED",
                        title="Time-bank request approved",
                        message=f"Your {hours:g}h request was approved.",
                    )
                )
            else:
                suffix = f" Reason: {comments}" if comments else ""
                outbox.notify(
                    NotificationMessage(
                        user_id=employee.user_id,
                        org_id=request.org_id,
                        notification_type="TIME_BANK_REQUEST_REJECTED",
                        title="Time-bank request rejected",
                        message=f"Your {hours:g}h request was rejected.{suffix}",
                    )
                )
        logger.info("Time-bank request %s %s by %s", request_id, target.value, reviewer_user_id)
        return request

    async def cancel(
        self, request_id: UUID, employee_id: UUID, org_id: UUID | None = None
    ) -> TimeBankRequest:
        """Cancel one's own PENDING request."""
        request = await self.get_request(request_id, org_id)
        if request.employee_id != employee_id:
            raise TimeBankRequestNotFoundError(request_id)
        TimeBankRequestStateMachine.validate_transition(
            request.status,
            TimeBankRequestStatus.CANCELLED.value,
            "only pending requests can be cancelled",
        )
        request.status = TimeBankRequestStatus.CANCELLED.value
        request.processed_at = utcnow()
        await self.session.flush()
        return request
