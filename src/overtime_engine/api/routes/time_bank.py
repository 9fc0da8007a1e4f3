"""Time-bank API endpoints: balances and employee requests."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, Query, status

from overtime_engine.api.dependencies import CollaboratorsDep, DbSession, TenantId, UserId
from overtime_engine.api.schemas import (
    ErrorResponse,
    MovementResponse,
    TimeBankAdminStatsResponse,
    TimeBankRequestCancel,
    TimeBankRequestCreate,
    TimeBankRequestListResponse,
    TimeBankRequestResponse,
    TimeBankRequestReview,
    TimeBankSummaryResponse,
)
from overtime_engine.calculators.policy_resolver import PolicyResolver
from overtime_engine.calculators.types import TimeBankRequestStatus
from overtime_engine.config import get_settings
from overtime_engine.models import Employee, Organization, utcnow
from overtime_engine.services.collaborators import Outbox
from overtime_engine.services.ledger_service import LedgerWriter
from overtime_engine.services.time_bank_requests import TimeBankRequestService
from overtime_engine.timeutils import local_now, resolve_timezone

router = APIRouter(prefix="/time-bank", tags=["time-bank"])


@router.get(
    "/admin/stats",
    response_model=TimeBankAdminStatsResponse,
)
async def get_admin_stats(
    db: DbSession,
    tenant_id: TenantId,
) -> TimeBankAdminStatsResponse:
    """Balances of every employee with movements and the pending request count."""
    stats = await LedgerWriter(db).get_admin_stats(tenant_id)
    return TimeBankAdminStatsResponse.model_validate(stats)


@router.get(
    "/employees/{employee_id}/summary",
    response_model=TimeBankSummaryResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_time_bank_summary(
    db: DbSession,
    tenant_id: TenantId,
    employee_id: Annotated[UUID, Path()],
) -> TimeBankSummaryResponse:
    """Balance, breakdown and recent movements of one employee."""
    employee = await db.get(Employee, employee_id)
    if not employee or employee.org_id != tenant_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Employee not found",
        )

    organization = await db.get(Organization, tenant_id)
    tz = resolve_timezone(
        organization.timezone if organization else None, get_settings().default_timezone
    )
    policy = await PolicyResolver(db).resolve(tenant_id)
    summary = await LedgerWriter(db).get_summary(
        tenant_id, employee_id, policy, local_now(utcnow(), tz).date()
    )
    return TimeBankSummaryResponse(
        employee_id=employee_id,
        total_minutes=summary.total_minutes,
        total_hours=summary.total_hours,
        todays_minutes=summary.todays_minutes,
        pending_requests=summary.pending_requests,
        breakdown=summary.breakdown,
        last_movements=[MovementResponse.model_validate(m) for m in summary.last_movements],
        max_positive_minutes=summary.max_positive_minutes,
        max_negative_minutes=summary.max_negative_minutes,
    )


@router.post(
    "/requests",
    response_model=TimeBankRequestResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def submit_request(
    db: DbSession,
    tenant_id: TenantId,
    collaborators: CollaboratorsDep,
    payload: TimeBankRequestCreate,
) -> TimeBankRequestResponse:
    """Submit a recovery or festive compensation request."""
    outbox = Outbox()
    request = await TimeBankRequestService(db, collaborators).submit(
        org_id=tenant_id,
        employee_id=payload.employee_id,
        request_type=payload.request_type,
        request_date=payload.request_date,
        minutes=payload.minutes,
        reason=payload.reason,
        outbox=outbox,
    )
    await db.commit()
    await outbox.dispatch(db, collaborators)
    return TimeBankRequestResponse.model_validate(request)


@router.get(
    "/requests",
    response_model=TimeBankRequestListResponse,
)
async def list_requests(
    db: DbSession,
    tenant_id: TenantId,
    employee_id: UUID | None = None,
    status_filter: Annotated[TimeBankRequestStatus | None, Query(alias="status")] = None,
) -> TimeBankRequestListResponse:
    """List requests of the tenant, newest first."""
    items = await TimeBankRequestService(db).list_requests(
        tenant_id, employee_id=employee_id, status=status_filter
    )
    return TimeBankRequestListResponse(
        items=[TimeBankRequestResponse.model_validate(r) for r in items],
        total=len(items),
    )


@router.post(
    "/requests/{request_id}/review",
    response_model=TimeBankRequestResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def review_request(
    db: DbSession,
    tenant_id: TenantId,
    user_id: UserId,
    collaborators: CollaboratorsDep,
    request_id: Annotated[UUID, Path()],
    payload: TimeBankRequestReview,
) -> TimeBankRequestResponse:
    """Approve or reject a pending request."""
    outbox = Outbox()
    request = await TimeBankRequestService(db, collaborators).review(
        request_id,
        user_id,
        approve=payload.approve,
        comments=payload.comments,
        org_id=tenant_id,
        outbox=outbox,
    )
    await db.commit()
    await outbox.dispatch(db, collaborators)
    return TimeBankRequestResponse.model_validate(request)


@router.post(
    "/requests/{request_id}/cancel",
    response_model=TimeBankRequestResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def cancel_request(
    db: DbSession,
    tenant_id: TenantId,
    request_id: Annotated[UUID, Path()],
    payload: TimeBankRequestCancel,
) -> TimeBankRequestResponse:
    """Cancel one's own pending request."""
    request = await TimeBankRequestService(db).cancel(request_id, payload.employee_id, tenant_id)
    await db.commit()
    return TimeBankRequestResponse.model_validate(request)
