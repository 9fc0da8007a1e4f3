"""Overtime API endpoints: authorizations, recalculation and periodic runs."""

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, Query, status
from pydantic import ValidationError

from overtime_engine.api.dependencies import CollaboratorsDep, DbSession, TenantId, UserId
from overtime_engine.api.schemas import (
    ApproveRequest,
    AuthorizationListResponse,
    AuthorizationResponse,
    EnqueueResponse,
    ErrorResponse,
    ExpireRequest,
    ExpiryResponse,
    OvertimeSettingsSchema,
    ReconcileWeekRequest,
    ReconciliationResponse,
    RejectRequest,
    WorkdayOutcomeResponse,
)
from overtime_engine.calculators.types import AuthorizationStatus
from overtime_engine.config import get_settings
from overtime_engine.jobs.payloads import AuthorizationExpireJob, WeeklyReconciliationJob
from overtime_engine.jobs.worker import run_payload
from overtime_engine.services.approval_gate import ApprovalGate
from overtime_engine.services.collaborators import Outbox
from overtime_engine.services.overtime_settings import OvertimeSettings, OvertimeSettingsService
from overtime_engine.services.workday_processor import (
    WorkdayOutcome,
    mark_workday_dirty,
    process_workday_overtime,
)

router = APIRouter(prefix="/overtime", tags=["overtime"])


def _outcome_response(outcome: WorkdayOutcome) -> WorkdayOutcomeResponse:
    return WorkdayOutcomeResponse(
        employee_id=outcome.employee_id,
        work_date=outcome.work_date,
        status=outcome.status.value if outcome.status is not None else None,
        candidate_id=outcome.candidate_id,
        candidate_minutes=outcome.candidate_minutes,
        authorization_id=outcome.authorization_id,
        movement_written=outcome.movement_written,
        left_dirty=outcome.left_dirty,
    )


# ============================================================================
# Authorizations
# ============================================================================


@router.get(
    "/authorizations",
    response_model=AuthorizationListResponse,
    responses={400: {"model": ErrorResponse}},
)
async def list_authorizations(
    db: DbSession,
    tenant_id: TenantId,
    status_filter: Annotated[AuthorizationStatus | None, Query(alias="status")] = None,
    employee_id: UUID | None = None,
) -> AuthorizationListResponse:
    """List authorizations of the tenant, oldest first."""
    items = await ApprovalGate(db).list_authorizations(
        tenant_id, status=status_filter, employee_id=employee_id
    )
    return AuthorizationListResponse(
        items=[AuthorizationResponse.model_validate(a) for a in items],
        total=len(items),
    )


@router.get(
    "/authorizations/{authorization_id}",
    response_model=AuthorizationResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_authorization(
    db: DbSession,
    tenant_id: TenantId,
    authorization_id: Annotated[UUID, Path()],
) -> AuthorizationResponse:
    """Get one authorization."""
    authorization = await ApprovalGate(db).get_authorization(authorization_id, tenant_id)
    return AuthorizationResponse.model_validate(authorization)


@router.post(
    "/authorizations/{authorization_id}/approve",
    response_model=AuthorizationResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def approve_authorization(
    db: DbSession,
    tenant_id: TenantId,
    user_id: UserId,
    collaborators: CollaboratorsDep,
    authorization_id: Annotated[UUID, Path()],
    payload: ApproveRequest,
) -> AuthorizationResponse:
    """Approve a pending authorization and settle its minutes."""
    outbox = Outbox()
    authorization = await ApprovalGate(db, collaborators).approve(
        authorization_id,
        user_id,
        org_id=tenant_id,
        compensation_type=payload.compensation_type,
        comments=payload.comments,
        outbox=outbox,
    )
    await db.commit()
    await outbox.dispatch(db, collaborators)
    return AuthorizationResponse.model_validate(authorization)


@router.post(
    "/authorizations/{authorization_id}/reject",
    response_model=AuthorizationResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def reject_authorization(
    db: DbSession,
    tenant_id: TenantId,
    user_id: UserId,
    collaborators: CollaboratorsDep,
    authorization_id: Annotated[UUID, Path()],
    payload: RejectRequest,
) -> AuthorizationResponse:
    """Reject a pending authorization."""
    outbox = Outbox()
    authorization = await ApprovalGate(db, collaborators).reject(
        authorization_id, user_id, payload.reason, org_id=tenant_id, outbox=outbox
    )
    await db.commit()
    await outbox.dispatch(db, collaborators)
    return AuthorizationResponse.model_validate(authorization)


@router.post(
    "/authorizations/expire",
    response_model=ExpiryResponse,
)
async def expire_authorizations(
    db: DbSession,
    tenant_id: TenantId,
    collaborators: CollaboratorsDep,
    payload: ExpireRequest,
) -> ExpiryResponse:
    """Expire authorizations left pending past the expiry window."""
    job = AuthorizationExpireJob(
        org_id=tenant_id,
        expiry_days=payload.expiry_days or get_settings().authorization_expiry_days,
    )
    report = await run_payload(db, job, collaborators)
    return ExpiryResponse.model_validate(report)


# ============================================================================
# Workdays
# ============================================================================


@router.post(
    "/workdays/{employee_id}/{work_date}/recalculate",
    response_model=WorkdayOutcomeResponse,
)
async def recalculate_workday(
    db: DbSession,
    tenant_id: TenantId,
    collaborators: CollaboratorsDep,
    employee_id: Annotated[UUID, Path()],
    work_date: Annotated[date, Path()],
) -> WorkdayOutcomeResponse:
    """Recalculate one employee/day synchronously."""
    outcome = await process_workday_overtime(db, tenant_id, employee_id, work_date, collaborators)
    return _outcome_response(outcome)


@router.post(
    "/workdays/{employee_id}/{work_date}/dirty",
    response_model=EnqueueResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def mark_dirty(
    db: DbSession,
    tenant_id: TenantId,
    employee_id: Annotated[UUID, Path()],
    work_date: Annotated[date, Path()],
) -> EnqueueResponse:
    """Mark a workday as changed and queue its recalculation."""
    result = await mark_workday_dirty(db, tenant_id, employee_id, work_date)
    await db.commit()
    return EnqueueResponse(
        job_id=result.job.job_id,
        queue=result.job.queue,
        singleton_key=result.job.singleton_key,
        is_new=result.is_new,
    )


# ============================================================================
# Weekly reconciliation
# ============================================================================


@router.post(
    "/reconciliations",
    response_model=ReconciliationResponse,
    responses={400: {"model": ErrorResponse}},
)
async def reconcile_week(
    db: DbSession,
    tenant_id: TenantId,
    collaborators: CollaboratorsDep,
    payload: ReconcileWeekRequest,
) -> ReconciliationResponse:
    """Reconcile one ISO week (week_start must be a Monday)."""
    try:
        job = WeeklyReconciliationJob(org_id=tenant_id, week_start=payload.week_start)
    except ValidationError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="week_start must be a Monday",
        )
    report = await run_payload(db, job, collaborators)
    return ReconciliationResponse.model_validate(report)


# ============================================================================
# Settings
# ============================================================================


@router.get(
    "/settings",
    response_model=OvertimeSettingsSchema,
)
async def get_overtime_settings(
    db: DbSession,
    tenant_id: TenantId,
) -> OvertimeSettingsSchema:
    """Current overtime settings, defaults filled in."""
    settings = await OvertimeSettingsService(db).get_settings(tenant_id)
    return OvertimeSettingsSchema.model_validate(settings)


@router.put(
    "/settings",
    response_model=OvertimeSettingsSchema,
    responses={400: {"model": ErrorResponse}},
)
async def update_overtime_settings(
    db: DbSession,
    tenant_id: TenantId,
    user_id: UserId,
    payload: OvertimeSettingsSchema,
) -> OvertimeSettingsSchema:
    """Replace the overtime settings; the change is audited."""
    settings = await OvertimeSettingsService(db).update_settings(
        tenant_id, OvertimeSettings(**payload.model_dump()), actor_user_id=user_id
    )
    await db.commit()
    return OvertimeSettingsSchema.model_validate(settings)
