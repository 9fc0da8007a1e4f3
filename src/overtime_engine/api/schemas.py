"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from overtime_engine.calculators.types import (
    ApprovalMode,
    CalculationMode,
    CompensationType,
    NonWorkingDayPolicy,
    TimeBankRequestType,
)


# ============================================================================
# Overwork authorization schemas
# ============================================================================


class AuthorizationResponse(BaseModel):
    """Schema for an overwork authorization."""

    model_config = ConfigDict(from_attributes=True)

    authorization_id: UUID
    org_id: UUID
    employee_id: UUID
    work_date: date
    minutes_approved: int
    status: str
    compensation_type: str
    justification: str | None = None
    approval_comments: str | None = None
    rejection_reason: str | None = None
    approved_by_id: UUID | None = None
    requested_at: datetime
    resolved_at: datetime | None = None


class AuthorizationListResponse(BaseModel):
    """Schema for listing authorizations."""

    items: list[AuthorizationResponse]
    total: int


class ApproveRequest(BaseModel):
    """Schema for approving an authorization."""

    compensation_type: CompensationType | None = None
    comments: str | None = Field(default=None, max_length=2000)


class RejectRequest(BaseModel):
    """Schema for rejecting an authorization."""

    reason: str = Field(min_length=1, max_length=2000)


# ============================================================================
# Workday / reconciliation schemas
# ============================================================================


class WorkdayOutcomeResponse(BaseModel):
    """Schema for the result of processing one employee/day."""

    model_config = ConfigDict(from_attributes=True)

    employee_id: UUID
    work_date: date
    status: str | None
    candidate_id: UUID | None = None
    candidate_minutes: int = 0
    authorization_id: UUID | None = None
    movement_written: bool = False
    left_dirty: bool = False


class EnqueueResponse(BaseModel):
    """Schema for an enqueued job."""

    job_id: UUID
    queue: str
    singleton_key: str
    is_new: bool


class EmployeeWeekResponse(BaseModel):
    """Schema for one employee's weekly reconciliation."""

    model_config = ConfigDict(from_attributes=True)

    employee_id: UUID
    total_worked_minutes: int
    total_expected_minutes: int
    weekly_normalized_minutes: int
    daily_sum_minutes: int
    correction_minutes: int
    applied_minutes: int
    clamped: bool
    movement_id: UUID | None = None
    skipped_reason: str | None = None


class ReconciliationResponse(BaseModel):
    """Schema for a weekly reconciliation report."""

    model_config = ConfigDict(from_attributes=True)

    org_id: UUID
    week_start: date
    week_end: date
    skipped_reason: str | None = None
    employees: list[EmployeeWeekResponse] = []
    corrections_written: int = 0
    corrections_removed: int = 0


class ReconcileWeekRequest(BaseModel):
    """Schema for requesting a weekly reconciliation."""

    week_start: date


class ExpireRequest(BaseModel):
    """Schema for expiring stale authorizations."""

    expiry_days: int | None = Field(default=None, ge=1, le=90)


class ExpiryResponse(BaseModel):
    """Schema for an expiry run."""

    model_config = ConfigDict(from_attributes=True)

    org_id: UUID
    cutoff: datetime
    expired: int
    candidates_rejected: int


# ============================================================================
# Time bank schemas
# ============================================================================


class MovementResponse(BaseModel):
    """Schema for a time-bank movement."""

    model_config = ConfigDict(from_attributes=True)

    movement_id: UUID
    movement_date: date
    minutes: int
    movement_type: str
    origin: str
    status: str
    description: str | None = None
    clamped_by_limit: bool = False


class TimeBankSummaryResponse(BaseModel):
    """Schema for an employee's time-bank overview."""

    model_config = ConfigDict(from_attributes=True)

    employee_id: UUID
    total_minutes: int
    total_hours: float
    todays_minutes: int
    pending_requests: int
    breakdown: dict[str, int]
    last_movements: list[MovementResponse]
    max_positive_minutes: int
    max_negative_minutes: int


class TimeBankRequestCreate(BaseModel):
    """Schema for submitting a time-bank request."""

    employee_id: UUID
    request_type: TimeBankRequestType
    request_date: date
    minutes: int = Field(gt=0)
    reason: str | None = Field(default=None, max_length=2000)


class TimeBankRequestReview(BaseModel):
    """Schema for reviewing a time-bank request."""

    approve: bool
    comments: str | None = Field(default=None, max_length=2000)


class TimeBankRequestCancel(BaseModel):
    """Schema for cancelling a time-bank request."""

    employee_id: UUID


class TimeBankRequestResponse(BaseModel):
    """Schema for a time-bank request."""

    model_config = ConfigDict(from_attributes=True)

    request_id: UUID
    org_id: UUID
    employee_id: UUID
    request_type: str
    request_date: date
    requested_minutes: int
    reason: str | None = None
    status: str
    reviewer_id: UUID | None = None
    processed_by_id: UUID | None = None
    submitted_at: datetime
    processed_at: datetime | None = None


class TimeBankRequestListResponse(BaseModel):
    """Schema for listing time-bank requests."""

    items: list[TimeBankRequestResponse]
    total: int


class EmployeeBalanceResponse(BaseModel):
    """Schema for one employee line of the admin overview."""

    model_config = ConfigDict(from_attributes=True)

    employee_id: UUID
    first_name: str
    last_name: str
    total_minutes: int
    pending_requests: int


class TimeBankAdminStatsResponse(BaseModel):
    """Schema for organization-wide time-bank statistics."""

    model_config = ConfigDict(from_attributes=True)

    total_employees_with_balance: int
    total_positive_minutes: int
    total_negative_minutes: int
    pending_requests_count: int
    employees: list[EmployeeBalanceResponse]


# ============================================================================
# Settings schemas
# ============================================================================


class OvertimeSettingsSchema(BaseModel):
    """Schema for reading and replacing an organization's overtime settings.

    Ranges are checked by the settings service so that every violation
    reports the same INVALID_SETTINGS error.
    """

    model_config = ConfigDict(from_attributes=True)

    calculation_mode: CalculationMode
    approval_mode: ApprovalMode
    compensation_type: CompensationType
    tolerance_minutes: int
    daily_limit_minutes: int
    weekly_limit_minutes: int
    monthly_limit_minutes: int
    annual_limit_minutes: int
    full_time_weekly_hours: float
    non_working_day_policy: NonWorkingDayPolicy
    weekly_reconciliation_enabled: bool


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None
