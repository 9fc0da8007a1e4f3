"""Daily overtime candidate calculation and persistence."""

from __future__ import annotations

from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from overtime_engine.calculators.normalizer import normalize_deviation
from overtime_engine.calculators.types import (
    CONFIRMED_DATA_QUALITY,
    REVIEW_RESOLUTION_STATUSES,
    ApprovalMode,
    CandidateComputation,
    CandidateStatus,
    CandidateType,
    NonWorkingDayPolicy,
    OvertimePolicy,
    ScheduleSource,
    WorkdayInputs,
)
from overtime_engine.models import OvertimeCandidate, WorkdaySummary, utcnow

NO_EXPECTED_MINUTES = "NO_EXPECTED_MINUTES"


def needs_review(resolution_status: str | None, data_quality: str | None) -> bool:
    """True when the clock data behind a day is not trustworthy enough to auto-settle."""
    if resolution_status in REVIEW_RESOLUTION_STATUSES:
        return True
    return (data_quality or CONFIRMED_DATA_QUALITY) != CONFIRMED_DATA_QUALITY


def classify_candidate(
    candidate_minutes: int,
    *,
    is_non_working_day: bool,
    is_part_time: bool,
) -> CandidateType:
    """Classify a normalized candidate."""
    if candidate_minutes < 0:
        return CandidateType.DEFICIT
    if is_non_working_day:
        return CandidateType.NON_WORKDAY
    if candidate_minutes > 0 and is_part_time:
        return CandidateType.COMPLEMENTARY
    return CandidateType.EXTRA


def approval_required(
    candidate_minutes: int,
    candidate_type: CandidateType,
    policy: OvertimePolicy,
    *,
    requires_review: bool = False,
) -> bool:
    """Decide whether a candidate must go through the approval gate."""
    if candidate_minutes <= 0 or candidate_type == CandidateType.DEFICIT:
        return False
    if policy.approval_mode != ApprovalMode.NONE:
        return True
    if (
        candidate_type == CandidateType.NON_WORKDAY
        and policy.non_working_day_policy == NonWorkingDayPolicy.REQUIRE_APPROVAL
    ):
        return True
    return requires_review


def calculate_candidate(inputs: WorkdayInputs, policy: OvertimePolicy) -> CandidateComputation:
    """Compute the candidate for one employee/day.

    The summary's expected minutes win over the schedule's. When neither
    source knows the expected minutes the day is marked skipped.
    """
    schedule = inputs.schedule
    expected = inputs.summary_expected_minutes
    if expected is None and schedule is not None:
        expected = schedule.expected_minutes

    worked = inputs.worked_minutes
    deviation_raw = worked - expected if expected is not None else 0
    requires_review = needs_review(inputs.resolution_status, inputs.data_quality)

    if expected is None:
        return CandidateComputation(
            expected_minutes=None,
            worked_minutes=worked,
            deviation_minutes_raw=deviation_raw,
            candidate_minutes_raw=deviation_raw,
            candidate_minutes_final=0,
            candidate_type=CandidateType.EXTRA,
            requires_approval=False,
            skipped=True,
            flags={"reason": NO_EXPECTED_MINUTES},
        )

    if schedule is not None:
        is_working_day = schedule.is_working_day
    else:
        is_working_day = expected > 0
    is_absence = schedule is not None and schedule.source == ScheduleSource.ABSENCE.value
    is_non_working_day = not is_working_day or is_absence

    weekly_hours = inputs.contract_weekly_hours
    if weekly_hours is None or weekly_hours <= 0:
        weekly_hours = policy.full_time_weekly_hours
    is_part_time = weekly_hours < policy.full_time_weekly_hours

    # Nothing was expected on a non-working day, so all worked time counts.
    candidate_raw = worked if is_non_working_day else deviation_raw
    candidate_final = normalize_deviation(candidate_raw, policy)

    candidate_type = classify_candidate(
        candidate_final,
        is_non_working_day=is_non_working_day,
        is_part_time=is_part_time,
    )
    requires_approval = approval_required(
        candidate_final, candidate_type, policy, requires_review=requires_review
    )

    flags: dict[str, Any] = {
        "isNonWorkingDay": is_non_working_day,
        "isAbsence": is_absence,
        "scheduleSource": schedule.source if schedule else None,
        "exceptionType": schedule.exception_type if schedule else None,
        "candidateType": candidate_type.value,
        "isPartTime": is_part_time,
        "resolutionStatus": inputs.resolution_status or "OK",
        "dataQuality": inputs.data_quality or CONFIRMED_DATA_QUALITY,
        "requiresReview": requires_review,
        "exceedsDailyLimit": (
            policy.daily_limit_minutes > 0 and candidate_final > policy.daily_limit_minutes
        ),
    }

    return CandidateComputation(
        expected_minutes=expected,
        worked_minutes=worked,
        deviation_minutes_raw=deviation_raw,
        candidate_minutes_raw=candidate_raw,
        candidate_minutes_final=candidate_final,
        candidate_type=candidate_type,
        requires_approval=requires_approval,
        flags=flags,
    )


class CandidateCalculator:
    """Loads and idempotently upserts OvertimeCandidate rows.

    Upserts read the row by its natural key (org, employee, date), compute
    the next state and write only the columns that differ, so repeating a
    calculation with unchanged inputs leaves the row untouched.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_summary(
        self, org_id: UUID, employee_id: UUID, work_date: date
    ) -> WorkdaySummary | None:
        """Get the workday summary for one employee/day."""
        result = await self.session.execute(
            select(WorkdaySummary).where(
                WorkdaySummary.org_id == org_id,
                WorkdaySummary.employee_id == employee_id,
                WorkdaySummary.work_date == work_date,
            )
        )
        return result.scalar_one_or_none()

    async def get_candidate(
        self, org_id: UUID, employee_id: UUID, work_date: date
    ) -> OvertimeCandidate | None:
        """Get the live candidate for one employee/day."""
        result = await self.session.execute(
            select(OvertimeCandidate).where(
                OvertimeCandidate.org_id == org_id,
                OvertimeCandidate.employee_id == employee_id,
                OvertimeCandidate.work_date == work_date,
            )
        )
        return result.scalar_one_or_none()

    async def delete_stale(self, org_id: UUID, employee_id: UUID, work_date: date) -> int:
        """Remove the candidate of a day that no longer has a summary."""
        result = await self.session.execute(
            delete(OvertimeCandidate).where(
                OvertimeCandidate.org_id == org_id,
                OvertimeCandidate.employee_id == employee_id,
                OvertimeCandidate.work_date == work_date,
            )
        )
        return result.rowcount or 0

    async def upsert(
        self,
        *,
        org_id: UUID,
        employee_id: UUID,
        work_date: date,
        workday_summary_id: UUID | None,
        computation: CandidateComputation,
        policy: OvertimePolicy,
        status: CandidateStatus,
        overwork_authorization_id: UUID | None = None,
        existing: OvertimeCandidate | None = None,
    ) -> tuple[OvertimeCandidate, bool]:
        """Create or overwrite the candidate for one employee/day.

        Returns:
            The candidate row and whether anything was written
        """
        candidate = existing
        if candidate is None:
            candidate = await self.get_candidate(org_id, employee_id, work_date)

        values: dict[str, Any] = {
            "workday_summary_id": workday_summary_id,
            "expected_minutes": computation.expected_minutes,
            "worked_minutes": computation.worked_minutes,
            "deviation_minutes_raw": computation.deviation_minutes_raw,
            "candidate_minutes_raw": computation.candidate_minutes_raw,
            "candidate_minutes_final": computation.candidate_minutes_final,
            "candidate_type": computation.candidate_type.value,
            "status": status.value,
            "requires_approval": computation.requires_approval,
            "calculation_mode": policy.calculation_mode.value,
            "approval_mode": policy.approval_mode.value,
            "compensation_type": policy.compensation_type.value,
            "flags": computation.flags,
            "policy_snapshot": None if computation.skipped else policy.snapshot(),
            "overwork_authorization_id": overwork_authorization_id,
        }

        if candidate is None:
            now = utcnow()
            candidate = OvertimeCandidate(
                org_id=org_id,
                employee_id=employee_id,
                work_date=work_date,
                last_calculated_at=now,
                resolved_at=now if status in _RESOLVED_STATUSES else None,
                **values,
            )
            self.session.add(candidate)
            await self.session.flush()
            return candidate, True

        changed = {key: value for key, value in values.items() if getattr(candidate, key) != value}
        if not changed:
            return candidate, False

        now = utcnow()
        for key, value in changed.items():
            setattr(candidate, key, value)
        candidate.last_calculated_at = now
        if "status" in changed:
            candidate.resolved_at = now if status in _RESOLVED_STATUSES else None
        await self.session.flush()
        return candidate, True


_RESOLVED_STATUSES = frozenset({CandidateStatus.SETTLED, CandidateStatus.REJECTED})
