"""Weekly reconciliation for organizations in WEEKLY calculation mode.

Per employee, the whole week is normalized at once and compared with the
sum of the settled daily candidates; the difference becomes one CORRECTION
(or DEFICIT) movement per employee and week. Candidates are only read.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from overtime_engine.calculators.normalizer import normalize_deviation
from overtime_engine.calculators.policy_resolver import PolicyResolver
from overtime_engine.calculators.types import (
    CalculationMode,
    CandidateStatus,
    OvertimePolicy,
    to_minutes,
    to_optional_minutes,
)
from overtime_engine.models import OvertimeCandidate, WorkdaySummary
from overtime_engine.services.ledger_service import LedgerWriter

logger = logging.getLogger(__name__)

# Candidate statuses whose minutes count as already settled by the daily path
COUNTED_STATUSES = (CandidateStatus.SETTLED.value, CandidateStatus.READY.value)


@dataclass
class EmployeeWeekResult:
    """Reconciliation outcome for one employee."""

    employee_id: UUID
    total_worked_minutes: int
    total_expected_minutes: int
    weekly_normalized_minutes: int = 0
    daily_sum_minutes: int = 0
    correction_minutes: int = 0
    applied_minutes: int = 0
    clamped: bool = False
    movement_id: UUID | None = None
    skipped_reason: str | None = None


@dataclass
class ReconciliationReport:
    """Outcome of reconciling one organization's week."""

    org_id: UUID
    week_start: date
    week_end: date
    skipped_reason: str | None = None
    corrections_removed: int = 0
    employees: list[EmployeeWeekResult] = field(default_factory=list)

    @property
    def corrections_written(self) -> int:
        return sum(1 for e in self.employees if e.movement_id is not None)


class WeeklyReconciler:
    """Reconciles weekly totals against the daily ledger."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.ledger = LedgerWriter(session)

    async def reconcile_week(self, org_id: UUID, week_start: date) -> ReconciliationReport:
        """Reconcile the week week_start .. week_start + 6.

        Re-running for the same week replaces each employee's correction
        instead of stacking a new one.
        """
        week_end = week_start + timedelta(days=6)
        report = ReconciliationReport(org_id=org_id, week_start=week_start, week_end=week_end)

        policy = await PolicyResolver(self.session).resolve(org_id)
        if policy.calculation_mode != CalculationMode.WEEKLY:
            return await self._skip(report, "DAILY_MODE")
        if not policy.weekly_reconciliation_enabled:
            return await self._skip(report, "DISABLED")

        result = await self.session.execute(
            select(
                WorkdaySummary.employee_id,
                WorkdaySummary.worked_minutes,
                WorkdaySummary.expected_minutes,
            )
            .where(
                WorkdaySummary.org_id == org_id,
                WorkdaySummary.work_date >= week_start,
                WorkdaySummary.work_date <= week_end,
            )
            .order_by(WorkdaySummary.employee_id, WorkdaySummary.work_date)
        )

        worked: dict[UUID, int] = defaultdict(int)
        expected: dict[UUID, int] = defaultdict(int)
        for employee_id, worked_minutes, expected_minutes in result.all():
            worked[employee_id] += to_minutes(worked_minutes)
            known = to_optional_minutes(expected_minutes)
            if known is not None:
                expected[employee_id] += known
            else:
                expected.setdefault(employee_id, 0)

        if not worked:
            return await self._skip(report, "NO_SUMMARIES")

        for employee_id in worked:
            entry = EmployeeWeekResult(
                employee_id=employee_id,
                total_worked_minutes=worked[employee_id],
                total_expected_minutes=expected[employee_id],
            )
            report.employees.append(entry)
            await self._reconcile_employee(org_id, week_start, week_end, policy, entry)
        # Employees without summaries this week lose any earlier correction
        report.corrections_removed = await self.ledger.remove_weekly_corrections(
            org_id, week_start, keep_employee_ids=list(worked)
        )

        logger.info(
            "Weekly reconciliation for org %s week %s: %s employees, %s corrections",
            org_id,
            week_start,
            len(report.employees),
            report.corrections_written,
        )
        return report

    async def _skip(self, report: ReconciliationReport, reason: str) -> ReconciliationReport:
        """Skip the week; corrections from an earlier weekly run no longer apply."""
        report.skipped_reason = reason
        report.corrections_removed = await self.ledger.remove_weekly_corrections(
            report.org_id, report.week_start
        )
        if report.corrections_removed:
            logger.info(
                "Removed %s weekly corrections for org %s week %s (%s)",
                report.corrections_removed,
                report.org_id,
                report.week_start,
                reason,
            )
        return report

    async def _daily_sum(
        self, org_id: UUID, employee_id: UUID, week_start: date, week_end: date
    ) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(OvertimeCandidate.candidate_minutes_final), 0)).where(
                OvertimeCandidate.org_id == org_id,
                OvertimeCandidate.employee_id == employee_id,
                OvertimeCandidate.work_date >= week_start,
                OvertimeCandidate.work_date <= week_end,
                OvertimeCandidate.status.in_(COUNTED_STATUSES),
            )
        )
        return int(result.scalar_one())

    async def _reconcile_employee(
        self,
        org_id: UUID,
        week_start: date,
        week_end: date,
        policy: OvertimePolicy,
        entry: EmployeeWeekResult,
    ) -> None:
        correction = 0
        entry.daily_sum_minutes = await self._daily_sum(
            org_id, entry.employee_id, week_start, week_end
        )
        if entry.total_expected_minutes == 0:
            entry.skipped_reason = "NO_EXPECTED_MINUTES"
        else:
            deviation = entry.total_worked_minutes - entry.total_expected_minutes
            entry.weekly_normalized_minutes = normalize_deviation(deviation, policy)
            # A week inside tolerance still cancels what the days settled.
            correction = entry.weekly_normalized_minutes - entry.daily_sum_minutes
            if correction == 0:
                entry.skipped_reason = (
                    "WITHIN_TOLERANCE"
                    if entry.weekly_normalized_minutes == 0
                    else "NO_CORRECTION"
                )
        entry.correction_minutes = correction

        # A skipped week still replaces (removes) a correction from an earlier run.
        movement = await self.ledger.upsert_weekly_correction(
            org_id=org_id,
            employee_id=entry.employee_id,
            week_start=week_start,
            week_end=week_end,
            correction_minutes=correction,
            policy=policy,
            details={
                "weeklyNormalized": entry.weekly_normalized_minutes,
                "dailySum": entry.daily_sum_minutes,
            },
        )
        if movement is not None:
            entry.movement_id = movement.movement_id
            entry.applied_minutes = movement.minutes
            entry.clamped = movement.minutes != correction
