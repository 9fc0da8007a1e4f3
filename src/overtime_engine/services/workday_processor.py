"""Per-workday overtime processing.

process_workday_overtime is the handler of the workday queue. It is safe to
run any number of times for the same employee/day: every write is an
upsert on a natural key and unchanged inputs produce no writes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from overtime_engine.calculators.candidate import CandidateCalculator, calculate_candidate
from overtime_engine.calculators.policy_resolver import PolicyResolver
from overtime_engine.calculators.types import (
    CalcStatus,
    CandidateStatus,
    EffectiveSchedule,
    WorkdayInputs,
    to_minutes,
    to_optional_minutes,
)
from overtime_engine.jobs.payloads import WorkdayOvertimeJob
from overtime_engine.jobs.queue import EnqueueResult, JobQueue
from overtime_engine.models import Employee, WorkdaySummary, utcnow
from overtime_engine.services.approval_gate import ApprovalGate, GateSubject
from overtime_engine.services.collaborators import Collaborators, Outbox
from overtime_engine.services.state_machine import calc_status_for, resolve_candidate_status

logger = logging.getLogger(__name__)


@dataclass
class WorkdayOutcome:
    """What processing one employee/day produced."""

    org_id: UUID
    employee_id: UUID
    work_date: date
    status: CandidateStatus | None
    candidate_id: UUID | None = None
    candidate_minutes: int = 0
    authorization_id: UUID | None = None
    movement_written: bool = False
    candidate_changed: bool = False
    left_dirty: bool = False


async def _load_schedule(
    session: AsyncSession,
    collaborators: Collaborators,
    org_id: UUID,
    employee_id: UUID,
    work_date: date,
) -> EffectiveSchedule | None:
    try:
        return await collaborators.schedule_provider.get_effective_schedule(
            session, org_id, employee_id, work_date
        )
    except Exception:
        # A broken schedule source degrades to summary-only data.
        logger.warning(
            "Schedule lookup failed for employee %s on %s; continuing without schedule",
            employee_id,
            work_date,
            exc_info=True,
        )
        return None


async def process_workday_overtime(
    session: AsyncSession,
    org_id: UUID,
    employee_id: UUID,
    work_date: date,
    collaborators: Collaborators | None = None,
) -> WorkdayOutcome:
    """Recalculate one employee/day and settle it.

    Commits twice: once to publish CALCULATING (so a crash leaves the
    summary visible to the sweep) and once for the result. Notifications
    are delivered after the second commit.
    """
    collaborators = collaborators or Collaborators()
    calculator = CandidateCalculator(session)
    outcome = WorkdayOutcome(
        org_id=org_id, employee_id=employee_id, work_date=work_date, status=None
    )

    summary = await calculator.get_summary(org_id, employee_id, work_date)
    if summary is None:
        removed = await calculator.delete_stale(org_id, employee_id, work_date)
        await session.commit()
        if removed:
            logger.info("Removed stale candidate of employee %s on %s", employee_id, work_date)
        return outcome

    summary.overtime_calc_status = CalcStatus.CALCULATING.value
    summary.overtime_calc_updated_at = utcnow()
    await session.commit()

    policy = await PolicyResolver(session).resolve(org_id)
    schedule = await _load_schedule(session, collaborators, org_id, employee_id, work_date)
    employee = await session.get(Employee, employee_id)
    contract_hours = (
        float(employee.weekly_hours) if employee is not None and employee.weekly_hours else None
    )

    computation = calculate_candidate(
        WorkdayInputs(
            worked_minutes=to_minutes(summary.worked_minutes),
            summary_expected_minutes=to_optional_minutes(summary.expected_minutes),
            schedule=schedule,
            contract_weekly_hours=contract_hours,
            resolution_status=summary.resolution_status,
            data_quality=summary.data_quality,
        ),
        policy,
    )
    if computation.skipped:
        logger.info(
            "Skipping employee %s on %s: %s",
            employee_id,
            work_date,
            computation.flags.get("reason"),
        )

    existing = await calculator.get_candidate(org_id, employee_id, work_date)
    outbox = Outbox()
    gate = ApprovalGate(session, collaborators)
    gate_result = await gate.sync_for_candidate(
        GateSubject(
            org_id=org_id,
            employee_id=employee_id,
            work_date=work_date,
            workday_id=summary.workday_summary_id,
            candidate_type=computation.candidate_type.value,
            authorization_id=existing.overwork_authorization_id if existing else None,
        ),
        employee=employee,
        final_minutes=computation.candidate_minutes_final,
        requires_approval=computation.requires_approval,
        policy=policy,
        outbox=outbox,
    )

    status = resolve_candidate_status(
        final_minutes=computation.candidate_minutes_final,
        requires_approval=computation.requires_approval,
        authorization_status=gate_result.authorization_status,
        movement_written=gate_result.movement_written,
    )
    candidate, changed = await calculator.upsert(
        org_id=org_id,
        employee_id=employee_id,
        work_date=work_date,
        workday_summary_id=summary.workday_summary_id,
        computation=computation,
        policy=policy,
        status=status,
        overwork_authorization_id=gate_result.authorization_id,
        existing=existing,
    )

    outcome.status = status
    outcome.candidate_id = candidate.candidate_id
    outcome.candidate_minutes = computation.candidate_minutes_final
    outcome.authorization_id = gate_result.authorization_id
    outcome.movement_written = gate_result.movement_written
    outcome.candidate_changed = changed

    await _publish_calc_status(session, summary, status, outcome)
    await session.commit()

    if outbox:
        await outbox.dispatch(session, collaborators)
    return outcome


async def _publish_calc_status(
    session: AsyncSession,
    summary: WorkdaySummary,
    status: CandidateStatus,
    outcome: WorkdayOutcome,
) -> None:
    # The aggregator may have re-marked the day DIRTY while we were computing.
    await session.refresh(summary, ["overtime_calc_status"])
    if summary.overtime_calc_status == CalcStatus.DIRTY.value:
        outcome.left_dirty = True
        logger.info(
            "Summary %s was marked dirty during processing; leaving it for the sweep",
            summary.workday_summary_id,
        )
        return
    summary.overtime_calc_status = calc_status_for(status).value
    summary.overtime_calc_updated_at = utcnow()


async def mark_workday_dirty(
    session: AsyncSession,
    org_id: UUID,
    employee_id: UUID,
    work_date: date,
    *,
    queue: JobQueue | None = None,
) -> EnqueueResult:
    """Flag a summary as changed and queue its recalculation.

    Entry point for the summary aggregator.
    """
    summary = await CandidateCalculator(session).get_summary(org_id, employee_id, work_date)
    if summary is not None:
        summary.overtime_calc_status = CalcStatus.DIRTY.value
        summary.overtime_calc_updated_at = utcnow()
        await session.flush()

    queue = queue or JobQueue(session)
    return await queue.enqueue(
        WorkdayOvertimeJob(org_id=org_id, employee_id=employee_id, work_date=work_date)
    )
