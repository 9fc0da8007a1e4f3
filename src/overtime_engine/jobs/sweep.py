"""Safety net: re-enqueue workday summaries left DIRTY or CALCULATING."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from overtime_engine.calculators.types import CalcStatus
from overtime_engine.jobs.payloads import WorkdayOvertimeJob
from overtime_engine.jobs.queue import JobQueue
from overtime_engine.models import WorkdaySummary

logger = logging.getLogger(__name__)

SWEEP_BATCH_SIZE = 200
SWEEP_MAX_ENQUEUES = 1000
MIN_LOOKBACK_DAYS = 1
MAX_LOOKBACK_DAYS = 14

SWEEP_STATUSES = (CalcStatus.DIRTY.value, CalcStatus.CALCULATING.value)


@dataclass
class SweepReport:
    """Outcome of one sweep run."""

    org_id: UUID
    since: date
    scanned: int = 0
    enqueued: int = 0
    merged: int = 0
    capped: bool = False


async def sweep_dirty_workdays(
    session: AsyncSession,
    org_id: UUID,
    lookback_days: int,
    today: date,
    *,
    queue: JobQueue | None = None,
    batch_size: int = SWEEP_BATCH_SIZE,
    max_enqueues: int = SWEEP_MAX_ENQUEUES,
) -> SweepReport:
    """Enqueue a recalculation for every stuck summary of the lookback window.

    Summaries are scanned in id order with keyset pagination. The run stops
    after `max_enqueues` jobs; the next run continues with what is left.
    """
    lookback = max(MIN_LOOKBACK_DAYS, min(MAX_LOOKBACK_DAYS, int(lookback_days)))
    since = today - timedelta(days=lookback)
    queue = queue or JobQueue(session)
    report = SweepReport(org_id=org_id, since=since)

    cursor: UUID | None = None
    while True:
        query = select(
            WorkdaySummary.workday_summary_id,
            WorkdaySummary.employee_id,
            WorkdaySummary.work_date,
        ).where(
            WorkdaySummary.org_id == org_id,
            WorkdaySummary.work_date >= since,
            WorkdaySummary.overtime_calc_status.in_(SWEEP_STATUSES),
        )
        if cursor is not None:
            query = query.where(WorkdaySummary.workday_summary_id > cursor)
        result = await session.execute(
            query.order_by(WorkdaySummary.workday_summary_id).limit(batch_size)
        )
        rows = result.all()
        if not rows:
            break

        for summary_id, employee_id, work_date in rows:
            report.scanned += 1
            if report.enqueued + report.merged >= max_enqueues:
                report.capped = True
                break
            enqueue = await queue.enqueue(
                WorkdayOvertimeJob(org_id=org_id, employee_id=employee_id, work_date=work_date)
            )
            if enqueue.is_new:
                report.enqueued += 1
            else:
                report.merged += 1
            cursor = summary_id

        if report.capped or len(rows) < batch_size:
            break

    if report.capped:
        logger.warning(
            "Sweep for org %s capped at %s jobs; remaining summaries wait for the next run",
            org_id,
            max_enqueues,
        )
    logger.info(
        "Sweep for org %s since %s: %s scanned, %s enqueued, %s merged",
        org_id,
        since,
        report.scanned,
        report.enqueued,
        report.merged,
    )
    return report
