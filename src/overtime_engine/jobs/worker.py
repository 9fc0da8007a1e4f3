"""Job worker: claims due jobs and runs each in its own session."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from overtime_engine.config import Settings, get_settings
from overtime_engine.jobs.payloads import (
    AuthorizationExpireJob,
    InvalidJobPayloadError,
    JobPayload,
    WeeklyReconciliationJob,
    WorkdayOvertimeJob,
    WorkdaySweepJob,
    parse_payload,
)
from overtime_engine.jobs.queue import JobQueue
from overtime_engine.jobs.scheduler import dispatch_periodic_jobs
from overtime_engine.jobs.sweep import sweep_dirty_workdays
from overtime_engine.models import Organization, utcnow
from overtime_engine.services.approval_gate import ApprovalGate
from overtime_engine.services.collaborators import Collaborators, Outbox
from overtime_engine.services.reconciliation import WeeklyReconciler
from overtime_engine.services.workday_processor import process_workday_overtime
from overtime_engine.timeutils import local_day_start_utc, local_now, resolve_timezone

logger = logging.getLogger(__name__)


@dataclass
class JobContext:
    """What a handler gets besides its session and payload."""

    collaborators: Collaborators
    settings: Settings
    now: datetime


Handler = Callable[[AsyncSession, Any, JobContext], Awaitable[Any]]


async def _org_today(session: AsyncSession, org_id: UUID, ctx: JobContext) -> tuple[date, datetime]:
    """The organization's local date and the UTC instant it started."""
    organization = await session.get(Organization, org_id)
    tz = resolve_timezone(
        organization.timezone if organization else None, ctx.settings.default_timezone
    )
    today = local_now(ctx.now, tz).date()
    return today, local_day_start_utc(today, tz)


async def handle_workday(session: AsyncSession, payload: WorkdayOvertimeJob, ctx: JobContext):
    return await process_workday_overtime(
        session, payload.org_id, payload.employee_id, payload.work_date, ctx.collaborators
    )


async def handle_weekly(session: AsyncSession, payload: WeeklyReconciliationJob, ctx: JobContext):
    report = await WeeklyReconciler(session).reconcile_week(payload.org_id, payload.week_start)
    await session.commit()
    return report


async def handle_sweep(session: AsyncSession, payload: WorkdaySweepJob, ctx: JobContext):
    today, _ = await _org_today(session, payload.org_id, ctx)
    report = await sweep_dirty_workdays(session, payload.org_id, payload.lookback_days, today)
    await session.commit()
    return report


async def handle_expire(session: AsyncSession, payload: AuthorizationExpireJob, ctx: JobContext):
    _, today_start = await _org_today(session, payload.org_id, ctx)
    outbox = Outbox()
    report = await ApprovalGate(session, ctx.collaborators).expire_stale(
        payload.org_id, payload.expiry_days, today_start, outbox=outbox
    )
    await session.commit()
    if outbox:
        await outbox.dispatch(session, ctx.collaborators)
    return report


HANDLERS: dict[str, Handler] = {
    WorkdayOvertimeJob.QUEUE: handle_workday,
    WeeklyReconciliationJob.QUEUE: handle_weekly,
    WorkdaySweepJob.QUEUE: handle_sweep,
    AuthorizationExpireJob.QUEUE: handle_expire,
}


async def run_payload(
    session: AsyncSession,
    payload: JobPayload,
    collaborators: Collaborators | None = None,
    settings: Settings | None = None,
    now: datetime | None = None,
):
    """Run one job synchronously, bypassing the queue (CLI, tests)."""
    ctx = JobContext(
        collaborators=collaborators or Collaborators(),
        settings=settings or get_settings(),
        now=now or utcnow(),
    )
    return await HANDLERS[payload.queue](session, payload, ctx)


@dataclass
class WorkerRunReport:
    """Outcome of one worker pass."""

    claimed: int = 0
    completed: int = 0
    failed: int = 0


class Worker:
    """Polls the queue and runs jobs.

    Every job runs in a fresh session; its outcome is recorded in another
    one so a rolled-back handler still leaves a retry trail.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        collaborators: Collaborators | None = None,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.collaborators = collaborators or Collaborators()
        self.settings = settings or get_settings()
        self._stopping = asyncio.Event()

    def _queue(self, session: AsyncSession) -> JobQueue:
        return JobQueue(
            session,
            max_attempts=self.settings.job_max_attempts,
            lock_seconds=self.settings.job_singleton_seconds,
        )

    async def run_once(self, now: datetime | None = None) -> WorkerRunReport:
        """Claim one batch of due jobs and run them."""
        now = now or utcnow()
        report = WorkerRunReport()

        async with self.session_factory() as session:
            jobs = await self._queue(session).claim_due(self.settings.job_batch_size, now)
            claimed = [(job.job_id, job.queue, dict(job.payload or {})) for job in jobs]
            await session.commit()
        report.claimed = len(claimed)

        for job_id, queue_name, raw_payload in claimed:
            if await self._run_job(job_id, queue_name, raw_payload, now):
                report.completed += 1
            else:
                report.failed += 1
        return report

    async def _run_job(
        self, job_id: UUID, queue_name: str, raw_payload: dict, now: datetime
    ) -> bool:
        error: BaseException | None = None
        try:
            payload = parse_payload(queue_name, raw_payload)
        except InvalidJobPayloadError as e:
            await self._record(job_id, e, now, dead=True)
            return False

        ctx = JobContext(collaborators=self.collaborators, settings=self.settings, now=now)
        async with self.session_factory() as session:
            try:
                await HANDLERS[queue_name](session, payload, ctx)
                await session.commit()
            except Exception as e:
                await session.rollback()
                logger.exception("Job %s (%s) failed", job_id, queue_name)
                error = e

        await self._record(job_id, error, now)
        return error is None

    async def _record(
        self, job_id: UUID, error: BaseException | None, now: datetime, dead: bool = False
    ) -> None:
        async with self.session_factory() as session:
            queue = self._queue(session)
            job = await queue.get(job_id)
            if job is None:
                return
            if error is None:
                await queue.complete(job)
            elif dead:
                await queue.dead_letter(job, error)
            else:
                await queue.fail(job, error, now)
            await session.commit()

    async def dispatch(self, now: datetime | None = None):
        """Run one periodic dispatcher tick."""
        async with self.session_factory() as session:
            report = await dispatch_periodic_jobs(
                session, now=now, settings=self.settings, queue=self._queue(session)
            )
            await session.commit()
        return report

    def stop(self) -> None:
        self._stopping.set()

    async def run_forever(self, dispatch: bool = True) -> None:
        """Poll until stop() is called, dispatching periodic jobs on schedule."""
        poll = self.settings.worker_poll_seconds
        dispatch_every = timedelta(minutes=self.settings.dispatch_interval_minutes)
        next_dispatch = utcnow()
        logger.info("Worker started (poll every %ss)", poll)

        while not self._stopping.is_set():
            if dispatch and utcnow() >= next_dispatch:
                try:
                    await self.dispatch()
                except Exception:
                    logger.exception("Periodic dispatch failed")
                next_dispatch = utcnow() + dispatch_every

            report = await self.run_once()
            if report.claimed:
                continue
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=poll)
            except asyncio.TimeoutError:
                pass
        logger.info("Worker stopped")
