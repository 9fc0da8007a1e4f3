"""Database-backed job queue with singleton deduplication.

Key invariants:
1. At most one PENDING or RUNNING job per singleton key (partial unique
   index); enqueueing an active key merges into the existing job
2. Failures retry with exponential backoff (2^attempts minutes) until
   max_attempts, then the job is dead-lettered
3. A RUNNING job whose lock expired is claimable again (crashed worker)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy import and_, or_, select, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from overtime_engine.config import get_settings
from overtime_engine.jobs.payloads import JobPayload
from overtime_engine.models import OvertimeJob, utcnow

logger = logging.getLogger(__name__)

PENDING = "PENDING"
RUNNING = "RUNNING"
COMPLETED = "COMPLETED"
DEAD = "DEAD"

ACTIVE_STATUSES = (PENDING, RUNNING)
_ACTIVE_WHERE = text("status IN ('PENDING', 'RUNNING')")
MAX_ERROR_LENGTH = 4000


@dataclass(frozen=True)
class EnqueueResult:
    """Result of an enqueue.

    `is_new` is False when the request merged into an active job with the
    same singleton key.
    """

    job: OvertimeJob
    is_new: bool


def backoff_delay(attempts: int) -> timedelta:
    """Delay before retry number `attempts`."""
    return timedelta(minutes=2**attempts)


class JobQueue:
    """Enqueue, claim, complete and fail jobs."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        max_attempts: int | None = None,
        lock_seconds: int | None = None,
    ):
        settings = get_settings()
        self.session = session
        self.max_attempts = max_attempts or settings.job_max_attempts
        self.lock_seconds = lock_seconds or settings.job_singleton_seconds

    def _insert(self):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(OvertimeJob)
        if dialect == "sqlite":
            return sqlite.insert(OvertimeJob)
        raise RuntimeError(f"Unsupported database dialect for job queue: {dialect}")

    async def get_active(self, singleton_key: str) -> OvertimeJob | None:
        """The PENDING or RUNNING job holding a singleton key, if any."""
        result = await self.session.execute(
            select(OvertimeJob)
            .where(
                OvertimeJob.singleton_key == singleton_key,
                OvertimeJob.status.in_(ACTIVE_STATUSES),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def enqueue(
        self,
        payload: JobPayload,
        *,
        run_after: datetime | None = None,
    ) -> EnqueueResult:
        """Queue a job unless an active one with the same key exists.

        A merged request can only bring a PENDING job's run time forward.
        """
        now = utcnow()
        due = run_after or now
        job_id = uuid4()
        key = payload.singleton_key()

        stmt = (
            self._insert()
            .values(
                job_id=job_id,
                queue=payload.queue,
                singleton_key=key,
                payload=payload.to_json(),
                status=PENDING,
                attempts=0,
                max_attempts=self.max_attempts,
                run_after=due,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["singleton_key"], index_where=_ACTIVE_WHERE)
        )
        await self.session.execute(stmt)

        job = await self.get_active(key)
        if job is None:
            raise RuntimeError(f"Enqueue failed unexpectedly - no active job for {key}")

        if job.job_id == job_id:
            logger.debug("Enqueued %s", key)
            return EnqueueResult(job=job, is_new=True)

        if job.status == PENDING:
            # Compared in SQL: stored datetimes may come back naive.
            await self.session.execute(
                OvertimeJob.__table__.update()
                .where(OvertimeJob.job_id == job.job_id, OvertimeJob.run_after > due)
                .values(run_after=due, updated_at=now)
            )
            job = await self.get_active(key) or job
        logger.debug("Merged enqueue of %s into job %s", key, job.job_id)
        return EnqueueResult(job=job, is_new=False)

    async def claim_due(self, limit: int, now: datetime | None = None) -> list[OvertimeJob]:
        """Lock up to `limit` due jobs for this worker.

        Due means PENDING with run_after reached, or RUNNING with an expired
        lock.
        """
        now = now or utcnow()
        result = await self.session.execute(
            select(OvertimeJob)
            .where(
                or_(
                    and_(OvertimeJob.status == PENDING, OvertimeJob.run_after <= now),
                    and_(OvertimeJob.status == RUNNING, OvertimeJob.locked_until < now),
                )
            )
            .order_by(OvertimeJob.run_after.asc(), OvertimeJob.created_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        jobs = list(result.scalars().all())
        locked_until = now + timedelta(seconds=self.lock_seconds)
        for job in jobs:
            if job.status == RUNNING:
                logger.warning("Reclaiming job %s (%s) after expired lock", job.job_id, job.queue)
            job.status = RUNNING
            job.locked_until = locked_until
        await self.session.flush()
        return jobs

    async def get(self, job_id: UUID) -> OvertimeJob | None:
        return await self.session.get(OvertimeJob, job_id)

    async def complete(self, job: OvertimeJob) -> OvertimeJob:
        """Mark a job as done and release its singleton key."""
        job.status = COMPLETED
        job.completed_at = utcnow()
        job.locked_until = None
        job.last_error = None
        await self.session.flush()
        return job

    async def fail(
        self, job: OvertimeJob, error: BaseException, now: datetime | None = None
    ) -> OvertimeJob:
        """Record a failed attempt: back off and retry, or dead-letter."""
        now = now or utcnow()
        attempts = (job.attempts or 0) + 1
        job.attempts = attempts
        job.last_error = f"{type(error).__name__}: {error}"[:MAX_ERROR_LENGTH]
        job.locked_until = None
        if attempts < job.max_attempts:
            job.status = PENDING
            job.run_after = now + backoff_delay(attempts)
            logger.warning(
                "Job %s (%s) failed on attempt %s/%s, retrying at %s: %s",
                job.job_id,
                job.queue,
                attempts,
                job.max_attempts,
                job.run_after,
                error,
            )
        else:
            job.status = DEAD
            logger.error(
                "Job %s (%s) dead-lettered after %s attempts: %s",
                job.job_id,
                job.queue,
                attempts,
                error,
            )
        await self.session.flush()
        return job

    async def dead_letter(self, job: OvertimeJob, error: BaseException) -> OvertimeJob:
        """Dead-letter a job that can never succeed, skipping the retries."""
        job.attempts = (job.attempts or 0) + 1
        job.last_error = f"{type(error).__name__}: {error}"[:MAX_ERROR_LENGTH]
        job.locked_until = None
        job.status = DEAD
        logger.error("Job %s (%s) dead-lettered: %s", job.job_id, job.queue, error)
        await self.session.flush()
        return job

    async def list_jobs(
        self, status: str | None = None, queue: str | None = None, limit: int = 100
    ) -> list[OvertimeJob]:
        query = select(OvertimeJob)
        if status is not None:
            query = query.where(OvertimeJob.status == status)
        if queue is not None:
            query = query.where(OvertimeJob.queue == queue)
        result = await self.session.execute(
            query.order_by(OvertimeJob.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())
