"""Tests for the job worker."""

import dataclasses
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import select

from overtime_engine.config import get_settings
from overtime_engine.jobs import AuthorizationExpireJob, JobQueue, WorkdayOvertimeJob
from overtime_engine.jobs import worker as worker_module
from overtime_engine.jobs.worker import Worker, run_payload
from overtime_engine.models import OvertimeCandidate, OvertimeJob, OverworkAuthorization, utcnow
from overtime_engine.services.workday_processor import mark_workday_dirty

from .conftest import create_policy, create_summary

DAY = date(2025, 3, 4)


def _settings(**overrides):
    values = {
        "job_max_attempts": 3,
        "job_singleton_seconds": 60,
        "job_batch_size": 10,
        "default_timezone": "UTC",
    }
    values.update(overrides)
    return dataclasses.replace(get_settings(), **values)


async def _jobs(session_factory) -> list[OvertimeJob]:
    async with session_factory() as check:
        result = await check.execute(select(OvertimeJob))
        return list(result.scalars().all())


class TestRunOnce:
    async def test_runs_workday_job(self, session, session_factory, org, employee, collaborators):
        await create_policy(session, org.org_id, overtime_approval_mode="NONE")
        await create_summary(
            session, org.org_id, employee.employee_id, DAY, worked=540, expected=480
        )
        await mark_workday_dirty(session, org.org_id, employee.employee_id, DAY)
        await session.commit()

        worker = Worker(session_factory, collaborators, _settings())
        report = await worker.run_once(now=utcnow() + timedelta(seconds=1))

        assert (report.claimed, report.completed, report.failed) == (1, 1, 0)
        (job,) = await _jobs(session_factory)
        assert job.status == "COMPLETED"
        async with session_factory() as check:
            candidate = (await check.execute(select(OvertimeCandidate))).scalar_one()
            assert candidate.status == "SETTLED"
            assert candidate.candidate_minutes_final == 60

    async def test_nothing_due(self, session_factory):
        report = await Worker(session_factory, settings=_settings()).run_once()
        assert report.claimed == 0

    async def test_failed_job_is_retried_later(
        self, session, session_factory, org, employee, collaborators, monkeypatch
    ):
        async def broken(session, payload, ctx):
            raise RuntimeError("lost connection")

        monkeypatch.setitem(worker_module.HANDLERS, WorkdayOvertimeJob.QUEUE, broken)
        await JobQueue(session).enqueue(
            WorkdayOvertimeJob(org_id=org.org_id, employee_id=employee.employee_id, work_date=DAY)
        )
        await session.commit()

        report = await Worker(session_factory, collaborators, _settings()).run_once(
            now=utcnow() + timedelta(seconds=1)
        )

        assert report.failed == 1
        (job,) = await _jobs(session_factory)
        assert job.status == "PENDING"
        assert job.attempts == 1
        assert job.last_error == "RuntimeError: lost connection"

    async def test_invalid_payload_is_dead_lettered(self, session, session_factory):
        now = utcnow()
        session.add(
            OvertimeJob(
                queue=WorkdayOvertimeJob.QUEUE,
                singleton_key="overtime.workday:broken",
                payload={"org_id": "not-a-uuid"},
                status="PENDING",
                run_after=now,
            )
        )
        await session.commit()

        report = await Worker(session_factory, settings=_settings()).run_once(
            now=now + timedelta(seconds=1)
        )

        assert report.failed == 1
        (job,) = await _jobs(session_factory)
        assert job.status == "DEAD"
        assert job.last_error.startswith("InvalidJobPayloadError")


class TestDispatchAndDirectRuns:
    async def test_dispatch_enqueues_periodic_jobs(self, session_factory, org):
        settings = _settings(sweep_hour=4, sweep_window_minutes=20)
        worker = Worker(session_factory, settings=settings)

        report = await worker.dispatch(datetime(2025, 3, 10, 4, 5, tzinfo=timezone.utc))

        assert len(report.enqueued) == 2
        queues = sorted(job.queue for job in await _jobs(session_factory))
        assert queues == ["overtime.authorization-expire", "overtime.workday-sweep"]

    async def test_run_payload_expires_authorizations(
        self, session, org, employee, collaborators, notifier
    ):
        await create_summary(
            session, org.org_id, employee.employee_id, DAY, worked=540, expected=480
        )
        await session.commit()
        await run_payload(
            session,
            WorkdayOvertimeJob(org_id=org.org_id, employee_id=employee.employee_id, work_date=DAY),
            collaborators,
            _settings(),
        )
        authorization = (await session.execute(select(OverworkAuthorization))).scalar_one()
        authorization.requested_at = datetime(2025, 3, 4, 12, tzinfo=timezone.utc)
        await session.commit()

        report = await run_payload(
            session,
            AuthorizationExpireJob(org_id=org.org_id, expiry_days=7),
            collaborators,
            _settings(),
            now=datetime(2025, 3, 20, 4, 5, tzinfo=timezone.utc),
        )

        assert report.expired == 1
        await session.refresh(authorization)
        assert authorization.status == "EXPIRED"
        assert len(notifier.of_type("OVERTIME_EXPIRED")) == 2
