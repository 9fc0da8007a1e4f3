"""Tests for per-workday overtime processing."""

from datetime import date

from sqlalchemy import func, select, update

from overtime_engine.calculators.types import EffectiveSchedule
from overtime_engine.models import (
    OvertimeCandidate,
    OvertimeJob,
    OverworkAuthorization,
    TimeBankMovement,
    WorkdaySummary,
)
from overtime_engine.services.collaborators import Collaborators
from overtime_engine.services.ledger_service import LedgerWriter
from overtime_engine.services.workday_processor import (
    mark_workday_dirty,
    process_workday_overtime,
)

from .conftest import (
    APPROVER_USER_ID,
    FakeScheduleProvider,
    RecordingNotifier,
    create_policy,
    create_summary,
)

DAY = date(2025, 3, 4)


async def _count(session, model, **filters) -> int:
    query = select(func.count()).select_from(model)
    for key, value in filters.items():
        query = query.where(getattr(model, key) == value)
    return int((await session.execute(query)).scalar_one())


class DirtyingScheduleProvider(FakeScheduleProvider):
    """Simulates the aggregator re-marking the day while we compute."""

    async def get_effective_schedule(self, session, org_id, employee_id, day):
        await session.execute(
            update(WorkdaySummary)
            .where(
                WorkdaySummary.org_id == org_id,
                WorkdaySummary.employee_id == employee_id,
                WorkdaySummary.work_date == day,
            )
            .values(overtime_calc_status="DIRTY")
        )
        return None


class TestUnapprovedPath:
    """Organizations without approval settle straight into the ledger."""

    async def test_excess_is_settled(self, session, org, employee, collaborators):
        await create_policy(session, org.org_id, overtime_approval_mode="NONE")
        summary = await create_summary(
            session, org.org_id, employee.employee_id, DAY, worked=500, expected=480
        )
        await session.commit()

        outcome = await process_workday_overtime(
            session, org.org_id, employee.employee_id, DAY, collaborators
        )

        assert outcome.status.value == "SETTLED"
        assert outcome.candidate_minutes == 20
        assert outcome.movement_written is True
        candidate = await session.get(OvertimeCandidate, outcome.candidate_id)
        assert candidate.candidate_type == "EXTRA"
        assert candidate.policy_snapshot["approval_mode"] == "NONE"
        await session.refresh(summary)
        assert summary.overtime_calc_status == "SETTLED"
        assert await LedgerWriter(session).get_balance(org.org_id, employee.employee_id) == 20

    async def test_deficit_is_written_directly(self, session, org, employee, collaborators):
        await create_summary(
            session, org.org_id, employee.employee_id, DAY, worked=430, expected=480
        )
        await session.commit()

        outcome = await process_workday_overtime(
            session, org.org_id, employee.employee_id, DAY, collaborators
        )

        assert outcome.status.value == "SETTLED"
        assert outcome.candidate_minutes == -50
        assert await _count(session, OverworkAuthorization) == 0
        assert await LedgerWriter(session).get_balance(org.org_id, employee.employee_id) == -50

    async def test_reprocessing_is_idempotent(self, session, org, employee, collaborators):
        await create_policy(session, org.org_id, overtime_approval_mode="NONE")
        await create_summary(
            session, org.org_id, employee.employee_id, DAY, worked=540, expected=480
        )
        await session.commit()

        first = await process_workday_overtime(
            session, org.org_id, employee.employee_id, DAY, collaborators
        )
        candidate = await session.get(OvertimeCandidate, first.candidate_id)
        calculated_at = candidate.last_calculated_at

        second = await process_workday_overtime(
            session, org.org_id, employee.employee_id, DAY, collaborators
        )

        assert first.candidate_changed is True
        assert second.candidate_changed is False
        assert second.candidate_id == first.candidate_id
        await session.refresh(candidate)
        assert candidate.last_calculated_at == calculated_at
        assert await _count(session, OvertimeCandidate) == 1
        assert await _count(session, TimeBankMovement) == 1
        assert await LedgerWriter(session).get_balance(org.org_id, employee.employee_id) == 60

    async def test_correction_replaces_daily_movement(self, session, org, employee, collaborators):
        await create_policy(session, org.org_id, overtime_approval_mode="NONE")
        summary = await create_summary(
            session, org.org_id, employee.employee_id, DAY, worked=540, expected=480
        )
        await session.commit()
        await process_workday_overtime(session, org.org_id, employee.employee_id, DAY, collaborators)

        summary.worked_minutes = 420
        await session.commit()
        outcome = await process_workday_overtime(
            session, org.org_id, employee.employee_id, DAY, collaborators
        )

        assert outcome.candidate_minutes == -60
        assert await _count(session, TimeBankMovement) == 1
        assert await LedgerWriter(session).get_balance(org.org_id, employee.employee_id) == -60

    async def test_within_tolerance_is_skipped(self, session, org, employee, collaborators):
        summary = await create_summary(
            session, org.org_id, employee.employee_id, DAY, worked=490, expected=480
        )
        await session.commit()

        outcome = await process_workday_overtime(
            session, org.org_id, employee.employee_id, DAY, collaborators
        )

        assert outcome.status.value == "SKIPPED"
        assert await _count(session, TimeBankMovement) == 0
        await session.refresh(summary)
        assert summary.overtime_calc_status == "SKIPPED"


class TestApprovalPath:
    """Excess that needs an approver."""

    async def test_non_working_day_requires_approval(
        self, session, org, employee, collaborators, schedules, notifier, alerts
    ):
        schedules.set(
            employee.employee_id,
            DAY,
            EffectiveSchedule(expected_minutes=0, is_working_day=False, source="HOLIDAY"),
        )
        summary = await create_summary(
            session, org.org_id, employee.employee_id, DAY, worked=90, expected=0
        )
        await session.commit()

        outcome = await process_workday_overtime(
            session, org.org_id, employee.employee_id, DAY, collaborators
        )

        assert outcome.status.value == "PENDING_APPROVAL"
        authorization = await session.get(OverworkAuthorization, outcome.authorization_id)
        assert authorization.status == "PENDING"
        assert authorization.minutes_approved == 90
        candidate = await session.get(OvertimeCandidate, outcome.candidate_id)
        assert candidate.candidate_type == "NON_WORKDAY"
        assert candidate.overwork_authorization_id == authorization.authorization_id
        await session.refresh(summary)
        assert summary.overtime_calc_status == "PENDING_APPROVAL"

        pending = notifier.of_type("OVERTIME_PENDING_APPROVAL")
        assert [m.user_id for m in pending] == [APPROVER_USER_ID]
        assert len(alerts.raised) == 1
        assert alerts.raised[0].deviation_minutes == 90
        assert await _count(session, TimeBankMovement) == 0

    async def test_rerun_does_not_duplicate_authorization(
        self, session, org, employee, collaborators, notifier
    ):
        await create_summary(
            session, org.org_id, employee.employee_id, DAY, worked=540, expected=480
        )
        await session.commit()

        await process_workday_overtime(session, org.org_id, employee.employee_id, DAY, collaborators)
        await process_workday_overtime(session, org.org_id, employee.employee_id, DAY, collaborators)

        assert await _count(session, OverworkAuthorization) == 1
        assert len(notifier.of_type("OVERTIME_PENDING_APPROVAL")) == 1

    async def test_pending_minutes_follow_recompute(self, session, org, employee, collaborators):
        summary = await create_summary(
            session, org.org_id, employee.employee_id, DAY, worked=540, expected=480
        )
        await session.commit()
        first = await process_workday_overtime(
            session, org.org_id, employee.employee_id, DAY, collaborators
        )

        summary.worked_minutes = 600
        await session.commit()
        second = await process_workday_overtime(
            session, org.org_id, employee.employee_id, DAY, collaborators
        )

        assert second.authorization_id == first.authorization_id
        authorization = await session.get(OverworkAuthorization, first.authorization_id)
        assert authorization.minutes_approved == 120

    async def test_zero_excess_cancels_pending(self, session, org, employee, collaborators):
        summary = await create_summary(
            session, org.org_id, employee.employee_id, DAY, worked=540, expected=480
        )
        await session.commit()
        first = await process_workday_overtime(
            session, org.org_id, employee.employee_id, DAY, collaborators
        )

        summary.worked_minutes = 480
        await session.commit()
        second = await process_workday_overtime(
            session, org.org_id, employee.employee_id, DAY, collaborators
        )

        assert second.status.value == "SKIPPED"
        authorization = await session.get(OverworkAuthorization, first.authorization_id)
        await session.refresh(authorization)
        assert authorization.status == "CANCELLED"
        assert await _count(session, TimeBankMovement) == 0

    async def test_excess_after_cancel_opens_new_authorization(
        self, session, org, employee, collaborators
    ):
        summary = await create_summary(
            session, org.org_id, employee.employee_id, DAY, worked=540, expected=480
        )
        await session.commit()
        first = await process_workday_overtime(
            session, org.org_id, employee.employee_id, DAY, collaborators
        )
        summary.worked_minutes = 480
        await session.commit()
        await process_workday_overtime(session, org.org_id, employee.employee_id, DAY, collaborators)

        summary.worked_minutes = 570
        await session.commit()
        third = await process_workday_overtime(
            session, org.org_id, employee.employee_id, DAY, collaborators
        )

        assert third.status.value == "PENDING_APPROVAL"
        assert third.authorization_id != first.authorization_id
        assert await _count(session, OverworkAuthorization, status="PENDING") == 1
        cancelled = await session.get(OverworkAuthorization, first.authorization_id)
        await session.refresh(cancelled)
        assert cancelled.status == "CANCELLED"
        assert await _count(session, OverworkAuthorization) == 2

    async def test_untrusted_clock_data_needs_approval(self, session, org, employee, collaborators):
        await create_policy(session, org.org_id, overtime_approval_mode="NONE")
        await create_summary(
            session,
            org.org_id,
            employee.employee_id,
            DAY,
            worked=540,
            expected=480,
            resolution_status="UNRESOLVED_MISSING_CLOCK_OUT",
        )
        await session.commit()

        outcome = await process_workday_overtime(
            session, org.org_id, employee.employee_id, DAY, collaborators
        )

        assert outcome.status.value == "PENDING_APPROVAL"
        assert await _count(session, TimeBankMovement) == 0


class TestEdgeCases:
    """Missing data and concurrent changes."""

    async def test_missing_summary_removes_stale_candidate(
        self, session, org, employee, collaborators
    ):
        await create_policy(session, org.org_id, overtime_approval_mode="NONE")
        summary = await create_summary(
            session, org.org_id, employee.employee_id, DAY, worked=540, expected=480
        )
        await session.commit()
        await process_workday_overtime(session, org.org_id, employee.employee_id, DAY, collaborators)

        await session.delete(summary)
        await session.commit()
        outcome = await process_workday_overtime(
            session, org.org_id, employee.employee_id, DAY, collaborators
        )

        assert outcome.status is None
        assert await _count(session, OvertimeCandidate) == 0

    async def test_unknown_expected_minutes(self, session, org, employee, collaborators):
        summary = await create_summary(
            session, org.org_id, employee.employee_id, DAY, worked=300, expected=None
        )
        await session.commit()

        outcome = await process_workday_overtime(
            session, org.org_id, employee.employee_id, DAY, collaborators
        )

        assert outcome.status.value == "SKIPPED"
        candidate = await session.get(OvertimeCandidate, outcome.candidate_id)
        assert candidate.flags == {"reason": "NO_EXPECTED_MINUTES"}
        assert candidate.policy_snapshot is None
        await session.refresh(summary)
        assert summary.overtime_calc_status == "SKIPPED"

    async def test_broken_schedule_source_degrades(self, session, org, employee, notifier, alerts):
        await create_policy(session, org.org_id, overtime_approval_mode="NONE")
        await create_summary(
            session, org.org_id, employee.employee_id, DAY, worked=540, expected=480
        )
        await session.commit()
        broken = Collaborators(
            schedule_provider=FakeScheduleProvider(fail=True),
            notifier=notifier,
            alert_sink=alerts,
        )

        outcome = await process_workday_overtime(
            session, org.org_id, employee.employee_id, DAY, broken
        )

        assert outcome.status.value == "SETTLED"
        assert outcome.candidate_minutes == 60

    async def test_summary_marked_dirty_during_processing(self, session, org, employee):
        await create_policy(session, org.org_id, overtime_approval_mode="NONE")
        summary = await create_summary(
            session, org.org_id, employee.employee_id, DAY, worked=540, expected=480
        )
        await session.commit()
        collaborators = Collaborators(schedule_provider=DirtyingScheduleProvider())

        outcome = await process_workday_overtime(
            session, org.org_id, employee.employee_id, DAY, collaborators
        )

        assert outcome.left_dirty is True
        await session.refresh(summary)
        assert summary.overtime_calc_status == "DIRTY"

    async def test_notification_failure_does_not_fail_processing(
        self, session, org, employee, alerts
    ):
        await create_summary(
            session, org.org_id, employee.employee_id, DAY, worked=540, expected=480
        )
        await session.commit()
        failing = RecordingNotifier(fail_types={"OVERTIME_PENDING_APPROVAL"})

        outcome = await process_workday_overtime(
            session,
            org.org_id,
            employee.employee_id,
            DAY,
            Collaborators(notifier=failing, alert_sink=alerts),
        )

        assert outcome.status.value == "PENDING_APPROVAL"
        assert failing.sent == []
        assert len(alerts.raised) == 1


class TestMarkWorkdayDirty:
    """Entry point for the summary aggregator."""

    async def test_marks_and_enqueues_once(self, session, org, employee):
        summary = await create_summary(
            session,
            org.org_id,
            employee.employee_id,
            DAY,
            worked=540,
            expected=480,
            calc_status="SETTLED",
        )
        await session.commit()

        first = await mark_workday_dirty(session, org.org_id, employee.employee_id, DAY)
        second = await mark_workday_dirty(session, org.org_id, employee.employee_id, DAY)
        await session.commit()

        assert first.is_new is True
        assert second.is_new is False
        assert second.job.job_id == first.job.job_id
        assert await _count(session, OvertimeJob) == 1
        await session.refresh(summary)
        assert summary.overtime_calc_status == "DIRTY"
