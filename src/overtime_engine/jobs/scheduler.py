"""Periodic dispatcher: turns wall-clock windows into queued jobs.

Run every OVERTIME_DISPATCH_INTERVAL_MINUTES. For each active organization,
in its own timezone:
- inside the daily sweep window: a workday sweep and an authorization
  expiry job
- inside the weekly window (weekday + hour): reconciliation of the previous
  ISO week, when enabled globally and for the organization
Dispatching twice inside a window is harmless: active jobs are deduplicated
and every job is idempotent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from overtime_engine.calculators.policy_resolver import PolicyResolver
from overtime_engine.calculators.types import CalculationMode
from overtime_engine.config import Settings, get_settings
from overtime_engine.jobs.payloads import (
    AuthorizationExpireJob,
    JobPayload,
    WeeklyReconciliationJob,
    WorkdaySweepJob,
)
from overtime_engine.jobs.queue import JobQueue
from overtime_engine.models import Organization, utcnow
from overtime_engine.timeutils import local_now, previous_week_start, resolve_timezone

logger = logging.getLogger(__name__)


@dataclass
class DispatchReport:
    """Jobs requested by one dispatcher tick."""

    now: datetime
    organizations: int = 0
    enqueued: list[str] = field(default_factory=list)
    merged: list[str] = field(default_factory=list)


def in_daily_window(local: datetime, hour: int, window_minutes: int) -> bool:
    return local.hour == hour and 0 <= local.minute < window_minutes


def in_weekly_window(local: datetime, weekday: int, hour: int, window_minutes: int) -> bool:
    return local.isoweekday() == weekday and in_daily_window(local, hour, window_minutes)


async def dispatch_periodic_jobs(
    session: AsyncSession,
    now: datetime | None = None,
    settings: Settings | None = None,
    queue: JobQueue | None = None,
) -> DispatchReport:
    """Enqueue the periodic jobs whose window contains `now`."""
    now = now or utcnow()
    settings = settings or get_settings()
    queue = queue or JobQueue(session)
    report = DispatchReport(now=now)

    result = await session.execute(
        select(Organization).where(Organization.active.is_(True)).order_by(Organization.org_id)
    )
    organizations = list(result.scalars().all())
    resolver = PolicyResolver(session)

    for organization in organizations:
        report.organizations += 1
        tz = resolve_timezone(organization.timezone, settings.default_timezone)
        local = local_now(now, tz)
        payloads: list[JobPayload] = []

        if in_daily_window(local, settings.sweep_hour, settings.sweep_window_minutes):
            payloads.append(
                WorkdaySweepJob(
                    org_id=organization.org_id, lookback_days=settings.sweep_lookback_days
                )
            )
            payloads.append(
                AuthorizationExpireJob(
                    org_id=organization.org_id, expiry_days=settings.authorization_expiry_days
                )
            )

        if settings.reconciliation_enabled and in_weekly_window(
            local,
            settings.reconciliation_weekday,
            settings.reconciliation_hour,
            settings.reconciliation_window_minutes,
        ):
            policy = await resolver.resolve(organization.org_id)
            if (
                policy.calculation_mode == CalculationMode.WEEKLY
                and policy.weekly_reconciliation_enabled
            ):
                payloads.append(
                    WeeklyReconciliationJob(
                        org_id=organization.org_id,
                        week_start=previous_week_start(local.date()),
                    )
                )

        for payload in payloads:
            enqueue = await queue.enqueue(payload)
            key = payload.singleton_key()
            (report.enqueued if enqueue.is_new else report.merged).append(key)

    if report.enqueued:
        logger.info("Dispatcher enqueued %s periodic jobs", len(report.enqueued))
    return report
