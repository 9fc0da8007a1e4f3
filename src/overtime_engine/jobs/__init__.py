"""Background jobs: payloads, the Postgres-backed queue and its worker.

The worker is imported from overtime_engine.jobs.worker explicitly; it
depends on the services, which themselves enqueue jobs.
"""

from overtime_engine.jobs.payloads import (
    AuthorizationExpireJob,
    InvalidJobPayloadError,
    JobPayload,
    WeeklyReconciliationJob,
    WorkdayOvertimeJob,
    WorkdaySweepJob,
    parse_payload,
)
from overtime_engine.jobs.queue import EnqueueResult, JobQueue

__all__ = [
    "AuthorizationExpireJob",
    "EnqueueResult",
    "InvalidJobPayloadError",
    "JobPayload",
    "JobQueue",
    "WeeklyReconciliationJob",
    "WorkdayOvertimeJob",
    "WorkdaySweepJob",
    "parse_payload",
]
