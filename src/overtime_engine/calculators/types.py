"""Type definitions for the overtime calculation pipeline."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

# All arithmetic inside the engine is done in whole minutes.
Minutes = int


def to_minutes(value: Decimal | float | int | None) -> Minutes:
    """Coerce a stored duration into integer minutes (half up, None -> 0)."""
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    number = float(value)
    if not math.isfinite(number):
        return 0
    return int(math.floor(number + 0.5))


def to_optional_minutes(value: Decimal | float | int | None) -> Minutes | None:
    """Like to_minutes but keeps None (unknown) distinct from zero."""
    if value is None:
        return None
    return to_minutes(value)


class CalculationMode(str, Enum):
    """How deviations are settled: per day, or reconciled per week."""

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"


class ApprovalMode(str, Enum):
    """Whether excess minutes need an approver."""

    NONE = "NONE"
    PRE = "PRE"
    POST = "POST"


class CompensationType(str, Enum):
    """How approved overtime is compensated."""

    TIME = "TIME"
    PAY = "PAY"
    MIXED = "MIXED"
    NONE = "NONE"

    @property
    def credits_time_bank(self) -> bool:
        """True when approval materializes a ledger movement."""
        return self in (CompensationType.TIME, CompensationType.MIXED)


class NonWorkingDayPolicy(str, Enum):
    """Treatment of time worked on a day without expected work."""

    AUTO_ALLOW = "AUTO_ALLOW"
    REQUIRE_APPROVAL = "REQUIRE_APPROVAL"


class CandidateType(str, Enum):
    """Classification of a daily candidate."""

    EXTRA = "EXTRA"
    DEFICIT = "DEFICIT"
    COMPLEMENTARY = "COMPLEMENTARY"
    NON_WORKDAY = "NON_WORKDAY"


class CandidateStatus(str, Enum):
    """Lifecycle status of an overtime candidate."""

    PENDING_CALC = "PENDING_CALC"
    READY = "READY"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    SETTLED = "SETTLED"
    REJECTED = "REJECTED"
    SKIPPED = "SKIPPED"


class CalcStatus(str, Enum):
    """Overtime calculation status tracked on the workday summary."""

    DIRTY = "DIRTY"
    CALCULATING = "CALCULATING"
    READY = "READY"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    SETTLED = "SETTLED"
    SKIPPED = "SKIPPED"


class AuthorizationStatus(str, Enum):
    """Overwork authorization status values."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class MovementType(str, Enum):
    """Time-bank movement types."""

    EXTRA = "EXTRA"
    DEFICIT = "DEFICIT"
    CORRECTION = "CORRECTION"
    RECOVERY = "RECOVERY"
    FESTIVE = "FESTIVE"
    ADJUSTMENT = "ADJUSTMENT"


class MovementOrigin(str, Enum):
    """What produced a time-bank movement."""

    AUTO_DAILY = "AUTO_DAILY"
    OVERTIME_AUTHORIZATION = "OVERTIME_AUTHORIZATION"
    EMPLOYEE_REQUEST = "EMPLOYEE_REQUEST"
    CORRECTION = "CORRECTION"


class MovementStatus(str, Enum):
    """Time-bank movement status values."""

    SETTLED = "SETTLED"
    APPROVED = "APPROVED"


class TimeBankRequestType(str, Enum):
    """Employee-initiated time-bank requests."""

    RECOVERY = "RECOVERY"
    FESTIVE_COMPENSATION = "FESTIVE_COMPENSATION"


class TimeBankRequestStatus(str, Enum):
    """Time-bank request status values."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class ScheduleSource(str, Enum):
    """Where the effective schedule for a day came from."""

    CONTRACT = "CONTRACT"
    TEMPLATE = "TEMPLATE"
    EXCEPTION = "EXCEPTION"
    HOLIDAY = "HOLIDAY"
    ABSENCE = "ABSENCE"
    MANUAL = "MANUAL"


# Summary states that force a human review of any excess.
REVIEW_RESOLUTION_STATUSES = frozenset({"UNRESOLVED_MISSING_CLOCK_OUT", "AUTO_CLOSED_SAFETY"})
CONFIRMED_DATA_QUALITY = "CONFIRMED"


@dataclass(frozen=True)
class OvertimePolicy:
    """Immutable overtime policy resolved once per job and threaded through.

    A limit of 0 means the limit is disabled.
    """

    calculation_mode: CalculationMode = CalculationMode.DAILY
    approval_mode: ApprovalMode = ApprovalMode.POST
    compensation_type: CompensationType = CompensationType.TIME
    tolerance_minutes: Minutes = 15
    daily_limit_minutes: Minutes = 0
    weekly_limit_minutes: Minutes = 0
    monthly_limit_minutes: Minutes = 0
    annual_limit_minutes: Minutes = 0
    full_time_weekly_hours: float = 40.0
    non_working_day_policy: NonWorkingDayPolicy = NonWorkingDayPolicy.REQUIRE_APPROVAL
    rounding_increment_minutes: Minutes = 5
    deficit_grace_minutes: Minutes = 10
    excess_grace_minutes: Minutes = 15
    max_positive_minutes: Minutes = 4800
    max_negative_minutes: Minutes = 480
    weekly_reconciliation_enabled: bool = True

    def __post_init__(self) -> None:
        """Validate policy invariants."""
        for name in (
            "tolerance_minutes",
            "daily_limit_minutes",
            "weekly_limit_minutes",
            "monthly_limit_minutes",
            "annual_limit_minutes",
            "rounding_increment_minutes",
            "deficit_grace_minutes",
            "excess_grace_minutes",
            "max_positive_minutes",
            "max_negative_minutes",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        if self.full_time_weekly_hours <= 0:
            raise ValueError("full_time_weekly_hours must be positive")

    def snapshot(self) -> dict[str, Any]:
        """Frozen JSON copy stored on each candidate for audit."""
        data = asdict(self)
        return {k: (v.value if isinstance(v, Enum) else v) for k, v in data.items()}


@dataclass(frozen=True)
class EffectiveSchedule:
    """Read-only answer of the external schedule calculator for one day."""

    expected_minutes: Minutes | None
    is_working_day: bool
    source: str | None = None
    exception_type: str | None = None


@dataclass(frozen=True)
class WorkdayInputs:
    """Everything the candidate calculation needs about one employee/day."""

    worked_minutes: Minutes
    summary_expected_minutes: Minutes | None
    schedule: EffectiveSchedule | None = None
    contract_weekly_hours: float | None = None
    resolution_status: str | None = None
    data_quality: str | None = None


@dataclass
class CandidateComputation:
    """Result of the pure candidate calculation."""

    expected_minutes: Minutes | None
    worked_minutes: Minutes
    deviation_minutes_raw: Minutes
    candidate_minutes_raw: Minutes
    candidate_minutes_final: Minutes
    candidate_type: CandidateType
    requires_approval: bool
    skipped: bool = False
    flags: dict[str, Any] = field(default_factory=dict)
