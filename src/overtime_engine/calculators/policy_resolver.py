"""Organization overtime policy resolution."""

from __future__ import annotations

from enum import Enum
from typing import TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from overtime_engine.calculators.types import (
    ApprovalMode,
    CalculationMode,
    CompensationType,
    NonWorkingDayPolicy,
    OvertimePolicy,
)
from overtime_engine.models import TimeBankSettings

DEFAULT_OVERTIME_POLICY = OvertimePolicy()

E = TypeVar("E", bound=Enum)


def _enum_or_default(enum_cls: type[E], value: str | None, default: E) -> E:
    if value is None:
        return default
    try:
        return enum_cls(value)
    except ValueError:
        return default


def _minutes_or_default(value: int | None, default: int) -> int:
    if value is None or value < 0:
        return default
    return int(value)


def resolve_policy(settings: TimeBankSettings | None) -> OvertimePolicy:
    """Merge an organization's settings row with the defaults.

    Every field falls back independently; the result never holds None.
    """
    defaults = DEFAULT_OVERTIME_POLICY
    if settings is None:
        return defaults

    weekly_hours = defaults.full_time_weekly_hours
    if settings.overtime_full_time_weekly_hours is not None:
        candidate_hours = float(settings.overtime_full_time_weekly_hours)
        if candidate_hours > 0:
            weekly_hours = candidate_hours

    reconciliation_enabled = settings.overtime_weekly_reconciliation_enabled
    return OvertimePolicy(
        calculation_mode=_enum_or_default(
            CalculationMode, settings.overtime_calculation_mode, defaults.calculation_mode
        ),
        approval_mode=_enum_or_default(
            ApprovalMode, settings.overtime_approval_mode, defaults.approval_mode
        ),
        compensation_type=_enum_or_default(
            CompensationType, settings.overtime_compensation_type, defaults.compensation_type
        ),
        tolerance_minutes=_minutes_or_default(
            settings.overtime_tolerance_minutes, defaults.tolerance_minutes
        ),
        daily_limit_minutes=_minutes_or_default(
            settings.overtime_daily_limit_minutes, defaults.daily_limit_minutes
        ),
        weekly_limit_minutes=_minutes_or_default(
            settings.overtime_weekly_limit_minutes, defaults.weekly_limit_minutes
        ),
        monthly_limit_minutes=_minutes_or_default(
            settings.overtime_monthly_limit_minutes, defaults.monthly_limit_minutes
        ),
        annual_limit_minutes=_minutes_or_default(
            settings.overtime_annual_limit_minutes, defaults.annual_limit_minutes
        ),
        full_time_weekly_hours=weekly_hours,
        non_working_day_policy=_enum_or_default(
            NonWorkingDayPolicy,
            settings.overtime_non_working_day_policy,
            defaults.non_working_day_policy,
        ),
        rounding_increment_minutes=_minutes_or_default(
            settings.rounding_increment_minutes, defaults.rounding_increment_minutes
        ),
        deficit_grace_minutes=_minutes_or_default(
            settings.deficit_grace_minutes, defaults.deficit_grace_minutes
        ),
        excess_grace_minutes=_minutes_or_default(
            settings.excess_grace_minutes, defaults.excess_grace_minutes
        ),
        max_positive_minutes=_minutes_or_default(
            settings.max_positive_minutes, defaults.max_positive_minutes
        ),
        max_negative_minutes=_minutes_or_default(
            settings.max_negative_minutes, defaults.max_negative_minutes
        ),
        weekly_reconciliation_enabled=(
            defaults.weekly_reconciliation_enabled
            if reconciliation_enabled is None
            else bool(reconciliation_enabled)
        ),
    )


class PolicyResolver:
    """Resolves the immutable OvertimePolicy of an organization."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def resolve(self, org_id: UUID) -> OvertimePolicy:
        """Load the organization's settings row (if any) and merge defaults."""
        result = await self.session.execute(
            select(TimeBankSettings).where(TimeBankSettings.org_id == org_id)
        )
        return resolve_policy(result.scalar_one_or_none())
