"""Organization overtime settings: read with defaults, validated upsert, audit trail."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from overtime_engine.calculators.policy_resolver import DEFAULT_OVERTIME_POLICY, resolve_policy
from overtime_engine.calculators.types import (
    ApprovalMode,
    CalculationMode,
    CompensationType,
    NonWorkingDayPolicy,
    OvertimePolicy,
)
from overtime_engine.models import AuditEvent, TimeBankSettings

logger = logging.getLogger(__name__)

MAX_TOLERANCE_MINUTES = 120
SETTINGS_UPDATED_ACTION = "OVERTIME_SETTINGS_UPDATED"

_defaults = DEFAULT_OVERTIME_POLICY


class SettingsValidationError(Exception):
    """Raised when submitted overtime settings are out of range."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


@dataclass(frozen=True)
class OvertimeSettings:
    """The overtime settings an administrator can edit."""

    calculation_mode: CalculationMode = _defaults.calculation_mode
    approval_mode: ApprovalMode = _defaults.approval_mode
    compensation_type: CompensationType = _defaults.compensation_type
    tolerance_minutes: int = _defaults.tolerance_minutes
    daily_limit_minutes: int = _defaults.daily_limit_minutes
    weekly_limit_minutes: int = _defaults.weekly_limit_minutes
    monthly_limit_minutes: int = _defaults.monthly_limit_minutes
    annual_limit_minutes: int = _defaults.annual_limit_minutes
    full_time_weekly_hours: float = _defaults.full_time_weekly_hours
    non_working_day_policy: NonWorkingDayPolicy = _defaults.non_working_day_policy
    weekly_reconciliation_enabled: bool = _defaults.weekly_reconciliation_enabled

    @classmethod
    def from_policy(cls, policy: OvertimePolicy) -> OvertimeSettings:
        return cls(
            calculation_mode=policy.calculation_mode,
            approval_mode=policy.approval_mode,
            compensation_type=policy.compensation_type,
            tolerance_minutes=policy.tolerance_minutes,
            daily_limit_minutes=policy.daily_limit_minutes,
            weekly_limit_minutes=policy.weekly_limit_minutes,
            monthly_limit_minutes=policy.monthly_limit_minutes,
            annual_limit_minutes=policy.annual_limit_minutes,
            full_time_weekly_hours=policy.full_time_weekly_hours,
            non_working_day_policy=policy.non_working_day_policy,
            weekly_reconciliation_enabled=policy.weekly_reconciliation_enabled,
        )

    def validate(self) -> None:
        """Check ranges before anything is written.

        Raises:
            SettingsValidationError: On the first field out of range
        """
        if not 0 <= self.tolerance_minutes <= MAX_TOLERANCE_MINUTES:
            raise SettingsValidationError(
                "tolerance_minutes",
                f"Overtime tolerance must be between 0 and {MAX_TOLERANCE_MINUTES} minutes",
            )
        for name, label in (
            ("daily_limit_minutes", "Daily"),
            ("weekly_limit_minutes", "Weekly"),
            ("monthly_limit_minutes", "Monthly"),
            ("annual_limit_minutes", "Annual"),
        ):
            if getattr(self, name) < 0:
                raise SettingsValidationError(name, f"{label} limit cannot be negative")
        if self.full_time_weekly_hours <= 0:
            raise SettingsValidationError(
                "full_time_weekly_hours", "Full-time weekly hours must be greater than 0"
            )

    def to_json(self) -> dict[str, Any]:
        return {k: (v.value if isinstance(v, Enum) else v) for k, v in asdict(self).items()}


class OvertimeSettingsService:
    """Read and update an organization's overtime settings."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_row(self, org_id: UUID) -> TimeBankSettings | None:
        result = await self.session.execute(
            select(TimeBankSettings).where(TimeBankSettings.org_id == org_id)
        )
        return result.scalar_one_or_none()

    async def get_settings(self, org_id: UUID) -> OvertimeSettings:
        """Current settings; every missing or invalid column reads as its default."""
        return OvertimeSettings.from_policy(resolve_policy(await self._get_row(org_id)))

    async def update_settings(
        self,
        org_id: UUID,
        settings: OvertimeSettings,
        actor_user_id: UUID | None = None,
    ) -> OvertimeSettings:
        """Validate and store the settings, then record the change.

        The organization's settings row is created when missing. Time-bank
        columns outside the overtime settings are left untouched.
        """
        settings.validate()

        row = await self._get_row(org_id)
        previous = OvertimeSettings.from_policy(resolve_policy(row))
        if row is None:
            row = TimeBankSettings(org_id=org_id)
            self.session.add(row)

        row.overtime_calculation_mode = settings.calculation_mode.value
        row.overtime_approval_mode = settings.approval_mode.value
        row.overtime_compensation_type = settings.compensation_type.value
        row.overtime_tolerance_minutes = settings.tolerance_minutes
        row.overtime_daily_limit_minutes = settings.daily_limit_minutes
        row.overtime_weekly_limit_minutes = settings.weekly_limit_minutes
        row.overtime_monthly_limit_minutes = settings.monthly_limit_minutes
        row.overtime_annual_limit_minutes = settings.annual_limit_minutes
        row.overtime_full_time_weekly_hours = Decimal(str(settings.full_time_weekly_hours))
        row.overtime_non_working_day_policy = settings.non_working_day_policy.value
        row.overtime_weekly_reconciliation_enabled = settings.weekly_reconciliation_enabled

        self.session.add(
            AuditEvent(
                org_id=org_id,
                actor_user_id=actor_user_id,
                entity_type="TimeBankSettings",
                entity_id=org_id,
                action=SETTINGS_UPDATED_ACTION,
                before_json=previous.to_json(),
                after_json=settings.to_json(),
            )
        )
        await self.session.flush()

        logger.info("Overtime settings of org %s updated by %s", org_id, actor_user_id)
        return settings
