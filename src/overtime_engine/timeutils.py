"""Organization-local calendar helpers."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


def resolve_timezone(name: str | None, default: str = "UTC") -> ZoneInfo:
    """Zone for an organization; unknown names fall back to the default."""
    for candidate in (name, default, "UTC"):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r, falling back", candidate)
    return ZoneInfo("UTC")


def local_now(now: datetime, tz: ZoneInfo) -> datetime:
    """Convert an aware UTC instant into the zone."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(tz)


def local_day_start_utc(day: date, tz: ZoneInfo) -> datetime:
    """UTC instant at which the local day starts."""
    return datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)


def week_start(day: date) -> date:
    """Monday of the ISO week containing day."""
    return day - timedelta(days=day.weekday())


def previous_week_start(day: date) -> date:
    """Monday of the ISO week before the one containing day."""
    return week_start(day) - timedelta(days=7)
