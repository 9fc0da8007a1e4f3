"""Deviation normalization: rounding and grace bands.

This is the only place rounding and grace logic lives. The daily candidate
pipeline and the weekly reconciler both call it, so a week normalized as a
whole and its days normalized one by one follow identical rules.
"""

from __future__ import annotations

import math

from overtime_engine.calculators.types import Minutes, OvertimePolicy


def round_to_increment(value: float, increment: int) -> Minutes:
    """Round half up to the nearest multiple of increment (minimum 1)."""
    step = max(1, increment)
    return int(math.floor(value / step + 0.5)) * step


def normalize_deviation(
    raw_minutes: float,
    policy: OvertimePolicy,
    *,
    use_excess_grace: bool = False,
) -> Minutes:
    """Turn a raw worked-minus-expected deviation into policy-adjusted minutes.

    Args:
        raw_minutes: Signed deviation in minutes
        policy: Resolved overtime policy
        use_excess_grace: Use excess_grace_minutes instead of
            tolerance_minutes as the positive band

    Returns:
        0, or a signed multiple of the policy rounding increment
    """
    if raw_minutes is None or not math.isfinite(raw_minutes):
        return 0

    rounded = round_to_increment(raw_minutes, policy.rounding_increment_minutes)

    positive_band = policy.excess_grace_minutes if use_excess_grace else policy.tolerance_minutes
    if 0 < rounded <= positive_band:
        return 0

    if rounded < 0 and abs(rounded) <= policy.deficit_grace_minutes:
        return 0

    return int(rounded)
