"""Tests for deviation normalization."""

import math

import pytest

from overtime_engine.calculators.normalizer import normalize_deviation, round_to_increment
from overtime_engine.calculators.types import OvertimePolicy


class TestRoundToIncrement:
    """Half-up rounding to the policy increment."""

    @pytest.mark.parametrize(
        "value,increment,expected",
        [
            (20, 5, 20),
            (22, 5, 20),
            (22.5, 5, 25),
            (23, 5, 25),
            (-22, 5, -20),
            (-23, 5, -25),
            (7, 1, 7),
            (7, 0, 7),
            (44, 15, 45),
        ],
    )
    def test_rounding(self, value, increment, expected):
        assert round_to_increment(value, increment) == expected


class TestNormalizeDeviation:
    """Tolerance and grace bands."""

    def test_excess_above_tolerance_is_kept(self):
        policy = OvertimePolicy(tolerance_minutes=15, rounding_increment_minutes=5)
        assert normalize_deviation(20, policy) == 20

    def test_excess_within_tolerance_is_dropped(self):
        policy = OvertimePolicy(tolerance_minutes=15, rounding_increment_minutes=5)
        assert normalize_deviation(14, policy) == 0
        # Boundary is inclusive
        assert normalize_deviation(15, policy) == 0

    def test_deficit_within_grace_is_dropped(self):
        policy = OvertimePolicy(deficit_grace_minutes=10, rounding_increment_minutes=5)
        assert normalize_deviation(-10, policy) == 0
        assert normalize_deviation(-8, policy) == 0

    def test_deficit_beyond_grace_is_kept(self):
        policy = OvertimePolicy(deficit_grace_minutes=10, rounding_increment_minutes=5)
        assert normalize_deviation(-50, policy) == -50

    def test_excess_grace_band_on_request(self):
        policy = OvertimePolicy(
            tolerance_minutes=5, excess_grace_minutes=30, rounding_increment_minutes=5
        )
        assert normalize_deviation(20, policy) == 20
        assert normalize_deviation(20, policy, use_excess_grace=True) == 0

    def test_result_is_multiple_of_increment(self):
        policy = OvertimePolicy(tolerance_minutes=0, rounding_increment_minutes=15)
        for raw in range(-200, 200, 7):
            assert normalize_deviation(raw, policy) % 15 == 0

    def test_non_finite_input_yields_zero(self):
        policy = OvertimePolicy()
        assert normalize_deviation(math.nan, policy) == 0
        assert normalize_deviation(math.inf, policy) == 0

    def test_deterministic(self):
        policy = OvertimePolicy()
        assert normalize_deviation(137, policy) == normalize_deviation(137, policy)
