"""Overtime calculation pipeline."""

from overtime_engine.calculators.candidate import CandidateCalculator, calculate_candidate
from overtime_engine.calculators.normalizer import normalize_deviation, round_to_increment
from overtime_engine.calculators.policy_resolver import (
    DEFAULT_OVERTIME_POLICY,
    PolicyResolver,
    resolve_policy,
)

__all__ = [
    "CandidateCalculator",
    "DEFAULT_OVERTIME_POLICY",
    "PolicyResolver",
    "calculate_candidate",
    "normalize_deviation",
    "resolve_policy",
    "round_to_increment",
]
