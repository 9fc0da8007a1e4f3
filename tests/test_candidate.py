"""Tests for the daily candidate calculation."""

from overtime_engine.calculators.candidate import (
    NO_EXPECTED_MINUTES,
    calculate_candidate,
    classify_candidate,
    needs_review,
)
from overtime_engine.calculators.types import (
    ApprovalMode,
    CandidateType,
    EffectiveSchedule,
    NonWorkingDayPolicy,
    OvertimePolicy,
    WorkdayInputs,
)

NO_APPROVAL = OvertimePolicy(approval_mode=ApprovalMode.NONE)


class TestCalculateCandidate:
    """Pure candidate computation."""

    def test_excess_over_tolerance(self):
        """500 worked vs 480 expected with tolerance 15 gives +20 EXTRA."""
        policy = OvertimePolicy(tolerance_minutes=15, rounding_increment_minutes=5)
        result = calculate_candidate(
            WorkdayInputs(worked_minutes=500, summary_expected_minutes=480), policy
        )
        assert result.deviation_minutes_raw == 20
        assert result.candidate_minutes_final == 20
        assert result.candidate_type == CandidateType.EXTRA
        assert result.skipped is False

    def test_deficit_needs_no_approval(self):
        policy = OvertimePolicy(deficit_grace_minutes=10, rounding_increment_minutes=5)
        result = calculate_candidate(
            WorkdayInputs(worked_minutes=430, summary_expected_minutes=480), policy
        )
        assert result.candidate_minutes_final == -50
        assert result.candidate_type == CandidateType.DEFICIT
        assert result.requires_approval is False

    def test_within_tolerance_is_zero(self):
        result = calculate_candidate(
            WorkdayInputs(worked_minutes=490, summary_expected_minutes=480), OvertimePolicy()
        )
        assert result.candidate_minutes_final == 0
        assert result.requires_approval is False

    def test_summary_expected_wins_over_schedule(self):
        schedule = EffectiveSchedule(expected_minutes=240, is_working_day=True, source="TEMPLATE")
        result = calculate_candidate(
            WorkdayInputs(worked_minutes=500, summary_expected_minutes=480, schedule=schedule),
            NO_APPROVAL,
        )
        assert result.expected_minutes == 480

    def test_schedule_fills_missing_expected(self):
        schedule = EffectiveSchedule(expected_minutes=240, is_working_day=True, source="TEMPLATE")
        result = calculate_candidate(
            WorkdayInputs(worked_minutes=300, summary_expected_minutes=None, schedule=schedule),
            NO_APPROVAL,
        )
        assert result.expected_minutes == 240
        assert result.candidate_minutes_final == 60
        assert result.flags["scheduleSource"] == "TEMPLATE"

    def test_unknown_expected_is_skipped(self):
        result = calculate_candidate(
            WorkdayInputs(worked_minutes=300, summary_expected_minutes=None), NO_APPROVAL
        )
        assert result.skipped is True
        assert result.candidate_minutes_final == 0
        assert result.flags == {"reason": NO_EXPECTED_MINUTES}

    def test_non_working_day_counts_all_worked_time(self):
        policy = OvertimePolicy(
            approval_mode=ApprovalMode.NONE,
            non_working_day_policy=NonWorkingDayPolicy.REQUIRE_APPROVAL,
        )
        schedule = EffectiveSchedule(expected_minutes=0, is_working_day=False, source="HOLIDAY")
        result = calculate_candidate(
            WorkdayInputs(worked_minutes=90, summary_expected_minutes=0, schedule=schedule), policy
        )
        assert result.candidate_minutes_raw == 90
        assert result.candidate_minutes_final == 90
        assert result.candidate_type == CandidateType.NON_WORKDAY
        assert result.requires_approval is True
        assert result.flags["isNonWorkingDay"] is True

    def test_non_working_day_auto_allowed(self):
        policy = OvertimePolicy(
            approval_mode=ApprovalMode.NONE,
            non_working_day_policy=NonWorkingDayPolicy.AUTO_ALLOW,
        )
        schedule = EffectiveSchedule(expected_minutes=0, is_working_day=False)
        result = calculate_candidate(
            WorkdayInputs(worked_minutes=90, summary_expected_minutes=0, schedule=schedule), policy
        )
        assert result.candidate_type == CandidateType.NON_WORKDAY
        assert result.requires_approval is False

    def test_absence_is_non_working(self):
        schedule = EffectiveSchedule(expected_minutes=480, is_working_day=True, source="ABSENCE")
        result = calculate_candidate(
            WorkdayInputs(worked_minutes=120, summary_expected_minutes=480, schedule=schedule),
            NO_APPROVAL,
        )
        assert result.flags["isAbsence"] is True
        assert result.candidate_type == CandidateType.NON_WORKDAY
        assert result.candidate_minutes_final == 120

    def test_part_time_excess_is_complementary(self):
        result = calculate_candidate(
            WorkdayInputs(
                worked_minutes=300, summary_expected_minutes=240, contract_weekly_hours=20
            ),
            NO_APPROVAL,
        )
        assert result.candidate_type == CandidateType.COMPLEMENTARY
        assert result.flags["isPartTime"] is True

    def test_missing_contract_hours_is_full_time(self):
        result = calculate_candidate(
            WorkdayInputs(worked_minutes=540, summary_expected_minutes=480), NO_APPROVAL
        )
        assert result.candidate_type == CandidateType.EXTRA
        assert result.flags["isPartTime"] is False

    def test_approval_mode_forces_approval_of_excess(self):
        policy = OvertimePolicy(approval_mode=ApprovalMode.POST)
        result = calculate_candidate(
            WorkdayInputs(worked_minutes=540, summary_expected_minutes=480), policy
        )
        assert result.requires_approval is True

    def test_untrusted_clock_data_requires_review(self):
        result = calculate_candidate(
            WorkdayInputs(
                worked_minutes=540,
                summary_expected_minutes=480,
                resolution_status="AUTO_CLOSED_SAFETY",
            ),
            NO_APPROVAL,
        )
        assert result.requires_approval is True
        assert result.flags["requiresReview"] is True

    def test_untrusted_deficit_still_needs_no_approval(self):
        result = calculate_candidate(
            WorkdayInputs(
                worked_minutes=400, summary_expected_minutes=480, data_quality="ESTIMATED"
            ),
            NO_APPROVAL,
        )
        assert result.candidate_type == CandidateType.DEFICIT
        assert result.requires_approval is False

    def test_daily_limit_flag(self):
        policy = OvertimePolicy(approval_mode=ApprovalMode.NONE, daily_limit_minutes=60)
        result = calculate_candidate(
            WorkdayInputs(worked_minutes=600, summary_expected_minutes=480), policy
        )
        assert result.candidate_minutes_final == 120
        assert result.flags["exceedsDailyLimit"] is True


class TestClassification:
    """Candidate type and review helpers."""

    def test_negative_is_always_deficit(self):
        assert (
            classify_candidate(-30, is_non_working_day=True, is_part_time=True)
            == CandidateType.DEFICIT
        )

    def test_non_working_day_beats_part_time(self):
        assert (
            classify_candidate(30, is_non_working_day=True, is_part_time=True)
            == CandidateType.NON_WORKDAY
        )

    def test_needs_review(self):
        assert needs_review(None, None) is False
        assert needs_review("OK", "CONFIRMED") is False
        assert needs_review("UNRESOLVED_MISSING_CLOCK_OUT", "CONFIRMED") is True
        assert needs_review(None, "ESTIMATED") is True
