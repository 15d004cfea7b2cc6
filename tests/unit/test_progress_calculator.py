"""Tests for the progress calculator."""
from datetime import date, datetime

import pytest

from app.services import progress_calculator


class TestPercentage:
    """Tests for percentage calculation."""

    def test_percentage_of_target(self):
        assert progress_calculator.percentage(600, 1000) == 60.0

    def test_percentage_reports_overshoot(self):
        assert progress_calculator.percentage(1050, 1000) == 105.0

    def test_percentage_floored_at_zero(self):
        assert progress_calculator.percentage(-50, 1000) == 0.0

    def test_percentage_rounded_for_display(self):
        assert progress_calculator.percentage(1, 3) == 33.33


class TestFold:
    """Tests for folding the ledger."""

    def test_fold_empty_ledger(self):
        result = progress_calculator.fold([], 1000)

        assert result.current_value == 0
        assert result.percentage == 0.0
        assert result.sequence == 0
        assert result.contributors_summary == []

    def test_fold_sums_signed_amounts(self, make_entries):
        entries = make_entries([
            {"action_type": "contribution", "amount": 500},
            {"action_type": "milestone_achieved", "amount": 0, "milestone_id": "m1"},
            {"action_type": "refund", "amount": -200},
            {"action_type": "manual_adjustment", "amount": 50},
        ])

        result = progress_calculator.fold(entries, 1000)

        assert result.current_value == 350
        assert result.percentage == 35.0
        assert result.sequence == 4

    def test_fold_is_deterministic(self, make_entries):
        entries = make_entries([
            {"action_type": "contribution", "amount": 125, "user_id": "a"},
            {"action_type": "contribution", "amount": 375, "user_id": "b"},
        ])

        assert progress_calculator.fold(entries, 1000) == progress_calculator.fold(entries, 1000)

    def test_fold_matches_head_value(self, make_entries):
        entries = make_entries([
            {"action_type": "contribution", "amount": 700},
            {"action_type": "refund", "amount": -100},
            {"action_type": "contribution", "amount": 450},
        ])

        result = progress_calculator.fold(entries, 1000)

        assert result.current_value == entries[-1].new_value == 1050
        assert result.percentage == 105.0

    def test_fold_rejects_out_of_order_entries(self, make_entries):
        entries = make_entries([
            {"action_type": "contribution", "amount": 100},
            {"action_type": "contribution", "amount": 200},
        ])

        with pytest.raises(ValueError, match="out of order"):
            progress_calculator.fold(list(reversed(entries)), 1000)


class TestContributors:
    """Tests for contributor attribution."""

    def test_contributors_sorted_by_total(self, make_entries):
        entries = make_entries([
            {"action_type": "contribution", "amount": 100, "user_id": "alice"},
            {"action_type": "contribution", "amount": 300, "user_id": "bob"},
            {"action_type": "contribution", "amount": 100, "user_id": "alice"},
        ])

        summary = progress_calculator.summarize_contributors(entries)

        assert [s.user_id for s in summary] == ["bob", "alice"]
        assert summary[0].total_contributed == 300
        assert summary[0].percentage_of_total == 60.0
        assert summary[1].total_contributed == 200
        assert summary[1].contribution_count == 2
        assert summary[1].percentage_of_total == 40.0

    def test_refund_reduces_contributor_total(self, make_entries):
        entries = make_entries([
            {"action_type": "contribution", "amount": 500, "user_id": "alice"},
            {"action_type": "refund", "amount": -200, "user_id": "alice"},
        ])

        summary = progress_calculator.summarize_contributors(entries)

        assert summary[0].total_contributed == 300
        assert summary[0].contribution_count == 1

    def test_adjustments_and_engine_entries_not_attributed(self, make_entries):
        entries = make_entries([
            {"action_type": "contribution", "amount": 400, "user_id": "alice"},
            {"action_type": "manual_adjustment", "amount": 100, "user_id": "admin"},
            {"action_type": "milestone_achieved", "amount": 0, "user_id": "alice", "milestone_id": "m1"},
        ])

        summary = progress_calculator.summarize_contributors(entries)

        assert [s.user_id for s in summary] == ["alice"]
        assert summary[0].percentage_of_total == 100.0


class TestLedgerQueries:
    """Tests for milestone and completion lookups."""

    def test_achieved_milestones_keeps_first_record(self, make_entries):
        entries = make_entries([
            {"action_type": "contribution", "amount": 300},
            {"action_type": "milestone_achieved", "milestone_id": "m1"},
            {"action_type": "milestone_achieved", "milestone_id": "m1"},
        ])

        achieved = progress_calculator.achieved_milestones(entries)

        assert list(achieved) == ["m1"]
        assert achieved["m1"] == entries[1].created_at

    def test_completion_entry(self, make_entries):
        entries = make_entries([
            {"action_type": "contribution", "amount": 1000},
            {"action_type": "goal_completed"},
        ])

        assert progress_calculator.completion_entry(entries) is entries[1]
        assert progress_calculator.completion_entry(entries[:1]) is None


class TestHistory:
    """Tests for the per-day history series."""

    def test_history_groups_by_day(self, make_entries):
        entries = make_entries([
            {"action_type": "contribution", "amount": 200, "created_at": datetime(2026, 3, 1, 9)},
            {"action_type": "contribution", "amount": 100, "created_at": datetime(2026, 3, 1, 18)},
            {"action_type": "milestone_achieved", "milestone_id": "m1", "created_at": datetime(2026, 3, 1, 18)},
            {"action_type": "refund", "amount": -50, "created_at": datetime(2026, 3, 3, 10)},
        ])

        points = progress_calculator.history(entries, 1000)

        assert [p.date for p in points] == [date(2026, 3, 1), date(2026, 3, 3)]
        assert points[0].value == 300
        assert points[0].percentage == 30.0
        assert points[0].contributions == 2
        assert points[0].milestones_achieved == 1
        assert points[1].value == 250
        assert points[1].contributions == 0

    def test_history_date_range_keeps_running_totals(self, make_entries):
        entries = make_entries([
            {"action_type": "contribution", "amount": 200, "created_at": datetime(2026, 3, 1)},
            {"action_type": "contribution", "amount": 300, "created_at": datetime(2026, 3, 5)},
        ])

        points = progress_calculator.history(entries, 1000, start_date=date(2026, 3, 2))

        assert len(points) == 1
        assert points[0].value == 500


class TestPeriodAnalytics:
    """Tests for trailing-period analytics."""

    NOW = datetime(2026, 3, 1, 12, 0, 0)

    def test_month_analytics(self, make_entries):
        from app.models.progress import AnalyticsPeriod, EtaEstimate, TrendDirection

        entries = make_entries([
            {"action_type": "contribution", "amount": 100, "created_at": datetime(2026, 1, 10)},
            {"action_type": "contribution", "amount": 100, "created_at": datetime(2026, 2, 5)},
            {"action_type": "refund", "amount": -50, "created_at": datetime(2026, 2, 10)},
            {"action_type": "milestone_achieved", "milestone_id": "m1", "created_at": datetime(2026, 2, 20)},
            {"action_type": "contribution", "amount": 300, "user_id": "user2", "created_at": datetime(2026, 2, 25)},
            {"action_type": "contribution", "amount": 100, "created_at": datetime(2026, 2, 26)},
        ])
        eta = EtaEstimate(estimated_completion_date=date(2026, 4, 1), confidence=0.5)

        analytics = progress_calculator.period_analytics(
            "goal1", entries, 1000, 2, AnalyticsPeriod.MONTH, self.NOW, eta
        )

        # Only the three contributions inside the last 30 days count
        assert analytics.total_contributions == 500
        assert analytics.contribution_count == 3
        assert analytics.average_daily_contribution == 16.67
        assert analytics.contribution_frequency == 0.7
        assert analytics.milestone_achievement_rate == 0.5
        assert analytics.completion_velocity == 1.67
        assert [(c.user_id, c.total_contributed) for c in analytics.top_contributors] == [
            ("user2", 300),
            ("user1", 200),
        ]
        assert analytics.trend_analysis.direction == TrendDirection.INCREASING
        assert analytics.trend_analysis.confidence == 0.5
        assert analytics.trend_analysis.predicted_completion_date == date(2026, 4, 1)

    def test_goal_without_milestones_or_activity(self):
        from app.models.progress import AnalyticsPeriod, EtaEstimate, TrendDirection

        analytics = progress_calculator.period_analytics(
            "goal1", [], 1000, 0, AnalyticsPeriod.YEAR, self.NOW, EtaEstimate()
        )

        assert analytics.total_contributions == 0
        assert analytics.milestone_achievement_rate == 0.0
        assert analytics.trend_analysis.direction == TrendDirection.STABLE

    @pytest.mark.parametrize(
        "first_half,second_half,expected",
        [(100, 150, "increasing"), (100, 50, "decreasing"), (100, 95, "stable"), (0, 0, "stable")],
    )
    def test_trend_direction(self, first_half, second_half, expected):
        assert progress_calculator.trend_direction(first_half, second_half).value == expected
