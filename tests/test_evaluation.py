"""
Tests for cost evaluation and alert context derivation.
"""
import pytest
from datetime import datetime, timezone
from decimal import Decimal

from spend_monitor.core.errors import ValidationError
from spend_monitor.core.evaluation import (
    CostEvaluation,
    Severity,
    build_alert_context,
    determine_severity,
    exceeds_threshold,
    project_period_total,
    rank_top_categories,
    to_decimal,
)


def make_evaluation(total="150.00", breakdown=None, projected=None):
    """Create a test evaluation for March 2024."""
    return CostEvaluation.create(
        total_cost=total,
        breakdown=breakdown if breakdown is not None else {
            "Compute": "80.00",
            "Storage": "40.00",
            "Database": "30.00",
        },
        period_start=datetime(2024, 3, 1, tzinfo=timezone.utc),
        period_end=datetime(2024, 3, 15, tzinfo=timezone.utc),
        projected_total=projected,
        retrieved_at=datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc),
    )


class TestCostEvaluation:
    """Test CostEvaluation construction."""

    def test_create_converts_to_decimal(self):
        evaluation = make_evaluation()
        assert evaluation.total_cost == Decimal("150.00")
        assert evaluation.breakdown["Compute"] == Decimal("80.00")

    def test_projected_defaults_to_total(self):
        assert make_evaluation().projected_total == Decimal("150.00")
        assert make_evaluation(projected="310.00").projected_total == Decimal("310.00")

    def test_negative_total_rejected(self):
        with pytest.raises(ValidationError):
            make_evaluation(total="-1")

    def test_period_end_before_start_rejected(self):
        with pytest.raises(ValidationError):
            CostEvaluation.create(
                total_cost=1,
                breakdown={},
                period_start=datetime(2024, 3, 15, tzinfo=timezone.utc),
                period_end=datetime(2024, 3, 1, tzinfo=timezone.utc),
            )

    def test_float_conversion_has_no_binary_artifacts(self):
        assert to_decimal(0.1) == Decimal("0.1")


class TestThreshold:
    """Test the strictly-greater-than threshold rule."""

    def test_equal_to_threshold_does_not_alert(self):
        assert not exceeds_threshold(make_evaluation(total="100.00"), 100)

    def test_above_threshold_alerts(self):
        assert exceeds_threshold(make_evaluation(total="100.01"), 100)

    def test_below_threshold(self):
        assert not exceeds_threshold(make_evaluation(total="20"), "100")


class TestRanking:
    """Test top-category ranking."""

    def test_sorted_descending_with_percentages(self):
        ranked = rank_top_categories({"A": "10", "B": "60", "C": "30"})
        assert [c.name for c in ranked] == ["B", "C", "A"]
        assert ranked[0].percentage == Decimal("60.00")
        assert ranked[2].percentage == Decimal("10.00")

    def test_limit_applies(self):
        breakdown = {f"S{i}": str(i) for i in range(1, 10)}
        ranked = rank_top_categories(breakdown, limit=5)
        assert len(ranked) == 5
        assert ranked[0].name == "S9"

    def test_min_cost_excludes_before_ranking(self):
        ranked = rank_top_categories({"A": "0.50", "B": "5", "C": "1"}, min_cost="1")
        assert [c.name for c in ranked] == ["B", "C"]

    def test_ties_keep_breakdown_order(self):
        breakdown = {"First": "10", "Second": "10", "Third": "10"}
        first = rank_top_categories(breakdown)
        second = rank_top_categories(breakdown)
        assert [c.name for c in first] == ["First", "Second", "Third"]
        assert first == second

    def test_zero_total_gives_zero_percentages(self):
        ranked = rank_top_categories({"A": "0"})
        assert ranked[0].percentage == Decimal("0.00")

    def test_empty_breakdown(self):
        assert rank_top_categories({}) == []


class TestAlertContext:
    """Test alert context derivation."""

    def test_context_values(self):
        context = build_alert_context(make_evaluation(total="150.00"), 100)
        assert context.threshold == Decimal("100")
        assert context.exceed_amount == Decimal("50.00")
        assert context.percentage_over == Decimal("50")
        assert context.severity == Severity.WARNING
        assert [c.name for c in context.top_categories] == ["Compute", "Storage", "Database"]

    def test_critical_above_fifty_percent(self):
        context = build_alert_context(make_evaluation(total="150.01"), 100)
        assert context.severity == Severity.CRITICAL

    def test_severity_boundary(self):
        assert determine_severity(Decimal("50")) == Severity.WARNING
        assert determine_severity(Decimal("50.0001")) == Severity.CRITICAL

    def test_non_positive_threshold_rejected(self):
        with pytest.raises(ValidationError):
            build_alert_context(make_evaluation(), 0)

    def test_min_category_cost_applied(self):
        context = build_alert_context(make_evaluation(), 100, min_category_cost="35")
        assert [c.name for c in context.top_categories] == ["Compute", "Storage"]


class TestProjection:

    def test_linear_projection(self):
        # 30-day month, 15 days in
        projected = project_period_total("150", datetime(2024, 4, 15, tzinfo=timezone.utc))
        assert projected == Decimal("300.00")

    def test_leap_february(self):
        projected = project_period_total("29", datetime(2024, 2, 1, tzinfo=timezone.utc))
        assert projected == Decimal("841.00")
