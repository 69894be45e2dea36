"""
Tests for enrichment prompts and response parsing.
"""
from datetime import datetime, timezone
from decimal import Decimal

from spend_monitor.core.evaluation import CostEvaluation
from spend_monitor.core.insights import (
    Complexity,
    FindingSeverity,
    Priority,
    RecommendationCategory,
    parse_enum,
)
from spend_monitor.core.prompts import (
    UNPARSED_ANALYSIS_SUMMARY,
    anomaly_detection_prompt,
    extract_json_object,
    optimization_prompt,
    parse_anomaly_report,
    parse_pattern_analysis,
    parse_recommendations,
    pattern_analysis_prompt,
)


def make_evaluation(total="150.00", breakdown=None):
    return CostEvaluation.create(
        total_cost=total,
        breakdown=breakdown or {"Compute": "90", "Storage": "60"},
        period_start=datetime(2024, 3, 1, tzinfo=timezone.utc),
        period_end=datetime(2024, 3, 15, tzinfo=timezone.utc),
        projected_total="310.00",
    )


class TestPrompts:
    """Test prompt construction."""

    def test_pattern_prompt_contents(self):
        prompt = pattern_analysis_prompt(make_evaluation())
        assert "Current Month-to-Date Cost: $150.00" in prompt
        assert "Projected Monthly Cost: $310.00" in prompt
        assert "Period: 2024-03-01 to 2024-03-15" in prompt
        assert prompt.index("Compute: $90.00") < prompt.index("Storage: $60.00")
        assert '"confidenceScore"' in prompt

    def test_pattern_prompt_limits_categories(self):
        breakdown = {f"Service {i:02d}": str(i) for i in range(1, 13)}
        prompt = pattern_analysis_prompt(make_evaluation(total="78", breakdown=breakdown))
        assert "Service 12: $12.00" in prompt
        assert "Service 03: $3.00" in prompt
        assert "Service 02:" not in prompt
        assert "Service 01:" not in prompt

    def test_anomaly_prompt_with_history(self):
        history = [make_evaluation(total="100"), make_evaluation(total="120")]
        prompt = anomaly_detection_prompt(make_evaluation(), history)
        assert "Historical Data for Comparison:" in prompt
        assert "Period 1: $100.00" in prompt
        assert "Period 2: $120.00" in prompt

    def test_anomaly_prompt_without_history(self):
        prompt = anomaly_detection_prompt(make_evaluation())
        assert "Historical Data" not in prompt
        assert '"anomaliesDetected"' in prompt

    def test_optimization_prompt(self):
        prompt = optimization_prompt(make_evaluation())
        assert "Total Cost: $150.00" in prompt
        assert "RIGHTSIZING/RESERVED_INSTANCES" in prompt


class TestExtractJson:

    def test_object_embedded_in_prose(self):
        assert extract_json_object('Sure! {"a": {"b": 1}} Hope this helps.') == {"a": {"b": 1}}

    def test_non_object_or_garbage(self):
        assert extract_json_object("[1, 2]") is None
        assert extract_json_object("no json here") is None
        assert extract_json_object("{broken") is None
        assert extract_json_object("") is None


class TestParsePatternAnalysis:
    """Test pattern analysis response parsing."""

    def test_valid_response(self):
        text = '{"summary": "Compute dominates", "keyInsights": ["a", "b"], "confidenceScore": 0.8}'
        analysis = parse_pattern_analysis(text, "gpt-4o-mini")
        assert analysis.summary == "Compute dominates"
        assert analysis.key_insights == ["a", "b"]
        assert analysis.confidence_score == 0.8
        assert analysis.model_used == "gpt-4o-mini"

    def test_confidence_clamped(self):
        text = '{"summary": "s", "keyInsights": [], "confidenceScore": 1.7}'
        assert parse_pattern_analysis(text, "m").confidence_score == 1.0

    def test_missing_fields_degrade(self):
        analysis = parse_pattern_analysis('{"summary": "s"}', "gpt-4o-mini")
        assert analysis.summary == UNPARSED_ANALYSIS_SUMMARY
        assert analysis.key_insights == ["Unable to parse AI insights"]
        assert analysis.confidence_score == 0.1
        assert analysis.model_used == "gpt-4o-mini"

    def test_garbage_degrades(self):
        assert parse_pattern_analysis("I cannot help", "m").summary == UNPARSED_ANALYSIS_SUMMARY


class TestParseAnomalyReport:
    """Test anomaly response parsing."""

    def test_entries_parsed_and_malformed_skipped(self):
        text = """{
            "anomaliesDetected": true,
            "anomalies": [
                {"service": "Compute", "severity": "high", "description": "Spike",
                 "confidenceScore": 0.9, "suggestedAction": "Check autoscaling"},
                {"severity": "LOW", "description": "no service"},
                "not an object",
                {"service": "Storage", "severity": "weird"}
            ]
        }"""
        report = parse_anomaly_report(text)

        assert report.anomalies_detected
        assert [a.service for a in report.anomalies] == ["Compute", "Storage"]
        assert report.anomalies[0].severity == FindingSeverity.HIGH
        assert report.anomalies[0].suggested_action == "Check autoscaling"
        assert report.anomalies[1].severity == FindingSeverity.MEDIUM
        assert report.anomalies[1].confidence_score == 0.0

    def test_unparseable_is_empty(self):
        assert not parse_anomaly_report("nothing").anomalies_detected
        assert parse_anomaly_report('{"anomalies": "none"}').anomalies == []


class TestParseRecommendations:
    """Test recommendation response parsing."""

    def test_entries_parsed(self):
        text = """{"recommendations": [
            {"category": "spot_instances", "service": "Compute", "description": "Use spot",
             "estimatedSavings": 100.5, "priority": "HIGH", "implementationComplexity": "EASY"},
            {"category": "UNKNOWN", "service": "Storage", "description": "Tiering",
             "estimatedSavings": "abc"},
            {"service": "Nothing to say"}
        ]}"""
        recommendations = parse_recommendations(text)

        assert len(recommendations) == 2
        first, second = recommendations
        assert first.category == RecommendationCategory.SPOT_INSTANCES
        assert first.estimated_savings == Decimal("100.5")
        assert first.priority == Priority.HIGH
        assert first.implementation_complexity == Complexity.EASY
        assert second.category == RecommendationCategory.OTHER
        assert second.estimated_savings == Decimal("0")
        assert second.priority == Priority.MEDIUM

    def test_negative_savings_clamped(self):
        text = '{"recommendations": [{"description": "d", "estimatedSavings": -5}]}'
        assert parse_recommendations(text)[0].estimated_savings == Decimal("0")

    def test_unparseable_is_empty(self):
        assert parse_recommendations("") == []


class TestParseEnum:

    def test_lookup(self):
        assert parse_enum(Priority, " low ", Priority.MEDIUM) == Priority.LOW
        assert parse_enum(Priority, None, Priority.MEDIUM) == Priority.MEDIUM
        assert parse_enum(Priority, "urgent", Priority.MEDIUM) == Priority.MEDIUM
