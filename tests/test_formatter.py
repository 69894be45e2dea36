"""
Tests for alert message formatting.
"""
import json
from datetime import datetime, timezone
from decimal import Decimal

from spend_monitor.core.enrichment import EnrichedEvaluation, GateDecision
from spend_monitor.core.evaluation import CostEvaluation, build_alert_context
from spend_monitor.core.fallback import heuristic_analysis
from spend_monitor.core.formatter import (
    DEFAULT_RECOMMENDATIONS,
    build_alert_id,
    build_subject,
    encode_push_payload,
    format_date_range,
    format_long_message,
    format_push_payload,
    format_short_message,
)
from spend_monitor.core.insights import (
    AnomalyFinding,
    AnomalyReport,
    Complexity,
    FindingSeverity,
    PatternAnalysis,
    Priority,
    Recommendation,
    RecommendationCategory,
)


def make_evaluation(total="150.00", breakdown=None):
    """Create a test evaluation for the first half of March 2024."""
    return CostEvaluation.create(
        total_cost=total,
        breakdown=breakdown if breakdown is not None else {
            "Compute": "80.00",
            "Storage": "40.00",
            "Database": "30.00",
        },
        period_start=datetime(2024, 3, 1, tzinfo=timezone.utc),
        period_end=datetime(2024, 3, 15, tzinfo=timezone.utc),
        projected_total="310.00",
        retrieved_at=datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc),
    )


class TestHeaderPieces:

    def test_date_range(self):
        start = datetime(2024, 3, 1, tzinfo=timezone.utc)
        end = datetime(2024, 3, 15, tzinfo=timezone.utc)
        assert format_date_range(start, end) == "Mar 1, 2024 - Mar 15, 2024"

    def test_subject(self):
        context = build_alert_context(make_evaluation(), 100)
        assert build_subject(context) == "Spend Alert: $50.00 over budget"

    def test_alert_id_is_deterministic(self):
        first = build_alert_id(make_evaluation())
        second = build_alert_id(make_evaluation())
        assert first == second
        assert first.startswith("spend-alert-")
        assert len(first) == len("spend-alert-") + 16
        assert build_alert_id(make_evaluation(total="151.00")) != first


class TestLongMessage:
    """Test the email/default message body."""

    def setup_method(self):
        self.evaluation = make_evaluation()
        self.context = build_alert_context(self.evaluation, 100)

    def test_sections_present(self):
        message = format_long_message(self.evaluation, self.context)

        assert message.startswith("🚨 Spend Alert - WARNING")
        assert "💰 Current Spending: $150.00" in message
        assert "🎯 Threshold: $100.00" in message
        assert "📈 Over Budget: $50.00 (50.0%)" in message
        assert "📊 Projected Monthly: $310.00" in message
        assert "📅 Period: Mar 1, 2024 - Mar 15, 2024" in message
        assert "🔝 Top Cost-Driving Services:" in message
        assert "1. Compute: $80.00 (53.3%)" in message
        assert "2. Storage: $40.00 (26.7%)" in message
        assert "3. Database: $30.00 (20.0%)" in message
        assert "💡 Recommendations:" in message
        for item in DEFAULT_RECOMMENDATIONS:
            assert f"• {item}" in message
        assert message.endswith("⏰ Alert generated at: 2024-03-15 12:00:00 UTC")

    def test_critical_severity(self):
        evaluation = make_evaluation(total="160.00")
        message = format_long_message(evaluation, build_alert_context(evaluation, 100))
        assert message.startswith("🚨 Spend Alert - CRITICAL")

    def test_empty_breakdown_omits_top_services(self):
        evaluation = make_evaluation(breakdown={})
        message = format_long_message(evaluation, build_alert_context(evaluation, 100))
        assert "Top Cost-Driving Services" not in message

    def test_explicit_generated_at(self):
        message = format_long_message(
            self.evaluation, self.context,
            generated_at=datetime(2024, 3, 16, 8, 30, 5, tzinfo=timezone.utc),
        )
        assert message.endswith("2024-03-16 08:30:05 UTC")

    def test_formatting_is_idempotent(self):
        assert format_long_message(self.evaluation, self.context) == format_long_message(
            self.evaluation, self.context)

    def test_ai_insights_rendered(self):
        enrichment = EnrichedEvaluation(
            evaluation=self.evaluation,
            analysis=PatternAnalysis(
                summary="Compute drives spend.",
                key_insights=["Compute is 53% of spend"],
                confidence_score=0.8,
                model_used="gpt-4o-mini",
            ),
            anomalies=AnomalyReport(anomalies=[AnomalyFinding(
                service="Compute",
                severity=FindingSeverity.HIGH,
                description="Spend tripled",
                confidence_score=0.9,
            )]),
            recommendations=[Recommendation(
                category=RecommendationCategory.RIGHTSIZING,
                service="Compute",
                description="Rightsize instances",
                estimated_savings=Decimal("20"),
                priority=Priority.HIGH,
                implementation_complexity=Complexity.MEDIUM,
            )],
            fallback_used=False,
            decision=GateDecision.INVOKED,
        )

        message = format_long_message(self.evaluation, self.context, enrichment)

        assert "🤖 AI Insights (gpt-4o-mini):" in message
        assert "• Compute is 53% of spend" in message
        assert "⚠️ Anomalies Detected:" in message
        assert "• Compute (HIGH): Spend tripled" in message
        assert "🛠 Optimization Opportunities:" in message
        assert "• Rightsize instances (est. savings $20.00)" in message
        assert message.index("🤖 AI Insights") < message.index("💡 Recommendations:")

    def test_fallback_insights_labelled_as_basic(self):
        enrichment = EnrichedEvaluation(
            evaluation=self.evaluation,
            analysis=heuristic_analysis(self.evaluation),
            anomalies=AnomalyReport(),
            recommendations=[],
            fallback_used=True,
            decision=GateDecision.BUDGET_EXHAUSTED,
        )

        message = format_long_message(self.evaluation, self.context, enrichment)

        assert "📋 Spending Insights (basic analysis):" in message
        assert "AI Insights" not in message
        assert "Anomalies Detected" not in message


class TestShortMessage:

    def test_short_message(self):
        evaluation = make_evaluation()
        message = format_short_message(evaluation, build_alert_context(evaluation, 100))
        assert message == (
            "Spend Alert: $150.00 spent (over $100.00 threshold by $50.00). "
            "Top service: Compute ($80.00) Projected monthly: $310.00"
        )

    def test_short_message_without_categories(self):
        evaluation = make_evaluation(breakdown={})
        message = format_short_message(evaluation, build_alert_context(evaluation, 100))
        assert "Top service" not in message


class TestPushPayload:
    """Test the push notification payload."""

    def test_warning_payload(self):
        evaluation = make_evaluation()
        payload = format_push_payload(evaluation, build_alert_context(evaluation, 100))

        aps = payload["aps"]
        assert aps["alert"]["title"] == "Spend Alert"
        assert aps["alert"]["body"] == "$150.00 spent - $50.00 over budget"
        assert aps["alert"]["subtitle"] == "Budget Threshold Exceeded"
        assert aps["badge"] == 1
        assert aps["sound"] == "default"
        assert aps["content-available"] == 1
        assert payload["customData"] == {
            "spendAmount": 150.0,
            "threshold": 100.0,
            "exceedAmount": 50.0,
            "topService": "Compute",
            "alertId": build_alert_id(evaluation),
        }

    def test_critical_payload(self):
        evaluation = make_evaluation(total="160.00")
        payload = format_push_payload(evaluation, build_alert_context(evaluation, 100), alert_id="fixed")
        assert payload["aps"]["sound"] == "critical-alert.caf"
        assert payload["aps"]["alert"]["subtitle"] == "Critical Budget Exceeded"
        assert payload["customData"]["alertId"] == "fixed"

    def test_unknown_top_service(self):
        evaluation = make_evaluation(breakdown={})
        payload = format_push_payload(evaluation, build_alert_context(evaluation, 100))
        assert payload["customData"]["topService"] == "Unknown"

    def test_encoding_is_stable_json(self):
        evaluation = make_evaluation()
        payload = format_push_payload(evaluation, build_alert_context(evaluation, 100))
        encoded = encode_push_payload(payload)
        assert json.loads(encoded) == payload
        assert encoded == encode_push_payload(format_push_payload(
            evaluation, build_alert_context(evaluation, 100)))
