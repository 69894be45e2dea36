"""
Alert formatting.

Pure functions turning a cost evaluation and its alert context into the
channel payloads: long-form (email/default), short-form (SMS) and the push
notification payload. Output depends only on the inputs, so formatting the
same evaluation twice yields identical payloads.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .cache import fingerprint
from .evaluation import AlertContext, CostEvaluation, Severity

ALERT_TITLE = "Spend Alert"
ALERT_ID_PREFIX = "spend-alert-"
CRITICAL_SOUND = "critical-alert.caf"
DEFAULT_SOUND = "default"
MAX_INSIGHT_ITEMS = 5

DEFAULT_RECOMMENDATIONS = (
    "Review your cloud resources and usage patterns",
    "Consider scaling down or terminating unused resources",
    "Check for any unexpected charges or services",
    "Set up additional alarms for specific services",
)


def _money(amount: Decimal) -> str:
    return f"${amount:.2f}"


def _format_date(value: datetime) -> str:
    return f"{value:%b} {value.day}, {value.year}"


def format_date_range(start: datetime, end: datetime) -> str:
    """e.g. "Mar 1, 2024 - Mar 15, 2024"."""
    return f"{_format_date(start)} - {_format_date(end)}"


def build_alert_id(evaluation: CostEvaluation) -> str:
    """Deterministic alert identifier derived from the evaluation's fingerprint."""
    return f"{ALERT_ID_PREFIX}{fingerprint(evaluation)[:16]}"


def build_subject(context: AlertContext) -> str:
    return f"{ALERT_TITLE}: {_money(context.exceed_amount)} over budget"


def _insight_lines(enrichment: Any) -> List[str]:
    lines: List[str] = []
    analysis = getattr(enrichment, "analysis", None)
    anomalies = getattr(enrichment, "anomalies", None)
    recommendations = getattr(enrichment, "recommendations", None) or []

    if analysis is not None:
        if getattr(enrichment, "fallback_used", True):
            lines.append("📋 Spending Insights (basic analysis):")
        else:
            lines.append(f"🤖 AI Insights ({analysis.model_used}):")
        lines.append(analysis.summary)
        lines.extend(f"• {insight}" for insight in analysis.key_insights[:MAX_INSIGHT_ITEMS])
        lines.append("")

    if anomalies is not None and anomalies.anomalies_detected:
        lines.append("⚠️ Anomalies Detected:")
        for finding in anomalies.anomalies[:MAX_INSIGHT_ITEMS]:
            lines.append(f"• {finding.service} ({finding.severity.value}): {finding.description}")
        lines.append("")

    if recommendations:
        lines.append("🛠 Optimization Opportunities:")
        for recommendation in recommendations[:MAX_INSIGHT_ITEMS]:
            savings = ""
            if recommendation.estimated_savings > 0:
                savings = f" (est. savings {_money(recommendation.estimated_savings)})"
            lines.append(f"• {recommendation.description}{savings}")
        lines.append("")

    return lines


def format_long_message(
    evaluation: CostEvaluation,
    context: AlertContext,
    enrichment: Any = None,
    generated_at: Optional[datetime] = None,
) -> str:
    """Long-form alert for email and the default channel part.

    Args:
        evaluation: Current period's cost evaluation
        context: Alert context derived from the evaluation
        enrichment: Optional EnrichedEvaluation whose insights are appended
        generated_at: Timestamp printed in the footer; defaults to the
            evaluation's retrieval time

    Returns:
        Multi-line message text
    """
    generated_at = generated_at or evaluation.retrieved_at
    lines = [
        f"🚨 {ALERT_TITLE} - {context.severity.value}",
        "",
        "Your cloud spending has exceeded the configured threshold.",
        "",
        f"💰 Current Spending: {_money(evaluation.total_cost)}",
        f"🎯 Threshold: {_money(context.threshold)}",
        f"📈 Over Budget: {_money(context.exceed_amount)} ({context.percentage_over:.1f}%)",
        f"📊 Projected Monthly: {_money(evaluation.projected_total)}",
        "",
        f"📅 Period: {format_date_range(evaluation.period_start, evaluation.period_end)}",
        "",
    ]

    if context.top_categories:
        lines.append("🔝 Top Cost-Driving Services:")
        for index, category in enumerate(context.top_categories, start=1):
            lines.append(f"{index}. {category.name}: {_money(category.amount)} ({category.percentage:.1f}%)")
        lines.append("")

    if enrichment is not None:
        lines.extend(_insight_lines(enrichment))

    lines.append("💡 Recommendations:")
    lines.extend(f"• {item}" for item in DEFAULT_RECOMMENDATIONS)
    lines.append("")
    lines.append(f"⏰ Alert generated at: {generated_at:%Y-%m-%d %H:%M:%S} UTC")

    return "\n".join(lines)


def format_short_message(evaluation: CostEvaluation, context: AlertContext) -> str:
    """Single-line alert for SMS."""
    top_text = ""
    if context.top_categories:
        top = context.top_categories[0]
        top_text = f" Top service: {top.name} ({_money(top.amount)})"

    return (
        f"{ALERT_TITLE}: {_money(evaluation.total_cost)} spent "
        f"(over {_money(context.threshold)} threshold by {_money(context.exceed_amount)})."
        f"{top_text} Projected monthly: {_money(evaluation.projected_total)}"
    )


def format_push_payload(
    evaluation: CostEvaluation,
    context: AlertContext,
    alert_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Push notification payload (aps dictionary plus custom data)."""
    critical = context.severity == Severity.CRITICAL
    top = context.top_categories[0].name if context.top_categories else "Unknown"

    return {
        "aps": {
            "alert": {
                "title": ALERT_TITLE,
                "body": f"{_money(evaluation.total_cost)} spent - {_money(context.exceed_amount)} over budget",
                "subtitle": "Critical Budget Exceeded" if critical else "Budget Threshold Exceeded",
            },
            "badge": 1,
            "sound": CRITICAL_SOUND if critical else DEFAULT_SOUND,
            "content-available": 1,
        },
        "customData": {
            "spendAmount": float(evaluation.total_cost),
            "threshold": float(context.threshold),
            "exceedAmount": float(context.exceed_amount),
            "topService": top,
            "alertId": alert_id or build_alert_id(evaluation),
        },
    }


def encode_push_payload(payload: Dict[str, Any]) -> str:
    """Push payloads travel as a JSON string inside the multi-part message."""
    return json.dumps(payload, sort_keys=True, ensure_ascii=False)
