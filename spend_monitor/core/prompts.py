"""
Prompts for the enrichment sub-analyses and their response parsers.

Responses are expected to hold a JSON object, possibly wrapped in other text.
Parsers never raise: an unusable response degrades to a placeholder result.
"""

import json
import math
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence

from structlog import get_logger

from .evaluation import CostEvaluation
from .insights import (
    AnomalyFinding,
    AnomalyReport,
    Complexity,
    FindingSeverity,
    PatternAnalysis,
    Priority,
    Recommendation,
    RecommendationCategory,
    parse_enum,
)

logger = get_logger(__name__)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

PATTERN_PROMPT_CATEGORY_LIMIT = 10
UNPARSED_ANALYSIS_SUMMARY = "AI analysis parsing failed - using fallback response"


def _money(amount: Decimal) -> str:
    return f"${amount:.2f}"


def _category_lines(evaluation: CostEvaluation, limit: Optional[int] = None) -> str:
    ranked = sorted(evaluation.breakdown.items(), key=lambda item: item[1], reverse=True)
    if limit is not None:
        ranked = ranked[:limit]
    return "\n".join(f"{name}: {_money(amount)}" for name, amount in ranked)


def pattern_analysis_prompt(evaluation: CostEvaluation) -> str:
    """Prompt asking for a summary, key insights and a confidence score."""
    return f"""
Analyze the following cloud cost data and provide insights:

Current Month-to-Date Cost: {_money(evaluation.total_cost)}
Projected Monthly Cost: {_money(evaluation.projected_total)}
Period: {evaluation.period_start.date().isoformat()} to {evaluation.period_end.date().isoformat()}

Top Services by Cost:
{_category_lines(evaluation, PATTERN_PROMPT_CATEGORY_LIMIT)}

Please provide:
1. A concise summary of spending patterns (2-3 sentences)
2. Key insights about cost drivers and trends (3-5 bullet points)
3. Confidence score (0.0 to 1.0) for this analysis

Format your response as JSON:
{{
  "summary": "Brief summary of spending patterns",
  "keyInsights": ["Insight 1", "Insight 2", "Insight 3"],
  "confidenceScore": 0.85
}}

Ensure the response is valid JSON and confidence score is between 0.0 and 1.0.
""".strip()


def anomaly_detection_prompt(
    evaluation: CostEvaluation,
    history: Sequence[CostEvaluation] = (),
) -> str:
    """Prompt asking for anomalies, with prior period totals for comparison."""
    prompt = f"""
Analyze the following cloud cost data for anomalies:

Current Cost: {_money(evaluation.total_cost)}
Projected Monthly: {_money(evaluation.projected_total)}

Service Breakdown:
{_category_lines(evaluation)}
"""
    if history:
        prompt += "\n\nHistorical Data for Comparison:"
        for index, period in enumerate(history, start=1):
            prompt += f"\nPeriod {index}: {_money(period.total_cost)}"

    prompt += """

Identify any spending anomalies and respond in JSON format:
{
  "anomaliesDetected": true/false,
  "anomalies": [
    {
      "service": "Service Name",
      "severity": "LOW/MEDIUM/HIGH",
      "description": "Description of anomaly",
      "confidenceScore": 0.85,
      "suggestedAction": "Recommended action"
    }
  ]
}
"""
    return prompt.strip()


def optimization_prompt(evaluation: CostEvaluation) -> str:
    """Prompt asking for cost optimization recommendations."""
    return f"""
Analyze the following cloud cost data and provide optimization recommendations:

Total Cost: {_money(evaluation.total_cost)}
Projected Monthly: {_money(evaluation.projected_total)}

Service Costs:
{_category_lines(evaluation)}

Provide cost optimization recommendations in JSON format:
{{
  "recommendations": [
    {{
      "category": "RIGHTSIZING/RESERVED_INSTANCES/SPOT_INSTANCES/STORAGE_OPTIMIZATION/OTHER",
      "service": "Service Name",
      "description": "Detailed recommendation",
      "estimatedSavings": 100.50,
      "priority": "LOW/MEDIUM/HIGH",
      "implementationComplexity": "EASY/MEDIUM/COMPLEX"
    }}
  ]
}}
""".strip()


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """First-to-last brace span of `text` decoded as a JSON object, or None."""
    if not text:
        return None
    match = _JSON_OBJECT.search(text.strip())
    candidate = match.group(0) if match else text.strip()
    try:
        parsed = json.loads(candidate)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _score(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value):
        return None
    return max(0.0, min(1.0, float(value)))


def parse_pattern_analysis(text: str, model_used: str) -> PatternAnalysis:
    """Parse the pattern analysis response.

    Requires a non-empty summary, a list of insights and a numeric
    confidence score (clamped to [0, 1]).
    """
    parsed = extract_json_object(text)
    if parsed is not None:
        summary = parsed.get("summary")
        insights = parsed.get("keyInsights")
        score = _score(parsed.get("confidenceScore"))
        if summary and isinstance(insights, list) and score is not None:
            return PatternAnalysis(
                summary=str(summary),
                key_insights=[str(insight) for insight in insights],
                confidence_score=score,
                model_used=model_used,
            )

    logger.warning("Failed to parse pattern analysis response", response_length=len(text or ""))
    return PatternAnalysis(
        summary=UNPARSED_ANALYSIS_SUMMARY,
        key_insights=["Unable to parse AI insights"],
        confidence_score=0.1,
        model_used=model_used,
    )


def parse_anomaly_report(text: str) -> AnomalyReport:
    """Parse the anomaly detection response; malformed entries are skipped."""
    parsed = extract_json_object(text)
    if parsed is None:
        logger.warning("Failed to parse anomaly response", response_length=len(text or ""))
        return AnomalyReport()

    raw_anomalies = parsed.get("anomalies")
    if not isinstance(raw_anomalies, list):
        return AnomalyReport()

    findings: List[AnomalyFinding] = []
    for item in raw_anomalies:
        if not isinstance(item, dict) or not item.get("service"):
            continue
        findings.append(AnomalyFinding(
            service=str(item["service"]),
            severity=parse_enum(FindingSeverity, item.get("severity"), FindingSeverity.MEDIUM),
            description=str(item.get("description", "")),
            confidence_score=_score(item.get("confidenceScore")) or 0.0,
            suggested_action=item.get("suggestedAction"),
        ))
    return AnomalyReport(anomalies=findings)


def _savings(value: Any) -> Decimal:
    if isinstance(value, bool):
        return Decimal("0")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")
    return amount if amount.is_finite() and amount > 0 else Decimal("0")


def parse_recommendations(text: str) -> List[Recommendation]:
    """Parse the optimization response; malformed entries are skipped."""
    parsed = extract_json_object(text)
    if parsed is None:
        logger.warning("Failed to parse optimization response", response_length=len(text or ""))
        return []

    raw_recommendations = parsed.get("recommendations")
    if not isinstance(raw_recommendations, list):
        return []

    recommendations = []
    for item in raw_recommendations:
        if not isinstance(item, dict) or not item.get("description"):
            continue
        recommendations.append(Recommendation(
            category=parse_enum(RecommendationCategory, item.get("category"), RecommendationCategory.OTHER),
            service=str(item.get("service", "")),
            description=str(item["description"]),
            estimated_savings=_savings(item.get("estimatedSavings", 0)),
            priority=parse_enum(Priority, item.get("priority"), Priority.MEDIUM),
            implementation_complexity=parse_enum(
                Complexity, item.get("implementationComplexity"), Complexity.MEDIUM
            ),
        ))
    return recommendations
