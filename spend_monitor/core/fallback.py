"""
Heuristic analyses used when AI enrichment is unavailable or unaffordable.

Rules:
- Overall anomaly: total deviates from the historical mean by more than 150%
  (HIGH above 300%)
- Category anomaly: category deviates from its historical mean by more than
  200% (HIGH above 400%) and makes up more than 5% of the total
- Recommendations: only for top-5 categories above 10% of the total, keyed
  on compute, storage and database names
"""

from decimal import Decimal
from typing import List, Sequence

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
)

FALLBACK_MODEL = "fallback"

OVERALL_DEVIATION = Decimal("1.5")
OVERALL_HIGH_DEVIATION = Decimal("3.0")
CATEGORY_DEVIATION = Decimal("2.0")
CATEGORY_HIGH_DEVIATION = Decimal("4.0")
CATEGORY_SIGNIFICANCE = Decimal("0.05")
MAX_ANOMALIES = 5

RECOMMENDATION_SHARE = Decimal("0.1")
RESERVED_CAPACITY_MIN_COST = Decimal("50")
MAX_RECOMMENDATIONS = 8

COMPUTE_MARKERS = ("EC2", "Elastic Compute", "Compute Engine", "Virtual Machines")
STORAGE_MARKERS = ("S3", "EBS", "Storage")
DATABASE_MARKERS = ("RDS", "DynamoDB", "Database", "SQL")


def _ranked(evaluation: CostEvaluation):
    return sorted(evaluation.breakdown.items(), key=lambda item: item[1], reverse=True)


def heuristic_analysis(evaluation: CostEvaluation) -> PatternAnalysis:
    """Basic summary built from the totals and the top cost driver."""
    ranked = _ranked(evaluation)
    if ranked:
        top_name, top_amount = ranked[0]
        driver = f"Top cost driver: {top_name} (${top_amount:.2f})"
    else:
        driver = "Top cost driver: Unknown ($0.00)"

    return PatternAnalysis(
        summary=(
            f"Current spending is ${evaluation.total_cost:.2f} with projected monthly cost "
            f"of ${evaluation.projected_total:.2f}."
        ),
        key_insights=[
            driver,
            "AI analysis unavailable - using basic cost breakdown",
            "Consider reviewing high-cost services for optimization opportunities",
        ],
        confidence_score=0.3,
        model_used=FALLBACK_MODEL,
    )


def heuristic_anomalies(
    evaluation: CostEvaluation,
    history: Sequence[CostEvaluation] = (),
) -> AnomalyReport:
    """Flag large deviations from the historical averages.

    Without history nothing is flagged.
    """
    if not history:
        return AnomalyReport()

    periods = Decimal(len(history))
    findings: List[AnomalyFinding] = []

    historical_average = sum((period.total_cost for period in history), Decimal("0")) / periods
    current = evaluation.total_cost
    deviation = abs(current - historical_average) / max(historical_average, Decimal("1"))
    if deviation > OVERALL_DEVIATION:
        findings.append(AnomalyFinding(
            service="Overall Spending",
            severity=FindingSeverity.HIGH if deviation > OVERALL_HIGH_DEVIATION else FindingSeverity.MEDIUM,
            description=(
                f"Current spending ({current:.2f}) is {deviation * 100:.0f}% different "
                f"from historical average ({historical_average:.2f})"
            ),
            confidence_score=min(0.7, float(deviation) / 5),
            suggested_action="Review recent changes in resource usage and configuration",
        ))

    for name, amount in evaluation.breakdown.items():
        category_average = sum(
            (period.breakdown.get(name, Decimal("0")) for period in history), Decimal("0")
        ) / periods
        if category_average <= 0:
            continue
        category_deviation = abs(amount - category_average) / category_average
        if category_deviation > CATEGORY_DEVIATION and amount > current * CATEGORY_SIGNIFICANCE:
            findings.append(AnomalyFinding(
                service=name,
                severity=(
                    FindingSeverity.HIGH if category_deviation > CATEGORY_HIGH_DEVIATION
                    else FindingSeverity.MEDIUM
                ),
                description=(
                    f"{name} cost ({amount:.2f}) is {category_deviation * 100:.0f}% different "
                    f"from historical average ({category_average:.2f})"
                ),
                confidence_score=min(0.6, float(category_deviation) / 6),
                suggested_action=f"Review {name} usage patterns and recent configuration changes",
            ))

    return AnomalyReport(anomalies=findings[:MAX_ANOMALIES])


def heuristic_recommendations(evaluation: CostEvaluation) -> List[Recommendation]:
    """Rule-of-thumb savings for the largest categories."""
    if evaluation.total_cost <= 0:
        return []

    recommendations: List[Recommendation] = []
    for name, amount in _ranked(evaluation)[:5]:
        share = amount / evaluation.total_cost
        if share <= RECOMMENDATION_SHARE:
            continue

        if any(marker in name for marker in COMPUTE_MARKERS):
            recommendations.append(Recommendation(
                category=RecommendationCategory.RIGHTSIZING,
                service=name,
                description="Review instance types and sizes for potential rightsizing opportunities",
                estimated_savings=amount * Decimal("0.25"),
                priority=Priority.HIGH if share > Decimal("0.3") else Priority.MEDIUM,
                implementation_complexity=Complexity.MEDIUM,
            ))
            if amount > RESERVED_CAPACITY_MIN_COST:
                recommendations.append(Recommendation(
                    category=RecommendationCategory.RESERVED_INSTANCES,
                    service=name,
                    description=f"Consider Reserved Instances for consistent {name} workloads",
                    estimated_savings=amount * Decimal("0.35"),
                    priority=Priority.MEDIUM,
                    implementation_complexity=Complexity.EASY,
                ))

        if any(marker in name for marker in STORAGE_MARKERS):
            recommendations.append(Recommendation(
                category=RecommendationCategory.STORAGE_OPTIMIZATION,
                service=name,
                description=f"Optimize storage classes and lifecycle policies for {name}",
                estimated_savings=amount * Decimal("0.2"),
                priority=Priority.HIGH if share > Decimal("0.2") else Priority.MEDIUM,
                implementation_complexity=Complexity.EASY,
            ))

        if any(marker in name for marker in DATABASE_MARKERS):
            recommendations.append(Recommendation(
                category=RecommendationCategory.RIGHTSIZING,
                service=name,
                description=f"Review database instance sizes and performance requirements for {name}",
                estimated_savings=amount * Decimal("0.3"),
                priority=Priority.MEDIUM,
                implementation_complexity=Complexity.MEDIUM,
            ))

    return recommendations[:MAX_RECOMMENDATIONS]
