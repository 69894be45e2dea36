"""
Cost evaluation and alert context.

A CostEvaluation is produced once per cycle by the cost data source; the
AlertContext is derived from it and the configured threshold every cycle and
never persisted.
"""

import calendar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List, Mapping, Optional, Union

from .errors import ValidationError

Number = Union[Decimal, int, float, str]

CRITICAL_PERCENTAGE_OVER = Decimal("50")
TOP_CATEGORY_LIMIT = 5
_CENT = Decimal("0.01")


def to_decimal(value: Number) -> Decimal:
    """Coerce a monetary value to Decimal without binary float artifacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


class Severity(Enum):
    """Alert severity levels."""
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class CostEvaluation:
    """Spend for the current period as reported by the cost data source."""
    total_cost: Decimal
    breakdown: Mapping[str, Decimal]
    period_start: datetime
    period_end: datetime
    projected_total: Decimal
    currency: str = "USD"
    retrieved_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        """Validate evaluation values."""
        if self.total_cost < 0:
            raise ValidationError("total_cost must be >= 0")
        if self.period_end < self.period_start:
            raise ValidationError("period_end must not be before period_start")

    @classmethod
    def create(
        cls,
        total_cost: Number,
        breakdown: Mapping[str, Number],
        period_start: datetime,
        period_end: datetime,
        projected_total: Optional[Number] = None,
        currency: str = "USD",
        retrieved_at: Optional[datetime] = None,
    ) -> "CostEvaluation":
        """Build an evaluation from plain numbers."""
        total = to_decimal(total_cost)
        return cls(
            total_cost=total,
            breakdown={name: to_decimal(amount) for name, amount in breakdown.items()},
            period_start=period_start,
            period_end=period_end,
            projected_total=to_decimal(projected_total) if projected_total is not None else total,
            currency=currency,
            retrieved_at=retrieved_at or datetime.now(timezone.utc),
        )


@dataclass(frozen=True)
class CategoryCost:
    """One ranked entry of the cost breakdown."""
    name: str
    amount: Decimal
    percentage: Decimal


@dataclass(frozen=True)
class AlertContext:
    """Everything the formatter needs to know about how far over budget we are."""
    threshold: Decimal
    exceed_amount: Decimal
    percentage_over: Decimal
    top_categories: List[CategoryCost]
    severity: Severity


def exceeds_threshold(evaluation: CostEvaluation, threshold: Number) -> bool:
    """Alerts fire only when spend is strictly above the threshold."""
    return evaluation.total_cost > to_decimal(threshold)


def rank_top_categories(
    breakdown: Mapping[str, Number],
    min_cost: Number = Decimal("0"),
    limit: int = TOP_CATEGORY_LIMIT,
) -> List[CategoryCost]:
    """Rank categories by amount, highest first.

    Entries below `min_cost` are excluded before ranking. Ties keep the
    breakdown's iteration order (sorted() is stable), so re-ranking the same
    breakdown always yields the same list.
    """
    amounts = [(name, to_decimal(amount)) for name, amount in breakdown.items()]
    total = sum((amount for _, amount in amounts), Decimal("0"))
    floor = to_decimal(min_cost)

    eligible = [(name, amount) for name, amount in amounts if amount >= floor]
    ranked = sorted(eligible, key=lambda item: item[1], reverse=True)[:limit]

    result = []
    for name, amount in ranked:
        percentage = (amount / total * 100) if total > 0 else Decimal("0")
        result.append(CategoryCost(
            name=name,
            amount=amount,
            percentage=percentage.quantize(_CENT, rounding=ROUND_HALF_UP),
        ))
    return result


def determine_severity(percentage_over: Decimal) -> Severity:
    """CRITICAL iff more than 50% over the threshold."""
    return Severity.CRITICAL if percentage_over > CRITICAL_PERCENTAGE_OVER else Severity.WARNING


def build_alert_context(
    evaluation: CostEvaluation,
    threshold: Number,
    min_category_cost: Number = Decimal("0"),
    limit: int = TOP_CATEGORY_LIMIT,
) -> AlertContext:
    """Derive the alert context for an evaluation against a threshold.

    Raises:
        ValidationError: If threshold is not positive
    """
    threshold = to_decimal(threshold)
    if threshold <= 0:
        raise ValidationError("threshold must be > 0")

    exceed_amount = evaluation.total_cost - threshold
    percentage_over = exceed_amount / threshold * 100

    return AlertContext(
        threshold=threshold,
        exceed_amount=exceed_amount,
        percentage_over=percentage_over,
        top_categories=rank_top_categories(evaluation.breakdown, min_category_cost, limit),
        severity=determine_severity(percentage_over),
    )


def project_period_total(cost_to_date: Number, as_of: datetime) -> Decimal:
    """Linear projection of month-to-date spend over the whole month."""
    cost = to_decimal(cost_to_date)
    days_in_month = calendar.monthrange(as_of.year, as_of.month)[1]
    projected = cost / as_of.day * days_in_month
    return projected.quantize(_CENT, rounding=ROUND_HALF_UP)
