"""
Structured results of the enrichment sub-analyses.

Produced either by parsing inference responses or by the heuristic
fallbacks; the formatter renders them into the long-form alert.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Type, TypeVar

E = TypeVar("E", bound=Enum)


class FindingSeverity(Enum):
    """Severity of a spending anomaly."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class RecommendationCategory(Enum):
    RIGHTSIZING = "RIGHTSIZING"
    RESERVED_INSTANCES = "RESERVED_INSTANCES"
    SPOT_INSTANCES = "SPOT_INSTANCES"
    STORAGE_OPTIMIZATION = "STORAGE_OPTIMIZATION"
    OTHER = "OTHER"


class Priority(Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class Complexity(Enum):
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    COMPLEX = "COMPLEX"


def parse_enum(enum_type: Type[E], value: object, default: E) -> E:
    """Case-insensitive enum lookup that falls back to `default`."""
    if isinstance(value, str):
        try:
            return enum_type(value.strip().upper())
        except ValueError:
            return default
    return default


@dataclass(frozen=True)
class PatternAnalysis:
    """Summary of spending patterns."""
    summary: str
    key_insights: List[str]
    confidence_score: float
    model_used: str


@dataclass(frozen=True)
class AnomalyFinding:
    """One detected spending anomaly."""
    service: str
    severity: FindingSeverity
    description: str
    confidence_score: float
    suggested_action: Optional[str] = None


@dataclass(frozen=True)
class AnomalyReport:
    """Anomaly detection result."""
    anomalies: List[AnomalyFinding] = field(default_factory=list)

    @property
    def anomalies_detected(self) -> bool:
        return bool(self.anomalies)


@dataclass(frozen=True)
class Recommendation:
    """One cost optimization recommendation."""
    category: RecommendationCategory
    service: str
    description: str
    estimated_savings: Decimal
    priority: Priority
    implementation_complexity: Complexity
