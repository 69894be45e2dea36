"""
Budget-gated AI enrichment of cost evaluations.

Gate order:
1. Disabled by configuration - no call
2. Budget exhausted for the period - no call, disable until rollover
3. Cache hit for the evaluation's fingerprint - no call, no ledger change
4. Estimated cost exceeds the remaining budget - no call
5. Adaptive rate limit - wait for the next window if needed
6. Three sub-analyses run concurrently; one failing does not cancel the others
7. Actual cost recorded, composite result cached

Budget and cache outcomes never raise; they come back as fallback_used=True.
The only error raised is InferenceUnavailableError, when every sub-call fails
and fallback-on-error is disabled.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence

from structlog import get_logger

from .cache import InferenceCache
from .errors import InferenceUnavailableError
from .evaluation import CostEvaluation, to_decimal
from .fallback import FALLBACK_MODEL, heuristic_analysis, heuristic_anomalies, heuristic_recommendations
from .insights import AnomalyReport, PatternAnalysis, Recommendation
from .interfaces import InferenceService
from .ledger import BudgetLedger
from .pricing import estimate_inference_cost, quantize_cost
from .prompts import (
    anomaly_detection_prompt,
    optimization_prompt,
    parse_anomaly_report,
    parse_pattern_analysis,
    parse_recommendations,
    pattern_analysis_prompt,
)
from .rate_limit import AdaptiveRateLimiter
from .retry import RetryExecutor
from ..config.loader import InferenceConfig

logger = get_logger(__name__)

MODEL_ACCESS_PROBE = "Test prompt for model validation"


class AnalysisKind(Enum):
    """Independent enrichment sub-analyses."""
    PATTERN_ANALYSIS = "pattern_analysis"
    ANOMALY_DETECTION = "anomaly_detection"
    OPTIMIZATION = "optimization"


class GateDecision(Enum):
    """Why an enhance() call did or did not reach the inference service."""
    DISABLED = "disabled"
    BUDGET_EXHAUSTED = "budget_exhausted"
    CACHE_HIT = "cache_hit"
    ESTIMATE_EXCEEDS_BUDGET = "estimate_exceeds_budget"
    ALL_CALLS_FAILED = "all_calls_failed"
    INVOKED = "invoked"


@dataclass(frozen=True)
class SubCallResult:
    """Outcome of one sub-analysis: a parsed value or the error that ended it."""
    kind: AnalysisKind
    value: Any = None
    error: Optional[BaseException] = None
    cost: Decimal = Decimal("0")
    tokens: int = 0
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class EnrichedEvaluation:
    """A cost evaluation with AI or heuristic insights attached."""
    evaluation: CostEvaluation
    analysis: Optional[PatternAnalysis]
    anomalies: Optional[AnomalyReport]
    recommendations: List[Recommendation]
    fallback_used: bool
    decision: GateDecision
    from_cache: bool = False
    actual_cost: Decimal = Decimal("0")
    estimated_cost: Decimal = Decimal("0")
    errors: List[str] = field(default_factory=list)
    model_used: str = FALLBACK_MODEL
    sub_calls: List[SubCallResult] = field(default_factory=list)
    generated_at: Optional[datetime] = None


class BudgetGatedInference:
    """Wraps the paid inference service behind budget, rate and cache gates."""

    def __init__(
        self,
        service: InferenceService,
        config: InferenceConfig,
        ledger: BudgetLedger,
        cache: Optional[InferenceCache] = None,
        rate_limiter: Optional[AdaptiveRateLimiter] = None,
        retry_executor: Optional[RetryExecutor] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        max_workers: int = 3,
    ):
        """Initialize the gate.

        Args:
            service: Inference service to call
            config: Inference settings (model, limits, fallback policy)
            ledger: Shared monthly spend ledger
            cache: Result cache; None disables caching
            rate_limiter: Shared rate limiter; defaults to one built from config
            retry_executor: Retry policy for each sub-call
            clock: Wall clock for result timestamps
            max_workers: Threads used for the concurrent sub-calls
        """
        self.service = service
        self.config = config
        self.ledger = ledger
        self.cache = cache
        self.rate_limiter = rate_limiter or AdaptiveRateLimiter(config.rate_limit_per_minute)
        self.retry = retry_executor or RetryExecutor()
        self._clock = clock
        self._max_workers = max_workers

    def enhance(
        self,
        evaluation: CostEvaluation,
        historical_evaluations: Optional[Sequence[CostEvaluation]] = None,
    ) -> EnrichedEvaluation:
        """Attach insights to an evaluation without overspending.

        Args:
            evaluation: Current period's cost evaluation
            historical_evaluations: Prior periods, used by anomaly detection

        Returns:
            EnrichedEvaluation; fallback_used=True when no paid result is available

        Raises:
            InferenceUnavailableError: If every sub-call failed and fallback-on-error is disabled
        """
        history = list(historical_evaluations or [])

        if not self.config.enabled:
            return self._fallback(evaluation, history, GateDecision.DISABLED)

        if self.ledger.is_exhausted():
            return self._fallback(evaluation, history, GateDecision.BUDGET_EXHAUSTED)

        if self.cache is not None:
            cached = self.cache.get(evaluation)
            if cached is not None:
                logger.info("Serving enrichment from cache", model=cached.model_used)
                return replace(
                    cached,
                    evaluation=evaluation,
                    from_cache=True,
                    decision=GateDecision.CACHE_HIT,
                    actual_cost=Decimal("0"),
                )

        kinds = list(AnalysisKind)
        estimate = estimate_inference_cost(
            self.config.model,
            category_count=len(evaluation.breakdown),
            analyses=len(kinds),
            max_tokens=self.config.max_tokens,
            history_count=len(history),
        )
        reservation = self.ledger.try_reserve(estimate)
        if reservation is None:
            logger.warning(
                "Estimated inference cost exceeds remaining budget",
                estimate=str(estimate),
                remaining=str(self.ledger.remaining()),
            )
            return self._fallback(evaluation, history, GateDecision.ESTIMATE_EXCEEDS_BUDGET, estimate=estimate)

        settled = False
        try:
            utilization = self.ledger.utilization()
            for _ in kinds:
                self.rate_limiter.acquire(utilization)

            results = self._run_sub_calls(evaluation, history)
            successes = [result for result in results if result.succeeded]
            if successes:
                actual = quantize_cost(sum((result.cost for result in successes), Decimal("0")))
                self.ledger.settle(reservation, actual)
                settled = True
        finally:
            if not settled:
                self.ledger.release(reservation)

        errors = [f"{result.kind.value}: {result.error}" for result in results if not result.succeeded]

        if not successes:
            logger.error("All inference sub-calls failed", errors=errors)
            if not self.config.fallback_on_error:
                raise InferenceUnavailableError(
                    "All inference sub-calls failed",
                    context={"errors": errors},
                )
            return self._fallback(
                evaluation, history, GateDecision.ALL_CALLS_FAILED,
                estimate=estimate, errors=errors, sub_calls=results,
            )

        enriched = self._compose(evaluation, history, results, estimate, actual, errors)
        if self.cache is not None:
            self.cache.put(evaluation, enriched)

        logger.info(
            "Enrichment completed",
            succeeded=len(successes),
            failed=len(results) - len(successes),
            estimated_cost=str(estimate),
            actual_cost=str(actual),
            remaining_budget=str(self.ledger.remaining()),
        )
        return enriched

    def validate_model_access(self) -> bool:
        """Probe the inference service once, outside the budget gates."""
        try:
            self.service.invoke(
                MODEL_ACCESS_PROBE,
                max_tokens=10,
                temperature=self.config.temperature,
                timeout=self.config.timeout_seconds,
            )
        except Exception as error:
            logger.error("Model access validation failed", model=self.config.model, error=str(error))
            return False
        logger.info("Model access validated", model=self.config.model)
        return True

    def _run_sub_calls(self, evaluation: CostEvaluation, history: List[CostEvaluation]) -> List[SubCallResult]:
        calls = [
            (AnalysisKind.PATTERN_ANALYSIS, pattern_analysis_prompt(evaluation),
             lambda text: parse_pattern_analysis(text, self.config.model)),
            (AnalysisKind.ANOMALY_DETECTION, anomaly_detection_prompt(evaluation, history), parse_anomaly_report),
            (AnalysisKind.OPTIMIZATION, optimization_prompt(evaluation), parse_recommendations),
        ]
        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            futures = [pool.submit(self._sub_call, kind, prompt, parser) for kind, prompt, parser in calls]
            return [future.result() for future in futures]

    def _sub_call(self, kind: AnalysisKind, prompt: str, parser: Callable[[str], Any]) -> SubCallResult:
        attempts = 0

        def invoke():
            nonlocal attempts
            attempts += 1
            return self.service.invoke(
                prompt,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                timeout=self.config.timeout_seconds,
            )

        try:
            response = self.retry.execute(invoke, operation_name=f"inference.{kind.value}")
        except Exception as error:
            logger.warning(
                "Inference sub-call failed",
                analysis=kind.value,
                attempts=attempts,
                error_type=type(error).__name__,
                error=str(error),
            )
            return SubCallResult(kind=kind, error=error, attempts=attempts)

        return SubCallResult(
            kind=kind,
            value=parser(response.text),
            cost=quantize_cost(to_decimal(response.estimated_cost)),
            tokens=response.tokens_used,
            attempts=attempts,
        )

    def _compose(
        self,
        evaluation: CostEvaluation,
        history: List[CostEvaluation],
        results: List[SubCallResult],
        estimate: Decimal,
        actual: Decimal,
        errors: List[str],
    ) -> EnrichedEvaluation:
        by_kind = {result.kind: result for result in results}
        fill_gaps = self.config.fallback_on_error

        def pick(kind: AnalysisKind, heuristic: Callable[[], Any], empty: Any) -> Any:
            result = by_kind[kind]
            if result.succeeded:
                return result.value
            return heuristic() if fill_gaps else empty

        return EnrichedEvaluation(
            evaluation=evaluation,
            analysis=pick(AnalysisKind.PATTERN_ANALYSIS, lambda: heuristic_analysis(evaluation), None),
            anomalies=pick(AnalysisKind.ANOMALY_DETECTION, lambda: heuristic_anomalies(evaluation, history), None),
            recommendations=pick(AnalysisKind.OPTIMIZATION, lambda: heuristic_recommendations(evaluation), []),
            fallback_used=False,
            decision=GateDecision.INVOKED,
            actual_cost=actual,
            estimated_cost=estimate,
            errors=errors,
            model_used=self.config.model,
            sub_calls=results,
            generated_at=self._clock(),
        )

    def _fallback(
        self,
        evaluation: CostEvaluation,
        history: List[CostEvaluation],
        decision: GateDecision,
        estimate: Decimal = Decimal("0"),
        errors: Optional[List[str]] = None,
        sub_calls: Optional[List[SubCallResult]] = None,
    ) -> EnrichedEvaluation:
        logger.info("Using heuristic enrichment", reason=decision.value)
        return EnrichedEvaluation(
            evaluation=evaluation,
            analysis=heuristic_analysis(evaluation),
            anomalies=heuristic_anomalies(evaluation, history),
            recommendations=heuristic_recommendations(evaluation),
            fallback_used=True,
            decision=decision,
            estimated_cost=estimate,
            errors=errors or [],
            sub_calls=sub_calls or [],
            generated_at=self._clock(),
        )
