"""
One monitoring cycle: evaluate spend, enrich if over budget, deliver.

A cycle that cannot obtain enrichment still delivers the unenriched alert.
A cycle that cannot deliver at all fails loudly.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from structlog import get_logger

from .cache import InferenceCache
from .delivery import AlertDelivery, DeliveryOutcome
from .enrichment import BudgetGatedInference, EnrichedEvaluation
from .evaluation import AlertContext, CostEvaluation, build_alert_context, exceeds_threshold
from .interfaces import CostDataSource, InferenceService, KeyValueStore, MessageChannel
from .ledger import BudgetLedger
from .rate_limit import AdaptiveRateLimiter
from .retry import RetryExecutor
from ..config.loader import MonitorConfig
from ..storage.kv import SqliteKeyValueStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class CycleResult:
    """What one cycle observed and did."""
    evaluation: CostEvaluation
    alert_sent: bool
    alert_context: Optional[AlertContext] = None
    enrichment: Optional[EnrichedEvaluation] = None
    delivery: Optional[DeliveryOutcome] = None


class SpendMonitor:
    """Runs monitoring cycles against one cost source."""

    def __init__(
        self,
        cost_source: CostDataSource,
        delivery: AlertDelivery,
        config: MonitorConfig,
        enrichment: Optional[BudgetGatedInference] = None,
    ):
        self.cost_source = cost_source
        self.delivery = delivery
        self.config = config
        self.enrichment = enrichment

    def run_cycle(self, historical_evaluations: Optional[Sequence[CostEvaluation]] = None) -> CycleResult:
        """Evaluate current spend and alert if it exceeds the threshold.

        Args:
            historical_evaluations: Prior periods passed to anomaly detection

        Returns:
            CycleResult describing the cycle

        Raises:
            Any cost source error: spend is never defaulted to zero
            Delivery errors when the alert could not be sent on any channel
        """
        settings = self.config.monitor
        evaluation = self.cost_source.get_current_period_cost()

        if not exceeds_threshold(evaluation, settings.spend_threshold):
            logger.info(
                "Spend within threshold",
                total_cost=str(evaluation.total_cost),
                threshold=str(settings.spend_threshold),
            )
            return CycleResult(evaluation=evaluation, alert_sent=False)

        context = build_alert_context(evaluation, settings.spend_threshold, settings.min_category_cost)
        logger.warning(
            "Spend threshold exceeded",
            total_cost=str(evaluation.total_cost),
            threshold=str(context.threshold),
            exceed_amount=str(context.exceed_amount),
            severity=context.severity.value,
        )

        enriched = None
        if self.enrichment is not None:
            try:
                enriched = self.enrichment.enhance(evaluation, historical_evaluations)
            except Exception as error:
                logger.error(
                    "Enrichment failed, sending alert without insights",
                    error_type=type(error).__name__,
                    error=str(error),
                )

        outcome = self.delivery.deliver(
            evaluation,
            context,
            settings.channels,
            push_config=self.config.push,
            enrichment=enriched,
        )
        return CycleResult(
            evaluation=evaluation,
            alert_sent=True,
            alert_context=context,
            enrichment=enriched,
            delivery=outcome,
        )


def build_monitor(
    config: MonitorConfig,
    cost_source: CostDataSource,
    channel: MessageChannel,
    inference_service: Optional[InferenceService] = None,
    kv_store: Optional[KeyValueStore] = None,
) -> SpendMonitor:
    """Wire a SpendMonitor from configuration.

    Args:
        config: Loaded monitor configuration
        cost_source: Source of the current period's spend
        channel: Broadcast channel alerts are published to
        inference_service: Paid inference service; None sends alerts without AI insights
        kv_store: Store for the budget ledger; defaults to SQLite at storage.db_path

    Returns:
        SpendMonitor sharing one retry policy between delivery and enrichment
    """
    retry = RetryExecutor(config.retry)
    delivery = AlertDelivery(channel, config.monitor.topic, retry_executor=retry)

    enrichment = None
    if inference_service is not None:
        inference = config.inference
        ledger = BudgetLedger(
            inference.cost_threshold,
            store=kv_store if kv_store is not None else SqliteKeyValueStore(config.storage.db_path),
        )
        cache = InferenceCache(inference.cache_ttl_seconds) if inference.cache_results else None
        enrichment = BudgetGatedInference(
            inference_service,
            inference,
            ledger,
            cache=cache,
            rate_limiter=AdaptiveRateLimiter(inference.rate_limit_per_minute),
            retry_executor=retry,
        )

    return SpendMonitor(cost_source, delivery, config, enrichment=enrichment)
