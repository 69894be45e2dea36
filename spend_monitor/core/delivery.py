"""
Multi-channel alert delivery.

One logical publish fans the alert out to every configured channel through
the broadcast message channel. If the push platform rejects it, the alert
is republished once without the push part, so email and SMS still go out.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence

from structlog import get_logger

from .channels import Channel, NoPushChannel, PushChannel, PushConfig, push_payload_key
from .errors import ValidationError, is_push_channel_failure
from .evaluation import AlertContext, CostEvaluation, build_alert_context
from .formatter import (
    build_alert_id,
    build_subject,
    encode_push_payload,
    format_long_message,
    format_push_payload,
    format_short_message,
)
from .interfaces import MessageChannel, OutboundMessage
from .retry import RetryExecutor

logger = get_logger(__name__)

FALLBACK_REASON = "push_channel_failure"
MAX_ORIGINAL_ERROR_LENGTH = 256


@dataclass(frozen=True)
class DeliveryMetrics:
    """Timing, retry and size figures; populated on every outcome."""
    delivery_time_ms: float
    retry_count: int
    payload_size_bytes: int


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of one deliver() call."""
    channels_attempted: List[Channel]
    channels_succeeded: List[Channel]
    channels_failed: List[Channel]
    fallback_used: bool
    errors: List[str]
    metrics: DeliveryMetrics
    message_id: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return bool(self.channels_succeeded)


@dataclass
class _PublishStats:
    attempts: int = 0
    publishes: int = 0
    payload_size: int = 0


class AlertDelivery:
    """Delivers formatted alerts to the broadcast channel.

    `last_outcome` holds the outcome of the most recent deliver() call,
    including calls that raised.
    """

    def __init__(
        self,
        channel: MessageChannel,
        topic: str,
        retry_executor: Optional[RetryExecutor] = None,
        timeout: Optional[float] = 10.0,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        timer: Callable[[], float] = time.perf_counter,
    ):
        if not topic:
            raise ValueError("topic is required")
        self.channel = channel
        self.topic = topic
        self.retry = retry_executor or RetryExecutor()
        self.timeout = timeout
        self._clock = clock
        self._timer = timer
        self.last_outcome: Optional[DeliveryOutcome] = None

    def deliver(
        self,
        evaluation: CostEvaluation,
        context: AlertContext,
        channels: Sequence[Channel],
        push_config: PushConfig = NoPushChannel(),
        enrichment: Any = None,
    ) -> DeliveryOutcome:
        """Send the alert to `channels`, plus push when `push_config` is a PushChannel.

        Args:
            evaluation: Current period's cost evaluation
            context: Alert context derived from the evaluation
            channels: Broadcast channels to address (email, SMS)
            push_config: NoPushChannel or the push platform details
            enrichment: Optional EnrichedEvaluation rendered into the long message

        Returns:
            DeliveryOutcome; fallback_used=True if push was dropped to get the alert out

        Raises:
            ValidationError: If push is requested without a push configuration
            The publish error, unchanged, when the alert could not be delivered at all
        """
        started = self._timer()
        broadcast = []
        for channel in channels:
            if channel == Channel.PUSH:
                if not isinstance(push_config, PushChannel):
                    raise ValidationError("Push channel requested but no push configuration is present")
                continue
            if channel not in broadcast:
                broadcast.append(channel)

        push_enabled = isinstance(push_config, PushChannel)
        attempted = broadcast + ([Channel.PUSH] if push_enabled else [])

        long_message = format_long_message(evaluation, context, enrichment)
        payloads: Dict[str, str] = {}
        if Channel.EMAIL in broadcast:
            payloads["email"] = long_message
        if Channel.SMS in broadcast:
            payloads["sms"] = format_short_message(evaluation, context)
        if push_enabled:
            push_payload = format_push_payload(evaluation, context, build_alert_id(evaluation))
            payloads[push_payload_key(push_config)] = encode_push_payload(push_payload)

        message = OutboundMessage(
            default_text=long_message,
            per_channel_payloads=payloads,
            subject=build_subject(context),
        )
        stats = _PublishStats()

        try:
            message_id = self._publish(message, stats)
        except Exception as error:
            if not (push_enabled and is_push_channel_failure(error)):
                self._record_failure(attempted, [error], stats, started)
                logger.error(
                    "Failed to send spend alert",
                    topic=self.topic,
                    error_type=type(error).__name__,
                    error=str(error),
                    total_cost=str(evaluation.total_cost),
                    threshold=str(context.threshold),
                )
                raise

            logger.warning(
                "Push channel failure, retrying delivery without push payload",
                error=str(error),
                bundle_id=push_config.bundle_id,
            )
            degraded = OutboundMessage(
                default_text=long_message,
                per_channel_payloads={
                    key: value for key, value in payloads.items()
                    if key != push_payload_key(push_config)
                },
                subject=message.subject,
                attributes={
                    "fallback_reason": FALLBACK_REASON,
                    "original_error": str(error)[:MAX_ORIGINAL_ERROR_LENGTH],
                },
            )
            try:
                message_id = self._publish(degraded, stats)
            except Exception as fallback_error:
                self._record_failure(attempted, [error, fallback_error], stats, started)
                logger.error(
                    "Degraded alert delivery failed",
                    topic=self.topic,
                    original_error=str(error),
                    error=str(fallback_error),
                )
                raise

            outcome = DeliveryOutcome(
                channels_attempted=attempted,
                channels_succeeded=list(broadcast),
                channels_failed=[Channel.PUSH],
                fallback_used=True,
                errors=[f"Push channel failed: {error}"],
                metrics=self._metrics(stats, started),
                message_id=message_id,
            )
            self.last_outcome = outcome
            logger.info(
                "Spend alert sent without push channel",
                message_id=message_id,
                channels=[channel.value for channel in broadcast],
                retry_count=outcome.metrics.retry_count,
            )
            return outcome

        outcome = DeliveryOutcome(
            channels_attempted=attempted,
            channels_succeeded=list(attempted),
            channels_failed=[],
            fallback_used=False,
            errors=[],
            metrics=self._metrics(stats, started),
            message_id=message_id,
        )
        self.last_outcome = outcome
        logger.info(
            "Spend alert sent",
            message_id=message_id,
            severity=context.severity.value,
            channels=[channel.value for channel in attempted],
            top_services=len(context.top_categories),
            retry_count=outcome.metrics.retry_count,
            payload_size_bytes=outcome.metrics.payload_size_bytes,
        )
        return outcome

    def send_test_alert(
        self,
        channels: Sequence[Channel] = (Channel.EMAIL, Channel.SMS),
        push_config: PushConfig = NoPushChannel(),
        threshold: Decimal = Decimal("100"),
    ) -> DeliveryOutcome:
        """Deliver a canned over-budget alert to verify the channels end to end."""
        now = self._clock()
        period_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        evaluation = CostEvaluation.create(
            total_cost=threshold * Decimal("1.5"),
            breakdown={
                "Test Compute": threshold * Decimal("0.9"),
                "Test Storage": threshold * Decimal("0.4"),
                "Test Database": threshold * Decimal("0.2"),
            },
            period_start=period_start,
            period_end=max(now, period_start + timedelta(days=1)),
            projected_total=threshold * 2,
            retrieved_at=now,
        )
        context = build_alert_context(evaluation, threshold)
        logger.info("Sending test alert", channels=[channel.value for channel in channels])
        return self.deliver(evaluation, context, channels, push_config)

    def _publish(self, message: OutboundMessage, stats: _PublishStats) -> str:
        stats.publishes += 1
        stats.payload_size = message.payload_size()

        def publish():
            stats.attempts += 1
            return self.channel.publish(self.topic, message, timeout=self.timeout)

        return self.retry.execute(publish, operation_name="publish_alert")

    def _metrics(self, stats: _PublishStats, started: float) -> DeliveryMetrics:
        return DeliveryMetrics(
            delivery_time_ms=round((self._timer() - started) * 1000, 3),
            retry_count=max(stats.attempts - stats.publishes, 0),
            payload_size_bytes=stats.payload_size,
        )

    def _record_failure(
        self,
        attempted: List[Channel],
        errors: List[BaseException],
        stats: _PublishStats,
        started: float,
    ) -> None:
        self.last_outcome = DeliveryOutcome(
            channels_attempted=attempted,
            channels_succeeded=[],
            channels_failed=list(attempted),
            fallback_used=False,
            errors=[str(error) for error in errors],
            metrics=self._metrics(stats, started),
        )
