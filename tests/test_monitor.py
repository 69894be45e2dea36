"""
Tests for the monitoring cycle.
"""
import os
import shutil
import tempfile
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import Mock

import pytest

from spend_monitor.config.loader import MonitorConfig, MonitorSettings, parse_monitor_config
from spend_monitor.core.channels import Channel, NoPushChannel, PushChannel
from spend_monitor.core.delivery import AlertDelivery
from spend_monitor.core.enrichment import BudgetGatedInference
from spend_monitor.core.errors import InferenceUnavailableError, TransientInfrastructureError
from spend_monitor.core.evaluation import CostEvaluation, Severity
from spend_monitor.core.monitor import SpendMonitor, build_monitor
from spend_monitor.storage.kv import InMemoryKeyValueStore


def make_evaluation(total):
    return CostEvaluation.create(
        total_cost=total,
        breakdown={"Compute": "80.00", "Storage": "40.00", "Tiny": "0.50"},
        period_start=datetime(2024, 3, 1, tzinfo=timezone.utc),
        period_end=datetime(2024, 3, 15, tzinfo=timezone.utc),
    )


def make_config(push=None):
    return MonitorConfig(
        monitor=MonitorSettings(
            spend_threshold=Decimal("100"),
            topic="alerts-topic",
            channels=(Channel.EMAIL, Channel.SMS),
            min_category_cost=Decimal("1"),
        ),
        push=push or NoPushChannel(),
    )


class TestSpendMonitor:
    """Test one evaluate-enrich-deliver cycle."""

    def setup_method(self):
        self.cost_source = Mock()
        self.delivery = Mock(spec=AlertDelivery)
        self.delivery.deliver.return_value = "outcome"
        self.enrichment = Mock(spec=BudgetGatedInference)
        self.enrichment.enhance.return_value = "enriched"

    def make_monitor(self, config=None, enrichment="default"):
        return SpendMonitor(
            self.cost_source,
            self.delivery,
            config or make_config(),
            enrichment=self.enrichment if enrichment == "default" else enrichment,
        )

    def test_within_threshold_sends_nothing(self):
        self.cost_source.get_current_period_cost.return_value = make_evaluation("100.00")

        result = self.make_monitor().run_cycle()

        assert not result.alert_sent
        assert result.alert_context is None
        self.delivery.deliver.assert_not_called()
        self.enrichment.enhance.assert_not_called()

    def test_over_threshold_enriches_and_delivers(self):
        evaluation = make_evaluation("130.00")
        history = [make_evaluation("90.00")]
        self.cost_source.get_current_period_cost.return_value = evaluation

        result = self.make_monitor().run_cycle(history)

        assert result.alert_sent
        assert result.enrichment == "enriched"
        assert result.delivery == "outcome"
        assert result.alert_context.severity == Severity.WARNING
        assert [c.name for c in result.alert_context.top_categories] == ["Compute", "Storage"]
        self.enrichment.enhance.assert_called_once_with(evaluation, history)

        args, kwargs = self.delivery.deliver.call_args
        assert args[0] is evaluation
        assert args[2] == (Channel.EMAIL, Channel.SMS)
        assert kwargs["push_config"] == NoPushChannel()
        assert kwargs["enrichment"] == "enriched"

    def test_push_config_passed_through(self):
        push = PushChannel(platform_app_id="app-1", bundle_id="com.example.spend")
        self.cost_source.get_current_period_cost.return_value = make_evaluation("130.00")

        self.make_monitor(config=make_config(push)).run_cycle()

        assert self.delivery.deliver.call_args[1]["push_config"] == push

    def test_enrichment_failure_still_delivers(self):
        self.cost_source.get_current_period_cost.return_value = make_evaluation("130.00")
        self.enrichment.enhance.side_effect = InferenceUnavailableError("All inference sub-calls failed")

        result = self.make_monitor().run_cycle()

        assert result.alert_sent
        assert result.enrichment is None
        assert self.delivery.deliver.call_args[1]["enrichment"] is None

    def test_without_enrichment(self):
        self.cost_source.get_current_period_cost.return_value = make_evaluation("130.00")

        result = self.make_monitor(enrichment=None).run_cycle()

        assert result.alert_sent
        assert result.enrichment is None

    def test_cost_source_error_propagates(self):
        self.cost_source.get_current_period_cost.side_effect = TransientInfrastructureError("cost API down")

        with pytest.raises(TransientInfrastructureError):
            self.make_monitor().run_cycle()

        self.delivery.deliver.assert_not_called()

    def test_delivery_error_propagates(self):
        self.cost_source.get_current_period_cost.return_value = make_evaluation("130.00")
        self.delivery.deliver.side_effect = Exception("Topic does not exist")

        with pytest.raises(Exception, match="Topic does not exist"):
            self.make_monitor().run_cycle()


class TestBuildMonitor:
    """Test that configuration reaches the wired components."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.cost_source = Mock()
        self.channel = Mock()
        self.channel.publish.return_value = "msg-1"
        self.service = Mock()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def make_config(self, **inference):
        settings = {"model": "gpt-4o-mini", "cost_threshold": 25, "rate_limit_per_minute": 20,
                    "cache_ttl_minutes": 30}
        settings.update(inference)
        return parse_monitor_config({
            "monitor": {"spend_threshold": 100, "topic": "alerts-topic"},
            "retry": {"max_attempts": 5, "base_delay": 0, "max_delay": 0},
            "inference": settings,
            "storage": {"db_path": os.path.join(self.temp_dir, "monitor.db")},
        })

    def test_configured_values_reach_components(self):
        config = self.make_config()

        monitor = build_monitor(
            config, self.cost_source, self.channel, self.service, kv_store=InMemoryKeyValueStore())

        enrichment = monitor.enrichment
        assert monitor.delivery.topic == "alerts-topic"
        assert monitor.delivery.retry.config.max_attempts == 5
        assert enrichment.retry is monitor.delivery.retry
        assert enrichment.config == config.inference
        assert enrichment.ledger.threshold == Decimal("25")
        assert enrichment.cache.ttl_seconds == 1800.0
        assert enrichment.rate_limiter.nominal_per_minute == 20

    def test_cache_disabled(self):
        monitor = build_monitor(
            self.make_config(cache_results=False), self.cost_source, self.channel, self.service,
            kv_store=InMemoryKeyValueStore(),
        )
        assert monitor.enrichment.cache is None

    def test_without_inference_service(self):
        monitor = build_monitor(self.make_config(), self.cost_source, self.channel)
        assert monitor.enrichment is None

    def test_ledger_defaults_to_sqlite_storage(self):
        build_monitor(self.make_config(), self.cost_source, self.channel, self.service)
        assert os.path.exists(os.path.join(self.temp_dir, "monitor.db"))

    def test_retry_attempts_applied_to_delivery(self):
        self.cost_source.get_current_period_cost.return_value = make_evaluation("130.00")
        self.channel.publish.side_effect = [TransientInfrastructureError("throttled")] * 4 + ["msg-5"]
        monitor = build_monitor(self.make_config(), self.cost_source, self.channel)

        result = monitor.run_cycle()

        assert result.delivery.message_id == "msg-5"
        assert result.delivery.metrics.retry_count == 4
