"""
Configuration management and loading.

Loads the monitor configuration from YAML with strict validation: unknown
keys are rejected and required keys enforced, so a typo cannot silently
disable an alert channel or the inference budget.
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml

from ..core.channels import Channel, NoPushChannel, PushChannel, PushConfig
from ..core.errors import ConfigurationError
from ..core.pricing import PRICING_TABLE
from ..core.retry import RetryConfig
from ..storage.db import DEFAULT_DB_PATH

TOPIC_ARN_PATTERN = re.compile(r"^arn:aws:sns:[a-z0-9-]+:\d{12}:[a-zA-Z0-9_-]+$")
PLATFORM_APP_ARN_PATTERN = re.compile(
    r"^arn:aws:sns:[a-z0-9-]+:\d{12}:app/APNS(_SANDBOX)?/[a-zA-Z0-9_-]+$"
)
BUNDLE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9.-]+\.[a-zA-Z0-9.-]+$")
REGION_PATTERN = re.compile(r"^[a-z]{2}-[a-z]+-\d+$")

# Channels that can be listed in monitor.channels; push is enabled by the push section
CONFIGURABLE_CHANNELS = (Channel.EMAIL, Channel.SMS)


@dataclass(frozen=True)
class MonitorSettings:
    """What to watch and where to send alerts."""
    spend_threshold: Decimal
    topic: str
    region: str = "us-east-1"
    channels: Tuple[Channel, ...] = CONFIGURABLE_CHANNELS
    min_category_cost: Decimal = Decimal("0")

    def __post_init__(self):
        """Validate monitor values."""
        if self.spend_threshold <= 0:
            raise ConfigurationError("spend_threshold must be > 0")
        if not self.topic or not self.topic.strip():
            raise ConfigurationError("topic is required and cannot be empty")
        if self.topic.startswith("arn:") and not TOPIC_ARN_PATTERN.match(self.topic):
            raise ConfigurationError(f"topic ARN format is invalid: {self.topic}")
        if self.min_category_cost < 0:
            raise ConfigurationError("min_category_cost cannot be negative")
        if not self.channels:
            raise ConfigurationError("at least one channel must be enabled")


@dataclass(frozen=True)
class InferenceConfig:
    """Budget-gated AI enrichment settings."""
    enabled: bool = False
    model: str = "gpt-4o-mini"
    max_tokens: int = 1000
    temperature: float = 0.3
    cost_threshold: Decimal = Decimal("10")
    rate_limit_per_minute: int = 10
    cache_results: bool = True
    cache_ttl_minutes: int = 60
    fallback_on_error: bool = True
    timeout_seconds: float = 30.0

    def __post_init__(self):
        """Validate inference values."""
        if self.enabled and not PRICING_TABLE.supports(self.model):
            raise ConfigurationError(f"Unsupported inference model: {self.model}")
        if self.max_tokens <= 0:
            raise ConfigurationError("max_tokens must be > 0")
        if not 0.0 <= self.temperature <= 1.0:
            raise ConfigurationError("temperature must be between 0.0 and 1.0")
        if self.cost_threshold <= 0:
            raise ConfigurationError("cost_threshold must be > 0")
        if self.rate_limit_per_minute <= 0:
            raise ConfigurationError("rate_limit_per_minute must be > 0")
        if self.cache_results and self.cache_ttl_minutes <= 0:
            raise ConfigurationError("cache_ttl_minutes must be > 0 when caching is enabled")
        if self.timeout_seconds <= 0:
            raise ConfigurationError("timeout_seconds must be > 0")

    @property
    def cache_ttl_seconds(self) -> float:
        return self.cache_ttl_minutes * 60.0


@dataclass(frozen=True)
class StorageConfig:
    db_path: str = DEFAULT_DB_PATH


@dataclass(frozen=True)
class MonitorConfig:
    """Complete monitor configuration."""
    monitor: MonitorSettings
    retry: RetryConfig = field(default_factory=RetryConfig)
    push: PushConfig = field(default_factory=NoPushChannel)
    inference: InferenceConfig = field(default_factory=InferenceConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    @property
    def push_enabled(self) -> bool:
        return isinstance(self.push, PushChannel)


_SECTION_KEYS = {
    "monitor": {"spend_threshold", "topic", "region", "channels", "min_category_cost"},
    "retry": {"max_attempts", "base_delay", "max_delay", "backoff_multiplier"},
    "push": {"platform_app_id", "bundle_id", "sandbox"},
    "inference": {
        "enabled", "model", "max_tokens", "temperature", "cost_threshold",
        "rate_limit_per_minute", "cache_results", "cache_ttl_minutes",
        "fallback_on_error", "timeout_seconds",
    },
    "storage": {"db_path"},
}


def load_monitor_config(path: str) -> MonitorConfig:
    """Load and validate the monitor configuration from a YAML file.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated MonitorConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        ConfigurationError: If YAML or configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Monitor config file not found: {path}")

    with open(config_path, "r", encoding="utf-8") as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ConfigurationError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ConfigurationError("Configuration must be a mapping")

    return parse_monitor_config(raw_config)


def parse_monitor_config(raw_config: Dict[str, Any]) -> MonitorConfig:
    """Validate an already-decoded configuration mapping.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    unknown_keys = set(raw_config.keys()) - set(_SECTION_KEYS)
    if unknown_keys:
        raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown_keys)}")

    if "monitor" not in raw_config:
        raise ConfigurationError("Missing required 'monitor' section")

    sections = {name: _section(raw_config, name) for name in _SECTION_KEYS}

    try:
        return MonitorConfig(
            monitor=_parse_monitor(sections["monitor"]),
            retry=_parse_retry(sections["retry"]),
            push=_parse_push(sections["push"]) if "push" in raw_config else NoPushChannel(),
            inference=_parse_inference(sections["inference"]) if "inference" in raw_config else InferenceConfig(),
            storage=StorageConfig(db_path=str(sections["storage"].get("db_path", DEFAULT_DB_PATH))),
        )
    except ConfigurationError:
        raise
    except (ValueError, TypeError) as e:
        raise ConfigurationError(str(e))


def _section(raw_config: Dict[str, Any], name: str) -> Dict[str, Any]:
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - _SECTION_KEYS[name]
    if unknown_keys:
        raise ConfigurationError(f"Unknown keys in {name}: {sorted(unknown_keys)}")
    return data


def _decimal(value: Any, path: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ConfigurationError(f"'{path}' must be a number")
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ConfigurationError(f"'{path}' must be a number")
    if not amount.is_finite():
        raise ConfigurationError(f"'{path}' must be a finite number")
    return amount


def _number(value: Any, path: str, kind=float):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"'{path}' must be a number")
    if kind is int and value != int(value):
        raise ConfigurationError(f"'{path}' must be an integer")
    return kind(value)


def _flag(value: Any, path: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigurationError(f"'{path}' must be a boolean")
    return value


def _required(data: Dict[str, Any], key: str, section: str) -> Any:
    if key not in data:
        raise ConfigurationError(f"Missing required '{key}' in {section}")
    return data[key]


def _parse_monitor(data: Dict[str, Any]) -> MonitorSettings:
    raw_channels = data.get("channels", [channel.value for channel in CONFIGURABLE_CHANNELS])
    if not isinstance(raw_channels, list):
        raise ConfigurationError("'monitor.channels' must be a list")

    allowed = {channel.value: channel for channel in CONFIGURABLE_CHANNELS}
    channels = []
    for name in raw_channels:
        if not isinstance(name, str) or name.lower() not in allowed:
            raise ConfigurationError(
                f"'monitor.channels' entries must be one of: {sorted(allowed)} "
                "(push is enabled by the 'push' section)"
            )
        channel = allowed[name.lower()]
        if channel not in channels:
            channels.append(channel)

    topic = _required(data, "topic", "monitor")
    if not isinstance(topic, str):
        raise ConfigurationError("'monitor.topic' must be a string")

    return MonitorSettings(
        spend_threshold=_decimal(_required(data, "spend_threshold", "monitor"), "monitor.spend_threshold"),
        topic=topic,
        region=str(data.get("region", "us-east-1")),
        channels=tuple(channels),
        min_category_cost=_decimal(data.get("min_category_cost", 0), "monitor.min_category_cost"),
    )


def _parse_retry(data: Dict[str, Any]) -> RetryConfig:
    defaults = RetryConfig()
    return RetryConfig(
        max_attempts=_number(data.get("max_attempts", defaults.max_attempts), "retry.max_attempts", int),
        base_delay=_number(data.get("base_delay", defaults.base_delay), "retry.base_delay"),
        max_delay=_number(data.get("max_delay", defaults.max_delay), "retry.max_delay"),
        backoff_multiplier=_number(
            data.get("backoff_multiplier", defaults.backoff_multiplier), "retry.backoff_multiplier"
        ),
    )


def _parse_push(data: Dict[str, Any]) -> PushChannel:
    platform_app_id = _required(data, "platform_app_id", "push")
    bundle_id = _required(data, "bundle_id", "push")
    if not isinstance(platform_app_id, str) or not isinstance(bundle_id, str):
        raise ConfigurationError("'push.platform_app_id' and 'push.bundle_id' must be strings")
    if platform_app_id.startswith("arn:") and not PLATFORM_APP_ARN_PATTERN.match(platform_app_id):
        raise ConfigurationError(f"push platform application ARN format is invalid: {platform_app_id}")
    if not BUNDLE_ID_PATTERN.match(bundle_id):
        raise ConfigurationError(f"push bundle ID format is invalid: {bundle_id}")

    return PushChannel(
        platform_app_id=platform_app_id,
        bundle_id=bundle_id,
        sandbox=_flag(data.get("sandbox", False), "push.sandbox"),
    )


def _parse_inference(data: Dict[str, Any]) -> InferenceConfig:
    defaults = InferenceConfig()
    model = data.get("model", defaults.model)
    if not isinstance(model, str):
        raise ConfigurationError("'inference.model' must be a string")

    return InferenceConfig(
        enabled=_flag(data.get("enabled", True), "inference.enabled"),
        model=model,
        max_tokens=_number(data.get("max_tokens", defaults.max_tokens), "inference.max_tokens", int),
        temperature=_number(data.get("temperature", defaults.temperature), "inference.temperature"),
        cost_threshold=_decimal(data.get("cost_threshold", defaults.cost_threshold), "inference.cost_threshold"),
        rate_limit_per_minute=_number(
            data.get("rate_limit_per_minute", defaults.rate_limit_per_minute),
            "inference.rate_limit_per_minute",
            int,
        ),
        cache_results=_flag(data.get("cache_results", defaults.cache_results), "inference.cache_results"),
        cache_ttl_minutes=_number(
            data.get("cache_ttl_minutes", defaults.cache_ttl_minutes), "inference.cache_ttl_minutes", int
        ),
        fallback_on_error=_flag(
            data.get("fallback_on_error", defaults.fallback_on_error), "inference.fallback_on_error"
        ),
        timeout_seconds=_number(
            data.get("timeout_seconds", defaults.timeout_seconds), "inference.timeout_seconds"
        ),
    )


def collect_config_warnings(config: MonitorConfig) -> List[str]:
    """Non-fatal issues worth surfacing before the monitor runs.

    Args:
        config: A validated configuration

    Returns:
        Human-readable warnings, empty if none
    """
    warnings = []
    monitor = config.monitor

    if monitor.spend_threshold < 1:
        warnings.append("Spend threshold is very low (< $1), may generate frequent alerts")
    elif monitor.spend_threshold > 10000:
        warnings.append("Spend threshold is very high (> $10,000), may miss cost overruns")
    if not REGION_PATTERN.match(monitor.region):
        warnings.append(f"Region may be invalid: {monitor.region}")
    if config.retry.max_attempts > 10:
        warnings.append("Retry attempts should be between 1 and 10")

    if isinstance(config.push, PushChannel) and config.push.sandbox:
        warnings.append("Push sandbox mode is enabled; production devices will not receive alerts")

    inference = config.inference
    if not inference.enabled:
        warnings.append("AI analysis is disabled - no AI insights will be available")
        return warnings

    if inference.max_tokens < 100:
        warnings.append("Inference max_tokens is very low (< 100), may truncate AI responses")
    elif inference.max_tokens > 4000:
        warnings.append("Inference max_tokens is very high (> 4000), may increase costs significantly")
    if inference.temperature > 0.8:
        warnings.append("High temperature (> 0.8) may produce less consistent AI responses")
    if inference.cost_threshold < 1:
        warnings.append("Inference cost threshold is very low (< $1), may disable AI analysis quickly")
    if inference.rate_limit_per_minute > 60:
        warnings.append("High rate limit (> 60/min) may exceed inference service limits")
    if inference.cache_results:
        if inference.cache_ttl_minutes < 5:
            warnings.append("Very short cache TTL (< 5 minutes) may not provide significant cost savings")
        elif inference.cache_ttl_minutes > 1440:
            warnings.append("Very long cache TTL (> 24 hours) may provide stale AI insights")
    else:
        warnings.append("Inference result caching is disabled - every alert cycle pays for AI analysis")
    if not inference.fallback_on_error:
        warnings.append("Inference fallback disabled - enrichment errors will fail the analysis")

    return warnings
