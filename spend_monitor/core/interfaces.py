"""
Interfaces of the external collaborators.

The monitor only depends on these protocols; concrete clients (the OpenAI
inference adapter, the SQLite key-value store, or test doubles) plug in behind
them. Every network-facing method takes a `timeout` in seconds.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from .evaluation import CostEvaluation


@dataclass(frozen=True)
class OutboundMessage:
    """Multi-part message published to the broadcast channel.

    `per_channel_payloads` is keyed by channel name: `default`, `email`,
    `sms`, and the push platform key (`APNS` / `APNS_SANDBOX`).
    """
    default_text: str
    per_channel_payloads: Dict[str, str]
    subject: str
    attributes: Dict[str, str] = field(default_factory=dict)

    def to_json(self) -> str:
        """Message body in the broadcast channel's JSON message structure."""
        body = {"default": self.default_text}
        body.update(self.per_channel_payloads)
        return json.dumps(body, ensure_ascii=False)

    def payload_size(self) -> int:
        """Size in bytes of the serialized message plus subject and attributes."""
        size = len(self.to_json().encode("utf-8")) + len(self.subject.encode("utf-8"))
        for key, value in self.attributes.items():
            size += len(key.encode("utf-8")) + len(value.encode("utf-8"))
        return size


@dataclass(frozen=True)
class EndpointAttributes:
    """Attributes the push platform reports for one endpoint."""
    enabled: bool
    token: Optional[str] = None


@dataclass(frozen=True)
class PlatformAttributes:
    """Attributes of the push platform application."""
    enabled: bool
    creation_time: Optional[datetime] = None
    platform_type: str = "APNS"


@dataclass(frozen=True)
class EndpointPage:
    """One page of endpoint identifiers from list_endpoints."""
    endpoint_ids: List[str]
    next_page_token: Optional[str] = None


@dataclass(frozen=True)
class InferenceResponse:
    """Result of a single inference call."""
    text: str
    estimated_cost: Decimal
    tokens_used: int


class CostDataSource(Protocol):
    """Black-box source of the current period's spend."""

    def get_current_period_cost(self) -> CostEvaluation:
        ...


class MessageChannel(Protocol):
    """Broadcast message channel (topic fan-out to email, SMS and push)."""

    def publish(self, topic: str, message: OutboundMessage, timeout: Optional[float] = None) -> str:
        ...


class PushPlatform(Protocol):
    """Third-party mobile push platform owning certificate and token semantics."""

    def create_endpoint(
        self,
        app_id: str,
        token: str,
        user_data: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        ...

    def update_endpoint_token(self, endpoint_id: str, token: str, timeout: Optional[float] = None) -> None:
        ...

    def delete_endpoint(self, endpoint_id: str, timeout: Optional[float] = None) -> None:
        ...

    def get_endpoint_attributes(self, endpoint_id: str, timeout: Optional[float] = None) -> EndpointAttributes:
        ...

    def get_platform_attributes(self, app_id: str, timeout: Optional[float] = None) -> PlatformAttributes:
        ...

    def list_endpoints(
        self,
        app_id: str,
        page_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> EndpointPage:
        ...


class InferenceService(Protocol):
    """Paid text-generation service used for enrichment."""

    def invoke(
        self,
        prompt: str,
        max_tokens: int,
        temperature: float,
        timeout: Optional[float] = None,
    ) -> InferenceResponse:
        ...


RecordFilter = Callable[[Dict[str, Any]], bool]


class KeyValueStore(Protocol):
    """Durable key-value store of JSON-compatible records."""

    def put(self, key: str, record: Dict[str, Any]) -> None:
        ...

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    def delete(self, key: str) -> None:
        ...

    def scan(
        self,
        filter: Optional[RecordFilter] = None,
        limit: int = 100,
        page_token: Optional[str] = None,
        prefix: str = "",
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        ...
