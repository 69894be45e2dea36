"""
Data models for storage layer.

Defines the persisted records and their JSON record form.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class PushEndpointRegistration:
    """Mapping of one device token to its push platform endpoint.

    At most one active registration exists per device token. Token rotation
    keeps the endpoint identifier and swaps the token; deregistration and
    sweep-detected invalidity flip `active` to False.
    """
    device_token: str
    endpoint_id: str
    created_at: datetime
    updated_at: datetime
    user_id: Optional[str] = None
    active: bool = True

    def with_updates(self, **changes: Any) -> "PushEndpointRegistration":
        """Copy with the given fields replaced."""
        return replace(self, **changes)

    def to_record(self) -> Dict[str, Any]:
        return {
            "device_token": self.device_token,
            "endpoint_id": self.endpoint_id,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "active": self.active,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "PushEndpointRegistration":
        return cls(
            device_token=record["device_token"],
            endpoint_id=record["endpoint_id"],
            user_id=record.get("user_id"),
            created_at=datetime.fromisoformat(record["created_at"]),
            updated_at=datetime.fromisoformat(record["updated_at"]),
            active=bool(record.get("active", True)),
        )


@dataclass(frozen=True)
class BudgetLedgerEntry:
    """Accumulated paid-inference spend for one billing period (YYYY-MM)."""
    period_id: str
    spent: Decimal
    threshold: Decimal
    reserved: Decimal = Decimal("0")
    disabled: bool = False

    @property
    def remaining(self) -> Decimal:
        """Budget left after recorded spend and outstanding reservations."""
        return self.threshold - self.spent - self.reserved

    @property
    def utilization(self) -> Decimal:
        """Recorded spend as a fraction of the threshold."""
        if self.threshold <= 0:
            return Decimal("1")
        return self.spent / self.threshold

    def to_record(self) -> Dict[str, Any]:
        # Reservations belong to in-flight calls of this process and are not persisted
        return {
            "period_id": self.period_id,
            "spent": str(self.spent),
            "threshold": str(self.threshold),
            "disabled": self.disabled,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "BudgetLedgerEntry":
        return cls(
            period_id=record["period_id"],
            spent=Decimal(record["spent"]),
            threshold=Decimal(record["threshold"]),
            disabled=bool(record.get("disabled", False)),
        )
