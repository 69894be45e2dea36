"""
Notification channel kinds and the push channel configuration.

Push configuration is an explicit sum type: either NoPushChannel or a
PushChannel with its platform details. Code that branches on "is push
configured" matches on the type instead of probing optional fields.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union


class Channel(Enum):
    """Channel kinds an alert fans out to."""
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


@dataclass(frozen=True)
class NoPushChannel:
    """Push notifications are not configured."""


@dataclass(frozen=True)
class PushChannel:
    """Mobile push notifications through a platform application."""
    platform_app_id: str
    bundle_id: str
    sandbox: bool = False

    def __post_init__(self):
        """Validate push channel values."""
        if not self.platform_app_id or not self.platform_app_id.strip():
            raise ValueError("platform_app_id is required and cannot be empty")
        if not self.bundle_id or not self.bundle_id.strip():
            raise ValueError("bundle_id is required and cannot be empty")


PushConfig = Union[NoPushChannel, PushChannel]


def push_payload_key(push_config: PushChannel) -> str:
    """Per-channel payload key the broadcast channel routes to the push platform."""
    return "APNS_SANDBOX" if push_config.sandbox else "APNS"
