"""
Error taxonomy and classification.

Every error kind the monitor raises lives here, together with the only
functions allowed to decide whether an error is retryable or whether it
implicates the push channel. Keeping the string heuristics in one place makes
them auditable and swappable.
"""

import socket
from enum import Enum
from typing import Any, Dict, Optional


class SpendMonitorError(Exception):
    """Base class for all spend monitor errors."""
    code = "SPEND_MONITOR_ERROR"
    retryable = False

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view of the error for logs and API responses."""
        return {
            "name": type(self).__name__,
            "code": self.code,
            "message": str(self),
            "retryable": self.retryable,
            "context": self.context,
        }


class ValidationError(SpendMonitorError):
    """Malformed input: device token shape, missing required fields."""
    code = "VALIDATION_ERROR"


class ConfigurationError(ValidationError, ValueError):
    """Configuration file is missing, malformed, or inconsistent."""
    code = "CONFIGURATION_ERROR"


class TransientInfrastructureError(SpendMonitorError):
    """Throttling, 5xx, timeout, connection reset."""
    code = "TRANSIENT_INFRASTRUCTURE_ERROR"
    retryable = True


class DeadlineExceededError(TransientInfrastructureError):
    """An outbound call ran past its caller-supplied deadline.

    Retryable unless the caller imposed the deadline to mean "do not retry".
    """
    code = "DEADLINE_EXCEEDED"

    def __init__(
        self,
        message: str,
        retry_on_expiry: bool = True,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, context)
        self.retry_on_expiry = retry_on_expiry
        self.retryable = retry_on_expiry


class PermanentInfrastructureError(SpendMonitorError):
    """Auth failure, resource not found, malformed request."""
    code = "PERMANENT_INFRASTRUCTURE_ERROR"


class PushChannelDeliveryError(TransientInfrastructureError):
    """Push platform rejected delivery; triggers degraded-mode redelivery."""
    code = "PUSH_CHANNEL_DELIVERY_ERROR"


class InferenceUnavailableError(SpendMonitorError):
    """Every enrichment sub-call failed and fallback-on-error is disabled."""
    code = "INFERENCE_UNAVAILABLE"


class ErrorKind(Enum):
    """Closed set of error kinds the composition components branch on."""
    VALIDATION = "validation"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    PUSH_CHANNEL = "push_channel"
    UNKNOWN = "unknown"


# Lower-cased substrings that mark an error as coming from the push ecosystem.
PUSH_FAILURE_INDICATORS = (
    "endpoint disabled",
    "endpoint is disabled",
    "invalid token",
    "invalid device token",
    "certificate",
    "platform application",
    "platformapplication",
    "apns",
)

RETRYABLE_ERROR_CODES = frozenset({
    "ThrottlingException",
    "Throttling",
    "TooManyRequestsException",
    "ServiceUnavailable",
    "ServiceUnavailableException",
    "InternalServerError",
    "InternalServerErrorException",
    "InternalError",
    "RequestTimeout",
    "RequestTimeoutException",
    "ModelTimeoutException",
    "ECONNRESET",
    "ETIMEDOUT",
})

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def _status_code(error: BaseException) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_push_channel_failure(error: BaseException) -> bool:
    """True if the error class or message points at the push platform."""
    if isinstance(error, PushChannelDeliveryError):
        return True
    message = f"{type(error).__name__} {error}".lower()
    return any(indicator in message for indicator in PUSH_FAILURE_INDICATORS)


def classify_error(error: BaseException) -> ErrorKind:
    """Map any exception onto the closed ErrorKind set.

    Order matters: push indicators win over the generic transient/permanent
    split so delivery can degrade, validation errors are never reclassified.
    """
    if isinstance(error, ValidationError):
        return ErrorKind.VALIDATION
    if is_push_channel_failure(error):
        return ErrorKind.PUSH_CHANNEL
    if isinstance(error, DeadlineExceededError):
        return ErrorKind.TRANSIENT if error.retry_on_expiry else ErrorKind.PERMANENT
    if isinstance(error, TransientInfrastructureError):
        return ErrorKind.TRANSIENT
    if isinstance(error, PermanentInfrastructureError):
        return ErrorKind.PERMANENT
    if isinstance(error, (ConnectionError, TimeoutError, socket.timeout)):
        return ErrorKind.TRANSIENT

    status = _status_code(error)
    if status is not None:
        if status in RETRYABLE_STATUS_CODES or status >= 500:
            return ErrorKind.TRANSIENT
        if 400 <= status < 500:
            return ErrorKind.PERMANENT

    code = getattr(error, "code", None)
    if code in RETRYABLE_ERROR_CODES or type(error).__name__ in RETRYABLE_ERROR_CODES:
        return ErrorKind.TRANSIENT

    return ErrorKind.UNKNOWN


def is_retryable(error: BaseException) -> bool:
    """Default retry classification used by RetryExecutor.

    Transient errors are retried. A push-implicated error is retried only when
    it is also transient (PushChannelDeliveryError); a generic error that
    merely mentions a disabled endpoint goes straight to degraded delivery.
    """
    kind = classify_error(error)
    if kind == ErrorKind.TRANSIENT:
        return True
    if kind == ErrorKind.PUSH_CHANNEL:
        return isinstance(error, TransientInfrastructureError) and error.retryable
    return False
