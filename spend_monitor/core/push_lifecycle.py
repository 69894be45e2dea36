"""
Push endpoint lifecycle management.

Registers device tokens with the push platform, rotates tokens in place,
prunes endpoints the platform reports as dead, and estimates the health of
the platform application's credential.

Per device token: Unregistered -> Active -> {TokenRotated -> Active,
Invalidated -> Removed}.

Registration failures propagate to the registrant. Sweeps and health checks
report problems in their results and never raise.
"""

import json
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from structlog import get_logger

from .channels import PushChannel
from .errors import ValidationError
from .interfaces import EndpointAttributes, PushPlatform
from .retry import RetryExecutor
from .validation import is_valid_device_token, token_preview, validate_device_token
from ..storage.models import PushEndpointRegistration
from ..storage.repository import PushEndpointStore

logger = get_logger(__name__)

# Synthetic token used by liveness probes; valid format, never a real device.
PROBE_DEVICE_TOKEN = "0" * 64

# The push ecosystem does not expose certificate expiry; assume a one-year credential.
NOMINAL_CERTIFICATE_LIFETIME_DAYS = 365
CERTIFICATE_WARNING_DAYS = 30
CERTIFICATE_ERROR_DAYS = 7

_CERTIFICATE_ERROR_MARKERS = ("certificate", "expired", "invalid")


class HealthStatus(Enum):
    """Overall push channel health."""
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class CertificateHealth:
    """Heuristic estimate of the platform credential's health.

    `days_until_expiration` is derived from the platform application's
    creation time and a nominal certificate lifetime. It is a warning signal,
    not the real certificate's expiry date.
    """
    is_valid: bool
    platform_enabled: bool
    days_since_creation: Optional[int] = None
    days_until_expiration: Optional[int] = None
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class SweepReport:
    """Totals of a full sweep over the platform's endpoints."""
    total_endpoints: int
    removed: List[str]
    errors: List[str]


@dataclass(frozen=True)
class PushHealthReport:
    """Combined liveness probe and certificate estimate."""
    overall: HealthStatus
    platform_reachable: bool
    certificate: CertificateHealth
    recommendations: List[str]


class PushEndpointLifecycle:
    """Manages platform endpoints for device tokens.

    All platform calls go through the RetryExecutor and carry `timeout`.
    """

    def __init__(
        self,
        platform: PushPlatform,
        store: PushEndpointStore,
        push_channel: PushChannel,
        retry_executor: Optional[RetryExecutor] = None,
        timeout: Optional[float] = 10.0,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        max_workers: int = 4,
    ):
        if not isinstance(push_channel, PushChannel):
            raise ValueError("push endpoint lifecycle requires a configured PushChannel")
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.platform = platform
        self.store = store
        self.push_channel = push_channel
        self.retry = retry_executor or RetryExecutor()
        self.timeout = timeout
        self._clock = clock
        self._max_workers = max_workers
        self._registration_locks: Dict[str, threading.Lock] = {}
        self._registration_guard = threading.Lock()

    @property
    def app_id(self) -> str:
        return self.push_channel.platform_app_id

    def register_device(self, token: str, user_id: Optional[str] = None) -> PushEndpointRegistration:
        """Register a device token, or refresh an existing registration.

        Idempotent per token: when an active registration exists its metadata
        is updated and the existing endpoint identifier is returned; no second
        platform endpoint is created.

        Raises:
            ValidationError: If the token is malformed
            Platform and store errors: Propagated without modification
        """
        validate_device_token(token)
        # Concurrent registrations of one token must not create two endpoints
        with self._token_lock(token):
            return self._register(token, user_id)

    def _token_lock(self, token: str) -> threading.Lock:
        with self._registration_guard:
            return self._registration_locks.setdefault(token.lower(), threading.Lock())

    def _register(self, token: str, user_id: Optional[str]) -> PushEndpointRegistration:
        now = self._clock()

        existing = self.store.get_active(token)
        if existing is not None:
            updated = existing.with_updates(
                user_id=user_id if user_id is not None else existing.user_id,
                updated_at=now,
            )
            self.store.save(updated)
            logger.info(
                "Device already registered, metadata updated",
                endpoint_id=existing.endpoint_id,
                token=token_preview(token),
            )
            return updated

        user_data = json.dumps({"userId": user_id, "registrationDate": now.isoformat()}) if user_id else None
        endpoint_id = self.retry.execute(
            lambda: self.platform.create_endpoint(self.app_id, token, user_data, timeout=self.timeout),
            operation_name="create_endpoint",
        )
        if not endpoint_id:
            raise ValidationError("Push platform returned no endpoint identifier")

        registration = PushEndpointRegistration(
            device_token=token,
            endpoint_id=endpoint_id,
            user_id=user_id,
            created_at=now,
            updated_at=now,
            active=True,
        )
        self.store.save(registration)
        logger.info(
            "Device registered",
            endpoint_id=endpoint_id,
            token=token_preview(token),
            bundle_id=self.push_channel.bundle_id,
        )
        return registration

    def update_device_token(self, endpoint_id: str, new_token: str) -> Optional[PushEndpointRegistration]:
        """Point an existing endpoint at a rotated device token.

        Returns:
            The updated local registration, or None if the endpoint has no local row

        Raises:
            ValidationError: If the token is malformed or owned by another active endpoint;
                the platform endpoint is left untouched
        """
        self.store.check_rotation(endpoint_id, new_token)
        self.retry.execute(
            lambda: self.platform.update_endpoint_token(endpoint_id, new_token, timeout=self.timeout),
            operation_name="update_endpoint_token",
        )
        rotated = self.store.rotate_token(endpoint_id, new_token)
        logger.info(
            "Device token rotated",
            endpoint_id=endpoint_id,
            token=token_preview(new_token),
            local_row=rotated is not None,
        )
        return rotated

    def deregister_device(self, token: str) -> bool:
        """Delete a device's platform endpoint and deactivate its registration.

        Returns:
            False if the token had no active registration
        """
        validate_device_token(token)
        registration = self.store.get_active(token)
        if registration is None:
            return False
        self._delete_endpoint(registration.endpoint_id)
        self.store.deactivate(token)
        logger.info("Device deregistered", endpoint_id=registration.endpoint_id, token=token_preview(token))
        return True

    def list_devices(self, active_only: bool = True, limit: int = 100) -> List[PushEndpointRegistration]:
        """Registrations from the local store."""
        registrations, _ = self.store.list_registrations(active_only=active_only, limit=limit)
        return registrations

    def sweep_invalid_tokens(self, endpoint_ids: List[str]) -> List[str]:
        """Remove endpoints the platform reports as dead.

        An endpoint is condemned if it is disabled, has no token, has a
        malformed token, or if fetching its attributes fails. Condemned
        endpoints are deleted from the platform and deactivated locally.
        Cleanup failures are logged and never stop the sweep.

        Returns:
            Removed endpoint identifiers, in input order
        """
        errors: List[str] = []
        removed = self._sweep(endpoint_ids, errors)
        if removed:
            logger.info("Removed invalid device endpoints", removed=len(removed), errors=len(errors))
        return removed

    def sweep_platform(self) -> SweepReport:
        """Sweep every endpoint of the platform application, page by page."""
        total = 0
        removed: List[str] = []
        errors: List[str] = []
        page_token: Optional[str] = None

        while True:
            try:
                page = self.retry.execute(
                    lambda: self.platform.list_endpoints(self.app_id, page_token, timeout=self.timeout),
                    operation_name="list_endpoints",
                )
            except Exception as error:
                errors.append(f"Failed to list endpoints: {error}")
                logger.error("Endpoint listing failed", error=str(error), processed=total)
                break

            total += len(page.endpoint_ids)
            removed.extend(self._sweep(page.endpoint_ids, errors))
            page_token = page.next_page_token
            if not page_token:
                break

        logger.info(
            "Platform sweep completed",
            total_endpoints=total,
            removed=len(removed),
            errors=len(errors),
        )
        return SweepReport(total_endpoints=total, removed=removed, errors=errors)

    def validate_platform_health(self) -> bool:
        """Liveness probe: create then delete a synthetic endpoint.

        Proves the platform is reachable and accepts the configured
        credential. Not a correctness probe.
        """
        try:
            self._probe_endpoint()
        except Exception as error:
            logger.warning("Push platform validation failed", error=str(error))
            return False
        logger.info("Push platform validation successful")
        return True

    def estimate_certificate_health(self) -> CertificateHealth:
        """Estimate credential health from platform age and a synthetic probe."""
        warnings: List[str] = []
        errors: List[str] = []

        try:
            attributes = self.retry.execute(
                lambda: self.platform.get_platform_attributes(self.app_id, timeout=self.timeout),
                operation_name="get_platform_attributes",
            )
        except Exception as error:
            logger.error("Certificate health validation failed", error=str(error))
            return CertificateHealth(
                is_valid=False,
                platform_enabled=False,
                errors=[f"Validation failed: {error}"],
            )

        if not attributes.enabled:
            errors.append("Platform application is disabled")

        try:
            self._probe_endpoint()
        except Exception as error:
            message = str(error)
            lowered = message.lower()
            if "invalidparameter" in type(error).__name__.lower() or any(
                marker in lowered for marker in _CERTIFICATE_ERROR_MARKERS
            ):
                errors.append(f"Certificate validation failed: {message}")
                if "expired" in lowered:
                    warnings.append("Certificate appears to be expired")
            else:
                warnings.append(f"Certificate validation inconclusive: {message}")

        now = _as_utc(self._clock())
        creation_time = _as_utc(attributes.creation_time) if attributes.creation_time else now
        days_since_creation = (now - creation_time).days
        estimated_days = NOMINAL_CERTIFICATE_LIFETIME_DAYS - days_since_creation

        if estimated_days < CERTIFICATE_WARNING_DAYS:
            warnings.append(f"Certificate may expire soon (estimated {estimated_days} days remaining)")
        if estimated_days < CERTIFICATE_ERROR_DAYS:
            errors.append(f"Certificate expiration imminent (estimated {estimated_days} days remaining)")

        health = CertificateHealth(
            is_valid=not errors,
            platform_enabled=attributes.enabled,
            days_since_creation=days_since_creation,
            days_until_expiration=estimated_days if estimated_days > 0 else None,
            warnings=warnings,
            errors=errors,
        )
        logger.info(
            "Certificate health estimated",
            is_valid=health.is_valid,
            days_since_creation=days_since_creation,
            estimated_days_remaining=estimated_days,
            warnings=len(warnings),
            errors=len(errors),
        )
        return health

    def health_check(self) -> PushHealthReport:
        """Combine the liveness probe and the certificate estimate."""
        reachable = self.validate_platform_health()
        certificate = self.estimate_certificate_health()

        recommendations: List[str] = []
        overall = HealthStatus.HEALTHY
        if not reachable:
            overall = HealthStatus.CRITICAL
            recommendations.append("Platform application validation failed - check configuration")
        if certificate.errors:
            overall = HealthStatus.CRITICAL
            recommendations.append("Renew the push certificate immediately")
        elif certificate.warnings:
            if overall == HealthStatus.HEALTHY:
                overall = HealthStatus.WARNING
            recommendations.append("Plan push certificate renewal")

        return PushHealthReport(
            overall=overall,
            platform_reachable=reachable,
            certificate=certificate,
            recommendations=recommendations,
        )

    def _sweep(self, endpoint_ids: List[str], errors: List[str]) -> List[str]:
        if not endpoint_ids:
            return []
        workers = min(self._max_workers, len(endpoint_ids))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            outcomes = list(pool.map(self._sweep_one, endpoint_ids))

        removed = []
        for endpoint_id, (was_removed, error) in zip(endpoint_ids, outcomes):
            if error:
                errors.append(error)
            if was_removed:
                removed.append(endpoint_id)
        return removed

    def _sweep_one(self, endpoint_id: str) -> Tuple[bool, Optional[str]]:
        """Check one endpoint; returns (removed, error message)."""
        reason = None
        error_message = None
        try:
            attributes = self.retry.execute(
                lambda: self.platform.get_endpoint_attributes(endpoint_id, timeout=self.timeout),
                operation_name="get_endpoint_attributes",
            )
            reason = _condemnation_reason(attributes)
        except Exception as error:
            reason = "unreachable"
            error_message = f"Failed to process endpoint {endpoint_id}: {error}"
            logger.warning("Endpoint attributes unavailable, condemning", endpoint_id=endpoint_id, error=str(error))

        if reason is None:
            return False, None

        logger.info("Found invalid endpoint", endpoint_id=endpoint_id, reason=reason)
        try:
            self._delete_endpoint(endpoint_id)
        except Exception as error:
            logger.error("Failed to delete invalid endpoint", endpoint_id=endpoint_id, error=str(error))
            error_message = f"Failed to delete endpoint {endpoint_id}: {error}"

        try:
            self.store.deactivate_endpoint(endpoint_id)
        except Exception as error:
            logger.error("Failed to deactivate local registration", endpoint_id=endpoint_id, error=str(error))
            error_message = f"Failed to deactivate registration for {endpoint_id}: {error}"

        return True, error_message

    def _delete_endpoint(self, endpoint_id: str) -> None:
        self.retry.execute(
            lambda: self.platform.delete_endpoint(endpoint_id, timeout=self.timeout),
            operation_name="delete_endpoint",
        )
        logger.debug("Deleted platform endpoint", endpoint_id=endpoint_id)

    def _probe_endpoint(self) -> None:
        endpoint_id = self.retry.execute(
            lambda: self.platform.create_endpoint(self.app_id, PROBE_DEVICE_TOKEN, None, timeout=self.timeout),
            operation_name="probe_create_endpoint",
        )
        if endpoint_id:
            self._delete_endpoint(endpoint_id)


def _condemnation_reason(attributes: EndpointAttributes) -> Optional[str]:
    if not attributes.enabled:
        return "disabled"
    if not attributes.token:
        return "missing_token"
    if not is_valid_device_token(attributes.token):
        return "malformed_token"
    return None


def _as_utc(moment: datetime) -> datetime:
    """Naive timestamps are taken to be UTC."""
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)
