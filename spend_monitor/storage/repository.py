"""
Repository pattern for data access.

PushEndpointStore keeps the device token -> platform endpoint mapping on top
of any KeyValueStore. Token format is validated before every mutation.
"""

import threading
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from .db import DEFAULT_DB_PATH
from .kv import SqliteKeyValueStore
from .models import PushEndpointRegistration
from ..core.errors import ValidationError
from ..core.interfaces import KeyValueStore
from ..core.validation import validate_device_token

DEVICE_KEY_PREFIX = "device#"


def device_key(token: str) -> str:
    """Store key for a device token; tokens are case-insensitive."""
    return f"{DEVICE_KEY_PREFIX}{token.lower()}"


class PushEndpointStore:
    """Durable mapping of device token to push platform endpoint.

    Read-modify-write sequences are serialized with a lock so concurrent
    sweeps and rotations cannot interleave on the same row.
    """

    def __init__(
        self,
        kv_store: KeyValueStore,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """Initialize the store.

        Args:
            kv_store: Backing key-value store
            clock: Source of timestamps for updated_at
        """
        self._kv = kv_store
        self._clock = clock
        self._lock = threading.RLock()

    def get(self, token: str) -> Optional[PushEndpointRegistration]:
        """Registration for a token, active or not."""
        record = self._kv.get(device_key(token))
        return PushEndpointRegistration.from_record(record) if record else None

    def get_active(self, token: str) -> Optional[PushEndpointRegistration]:
        """Active registration for a token, or None."""
        registration = self.get(token)
        return registration if registration and registration.active else None

    def find_by_endpoint(self, endpoint_id: str) -> Optional[PushEndpointRegistration]:
        """Registration pointing at an endpoint, preferring an active one."""
        records, _ = self._kv.scan(
            filter=lambda record: record.get("endpoint_id") == endpoint_id,
            limit=10,
            prefix=DEVICE_KEY_PREFIX,
        )
        registrations = [PushEndpointRegistration.from_record(record) for record in records]
        for registration in registrations:
            if registration.active:
                return registration
        return registrations[0] if registrations else None

    def save(self, registration: PushEndpointRegistration) -> PushEndpointRegistration:
        """Insert or replace the registration for its token.

        Raises:
            ValidationError: If the device token is malformed
        """
        validate_device_token(registration.device_token)
        with self._lock:
            self._kv.put(device_key(registration.device_token), registration.to_record())
        return registration

    def check_rotation(self, endpoint_id: str, new_token: str) -> None:
        """Raise if `new_token` cannot be moved onto `endpoint_id`.

        Raises:
            ValidationError: If the token is malformed or already owned by another active endpoint
        """
        validate_device_token(new_token)
        owner = self.get_active(new_token)
        if owner is not None and owner.endpoint_id != endpoint_id:
            raise ValidationError(
                "Device token is already registered to another endpoint",
                context={"endpoint_id": owner.endpoint_id},
            )

    def rotate_token(self, endpoint_id: str, new_token: str) -> Optional[PushEndpointRegistration]:
        """Move the registration of `endpoint_id` to `new_token`.

        The endpoint identifier is kept; no new registration is created.

        Returns:
            The rotated registration, or None if no row points at the endpoint

        Raises:
            ValidationError: If the token is malformed or already owned by another active endpoint
        """
        with self._lock:
            self.check_rotation(endpoint_id, new_token)
            current = self.find_by_endpoint(endpoint_id)
            if current is None:
                return None

            rotated = current.with_updates(
                device_token=new_token,
                updated_at=self._clock(),
                active=True,
            )
            if device_key(current.device_token) != device_key(new_token):
                self._kv.delete(device_key(current.device_token))
            self._kv.put(device_key(new_token), rotated.to_record())
            return rotated

    def deactivate(self, token: str) -> Optional[PushEndpointRegistration]:
        """Mark a token's registration inactive; returns the updated row."""
        with self._lock:
            registration = self.get(token)
            if registration is None:
                return None
            updated = registration.with_updates(active=False, updated_at=self._clock())
            self._kv.put(device_key(token), updated.to_record())
            return updated

    def deactivate_endpoint(self, endpoint_id: str) -> Optional[PushEndpointRegistration]:
        """Mark the registration pointing at `endpoint_id` inactive."""
        with self._lock:
            registration = self.find_by_endpoint(endpoint_id)
            if registration is None:
                return None
            return self.deactivate(registration.device_token)

    def delete(self, token: str) -> None:
        """Remove a token's registration row."""
        with self._lock:
            self._kv.delete(device_key(token))

    def list_registrations(
        self,
        active_only: bool = True,
        limit: int = 100,
        page_token: Optional[str] = None,
    ) -> Tuple[List[PushEndpointRegistration], Optional[str]]:
        """Page through registrations in token order.

        Args:
            active_only: Skip deactivated registrations
            limit: Maximum number of registrations to return
            page_token: Token returned by the previous page

        Returns:
            Tuple of (registrations, next page token or None)
        """
        record_filter = (lambda record: bool(record.get("active"))) if active_only else None
        records, next_token = self._kv.scan(
            filter=record_filter,
            limit=limit,
            page_token=page_token,
            prefix=DEVICE_KEY_PREFIX,
        )
        return [PushEndpointRegistration.from_record(record) for record in records], next_token


# Global store instance
_default_store: Optional[PushEndpointStore] = None


def get_endpoint_store(db_path: str = DEFAULT_DB_PATH) -> PushEndpointStore:
    """Get a PushEndpointStore backed by SQLite.

    This function provides a singleton instance per process.

    Args:
        db_path: Path to SQLite database file

    Returns:
        An instance of PushEndpointStore
    """
    global _default_store
    if _default_store is None:
        _default_store = PushEndpointStore(SqliteKeyValueStore(db_path))
    return _default_store
