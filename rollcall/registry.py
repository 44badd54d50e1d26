"""Query/command façade used by the HTTP layer and the CLI."""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from .coordinator import LivenessCoordinator
from .models import DEFAULT_SSH_PORT, CycleReport, EndpointRecord
from .store import RegistryStore

logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """Raised when a registration payload is missing or has invalid fields."""

    pass


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def parse_port(value: Any) -> int:
    """Parse a registration port, defaulting to 22 when absent.

    Raises:
        ValidationError: If the port is not an integer in 1-65535.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return DEFAULT_SSH_PORT
    if isinstance(value, bool):
        raise ValidationError(f"Invalid port: {value!r}")
    try:
        port = int(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid port: {value!r}")
    if not (1 <= port <= 65535):
        raise ValidationError(f"Port must be between 1 and 65535, got {port}")
    return port


class Registry:
    """Entry points for listing, registering and clearing endpoints."""

    def __init__(
        self,
        store: RegistryStore,
        coordinator: LivenessCoordinator,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._coordinator = coordinator
        self._clock = clock or (lambda: datetime.now(UTC))

    def refresh(self) -> CycleReport:
        """Run a full view cycle and return the report."""
        return self._coordinator.run_cycle()

    def list_with_fresh_status(self) -> list[EndpointRecord]:
        """Re-probe every endpoint and return the merged records."""
        return self.refresh().records

    def records(self) -> list[EndpointRecord]:
        """Return the stored records without probing."""
        return self._store.load()

    def register(
        self,
        name: Any,
        address: Any,
        port: Any = None,
        login_user: Any = None,
    ) -> EndpointRecord:
        """Validate a registration and upsert it by address.

        Returns:
            The stored record.

        Raises:
            ValidationError: If address or login_user is missing, or port is invalid.
            StoreWriteError: If the registry could not be persisted.
        """
        address = _clean(address)
        login_user = _clean(login_user)
        if not address:
            raise ValidationError("Missing required field: ip")
        if not login_user:
            raise ValidationError("Missing required field: username")

        record = EndpointRecord(
            name=_clean(name) or address,
            address=address,
            port=parse_port(port),
            login_user=login_user,
            last_seen_at=self._clock(),
            is_online=True,
        )
        added = self._store.upsert(record)
        logger.info(
            "%s endpoint %s (%s@%s:%d)",
            "Registered" if added else "Updated",
            record.name,
            record.login_user,
            record.address,
            record.port,
        )
        return record

    def clear_all(self) -> None:
        """Remove every registered endpoint.

        Raises:
            StoreWriteError: If the registry could not be persisted.
        """
        self._store.clear_all()
        logger.info("Cleared all registered endpoints")
