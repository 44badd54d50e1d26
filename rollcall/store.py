"""JSON file persistence for registered endpoints.

The registry file is a single human-readable JSON array:

    [{"name": ..., "ip": ..., "port": 22, "username": ...,
      "lastSeen": "2026-01-17T10:30:00.000Z", "online": true}, ...]

Writes go to a temporary file in the same directory which is fsynced and
renamed over the target, so readers never observe a partially written set.
"""

import json
import logging
import os
import tempfile
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .models import DEFAULT_SSH_PORT, EndpointRecord

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for registry store failures."""

    pass


class StoreReadError(StoreError):
    """Raised when the registry file cannot be read or parsed."""

    pass


class StoreCorruptError(StoreReadError):
    """Raised when the registry file was read but its contents are unusable."""

    pass


class StoreWriteError(StoreError):
    """Raised when the registry file cannot be written."""

    pass


def format_timestamp(dt: datetime | None) -> str | None:
    """Format a datetime as ISO-8601 UTC with millisecond precision and Z suffix."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Raises:
        ValueError: If value is not a valid timestamp string.
    """
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValueError(f"Invalid timestamp: {value!r}")
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def record_to_dict(record: EndpointRecord) -> dict[str, Any]:
    """Convert an EndpointRecord to its persisted JSON shape."""
    return {
        "name": record.name,
        "ip": record.address,
        "port": record.port,
        "username": record.login_user,
        "lastSeen": format_timestamp(record.last_seen_at),
        "online": record.is_online,
    }


def record_from_dict(data: Any) -> EndpointRecord:
    """Build an EndpointRecord from its persisted JSON shape.

    Raises:
        ValueError: If the entry is not a valid record.
    """
    if not isinstance(data, dict):
        raise ValueError("entry is not an object")

    address = str(data.get("ip") or "").strip()
    if not address:
        raise ValueError("entry has no 'ip'")

    port = _port_from_json(data.get("port"))

    online = data.get("online", False)
    if not isinstance(online, bool):
        raise ValueError(f"'online' is not a boolean: {online!r}")

    return EndpointRecord(
        name=str(data.get("name") or address),
        address=address,
        port=port,
        login_user=str(data.get("username") or ""),
        last_seen_at=parse_timestamp(data.get("lastSeen")),
        is_online=online,
    )


def _port_from_json(value: Any) -> int:
    """Read a stored port: an integer or a numeric string, 22 when absent."""
    if value is None or value == "":
        return DEFAULT_SSH_PORT
    if isinstance(value, bool):
        raise ValueError(f"invalid port: {value!r}")
    if isinstance(value, int):
        port = value
    elif isinstance(value, str) and value.strip().isdigit():
        port = int(value.strip())
    else:
        raise ValueError(f"invalid port: {value!r}")

    if not (1 <= port <= 65535):
        raise ValueError(f"port out of range: {port}")
    return port


class RegistryStore:
    """Durable, ordered set of endpoint records keyed by address.

    All reads and writes are serialized through one re-entrant lock. The lock
    is only ever held for file I/O, so callers may probe endpoints while other
    threads register or clear.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()

    def load(self) -> list[EndpointRecord]:
        """Return the persisted records, or an empty list if unreadable."""
        with self._lock:
            try:
                return self._read()
            except StoreReadError as e:
                logger.error("Failed to read registry %s: %s", self.path, e)
                return []

    def replace(self, records: list[EndpointRecord]) -> None:
        """Atomically overwrite the persisted set.

        Raises:
            StoreWriteError: If the registry file cannot be written.
        """
        with self._lock:
            self._write(records)

    def update(self, mutate: Callable[[list[EndpointRecord]], list[EndpointRecord]]) -> list[EndpointRecord]:
        """Read-modify-write the record set under the store lock.

        Args:
            mutate: Receives the freshly loaded records and returns the new set.

        Returns:
            The persisted record set.

        Raises:
            StoreWriteError: If the current set cannot be read, or the new
                set cannot be written. The file is left untouched.
        """
        with self._lock:
            try:
                current = self._read()
            except StoreCorruptError as e:
                logger.error("Registry %s is unreadable and will be replaced: %s", self.path, e)
                current = []
            except StoreReadError as e:
                raise StoreWriteError(f"Failed to read registry {self.path} before writing: {e}")

            records = mutate(current)
            self._write(records)
            return records

    def upsert(self, record: EndpointRecord) -> bool:
        """Insert a record or replace the one with the same address.

        Returns:
            True if a new record was added, False if an existing one was replaced.

        Raises:
            StoreWriteError: If the registry file cannot be written.
        """
        added = True

        def _upsert(records: list[EndpointRecord]) -> list[EndpointRecord]:
            nonlocal added
            for i, existing in enumerate(records):
                if existing.address == record.address:
                    added = False
                    return records[:i] + [record] + records[i + 1 :]
            return records + [record]

        self.update(_upsert)
        return added

    def clear_all(self) -> None:
        """Remove every record.

        Raises:
            StoreWriteError: If the registry file cannot be written.
        """
        self.replace([])

    def _read(self) -> list[EndpointRecord]:
        if not self.path.exists():
            return []

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StoreCorruptError(f"invalid JSON: {e}")
        except UnicodeDecodeError as e:
            raise StoreCorruptError(str(e))
        except OSError as e:
            raise StoreReadError(str(e))

        if not isinstance(data, list):
            raise StoreCorruptError("registry root is not a JSON array")

        records: list[EndpointRecord] = []
        seen: set[str] = set()
        for index, item in enumerate(data):
            try:
                record = record_from_dict(item)
            except (TypeError, ValueError) as e:
                logger.warning("Skipping malformed registry entry %d: %s", index, e)
                continue
            # First match wins on identity
            if record.address in seen:
                logger.warning("Skipping duplicate registry entry for %s", record.address)
                continue
            seen.add(record.address)
            records.append(record)
        return records

    def _write(self, records: list[EndpointRecord]) -> None:
        payload = json.dumps([record_to_dict(r) for r in records], indent=2)
        tmp_path: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self.path.parent),
                prefix=self.path.stem + "_",
                suffix=".tmp",
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as e:
            raise StoreWriteError(f"Failed to write registry {self.path}: {e}")
        finally:
            if tmp_path is not None:
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass
        logger.debug("Persisted %d endpoint(s) to %s", len(records), self.path)
