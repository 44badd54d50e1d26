"""Shared fixtures for the test suite."""

from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import pytest

from rollcall.models import ProbeResult, ProbeStatus
from rollcall.store import RegistryStore


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep host environment overrides out of the tests."""
    for name in (
        "ROLLCALL_STORE_PATH",
        "ROLLCALL_PROBE_TIMEOUT",
        "ROLLCALL_API_HOST",
        "ROLLCALL_API_PORT",
        "DASHBOARD_PORT",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fixed_now() -> datetime:
    """A fixed 'now' for deterministic last_seen_at stamps."""
    return datetime(2026, 1, 17, 10, 30, 0, tzinfo=UTC)


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    """Path of a registry file that does not exist yet."""
    return tmp_path / "data" / "endpoints.json"


@pytest.fixture
def store(store_path: Path) -> RegistryStore:
    """Create an empty registry store."""
    return RegistryStore(store_path)


@pytest.fixture
def make_probe(fixed_now: datetime) -> Callable[[set[str]], Callable[[str, int, float], ProbeResult]]:
    """Build probe functions that report only the given addresses as reachable."""

    def _factory(reachable: set[str]) -> Callable[[str, int, float], ProbeResult]:
        def _probe(address: str, port: int, timeout: float) -> ProbeResult:
            up = address in reachable
            return ProbeResult(
                address=address,
                port=port,
                status=ProbeStatus.REACHABLE if up else ProbeStatus.UNREACHABLE,
                checked_at=fixed_now,
                error_message=None if up else "Connection refused",
            )

        return _probe

    return _factory
