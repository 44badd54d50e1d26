"""Data models for registered endpoints and probe results."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

DEFAULT_SSH_PORT = 22


@dataclass(frozen=True)
class EndpointRecord:
    """A remote host that registered itself with the dashboard.

    Attributes:
        name: Human-readable label shown on the dashboard.
        address: Host name or IP address; unique within the registry.
        port: TCP port probed for reachability (SSH by default).
        login_user: Login identity used to build the ssh command.
        last_seen_at: UTC timestamp of registration or last successful probe.
        is_online: Result of the most recent probe round.
    """

    name: str
    address: str
    port: int = DEFAULT_SSH_PORT
    login_user: str = ""
    last_seen_at: datetime | None = None
    is_online: bool = False

    @property
    def ssh_command(self) -> str:
        """Return the ssh command line for connecting to this endpoint."""
        if self.port == DEFAULT_SSH_PORT:
            return f"ssh {self.login_user}@{self.address}"
        return f"ssh -p {self.port} {self.login_user}@{self.address}"


class ProbeStatus(Enum):
    """Outcome of a single reachability probe."""

    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"
    ERROR = "error"


@dataclass(frozen=True)
class ProbeResult:
    """Result of one TCP connect probe.

    ERROR is informational only: it is merged exactly like UNREACHABLE, so an
    unknown state is never reported as online.
    """

    address: str
    port: int
    status: ProbeStatus
    checked_at: datetime
    response_time_ms: int = 0
    error_message: str | None = None

    @property
    def is_up(self) -> bool:
        return self.status is ProbeStatus.REACHABLE


@dataclass(frozen=True)
class CycleReport:
    """Outcome of one probe-all-merge-persist view cycle.

    Attributes:
        records: Merged endpoint records, in store order.
        persisted: Whether the merged set was written to the store.
        error: Description of the write failure when persisted is False.
        duration_ms: Wall time of the whole cycle in milliseconds.
    """

    records: list[EndpointRecord] = field(default_factory=list)
    persisted: bool = True
    error: str | None = None
    duration_ms: int = 0

    @property
    def online_count(self) -> int:
        return sum(1 for r in self.records if r.is_online)

    @property
    def offline_count(self) -> int:
        return len(self.records) - self.online_count
