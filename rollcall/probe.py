"""TCP reachability probes for registered endpoints."""

import logging
import socket
import time
from datetime import UTC, datetime

from .models import ProbeResult, ProbeStatus

logger = logging.getLogger(__name__)

# Default connect budget in seconds, matching the dashboard's refresh pace.
DEFAULT_PROBE_TIMEOUT = 2.0

# Any routable address works; a UDP connect sends no packets.
_LOCAL_IP_PROBE_TARGET = ("8.8.8.8", 80)


def probe_endpoint(address: str, port: int, timeout: float = DEFAULT_PROBE_TIMEOUT) -> ProbeResult:
    """Check whether a TCP connection to address:port succeeds within timeout.

    Never raises: invalid input and unexpected failures are reported as
    ProbeStatus.ERROR, refused or timed-out connections as UNREACHABLE.

    Args:
        address: Host name or IP address to connect to.
        port: TCP port (1-65535).
        timeout: Connect timeout in seconds.

    Returns:
        ProbeResult describing the outcome.
    """
    checked_at = datetime.now(UTC)
    start = time.monotonic()

    def _result(status: ProbeStatus, error: str | None = None) -> ProbeResult:
        return ProbeResult(
            address=address,
            port=port,
            status=status,
            checked_at=checked_at,
            response_time_ms=int((time.monotonic() - start) * 1000),
            error_message=error,
        )

    if not address:
        return _result(ProbeStatus.ERROR, "Address cannot be empty")
    if not isinstance(port, int) or not (1 <= port <= 65535):
        return _result(ProbeStatus.ERROR, f"Invalid port: {port!r}")
    if timeout <= 0:
        return _result(ProbeStatus.ERROR, f"Timeout must be positive, got {timeout}")

    try:
        sock = socket.create_connection((address, port), timeout=timeout)
        sock.close()
        return _result(ProbeStatus.REACHABLE)

    except TimeoutError:
        return _result(ProbeStatus.UNREACHABLE, f"Connection timeout after {timeout}s")

    except socket.gaierror as e:
        return _result(ProbeStatus.ERROR, f"DNS resolution failed: {e}")

    except OSError as e:
        return _result(ProbeStatus.UNREACHABLE, str(e))

    except Exception as e:
        logger.debug("Unexpected probe failure for %s:%d: %s", address, port, e)
        return _result(ProbeStatus.ERROR, str(e))


def get_local_ip() -> str:
    """Return this machine's primary non-loopback IPv4 address.

    Falls back to "localhost" when no external interface is configured.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(_LOCAL_IP_PROBE_TARGET)
            ip = s.getsockname()[0]
    except OSError:
        return "localhost"

    if not ip or ip.startswith("127.") or ip == "0.0.0.0":
        return "localhost"
    return ip
