"""Registration client for hosts announcing themselves to a dashboard."""

import logging
import time
from typing import Any

import requests

from .models import DEFAULT_SSH_PORT
from .probe import get_local_ip

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


class ClientError(Exception):
    """Raised when the dashboard cannot be reached or rejects a request."""

    pass


def _endpoint(server_url: str, path: str) -> str:
    return server_url.rstrip("/") + path


def _post(
    url: str,
    payload: dict[str, Any] | None,
    timeout: float,
    max_retries: int,
    retry_delay: float,
) -> dict[str, Any]:
    """POST a JSON payload with exponential-backoff retries.

    Retries only on transport errors; an answer from the server is final.

    Raises:
        ClientError: If all attempts fail or the server reports failure.
    """
    retry_count = 0
    while True:
        try:
            response = requests.post(url, json=payload, timeout=timeout)
            break
        except requests.RequestException as e:
            retry_count += 1
            if retry_count > max_retries:
                logger.error("Request to %s failed after %d attempts: %s", url, retry_count, e)
                raise ClientError(f"Could not reach {url}: {e}")
            delay = retry_delay * (2 ** (retry_count - 1))
            logger.warning(
                "Request to %s failed (attempt %d/%d, retrying in %ss): %s",
                url,
                retry_count,
                max_retries + 1,
                delay,
                e,
            )
            time.sleep(delay)

    try:
        body = response.json()
    except ValueError:
        raise ClientError(f"Unexpected response from {url} (HTTP {response.status_code})")

    if not isinstance(body, dict) or not body.get("success"):
        error = body.get("error") if isinstance(body, dict) else None
        raise ClientError(error or f"Request rejected (HTTP {response.status_code})")
    return body


def register_endpoint(
    server_url: str,
    name: str,
    username: str,
    ip: str | None = None,
    port: int = DEFAULT_SSH_PORT,
    timeout: float = DEFAULT_TIMEOUT,
    max_retries: int = 2,
    retry_delay: float = 1,
) -> dict[str, Any]:
    """Register this host (or the given address) with a dashboard.

    Args:
        server_url: Dashboard base URL, e.g. "http://10.0.0.1:8080".
        name: Display name shown on the dashboard.
        username: Login user for the ssh command.
        ip: Address to register; detected from the local interfaces if None.
        port: SSH port to probe.
        timeout: Per-request timeout in seconds.
        max_retries: Extra attempts on connection errors.
        retry_delay: Base delay in seconds, doubled on each retry.

    Returns:
        The server's success envelope.

    Raises:
        ClientError: If the dashboard is unreachable or rejects the registration.
    """
    if ip is None:
        ip = get_local_ip()
        logger.info("Detected local address %s", ip)

    payload = {"name": name, "ip": ip, "port": port, "username": username}
    body = _post(_endpoint(server_url, "/api/register"), payload, timeout, max_retries, retry_delay)
    logger.info("Registered %s (%s@%s:%d) with %s", name, username, ip, port, server_url)
    return body


def clear_endpoints(server_url: str, timeout: float = DEFAULT_TIMEOUT) -> dict[str, Any]:
    """Ask a dashboard to remove every registered endpoint.

    Raises:
        ClientError: If the dashboard is unreachable or the clear failed.
    """
    return _post(_endpoint(server_url, "/api/clear"), None, timeout, max_retries=0, retry_delay=0)
