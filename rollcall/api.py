"""HTTP server for the registration API and the liveness dashboard."""

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, List, Optional

from ._dashboard import render_dashboard
from .config import ApiConfig
from .models import CycleReport, EndpointRecord
from .probe import get_local_ip
from .registry import Registry, ValidationError
from .store import StoreWriteError, format_timestamp

logger = logging.getLogger(__name__)

# Oversized request bodies up to this size are read and discarded before the
# 413 response; larger ones are left unread and the connection is closed.
DRAIN_LIMIT_BYTES = 1024 * 1024


class ApiError(Exception):
    """Raised when an API operation fails."""
    pass


def _record_to_dict(record: EndpointRecord) -> Dict[str, Any]:
    """Convert an EndpointRecord to a JSON-serializable dictionary."""
    return {
        "name": record.name,
        "ip": record.address,
        "port": record.port,
        "username": record.login_user,
        "lastSeen": format_timestamp(record.last_seen_at),
        "online": record.is_online,
        "ssh": record.ssh_command,
    }


def _build_endpoints_response(records: List[EndpointRecord]) -> Dict[str, Any]:
    """Build the endpoint list response with summary."""
    online_count = sum(1 for r in records if r.is_online)

    return {
        "endpoints": [_record_to_dict(r) for r in records],
        "summary": {
            "total": len(records),
            "online": online_count,
            "offline": len(records) - online_count,
        },
    }


def _build_status_response(report: CycleReport) -> Dict[str, Any]:
    """Build the fresh-status response for one view cycle."""
    response = _build_endpoints_response(report.records)
    response["persisted"] = report.persisted
    if report.error:
        response["error"] = report.error
    return response


class RegistryHandler(BaseHTTPRequestHandler):
    """HTTP request handler for dashboard and registration endpoints."""

    # Class-level references set by factory
    registry: Optional[Registry] = None
    config: Optional[ApiConfig] = None
    server_url: str = ""

    def log_message(self, format: str, *args: Any) -> None:
        """Override to use Python logging instead of stderr."""
        logger.debug("API %s - %s", self.address_string(), format % args)

    def _send_json(self, code: int, data: Dict[str, Any]) -> None:
        """Send a JSON response with the given status code."""
        body = json.dumps(data, indent=2).encode("utf-8")
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(body)

    def _send_error_json(self, code: int, message: str) -> None:
        """Send a JSON error response."""
        self._send_json(code, {"success": False, "error": message})

    def _send_html(self, code: int, html: str) -> None:
        """Send an HTML response with the given status code."""
        body = html.encode("utf-8")
        self.send_response(code)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-store")
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(body)

    def _read_body(self) -> Optional[bytes]:
        """Read the request body, enforcing the configured size limit.

        Returns:
            The raw body, or None after an error response has been sent.
        """
        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError:
            self._send_error_json(400, "Invalid Content-Length header")
            return None

        max_bytes = self.config.max_body_bytes if self.config else 16 * 1024
        if length > max_bytes:
            # Drain moderate bodies so the client sees the 413 instead of a reset
            if length <= DRAIN_LIMIT_BYTES:
                self.rfile.read(length)
            self._send_error_json(413, f"Request body exceeds {max_bytes} bytes")
            return None

        return self.rfile.read(length) if length > 0 else b""

    def _parse_json_object(self, raw: bytes) -> Optional[Dict[str, Any]]:
        """Decode a JSON object body.

        Returns:
            The decoded object, or None after an error response has been sent.
        """
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            self._send_error_json(400, f"Invalid JSON body: {e}")
            return None

        if not isinstance(data, dict):
            self._send_error_json(400, "Request body must be a JSON object")
            return None
        return data

    def do_GET(self) -> None:
        """Handle GET requests."""
        try:
            path = self.path.split("?", 1)[0]
            if path == "/":
                self._handle_dashboard()
            elif path == "/health":
                self._handle_health()
            elif path == "/api/endpoints":
                self._handle_endpoints()
            elif path == "/api/status":
                self._handle_status()
            else:
                self._send_error_json(404, "Not found")
        except Exception as e:
            logger.exception("Error handling request: %s", e)
            self._send_error_json(500, "Internal server error")

    def do_POST(self) -> None:
        """Handle POST requests."""
        try:
            path = self.path.split("?", 1)[0]
            # Always consume the body so closing the connection does not reset it
            raw = self._read_body()
            if raw is None:
                return

            if path == "/api/register":
                self._handle_register(raw)
            elif path == "/api/clear":
                self._handle_clear()
            else:
                self._send_error_json(404, "Not found")
        except Exception as e:
            logger.exception("Error handling POST request: %s", e)
            self._send_error_json(500, "Internal server error")

    def _handle_dashboard(self) -> None:
        """Handle GET / endpoint - probe all endpoints and render the dashboard."""
        if self.registry is None:
            self._send_error_json(503, "Registry not available")
            return

        report = self.registry.refresh()
        refresh_seconds = self.config.refresh_seconds if self.config else 30
        self._send_html(200, render_dashboard(report, self.server_url, refresh_seconds))

    def _handle_health(self) -> None:
        """Handle GET /health endpoint."""
        self._send_json(200, {"status": "ok"})

    def _handle_endpoints(self) -> None:
        """Handle GET /api/endpoints - stored records, no probing."""
        if self.registry is None:
            self._send_error_json(503, "Registry not available")
            return

        self._send_json(200, _build_endpoints_response(self.registry.records()))

    def _handle_status(self) -> None:
        """Handle GET /api/status - run a view cycle and return JSON."""
        if self.registry is None:
            self._send_error_json(503, "Registry not available")
            return

        self._send_json(200, _build_status_response(self.registry.refresh()))

    def _handle_register(self, raw: bytes) -> None:
        """Handle POST /api/register endpoint."""
        if self.registry is None:
            self._send_error_json(503, "Registry not available")
            return

        data = self._parse_json_object(raw)
        if data is None:
            return

        try:
            self.registry.register(
                name=data.get("name"),
                address=data.get("ip"),
                port=data.get("port"),
                login_user=data.get("username"),
            )
        except ValidationError as e:
            logger.info("Rejected registration from %s: %s", self.address_string(), e)
            self._send_error_json(400, str(e))
            return
        except StoreWriteError as e:
            logger.error("Registration not persisted: %s", e)
            self._send_error_json(500, "Registration could not be saved")
            return

        self._send_json(200, {"success": True, "message": "Endpoint registered"})

    def _handle_clear(self) -> None:
        """Handle POST /api/clear endpoint."""
        if self.registry is None:
            self._send_error_json(503, "Registry not available")
            return

        try:
            self.registry.clear_all()
        except StoreWriteError as e:
            logger.error("Clear-all not persisted: %s", e)
            self._send_error_json(500, "Registry could not be cleared")
            return

        self._send_json(200, {"success": True})


def _create_handler_class(
    registry: Registry,
    config: ApiConfig,
    server_url: str,
) -> type:
    """Create a handler class with the registry and config bound."""

    class BoundRegistryHandler(RegistryHandler):
        pass

    BoundRegistryHandler.registry = registry
    BoundRegistryHandler.config = config
    BoundRegistryHandler.server_url = server_url
    return BoundRegistryHandler


class ApiServer:
    """Threaded HTTP server for the dashboard and registration API.

    Each request runs in its own thread, so a view cycle waiting on probes
    does not hold up registrations or other views.
    """

    def __init__(
        self,
        config: ApiConfig,
        registry: Registry,
    ) -> None:
        """Initialize the API server.

        Args:
            config: API configuration.
            registry: Registry façade serving all requests.
        """
        self.config = config
        self.registry = registry
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._shutdown_event = threading.Event()

    @property
    def url(self) -> str:
        """Address advertised in the dashboard footer."""
        host = self.config.host
        if host in ("", "0.0.0.0", "::"):
            host = get_local_ip()
        return f"http://{host}:{self.config.port}"

    def start(self) -> None:
        """Start the API server in a background thread.

        Raises:
            ApiError: If the server fails to start.
        """
        if self._thread is not None and self._thread.is_alive():
            logger.warning("API server is already running")
            return

        try:
            handler_class = _create_handler_class(self.registry, self.config, self.url)
            self._server = ThreadingHTTPServer((self.config.host, self.config.port), handler_class)
            self._server.daemon_threads = True
            self._server.timeout = 1.0  # Allow periodic shutdown checks

            self._shutdown_event.clear()
            self._thread = threading.Thread(
                target=self._serve_forever,
                name="api-server",
                daemon=True,
            )
            self._thread.start()

            logger.info("API server started on %s:%d", self.config.host, self.config.port)

        except OSError as e:
            # Provide specific guidance based on error type
            if e.errno == 98 or e.errno == 48:  # EADDRINUSE (Linux=98, macOS=48)
                raise ApiError(
                    f"Port {self.config.port} is already in use. "
                    f"Another process may be using this port, or rollcall is already running."
                )
            elif e.errno == 13:  # EACCES - Permission denied
                raise ApiError(
                    f"Permission denied for port {self.config.port}. "
                    f"Ports below 1024 require root privileges. "
                    f"Use a port >= 1024 or run with elevated permissions."
                )
            else:
                raise ApiError(f"Failed to start API server on port {self.config.port}: {e}")

    def _serve_forever(self) -> None:
        """Server loop that checks for shutdown."""
        while not self._shutdown_event.is_set():
            server = self._server
            if server is None:
                break
            try:
                server.handle_request()
            except (OSError, ValueError):
                # Socket closed by stop() while waiting for a request
                if not self._shutdown_event.is_set():
                    raise

    def stop(self) -> None:
        """Stop the API server gracefully."""
        if self._thread is None:
            return

        logger.info("Stopping API server...")
        self._shutdown_event.set()

        if self._server:
            self._server.server_close()

        if self._thread.is_alive():
            self._thread.join(timeout=5.0)

        self._server = None
        self._thread = None
        logger.info("API server stopped")

    @property
    def is_running(self) -> bool:
        """Check if the server is running."""
        return self._thread is not None and self._thread.is_alive()
