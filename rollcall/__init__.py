"""Rollcall - self-registration registry with live reachability dashboard."""

import argparse
import logging
import signal
import sys
from threading import Event
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .config import Config
    from .registry import Registry

__version__ = "0.1.0"

# Global shutdown event for signal handlers
_shutdown_event: Optional[Event] = None

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


def _handle_shutdown(signum: int, frame: object) -> None:
    """Signal handler for graceful shutdown."""
    sig_name = signal.Signals(signum).name
    logger.info("Received %s, initiating shutdown...", sig_name)
    if _shutdown_event is not None:
        _shutdown_event.set()


def _build_registry(config: "Config") -> "Registry":
    """Wire store, coordinator and registry from configuration."""
    from .coordinator import LivenessCoordinator
    from .registry import Registry
    from .store import RegistryStore

    store = RegistryStore(config.store.path)
    coordinator = LivenessCoordinator(
        store,
        timeout=config.probe.timeout,
        grace=config.probe.grace,
        max_workers=config.probe.max_workers,
    )
    return Registry(store, coordinator)


def _cmd_run(args: argparse.Namespace) -> None:
    """Execute the run command - start the dashboard server."""
    global _shutdown_event

    _setup_logging(args.verbose)

    logger.info("Rollcall %s starting...", __version__)

    # Import here to avoid circular imports and allow logging setup first
    from .config import load_config, ConfigError
    from .api import ApiServer, ApiError

    # 1. Load configuration
    try:
        config = load_config(args.config)
        logger.info("Configuration loaded from %s", args.config or "defaults")
        logger.info("Registry file: %s", config.store.path)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)

    # 2. Setup shutdown handler
    _shutdown_event = Event()
    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    # 3. Start server
    registry = _build_registry(config)
    api_server = ApiServer(config.api, registry)
    try:
        api_server.start()
    except ApiError as e:
        logger.error("Failed to start API server: %s", e)
        sys.exit(1)

    logger.info("Dashboard URL: %s", api_server.url)
    logger.info("Local access:  http://localhost:%d", config.api.port)

    try:
        # 4. Wait for shutdown signal
        _shutdown_event.wait()
    except KeyboardInterrupt:
        # Backup handler if signal doesn't work
        logger.info("Keyboard interrupt received")
    finally:
        logger.info("Shutting down...")
        api_server.stop()
        logger.info("Shutdown complete")


def _cmd_status(args: argparse.Namespace) -> None:
    """Execute the status command - run one view cycle on the local registry."""
    from .config import load_config, ConfigError
    from .store import format_timestamp

    _setup_logging(args.verbose)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    report = _build_registry(config).refresh()

    if not report.records:
        print("No endpoints registered.")
    for record in report.records:
        status = "ONLINE " if record.is_online else "OFFLINE"
        last_seen = format_timestamp(record.last_seen_at) or "never"
        print(f"{status}  {record.name:<20} {record.address}:{record.port:<6} {record.login_user:<12} {last_seen}")

    print(f"\n{report.online_count}/{len(report.records)} online ({report.duration_ms}ms)")

    if not report.persisted:
        print(f"Warning: status not saved: {report.error}")
        sys.exit(1)


def _cmd_register(args: argparse.Namespace) -> None:
    """Execute the register command - announce a host to a dashboard."""
    from .client import ClientError, register_endpoint

    _setup_logging(args.verbose)

    try:
        body = register_endpoint(
            args.server,
            name=args.name,
            username=args.username,
            ip=args.ip,
            port=args.port,
        )
    except ClientError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(body.get("message", "Registered"))


def _cmd_clear(args: argparse.Namespace) -> None:
    """Execute the clear command - remove all endpoints from a dashboard."""
    from .client import ClientError, clear_endpoints

    _setup_logging(args.verbose)

    try:
        clear_endpoints(args.server)
    except ClientError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print("All endpoints removed.")


def _add_common_args(parser: argparse.ArgumentParser, with_config: bool = True) -> None:
    if with_config:
        parser.add_argument(
            "-c", "--config",
            default=None,
            help="Path to YAML configuration file (default: built-in defaults)",
        )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point for the rollcall package."""
    parser = argparse.ArgumentParser(
        description="Rollcall - self-registration registry with live reachability dashboard"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"rollcall {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # Run subcommand (default behavior)
    run_parser = subparsers.add_parser(
        "run",
        help="Start the dashboard server (default)",
    )
    _add_common_args(run_parser)
    run_parser.set_defaults(func=_cmd_run)

    # Status subcommand
    status_parser = subparsers.add_parser(
        "status",
        help="Probe all registered endpoints once and print their status",
    )
    _add_common_args(status_parser)
    status_parser.set_defaults(func=_cmd_status)

    # Register subcommand
    register_parser = subparsers.add_parser(
        "register",
        help="Register a host with a running dashboard",
    )
    register_parser.add_argument("--server", required=True, help="Dashboard URL, e.g. http://10.0.0.1:8080")
    register_parser.add_argument("--name", required=True, help="Display name")
    register_parser.add_argument("--username", required=True, help="Login user for ssh")
    register_parser.add_argument("--ip", default=None, help="Address to register (default: auto-detect)")
    register_parser.add_argument("--port", type=int, default=22, help="SSH port (default: 22)")
    _add_common_args(register_parser, with_config=False)
    register_parser.set_defaults(func=_cmd_register)

    # Clear subcommand
    clear_parser = subparsers.add_parser(
        "clear",
        help="Remove all endpoints from a running dashboard",
    )
    clear_parser.add_argument("--server", required=True, help="Dashboard URL, e.g. http://10.0.0.1:8080")
    _add_common_args(clear_parser, with_config=False)
    clear_parser.set_defaults(func=_cmd_clear)

    args = parser.parse_args(argv)

    # Default to 'run' if no command specified
    if args.command is None:
        args.config = None
        args.verbose = False
        args.func = _cmd_run

    args.func(args)
