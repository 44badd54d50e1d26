"""Configuration loader with type-safe dataclasses."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def _get_default_store_path() -> str:
    """Get the default registry file path using XDG-compliant directory.

    Returns ~/.local/share/rollcall/endpoints.json which is the standard
    location for user-specific data files on Linux/macOS.
    """
    home = Path.home()
    return str(home / ".local" / "share" / "rollcall" / "endpoints.json")


DEFAULT_STORE_PATH = _get_default_store_path()


@dataclass(frozen=True)
class StoreConfig:
    """Configuration for the JSON registry file."""

    path: str = DEFAULT_STORE_PATH

    def __post_init__(self) -> None:
        if not self.path:
            raise ConfigError("Store path cannot be empty")


@dataclass(frozen=True)
class ProbeConfig:
    """Configuration for reachability probes."""

    timeout: float = 2.0  # seconds per connect attempt
    grace: float = 0.5  # extra seconds the join waits past the timeout
    max_workers: int = 32  # concurrent probes; excess probes queue

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ConfigError(f"Probe timeout must be positive (got {self.timeout})")
        if self.grace < 0:
            raise ConfigError(f"Probe grace must be non-negative (got {self.grace})")
        if self.max_workers < 1:
            raise ConfigError(f"Probe max_workers must be at least 1 (got {self.max_workers})")


@dataclass(frozen=True)
class ApiConfig:
    """Configuration for the HTTP dashboard server."""

    host: str = "0.0.0.0"
    port: int = 8080
    refresh_seconds: int = 30  # dashboard auto-refresh, 0 disables it
    max_body_bytes: int = 16 * 1024

    def __post_init__(self) -> None:
        if self.port < 1 or self.port > 65535:
            raise ConfigError(f"API port must be between 1 and 65535, got {self.port}")
        if self.refresh_seconds < 0:
            raise ConfigError(f"Refresh seconds must be non-negative, got {self.refresh_seconds}")
        if self.max_body_bytes < 1:
            raise ConfigError(f"Max body bytes must be at least 1, got {self.max_body_bytes}")


@dataclass(frozen=True)
class Config:
    """Main configuration container."""

    store: StoreConfig = field(default_factory=StoreConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    api: ApiConfig = field(default_factory=ApiConfig)


def _section(data: dict, name: str) -> dict:
    """Return a configuration section as a dict, empty if absent."""
    section = data.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' section must be a dictionary")
    return section


def _parse_store_config(data: dict) -> StoreConfig:
    path = data.get("path", DEFAULT_STORE_PATH)
    return StoreConfig(path=os.path.expanduser(str(path)))


def _parse_probe_config(data: dict) -> ProbeConfig:
    try:
        return ProbeConfig(
            timeout=float(data.get("timeout", 2.0)),
            grace=float(data.get("grace", 0.5)),
            max_workers=int(data.get("max_workers", 32)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid probe configuration: {e}")


def _parse_api_config(data: dict) -> ApiConfig:
    try:
        return ApiConfig(
            host=str(data.get("host", "0.0.0.0")),
            port=int(data.get("port", 8080)),
            refresh_seconds=int(data.get("refresh_seconds", 30)),
            max_body_bytes=int(data.get("max_body_bytes", 16 * 1024)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid api configuration: {e}")


def _apply_env_overrides(config_data: dict) -> dict:
    """Apply environment variable overrides to configuration.

    Supported overrides:
    - ROLLCALL_STORE_PATH: Override store.path
    - ROLLCALL_PROBE_TIMEOUT: Override probe.timeout
    - ROLLCALL_API_HOST: Override api.host
    - ROLLCALL_API_PORT: Override api.port
    - DASHBOARD_PORT: Fallback for api.port when ROLLCALL_API_PORT is unset
    """
    for name in ("store", "probe", "api"):
        if config_data.get(name) is None:
            config_data[name] = {}

    store_path = os.environ.get("ROLLCALL_STORE_PATH")
    if store_path is not None:
        config_data["store"]["path"] = store_path

    probe_timeout = os.environ.get("ROLLCALL_PROBE_TIMEOUT")
    if probe_timeout is not None:
        try:
            config_data["probe"]["timeout"] = float(probe_timeout)
        except ValueError:
            raise ConfigError(f"ROLLCALL_PROBE_TIMEOUT must be a number, got '{probe_timeout}'")

    api_host = os.environ.get("ROLLCALL_API_HOST")
    if api_host is not None:
        config_data["api"]["host"] = api_host

    api_port = os.environ.get("ROLLCALL_API_PORT") or os.environ.get("DASHBOARD_PORT")
    if api_port is not None:
        try:
            config_data["api"]["port"] = int(api_port)
        except ValueError:
            raise ConfigError(f"API port must be an integer, got '{api_port}'")

    return config_data


def load_config(config_path: str | None = None) -> Config:
    """Load and validate configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file, or None to use
            built-in defaults (environment overrides still apply).

    Returns:
        Validated Config object.

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid.
    """
    data: dict = {}

    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {config_path}")

        try:
            with open(path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML configuration: {e}")
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file: {e}")

        if loaded is not None:
            if not isinstance(loaded, dict):
                raise ConfigError("Configuration must be a YAML dictionary")
            data = loaded

    data = _apply_env_overrides(data)

    return Config(
        store=_parse_store_config(_section(data, "store")),
        probe=_parse_probe_config(_section(data, "probe")),
        api=_parse_api_config(_section(data, "api")),
    )
