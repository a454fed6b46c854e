"""Configuration management for btannounce.

Loads configuration hierarchically: defaults → TOML config file →
environment variables. Values are validated by the pydantic models in
:mod:`btannounce.models`.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import toml

from btannounce.exceptions import ConfigurationError
from btannounce.logging_config import get_logger, setup_logging
from btannounce.models import Config, NetworkConfig, TrackerConfig

CONFIG_FILENAME = "btannounce.toml"

# Mapping of environment variables to config paths
ENV_MAPPINGS: dict[str, str] = {
    "BTANNOUNCE_LISTEN_PORT": "network.listen_port",
    "BTANNOUNCE_TRACKER_TIMEOUT": "tracker.request_timeout",
    "BTANNOUNCE_CONNECT_TIMEOUT": "tracker.connect_timeout",
    "BTANNOUNCE_DEFAULT_INTERVAL": "tracker.default_interval",
    "BTANNOUNCE_TIMEOUT_FALLBACK_INTERVAL": "tracker.timeout_fallback_interval",
    "BTANNOUNCE_OTHER_FAILURE_POLICY": "tracker.other_failure_policy",
    "BTANNOUNCE_ECHO_TRACKER_ID": "tracker.echo_tracker_id",
    "BTANNOUNCE_LOG_LEVEL": "observability.log_level",
    "BTANNOUNCE_LOG_FILE": "observability.log_file",
}

_config_manager: ConfigManager | None = None

logger = get_logger(__name__)


def _parse_env_value(raw: str) -> bool | int | float | str:
    low = raw.lower()
    if low in {"true", "yes", "on"}:
        return True
    if low in {"false", "no", "off"}:
        return False
    try:
        if "." in raw:
            return float(raw)
        return int(raw)
    except ValueError:
        return raw


def _set_nested(d: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    cur = d
    for p in parts[:-1]:
        cur = cur.setdefault(p, {})
    cur[parts[-1]] = value


class ConfigManager:
    """Finds, loads and validates configuration."""

    def __init__(self, config_file: str | Path | None = None, *, configure_logging: bool = True):
        """Initialize configuration manager.

        Args:
            config_file: Path to TOML config file. If None, searches for btannounce.toml
            configure_logging: Apply the observability section to the logging system

        """
        self.config_file = self._find_config_file(config_file)
        self.config = self._load_config()
        if configure_logging:
            self._setup_logging()

    def _find_config_file(self, config_file: str | Path | None) -> Path | None:
        """Find configuration file in standard locations."""
        if config_file:
            path = Path(config_file)
            if not path.exists():
                msg = f"Config file not found: {path}"
                raise ConfigurationError(msg)
            return path

        search_paths = [
            Path.cwd() / CONFIG_FILENAME,
            Path.home() / ".config" / "btannounce" / CONFIG_FILENAME,
            Path.home() / f".{CONFIG_FILENAME}",
        ]
        for path in search_paths:
            if path.exists():
                return path
        return None

    def _load_config(self) -> Config:
        """Load configuration from file and environment."""
        config_data: dict[str, Any] = {}

        if self.config_file is not None:
            try:
                with open(self.config_file, encoding="utf-8") as f:
                    config_data.update(toml.load(f))
            except (OSError, toml.TomlDecodeError) as e:
                msg = f"Failed to load config file {self.config_file}: {e}"
                raise ConfigurationError(msg, {"path": str(self.config_file)}) from e

        config_data = self._merge_config(config_data, self._get_env_config())

        try:
            return Config(**config_data)
        except ValueError as e:
            msg = f"Invalid configuration: {e}"
            raise ConfigurationError(msg) from e

    def _get_env_config(self) -> dict[str, Any]:
        """Get configuration from environment variables."""
        env_config: dict[str, Any] = {}
        for env_name, cfg_path in ENV_MAPPINGS.items():
            raw = os.getenv(env_name)
            if raw is None:
                continue
            _set_nested(env_config, cfg_path, _parse_env_value(raw))
        return env_config

    def _merge_config(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Merge configuration dictionaries recursively."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    def export(self) -> str:
        """Export current configuration as TOML."""
        return toml.dumps(self.config.model_dump(mode="json", exclude_none=True))

    def _setup_logging(self) -> None:
        setup_logging(self.config.observability)


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(configure_logging=False)
    return _config_manager.config


def init_config(config_file: str | Path | None = None) -> ConfigManager:
    """Initialize the global configuration manager."""
    global _config_manager
    _config_manager = ConfigManager(config_file)
    logger.debug("Configuration loaded from %s", _config_manager.config_file or "defaults")
    return _config_manager


def set_config(new_config: Config) -> None:
    """Replace the global configuration at runtime."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(configure_logging=False)
    _config_manager.config = new_config


def reset_config() -> None:
    """Drop the global configuration (used by tests)."""
    global _config_manager
    _config_manager = None


def get_network_config() -> NetworkConfig:
    """Get network configuration."""
    return get_config().network


def get_tracker_config() -> TrackerConfig:
    """Get tracker configuration."""
    return get_config().tracker
