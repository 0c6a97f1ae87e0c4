"""
Config Module - Black Box Interface

Purpose: Application configuration management
Interface: get_config(), ConfigModule.get(), ConnectionSettings.from_config()
Hidden: Config sources, validation logic, environment parsing

Values come from environment variables, optionally overridden by a YAML file
named in KUBEBRIDGE_CONFIG.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


# Configuration Contract: Required and Optional Keys

REQUIRED_CONFIG_KEYS = {
    "redis_host": "Redis server hostname",
    "redis_port": "Redis server port number",
    "redis_db": "Redis database number",
    "host": "API server bind address",
    "port": "API server port",
    "log_level": "Logging level (DEBUG, INFO, WARNING, ERROR)",
    "connect_timeout": "SSH connect and authentication timeout in seconds",
    "test_connect_timeout": "SSH connect timeout for connection tests in seconds",
    "remote_config_path": "Kubeconfig path on the bastion host (relative paths are under $HOME)",
}

OPTIONAL_CONFIG_KEYS = {
    "redis_password": {
        "description": "Redis authentication password",
        "default": None,
    },
    "command_timeout": {
        "description": "Per-command timeout in seconds (0 disables)",
        "default": 60,
    },
    "ssh_keepalive_interval": {
        "description": "Seconds between SSH keepalive requests (0 disables)",
        "default": 30,
    },
    "ssh_max_sessions": {
        "description": "Maximum concurrent exec channels per bastion connection",
        "default": 8,
    },
    "ssh_known_hosts": {
        "description": "known_hosts file for host key checking (unset disables checking)",
        "default": None,
    },
    "cors_origins": {
        "description": "Comma separated list of allowed CORS origins",
        "default": "http://localhost:3000",
    },
}

ENV_CONFIG_FILE = "KUBEBRIDGE_CONFIG"


class ConfigModule:
    """Configuration management module."""

    def __init__(self, config_file: Optional[str] = None):
        """Initialize with environment variables and optional YAML overrides."""
        self._config = self._load_from_env()
        config_file = config_file or os.getenv(ENV_CONFIG_FILE)
        if config_file:
            self._config.update(self._load_from_file(Path(config_file)))
        self._validate_required_keys()

    def _validate_required_keys(self) -> None:
        """
        Validate that all required configuration keys are present.

        Raises:
            ValueError: If required keys are missing
        """
        missing_keys = []
        for key in REQUIRED_CONFIG_KEYS:
            if key not in self._config or self._config[key] is None:
                missing_keys.append(key)

        if missing_keys:
            raise ValueError(
                f"Missing required configuration keys: {', '.join(missing_keys)}. "
                f"Check environment variables and deployment configuration."
            )

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment."""
        # K8s service links inject REDIS_PORT as tcp://host:port
        redis_port_env = os.getenv("REDIS_PORT", "6379")
        if redis_port_env.startswith("tcp://"):
            redis_port = int(redis_port_env.split(":")[-1])
        else:
            redis_port = int(redis_port_env)

        return {
            # Redis settings
            "redis_host": os.getenv("REDIS_HOST", "localhost"),
            "redis_port": redis_port,
            "redis_db": int(os.getenv("REDIS_DB", "0")),
            "redis_password": os.getenv("REDIS_PASSWORD"),
            # API settings
            "host": os.getenv("API_HOST", "0.0.0.0"),
            "port": int(os.getenv("API_PORT", "3001")),
            "log_level": os.getenv("LOG_LEVEL", "INFO"),
            "cors_origins": os.getenv("CORS_ORIGINS", "http://localhost:3000"),
            # Connection settings
            "connect_timeout": float(os.getenv("CONNECT_TIMEOUT", "30")),
            "test_connect_timeout": float(os.getenv("TEST_CONNECT_TIMEOUT", "15")),
            "command_timeout": float(os.getenv("COMMAND_TIMEOUT", "60")),
            "ssh_keepalive_interval": float(os.getenv("SSH_KEEPALIVE_INTERVAL", "30")),
            "ssh_max_sessions": int(os.getenv("SSH_MAX_SESSIONS", "8")),
            "ssh_known_hosts": os.getenv("SSH_KNOWN_HOSTS"),
            "remote_config_path": os.getenv("REMOTE_CONFIG_PATH", ".kube/config"),
        }

    @staticmethod
    def _load_from_file(path: Path) -> Dict[str, Any]:
        """Load overrides from a YAML mapping."""
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise ValueError(f"Cannot read config file {path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ValueError(f"Config file {path} must be a YAML mapping at the top level.")

        known = set(REQUIRED_CONFIG_KEYS) | set(OPTIONAL_CONFIG_KEYS)
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys in {path}: {', '.join(unknown)}")
        return raw

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set configuration value."""
        self._config[key] = value

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration values."""
        return self._config.copy()

    @staticmethod
    def get_config_schema() -> Dict[str, Any]:
        """
        Get the configuration schema (contract) for this module.

        Returns:
            Dictionary with 'required' and 'optional' key specifications
        """
        return {
            "required": REQUIRED_CONFIG_KEYS.copy(),
            "optional": OPTIONAL_CONFIG_KEYS.copy(),
        }


@dataclass(frozen=True)
class ConnectionSettings:
    """Tunables for the connection lifecycle manager."""

    connect_timeout: float = 30.0
    test_connect_timeout: float = 15.0
    command_timeout: Optional[float] = 60.0
    keepalive_interval: Optional[float] = 30.0
    max_sessions: int = 8
    known_hosts: Optional[str] = None
    remote_config_path: str = ".kube/config"

    @classmethod
    def from_config(cls, config: ConfigModule) -> "ConnectionSettings":
        """Build settings from the config module; zero timeouts mean 'unbounded'."""
        command_timeout = float(config.get("command_timeout") or 0)
        keepalive = float(config.get("ssh_keepalive_interval") or 0)
        return cls(
            connect_timeout=float(config.get("connect_timeout")),
            test_connect_timeout=float(config.get("test_connect_timeout")),
            command_timeout=command_timeout or None,
            keepalive_interval=keepalive or None,
            max_sessions=int(config.get("ssh_max_sessions", 8)),
            known_hosts=config.get("ssh_known_hosts"),
            remote_config_path=config.get("remote_config_path"),
        )


_instance = None


def get_config() -> ConfigModule:
    """Get the configuration module instance, loading it on first use."""
    global _instance
    if _instance is None:
        _instance = ConfigModule()
    return _instance


__all__ = ["get_config", "ConfigModule", "ConnectionSettings"]
