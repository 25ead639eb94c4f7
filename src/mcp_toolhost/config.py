"""Server configuration loaded from environment variables and an optional YAML file."""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .registry import RegistrationPolicy

ENV_PREFIX = "TOOLHOST_"
CONFIG_FILE_ENV = "TOOLHOST_CONFIG"

TRANSPORTS = ("http", "stdio")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Config field -> environment variable suffix, where the two differ.
_ENV_NAMES = {
    "audit_log_path": "AUDIT_LOG",
}


class ConfigError(ValueError):
    """Raised when a configuration value is missing or malformed."""


@dataclass
class ServerConfig:
    """Runtime settings for the tool host."""

    server_name: str = "mcp-toolhost"
    server_version: str = "0.1.0"
    transport: str = "http"
    host: str = "127.0.0.1"
    port: int = 8765
    call_timeout: Optional[float] = 30.0  # seconds; None means unbounded
    max_concurrent_calls: int = 16
    worker_threads: int = 8
    registration_policy: RegistrationPolicy = RegistrationPolicy.STRICT
    audit_log_path: Optional[str] = None
    host_url: str = "http://127.0.0.1:8766"
    host_timeout: float = 10.0
    log_level: str = "INFO"

    def __post_init__(self):
        self.transport = str(self.transport).lower()
        if self.transport not in TRANSPORTS:
            raise ConfigError(
                f"Unknown transport '{self.transport}' (expected one of: {', '.join(TRANSPORTS)})"
            )

        self.log_level = str(self.log_level).upper()
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"Unknown log level '{self.log_level}'")

        if not isinstance(self.registration_policy, RegistrationPolicy):
            try:
                self.registration_policy = RegistrationPolicy(str(self.registration_policy).lower())
            except ValueError:
                raise ConfigError(
                    f"Unknown registration policy '{self.registration_policy}' "
                    "(expected 'strict' or 'skip')"
                ) from None

        self.port = _coerce("port", self.port, int)
        self.max_concurrent_calls = _coerce("max_concurrent_calls", self.max_concurrent_calls, int)
        self.worker_threads = _coerce("worker_threads", self.worker_threads, int)
        self.host_timeout = _coerce("host_timeout", self.host_timeout, float)

        if self.call_timeout is not None:
            self.call_timeout = _coerce("call_timeout", self.call_timeout, float)
            if self.call_timeout <= 0:
                self.call_timeout = None

        if not 0 < self.port < 65536:
            raise ConfigError(f"Port out of range: {self.port}")
        if self.max_concurrent_calls < 1:
            raise ConfigError("max_concurrent_calls must be at least 1")
        if self.worker_threads < 1:
            raise ConfigError("worker_threads must be at least 1")
        if self.host_timeout <= 0:
            raise ConfigError("host_timeout must be positive")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "ServerConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**dict(values))

    @classmethod
    def from_file(cls, path: str) -> Dict[str, Any]:
        """
        Load raw settings from a YAML file.

        Args:
            path: Path to a YAML mapping of config field names to values

        Returns:
            The mapping (unvalidated; pass it to from_mapping)
        """
        try:
            data = yaml.safe_load(Path(path).expanduser().read_text())
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in config file {path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return data

    @classmethod
    def from_environment(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        """
        Build configuration from TOOLHOST_* environment variables.

        If TOOLHOST_CONFIG names a YAML file, its values are loaded first and
        environment variables override them.

        Returns:
            Validated ServerConfig
        """
        environ = os.environ if environ is None else environ

        values: Dict[str, Any] = {}
        config_file = environ.get(CONFIG_FILE_ENV)
        if config_file:
            values.update(cls.from_file(config_file))

        for f in fields(cls):
            env_name = ENV_PREFIX + _ENV_NAMES.get(f.name, f.name.upper())
            raw = environ.get(env_name)
            if raw is not None and raw != "":
                values[f.name] = raw

        return cls.from_mapping(values)


def _coerce(name: str, value: Any, kind: type) -> Any:
    if isinstance(value, bool):
        raise ConfigError(f"Invalid value for {name}: {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid value for {name}: {value!r}") from None
