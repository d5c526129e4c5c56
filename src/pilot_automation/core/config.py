"""Configuration management for the automation engine.

This module provides configuration models and loading functionality using Pydantic
for validation and type safety.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DOTENV_LOADED = False

# Node types that talk to remote services get the HTTP default instead of the
# generic per-node timeout.
_DEFAULT_NODE_TIMEOUTS: dict[str, float] = {
    "action-http": 30.0,
    "ai-generate": 30.0,
    "ai-classify": 30.0,
    "ai-extract": 30.0,
}


def _load_env_once() -> None:
    """Load environment variables from a .env file exactly once."""

    global _DOTENV_LOADED
    if not _DOTENV_LOADED:
        load_dotenv()
        _DOTENV_LOADED = True


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand environment variables in configuration data."""

    if isinstance(data, str):
        return os.path.expandvars(data)
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    return data


class RetryPolicyConfig(BaseModel):
    """Configuration for HTTP retry behaviour."""

    max_attempts: int = Field(
        default=3,
        ge=1,
        description="Maximum number of attempts (including the first request)",
    )
    backoff_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Initial delay in seconds before retrying",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        description="Multiplier applied to the backoff delay after each failure",
    )
    max_backoff_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="Maximum delay cap between retries",
    )


class HTTPClientConfig(BaseModel):
    """Defaults applied to outbound HTTP requests made by action nodes."""

    timeout: float = Field(default=30.0, gt=0, description="Default request timeout in seconds")
    max_timeout: float = Field(default=60.0, gt=0, description="Upper bound for any request timeout")
    retry: RetryPolicyConfig = Field(default_factory=RetryPolicyConfig)
    user_agent: str = Field(default="Pilot-Automation/1.0", description="User-Agent header")
    max_response_bytes: int = Field(
        default=1024 * 1024, ge=1, description="Largest response body accepted (1MB)"
    )
    block_private_networks: bool = Field(
        default=True,
        description="Refuse requests to loopback, private and metadata addresses",
    )


class EngineSettings(BaseModel):
    """Graph walker and node executor limits."""

    max_steps: int = Field(
        default=200,
        ge=1,
        description="Maximum number of step records a single run may produce",
    )
    default_node_timeout: float = Field(
        default=10.0, gt=0, description="Per-node timeout in seconds"
    )
    node_timeouts: dict[str, float] = Field(
        default_factory=lambda: dict(_DEFAULT_NODE_TIMEOUTS),
        description="Per node-type timeout overrides in seconds",
    )
    max_node_timeout: float = Field(
        default=60.0, gt=0, description="Cap applied to node-level timeoutSeconds overrides"
    )
    delay_grace_seconds: float = Field(
        default=5.0, ge=0, description="Slack added to a delay node's own duration"
    )

    @field_validator("node_timeouts")
    @classmethod
    def validate_timeouts(cls, value: dict[str, float]) -> dict[str, float]:
        for node_type, seconds in value.items():
            if seconds <= 0:
                raise ValueError(f"Timeout for {node_type} must be positive")
        return value

    def timeout_for(self, node_type: str, override: Any = None) -> float:
        """Resolve the effective timeout for a node.

        Args:
            node_type: Node type identifier
            override: Value of the node's ``timeoutSeconds`` field, if any

        Returns:
            Timeout in seconds
        """
        if override is not None:
            try:
                seconds = float(override)
            except (TypeError, ValueError):
                seconds = 0.0
            if seconds > 0:
                return min(seconds, self.max_node_timeout)
        return self.node_timeouts.get(node_type, self.default_node_timeout)


class StoreConfig(BaseModel):
    """Configuration for the automation and run history store."""

    db_path: str | None = Field(
        default=None, description="SQLite database path. None keeps everything in memory"
    )


class ServerConfig(BaseModel):
    """Configuration for the HTTP trigger API."""

    enabled: bool = Field(default=False, description="Start the API server with the service")
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8080, ge=1, le=65535, description="Listen port")
    api_key: str | None = Field(
        default=None, description="Shared secret expected in the X-API-Key header"
    )


class SchedulerConfig(BaseModel):
    """Configuration for the schedule trigger ticker."""

    enabled: bool = Field(default=True, description="Tick schedule triggers every minute")
    timezone: str = Field(default="UTC", description="Scheduler timezone")


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    log_file: str | None = Field(default=None, description="Log file path")
    max_bytes: int = Field(default=10485760, description="Max log file size (10MB)")
    backup_count: int = Field(default=5, description="Number of backup files")

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level


class EngineConfig(BaseSettings):
    """Main configuration for the automation engine."""

    model_config = SettingsConfigDict(
        env_prefix="PILOT_AUTOMATION_",
        env_nested_delimiter="__",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    engine: EngineSettings = Field(default_factory=EngineSettings)
    http: HTTPClientConfig = Field(default_factory=HTTPClientConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    automations: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Automation documents loaded into the store at startup",
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> EngineConfig:
        """Load configuration from a YAML file."""

        _load_env_once()
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, encoding="utf-8") as handle:
            try:
                config_data = yaml.safe_load(handle)
            except yaml.YAMLError as exc:
                raise ValueError(f"Invalid YAML in config file: {exc}") from exc

        if not config_data:
            config_data = {}

        config_data = _expand_env_vars(config_data)
        return cls(**config_data)

    @classmethod
    def from_json(cls, path: str | Path) -> EngineConfig:
        """Load configuration from a JSON file."""

        import json

        _load_env_once()
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, encoding="utf-8") as handle:
            try:
                config_data = json.load(handle)
            except json.JSONDecodeError as exc:
                raise ValueError(f"Invalid JSON in config file: {exc}") from exc

        config_data = _expand_env_vars(config_data)
        return cls(**config_data)

    @classmethod
    def load(cls, path: str | Path | None = None) -> EngineConfig:
        """Load configuration from a YAML/JSON file, or from the environment only."""

        if path is None:
            _load_env_once()
            return cls()
        if str(path).endswith(".json"):
            return cls.from_json(path)
        return cls.from_yaml(path)


__all__ = [
    "EngineConfig",
    "EngineSettings",
    "HTTPClientConfig",
    "LoggingConfig",
    "RetryPolicyConfig",
    "SchedulerConfig",
    "ServerConfig",
    "StoreConfig",
]
