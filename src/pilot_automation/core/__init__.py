"""Core modules for the automation engine.

This package contains the shared infrastructure:
- Configuration management
- Logging utilities
- Exception hierarchy

The HTTP server lives in :mod:`pilot_automation.core.server` and is imported
explicitly since it depends on the automation package.
"""

from .config import (
    EngineConfig,
    EngineSettings,
    HTTPClientConfig,
    LoggingConfig,
    RetryPolicyConfig,
    SchedulerConfig,
    ServerConfig,
    StoreConfig,
)
from .exceptions import (
    AdapterError,
    AutomationConfigError,
    AutomationError,
    AutomationNotFoundError,
    RunNotFoundError,
    RunStateError,
)
from .logger import get_logger, setup_logging

__all__ = [
    # Config
    "EngineConfig",
    "EngineSettings",
    "HTTPClientConfig",
    "LoggingConfig",
    "RetryPolicyConfig",
    "SchedulerConfig",
    "ServerConfig",
    "StoreConfig",
    # Exceptions
    "AdapterError",
    "AutomationConfigError",
    "AutomationError",
    "AutomationNotFoundError",
    "RunNotFoundError",
    "RunStateError",
    # Logging
    "get_logger",
    "setup_logging",
]
