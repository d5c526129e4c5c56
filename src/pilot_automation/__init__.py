"""Pilot Automation.

A workflow engine for lead-management automations:
- Graph-based automations with triggers, actions, conditions and AI steps
- Event, schedule, manual and AI tool triggers
- Test runs that simulate local side effects
- Persisted run history with per-node step records
- HTTP API for triggers and automation management

Example:
    ```python
    import asyncio

    from pilot_automation import AutomationService, EngineConfig

    service = AutomationService(EngineConfig.load("config.yaml"))
    service.load_documents(service.config.automations)
    run = asyncio.run(service.run_test("new-lead-email", {"lead": {"name": "Ada"}}))
    print(run.status)
    ```
"""

from importlib.metadata import PackageNotFoundError, version

try:  # pragma: no cover - best-effort during development
    __version__ = version("pilot-automation")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"

from .automation import (
    Automation,
    AutomationService,
    AutomationStore,
    Run,
    RunMode,
    RunStatus,
    TriggerStimulus,
    TriggerType,
)
from .core import EngineConfig, get_logger, setup_logging

__all__ = [
    "Automation",
    "AutomationService",
    "AutomationStore",
    "EngineConfig",
    "Run",
    "RunMode",
    "RunStatus",
    "TriggerStimulus",
    "TriggerType",
    "__version__",
    "get_logger",
    "setup_logging",
]
