"""CLI command handlers package."""

from .automation import cmd_run, cmd_templates, cmd_validate
from .serve import cmd_serve

__all__ = [
    "cmd_run",
    "cmd_serve",
    "cmd_templates",
    "cmd_validate",
]
