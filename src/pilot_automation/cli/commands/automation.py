"""Automation CLI commands.

Provides validation, one-shot runs and template browsing for automation
documents stored as YAML or JSON files.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from ...automation.graph import validate_automation
from ...automation.models import Automation, Run, RunMode, RunStatus, StepOutcome
from ...automation.service import AutomationService, external_calls_performed
from ...automation.templates import TEMPLATE_CATEGORIES, create_default_template_registry
from ...core import EngineConfig, setup_logging
from ...core.exceptions import AutomationConfigError
from ..base import load_document, logger, parse_payload

_OUTCOME_STYLES = {
    StepOutcome.SUCCESS: "[green]success[/]",
    StepOutcome.FAILURE: "[red]failure[/]",
    StepOutcome.SKIPPED: "[dim]skipped[/]",
}

_STATUS_STYLES = {
    RunStatus.SUCCEEDED: "green",
    RunStatus.FAILED: "red",
    RunStatus.CANCELLED: "yellow",
    RunStatus.RUNNING: "cyan",
}


def cmd_validate(args: argparse.Namespace) -> int:
    """Handle validate command.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    console = Console()
    try:
        document = load_document(args.file)
        console.print(f"\n[bold]Validating {args.file}...[/]\n")

        try:
            automation = Automation.from_document(document)
        except (ValidationError, AutomationConfigError) as exc:
            console.print("[red bold]Errors:[/]")
            console.print(f"  [red]✗[/] {exc}")
            console.print("\n[red]✗ Validation failed with 1 error(s)[/]")
            return 1

        report = validate_automation(automation)

        if report.errors:
            console.print("[red bold]Errors:[/]")
            for issue in report.errors:
                prefix = f"{issue.node_id}: " if issue.node_id else ""
                console.print(f"  [red]✗[/] {prefix}{issue.message}")

        if report.warnings:
            console.print("\n[yellow bold]Warnings:[/]")
            for issue in report.warnings:
                prefix = f"{issue.node_id}: " if issue.node_id else ""
                console.print(f"  [yellow]⚠[/] {prefix}{issue.message}")

        if not report.errors and not report.warnings:
            console.print(f"[green]✓ Automation '{automation.name}' is valid![/]")
            return 0
        elif not report.errors:
            console.print(
                f"\n[green]✓ Validation passed with {len(report.warnings)} warning(s)[/]"
            )
            return 0
        else:
            console.print(f"\n[red]✗ Validation failed with {len(report.errors)} error(s)[/]")
            return 1

    except Exception as e:
        logger.error(f"Error validating automation: {e}", exc_info=True)
        print(f"Error: {e}")
        return 1


def cmd_run(args: argparse.Namespace) -> int:
    """Handle run command.

    Loads the document into an in-memory store, runs it once and prints the
    step records.

    Args:
        args: Parsed arguments

    Returns:
        Exit code, 0 when the run succeeded
    """
    console = Console()
    try:
        config = EngineConfig.load(args.config)
        setup_logging(config.logging)
        config.store.db_path = None
        config.scheduler.enabled = False

        document = load_document(args.file)
        payload = parse_payload(args.payload)
        mode = RunMode.TEST if args.test else RunMode.LIVE

        service = AutomationService(config)
        automation = service.load_documents([document])[0]

        async def _run() -> Run:
            try:
                return await service.execute(automation.id, payload, mode)
            finally:
                await service.shutdown()

        run = asyncio.run(_run())
    except KeyboardInterrupt:
        logger.info("Run interrupted by user")
        return 1
    except Exception as e:
        logger.error(f"Error running automation: {e}", exc_info=True)
        print(f"Error: {e}")
        return 1

    if args.json:
        print(json.dumps(run.to_document(), indent=2, ensure_ascii=False))
    else:
        _print_run(console, automation, run)
    return 0 if run.status is RunStatus.SUCCEEDED else 1


def _print_run(console: Console, automation: Automation, run: Run) -> None:
    table = Table(title=f"Run {run.id} ({run.mode.value})")
    table.add_column("#", justify="right")
    table.add_column("Node", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Outcome")
    table.add_column("Branch")
    table.add_column("Duration", justify="right")
    table.add_column("Details")

    for step in run.steps:
        details = step.error or ""
        if step.simulated:
            details = "simulated" if not details else f"simulated; {details}"
        table.add_row(
            str(step.index),
            step.node_id,
            step.node_type,
            _OUTCOME_STYLES[step.outcome],
            step.branch or "",
            f"{step.duration_ms:.1f}ms",
            details,
        )

    console.print(table)
    style = _STATUS_STYLES[run.status]
    console.print(
        f"\n[bold]{automation.name}[/]: [{style}]{run.status.value}[/] "
        f"after {len(run.steps)} step(s)"
    )
    if run.error:
        node = f" at node {run.error_node_id}" if run.error_node_id else ""
        console.print(f"[red]Error{node}:[/] {run.error}")
    if run.mode is RunMode.TEST:
        performed = "yes" if external_calls_performed(run) else "no"
        console.print(f"External calls performed: {performed}")


def cmd_templates(args: argparse.Namespace) -> int:
    """Handle templates command.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    console = Console()
    registry = create_default_template_registry()

    try:
        if args.instantiate:
            automation = registry.instantiate(args.instantiate, args.tenant)
            text = yaml.safe_dump(
                automation.to_document(), sort_keys=False, allow_unicode=True
            )
            if args.output:
                Path(args.output).write_text(text, encoding="utf-8")
                console.print(
                    f"[green]✓ Created automation '{automation.name}' in {args.output}[/]"
                )
            else:
                print(text)
            return 0

        if args.category and args.category not in TEMPLATE_CATEGORIES:
            print(f"Unknown category: {args.category}")
            print(f"Available categories: {', '.join(TEMPLATE_CATEGORIES)}")
            return 1

        table = Table(title="Available Templates")
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("Category", style="magenta")
        table.add_column("Trigger", style="yellow")
        table.add_column("Nodes", style="green")

        for template in registry.list_templates(args.category):
            table.add_row(
                template.id,
                template.name,
                template.category,
                template.trigger_type.value,
                str(len(template.nodes)),
            )

        console.print(table)
        return 0

    except KeyError as e:
        print(f"Error: {e.args[0]}")
        return 1
    except Exception as e:
        logger.error(f"Error listing templates: {e}", exc_info=True)
        print(f"Error: {e}")
        return 1


__all__ = ["cmd_run", "cmd_templates", "cmd_validate"]
