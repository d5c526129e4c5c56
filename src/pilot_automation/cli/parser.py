"""CLI argument parser."""

from __future__ import annotations

import argparse

from .. import __version__


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser.

    Returns:
        ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="pilot-automation",
        description="Pilot Automation - validate, run and serve automation workflows",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Check an automation document
  pilot-automation validate automation.yaml

  # Test-run it with a payload (local effects are simulated)
  pilot-automation run automation.yaml --payload '{"lead": {"stage": "new"}}' --test

  # Serve the trigger API
  pilot-automation serve -c config.yaml --port 8080

  # Write a built-in template to a file
  pilot-automation templates --instantiate new-lead-email -o lead-email.yaml
        """,
    )

    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s v{__version__}",
        help="Show program's version number and exit",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Validate command
    validate_parser = subparsers.add_parser("validate", help="Validate an automation document")
    validate_parser.add_argument("file", help="Automation document (YAML or JSON)")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run an automation once")
    run_parser.add_argument("file", help="Automation document (YAML or JSON)")
    run_parser.add_argument(
        "--payload",
        default=None,
        help="Trigger payload as JSON, or @path to a JSON file",
    )
    run_parser.add_argument(
        "--test",
        action="store_true",
        help="Run in test mode: lead, booking and messaging nodes are simulated",
    )
    run_parser.add_argument(
        "-c",
        "--config",
        default=None,
        help="Path to configuration file",
    )
    run_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the run document as JSON",
    )

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Serve the trigger and management API")
    serve_parser.add_argument(
        "-c",
        "--config",
        default=None,
        help="Path to configuration file",
    )
    serve_parser.add_argument("--host", default=None, help="Host to bind the server to")
    serve_parser.add_argument("-p", "--port", type=int, default=None, help="Port to bind to")
    serve_parser.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Enable debug/verbose logging mode",
    )

    # Templates command
    templates_parser = subparsers.add_parser("templates", help="List built-in templates")
    templates_parser.add_argument("--category", default=None, help="Only list this category")
    templates_parser.add_argument(
        "--instantiate",
        metavar="TEMPLATE_ID",
        default=None,
        help="Create an automation document from a template",
    )
    templates_parser.add_argument(
        "-o",
        "--output",
        default=None,
        help="Write the instantiated document to this file instead of stdout",
    )
    templates_parser.add_argument("--tenant", default="default", help="Tenant id of the new automation")

    return parser


__all__ = ["build_parser"]
