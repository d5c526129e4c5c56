"""Serve command: run the trigger and management API in the foreground."""

from __future__ import annotations

import argparse

from ...automation.service import AutomationService
from ...core import EngineConfig, setup_logging
from ...core.server import AutomationServer
from ..base import logger


def cmd_serve(args: argparse.Namespace) -> int:
    """Handle serve command.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    try:
        config = EngineConfig.load(args.config)
        if args.debug:
            config.logging.level = "DEBUG"
        if args.host:
            config.server.host = args.host
        if args.port:
            config.server.port = args.port
        setup_logging(config.logging)

        service = AutomationService(config)
        service.load_documents(config.automations)

        server = AutomationServer(config.server, service)
        logger.info(
            "Serving %d automation(s) on %s:%s",
            len(config.automations),
            config.server.host,
            config.server.port,
        )
        server.serve()
        return 0
    except KeyboardInterrupt:
        logger.info("Server interrupted by user")
        return 0
    except Exception as e:
        logger.error(f"Error starting server: {e}", exc_info=True)
        print(f"Error: {e}")
        return 1


__all__ = ["cmd_serve"]
