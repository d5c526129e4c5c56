"""Tests for logging setup."""

from __future__ import annotations

import logging

from pilot_automation.core.config import LoggingConfig
from pilot_automation.core.logger import LOGGER_NAMESPACE, get_logger, setup_logging


def test_get_logger_is_namespaced_and_cached() -> None:
    logger = get_logger("automation.test")
    assert logger.name == f"{LOGGER_NAMESPACE}.automation.test"
    assert get_logger("automation.test") is logger


def test_setup_logging_writes_file(tmp_path) -> None:
    log_file = tmp_path / "logs" / "automation.log"
    setup_logging(LoggingConfig(level="DEBUG", log_file=str(log_file)))
    try:
        get_logger("automation.test").debug("hello from the engine")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "hello from the engine" in log_file.read_text(encoding="utf-8")
    finally:
        setup_logging(LoggingConfig())
    assert get_logger("automation.test").level == logging.INFO
