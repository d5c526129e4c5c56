"""Base utilities shared by CLI commands."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from ..core import get_logger

logger = get_logger("cli")


def load_document(path: str | Path) -> dict[str, Any]:
    """Read an automation document from a YAML or JSON file.

    Args:
        path: File to read

    Returns:
        The parsed document

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file does not hold a mapping
    """
    doc_path = Path(path)
    if not doc_path.exists():
        raise FileNotFoundError(f"Automation file not found: {doc_path}")

    text = doc_path.read_text(encoding="utf-8")
    if doc_path.suffix.lower() == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ValueError(f"{doc_path} does not contain an automation document")
    return data


def parse_payload(raw: str | None) -> dict[str, Any]:
    """Parse a ``--payload`` argument: inline JSON or ``@file``."""
    if not raw:
        return {}
    if raw.startswith("@"):
        raw = Path(raw[1:]).read_text(encoding="utf-8")
    payload = json.loads(raw)
    if not isinstance(payload, dict):
        raise ValueError("Payload must be a JSON object")
    return payload


__all__ = ["load_document", "logger", "parse_payload"]
