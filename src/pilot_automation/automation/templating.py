"""Dotted-path lookups and ``{{ path }}`` interpolation over a run context."""

from __future__ import annotations

import copy
import json
import re
from collections.abc import Iterator, Mapping
from string import Template
from typing import Any


class _Undefined:
    """Sentinel for a path that does not resolve. Falsy and equal only to itself."""

    _instance: _Undefined | None = None

    def __new__(cls) -> _Undefined:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __copy__(self) -> _Undefined:
        return self

    def __deepcopy__(self, memo: dict[int, Any]) -> _Undefined:
        return self


UNDEFINED: Any = _Undefined()

_PLACEHOLDER = re.compile(r"^\s*\{\{\s*([A-Za-z_$][\w$\-]*(?:\.[\w$\-]+)*)\s*\}\}\s*$")


def strip_placeholder(path: str) -> str:
    """Turn ``"{{ lead.name }}"`` into ``"lead.name"``; other strings are returned trimmed."""
    match = _PLACEHOLDER.match(path)
    if match:
        return match.group(1)
    return path.strip()


def resolve_path(data: Any, path: str) -> Any:
    """Resolve a dotted path into nested mappings and sequences.

    Integer segments index into lists. Anything that cannot be followed yields
    :data:`UNDEFINED`; this function never raises.
    """
    path = strip_placeholder(path)
    if not path:
        return UNDEFINED
    current: Any = data
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return UNDEFINED
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.lstrip("-").isdigit():
            index = int(part)
            if not -len(current) <= index < len(current):
                return UNDEFINED
            current = current[index]
        else:
            return UNDEFINED
    return current


def _format(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


class _ContextLookup(Mapping[str, str]):
    """Mapping view used by :class:`ContextTemplate` to look up dotted paths."""

    def __init__(self, context: Mapping[str, Any]) -> None:
        self._context = context

    def __getitem__(self, key: str) -> str:
        value = resolve_path(self._context, key)
        if value is UNDEFINED:
            raise KeyError(key)
        return _format(value)

    def __iter__(self) -> Iterator[str]:
        return iter(self._context)

    def __len__(self) -> int:
        return len(self._context)


class ContextTemplate(Template):
    """``string.Template`` variant using ``{{ dotted.path }}`` placeholders."""

    delimiter = "{{"
    pattern = r"""
    \{\{\s*(?:
      (?P<named>[A-Za-z_$][\w$\-]*(?:\.[\w$\-]+)*)\s*\}\}
      | (?P<braced>(?!))
      | (?P<escaped>(?!))
      | (?P<invalid>)
    )
    """


def render(value: Any, context: Mapping[str, Any]) -> Any:
    """Interpolate context values into a configuration value.

    Strings are rendered with :class:`ContextTemplate`; unknown placeholders are
    left untouched. A string consisting of exactly one placeholder returns the
    referenced value itself, so ``"{{lead}}"`` yields the lead mapping rather
    than its JSON text. Mappings and lists are rendered recursively.
    """
    if isinstance(value, str):
        match = _PLACEHOLDER.match(value)
        if match:
            resolved = resolve_path(context, match.group(1))
            return value if resolved is UNDEFINED else copy.deepcopy(resolved)
        if "{{" not in value:
            return value
        return ContextTemplate(value).safe_substitute(_ContextLookup(context))
    if isinstance(value, Mapping):
        return {key: render(item, context) for key, item in value.items()}
    if isinstance(value, list):
        return [render(item, context) for item in value]
    return value


def render_text(value: Any, context: Mapping[str, Any]) -> str:
    """Render a value and always return text."""
    rendered = render(value, context)
    return rendered if isinstance(rendered, str) else _format(rendered)


__all__ = [
    "ContextTemplate",
    "UNDEFINED",
    "render",
    "render_text",
    "resolve_path",
    "strip_placeholder",
]
