"""Condition evaluation for branching nodes.

A condition is either a single rule::

    {"field": "lead.stage", "operator": "equals", "value": "new"}

or a group combining rules (and nested groups) with ``and``/``or``::

    {"combinator": "or", "rules": [rule, {"combinator": "and", "rules": [...]}]}

Fields are dotted paths into the run context. Evaluation is pure: it reads the
context, never mutates it, and performs no I/O.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from ..core.exceptions import ConditionConfigError
from .templating import UNDEFINED, render, resolve_path

_ALIASES = {
    "eq": "equals",
    "==": "equals",
    "equal": "equals",
    "ne": "not_equals",
    "neq": "not_equals",
    "!=": "not_equals",
    "gt": "greater_than",
    ">": "greater_than",
    "gte": "greater_than_or_equal",
    ">=": "greater_than_or_equal",
    "lt": "less_than",
    "<": "less_than",
    "lte": "less_than_or_equal",
    "<=": "less_than_or_equal",
}


def _is_concrete(value: Any) -> bool:
    return value is not UNDEFINED


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or not _is_concrete(value) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _equals(actual: Any, expected: Any) -> bool:
    if not _is_concrete(actual):
        return False
    if actual == expected:
        return True
    left, right = _as_number(actual), _as_number(expected)
    if left is not None and right is not None:
        return left == right
    if isinstance(actual, (dict, list)) or isinstance(expected, (dict, list)):
        return False
    if actual is None or expected is None:
        return False
    return str(actual) == str(expected)


def _contains(actual: Any, expected: Any) -> bool:
    if not _is_concrete(actual) or actual is None:
        return False
    if isinstance(actual, str):
        return str(expected) in actual
    if isinstance(actual, Mapping):
        return expected in actual
    if isinstance(actual, (list, tuple, set)):
        return any(_equals(item, expected) for item in actual)
    return False


def _compare(actual: Any, expected: Any, check: Callable[[float, float], bool]) -> bool:
    left, right = _as_number(actual), _as_number(expected)
    if left is None or right is None:
        return False
    return check(left, right)


def _exists(actual: Any) -> bool:
    return _is_concrete(actual) and actual is not None


def _is_empty(actual: Any) -> bool:
    if not _exists(actual):
        return True
    if isinstance(actual, str):
        return actual.strip() == ""
    if isinstance(actual, (list, tuple, set, dict)):
        return len(actual) == 0
    return False


OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "equals": _equals,
    "not_equals": lambda actual, expected: not _equals(actual, expected),
    "contains": _contains,
    "not_contains": lambda actual, expected: not _contains(actual, expected),
    "greater_than": lambda actual, expected: _compare(actual, expected, lambda a, b: a > b),
    "greater_than_or_equal": lambda actual, expected: _compare(
        actual, expected, lambda a, b: a >= b
    ),
    "less_than": lambda actual, expected: _compare(actual, expected, lambda a, b: a < b),
    "less_than_or_equal": lambda actual, expected: _compare(
        actual, expected, lambda a, b: a <= b
    ),
    "exists": lambda actual, _expected: _exists(actual),
    "not_exists": lambda actual, _expected: not _exists(actual),
    "is_empty": lambda actual, _expected: _is_empty(actual),
    "is_not_empty": lambda actual, _expected: not _is_empty(actual),
}


def normalize_operator(operator: Any) -> str:
    """Map an operator spelling (``not-equals``, ``gt``, ...) to its canonical name.

    Raises:
        ConditionConfigError: If the operator is not supported.
    """
    if not isinstance(operator, str) or not operator.strip():
        raise ConditionConfigError(f"Condition operator must be a non-empty string: {operator!r}")
    name = operator.strip().lower()
    name = _ALIASES.get(name, name).replace("-", "_")
    if name not in OPERATORS:
        raise ConditionConfigError(f"Unsupported condition operator: {operator}")
    return name


def condition_from_node_data(data: Mapping[str, Any]) -> Any:
    """Extract the condition document from a condition node's data.

    Accepts ``{"condition": ...}`` as well as the editor's
    ``{"conditions": [...], "logic": "and"}`` form.
    """
    if "condition" in data:
        return data["condition"]
    if "conditions" in data:
        return {"combinator": data.get("logic", "and"), "rules": data["conditions"]}
    raise ConditionConfigError("Condition node has no condition configured")


class ConditionEvaluator:
    """Evaluates rule and group conditions against a run context."""

    def evaluate(self, condition: Any, context: Mapping[str, Any]) -> bool:
        """Evaluate a condition.

        Args:
            condition: Rule or group document
            context: Run context the dotted paths resolve into

        Returns:
            True if the condition holds

        Raises:
            ConditionConfigError: If the condition document is malformed.
        """
        if not isinstance(condition, Mapping):
            raise ConditionConfigError(f"Condition must be a mapping, got {type(condition).__name__}")

        if "rules" in condition or "combinator" in condition:
            return self._evaluate_group(condition, context)
        return self._evaluate_rule(condition, context)

    def validate(self, condition: Any) -> list[str]:
        """Return a list of problems with a condition document without evaluating it."""
        problems: list[str] = []
        self._collect_problems(condition, problems)
        return problems

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _evaluate_group(self, group: Mapping[str, Any], context: Mapping[str, Any]) -> bool:
        combinator = self._combinator(group)
        rules = self._rules(group)
        if combinator == "and":
            return all(self.evaluate(rule, context) for rule in rules)
        return any(self.evaluate(rule, context) for rule in rules)

    def _evaluate_rule(self, rule: Mapping[str, Any], context: Mapping[str, Any]) -> bool:
        field = rule.get("field")
        if not isinstance(field, str) or not field.strip():
            raise ConditionConfigError("Condition rule is missing its field")
        operator = normalize_operator(rule.get("operator"))
        actual = resolve_path(context, field)
        expected = render(rule.get("value"), context)
        return bool(OPERATORS[operator](actual, expected))

    @staticmethod
    def _combinator(group: Mapping[str, Any]) -> str:
        combinator = str(group.get("combinator", "and")).strip().lower()
        if combinator not in {"and", "or"}:
            raise ConditionConfigError(f"Unsupported condition combinator: {combinator}")
        return combinator

    @staticmethod
    def _rules(group: Mapping[str, Any]) -> list[Any]:
        rules = group.get("rules")
        if not isinstance(rules, list) or not rules:
            raise ConditionConfigError("Condition group needs a non-empty list of rules")
        return rules

    def _collect_problems(self, condition: Any, problems: list[str]) -> None:
        try:
            if not isinstance(condition, Mapping):
                raise ConditionConfigError("Condition must be a mapping")
            if "rules" in condition or "combinator" in condition:
                self._combinator(condition)
                for rule in self._rules(condition):
                    self._collect_problems(rule, problems)
                return
            field = condition.get("field")
            if not isinstance(field, str) or not field.strip():
                raise ConditionConfigError("Condition rule is missing its field")
            normalize_operator(condition.get("operator"))
        except ConditionConfigError as exc:
            problems.append(str(exc))


_default_evaluator = ConditionEvaluator()


def evaluate_condition(condition: Any, context: Mapping[str, Any]) -> bool:
    """Evaluate a condition with a shared :class:`ConditionEvaluator`."""
    return _default_evaluator.evaluate(condition, context)


__all__ = [
    "ConditionEvaluator",
    "OPERATORS",
    "condition_from_node_data",
    "evaluate_condition",
    "normalize_operator",
]
