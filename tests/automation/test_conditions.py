"""Tests for condition evaluation."""

from __future__ import annotations

import copy

import pytest

from pilot_automation.automation.conditions import (
    ConditionEvaluator,
    condition_from_node_data,
    evaluate_condition,
    normalize_operator,
)
from pilot_automation.core.exceptions import ConditionConfigError

CONTEXT = {
    "lead": {"stage": "new", "score": "75", "tags": ["vip"], "email": "", "notes": None},
    "message": {"content": "I want a demo please"},
}


def rule(field: str, operator: str, value: object = None) -> dict:
    return {"field": field, "operator": operator, "value": value}


class TestOperators:
    @pytest.mark.parametrize(
        ("condition", "expected"),
        [
            (rule("lead.stage", "equals", "new"), True),
            (rule("lead.stage", "not_equals", "new"), False),
            (rule("lead.score", "equals", 75), True),
            (rule("lead.score", "greater_than", 50), True),
            (rule("lead.score", "less_than_or_equal", 75), True),
            (rule("lead.score", "less_than", "abc"), False),
            (rule("message.content", "contains", "demo"), True),
            (rule("lead.tags", "contains", "vip"), True),
            (rule("lead.tags", "not_contains", "cold"), True),
            (rule("lead.stage", "exists"), True),
            (rule("lead.notes", "exists"), False),
            (rule("lead.missing", "not_exists"), True),
            (rule("lead.email", "is_empty"), True),
            (rule("lead.tags", "is_not_empty"), True),
        ],
    )
    def test_rule(self, condition: dict, expected: bool) -> None:
        assert evaluate_condition(condition, CONTEXT) is expected

    def test_missing_field_never_equals(self) -> None:
        assert evaluate_condition(rule("lead.owner", "equals", None), CONTEXT) is False
        assert evaluate_condition(rule("lead.owner", "not_equals", "x"), CONTEXT) is True

    def test_value_is_rendered_against_context(self) -> None:
        context = {"lead": {"stage": "won"}, "target": "won"}
        assert evaluate_condition(rule("lead.stage", "equals", "{{target}}"), context)

    @pytest.mark.parametrize(
        ("spelling", "canonical"),
        [("eq", "equals"), ("!=", "not_equals"), ("not-contains", "not_contains"), (">=", "greater_than_or_equal")],
    )
    def test_operator_aliases(self, spelling: str, canonical: str) -> None:
        assert normalize_operator(spelling) == canonical

    def test_unknown_operator_raises(self) -> None:
        with pytest.raises(ConditionConfigError):
            evaluate_condition(rule("lead.stage", "matches", "n.*"), CONTEXT)


class TestGroups:
    def test_and_group(self) -> None:
        condition = {
            "combinator": "and",
            "rules": [rule("lead.stage", "equals", "new"), rule("lead.score", "gt", 80)],
        }
        assert evaluate_condition(condition, CONTEXT) is False

    def test_nested_or_group(self) -> None:
        condition = {
            "combinator": "or",
            "rules": [
                rule("lead.stage", "equals", "lost"),
                {
                    "combinator": "and",
                    "rules": [rule("lead.tags", "contains", "vip"), rule("lead.score", "gte", 75)],
                },
            ],
        }
        assert evaluate_condition(condition, CONTEXT) is True

    def test_empty_group_raises(self) -> None:
        with pytest.raises(ConditionConfigError):
            evaluate_condition({"combinator": "and", "rules": []}, CONTEXT)

    def test_unknown_combinator_raises(self) -> None:
        with pytest.raises(ConditionConfigError):
            evaluate_condition({"combinator": "xor", "rules": [rule("a", "exists")]}, CONTEXT)


@pytest.mark.parametrize(
    "condition",
    [
        rule("lead.tags", "contains", "vip"),
        rule("lead.score", "greater-than", 50),
        {
            "combinator": "or",
            "rules": [rule("lead.email", "is_empty"), rule("message.content", "contains", "demo")],
        },
    ],
)
def test_evaluation_is_pure(condition: dict) -> None:
    before = copy.deepcopy(CONTEXT)
    first = evaluate_condition(condition, CONTEXT)
    second = evaluate_condition(condition, CONTEXT)
    assert first == second
    assert isinstance(first, bool)
    assert CONTEXT == before


def test_validate_collects_problems() -> None:
    evaluator = ConditionEvaluator()
    problems = evaluator.validate(
        {"combinator": "and", "rules": [rule("lead.stage", "bogus"), {"operator": "equals"}]}
    )
    assert len(problems) == 2
    assert evaluator.validate(rule("lead.stage", "equals", "new")) == []


class TestConditionFromNodeData:
    def test_single_condition(self) -> None:
        data = {"condition": rule("lead.stage", "equals", "new")}
        assert condition_from_node_data(data) == data["condition"]

    def test_editor_conditions_list(self) -> None:
        data = {"conditions": [rule("a", "exists")], "logic": "or"}
        assert condition_from_node_data(data) == {"combinator": "or", "rules": data["conditions"]}

    def test_missing_condition_raises(self) -> None:
        with pytest.raises(ConditionConfigError):
            condition_from_node_data({"label": "Check"})
