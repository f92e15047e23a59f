"""Conditional logic evaluator: show / hide / require / skip_to rules."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Literal

from formengine.schemas.forms import ConditionalCondition, ConditionalRule, FormField
from formengine.utils.normalization import is_empty_value, parse_number

Precedence = Literal["last", "first"]


@dataclass
class FieldState:
    """Effective state of one field after rule evaluation."""

    visible: bool = True
    required: bool = False
    skip: bool = False
    skip_to_step_id: str | None = None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    return parse_number(value)


def _values_equal(actual: Any, expected: Any) -> bool:
    actual_number = _as_number(actual)
    expected_number = _as_number(expected)
    if actual_number is not None and expected_number is not None:
        return actual_number == expected_number
    return _as_text(actual) == _as_text(expected)


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, (list, tuple, set)):
        return any(_values_equal(item, expected) for item in actual)
    if isinstance(actual, str):
        needle = _as_text(expected).lower()
        return bool(needle) and needle in actual.lower()
    return False


def evaluate_condition(condition: ConditionalCondition, answers: dict[str, Any]) -> bool:
    value = answers.get(condition.field_id)
    operator = condition.operator
    expected = condition.value

    if operator == "is_empty":
        return is_empty_value(value)
    if operator == "is_not_empty":
        return not is_empty_value(value)
    if operator == "equals":
        return _values_equal(value, expected)
    if operator == "not_equals":
        return not _values_equal(value, expected)
    if operator == "contains":
        return _contains(value, expected)
    if operator == "not_contains":
        return not _contains(value, expected)
    if operator in {"greater_than", "less_than"}:
        actual_number = _as_number(value)
        expected_number = _as_number(expected)
        if actual_number is None or expected_number is None:
            return False
        if operator == "greater_than":
            return actual_number > expected_number
        return actual_number < expected_number
    return False


def is_rule_active(rule: ConditionalRule, answers: dict[str, Any]) -> bool:
    """A rule with no conditions is never active."""
    if not rule.conditions:
        return False
    results = (evaluate_condition(condition, answers) for condition in rule.conditions)
    if rule.logic_operator == "OR":
        return any(results)
    return all(results)


def evaluate(
    rules: Iterable[ConditionalRule],
    answers: dict[str, Any],
    fields: Iterable[FormField] | None = None,
    precedence: Precedence = "last",
) -> dict[str, FieldState]:
    """
    Resolve rules against the current answers.

    Returns a state per targeted field, plus one per field in ``fields``
    when given. A field targeted by any ``show`` rule starts hidden. When
    two active rules disagree on visibility, ``precedence`` picks the winner:
    the later rule in array order ("last") or the earlier one ("first").
    ``require`` only forces required while its rule is active.
    """
    rules = list(rules)
    states: dict[str, FieldState] = {}

    for field in fields or ():
        states[field.id] = FieldState(required=field.required)

    for rule in rules:
        state = states.setdefault(rule.target_field_id, FieldState())
        if rule.action == "show":
            state.visible = False

    ordered = rules if precedence == "last" else list(reversed(rules))
    for rule in ordered:
        if not is_rule_active(rule, answers):
            continue
        state = states[rule.target_field_id]
        if rule.action == "show":
            state.visible = True
        elif rule.action == "hide":
            state.visible = False
        elif rule.action == "require":
            state.required = True
        elif rule.action == "skip_to":
            state.skip = True
            state.skip_to_step_id = rule.skip_to_step_id

    return states


def hidden_field_ids(states: dict[str, FieldState]) -> set[str]:
    return {field_id for field_id, state in states.items() if not state.visible}
