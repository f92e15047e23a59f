"""Step navigator: partitions fields into ordered steps and gates step advance."""

from __future__ import annotations

from dataclasses import dataclass, field as dataclass_field
from typing import Any

from formengine.schemas.forms import DISPLAY_FIELD_TYPES, FormDefinition, FormField, FormStep
from formengine.services import conditional_logic
from formengine.services.conditional_logic import FieldState, Precedence
from formengine.services.field_validation import is_required, validate
from formengine.utils.normalization import is_empty_value


@dataclass
class StepValidationResult:
    valid: bool
    errors: dict[str, str] = dataclass_field(default_factory=dict)
    # Index to move to; equals the current index when validation failed,
    # None when the current step was the last one.
    next_step_index: int | None = None

    @property
    def failed_field_ids(self) -> list[str]:
        return list(self.errors)


def ordered_steps(form: FormDefinition) -> list[FormStep]:
    return sorted(form.steps, key=lambda step: step.order)


def ordered_fields(form: FormDefinition) -> list[FormField]:
    # sorted() is stable, so equal orders keep insertion order.
    return sorted(form.fields, key=lambda f: f.order)


def _has_assigned_fields(steps: list[FormStep]) -> bool:
    return any(step.fields for step in steps)


def step_count(form: FormDefinition) -> int:
    return max(len(form.steps), 1)


def step_fields(form: FormDefinition, step_index: int) -> list[FormField]:
    """
    Fields rendered on a step, sorted by ``order``.

    When no step lists any field, step 0 shows every field. Otherwise only
    explicitly assigned fields render; unassigned fields appear nowhere.
    """
    steps = ordered_steps(form)
    if not _has_assigned_fields(steps):
        return ordered_fields(form) if step_index == 0 else []
    if step_index < 0 or step_index >= len(steps):
        raise IndexError(f"Step index {step_index} out of range")
    ids = set(steps[step_index].fields)
    return [f for f in ordered_fields(form) if f.id in ids]


def renderable_fields(form: FormDefinition) -> list[FormField]:
    """Every field that appears on some step."""
    steps = ordered_steps(form)
    if not _has_assigned_fields(steps):
        return ordered_fields(form)
    assigned = {field_id for step in steps for field_id in step.fields}
    return [f for f in ordered_fields(form) if f.id in assigned]


def validate_fields(
    fields: list[FormField],
    answers: dict[str, Any],
    states: dict[str, FieldState],
) -> dict[str, str]:
    """Validate visible fields. Hidden fields are exempt, even when required."""
    errors: dict[str, str] = {}
    for form_field in fields:
        if form_field.type in DISPLAY_FIELD_TYPES:
            continue
        state = states.get(form_field.id)
        if state is not None and not state.visible:
            continue
        value = answers.get(form_field.id)
        forced = state is not None and state.required and not is_required(form_field)
        if forced and is_empty_value(value, form_field.type):
            errors[form_field.id] = f"{form_field.label or form_field.id} is required"
            continue
        result = validate(form_field, value)
        if not result.valid:
            errors[form_field.id] = result.message or "Invalid value"
    return errors


def _skip_target(
    form: FormDefinition, current: list[FormField], states: dict[str, FieldState]
) -> int | None:
    step_ids = [step.id for step in ordered_steps(form)]
    for form_field in current:
        state = states.get(form_field.id)
        if state is None or not state.skip or not state.skip_to_step_id:
            continue
        if state.skip_to_step_id in step_ids:
            return step_ids.index(state.skip_to_step_id)
    return None


def validate_step(
    form: FormDefinition,
    step_index: int,
    answers: dict[str, Any],
    precedence: Precedence = "last",
) -> StepValidationResult:
    """
    Validate a step and work out where to go next.

    A failing step never advances and never follows ``skip_to``.
    """
    if step_index < 0 or step_index >= step_count(form):
        raise IndexError(f"Step index {step_index} out of range")
    current = step_fields(form, step_index)
    states = conditional_logic.evaluate(form.conditional_logic, answers, form.fields, precedence)
    errors = validate_fields(current, answers, states)
    if errors:
        return StepValidationResult(valid=False, errors=errors, next_step_index=step_index)

    target = _skip_target(form, current, states)
    if target is None:
        target = step_index + 1
    if target >= step_count(form):
        target = None
    return StepValidationResult(valid=True, next_step_index=target)


def next_step_index(
    form: FormDefinition,
    step_index: int,
    answers: dict[str, Any],
    precedence: Precedence = "last",
) -> int | None:
    return validate_step(form, step_index, answers, precedence).next_step_index


def validate_submission(
    form: FormDefinition,
    answers: dict[str, Any],
    precedence: Precedence = "last",
) -> dict[str, str]:
    """Whole-form validation at submit time. Returns field id -> message."""
    states = conditional_logic.evaluate(form.conditional_logic, answers, form.fields, precedence)
    return validate_fields(renderable_fields(form), answers, states)
