"""Tests for step partitioning and step-gated navigation."""

import pytest

from formengine.schemas.forms import ConditionalCondition, ConditionalRule, FormStep
from formengine.services.step_navigation import (
    renderable_fields,
    step_fields,
    validate_step,
    validate_submission,
)
from tests.factories import make_field, make_form


@pytest.fixture
def two_step_form():
    fields = [
        make_field("short_text", "name", label="Name", required=True, order=1),
        make_field("radio", "kind", options=[{"label": "Personal", "value": "personal"}, {"label": "Business", "value": "business"}], order=2),
        make_field("short_text", "company", label="Company", required=True, order=3),
        make_field("long_text", "notes", order=4),
        make_field("short_text", "orphan", order=5),
    ]
    steps = [
        FormStep(id="about", title="About", fields=["name", "kind"], order=1),
        FormStep(id="work", title="Work", fields=["company"], order=2),
        FormStep(id="wrap", title="Wrap up", fields=["notes"], order=3),
    ]
    rules = [
        ConditionalRule(
            action="hide",
            target_field_id="company",
            conditions=[ConditionalCondition(field_id="kind", operator="equals", value="personal")],
        )
    ]
    return make_form(fields, steps=steps, rules=rules)


def test_step_fields_follow_step_assignment(two_step_form):
    assert [f.id for f in step_fields(two_step_form, 0)] == ["name", "kind"]
    assert [f.id for f in step_fields(two_step_form, 1)] == ["company"]
    with pytest.raises(IndexError):
        step_fields(two_step_form, 3)


def test_unassigned_fields_are_not_rendered(two_step_form):
    assert "orphan" not in [f.id for f in renderable_fields(two_step_form)]


def test_no_assignment_puts_everything_on_first_step():
    form = make_form([make_field("short_text", "b", order=2), make_field("short_text", "a", order=1)])
    assert [f.id for f in step_fields(form, 0)] == ["a", "b"]
    assert step_fields(form, 1) == []


def test_failing_step_does_not_advance(two_step_form):
    result = validate_step(two_step_form, 0, {})
    assert not result.valid
    assert result.errors == {"name": "Name is required"}
    assert result.next_step_index == 0


def test_valid_step_advances_and_last_step_ends(two_step_form):
    assert validate_step(two_step_form, 0, {"name": "Jo"}).next_step_index == 1
    assert validate_step(two_step_form, 2, {}).next_step_index is None


def test_hidden_required_field_does_not_block_submission(two_step_form):
    answers = {"name": "Jo", "kind": "personal"}

    assert validate_step(two_step_form, 1, answers).valid
    assert validate_submission(two_step_form, answers) == {}


def test_visible_required_field_blocks_submission(two_step_form):
    errors = validate_submission(two_step_form, {"name": "Jo", "kind": "business"})
    assert errors == {"company": "Company is required"}


def test_require_rule_forces_field(two_step_form):
    two_step_form.conditional_logic.append(
        ConditionalRule(
            action="require",
            target_field_id="notes",
            conditions=[ConditionalCondition(field_id="kind", operator="equals", value="business")],
        )
    )
    result = validate_step(two_step_form, 2, {"kind": "business"})
    assert result.errors == {"notes": "Notes is required"}


def test_skip_to_jumps_forward(two_step_form):
    two_step_form.conditional_logic.append(
        ConditionalRule(
            action="skip_to",
            target_field_id="kind",
            skip_to_step_id="wrap",
            conditions=[ConditionalCondition(field_id="kind", operator="equals", value="personal")],
        )
    )
    result = validate_step(two_step_form, 0, {"name": "Jo", "kind": "personal"})
    assert result.next_step_index == 2
