"""Builders for in-memory forms used across tests."""

import uuid

from formengine.schemas.forms import FormDefinition, FormStep, form_field_adapter


def make_field(field_type: str, field_id: str, **extra):
    payload = {"id": field_id, "type": field_type, "label": extra.pop("label", field_id.title())}
    payload.update(extra)
    return form_field_adapter.validate_python(payload)


def make_form(fields, steps=None, rules=None, **extra) -> FormDefinition:
    return FormDefinition(
        id=extra.pop("id", str(uuid.uuid4())),
        company_id=extra.pop("company_id", str(uuid.uuid4())),
        name=extra.pop("name", "Contact Form"),
        fields=fields,
        steps=steps if steps is not None else [FormStep(id="step-1", title="Step 1", order=1)],
        conditional_logic=rules or [],
        **extra,
    )


def create_published_form(db, company_id, user_id, fields, steps=None, rules=None, **updates):
    """Persist a form through the lifecycle service and publish it. Returns the ``Form`` row."""
    from formengine.schemas.forms import FormUpdate
    from formengine.services import form_service

    form = form_service.create_form(db, company_id, user_id, name="Contact Form", fields=fields, steps=steps)
    row = form_service.get_form_row(db, company_id, form.id)
    if rules or updates:
        form_service.update_form(db, row, user_id, FormUpdate(conditional_logic=rules, **updates))
    form_service.publish_form(db, row, user_id)
    return row
