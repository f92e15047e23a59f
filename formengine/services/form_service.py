"""Form lifecycle: create, draft updates, publish, archive and submission gating."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from formengine.core.exceptions import FormNotAcceptingSubmissionsError, SchemaError
from formengine.core.structured_logging import build_log_context
from formengine.db.enums import FormStatus
from formengine.db.models import Form
from formengine.schemas.forms import (
    DISPLAY_FIELD_TYPES,
    SELECTION_FIELD_TYPES,
    FormDefinition,
    FormField,
    FormMetadata,
    FormStep,
    FormUpdate,
)
from formengine.services.form_serialization import apply_record, deserialize, serialize
from formengine.services.step_navigation import step_count

logger = logging.getLogger(__name__)


DEFAULT_ESTIMATED_MINUTES = 5
FIELDS_PER_MINUTE = 3
SCHEMA_ATTRIBUTES = ("fields", "steps", "conditional_logic")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def default_steps() -> list[FormStep]:
    return [FormStep(id="step-1", title="Step 1", fields=[], order=1)]


def compute_metadata(form: FormDefinition) -> FormMetadata:
    """Refresh denormalized counters; response counters are carried over."""
    total_fields = sum(1 for f in form.fields if f.type not in DISPLAY_FIELD_TYPES)
    return FormMetadata(
        total_fields=total_fields,
        total_steps=step_count(form),
        estimated_time=math.ceil(total_fields / FIELDS_PER_MINUTE) or DEFAULT_ESTIMATED_MINUTES,
        response_count=form.metadata.response_count,
        last_submitted_at=form.metadata.last_submitted_at,
    )


# =============================================================================
# Schema checks
# =============================================================================


def _field_name(form_field: FormField) -> str:
    return form_field.label.strip() or form_field.id


def validate_form_for_publishing(form: FormDefinition) -> list[str]:
    """Structural checks that gate publish. Drafts are never checked."""
    errors: list[str] = []
    if not form.name.strip():
        errors.append("Form name is required")
    if not form.fields:
        errors.append("Form must have at least one field")

    field_ids: set[str] = set()
    for form_field in form.fields:
        if form_field.id in field_ids:
            errors.append(f"Duplicate field id '{form_field.id}'")
        field_ids.add(form_field.id)
        if not form_field.label.strip():
            errors.append(f"Field '{form_field.id}' is missing a label")
        if form_field.type in SELECTION_FIELD_TYPES:
            options = getattr(form_field, "options", [])
            if not options:
                errors.append(f"Field '{_field_name(form_field)}' must have at least one option")
            elif any(not option.label.strip() for option in options):
                errors.append(f"Field '{_field_name(form_field)}' has an option without a label")

    step_ids: set[str] = set()
    assigned: dict[str, str] = {}
    for step in form.steps:
        if step.id in step_ids:
            errors.append(f"Duplicate step id '{step.id}'")
        step_ids.add(step.id)
        for field_id in step.fields:
            if field_id not in field_ids:
                errors.append(f"Step '{step.title or step.id}' references unknown field '{field_id}'")
            elif field_id in assigned:
                errors.append(f"Field '{field_id}' appears in more than one step")
            else:
                assigned[field_id] = step.id

    for rule in form.conditional_logic:
        if rule.target_field_id not in field_ids:
            errors.append(f"Conditional rule '{rule.id}' targets unknown field '{rule.target_field_id}'")
        for condition in rule.conditions:
            if condition.field_id not in field_ids:
                errors.append(
                    f"Conditional rule '{rule.id}' depends on unknown field '{condition.field_id}'"
                )
        if rule.action == "skip_to" and rule.skip_to_step_id not in step_ids:
            errors.append(f"Conditional rule '{rule.id}' skips to unknown step '{rule.skip_to_step_id}'")

    return errors


# =============================================================================
# Submission gating
# =============================================================================


def is_form_expired(form: FormDefinition, now: datetime | None = None) -> bool:
    expires_at = form.access_control.expires_at
    if expires_at is None:
        return False
    return _as_aware(expires_at) < (now or _now())


def can_accept_submissions(
    form: FormDefinition, current_count: int | None = None
) -> tuple[bool, str | None]:
    """Checks, in order: published status, expiry, submission cap."""
    if form.status != FormStatus.PUBLISHED:
        return False, (
            f"This form is currently {FormStatus(form.status).value}. "
            "Only published forms can accept submissions."
        )
    if is_form_expired(form):
        return False, "This form has expired and is no longer accepting submissions."
    max_submissions = form.access_control.max_submissions
    if max_submissions is not None and current_count is not None and current_count >= max_submissions:
        return False, f"This form has reached its maximum limit of {max_submissions} submissions."
    return True, None


def ensure_accepting_submissions(form: FormDefinition, current_count: int | None = None) -> None:
    accepted, reason = can_accept_submissions(form, current_count)
    if not accepted:
        raise FormNotAcceptingSubmissionsError(reason)


# =============================================================================
# Persistence
# =============================================================================


def list_forms(db: Session, company_id: str) -> list[Form]:
    return (
        db.query(Form)
        .filter(Form.company_id == company_id)
        .order_by(Form.updated_at.desc())
        .all()
    )


def get_form_row(db: Session, company_id: str, form_id: str) -> Form | None:
    return (
        db.query(Form)
        .filter(Form.company_id == company_id, Form.id == form_id)
        .first()
    )


def get_form(db: Session, company_id: str, form_id: str) -> FormDefinition | None:
    row = get_form_row(db, company_id, form_id)
    return deserialize(row) if row is not None else None


def save_definition(db: Session, row: Form, definition: FormDefinition) -> FormDefinition:
    apply_record(row, serialize(definition))
    db.commit()
    db.refresh(row)
    return deserialize(row)


def create_form(
    db: Session,
    company_id: str,
    user_id: str | None,
    name: str,
    description: str | None = None,
    fields: list[FormField] | None = None,
    steps: list[FormStep] | None = None,
) -> FormDefinition:
    definition = FormDefinition(
        company_id=company_id,
        name=name,
        description=description,
        fields=fields or [],
        steps=steps or default_steps(),
        created_by=user_id,
        updated_by=user_id,
    )
    definition.metadata = compute_metadata(definition)

    row = Form(company_id=company_id)
    apply_record(row, serialize(definition))
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("Form created", extra=build_log_context(company_id=company_id, form_id=row.id))
    return deserialize(row)


def update_form(
    db: Session, row: Form, user_id: str | None, updates: FormUpdate
) -> FormDefinition:
    """
    Save a draft edit. No schema validation runs here.

    ``version`` increments when fields, steps or conditional logic change.
    """
    current = deserialize(row)
    changes: dict[str, Any] = {
        key: getattr(updates, key)
        for key in updates.model_fields_set
        if getattr(updates, key) is not None
    }
    schema_changed = any(
        key in changes and changes[key] != getattr(current, key) for key in SCHEMA_ATTRIBUTES
    )
    updated = current.model_copy(update={**changes, "updated_by": user_id})
    if schema_changed:
        updated.version = current.version + 1
    updated.metadata = compute_metadata(updated)
    return save_definition(db, row, updated)


def publish_form(db: Session, row: Form, user_id: str | None) -> FormDefinition:
    """Publish a draft or re-publish an archived form. Raises SchemaError."""
    definition = deserialize(row)
    errors = validate_form_for_publishing(definition)
    if errors:
        raise SchemaError(errors)
    definition.status = FormStatus.PUBLISHED
    definition.published_at = _now()
    definition.updated_by = user_id
    definition.metadata = compute_metadata(definition)
    logger.info("Form published", extra=build_log_context(company_id=row.company_id, form_id=row.id))
    return save_definition(db, row, definition)


def archive_form(db: Session, row: Form, user_id: str | None) -> FormDefinition:
    definition = deserialize(row)
    definition.status = FormStatus.ARCHIVED
    definition.updated_by = user_id
    return save_definition(db, row, definition)
