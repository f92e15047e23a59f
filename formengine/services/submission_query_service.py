"""Ad-hoc filtering of submissions over their typed EAV value rows."""

from __future__ import annotations

import json
from datetime import date, datetime, time
from typing import Any

from sqlalchemy import String, and_, cast, exists, false, or_, select, true
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from formengine.db.enums import SubmissionStatus
from formengine.db.models import FormSubmission, SubmissionValue
from formengine.schemas.forms import FormDefinition, FormField
from formengine.schemas.submissions import FilterCondition, FilterGroup
from formengine.services.import_transformers import parse_boolean
from formengine.services.submission_values import (
    SLOT_ARRAY,
    SLOT_BOOLEAN,
    SLOT_DATE,
    SLOT_FILE_IDS,
    SLOT_NUMBER,
    storage_slot,
)
from formengine.utils.normalization import parse_number


def _coerce(slot: str, value: Any) -> Any:
    """Turn a filter operand into the slot's comparable representation."""
    if slot == SLOT_NUMBER:
        number = parse_number(value)
        if number is None:
            raise ValueError(f"'{value}' is not a number")
        return number
    if slot == SLOT_BOOLEAN:
        flag = parse_boolean(value)
        if flag is None:
            raise ValueError(f"'{value}' is not a boolean")
        return flag
    if slot == SLOT_DATE and isinstance(value, (date, datetime, time)):
        return value.isoformat()
    return str(value)


def _like_pattern(value: Any) -> str:
    escaped = str(value).replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _value_predicate(slot: str, condition: FilterCondition) -> ColumnElement[bool]:
    column = getattr(SubmissionValue, slot)
    operator = condition.operator

    if slot in (SLOT_ARRAY, SLOT_FILE_IDS):
        # JSON arrays are matched on their serialized text.
        if operator in ("equals", "not_equals"):
            items = condition.value if isinstance(condition.value, (list, tuple)) else [condition.value]
            return cast(column, String) == json.dumps([str(item) for item in items])
        if operator == "contains":
            return cast(column, String).like(_like_pattern(json.dumps(str(condition.value))), escape="\\")
        raise ValueError(f"Operator '{operator}' is not supported for list answers")

    if operator in ("equals", "not_equals"):
        return column == _coerce(slot, condition.value)
    if operator == "contains":
        return column.ilike(_like_pattern(condition.value), escape="\\")
    if operator == "greater_than":
        return column > _coerce(slot, condition.value)
    if operator == "less_than":
        return column < _coerce(slot, condition.value)
    if operator == "between":
        bounds = condition.value
        if not isinstance(bounds, (list, tuple)) or len(bounds) != 2:
            raise ValueError("'between' needs a [low, high] pair")
        return column.between(_coerce(slot, bounds[0]), _coerce(slot, bounds[1]))
    raise ValueError(f"Unsupported operator '{operator}'")


def filter_slot(form_field: FormField, value: Any) -> str | None:
    """
    Slot a filter operand is compared against.

    Checkbox answers live in the boolean slot (tick box) or the list slot
    (options); a yes/no operand that is not an option value targets the
    boolean slot.
    """
    if form_field.type == "checkbox" and not isinstance(value, (bool, list, tuple)):
        option_values = {option.value for option in getattr(form_field, "options", [])}
        text = str(value).strip() if value is not None else ""
        if text and text not in option_values and parse_boolean(text) is not None:
            return SLOT_BOOLEAN
    return storage_slot(form_field.type, value)


def condition_clause(form: FormDefinition, condition: FilterCondition) -> ColumnElement[bool]:
    """
    SQL clause matching submissions that satisfy one condition.

    ``not_equals`` also matches submissions that never answered the field.
    Raises ValueError for unknown fields or operands the slot cannot hold.
    """
    form_field = form.get_field(condition.field_id)
    if form_field is None:
        raise ValueError(f"Unknown field '{condition.field_id}'")

    answered = select(SubmissionValue.id).where(
        SubmissionValue.submission_id == FormSubmission.id,
        SubmissionValue.field_id == condition.field_id,
    )
    if condition.operator == "is_empty":
        return ~exists(answered)
    if condition.operator == "is_not_empty":
        return exists(answered)

    slot = filter_slot(form_field, condition.value)
    if slot is None:
        raise ValueError(f"Field '{condition.field_id}' holds no answers")
    matching = exists(answered.where(_value_predicate(slot, condition)))
    if condition.operator == "not_equals":
        return ~matching
    return matching


def group_clause(form: FormDefinition, group: FilterGroup) -> ColumnElement[bool]:
    if not group.conditions:
        return true()
    clauses = [condition_clause(form, condition) for condition in group.conditions]
    if group.logic_operator == "OR":
        return or_(false(), *clauses)
    return and_(true(), *clauses)


def filter_submissions(
    db: Session,
    form: FormDefinition,
    group: FilterGroup,
    status: SubmissionStatus | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[FormSubmission]:
    query = db.query(FormSubmission).filter(
        FormSubmission.form_id == form.id,
        group_clause(form, group),
    )
    if status is not None:
        query = query.filter(FormSubmission.status == status.value)
    return query.order_by(FormSubmission.started_at.desc()).offset(offset).limit(limit).all()
