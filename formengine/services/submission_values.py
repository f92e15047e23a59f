"""Submission value codec: answer map <-> typed EAV records.

Each answered field becomes one record with exactly one populated slot:

    value_text      text-like, dropdown/radio, rich text, unknown types
                    (address / location / matrix as JSON text)
    value_number    number, currency, rating, scale
    value_boolean   checkbox answered with a bool
    value_date      date, datetime, time (ISO strings)
    value_array     multi_select, checkbox answered with a list, date_range
    value_file_ids  file_upload, image_upload

Empty answers produce no record, so ``decode`` never restores their keys.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, time
from typing import Any, Iterable

from formengine.schemas.forms import DISPLAY_FIELD_TYPES, FormDefinition
from formengine.schemas.submissions import SubmissionValueData
from formengine.utils.normalization import is_empty_value, parse_number

logger = logging.getLogger(__name__)


SLOT_TEXT = "value_text"
SLOT_NUMBER = "value_number"
SLOT_BOOLEAN = "value_boolean"
SLOT_DATE = "value_date"
SLOT_ARRAY = "value_array"
SLOT_FILE_IDS = "value_file_ids"

VALUE_SLOTS = (SLOT_TEXT, SLOT_NUMBER, SLOT_BOOLEAN, SLOT_DATE, SLOT_ARRAY, SLOT_FILE_IDS)

JSON_TEXT_TYPES = frozenset({"address", "location", "matrix"})
NUMBER_SLOT_TYPES = frozenset({"number", "currency", "rating", "scale"})
DATE_SLOT_TYPES = frozenset({"date", "datetime", "time"})
ARRAY_SLOT_TYPES = frozenset({"multi_select", "date_range"})
FILE_SLOT_TYPES = frozenset({"file_upload", "image_upload"})


def storage_slot(field_type: str, value: Any = None) -> str | None:
    """Slot for a field type. Display-only fields have none."""
    if field_type in DISPLAY_FIELD_TYPES:
        return None
    if field_type == "checkbox":
        return SLOT_BOOLEAN if isinstance(value, bool) else SLOT_ARRAY
    if field_type in NUMBER_SLOT_TYPES:
        return SLOT_NUMBER
    if field_type in DATE_SLOT_TYPES:
        return SLOT_DATE
    if field_type in ARRAY_SLOT_TYPES:
        return SLOT_ARRAY
    if field_type in FILE_SLOT_TYPES:
        return SLOT_FILE_IDS
    return SLOT_TEXT


def _encode_slot_value(slot: str, field_type: str, value: Any) -> Any:
    if slot == SLOT_TEXT:
        if field_type in JSON_TEXT_TYPES:
            return json.dumps(value)
        return value if isinstance(value, str) else str(value)
    if slot == SLOT_NUMBER:
        number = parse_number(value)
        if number is None:
            raise ValueError(f"Value for {field_type} field is not a number")
        return number
    if slot == SLOT_BOOLEAN:
        return bool(value)
    if slot == SLOT_DATE:
        if isinstance(value, (date, datetime, time)):
            return value.isoformat()
        return str(value)
    if slot == SLOT_ARRAY:
        return list(value) if isinstance(value, (list, tuple)) else [value]
    if slot == SLOT_FILE_IDS:
        return [value] if isinstance(value, str) else [str(item) for item in value]
    return value


def encode(
    form: FormDefinition, submission_id: str, answers: dict[str, Any]
) -> list[SubmissionValueData]:
    """
    Fan an answer map out into typed records.

    Only fields that exist on ``form`` are encoded; empty answers are
    skipped. Raises ValueError when a numeric field holds a non-number.
    """
    fields_by_id = form.fields_by_id
    records: list[SubmissionValueData] = []
    for field_id, value in answers.items():
        form_field = fields_by_id.get(field_id)
        if form_field is None:
            logger.debug("Skipping answer for unknown field %s on form %s", field_id, form.id)
            continue
        if is_empty_value(value, form_field.type):
            continue
        slot = storage_slot(form_field.type, value)
        if slot is None:
            continue
        record = SubmissionValueData(
            submission_id=submission_id,
            form_id=form.id,
            company_id=form.company_id,
            field_id=field_id,
            field_label=form_field.label or field_id,
            field_type=form_field.type,
        )
        setattr(record, slot, _encode_slot_value(slot, form_field.type, value))
        records.append(record)
    return records


def _decode_one(record: Any) -> Any:
    field_type = record.field_type
    if record.value_array is not None:
        return list(record.value_array)
    if record.value_file_ids is not None:
        return list(record.value_file_ids)
    if record.value_boolean is not None:
        return record.value_boolean
    if record.value_number is not None:
        return record.value_number
    if record.value_date is not None:
        return record.value_date
    if record.value_text is not None:
        if field_type in JSON_TEXT_TYPES:
            try:
                return json.loads(record.value_text)
            except ValueError:
                logger.warning(
                    "Undecodable %s value for field %s; returning raw text",
                    field_type,
                    record.field_id,
                )
                return record.value_text
        return record.value_text
    return None


def decode(values: Iterable[Any]) -> dict[str, Any]:
    """Inverse of ``encode``. Accepts ``SubmissionValueData`` or ORM rows."""
    answers: dict[str, Any] = {}
    for record in values:
        value = _decode_one(record)
        if value is not None:
            answers[record.field_id] = value
    return answers


def populated_slot(record: Any) -> str | None:
    for slot in VALUE_SLOTS:
        if getattr(record, slot) is not None:
            return slot
    return None
