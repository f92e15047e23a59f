"""Validation engine: checks one field value against its rule set.

``validate`` is pure. It never mutates the field and keeps no state beyond
the custom-validator registry, which is only written by
``register_custom_validator``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Callable

from formengine.schemas.forms import (
    AddressField,
    DateField,
    FileUploadField,
    FormField,
    LocationField,
    MatrixField,
    NumberField,
    RatingField,
    RichTextField,
    ScaleField,
    SelectionField,
    TextField,
    ValidationRule,
)
from formengine.utils.normalization import (
    is_email,
    is_empty_value,
    is_phone_format,
    is_url,
    parse_number,
)


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    message: str | None = None


VALID = ValidationResult(valid=True)

CustomValidator = Callable[[Any], bool]

_custom_validators: dict[str, CustomValidator] = {}


def register_custom_validator(name: str, validator: CustomValidator) -> None:
    """Register a named predicate for ``custom`` rules. The predicate returns True when valid."""
    _custom_validators[name] = validator


def unregister_custom_validator(name: str) -> None:
    _custom_validators.pop(name, None)


def _label(field: FormField) -> str:
    return field.label or field.id


def _invalid(rule: ValidationRule | None, default: str) -> ValidationResult:
    message = rule.message if rule is not None and rule.message else default
    return ValidationResult(valid=False, message=message)


def is_required(field: FormField) -> bool:
    return field.required or any(rule.type == "required" for rule in field.validation)


def _length(value: Any) -> int:
    if isinstance(value, str):
        return len(value.strip())
    if isinstance(value, (list, tuple, dict)):
        return len(value)
    return len(str(value))


def coerce_number(value: Any) -> float | None:
    return parse_number(value)


# =============================================================================
# Entry point
# =============================================================================


def validate(field: FormField, value: Any) -> ValidationResult:
    """
    Validate one value.

    Order: implicit required check, declared rules in order, then the
    variant's own constraints. The first failure wins. An empty value on
    an optional field is valid regardless of other rules.
    """
    if is_empty_value(value, field.type):
        if is_required(field):
            required_rule = next((r for r in field.validation if r.type == "required"), None)
            return _invalid(required_rule, f"{_label(field)} is required")
        return VALID

    for rule in field.validation:
        message = _check_rule(field, rule, value)
        if message is not None:
            return ValidationResult(valid=False, message=message)

    message = _check_constraints(field, value)
    if message is not None:
        return ValidationResult(valid=False, message=message)
    return VALID


# =============================================================================
# Declared rules
# =============================================================================


def _check_rule(field: FormField, rule: ValidationRule, value: Any) -> str | None:
    label = _label(field)
    kind = rule.type

    if kind == "required":
        return None

    if kind in {"min_length", "max_length"}:
        limit = parse_number(rule.value)
        if limit is None:
            return None
        length = _length(value)
        if kind == "min_length" and length < limit:
            return rule.message or f"{label} must be at least {int(limit)} characters"
        if kind == "max_length" and length > limit:
            return rule.message or f"{label} must be at most {int(limit)} characters"
        return None

    if kind in {"min_value", "max_value"}:
        limit = parse_number(rule.value)
        if limit is None:
            return None
        number = coerce_number(value)
        if number is None:
            return rule.message or f"{label} must be a number"
        if kind == "min_value" and number < limit:
            return rule.message or f"{label} must be at least {rule.value}"
        if kind == "max_value" and number > limit:
            return rule.message or f"{label} must be at most {rule.value}"
        return None

    if kind == "regex":
        if not rule.value:
            return None
        try:
            matched = re.search(str(rule.value), str(value))
        except re.error:
            return f"Invalid validation pattern for {label}"
        if matched is None:
            return rule.message or f"{label} does not match the required format"
        return None

    if kind == "email_format":
        if not is_email(str(value)):
            return rule.message or "Please enter a valid email address"
        return None

    if kind == "phone_format":
        if not is_phone_format(str(value)):
            return rule.message or "Please enter a valid phone number"
        return None

    if kind == "url_format":
        if not is_url(str(value)):
            return rule.message or "Please enter a valid URL"
        return None

    if kind == "custom":
        validator = _custom_validators.get(str(rule.value)) if rule.value else None
        if validator is None:
            return None
        if not validator(value):
            return rule.message or f"{label} is invalid"
        return None

    return None


# =============================================================================
# Variant constraints
# =============================================================================


def _check_constraints(field: FormField, value: Any) -> str | None:
    if isinstance(field, TextField):
        return _check_text(field, value)
    if isinstance(field, NumberField):
        return _check_number(field, value)
    if isinstance(field, DateField):
        return _check_date(field, value)
    if isinstance(field, SelectionField):
        return _check_selection(field, value)
    if isinstance(field, RatingField):
        return _check_range(field, value, 1, field.max_rating)
    if isinstance(field, ScaleField):
        return _check_range(field, value, field.min, field.max)
    if isinstance(field, FileUploadField):
        return _check_files(field, value)
    if isinstance(field, MatrixField):
        return _check_matrix(field, value)
    if isinstance(field, LocationField):
        return _check_location(field, value)
    if isinstance(field, AddressField):
        if not isinstance(value, (str, dict)):
            return f"{_label(field)} must be an address"
        return None
    if isinstance(field, RichTextField):
        if not isinstance(value, str):
            return f"{_label(field)} must be text"
        return None
    return None


def _check_text(field: TextField, value: Any) -> str | None:
    label = _label(field)
    if not isinstance(value, str):
        return f"{label} must be text"
    length = len(value.strip())
    if field.min_length is not None and length < field.min_length:
        return f"{label} must be at least {field.min_length} characters"
    if field.max_length is not None and length > field.max_length:
        return f"{label} must be at most {field.max_length} characters"
    if field.type == "email" and not is_email(value):
        return "Please enter a valid email address"
    if field.type == "phone" and not is_phone_format(value):
        return "Please enter a valid phone number"
    if field.type == "url" and not is_url(value):
        return "Please enter a valid URL"
    return None


def _check_number(field: NumberField, value: Any) -> str | None:
    label = _label(field)
    number = coerce_number(value)
    if number is None:
        return f"{label} must be a number"
    if field.min is not None and number < field.min:
        return f"{label} must be at least {field.min:g}"
    if field.max is not None and number > field.max:
        return f"{label} must be at most {field.max:g}"
    return None


def _parse_temporal(field_type: str, value: Any) -> date | datetime | time | None:
    if field_type == "time":
        if isinstance(value, time):
            return value
        parser: Callable[[str], Any] = time.fromisoformat
    elif field_type == "datetime":
        if isinstance(value, datetime):
            return value
        parser = datetime.fromisoformat
    else:
        if isinstance(value, date):
            return value
        parser = date.fromisoformat
    if not isinstance(value, str):
        return None
    try:
        return parser(value.strip())
    except ValueError:
        return None


def _check_date(field: DateField, value: Any) -> str | None:
    label = _label(field)
    if field.type == "date_range":
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            return f"{label} must be a start and end date"
        start = _parse_temporal("date", value[0])
        end = _parse_temporal("date", value[1])
        if start is None or end is None:
            return f"{label} must contain valid dates (YYYY-MM-DD)"
        if start > end:
            return f"{label} start date must be on or before the end date"
        return None

    parsed = _parse_temporal(field.type, value)
    if parsed is None:
        formats = {"date": "YYYY-MM-DD", "datetime": "YYYY-MM-DDTHH:MM", "time": "HH:MM"}
        return f"{label} must be a valid {field.type} ({formats[field.type]})"
    if field.type == "date":
        iso = parsed.isoformat()
        if field.min_date and iso < field.min_date:
            return f"{label} must be on or after {field.min_date}"
        if field.max_date and iso > field.max_date:
            return f"{label} must be on or before {field.max_date}"
    return None


def _check_selection(field: SelectionField, value: Any) -> str | None:
    label = _label(field)
    allowed = {option.value for option in field.options}

    if field.type == "checkbox" and isinstance(value, bool):
        return None

    if field.type in {"checkbox", "multi_select"} or field.multiple_select:
        if not isinstance(value, (list, tuple)):
            return f"{label} must be a list"
        for item in value:
            if not isinstance(item, str):
                return f"{label} must be a list of strings"
            if allowed and not field.allow_other and item not in allowed:
                return f"Invalid option for {label}: {item}"
        return None

    if not isinstance(value, str):
        return f"{label} must be a string"
    if allowed and not field.allow_other and value not in allowed:
        return f"Invalid option for {label}"
    return None


def _check_range(field: FormField, value: Any, low: float, high: float) -> str | None:
    label = _label(field)
    number = coerce_number(value)
    if number is None:
        return f"{label} must be a number"
    if number < low or number > high:
        return f"{label} must be between {low} and {high}"
    return None


def _check_files(field: FileUploadField, value: Any) -> str | None:
    label = _label(field)
    file_ids = [value] if isinstance(value, str) else value
    if not isinstance(file_ids, (list, tuple)) or not all(isinstance(f, str) for f in file_ids):
        return f"{label} must be a list of file ids"
    if len(file_ids) > field.max_files:
        return f"{label} allows at most {field.max_files} files"
    return None


def _check_matrix(field: MatrixField, value: Any) -> str | None:
    label = _label(field)
    if not isinstance(value, dict):
        return f"{label} must map rows to columns"
    rows = {row.value for row in field.rows}
    columns = {column.value for column in field.columns}
    for row_key, selected in value.items():
        if rows and row_key not in rows:
            return f"Invalid row for {label}: {row_key}"
        picks = selected if isinstance(selected, list) else [selected]
        if len(picks) > 1 and not field.allow_multiple:
            return f"{label} allows one choice per row"
        for pick in picks:
            if columns and pick not in columns:
                return f"Invalid column for {label}: {pick}"
    return None


def _check_location(field: LocationField, value: Any) -> str | None:
    label = _label(field)
    if isinstance(value, str):
        return None
    if not isinstance(value, dict):
        return f"{label} must be a location"
    lat = parse_number(value.get("lat"))
    lng = parse_number(value.get("lng"))
    if lat is None or lng is None:
        return f"{label} must include lat and lng"
    if not -90 <= lat <= 90 or not -180 <= lng <= 180:
        return f"{label} coordinates are out of range"
    return None
