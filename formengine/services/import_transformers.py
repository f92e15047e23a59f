"""Import transformation engine: column mapping and cell coercion.

Converts raw spreadsheet cells into the canonical value shape of the mapped
form field:
- numbers: locale-agnostic (currency symbols, EU/US separators)
- dates: ISO-8601 (US default for ambiguous MM/DD vs DD/MM, with a warning)
- datetimes / times: ISO-8601
- booleans: yes/no/true/false/1/0/y/n/on/off
- dropdown / radio: case-insensitive match against option value or label
- multi-select: split on "," or ";"

Transform failures are cell-scoped. ``transform_value`` reports them in its
result; ``coerce_value`` raises ``TransformError`` instead.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Iterable

from formengine.core.config import settings
from formengine.core.exceptions import TransformError
from formengine.schemas.forms import (
    DISPLAY_FIELD_TYPES,
    FILE_FIELD_TYPES,
    NON_IMPORTABLE_FIELD_TYPES,
    FieldOption,
    FormDefinition,
    FormField,
    SelectionField,
)
from formengine.schemas.imports import (
    AutoMappingResult,
    ColumnMatch,
    DetectedField,
    MappingValidation,
    RowError,
    ValidationResults,
)
from formengine.services.field_validation import is_required, validate
from formengine.services.step_navigation import validate_submission
from formengine.utils.normalization import (
    is_email,
    is_phone_format,
    is_url,
    normalize_label,
    parse_number,
)


# =============================================================================
# Types
# =============================================================================


@dataclass
class TransformResult:
    """Result of coercing one cell."""

    success: bool
    value: Any = None
    error: str | None = None
    suggestion: str | None = None
    warnings: list[str] = field(default_factory=list)


def _ok(value: Any, warnings: list[str] | None = None) -> TransformResult:
    return TransformResult(success=True, value=value, warnings=warnings or [])


def _fail(error: str, suggestion: str | None = None) -> TransformResult:
    return TransformResult(success=False, error=error, suggestion=suggestion)


SUGGESTIONS: dict[str, str] = {
    "email": "Format: user@example.com",
    "phone": "Format: +1 555 123 4567",
    "url": "Format: https://example.com",
    "number": "Use a plain number, e.g. 1234.56",
    "currency": "Use a plain amount, e.g. 1234.56",
    "rating": "Use a whole number rating",
    "scale": "Use a number on the scale",
    "date": "Format: YYYY-MM-DD or MM/DD/YYYY",
    "datetime": "Format: YYYY-MM-DD HH:MM",
    "time": "Format: HH:MM (24h) or HH:MM AM/PM",
    "date_range": "Format: YYYY-MM-DD to YYYY-MM-DD",
    "checkbox": "Use yes/no, true/false or 1/0",
    "matrix": 'Use a JSON object, e.g. {"row": "column"}',
    "location": "Format: latitude, longitude",
}


# =============================================================================
# Scalar parsers
# =============================================================================

TRUE_VALUES = {"true", "yes", "1", "y", "on", "t", "x", "checked"}
FALSE_VALUES = {"false", "no", "0", "n", "off", "f", "", "unchecked"}


def parse_boolean(raw: Any) -> bool | None:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float)):
        if raw in (0, 1):
            return bool(raw)
        return None
    value = str(raw).strip().lower() if raw is not None else ""
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    return None


def is_date_ambiguous(month: int, day: int) -> bool:
    """Check if a date could be interpreted as MM/DD or DD/MM."""
    return month <= 12 and day <= 12 and month != day


def parse_date(raw: Any) -> TransformResult:
    """
    Parse a date into ``YYYY-MM-DD``.

    Supported formats:
    - YYYY-MM-DD, YYYY/MM/DD (ISO)
    - MM/DD/YYYY, MM-DD-YYYY (US default; falls back to DD/MM when invalid)
    - ISO 8601 timestamps (date part is kept)
    """
    if isinstance(raw, datetime):
        return _ok(raw.date().isoformat())
    if isinstance(raw, date):
        return _ok(raw.isoformat())
    value = str(raw).strip()

    if "T" in value:
        try:
            return _ok(datetime.fromisoformat(value.replace("Z", "+00:00")).date().isoformat())
        except ValueError:
            pass

    match = re.match(r"^(\d{4})[/-](\d{1,2})[/-](\d{1,2})$", value)
    if match:
        year, month, day = (int(part) for part in match.groups())
        try:
            return _ok(date(year, month, day).isoformat())
        except ValueError:
            return _fail(f"Invalid date: {value}", SUGGESTIONS["date"])

    match = re.match(r"^(\d{1,2})[/.-](\d{1,2})[/.-](\d{4})$", value)
    if match:
        part1, part2, year = (int(part) for part in match.groups())
        warnings: list[str] = []
        if is_date_ambiguous(part1, part2):
            warnings.append(
                f"Date '{value}' is ambiguous; interpreting as MM/DD/YYYY (US format)."
            )
        try:
            return _ok(date(year, part1, part2).isoformat(), warnings)
        except ValueError:
            try:
                return _ok(
                    date(year, part2, part1).isoformat(),
                    [f"Interpreted '{value}' as DD/MM/YYYY format."],
                )
            except ValueError:
                return _fail(f"Invalid date: {value}", SUGGESTIONS["date"])

    return _fail(f"Unrecognized date format: {value}", SUGGESTIONS["date"])


DATETIME_PATTERNS = [
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y %I:%M %p",
    "%m-%d-%Y %H:%M:%S",
    "%m-%d-%Y %H:%M",
    "%m-%d-%Y %I:%M %p",
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%m-%d-%Y",
]

DATETIME_DATE_ONLY = {"%Y-%m-%d", "%Y/%m/%d", "%m/%d/%Y", "%m-%d-%Y"}


def parse_datetime(raw: Any) -> TransformResult:
    """Parse a datetime into ISO-8601. Date-only values become midnight."""
    if isinstance(raw, datetime):
        return _ok(raw.isoformat())
    if isinstance(raw, date):
        return _ok(datetime.combine(raw, time(0, 0)).isoformat())
    value = str(raw).strip()

    if "T" in value:
        try:
            return _ok(datetime.fromisoformat(value.replace("Z", "+00:00")).isoformat())
        except ValueError:
            pass

    for fmt in DATETIME_PATTERNS:
        try:
            parsed = datetime.strptime(value, fmt)
        except ValueError:
            continue
        warnings = ["Date-only value; using 00:00 time."] if fmt in DATETIME_DATE_ONLY else []
        return _ok(parsed.isoformat(), warnings)

    return _fail(f"Unrecognized datetime format: {value}", SUGGESTIONS["datetime"])


TIME_PATTERNS = ["%H:%M", "%H:%M:%S", "%I:%M %p", "%I:%M:%S %p", "%I %p", "%I:%M%p"]


def parse_time(raw: Any) -> TransformResult:
    if isinstance(raw, time):
        return _ok(raw.isoformat())
    if isinstance(raw, datetime):
        return _ok(raw.time().isoformat())
    value = str(raw).strip().upper()
    for fmt in TIME_PATTERNS:
        try:
            return _ok(datetime.strptime(value, fmt).time().isoformat())
        except ValueError:
            continue
    return _fail(f"Unrecognized time format: {raw}", SUGGESTIONS["time"])


def parse_date_range(raw: Any) -> TransformResult:
    if isinstance(raw, (list, tuple)) and len(raw) == 2:
        parts = list(raw)
    else:
        parts = re.split(r"\s+(?:to|-|–)\s+", str(raw).strip(), maxsplit=1)
    if len(parts) != 2:
        return _fail(f"Invalid date range: {raw}", SUGGESTIONS["date_range"])
    start = parse_date(parts[0])
    end = parse_date(parts[1])
    if not start.success or not end.success:
        return _fail(f"Invalid date range: {raw}", SUGGESTIONS["date_range"])
    if start.value > end.value:
        return _fail(f"Date range ends before it starts: {raw}", SUGGESTIONS["date_range"])
    return _ok([start.value, end.value], start.warnings + end.warnings)


def split_multi_value(raw: Any) -> list[str]:
    if isinstance(raw, (list, tuple)):
        return [str(item).strip() for item in raw if str(item).strip()]
    return [part.strip() for part in re.split(r"[,;]", str(raw)) if part.strip()]


# =============================================================================
# Options
# =============================================================================


def _options_hint(options: list[FieldOption], limit: int = 5) -> str:
    values = [option.value for option in options[:limit]]
    hint = ", ".join(values)
    if len(options) > limit:
        hint += ", ..."
    return f"Allowed values: {hint}"


def match_option(raw: str, options: list[FieldOption]) -> str | None:
    """Case-insensitive match on option value, then label."""
    needle = raw.strip().lower()
    for option in options:
        if option.value.lower() == needle:
            return option.value
    for option in options:
        if option.label.lower() == needle:
            return option.value
    return None


def _transform_selection(raw: Any, form_field: SelectionField) -> TransformResult:
    options = form_field.options
    multi = form_field.type == "multi_select" or form_field.multiple_select

    # A checkbox with at most one option is a single yes/no tick box.
    if form_field.type == "checkbox" and len(options) <= 1 and not form_field.multiple_select:
        parsed = parse_boolean(raw)
        if parsed is not None:
            return _ok(parsed)
        if not options:
            return _fail(f"Invalid yes/no value: {raw}", SUGGESTIONS["checkbox"])

    if multi or form_field.type == "checkbox":
        items = split_multi_value(raw)
        values: list[str] = []
        for item in items:
            matched = match_option(item, options) if options else item
            if matched is None:
                if not form_field.allow_other:
                    return _fail(f"'{item}' is not a valid option", _options_hint(options))
                matched = item
            if matched not in values:
                values.append(matched)
        return _ok(values)

    text = str(raw).strip()
    if not options:
        return _ok(text)
    matched = match_option(text, options)
    if matched is not None:
        return _ok(matched)
    if form_field.allow_other:
        return _ok(text, [f"'{text}' is not a listed option; kept as free text"])
    return _fail(f"'{text}' is not a valid option", _options_hint(options))


def _transform_structured(raw: Any, field_type: str) -> TransformResult:
    if isinstance(raw, dict):
        return _ok(raw)
    text = str(raw).strip()
    if text.startswith("{"):
        try:
            data = json.loads(text)
        except ValueError:
            data = None
        if isinstance(data, dict):
            return _ok(data)
    if field_type == "location":
        parts = [parse_number(part) for part in text.split(",")]
        if len(parts) == 2 and all(part is not None for part in parts):
            return _ok({"lat": parts[0], "lng": parts[1]})
        return _ok(text)
    if field_type == "address":
        return _ok(text)
    return _fail(f"Invalid {field_type} value: {text}", SUGGESTIONS.get(field_type))


# =============================================================================
# Entry point
# =============================================================================


def transform_value(raw: Any, form_field: FormField) -> TransformResult:
    """Coerce a raw cell into ``form_field``'s canonical value shape."""
    field_type = form_field.type

    if field_type in FILE_FIELD_TYPES:
        return _ok(None, ["File fields cannot be imported; value skipped"])
    if field_type in DISPLAY_FIELD_TYPES:
        return _ok(None)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return _ok(None)

    if field_type in {"short_text", "long_text", "rich_text"}:
        return _ok(str(raw).strip())
    if field_type == "email":
        value = str(raw).strip().lower()
        if not is_email(value):
            return _fail(f"Invalid email address: {raw}", SUGGESTIONS["email"])
        return _ok(value)
    if field_type == "phone":
        value = str(raw).strip()
        if not is_phone_format(value):
            return _fail(f"Invalid phone number: {raw}", SUGGESTIONS["phone"])
        return _ok(value)
    if field_type == "url":
        value = str(raw).strip()
        if not is_url(value):
            return _fail(f"Invalid URL: {raw}", SUGGESTIONS["url"])
        return _ok(value)

    if field_type in {"number", "currency", "rating", "scale"}:
        number = parse_number(raw)
        if number is None:
            return _fail(f"Invalid number: {raw}", SUGGESTIONS[field_type])
        return _ok(int(number) if number.is_integer() else number)

    if field_type == "date":
        return parse_date(raw)
    if field_type == "datetime":
        return parse_datetime(raw)
    if field_type == "time":
        return parse_time(raw)
    if field_type == "date_range":
        return parse_date_range(raw)

    if isinstance(form_field, SelectionField):
        return _transform_selection(raw, form_field)

    if field_type in {"matrix", "location", "address"}:
        return _transform_structured(raw, field_type)

    return _ok(str(raw).strip())


def coerce_value(raw: Any, form_field: FormField) -> Any:
    """Like ``transform_value`` but raises ``TransformError`` for a bad cell."""
    result = transform_value(raw, form_field)
    if not result.success:
        raise TransformError(result.error or "Invalid value", result.suggestion)
    return result.value


def _row_error(
    row_number: int,
    form_field: FormField,
    column: str | None,
    raw: Any,
    message: str,
    suggestion: str | None,
) -> RowError:
    return RowError(
        row=row_number,
        field=form_field.label or column or form_field.id,
        field_id=form_field.id,
        field_type=form_field.type,
        value=raw,
        error=message,
        suggestion=suggestion,
    )


def transform_row(
    row: dict[str, Any],
    mapping: dict[str, str],
    fields_by_id: dict[str, FormField],
    row_number: int,
    form: FormDefinition | None = None,
) -> tuple[dict[str, Any], list[RowError]]:
    """
    Transform and validate one spreadsheet row.

    Returns the typed answers (empty values omitted) and the row's errors.
    Without ``form`` each mapped cell is validated on its own. With ``form``
    the whole row goes through submit-time validation, so unmapped required
    fields fail the row and fields hidden by conditional logic are exempt.
    """
    answers: dict[str, Any] = {}
    errors: list[RowError] = []
    columns_by_field: dict[str, str] = {}

    for column, field_id in mapping.items():
        form_field = fields_by_id.get(field_id)
        if form_field is None or form_field.type in NON_IMPORTABLE_FIELD_TYPES:
            continue
        columns_by_field[field_id] = column
        raw = row.get(column)
        try:
            value = coerce_value(raw, form_field)
        except TransformError as exc:
            errors.append(_row_error(row_number, form_field, column, raw, str(exc), exc.suggestion))
            continue

        if form is None:
            validation = validate(form_field, value)
            if not validation.valid:
                errors.append(
                    _row_error(
                        row_number,
                        form_field,
                        column,
                        raw,
                        validation.message or "Invalid value",
                        SUGGESTIONS.get(form_field.type),
                    )
                )
                continue

        if value is not None:
            answers[field_id] = value

    if form is not None:
        failed = {error.field_id for error in errors}
        form_fields = form.fields_by_id
        for field_id, message in validate_submission(form, answers).items():
            if field_id in failed:
                continue
            form_field = form_fields[field_id]
            column = columns_by_field.get(field_id)
            answers.pop(field_id, None)
            errors.append(
                _row_error(
                    row_number,
                    form_field,
                    column,
                    row.get(column) if column else None,
                    message,
                    SUGGESTIONS.get(form_field.type) if column else None,
                )
            )

    return answers, errors


# =============================================================================
# Column mapping
# =============================================================================


def build_column_mapping(
    columns: list[str],
    detected_fields: list[DetectedField],
    overrides: dict[str, str | None] | None = None,
) -> dict[str, str]:
    """
    Column i maps to detected field i. ``overrides`` replaces entries;
    an override of None unmaps the column.
    """
    mapping = {column: detected.name for column, detected in zip(columns, detected_fields)}
    for column, field_id in (overrides or {}).items():
        if field_id is None:
            mapping.pop(column, None)
        else:
            mapping[column] = field_id
    return mapping


def _words(value: str) -> set[str]:
    return {word for word in normalize_label(value).split() if len(word) > 1}


def auto_map_columns(columns: list[str], fields: Iterable[FormField]) -> AutoMappingResult:
    """
    Suggest a mapping onto an existing form.

    Matching passes, each only over what is still unmatched:
    1. exact normalized label or id match (high)
    2. one contains the other (medium)
    3. shared words (low)
    """
    candidates = [f for f in fields if f.type not in NON_IMPORTABLE_FIELD_TYPES]
    mapping: dict[str, str] = {}
    matches: list[ColumnMatch] = []
    used: set[str] = set()

    def _keys(form_field: FormField) -> list[str]:
        return [k for k in (normalize_label(form_field.label), normalize_label(form_field.id)) if k]

    def _record(column: str, form_field: FormField, confidence: str) -> None:
        mapping[column] = form_field.id
        used.add(form_field.id)
        matches.append(ColumnMatch(column=column, field_id=form_field.id, confidence=confidence))

    for column in columns:
        key = normalize_label(column)
        for form_field in candidates:
            if form_field.id not in used and key and key in _keys(form_field):
                _record(column, form_field, "high")
                break

    for column in columns:
        if column in mapping:
            continue
        key = normalize_label(column)
        if not key:
            continue
        for form_field in candidates:
            if form_field.id in used:
                continue
            if any(key in other or other in key for other in _keys(form_field)):
                _record(column, form_field, "medium")
                break

    for column in columns:
        if column in mapping:
            continue
        column_words = _words(column)
        if not column_words:
            continue
        for form_field in candidates:
            if form_field.id in used:
                continue
            if column_words & (_words(form_field.label) | _words(form_field.id)):
                _record(column, form_field, "low")
                break

    return AutoMappingResult(
        mapping=mapping,
        matches=matches,
        unmapped_columns=[c for c in columns if c not in mapping],
        unmapped_fields=[f.id for f in candidates if f.id not in used],
    )


def validate_mapping(mapping: dict[str, str], form: FormDefinition) -> MappingValidation:
    """Check targets exist, are importable and unique; warn on unmapped required fields."""
    errors: list[str] = []
    warnings: list[str] = []
    fields_by_id = form.fields_by_id

    seen: dict[str, str] = {}
    for column, field_id in mapping.items():
        form_field = fields_by_id.get(field_id)
        if form_field is None:
            errors.append(f"Column '{column}' maps to unknown field '{field_id}'")
            continue
        if form_field.type in DISPLAY_FIELD_TYPES:
            errors.append(f"Column '{column}' maps to display-only field '{field_id}'")
        elif form_field.type in FILE_FIELD_TYPES:
            warnings.append(f"File field '{form_field.label or field_id}' cannot be imported; column '{column}' will be skipped")
        if field_id in seen:
            errors.append(
                f"Field '{form_field.label or field_id}' is mapped from both '{seen[field_id]}' and '{column}'"
            )
        else:
            seen[field_id] = column

    mapped_ids = set(mapping.values())
    for form_field in form.fields:
        if is_required(form_field) and form_field.id not in mapped_ids:
            if form_field.type in NON_IMPORTABLE_FIELD_TYPES:
                continue
            warnings.append(f"Required field '{form_field.label or form_field.id}' is not mapped")

    return MappingValidation(valid=not errors, errors=errors, warnings=warnings)


def quick_validation(
    rows: list[dict[str, Any]],
    form: FormDefinition,
    mapping: dict[str, str],
    error_limit: int | None = None,
) -> ValidationResults:
    """Preview-level validation of all rows; errors are capped for display."""
    limit = settings.IMPORT_PREVIEW_ERROR_LIMIT if error_limit is None else error_limit
    mapping_check = validate_mapping(mapping, form)
    warnings = list(mapping_check.errors) + list(mapping_check.warnings)
    fields_by_id = form.fields_by_id

    valid_rows = 0
    invalid_rows = 0
    errors: list[RowError] = []
    for index, row in enumerate(rows, start=1):
        _, row_errors = transform_row(row, mapping, fields_by_id, index, form=form)
        if row_errors:
            invalid_rows += 1
            remaining = limit - len(errors)
            if remaining > 0:
                errors.extend(row_errors[:remaining])
        else:
            valid_rows += 1

    if invalid_rows and len(errors) >= limit:
        warnings.append(f"Showing the first {limit} errors only")

    return ValidationResults(
        valid_rows=valid_rows,
        invalid_rows=invalid_rows,
        errors=errors,
        warnings=warnings,
    )
