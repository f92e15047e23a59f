"""Import analysis: infer a field schema from spreadsheet columns.

For each column, a bounded sample is scored against candidate types in
priority order:
- email pattern
- phone pattern
- numeric
- date
- checkbox (two or fewer yes/no style values)
- dropdown (low distinct-value cardinality)
- short_text / long_text (fallback)

Confidence is the fraction of non-empty sampled values that match the
chosen type, so it is a pure scoring function over the sample. A column name
that hints at a type (``Email``, ``Mobile``, ``Website``, ``DOB``) lets that
type win ahead of the priority order when enough values match it. Low
confidence, empty columns, mixed types and over-wide dropdowns surface as
warnings; the caller can always override the proposed type.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Any, Callable

from formengine.core.config import settings
from formengine.schemas.forms import FieldOption, FormField, form_field_adapter
from formengine.schemas.imports import DetectedField, ImportAnalysis
from formengine.services.import_parser import ParsedFileData
from formengine.services.import_transformers import parse_boolean, parse_date
from formengine.utils.normalization import (
    MAX_IDENTIFIER_LENGTH,
    is_email,
    is_empty_value,
    is_url,
    looks_like_phone,
    normalize_identifier,
    parse_number,
)


# =============================================================================
# Types & Constants
# =============================================================================


@dataclass
class ColumnDetection:
    """Detection for a single column plus the warnings it produced."""

    detected: DetectedField
    warnings: list[str] = field(default_factory=list)


def _is_number(value: str) -> bool:
    return parse_number(value) is not None


def _is_date(value: str) -> bool:
    return parse_date(value).success


def _is_boolean(value: str) -> bool:
    return parse_boolean(value) is not None


# Priority order matters: earlier types win ties.
PATTERN_TYPES: list[tuple[str, Callable[[str], bool]]] = [
    ("email", is_email),
    ("phone", looks_like_phone),
    ("number", _is_number),
    ("date", _is_date),
]

# Column-name tokens that point at a type. ``url`` is only detected this way.
NAME_HINTS: list[tuple[str, frozenset[str]]] = [
    ("email", frozenset({"email", "mail"})),
    ("phone", frozenset({"phone", "telephone", "tel", "mobile", "cell", "fax"})),
    ("url", frozenset({"url", "website", "homepage", "link"})),
    ("date", frozenset({"date", "birthday", "birthdate", "dob"})),
]
HINT_PREDICATES: dict[str, Callable[[str], bool]] = {**dict(PATTERN_TYPES), "url": is_url}

BOOLEAN_TOKENS = frozenset({"true", "false", "yes", "no", "y", "n", "1", "0"})

EMPTY_COLUMN_RATIO = 0.5
MAX_NAMED_ROWS = 3
GENERIC_NAME_WORDS = ("import", "data", "export")
NON_DESCRIPTIVE_COLUMN_WORDS = ("id", "created", "updated")


# =============================================================================
# Helpers
# =============================================================================


def unique_field_name(column: str, index: int, used: set[str]) -> str:
    """Normalized identifier for a column, deduplicated with ``_2``, ``_3``..."""
    base = normalize_identifier(column) or f"field_{index + 1}"
    name = base
    counter = 2
    while name in used:
        suffix = f"_{counter}"
        name = f"{base[: MAX_IDENTIFIER_LENGTH - len(suffix)]}{suffix}"
        counter += 1
    used.add(name)
    return name


def _describe_rows(mismatches: list[tuple[int, str]]) -> str:
    shown = ", ".join(f"row {row} ('{value}')" for row, value in mismatches[:MAX_NAMED_ROWS])
    remaining = len(mismatches) - MAX_NAMED_ROWS
    if remaining > 0:
        shown += f" and {remaining} more"
    return shown


def score_type(values: list[str], predicate: Callable[[str], bool]) -> float:
    """Fraction of values matching ``predicate``. Empty input scores 0."""
    if not values:
        return 0.0
    return sum(1 for value in values if predicate(value)) / len(values)


def hinted_type(column: str) -> str | None:
    """Type suggested by the column name, matched on whole words."""
    tokens = set(normalize_identifier(column).split("_"))
    for field_type, words in NAME_HINTS:
        if tokens & words:
            return field_type
    return None


def is_boolean_column(values: list[str]) -> bool:
    """At most two distinct values, all of them yes/no style tokens."""
    distinct = {value.lower() for value in values}
    return 0 < len(distinct) <= 2 and distinct <= BOOLEAN_TOKENS


# =============================================================================
# Column Analysis
# =============================================================================


def analyze_column(column: str, values: list[Any], index: int, used_names: set[str]) -> ColumnDetection:
    """
    Infer the field for one column.

    ``values`` holds the sampled cells in row order; row numbers in warnings
    are 1-based data rows.
    """
    name = unique_field_name(column, index, used_names)
    warnings: list[str] = []

    present: list[tuple[int, str]] = [
        (row_number, str(value).strip())
        for row_number, value in enumerate(values, start=1)
        if not is_empty_value(value)
    ]
    texts = [text for _, text in present]
    total = len(values)
    empty_count = total - len(present)

    if not present:
        warnings.append(f"Column '{column}' is empty; defaulting to short text")
        return ColumnDetection(
            detected=DetectedField(
                column=column,
                name=name,
                label=column,
                type="short_text",
                required=False,
                confidence=0.0,
            ),
            warnings=warnings,
        )

    if empty_count / total > EMPTY_COLUMN_RATIO:
        warnings.append(
            f"Column '{column}' is mostly empty ({empty_count} of {total} sampled rows)"
        )
    required = empty_count == 0

    ratios: dict[str, float] = {
        field_type: score_type(texts, predicate) for field_type, predicate in PATTERN_TYPES
    }

    detected_type: str | None = None
    hint = hinted_type(column)
    if hint is not None:
        hint_ratio = ratios.get(hint)
        if hint_ratio is None:
            hint_ratio = score_type(texts, HINT_PREDICATES[hint])
        if hint_ratio >= settings.IMPORT_MIN_TYPE_RATIO:
            detected_type = hint
            ratios[hint] = hint_ratio
    if detected_type is None:
        for field_type, _ in PATTERN_TYPES:
            if ratios[field_type] >= settings.IMPORT_MIN_TYPE_RATIO:
                detected_type = field_type
                break

    options: list[str] | None = None
    if detected_type is not None:
        confidence = ratios[detected_type]
        if confidence < settings.IMPORT_LOW_CONFIDENCE_THRESHOLD:
            predicate = HINT_PREDICATES[detected_type]
            mismatches = [(row, text) for row, text in present if not predicate(text)]
            warnings.append(
                f"Column '{column}': low confidence ({confidence:.0%}) for type "
                f"'{detected_type}'; non-matching values at {_describe_rows(mismatches)}"
            )
    elif is_boolean_column(texts):
        # An unticked box reads as empty, so yes/no columns are never required.
        detected_type = "checkbox"
        required = False
        confidence = score_type(texts, _is_boolean)
    else:
        best_type, best_ratio = max(ratios.items(), key=lambda item: item[1])
        if best_ratio > 0:
            warnings.append(
                f"Column '{column}' has mixed types (best match '{best_type}' at "
                f"{best_ratio:.0%}); treating as text"
            )

        distinct = sorted(set(texts))
        distinct_ratio = len(distinct) / len(texts)
        if (
            len(distinct) <= settings.IMPORT_MAX_DROPDOWN_OPTIONS
            and distinct_ratio <= settings.IMPORT_DROPDOWN_DISTINCT_RATIO
        ):
            detected_type = "dropdown"
            options = distinct
            # Options are built from the sample, so every sampled value is covered.
            confidence = score_type(texts, set(distinct).__contains__)
        elif distinct_ratio <= settings.IMPORT_DROPDOWN_DISTINCT_RATIO:
            detected_type = "short_text"
            confidence = 1 - best_ratio
            warnings.append(
                f"Column '{column}' has {len(distinct)} distinct values (more than "
                f"{settings.IMPORT_MAX_DROPDOWN_OPTIONS}); using short text instead of dropdown"
            )
        else:
            average_length = sum(len(text) for text in texts) / len(texts)
            if average_length > settings.IMPORT_LONG_TEXT_AVG_LENGTH:
                detected_type = "long_text"
            else:
                detected_type = "short_text"
            confidence = 1 - best_ratio

        if confidence < settings.IMPORT_LOW_CONFIDENCE_THRESHOLD:
            warnings.append(
                f"Column '{column}': low confidence ({confidence:.0%}) for type '{detected_type}'"
            )

    return ColumnDetection(
        detected=DetectedField(
            column=column,
            name=name,
            label=column,
            type=detected_type,
            required=required,
            options=options,
            confidence=round(confidence, 4),
        ),
        warnings=warnings,
    )


def suggest_form_name(file_name: str | None, columns: list[str]) -> str:
    """Title-cased file name; generic names fall back to the first descriptive column."""
    base = os.path.basename(file_name or "")
    base = re.sub(r"\.(csv|xlsx|xls)$", "", base, flags=re.IGNORECASE)
    name = " ".join(re.sub(r"[-_]", " ", base).split())
    name = " ".join(word[:1].upper() + word[1:] for word in name.split(" ") if word)

    lowered = name.lower()
    if any(word in lowered for word in GENERIC_NAME_WORDS):
        descriptive = [
            column
            for column in columns
            if not any(word in column.lower() for word in NON_DESCRIPTIVE_COLUMN_WORDS)
        ]
        if descriptive:
            words = re.split(r"[_\s]+", descriptive[0].strip())
            name = " ".join(word[:1].upper() + word[1:] for word in words if word) + " Form"

    return name or "Imported Form"


def analyze(parsed: ParsedFileData, file_name: str | None = None) -> ImportAnalysis:
    """Analyze a parsed file and propose a field per column."""
    sample = parsed.rows[: settings.IMPORT_SAMPLE_SIZE]
    warnings: list[str] = []
    if parsed.row_count == 0:
        warnings.append("File contains no data rows")
    elif parsed.row_count > len(sample):
        warnings.append(
            f"Analyzed a sample of {len(sample)} of {parsed.row_count} rows"
        )

    used_names: set[str] = set()
    detected: list[DetectedField] = []
    for index, column in enumerate(parsed.columns):
        values = [row.get(column) for row in sample]
        result = analyze_column(column, values, index, used_names)
        detected.append(result.detected)
        warnings.extend(result.warnings)

    return ImportAnalysis(
        columns=list(parsed.columns),
        row_count=parsed.row_count,
        preview=list(parsed.preview),
        detected_fields=detected,
        warnings=warnings,
        suggested_form_name=suggest_form_name(file_name, parsed.columns),
    )


# =============================================================================
# Detection -> form fields
# =============================================================================


def build_fields_from_detection(
    detected_fields: list[DetectedField],
    type_overrides: dict[str, str] | None = None,
) -> list[FormField]:
    """
    Turn detections into form fields. Field id is the detected name.

    ``type_overrides`` maps a detected name to a replacement field type.
    """
    overrides = type_overrides or {}
    fields: list[FormField] = []
    for order, detected in enumerate(detected_fields):
        field_type = overrides.get(detected.name, detected.type)
        payload: dict[str, Any] = {
            "id": detected.name,
            "type": field_type,
            "label": detected.label,
            "required": detected.required,
            "order": order,
        }
        if field_type == "checkbox" and not detected.options:
            # Single tick box; its one option carries the column label.
            payload["options"] = [FieldOption(label=detected.label, value="yes").model_dump()]
        elif field_type in {"dropdown", "radio", "checkbox", "multi_select"}:
            payload["options"] = [
                FieldOption(label=option, value=option).model_dump()
                for option in (detected.options or [])
            ]
        fields.append(form_field_adapter.validate_python(payload))
    return fields
