"""Export a form's submissions as CSV, JSON or XLSX."""

from __future__ import annotations

import io
import json
from datetime import datetime
from typing import Any, Literal, Sequence

from openpyxl import Workbook

from formengine.db.models import FormSubmission
from formengine.schemas.forms import DISPLAY_FIELD_TYPES, FormDefinition, FormField
from formengine.services.step_navigation import ordered_fields
from formengine.services.submission_values import decode
from formengine.utils.csv_export import csv_safe, serialize_csv_value, write_csv
from formengine.utils.normalization import normalize_identifier

ExportFormat = Literal["csv", "json", "xlsx"]

BASE_HEADERS = ["Submission ID", "Status", "Submitted At"]

MEDIA_TYPES: dict[str, str] = {
    "csv": "text/csv",
    "json": "application/json",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def _export_fields(form: FormDefinition) -> list[FormField]:
    return [f for f in ordered_fields(form) if f.type not in DISPLAY_FIELD_TYPES]


def _flat_value(value: Any) -> Any:
    if isinstance(value, list):
        return "; ".join(serialize_csv_value(item) for item in value)
    return value


def _table(form: FormDefinition, submissions: Sequence[FormSubmission]) -> tuple[list[str], list[list[Any]]]:
    fields = _export_fields(form)
    headers = BASE_HEADERS + [f.label or f.id for f in fields]
    rows: list[list[Any]] = []
    for submission in submissions:
        answers = decode(submission.values)
        rows.append(
            [submission.id, submission.status, submission.submitted_at]
            + [_flat_value(answers.get(f.id)) for f in fields]
        )
    return headers, rows


def export_filename(form: FormDefinition, fmt: ExportFormat, now: datetime | None = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    base = normalize_identifier(form.name) or "form"
    return f"{base}_submissions_{stamp}.{fmt}"


def export_submissions(
    form: FormDefinition, submissions: Sequence[FormSubmission], fmt: ExportFormat = "csv"
) -> bytes:
    """
    Render submissions in the requested format.

    CSV and XLSX have one column per answerable field, labelled by field label;
    list answers are joined with "; ". JSON keeps answers keyed by field id.
    """
    if fmt == "json":
        payload = [
            {
                "id": submission.id,
                "status": submission.status,
                "form_version": submission.form_version,
                "submitted_at": submission.submitted_at,
                "answers": decode(submission.values),
            }
            for submission in submissions
        ]
        return json.dumps(payload, indent=2, sort_keys=True, default=str).encode("utf-8")

    headers, rows = _table(form, submissions)
    if fmt == "csv":
        return write_csv(headers, rows).encode("utf-8")
    if fmt == "xlsx":
        workbook = Workbook(write_only=True)
        sheet = workbook.create_sheet(title="Submissions")
        sheet.append(headers)
        for row in rows:
            sheet.append([csv_safe(serialize_csv_value(value)) for value in row])
        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()
    raise ValueError(f"Unsupported export format: {fmt}")
