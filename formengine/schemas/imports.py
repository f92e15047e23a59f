"""Import analysis, mapping and job progress schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from formengine.db.enums import ImportJobStatus
from formengine.schemas.forms import FieldType


class DetectedField(BaseModel):
    """Proposed field for one spreadsheet column."""

    column: str
    name: str
    label: str
    type: FieldType
    required: bool = False
    options: list[str] | None = None
    confidence: float = Field(..., ge=0, le=1)


class ImportAnalysis(BaseModel):
    columns: list[str]
    row_count: int
    preview: list[dict[str, Any]]
    detected_fields: list[DetectedField]
    warnings: list[str] = Field(default_factory=list)
    suggested_form_name: str


class RowError(BaseModel):
    """One failed cell or row. ``row`` is the 1-based data row number."""

    row: int
    field: str | None = None
    field_id: str | None = None
    field_type: str | None = None
    value: Any = None
    error: str
    suggestion: str | None = None


class ErrorReportRow(BaseModel):
    row_number: int
    field_name: str
    field_type: str
    value: str
    error_message: str
    suggestion: str


class ColumnMatch(BaseModel):
    column: str
    field_id: str
    confidence: Literal["high", "medium", "low"]


class AutoMappingResult(BaseModel):
    mapping: dict[str, str]
    matches: list[ColumnMatch] = Field(default_factory=list)
    unmapped_columns: list[str] = Field(default_factory=list)
    unmapped_fields: list[str] = Field(default_factory=list)


class MappingValidation(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ValidationResults(BaseModel):
    """Preview-level validation of an import before the job runs."""

    valid_rows: int
    invalid_rows: int
    errors: list[RowError] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ImportProgress(BaseModel):
    job_id: str
    status: ImportJobStatus
    total_rows: int
    processed_rows: int
    success_count: int
    error_count: int
    percentage: float
    estimated_seconds_remaining: int | None = None
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


class ImportResult(BaseModel):
    job_id: str
    form_id: str
    status: ImportJobStatus
    success_count: int
    error_count: int
    errors: list[RowError] = Field(default_factory=list)
    error_summary: str | None = None


# =============================================================================
# API request bodies
# =============================================================================


class ImportJobCreate(BaseModel):
    form_id: str
    file_id: str
    file_name: str = Field(..., min_length=1, max_length=255)
    column_mapping: dict[str, str] = Field(default_factory=dict)
    strict_mode: bool = False


class CreateFormFromImport(BaseModel):
    file_id: str
    file_name: str = Field(..., min_length=1, max_length=255)
    form_name: str | None = Field(None, max_length=150)
    description: str | None = None
    column_overrides: dict[str, str | None] = Field(default_factory=dict)
    field_type_overrides: dict[str, FieldType] = Field(default_factory=dict)
    strict_mode: bool = False


class ImportUploadResponse(BaseModel):
    """Stored upload plus its analysis; mapping fields are set when a target form is given."""

    file_id: str
    file_name: str
    file_size: int
    analysis: ImportAnalysis
    mapping: AutoMappingResult | None = None
    mapping_validation: MappingValidation | None = None
    validation: ValidationResults | None = None


class CreateFormFromImportResponse(BaseModel):
    form_id: str
    form_name: str
    job: ImportProgress
