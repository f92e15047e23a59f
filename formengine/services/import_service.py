"""Spreadsheet import jobs.

Features:
- Explicit job state machine (pending -> parsing -> validating -> importing)
- Partial success by default; strict mode fails the job on any row error
- Batched row creation, progress committed after every batch
- Cooperative cancellation between batches (created rows are kept)
- CSV error reports
- Auto-import: build and publish a form from an analyzed file, then import into it
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from formengine.core.config import settings
from formengine.core.exceptions import (
    ColumnMappingError,
    ImportJobConflictError,
    InvalidTransitionError,
    JobFatalError,
    ParseError,
    RowCreationError,
    summarize_errors,
)
from formengine.core.structured_logging import build_log_context
from formengine.db.enums import (
    ACTIVE_IMPORT_STATUSES,
    IMPORT_JOB_TRANSITIONS,
    ImportJobStatus,
    SubmissionStatus,
)
from formengine.db.models import Form, ImportJob
from formengine.schemas.forms import FormDefinition, FormStep
from formengine.schemas.imports import (
    CreateFormFromImport,
    DetectedField,
    ErrorReportRow,
    ImportAnalysis,
    ImportProgress,
    ImportResult,
    ImportUploadResponse,
    RowError,
)
from formengine.services import form_service
from formengine.services.form_serialization import deserialize
from formengine.services.form_submission_service import insert_submission, refresh_response_count
from formengine.services.import_detection_service import analyze, build_fields_from_detection
from formengine.services.import_parser import ParsedFileData, parse_file
from formengine.services.import_transformers import (
    auto_map_columns,
    quick_validation,
    transform_row,
    validate_mapping,
)
from formengine.services.storage_client import StorageFileNotFoundError, load_file_async
from formengine.utils.csv_export import write_csv
from formengine.utils.normalization import normalize_identifier

logger = logging.getLogger(__name__)


ERROR_REPORT_HEADERS = ["RowNumber", "FieldName", "FieldType", "Value", "ErrorMessage", "Suggestion"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _job_context(job: ImportJob) -> dict[str, Any]:
    return build_log_context(
        company_id=job.company_id,
        form_id=job.form_id,
        job_id=job.id,
        user_id=job.created_by,
    )


# =============================================================================
# State machine
# =============================================================================


def transition(job: ImportJob, status: ImportJobStatus, error: str | None = None) -> None:
    """Move ``job`` to ``status``. Does not commit. Raises InvalidTransitionError."""
    current = ImportJobStatus(job.status)
    if status not in IMPORT_JOB_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Cannot move import job from {current.value} to {status.value}"
        )
    job.status = status.value
    if status == ImportJobStatus.PARSING:
        job.started_at = _now()
    if status.is_terminal:
        job.completed_at = _now()
    if error:
        job.error = error
    logger.info(
        "Import job %s -> %s", current.value, status.value, extra=_job_context(job)
    )


# =============================================================================
# Queries
# =============================================================================


def get_import_job(db: Session, company_id: str, job_id: str) -> ImportJob | None:
    return (
        db.query(ImportJob)
        .filter(ImportJob.company_id == company_id, ImportJob.id == job_id)
        .first()
    )


def list_import_jobs(
    db: Session, company_id: str, form_id: str | None = None, limit: int = 20
) -> list[ImportJob]:
    query = db.query(ImportJob).filter(ImportJob.company_id == company_id)
    if form_id:
        query = query.filter(ImportJob.form_id == form_id)
    return query.order_by(ImportJob.created_at.desc()).limit(limit).all()


def get_active_job(db: Session, form_id: str) -> ImportJob | None:
    return (
        db.query(ImportJob)
        .filter(
            ImportJob.form_id == form_id,
            ImportJob.status.in_([status.value for status in ACTIVE_IMPORT_STATUSES]),
        )
        .first()
    )


def job_errors(job: ImportJob) -> list[RowError]:
    return [RowError.model_validate(item) for item in (job.errors or [])]


def get_progress(job: ImportJob) -> ImportProgress:
    """Polling snapshot. The estimate assumes a fixed row throughput."""
    status = ImportJobStatus(job.status)
    total = job.total_rows or 0
    processed = job.processed_rows or 0
    if total:
        percentage = round(processed / total * 100, 1)
    else:
        percentage = 100.0 if status == ImportJobStatus.COMPLETED else 0.0

    remaining_seconds = None
    if not status.is_terminal and total:
        remaining_seconds = math.ceil((total - processed) / settings.IMPORT_ROWS_PER_SECOND)

    return ImportProgress(
        job_id=job.id,
        status=status,
        total_rows=total,
        processed_rows=processed,
        success_count=job.success_count or 0,
        error_count=job.error_count or 0,
        percentage=percentage,
        estimated_seconds_remaining=remaining_seconds,
        error=job.error,
        started_at=job.started_at,
        completed_at=job.completed_at,
    )


def build_import_result(job: ImportJob) -> ImportResult:
    errors = job_errors(job)
    messages = [f"Row {e.row}: {e.field + ': ' if e.field else ''}{e.error}" for e in errors]
    return ImportResult(
        job_id=job.id,
        form_id=job.form_id,
        status=ImportJobStatus(job.status),
        success_count=job.success_count or 0,
        error_count=job.error_count or 0,
        errors=errors,
        error_summary=summarize_errors(messages) if messages else None,
    )


# =============================================================================
# Job lifecycle
# =============================================================================


def create_import_job(
    db: Session,
    company_id: str,
    user_id: str | None,
    form_row: Form,
    file_id: str,
    file_name: str,
    column_mapping: dict[str, str],
    file_size: int = 0,
    strict_mode: bool = False,
) -> ImportJob:
    """
    Create a pending job for a published form.

    Raises FormNotAcceptingSubmissionsError, ColumnMappingError, or
    ImportJobConflictError when the form already has an active job.
    """
    definition = deserialize(form_row)
    form_service.ensure_accepting_submissions(definition)
    mapping_check = validate_mapping(column_mapping, definition)
    if not mapping_check.valid:
        raise ColumnMappingError(mapping_check.errors)

    active = get_active_job(db, form_row.id)
    if active is not None:
        raise ImportJobConflictError(
            f"Form already has an active import job ({active.id}, {active.status})"
        )

    job = ImportJob(
        company_id=company_id,
        form_id=form_row.id,
        file_id=file_id,
        file_name=file_name,
        file_size=file_size,
        status=ImportJobStatus.PENDING.value,
        strict_mode=strict_mode,
        column_mapping=dict(column_mapping),
        created_by=user_id,
        errors=[],
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info("Import job created", extra=_job_context(job))
    return job


def cancel_import_job(db: Session, job: ImportJob) -> ImportJob:
    """Request cancellation. A running job stops before its next batch."""
    transition(job, ImportJobStatus.CANCELLED)
    db.commit()
    db.refresh(job)
    return job


# =============================================================================
# Runner
# =============================================================================


@dataclass
class PreparedRow:
    row_number: int
    answers: dict[str, Any]
    errors: list[RowError] = field(default_factory=list)


BatchCallback = Callable[[ImportJob], Any]


def _prepare_rows(
    rows: list[dict[str, Any]], mapping: dict[str, str], form: FormDefinition
) -> list[PreparedRow]:
    fields_by_id = form.fields_by_id
    prepared: list[PreparedRow] = []
    for row_number, row in enumerate(rows, start=1):
        answers, errors = transform_row(row, mapping, fields_by_id, row_number, form=form)
        prepared.append(PreparedRow(row_number=row_number, answers=answers, errors=errors))
    return prepared


class ImportJobRunner:
    """
    Drives one job through its state machine.

    Rows that failed transformation are counted as processed errors in their
    batch. All row writes go through the runner's single session, one row at
    a time. ``cancel()`` (or a cancellation persisted by another session) is
    honoured between batches and once more before the job completes.
    """

    def __init__(
        self,
        db: Session,
        job: ImportJob,
        batch_size: int | None = None,
        on_batch: BatchCallback | None = None,
    ):
        self.db = db
        self.job = job
        self.batch_size = batch_size or settings.IMPORT_BATCH_SIZE
        self.on_batch = on_batch
        self._cancel_event = asyncio.Event()
        self._form_row: Form | None = None
        self._definition: FormDefinition | None = None
        self._processed = 0
        self._succeeded = 0
        self._failed = 0
        self._errors: list[RowError] = []

    def cancel(self) -> None:
        self._cancel_event.set()

    async def run(self) -> ImportJob:
        try:
            parsed = await self._parse()
            if parsed is None:
                return self.job
            prepared = await self._validate(parsed)
            if prepared is None:
                return self.job
            await self._import(prepared)
        except JobFatalError as exc:
            logger.exception("Import job aborted", extra=_job_context(self.job))
            self._fail(str(exc))
        except SQLAlchemyError as exc:
            logger.exception("Import job aborted by database error", extra=_job_context(self.job))
            self._fail(f"Database error: {exc}")
        return self.job

    # -- phases ---------------------------------------------------------------

    async def _parse(self) -> ParsedFileData | None:
        transition(self.job, ImportJobStatus.PARSING)
        self.db.commit()

        try:
            content = await load_file_async(self.job.file_id)
        except StorageFileNotFoundError:
            self._fail(f"Import file '{self.job.file_name}' is no longer available")
            return None
        except (OSError, BotoCoreError, ClientError) as exc:
            raise JobFatalError(f"Storage unavailable: {exc}") from exc

        try:
            parsed = await run_in_threadpool(parse_file, content, self.job.file_name)
        except ParseError as exc:
            self._fail(str(exc))
            return None

        self.job.total_rows = parsed.row_count
        if self.job.file_size == 0:
            self.job.file_size = len(content)
        self.db.commit()
        return parsed

    async def _validate(self, parsed: ParsedFileData) -> list[PreparedRow] | None:
        if self._cancelled():
            return None
        transition(self.job, ImportJobStatus.VALIDATING)
        self.db.commit()

        self._form_row = self.db.get(Form, self.job.form_id)
        if self._form_row is None:
            raise JobFatalError("Target form no longer exists")
        self._definition = deserialize(self._form_row)

        prepared = await run_in_threadpool(
            _prepare_rows,
            parsed.rows,
            dict(self.job.column_mapping or {}),
            self._definition,
        )
        invalid = [row for row in prepared if row.errors]
        if self.job.strict_mode and invalid:
            self._failed = len(invalid)
            self._errors = [error for row in invalid for error in row.errors]
            self._fail(
                f"Strict mode: {len(invalid)} of {len(prepared)} rows failed validation; nothing was imported"
            )
            return None
        return prepared

    async def _import(self, prepared: list[PreparedRow]) -> None:
        if self._cancelled():
            return
        transition(self.job, ImportJobStatus.IMPORTING)
        self.db.commit()

        for start in range(0, len(prepared), self.batch_size):
            if self._cancelled():
                return
            batch = prepared[start : start + self.batch_size]
            for row in batch:
                self._import_row(row)
            self._save_progress()
            if self.on_batch is not None:
                outcome = self.on_batch(self.job)
                if inspect.isawaitable(outcome):
                    await outcome

        # A cancel can land while the last batch is running.
        if self._cancelled():
            return
        self._apply_counters()
        refresh_response_count(self.db, self._form_row)
        transition(self.job, ImportJobStatus.COMPLETED)
        self.db.commit()

    # -- rows -----------------------------------------------------------------

    def _create_row(self, row: PreparedRow) -> None:
        try:
            with self.db.begin_nested():
                insert_submission(
                    self.db,
                    self._definition,
                    row.answers,
                    status=SubmissionStatus.COMPLETED,
                    submitted_by=self.job.created_by,
                )
        except (SQLAlchemyError, ValueError) as exc:
            raise RowCreationError(f"Failed to create submission: {exc}") from exc

    def _import_row(self, row: PreparedRow) -> None:
        errors = row.errors
        if not errors:
            try:
                self._create_row(row)
            except RowCreationError as exc:
                logger.warning(
                    "Import row %s failed: %s", row.row_number, exc, extra=_job_context(self.job)
                )
                errors = [RowError(row=row.row_number, error=str(exc))]

        self._processed += 1
        if errors:
            self._failed += 1
            self._errors.extend(errors)
        else:
            self._succeeded += 1

    # -- bookkeeping ----------------------------------------------------------

    def _apply_counters(self) -> None:
        self.job.processed_rows = self._processed
        self.job.success_count = self._succeeded
        self.job.error_count = self._failed
        self.job.errors = [
            error.model_dump(mode="json") for error in sorted(self._errors, key=lambda e: e.row)
        ]

    def _save_progress(self) -> None:
        self._apply_counters()
        self.db.commit()

    def _cancelled(self) -> bool:
        self.db.refresh(self.job, attribute_names=["status"])
        if self.job.status == ImportJobStatus.CANCELLED.value:
            logger.info("Import job cancelled", extra=_job_context(self.job))
            return True
        if self._cancel_event.is_set():
            transition(self.job, ImportJobStatus.CANCELLED)
            self.db.commit()
            return True
        return False

    def _fail(self, message: str) -> None:
        """Terminal failure; counters collected so far are kept."""
        self.db.rollback()
        self._apply_counters()
        if ImportJobStatus(self.job.status).is_terminal:
            logger.warning(
                "Import job already %s; not marking failed", self.job.status, extra=_job_context(self.job)
            )
        else:
            transition(self.job, ImportJobStatus.FAILED, error=message)
        self.db.commit()


# =============================================================================
# Error report
# =============================================================================


def _report_row(error: RowError) -> ErrorReportRow:
    return ErrorReportRow(
        row_number=error.row,
        field_name=error.field or "",
        field_type=error.field_type or "",
        value="" if error.value is None else str(error.value),
        error_message=error.error,
        suggestion=error.suggestion or "",
    )


def generate_error_report(errors: list[RowError]) -> str:
    rows = [_report_row(error) for error in errors]
    return write_csv(
        ERROR_REPORT_HEADERS,
        (
            [r.row_number, r.field_name, r.field_type, r.value, r.error_message, r.suggestion]
            for r in rows
        ),
    )


def error_report_filename(form_name: str | None, now: datetime | None = None) -> str:
    stamp = (now or _now()).strftime("%Y%m%d_%H%M%S")
    name = normalize_identifier(form_name) or "import"
    return f"import_errors_{name}_{stamp}.csv"


# =============================================================================
# Upload analysis
# =============================================================================


def preview_upload(
    parsed: ParsedFileData,
    file_id: str,
    file_name: str,
    file_size: int,
    form: FormDefinition | None = None,
) -> ImportUploadResponse:
    """Analyze a stored upload; with a target form, also propose and check a mapping."""
    response = ImportUploadResponse(
        file_id=file_id,
        file_name=file_name,
        file_size=file_size,
        analysis=analyze(parsed, file_name),
    )
    if form is not None:
        auto_mapping = auto_map_columns(parsed.columns, form.fields)
        response.mapping = auto_mapping
        response.mapping_validation = validate_mapping(auto_mapping.mapping, form)
        response.validation = quick_validation(parsed.rows, form, auto_mapping.mapping)
    return response


# =============================================================================
# Auto-import
# =============================================================================


def _apply_column_overrides(
    analysis: ImportAnalysis, overrides: dict[str, str | None]
) -> list[DetectedField]:
    """A None override drops the column; a string renames its field id."""
    detected: list[DetectedField] = []
    for candidate in analysis.detected_fields:
        if candidate.column in overrides:
            target = overrides[candidate.column]
            if target is None:
                continue
            candidate = candidate.model_copy(update={"name": target})
        detected.append(candidate)
    return detected


async def create_form_from_import(
    db: Session,
    company_id: str,
    user_id: str | None,
    request: CreateFormFromImport,
) -> tuple[FormDefinition, ImportJob]:
    """
    Build a form from a stored upload's detections, publish it, and create
    the import job that will fill it.

    Raises ParseError, SchemaError (the draft form is kept) or storage errors.
    """
    try:
        content = await load_file_async(request.file_id)
    except StorageFileNotFoundError as exc:
        raise ParseError(f"Uploaded file '{request.file_name}' was not found") from exc
    parsed = await run_in_threadpool(parse_file, content, request.file_name)
    analysis = analyze(parsed, request.file_name)

    detected = _apply_column_overrides(analysis, request.column_overrides)
    type_overrides = {
        candidate.name: request.field_type_overrides[candidate.column]
        for candidate in detected
        if candidate.column in request.field_type_overrides
    }
    fields = build_fields_from_detection(detected, type_overrides)
    steps = [FormStep(id="step-1", title="Step 1", fields=[f.id for f in fields], order=1)]

    form = form_service.create_form(
        db,
        company_id=company_id,
        user_id=user_id,
        name=request.form_name or analysis.suggested_form_name,
        description=request.description,
        fields=fields,
        steps=steps,
    )
    form_row = form_service.get_form_row(db, company_id, form.id)
    form = form_service.publish_form(db, form_row, user_id)

    job = create_import_job(
        db,
        company_id=company_id,
        user_id=user_id,
        form_row=form_row,
        file_id=request.file_id,
        file_name=request.file_name,
        column_mapping={candidate.column: candidate.name for candidate in detected},
        file_size=len(content),
        strict_mode=request.strict_mode,
    )
    return form, job
