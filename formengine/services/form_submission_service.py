"""Form submissions: create, draft auto-save, read and delete."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from formengine.core.exceptions import FieldValidationError
from formengine.core.structured_logging import build_log_context
from formengine.db.enums import SubmissionStatus
from formengine.db.models import Form, FormSubmission, SubmissionValue
from formengine.schemas.forms import FormDefinition
from formengine.services import form_service
from formengine.services.form_serialization import apply_record, deserialize, serialize
from formengine.services.step_navigation import validate_submission
from formengine.services.submission_values import decode, encode

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Queries
# =============================================================================


def count_completed_submissions(db: Session, form_id: str) -> int:
    return (
        db.query(func.count(FormSubmission.id))
        .filter(
            FormSubmission.form_id == form_id,
            FormSubmission.status == SubmissionStatus.COMPLETED.value,
        )
        .scalar()
        or 0
    )


def get_submission(db: Session, company_id: str, submission_id: str) -> FormSubmission | None:
    return (
        db.query(FormSubmission)
        .filter(FormSubmission.company_id == company_id, FormSubmission.id == submission_id)
        .first()
    )


def list_submissions(
    db: Session,
    form_id: str,
    status: SubmissionStatus | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[FormSubmission]:
    query = db.query(FormSubmission).filter(FormSubmission.form_id == form_id)
    if status is not None:
        query = query.filter(FormSubmission.status == status.value)
    return query.order_by(FormSubmission.started_at.desc()).offset(offset).limit(limit).all()


def get_submission_answers(submission: FormSubmission) -> dict[str, Any]:
    return decode(submission.values)


# =============================================================================
# Writes
# =============================================================================


def _value_rows(definition: FormDefinition, submission_id: str, answers: dict[str, Any]) -> list[SubmissionValue]:
    return [SubmissionValue(**record.model_dump()) for record in encode(definition, submission_id, answers)]


def insert_submission(
    db: Session,
    definition: FormDefinition,
    answers: dict[str, Any],
    *,
    status: SubmissionStatus = SubmissionStatus.COMPLETED,
    submitted_by: str | None = None,
    submitted_by_email: str | None = None,
    is_anonymous: bool = False,
) -> FormSubmission:
    """Add a submission and its value rows to the session. Does not commit or validate."""
    now = _now()
    submission = FormSubmission(
        form_id=definition.id,
        form_version=definition.version,
        company_id=definition.company_id,
        status=status.value,
        submitted_by=submitted_by,
        submitted_by_email=submitted_by_email,
        is_anonymous=is_anonymous,
        started_at=now,
        last_saved_at=now,
        submitted_at=now if status == SubmissionStatus.COMPLETED else None,
    )
    db.add(submission)
    db.flush()
    submission.values = _value_rows(definition, submission.id, answers)
    db.flush()
    return submission


def refresh_response_count(db: Session, form_row: Form) -> None:
    """Recount completed submissions into the form's metadata blob."""
    definition = deserialize(form_row)
    definition.metadata.response_count = count_completed_submissions(db, form_row.id)
    definition.metadata.last_submitted_at = (
        db.query(func.max(FormSubmission.submitted_at))
        .filter(FormSubmission.form_id == form_row.id)
        .scalar()
    )
    apply_record(form_row, {"metadata_json": serialize(definition)["metadata_json"]})


def create_submission(
    db: Session,
    form_row: Form,
    answers: dict[str, Any],
    *,
    status: SubmissionStatus = SubmissionStatus.COMPLETED,
    submitted_by: str | None = None,
    submitted_by_email: str | None = None,
    is_anonymous: bool = False,
) -> FormSubmission:
    """
    Create a submission.

    Completed submissions pass whole-form validation (hidden fields exempt);
    drafts are stored as-is. Raises FormNotAcceptingSubmissionsError or
    FieldValidationError.
    """
    definition = deserialize(form_row)
    form_service.ensure_accepting_submissions(
        definition, count_completed_submissions(db, form_row.id)
    )
    if status == SubmissionStatus.COMPLETED:
        errors = validate_submission(definition, answers)
        if errors:
            raise FieldValidationError(errors)

    submission = insert_submission(
        db,
        definition,
        answers,
        status=status,
        submitted_by=submitted_by,
        submitted_by_email=submitted_by_email,
        is_anonymous=is_anonymous,
    )
    if status == SubmissionStatus.COMPLETED:
        refresh_response_count(db, form_row)
    db.commit()
    db.refresh(submission)
    logger.info(
        "Submission created",
        extra=build_log_context(
            company_id=definition.company_id,
            form_id=definition.id,
            user_id=submitted_by,
            submission_id=submission.id,
        ),
    )
    return submission


def update_draft_submission(
    db: Session,
    submission: FormSubmission,
    form_row: Form,
    answers: dict[str, Any],
    *,
    complete: bool = False,
) -> FormSubmission:
    """Replace a draft's answers; optionally complete it (with validation)."""
    if submission.status != SubmissionStatus.DRAFT.value:
        raise ValueError("Only draft submissions can be updated")
    definition = deserialize(form_row)
    if complete:
        errors = validate_submission(definition, answers)
        if errors:
            raise FieldValidationError(errors)

    submission.values.clear()
    db.flush()
    submission.values.extend(_value_rows(definition, submission.id, answers))
    submission.form_version = definition.version
    submission.last_saved_at = _now()
    if complete:
        submission.status = SubmissionStatus.COMPLETED.value
        submission.submitted_at = _now()
        db.flush()
        refresh_response_count(db, form_row)
    db.commit()
    db.refresh(submission)
    return submission


def delete_submission(db: Session, submission: FormSubmission, form_row: Form) -> None:
    """Delete a submission; its value rows go with it."""
    was_completed = submission.status == SubmissionStatus.COMPLETED.value
    db.delete(submission)
    db.flush()
    if was_completed:
        refresh_response_count(db, form_row)
    db.commit()


# =============================================================================
# Auto-save
# =============================================================================


SaveCallback = Callable[[dict[str, Any]], Awaitable[None]]


class AutoSaver:
    """
    Periodic, fire-and-forget draft saving.

    ``update`` only records the latest answers and never blocks. A background
    task saves the latest snapshot every ``interval`` seconds when it has
    changed. A failed save is logged and retried on the next tick.
    """

    def __init__(self, save: SaveCallback, interval: float, *, submission_id: str | None = None):
        self._save = save
        self._interval = interval
        self._submission_id = submission_id
        self._answers: dict[str, Any] = {}
        self._dirty = False
        self._task: asyncio.Task | None = None
        self.last_saved_at: datetime | None = None
        self.failure_count = 0

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def update(self, answers: dict[str, Any]) -> None:
        self._answers = dict(answers)
        self._dirty = True

    async def save_now(self) -> bool:
        """Save the pending snapshot if dirty. Returns True when a save succeeded."""
        if not self._dirty:
            return False
        snapshot = self._answers
        self._dirty = False
        try:
            await self._save(snapshot)
        except Exception:
            self._dirty = True
            self.failure_count += 1
            logger.warning(
                "Auto-save failed; will retry next interval",
                extra=build_log_context(submission_id=self._submission_id),
                exc_info=True,
            )
            return False
        self.last_saved_at = _now()
        return True

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.save_now()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run())

    async def stop(self, *, flush: bool = True) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if flush:
            await self.save_now()


def make_draft_saver(session_factory: sessionmaker, company_id: str, submission_id: str) -> SaveCallback:
    """Build an AutoSaver callback that writes the draft through its own session."""

    def _save_sync(answers: dict[str, Any]) -> None:
        db = session_factory()
        try:
            submission = get_submission(db, company_id, submission_id)
            if submission is None:
                raise LookupError(f"Submission {submission_id} not found")
            form_row = submission.form
            update_draft_submission(db, submission, form_row, answers)
        finally:
            db.close()

    async def _save(answers: dict[str, Any]) -> None:
        await run_in_threadpool(_save_sync, answers)

    return _save
