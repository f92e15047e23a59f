"""Form builder, renderer support and submission endpoints."""

from dataclasses import asdict
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from formengine.core.deps import get_db, get_user_context
from formengine.core.exceptions import (
    FieldValidationError,
    FormNotAcceptingSubmissionsError,
    SchemaError,
)
from formengine.db.enums import SubmissionStatus
from formengine.schemas.forms import FormCreate, FormDefinition, FormSummary, FormUpdate
from formengine.schemas.submissions import (
    FieldAnalytics,
    SubmissionAnalytics,
    SubmissionCreate,
    SubmissionQuery,
    SubmissionRead,
    SubmissionUpdate,
    UserContext,
)
from formengine.services import (
    conditional_logic,
    form_service,
    form_submission_service,
    step_navigation,
    submission_analytics_service,
    submission_export_service,
    submission_query_service,
)
from formengine.services.form_serialization import deserialize

router = APIRouter(prefix="/forms", tags=["forms"])


# =============================================================================
# Schemas
# =============================================================================


class AnswersBody(BaseModel):
    answers: dict[str, Any] = Field(default_factory=dict)
    precedence: Literal["last", "first"] = "last"


class StepValidationRead(BaseModel):
    valid: bool
    errors: dict[str, str]
    next_step_index: int | None


class FieldStateRead(BaseModel):
    visible: bool
    required: bool
    skip: bool
    skip_to_step_id: str | None = None


# =============================================================================
# Helpers
# =============================================================================


def _form_summary(form: FormDefinition) -> FormSummary:
    return FormSummary(
        id=form.id,
        name=form.name,
        status=form.status,
        version=form.version,
        total_fields=form.metadata.total_fields,
        response_count=form.metadata.response_count,
    )


def _submission_read(submission) -> SubmissionRead:
    return SubmissionRead(
        id=submission.id,
        form_id=submission.form_id,
        form_version=submission.form_version,
        status=submission.status,
        submitted_by=submission.submitted_by,
        submitted_by_email=submission.submitted_by_email,
        is_anonymous=submission.is_anonymous,
        started_at=submission.started_at,
        submitted_at=submission.submitted_at,
        last_saved_at=submission.last_saved_at,
        answers=form_submission_service.get_submission_answers(submission),
    )


def _get_form_row_or_404(db: Session, user: UserContext, form_id: str):
    row = form_service.get_form_row(db, user.company_id, form_id)
    if not row:
        raise HTTPException(status_code=404, detail="Form not found")
    return row


def _get_submission_or_404(db: Session, user: UserContext, form_id: str, submission_id: str):
    submission = form_submission_service.get_submission(db, user.company_id, submission_id)
    if not submission or submission.form_id != form_id:
        raise HTTPException(status_code=404, detail="Submission not found")
    return submission


# =============================================================================
# Forms
# =============================================================================


@router.get("", response_model=list[FormSummary])
def list_forms(
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    rows = form_service.list_forms(db, user.company_id)
    return [_form_summary(deserialize(row)) for row in rows]


@router.post("", response_model=FormDefinition, status_code=status.HTTP_201_CREATED)
def create_form(
    body: FormCreate,
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    return form_service.create_form(
        db=db,
        company_id=user.company_id,
        user_id=user.user_id,
        name=body.name,
        description=body.description,
        fields=body.fields,
        steps=body.steps,
    )


@router.get("/{form_id}", response_model=FormDefinition)
def get_form(
    form_id: str,
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    return deserialize(_get_form_row_or_404(db, user, form_id))


@router.patch("/{form_id}", response_model=FormDefinition)
def update_form(
    form_id: str,
    body: FormUpdate,
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    row = _get_form_row_or_404(db, user, form_id)
    return form_service.update_form(db, row, user.user_id, body)


@router.post("/{form_id}/publish", response_model=FormDefinition)
def publish_form(
    form_id: str,
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    row = _get_form_row_or_404(db, user, form_id)
    try:
        return form_service.publish_form(db, row, user.user_id)
    except SchemaError as exc:
        raise HTTPException(
            status_code=422, detail={"message": str(exc), "errors": exc.errors}
        ) from exc


@router.post("/{form_id}/archive", response_model=FormDefinition)
def archive_form(
    form_id: str,
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    row = _get_form_row_or_404(db, user, form_id)
    return form_service.archive_form(db, row, user.user_id)


# =============================================================================
# Renderer support
# =============================================================================


@router.post("/{form_id}/logic/evaluate", response_model=dict[str, FieldStateRead])
def evaluate_logic(
    form_id: str,
    body: AnswersBody,
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    form = deserialize(_get_form_row_or_404(db, user, form_id))
    states = conditional_logic.evaluate(
        form.conditional_logic, body.answers, form.fields, body.precedence
    )
    return {field_id: FieldStateRead(**asdict(state)) for field_id, state in states.items()}


@router.post("/{form_id}/steps/{step_index}/validate", response_model=StepValidationRead)
def validate_step(
    form_id: str,
    step_index: int,
    body: AnswersBody,
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    form = deserialize(_get_form_row_or_404(db, user, form_id))
    try:
        result = step_navigation.validate_step(form, step_index, body.answers, body.precedence)
    except IndexError as exc:
        raise HTTPException(status_code=404, detail="Step not found") from exc
    return StepValidationRead(
        valid=result.valid, errors=result.errors, next_step_index=result.next_step_index
    )


# =============================================================================
# Submissions
# =============================================================================


@router.post(
    "/{form_id}/submissions",
    response_model=SubmissionRead,
    status_code=status.HTTP_201_CREATED,
)
def create_submission(
    form_id: str,
    body: SubmissionCreate,
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    row = _get_form_row_or_404(db, user, form_id)
    try:
        submission = form_submission_service.create_submission(
            db,
            row,
            body.answers,
            status=body.status,
            submitted_by=None if body.is_anonymous else user.user_id,
            submitted_by_email=body.submitted_by_email,
            is_anonymous=body.is_anonymous,
        )
    except FormNotAcceptingSubmissionsError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except FieldValidationError as exc:
        raise HTTPException(
            status_code=422, detail={"message": str(exc), "errors": exc.errors}
        ) from exc
    return _submission_read(submission)


@router.post("/{form_id}/submissions/search", response_model=list[SubmissionRead])
def search_submissions(
    form_id: str,
    body: SubmissionQuery,
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    form = deserialize(_get_form_row_or_404(db, user, form_id))
    try:
        submissions = submission_query_service.filter_submissions(
            db, form, body.filters, status=body.status, limit=body.limit, offset=body.offset
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [_submission_read(submission) for submission in submissions]


@router.get("/{form_id}/analytics", response_model=SubmissionAnalytics)
def get_form_analytics(
    form_id: str,
    days: int = Query(30, ge=1, le=365),
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    row = _get_form_row_or_404(db, user, form_id)
    return submission_analytics_service.get_form_analytics(db, row.id, days=days)


@router.get("/{form_id}/analytics/fields", response_model=list[FieldAnalytics])
def get_field_analytics(
    form_id: str,
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    form = deserialize(_get_form_row_or_404(db, user, form_id))
    return submission_analytics_service.get_field_analytics(db, form)


@router.get("/{form_id}/submissions/export")
def export_submissions(
    form_id: str,
    format: Literal["csv", "json", "xlsx"] = Query("csv"),
    submission_status: SubmissionStatus | None = Query(SubmissionStatus.COMPLETED, alias="status"),
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
) -> Response:
    row = _get_form_row_or_404(db, user, form_id)
    form = deserialize(row)
    submissions = form_submission_service.list_submissions(
        db, row.id, status=submission_status, limit=100_000
    )
    content = submission_export_service.export_submissions(form, submissions, format)
    filename = submission_export_service.export_filename(form, format)
    return Response(
        content=content,
        media_type=submission_export_service.MEDIA_TYPES[format],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{form_id}/submissions/{submission_id}", response_model=SubmissionRead)
def get_submission(
    form_id: str,
    submission_id: str,
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    return _submission_read(_get_submission_or_404(db, user, form_id, submission_id))


@router.patch("/{form_id}/submissions/{submission_id}", response_model=SubmissionRead)
def update_draft_submission(
    form_id: str,
    submission_id: str,
    body: SubmissionUpdate,
    complete: bool = Query(False),
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    row = _get_form_row_or_404(db, user, form_id)
    submission = _get_submission_or_404(db, user, form_id, submission_id)
    try:
        submission = form_submission_service.update_draft_submission(
            db, submission, row, body.answers, complete=complete
        )
    except FieldValidationError as exc:
        raise HTTPException(
            status_code=422, detail={"message": str(exc), "errors": exc.errors}
        ) from exc
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _submission_read(submission)


@router.delete("/{form_id}/submissions/{submission_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_submission(
    form_id: str,
    submission_id: str,
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    row = _get_form_row_or_404(db, user, form_id)
    submission = _get_submission_or_404(db, user, form_id, submission_id)
    form_submission_service.delete_submission(db, submission, row)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
