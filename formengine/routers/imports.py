"""
Spreadsheet import API endpoints.

Upload + analyze a file, then either import it into an existing form or
let the engine build (and publish) a form from the detected columns.
Jobs run as background tasks; clients poll progress.
"""

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    HTTPException,
    Request,
    UploadFile,
    status,
)
from fastapi.responses import Response
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from formengine.core.deps import get_db, get_user_context
from formengine.core.exceptions import (
    ColumnMappingError,
    FormNotAcceptingSubmissionsError,
    ImportJobConflictError,
    InvalidTransitionError,
    ParseError,
    SchemaError,
)
from formengine.jobs.handlers import imports as import_handlers
from formengine.schemas.imports import (
    CreateFormFromImport,
    CreateFormFromImportResponse,
    ImportJobCreate,
    ImportProgress,
    ImportResult,
    ImportUploadResponse,
)
from formengine.schemas.submissions import UserContext
from formengine.services import form_service, import_service, storage_client
from formengine.services.form_serialization import deserialize
from formengine.services.import_parser import parse_file
from formengine.utils.file_upload import content_length_exceeds_limit, read_import_upload

router = APIRouter(prefix="/imports", tags=["imports"])


def _get_job_or_404(db: Session, user: UserContext, job_id: str):
    job = import_service.get_import_job(db, user.company_id, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Import job not found")
    return job


def _parse_error_status(exc: ParseError) -> int:
    return 413 if "exceeds" in str(exc) else 400


# =============================================================================
# Upload
# =============================================================================


@router.post("/upload", response_model=ImportUploadResponse)
async def upload_import_file(
    request: Request,
    file: UploadFile = File(...),
    form_id: str | None = Form(None),
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    """Store and analyze an upload. With ``form_id``, also propose a column mapping."""
    if content_length_exceeds_limit(request.headers.get("content-length")):
        raise HTTPException(status_code=413, detail="File too large")

    target_form = None
    if form_id:
        target_form = form_service.get_form(db, user.company_id, form_id)
        if target_form is None:
            raise HTTPException(status_code=404, detail="Form not found")

    file_name = file.filename or "upload.csv"
    try:
        content = await read_import_upload(file)
        parsed = await run_in_threadpool(parse_file, content, file_name, file.content_type)
    except ParseError as exc:
        raise HTTPException(status_code=_parse_error_status(exc), detail=str(exc)) from exc

    file_id = storage_client.build_file_id(user.company_id, file_name)
    await storage_client.store_file_async(file_id, content)
    return import_service.preview_upload(
        parsed, file_id, file_name, len(content), form=target_form
    )


# =============================================================================
# Jobs
# =============================================================================


@router.post("/jobs", response_model=ImportProgress, status_code=status.HTTP_202_ACCEPTED)
def create_import_job(
    body: ImportJobCreate,
    background_tasks: BackgroundTasks,
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    form_row = form_service.get_form_row(db, user.company_id, body.form_id)
    if not form_row:
        raise HTTPException(status_code=404, detail="Form not found")
    try:
        job = import_service.create_import_job(
            db,
            company_id=user.company_id,
            user_id=user.user_id,
            form_row=form_row,
            file_id=body.file_id,
            file_name=body.file_name,
            column_mapping=body.column_mapping,
            strict_mode=body.strict_mode,
        )
    except ColumnMappingError as exc:
        raise HTTPException(
            status_code=400, detail={"message": str(exc), "errors": exc.errors}
        ) from exc
    except (FormNotAcceptingSubmissionsError, ImportJobConflictError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    background_tasks.add_task(import_handlers.run_form_import, job.id)
    return import_service.get_progress(job)


@router.post(
    "/from-file",
    response_model=CreateFormFromImportResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_form_from_import(
    body: CreateFormFromImport,
    background_tasks: BackgroundTasks,
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    """Build and publish a form from the upload's detected fields, then import into it."""
    try:
        form, job = await import_service.create_form_from_import(
            db, user.company_id, user.user_id, body
        )
    except ParseError as exc:
        raise HTTPException(status_code=_parse_error_status(exc), detail=str(exc)) from exc
    except SchemaError as exc:
        raise HTTPException(
            status_code=422, detail={"message": str(exc), "errors": exc.errors}
        ) from exc
    except ColumnMappingError as exc:
        raise HTTPException(
            status_code=400, detail={"message": str(exc), "errors": exc.errors}
        ) from exc

    background_tasks.add_task(import_handlers.run_form_import, job.id)
    return CreateFormFromImportResponse(
        form_id=form.id, form_name=form.name, job=import_service.get_progress(job)
    )


@router.get("/jobs", response_model=list[ImportProgress])
def list_import_jobs(
    form_id: str | None = None,
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    jobs = import_service.list_import_jobs(db, user.company_id, form_id=form_id, limit=50)
    return [import_service.get_progress(job) for job in jobs]


@router.get("/jobs/{job_id}", response_model=ImportProgress)
def get_import_progress(
    job_id: str,
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    return import_service.get_progress(_get_job_or_404(db, user, job_id))


@router.get("/jobs/{job_id}/result", response_model=ImportResult)
def get_import_result(
    job_id: str,
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    return import_service.build_import_result(_get_job_or_404(db, user, job_id))


@router.post("/jobs/{job_id}/cancel", response_model=ImportProgress)
def cancel_import_job(
    job_id: str,
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    job = _get_job_or_404(db, user, job_id)
    try:
        job = import_service.cancel_import_job(db, job)
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return import_service.get_progress(job)


@router.get("/jobs/{job_id}/errors.csv")
def download_error_report(
    job_id: str,
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
) -> Response:
    job = _get_job_or_404(db, user, job_id)
    form_row = form_service.get_form_row(db, user.company_id, job.form_id)
    form_name = deserialize(form_row).name if form_row else None
    content = import_service.generate_error_report(import_service.job_errors(job))
    filename = import_service.error_report_filename(form_name)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
