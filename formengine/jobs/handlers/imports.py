"""Import job handlers."""

from __future__ import annotations

import logging

from formengine.db.enums import ImportJobStatus

logger = logging.getLogger(__name__)


async def process_form_import(db, job) -> None:
    """
    Run a pending form import job to a terminal state.

    Unexpected errors mark the job failed, then propagate.
    """
    from formengine.services import import_service

    if job.status != ImportJobStatus.PENDING.value:
        logger.info("Skipping import job %s in state %s", job.id, job.status)
        return

    logger.info("Starting form import job: %s, file=%s", job.id, job.file_name)
    try:
        await import_service.ImportJobRunner(db, job).run()
    except Exception as e:
        db.rollback()
        db.refresh(job)
        if not ImportJobStatus(job.status).is_terminal:
            import_service.transition(job, ImportJobStatus.FAILED, error=str(e))
            db.commit()
        logger.error("Form import failed: %s - %s", job.id, e)
        raise
    logger.info(
        "Form import finished: %s status=%s success=%s errors=%s",
        job.id,
        job.status,
        job.success_count,
        job.error_count,
    )


async def run_form_import(job_id: str) -> None:
    """Background-task entry point: owns its own session."""
    from formengine.db.models import ImportJob
    from formengine.db.session import SessionLocal

    db = SessionLocal()
    try:
        job = db.get(ImportJob, job_id)
        if job is None:
            raise Exception(f"Import job {job_id} not found")
        await process_form_import(db, job)
    finally:
        db.close()
