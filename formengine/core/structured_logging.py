"""Structured logging helpers (PII-safe)."""

import logging
from typing import Any

from formengine.core.config import settings


def build_log_context(
    *,
    company_id: str | None = None,
    form_id: str | None = None,
    job_id: str | None = None,
    user_id: str | None = None,
    submission_id: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict. Never include answer values here."""
    context: dict[str, Any] = {}
    if company_id:
        context["company_id"] = company_id
    if form_id:
        context["form_id"] = form_id
    if job_id:
        context["job_id"] = job_id
    if user_id:
        context["user_id"] = user_id
    if submission_id:
        context["submission_id"] = submission_id
    return context


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
