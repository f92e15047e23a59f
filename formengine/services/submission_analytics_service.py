"""Submission analytics (completion funnel, daily volume, per-field breakdowns)."""

from __future__ import annotations

import logging
import statistics
from collections import Counter, defaultdict
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from formengine.core.structured_logging import build_log_context
from formengine.db.enums import SubmissionStatus
from formengine.db.models import FormSubmission, SubmissionValue
from formengine.schemas.forms import DISPLAY_FIELD_TYPES, FormDefinition
from formengine.schemas.submissions import (
    DailyCount,
    FieldAnalytics,
    NumericStats,
    SubmissionAnalytics,
    ValueCount,
)
from formengine.services.submission_values import NUMBER_SLOT_TYPES

logger = logging.getLogger(__name__)

DEFAULT_TREND_DAYS = 30
DISTRIBUTION_LIMIT = 10
CATEGORICAL_FIELD_TYPES = frozenset({"dropdown", "radio", "checkbox", "multi_select"})


def _period_str(period) -> str:
    if isinstance(period, datetime):
        return period.strftime("%Y-%m-%d")
    if isinstance(period, date):
        return period.isoformat()
    return str(period)


def get_submissions_by_date(
    db: Session,
    form_id: str,
    days: int = DEFAULT_TREND_DAYS,
    now: datetime | None = None,
) -> list[DailyCount]:
    """
    Daily submission counts for the last ``days`` days, oldest first.

    A submission is dated by ``submitted_at``, falling back to ``started_at``
    for drafts. Days without submissions are reported with a zero count.
    """
    today = (now or datetime.now(timezone.utc)).date()
    first_day = today - timedelta(days=days - 1)
    counts = {(first_day + timedelta(days=offset)).isoformat(): 0 for offset in range(days)}

    stamp = func.coalesce(FormSubmission.submitted_at, FormSubmission.started_at)
    period = func.date(stamp)
    results = (
        db.query(period.label("period"), func.count(FormSubmission.id).label("count"))
        .filter(
            FormSubmission.form_id == form_id,
            stamp >= datetime.combine(first_day, time.min),
        )
        .group_by(period)
        .all()
    )
    for row in results:
        key = _period_str(row.period)
        if key in counts:
            counts[key] += row.count

    return [DailyCount(date=day, count=count) for day, count in counts.items()]


def get_form_analytics(
    db: Session,
    form_id: str,
    days: int = DEFAULT_TREND_DAYS,
    now: datetime | None = None,
) -> SubmissionAnalytics:
    result = (
        db.query(
            func.count(FormSubmission.id).label("total"),
            func.sum(
                case((FormSubmission.status == SubmissionStatus.COMPLETED.value, 1), else_=0)
            ).label("completed"),
            func.sum(
                case((FormSubmission.status == SubmissionStatus.DRAFT.value, 1), else_=0)
            ).label("drafts"),
        )
        .filter(FormSubmission.form_id == form_id)
        .one()
    )
    total = result.total or 0
    completed = result.completed or 0
    drafts = result.drafts or 0

    # Timestamp arithmetic differs per database; average the few pairs here.
    durations = [
        (submitted_at - started_at).total_seconds()
        for started_at, submitted_at in db.query(
            FormSubmission.started_at, FormSubmission.submitted_at
        ).filter(
            FormSubmission.form_id == form_id,
            FormSubmission.status == SubmissionStatus.COMPLETED.value,
            FormSubmission.submitted_at.isnot(None),
        )
    ]
    average = round(statistics.fmean(durations), 1) if durations else None

    analytics = SubmissionAnalytics(
        total_submissions=total,
        completed_submissions=completed,
        draft_submissions=drafts,
        conversion_rate=round(completed / total * 100, 1) if total else 0.0,
        average_completion_seconds=average,
        submissions_by_date=get_submissions_by_date(db, form_id, days=days, now=now),
    )
    logger.debug(
        "Computed form analytics over %s submissions", total, extra=build_log_context(form_id=form_id)
    )
    return analytics


def _categories(value: SubmissionValue) -> list[str]:
    if value.value_array is not None:
        return [str(item) for item in value.value_array]
    if value.value_boolean is not None:
        return ["yes" if value.value_boolean else "no"]
    if value.value_text is not None:
        return [value.value_text]
    return []


def _numeric_stats(numbers: list[float]) -> NumericStats | None:
    if not numbers:
        return None
    return NumericStats(
        min=min(numbers),
        max=max(numbers),
        avg=statistics.fmean(numbers),
        median=statistics.median(numbers),
    )


def get_field_analytics(db: Session, form: FormDefinition) -> list[FieldAnalytics]:
    """
    Per-field response counts, value distributions and numeric summaries.

    Counts every stored answer, drafts included. Distributions cover
    selection fields (each chosen option counts once) and keep the
    ``DISTRIBUTION_LIMIT`` most common values; numeric summaries cover fields
    stored as numbers.
    """
    by_field: dict[str, list[SubmissionValue]] = defaultdict(list)
    for value in db.query(SubmissionValue).filter(SubmissionValue.form_id == form.id):
        by_field[value.field_id].append(value)

    analytics: list[FieldAnalytics] = []
    for form_field in sorted(form.fields, key=lambda f: f.order):
        if form_field.type in DISPLAY_FIELD_TYPES:
            continue
        values = by_field.get(form_field.id, [])
        entry = FieldAnalytics(
            field_id=form_field.id,
            field_label=form_field.label,
            field_type=form_field.type,
            total_responses=len(values),
        )

        if form_field.type in CATEGORICAL_FIELD_TYPES:
            counter = Counter(item for value in values for item in _categories(value))
            top = counter.most_common(DISTRIBUTION_LIMIT)
            entry.unique_values = len(counter)
            entry.distribution = [ValueCount(value=item, count=count) for item, count in top]
            entry.most_common_value = top[0][0] if top else None

        if form_field.type in NUMBER_SLOT_TYPES:
            entry.numeric_stats = _numeric_stats(
                [value.value_number for value in values if value.value_number is not None]
            )

        analytics.append(entry)
    return analytics
