"""Submission, EAV value and filter schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from formengine.db.enums import SubmissionStatus


class UserContext(BaseModel):
    """Caller identity, resolved outside this package. Read-only."""

    user_id: str | None = None
    company_id: str
    role: str = "member"
    email: str | None = None


class SubmissionValueData(BaseModel):
    """One typed EAV record. Exactly one ``value_*`` slot is set."""

    submission_id: str
    form_id: str | None = None
    company_id: str | None = None
    field_id: str
    field_label: str
    field_type: str

    value_text: str | None = None
    value_number: float | None = None
    value_boolean: bool | None = None
    value_date: str | None = None
    value_array: list[Any] | None = None
    value_file_ids: list[str] | None = None


class SubmissionCreate(BaseModel):
    answers: dict[str, Any] = Field(default_factory=dict)
    status: SubmissionStatus = SubmissionStatus.COMPLETED
    submitted_by_email: str | None = None
    is_anonymous: bool = False


class SubmissionUpdate(BaseModel):
    answers: dict[str, Any] = Field(default_factory=dict)


class SubmissionRead(BaseModel):
    id: str
    form_id: str
    form_version: int
    status: SubmissionStatus
    submitted_by: str | None = None
    submitted_by_email: str | None = None
    is_anonymous: bool
    started_at: datetime
    submitted_at: datetime | None = None
    last_saved_at: datetime
    answers: dict[str, Any]


FilterOperator = Literal[
    "equals",
    "not_equals",
    "contains",
    "greater_than",
    "less_than",
    "between",
    "is_empty",
    "is_not_empty",
]


class FilterCondition(BaseModel):
    field_id: str
    operator: FilterOperator
    value: Any = None


class FilterGroup(BaseModel):
    conditions: list[FilterCondition] = Field(default_factory=list)
    logic_operator: Literal["AND", "OR"] = "AND"


class SubmissionQuery(BaseModel):
    filters: FilterGroup = Field(default_factory=FilterGroup)
    status: SubmissionStatus | None = None
    limit: int = Field(100, ge=1, le=1000)
    offset: int = Field(0, ge=0)


# =============================================================================
# Analytics
# =============================================================================


class DailyCount(BaseModel):
    date: str
    count: int


class SubmissionAnalytics(BaseModel):
    total_submissions: int
    completed_submissions: int
    draft_submissions: int
    conversion_rate: float
    # Mean seconds from start to submit over completed submissions.
    average_completion_seconds: float | None = None
    submissions_by_date: list[DailyCount] = Field(default_factory=list)


class ValueCount(BaseModel):
    value: str
    count: int


class NumericStats(BaseModel):
    min: float
    max: float
    avg: float
    median: float


class FieldAnalytics(BaseModel):
    field_id: str
    field_label: str
    field_type: str
    total_responses: int
    unique_values: int | None = None
    distribution: list[ValueCount] | None = None
    most_common_value: str | None = None
    numeric_stats: NumericStats | None = None
