"""Tests for submissions: creation, drafts, auto-save, filtering and export."""

import asyncio
import csv
import io
import json
from datetime import datetime

import pytest
from openpyxl import load_workbook

from formengine.core.exceptions import FieldValidationError, FormNotAcceptingSubmissionsError
from formengine.db.enums import SubmissionStatus
from formengine.db.models import SubmissionValue
from formengine.db.session import SessionLocal
from formengine.schemas.forms import ConditionalCondition, ConditionalRule, FormAccessControl
from formengine.schemas.submissions import FilterCondition, FilterGroup
from formengine.services import form_service
from formengine.services import form_submission_service as submissions
from formengine.services.form_serialization import deserialize
from formengine.services.submission_export_service import export_filename, export_submissions
from formengine.services.submission_query_service import filter_submissions
from tests.factories import create_published_form, make_field, make_form


@pytest.fixture
def form_row(db, company_id, user_id, contact_fields):
    return create_published_form(db, company_id, user_id, contact_fields)


# =============================================================================
# Create / update / delete
# =============================================================================


def test_create_completed_submission(db, form_row, user_id):
    answers = {"name": "Jane", "email": "jane@example.com", "age": 34, "plan": "pro"}

    submission = submissions.create_submission(db, form_row, answers, submitted_by=user_id)

    assert submission.status == SubmissionStatus.COMPLETED.value
    assert submission.submitted_at is not None
    assert submission.form_version == 1
    assert submissions.get_submission_answers(submission) == {
        "name": "Jane",
        "email": "jane@example.com",
        "age": 34.0,
        "plan": "pro",
    }
    db.refresh(form_row)
    assert deserialize(form_row).metadata.response_count == 1


def test_invalid_completed_submission_is_rejected(db, form_row):
    with pytest.raises(FieldValidationError) as exc_info:
        submissions.create_submission(db, form_row, {"email": "nope"})

    assert exc_info.value.errors == {
        "name": "Name is required",
        "email": "Please enter a valid email address",
    }
    assert db.query(SubmissionValue).count() == 0


def test_hidden_required_field_is_not_needed(db, company_id, user_id):
    fields = [
        make_field("radio", "kind", options=[{"label": "Personal", "value": "personal"}, {"label": "Business", "value": "business"}]),
        make_field("short_text", "company", label="Company", required=True),
    ]
    rules = [
        ConditionalRule(
            action="hide",
            target_field_id="company",
            conditions=[ConditionalCondition(field_id="kind", operator="equals", value="personal")],
        )
    ]
    row = create_published_form(db, company_id, user_id, fields, rules=rules)

    submission = submissions.create_submission(db, row, {"kind": "personal"})

    assert submissions.get_submission_answers(submission) == {"kind": "personal"}


def test_draft_form_does_not_accept_submissions(db, company_id, user_id, contact_fields):
    form = form_service.create_form(db, company_id, user_id, name="Draft", fields=contact_fields)
    row = form_service.get_form_row(db, company_id, form.id)

    with pytest.raises(FormNotAcceptingSubmissionsError):
        submissions.create_submission(db, row, {"name": "Jo", "email": "jo@x.com"})


def test_submission_cap(db, company_id, user_id, contact_fields):
    row = create_published_form(
        db, company_id, user_id, contact_fields, access_control=FormAccessControl(max_submissions=1)
    )
    submissions.create_submission(db, row, {"name": "Jo", "email": "jo@x.com"})

    with pytest.raises(FormNotAcceptingSubmissionsError, match="maximum limit of 1"):
        submissions.create_submission(db, row, {"name": "Al", "email": "al@x.com"})


def test_drafts_skip_validation_until_completed(db, form_row):
    draft = submissions.create_submission(
        db, form_row, {"email": "half-typed"}, status=SubmissionStatus.DRAFT
    )
    assert draft.submitted_at is None

    with pytest.raises(FieldValidationError):
        submissions.update_draft_submission(db, draft, form_row, {"email": "half-typed"}, complete=True)

    completed = submissions.update_draft_submission(
        db, draft, form_row, {"name": "Jo", "email": "jo@x.com"}, complete=True
    )
    assert completed.status == SubmissionStatus.COMPLETED.value
    assert submissions.get_submission_answers(completed) == {"name": "Jo", "email": "jo@x.com"}
    assert db.query(SubmissionValue).count() == 2

    with pytest.raises(ValueError, match="Only draft submissions"):
        submissions.update_draft_submission(db, completed, form_row, {})


def test_delete_submission_removes_values_and_recounts(db, form_row):
    submission = submissions.create_submission(db, form_row, {"name": "Jo", "email": "jo@x.com"})

    submissions.delete_submission(db, submission, form_row)

    assert db.query(SubmissionValue).count() == 0
    db.refresh(form_row)
    assert deserialize(form_row).metadata.response_count == 0


# =============================================================================
# Auto-save
# =============================================================================


async def test_auto_saver_saves_latest_snapshot_only_when_dirty():
    saved = []

    async def save(answers):
        saved.append(answers)

    saver = submissions.AutoSaver(save, interval=60)
    assert await saver.save_now() is False

    saver.update({"name": "J"})
    saver.update({"name": "Jo"})
    assert await saver.save_now() is True
    assert saved == [{"name": "Jo"}]
    assert not saver.dirty
    assert saver.last_saved_at is not None


async def test_auto_saver_failure_is_retried():
    attempts = []

    async def flaky(answers):
        attempts.append(answers)
        if len(attempts) == 1:
            raise ConnectionError("database unavailable")

    saver = submissions.AutoSaver(flaky, interval=60)
    saver.update({"name": "Jo"})

    assert await saver.save_now() is False
    assert saver.dirty
    assert saver.failure_count == 1
    assert await saver.save_now() is True
    assert len(attempts) == 2


async def test_auto_saver_background_task():
    saved = []

    async def save(answers):
        saved.append(answers)

    saver = submissions.AutoSaver(save, interval=0.01)
    saver.start()
    assert saver.running
    saver.update({"name": "Jo"})
    await asyncio.sleep(0.05)
    saver.update({"name": "Joe"})
    await saver.stop()

    assert not saver.running
    assert saved[0] == {"name": "Jo"}
    assert saved[-1] == {"name": "Joe"}


async def test_draft_saver_writes_through_own_session(db, form_row, company_id):
    draft = submissions.create_submission(db, form_row, {}, status=SubmissionStatus.DRAFT)
    save = submissions.make_draft_saver(SessionLocal, company_id, draft.id)

    await save({"name": "Jo", "age": 5})

    db.expire_all()
    stored = submissions.get_submission(db, company_id, draft.id)
    assert submissions.get_submission_answers(stored) == {"name": "Jo", "age": 5.0}


# =============================================================================
# Filtering
# =============================================================================


@pytest.fixture
def people(db, form_row):
    rows = [
        {"name": "Ann", "email": "ann@x.com", "age": 25, "plan": "basic"},
        {"name": "Ben", "email": "ben@x.com", "age": 41, "plan": "pro"},
        {"name": "Cat", "email": "cat@x.com"},
    ]
    return {answers["name"]: submissions.create_submission(db, form_row, answers).id for answers in rows}


def _names(db, form_row, *conditions, logic="AND"):
    group = FilterGroup(conditions=[FilterCondition(**c) for c in conditions], logic_operator=logic)
    found = filter_submissions(db, deserialize(form_row), group)
    return sorted(submissions.get_submission_answers(s)["name"] for s in found)


def test_filter_by_number(db, form_row, people):
    assert _names(db, form_row, {"field_id": "age", "operator": "greater_than", "value": 30}) == ["Ben"]
    assert _names(db, form_row, {"field_id": "age", "operator": "between", "value": [20, 30]}) == ["Ann"]


def test_filter_not_equals_includes_unanswered(db, form_row, people):
    assert _names(db, form_row, {"field_id": "plan", "operator": "not_equals", "value": "pro"}) == ["Ann", "Cat"]


def test_filter_emptiness_and_text(db, form_row, people):
    assert _names(db, form_row, {"field_id": "plan", "operator": "is_empty"}) == ["Cat"]
    assert _names(db, form_row, {"field_id": "email", "operator": "contains", "value": "BEN@"}) == ["Ben"]


def test_filter_or_group(db, form_row, people):
    names = _names(
        db,
        form_row,
        {"field_id": "plan", "operator": "equals", "value": "basic"},
        {"field_id": "age", "operator": "is_empty"},
        logic="OR",
    )
    assert names == ["Ann", "Cat"]


def test_filter_list_answers(db, company_id, user_id):
    fields = [
        make_field("short_text", "name"),
        make_field("multi_select", "tags", options=[{"label": t, "value": t} for t in ("red", "green", "blue")]),
    ]
    row = create_published_form(db, company_id, user_id, fields)
    submissions.create_submission(db, row, {"name": "Ann", "tags": ["red", "blue"]})
    submissions.create_submission(db, row, {"name": "Ben", "tags": ["green"]})

    assert _names(db, row, {"field_id": "tags", "operator": "contains", "value": "blue"}) == ["Ann"]
    assert _names(db, row, {"field_id": "tags", "operator": "equals", "value": ["red", "blue"]}) == ["Ann"]
    assert _names(db, row, {"field_id": "tags", "operator": "equals", "value": "blue"}) == []
    assert _names(db, row, {"field_id": "tags", "operator": "equals", "value": "green"}) == ["Ben"]
    assert _names(db, row, {"field_id": "tags", "operator": "not_equals", "value": ["green"]}) == ["Ann"]
    with pytest.raises(ValueError):
        _names(db, row, {"field_id": "tags", "operator": "greater_than", "value": 1})


def test_filter_tick_box_with_yes_no_text(db, company_id, user_id):
    fields = [
        make_field("short_text", "name"),
        make_field("checkbox", "consent", options=[{"label": "I agree", "value": "agree"}]),
    ]
    row = create_published_form(db, company_id, user_id, fields)
    submissions.create_submission(db, row, {"name": "Ann", "consent": True})
    submissions.create_submission(db, row, {"name": "Ben", "consent": ["agree"]})
    submissions.create_submission(db, row, {"name": "Cat"})

    assert _names(db, row, {"field_id": "consent", "operator": "equals", "value": "true"}) == ["Ann"]
    assert _names(db, row, {"field_id": "consent", "operator": "equals", "value": True}) == ["Ann"]
    assert _names(db, row, {"field_id": "consent", "operator": "equals", "value": "agree"}) == ["Ben"]


def test_filter_rejects_unknown_field_and_bad_operand(db, form_row, people):
    with pytest.raises(ValueError, match="Unknown field 'ghost'"):
        _names(db, form_row, {"field_id": "ghost", "operator": "equals", "value": 1})
    with pytest.raises(ValueError, match="is not a number"):
        _names(db, form_row, {"field_id": "age", "operator": "greater_than", "value": "old"})


# =============================================================================
# Export
# =============================================================================


def test_export_csv(db, form_row, people):
    form = deserialize(form_row)
    rows = submissions.list_submissions(db, form.id)

    content = export_submissions(form, rows, "csv").decode("utf-8")

    reader = list(csv.reader(io.StringIO(content)))
    assert reader[0] == ["Submission ID", "Status", "Submitted At", "Name", "Email", "Age", "Plan"]
    by_name = {line[3]: line for line in reader[1:]}
    assert by_name["Ben"][5:] == ["41.0", "pro"]
    assert by_name["Cat"][5:] == ["", ""]


def test_export_json_and_xlsx(db, form_row, people):
    form = deserialize(form_row)
    rows = submissions.list_submissions(db, form.id)

    payload = json.loads(export_submissions(form, rows, "json"))
    assert {item["answers"]["name"] for item in payload} == {"Ann", "Ben", "Cat"}

    workbook = load_workbook(io.BytesIO(export_submissions(form, rows, "xlsx")))
    sheet = workbook["Submissions"]
    assert sheet.max_row == 4
    assert sheet.cell(row=1, column=4).value == "Name"


def test_export_rejects_unknown_format(db, form_row):
    with pytest.raises(ValueError, match="Unsupported export format"):
        export_submissions(deserialize(form_row), [], "pdf")


def test_export_filename():
    form = make_form([], name="Customer Feedback")
    assert export_filename(form, "csv", now=datetime(2024, 5, 1, 9, 30)) == "customer_feedback_submissions_20240501_093000.csv"
