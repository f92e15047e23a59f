"""Tests for import jobs: state machine, runner, cancellation and reports."""

import csv
import io
from datetime import datetime

import pytest

from formengine.core.exceptions import (
    ColumnMappingError,
    FormNotAcceptingSubmissionsError,
    ImportJobConflictError,
    InvalidTransitionError,
    ParseError,
)
from formengine.db.enums import ImportJobStatus
from formengine.db.models import FormSubmission, ImportJob
from formengine.jobs.handlers.imports import process_form_import
from formengine.db.session import SessionLocal
from formengine.schemas.forms import ConditionalCondition, ConditionalRule
from formengine.schemas.imports import CreateFormFromImport, RowError
from formengine.services import form_service, import_service, storage_client
from formengine.services.form_serialization import deserialize
from tests.factories import create_published_form, make_field

MAPPING = {"Name": "name", "Email": "email", "Age": "age"}


def _people_csv(count, bad_rows=()):
    lines = ["Name,Email,Age"]
    for number in range(1, count + 1):
        age = "forty-two" if number in bad_rows else str(20 + number % 50)
        lines.append(f"Person {number},person{number}@example.com,{age}")
    return ("\n".join(lines) + "\n").encode("utf-8")


@pytest.fixture
def form_row(db, company_id, user_id, contact_fields):
    return create_published_form(db, company_id, user_id, contact_fields)


@pytest.fixture
def make_job(db, company_id, user_id, form_row):
    def _make(content, file_name="people.csv", mapping=MAPPING, strict_mode=False):
        file_id = storage_client.build_file_id(company_id, file_name)
        storage_client.store_file(file_id, content)
        return import_service.create_import_job(
            db,
            company_id=company_id,
            user_id=user_id,
            form_row=form_row,
            file_id=file_id,
            file_name=file_name,
            column_mapping=mapping,
            strict_mode=strict_mode,
        )

    return _make


def _submission_count(db, form_id):
    return db.query(FormSubmission).filter(FormSubmission.form_id == form_id).count()


# =============================================================================
# State machine
# =============================================================================


def test_transitions_are_one_way(db, make_job):
    job = make_job(_people_csv(1))

    import_service.transition(job, ImportJobStatus.PARSING)
    assert job.started_at is not None
    with pytest.raises(InvalidTransitionError):
        import_service.transition(job, ImportJobStatus.PENDING)

    import_service.transition(job, ImportJobStatus.FAILED, error="boom")
    assert job.completed_at is not None
    assert job.error == "boom"
    with pytest.raises(InvalidTransitionError):
        import_service.transition(job, ImportJobStatus.CANCELLED)


def test_cannot_skip_states(db, make_job):
    job = make_job(_people_csv(1))
    with pytest.raises(InvalidTransitionError, match="from pending to importing"):
        import_service.transition(job, ImportJobStatus.IMPORTING)


# =============================================================================
# Job creation
# =============================================================================


def test_one_active_job_per_form(db, make_job):
    make_job(_people_csv(1))
    with pytest.raises(ImportJobConflictError):
        make_job(_people_csv(1))


def test_invalid_mapping_is_rejected(db, make_job):
    with pytest.raises(ColumnMappingError) as exc_info:
        make_job(_people_csv(1), mapping={"Name": "ghost"})
    assert exc_info.value.errors == ["Column 'Name' maps to unknown field 'ghost'"]


def test_draft_form_cannot_be_imported_into(db, company_id, user_id, contact_fields):
    form = form_service.create_form(db, company_id, user_id, name="Draft", fields=contact_fields)
    row = form_service.get_form_row(db, company_id, form.id)

    with pytest.raises(FormNotAcceptingSubmissionsError):
        import_service.create_import_job(
            db, company_id, user_id, row, "imports/x/y.csv", "y.csv", MAPPING
        )


# =============================================================================
# Runner
# =============================================================================


async def test_bad_row_does_not_stop_the_import(db, make_job, form_row):
    job = make_job(_people_csv(100, bad_rows={42}))

    await import_service.ImportJobRunner(db, job, batch_size=10).run()

    assert job.status == ImportJobStatus.COMPLETED.value
    assert job.total_rows == 100
    assert job.processed_rows == 100
    assert job.success_count == 99
    assert job.error_count == 1
    errors = import_service.job_errors(job)
    assert len(errors) == 1
    assert errors[0].row == 42
    assert errors[0].field_id == "age"
    assert _submission_count(db, form_row.id) == 99
    db.refresh(form_row)
    assert deserialize(form_row).metadata.response_count == 99

    progress = import_service.get_progress(job)
    assert progress.percentage == 100.0
    assert progress.estimated_seconds_remaining is None


async def test_cancel_mid_import_keeps_created_rows(db, make_job, form_row):
    job = make_job(_people_csv(100))
    runner = None

    def stop_after_thirty(current):
        if current.processed_rows >= 30:
            runner.cancel()

    runner = import_service.ImportJobRunner(db, job, batch_size=10, on_batch=stop_after_thirty)
    await runner.run()

    assert job.status == ImportJobStatus.CANCELLED.value
    assert job.processed_rows == 30
    assert job.success_count == 30
    assert job.completed_at is not None
    assert _submission_count(db, form_row.id) == 30


async def test_persisted_cancellation_is_honoured(db, make_job, form_row):
    job = make_job(_people_csv(50))

    async def cancel_through_service(current):
        if current.processed_rows >= 20:
            import_service.cancel_import_job(db, current)

    await import_service.ImportJobRunner(db, job, batch_size=10, on_batch=cancel_through_service).run()

    assert job.status == ImportJobStatus.CANCELLED.value
    assert job.processed_rows == 20
    assert _submission_count(db, form_row.id) == 20


async def test_cancel_from_another_session_during_last_batch(db, make_job, form_row):
    job = make_job(_people_csv(2))

    def cancel_elsewhere(current):
        if current.processed_rows == 2:
            other = SessionLocal()
            try:
                import_service.cancel_import_job(other, other.get(ImportJob, current.id))
            finally:
                other.close()

    await import_service.ImportJobRunner(db, job, batch_size=1, on_batch=cancel_elsewhere).run()

    fresh = SessionLocal()
    try:
        stored = fresh.get(ImportJob, job.id)
        assert stored.status == ImportJobStatus.CANCELLED.value
        assert stored.processed_rows == 2
    finally:
        fresh.close()
    assert _submission_count(db, form_row.id) == 2


async def test_unmapped_required_field_fails_each_row(db, make_job, form_row):
    job = make_job(b"Name,Age\nA,30\nB,31\n", mapping={"Name": "name", "Age": "age"})

    await import_service.ImportJobRunner(db, job).run()

    assert job.status == ImportJobStatus.COMPLETED.value
    assert job.success_count == 0
    assert job.error_count == 2
    errors = import_service.job_errors(job)
    assert [(e.row, e.field_id, e.error) for e in errors] == [
        (1, "email", "Email is required"),
        (2, "email", "Email is required"),
    ]
    assert _submission_count(db, form_row.id) == 0


async def test_required_field_hidden_by_rule_is_not_enforced(db, company_id, user_id):
    fields = [
        make_field(
            "dropdown",
            "kind",
            label="Kind",
            required=True,
            options=[{"label": "Person", "value": "person"}, {"label": "Business", "value": "business"}],
        ),
        make_field("short_text", "company", label="Company", required=True),
    ]
    rules = [
        ConditionalRule(
            action="hide",
            target_field_id="company",
            conditions=[ConditionalCondition(field_id="kind", operator="equals", value="person")],
        )
    ]
    row = create_published_form(db, company_id, user_id, fields, rules=rules)
    file_id = storage_client.build_file_id(company_id, "kinds.csv")
    storage_client.store_file(file_id, b"Kind,Company\nperson,\nbusiness,\n")
    job = import_service.create_import_job(
        db, company_id, user_id, row, file_id, "kinds.csv", {"Kind": "kind", "Company": "company"}
    )

    await import_service.ImportJobRunner(db, job).run()

    assert job.status == ImportJobStatus.COMPLETED.value
    assert job.success_count == 1
    assert [(e.row, e.field_id) for e in import_service.job_errors(job)] == [(2, "company")]


async def test_strict_mode_imports_nothing(db, make_job, form_row):
    job = make_job(_people_csv(20, bad_rows={3, 7}), strict_mode=True)

    await import_service.ImportJobRunner(db, job).run()

    assert job.status == ImportJobStatus.FAILED.value
    assert job.error == "Strict mode: 2 of 20 rows failed validation; nothing was imported"
    assert job.error_count == 2
    assert [e.row for e in import_service.job_errors(job)] == [3, 7]
    assert _submission_count(db, form_row.id) == 0


async def test_missing_file_fails_job(db, make_job):
    job = make_job(_people_csv(5))
    storage_client.delete_file(job.file_id)

    await import_service.ImportJobRunner(db, job).run()

    assert job.status == ImportJobStatus.FAILED.value
    assert "no longer available" in job.error


async def test_unparseable_file_fails_job(db, make_job):
    job = make_job(b"Name,Name\nA,B\n")

    await import_service.ImportJobRunner(db, job).run()

    assert job.status == ImportJobStatus.FAILED.value
    assert job.error == "Duplicate column names found: Name"


async def test_handler_runs_pending_jobs_only(db, make_job):
    job = make_job(_people_csv(3))

    await process_form_import(db, job)
    assert job.status == ImportJobStatus.COMPLETED.value
    assert job.success_count == 3

    await process_form_import(db, job)
    assert job.success_count == 3


async def test_cancelled_before_start_never_runs(db, make_job, form_row):
    job = make_job(_people_csv(3))
    import_service.cancel_import_job(db, job)

    await process_form_import(db, job)

    assert job.status == ImportJobStatus.CANCELLED.value
    assert _submission_count(db, form_row.id) == 0


# =============================================================================
# Progress & reports
# =============================================================================


def test_progress_snapshot_for_running_job(db, make_job):
    job = make_job(_people_csv(1))
    job.status = ImportJobStatus.IMPORTING.value
    job.total_rows = 1000
    job.processed_rows = 250

    progress = import_service.get_progress(job)

    assert progress.percentage == 25.0
    assert progress.estimated_seconds_remaining == 8


def test_error_report_csv():
    errors = [
        RowError(row=4, field="Email", field_type="email", value="=cmd", error="Invalid email address: =cmd", suggestion="Format: user@example.com"),
        RowError(row=9, error="Failed to create submission: boom"),
    ]

    content = import_service.generate_error_report(errors)

    lines = list(csv.reader(io.StringIO(content)))
    assert lines[0] == import_service.ERROR_REPORT_HEADERS
    assert lines[1] == ["4", "Email", "email", "'=cmd", "Invalid email address: =cmd", "Format: user@example.com"]
    assert lines[2] == ["9", "", "", "", "Failed to create submission: boom", ""]


def test_error_report_filename():
    stamp = datetime(2024, 1, 2, 3, 4, 5)
    assert import_service.error_report_filename("Event Sign-ups", stamp) == "import_errors_event_sign_ups_20240102_030405.csv"
    assert import_service.error_report_filename(None, stamp) == "import_errors_import_20240102_030405.csv"


def test_import_result_summary(db, make_job):
    job = make_job(_people_csv(1))
    job.errors = [RowError(row=2, field="Age", error="Invalid number: x").model_dump(mode="json")]
    job.error_count = 1

    result = import_service.build_import_result(job)

    assert result.error_summary == "Row 2: Age: Invalid number: x"


# =============================================================================
# Auto-import
# =============================================================================


async def test_create_form_from_import(db, company_id, user_id):
    content = b"Full Name,Email,Plan,Internal\nJane,jane@x.com,pro,a\nBob,bob@x.com,basic,b\nAmy,amy@x.com,pro,c\nTom,tom@x.com,pro,d\n"
    file_id = storage_client.build_file_id(company_id, "signups.csv")
    storage_client.store_file(file_id, content)
    request = CreateFormFromImport(
        file_id=file_id,
        file_name="signups.csv",
        column_overrides={"Internal": None, "Full Name": "name"},
        field_type_overrides={"Plan": "radio"},
    )

    form, job = await import_service.create_form_from_import(db, company_id, user_id, request)

    assert form.name == "Signups"
    assert form.status == "published"
    assert [(f.id, f.type) for f in form.fields] == [("name", "short_text"), ("email", "email"), ("plan", "radio")]
    assert form.steps[0].fields == ["name", "email", "plan"]
    assert job.column_mapping == {"Full Name": "name", "Email": "email", "Plan": "plan"}

    await import_service.ImportJobRunner(db, job).run()
    assert job.status == ImportJobStatus.COMPLETED.value
    assert job.success_count == 4


async def test_create_form_from_missing_upload(db, company_id, user_id):
    request = CreateFormFromImport(file_id=f"imports/{company_id}/nope/x.csv", file_name="x.csv")
    with pytest.raises(ParseError, match="was not found"):
        await import_service.create_form_from_import(db, company_id, user_id, request)
    assert db.query(ImportJob).count() == 0
