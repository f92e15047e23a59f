"""HTTP tests for the forms and imports routers."""

import csv
import io

import pytest
from httpx import AsyncClient

CONTACT_FIELDS = [
    {"id": "name", "type": "short_text", "label": "Name", "required": True},
    {"id": "email", "type": "email", "label": "Email", "required": True},
    {"id": "age", "type": "number", "label": "Age", "min": 0, "max": 130},
]


async def _published_form(client: AsyncClient, headers: dict) -> dict:
    created = await client.post("/forms", json={"name": "Contact", "fields": CONTACT_FIELDS}, headers=headers)
    assert created.status_code == 201
    form_id = created.json()["id"]
    published = await client.post(f"/forms/{form_id}/publish", headers=headers)
    assert published.status_code == 200
    return published.json()


async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


async def test_requires_company_header(client: AsyncClient):
    response = await client.get("/forms")
    assert response.status_code == 401


# =============================================================================
# Forms
# =============================================================================


async def test_publish_rejects_invalid_schema_until_fixed(client: AsyncClient, auth_headers):
    created = await client.post(
        "/forms",
        json={"name": "Survey", "fields": [{"id": "color", "type": "dropdown", "label": "Color"}]},
        headers=auth_headers,
    )
    form_id = created.json()["id"]
    assert created.json()["status"] == "draft"

    rejected = await client.post(f"/forms/{form_id}/publish", headers=auth_headers)
    assert rejected.status_code == 422
    assert rejected.json()["detail"]["errors"] == ["Field 'Color' must have at least one option"]

    fixed_fields = [{"id": "color", "type": "dropdown", "label": "Color", "options": [{"label": "Red", "value": "red"}]}]
    patched = await client.patch(f"/forms/{form_id}", json={"fields": fixed_fields}, headers=auth_headers)
    assert patched.status_code == 200
    assert patched.json()["version"] == 2

    published = await client.post(f"/forms/{form_id}/publish", headers=auth_headers)
    assert published.status_code == 200
    assert published.json()["status"] == "published"

    listed = await client.get("/forms", headers=auth_headers)
    assert [(f["id"], f["status"]) for f in listed.json()] == [(form_id, "published")]


async def test_forms_are_scoped_to_company(client: AsyncClient, auth_headers):
    form = await _published_form(client, auth_headers)
    other = {**auth_headers, "X-Company-Id": "another-company"}

    response = await client.get(f"/forms/{form['id']}", headers=other)
    assert response.status_code == 404


async def test_logic_and_step_validation(client: AsyncClient, auth_headers):
    form = await _published_form(client, auth_headers)
    rules = [
        {
            "action": "show",
            "target_field_id": "age",
            "conditions": [{"field_id": "name", "operator": "is_not_empty"}],
        }
    ]
    await client.patch(f"/forms/{form['id']}", json={"conditional_logic": rules}, headers=auth_headers)

    states = await client.post(f"/forms/{form['id']}/logic/evaluate", json={"answers": {}}, headers=auth_headers)
    assert states.json()["age"]["visible"] is False

    step = await client.post(f"/forms/{form['id']}/steps/0/validate", json={"answers": {"name": "Jo"}}, headers=auth_headers)
    assert step.json() == {"valid": False, "errors": {"email": "Email is required"}, "next_step_index": 0}

    missing = await client.post(f"/forms/{form['id']}/steps/5/validate", json={"answers": {}}, headers=auth_headers)
    assert missing.status_code == 404


# =============================================================================
# Submissions
# =============================================================================


async def test_submission_lifecycle(client: AsyncClient, auth_headers):
    form = await _published_form(client, auth_headers)
    base = f"/forms/{form['id']}/submissions"

    invalid = await client.post(base, json={"answers": {"email": "x"}}, headers=auth_headers)
    assert invalid.status_code == 422
    assert set(invalid.json()["detail"]["errors"]) == {"name", "email"}

    created = await client.post(base, json={"answers": {"name": "Jo", "email": "jo@x.com", "age": 30}}, headers=auth_headers)
    assert created.status_code == 201
    submission = created.json()
    assert submission["answers"] == {"name": "Jo", "email": "jo@x.com", "age": 30.0}
    assert submission["submitted_by"] == auth_headers["X-User-Id"]

    found = await client.post(
        f"{base}/search",
        json={"filters": {"conditions": [{"field_id": "age", "operator": "greater_than", "value": 18}]}},
        headers=auth_headers,
    )
    assert [s["id"] for s in found.json()] == [submission["id"]]

    bad_search = await client.post(
        f"{base}/search",
        json={"filters": {"conditions": [{"field_id": "ghost", "operator": "equals", "value": 1}]}},
        headers=auth_headers,
    )
    assert bad_search.status_code == 400

    exported = await client.get(f"{base}/export", params={"format": "csv"}, headers=auth_headers)
    assert exported.status_code == 200
    assert exported.headers["content-type"].startswith("text/csv")
    assert "contact_submissions_" in exported.headers["content-disposition"]
    rows = list(csv.reader(io.StringIO(exported.text)))
    assert rows[0][3:] == ["Name", "Email", "Age"]
    assert rows[1][3:] == ["Jo", "jo@x.com", "30.0"]

    fetched = await client.get(f"{base}/{submission['id']}", headers=auth_headers)
    assert fetched.json()["id"] == submission["id"]

    deleted = await client.delete(f"{base}/{submission['id']}", headers=auth_headers)
    assert deleted.status_code == 204
    gone = await client.get(f"{base}/{submission['id']}", headers=auth_headers)
    assert gone.status_code == 404


async def test_draft_submission_can_be_completed(client: AsyncClient, auth_headers):
    form = await _published_form(client, auth_headers)
    base = f"/forms/{form['id']}/submissions"

    draft = await client.post(base, json={"answers": {"name": "Jo"}, "status": "draft"}, headers=auth_headers)
    assert draft.status_code == 201
    draft_id = draft.json()["id"]

    completed = await client.patch(
        f"{base}/{draft_id}",
        params={"complete": "true"},
        json={"answers": {"name": "Jo", "email": "jo@x.com"}},
        headers=auth_headers,
    )
    assert completed.status_code == 200
    assert completed.json()["status"] == "completed"

    again = await client.patch(f"{base}/{draft_id}", json={"answers": {}}, headers=auth_headers)
    assert again.status_code == 409


async def test_form_analytics_endpoints(client: AsyncClient, auth_headers):
    form = await _published_form(client, auth_headers)
    base = f"/forms/{form['id']}"
    for answers in ({"name": "Jo", "email": "jo@x.com", "age": 30}, {"name": "Al", "email": "al@x.com", "age": 40}):
        created = await client.post(f"{base}/submissions", json={"answers": answers}, headers=auth_headers)
        assert created.status_code == 201
    await client.post(f"{base}/submissions", json={"answers": {"name": "Dee"}, "status": "draft"}, headers=auth_headers)

    summary = await client.get(f"{base}/analytics", params={"days": 7}, headers=auth_headers)
    assert summary.status_code == 200
    body = summary.json()
    assert (body["total_submissions"], body["completed_submissions"], body["draft_submissions"]) == (3, 2, 1)
    assert body["conversion_rate"] == 66.7
    assert len(body["submissions_by_date"]) == 7

    fields = (await client.get(f"{base}/analytics/fields", headers=auth_headers)).json()
    age = next(entry for entry in fields if entry["field_id"] == "age")
    assert age["total_responses"] == 2
    assert age["numeric_stats"]["avg"] == 35.0

    missing = await client.get("/forms/nope/analytics", headers=auth_headers)
    assert missing.status_code == 404


async def test_draft_form_rejects_submissions(client: AsyncClient, auth_headers):
    created = await client.post("/forms", json={"name": "Draft", "fields": CONTACT_FIELDS}, headers=auth_headers)

    response = await client.post(
        f"/forms/{created.json()['id']}/submissions",
        json={"answers": {"name": "Jo", "email": "jo@x.com"}},
        headers=auth_headers,
    )
    assert response.status_code == 409


# =============================================================================
# Imports
# =============================================================================

PEOPLE_CSV = b"Name,Email,Age\nJane,jane@x.com,34\nBob,bob@x.com,old\nAmy,amy@x.com,29\n"


async def _upload(client: AsyncClient, headers: dict, content: bytes, name: str = "people.csv", form_id=None):
    data = {"form_id": form_id} if form_id else None
    return await client.post(
        "/imports/upload",
        files={"file": (name, content, "text/csv")},
        data=data,
        headers=headers,
    )


async def test_upload_analyzes_file(client: AsyncClient, auth_headers):
    response = await _upload(client, auth_headers, PEOPLE_CSV)

    assert response.status_code == 200
    body = response.json()
    assert body["file_id"].startswith(f"imports/{auth_headers['X-Company-Id']}/")
    assert body["analysis"]["row_count"] == 3
    assert [f["type"] for f in body["analysis"]["detected_fields"]] == ["short_text", "email", "number"]
    assert body["mapping"] is None


async def test_upload_rejects_bad_files(client: AsyncClient, auth_headers):
    unsupported = await _upload(client, auth_headers, b"%PDF", name="report.pdf")
    assert unsupported.status_code == 400

    empty = await _upload(client, auth_headers, b"", name="empty.csv")
    assert empty.status_code == 400


async def test_import_into_existing_form(client: AsyncClient, auth_headers):
    form = await _published_form(client, auth_headers)
    upload = (await _upload(client, auth_headers, PEOPLE_CSV, form_id=form["id"])).json()
    assert upload["mapping"]["mapping"] == {"Name": "name", "Email": "email", "Age": "age"}
    assert upload["validation"]["invalid_rows"] == 1

    created = await client.post(
        "/imports/jobs",
        json={
            "form_id": form["id"],
            "file_id": upload["file_id"],
            "file_name": upload["file_name"],
            "column_mapping": upload["mapping"]["mapping"],
        },
        headers=auth_headers,
    )
    assert created.status_code == 202
    job_id = created.json()["job_id"]

    progress = (await client.get(f"/imports/jobs/{job_id}", headers=auth_headers)).json()
    assert progress["status"] == "completed"
    assert (progress["success_count"], progress["error_count"]) == (2, 1)

    result = (await client.get(f"/imports/jobs/{job_id}/result", headers=auth_headers)).json()
    assert [e["row"] for e in result["errors"]] == [2]

    report = await client.get(f"/imports/jobs/{job_id}/errors.csv", headers=auth_headers)
    assert report.status_code == 200
    assert "import_errors_contact_" in report.headers["content-disposition"]
    lines = list(csv.reader(io.StringIO(report.text)))
    assert lines[1][:4] == ["2", "Age", "number", "old"]

    cancel = await client.post(f"/imports/jobs/{job_id}/cancel", headers=auth_headers)
    assert cancel.status_code == 409

    listed = (await client.get("/imports/jobs", params={"form_id": form["id"]}, headers=auth_headers)).json()
    assert [job["job_id"] for job in listed] == [job_id]


async def test_import_job_rejects_bad_mapping(client: AsyncClient, auth_headers):
    form = await _published_form(client, auth_headers)
    upload = (await _upload(client, auth_headers, PEOPLE_CSV)).json()

    response = await client.post(
        "/imports/jobs",
        json={
            "form_id": form["id"],
            "file_id": upload["file_id"],
            "file_name": "people.csv",
            "column_mapping": {"Name": "nickname"},
        },
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"]["errors"] == ["Column 'Name' maps to unknown field 'nickname'"]


async def test_create_form_from_file(client: AsyncClient, auth_headers):
    upload = (await _upload(client, auth_headers, PEOPLE_CSV, name="team_roster.csv")).json()

    response = await client.post(
        "/imports/from-file",
        json={
            "file_id": upload["file_id"],
            "file_name": upload["file_name"],
            "field_type_overrides": {"Age": "short_text"},
        },
        headers=auth_headers,
    )

    assert response.status_code == 202
    body = response.json()
    assert body["form_name"] == "Team Roster"

    progress = (await client.get(f"/imports/jobs/{body['job']['job_id']}", headers=auth_headers)).json()
    assert progress["status"] == "completed"
    assert progress["success_count"] == 3

    form = (await client.get(f"/forms/{body['form_id']}", headers=auth_headers)).json()
    assert form["status"] == "published"
    assert form["metadata"]["response_count"] == 3


async def test_unknown_job_is_404(client: AsyncClient, auth_headers):
    response = await client.get("/imports/jobs/does-not-exist", headers=auth_headers)
    assert response.status_code == 404
