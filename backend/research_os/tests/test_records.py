import pytest

from research_os.errors import Conflict
from research_os.store import upsert_entity
from research_os.tests.conftest import add_member, create_project, create_user, user_with_headers

RECORD_CASES = [
    ("/api/tasks", {"title": "Prepare samples"}, True, {"status": "done"}),
    ("/api/notes", {"title": "Meeting notes", "content": "Agenda"}, True, {"content": "Minutes"}),
    ("/api/manuscripts", {"title": "Paper"}, False, {"status": "submitted"}),
    ("/api/experiments", {"title": "Run 1"}, False, {"results": "Positive"}),
    ("/api/files", {"filename": "data.csv", "bucket": "lab", "key": "raw/data.csv"}, False, {"filename": "d.csv"}),
    ("/api/grants", {"title": "Seed grant", "amount": 1000}, False, {"amount": 1500}),
    ("/api/scholarships", {"title": "Stipend", "amount": 200}, False, {"status": "paid"}),
]


@pytest.mark.parametrize("prefix,payload,needs_project,patch", RECORD_CASES)
def test_record_lifecycle(client, prefix, payload, needs_project, patch):
    _, headers = user_with_headers("Collaborator")
    body = dict(payload)
    if needs_project:
        body["project_id"] = create_project(client, headers)["id"]

    created = client.post(prefix, json=body, headers=headers)
    assert created.status_code == 200, created.text
    record = created.json()

    fetched = client.get(f"{prefix}/{record['id']}", headers=headers)
    assert fetched.status_code == 200

    updated = client.patch(f"{prefix}/{record['id']}", json=patch, headers=headers)
    assert updated.status_code == 200
    field, value = next(iter(patch.items()))
    assert updated.json()[field] == value

    archived = client.patch(f"{prefix}/{record['id']}", json={"archived": True}, headers=headers)
    assert archived.json()["archived_at"] is not None
    assert record["id"] not in {r["id"] for r in client.get(prefix, headers=headers).json()}
    assert record["id"] in {r["id"] for r in client.get(prefix, params={"includeArchived": 1}, headers=headers).json()}

    restored = client.post(f"{prefix}/{record['id']}/restore", headers=headers)
    assert restored.json()["archived_at"] is None

    versions = client.get(f"{prefix}/{record['id']}/versions", headers=headers).json()
    paths = [v["field_path"] for v in versions]
    assert paths.count("archived_at") == 2
    assert field in paths


def test_unknown_patch_fields_are_ignored_by_schema(client):
    _, headers = user_with_headers("Collaborator")
    grant = client.post("/api/grants", json={"title": "Strict"}, headers=headers).json()
    resp = client.patch(f"/api/grants/{grant['id']}", json={"id": "x", "created_at": "2020-01-01"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["id"] == grant["id"]


def test_records_filter_by_project(client):
    _, owner_headers = user_with_headers("Collaborator")
    member, member_headers = user_with_headers("Collaborator")
    _, outsider_headers = user_with_headers("Collaborator")
    _, admin_headers = user_with_headers("Owner")
    project = create_project(client, owner_headers, "Tasks")
    add_member(client, admin_headers, project["id"], member.id, "Viewer")
    task = client.post("/api/tasks", json={"project_id": project["id"], "title": "Visible"}, headers=owner_headers).json()

    seen = client.get("/api/tasks", params={"projectId": project["id"]}, headers=member_headers).json()
    assert [t["id"] for t in seen] == [task["id"]]
    assert task["id"] in {t["id"] for t in client.get("/api/tasks", headers=member_headers).json()}
    assert client.get("/api/tasks", params={"projectId": project["id"]}, headers=outsider_headers).status_code == 403
    assert task["id"] not in {t["id"] for t in client.get("/api/tasks", headers=outsider_headers).json()}

    resp = client.patch(f"/api/tasks/{task['id']}", json={"status": "done"}, headers=member_headers)
    assert resp.status_code == 403


def test_moving_record_requires_edit_on_target_project(client):
    _, headers = user_with_headers("Collaborator")
    _, other_headers = user_with_headers("Collaborator")
    foreign = create_project(client, other_headers, "Foreign")
    manuscript = client.post("/api/manuscripts", json={"title": "Draft"}, headers=headers).json()
    resp = client.patch(f"/api/manuscripts/{manuscript['id']}", json={"project_id": foreign["id"]}, headers=headers)
    assert resp.status_code == 403


def test_null_for_required_field_is_rejected(client):
    _, headers = user_with_headers("Collaborator")
    grant = client.post("/api/grants", json={"title": "Required"}, headers=headers).json()

    resp = client.patch(f"/api/grants/{grant['id']}", json={"title": None}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["kind"] == "InvalidArgument"
    assert client.get(f"/api/grants/{grant['id']}", headers=headers).json()["title"] == "Required"

    cleared = client.patch(f"/api/grants/{grant['id']}", json={"description": None}, headers=headers)
    assert cleared.status_code == 200


def test_constraint_violation_is_reported_as_conflict(db):
    existing = create_user("Collaborator")
    with pytest.raises(Conflict):
        upsert_entity(db, "User", None, {"email": existing.email, "hashed_password": "x"})
