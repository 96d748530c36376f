"""End-to-end walk through project setup, delegated edits and cascading archive."""

import uuid

from research_os import models
from research_os.tests.conftest import TestingSessionLocal, add_member, create_project, user_with_headers


def _logs(session, entity_type, entity_id, action=None):
    query = session.query(models.AuditLog).filter_by(entity_type=entity_type, entity_id=uuid.UUID(entity_id))
    if action:
        query = query.filter_by(action=action)
    return query.all()


def test_owner_collaborator_cascade_flow(client):
    a, a_headers = user_with_headers("Owner")
    b, b_headers = user_with_headers("Collaborator")
    c, c_headers = user_with_headers("Collaborator")

    project = create_project(client, a_headers, "P")
    add_member(client, a_headers, project["id"], b.id, "Collaborator")

    m2 = client.post("/api/milestones", json={"title": "M2", "project_id": project["id"]}, headers=a_headers).json()
    m1 = client.post(
        "/api/milestones",
        json={"title": "Draft", "project_id": project["id"], "parent_id": m2["id"]},
        headers=a_headers,
    ).json()
    m3 = client.post(
        "/api/milestones",
        json={"title": "M3", "project_id": project["id"], "parent_id": m2["id"]},
        headers=a_headers,
    ).json()

    session = TestingSessionLocal()
    try:
        assert len(_logs(session, "Project", project["id"], "create")) == 1
        memberships = session.query(models.Membership).filter_by(project_id=uuid.UUID(project["id"])).all()
        assert [(m.user_id, m.role) for m in memberships] == [(b.id, "Collaborator")]
        project_versions = session.query(models.FieldVersion).filter_by(
            entity_type="Project", entity_id=uuid.UUID(project["id"])
        )
        assert project_versions.count() == 0
    finally:
        session.close()

    resp = client.patch(f"/api/milestones/{m1['id']}", json={"title": "Final"}, headers=b_headers)
    assert resp.status_code == 200
    versions = client.get(f"/api/milestones/{m1['id']}/versions", headers=b_headers).json()
    assert [(v["field_path"], v["old_value"], v["new_value"]) for v in versions] == [("title", "Draft", "Final")]

    session = TestingSessionLocal()
    try:
        updates = _logs(session, "Milestone", m1["id"], "update")
        assert len(updates) == 1
        assert updates[0].actor_id == b.id
    finally:
        session.close()

    resp = client.delete(f"/api/milestones/{m2['id']}", params={"cascade": 1}, headers=a_headers)
    assert resp.status_code == 200
    assert resp.json()["archived_count"] == 3
    archived = client.get(
        "/api/milestones", params={"projectId": project["id"], "archived": 1}, headers=a_headers
    ).json()
    assert {m["id"] for m in archived} == {m1["id"], m2["id"], m3["id"]}
    assert all(m["archived_at"] for m in archived)

    denied = client.get(f"/api/projects/{project['id']}/access", headers=c_headers)
    assert denied.status_code == 403
    assert denied.json()["kind"] == "Forbidden"
    assert client.get(f"/api/milestones/{m3['id']}", params={"includeArchived": 1}, headers=c_headers).status_code == 403
