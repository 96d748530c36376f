from datetime import timedelta

from research_os import feed, lifecycle
from research_os.database import utcnow
from research_os.tests.conftest import create_user, user_with_headers


def _seed(db, owner):
    now = utcnow()
    project = lifecycle.create_entity(db, owner, "Project", {"title": "Feed project"})
    soon = lifecycle.create_entity(
        db, owner, "ProjectTask", {"project_id": project.id, "title": "Soon", "due_date": now + timedelta(days=3)}
    )
    late = lifecycle.create_entity(
        db, owner, "ProjectTask", {"project_id": project.id, "title": "Late", "due_date": now - timedelta(days=1)}
    )
    done = lifecycle.create_entity(
        db,
        owner,
        "ProjectTask",
        {"project_id": project.id, "title": "Done", "status": "done", "due_date": now + timedelta(days=1)},
    )
    far = lifecycle.create_entity(db, owner, "Grant", {"title": "Far", "deadline_at": now + timedelta(days=10)})
    shelved = lifecycle.create_entity(
        db, owner, "Milestone", {"project_id": project.id, "title": "Shelved", "due_date": now + timedelta(days=1)}
    )
    lifecycle.archive_milestone(db, owner, shelved.id)
    lifecycle.apply_change(db, owner, "ProjectTask", soon.id, {"status": "doing"})
    return now, {"soon": soon, "late": late, "done": done, "far": far, "shelved": shelved}


def test_feed_merges_sources_in_time_order(db):
    owner = create_user("Collaborator")
    now, seeded = _seed(db, owner)

    items = feed.build_feed(db, owner, limit=50, now=now)
    keyed = {(item.kind, item.id): item for item in items}

    upcoming = keyed[("deadline", str(seeded["soon"].id))]
    assert upcoming.title == "Task: Soon"
    assert upcoming.project == "Feed project"
    overdue = keyed[("overdue", str(seeded["late"].id))]
    assert overdue.title == "Overdue: Late"
    for name in ("done", "far", "shelved"):
        assert not any(item.entity_id == seeded[name].id and item.kind in ("deadline", "overdue") for item in items)

    status = [item for item in items if item.kind == "status" and item.entity_id == seeded["soon"].id]
    assert status and status[0].details == {"from": "todo", "to": "doing"}
    assert any(item.kind == "audit" and item.title == "CREATE · Project" for item in items)

    timestamps = [item.timestamp for item in items]
    assert timestamps == sorted(timestamps, reverse=True)


def test_upcoming_and_overdue_are_disjoint(db):
    owner = create_user("Collaborator")
    now, seeded = _seed(db, owner)
    items = feed.build_feed(db, owner, limit=50, now=now)
    kinds_by_entity = {}
    for item in items:
        if item.kind in ("deadline", "overdue"):
            kinds_by_entity.setdefault(item.entity_id, set()).add(item.kind)
    assert all(len(kinds) == 1 for kinds in kinds_by_entity.values())


def test_horizon_limits_upcoming_items(db):
    owner = create_user("Collaborator")
    now, seeded = _seed(db, owner)
    items = feed.build_feed(db, owner, limit=50, now=now, upcoming_days=2)
    assert not any(item.kind == "deadline" and item.entity_id == seeded["soon"].id for item in items)


def test_feed_truncates_to_limit(db):
    owner = create_user("Collaborator")
    now, _ = _seed(db, owner)
    assert len(feed.build_feed(db, owner, limit=3, now=now)) == 3


def test_outsider_sees_nothing_from_foreign_project(db):
    owner = create_user("Collaborator")
    outsider = create_user("Collaborator")
    now, seeded = _seed(db, owner)
    items = feed.build_feed(db, outsider, limit=50, now=now)
    foreign = {entity.id for entity in seeded.values()}
    assert not any(item.entity_id in foreign for item in items)


def test_elevated_viewer_sees_foreign_deadlines(db):
    owner = create_user("Collaborator")
    mentor = create_user("Mentor")
    now, seeded = _seed(db, owner)
    items = feed.build_feed(db, mentor, limit=500, now=now)
    assert any(item.kind == "deadline" and item.entity_id == seeded["soon"].id for item in items)


def test_notifications_endpoint(client):
    _, headers = user_with_headers("Collaborator")
    client.post("/api/projects", json={"title": "Notified"}, headers=headers)
    resp = client.get("/api/notifications", params={"limit": 5}, headers=headers)
    assert resp.status_code == 200
    data = resp.json()
    assert 1 <= len(data) <= 5
    assert data[0]["kind"] == "audit"
    assert client.get("/api/notifications", params={"limit": 51}, headers=headers).status_code == 422


def test_visible_status_change_survives_foreign_churn(db, monkeypatch):
    owner = create_user("Collaborator")
    busy = create_user("Collaborator")
    project = lifecycle.create_entity(db, owner, "Project", {"title": "Quiet"})
    task = lifecycle.create_entity(db, owner, "ProjectTask", {"project_id": project.id, "title": "Mine"})
    lifecycle.apply_change(db, owner, "ProjectTask", task.id, {"status": "doing"})

    monkeypatch.setattr(feed, "STATUS_LIMIT", 2)
    noisy = lifecycle.create_entity(db, busy, "Grant", {"title": "Noisy"})
    for index in range(12):
        lifecycle.apply_change(db, busy, "Grant", noisy.id, {"status": f"step-{index}"})

    items = feed.build_feed(db, owner, limit=50)
    assert any(item.kind == "status" and item.entity_id == task.id for item in items)
    assert not any(item.entity_id == noisy.id for item in items)
