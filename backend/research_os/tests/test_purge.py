from datetime import datetime, timedelta, timezone

from research_os import audit, lifecycle, models, tasks
from research_os.tests.conftest import TestingSessionLocal, create_user

LONG_AGO = datetime(2000, 1, 1, tzinfo=timezone.utc)


def _age(db, *entities):
    for entity in entities:
        entity.archived_at = LONG_AGO
    db.commit()


def test_purge_removes_old_archived_rows_and_keeps_history(db):
    owner = create_user("Collaborator")
    project = lifecycle.create_entity(db, owner, "Project", {"title": "Closing"})
    root = lifecycle.create_entity(db, owner, "Milestone", {"project_id": project.id, "title": "Root"})
    child = lifecycle.create_entity(db, owner, "Milestone", {"project_id": project.id, "parent_id": root.id, "title": "Child"})
    task = lifecycle.create_entity(db, owner, "ProjectTask", {"project_id": project.id, "title": "Old"})
    ids = {"project": project.id, "root": root.id, "child": child.id, "task": task.id}

    lifecycle.archive_entity(db, owner, "ProjectTask", task.id)
    lifecycle.archive_milestone(db, owner, root.id, cascade=True)
    lifecycle.archive_entity(db, owner, "Project", project.id)
    _age(db, project, root, child, task)

    removed = lifecycle.purge_archived(db, retention_days=30)
    db.commit()

    assert removed["ProjectTask"] >= 1
    assert removed["Milestone"] >= 2
    assert removed["Project"] >= 1
    assert db.get(models.Milestone, ids["root"]) is None
    assert db.get(models.Milestone, ids["child"]) is None
    assert db.get(models.ProjectTask, ids["task"]) is None
    assert db.get(models.Project, ids["project"]) is None

    logs = db.query(models.AuditLog).filter(models.AuditLog.entity_id == ids["root"]).all()
    assert {log.action for log in logs} == {"create", "delete"}
    assert db.query(models.FieldVersion).filter(models.FieldVersion.entity_id == ids["task"]).count() >= 1

    traces = (
        db.query(models.AuditLog)
        .filter(models.AuditLog.entity_id == ids["task"], models.AuditLog.actor_id == audit.SYSTEM_ACTOR_ID)
        .all()
    )
    assert len(traces) == 1
    assert traces[0].action == "delete"
    assert traces[0].project_id == ids["project"]
    assert traces[0].details["reason"] == "retention"


def test_purge_keeps_rows_with_live_references(db):
    owner = create_user("Collaborator")
    project = lifecycle.create_entity(db, owner, "Project", {"title": "Half closed"})
    parent = lifecycle.create_entity(db, owner, "Milestone", {"project_id": project.id, "title": "Parent"})
    live = lifecycle.create_entity(db, owner, "Milestone", {"project_id": project.id, "parent_id": parent.id, "title": "Live"})
    lifecycle.archive_milestone(db, owner, parent.id, reparent=True)
    lifecycle.archive_entity(db, owner, "Project", project.id)
    parent_id, live_id, project_id = parent.id, live.id, project.id
    _age(db, project, parent)

    lifecycle.purge_archived(db, retention_days=30)
    db.commit()

    assert db.get(models.Milestone, parent_id) is None
    assert db.get(models.Milestone, live_id) is not None
    assert db.get(models.Project, project_id) is not None
    kept = db.query(models.AuditLog).filter(
        models.AuditLog.entity_id.in_([live_id, project_id]), models.AuditLog.actor_id == audit.SYSTEM_ACTOR_ID
    )
    assert kept.count() == 0


def test_purge_respects_retention_window(db):
    owner = create_user("Collaborator")
    grant = lifecycle.create_entity(db, owner, "Grant", {"title": "Recent"})
    lifecycle.archive_entity(db, owner, "Grant", grant.id)
    grant_id = grant.id

    lifecycle.purge_archived(db, retention_days=30)
    db.commit()
    assert db.get(models.Grant, grant_id) is not None

    lifecycle.purge_archived(db, now=lifecycle.utcnow() + timedelta(days=31), retention_days=30)
    db.commit()
    assert db.get(models.Grant, grant_id) is None


def test_purge_task_runs_in_its_own_session(db, monkeypatch):
    owner = create_user("Collaborator")
    entry = lifecycle.create_entity(db, owner, "KnowledgeBaseEntry", {"title": "Stale", "content": "Old"})
    lifecycle.archive_entity(db, owner, "KnowledgeBaseEntry", entry.id)
    entry_id = entry.id
    _age(db, entry)

    monkeypatch.setattr("research_os.database.SessionLocal", TestingSessionLocal)
    result = tasks.purge_archived.delay(retention_days=30).get()

    assert result["KnowledgeBaseEntry"] >= 1
    db.expire_all()
    assert db.get(models.KnowledgeBaseEntry, entry_id) is None
