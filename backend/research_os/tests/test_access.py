import uuid

import pytest

from research_os import models
from research_os.access import (
    AccessTarget,
    accessible_project_ids,
    authorize,
    resolve_access,
)
from research_os.errors import Unauthorized
from research_os.tests.conftest import create_user


def _project(db, owner):
    project = models.Project(owner_id=owner.id, title="Access")
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


def _member(db, project, user, role):
    db.add(models.Membership(project_id=project.id, user_id=user.id, role=role))
    db.commit()


@pytest.mark.parametrize("role", ["Owner", "Supervisor", "Mentor"])
@pytest.mark.parametrize(
    "target",
    [
        AccessTarget(),
        AccessTarget(owner_id=uuid.uuid4()),
        AccessTarget(project_id=uuid.uuid4(), project_owner_id=uuid.uuid4()),
        AccessTarget(shared_user_ids=(uuid.uuid4(),), visibility="shared"),
    ],
)
def test_elevated_roles_always_view_and_edit(db, role, target):
    actor = create_user(role)
    decision = resolve_access(db, actor, target)
    assert (decision.can_view, decision.can_edit) == (True, True)
    assert decision.source == "elevation"


def test_owner_of_entity_can_edit(db):
    actor = create_user("Collaborator")
    decision = resolve_access(db, actor, AccessTarget(owner_id=actor.id))
    assert decision.can_view and decision.can_edit
    assert decision.source == "ownership"


def test_viewer_member_reads_without_editing(db):
    owner = create_user("Collaborator")
    viewer = create_user("Collaborator")
    project = _project(db, owner)
    _member(db, project, viewer, "Viewer")
    task = models.ProjectTask(project_id=project.id, title="Read me", created_by=owner.id)
    db.add(task)
    db.commit()

    decision = authorize(db, viewer, "ProjectTask", task)
    assert decision.can_view is True
    assert decision.can_edit is False
    assert decision.role == "Viewer"


def test_collaborator_member_can_edit(db):
    owner = create_user("Collaborator")
    collaborator = create_user("Collaborator")
    project = _project(db, owner)
    _member(db, project, collaborator, "Collaborator")
    note = models.ProjectNote(project_id=project.id, title="Shared", created_by=owner.id)
    db.add(note)
    db.commit()

    decision = authorize(db, collaborator, "ProjectNote", note)
    assert decision.can_view and decision.can_edit


def test_project_owner_can_edit_records_created_by_others(db):
    owner = create_user("Collaborator")
    other = create_user("Collaborator")
    project = _project(db, owner)
    task = models.ProjectTask(project_id=project.id, title="Foreign", created_by=other.id)
    db.add(task)
    db.commit()

    decision = authorize(db, owner, "ProjectTask", task)
    assert decision.can_edit
    assert decision.source == "project_ownership"


def test_outsider_is_denied(db):
    owner = create_user("Collaborator")
    outsider = create_user("Collaborator")
    project = _project(db, owner)
    milestone = models.Milestone(project_id=project.id, title="Private", created_by=owner.id)
    db.add(milestone)
    db.commit()

    decision = authorize(db, outsider, "Milestone", milestone)
    assert (decision.can_view, decision.can_edit) == (False, False)


def test_shared_user_gets_view_only(db):
    author = create_user("Collaborator")
    reader = create_user("Viewer")
    entry = models.KnowledgeBaseEntry(
        title="Protocol",
        created_by=author.id,
        visibility="shared",
        shared_user_ids=[str(reader.id)],
    )
    db.add(entry)
    db.commit()

    decision = authorize(db, reader, "KnowledgeBaseEntry", entry)
    assert decision.can_view is True
    assert decision.can_edit is False


def test_shared_project_requires_shared_visibility(db):
    author = create_user("Collaborator")
    member = create_user("Collaborator")
    project = _project(db, author)
    _member(db, project, member, "Viewer")
    entry = models.KnowledgeBaseEntry(
        title="Draft",
        created_by=author.id,
        visibility="private",
        shared_project_ids=[str(project.id)],
    )
    db.add(entry)
    db.commit()
    assert authorize(db, member, "KnowledgeBaseEntry", entry).can_view is False

    entry.visibility = "shared"
    db.commit()
    decision = authorize(db, member, "KnowledgeBaseEntry", entry)
    assert decision.can_view is True
    assert decision.source == "shared_project"


def test_accessible_projects_cover_owned_and_member(db):
    actor = create_user("Collaborator")
    other = create_user("Collaborator")
    owned = _project(db, actor)
    joined = _project(db, other)
    _project(db, other)
    _member(db, joined, actor, "Viewer")
    assert accessible_project_ids(db, actor) == {owned.id, joined.id}


def test_missing_actor_is_unauthorized(db):
    with pytest.raises(Unauthorized):
        resolve_access(db, None, AccessTarget())


def test_membership_changes_apply_immediately(db):
    owner = create_user("Collaborator")
    actor = create_user("Collaborator")
    project = _project(db, owner)
    target = AccessTarget(project_id=project.id, project_owner_id=owner.id)
    assert resolve_access(db, actor, target).can_view is False

    _member(db, project, actor, "Viewer")
    assert resolve_access(db, actor, target).can_view is True

    db.query(models.Membership).filter_by(project_id=project.id, user_id=actor.id).delete()
    db.commit()
    assert resolve_access(db, actor, target).can_view is False
