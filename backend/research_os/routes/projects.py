from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session
from uuid import UUID

from ..database import get_db
from .. import audit, lifecycle, memberships, models, schemas
from ..access import authorize, require_view, visible_criterion
from ..auth import get_current_user
from ..store import ArchiveState, get_entity, get_spec, list_entities
from .deps import archive_state

router = APIRouter(prefix="/api/projects", tags=["projects"])


def _viewable_project(db: Session, user: models.User, project_id: UUID, state=ArchiveState.ALL):
    project = get_entity(db, "Project", project_id, state)
    require_view(authorize(db, user, "Project", project))
    return project


@router.post("", response_model=schemas.ProjectOut)
def create_project(
    project: schemas.ProjectCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return lifecycle.create_entity(db, user, "Project", project.model_dump(), request=request)


@router.get("", response_model=list[schemas.ProjectOut])
def list_projects(
    state: ArchiveState = Depends(archive_state),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    query = list_entities(db, "Project", state)
    criterion = visible_criterion(db, user, get_spec("Project"))
    if criterion is not None:
        query = query.filter(criterion)
    return query.order_by(models.Project.updated_at.desc()).all()


@router.get("/{project_id}", response_model=schemas.ProjectOut)
def get_project(
    project_id: UUID,
    state: ArchiveState = Depends(archive_state),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return _viewable_project(db, user, project_id, state)


@router.patch("/{project_id}", response_model=schemas.ProjectOut)
def update_project(
    project_id: UUID,
    payload: schemas.ProjectUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    patch = payload.model_dump(exclude_unset=True)
    return lifecycle.apply_change(db, user, "Project", project_id, patch, request=request)


@router.delete("/{project_id}", response_model=schemas.ArchiveResultOut)
def archive_project(
    project_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return lifecycle.archive_entity(db, user, "Project", project_id, request=request)


@router.post("/{project_id}/restore", response_model=schemas.ProjectOut)
def restore_project(
    project_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return lifecycle.restore_entity(db, user, "Project", project_id, request=request)


@router.get("/{project_id}/access", response_model=schemas.AccessOut)
def project_access(
    project_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    project = get_entity(db, "Project", project_id, ArchiveState.ALL)
    decision = require_view(authorize(db, user, "Project", project))
    return schemas.AccessOut(
        can_view=decision.can_view,
        can_edit=decision.can_edit,
        role=decision.role,
        source=decision.source,
    )


@router.get("/{project_id}/members", response_model=list[schemas.MembershipOut])
def list_members(
    project_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    _viewable_project(db, user, project_id)
    result = []
    for membership, member in memberships.list_memberships(db, project_id):
        out = schemas.MembershipOut.model_validate(membership)
        if member is not None:
            out.user = schemas.ActorSummary(id=member.id, name=member.full_name, email=member.email)
        result.append(out)
    return result


@router.post("/{project_id}/members", response_model=schemas.MembershipOut)
def add_member(
    project_id: UUID,
    payload: schemas.MembershipIn,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return memberships.upsert_membership(
        db, user, project_id, payload.user_id, payload.role, request=request
    )


@router.delete("/{project_id}/members/{user_id}", status_code=204)
def remove_member(
    project_id: UUID,
    user_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    memberships.remove_membership(db, user, project_id, user_id, request=request)
    return Response(status_code=204)


@router.get("/{project_id}/audit", response_model=list[schemas.AuditLogOut])
def project_audit(
    project_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    _viewable_project(db, user, project_id)
    return audit.project_history(db, project_id)


@router.get("/{project_id}/versions", response_model=list[schemas.FieldVersionOut])
def project_versions(
    project_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    _viewable_project(db, user, project_id)
    return audit.list_versions(db, "Project", project_id)
