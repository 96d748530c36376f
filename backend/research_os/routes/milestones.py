from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from uuid import UUID

from ..database import get_db
from .. import audit, lifecycle, models, schemas
from ..access import authorize, project_target, require_view, resolve_access, visible_criterion
from ..auth import get_current_user
from ..store import ArchiveState, get_entity, get_spec, list_entities
from .deps import archive_state

router = APIRouter(prefix="/api/milestones", tags=["milestones"])


@router.get("", response_model=list[schemas.MilestoneOut])
def list_milestones(
    project_id: UUID | None = Query(None, alias="projectId"),
    parent_id: UUID | None = Query(None, alias="parentId"),
    state: ArchiveState = Depends(archive_state),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    query = list_entities(db, "Milestone", state)
    if project_id is not None:
        require_view(resolve_access(db, user, project_target(db, project_id)))
        query = query.filter(models.Milestone.project_id == project_id)
    else:
        criterion = visible_criterion(db, user, get_spec("Milestone"))
        if criterion is not None:
            query = query.filter(criterion)
    if parent_id is not None:
        query = query.filter(models.Milestone.parent_id == parent_id)
    return query.order_by(models.Milestone.sort_order, models.Milestone.created_at).all()


@router.post("", response_model=schemas.MilestoneOut)
def create_milestone(
    payload: schemas.MilestoneCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return lifecycle.create_entity(db, user, "Milestone", payload.model_dump(), request=request)


@router.get("/{milestone_id}", response_model=schemas.MilestoneOut)
def get_milestone(
    milestone_id: UUID,
    state: ArchiveState = Depends(archive_state),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    milestone = get_entity(db, "Milestone", milestone_id, state)
    require_view(authorize(db, user, "Milestone", milestone))
    return milestone


@router.patch("/{milestone_id}", response_model=schemas.MilestoneOut)
def update_milestone(
    milestone_id: UUID,
    payload: schemas.MilestoneUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    patch = payload.model_dump(exclude_unset=True)
    return lifecycle.apply_change(db, user, "Milestone", milestone_id, patch, request=request)


@router.delete("/{milestone_id}", response_model=schemas.ArchiveResultOut)
def archive_milestone(
    milestone_id: UUID,
    request: Request,
    cascade: bool = False,
    reparent: bool = False,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return lifecycle.archive_milestone(
        db, user, milestone_id, cascade=cascade, reparent=reparent, request=request
    )


@router.post("/{milestone_id}/restore", response_model=schemas.MilestoneOut)
def restore_milestone(
    milestone_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return lifecycle.restore_entity(db, user, "Milestone", milestone_id, request=request)


@router.get("/{milestone_id}/versions", response_model=list[schemas.FieldVersionOut])
def milestone_versions(
    milestone_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    milestone = get_entity(db, "Milestone", milestone_id, ArchiveState.ALL)
    require_view(authorize(db, user, "Milestone", milestone))
    return audit.list_versions(db, "Milestone", milestone.id)
