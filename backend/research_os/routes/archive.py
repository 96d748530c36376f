from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..database import get_db
from .. import lifecycle, models, schemas
from ..auth import get_current_user

router = APIRouter(prefix="/api/archive", tags=["archive"])


@router.post("/{entity_type}/{entity_id}", response_model=schemas.ArchiveResultOut)
def archive(
    entity_type: str,
    entity_id: str,
    request: Request,
    cascade: bool = False,
    reparent: bool = False,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    if entity_type == "Milestone":
        return lifecycle.archive_milestone(
            db, user, entity_id, cascade=cascade, reparent=reparent, request=request
        )
    return lifecycle.archive_entity(db, user, entity_type, entity_id, request=request)


@router.post("/{entity_type}/{entity_id}/restore", response_model=schemas.EntityStateOut)
def restore(
    entity_type: str,
    entity_id: str,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    entity = lifecycle.restore_entity(db, user, entity_type, entity_id, request=request)
    return schemas.EntityStateOut(entity_type=entity_type, entity_id=entity.id, archived_at=entity.archived_at)
