import os

from fastapi import APIRouter, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from sqlalchemy import or_
from sqlalchemy.orm import Session
from uuid import UUID

from ..database import get_db
from .. import audit, lifecycle, models, schemas
from ..access import AccessDecision, accessible_project_ids, authorize, require_view
from ..auth import get_current_user
from ..store import ArchiveState, get_entity, list_entities
from .deps import archive_state

router = APIRouter(prefix="/api/knowledge-base", tags=["knowledge"])

# explicitly shared users may edit entries; set to 0 for view-only sharing
SHARED_USERS_CAN_EDIT = os.getenv("KB_SHARED_USERS_CAN_EDIT", "1") == "1"


def _shared_projects(db: Session, user: models.User, project_ids: list[UUID]) -> list[str]:
    # entries can only be shared into projects the author can reach
    allowed = accessible_project_ids(db, user)
    return [str(pid) for pid in project_ids if pid in allowed]


def _entry_decision(db: Session, user: models.User, entry: models.KnowledgeBaseEntry) -> AccessDecision:
    decision = authorize(db, user, "KnowledgeBaseEntry", entry)
    shared_with = {str(uid) for uid in entry.shared_user_ids or []}
    if SHARED_USERS_CAN_EDIT and not decision.can_edit and str(user.id) in shared_with:
        return AccessDecision(True, True, role="Shared", source="shared_user_edit")
    return decision


@router.get("", response_model=list[schemas.KnowledgeBaseEntryOut])
def list_entries(
    category: str | None = None,
    visibility: str | None = None,
    q: str | None = None,
    state: ArchiveState = Depends(archive_state),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    query = list_entities(db, "KnowledgeBaseEntry", state)
    if category:
        query = query.filter(models.KnowledgeBaseEntry.category == category)
    if visibility:
        query = query.filter(models.KnowledgeBaseEntry.visibility == visibility)
    if q and q.strip():
        pattern = f"%{q.strip()}%"
        query = query.filter(
            or_(
                models.KnowledgeBaseEntry.title.ilike(pattern),
                models.KnowledgeBaseEntry.content.ilike(pattern),
            )
        )
    entries = query.order_by(models.KnowledgeBaseEntry.updated_at.desc()).all()
    return [entry for entry in entries if authorize(db, user, "KnowledgeBaseEntry", entry).can_view]


@router.post("", response_model=schemas.KnowledgeBaseEntryOut)
def create_entry(
    payload: schemas.KnowledgeBaseEntryCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    fields = payload.model_dump()
    fields["shared_project_ids"] = _shared_projects(db, user, payload.shared_project_ids)
    fields["shared_user_ids"] = jsonable_encoder(payload.shared_user_ids)
    fields["updated_by"] = user.id
    return lifecycle.create_entity(db, user, "KnowledgeBaseEntry", fields, request=request)


@router.get("/{entry_id}", response_model=schemas.KnowledgeBaseEntryOut)
def get_entry(
    entry_id: UUID,
    state: ArchiveState = Depends(archive_state),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    entry = get_entity(db, "KnowledgeBaseEntry", entry_id, state)
    require_view(authorize(db, user, "KnowledgeBaseEntry", entry))
    return entry


@router.patch("/{entry_id}", response_model=schemas.KnowledgeBaseEntryOut)
def update_entry(
    entry_id: UUID,
    payload: schemas.KnowledgeBaseEntryUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    entry = get_entity(db, "KnowledgeBaseEntry", entry_id, ArchiveState.ALL)
    patch = payload.model_dump(exclude_unset=True)
    if payload.shared_project_ids is not None:
        patch["shared_project_ids"] = _shared_projects(db, user, payload.shared_project_ids)
    if payload.shared_user_ids is not None:
        patch["shared_user_ids"] = jsonable_encoder(payload.shared_user_ids)
    patch["updated_by"] = user.id
    return lifecycle.apply_change(
        db,
        user,
        "KnowledgeBaseEntry",
        entry.id,
        patch,
        request=request,
        decision=_entry_decision(db, user, entry),
    )


@router.delete("/{entry_id}", response_model=schemas.ArchiveResultOut)
def archive_entry(
    entry_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    entry = get_entity(db, "KnowledgeBaseEntry", entry_id, ArchiveState.ALL)
    return lifecycle.archive_entity(
        db,
        user,
        "KnowledgeBaseEntry",
        entry.id,
        request=request,
        decision=_entry_decision(db, user, entry),
    )


@router.post("/{entry_id}/restore", response_model=schemas.KnowledgeBaseEntryOut)
def restore_entry(
    entry_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    entry = get_entity(db, "KnowledgeBaseEntry", entry_id, ArchiveState.ALL)
    return lifecycle.restore_entity(
        db,
        user,
        "KnowledgeBaseEntry",
        entry.id,
        request=request,
        decision=_entry_decision(db, user, entry),
    )


@router.get("/{entry_id}/versions", response_model=list[schemas.FieldVersionOut])
def entry_versions(
    entry_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    entry = get_entity(db, "KnowledgeBaseEntry", entry_id, ArchiveState.ALL)
    require_view(authorize(db, user, "KnowledgeBaseEntry", entry))
    return audit.list_versions(db, "KnowledgeBaseEntry", entry.id)
