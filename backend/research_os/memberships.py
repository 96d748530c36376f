from __future__ import annotations

from uuid import UUID

from fastapi import Request
from sqlalchemy.orm import Session

from . import audit, models
from .access import require_elevated
from .errors import InvalidArgument, NotFound
from .store import ArchiveState, get_entity, snapshot

# purpose: maintain the (project, user) -> role relation the access resolver reads
# status: active


def upsert_membership(
    db: Session,
    actor: models.User,
    project_id: UUID,
    user_id: UUID,
    role: str,
    *,
    request: Request | None = None,
) -> models.Membership:
    """Create or replace the single membership of ``user_id`` in ``project_id``."""

    require_elevated(actor)
    if role not in models.MEMBERSHIP_ROLES:
        raise InvalidArgument(f"Unsupported membership role: {role}")
    get_entity(db, "Project", project_id, ArchiveState.ALL)
    if db.get(models.User, user_id) is None:
        raise NotFound("User not found")

    membership = (
        db.query(models.Membership)
        .filter(models.Membership.project_id == project_id, models.Membership.user_id == user_id)
        .first()
    )
    if membership is None:
        membership = models.Membership(project_id=project_id, user_id=user_id, role=role, invited_by=actor.id)
        db.add(membership)
        db.commit()
        db.refresh(membership)
        audit.record_create(db, actor.id, "Membership", membership.id, project_id, request=request)
        return membership

    previous = snapshot(membership, ["role", "invited_by"])
    membership.role = role
    membership.invited_by = actor.id
    db.commit()
    db.refresh(membership)
    audit.record_update(
        db,
        actor.id,
        "Membership",
        membership.id,
        previous,
        {"role": role},
        project_id,
        request=request,
    )
    return membership


def remove_membership(
    db: Session,
    actor: models.User,
    project_id: UUID,
    user_id: UUID,
    *,
    request: Request | None = None,
) -> None:
    require_elevated(actor)
    membership = (
        db.query(models.Membership)
        .filter(models.Membership.project_id == project_id, models.Membership.user_id == user_id)
        .first()
    )
    if membership is None:
        raise NotFound("Membership not found")
    membership_id = membership.id
    db.delete(membership)
    db.commit()
    audit.record_removal(db, actor.id, "Membership", membership_id, project_id, request=request)


def list_memberships(db: Session, project_id: UUID) -> list[tuple[models.Membership, models.User | None]]:
    rows = (
        db.query(models.Membership, models.User)
        .outerjoin(models.User, models.User.id == models.Membership.user_id)
        .filter(models.Membership.project_id == project_id)
        .all()
    )
    return [(membership, user) for membership, user in rows]
