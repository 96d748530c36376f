"""Access resolution for every entity read and write.

Four grant sources are checked in order: global elevation, ownership,
project membership and explicit sharing. Each rule returns a decision or
``None``; the first decision wins. Nothing is cached, memberships and share
lists are read fresh on every call.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional
from uuid import UUID

from sqlalchemy import false, or_
from sqlalchemy.orm import Session

from . import models
from .errors import Forbidden, NotFound, Unauthorized

ELEVATED_ROLES = frozenset({"Owner", "Supervisor", "Mentor"})
EDITING_ROLE = "Collaborator"


def is_elevated_role(role: str | None) -> bool:
    return bool(role) and role in ELEVATED_ROLES


@dataclass(frozen=True)
class AccessTarget:
    owner_id: UUID | None = None
    project_id: UUID | None = None
    project_owner_id: UUID | None = None
    shared_user_ids: tuple[UUID, ...] = ()
    shared_project_ids: tuple[UUID, ...] = ()
    visibility: str | None = None


@dataclass(frozen=True)
class AccessDecision:
    can_view: bool
    can_edit: bool
    role: str | None = None
    source: str | None = None


DENIED = AccessDecision(can_view=False, can_edit=False)

AccessRule = Callable[[Session, Any, AccessTarget], Optional[AccessDecision]]


def _elevation_rule(db: Session, actor, target: AccessTarget) -> AccessDecision | None:
    if is_elevated_role(actor.global_role):
        return AccessDecision(True, True, role=actor.global_role, source="elevation")
    return None


def _ownership_rule(db: Session, actor, target: AccessTarget) -> AccessDecision | None:
    if target.owner_id is not None and target.owner_id == actor.id:
        return AccessDecision(True, True, role="Owner", source="ownership")
    if target.project_owner_id is not None and target.project_owner_id == actor.id:
        return AccessDecision(True, True, role="Owner", source="project_ownership")
    return None


def _membership_rule(db: Session, actor, target: AccessTarget) -> AccessDecision | None:
    if target.project_id is None:
        return None
    membership = (
        db.query(models.Membership)
        .filter(models.Membership.project_id == target.project_id, models.Membership.user_id == actor.id)
        .first()
    )
    if membership is None:
        return None
    return AccessDecision(
        True,
        membership.role == EDITING_ROLE,
        role=membership.role,
        source="membership",
    )


def _sharing_rule(db: Session, actor, target: AccessTarget) -> AccessDecision | None:
    # sharing grants view only; edit still needs ownership or elevation
    if actor.id in target.shared_user_ids:
        return AccessDecision(True, False, role="Shared", source="shared_user")
    if target.visibility == "shared" and target.shared_project_ids:
        if accessible_project_ids(db, actor) & set(target.shared_project_ids):
            return AccessDecision(True, False, role="Shared", source="shared_project")
    return None


ACCESS_RULES: tuple[AccessRule, ...] = (
    _elevation_rule,
    _ownership_rule,
    _membership_rule,
    _sharing_rule,
)


def resolve_access(db: Session, actor, target: AccessTarget) -> AccessDecision:
    if actor is None:
        raise Unauthorized()
    for rule in ACCESS_RULES:
        decision = rule(db, actor, target)
        if decision is not None:
            return decision
    return DENIED


def accessible_project_ids(db: Session, actor) -> set[UUID]:
    """Projects the actor owns or is a member of."""

    member_of = db.query(models.Membership.project_id).filter(models.Membership.user_id == actor.id).all()
    owned = db.query(models.Project.id).filter(models.Project.owner_id == actor.id).all()
    return {row[0] for row in member_of} | {row[0] for row in owned}


def _uuid_tuple(values: Iterable[Any] | None) -> tuple[UUID, ...]:
    result = []
    for value in values or ():
        try:
            result.append(value if isinstance(value, UUID) else UUID(str(value)))
        except ValueError:
            continue
    return tuple(result)


def project_target(db: Session, project_id: UUID) -> AccessTarget:
    project = db.get(models.Project, project_id)
    if project is None:
        raise NotFound("Project not found")
    return AccessTarget(owner_id=project.owner_id, project_id=project.id, project_owner_id=project.owner_id)


def target_for(db: Session, entity_type: str, entity: Any) -> AccessTarget:
    """Build the authorization anchor of ``entity`` from its registered spec."""

    from .store import get_spec

    spec = get_spec(entity_type)
    owner_id = getattr(entity, spec.owner_field) if spec.owner_field else None
    project_id = getattr(entity, spec.project_field) if spec.project_field else None
    project_owner_id = None
    if project_id is not None:
        project = db.get(models.Project, project_id)
        project_owner_id = project.owner_id if project else None
    return AccessTarget(
        owner_id=owner_id,
        project_id=project_id,
        project_owner_id=project_owner_id,
        shared_user_ids=_uuid_tuple(getattr(entity, "shared_user_ids", None)),
        shared_project_ids=_uuid_tuple(getattr(entity, "shared_project_ids", None)),
        visibility=getattr(entity, "visibility", None),
    )


def authorize(db: Session, actor, entity_type: str, entity: Any) -> AccessDecision:
    return resolve_access(db, actor, target_for(db, entity_type, entity))


def require_view(decision: AccessDecision) -> AccessDecision:
    if not decision.can_view:
        raise Forbidden()
    return decision


def require_edit(decision: AccessDecision) -> AccessDecision:
    if not decision.can_edit:
        raise Forbidden()
    return decision


def require_elevated(actor) -> None:
    if actor is None:
        raise Unauthorized()
    if not is_elevated_role(actor.global_role):
        raise Forbidden()


def visible_criterion(db: Session, actor, spec):
    """SQL criterion for list endpoints, or None when the actor sees everything.

    Covers ownership and project reach; shared entries are filtered per row by
    the callers that support sharing.
    """

    if is_elevated_role(actor.global_role):
        return None
    model = spec.model
    criteria = []
    if spec.owner_field:
        criteria.append(getattr(model, spec.owner_field) == actor.id)
    project_ids = accessible_project_ids(db, actor) if spec.project_field else set()
    if project_ids:
        criteria.append(getattr(model, spec.project_field).in_(list(project_ids)))
    return or_(*criteria) if criteria else false()
