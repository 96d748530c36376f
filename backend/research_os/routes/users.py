from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from uuid import UUID

from ..database import get_db, utcnow
from .. import audit, models, schemas, auth
from ..access import require_elevated
from ..errors import Conflict, Forbidden, InvalidArgument, NotFound
from ..store import ENTITY_SPECS, snapshot

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/me", response_model=schemas.UserOut)
async def read_profile(current_user: models.User = Depends(auth.get_current_user)):
    return current_user


@router.get("", response_model=list[schemas.UserOut])
def list_users(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    require_elevated(current_user)
    return db.query(models.User).order_by(models.User.email).all()


@router.patch("/{user_id}/role", response_model=schemas.UserOut)
def change_role(
    user_id: UUID,
    payload: schemas.UserRoleUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    if current_user.global_role != "Owner":
        raise Forbidden("Only an Owner can change roles")
    target = db.get(models.User, user_id)
    if target is None:
        raise NotFound("User not found")
    previous = snapshot(target, ["global_role"])
    target.global_role = payload.global_role
    db.commit()
    db.refresh(target)
    audit.record_update(db, current_user.id, "User", target.id, previous, {"global_role": payload.global_role}, request=request)
    return target


# owning references block a removal; these optional pointers are cleared instead
_USER_POINTERS = (
    ("ProjectTask", models.ProjectTask.assignee_id),
    ("ScholarshipPayment", models.ScholarshipPayment.recipient_id),
    ("KnowledgeBaseEntry", models.KnowledgeBaseEntry.updated_by),
    ("Membership", models.Membership.invited_by),
)


def _owned_counts(db: Session, user_id: UUID) -> dict[str, int]:
    counts = {}
    for spec in ENTITY_SPECS.values():
        if spec.owner_field in (None, "id"):
            continue
        count = db.query(spec.model).filter(getattr(spec.model, spec.owner_field) == user_id).count()
        if count:
            counts[spec.name] = count
    return counts


@router.delete("/{user_id}", status_code=204)
def remove_user(
    user_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    if current_user.global_role != "Owner":
        raise Forbidden("Only an Owner can remove accounts")
    if user_id == current_user.id:
        raise InvalidArgument("You cannot remove your own account")
    target = db.get(models.User, user_id)
    if target is None:
        raise NotFound("User not found")
    owned = _owned_counts(db, user_id)
    if owned:
        summary = ", ".join(f"{count} {name}" for name, count in sorted(owned.items()))
        raise Conflict(f"User still owns records ({summary}); reassign them first")

    email = target.email
    cleared = []
    for entity_type, column in _USER_POINTERS:
        query = db.query(column.class_).filter(column == user_id)
        if column.class_ is models.Membership:
            query = query.filter(models.Membership.user_id != user_id)
        for row in query.all():
            setattr(row, column.key, None)
            cleared.append((entity_type, row.id, column.key, getattr(row, "project_id", None)))
    db.flush()
    db.query(models.Membership).filter(models.Membership.user_id == user_id).delete(synchronize_session=False)
    db.delete(target)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("User is still referenced; reassign those records first")

    now = utcnow()
    for entity_type, entity_id, field, project_id in cleared:
        audit.record_update(
            db,
            current_user.id,
            entity_type,
            entity_id,
            {field: user_id},
            {field: None},
            project_id,
            now=now,
            request=request,
            commit=False,
        )
    if cleared:
        audit.flush_records(db)
    audit.record_removal(db, current_user.id, "User", user_id, request=request, details={"email": email})
    return Response(status_code=204)
