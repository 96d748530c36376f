from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable
from uuid import UUID

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models, schemas
from .access import accessible_project_ids, is_elevated_role
from .database import as_utc, utcnow
from .errors import InvalidArgument

# purpose: record action/field history for every mutation and rebuild it for audit views
# status: active
# depends_on: models.AuditLog, models.FieldVersion

logger = logging.getLogger(__name__)

ACTIONS = ("create", "update", "delete")
ARCHIVE_TOGGLE = "archived"
CORRELATION_WINDOW_SECONDS = float(os.getenv("AUDIT_CORRELATION_WINDOW_SECONDS", "2"))
CORRELATION_MODE = os.getenv("AUDIT_CORRELATION_MODE", "window")
_CORRELATION_MODES = ("window", "key")
# actor of scheduled jobs; no user row carries this id
SYSTEM_ACTOR_ID = UUID(int=0)


def translate_archive_toggle(previous: dict[str, Any], patch: dict[str, Any], now: datetime) -> dict[str, Any]:
    """Replace the ephemeral ``archived`` flag with the persisted ``archived_at`` value.

    Archiving an already archived entity keeps its original timestamp so the
    diff stays empty; restoring clears the field.
    """

    if ARCHIVE_TOGGLE not in patch:
        return dict(patch)
    flag = patch[ARCHIVE_TOGGLE]
    if not isinstance(flag, bool):
        raise InvalidArgument("archived must be a boolean")
    if "archived_at" not in previous:
        raise InvalidArgument("Entity does not support archiving")
    translated = {key: value for key, value in patch.items() if key != ARCHIVE_TOGGLE}
    translated["archived_at"] = (previous.get("archived_at") or now) if flag else None
    return translated


def encode_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return jsonable_encoder(value)


def diff_fields(previous: dict[str, Any], next_state: dict[str, Any]) -> list[tuple[str, Any, Any]]:
    """Return ``(field, old, new)`` for every key of ``next_state`` that changes."""

    changes = []
    for key, new_value in next_state.items():
        if key == "id":
            continue
        old = encode_value(previous.get(key))
        new = encode_value(new_value)
        if old != new:
            changes.append((key, old, new))
    return changes


def _request_meta(request: Request | None) -> dict[str, Any]:
    if request is None:
        return {}
    return {
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


def _persist(db: Session, rows: Iterable[Any], what: str, commit: bool = True) -> bool:
    # audit is a side channel: a failed write never undoes the primary mutation
    try:
        db.add_all(list(rows))
        if commit:
            db.commit()
        else:
            db.flush()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to record %s", what)
        return False
    return True


def flush_records(db: Session) -> bool:
    """Commit records staged with ``commit=False``."""

    return _persist(db, [], "staged audit records")


def _action_row(
    actor_id: UUID,
    action: str,
    entity_type: str,
    entity_id: UUID,
    project_id: UUID | None,
    timestamp: datetime,
    *,
    correlation_id: UUID | None = None,
    details: dict | None = None,
    request: Request | None = None,
) -> models.AuditLog:
    return models.AuditLog(
        actor_id=UUID(str(actor_id)),
        action=action,
        entity_type=entity_type,
        entity_id=UUID(str(entity_id)),
        project_id=UUID(str(project_id)) if project_id else None,
        correlation_id=correlation_id,
        details=jsonable_encoder(details or {}),
        meta=_request_meta(request),
        timestamp=timestamp,
    )


def record_create(
    db: Session,
    actor_id: UUID,
    entity_type: str,
    entity_id: UUID,
    project_id: UUID | None = None,
    *,
    request: Request | None = None,
    details: dict | None = None,
) -> models.AuditLog | None:
    log = _action_row(
        actor_id,
        "create",
        entity_type,
        entity_id,
        project_id,
        utcnow(),
        correlation_id=uuid.uuid4(),
        details=details,
        request=request,
    )
    return log if _persist(db, [log], f"create of {entity_type} {entity_id}") else None


def record_update(
    db: Session,
    actor_id: UUID,
    entity_type: str,
    entity_id: UUID,
    previous: dict[str, Any],
    next_state: dict[str, Any],
    project_id: UUID | None = None,
    *,
    action: str = "update",
    now: datetime | None = None,
    request: Request | None = None,
    details: dict | None = None,
    commit: bool = True,
) -> models.AuditLog | None:
    """Append one field record per changed key and one action record.

    ``next_state`` is the applied patch, not the whole entity. An empty diff
    writes nothing, which keeps repeated archive/restore calls quiet.
    """

    changes = diff_fields(previous, next_state)
    if not changes:
        return None
    timestamp = now or utcnow()
    correlation_id = uuid.uuid4()
    rows: list[Any] = [
        models.FieldVersion(
            entity_type=entity_type,
            entity_id=UUID(str(entity_id)),
            field_path=field,
            old_value=old,
            new_value=new,
            changed_by=UUID(str(actor_id)),
            correlation_id=correlation_id,
            changed_at=timestamp,
        )
        for field, old, new in changes
    ]
    log = _action_row(
        actor_id,
        action,
        entity_type,
        entity_id,
        project_id,
        timestamp,
        correlation_id=correlation_id,
        details=details,
        request=request,
    )
    rows.append(log)
    if not _persist(db, rows, f"{action} of {entity_type} {entity_id}", commit=commit):
        return None
    return log


def record_delete(
    db: Session,
    actor_id: UUID,
    entity_type: str,
    entity_id: UUID,
    previous: dict[str, Any],
    archived_at: datetime,
    project_id: UUID | None = None,
    **kwargs: Any,
) -> models.AuditLog | None:
    """Record an archival: an ``archived_at`` field record plus a ``delete`` action."""

    kwargs.setdefault("now", archived_at)
    return record_update(
        db,
        actor_id,
        entity_type,
        entity_id,
        previous,
        {"archived_at": archived_at},
        project_id,
        action="delete",
        **kwargs,
    )


def record_removal(
    db: Session,
    actor_id: UUID,
    entity_type: str,
    entity_id: UUID,
    project_id: UUID | None = None,
    *,
    request: Request | None = None,
    details: dict | None = None,
) -> models.AuditLog | None:
    """Trace a physical removal; the row is gone so there is no field diff."""

    log = _action_row(
        actor_id,
        "delete",
        entity_type,
        entity_id,
        project_id,
        utcnow(),
        details=details,
        request=request,
    )
    return log if _persist(db, [log], f"removal of {entity_type} {entity_id}") else None


def removal_trace(
    entity_type: str,
    entity_id: UUID,
    project_id: UUID | None = None,
    *,
    actor_id: UUID = SYSTEM_ACTOR_ID,
    details: dict | None = None,
) -> models.AuditLog:
    """Unsaved ``delete`` record for a row removed inside a larger unit of work."""

    return _action_row(actor_id, "delete", entity_type, entity_id, project_id, utcnow(), details=details)


def correlate_changes(db: Session, log: models.AuditLog, mode: str | None = None) -> list[models.FieldVersion]:
    """Return the field records that belong to ``log``.

    ``window`` mode joins on entity and a +/- window around the action
    timestamp; two edits of one entity inside the window can be mixed up.
    ``key`` mode joins on the correlation id and falls back to the window for
    records written without one.
    """

    mode = mode or CORRELATION_MODE
    if mode not in _CORRELATION_MODES:
        raise InvalidArgument(f"Unsupported correlation mode: {mode}")
    query = db.query(models.FieldVersion).filter(
        models.FieldVersion.entity_type == log.entity_type,
        models.FieldVersion.entity_id == log.entity_id,
    )
    if mode == "key" and log.correlation_id is not None:
        query = query.filter(models.FieldVersion.correlation_id == log.correlation_id)
    else:
        window = timedelta(seconds=CORRELATION_WINDOW_SECONDS)
        query = query.filter(
            models.FieldVersion.changed_at >= log.timestamp - window,
            models.FieldVersion.changed_at <= log.timestamp + window,
        )
    return query.order_by(models.FieldVersion.changed_at.desc()).all()


def _actor_summary(user: models.User | None) -> schemas.ActorSummary | None:
    if user is None:
        return None
    return schemas.ActorSummary(id=user.id, name=user.full_name, email=user.email)


def actor_map(db: Session, actor_ids: Iterable[UUID]) -> dict[UUID, schemas.ActorSummary]:
    ids = list(set(actor_ids))
    if not ids:
        return {}
    users = db.query(models.User).filter(models.User.id.in_(ids)).all()
    return {user.id: _actor_summary(user) for user in users}


def visible_logs_filter(db: Session, viewer: models.User):
    """SQL criterion limiting action records to what ``viewer`` may see, or None."""

    if is_elevated_role(viewer.global_role):
        return None
    project_ids = accessible_project_ids(db, viewer)
    criteria = [models.AuditLog.actor_id == viewer.id]
    if project_ids:
        criteria.append(models.AuditLog.project_id.in_(list(project_ids)))
    return or_(*criteria)


def query_audit_trail(
    db: Session,
    viewer: models.User,
    *,
    action: str | None = None,
    entity_type: str | None = None,
    project_id: UUID | None = None,
    actor_id: UUID | None = None,
    text_query: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> schemas.AuditTrailPage:
    if action and action not in ACTIONS:
        raise InvalidArgument(f"Unsupported action filter: {action}")
    page = max(page, 1)
    limit = min(max(limit, 1), 100)

    query = db.query(models.AuditLog)
    visibility = visible_logs_filter(db, viewer)
    if visibility is not None:
        query = query.filter(visibility)
    if action:
        query = query.filter(models.AuditLog.action == action)
    if entity_type:
        query = query.filter(models.AuditLog.entity_type == entity_type)
    if project_id:
        query = query.filter(models.AuditLog.project_id == project_id)
    if actor_id:
        query = query.filter(models.AuditLog.actor_id == actor_id)
    if text_query and text_query.strip():
        trimmed = text_query.strip()
        alternatives = [models.AuditLog.entity_type.ilike(f"%{trimmed}%")]
        try:
            alternatives.append(models.AuditLog.entity_id == UUID(trimmed))
        except ValueError:
            pass
        matching_users = (
            db.query(models.User.id)
            .filter(or_(models.User.full_name.ilike(f"%{trimmed}%"), models.User.email.ilike(f"%{trimmed}%")))
            .all()
        )
        if matching_users:
            alternatives.append(models.AuditLog.actor_id.in_([row[0] for row in matching_users]))
        query = query.filter(or_(*alternatives))

    total = query.count()
    logs = (
        query.order_by(models.AuditLog.timestamp.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    actors = actor_map(db, (log.actor_id for log in logs))
    items = [
        schemas.AuditTrailItem(
            id=log.id,
            actor_id=log.actor_id,
            action=log.action,
            entity_type=log.entity_type,
            entity_id=log.entity_id,
            project_id=log.project_id,
            details=log.details or {},
            timestamp=as_utc(log.timestamp),
            actor=actors.get(log.actor_id),
            changes=[schemas.FieldVersionOut.model_validate(row) for row in correlate_changes(db, log)],
        )
        for log in logs
    ]
    return schemas.AuditTrailPage(items=items, total=total, page=page, limit=limit)


def list_versions(db: Session, entity_type: str, entity_id: UUID, limit: int = 20) -> list[models.FieldVersion]:
    return (
        db.query(models.FieldVersion)
        .filter(models.FieldVersion.entity_type == entity_type, models.FieldVersion.entity_id == entity_id)
        .order_by(models.FieldVersion.changed_at.desc())
        .limit(limit)
        .all()
    )


def project_history(db: Session, project_id: UUID, limit: int = 50) -> list[models.AuditLog]:
    return (
        db.query(models.AuditLog)
        .filter(models.AuditLog.project_id == project_id)
        .order_by(models.AuditLog.timestamp.desc())
        .limit(limit)
        .all()
    )


def generate_report(
    db: Session,
    viewer: models.User,
    start: datetime,
    end: datetime,
    actor_id: UUID | None = None,
):
    start = as_utc(start).astimezone(timezone.utc)
    end = as_utc(end).astimezone(timezone.utc)
    query = db.query(models.AuditLog).filter(
        models.AuditLog.timestamp >= start,
        models.AuditLog.timestamp <= end,
    )
    visibility = visible_logs_filter(db, viewer)
    if visibility is not None:
        query = query.filter(visibility)
    if actor_id:
        query = query.filter(models.AuditLog.actor_id == actor_id)
    rows = (
        query.with_entities(models.AuditLog.action, func.count(models.AuditLog.id))
        .group_by(models.AuditLog.action)
        .all()
    )
    return [{"action": r[0], "count": r[1]} for r in rows]
