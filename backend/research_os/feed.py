"""Notification feed assembly."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from . import models, schemas
from .access import accessible_project_ids, is_elevated_role
from .audit import actor_map, visible_logs_filter
from .database import as_utc, utcnow
from .store import ENTITY_SPECS, EntitySpec

# purpose: merge recent actions, deadlines, overdue items and status changes into one stream
# status: active
# depends_on: models.AuditLog, models.FieldVersion, store.ENTITY_SPECS

UPCOMING_DAYS = int(os.getenv("FEED_UPCOMING_DAYS", "7"))
STATUS_LOOKBACK_HOURS = int(os.getenv("FEED_STATUS_LOOKBACK_HOURS", "24"))
STATUS_LIMIT = int(os.getenv("FEED_STATUS_LIMIT", "10"))

DEADLINE_SPECS: tuple[EntitySpec, ...] = tuple(spec for spec in ENTITY_SPECS.values() if spec.due_field)
STATUS_SPECS: tuple[EntitySpec, ...] = tuple(spec for spec in ENTITY_SPECS.values() if hasattr(spec.model, "status"))


@dataclass(frozen=True)
class _FeedAccumulator:
    entries: list[schemas.FeedItem]

    def append(
        self,
        *,
        item_id: str,
        kind: str,
        title: str,
        timestamp: datetime,
        entity_type: str | None = None,
        entity_id: UUID | None = None,
        actor: schemas.ActorSummary | None = None,
        project: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.entries.append(
            schemas.FeedItem(
                id=item_id,
                kind=kind,
                title=title,
                timestamp=as_utc(timestamp),
                entity_type=entity_type,
                entity_id=entity_id,
                actor=actor,
                project=project,
                details=details or {},
            )
        )


@dataclass(frozen=True)
class _Scope:
    viewer: models.User
    elevated: bool
    project_ids: frozenset[UUID]


def build_feed(
    db: Session,
    viewer: models.User,
    *,
    limit: int = 10,
    now: datetime | None = None,
    upcoming_days: int | None = None,
) -> list[schemas.FeedItem]:
    """Return the newest ``limit`` feed items across every source."""

    now = now or utcnow()
    horizon = now + timedelta(days=UPCOMING_DAYS if upcoming_days is None else upcoming_days)
    elevated = is_elevated_role(viewer.global_role)
    scope = _Scope(
        viewer=viewer,
        elevated=elevated,
        project_ids=frozenset() if elevated else frozenset(accessible_project_ids(db, viewer)),
    )
    collector = _FeedAccumulator([])

    _collect_actions(db, collector, viewer, limit=limit)
    project_titles = _project_titles(db)
    for spec in DEADLINE_SPECS:
        _collect_due_items(db, collector, spec, scope, project_titles, now=now, horizon=horizon, overdue=False)
        _collect_due_items(db, collector, spec, scope, project_titles, now=now, horizon=horizon, overdue=True)
    _collect_status_changes(db, collector, scope, now=now)

    entries = sorted(collector.entries, key=lambda entry: entry.timestamp, reverse=True)
    return entries[:limit]


def _project_titles(db: Session) -> dict[UUID, str]:
    return {row[0]: row[1] for row in db.query(models.Project.id, models.Project.title).all()}


def _collect_actions(db: Session, collector: _FeedAccumulator, viewer: models.User, *, limit: int) -> None:
    query = db.query(models.AuditLog)
    visibility = visible_logs_filter(db, viewer)
    if visibility is not None:
        query = query.filter(visibility)
    logs = query.order_by(models.AuditLog.timestamp.desc()).limit(limit).all()
    actors = actor_map(db, (log.actor_id for log in logs))
    for log in logs:
        collector.append(
            item_id=str(log.id),
            kind="audit",
            title=f"{log.action.upper()} · {log.entity_type}",
            timestamp=log.timestamp,
            entity_type=log.entity_type,
            entity_id=log.entity_id,
            actor=actors.get(log.actor_id),
        )


def _collect_due_items(
    db: Session,
    collector: _FeedAccumulator,
    spec: EntitySpec,
    scope: _Scope,
    project_titles: dict[UUID, str],
    *,
    now: datetime,
    horizon: datetime,
    overdue: bool,
) -> None:
    model = spec.model
    due_column = getattr(model, spec.due_field)
    query = db.query(model).filter(model.archived_at.is_(None), due_column.is_not(None))
    if spec.closed_status:
        query = query.filter(or_(model.status.is_(None), model.status != spec.closed_status))
    if overdue:
        query = query.filter(due_column < now)
    else:
        query = query.filter(due_column >= now, due_column <= horizon)
    if not scope.elevated:
        owner_column = getattr(model, spec.owner_field)
        if spec.project_field:
            project_column = getattr(model, spec.project_field)
            criteria = [(project_column.is_(None)) & (owner_column == scope.viewer.id)]
            if scope.project_ids:
                criteria.append(project_column.in_(list(scope.project_ids)))
            query = query.filter(or_(*criteria))
        else:
            query = query.filter(owner_column == scope.viewer.id)

    for entity in query.all():
        project_id = getattr(entity, spec.project_field) if spec.project_field else None
        title = f"Overdue: {entity.title}" if overdue else f"{spec.label}: {entity.title}"
        collector.append(
            item_id=str(entity.id),
            kind="overdue" if overdue else "deadline",
            title=title,
            timestamp=getattr(entity, spec.due_field),
            entity_type=spec.name,
            entity_id=entity.id,
            project=project_titles.get(project_id) if project_id else None,
        )


def _visible_ids(spec: EntitySpec, scope: _Scope):
    # ownership or project reach, the same grants the resolver applies to these types
    model = spec.model
    criteria = []
    if spec.owner_field:
        criteria.append(getattr(model, spec.owner_field) == scope.viewer.id)
    if spec.project_field and scope.project_ids:
        criteria.append(getattr(model, spec.project_field).in_(list(scope.project_ids)))
    if not criteria:
        return None
    return select(model.id).where(or_(*criteria))


def _collect_status_changes(db: Session, collector: _FeedAccumulator, scope: _Scope, *, now: datetime) -> None:
    since = now - timedelta(hours=STATUS_LOOKBACK_HOURS)
    query = db.query(models.FieldVersion).filter(
        models.FieldVersion.field_path == "status", models.FieldVersion.changed_at >= since
    )
    if not scope.elevated:
        criteria = []
        for spec in STATUS_SPECS:
            visible = _visible_ids(spec, scope)
            if visible is not None:
                criteria.append(
                    and_(models.FieldVersion.entity_type == spec.name, models.FieldVersion.entity_id.in_(visible))
                )
        if not criteria:
            return
        query = query.filter(or_(*criteria))
    changes = query.order_by(models.FieldVersion.changed_at.desc()).limit(STATUS_LIMIT).all()
    for change in changes:
        collector.append(
            item_id=str(change.id),
            kind="status",
            title=f"{change.entity_type} changed status",
            timestamp=change.changed_at,
            entity_type=change.entity_type,
            entity_id=change.entity_id,
            details={"from": change.old_value, "to": change.new_value},
        )
