from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import audit, models
from .access import AccessDecision, authorize, project_target, require_edit, resolve_access
from .database import utcnow
from .errors import ArchiveAborted, InvalidArgument, NotFound
from .store import ArchiveState, get_entity, get_spec, is_archived, parse_id, snapshot, upsert_entity

# purpose: create, change, archive and restore entities with authorization and history
# status: active
# depends_on: access.resolve_access, audit.record_update, store.upsert_entity

logger = logging.getLogger(__name__)

ARCHIVE_BATCH_SIZE = int(os.getenv("ARCHIVE_BATCH_SIZE", "500"))


@dataclass(frozen=True)
class ArchiveResult:
    entity_type: str
    entity_id: UUID
    archived_count: int
    archived_at: datetime | None = None
    cascade: bool = False
    reparented: int = 0
    archived_ids: tuple[UUID, ...] = field(default=())


def _project_of(entity_type: str, entity: Any) -> UUID | None:
    spec = get_spec(entity_type)
    return getattr(entity, spec.project_field, None) if spec.project_field else None


def create_entity(
    db: Session,
    actor: models.User,
    entity_type: str,
    fields: dict[str, Any],
    *,
    request: Request | None = None,
) -> Any:
    """Authorize against the target project, persist, then record ``create``."""

    spec = get_spec(entity_type)
    values = dict(fields)
    if spec.project_field and spec.project_field != "id" and values.get(spec.project_field):
        project_id = parse_id(values[spec.project_field], "project id")
        require_edit(resolve_access(db, actor, project_target(db, project_id)))
    if spec.owner_field and spec.owner_field != "id" and not values.get(spec.owner_field):
        values[spec.owner_field] = actor.id
    if entity_type == "Milestone" and values.get("parent_id"):
        check_parent(db, actor, values["parent_id"], values.get("project_id"))

    entity = upsert_entity(db, entity_type, None, values)
    db.commit()
    db.refresh(entity)
    audit.record_create(db, actor.id, entity_type, entity.id, _project_of(entity_type, entity), request=request)
    return entity


def apply_change(
    db: Session,
    actor: models.User,
    entity_type: str,
    entity_id: str | UUID,
    patch: dict[str, Any],
    *,
    request: Request | None = None,
    decision: AccessDecision | None = None,
) -> Any:
    """Apply ``patch`` to an entity and record the field-level diff.

    ``patch`` may carry the boolean ``archived`` toggle; it is translated to
    ``archived_at`` before anything is written or diffed.
    """

    spec = get_spec(entity_type)
    entity = get_entity(db, entity_type, entity_id, ArchiveState.ALL)
    require_edit(decision or authorize(db, actor, entity_type, entity))

    previous = snapshot(entity)
    now = utcnow()
    changes = audit.translate_archive_toggle(previous, patch, now)

    if spec.project_field and spec.project_field != "id" and spec.project_field in changes:
        next_project = changes[spec.project_field]
        if next_project is not None and next_project != previous.get(spec.project_field):
            require_edit(resolve_access(db, actor, project_target(db, parse_id(next_project, "project id"))))
    if entity_type == "Milestone" and ("parent_id" in changes or "project_id" in changes):
        parent_id = changes.get("parent_id", previous.get("parent_id"))
        if parent_id is not None:
            check_parent(db, actor, parent_id, changes.get("project_id", previous.get("project_id")))
        if "parent_id" in changes:
            ensure_acyclic(db, entity.id, changes["parent_id"])

    upsert_entity(db, entity_type, entity.id, changes)
    db.commit()
    db.refresh(entity)
    audit.record_update(
        db,
        actor.id,
        entity_type,
        entity.id,
        previous,
        changes,
        previous.get(spec.project_field) if spec.project_field else None,
        now=now,
        request=request,
    )
    return entity


def archive_entity(
    db: Session,
    actor: models.User,
    entity_type: str,
    entity_id: str | UUID,
    *,
    request: Request | None = None,
    decision: AccessDecision | None = None,
) -> ArchiveResult:
    """Soft-delete a single entity. Archiving an archived entity is a no-op."""

    spec = get_spec(entity_type)
    if not spec.archivable:
        raise InvalidArgument(f"{entity_type} cannot be archived")
    entity = get_entity(db, entity_type, entity_id, ArchiveState.ALL)
    require_edit(decision or authorize(db, actor, entity_type, entity))
    if is_archived(entity):
        return ArchiveResult(entity_type, entity.id, 0, archived_at=entity.archived_at)

    previous = snapshot(entity)
    timestamp = utcnow()
    entity.archived_at = timestamp
    db.commit()
    audit.record_delete(
        db,
        actor.id,
        entity_type,
        entity.id,
        previous,
        timestamp,
        _project_of(entity_type, entity),
        request=request,
    )
    return ArchiveResult(entity_type, entity.id, 1, archived_at=timestamp, archived_ids=(entity.id,))


def restore_entity(
    db: Session,
    actor: models.User,
    entity_type: str,
    entity_id: str | UUID,
    *,
    request: Request | None = None,
    decision: AccessDecision | None = None,
) -> Any:
    """Clear ``archived_at`` on one entity; descendants stay archived."""

    return apply_change(
        db,
        actor,
        entity_type,
        entity_id,
        {"archived": False},
        request=request,
        decision=decision,
    )


def collect_descendant_ids(db: Session, root_id: UUID) -> list[UUID]:
    """Breadth-first walk of the milestone forest below ``root_id``.

    One query per tree level. Nodes already seen are skipped so a corrupted
    parent chain cannot loop forever.
    """

    seen = {root_id}
    result: list[UUID] = []
    frontier = [root_id]
    while frontier:
        rows = db.query(models.Milestone.id).filter(models.Milestone.parent_id.in_(frontier)).all()
        frontier = []
        for (child_id,) in rows:
            if child_id in seen:
                continue
            seen.add(child_id)
            result.append(child_id)
            frontier.append(child_id)
    return result


def check_parent(db: Session, actor: models.User, parent_id: str | UUID, project_id: str | UUID | None) -> None:
    """Attaching below a milestone is an edit of that milestone's subtree."""

    parent = get_entity(db, "Milestone", parent_id, ArchiveState.ALL)
    require_edit(authorize(db, actor, "Milestone", parent))
    expected = parse_id(project_id, "project id") if project_id else None
    if parent.project_id != expected:
        raise InvalidArgument("A milestone and its parent must belong to the same project")


def ensure_acyclic(db: Session, milestone_id: UUID, new_parent_id: str | UUID | None) -> None:
    """Reject a parent change that would make ``milestone_id`` its own ancestor."""

    if new_parent_id is None:
        return
    current = parse_id(new_parent_id, "parent id")
    if db.get(models.Milestone, current) is None:
        raise NotFound("Parent milestone not found")
    visited: set[UUID] = set()
    while current is not None and current not in visited:
        if current == milestone_id:
            logger.warning("Rejected parent change creating a cycle at milestone %s", milestone_id)
            raise InvalidArgument("A milestone cannot be moved below itself or its descendants")
        visited.add(current)
        current = db.query(models.Milestone.parent_id).filter(models.Milestone.id == current).scalar()


def _reparent_children(
    db: Session,
    actor: models.User,
    root: models.Milestone,
    request: Request | None,
) -> int:
    new_parent_id = root.parent_id
    children = db.query(models.Milestone).filter(models.Milestone.parent_id == root.id).all()
    if not children:
        return 0
    previous = {child.id: {"parent_id": child.parent_id} for child in children}
    for child in children:
        child.parent_id = new_parent_id
    db.commit()
    timestamp = utcnow()
    for child in children:
        audit.record_update(
            db,
            actor.id,
            "Milestone",
            child.id,
            previous[child.id],
            {"parent_id": new_parent_id},
            child.project_id,
            now=timestamp,
            request=request,
            commit=False,
        )
    audit.flush_records(db)
    return len(children)


def archive_milestone(
    db: Session,
    actor: models.User,
    milestone_id: str | UUID,
    *,
    cascade: bool = False,
    reparent: bool = False,
    request: Request | None = None,
) -> ArchiveResult:
    """Archive a milestone, optionally with its whole subtree.

    ``cascade`` archives every descendant with one shared timestamp.
    ``reparent`` (without ``cascade``) first points the direct children at
    the root's former parent. With neither flag the children keep pointing at
    the archived node.
    """

    root = get_entity(db, "Milestone", milestone_id, ArchiveState.ALL)
    require_edit(authorize(db, actor, "Milestone", root))

    reparented = 0
    if reparent and not cascade:
        reparented = _reparent_children(db, actor, root, request)

    candidate_ids = [root.id]
    if cascade:
        candidate_ids.extend(collect_descendant_ids(db, root.id))
    targets = (
        db.query(models.Milestone)
        .filter(models.Milestone.id.in_(candidate_ids), models.Milestone.archived_at.is_(None))
        .all()
    )
    order = {node_id: index for index, node_id in enumerate(candidate_ids)}
    targets.sort(key=lambda node: order[node.id])
    previous = {node.id: snapshot(node) for node in targets}

    timestamp = utcnow()
    archived: list[models.Milestone] = []
    failure: SQLAlchemyError | None = None
    for start in range(0, len(targets), max(ARCHIVE_BATCH_SIZE, 1)):
        batch = targets[start : start + ARCHIVE_BATCH_SIZE]
        try:
            (
                db.query(models.Milestone)
                .filter(models.Milestone.id.in_([node.id for node in batch]))
                .update({models.Milestone.archived_at: timestamp}, synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            failure = exc
            break
        archived.extend(batch)

    details = {"cascade": cascade, "archived_count": len(archived), "reparented": reparented}
    for node in archived:
        audit.record_delete(
            db,
            actor.id,
            "Milestone",
            node.id,
            previous[node.id],
            timestamp,
            previous[node.id].get("project_id"),
            request=request,
            details=details if node.id == root.id else {"cascade_root": str(root.id)},
            commit=False,
        )
    if archived:
        audit.flush_records(db)

    if failure is not None:
        logger.warning(
            "Cascade archive of milestone %s aborted after %d of %d nodes: %s",
            root.id,
            len(archived),
            len(targets),
            failure,
        )
        raise ArchiveAborted(len(archived))

    return ArchiveResult(
        "Milestone",
        root.id,
        len(archived),
        archived_at=timestamp if archived else root.archived_at,
        cascade=cascade,
        reparented=reparented,
        archived_ids=tuple(node.id for node in archived),
    )


RETENTION_DAYS = int(os.getenv("ARCHIVE_RETENTION_DAYS", "30"))

# leaves of the reference graph first; Milestone and Project go last
PURGE_ORDER = (
    "ProjectTask",
    "ProjectNote",
    "Manuscript",
    "Experiment",
    "FileItem",
    "KnowledgeBaseEntry",
    "Grant",
    "ScholarshipPayment",
    "Milestone",
    "Project",
)

_PROJECT_REFERENCES = (
    models.Milestone,
    models.ProjectTask,
    models.ProjectNote,
    models.Manuscript,
    models.Experiment,
    models.FileItem,
)


def _purge_milestones(db: Session, cutoff: datetime) -> list[tuple[UUID, UUID | None]]:
    removed: list[tuple[UUID, UUID | None]] = []
    while True:
        has_children = select(models.Milestone.parent_id).where(models.Milestone.parent_id.is_not(None))
        leaves = (
            db.query(models.Milestone.id, models.Milestone.project_id)
            .filter(
                models.Milestone.archived_at.is_not(None),
                models.Milestone.archived_at < cutoff,
                models.Milestone.id.not_in(has_children),
            )
            .all()
        )
        if not leaves:
            return removed
        ids = [row[0] for row in leaves]
        db.query(models.Milestone).filter(models.Milestone.id.in_(ids)).delete(synchronize_session=False)
        db.flush()
        removed.extend((row[0], row[1]) for row in leaves)


def _purge_projects(db: Session, cutoff: datetime) -> list[tuple[UUID, UUID | None]]:
    candidates = [
        row[0]
        for row in db.query(models.Project.id)
        .filter(models.Project.archived_at.is_not(None), models.Project.archived_at < cutoff)
        .all()
    ]
    removable = []
    for project_id in candidates:
        referenced = any(
            db.query(model.id).filter(model.project_id == project_id).first() is not None
            for model in _PROJECT_REFERENCES
        )
        if not referenced:
            removable.append(project_id)
    if removable:
        db.query(models.Membership).filter(models.Membership.project_id.in_(removable)).delete(
            synchronize_session=False
        )
        db.query(models.Project).filter(models.Project.id.in_(removable)).delete(synchronize_session=False)
        db.flush()
    return [(project_id, project_id) for project_id in removable]


def _purge_rows(db: Session, entity_type: str, cutoff: datetime) -> list[tuple[UUID, UUID | None]]:
    spec = get_spec(entity_type)
    model = spec.model
    project_column = getattr(model, spec.project_field) if spec.project_field else None
    columns = [model.id] if project_column is None else [model.id, project_column]
    rows = db.query(*columns).filter(model.archived_at.is_not(None), model.archived_at < cutoff).all()
    if not rows:
        return []
    db.query(model).filter(model.id.in_([row[0] for row in rows])).delete(synchronize_session=False)
    db.flush()
    return [(row[0], row[1] if project_column is not None else None) for row in rows]


def purge_archived(db: Session, *, now: datetime | None = None, retention_days: int | None = None) -> dict[str, int]:
    """Hard-delete rows archived before the retention cutoff.

    Rows still referenced by surviving children are kept. Every removed row
    gets a ``delete`` trace from the system actor, staged in the same unit of
    work; existing action and field records are never touched. The caller
    commits.
    """

    days = RETENTION_DAYS if retention_days is None else retention_days
    cutoff = (now or utcnow()) - timedelta(days=days)
    details = {"reason": "retention", "retention_days": days}
    removed: dict[str, int] = {}
    for entity_type in PURGE_ORDER:
        if entity_type == "Milestone":
            rows = _purge_milestones(db, cutoff)
        elif entity_type == "Project":
            rows = _purge_projects(db, cutoff)
        else:
            rows = _purge_rows(db, entity_type, cutoff)
        db.add_all(
            audit.removal_trace(entity_type, entity_id, project_id, details=details) for entity_id, project_id in rows
        )
        removed[entity_type] = len(rows)
    db.flush()
    return removed
