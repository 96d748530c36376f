"""Entity store: typed access to every archivable record.

Every read threads an explicit :class:`ArchiveState` so the "active / archived
/ all" policy lives in one place instead of being rebuilt per query.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from . import models
from .errors import Conflict, InvalidArgument, NotFound


class ArchiveState(str, enum.Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"
    ALL = "all"


def archive_state_from_params(include_archived: bool = False, archived: bool = False) -> ArchiveState:
    """Map the ``includeArchived`` / ``archived`` request flags onto an archive state."""

    if include_archived and archived:
        raise InvalidArgument("includeArchived and archived cannot be combined")
    if include_archived:
        return ArchiveState.ALL
    if archived:
        return ArchiveState.ARCHIVED
    return ArchiveState.ACTIVE


def apply_archive_state(query: Query, model: type, state: ArchiveState) -> Query:
    if state is ArchiveState.ACTIVE:
        return query.filter(model.archived_at.is_(None))
    if state is ArchiveState.ARCHIVED:
        return query.filter(model.archived_at.is_not(None))
    return query


@dataclass(frozen=True)
class EntitySpec:
    """Describe how a domain type anchors authorization and deadlines."""

    name: str
    model: type
    owner_field: str | None = None
    project_field: str | None = None
    due_field: str | None = None
    closed_status: str | None = None
    label: str | None = None

    @property
    def archivable(self) -> bool:
        return hasattr(self.model, "archived_at")


ENTITY_SPECS: dict[str, EntitySpec] = {
    spec.name: spec
    for spec in (
        EntitySpec("Project", models.Project, owner_field="owner_id", project_field="id"),
        EntitySpec("Membership", models.Membership, project_field="project_id"),
        EntitySpec(
            "Milestone",
            models.Milestone,
            owner_field="created_by",
            project_field="project_id",
            due_field="due_date",
            closed_status="done",
            label="Milestone",
        ),
        EntitySpec(
            "ProjectTask",
            models.ProjectTask,
            owner_field="created_by",
            project_field="project_id",
            due_field="due_date",
            closed_status="done",
            label="Task",
        ),
        EntitySpec("ProjectNote", models.ProjectNote, owner_field="created_by", project_field="project_id"),
        EntitySpec("Manuscript", models.Manuscript, owner_field="created_by", project_field="project_id"),
        EntitySpec("Experiment", models.Experiment, owner_field="created_by", project_field="project_id"),
        EntitySpec("FileItem", models.FileItem, owner_field="created_by", project_field="project_id"),
        EntitySpec("KnowledgeBaseEntry", models.KnowledgeBaseEntry, owner_field="created_by"),
        EntitySpec(
            "Grant",
            models.Grant,
            owner_field="created_by",
            due_field="deadline_at",
            closed_status="closed",
            label="Grant",
        ),
        EntitySpec(
            "ScholarshipPayment",
            models.ScholarshipPayment,
            owner_field="created_by",
            due_field="due_at",
            closed_status="paid",
            label="Scholarship payment",
        ),
        EntitySpec("User", models.User, owner_field="id"),
    )
}

_IMMUTABLE_FIELDS = frozenset({"id", "created_at", "updated_at"})


def get_spec(entity_type: str) -> EntitySpec:
    spec = ENTITY_SPECS.get(entity_type)
    if spec is None:
        raise InvalidArgument(f"Unsupported entity type: {entity_type}")
    return spec


def parse_id(value: str | UUID | None, label: str = "id") -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise InvalidArgument(f"Invalid {label}")


def is_archived(entity: Any) -> bool:
    return getattr(entity, "archived_at", None) is not None


def get_entity(
    db: Session,
    entity_type: str,
    entity_id: str | UUID,
    state: ArchiveState = ArchiveState.ACTIVE,
) -> Any:
    """Return the entity or raise :class:`NotFound` when it is outside ``state``."""

    spec = get_spec(entity_type)
    uid = parse_id(entity_id)
    query = db.query(spec.model).filter(spec.model.id == uid)
    if spec.archivable:
        query = apply_archive_state(query, spec.model, state)
    entity = query.first()
    if entity is None:
        raise NotFound(f"{entity_type} not found")
    return entity


def list_entities(
    db: Session,
    entity_type: str,
    state: ArchiveState = ArchiveState.ACTIVE,
    **filters: Any,
) -> Query:
    spec = get_spec(entity_type)
    query = db.query(spec.model)
    if spec.archivable:
        query = apply_archive_state(query, spec.model, state)
    for field, value in filters.items():
        query = query.filter(getattr(spec.model, field) == value)
    return query


def column_names(model: type) -> list[str]:
    return [attr.key for attr in inspect(model).mapper.column_attrs]


def required_columns(model: type) -> set[str]:
    return {attr.key for attr in inspect(model).mapper.column_attrs if not attr.columns[0].nullable}


def snapshot(entity: Any, keys: list[str] | None = None) -> dict[str, Any]:
    """Capture the persisted field values of ``entity`` as a plain dict."""

    names = keys if keys is not None else column_names(type(entity))
    return {name: getattr(entity, name, None) for name in names}


def _normalize(value: Any) -> Any:
    # timestamps are stored as UTC wall-clock; naive input is taken as UTC
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return value


def validate_patch(spec: EntitySpec, patch: dict[str, Any]) -> None:
    allowed = set(column_names(spec.model)) - _IMMUTABLE_FIELDS
    unknown = sorted(set(patch) - allowed)
    if unknown:
        raise InvalidArgument(f"Unknown or immutable fields for {spec.name}: {', '.join(unknown)}")
    required = required_columns(spec.model)
    nulls = sorted(key for key, value in patch.items() if value is None and key in required)
    if nulls:
        raise InvalidArgument(f"Fields of {spec.name} cannot be null: {', '.join(nulls)}")


def upsert_entity(
    db: Session,
    entity_type: str,
    entity_id: str | UUID | None,
    patch: dict[str, Any],
) -> Any:
    """Apply ``patch`` to the entity, creating it when the id does not resolve.

    The write is flushed, not committed; the surrounding operation owns the
    unit of work.
    """

    spec = get_spec(entity_type)
    validate_patch(spec, patch)
    patch = {key: _normalize(value) for key, value in patch.items()}
    entity = None
    uid = parse_id(entity_id) if entity_id is not None else None
    if uid is not None:
        entity = db.get(spec.model, uid)
    if entity is None:
        entity = spec.model(**patch)
        if uid is not None:
            entity.id = uid
        db.add(entity)
    else:
        for key, value in patch.items():
            setattr(entity, key, value)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict(f"{entity_type} violates a storage constraint") from exc
    return entity
