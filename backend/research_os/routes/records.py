"""CRUD routers for the project-scoped record types.

Each type gets the same surface: list, create, get, patch, archive, restore
and field history. The routers differ only in their schemas and prefix.
"""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from uuid import UUID

from ..database import get_db
from .. import audit, lifecycle, models, schemas
from ..access import authorize, project_target, require_view, resolve_access, visible_criterion
from ..auth import get_current_user
from ..store import ArchiveState, get_entity, get_spec, list_entities
from .deps import archive_state

RECORD_TYPES = (
    ("ProjectTask", "/api/tasks", "tasks", schemas.ProjectTaskCreate, schemas.ProjectTaskUpdate, schemas.ProjectTaskOut),
    ("ProjectNote", "/api/notes", "notes", schemas.ProjectNoteCreate, schemas.ProjectNoteUpdate, schemas.ProjectNoteOut),
    ("Manuscript", "/api/manuscripts", "manuscripts", schemas.ManuscriptCreate, schemas.ManuscriptUpdate, schemas.ManuscriptOut),
    ("Experiment", "/api/experiments", "experiments", schemas.ExperimentCreate, schemas.ExperimentUpdate, schemas.ExperimentOut),
    ("FileItem", "/api/files", "files", schemas.FileItemCreate, schemas.FileItemUpdate, schemas.FileItemOut),
    ("Grant", "/api/grants", "grants", schemas.GrantCreate, schemas.GrantUpdate, schemas.GrantOut),
    (
        "ScholarshipPayment",
        "/api/scholarships",
        "scholarships",
        schemas.ScholarshipPaymentCreate,
        schemas.ScholarshipPaymentUpdate,
        schemas.ScholarshipPaymentOut,
    ),
)


def build_record_router(entity_type, prefix, tag, create_schema, update_schema, out_schema) -> APIRouter:
    spec = get_spec(entity_type)
    model = spec.model
    router = APIRouter(prefix=prefix, tags=[tag])

    @router.get("", response_model=list[out_schema])
    def list_records(
        project_id: UUID | None = Query(None, alias="projectId"),
        state: ArchiveState = Depends(archive_state),
        db: Session = Depends(get_db),
        user: models.User = Depends(get_current_user),
    ):
        query = list_entities(db, entity_type, state)
        if project_id is not None and spec.project_field:
            require_view(resolve_access(db, user, project_target(db, project_id)))
            query = query.filter(getattr(model, spec.project_field) == project_id)
        else:
            criterion = visible_criterion(db, user, spec)
            if criterion is not None:
                query = query.filter(criterion)
        return query.order_by(model.created_at.desc()).all()

    @router.post("", response_model=out_schema)
    def create_record(
        payload: create_schema,
        request: Request,
        db: Session = Depends(get_db),
        user: models.User = Depends(get_current_user),
    ):
        return lifecycle.create_entity(db, user, entity_type, payload.model_dump(), request=request)

    @router.get("/{record_id}", response_model=out_schema)
    def get_record(
        record_id: UUID,
        state: ArchiveState = Depends(archive_state),
        db: Session = Depends(get_db),
        user: models.User = Depends(get_current_user),
    ):
        entity = get_entity(db, entity_type, record_id, state)
        require_view(authorize(db, user, entity_type, entity))
        return entity

    @router.patch("/{record_id}", response_model=out_schema)
    def update_record(
        record_id: UUID,
        payload: update_schema,
        request: Request,
        db: Session = Depends(get_db),
        user: models.User = Depends(get_current_user),
    ):
        patch = payload.model_dump(exclude_unset=True)
        return lifecycle.apply_change(db, user, entity_type, record_id, patch, request=request)

    @router.delete("/{record_id}", response_model=schemas.ArchiveResultOut)
    def archive_record(
        record_id: UUID,
        request: Request,
        db: Session = Depends(get_db),
        user: models.User = Depends(get_current_user),
    ):
        return lifecycle.archive_entity(db, user, entity_type, record_id, request=request)

    @router.post("/{record_id}/restore", response_model=out_schema)
    def restore_record(
        record_id: UUID,
        request: Request,
        db: Session = Depends(get_db),
        user: models.User = Depends(get_current_user),
    ):
        return lifecycle.restore_entity(db, user, entity_type, record_id, request=request)

    @router.get("/{record_id}/versions", response_model=list[schemas.FieldVersionOut])
    def record_versions(
        record_id: UUID,
        db: Session = Depends(get_db),
        user: models.User = Depends(get_current_user),
    ):
        entity = get_entity(db, entity_type, record_id, ArchiveState.ALL)
        require_view(authorize(db, user, entity_type, entity))
        return audit.list_versions(db, entity_type, entity.id)

    return router


routers = [build_record_router(*entry) for entry in RECORD_TYPES]
