from uuid import UUID
from datetime import datetime
from sqlalchemy.orm import Session
from fastapi import APIRouter, Depends, Query
from ..database import get_db
from ..auth import get_current_user
from .. import models, schemas, audit

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("", response_model=schemas.AuditTrailPage)
async def list_logs(
    action: str | None = None,
    entity_type: str | None = Query(None, alias="entityType"),
    project_id: UUID | None = Query(None, alias="projectId"),
    actor_id: UUID | None = Query(None, alias="actorId"),
    q: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return audit.query_audit_trail(
        db,
        current_user,
        action=action,
        entity_type=entity_type,
        project_id=project_id,
        actor_id=actor_id,
        text_query=q,
        page=page,
        limit=limit,
    )


@router.get("/report", response_model=list[schemas.AuditReportItem])
async def audit_report(
    start: datetime,
    end: datetime,
    actor_id: UUID | None = Query(None, alias="actorId"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return audit.generate_report(db, current_user, start, end, actor_id)
