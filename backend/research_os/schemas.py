from datetime import datetime
from typing import Optional, Any, Dict, Literal, List
from pydantic import BaseModel, EmailStr, ConfigDict, Field, field_validator
from uuid import UUID

from .database import as_utc


class UTCModel(BaseModel):
    """Out schemas re-attach UTC to timestamps read back without an offset."""

    @field_validator("*", mode="after")
    @classmethod
    def _attach_utc(cls, value):
        if isinstance(value, datetime):
            return as_utc(value)
        return value


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    full_name: Optional[str] = None


class UserOut(UTCModel):
    id: UUID
    email: EmailStr
    full_name: Optional[str] = None
    global_role: str
    is_active: bool = True
    model_config = ConfigDict(from_attributes=True)


class UserRoleUpdate(BaseModel):
    global_role: Literal["Owner", "Supervisor", "Mentor", "Collaborator", "Viewer"]


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ActorSummary(BaseModel):
    id: UUID
    name: Optional[str] = None
    email: Optional[str] = None


class AccessOut(BaseModel):
    can_view: bool
    can_edit: bool
    role: Optional[str] = None
    source: Optional[str] = None


class ProjectCreate(BaseModel):
    title: str
    description: Optional[str] = None
    status: str = "active"
    tags: List[str] = []
    visibility: Literal["private", "shared"] = "private"


class ProjectUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    tags: Optional[List[str]] = None
    visibility: Optional[Literal["private", "shared"]] = None
    archived: Optional[bool] = None


class ProjectOut(UTCModel):
    id: UUID
    owner_id: UUID
    title: str
    description: Optional[str] = None
    status: Optional[str] = None
    tags: List[str] = []
    visibility: Optional[str] = None
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class MembershipIn(BaseModel):
    user_id: UUID
    role: Literal["Collaborator", "Viewer"] = "Collaborator"


class MembershipOut(UTCModel):
    id: UUID
    project_id: UUID
    user_id: UUID
    role: str
    invited_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    user: Optional[ActorSummary] = None
    model_config = ConfigDict(from_attributes=True)


class MilestoneCreate(BaseModel):
    title: str
    project_id: Optional[UUID] = None
    parent_id: Optional[UUID] = None
    status: str = "planned"
    due_date: Optional[datetime] = None
    achievements: Optional[str] = None
    plan: Optional[str] = None
    linked_experiment_ids: List[str] = []
    linked_file_ids: List[str] = []
    include_in_global: bool = False
    icon: Optional[str] = None
    color: Optional[str] = None
    sort_order: Optional[int] = None


class MilestoneUpdate(BaseModel):
    title: Optional[str] = None
    project_id: Optional[UUID] = None
    parent_id: Optional[UUID] = None
    status: Optional[str] = None
    due_date: Optional[datetime] = None
    achievements: Optional[str] = None
    plan: Optional[str] = None
    linked_experiment_ids: Optional[List[str]] = None
    linked_file_ids: Optional[List[str]] = None
    include_in_global: Optional[bool] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    sort_order: Optional[int] = None
    archived: Optional[bool] = None


class MilestoneOut(MilestoneCreate, UTCModel):
    id: UUID
    created_by: Optional[UUID] = None
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class ProjectTaskCreate(BaseModel):
    project_id: UUID
    title: str
    status: str = "todo"
    due_date: Optional[datetime] = None
    assignee_id: Optional[UUID] = None
    notes: Optional[str] = None


class ProjectTaskUpdate(BaseModel):
    title: Optional[str] = None
    status: Optional[str] = None
    due_date: Optional[datetime] = None
    assignee_id: Optional[UUID] = None
    notes: Optional[str] = None
    archived: Optional[bool] = None


class ProjectTaskOut(ProjectTaskCreate, UTCModel):
    id: UUID
    created_by: Optional[UUID] = None
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class ProjectNoteCreate(BaseModel):
    project_id: UUID
    title: str
    content: Optional[str] = None


class ProjectNoteUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    archived: Optional[bool] = None


class ProjectNoteOut(ProjectNoteCreate, UTCModel):
    id: UUID
    created_by: Optional[UUID] = None
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class ManuscriptCreate(BaseModel):
    title: str
    project_id: Optional[UUID] = None
    status: str = "draft"
    abstract: Optional[str] = None
    target_journal: Optional[str] = None


class ManuscriptUpdate(BaseModel):
    title: Optional[str] = None
    project_id: Optional[UUID] = None
    status: Optional[str] = None
    abstract: Optional[str] = None
    target_journal: Optional[str] = None
    archived: Optional[bool] = None


class ManuscriptOut(ManuscriptCreate, UTCModel):
    id: UUID
    created_by: Optional[UUID] = None
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class ExperimentCreate(BaseModel):
    title: str
    project_id: Optional[UUID] = None
    status: str = "planned"
    hypothesis: Optional[str] = None
    protocol: Optional[str] = None
    results: Optional[str] = None


class ExperimentUpdate(BaseModel):
    title: Optional[str] = None
    project_id: Optional[UUID] = None
    status: Optional[str] = None
    hypothesis: Optional[str] = None
    protocol: Optional[str] = None
    results: Optional[str] = None
    archived: Optional[bool] = None


class ExperimentOut(ExperimentCreate, UTCModel):
    id: UUID
    created_by: Optional[UUID] = None
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class FileItemCreate(BaseModel):
    filename: str
    bucket: str
    key: str
    project_id: Optional[UUID] = None
    content_type: Optional[str] = None
    size: Optional[int] = None


class FileItemUpdate(BaseModel):
    filename: Optional[str] = None
    project_id: Optional[UUID] = None
    content_type: Optional[str] = None
    archived: Optional[bool] = None


class FileItemOut(FileItemCreate, UTCModel):
    id: UUID
    created_by: Optional[UUID] = None
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class GrantCreate(BaseModel):
    title: str
    status: str = "planned"
    organization: Optional[str] = None
    description: Optional[str] = None
    deadline_at: Optional[datetime] = None
    planned_submission_at: Optional[datetime] = None
    amount: Optional[float] = None
    currency: str = "UAH"
    notes: Optional[str] = None


class GrantUpdate(BaseModel):
    title: Optional[str] = None
    status: Optional[str] = None
    organization: Optional[str] = None
    description: Optional[str] = None
    deadline_at: Optional[datetime] = None
    planned_submission_at: Optional[datetime] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    notes: Optional[str] = None
    archived: Optional[bool] = None


class GrantOut(GrantCreate, UTCModel):
    id: UUID
    created_by: Optional[UUID] = None
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class ScholarshipPaymentCreate(BaseModel):
    title: str
    recipient_id: Optional[UUID] = None
    status: str = "scheduled"
    amount: Optional[float] = None
    currency: str = "UAH"
    due_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    notes: Optional[str] = None


class ScholarshipPaymentUpdate(BaseModel):
    title: Optional[str] = None
    recipient_id: Optional[UUID] = None
    status: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    due_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    notes: Optional[str] = None
    archived: Optional[bool] = None


class ScholarshipPaymentOut(ScholarshipPaymentCreate, UTCModel):
    id: UUID
    created_by: Optional[UUID] = None
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class KnowledgeBaseEntryCreate(BaseModel):
    title: str
    category: str = "Protocol"
    content: Optional[str] = None
    tags: List[str] = []
    visibility: Literal["private", "shared"] = "private"
    shared_project_ids: List[UUID] = []
    shared_user_ids: List[UUID] = []


class KnowledgeBaseEntryUpdate(BaseModel):
    title: Optional[str] = None
    category: Optional[str] = None
    content: Optional[str] = None
    tags: Optional[List[str]] = None
    visibility: Optional[Literal["private", "shared"]] = None
    shared_project_ids: Optional[List[UUID]] = None
    shared_user_ids: Optional[List[UUID]] = None
    archived: Optional[bool] = None


class KnowledgeBaseEntryOut(UTCModel):
    id: UUID
    title: str
    category: Optional[str] = None
    content: Optional[str] = None
    tags: List[str] = []
    visibility: Optional[str] = None
    shared_project_ids: List[UUID] = []
    shared_user_ids: List[UUID] = []
    created_by: UUID
    updated_by: Optional[UUID] = None
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class FieldVersionOut(UTCModel):
    id: UUID
    entity_type: str
    entity_id: UUID
    field_path: str
    old_value: Any = None
    new_value: Any = None
    changed_by: UUID
    correlation_id: Optional[UUID] = None
    changed_at: datetime
    model_config = ConfigDict(from_attributes=True)


class AuditLogOut(UTCModel):
    id: UUID
    actor_id: UUID
    action: str
    entity_type: str
    entity_id: UUID
    project_id: Optional[UUID] = None
    details: Dict[str, Any] = {}
    timestamp: datetime
    model_config = ConfigDict(from_attributes=True)


class AuditTrailItem(AuditLogOut):
    actor: Optional[ActorSummary] = None
    changes: List[FieldVersionOut] = []


class AuditTrailPage(BaseModel):
    items: List[AuditTrailItem]
    total: int
    page: int
    limit: int


class AuditReportItem(BaseModel):
    action: str
    count: int


class FeedItem(UTCModel):
    id: str
    kind: Literal["audit", "deadline", "overdue", "status"]
    title: str
    timestamp: datetime
    entity_type: Optional[str] = None
    entity_id: Optional[UUID] = None
    actor: Optional[ActorSummary] = None
    project: Optional[str] = None
    details: Dict[str, Any] = {}


class ArchiveResultOut(UTCModel):
    entity_type: str
    entity_id: UUID
    archived_count: int
    archived_at: Optional[datetime] = None
    cascade: bool = False
    reparented: int = 0
    archived_ids: List[UUID] = []
    model_config = ConfigDict(from_attributes=True)


class EntityStateOut(UTCModel):
    entity_type: str
    entity_id: UUID
    archived_at: Optional[datetime] = None
