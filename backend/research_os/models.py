import uuid
import sqlalchemy as sa
from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Float,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID

from .database import Base, utcnow

GLOBAL_ROLES = ("Owner", "Supervisor", "Mentor", "Collaborator", "Viewer")
MEMBERSHIP_ROLES = ("Collaborator", "Viewer")


class User(Base):
    __tablename__ = "users"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False, index=True)
    hashed_password = Column(String, nullable=False)
    full_name = Column(String)
    global_role = Column(String, default="Collaborator", nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Project(Base):
    __tablename__ = "projects"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text)
    status = Column(String, default="active")
    tags = Column(JSON, default=list)
    visibility = Column(String, default="private")
    archived_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Membership(Base):
    __tablename__ = "memberships"
    __table_args__ = (sa.UniqueConstraint("project_id", "user_id"),)
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    role = Column(String, nullable=False)
    invited_by = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Milestone(Base):
    __tablename__ = "milestones"
    __table_args__ = (sa.Index("ix_milestones_parent_order", "parent_id", "sort_order"),)
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=True, index=True)
    parent_id = Column(UUID(as_uuid=True), ForeignKey("milestones.id"), nullable=True)
    title = Column(String, nullable=False)
    status = Column(String, default="planned")
    due_date = Column(DateTime(timezone=True))
    achievements = Column(Text)
    plan = Column(Text)
    linked_experiment_ids = Column(JSON, default=list)
    linked_file_ids = Column(JSON, default=list)
    include_in_global = Column(Boolean, default=False)
    icon = Column(String)
    color = Column(String)
    sort_order = Column(Integer)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    archived_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ProjectTask(Base):
    __tablename__ = "project_tasks"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    status = Column(String, default="todo")
    due_date = Column(DateTime(timezone=True))
    assignee_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    notes = Column(Text)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    archived_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ProjectNote(Base):
    __tablename__ = "project_notes"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    content = Column(Text)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    archived_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Manuscript(Base):
    __tablename__ = "manuscripts"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=True, index=True)
    title = Column(String, nullable=False)
    status = Column(String, default="draft")
    abstract = Column(Text)
    target_journal = Column(String)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    archived_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Experiment(Base):
    __tablename__ = "experiments"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=True, index=True)
    title = Column(String, nullable=False)
    status = Column(String, default="planned")
    hypothesis = Column(Text)
    protocol = Column(Text)
    results = Column(Text)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    archived_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class FileItem(Base):
    __tablename__ = "file_items"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=True, index=True)
    filename = Column(String, nullable=False)
    content_type = Column(String)
    size = Column(Integer)
    # opaque blob reference; storage mechanics live outside this service
    bucket = Column(String, nullable=False)
    key = Column(String, nullable=False)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    archived_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class KnowledgeBaseEntry(Base):
    __tablename__ = "knowledge_base_entries"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    category = Column(String, default="Protocol")
    content = Column(Text)
    tags = Column(JSON, default=list)
    visibility = Column(String, default="private")
    shared_project_ids = Column(JSON, default=list)
    shared_user_ids = Column(JSON, default=list)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    updated_by = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    archived_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Grant(Base):
    __tablename__ = "grants"
    __table_args__ = (sa.Index("ix_grants_status_deadline", "status", "deadline_at"),)
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    status = Column(String, default="planned")
    organization = Column(String)
    description = Column(Text)
    deadline_at = Column(DateTime(timezone=True))
    planned_submission_at = Column(DateTime(timezone=True))
    amount = Column(Float)
    currency = Column(String, default="UAH")
    notes = Column(Text)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    archived_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ScholarshipPayment(Base):
    __tablename__ = "scholarship_payments"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    recipient_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    status = Column(String, default="scheduled")
    amount = Column(Float)
    currency = Column(String, default="UAH")
    due_at = Column(DateTime(timezone=True))
    paid_at = Column(DateTime(timezone=True))
    notes = Column(Text)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    archived_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        sa.Index("ix_audit_logs_project_entity_ts", "project_id", "entity_type", "timestamp"),
    )
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # no foreign keys: history must survive account removal
    actor_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    action = Column(String, nullable=False)
    entity_type = Column(String, nullable=False)
    entity_id = Column(UUID(as_uuid=True), nullable=False)
    project_id = Column(UUID(as_uuid=True), nullable=True)
    correlation_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    details = Column(JSON, default=dict)
    meta = Column("metadata", JSON, default=dict)
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class FieldVersion(Base):
    __tablename__ = "field_versions"
    __table_args__ = (
        sa.Index("ix_field_versions_entity_changed", "entity_type", "entity_id", "changed_at"),
    )
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    entity_type = Column(String, nullable=False)
    entity_id = Column(UUID(as_uuid=True), nullable=False)
    field_path = Column(String, nullable=False)
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    changed_by = Column(UUID(as_uuid=True), nullable=False)
    correlation_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    changed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
