"""create lifecycle core tables

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from typing import Sequence, Union

revision: str = '20261019_01'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id():
    return sa.Column('id', sa.UUID(as_uuid=True), primary_key=True)


def _owner():
    return sa.Column('created_by', sa.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=True)


def _project(nullable=True):
    return sa.Column('project_id', sa.UUID(as_uuid=True), sa.ForeignKey('projects.id'), nullable=nullable, index=True)


def _lifecycle_columns():
    return [
        sa.Column('archived_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        _id(),
        sa.Column('email', sa.String(), nullable=False, unique=True, index=True),
        sa.Column('hashed_password', sa.String(), nullable=False),
        sa.Column('full_name', sa.String(), nullable=True),
        sa.Column('global_role', sa.String(), nullable=False, server_default='Collaborator'),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        'projects',
        _id(),
        sa.Column('owner_id', sa.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=True),
        sa.Column('visibility', sa.String(), nullable=True),
        *_lifecycle_columns(),
    )
    op.create_table(
        'memberships',
        _id(),
        sa.Column('project_id', sa.UUID(as_uuid=True), sa.ForeignKey('projects.id'), nullable=False, index=True),
        sa.Column('user_id', sa.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('role', sa.String(), nullable=False),
        sa.Column('invited_by', sa.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('project_id', 'user_id'),
    )
    op.create_table(
        'milestones',
        _id(),
        _project(),
        sa.Column('parent_id', sa.UUID(as_uuid=True), sa.ForeignKey('milestones.id'), nullable=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=True),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('achievements', sa.Text(), nullable=True),
        sa.Column('plan', sa.Text(), nullable=True),
        sa.Column('linked_experiment_ids', sa.JSON(), nullable=True),
        sa.Column('linked_file_ids', sa.JSON(), nullable=True),
        sa.Column('include_in_global', sa.Boolean(), nullable=True),
        sa.Column('icon', sa.String(), nullable=True),
        sa.Column('color', sa.String(), nullable=True),
        sa.Column('sort_order', sa.Integer(), nullable=True),
        _owner(),
        *_lifecycle_columns(),
    )
    op.create_index('ix_milestones_parent_order', 'milestones', ['parent_id', 'sort_order'])
    op.create_table(
        'project_tasks',
        _id(),
        _project(nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=True),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('assignee_id', sa.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        _owner(),
        *_lifecycle_columns(),
    )
    op.create_table(
        'project_notes',
        _id(),
        _project(nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        _owner(),
        *_lifecycle_columns(),
    )
    op.create_table(
        'manuscripts',
        _id(),
        _project(),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=True),
        sa.Column('abstract', sa.Text(), nullable=True),
        sa.Column('target_journal', sa.String(), nullable=True),
        _owner(),
        *_lifecycle_columns(),
    )
    op.create_table(
        'experiments',
        _id(),
        _project(),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=True),
        sa.Column('hypothesis', sa.Text(), nullable=True),
        sa.Column('protocol', sa.Text(), nullable=True),
        sa.Column('results', sa.Text(), nullable=True),
        _owner(),
        *_lifecycle_columns(),
    )
    op.create_table(
        'file_items',
        _id(),
        _project(),
        sa.Column('filename', sa.String(), nullable=False),
        sa.Column('content_type', sa.String(), nullable=True),
        sa.Column('size', sa.Integer(), nullable=True),
        sa.Column('bucket', sa.String(), nullable=False),
        sa.Column('key', sa.String(), nullable=False),
        _owner(),
        *_lifecycle_columns(),
    )
    op.create_table(
        'knowledge_base_entries',
        _id(),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('category', sa.String(), nullable=True),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=True),
        sa.Column('visibility', sa.String(), nullable=True),
        sa.Column('shared_project_ids', sa.JSON(), nullable=True),
        sa.Column('shared_user_ids', sa.JSON(), nullable=True),
        sa.Column('created_by', sa.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('updated_by', sa.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=True),
        *_lifecycle_columns(),
    )
    op.create_table(
        'grants',
        _id(),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=True),
        sa.Column('organization', sa.String(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('deadline_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('planned_submission_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('amount', sa.Float(), nullable=True),
        sa.Column('currency', sa.String(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        _owner(),
        *_lifecycle_columns(),
    )
    op.create_index('ix_grants_status_deadline', 'grants', ['status', 'deadline_at'])
    op.create_table(
        'scholarship_payments',
        _id(),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('recipient_id', sa.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('status', sa.String(), nullable=True),
        sa.Column('amount', sa.Float(), nullable=True),
        sa.Column('currency', sa.String(), nullable=True),
        sa.Column('due_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        _owner(),
        *_lifecycle_columns(),
    )
    # history tables carry no foreign keys so they outlive the rows they describe
    op.create_table(
        'audit_logs',
        _id(),
        sa.Column('actor_id', sa.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('entity_type', sa.String(), nullable=False),
        sa.Column('entity_id', sa.UUID(as_uuid=True), nullable=False),
        sa.Column('project_id', sa.UUID(as_uuid=True), nullable=True),
        sa.Column('correlation_id', sa.UUID(as_uuid=True), nullable=True, index=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_audit_logs_project_entity_ts', 'audit_logs', ['project_id', 'entity_type', 'timestamp'])
    op.create_table(
        'field_versions',
        _id(),
        sa.Column('entity_type', sa.String(), nullable=False),
        sa.Column('entity_id', sa.UUID(as_uuid=True), nullable=False),
        sa.Column('field_path', sa.String(), nullable=False),
        sa.Column('old_value', sa.JSON(), nullable=True),
        sa.Column('new_value', sa.JSON(), nullable=True),
        sa.Column('changed_by', sa.UUID(as_uuid=True), nullable=False),
        sa.Column('correlation_id', sa.UUID(as_uuid=True), nullable=True, index=True),
        sa.Column('changed_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        'ix_field_versions_entity_changed', 'field_versions', ['entity_type', 'entity_id', 'changed_at']
    )


def downgrade() -> None:
    op.drop_index('ix_field_versions_entity_changed', table_name='field_versions')
    op.drop_table('field_versions')
    op.drop_index('ix_audit_logs_project_entity_ts', table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_table('scholarship_payments')
    op.drop_index('ix_grants_status_deadline', table_name='grants')
    op.drop_table('grants')
    op.drop_table('knowledge_base_entries')
    op.drop_table('file_items')
    op.drop_table('experiments')
    op.drop_table('manuscripts')
    op.drop_table('project_notes')
    op.drop_table('project_tasks')
    op.drop_index('ix_milestones_parent_order', table_name='milestones')
    op.drop_table('milestones')
    op.drop_table('memberships')
    op.drop_table('projects')
    op.drop_table('users')
