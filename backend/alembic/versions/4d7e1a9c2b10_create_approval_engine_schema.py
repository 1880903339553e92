"""create_approval_engine_schema

Revision ID: 4d7e1a9c2b10
Revises:
Create Date: 2026-09-14 11:02:37.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '4d7e1a9c2b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        _id(),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('role', sa.String(50), nullable=False, server_default='requester'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'approval_roles',
        _id(),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('hierarchy_level', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('permissions', sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_approval_roles_code', 'approval_roles', ['code'], unique=True)

    op.create_table(
        'approval_rules',
        _id(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('category', sa.String(50), nullable=False),
        sa.Column('min_amount', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('max_amount', sa.Numeric(18, 2), nullable=True),
        sa.Column('currency', sa.String(3), nullable=False, server_default='AED'),
        sa.Column('department_id', sa.String(100), nullable=True),
        sa.Column('requires_sequential', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('auto_approve_below', sa.Numeric(18, 2), nullable=True),
        sa.Column('escalation_hours', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('conditions', sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_approval_rules_category', 'approval_rules', ['category'])
    op.create_index('ix_approval_rules_department_id', 'approval_rules', ['department_id'])

    op.create_table(
        'approval_rule_approvers',
        _id(),
        sa.Column('rule_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('role_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('sequence_order', sa.Integer(), nullable=False),
        sa.Column('is_mandatory', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('can_delegate', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.ForeignKeyConstraint(['rule_id'], ['approval_rules.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['role_id'], ['approval_roles.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('rule_id', 'sequence_order', name='uq_rule_approver_sequence'),
    )
    op.create_index('ix_approval_rule_approvers_rule_id', 'approval_rule_approvers', ['rule_id'])

    op.create_table(
        'approval_overrides',
        _id(),
        sa.Column('override_type', sa.String(50), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('category', sa.String(50), nullable=True),
        sa.Column('conditions', sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column('bypass_levels', sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column('force_approval', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('require_justification', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('max_amount', sa.Numeric(18, 2), nullable=True),
        sa.Column('valid_from', sa.Date(), nullable=True),
        sa.Column('valid_until', sa.Date(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'user_approvers',
        _id(),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('approver_role', sa.String(50), nullable=False),
        sa.Column('modules', sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column('max_approval_amount', sa.Numeric(18, 2), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('assigned_by', postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['assigned_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_user_approvers_user_id', 'user_approvers', ['user_id'])
    op.create_index('ix_user_approvers_approver_role', 'user_approvers', ['approver_role'])

    op.create_table(
        'user_delegations',
        _id(),
        sa.Column('delegator_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('delegate_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('valid_from', sa.Date(), nullable=False),
        sa.Column('valid_until', sa.Date(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.ForeignKeyConstraint(['delegate_id'], ['users.id']),
        sa.ForeignKeyConstraint(['delegator_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_user_delegations_delegator_id', 'user_delegations', ['delegator_id'])
    op.create_index('ix_user_delegations_delegate_id', 'user_delegations', ['delegate_id'])

    op.create_table(
        'approval_matrix_versions',
        _id(),
        sa.Column('version_number', sa.Integer(), nullable=False),
        sa.Column('snapshot', sa.JSON(), nullable=False),
        sa.Column('change_summary', sa.Text(), nullable=True),
        sa.Column('changed_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['changed_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('version_number'),
    )
    op.create_index('ix_approval_matrix_versions_created_at', 'approval_matrix_versions', ['created_at'])

    op.create_table(
        'approval_workflows',
        _id(),
        sa.Column('reference_id', sa.String(100), nullable=False),
        sa.Column('reference_code', sa.String(100), nullable=False),
        sa.Column('category', sa.String(50), nullable=False),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('department_id', sa.String(100), nullable=True),
        sa.Column('rule_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('rule_version', sa.Integer(), nullable=True),
        sa.Column('sequential_policy', sa.String(20), nullable=False, server_default='strict'),
        sa.Column('escalation_hours', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('current_level', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('override_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('override_justification', sa.Text(), nullable=True),
        sa.Column('initiated_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['rule_id'], ['approval_rules.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['override_id'], ['approval_overrides.id']),
        sa.ForeignKeyConstraint(['initiated_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_approval_workflows_reference_id', 'approval_workflows', ['reference_id'])
    op.create_index('ix_approval_workflows_category', 'approval_workflows', ['category'])
    op.create_index('ix_approval_workflows_rule_id', 'approval_workflows', ['rule_id'])
    op.create_index('ix_approval_workflows_status', 'approval_workflows', ['status'])
    # One live workflow per document
    op.create_index(
        'uq_approval_workflows_live_document',
        'approval_workflows',
        ['reference_id', 'category'],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        'approval_workflow_actions',
        _id(),
        sa.Column('workflow_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('role_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('role_code', sa.String(50), nullable=False),
        sa.Column('sequence_order', sa.Integer(), nullable=False),
        sa.Column('is_mandatory', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('can_delegate', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('approver_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('acted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('comments', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['workflow_id'], ['approval_workflows.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['role_id'], ['approval_roles.id']),
        sa.ForeignKeyConstraint(['approver_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_approval_workflow_actions_workflow_id', 'approval_workflow_actions', ['workflow_id'])

    op.create_table(
        'approval_audit_logs',
        _id(),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('entity_type', sa.String(100), nullable=False),
        sa.Column('entity_id', sa.String(100), nullable=True),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('actor_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('actor_email', sa.String(255), nullable=True),
        sa.Column('ip_address', sa.String(50), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['actor_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_approval_audit_logs_action', 'approval_audit_logs', ['action'])
    op.create_index('ix_approval_audit_logs_entity_type', 'approval_audit_logs', ['entity_type'])
    op.create_index('ix_approval_audit_logs_entity_id', 'approval_audit_logs', ['entity_id'])
    op.create_index('ix_approval_audit_logs_created_at', 'approval_audit_logs', ['created_at'])


def downgrade() -> None:
    op.drop_table('approval_audit_logs')
    op.drop_table('approval_workflow_actions')
    op.drop_index('uq_approval_workflows_live_document', table_name='approval_workflows')
    op.drop_table('approval_workflows')
    op.drop_table('approval_matrix_versions')
    op.drop_table('user_delegations')
    op.drop_table('user_approvers')
    op.drop_table('approval_overrides')
    op.drop_table('approval_rule_approvers')
    op.drop_table('approval_rules')
    op.drop_table('approval_roles')
    op.drop_table('users')
