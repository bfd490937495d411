"""initial_approval_engine_schema

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19 09:00:00.000000

Tables for the approval engine, plus append-only grants on the two
compliance trails (audit_logs, approval_history).
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1b2c3d4e5f6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('role', sa.String(50), nullable=False),
        sa.Column('department_id', sa.Uuid(), nullable=True),
        sa.Column('manager_id', sa.Uuid(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('locked_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['manager_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_department_id', 'users', ['department_id'])

    op.create_table(
        'categories',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('requires_receipt', sa.Boolean(), nullable=False),
        sa.Column('requires_pre_approval', sa.Boolean(), nullable=False),
        sa.Column('max_amount', sa.Numeric(18, 2), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
    )

    op.create_table(
        'approval_tiers',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('tier_order', sa.Integer(), nullable=False),
        sa.Column('min_amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('max_amount', sa.Numeric(18, 2), nullable=True),
        sa.Column('approver_role', sa.String(50), nullable=False),
        sa.Column('escalation_days', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_approval_tiers_tier_order', 'approval_tiers', ['tier_order'])

    op.create_table(
        'approval_delegations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('from_user_id', sa.Uuid(), nullable=False),
        sa.Column('to_user_id', sa.Uuid(), nullable=False),
        sa.Column('start_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['from_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['to_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_approval_delegations_from_user_id', 'approval_delegations', ['from_user_id'])
    op.create_index('ix_approval_delegations_to_user_id', 'approval_delegations', ['to_user_id'])

    op.create_table(
        'pre_approvals',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('pre_approval_number', sa.String(32), nullable=False),
        sa.Column('requester_id', sa.Uuid(), nullable=False),
        sa.Column('category_id', sa.Uuid(), nullable=False),
        sa.Column('estimated_amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('purpose', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('approver_id', sa.Uuid(), nullable=True),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('actual_amount', sa.Numeric(18, 2), nullable=True),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['requester_id'], ['users.id']),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id']),
        sa.ForeignKeyConstraint(['approver_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('pre_approval_number'),
    )
    op.create_index('ix_pre_approvals_requester_id', 'pre_approvals', ['requester_id'])
    op.create_index('ix_pre_approvals_category_id', 'pre_approvals', ['category_id'])
    op.create_index('ix_pre_approvals_status', 'pre_approvals', ['status'])

    op.create_table(
        'approvable_requests',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('request_number', sa.String(32), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('requester_id', sa.Uuid(), nullable=False),
        sa.Column('category_id', sa.Uuid(), nullable=False),
        sa.Column('department_id', sa.Uuid(), nullable=True),
        sa.Column('project_id', sa.Uuid(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('exchange_rate', sa.Numeric(18, 6), nullable=True),
        sa.Column('base_currency_amount', sa.Numeric(18, 2), nullable=True),
        sa.Column('receipt_count', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('current_tier', sa.Integer(), nullable=True),
        sa.Column('approver_role_required', sa.String(50), nullable=True),
        sa.Column('assigned_approver_id', sa.Uuid(), nullable=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('tier_entered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('pre_approval_id', sa.Uuid(), nullable=True),
        sa.Column('clarification_note', sa.Text(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['requester_id'], ['users.id']),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id']),
        sa.ForeignKeyConstraint(['assigned_approver_id'], ['users.id']),
        sa.ForeignKeyConstraint(['pre_approval_id'], ['pre_approvals.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_approvable_requests_request_number', 'approvable_requests', ['request_number'], unique=True)
    op.create_index('ix_approvable_requests_requester_id', 'approvable_requests', ['requester_id'])
    op.create_index('ix_approvable_requests_category_id', 'approvable_requests', ['category_id'])
    op.create_index('ix_approvable_requests_status', 'approvable_requests', ['status'])
    op.create_index('ix_approvable_requests_approver_role_required', 'approvable_requests', ['approver_role_required'])

    op.create_table(
        'approval_history',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('request_id', sa.Uuid(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('tier_level', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(20), nullable=False),
        sa.Column('from_status', sa.String(30), nullable=False),
        sa.Column('to_status', sa.String(30), nullable=False),
        sa.Column('actor_id', sa.Uuid(), nullable=True),
        sa.Column('delegated_from_id', sa.Uuid(), nullable=True),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('budget_decision', sa.String(10), nullable=True),
        sa.Column('budget_note', sa.Text(), nullable=True),
        sa.Column('is_emergency', sa.Boolean(), nullable=False),
        sa.Column('emergency_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['request_id'], ['approvable_requests.id']),
        sa.ForeignKeyConstraint(['actor_id'], ['users.id']),
        sa.ForeignKeyConstraint(['delegated_from_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('request_id', 'sequence', name='uq_approval_history_request_sequence'),
    )
    op.create_index('ix_approval_history_request_id', 'approval_history', ['request_id'])
    op.create_index('ix_approval_history_action', 'approval_history', ['action'])

    op.create_table(
        'budgets',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('scope_type', sa.String(20), nullable=False),
        sa.Column('scope_id', sa.Uuid(), nullable=False),
        sa.Column('allocated', sa.Numeric(18, 2), nullable=False),
        sa.Column('committed', sa.Numeric(18, 2), nullable=False),
        sa.Column('spent', sa.Numeric(18, 2), nullable=False),
        sa.Column('warning_threshold_pct', sa.Numeric(5, 2), nullable=False),
        sa.Column('enforcement', sa.String(20), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_budgets_scope_id', 'budgets', ['scope_id'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('actor_id', sa.Uuid(), nullable=True),
        sa.Column('actor_email', sa.String(255), nullable=True),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('entity_type', sa.String(100), nullable=False),
        sa.Column('entity_id', sa.Uuid(), nullable=True),
        sa.Column('before_state', sa.Text(), nullable=True),
        sa.Column('after_state', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['actor_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('request_id', sa.Uuid(), nullable=True),
        sa.Column('pre_approval_id', sa.Uuid(), nullable=True),
        sa.Column('recipient_id', sa.Uuid(), nullable=True),
        sa.Column('recipient_role', sa.String(50), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['request_id'], ['approvable_requests.id']),
        sa.ForeignKeyConstraint(['pre_approval_id'], ['pre_approvals.id']),
        sa.ForeignKeyConstraint(['recipient_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_event_type', 'notifications', ['event_type'])
    op.create_index('ix_notifications_request_id', 'notifications', ['request_id'])
    op.create_index('ix_notifications_status', 'notifications', ['status'])

    op.create_table(
        'escalation_alerts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('request_id', sa.Uuid(), nullable=False),
        sa.Column('tier_order', sa.Integer(), nullable=False),
        sa.Column('tier_entered_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('reason', sa.String(50), nullable=False),
        sa.Column('description', sa.String(500), nullable=False),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['request_id'], ['approvable_requests.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_escalation_alerts_request_id', 'escalation_alerts', ['request_id'])

    op.create_table(
        'sequence_counters',
        sa.Column('scope', sa.String(50), nullable=False),
        sa.Column('value', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('scope'),
    )

    op.execute("REVOKE UPDATE, DELETE ON audit_logs FROM PUBLIC;")
    op.execute("GRANT SELECT, INSERT ON audit_logs TO PUBLIC;")
    op.execute("REVOKE UPDATE, DELETE ON approval_history FROM PUBLIC;")
    op.execute("GRANT SELECT, INSERT ON approval_history TO PUBLIC;")


def downgrade() -> None:
    op.drop_table('sequence_counters')
    op.drop_index('ix_escalation_alerts_request_id', table_name='escalation_alerts')
    op.drop_table('escalation_alerts')
    op.drop_index('ix_notifications_status', table_name='notifications')
    op.drop_index('ix_notifications_request_id', table_name='notifications')
    op.drop_index('ix_notifications_event_type', table_name='notifications')
    op.drop_table('notifications')
    op.drop_index('ix_audit_logs_entity_id', table_name='audit_logs')
    op.drop_index('ix_audit_logs_entity_type', table_name='audit_logs')
    op.drop_index('ix_audit_logs_action', table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index('ix_budgets_scope_id', table_name='budgets')
    op.drop_table('budgets')
    op.drop_index('ix_approval_history_action', table_name='approval_history')
    op.drop_index('ix_approval_history_request_id', table_name='approval_history')
    op.drop_table('approval_history')
    op.drop_index('ix_approvable_requests_approver_role_required', table_name='approvable_requests')
    op.drop_index('ix_approvable_requests_status', table_name='approvable_requests')
    op.drop_index('ix_approvable_requests_category_id', table_name='approvable_requests')
    op.drop_index('ix_approvable_requests_requester_id', table_name='approvable_requests')
    op.drop_index('ix_approvable_requests_request_number', table_name='approvable_requests')
    op.drop_table('approvable_requests')
    op.drop_index('ix_pre_approvals_status', table_name='pre_approvals')
    op.drop_index('ix_pre_approvals_category_id', table_name='pre_approvals')
    op.drop_index('ix_pre_approvals_requester_id', table_name='pre_approvals')
    op.drop_table('pre_approvals')
    op.drop_index('ix_approval_delegations_to_user_id', table_name='approval_delegations')
    op.drop_index('ix_approval_delegations_from_user_id', table_name='approval_delegations')
    op.drop_table('approval_delegations')
    op.drop_index('ix_approval_tiers_tier_order', table_name='approval_tiers')
    op.drop_table('approval_tiers')
    op.drop_table('categories')
    op.drop_index('ix_users_department_id', table_name='users')
    op.drop_index('ix_users_role', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
