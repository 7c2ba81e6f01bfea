"""Agency portal schema: users, briefings, projects, pricing, notifications, retention

Revision ID: a1c2e3f4b5d6
Revises:
Create Date: 2026-10-19 00:00:00.000000

Tables:
- users, verification_tokens (accounts, email verification, password reset)
- briefings, projects, project_milestones, project_comments, project_files
- pricing_plans
- notifications, notification_preferences
- audit_logs, data_deletion_logs (LGPD retention bookkeeping)
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = 'a1c2e3f4b5d6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SERVICE_TYPES = ('ERP_BASICO', 'ERP_ECOMMERCE', 'ERP_PREMIUM', 'LANDING_IA', 'LANDING_IA_WHATSAPP')
NOTIFICATION_TYPES = (
    'NOVO_BRIEFING', 'PROJETO_ATUALIZADO', 'NOVA_MENSAGEM', 'ARQUIVO_SOLICITADO', 'PROJETO_CONCLUIDO',
    'BRIEFING_APROVADO', 'BRIEFING_REJEITADO', 'MILESTONE_CONCLUIDA', 'SISTEMA',
)
AUDIT_EVENTS = (
    'USER_LOGIN', 'USER_REGISTER', 'USER_VERIFIED', 'USER_DEACTIVATED', 'PASSWORD_RESET',
    'PASSWORD_CHANGED', 'ACCOUNT_DELETED', 'USER_DATA_EXPORTED', 'RETENTION_RUN',
    'BRIEFING_SUBMITTED', 'BRIEFING_STATUS_CHANGED', 'BRIEFING_APPROVED', 'BRIEFING_REJECTED',
    'PROJECT_STATUS_CHANGED', 'MILESTONE_TOGGLED', 'PROJECT_NOTE_ADDED',
    'FILE_UPLOADED', 'FILE_DELETED',
    'PLAN_CREATED', 'PLAN_UPDATED', 'PLAN_TOGGLED', 'PLANS_REORDERED',
)

ENUM_NAMES = (
    'userrole', 'tokentype', 'servicetype', 'briefingstatus', 'projectstatus',
    'notificationtype', 'auditeventtype',
)


def upgrade() -> None:
    service_type = sa.Enum(*SERVICE_TYPES, name='servicetype')
    notification_type = sa.Enum(*NOTIFICATION_TYPES, name='notificationtype')

    # ---- users ----
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('role', sa.Enum('CLIENT', 'ADMIN', 'SUPER_ADMIN', name='userrole'), nullable=False),
        sa.Column('company', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('email_verified', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('marketing_consent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('warning_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('do_not_delete', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_is_active', 'users', ['is_active'])
    op.create_index('ix_users_created_at', 'users', ['created_at'])
    op.create_index('idx_user_role_active', 'users', ['role', 'is_active'])

    # ---- verification_tokens ----
    op.create_table(
        'verification_tokens',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('identifier', sa.String(), nullable=False),
        sa.Column('token', sa.String(), nullable=False),
        sa.Column('type', sa.Enum('VERIFICATION', 'PASSWORD_RESET', name='tokentype'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token'),
    )
    op.create_index('ix_verification_tokens_identifier', 'verification_tokens', ['identifier'])
    op.create_index('idx_token_identifier_type', 'verification_tokens', ['identifier', 'type'])

    # ---- briefings ----
    op.create_table(
        'briefings',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('service_type', service_type, nullable=True),
        sa.Column('company_name', sa.String(), nullable=False, server_default=''),
        sa.Column('segment', sa.String(), nullable=True),
        sa.Column('objectives', sa.Text(), nullable=True),
        sa.Column('budget', sa.String(), nullable=True),
        sa.Column('deadline', sa.String(), nullable=True),
        sa.Column('features', sa.Text(), nullable=True),
        sa.Column('references', sa.Text(), nullable=True),
        sa.Column('integrations', sa.Text(), nullable=True),
        sa.Column('additional_info', sa.Text(), nullable=True),
        sa.Column('status', sa.Enum('RASCUNHO', 'ENVIADO', 'EM_ANALISE', 'APROVADO', 'REJEITADO',
                                    name='briefingstatus'), nullable=False),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_contractual', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_briefings_user_id', 'briefings', ['user_id'])
    op.create_index('ix_briefings_service_type', 'briefings', ['service_type'])
    op.create_index('ix_briefings_status', 'briefings', ['status'])
    op.create_index('ix_briefings_created_at', 'briefings', ['created_at'])
    op.create_index('idx_briefing_user_status', 'briefings', ['user_id', 'status'])

    # ---- projects ----
    op.create_table(
        'projects',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('briefing_id', sa.String(), sa.ForeignKey('briefings.id', ondelete='SET NULL'), nullable=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.Enum('AGUARDANDO_APROVACAO', 'ATIVO', 'PAUSADO', 'CONCLUIDO', 'CANCELADO',
                                    'ARQUIVADO', name='projectstatus'), nullable=False),
        sa.Column('progress', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_contractual', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('briefing_id'),
    )
    op.create_index('ix_projects_user_id', 'projects', ['user_id'])
    op.create_index('ix_projects_status', 'projects', ['status'])
    op.create_index('ix_projects_created_at', 'projects', ['created_at'])
    op.create_index('ix_projects_updated_at', 'projects', ['updated_at'])
    op.create_index('idx_project_user_status', 'projects', ['user_id', 'status'])

    # ---- project_milestones ----
    op.create_table(
        'project_milestones',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('order', sa.Integer(), nullable=False),
        sa.Column('completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'order', name='uq_milestone_project_order'),
    )
    op.create_index('ix_project_milestones_project_id', 'project_milestones', ['project_id'])

    # ---- project_comments ----
    op.create_table(
        'project_comments',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('milestone_id', sa.String(), sa.ForeignKey('project_milestones.id', ondelete='SET NULL'),
                  nullable=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_project_comments_project_id', 'project_comments', ['project_id'])
    op.create_index('ix_project_comments_milestone_id', 'project_comments', ['milestone_id'])
    op.create_index('ix_project_comments_user_id', 'project_comments', ['user_id'])
    op.create_index('ix_project_comments_created_at', 'project_comments', ['created_at'])

    # ---- project_files ----
    op.create_table(
        'project_files',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('original_name', sa.String(), nullable=False),
        sa.Column('stored_name', sa.String(), nullable=False),
        sa.Column('mime_type', sa.String(), nullable=False),
        sa.Column('size', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('storage_path', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_project_files_project_id', 'project_files', ['project_id'])
    op.create_index('ix_project_files_user_id', 'project_files', ['user_id'])
    op.create_index('ix_project_files_created_at', 'project_files', ['created_at'])

    # ---- pricing_plans ----
    op.create_table(
        'pricing_plans',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('service_type', service_type, nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('price', sa.Float(), nullable=False),
        sa.Column('features', sa.JSON(), nullable=False),
        sa.Column('storage_limit', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('service_type'),
    )

    # ---- notifications ----
    op.create_table(
        'notifications',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', notification_type, nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_type', 'notifications', ['type'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])
    op.create_index('idx_notification_user_read', 'notifications', ['user_id', 'read_at'])

    # ---- notification_preferences ----
    op.create_table(
        'notification_preferences',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', notification_type, nullable=False),
        sa.Column('email_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('push_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('in_app_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'type', name='uq_preference_user_type'),
    )
    op.create_index('ix_notification_preferences_user_id', 'notification_preferences', ['user_id'])

    # ---- audit_logs ----
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=True),
        sa.Column('event_type', sa.Enum(*AUDIT_EVENTS, name='auditeventtype'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('resource_type', sa.String(), nullable=True),
        sa.Column('resource_id', sa.String(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_logs_timestamp', 'audit_logs', ['timestamp'])
    op.create_index('ix_audit_logs_event_type', 'audit_logs', ['event_type'])
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('idx_audit_resource', 'audit_logs', ['resource_type', 'resource_id'])
    op.create_index('idx_audit_event_timestamp', 'audit_logs', ['event_type', 'timestamp'])

    # ---- data_deletion_logs ----
    op.create_table(
        'data_deletion_logs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('user_email', sa.String(), nullable=False),
        sa.Column('reason', sa.String(), nullable=False),
        sa.Column('deleted_briefings', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('deleted_projects', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('preserved_briefings', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('preserved_projects', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_data_deletion_logs_user_id', 'data_deletion_logs', ['user_id'])
    op.create_index('ix_data_deletion_logs_deleted_at', 'data_deletion_logs', ['deleted_at'])


def downgrade() -> None:
    op.drop_table('data_deletion_logs')
    op.drop_table('audit_logs')
    op.drop_table('notification_preferences')
    op.drop_table('notifications')
    op.drop_table('pricing_plans')
    op.drop_table('project_files')
    op.drop_table('project_comments')
    op.drop_table('project_milestones')
    op.drop_table('projects')
    op.drop_table('briefings')
    op.drop_table('verification_tokens')
    op.drop_table('users')

    bind = op.get_bind()
    for name in ENUM_NAMES:
        sa.Enum(name=name).drop(bind, checkfirst=True)
