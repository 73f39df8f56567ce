"""initial schema: users, cloud accounts, audits, findings, scheduled scan log, notification settings

Revision ID: m1_scheduled_scans
Revises:
Create Date: 2026-10-17
"""
from alembic import op
import sqlalchemy as sa

revision = 'm1_scheduled_scans'
down_revision = None
branch_labels = None
depends_on = None

ACCOUNT_TABLES = (
    ('aws_account', 'account_id', 20),
    ('gcp_project', 'project_id', 100),
    ('azure_subscription', 'subscription_id', 64),
)


def _schedule_columns():
    return [
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_scan_at', sa.DateTime(), nullable=True),
        sa.Column('schedule_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('schedule_frequency', sa.String(20), nullable=True),
        sa.Column('schedule_hour', sa.Integer(), nullable=True),
        sa.Column('schedule_day_of_week', sa.Integer(), nullable=True),
        sa.Column('schedule_day_of_month', sa.Integer(), nullable=True),
        sa.Column('next_scheduled_scan', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def upgrade():
    # ── Users ──
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(120), nullable=True),
        sa.Column('password_hash', sa.String(255), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_user_email', 'user', ['email'], unique=True)

    # ── Cloud accounts (identical schedule columns) ──
    for table, id_column, id_length in ACCOUNT_TABLES:
        op.create_table(
            table,
            *_schedule_columns(),
            sa.Column(id_column, sa.String(id_length), nullable=False),
        )
        op.create_index(f'ix_{table}_user_id', table, ['user_id'])
        op.create_index(f'ix_{table}_next_scheduled_scan', table, ['next_scheduled_scan'])

    # ── Audits & findings ──
    op.create_table(
        'audit',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('provider', sa.String(10), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='running'),
        sa.Column('critical', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('high', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('medium', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('low', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_findings', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('error_message', sa.String(500), nullable=True),
        sa.Column('alerted_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_audit_provider', 'audit', ['provider'])
    op.create_index('ix_audit_account_id', 'audit', ['account_id'])

    op.create_table(
        'finding',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('audit_id', sa.Integer(), sa.ForeignKey('audit.id', ondelete='CASCADE'), nullable=False),
        sa.Column('severity', sa.String(20), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.String(2000), nullable=True),
        sa.Column('resource', sa.String(500), nullable=False),
        sa.Column('resource_type', sa.String(100), nullable=True),
        sa.Column('region', sa.String(50), nullable=True),
        sa.Column('recommendation', sa.String(2000), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_finding_audit_id', 'finding', ['audit_id'])

    # ── Scheduled scan log ──
    op.create_table(
        'scheduled_scan_log',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('cloud_provider', sa.String(10), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('audit_id', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.String(500), nullable=True),
        sa.Column('scheduled_for', sa.DateTime(), nullable=False),
        sa.Column('executed_at', sa.DateTime(), nullable=False),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
    )
    op.create_index('ix_scheduled_scan_log_account_id', 'scheduled_scan_log', ['account_id'])
    op.create_index('ix_scheduled_scan_log_user_id', 'scheduled_scan_log', ['user_id'])

    # ── Notification settings ──
    op.create_table(
        'user_settings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id', ondelete='CASCADE'), nullable=False),
        sa.Column('webhook_url', sa.String(500), nullable=True),
        sa.Column('webhook_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('webhook_alert_on_critical', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('webhook_alert_on_high', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('slack_webhook_url', sa.String(500), nullable=True),
        sa.Column('slack_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('slack_alert_on_critical', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('slack_alert_on_high', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('email_address', sa.String(255), nullable=True),
        sa.Column('email_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('email_alert_on_critical', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('email_alert_on_high', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_user_settings_user_id', 'user_settings', ['user_id'], unique=True)


def downgrade():
    op.drop_index('ix_user_settings_user_id', table_name='user_settings')
    op.drop_table('user_settings')

    op.drop_index('ix_scheduled_scan_log_user_id', table_name='scheduled_scan_log')
    op.drop_index('ix_scheduled_scan_log_account_id', table_name='scheduled_scan_log')
    op.drop_table('scheduled_scan_log')

    op.drop_index('ix_finding_audit_id', table_name='finding')
    op.drop_table('finding')

    op.drop_index('ix_audit_account_id', table_name='audit')
    op.drop_index('ix_audit_provider', table_name='audit')
    op.drop_table('audit')

    for table, _, _ in reversed(ACCOUNT_TABLES):
        op.drop_index(f'ix_{table}_next_scheduled_scan', table_name=table)
        op.drop_index(f'ix_{table}_user_id', table_name=table)
        op.drop_table(table)

    op.drop_index('ix_user_email', table_name='user')
    op.drop_table('user')
