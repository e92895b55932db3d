"""initial schema

Revision ID: 20261018_0001
Revises: 
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20261018_0001'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table('users',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('email', sa.String(), nullable=False, unique=True),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('image', sa.String(), nullable=True),
        sa.Column('hashed_password', sa.String(), nullable=True),
        sa.Column('email_verified_at', sa.DateTime(), nullable=True),
        sa.Column('oauth_provider', sa.String(), nullable=True),
        sa.Column('timezone', sa.String(), nullable=False, server_default='UTC'),
        sa.Column('ritual_mode', sa.String(), nullable=False, server_default='separate'),
        sa.Column('created_at', sa.DateTime(), nullable=False)
    )
    op.create_table('web_sessions',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('token', sa.String(), nullable=False, unique=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False)
    )
    op.create_table('verification_tokens',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('identifier', sa.String(), nullable=False, index=True),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('token', sa.String(), nullable=False),
        sa.Column('expires', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('identifier', 'type', name='uq_verification_tokens_identifier_type')
    )
    op.create_table('tags',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('color', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('user_id', 'name', name='uq_tags_user_name')
    )
    op.create_table('tasks',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='', index=True),
        sa.Column('scheduled_date', sa.DateTime(), nullable=True, index=True),
        sa.Column('deadline_type', sa.String(), nullable=True),
        sa.Column('deadline_set_at', sa.DateTime(), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.Column('order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('rollup_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('type', sa.String(), nullable=False, server_default='normal', index=True),
        sa.Column('highlight_day', sa.Date(), nullable=True),
        sa.Column('tag_id', sa.String(), sa.ForeignKey('tags.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('user_id', 'highlight_day', name='uq_tasks_user_highlight_day')
    )
    op.create_table('calendar_connections',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('provider', sa.String(), nullable=False, server_default='google', index=True),
        sa.Column('provider_account_id', sa.String(), nullable=True),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('calendar_id', sa.String(), nullable=False),
        sa.Column('access_token_encrypted', sa.String(), nullable=True),
        sa.Column('refresh_token_encrypted', sa.String(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.false(), index=True),
        sa.Column('is_export_target', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('sync_token', sa.String(), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('user_id', 'provider', 'calendar_id', name='uq_calendar_connections_user_calendar')
    )
    op.create_table('calendar_events',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('start_time', sa.DateTime(), nullable=False, index=True),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('is_all_day', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('color', sa.String(), nullable=True),
        sa.Column('source', sa.String(), nullable=False, server_default='miniorg', index=True),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('connection_id', sa.String(), sa.ForeignKey('calendar_connections.id', ondelete='CASCADE'), nullable=True, index=True),
        sa.Column('external_id', sa.String(), nullable=True, index=True),
        sa.Column('content_hash', sa.String(), nullable=True),
        sa.Column('is_completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('sync_status', sa.String(), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('connection_id', 'external_id', name='uq_calendar_events_connection_external')
    )
    op.create_table('daily_rituals',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('highlight_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='SET NULL'), nullable=True),
        sa.Column('timeline', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('user_id', 'date', name='uq_daily_rituals_user_date')
    )

def downgrade():
    op.drop_table('daily_rituals')
    op.drop_table('calendar_events')
    op.drop_table('calendar_connections')
    op.drop_table('tasks')
    op.drop_table('tags')
    op.drop_table('verification_tokens')
    op.drop_table('web_sessions')
    op.drop_table('users')
