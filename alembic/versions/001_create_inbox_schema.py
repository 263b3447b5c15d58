"""Create unified inbox schema

Revision ID: 001_create_inbox_schema
Revises:
Create Date: 2026-10-16 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_create_inbox_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'organizations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String, nullable=False),
        sa.Column('slug', sa.String, nullable=False, unique=True),
        sa.Column('settings', sa.JSON),
        sa.Column('is_active', sa.Boolean, default=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_organizations_slug', 'organizations', ['slug'], unique=True)

    op.create_table(
        'users',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('organization_id', sa.String(36), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('email', sa.String, nullable=False, unique=True),
        sa.Column('name', sa.String),
        sa.Column('role', sa.String, default='agent'),
        sa.Column('is_active', sa.Boolean, default=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_user_org_role_active', 'users', ['organization_id', 'role', 'is_active'])

    op.create_table(
        'platform_connections',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('organization_id', sa.String(36), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_by', sa.Integer, sa.ForeignKey('users.id')),
        sa.Column('platform', sa.String, nullable=False),

        # Platform account
        sa.Column('platform_user_id', sa.String, nullable=False),
        sa.Column('platform_username', sa.String),
        sa.Column('platform_display_name', sa.String),
        sa.Column('platform_email', sa.String),

        # OAuth
        sa.Column('access_token', sa.Text, nullable=False),
        sa.Column('refresh_token', sa.Text),
        sa.Column('token_expires_at', sa.DateTime(timezone=True)),
        sa.Column('scope', sa.JSON),
        sa.Column('platform_data', sa.JSON),

        sa.Column('is_active', sa.Boolean, default=True),
        sa.Column('status', sa.String, default='connected'),

        # Sync statistics
        sa.Column('last_sync_at', sa.DateTime(timezone=True)),
        sa.Column('last_sync_count', sa.Integer, default=0),
        sa.Column('total_interactions_synced', sa.Integer, default=0),
        sa.Column('failed_sync_attempts', sa.Integer, default=0),
        sa.Column('last_error', sa.Text),
        sa.Column('last_error_code', sa.String),
        sa.Column('last_error_at', sa.DateTime(timezone=True)),

        sa.Column('settings', sa.JSON),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('organization_id', 'platform', 'platform_user_id', name='uq_platform_connection_account'),
    )
    op.create_index('idx_platform_connection_org_platform', 'platform_connections', ['organization_id', 'platform'])
    op.create_index('idx_platform_connection_org_active', 'platform_connections', ['organization_id', 'is_active'])

    op.create_table(
        'interactions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('organization_id', sa.String(36), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('connection_id', sa.String(36), sa.ForeignKey('platform_connections.id')),

        sa.Column('platform', sa.String, nullable=False),
        sa.Column('type', sa.String, nullable=False),
        sa.Column('platform_id', sa.String, nullable=False),
        sa.Column('platform_url', sa.String),

        sa.Column('content', sa.Text, nullable=False, server_default=''),
        sa.Column('content_type', sa.String, default='text'),
        sa.Column('language', sa.String),

        sa.Column('author_platform_id', sa.String),
        sa.Column('author_name', sa.String),
        sa.Column('author_username', sa.String),
        sa.Column('author_profile_url', sa.String),
        sa.Column('author_avatar_url', sa.String),
        sa.Column('author_verified', sa.Boolean, default=False),

        sa.Column('parent_id', sa.String),
        sa.Column('thread_id', sa.String),
        sa.Column('reply_count', sa.Integer, default=0),
        sa.Column('has_replies', sa.Boolean, default=False),
        sa.Column('post_id', sa.String),
        sa.Column('platform_metadata', sa.JSON),

        # Enrichment
        sa.Column('sentiment', sa.String),
        sa.Column('sentiment_score', sa.Float),
        sa.Column('sentiment_confidence', sa.Float),
        sa.Column('intent', sa.String),
        sa.Column('topics', sa.JSON),
        sa.Column('ai_suggestion', sa.JSON),
        sa.Column('auto_reply_eligible', sa.Boolean, default=False),
        sa.Column('enriched_at', sa.DateTime(timezone=True)),

        # Workflow
        sa.Column('status', sa.String, server_default='unread'),
        sa.Column('assigned_to', sa.Integer, sa.ForeignKey('users.id')),
        sa.Column('assigned_at', sa.DateTime(timezone=True)),
        sa.Column('assignment_reason', sa.String),
        sa.Column('priority', sa.String, server_default='normal'),
        sa.Column('urgency', sa.String, server_default='normal'),
        sa.Column('labels', sa.JSON),
        sa.Column('internal_notes', sa.JSON),
        sa.Column('replies', sa.JSON),
        sa.Column('is_read', sa.Boolean, default=False),
        sa.Column('read_at', sa.DateTime(timezone=True)),
        sa.Column('resolved_at', sa.DateTime(timezone=True)),

        sa.Column('rating', sa.Integer),
        sa.Column('review_date', sa.DateTime(timezone=True)),

        sa.Column('platform_created_at', sa.DateTime(timezone=True)),
        sa.Column('platform_updated_at', sa.DateTime(timezone=True)),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('organization_id', 'platform', 'platform_id', name='uq_interaction_platform_identity'),
    )
    op.create_index('idx_interaction_org_status', 'interactions', ['organization_id', 'status'])
    op.create_index('idx_interaction_assignee_status', 'interactions', ['assigned_to', 'status'])
    op.create_index('idx_interaction_post_sentiment', 'interactions',
                    ['organization_id', 'post_id', 'sentiment', 'received_at'])
    op.create_index('ix_interactions_thread_id', 'interactions', ['thread_id'])
    op.create_index('ix_interactions_parent_id', 'interactions', ['parent_id'])

    op.create_table(
        'knowledge_base_entries',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('organization_id', sa.String(36), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String, nullable=False),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('type', sa.String, default='general'),
        sa.Column('training_weight', sa.Integer, default=5),
        sa.Column('is_training_data', sa.Boolean, default=True),
        sa.Column('is_active', sa.Boolean, default=True),
        sa.Column('usage_count', sa.Integer, default=0),
        sa.Column('last_used_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_knowledge_base_org_active_weight', 'knowledge_base_entries',
                    ['organization_id', 'is_active', 'training_weight'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('organization_id', sa.String(36), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String, nullable=False),
        sa.Column('title', sa.String, nullable=False),
        sa.Column('message', sa.Text, nullable=False),
        sa.Column('interaction_id', sa.String(36), sa.ForeignKey('interactions.id')),
        sa.Column('post_id', sa.String),
        sa.Column('action_url', sa.String),
        sa.Column('is_read', sa.Boolean, default=False),
        sa.Column('read_at', sa.DateTime(timezone=True)),
        sa.Column('email_sent', sa.Boolean, default=False),
        sa.Column('email_sent_at', sa.DateTime(timezone=True)),
        sa.Column('delivery_error', sa.Text),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_notification_user_read', 'notifications', ['user_id', 'is_read'])
    op.create_index('idx_notification_org_type_post', 'notifications', ['organization_id', 'type', 'post_id'])

    op.create_table(
        'dead_letters',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('task_id', sa.String, nullable=False, unique=True),
        sa.Column('task_name', sa.String, nullable=False),
        sa.Column('queue', sa.String, nullable=False),
        sa.Column('organization_id', sa.String(36)),
        sa.Column('args', sa.JSON),
        sa.Column('kwargs', sa.JSON),
        sa.Column('kind', sa.String, nullable=False),
        sa.Column('error', sa.Text),
        sa.Column('traceback', sa.Text),
        sa.Column('attempts', sa.Integer, default=0),
        sa.Column('context', sa.JSON),
        sa.Column('needs_review', sa.Boolean, default=False),
        sa.Column('failed_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('last_failed_at', sa.DateTime(timezone=True)),
        sa.Column('requeued_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_dead_letters_queue', 'dead_letters', ['queue'])
    op.create_index('ix_dead_letters_organization_id', 'dead_letters', ['organization_id'])
    op.create_index('ix_dead_letters_kind', 'dead_letters', ['kind'])
    op.create_index('ix_dead_letters_failed_at', 'dead_letters', ['failed_at'])


def downgrade() -> None:
    op.drop_table('dead_letters')
    op.drop_table('notifications')
    op.drop_table('knowledge_base_entries')
    op.drop_table('interactions')
    op.drop_table('platform_connections')
    op.drop_table('users')
    op.drop_table('organizations')
