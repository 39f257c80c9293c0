"""initial schema

Revision ID: 2026_10_01_0000
Revises:
Create Date: 2026-10-01 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_01_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create initial database schema."""

    # ========================================================================
    # Create users table
    # ========================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.String(255), primary_key=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='user'),
        sa.Column('credits', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('current_plan', sa.String(20), nullable=False, server_default='Free'),
        sa.Column('subscription_status', sa.String(20), nullable=False, server_default='inactive'),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('subscription_period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('credits_reset_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('credits >= 0', name='ck_users_credits_non_negative'),
        sa.CheckConstraint("role IN ('user', 'admin')", name='ck_users_role'),
        sa.CheckConstraint(
            "current_plan IN ('Free', 'Starter', 'Creator', 'Pro', 'Elite')",
            name='ck_users_current_plan',
        ),
        sa.CheckConstraint(
            "subscription_status IN ('active', 'inactive', 'past_due')",
            name='ck_users_subscription_status',
        ),
    )
    op.create_index('idx_users_email', 'users', ['email'])
    op.create_index(
        'idx_users_stripe_customer_id', 'users', ['stripe_customer_id'],
        postgresql_where=sa.text('stripe_customer_id IS NOT NULL'),
    )

    # ========================================================================
    # Create conversations table
    # ========================================================================
    op.create_table(
        'conversations',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.String(255), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('title', sa.String(255), nullable=True),
        sa.Column('brief', sa.Text(), nullable=True),
        sa.Column('workflow_state', sa.String(30), nullable=False, server_default='draft'),
        sa.Column('active_video_id', UUID(as_uuid=True), nullable=True),
        sa.Column('is_locked', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('locked_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('lock_reason', sa.String(255), nullable=True),
        sa.Column('last_activity_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('production_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint(
            "workflow_state IN ('draft', 'awaiting_approval', 'in_production', 'completed', 'failed')",
            name='ck_conversations_workflow_state',
        ),
    )
    op.create_index('ix_conversations_user_id', 'conversations', ['user_id'])
    op.create_index('idx_conversations_workflow_state', 'conversations', ['workflow_state'])
    op.create_index(
        'idx_conversations_locked_until', 'conversations', ['locked_until'],
        postgresql_where=sa.text('is_locked'),
    )

    # ========================================================================
    # Create videos table
    # ========================================================================
    op.create_table(
        'videos',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('video_id', sa.String(255), nullable=False, unique=True),
        sa.Column('conversation_id', UUID(as_uuid=True), sa.ForeignKey('conversations.id'), nullable=False),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('image_url', sa.String(2048), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='processing'),
        sa.Column('credits_used', sa.Numeric(10, 2), nullable=False),
        sa.Column('is_revision', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('parent_video_id', UUID(as_uuid=True), sa.ForeignKey('videos.id'), nullable=True),
        sa.Column('revision_request', sa.Text(), nullable=True),
        sa.Column('processing_started_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('processing_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processing_time_ms', sa.Integer(), nullable=True),
        sa.Column('last_status_check_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('video_url', sa.String(2048), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('cancelled_by', sa.String(255), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('credits_used > 0', name='ck_videos_credits_used_positive'),
        sa.CheckConstraint(
            "status IN ('processing', 'completed', 'failed', 'cancelled')",
            name='ck_videos_status',
        ),
    )
    op.create_index('ix_videos_conversation_id', 'videos', ['conversation_id'])
    op.create_index('idx_videos_status_started', 'videos', ['status', 'processing_started_at'])
    op.create_index(
        'uq_videos_one_processing_per_conversation', 'videos', ['conversation_id'],
        unique=True,
        postgresql_where=sa.text("status = 'processing'"),
    )

    op.create_foreign_key(
        'fk_conversations_active_video', 'conversations', 'videos',
        ['active_video_id'], ['id'],
    )

    # ========================================================================
    # Create messages table
    # ========================================================================
    op.create_table(
        'messages',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('conversation_id', UUID(as_uuid=True), sa.ForeignKey('conversations.id'), nullable=False),
        sa.Column('message_type', sa.String(20), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('details', JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_messages_conversation_id', 'messages', ['conversation_id'])

    # ========================================================================
    # Create system_logs table (append-only audit trail)
    # ========================================================================
    op.create_table(
        'system_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('operation', sa.String(100), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.String(255), nullable=True),
        sa.Column('actor', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('details', JSONB(), nullable=True),
        sa.Column('execution_time_ms', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('idx_system_logs_entity', 'system_logs', ['entity_type', 'entity_id'])
    op.create_index('idx_system_logs_created_at', 'system_logs', ['created_at'], postgresql_using='brin')
    op.create_index('idx_system_logs_operation', 'system_logs', ['operation'])

    # ========================================================================
    # Create billing_events table (processed payment webhook ids)
    # ========================================================================
    op.create_table(
        'billing_events',
        sa.Column('event_id', sa.String(255), primary_key=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('user_id', sa.String(255), nullable=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('billing_events')
    op.drop_table('system_logs')
    op.drop_table('messages')
    op.drop_constraint('fk_conversations_active_video', 'conversations', type_='foreignkey')
    op.drop_table('videos')
    op.drop_table('conversations')
    op.drop_table('users')
