"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from orchestrator.models.api import (
    LogStatus,
    MessageType,
    Plan,
    SubscriptionStatus,
    UserRole,
    VideoStatus,
    WorkflowState,
)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _enum_column(enum_cls: type[Enum], name: str, length: int = 30) -> SQLEnum:
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=length,
        values_callable=lambda x: [e.value for e in x],
    )


class User(Base):
    """
    ORM model for users table.

    Keyed by the identity provider's subject. Holds the credit balance and
    the subscription state mirrored from the payment provider.
    """

    __tablename__ = "users"

    # Primary Key (identity provider subject)
    id: Mapped[str] = mapped_column(String(255), primary_key=True)

    # Contact information
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    role: Mapped[UserRole] = mapped_column(
        _enum_column(UserRole, "user_role", 20), nullable=False, default=UserRole.USER
    )

    # Balance (fractional: revisions cost 2.5)
    credits: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))

    # Subscription
    current_plan: Mapped[Plan] = mapped_column(
        _enum_column(Plan, "plan", 20), nullable=False, default=Plan.FREE
    )
    subscription_status: Mapped[SubscriptionStatus] = mapped_column(
        _enum_column(SubscriptionStatus, "subscription_status", 20),
        nullable=False,
        default=SubscriptionStatus.INACTIVE,
    )
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    subscription_period_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    credits_reset_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
        Index("idx_users_email", "email"),
        Index(
            "idx_users_stripe_customer_id",
            "stripe_customer_id",
            postgresql_where=(stripe_customer_id.isnot(None)),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<User(id={self.id}, plan={self.current_plan}, "
            f"credits={self.credits}, status={self.subscription_status})>"
        )


class Conversation(Base):
    """
    ORM model for conversations table.

    The unit of production work. Carries the workflow state and the
    embedded lease (is_locked, locked_until, lock_reason). Never hard-deleted.
    """

    __tablename__ = "conversations"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("users.id"), nullable=False, index=True
    )
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    brief: Mapped[str | None] = mapped_column(Text, nullable=True)

    workflow_state: Mapped[WorkflowState] = mapped_column(
        _enum_column(WorkflowState, "workflow_state"),
        nullable=False,
        default=WorkflowState.DRAFT,
    )
    active_video_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("videos.id", use_alter=True, name="fk_conversations_active_video"),
        nullable=True,
    )

    # Lease - only written through LeaseService
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    locked_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    lock_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    last_activity_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    production_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        Index("idx_conversations_workflow_state", "workflow_state"),
        Index(
            "idx_conversations_locked_until",
            "locked_until",
            postgresql_where=text("is_locked"),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Conversation(id={self.id}, state={self.workflow_state}, "
            f"locked={self.is_locked})>"
        )


class Video(Base):
    """
    ORM model for videos table.

    One production attempt. processing is the only non-terminal status.
    """

    __tablename__ = "videos"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Correlation id shared with the generation worker
    video_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    conversation_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("conversations.id"), nullable=False, index=True
    )

    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    image_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)

    status: Mapped[VideoStatus] = mapped_column(
        _enum_column(VideoStatus, "video_status", 20),
        nullable=False,
        default=VideoStatus.PROCESSING,
    )
    credits_used: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # Revisions
    is_revision: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    parent_video_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("videos.id"), nullable=True
    )
    revision_request: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timing
    processing_started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    processing_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processing_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_status_check_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Outcome
    video_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits_used > 0", name="ck_videos_credits_used_positive"),
        Index("idx_videos_status_started", "status", "processing_started_at"),
        # At most one processing video per conversation
        Index(
            "uq_videos_one_processing_per_conversation",
            "conversation_id",
            unique=True,
            postgresql_where=text("status = 'processing'"),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Video(id={self.id}, video_id={self.video_id}, status={self.status})>"


class Message(Base):
    """
    ORM model for messages table.

    User-visible notices appended to a conversation.
    """

    __tablename__ = "messages"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    conversation_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("conversations.id"), nullable=False, index=True
    )
    message_type: Mapped[MessageType] = mapped_column(
        _enum_column(MessageType, "message_type", 20), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Message(id={self.id}, conversation_id={self.conversation_id})>"


class SystemLog(Base):
    """
    ORM model for system_logs table.

    Append-only audit trail. Diagnostic only, never authoritative for state.
    """

    __tablename__ = "system_logs"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    operation: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    actor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[LogStatus] = mapped_column(
        _enum_column(LogStatus, "log_status", 20), nullable=False
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    execution_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("idx_system_logs_entity", "entity_type", "entity_id"),
        Index("idx_system_logs_created_at", "created_at", postgresql_using="brin"),
        Index("idx_system_logs_operation", "operation"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<SystemLog(id={self.id}, operation={self.operation}, status={self.status})>"


class BillingEvent(Base):
    """
    ORM model for billing_events table.

    Payment-provider event ids already applied; makes webhook redelivery a no-op.
    """

    __tablename__ = "billing_events"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<BillingEvent(event_id={self.event_id}, type={self.event_type})>"
