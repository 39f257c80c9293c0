"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from enum import Enum
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class Plan(str, Enum):
    """Subscription plan enumeration."""

    FREE = "Free"
    STARTER = "Starter"
    CREATOR = "Creator"
    PRO = "Pro"
    ELITE = "Elite"


class SubscriptionStatus(str, Enum):
    """Subscription status enumeration."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    PAST_DUE = "past_due"


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class WorkflowState(str, Enum):
    """Conversation workflow state enumeration."""

    DRAFT = "draft"
    AWAITING_APPROVAL = "awaiting_approval"
    IN_PRODUCTION = "in_production"
    COMPLETED = "completed"
    FAILED = "failed"


class VideoStatus(str, Enum):
    """Video status enumeration. Everything except PROCESSING is terminal."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class MessageType(str, Enum):
    ASSISTANT = "assistant"
    SYSTEM = "system"


class LogStatus(str, Enum):
    """Audit log entry outcome."""

    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


# ============================================================================
# Credit / Subscription Models
# ============================================================================


class EnsureCreditsResponse(BaseModel):
    """POST /v1/credits/ensure response."""

    success: bool = True
    action: Literal["created", "granted", "protected", "unchanged"]
    credits: float
    current_plan: Plan
    subscription_status: SubscriptionStatus


class SubscriptionSyncResponse(BaseModel):
    """POST /v1/subscription/sync response."""

    success: bool = True
    credits: float
    current_plan: Plan
    subscription_status: SubscriptionStatus
    credits_reset: bool = False
    credits_reset_at: datetime | None = None


# ============================================================================
# Conversation Models
# ============================================================================


class CreateConversationRequest(BaseModel):
    """POST /v1/conversations request body."""

    title: str | None = Field(None, max_length=255)


class RecordBriefRequest(BaseModel):
    """POST /v1/conversations/{id}/brief request body."""

    brief: str = Field(..., min_length=1, max_length=20000)


class ConversationResponse(BaseModel):
    success: bool = True
    conversation_id: UUID
    title: str | None
    workflow_state: WorkflowState
    brief: str | None
    active_video_id: UUID | None
    is_locked: bool
    locked_until: datetime | None
    created_at: datetime


# ============================================================================
# Lease Models
# ============================================================================


class AcquireLeaseRequest(BaseModel):
    """POST /v1/conversations/{id}/lock request body."""

    reason: str = Field("Video production in progress", min_length=1, max_length=255)
    ttl_minutes: int | None = Field(None, gt=0, le=120)


class LeaseStatusResponse(BaseModel):
    success: bool = True
    conversation_id: UUID
    held: bool
    locked_until: datetime | None = None
    lock_reason: str | None = None


# ============================================================================
# Production Models
# ============================================================================


class StartProductionRequest(BaseModel):
    """POST /v1/conversations/{id}/production request body."""

    image_url: str = Field(..., min_length=1, max_length=2048)
    prompt: str | None = Field(
        None,
        min_length=1,
        max_length=20000,
        description="Production prompt; defaults to the conversation's recorded brief",
    )

    @field_validator("image_url")
    @classmethod
    def validate_image_url(cls, v: str) -> str:
        """Image references must be absolute http(s) URLs."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("image_url must be an http(s) URL")
        return v


class StartRevisionRequest(BaseModel):
    """POST /v1/conversations/{id}/revisions request body."""

    parent_video_id: str = Field(..., min_length=1, max_length=255)
    revision_request: str = Field(..., min_length=1, max_length=5000)
    image_url: str | None = Field(None, max_length=2048)


class StartProductionResponse(BaseModel):
    success: bool = True
    video_id: str
    video_db_id: UUID
    conversation_id: UUID
    status: VideoStatus
    is_revision: bool
    credits_used: float
    credits_remaining: float
    estimated_completion: datetime


class CancelProductionResponse(BaseModel):
    success: bool = True
    cancelled: bool
    video_id: str | None = None
    credits_refunded: float = 0.0
    workflow_state: WorkflowState


class VideoStatusResponse(BaseModel):
    """GET /v1/conversations/{id}/videos/{video_id}/status response."""

    success: bool = True
    video_id: str
    status: VideoStatus
    progress: int = Field(..., ge=0, le=100)
    video_url: str | None = None
    error_message: str | None = None
    estimated_completion: datetime | None = None
    timed_out: bool = False
    credits_refunded: float = 0.0


# ============================================================================
# Webhook Models
# ============================================================================


class GenerationCallbackRequest(BaseModel):
    """POST /v1/webhooks/generation request body (sent by the generation worker)."""

    video_id: str = Field(..., min_length=1, max_length=255)
    chat_id: UUID
    status: Literal["completed", "failed"]
    video_url: str | None = Field(None, max_length=2048)
    error_message: str | None = Field(None, max_length=5000)
    processing_time_ms: int | None = Field(None, ge=0)


class GenerationCallbackResponse(BaseModel):
    success: bool = True
    applied: bool
    video_id: str
    status: VideoStatus


class BillingWebhookResponse(BaseModel):
    """POST /v1/webhooks/stripe response."""

    success: bool = True
    event_id: str
    event_type: str
    action: str


# ============================================================================
# Admin Models
# ============================================================================


class StuckVideo(BaseModel):
    video_db_id: UUID
    video_id: str
    conversation_id: UUID
    user_id: str | None
    credits_used: float
    processing_started_at: datetime
    minutes_processing: int


class StuckVideosResponse(BaseModel):
    success: bool = True
    threshold_minutes: int
    videos: list[StuckVideo]


class AdminCancelRequest(BaseModel):
    reason: str = Field("Cancelled by administrator", min_length=1, max_length=1000)


class AdminForceCompleteRequest(BaseModel):
    video_url: str = Field(..., min_length=1, max_length=2048)


class AdminVideoActionResponse(BaseModel):
    success: bool = True
    video_id: str
    status: VideoStatus
    credits_refunded: float = 0.0


class SystemLogEntry(BaseModel):
    id: UUID
    operation: str
    entity_type: str
    entity_id: str | None
    actor: str | None
    status: LogStatus
    message: str
    execution_time_ms: int | None
    created_at: datetime


class SystemLogsResponse(BaseModel):
    success: bool = True
    logs: list[SystemLogEntry]


# ============================================================================
# Health
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    database: Literal["connected", "disconnected"]
    timestamp: datetime
