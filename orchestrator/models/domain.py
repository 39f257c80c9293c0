"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from orchestrator.models.api import VideoStatus, WorkflowState


@dataclass(frozen=True)
class Lease:
    """
    Time-bounded exclusive claim on a conversation.

    Held iff locked and now < expires_at. An expired lease is free even when
    the flag is still set; the next acquire overwrites it.
    """

    locked: bool
    expires_at: datetime | None
    reason: str | None

    def is_held(self, now: datetime) -> bool:
        return self.locked and self.expires_at is not None and now < self.expires_at

    @classmethod
    def free(cls) -> "Lease":
        return cls(locked=False, expires_at=None, reason=None)


@dataclass(frozen=True)
class ProductionIntent:
    """Domain model for a production launch before persistence - immutable intent."""

    conversation_id: UUID
    user_id: str
    prompt: str
    image_url: str | None
    is_revision: bool
    required_credits: Decimal
    parent_video_id: UUID | None = None
    revision_request: str | None = None

    def __post_init__(self) -> None:
        """Validate launch constraints."""
        if self.required_credits <= 0:
            raise ValueError(f"Required credits must be positive: {self.required_credits}")
        if not self.prompt:
            raise ValueError("Prompt cannot be empty")
        if self.is_revision and (self.parent_video_id is None or not self.revision_request):
            raise ValueError("Revisions require a parent video and a revision request")


@dataclass(frozen=True)
class ProductionTicket:
    """Result of a successful launch."""

    video_db_id: UUID
    video_id: str
    conversation_id: UUID
    is_revision: bool
    credits_used: Decimal
    credits_remaining: Decimal
    estimated_completion: datetime


@dataclass(frozen=True)
class PollResult:
    """Snapshot returned by the status poller."""

    video_id: str
    status: VideoStatus
    progress: int
    video_url: str | None
    error_message: str | None
    estimated_completion: datetime | None
    timed_out: bool = False
    credits_refunded: Decimal = Decimal("0")


@dataclass(frozen=True)
class CancelResult:
    cancelled: bool
    workflow_state: WorkflowState
    video_id: str | None = None
    credits_refunded: Decimal = Decimal("0")


@dataclass(frozen=True)
class CallbackResult:
    """Outcome of reconciling a worker callback. applied=False means no-op."""

    applied: bool
    video_id: str
    status: VideoStatus


@dataclass(frozen=True)
class BillingOutcome:
    """Result of processing one payment-provider event."""

    event_id: str
    event_type: str
    action: str
    user_id: str | None = None


@dataclass(frozen=True)
class StuckVideoData:
    """A video processing longer than the admin threshold."""

    video_db_id: UUID
    video_id: str
    conversation_id: UUID
    user_id: str | None
    credits_used: Decimal
    processing_started_at: datetime
    minutes_processing: int


@dataclass(frozen=True)
class AdminActionResult:
    video_id: str
    status: VideoStatus
    credits_refunded: Decimal = Decimal("0")
