"""
Settlement - Row locking and terminal-state writes shared by every writer.

The launcher, the status poller, the worker callback, user cancel and the
admin overrides all finish a video the same way: move it to a terminal
status, optionally refund, and if the conversation still points at it,
move the conversation on, clear active_video_id and release the lease.

Lock order is always conversation -> video -> user.
"""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.db.models import Conversation, User, Video
from orchestrator.exceptions import (
    ConversationNotFoundError,
    DataIntegrityError,
    UserNotFoundError,
    VideoNotFoundError,
)
from orchestrator.models.api import VideoStatus, WorkflowState
from orchestrator.observability.metrics import metrics
from orchestrator.services import credits
from orchestrator.services.audit import AuditLog
from orchestrator.services.lease import release_on
from orchestrator.services.state_machine import can_transition, transition_video

ZERO = Decimal("0")

# User-visible conversation notices
TIMEOUT_ERROR = "Video generation timed out"
TIMEOUT_NOTICE = (
    "❌ Video generation timed out. Your credits have been refunded. "
    "Please try again or contact support if this issue persists."
)
COMPLETED_NOTICE = "🎬 Your video is ready! You can download it, share it, or request revisions."
REVISION_HINT = (
    "To request changes, simply describe what you'd like to modify "
    '(e.g., "Make it more energetic" or "Change the background music"). '
    "Each revision costs {cost} credits."
)
FAILED_NOTICE = (
    "❌ Video generation failed: {error}. "
    "Please try again or contact support if the issue persists."
)
CANCELLED_NOTICE = (
    "❌ **Video production cancelled**\n\n{reason}\n\n"
    "Your credits have been automatically refunded."
)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _parse_uuid(value: str) -> UUID | None:
    try:
        return UUID(value)
    except ValueError:
        return None


class ProductionStore:
    """Base for services that read and settle conversations and videos."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.audit = AuditLog(session)

    # ========================================================================
    # Lookups
    # ========================================================================

    async def _find_video(self, video_ref: str, conversation_id: UUID | None = None) -> Video:
        """
        Canonical video lookup: correlation id first, then primary key.

        When conversation_id is given the video must belong to it.
        """
        stmt = select(Video).where(Video.video_id == video_ref)
        result = await self.session.execute(stmt)
        video = result.scalar_one_or_none()

        if video is None:
            video_uuid = _parse_uuid(video_ref)
            if video_uuid is not None:
                video = await self.session.get(Video, video_uuid)

        if video is None or (conversation_id is not None and video.conversation_id != conversation_id):
            raise VideoNotFoundError(video_ref)
        return video

    async def _lock_conversation_for_update(
        self, conversation_id: UUID, owner_id: str | None = None
    ) -> Conversation:
        """Lock conversation row for update (SELECT FOR UPDATE)."""
        stmt = select(Conversation).where(Conversation.id == conversation_id).with_for_update()
        result = await self.session.execute(stmt)
        conversation = result.scalar_one_or_none()
        if conversation is None or (owner_id is not None and conversation.user_id != owner_id):
            raise ConversationNotFoundError(str(conversation_id))
        return conversation

    async def _lock_video_for_update(self, video_id: UUID) -> Video:
        stmt = select(Video).where(Video.id == video_id).with_for_update()
        result = await self.session.execute(stmt)
        video = result.scalar_one_or_none()
        if video is None:
            raise VideoNotFoundError(str(video_id))
        return video

    async def _lock_user_for_update(self, user_id: str) -> User:
        stmt = select(User).where(User.id == user_id).with_for_update()
        result = await self.session.execute(stmt)
        user = result.scalar_one_or_none()
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    # ========================================================================
    # Terminal writes
    # ========================================================================

    def _settle(
        self,
        conversation: Conversation,
        video: Video,
        owner: User,
        status: VideoStatus,
        workflow_target: WorkflowState,
        reason: str,
        refund: bool,
        now: datetime | None = None,
    ) -> Decimal:
        """
        Move a processing video to a terminal status. Returns credits refunded.

        Callers must have checked video.status == processing under the row lock.
        """
        if video.conversation_id != conversation.id:
            raise DataIntegrityError(
                f"Video {video.video_id} does not belong to conversation {conversation.id}"
            )

        now = now or _utc_now()
        transition_video(video, status)
        video.processing_completed_at = now

        refunded = ZERO
        if refund:
            refunded = video.credits_used
            credits.refund(owner, refunded)
            metrics.record_refund(reason, float(refunded))

        if conversation.active_video_id == video.id:
            if can_transition(conversation.workflow_state, workflow_target):
                conversation.workflow_state = workflow_target
            conversation.active_video_id = None
            release_on(conversation, now)

        metrics.record_terminal(status.value, reason)
        return refunded
