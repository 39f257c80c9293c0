"""
Production Service - Launch, poll, timeout and cancel video productions.

Launch order:
    1. credit check           (user row locked)
    2. lease acquire          (conversation row locked)
    3. debit + video row + in_production, committed together
    4. dispatch to the worker
On dispatch failure steps 3..2 are undone in reverse in a compensating
transaction and the caller gets WorkerDispatchError with the refund amount.
"""

import time
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from orchestrator.config import settings
from orchestrator.db.models import Conversation, User, Video
from orchestrator.exceptions import (
    ConversationLockedError,
    ConversationNotFoundError,
    InsufficientCreditsError,
    InvalidTransitionError,
    UserNotFoundError,
    ValidationError,
    WorkerDispatchError,
)
from orchestrator.models.api import LogStatus, VideoStatus, WorkflowState
from orchestrator.models.domain import CancelResult, PollResult, ProductionIntent, ProductionTicket
from orchestrator.observability.metrics import metrics
from orchestrator.observability.tracing import trace_operation
from orchestrator.services import credits
from orchestrator.services.lease import acquire_on, release_on
from orchestrator.services.settlement import (
    CANCELLED_NOTICE,
    TIMEOUT_ERROR,
    TIMEOUT_NOTICE,
    ProductionStore,
)
from orchestrator.services.state_machine import transition_conversation
from orchestrator.services.worker_client import GenerationJob, WorkerClient

logger = get_logger(__name__)

PROGRESS_CAP = 95
LAUNCH_LEASE_REASON = "Video production in progress"
REVISION_LEASE_REASON = "Video revision in progress"


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def make_correlation_id(conversation_id: UUID, now: datetime) -> str:
    """video_{conversation}_{epoch millis}: shared with the worker and its callback."""
    return f"video_{conversation_id}_{int(now.timestamp() * 1000)}"


def estimated_duration(is_revision: bool) -> timedelta:
    minutes = (
        settings.estimated_minutes_revision if is_revision else settings.estimated_minutes_new_video
    )
    return timedelta(minutes=minutes)


def compute_progress(
    status: VideoStatus, started_at: datetime, now: datetime, is_revision: bool
) -> int:
    """
    Synthetic progress: linear ramp over the estimated duration, capped at 95.

    100 once completed, 0 for failed or cancelled.
    """
    if status == VideoStatus.COMPLETED:
        return 100
    if status != VideoStatus.PROCESSING:
        return 0
    total = estimated_duration(is_revision).total_seconds()
    elapsed = max(0.0, (now - started_at).total_seconds())
    return int(min(PROGRESS_CAP, elapsed / total * PROGRESS_CAP))


def is_timed_out(video: Video, now: datetime) -> bool:
    return video.status == VideoStatus.PROCESSING and now - video.processing_started_at > timedelta(
        minutes=settings.production_timeout_minutes
    )


class ProductionService(ProductionStore):
    """
    Conversation lifecycle and video production orchestration.

    Every write runs in one transaction with the touched rows locked
    (conversation -> video -> user) and is committed before returning.
    """

    def __init__(self, session: AsyncSession, worker: WorkerClient | None = None) -> None:
        super().__init__(session)
        self.worker = worker or WorkerClient()

    # ========================================================================
    # Conversations
    # ========================================================================

    async def create_conversation(self, user_id: str, title: str | None = None) -> Conversation:
        user = await self.session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        now = _utc_now()
        conversation = Conversation(
            user_id=user_id,
            title=title,
            workflow_state=WorkflowState.DRAFT,
            is_locked=False,
            created_at=now,
            updated_at=now,
        )
        self.session.add(conversation)
        await self.session.flush()
        await self.session.commit()
        logger.info("conversation_created", conversation_id=str(conversation.id), user_id=user_id)
        return conversation

    async def get_conversation(self, conversation_id: UUID, user_id: str) -> Conversation:
        conversation = await self.session.get(Conversation, conversation_id)
        if conversation is None or conversation.user_id != user_id:
            raise ConversationNotFoundError(str(conversation_id))
        return conversation

    async def record_brief(self, conversation_id: UUID, user_id: str, brief: str) -> Conversation:
        """Store the latest brief and move the conversation to awaiting_approval."""
        conversation = await self._lock_conversation_for_update(conversation_id, user_id)
        if conversation.workflow_state == WorkflowState.IN_PRODUCTION:
            # in_production -> awaiting_approval is reserved for cancellation
            await self.session.rollback()
            raise InvalidTransitionError(
                "conversation",
                WorkflowState.IN_PRODUCTION.value,
                WorkflowState.AWAITING_APPROVAL.value,
            )
        previous = transition_conversation(conversation, WorkflowState.AWAITING_APPROVAL)
        conversation.brief = brief
        conversation.last_activity_at = _utc_now()
        self.audit.record(
            operation="brief_recorded",
            entity_type="conversation",
            entity_id=conversation_id,
            actor=user_id,
            status=LogStatus.INFO,
            message="Brief recorded for review",
            details={"previous_state": previous.value, "brief_length": len(brief)},
        )
        await self.session.commit()
        logger.info(
            "brief_recorded",
            conversation_id=str(conversation_id),
            previous_state=previous.value,
        )
        return conversation

    # ========================================================================
    # Launch
    # ========================================================================

    async def start_production(
        self,
        conversation_id: UUID,
        user_id: str,
        image_url: str,
        prompt: str | None = None,
    ) -> ProductionTicket:
        """Launch a new video from the recorded brief (or an explicit prompt)."""
        conversation = await self.get_conversation(conversation_id, user_id)
        text = prompt or conversation.brief
        if not text:
            raise ValidationError("No brief recorded for this conversation")

        intent = ProductionIntent(
            conversation_id=conversation_id,
            user_id=user_id,
            prompt=text,
            image_url=image_url,
            is_revision=False,
            required_credits=settings.new_video_credits,
        )
        return await self._launch(intent)

    async def start_revision(
        self,
        conversation_id: UUID,
        user_id: str,
        parent_video_ref: str,
        revision_request: str,
        image_url: str | None = None,
    ) -> ProductionTicket:
        """Launch a revision of a completed video in the same conversation."""
        await self.get_conversation(conversation_id, user_id)
        parent = await self._find_video(parent_video_ref, conversation_id)
        if parent.status != VideoStatus.COMPLETED:
            raise ValidationError(
                f"Only completed videos can be revised (video {parent.video_id} is {parent.status.value})"
            )

        intent = ProductionIntent(
            conversation_id=conversation_id,
            user_id=user_id,
            prompt=revision_request,
            image_url=image_url or parent.image_url,
            is_revision=True,
            required_credits=settings.revision_credits,
            parent_video_id=parent.id,
            revision_request=revision_request,
        )
        return await self._launch(intent)

    async def _launch(self, intent: ProductionIntent) -> ProductionTicket:
        with trace_operation(
            "start_production",
            conversation_id=intent.conversation_id,
            is_revision=intent.is_revision,
        ) as span:
            video, previous_state, user, conversation = await self._reserve(intent)
            span.set_attribute("video_id", video.video_id)

            job = GenerationJob(
                video_id=video.video_id,
                chat_id=conversation.id,
                user_id=user.id,
                user_email=user.email,
                user_name=user.full_name,
                prompt=intent.prompt,
                image_url=intent.image_url,
                is_revision=intent.is_revision,
                callback_url=settings.generation_callback_url,
                request_timestamp=video.processing_started_at,
                parent_video_id=intent.parent_video_id,
                revision_request=intent.revision_request,
                original_brief=conversation.brief,
            )

            started = time.perf_counter()
            try:
                await self.worker.dispatch(job)
            except WorkerDispatchError as e:
                metrics.record_dispatch(time.perf_counter() - started, error_type="dispatch_failed")
                refunded = await self._rollback_launch(
                    intent.conversation_id, video.id, previous_state, intent.user_id, e.message
                )
                raise WorkerDispatchError(
                    f"{e.message}. Your credits have been refunded.", credits_refunded=refunded
                ) from e
            metrics.record_dispatch(time.perf_counter() - started)

        metrics.record_production_started(intent.is_revision, float(intent.required_credits))
        logger.info(
            "production_started",
            conversation_id=str(intent.conversation_id),
            video_id=video.video_id,
            is_revision=intent.is_revision,
            credits_used=str(intent.required_credits),
            credits_remaining=str(user.credits),
        )
        return ProductionTicket(
            video_db_id=video.id,
            video_id=video.video_id,
            conversation_id=intent.conversation_id,
            is_revision=intent.is_revision,
            credits_used=intent.required_credits,
            credits_remaining=user.credits,
            estimated_completion=video.processing_started_at
            + estimated_duration(intent.is_revision),
        )

    async def _reserve(
        self, intent: ProductionIntent
    ) -> tuple[Video, WorkflowState, User, Conversation]:
        """Steps 1-3 in one transaction. Nothing is written if any check fails."""
        now = _utc_now()
        try:
            conversation = await self._lock_conversation_for_update(
                intent.conversation_id, intent.user_id
            )
            await self._clear_stale_active_video(conversation, now)
            user = await self._lock_user_for_update(intent.user_id)

            if user.credits < intent.required_credits:
                raise InsufficientCreditsError(
                    balance=user.credits, required=intent.required_credits
                )

            reason = REVISION_LEASE_REASON if intent.is_revision else LAUNCH_LEASE_REASON
            lease = acquire_on(conversation, reason=reason, now=now)
            previous_state = transition_conversation(conversation, WorkflowState.IN_PRODUCTION)
            credits.debit(user, intent.required_credits)

            video = Video(
                video_id=make_correlation_id(conversation.id, now),
                conversation_id=conversation.id,
                prompt=intent.prompt,
                image_url=intent.image_url,
                status=VideoStatus.PROCESSING,
                credits_used=intent.required_credits,
                is_revision=intent.is_revision,
                parent_video_id=intent.parent_video_id,
                revision_request=intent.revision_request,
                processing_started_at=now,
                created_at=now,
            )
            self.session.add(video)
            await self.session.flush()

            conversation.active_video_id = video.id
            conversation.production_started_at = now
            self.audit.record(
                operation="production_started",
                entity_type="video",
                entity_id=video.video_id,
                actor=intent.user_id,
                message=f"Video {'revision' if intent.is_revision else 'production'} started",
                details={
                    "conversation_id": str(conversation.id),
                    "credits_used": float(intent.required_credits),
                    "credits_remaining": float(user.credits),
                    "locked_until": lease.expires_at.isoformat() if lease.expires_at else None,
                    "previous_state": previous_state.value,
                },
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        return video, previous_state, user, conversation

    async def _clear_stale_active_video(self, conversation: Conversation, now: datetime) -> None:
        """
        Refuse to launch over a processing video, unless it has timed out.

        A timed-out video is failed and refunded first, freeing the conversation.
        """
        if conversation.active_video_id is None:
            return
        video = await self._lock_video_for_update(conversation.active_video_id)
        if video.status != VideoStatus.PROCESSING:
            conversation.active_video_id = None
            return
        if not is_timed_out(video, now):
            raise ConversationLockedError(
                str(conversation.id),
                locked_until=conversation.locked_until,
                reason="A previous production is still processing",
            )
        owner = await self._lock_user_for_update(conversation.user_id)
        self._apply_timeout(conversation, video, owner, now)

    async def _rollback_launch(
        self,
        conversation_id: UUID,
        video_db_id: UUID,
        previous_state: WorkflowState,
        user_id: str,
        error: str,
    ) -> Decimal:
        """Compensating transaction: undo step 3 then step 2, in that order."""
        try:
            conversation = await self._lock_conversation_for_update(conversation_id)
            video = await self._lock_video_for_update(video_db_id)
            user = await self._lock_user_for_update(user_id)

            if video.status != VideoStatus.PROCESSING:
                # Settled concurrently (callback raced the dispatch error); nothing to undo
                settled_id, settled_status = video.video_id, video.status
                await self.session.rollback()
                logger.warning(
                    "launch_rollback_skipped", video_id=settled_id, status=settled_status.value
                )
                return Decimal("0")

            refunded = video.credits_used
            if conversation.active_video_id == video.id:
                conversation.workflow_state = previous_state
                conversation.active_video_id = None
                await self.session.flush()
            await self.session.delete(video)
            credits.refund(user, refunded)
            release_on(conversation)

            self.audit.record(
                operation="production_rollback",
                entity_type="conversation",
                entity_id=conversation_id,
                actor=user_id,
                status=LogStatus.ERROR,
                message="Worker dispatch failed; launch rolled back",
                details={
                    "video_id": video.video_id,
                    "error": error,
                    "credits_refunded": float(refunded),
                    "restored_state": previous_state.value,
                },
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            logger.exception("launch_rollback_failed", conversation_id=str(conversation_id))
            raise

        metrics.record_refund("dispatch_failure", float(refunded))
        logger.warning(
            "production_rolled_back",
            conversation_id=str(conversation_id),
            credits_refunded=str(refunded),
            error=error,
        )
        return refunded

    # ========================================================================
    # Status polling / timeout supervision
    # ========================================================================

    async def poll_status(self, conversation_id: UUID, video_ref: str, user_id: str) -> PollResult:
        """Report progress; fail and refund the video if it exceeded the timeout."""
        await self.get_conversation(conversation_id, user_id)
        video = await self._find_video(video_ref, conversation_id)
        now = _utc_now()

        if is_timed_out(video, now):
            return await self._expire(conversation_id, video.id, now)

        video.last_status_check_at = now
        await self.session.commit()
        return self._snapshot(video, now)

    async def _expire(self, conversation_id: UUID, video_db_id: UUID, now: datetime) -> PollResult:
        try:
            conversation = await self._lock_conversation_for_update(conversation_id)
            video = await self._lock_video_for_update(video_db_id)
            if not is_timed_out(video, now):
                # Callback won the race
                video.last_status_check_at = now
                await self.session.commit()
                return self._snapshot(video, now)

            owner = await self._lock_user_for_update(conversation.user_id)
            refunded = self._apply_timeout(conversation, video, owner, now)
            video.last_status_check_at = now
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        return PollResult(
            video_id=video.video_id,
            status=video.status,
            progress=0,
            video_url=None,
            error_message=video.error_message,
            estimated_completion=None,
            timed_out=True,
            credits_refunded=refunded,
        )

    def _apply_timeout(
        self, conversation: Conversation, video: Video, owner: User, now: datetime
    ) -> Decimal:
        elapsed_minutes = int((now - video.processing_started_at).total_seconds() // 60)
        video.error_message = TIMEOUT_ERROR
        refunded = self._settle(
            conversation,
            video,
            owner,
            VideoStatus.FAILED,
            WorkflowState.FAILED,
            reason="timeout",
            refund=True,
            now=now,
        )
        self.audit.notify(
            conversation.id,
            TIMEOUT_NOTICE,
            details={
                "is_error": True,
                "error_type": "timeout",
                "video_id": video.video_id,
                "credits_refunded": float(refunded),
            },
        )
        self.audit.record(
            operation="production_timeout",
            entity_type="video",
            entity_id=video.video_id,
            status=LogStatus.WARNING,
            message=f"Video timed out after {elapsed_minutes} minutes",
            details={"conversation_id": str(conversation.id), "credits_refunded": float(refunded)},
        )
        logger.warning(
            "production_timed_out",
            video_id=video.video_id,
            conversation_id=str(conversation.id),
            elapsed_minutes=elapsed_minutes,
            credits_refunded=str(refunded),
        )
        return refunded

    def _snapshot(self, video: Video, now: datetime) -> PollResult:
        processing = video.status == VideoStatus.PROCESSING
        return PollResult(
            video_id=video.video_id,
            status=video.status,
            progress=compute_progress(
                video.status, video.processing_started_at, now, video.is_revision
            ),
            video_url=video.video_url,
            error_message=video.error_message,
            estimated_completion=video.processing_started_at
            + estimated_duration(video.is_revision)
            if processing
            else None,
        )

    # ========================================================================
    # User cancel
    # ========================================================================

    async def cancel_production(self, conversation_id: UUID, user_id: str) -> CancelResult:
        """Cancel the processing video, refund it and return to awaiting_approval."""
        try:
            conversation = await self._lock_conversation_for_update(conversation_id, user_id)
            # Rollback expires the rows; read everything the no-op reply needs first
            current_state = conversation.workflow_state
            if conversation.active_video_id is None:
                await self.session.rollback()
                return CancelResult(cancelled=False, workflow_state=current_state)

            video = await self._lock_video_for_update(conversation.active_video_id)
            if video.status != VideoStatus.PROCESSING:
                settled_id = video.video_id
                await self.session.rollback()
                return CancelResult(
                    cancelled=False, workflow_state=current_state, video_id=settled_id
                )

            owner = await self._lock_user_for_update(conversation.user_id)
            reason = "Cancelled by user"
            video.cancelled_by = user_id
            video.cancellation_reason = reason
            refunded = self._settle(
                conversation,
                video,
                owner,
                VideoStatus.CANCELLED,
                WorkflowState.AWAITING_APPROVAL,
                reason="user_cancel",
                refund=True,
            )
            self.audit.notify(
                conversation.id,
                CANCELLED_NOTICE.format(reason=reason),
                details={"video_id": video.video_id, "credits_refunded": float(refunded)},
            )
            self.audit.record(
                operation="production_cancelled",
                entity_type="video",
                entity_id=video.video_id,
                actor=user_id,
                message=reason,
                details={"credits_refunded": float(refunded)},
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "production_cancelled",
            conversation_id=str(conversation_id),
            video_id=video.video_id,
            credits_refunded=str(refunded),
        )
        return CancelResult(
            cancelled=True,
            workflow_state=conversation.workflow_state,
            video_id=video.video_id,
            credits_refunded=refunded,
        )
