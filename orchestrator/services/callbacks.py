"""
Webhook Reconciler - Applies generation worker callbacks.

Callbacks are at-least-once and may arrive after the timeout supervisor or
a cancel already settled the video. Only a video still in processing is
written; anything else is acknowledged as a no-op (first writer wins).
"""

import hmac
import time
from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID

from structlog import get_logger

from orchestrator.config import settings
from orchestrator.exceptions import AuthenticationError, ValidationError
from orchestrator.models.api import LogStatus, MessageType, VideoStatus, WorkflowState
from orchestrator.models.domain import CallbackResult
from orchestrator.observability.metrics import metrics
from orchestrator.observability.tracing import trace_operation
from orchestrator.services.settlement import (
    COMPLETED_NOTICE,
    FAILED_NOTICE,
    REVISION_HINT,
    ProductionStore,
)

logger = get_logger(__name__)

DEFAULT_FAILURE_MESSAGE = "Video generation failed"


def verify_worker_secret(provided: str | None, expected: str | None = None) -> None:
    """
    Constant-time check of the X-Webhook-Secret header.

    Raises:
        AuthenticationError: header missing, secret unconfigured or mismatch
    """
    secret = expected if expected is not None else settings.worker_callback_secret
    if not secret:
        logger.error("worker_callback_secret_unconfigured")
        raise AuthenticationError("Webhook secret is not configured")
    if not provided:
        raise AuthenticationError("Missing webhook secret")
    if not hmac.compare_digest(provided.encode(), secret.encode()):
        logger.warning("worker_callback_secret_mismatch")
        raise AuthenticationError("Invalid webhook secret")


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class CallbackReconciler(ProductionStore):
    """Applies a terminal outcome reported by the generation worker."""

    async def handle_callback(
        self,
        video_ref: str,
        conversation_id: UUID,
        outcome: str,
        video_url: str | None = None,
        error_message: str | None = None,
        processing_time_ms: int | None = None,
    ) -> CallbackResult:
        started = time.perf_counter()
        if outcome not in (VideoStatus.COMPLETED.value, VideoStatus.FAILED.value):
            raise ValidationError(f"Unsupported callback status: {outcome}")
        if outcome == VideoStatus.COMPLETED.value and not video_url:
            raise ValidationError("video_url is required when status is completed")

        with trace_operation(
            "generation_callback", video_id=video_ref, conversation_id=conversation_id
        ):
            video = await self._find_video(video_ref)
            if video.conversation_id != conversation_id:
                logger.warning(
                    "callback_conversation_mismatch",
                    video_id=video_ref,
                    chat_id=str(conversation_id),
                    expected=str(video.conversation_id),
                )
                raise ValidationError("chat_id does not match the video's conversation")

            try:
                conversation = await self._lock_conversation_for_update(video.conversation_id)
                video = await self._lock_video_for_update(video.id)

                if video.status != VideoStatus.PROCESSING:
                    # Rollback expires the rows; keep what the reply needs
                    settled_id, settled_status = video.video_id, video.status
                    await self.session.rollback()
                    metrics.record_callback(applied=False)
                    logger.info(
                        "callback_ignored_terminal_video",
                        video_id=settled_id,
                        status=settled_status.value,
                        reported=outcome,
                    )
                    return CallbackResult(applied=False, video_id=settled_id, status=settled_status)

                owner = await self._lock_user_for_update(conversation.user_id)
                video.processing_time_ms = processing_time_ms

                refunded = Decimal("0")
                if outcome == VideoStatus.COMPLETED.value:
                    video.video_url = video_url
                    self._settle(
                        conversation,
                        video,
                        owner,
                        VideoStatus.COMPLETED,
                        WorkflowState.COMPLETED,
                        reason="callback",
                        refund=False,
                    )
                    self.audit.notify(
                        conversation.id,
                        COMPLETED_NOTICE,
                        details={"video_url": video_url, "video_id": video.video_id},
                    )
                    self.audit.notify(
                        conversation.id,
                        REVISION_HINT.format(cost=settings.revision_credits.normalize()),
                        message_type=MessageType.SYSTEM,
                    )
                    log_status, log_message = LogStatus.SUCCESS, "Video production completed"
                else:
                    video.error_message = error_message or DEFAULT_FAILURE_MESSAGE
                    refunded = self._settle(
                        conversation,
                        video,
                        owner,
                        VideoStatus.FAILED,
                        WorkflowState.FAILED,
                        reason="callback",
                        refund=True,
                    )
                    self.audit.notify(
                        conversation.id,
                        FAILED_NOTICE.format(error=error_message or "Unknown error"),
                        details={
                            "is_error": True,
                            "error_message": error_message,
                            "credits_refunded": float(refunded),
                        },
                    )
                    log_status, log_message = LogStatus.ERROR, "Video production failed"

                self.audit.record(
                    operation="generation_callback",
                    entity_type="video",
                    entity_id=video.video_id,
                    actor="generation-worker",
                    status=log_status,
                    message=log_message,
                    details={
                        "conversation_id": str(conversation.id),
                        "video_url": video_url,
                        "error_message": error_message,
                        "processing_time_ms": processing_time_ms,
                        "credits_refunded": float(refunded),
                    },
                    execution_time_ms=int((time.perf_counter() - started) * 1000),
                )
                await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise

        metrics.record_callback(applied=True)
        logger.info(
            "callback_applied",
            video_id=video.video_id,
            status=video.status.value,
            credits_refunded=str(refunded),
        )
        return CallbackResult(applied=True, video_id=video.video_id, status=video.status)
