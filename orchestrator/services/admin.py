"""
Admin Override - Operator tools for stuck productions.

Every operation is audit-logged with actor, outcome and timing, including
failed attempts (written in a fresh transaction after the rollback).
"""

import time
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from structlog import get_logger

from orchestrator.config import settings
from orchestrator.db.models import Conversation, SystemLog, User, Video
from orchestrator.exceptions import InvalidTransitionError, OrchestratorError
from orchestrator.models.api import LogStatus, MessageType, VideoStatus, WorkflowState
from orchestrator.models.domain import AdminActionResult, StuckVideoData
from orchestrator.observability.metrics import metrics
from orchestrator.services.settlement import (
    CANCELLED_NOTICE,
    COMPLETED_NOTICE,
    REVISION_HINT,
    ProductionStore,
)

logger = get_logger(__name__)

LOG_LIMIT = 50


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class AdminService(ProductionStore):
    """Stuck-video listing, cancel, force-complete and log retrieval."""

    async def list_stuck_videos(
        self,
        actor: str,
        threshold_minutes: int | None = None,
        limit: int = 50,
    ) -> list[StuckVideoData]:
        started = time.perf_counter()
        threshold = threshold_minutes or settings.stuck_video_threshold_minutes
        now = _utc_now()
        cutoff = now - timedelta(minutes=threshold)

        stmt = (
            select(Video, Conversation.user_id)
            .join(Conversation, Conversation.id == Video.conversation_id)
            .where(Video.status == VideoStatus.PROCESSING, Video.processing_started_at < cutoff)
            .order_by(Video.processing_started_at)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        stuck = [
            StuckVideoData(
                video_db_id=video.id,
                video_id=video.video_id,
                conversation_id=video.conversation_id,
                user_id=user_id,
                credits_used=video.credits_used,
                processing_started_at=video.processing_started_at,
                minutes_processing=int((now - video.processing_started_at).total_seconds() // 60),
            )
            for video, user_id in result.all()
        ]

        self.audit.record(
            operation="admin_list_stuck_videos",
            entity_type="video",
            entity_id=None,
            actor=actor,
            status=LogStatus.INFO,
            message=f"Found {len(stuck)} videos processing longer than {threshold} minutes",
            details={"threshold_minutes": threshold, "count": len(stuck)},
            execution_time_ms=_elapsed_ms(started),
        )
        await self.session.commit()
        metrics.record_admin_action("list_stuck_videos", success=True)
        return stuck

    async def cancel_video(self, video_ref: str, actor: str, reason: str) -> AdminActionResult:
        """Cancel a processing video, refund it and return the conversation to awaiting_approval."""
        started = time.perf_counter()
        try:
            conversation, video, owner = await self._lock_processing(video_ref, VideoStatus.CANCELLED)
            video.cancelled_by = actor
            video.cancellation_reason = reason
            video.error_message = reason
            refunded = self._settle(
                conversation,
                video,
                owner,
                VideoStatus.CANCELLED,
                WorkflowState.AWAITING_APPROVAL,
                reason="admin_cancel",
                refund=True,
            )
            self.audit.notify(
                conversation.id,
                CANCELLED_NOTICE.format(reason=reason),
                details={"video_id": video.video_id, "credits_refunded": float(refunded)},
            )
            self.audit.record(
                operation="admin_cancel_video",
                entity_type="video",
                entity_id=video.video_id,
                actor=actor,
                status=LogStatus.WARNING,
                message="Video cancelled by administrator",
                details={
                    "reason": reason,
                    "conversation_id": str(conversation.id),
                    "credits_refunded": float(refunded),
                },
                execution_time_ms=_elapsed_ms(started),
            )
            await self.session.commit()
        except OrchestratorError as e:
            await self._record_failure("admin_cancel_video", video_ref, actor, e, started)
            raise

        metrics.record_admin_action("cancel_video", success=True)
        logger.warning(
            "admin_video_cancelled", video_id=video.video_id, actor=actor, credits_refunded=str(refunded)
        )
        return AdminActionResult(video.video_id, video.status, refunded)

    async def force_complete(self, video_ref: str, actor: str, video_url: str) -> AdminActionResult:
        """Mark a processing video completed without worker confirmation."""
        started = time.perf_counter()
        try:
            conversation, video, owner = await self._lock_processing(video_ref, VideoStatus.COMPLETED)
            video.video_url = video_url
            self._settle(
                conversation,
                video,
                owner,
                VideoStatus.COMPLETED,
                WorkflowState.COMPLETED,
                reason="admin_force_complete",
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
            self.audit.record(
                operation="admin_force_complete",
                entity_type="video",
                entity_id=video.video_id,
                actor=actor,
                status=LogStatus.WARNING,
                message="Video marked as completed by administrator",
                details={"video_url": video_url, "conversation_id": str(conversation.id)},
                execution_time_ms=_elapsed_ms(started),
            )
            await self.session.commit()
        except OrchestratorError as e:
            await self._record_failure("admin_force_complete", video_ref, actor, e, started)
            raise

        metrics.record_admin_action("force_complete", success=True)
        logger.warning("admin_video_force_completed", video_id=video.video_id, actor=actor)
        return AdminActionResult(video.video_id, video.status)

    async def get_logs(
        self,
        actor: str,
        video_ref: str | None = None,
        conversation_id: UUID | None = None,
        limit: int = LOG_LIMIT,
    ) -> list[SystemLog]:
        """Latest audit entries for a video (by either id) or a conversation and its videos."""
        entity_ids: list[str] = []
        if video_ref:
            video = await self._find_video(video_ref)
            entity_ids += [video.video_id, str(video.id)]
        if conversation_id is not None:
            entity_ids.append(str(conversation_id))
            stmt = select(Video.video_id).where(Video.conversation_id == conversation_id)
            result = await self.session.execute(stmt)
            entity_ids += list(result.scalars().all())

        logs = await self.audit.entries_for(entity_ids, limit=limit) if entity_ids else []
        metrics.record_admin_action("get_logs", success=True)
        logger.info("admin_logs_viewed", actor=actor, entity_count=len(entity_ids), returned=len(logs))
        return logs

    async def _lock_processing(
        self, video_ref: str, target: VideoStatus
    ) -> tuple[Conversation, Video, User]:
        video = await self._find_video(video_ref)
        conversation = await self._lock_conversation_for_update(video.conversation_id)
        video = await self._lock_video_for_update(video.id)
        if video.status != VideoStatus.PROCESSING:
            raise InvalidTransitionError("video", video.status.value, target.value)
        owner = await self._lock_user_for_update(conversation.user_id)
        return conversation, video, owner

    async def _record_failure(
        self,
        operation: str,
        video_ref: str,
        actor: str,
        error: OrchestratorError,
        started: float,
    ) -> None:
        await self.session.rollback()
        self.audit.record(
            operation=operation,
            entity_type="video",
            entity_id=video_ref,
            actor=actor,
            status=LogStatus.ERROR,
            message=str(error),
            details={"error_code": error.error_code},
            execution_time_ms=_elapsed_ms(started),
        )
        await self.session.commit()
        metrics.record_admin_action(operation.removeprefix("admin_"), success=False)
        logger.error("admin_action_failed", operation=operation, video_id=video_ref, error=str(error))
