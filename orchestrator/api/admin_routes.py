"""
Admin API Routes - Operator overrides for stuck productions.

All routes require a user with the admin role; every action is audit-logged.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.api.admin_dependencies import require_admin_role
from orchestrator.db.models import User
from orchestrator.db.session import get_write_db
from orchestrator.exceptions import ValidationError
from orchestrator.models.api import (
    AdminCancelRequest,
    AdminForceCompleteRequest,
    AdminVideoActionResponse,
    LeaseStatusResponse,
    StuckVideo,
    StuckVideosResponse,
    SystemLogEntry,
    SystemLogsResponse,
)
from orchestrator.models.domain import AdminActionResult
from orchestrator.services.admin import AdminService
from orchestrator.services.lease import LeaseService

router = APIRouter(prefix="/admin", tags=["admin"])


def _action_response(result: AdminActionResult) -> AdminVideoActionResponse:
    return AdminVideoActionResponse(
        video_id=result.video_id,
        status=result.status,
        credits_refunded=float(result.credits_refunded),
    )


@router.get("/videos/stuck", response_model=StuckVideosResponse)
async def list_stuck_videos(
    threshold_minutes: int = Query(20, ge=1, le=1440),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_write_db),
    admin: User = Depends(require_admin_role),
) -> StuckVideosResponse:
    """Videos still processing longer than threshold_minutes, oldest first."""
    service = AdminService(db)
    stuck = await service.list_stuck_videos(admin.id, threshold_minutes=threshold_minutes, limit=limit)
    return StuckVideosResponse(
        threshold_minutes=threshold_minutes,
        videos=[
            StuckVideo(
                video_db_id=item.video_db_id,
                video_id=item.video_id,
                conversation_id=item.conversation_id,
                user_id=item.user_id,
                credits_used=float(item.credits_used),
                processing_started_at=item.processing_started_at,
                minutes_processing=item.minutes_processing,
            )
            for item in stuck
        ],
    )


@router.post("/videos/{video_id}/cancel", response_model=AdminVideoActionResponse)
async def cancel_video(
    video_id: str,
    request: AdminCancelRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: User = Depends(require_admin_role),
) -> AdminVideoActionResponse:
    """Cancel a processing video and refund its credits."""
    service = AdminService(db)
    result = await service.cancel_video(video_id, actor=admin.id, reason=request.reason)
    return _action_response(result)


@router.post("/videos/{video_id}/force-complete", response_model=AdminVideoActionResponse)
async def force_complete_video(
    video_id: str,
    request: AdminForceCompleteRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: User = Depends(require_admin_role),
) -> AdminVideoActionResponse:
    """Mark a processing video completed with an operator-supplied URL."""
    service = AdminService(db)
    result = await service.force_complete(video_id, actor=admin.id, video_url=request.video_url)
    return _action_response(result)


@router.get("/logs", response_model=SystemLogsResponse)
async def get_logs(
    video_id: str | None = Query(None),
    conversation_id: UUID | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_write_db),
    admin: User = Depends(require_admin_role),
) -> SystemLogsResponse:
    """Latest audit entries for a video or a conversation."""
    if not video_id and conversation_id is None:
        raise ValidationError("Provide video_id or conversation_id")

    service = AdminService(db)
    logs = await service.get_logs(
        admin.id, video_ref=video_id, conversation_id=conversation_id, limit=limit
    )
    return SystemLogsResponse(
        logs=[
            SystemLogEntry(
                id=entry.id,
                operation=entry.operation,
                entity_type=entry.entity_type,
                entity_id=entry.entity_id,
                actor=entry.actor,
                status=entry.status,
                message=entry.message,
                execution_time_ms=entry.execution_time_ms,
                created_at=entry.created_at,
            )
            for entry in logs
        ]
    )


@router.post("/conversations/{conversation_id}/force-release", response_model=LeaseStatusResponse)
async def force_release_lease(
    conversation_id: UUID,
    db: AsyncSession = Depends(get_write_db),
    admin: User = Depends(require_admin_role),
) -> LeaseStatusResponse:
    """Release a conversation lease regardless of who holds it."""
    service = LeaseService(db)
    await service.force_release(conversation_id, actor=admin.id)
    return LeaseStatusResponse(conversation_id=conversation_id, held=False)
