"""
API Routes - Client-facing endpoints for credits, conversations and production.

NO DICTIONARIES - All requests/responses use Pydantic models.

Domain errors propagate as OrchestratorError and are rendered by the
application-level handler in orchestrator.main.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.api.dependencies import AuthenticatedUser, get_current_user, get_worker_client
from orchestrator.db.models import Conversation
from orchestrator.db.session import get_read_db, get_write_db
from orchestrator.models.api import (
    AcquireLeaseRequest,
    CancelProductionResponse,
    ConversationResponse,
    CreateConversationRequest,
    EnsureCreditsResponse,
    HealthResponse,
    LeaseStatusResponse,
    RecordBriefRequest,
    StartProductionRequest,
    StartProductionResponse,
    StartRevisionRequest,
    SubscriptionSyncResponse,
    VideoStatus,
    VideoStatusResponse,
)
from orchestrator.models.domain import Lease, ProductionTicket
from orchestrator.services.billing import BillingService
from orchestrator.services.lease import LeaseService
from orchestrator.services.production import ProductionService
from orchestrator.services.worker_client import WorkerClient

router = APIRouter()


def _conversation_response(conversation: Conversation) -> ConversationResponse:
    return ConversationResponse(
        conversation_id=conversation.id,
        title=conversation.title,
        workflow_state=conversation.workflow_state,
        brief=conversation.brief,
        active_video_id=conversation.active_video_id,
        is_locked=conversation.is_locked,
        locked_until=conversation.locked_until,
        created_at=conversation.created_at,
    )


def _lease_response(conversation_id: UUID, lease: Lease) -> LeaseStatusResponse:
    return LeaseStatusResponse(
        conversation_id=conversation_id,
        held=lease.locked,
        locked_until=lease.expires_at,
        lock_reason=lease.reason,
    )


def _production_response(ticket: ProductionTicket) -> StartProductionResponse:
    return StartProductionResponse(
        video_id=ticket.video_id,
        video_db_id=ticket.video_db_id,
        conversation_id=ticket.conversation_id,
        status=VideoStatus.PROCESSING,
        is_revision=ticket.is_revision,
        credits_used=float(ticket.credits_used),
        credits_remaining=float(ticket.credits_remaining),
        estimated_completion=ticket.estimated_completion,
    )


# =============================================================================
# Credits
# =============================================================================


@router.post("/v1/credits/ensure", response_model=EnsureCreditsResponse)
async def ensure_credits(
    db: AsyncSession = Depends(get_write_db),
    user: AuthenticatedUser = Depends(get_current_user),
) -> EnsureCreditsResponse:
    """
    Ensure the caller has a user row and baseline credits.

    Creates the user with the free allotment on first call. Users with any
    paid indicator are never touched.
    """
    service = BillingService(db)
    return await service.ensure_baseline_credits(user.user_id, user.email, user.name)


@router.post("/v1/subscription/sync", response_model=SubscriptionSyncResponse)
async def sync_subscription(
    db: AsyncSession = Depends(get_write_db),
    user: AuthenticatedUser = Depends(get_current_user),
) -> SubscriptionSyncResponse:
    """Apply a due monthly credit reset for an active subscriber."""
    service = BillingService(db)
    return await service.sync_subscription(user.user_id)


# =============================================================================
# Conversations
# =============================================================================


@router.post(
    "/v1/conversations",
    response_model=ConversationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_conversation(
    request: CreateConversationRequest,
    db: AsyncSession = Depends(get_write_db),
    user: AuthenticatedUser = Depends(get_current_user),
) -> ConversationResponse:
    service = ProductionService(db)
    conversation = await service.create_conversation(user.user_id, request.title)
    return _conversation_response(conversation)


@router.get("/v1/conversations/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: UUID,
    db: AsyncSession = Depends(get_read_db),
    user: AuthenticatedUser = Depends(get_current_user),
) -> ConversationResponse:
    service = ProductionService(db)
    conversation = await service.get_conversation(conversation_id, user.user_id)
    return _conversation_response(conversation)


@router.post("/v1/conversations/{conversation_id}/brief", response_model=ConversationResponse)
async def record_brief(
    conversation_id: UUID,
    request: RecordBriefRequest,
    db: AsyncSession = Depends(get_write_db),
    user: AuthenticatedUser = Depends(get_current_user),
) -> ConversationResponse:
    """Record the brief to be produced and move the conversation to awaiting_approval."""
    service = ProductionService(db)
    conversation = await service.record_brief(conversation_id, user.user_id, request.brief)
    return _conversation_response(conversation)


# =============================================================================
# Conversation lease
# =============================================================================


@router.get("/v1/conversations/{conversation_id}/lock", response_model=LeaseStatusResponse)
async def get_lease(
    conversation_id: UUID,
    db: AsyncSession = Depends(get_read_db),
    user: AuthenticatedUser = Depends(get_current_user),
) -> LeaseStatusResponse:
    service = LeaseService(db)
    lease = await service.status(conversation_id, user.user_id)
    return _lease_response(conversation_id, lease)


@router.post("/v1/conversations/{conversation_id}/lock", response_model=LeaseStatusResponse)
async def acquire_lease(
    conversation_id: UUID,
    request: AcquireLeaseRequest,
    db: AsyncSession = Depends(get_write_db),
    user: AuthenticatedUser = Depends(get_current_user),
) -> LeaseStatusResponse:
    """
    Acquire the conversation lease.

    Responds 423 with locked_until when another lease is still held.
    """
    service = LeaseService(db)
    ttl = timedelta(minutes=request.ttl_minutes) if request.ttl_minutes else None
    lease = await service.acquire(conversation_id, user.user_id, reason=request.reason, ttl=ttl)
    return _lease_response(conversation_id, lease)


@router.delete("/v1/conversations/{conversation_id}/lock", response_model=LeaseStatusResponse)
async def release_lease(
    conversation_id: UUID,
    db: AsyncSession = Depends(get_write_db),
    user: AuthenticatedUser = Depends(get_current_user),
) -> LeaseStatusResponse:
    service = LeaseService(db)
    lease = await service.release(conversation_id, user.user_id)
    return _lease_response(conversation_id, lease)


# =============================================================================
# Production
# =============================================================================


@router.post(
    "/v1/conversations/{conversation_id}/production",
    response_model=StartProductionResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_production(
    conversation_id: UUID,
    request: StartProductionRequest,
    db: AsyncSession = Depends(get_write_db),
    user: AuthenticatedUser = Depends(get_current_user),
    worker: WorkerClient = Depends(get_worker_client),
) -> StartProductionResponse:
    """
    Approve the brief and launch a new video.

    Debits credits, takes the conversation lease and dispatches the job to
    the generation worker. A dispatch failure refunds the credits and
    responds 502.
    """
    service = ProductionService(db, worker)
    ticket = await service.start_production(
        conversation_id, user.user_id, image_url=request.image_url, prompt=request.prompt
    )
    return _production_response(ticket)


@router.post(
    "/v1/conversations/{conversation_id}/revisions",
    response_model=StartProductionResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_revision(
    conversation_id: UUID,
    request: StartRevisionRequest,
    db: AsyncSession = Depends(get_write_db),
    user: AuthenticatedUser = Depends(get_current_user),
    worker: WorkerClient = Depends(get_worker_client),
) -> StartProductionResponse:
    """Launch a revision of a completed video at the revision price."""
    service = ProductionService(db, worker)
    ticket = await service.start_revision(
        conversation_id,
        user.user_id,
        parent_video_ref=request.parent_video_id,
        revision_request=request.revision_request,
        image_url=request.image_url,
    )
    return _production_response(ticket)


@router.post(
    "/v1/conversations/{conversation_id}/production/cancel",
    response_model=CancelProductionResponse,
)
async def cancel_production(
    conversation_id: UUID,
    db: AsyncSession = Depends(get_write_db),
    user: AuthenticatedUser = Depends(get_current_user),
) -> CancelProductionResponse:
    """Cancel the in-flight production, refunding its credits."""
    service = ProductionService(db)
    result = await service.cancel_production(conversation_id, user.user_id)
    return CancelProductionResponse(
        cancelled=result.cancelled,
        video_id=result.video_id,
        credits_refunded=float(result.credits_refunded),
        workflow_state=result.workflow_state,
    )


@router.get(
    "/v1/conversations/{conversation_id}/videos/{video_id}/status",
    response_model=VideoStatusResponse,
)
async def get_video_status(
    conversation_id: UUID,
    video_id: str,
    db: AsyncSession = Depends(get_write_db),
    user: AuthenticatedUser = Depends(get_current_user),
) -> VideoStatusResponse:
    """
    Poll a video's status.

    Write operation - a poll past the production timeout fails the video
    and refunds its credits.
    """
    service = ProductionService(db)
    result = await service.poll_status(conversation_id, video_id, user.user_id)
    return VideoStatusResponse(
        video_id=result.video_id,
        status=result.status,
        progress=result.progress,
        video_url=result.video_url,
        error_message=result.error_message,
        estimated_completion=result.estimated_completion,
        timed_out=result.timed_out,
        credits_refunded=float(result.credits_refunded),
    )


# =============================================================================
# Health
# =============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC),
        )
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
