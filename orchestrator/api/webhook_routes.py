"""
Webhook Routes - Inbound callbacks from the generation worker and Stripe.

Worker callbacks authenticate with the shared X-Webhook-Secret header;
Stripe events are verified against the Stripe-Signature header.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from orchestrator.api.dependencies import get_payment_provider, verify_worker_callback
from orchestrator.db.session import get_write_db
from orchestrator.models.api import (
    BillingWebhookResponse,
    GenerationCallbackRequest,
    GenerationCallbackResponse,
)
from orchestrator.services.billing import BillingService
from orchestrator.services.callbacks import CallbackReconciler
from orchestrator.services.stripe_provider import StripeProvider

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])


@router.post(
    "/generation",
    response_model=GenerationCallbackResponse,
    dependencies=[Depends(verify_worker_callback)],
)
async def generation_callback(
    request: GenerationCallbackRequest,
    db: AsyncSession = Depends(get_write_db),
) -> GenerationCallbackResponse:
    """
    Apply the worker's terminal outcome for a video.

    Late or duplicate callbacks for an already-terminal video respond 200
    with applied=false and change nothing.
    """
    logger.info(
        "generation_callback_received",
        video_id=request.video_id,
        chat_id=str(request.chat_id),
        status=request.status,
    )
    reconciler = CallbackReconciler(db)
    result = await reconciler.handle_callback(
        video_ref=request.video_id,
        conversation_id=request.chat_id,
        outcome=request.status,
        video_url=request.video_url,
        error_message=request.error_message,
        processing_time_ms=request.processing_time_ms,
    )
    return GenerationCallbackResponse(
        applied=result.applied,
        video_id=result.video_id,
        status=result.status,
    )


@router.post("/stripe", response_model=BillingWebhookResponse)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_write_db),
    provider: StripeProvider = Depends(get_payment_provider),
) -> BillingWebhookResponse:
    """
    Handle Stripe webhook events.

    Events are processed at most once by event id; replays answer with
    action=duplicate.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    event = await provider.verify_webhook(payload, signature)
    logger.info("stripe_webhook_received", event_id=event.event_id, event_type=event.event_type)

    service = BillingService(db)
    outcome = await service.handle_event(event)
    return BillingWebhookResponse(
        event_id=outcome.event_id,
        event_type=outcome.event_type,
        action=outcome.action,
    )
