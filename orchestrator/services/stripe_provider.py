"""
Stripe Payment Provider Implementation.

Verifies webhook signatures and flattens Stripe objects into BillingEvent.
Handles both the pre-2025 layout (subscription/current_period_end at the top
level) and the newer one (nested under parent / items).
"""

import json
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

import stripe
from structlog import get_logger

from orchestrator.exceptions import WebhookVerificationError
from orchestrator.services.payment_provider import BillingEvent

logger = get_logger(__name__)


def _timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def _first_price_id(items: Any) -> str | None:
    data = (items or {}).get("data") or []
    if not data:
        return None
    first = data[0]
    price = first.get("price") or {}
    if price.get("id"):
        return str(price["id"])
    # Invoice line items carry pricing.price_details.price on newer API versions
    details = (first.get("pricing") or {}).get("price_details") or {}
    return details.get("price")


def _pack_credits(metadata: dict[str, Any]) -> Decimal | None:
    raw = metadata.get("credits")
    if raw in (None, ""):
        return None
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        value = None
    if value is None or not value.is_finite() or value <= 0:
        logger.warning("stripe_invalid_credit_metadata", credits=raw)
        return None
    return value


def parse_event(event: dict[str, Any]) -> BillingEvent:
    """Flatten a Stripe event payload into a BillingEvent."""
    event_type = event["type"]
    obj: dict[str, Any] = event.get("data", {}).get("object", {}) or {}
    metadata: dict[str, Any] = obj.get("metadata") or {}

    if event_type == "checkout.session.completed":
        details = obj.get("customer_details") or {}
        return BillingEvent(
            event_id=event["id"],
            event_type=event_type,
            customer_id=obj.get("customer"),
            subscription_id=obj.get("subscription"),
            customer_email=details.get("email") or obj.get("customer_email"),
            user_id=obj.get("client_reference_id") or metadata.get("user_id"),
            plan_name=metadata.get("plan_name"),
            checkout_mode=obj.get("mode"),
            pack_credits=_pack_credits(metadata),
        )

    if event_type.startswith("customer.subscription."):
        items = obj.get("items") or {}
        period_end = obj.get("current_period_end")
        if period_end is None and items.get("data"):
            period_end = items["data"][0].get("current_period_end")
        return BillingEvent(
            event_id=event["id"],
            event_type=event_type,
            customer_id=obj.get("customer"),
            subscription_id=obj.get("id"),
            user_id=metadata.get("user_id"),
            price_id=_first_price_id(items),
            subscription_status=obj.get("status"),
            period_end=_timestamp(period_end),
        )

    if event_type.startswith("invoice."):
        subscription_id = obj.get("subscription")
        if subscription_id is None:
            parent = obj.get("parent") or {}
            subscription_id = (parent.get("subscription_details") or {}).get("subscription")
        return BillingEvent(
            event_id=event["id"],
            event_type=event_type,
            customer_id=obj.get("customer"),
            subscription_id=subscription_id,
            customer_email=obj.get("customer_email"),
            price_id=_first_price_id(obj.get("lines")),
            billing_reason=obj.get("billing_reason"),
        )

    return BillingEvent(event_id=event["id"], event_type=event_type)


class StripeProvider:
    """
    Stripe payment provider implementation.

    Implements the PaymentProvider protocol for Stripe.
    """

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        stripe.api_key = api_key

    async def verify_webhook(self, payload: bytes, signature: str) -> BillingEvent:
        """
        Verify and parse Stripe webhook event.

        Args:
            payload: Raw webhook payload
            signature: Stripe-Signature header value

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        if not self.webhook_secret:
            raise WebhookVerificationError("Stripe webhook secret is not configured")
        if not signature:
            raise WebhookVerificationError("Missing Stripe-Signature header")

        try:
            # Signature check only; the verified payload is parsed as plain JSON
            stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload, signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as exc:
            logger.error("stripe_webhook_verification_failed", error=str(exc))
            raise WebhookVerificationError("Invalid Stripe webhook signature") from exc
        except ValueError as exc:
            logger.error("stripe_webhook_payload_invalid", error=str(exc))
            raise WebhookVerificationError(f"Invalid webhook payload: {exc}") from exc

        try:
            billing_event = parse_event(json.loads(payload))
        except (KeyError, TypeError, ValueError) as exc:
            logger.error("stripe_webhook_parsing_failed", error=str(exc))
            raise WebhookVerificationError(f"Failed to parse Stripe webhook: {exc}") from exc

        logger.info(
            "stripe_webhook_verified",
            event_id=billing_event.event_id,
            event_type=billing_event.event_type,
        )
        return billing_event
