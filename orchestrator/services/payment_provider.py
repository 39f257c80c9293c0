"""
Payment Provider Protocol - Provider-agnostic billing event interface.

NO DICTIONARIES - Provider payloads are parsed into typed events before the
billing reconciler sees them.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Protocol


class BillingEventType(str, Enum):
    """Event types the billing reconciler acts on."""

    CHECKOUT_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


@dataclass(frozen=True)
class BillingEvent:
    """
    Provider-agnostic billing webhook event.

    Only the fields the reconciler needs; everything optional because each
    event type fills a different subset.
    """

    event_id: str
    event_type: str
    customer_id: str | None = None
    subscription_id: str | None = None
    customer_email: str | None = None
    user_id: str | None = None  # client_reference_id / metadata.user_id
    plan_name: str | None = None  # metadata.plan_name on checkout sessions
    price_id: str | None = None
    subscription_status: str | None = None  # raw provider status (active, trialing, ...)
    period_end: datetime | None = None
    checkout_mode: str | None = None  # subscription | payment
    billing_reason: str | None = None
    pack_credits: Decimal | None = None  # metadata.credits on one-time purchases

    @property
    def known_type(self) -> BillingEventType | None:
        try:
            return BillingEventType(self.event_type)
        except ValueError:
            return None


class PaymentProvider(Protocol):
    """
    Payment provider protocol.

    Any payment provider must turn a signed webhook delivery into a
    BillingEvent, rejecting anything whose signature does not verify.
    """

    async def verify_webhook(self, payload: bytes, signature: str) -> BillingEvent:
        """
        Verify and parse a webhook delivery.

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        ...
