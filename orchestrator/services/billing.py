"""
Billing Reconciler - Applies payment-provider events to user credits.

All credit arithmetic lives in services.credits; this module only decides
which rule applies to which event, and makes redelivery a no-op by
recording every processed event id in billing_events.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from orchestrator.config import settings
from orchestrator.db.models import BillingEvent as ProcessedEvent
from orchestrator.db.models import User
from orchestrator.exceptions import UserNotFoundError, WriteVerificationError
from orchestrator.models.api import (
    EnsureCreditsResponse,
    LogStatus,
    Plan,
    SubscriptionStatus,
    SubscriptionSyncResponse,
    UserRole,
)
from orchestrator.models.domain import BillingOutcome
from orchestrator.observability.metrics import metrics
from orchestrator.services import credits
from orchestrator.services.audit import AuditLog
from orchestrator.services.payment_provider import BillingEvent, BillingEventType
from orchestrator.services.plans import FREE_PLAN_CREDITS, parse_plan, plan_for_price

logger = get_logger(__name__)

# Provider subscription statuses that entitle the user to their plan
ENTITLED_STATUSES = frozenset({"active", "trialing"})
DELINQUENT_STATUSES = frozenset({"past_due", "unpaid"})

MONTHLY_RENEWAL_REASON = "subscription_cycle"


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class BillingService:
    """
    Payment webhook handling plus the on-demand credit endpoints.

    Every method locks the user row it mutates and commits before returning.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.audit = AuditLog(session)

    # ========================================================================
    # Webhook events
    # ========================================================================

    async def handle_event(self, event: BillingEvent) -> BillingOutcome:
        """Apply one verified provider event. Duplicate deliveries are acknowledged only."""
        if await self._find_processed_event(event.event_id) is not None:
            logger.info("billing_event_duplicate", event_id=event.event_id)
            metrics.record_billing_event(event.event_type, "duplicate")
            return BillingOutcome(event.event_id, event.event_type, action="duplicate")

        handlers = {
            BillingEventType.CHECKOUT_COMPLETED: self._on_checkout_completed,
            BillingEventType.SUBSCRIPTION_CREATED: self._on_subscription_changed,
            BillingEventType.SUBSCRIPTION_UPDATED: self._on_subscription_changed,
            BillingEventType.SUBSCRIPTION_DELETED: self._on_subscription_deleted,
            BillingEventType.INVOICE_PAYMENT_SUCCEEDED: self._on_invoice_paid,
            BillingEventType.INVOICE_PAYMENT_FAILED: self._on_invoice_failed,
        }

        try:
            user: User | None = None
            event_type = event.known_type
            if event_type is None:
                action = "ignored"
            else:
                user, action = await handlers[event_type](event)

            self.session.add(
                ProcessedEvent(
                    event_id=event.event_id,
                    event_type=event.event_type,
                    user_id=user.id if user else None,
                    action=action,
                    created_at=_utc_now(),
                )
            )
            self.audit.record(
                operation="billing_event",
                entity_type="user",
                entity_id=user.id if user else None,
                actor="stripe",
                status=LogStatus.INFO if action.startswith("ignored") else LogStatus.SUCCESS,
                message=f"{event.event_type}: {action}",
                details=self._event_details(event, user),
            )
            await self.session.commit()
        except IntegrityError:
            # Concurrent delivery of the same event id committed first
            await self.session.rollback()
            logger.info("billing_event_duplicate_race", event_id=event.event_id)
            metrics.record_billing_event(event.event_type, "duplicate")
            return BillingOutcome(event.event_id, event.event_type, action="duplicate")
        except Exception:
            await self.session.rollback()
            raise

        metrics.record_billing_event(event.event_type, action)
        logger.info(
            "billing_event_processed",
            event_id=event.event_id,
            event_type=event.event_type,
            action=action,
            user_id=user.id if user else None,
            credits=str(user.credits) if user else None,
            plan=user.current_plan.value if user else None,
        )
        return BillingOutcome(event.event_id, event.event_type, action, user.id if user else None)

    async def _on_checkout_completed(self, event: BillingEvent) -> tuple[User | None, str]:
        user = await self._locate_user(event)
        if user is None:
            return None, "ignored_unknown_user"

        if event.customer_id and not user.stripe_customer_id:
            user.stripe_customer_id = event.customer_id

        if event.checkout_mode == "payment":
            amount = event.pack_credits or settings.credit_pack_credits
            credits.add_credits(user, amount)
            return user, "credits_added"

        plan = parse_plan(event.plan_name)
        if plan is None or plan == Plan.FREE:
            logger.warning("checkout_unknown_plan", event_id=event.event_id, plan=event.plan_name)
            return user, "ignored_unknown_plan"

        self._apply_plan(user, plan)
        user.subscription_status = SubscriptionStatus.ACTIVE
        if event.subscription_id:
            user.stripe_subscription_id = event.subscription_id
        if user.credits_reset_at is None:
            user.credits_reset_at = _utc_now()
        return user, "plan_changed"

    async def _on_subscription_changed(self, event: BillingEvent) -> tuple[User | None, str]:
        user = await self._locate_user(event)
        if user is None:
            return None, "ignored_unknown_user"

        if event.customer_id and not user.stripe_customer_id:
            user.stripe_customer_id = event.customer_id

        status = (event.subscription_status or "").lower()
        if status in DELINQUENT_STATUSES:
            user.subscription_status = SubscriptionStatus.PAST_DUE
            return user, "status_updated"
        if status not in ENTITLED_STATUSES:
            user.subscription_status = SubscriptionStatus.INACTIVE
            return user, "status_updated"

        plan = plan_for_price(event.price_id)
        if plan is None:
            logger.warning("subscription_unknown_price", event_id=event.event_id, price_id=event.price_id)
            return user, "ignored_unknown_price"

        action = "status_updated"
        if plan != user.current_plan:
            self._apply_plan(user, plan)
            action = "plan_changed"
        user.subscription_status = SubscriptionStatus.ACTIVE
        user.stripe_subscription_id = event.subscription_id or user.stripe_subscription_id
        if event.period_end is not None:
            user.subscription_period_end = event.period_end
        if user.credits_reset_at is None:
            user.credits_reset_at = _utc_now()
        return user, action

    async def _on_subscription_deleted(self, event: BillingEvent) -> tuple[User | None, str]:
        user = await self._locate_user(event)
        if user is None:
            return None, "ignored_unknown_user"

        if (
            user.stripe_subscription_id
            and event.subscription_id
            and user.stripe_subscription_id != event.subscription_id
        ):
            # An older subscription ended after the user already moved to a new one
            return user, "ignored_stale_subscription"

        previous = user.current_plan
        credits.apply_downgrade_to_free(user)
        logger.info("subscription_downgraded", user_id=user.id, previous_plan=previous.value)
        return user, "downgraded"

    async def _on_invoice_paid(self, event: BillingEvent) -> tuple[User | None, str]:
        user = await self._locate_user(event)
        if user is None:
            return None, "ignored_unknown_user"
        if event.billing_reason != MONTHLY_RENEWAL_REASON:
            return user, "acknowledged"

        credits.apply_monthly_reset(user, _utc_now())
        user.subscription_status = SubscriptionStatus.ACTIVE
        return user, "credits_reset"

    async def _on_invoice_failed(self, event: BillingEvent) -> tuple[User | None, str]:
        user = await self._locate_user(event)
        if user is None:
            return None, "ignored_unknown_user"
        user.subscription_status = SubscriptionStatus.PAST_DUE
        return user, "status_updated"

    def _apply_plan(self, user: User, plan: Plan) -> None:
        before_plan, before_credits = user.current_plan, user.credits
        credits.apply_plan_change(user, plan)
        logger.info(
            "plan_changed",
            user_id=user.id,
            old_plan=before_plan.value,
            new_plan=plan.value,
            credits_before=str(before_credits),
            credits_after=str(user.credits),
        )

    async def _locate_user(self, event: BillingEvent) -> User | None:
        """Explicit user id, then payment-customer reference, then email."""
        if event.user_id:
            user = await self._lock_user_for_update(event.user_id)
            if user is not None:
                return user
        if event.customer_id:
            user = await self._lock_user_by_customer(event.customer_id)
            if user is not None:
                return user
        if event.customer_email:
            return await self._lock_user_by_email(event.customer_email)
        return None

    @staticmethod
    def _event_details(event: BillingEvent, user: User | None) -> dict[str, Any]:
        details: dict[str, Any] = {
            "event_id": event.event_id,
            "customer_id": event.customer_id,
            "subscription_id": event.subscription_id,
        }
        if user is not None:
            details.update(
                credits=float(user.credits),
                plan=user.current_plan.value,
                subscription_status=user.subscription_status.value,
            )
        return details

    # ========================================================================
    # On-demand credit endpoints
    # ========================================================================

    async def ensure_baseline_credits(
        self, user_id: str, email: str | None = None, full_name: str | None = None
    ) -> EnsureCreditsResponse:
        """
        Make sure the user row exists and a clearly free user is not stuck at zero.

        Never touches the balance of a user with any paid indicator.
        """
        user = await self._lock_user_for_update(user_id)
        if user is None:
            return await self._create_user(user_id, email, full_name)

        if email and not user.email:
            user.email = email
        if full_name and not user.full_name:
            user.full_name = full_name

        if credits.has_paid_indicator(user):
            action = "protected"
        elif credits.baseline_grant(user) is not None:
            action = "granted"
            self.audit.record(
                operation="baseline_credits_granted",
                entity_type="user",
                entity_id=user.id,
                message=f"Granted {FREE_PLAN_CREDITS} baseline credits",
            )
        else:
            action = "unchanged"

        await self.session.commit()
        logger.info("baseline_credits_checked", user_id=user_id, action=action, credits=str(user.credits))
        return self._ensure_response(user, action)

    async def _create_user(
        self, user_id: str, email: str | None, full_name: str | None
    ) -> EnsureCreditsResponse:
        now = _utc_now()
        user = User(
            id=user_id,
            email=email,
            full_name=full_name,
            role=UserRole.USER,
            credits=FREE_PLAN_CREDITS,
            current_plan=Plan.FREE,
            subscription_status=SubscriptionStatus.INACTIVE,
            credits_reset_at=now,
            created_at=now,
            updated_at=now,
        )
        self.session.add(user)
        try:
            await self.session.flush()
            await self.session.commit()
        except IntegrityError as e:
            # Race condition - user created by a concurrent request
            logger.warning("user_creation_integrity_error", user_id=user_id, error=str(e))
            await self.session.rollback()
            existing = await self._lock_user_for_update(user_id)
            if existing is None:
                raise WriteVerificationError(f"User creation failed: {e}") from e
            await self.session.commit()
            return self._ensure_response(existing, "unchanged")

        logger.info("user_created", user_id=user_id, credits=str(user.credits))
        return self._ensure_response(user, "created")

    async def sync_subscription(self, user_id: str) -> SubscriptionSyncResponse:
        """Reset an active subscriber to the plan allotment once the monthly window elapsed."""
        user = await self._lock_user_for_update(user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        now = _utc_now()
        reset = False
        if user.subscription_status == SubscriptionStatus.ACTIVE and credits.is_reset_due(
            user.credits_reset_at, now, settings.credit_reset_interval_days
        ):
            credits.apply_monthly_reset(user, now)
            reset = True
            self.audit.record(
                operation="monthly_credits_reset",
                entity_type="user",
                entity_id=user.id,
                message=f"Credits reset to {user.credits} for plan {user.current_plan.value}",
            )

        await self.session.commit()
        logger.info("subscription_synced", user_id=user_id, credits_reset=reset)
        return SubscriptionSyncResponse(
            credits=float(user.credits),
            current_plan=user.current_plan,
            subscription_status=user.subscription_status,
            credits_reset=reset,
            credits_reset_at=user.credits_reset_at,
        )

    @staticmethod
    def _ensure_response(user: User, action: str) -> EnsureCreditsResponse:
        return EnsureCreditsResponse(
            action=action,  # type: ignore[arg-type]
            credits=float(user.credits),
            current_plan=user.current_plan,
            subscription_status=user.subscription_status,
        )

    # ========================================================================
    # Row access
    # ========================================================================

    async def _find_processed_event(self, event_id: str) -> ProcessedEvent | None:
        return await self.session.get(ProcessedEvent, event_id)

    async def _lock_user_for_update(self, user_id: str) -> User | None:
        """Lock user row for update (SELECT FOR UPDATE)."""
        stmt = select(User).where(User.id == user_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _lock_user_by_customer(self, customer_id: str) -> User | None:
        stmt = (
            select(User)
            .where(User.stripe_customer_id == customer_id)
            .order_by(User.created_at)
            .limit(1)
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _lock_user_by_email(self, email: str) -> User | None:
        stmt = (
            select(User)
            .where(User.email == email)
            .order_by(User.created_at)
            .limit(1)
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

