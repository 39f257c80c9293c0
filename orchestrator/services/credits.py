"""
Credit Ledger - Pure credit arithmetic over a user record.

No I/O. Callers load and lock the user row, apply one of these functions,
and flush. Every path that touches a balance goes through here so the
plan-change, reset, refund and baseline-grant rules cannot drift apart.
"""

from datetime import datetime, timedelta
from decimal import Decimal

from orchestrator.db.models import User
from orchestrator.exceptions import InsufficientCreditsError
from orchestrator.models.api import Plan, SubscriptionStatus
from orchestrator.services.plans import FREE_PLAN_CREDITS, allotment

ZERO = Decimal("0")

# Cheapest paid plan: Free -> Starter sets the balance to exactly its allotment
ENTRY_PAID_PLAN = Plan.STARTER


def has_paid_indicator(user: User) -> bool:
    """
    True when the user shows any sign of being a paying customer.

    Any one of: active subscription, non-Free plan, or a payment-customer
    reference. Baseline free-credit grants must never run for such users.
    """
    return (
        user.subscription_status == SubscriptionStatus.ACTIVE
        or user.current_plan != Plan.FREE
        or bool(user.stripe_customer_id)
    )


def calculate_plan_change_credits(current: Decimal, old_plan: Plan, new_plan: Plan) -> Decimal:
    """
    Balance after switching plans.

    new = current + allotment(new) - allotment(old), clamped to
    [0, allotment(new)]. Free -> Starter ignores leftover free credits and
    lands on exactly the Starter allotment.

    >>> calculate_plan_change_credits(Decimal("40"), Plan.STARTER, Plan.CREATOR)
    Decimal('130')
    """
    new_allotment = allotment(new_plan)
    if old_plan == Plan.FREE and new_plan == ENTRY_PAID_PLAN:
        return new_allotment

    candidate = current + new_allotment - allotment(old_plan)
    return max(ZERO, min(candidate, new_allotment))


def is_reset_due(last_reset: datetime | None, now: datetime, interval_days: int) -> bool:
    """Whether the monthly allotment reset window has elapsed."""
    if last_reset is None:
        return True
    return now - last_reset >= timedelta(days=interval_days)


def debit(user: User, amount: Decimal) -> Decimal:
    """Subtract amount from the balance. Returns the new balance."""
    if amount <= ZERO:
        raise ValueError(f"Debit amount must be positive: {amount}")
    if user.credits < amount:
        raise InsufficientCreditsError(balance=user.credits, required=amount)
    user.credits = user.credits - amount
    return user.credits


def refund(user: User, amount: Decimal) -> Decimal:
    """Return amount to the balance. Returns the new balance."""
    if amount < ZERO:
        raise ValueError(f"Refund amount cannot be negative: {amount}")
    user.credits = user.credits + amount
    return user.credits


def add_credits(user: User, amount: Decimal) -> Decimal:
    """Purchased credit pack. Returns the new balance."""
    if amount <= ZERO:
        raise ValueError(f"Credit amount must be positive: {amount}")
    user.credits = user.credits + amount
    return user.credits


def apply_plan_change(user: User, new_plan: Plan) -> Decimal:
    """Move the user to new_plan using the delta rule. Returns the new balance."""
    user.credits = calculate_plan_change_credits(user.credits, user.current_plan, new_plan)
    user.current_plan = new_plan
    return user.credits


def apply_monthly_reset(user: User, now: datetime) -> Decimal:
    """Reset to the full plan allotment (no rollover)."""
    user.credits = allotment(user.current_plan)
    user.credits_reset_at = now
    return user.credits


def apply_downgrade_to_free(user: User) -> Decimal:
    """Subscription ended: Free plan with exactly the Free allotment."""
    user.current_plan = Plan.FREE
    user.credits = FREE_PLAN_CREDITS
    user.subscription_status = SubscriptionStatus.INACTIVE
    user.stripe_subscription_id = None
    user.subscription_period_end = None
    return user.credits


def baseline_grant(user: User) -> Decimal | None:
    """
    Free-credit top-up for clearly free users at zero balance.

    Returns the new balance, or None when the grant does not apply. Refuses
    outright when the user has any paid indicator.
    """
    if has_paid_indicator(user):
        return None
    if user.credits > ZERO:
        return None
    user.credits = FREE_PLAN_CREDITS
    return user.credits
