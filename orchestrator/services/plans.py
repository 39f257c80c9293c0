"""
Plan Catalog - Monthly credit allotments and price id mapping.

Single source of truth shared by the production path and the billing
reconciler. Price ids come from configuration because they differ between
test and live payment-provider modes.
"""

from decimal import Decimal

from orchestrator.config import Settings, settings
from orchestrator.models.api import Plan

PLAN_ALLOTMENTS: dict[Plan, Decimal] = {
    Plan.FREE: Decimal("20"),
    Plan.STARTER: Decimal("60"),
    Plan.CREATOR: Decimal("150"),
    Plan.PRO: Decimal("300"),
    Plan.ELITE: Decimal("750"),
}

FREE_PLAN_CREDITS = PLAN_ALLOTMENTS[Plan.FREE]


def allotment(plan: Plan) -> Decimal:
    """Monthly credit allotment for a plan."""
    return PLAN_ALLOTMENTS[plan]


def parse_plan(name: str | None) -> Plan | None:
    """
    Resolve a plan name from provider metadata, case-insensitively.

    Returns None for unknown names so callers can ignore the event.
    """
    if not name:
        return None
    wanted = name.strip().lower()
    for plan in Plan:
        if plan.value.lower() == wanted:
            return plan
    return None


def plan_for_price(price_id: str | None, config: Settings | None = None) -> Plan | None:
    """Map a payment-provider price id to a subscription plan."""
    if not price_id:
        return None
    cfg = config or settings
    price_map = {
        cfg.stripe_price_starter: Plan.STARTER,
        cfg.stripe_price_creator: Plan.CREATOR,
        cfg.stripe_price_pro: Plan.PRO,
        cfg.stripe_price_elite: Plan.ELITE,
    }
    price_map.pop("", None)
    return price_map.get(price_id)

