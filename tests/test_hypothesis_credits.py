"""
Hypothesis Property-Based Tests for credit arithmetic and progress.

Tests invariants that must hold for every balance and plan combination.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from hypothesis import assume, given, settings
from hypothesis import strategies as st

from orchestrator.exceptions import InsufficientCreditsError
from orchestrator.models.api import Plan, VideoStatus
from orchestrator.services import credits
from orchestrator.services.plans import allotment
from orchestrator.services.production import compute_progress
from tests.factories import create_mock_user

# ============================================================================
# Hypothesis Strategies
# ============================================================================

plans = st.sampled_from(list(Plan))
paid_plans = st.sampled_from([p for p in Plan if p != Plan.FREE])
balances = st.decimals(
    min_value=Decimal("0"), max_value=Decimal("10000"), places=2, allow_nan=False, allow_infinity=False
)
amounts = st.decimals(
    min_value=Decimal("0.01"), max_value=Decimal("1000"), places=2, allow_nan=False, allow_infinity=False
)


class TestPlanChangeProperties:
    @given(current=balances, old=plans, new=plans)
    @settings(max_examples=300)
    def test_result_within_zero_and_new_allotment(
        self, current: Decimal, old: Plan, new: Plan
    ) -> None:
        result = credits.calculate_plan_change_credits(current, old, new)
        assert Decimal("0") <= result <= allotment(new)

    @given(current=balances)
    def test_free_to_starter_always_sixty(self, current: Decimal) -> None:
        assert credits.calculate_plan_change_credits(current, Plan.FREE, Plan.STARTER) == Decimal("60")

    @given(current=balances, plan=paid_plans)
    def test_same_plan_is_clamped_identity(self, current: Decimal, plan: Plan) -> None:
        result = credits.calculate_plan_change_credits(current, plan, plan)
        assert result == min(current, allotment(plan))


class TestBalanceProperties:
    @given(balance=balances, amount=amounts)
    def test_debit_then_refund_restores_balance(self, balance: Decimal, amount: Decimal) -> None:
        assume(balance >= amount)
        user = create_mock_user(credits=balance)
        credits.debit(user, amount)
        credits.refund(user, amount)
        assert user.credits == balance

    @given(balance=balances, amount=amounts)
    def test_balance_never_negative(self, balance: Decimal, amount: Decimal) -> None:
        user = create_mock_user(credits=balance)
        if balance < amount:
            with pytest.raises(InsufficientCreditsError):
                credits.debit(user, amount)
        else:
            credits.debit(user, amount)
        assert user.credits >= 0


class TestProgressProperties:
    @given(
        elapsed_seconds=st.integers(min_value=0, max_value=60 * 60),
        is_revision=st.booleans(),
    )
    def test_processing_progress_bounded(self, elapsed_seconds: int, is_revision: bool) -> None:
        now = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)
        started = now - timedelta(seconds=elapsed_seconds)
        progress = compute_progress(VideoStatus.PROCESSING, started, now, is_revision)
        assert 0 <= progress <= 95

    @given(
        first=st.integers(min_value=0, max_value=3600),
        second=st.integers(min_value=0, max_value=3600),
    )
    def test_progress_monotonic_in_elapsed_time(self, first: int, second: int) -> None:
        now = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)
        early, late = sorted((first, second))
        p_early = compute_progress(VideoStatus.PROCESSING, now - timedelta(seconds=early), now, False)
        p_late = compute_progress(VideoStatus.PROCESSING, now - timedelta(seconds=late), now, False)
        assert p_early <= p_late
