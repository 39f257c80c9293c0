"""
Tests for the exception hierarchy and its error-envelope fields.
"""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from orchestrator.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConversationLockedError,
    ConversationNotFoundError,
    DataIntegrityError,
    InsufficientCreditsError,
    InvalidTransitionError,
    NotFoundError,
    OrchestratorError,
    UserNotFoundError,
    ValidationError,
    VideoNotFoundError,
    WebhookVerificationError,
    WorkerDispatchError,
    WriteVerificationError,
)


@pytest.mark.parametrize(
    ("error", "status_code", "error_code"),
    [
        (ValidationError("bad"), 400, "VALIDATION_ERROR"),
        (InsufficientCreditsError(Decimal("1"), Decimal("10")), 400, "INSUFFICIENT_CREDITS"),
        (AuthenticationError("no token"), 401, "UNAUTHORIZED"),
        (AuthorizationError("admin"), 403, "FORBIDDEN"),
        (UserNotFoundError("user-1"), 404, "USER_NOT_FOUND"),
        (ConversationNotFoundError("c-1"), 404, "CONVERSATION_NOT_FOUND"),
        (VideoNotFoundError("v-1"), 404, "VIDEO_NOT_FOUND"),
        (InvalidTransitionError("conversation", "draft", "in_production"), 409, "INVALID_TRANSITION"),
        (ConversationLockedError("c-1", None, None), 423, "CONVERSATION_LOCKED"),
        (WorkerDispatchError("down"), 502, "DEPENDENCY_FAILURE"),
        (WebhookVerificationError("bad sig"), 400, "INVALID_SIGNATURE"),
        (WriteVerificationError("x"), 500, "INTERNAL_ERROR"),
        (DataIntegrityError("x"), 500, "INTERNAL_ERROR"),
    ],
)
def test_status_and_error_code(error: OrchestratorError, status_code: int, error_code: str) -> None:
    assert isinstance(error, OrchestratorError)
    assert error.status_code == status_code
    assert error.error_code == error_code


def test_not_found_subclasses_share_base() -> None:
    error = VideoNotFoundError("video_abc")

    assert isinstance(error, NotFoundError)
    assert error.resource == "Video"
    assert str(error) == "Video not found: video_abc"


def test_insufficient_credits_extra() -> None:
    error = InsufficientCreditsError(balance=Decimal("2.5"), required=Decimal("10"))

    assert error.extra() == {"credits_available": 2.5, "credits_required": 10.0}
    assert "Balance: 2.5" in str(error)


def test_locked_extra_includes_expiry() -> None:
    until = datetime(2026, 1, 15, 12, 20, tzinfo=UTC)
    error = ConversationLockedError("c-1", until, "Video production in progress")

    assert error.extra() == {
        "locked_until": "2026-01-15T12:20:00+00:00",
        "lock_reason": "Video production in progress",
    }


def test_dispatch_error_extra_only_after_refund() -> None:
    assert WorkerDispatchError("down").extra() == {}
    assert WorkerDispatchError("down", credits_refunded=Decimal("2.5")).extra() == {
        "credits_refunded": 2.5
    }


def test_transition_extra() -> None:
    error = InvalidTransitionError("video", "completed", "cancelled")

    assert error.extra() == {"current_state": "completed", "target_state": "cancelled"}
