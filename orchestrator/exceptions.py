"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
Each exception knows the HTTP status and error code it is rendered with.
"""

from datetime import datetime
from decimal import Decimal


class OrchestratorError(Exception):
    """Base exception for all orchestration errors."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def extra(self) -> dict[str, object]:
        """Additional fields rendered into the error envelope."""
        return {}


class ValidationError(OrchestratorError):
    """Raised when a request is well-formed JSON but semantically invalid."""

    status_code = 400
    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InsufficientCreditsError(OrchestratorError):
    """Raised when user balance is below the cost of a production."""

    status_code = 400
    error_code = "INSUFFICIENT_CREDITS"

    def __init__(self, balance: Decimal, required: Decimal) -> None:
        self.balance = balance
        self.required = required
        super().__init__(f"Insufficient credits. Balance: {balance}, Required: {required}")

    def extra(self) -> dict[str, object]:
        return {"credits_available": float(self.balance), "credits_required": float(self.required)}


class ConversationLockedError(OrchestratorError):
    """Raised when another production holds the conversation lease."""

    status_code = 423
    error_code = "CONVERSATION_LOCKED"

    def __init__(self, conversation_id: str, locked_until: datetime | None, reason: str | None) -> None:
        self.conversation_id = conversation_id
        self.locked_until = locked_until
        self.reason = reason
        super().__init__(f"Conversation {conversation_id} is locked until {locked_until}")

    def extra(self) -> dict[str, object]:
        return {
            "locked_until": self.locked_until.isoformat() if self.locked_until else None,
            "lock_reason": self.reason,
        }


class InvalidTransitionError(OrchestratorError):
    """Raised when a workflow or video state change is not allowed."""

    status_code = 409
    error_code = "INVALID_TRANSITION"

    def __init__(self, entity: str, current: str, target: str) -> None:
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"Illegal {entity} transition: {current} -> {target}")

    def extra(self) -> dict[str, object]:
        return {"current_state": self.current, "target_state": self.target}


class NotFoundError(OrchestratorError):
    """Raised when a referenced resource doesn't exist."""

    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: str) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}")


class UserNotFoundError(NotFoundError):
    error_code = "USER_NOT_FOUND"

    def __init__(self, user_id: str) -> None:
        super().__init__("User", user_id)


class ConversationNotFoundError(NotFoundError):
    error_code = "CONVERSATION_NOT_FOUND"

    def __init__(self, conversation_id: str) -> None:
        super().__init__("Conversation", conversation_id)


class VideoNotFoundError(NotFoundError):
    error_code = "VIDEO_NOT_FOUND"

    def __init__(self, video_id: str) -> None:
        super().__init__("Video", video_id)


class WorkerDispatchError(OrchestratorError):
    """Raised when the generation worker could not accept a job.

    Credits have already been refunded by the time this propagates.
    """

    status_code = 502
    error_code = "DEPENDENCY_FAILURE"

    def __init__(self, message: str, credits_refunded: Decimal | None = None) -> None:
        self.message = message
        self.credits_refunded = credits_refunded
        super().__init__(f"Worker dispatch failed: {message}")

    def extra(self) -> dict[str, object]:
        if self.credits_refunded is None:
            return {}
        return {"credits_refunded": float(self.credits_refunded)}


class WriteVerificationError(OrchestratorError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class DataIntegrityError(OrchestratorError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


class WebhookVerificationError(OrchestratorError):
    """Raised when payment webhook signature verification fails."""

    status_code = 400
    error_code = "INVALID_SIGNATURE"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class AuthenticationError(OrchestratorError):
    """Raised when authentication fails (missing or invalid credentials)."""

    status_code = 401
    error_code = "UNAUTHORIZED"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class AuthorizationError(OrchestratorError):
    """Raised when user lacks required permissions."""

    status_code = 403
    error_code = "FORBIDDEN"

    def __init__(self, required_permission: str) -> None:
        self.required_permission = required_permission
        super().__init__(f"Authorization failed: missing permission {required_permission}")
