"""
Lease Lock - Time-bounded exclusive claim on a conversation.

The lease lives in three conversation columns (is_locked, locked_until,
lock_reason). Nothing outside this module writes them.

There is no fencing token: a writer from an expired holder can still
land. Terminal-state writers check video.status == processing under a row
lock, and the timeout supervisor fails stale work independently.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from orchestrator.config import settings
from orchestrator.db.models import Conversation
from orchestrator.exceptions import ConversationLockedError, ConversationNotFoundError
from orchestrator.models.api import LogStatus
from orchestrator.models.domain import Lease
from orchestrator.observability.metrics import metrics
from orchestrator.services.audit import AuditLog

logger = get_logger(__name__)

DEFAULT_LEASE_REASON = "Video production in progress"


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def lease_of(conversation: Conversation) -> Lease:
    """Read the lease embedded in a conversation row."""
    return Lease(
        locked=conversation.is_locked,
        expires_at=conversation.locked_until,
        reason=conversation.lock_reason,
    )


def acquire_on(
    conversation: Conversation,
    reason: str = DEFAULT_LEASE_REASON,
    ttl: timedelta | None = None,
    now: datetime | None = None,
) -> Lease:
    """
    Take the lease on an already row-locked conversation.

    An expired lease is overwritten. Raises ConversationLockedError when a
    live lease is held.
    """
    now = now or _utc_now()
    current = lease_of(conversation)
    if current.is_held(now):
        metrics.record_lease_acquisition(granted=False)
        raise ConversationLockedError(
            str(conversation.id), locked_until=current.expires_at, reason=current.reason
        )

    if current.locked:
        logger.info(
            "lease_expired_overwritten",
            conversation_id=str(conversation.id),
            expired_at=current.expires_at.isoformat() if current.expires_at else None,
        )

    expires_at = now + (ttl or timedelta(minutes=settings.lease_ttl_minutes))
    conversation.is_locked = True
    conversation.locked_until = expires_at
    conversation.lock_reason = reason
    conversation.last_activity_at = now
    metrics.record_lease_acquisition(granted=True)
    return Lease(locked=True, expires_at=expires_at, reason=reason)


def release_on(conversation: Conversation, now: datetime | None = None) -> None:
    """Clear the lease. Idempotent."""
    conversation.is_locked = False
    conversation.locked_until = None
    conversation.lock_reason = None
    conversation.last_activity_at = now or _utc_now()


class LeaseService:
    """
    Acquire / release / force-release / status as standalone operations.

    The launcher and the terminal writers call acquire_on / release_on
    directly inside their own transactions instead.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.audit = AuditLog(session)

    async def acquire(
        self,
        conversation_id: UUID,
        owner_id: str | None = None,
        reason: str = DEFAULT_LEASE_REASON,
        ttl: timedelta | None = None,
    ) -> Lease:
        conversation = await self._lock_conversation_for_update(conversation_id, owner_id)
        try:
            lease = acquire_on(conversation, reason=reason, ttl=ttl)
        except ConversationLockedError:
            await self.session.rollback()
            raise

        self.audit.record(
            operation="lease_acquire",
            entity_type="conversation",
            entity_id=conversation_id,
            actor=owner_id,
            message=f"Lease acquired: {reason}",
            details={"locked_until": lease.expires_at.isoformat() if lease.expires_at else None},
        )
        await self.session.commit()
        logger.info(
            "lease_acquired",
            conversation_id=str(conversation_id),
            locked_until=lease.expires_at.isoformat() if lease.expires_at else None,
        )
        return lease

    async def release(self, conversation_id: UUID, owner_id: str | None = None) -> Lease:
        conversation = await self._lock_conversation_for_update(conversation_id, owner_id)
        release_on(conversation)
        self.audit.record(
            operation="lease_release",
            entity_type="conversation",
            entity_id=conversation_id,
            actor=owner_id,
            message="Lease released",
        )
        await self.session.commit()
        logger.info("lease_released", conversation_id=str(conversation_id))
        return Lease.free()

    async def force_release(self, conversation_id: UUID, actor: str) -> Lease:
        """Privileged release; recorded with warning status."""
        conversation = await self._lock_conversation_for_update(conversation_id)
        previous = lease_of(conversation)
        release_on(conversation)
        self.audit.record(
            operation="lease_force_release",
            entity_type="conversation",
            entity_id=conversation_id,
            actor=actor,
            status=LogStatus.WARNING,
            message="Lease force-released by administrator",
            details={
                "was_locked": previous.locked,
                "locked_until": previous.expires_at.isoformat() if previous.expires_at else None,
                "lock_reason": previous.reason,
            },
        )
        await self.session.commit()
        logger.warning(
            "lease_force_released", conversation_id=str(conversation_id), actor=actor
        )
        return Lease.free()

    async def status(self, conversation_id: UUID, owner_id: str | None = None) -> Lease:
        """Current lease. An expired lease is reported as free."""
        conversation = await self._find_conversation(conversation_id, owner_id)
        lease = lease_of(conversation)
        if not lease.is_held(_utc_now()):
            return Lease.free()
        return lease

    async def _find_conversation(
        self, conversation_id: UUID, owner_id: str | None = None
    ) -> Conversation:
        conversation = await self.session.get(Conversation, conversation_id)
        if conversation is None or (owner_id is not None and conversation.user_id != owner_id):
            raise ConversationNotFoundError(str(conversation_id))
        return conversation

    async def _lock_conversation_for_update(
        self, conversation_id: UUID, owner_id: str | None = None
    ) -> Conversation:
        """Lock conversation row for update (SELECT FOR UPDATE)."""
        stmt = select(Conversation).where(Conversation.id == conversation_id).with_for_update()
        result = await self.session.execute(stmt)
        conversation = result.scalar_one_or_none()
        if conversation is None or (owner_id is not None and conversation.user_id != owner_id):
            raise ConversationNotFoundError(str(conversation_id))
        return conversation
