"""
Audit Log Writer - Append-only system log and conversation notices.

Entries are added to the caller's session and committed with the state
change they describe.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.db.models import Message, SystemLog
from orchestrator.models.api import LogStatus, MessageType


class AuditLog:
    """Writes SystemLog rows and user-visible Message rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def record(
        self,
        operation: str,
        entity_type: str,
        entity_id: str | UUID | None,
        message: str,
        status: LogStatus = LogStatus.SUCCESS,
        actor: str | None = None,
        details: dict[str, Any] | None = None,
        execution_time_ms: int | None = None,
    ) -> SystemLog:
        entry = SystemLog(
            operation=operation,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            actor=actor,
            status=status,
            message=message,
            details=details,
            execution_time_ms=execution_time_ms,
        )
        self.session.add(entry)
        return entry

    def notify(
        self,
        conversation_id: UUID,
        content: str,
        message_type: MessageType = MessageType.ASSISTANT,
        details: dict[str, Any] | None = None,
    ) -> Message:
        """Append a notice to the conversation the user sees."""
        notice = Message(
            conversation_id=conversation_id,
            message_type=message_type,
            content=content,
            details=details,
        )
        self.session.add(notice)
        return notice

    async def entries_for(
        self,
        entity_ids: list[str],
        limit: int = 50,
    ) -> list[SystemLog]:
        """Latest entries for any of the given entity ids, newest first."""
        stmt = (
            select(SystemLog)
            .where(SystemLog.entity_id.in_(entity_ids))
            .order_by(SystemLog.created_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
