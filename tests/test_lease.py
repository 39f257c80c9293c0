"""
Tests for the conversation lease.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from orchestrator.db.models import SystemLog
from orchestrator.exceptions import ConversationLockedError, ConversationNotFoundError
from orchestrator.models.api import LogStatus
from orchestrator.models.domain import Lease
from orchestrator.services.lease import LeaseService, acquire_on, lease_of, release_on
from tests.factories import TEST_USER_ID, added_objects, create_mock_conversation


class TestLeaseModel:
    def test_held_only_before_expiry(self, fixed_datetime: datetime) -> None:
        lease = Lease(locked=True, expires_at=fixed_datetime, reason="busy")
        assert lease.is_held(fixed_datetime - timedelta(seconds=1)) is True
        assert lease.is_held(fixed_datetime) is False

    def test_unlocked_lease_never_held(self, fixed_datetime: datetime) -> None:
        lease = Lease(locked=False, expires_at=fixed_datetime + timedelta(hours=1), reason=None)
        assert lease.is_held(fixed_datetime) is False

    def test_locked_without_expiry_is_not_held(self, fixed_datetime: datetime) -> None:
        assert Lease(locked=True, expires_at=None, reason=None).is_held(fixed_datetime) is False


class TestAcquireOn:
    def test_acquire_free_conversation_default_ttl(self, fixed_datetime: datetime) -> None:
        conversation = create_mock_conversation()

        lease = acquire_on(conversation, reason="Video production in progress", now=fixed_datetime)

        assert lease.locked is True
        assert lease.expires_at == fixed_datetime + timedelta(minutes=20)
        assert conversation.is_locked is True
        assert conversation.locked_until == fixed_datetime + timedelta(minutes=20)
        assert conversation.lock_reason == "Video production in progress"
        assert conversation.last_activity_at == fixed_datetime

    def test_acquire_held_lease_raises_with_expiry(self, fixed_datetime: datetime) -> None:
        locked_until = fixed_datetime + timedelta(minutes=5)
        conversation = create_mock_conversation(
            is_locked=True, locked_until=locked_until, lock_reason="Video production in progress"
        )

        with pytest.raises(ConversationLockedError) as exc_info:
            acquire_on(conversation, now=fixed_datetime)

        assert exc_info.value.locked_until == locked_until
        assert exc_info.value.status_code == 423
        assert exc_info.value.extra()["locked_until"] == locked_until.isoformat()
        # Unchanged
        assert conversation.locked_until == locked_until

    def test_expired_lease_is_overwritten(self, fixed_datetime: datetime) -> None:
        conversation = create_mock_conversation(
            is_locked=True,
            locked_until=fixed_datetime - timedelta(seconds=1),
            lock_reason="stale",
        )

        lease = acquire_on(conversation, reason="fresh", ttl=timedelta(minutes=5), now=fixed_datetime)

        assert lease.expires_at == fixed_datetime + timedelta(minutes=5)
        assert conversation.lock_reason == "fresh"

    def test_release_is_idempotent(self, fixed_datetime: datetime) -> None:
        conversation = create_mock_conversation(
            is_locked=True, locked_until=fixed_datetime + timedelta(minutes=5), lock_reason="x"
        )
        release_on(conversation, fixed_datetime)
        release_on(conversation, fixed_datetime)

        assert lease_of(conversation) == Lease.free()


class TestLeaseService:
    async def test_acquire_commits_and_audits(self, db_session: AsyncMock) -> None:
        conversation = create_mock_conversation()
        service = LeaseService(db_session)

        with patch.object(
            service, "_lock_conversation_for_update", new_callable=AsyncMock
        ) as mock_lock:
            mock_lock.return_value = conversation
            lease = await service.acquire(conversation.id, TEST_USER_ID, reason="Manual hold")

        mock_lock.assert_awaited_once_with(conversation.id, TEST_USER_ID)
        assert lease.locked is True
        assert conversation.is_locked is True
        db_session.commit.assert_awaited_once()
        [entry] = added_objects(db_session, SystemLog)
        assert entry.operation == "lease_acquire"

    async def test_acquire_conflict_rolls_back(self, db_session: AsyncMock) -> None:
        conversation = create_mock_conversation(
            is_locked=True, locked_until=datetime.now(UTC) + timedelta(minutes=10)
        )
        service = LeaseService(db_session)

        with patch.object(
            service, "_lock_conversation_for_update", new_callable=AsyncMock
        ) as mock_lock:
            mock_lock.return_value = conversation
            with pytest.raises(ConversationLockedError):
                await service.acquire(conversation.id, TEST_USER_ID)

        db_session.rollback.assert_awaited_once()
        db_session.commit.assert_not_awaited()

    async def test_release(self, db_session: AsyncMock) -> None:
        conversation = create_mock_conversation(
            is_locked=True, locked_until=datetime.now(UTC) + timedelta(minutes=10)
        )
        service = LeaseService(db_session)

        with patch.object(
            service, "_lock_conversation_for_update", new_callable=AsyncMock
        ) as mock_lock:
            mock_lock.return_value = conversation
            lease = await service.release(conversation.id, TEST_USER_ID)

        assert lease == Lease.free()
        assert conversation.is_locked is False
        assert conversation.locked_until is None
        db_session.commit.assert_awaited_once()

    async def test_force_release_records_warning(self, db_session: AsyncMock) -> None:
        conversation = create_mock_conversation(
            is_locked=True,
            locked_until=datetime.now(UTC) + timedelta(minutes=10),
            lock_reason="Video production in progress",
        )
        service = LeaseService(db_session)

        with patch.object(
            service, "_lock_conversation_for_update", new_callable=AsyncMock
        ) as mock_lock:
            mock_lock.return_value = conversation
            await service.force_release(conversation.id, actor="admin-1")

        assert conversation.is_locked is False
        [entry] = added_objects(db_session, SystemLog)
        assert entry.operation == "lease_force_release"
        assert entry.status == LogStatus.WARNING
        assert entry.actor == "admin-1"
        assert entry.details["was_locked"] is True

    async def test_status_reports_expired_lease_as_free(self, db_session: AsyncMock) -> None:
        conversation = create_mock_conversation(
            is_locked=True,
            locked_until=datetime.now(UTC) - timedelta(minutes=1),
            lock_reason="stale",
        )
        db_session.get = AsyncMock(return_value=conversation)
        service = LeaseService(db_session)

        lease = await service.status(conversation.id, TEST_USER_ID)

        assert lease == Lease.free()

    async def test_status_of_foreign_conversation_is_not_found(self, db_session: AsyncMock) -> None:
        conversation = create_mock_conversation(user_id="someone-else")
        db_session.get = AsyncMock(return_value=conversation)
        service = LeaseService(db_session)

        with pytest.raises(ConversationNotFoundError):
            await service.status(conversation.id, TEST_USER_ID)

    async def test_lock_missing_conversation(self, db_session: AsyncMock) -> None:
        service = LeaseService(db_session)
        result = MagicMock()
        result.scalar_one_or_none = MagicMock(return_value=None)
        db_session.execute = AsyncMock(return_value=result)

        with pytest.raises(ConversationNotFoundError):
            await service.release(create_mock_conversation().id)
