"""
Tests for AdminService operator overrides.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from orchestrator.db.models import Message, SystemLog
from orchestrator.exceptions import InvalidTransitionError, VideoNotFoundError
from orchestrator.models.api import LogStatus, VideoStatus, WorkflowState
from orchestrator.services.admin import AdminService
from tests.factories import added_objects, create_mock_video


def _service(
    db_session: AsyncMock, conversation: MagicMock, video: MagicMock, user: MagicMock
) -> AdminService:
    service = AdminService(db_session)
    service._find_video = AsyncMock(return_value=video)  # type: ignore[method-assign]
    service._lock_conversation_for_update = AsyncMock(return_value=conversation)  # type: ignore[method-assign]
    service._lock_video_for_update = AsyncMock(return_value=video)  # type: ignore[method-assign]
    service._lock_user_for_update = AsyncMock(return_value=user)  # type: ignore[method-assign]
    return service


class TestListStuckVideos:
    async def test_lists_and_audits(self, db_session: AsyncMock, conversation: MagicMock) -> None:
        stuck = create_mock_video(conversation.id, started_minutes_ago=45)
        result = MagicMock()
        result.all = MagicMock(return_value=[(stuck, "user-123")])
        db_session.execute = AsyncMock(return_value=result)
        service = AdminService(db_session)

        videos = await service.list_stuck_videos(actor="admin-1", threshold_minutes=20)

        [item] = videos
        assert item.video_id == stuck.video_id
        assert item.user_id == "user-123"
        assert item.minutes_processing in (44, 45)
        [entry] = added_objects(db_session, SystemLog)
        assert entry.operation == "admin_list_stuck_videos"
        assert entry.details == {"threshold_minutes": 20, "count": 1}
        db_session.commit.assert_awaited_once()

    async def test_default_threshold(self, db_session: AsyncMock) -> None:
        service = AdminService(db_session)

        assert await service.list_stuck_videos(actor="admin-1") == []
        [entry] = added_objects(db_session, SystemLog)
        assert entry.details["threshold_minutes"] == 20


class TestAdminCancel:
    async def test_cancel_refunds_and_records(
        self,
        db_session: AsyncMock,
        conversation: MagicMock,
        processing_video: MagicMock,
        free_user: MagicMock,
    ) -> None:
        free_user.credits = Decimal("40")
        service = _service(db_session, conversation, processing_video, free_user)

        result = await service.cancel_video(processing_video.video_id, "admin-1", "Worker wedged")

        assert result.status == VideoStatus.CANCELLED
        assert result.credits_refunded == Decimal("10")
        assert free_user.credits == Decimal("50")
        assert processing_video.cancelled_by == "admin-1"
        assert processing_video.cancellation_reason == "Worker wedged"
        assert conversation.workflow_state == WorkflowState.AWAITING_APPROVAL
        assert conversation.is_locked is False

        [notice] = added_objects(db_session, Message)
        assert "Worker wedged" in notice.content
        [entry] = added_objects(db_session, SystemLog)
        assert entry.status == LogStatus.WARNING
        assert entry.actor == "admin-1"

    async def test_cancel_terminal_video_records_failure(
        self,
        db_session: AsyncMock,
        conversation: MagicMock,
        processing_video: MagicMock,
        free_user: MagicMock,
    ) -> None:
        processing_video.status = VideoStatus.COMPLETED
        service = _service(db_session, conversation, processing_video, free_user)

        with pytest.raises(InvalidTransitionError):
            await service.cancel_video(processing_video.video_id, "admin-1", "too late")

        db_session.rollback.assert_awaited_once()
        [entry] = added_objects(db_session, SystemLog)
        assert entry.status == LogStatus.ERROR
        assert entry.details == {"error_code": "INVALID_TRANSITION"}
        # Failure entry committed in its own transaction
        db_session.commit.assert_awaited_once()
        assert free_user.credits == Decimal("50")

    async def test_cancel_unknown_video(self, db_session: AsyncMock) -> None:
        service = AdminService(db_session)

        with pytest.raises(VideoNotFoundError):
            await service.cancel_video("video_missing", "admin-1", "gone")

        [entry] = added_objects(db_session, SystemLog)
        assert entry.entity_id == "video_missing"


class TestForceComplete:
    async def test_force_complete_keeps_credits(
        self,
        db_session: AsyncMock,
        conversation: MagicMock,
        processing_video: MagicMock,
        free_user: MagicMock,
    ) -> None:
        free_user.credits = Decimal("40")
        service = _service(db_session, conversation, processing_video, free_user)

        result = await service.force_complete(
            processing_video.video_id, "admin-1", "https://cdn.example.com/recovered.mp4"
        )

        assert result.status == VideoStatus.COMPLETED
        assert result.credits_refunded == Decimal("0")
        assert free_user.credits == Decimal("40")
        assert processing_video.video_url == "https://cdn.example.com/recovered.mp4"
        assert conversation.workflow_state == WorkflowState.COMPLETED
        assert conversation.active_video_id is None
        assert len(added_objects(db_session, Message)) == 2

    async def test_force_complete_failed_video_rejected(
        self,
        db_session: AsyncMock,
        conversation: MagicMock,
        processing_video: MagicMock,
        free_user: MagicMock,
    ) -> None:
        processing_video.status = VideoStatus.FAILED
        service = _service(db_session, conversation, processing_video, free_user)

        with pytest.raises(InvalidTransitionError):
            await service.force_complete(processing_video.video_id, "admin-1", "https://cdn/x.mp4")

        assert processing_video.video_url is None


class TestGetLogs:
    async def test_logs_for_video_use_both_ids(
        self, db_session: AsyncMock, conversation: MagicMock, processing_video: MagicMock
    ) -> None:
        service = AdminService(db_session)
        service._find_video = AsyncMock(return_value=processing_video)  # type: ignore[method-assign]
        entry = MagicMock(spec=SystemLog)
        service.audit.entries_for = AsyncMock(return_value=[entry])  # type: ignore[method-assign]

        logs = await service.get_logs("admin-1", video_ref=processing_video.video_id)

        assert logs == [entry]
        service.audit.entries_for.assert_awaited_once_with(
            [processing_video.video_id, str(processing_video.id)], limit=50
        )

    async def test_logs_for_conversation_include_its_videos(self, db_session: AsyncMock) -> None:
        conversation_id = uuid4()
        result = MagicMock()
        result.scalars = MagicMock(return_value=MagicMock(all=MagicMock(return_value=["video_a", "video_b"])))
        db_session.execute = AsyncMock(return_value=result)
        service = AdminService(db_session)
        service.audit.entries_for = AsyncMock(return_value=[])  # type: ignore[method-assign]

        await service.get_logs("admin-1", conversation_id=conversation_id, limit=10)

        service.audit.entries_for.assert_awaited_once_with(
            [str(conversation_id), "video_a", "video_b"], limit=10
        )

    async def test_no_filters_returns_nothing(self, db_session: AsyncMock) -> None:
        service = AdminService(db_session)

        assert await service.get_logs("admin-1") == []
