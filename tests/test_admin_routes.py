"""
Tests for Admin API Routes.

Tests the admin-role dependency and the stuck-video override endpoints.
"""

from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from orchestrator.api.admin_dependencies import require_admin_role
from orchestrator.api.dependencies import AuthenticatedUser
from orchestrator.db.models import SystemLog
from orchestrator.exceptions import AuthenticationError, AuthorizationError, InvalidTransitionError
from orchestrator.models.api import LogStatus, UserRole, VideoStatus
from orchestrator.models.domain import AdminActionResult, Lease, StuckVideoData
from tests.factories import create_mock_user

ADMIN_ID = "admin-1"


class TestRequireAdminRole:
    async def test_admin_user_passes(self, db_session: AsyncMock) -> None:
        admin = create_mock_user(ADMIN_ID, role=UserRole.ADMIN)
        db_session.get = AsyncMock(return_value=admin)

        result = await require_admin_role(AuthenticatedUser(user_id=ADMIN_ID), db_session)

        assert result is admin

    async def test_regular_user_is_forbidden(self, db_session: AsyncMock) -> None:
        db_session.get = AsyncMock(return_value=create_mock_user())

        with pytest.raises(AuthorizationError):
            await require_admin_role(AuthenticatedUser(user_id="user-123"), db_session)

    async def test_unknown_user_is_unauthenticated(self, db_session: AsyncMock) -> None:
        with pytest.raises(AuthenticationError):
            await require_admin_role(AuthenticatedUser(user_id="ghost"), db_session)


@pytest.fixture
def admin_client(app: FastAPI, client: TestClient, override_db: AsyncMock) -> TestClient:
    admin = create_mock_user(ADMIN_ID, role=UserRole.ADMIN)
    app.dependency_overrides[require_admin_role] = lambda: admin
    return client


class TestAdminAccess:
    def test_non_admin_gets_403(
        self, app: FastAPI, client: TestClient, override_db: AsyncMock, override_user: object
    ) -> None:
        override_db.get = AsyncMock(return_value=create_mock_user())

        response = client.get("/admin/videos/stuck")

        assert response.status_code == 403
        assert response.json()["error"] == "FORBIDDEN"


class TestStuckVideos:
    def test_lists_stuck_videos(self, admin_client: TestClient) -> None:
        stuck = StuckVideoData(
            video_db_id=uuid4(),
            video_id="video_old",
            conversation_id=uuid4(),
            user_id="user-123",
            credits_used=Decimal("10"),
            processing_started_at=datetime(2026, 1, 15, 11, 0, tzinfo=UTC),
            minutes_processing=60,
        )

        with patch(
            "orchestrator.api.admin_routes.AdminService.list_stuck_videos", new_callable=AsyncMock
        ) as mock_list:
            mock_list.return_value = [stuck]
            response = admin_client.get("/admin/videos/stuck?threshold_minutes=30")

        assert response.status_code == 200
        body = response.json()
        assert body["threshold_minutes"] == 30
        assert body["videos"][0]["video_id"] == "video_old"
        assert body["videos"][0]["credits_used"] == 10.0
        mock_list.assert_awaited_once_with(ADMIN_ID, threshold_minutes=30, limit=50)


class TestVideoOverrides:
    def test_cancel(self, admin_client: TestClient) -> None:
        with patch(
            "orchestrator.api.admin_routes.AdminService.cancel_video", new_callable=AsyncMock
        ) as mock_cancel:
            mock_cancel.return_value = AdminActionResult("video_x", VideoStatus.CANCELLED, Decimal("10"))
            response = admin_client.post("/admin/videos/video_x/cancel", json={"reason": "Wedged"})

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["credits_refunded"] == 10.0
        mock_cancel.assert_awaited_once_with("video_x", actor=ADMIN_ID, reason="Wedged")

    def test_cancel_terminal_is_409(self, admin_client: TestClient) -> None:
        with patch(
            "orchestrator.api.admin_routes.AdminService.cancel_video", new_callable=AsyncMock
        ) as mock_cancel:
            mock_cancel.side_effect = InvalidTransitionError("video", "completed", "cancelled")
            response = admin_client.post("/admin/videos/video_x/cancel", json={})

        assert response.status_code == 409
        assert response.json()["current_state"] == "completed"

    def test_force_complete(self, admin_client: TestClient) -> None:
        with patch(
            "orchestrator.api.admin_routes.AdminService.force_complete", new_callable=AsyncMock
        ) as mock_complete:
            mock_complete.return_value = AdminActionResult("video_x", VideoStatus.COMPLETED)
            response = admin_client.post(
                "/admin/videos/video_x/force-complete",
                json={"video_url": "https://cdn.example.com/recovered.mp4"},
            )

        assert response.status_code == 200
        assert response.json()["status"] == "completed"

    def test_force_complete_requires_url(self, admin_client: TestClient) -> None:
        response = admin_client.post("/admin/videos/video_x/force-complete", json={})

        assert response.status_code == 400


class TestLogs:
    def test_requires_a_filter(self, admin_client: TestClient) -> None:
        response = admin_client.get("/admin/logs")

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_returns_entries(self, admin_client: TestClient) -> None:
        entry = MagicMock(spec=SystemLog)
        entry.id = uuid4()
        entry.operation = "generation_callback"
        entry.entity_type = "video"
        entry.entity_id = "video_x"
        entry.actor = "generation-worker"
        entry.status = LogStatus.SUCCESS
        entry.message = "Video production completed"
        entry.execution_time_ms = 12
        entry.created_at = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)

        with patch(
            "orchestrator.api.admin_routes.AdminService.get_logs", new_callable=AsyncMock
        ) as mock_logs:
            mock_logs.return_value = [entry]
            response = admin_client.get("/admin/logs?video_id=video_x")

        assert response.status_code == 200
        [log] = response.json()["logs"]
        assert log["operation"] == "generation_callback"
        assert log["status"] == "success"


class TestForceRelease:
    def test_force_release(self, admin_client: TestClient) -> None:
        conversation_id = uuid4()

        with patch(
            "orchestrator.api.admin_routes.LeaseService.force_release", new_callable=AsyncMock
        ) as mock_release:
            mock_release.return_value = Lease.free()
            response = admin_client.post(f"/admin/conversations/{conversation_id}/force-release")

        assert response.status_code == 200
        assert response.json()["held"] is False
        mock_release.assert_awaited_once_with(conversation_id, actor=ADMIN_ID)
