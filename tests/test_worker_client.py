"""
Tests for the generation worker client.
"""

import json
from datetime import UTC, datetime
from uuid import uuid4

import httpx
import pytest

from orchestrator.exceptions import WorkerDispatchError
from orchestrator.services.worker_client import GenerationJob, WorkerClient


def _job(is_revision: bool = False) -> GenerationJob:
    return GenerationJob(
        video_id="video_abc_1736942400000",
        chat_id=uuid4(),
        user_id="user-123",
        prompt="A 30 second teaser",
        image_url="https://cdn.example.com/product.png",
        is_revision=is_revision,
        callback_url="http://orchestrator.test/v1/webhooks/generation",
        request_timestamp=datetime(2026, 1, 15, 12, 0, tzinfo=UTC),
        user_email="user@example.com",
        parent_video_id=uuid4() if is_revision else None,
        revision_request="Make it brighter" if is_revision else None,
        original_brief="A 30 second teaser" if is_revision else None,
    )


def _client(handler) -> WorkerClient:  # type: ignore[no-untyped-def]
    return WorkerClient(
        webhook_url="http://worker.test/generate",
        revision_webhook_url="http://worker.test/revise",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestPayload:
    def test_new_video_payload_omits_revision_fields(self) -> None:
        payload = _job().to_payload()

        assert payload["video_id"] == "video_abc_1736942400000"
        assert payload["is_revision"] is False
        assert payload["request_timestamp"] == "2026-01-15T12:00:00+00:00"
        assert "parent_video_id" not in payload

    def test_revision_payload(self) -> None:
        job = _job(is_revision=True)
        payload = job.to_payload()

        assert payload["parent_video_id"] == str(job.parent_video_id)
        assert payload["revision_request"] == "Make it brighter"
        assert payload["original_brief"] == "A 30 second teaser"


class TestDispatch:
    async def test_posts_job_to_generation_url(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202, json={"accepted": True})

        client = _client(handler)
        await client.dispatch(_job())
        await client.aclose()

        [request] = seen
        assert str(request.url) == "http://worker.test/generate"
        assert request.headers["X-Correlation-ID"] == "video_abc_1736942400000"
        assert json.loads(request.content)["chat_id"]

    async def test_revision_goes_to_revision_url(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200)

        await _client(handler).dispatch(_job(is_revision=True))

        assert seen == ["http://worker.test/revise"]

    async def test_non_2xx_is_dispatch_failure(self) -> None:
        client = _client(lambda request: httpx.Response(503, text="overloaded"))

        with pytest.raises(WorkerDispatchError) as exc_info:
            await client.dispatch(_job())

        assert "503" in str(exc_info.value)
        assert exc_info.value.status_code == 502

    async def test_transport_error_is_dispatch_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(WorkerDispatchError):
            await _client(handler).dispatch(_job())

    async def test_unconfigured_url(self) -> None:
        client = WorkerClient(webhook_url="", revision_webhook_url="")

        with pytest.raises(WorkerDispatchError):
            await client.dispatch(_job())

    def test_revision_url_falls_back_to_generation_url(self) -> None:
        from orchestrator.config import settings

        config = settings.model_copy(update={"worker_revision_webhook_url": ""})

        assert config.revision_webhook_url == "http://worker.test/generate"
