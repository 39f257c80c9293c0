"""
Generation Worker Client - Fire-and-forget job dispatch over HTTP.

The worker acknowledges the POST and reports the outcome later through the
generation callback webhook. Any transport error or non-2xx response is a
dispatch failure; the caller rolls the launch back.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

import httpx
from structlog import get_logger

from orchestrator.config import settings
from orchestrator.exceptions import WorkerDispatchError

logger = get_logger(__name__)


@dataclass(frozen=True)
class GenerationJob:
    """Payload sent to the generation worker."""

    video_id: str
    chat_id: UUID
    user_id: str
    prompt: str
    image_url: str | None
    is_revision: bool
    callback_url: str
    request_timestamp: datetime
    user_email: str | None = None
    user_name: str | None = None
    parent_video_id: UUID | None = None
    revision_request: str | None = None
    original_brief: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "video_id": self.video_id,
            "chat_id": str(self.chat_id),
            "user_id": self.user_id,
            "user_email": self.user_email,
            "user_name": self.user_name,
            "prompt": self.prompt,
            "image_url": self.image_url,
            "is_revision": self.is_revision,
            "callback_url": self.callback_url,
            "request_timestamp": self.request_timestamp.isoformat(),
            "source": "production-orchestrator",
            "version": settings.api_version,
        }
        if self.is_revision:
            payload["parent_video_id"] = str(self.parent_video_id) if self.parent_video_id else None
            payload["revision_request"] = self.revision_request
            payload["original_brief"] = self.original_brief
        return payload


class WorkerClient:
    """HTTP client for the generation worker."""

    def __init__(
        self,
        webhook_url: str | None = None,
        revision_webhook_url: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.webhook_url = webhook_url if webhook_url is not None else settings.worker_webhook_url
        self.revision_webhook_url = (
            revision_webhook_url
            if revision_webhook_url is not None
            else settings.revision_webhook_url
        )
        self.timeout = timeout if timeout is not None else settings.worker_timeout_seconds
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def dispatch(self, job: GenerationJob) -> None:
        """
        POST the job to the worker.

        Raises:
            WorkerDispatchError: URL not configured, transport error or non-2xx status
        """
        url = self.revision_webhook_url if job.is_revision else self.webhook_url
        if not url:
            raise WorkerDispatchError("Generation worker URL is not configured")

        try:
            response = await self.http_client.post(
                url,
                json=job.to_payload(),
                headers={"X-Correlation-ID": job.video_id},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "worker_dispatch_rejected",
                video_id=job.video_id,
                status=e.response.status_code,
                body=e.response.text[:500],
            )
            raise WorkerDispatchError(
                f"Worker responded with HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.error(
                "worker_dispatch_transport_error",
                video_id=job.video_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise WorkerDispatchError(f"Worker unreachable: {type(e).__name__}") from e

        logger.info(
            "worker_job_dispatched",
            video_id=job.video_id,
            chat_id=str(job.chat_id),
            is_revision=job.is_revision,
            status=response.status_code,
        )

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
