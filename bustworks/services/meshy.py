"""
Meshy Client

Async adapter for the Meshy generation API. Two task kinds share one
submit/poll contract:

- image-to-image: the clay preview rendered from the customer's photo
- image-to-3d: the printable model built from the approved preview

The client never retries; retry policy belongs to the order lifecycle.
Provider JSON stays inside this module, callers only see TaskResult.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from ..config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

# Lower-case fragments of provider messages that mean "try again later"
RETRYABLE_PHRASES = (
    "server is busy",
    "try again later",
    "rate limit",
    "too many requests",
    "temporarily",
    "timeout",
    "timed out",
)

_FAILED_STATUSES = {"FAILED", "CANCELED", "CANCELLED", "EXPIRED"}


def is_retryable_error(message: str | None) -> bool:
    """True when a provider error message describes a transient condition."""
    text = str(message or "").lower()
    return any(phrase in text for phrase in RETRYABLE_PHRASES)


class TaskStatus(str, Enum):
    """Normalized provider task status."""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class TaskResult:
    """Snapshot of a provider task."""
    status: TaskStatus
    progress: int = 0
    image_urls: list[str] = field(default_factory=list)
    model_urls: dict[str, str] = field(default_factory=dict)
    error_message: str | None = None
    message: str | None = None

    @property
    def is_complete(self) -> bool:
        """Succeeded and fully done (the provider can report SUCCEEDED below 100%)."""
        return self.status == TaskStatus.SUCCEEDED and self.progress >= 100


class MeshyError(Exception):
    """Base error for generation provider calls."""


class TaskSubmissionError(MeshyError):
    """The provider rejected a task or returned no task id."""


class TaskPollError(MeshyError):
    """The provider could not report a task's status."""


class DownloadError(MeshyError):
    """A result artifact could not be downloaded."""


def _parse_progress(raw: Any) -> int:
    try:
        value = int(float(raw))
    except (TypeError, ValueError):
        return 0
    return max(0, min(100, value))


def parse_task(payload: dict[str, Any]) -> TaskResult:
    """Translate a provider task document into a TaskResult."""
    raw_status = str(payload.get("status") or "").upper()
    if raw_status == "SUCCEEDED":
        status = TaskStatus.SUCCEEDED
    elif raw_status in _FAILED_STATUSES:
        status = TaskStatus.FAILED
    else:
        status = TaskStatus.PENDING

    task_error = payload.get("task_error") or {}
    error_message = task_error.get("message") if isinstance(task_error, dict) else None

    image_urls = [str(u) for u in (payload.get("image_urls") or []) if u]
    model_urls = {
        str(fmt): str(url)
        for fmt, url in (payload.get("model_urls") or {}).items()
        if url
    }

    return TaskResult(
        status=status,
        progress=_parse_progress(payload.get("progress")),
        image_urls=image_urls,
        model_urls=model_urls,
        error_message=error_message or None,
        message=str(payload["message"]) if payload.get("message") else None,
    )


def _error_message(payload: Any, fallback: str) -> str:
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if payload.get("message"):
            return str(payload["message"])
    return fallback


class MeshyClient:
    """
    Meshy HTTP client.

    Each call opens a short-lived httpx.AsyncClient. A transport can be
    injected (e.g. httpx.MockTransport) for testing.
    """

    IMAGE_TO_IMAGE = "image-to-image"
    IMAGE_TO_3D = "image-to-3d"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.meshy_api_key
        self.base_url = (base_url or settings.meshy_base_url).rstrip("/")
        self.timeout = timeout or settings.meshy_timeout_seconds
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def _submit(self, kind: str, body: dict[str, Any]) -> str:
        if not self.api_key:
            raise TaskSubmissionError("Meshy API key is not configured")

        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}/{kind}",
                    headers=self._headers(),
                    json=body,
                )
        except httpx.HTTPError as e:
            raise TaskSubmissionError(f"Could not reach Meshy: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        task_id = str(payload.get("result") or "") if isinstance(payload, dict) else ""
        if response.is_error or not task_id:
            message = _error_message(payload, f"Failed to start {kind} task (HTTP {response.status_code})")
            logger.warning("Meshy %s submission failed: %s", kind, message)
            raise TaskSubmissionError(message)

        logger.info("Submitted Meshy %s task %s", kind, task_id)
        return task_id

    async def _poll(self, kind: str, task_id: str) -> TaskResult:
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.base_url}/{kind}/{task_id}",
                    headers=self._headers(),
                )
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TaskPollError(f"Could not fetch {kind} task {task_id}: {e}") from e

        if not isinstance(payload, dict):
            raise TaskPollError(f"Unexpected {kind} task payload for {task_id}")
        return parse_task(payload)

    async def submit_preview(self, prompt: str, image_url: str) -> str:
        """Start an image-to-image clay preview task; returns the task id."""
        return await self._submit(
            self.IMAGE_TO_IMAGE,
            {
                "ai_model": settings.meshy_preview_model,
                "prompt": prompt,
                "reference_image_urls": [image_url],
                "generate_multi_view": False,
            },
        )

    async def poll_preview(self, task_id: str) -> TaskResult:
        return await self._poll(self.IMAGE_TO_IMAGE, task_id)

    async def submit_model(self, image_url: str) -> str:
        """Start an image-to-3d task with texturing and remeshing enabled."""
        return await self._submit(
            self.IMAGE_TO_3D,
            {
                "image_url": image_url,
                "ai_model": settings.meshy_3d_model,
                "should_texture": True,
                "should_remesh": True,
            },
        )

    async def poll_model(self, task_id: str) -> TaskResult:
        return await self._poll(self.IMAGE_TO_3D, task_id)

    async def download(self, url: str) -> bytes:
        """Fetch a result artifact (no auth; result URLs are pre-signed)."""
        try:
            async with self._client() as client:
                response = await client.get(url, follow_redirects=True)
                response.raise_for_status()
                return response.content
        except httpx.HTTPError as e:
            raise DownloadError(f"Failed to download {url}: {e}") from e


# Singleton instance
_meshy_client: MeshyClient | None = None


def get_meshy_client() -> MeshyClient:
    """Get or create Meshy client singleton."""
    global _meshy_client
    if _meshy_client is None:
        _meshy_client = MeshyClient()
    return _meshy_client
