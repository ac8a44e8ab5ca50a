"""Hand-off of accepted webhooks to downstream workers.

Exactly one task is dispatched per accepted request. The payload bytes are
passed through untouched.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import httpx

from webhook_ingress.models import WebhookTask

logger = logging.getLogger(__name__)

_MAX_RETRIES = 3
_BACKOFF_CAP_SECONDS = 30
DEFAULT_QUEUE_SIZE = 1000


class DispatchError(Exception):
    """Raised when a task could not be handed to the worker."""


class TaskDispatcher(Protocol):
    async def dispatch(self, task: WebhookTask) -> None: ...


class InMemoryDispatcher:
    """Queues tasks in-process. Used when no worker URL is configured.

    The queue is bounded; once full, dispatch fails until a consumer drains it.
    """

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        self.queue: asyncio.Queue[WebhookTask] = asyncio.Queue(maxsize=maxsize)

    async def dispatch(self, task: WebhookTask) -> None:
        try:
            self.queue.put_nowait(task)
        except asyncio.QueueFull as exc:
            raise DispatchError("task queue is full") from exc


class HttpForwardDispatcher:
    """POSTs each task's raw payload to a worker endpoint.

    TLS certificate verification stays on. Retries on 429/5xx with
    exponential backoff capped at 30s, at most 3 retries.
    """

    def __init__(self, worker_url: str, worker_token: str, timeout: float = 30.0) -> None:
        self._worker_url = worker_url
        self._worker_token = worker_token
        self._timeout = timeout

    async def dispatch(self, task: WebhookTask) -> None:
        headers = {
            "Authorization": f"Bearer {self._worker_token}",
            "Content-Type": task.content_type,
            "X-Webhook-Provider": task.provider.value,
            "X-Webhook-Received-At": task.received_at.isoformat(),
        }
        if task.message_id:
            headers["X-Webhook-Message-Id"] = task.message_id

        try:
            async with httpx.AsyncClient(verify=True) as client:
                for attempt in range(_MAX_RETRIES + 1):
                    resp = await client.post(
                        self._worker_url,
                        content=task.payload,
                        headers=headers,
                        timeout=self._timeout,
                    )
                    if resp.status_code < 400:
                        return
                    if not self._should_retry(resp.status_code):
                        break
                    if attempt < _MAX_RETRIES:
                        delay = min(2 ** attempt, _BACKOFF_CAP_SECONDS)
                        logger.info(
                            "Worker returned %s, retrying in %ss", resp.status_code, delay,
                        )
                        await asyncio.sleep(delay)
        except httpx.TransportError as exc:
            raise DispatchError(f"worker unavailable: {type(exc).__name__}") from exc

        raise DispatchError(f"worker rejected task with status {resp.status_code}")

    @staticmethod
    def _should_retry(status_code: int) -> bool:
        """Only retry on 429 (rate limit) or 5xx (server error)."""
        return status_code == 429 or status_code >= 500
