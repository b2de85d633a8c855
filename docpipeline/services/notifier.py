"""
Completion Notifier — best-effort status events

  POST {base_url}/api/events
  {"type": "document_status", "documentId": "...", "status": "completed"}

notify() schedules delivery on the running loop and returns immediately.
Each delivery makes at most `attempts` tries with a short timeout; every
failure is logged and swallowed. The pipeline calls drain() before its
invocation returns so a short-lived worker does not exit with requests
still in flight.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

EVENT_TYPE = "document_status"
RETRY_DELAY_SECONDS = 0.5
DRAIN_TIMEOUT_SECONDS = 10.0


class CompletionNotifier:
    """
    url=None disables notifications entirely (notify() becomes a no-op).

    Pass an httpx.AsyncClient to share a connection pool; otherwise a
    client is opened per delivery.
    """

    def __init__(
        self,
        url:         str | None,
        attempts:    int   = 2,
        timeout:     float = 5.0,
        client:      httpx.AsyncClient | None = None,
        retry_delay: float = RETRY_DELAY_SECONDS,
        sleep:       Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._url = url
        self._attempts = max(1, attempts)
        self._timeout = timeout
        self._client = client
        self._retry_delay = retry_delay
        self._sleep = sleep
        self._pending: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self._url)

    def notify(self, document_id: str, status: str) -> asyncio.Task | None:
        """Fire-and-forget: schedule delivery and return without waiting."""
        if not self.enabled:
            logger.debug("Notifications disabled | doc=%s status=%s", document_id, status)
            return None

        task = asyncio.get_running_loop().create_task(self.send(document_id, status))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self, timeout: float = DRAIN_TIMEOUT_SECONDS) -> None:
        """Wait (bounded) for outstanding deliveries; cancel whatever is left."""
        if not self._pending:
            return
        done, not_done = await asyncio.wait(set(self._pending), timeout=timeout)
        for task in not_done:
            task.cancel()
        if not_done:
            logger.warning("Notification drain timed out | cancelled=%d", len(not_done))

    async def send(self, document_id: str, status: str) -> bool:
        """Deliver one event with bounded retries. Never raises."""
        payload = {"type": EVENT_TYPE, "documentId": document_id, "status": status}

        for attempt in range(1, self._attempts + 1):
            try:
                await self._post(payload)
            except httpx.HTTPStatusError as exc:
                logger.warning(
                    "Notification rejected | doc=%s status=%d attempt=%d",
                    document_id, exc.response.status_code, attempt,
                )
            except httpx.HTTPError as exc:
                logger.warning(
                    "Notification network error | doc=%s attempt=%d error=%s",
                    document_id, attempt, exc,
                )
            else:
                logger.info("Notification sent | doc=%s status=%s", document_id, status)
                return True

            if attempt < self._attempts:
                await self._sleep(self._retry_delay)

        logger.error(
            "Notification dropped | doc=%s status=%s attempts=%d",
            document_id, status, self._attempts,
        )
        return False

    async def _post(self, payload: dict) -> None:
        if self._client is not None:
            resp = await self._client.post(self._url, json=payload, timeout=self._timeout)
            resp.raise_for_status()
            return

        async with httpx.AsyncClient(timeout=self._timeout) as http:
            resp = await http.post(self._url, json=payload)
            resp.raise_for_status()
