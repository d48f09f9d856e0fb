"""
Best-effort push notifications for connection and admin events.

Notifications are POSTed as JSON to a webhook (e.g. a push gateway). Without a
configured webhook they are only logged. Nothing here is retried.
"""
import asyncio
import logging
from typing import Optional, Set

import requests

logger = logging.getLogger(__name__)

NOTIFICATION_TITLE = "Socket Status Update"


class NotificationError(RuntimeError):
    pass


class NotificationSink:

    def __init__(self, webhook_url: Optional[str] = None, timeout: float = 10.0):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._tasks: Set[asyncio.Task] = set()

    def build_payload(self, body: str, client_ip: Optional[str] = None) -> dict:
        data = {"customKey": "customValue"}
        if client_ip:
            data["clientIp"] = client_ip
        return {
            "title": NOTIFICATION_TITLE,
            "body": f"{body} (IP: {client_ip})" if client_ip else body,
            "data": data,
        }

    def _post(self, payload: dict) -> dict:
        try:
            r = requests.post(self.webhook_url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise NotificationError(f"webhook unreachable: {e}") from e
        if r.status_code >= 400:
            raise NotificationError(f"webhook returned HTTP {r.status_code}: {r.text[:200]}")
        try:
            return r.json()
        except ValueError:
            return {"status": r.status_code}

    async def notify(self, body: str, client_ip: Optional[str] = None) -> dict:
        """Deliver one notification. Raises NotificationError on failure."""
        payload = self.build_payload(body, client_ip)
        if not self.webhook_url:
            logger.info("notification (no webhook configured): %s", payload["body"])
            return {"delivered": False}
        response = await asyncio.to_thread(self._post, payload)
        logger.info("notification sent: %s", payload["body"])
        return {"delivered": True, "response": response}

    def fire(self, body: str, client_ip: Optional[str] = None) -> asyncio.Task:
        """Schedule notify() without waiting on it; failures are logged, never raised."""
        task = asyncio.get_running_loop().create_task(self.notify(body, client_ip))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("notification failed: %s", exc)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
