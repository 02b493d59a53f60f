"""Celery-backed notification dispatcher."""
from __future__ import annotations

import asyncio
from typing import Any

from core.config import settings


class CeleryNotificationDispatcher:
    """NotificationDispatcher backed by the ``notifications.send`` task."""

    def __init__(self, queue: str | None = None) -> None:
        self._queue = queue or settings.notifications.queue

    async def notify(self, template: str, recipient: str, data: dict[str, Any]) -> None:
        from ..tasks.notifications import send_notification

        # apply_async talks to the broker synchronously (or runs eagerly in dev)
        await asyncio.to_thread(
            send_notification.apply_async,
            kwargs={"template": template, "recipient": recipient, "data": data},
            queue=self._queue,
        )
