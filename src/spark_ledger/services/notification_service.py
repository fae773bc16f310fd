from __future__ import annotations

import logging
from typing import Iterable, Optional

from ..db.base import BaseDBManager
from ..errors import NotFound
from ..models.notification import Notification, NotificationType
from ..notifications.queue import AsyncNotificationQueue


logger = logging.getLogger(__name__)


class NotificationService:
    """
    Persists user-facing notifications and pushes them to the queue.

    A `dedupe_key` makes emission idempotent: a second notify with the same
    key stores and enqueues nothing.
    """

    def __init__(
        self,
        db: BaseDBManager,
        queue: Optional[AsyncNotificationQueue] = None,
    ) -> None:
        self._db = db
        self._queue = queue

    async def notify(
        self,
        account_id: str,
        title: str,
        message: str,
        notification_type: NotificationType = NotificationType.INFO,
        dedupe_key: Optional[str] = None,
    ) -> Optional[Notification]:
        event = Notification(
            account_id=account_id,
            title=title,
            message=message,
            type=notification_type,
            dedupe_key=dedupe_key,
        )
        stored = await self._db.add_notification(event)
        if stored is None:
            logger.debug("Notification %s already emitted", dedupe_key)
            return None

        if self._queue is not None:
            await self._queue.enqueue(
                {
                    "notification_id": stored.id,
                    "type": stored.type.value,
                    "account_id": account_id,
                    "title": stored.title,
                    "message": stored.message,
                }
            )
        return stored

    async def list_notifications(
        self, account_id: str, unread_only: bool = False
    ) -> Iterable[Notification]:
        notifications = await self._db.list_notifications(account_id)
        if unread_only:
            return [n for n in notifications if not n.is_read]
        return list(notifications)

    async def mark_read(self, account_id: str, notification_id: str) -> None:
        if not await self._db.mark_notification_read(account_id, notification_id):
            raise NotFound(f"notification {notification_id} not found")
