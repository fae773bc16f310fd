from __future__ import annotations

import pytest

from spark_ledger.db.memory import InMemoryDBManager
from spark_ledger.errors import NotFound
from spark_ledger.models.notification import NotificationType
from spark_ledger.notifications.queue import InMemoryNotificationQueue
from spark_ledger.services.notification_service import NotificationService


@pytest.mark.asyncio
async def test_notify_is_idempotent_per_key():
    db = InMemoryDBManager()
    queue = InMemoryNotificationQueue()
    service = NotificationService(db=db, queue=queue)

    first = await service.notify(
        "user-1", "Payment Verified", "103 points", NotificationType.SUCCESS, dedupe_key="payment:1"
    )
    second = await service.notify(
        "user-1", "Payment Verified", "103 points", NotificationType.SUCCESS, dedupe_key="payment:1"
    )

    assert first is not None
    assert second is None
    assert len(list(await service.list_notifications("user-1"))) == 1
    assert [p["notification_id"] for p in queue.drain()] == [first.id]


@pytest.mark.asyncio
async def test_mark_read_replaces_the_stored_record():
    db = InMemoryDBManager()
    service = NotificationService(db=db)
    stored = await service.notify("user-1", "Payment Submitted", "Under review")

    before = list(await service.list_notifications("user-1"))[0]
    await service.mark_read("user-1", stored.id)

    assert before.is_read is False
    assert list(await service.list_notifications("user-1", unread_only=True)) == []
    assert list(await service.list_notifications("user-1"))[0].is_read is True


@pytest.mark.asyncio
async def test_mark_read_is_rolled_back_with_its_transaction():
    db = InMemoryDBManager()
    service = NotificationService(db=db)
    stored = await service.notify("user-1", "Payment Submitted", "Under review")

    with pytest.raises(RuntimeError):
        async with db.transaction():
            await service.mark_read("user-1", stored.id)
            raise RuntimeError("abort")

    assert len(list(await service.list_notifications("user-1", unread_only=True))) == 1


@pytest.mark.asyncio
async def test_mark_read_of_someone_elses_notification():
    db = InMemoryDBManager()
    service = NotificationService(db=db)
    stored = await service.notify("user-1", "Payment Submitted", "Under review")

    with pytest.raises(NotFound):
        await service.mark_read("user-2", stored.id)
