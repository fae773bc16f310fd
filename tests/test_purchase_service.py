from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from conftest import make_account, make_admin, make_container
from spark_ledger.db.memory import InMemoryDBManager
from spark_ledger.errors import (
    DebitFailed,
    InsufficientFunds,
    NotFound,
    OfferUnavailable,
    SideEffectFailed,
)
from spark_ledger.models.base import utcnow
from spark_ledger.models.offer import ServiceOffer
from spark_ledger.models.project import ProjectStatus
from spark_ledger.models.transaction import TransactionKind


class InterleavingDB(InMemoryDBManager):
    """Yields to the event loop on every account read so concurrent callers interleave."""

    async def get_account(self, account_id):
        await asyncio.sleep(0)
        return await super().get_account(account_id)


class FlakyDB(InMemoryDBManager):
    def __init__(self) -> None:
        super().__init__()
        self.fail_projects = False
        self.fail_transactions = False

    async def add_project(self, project):
        if self.fail_projects:
            raise RuntimeError("project store unavailable")
        return await super().add_project(project)

    async def add_transaction(self, tx):
        if self.fail_transactions:
            raise RuntimeError("transaction log unavailable")
        return await super().add_transaction(tx)


@pytest.mark.asyncio
async def test_upload_with_enough_points(tmp_path):
    container = make_container(tmp_path, UPLOAD_COST=15)
    await make_account(container, "user-1", balance=20)

    receipt = await container.purchases.upload_project(
        "user-1", title="Smart irrigation", filename="deck.pdf", content=b"%PDF-1.4"
    )

    assert receipt.amount_charged == 15
    assert receipt.new_balance == 5
    assert await container.ledger_service.get_balance("user-1") == 5

    spends = [
        t for t in await container.db.get_transactions("user-1") if t.kind == TransactionKind.SPEND
    ]
    assert [t.amount for t in spends] == [-15]
    assert spends[0].id == receipt.transaction_id

    projects = list(await container.db.list_projects("user-1"))
    assert len(projects) == 1
    project = projects[0]
    assert project.id == receipt.resource_id
    assert project.status == ProjectStatus.PENDING
    assert project.price_charged == 15
    assert project.file_type == "application/pdf"
    assert await container.storage.get(project.file_path) == b"%PDF-1.4"

    notifications = list(await container.notifications.list_notifications("user-1"))
    assert [n.title for n in notifications] == ["Project Uploaded"]
    pushed = container.queue.drain()
    assert [p["notification_id"] for p in pushed] == [notifications[0].id]
    assert len(container.queue) == 0


@pytest.mark.asyncio
async def test_upload_without_enough_points(tmp_path):
    container = make_container(tmp_path, UPLOAD_COST=15)
    await make_account(container, "user-1", balance=10)

    with pytest.raises(InsufficientFunds) as exc_info:
        await container.purchases.upload_project(
            "user-1", title="Smart irrigation", filename="deck.pdf", content=b"%PDF-1.4"
        )

    assert exc_info.value.required == 15
    assert exc_info.value.available == 10
    assert await container.ledger_service.get_balance("user-1") == 10
    assert len(list(await container.db.get_transactions("user-1"))) == 1
    assert list(await container.db.list_projects("user-1")) == []
    assert container.storage.files == {}
    assert list(await container.notifications.list_notifications("user-1")) == []


@pytest.mark.asyncio
async def test_concurrent_purchases_never_overspend(tmp_path):
    container = make_container(tmp_path, db=InterleavingDB())
    await make_account(container, "user-1", balance=20)
    calls = []

    async def side_effect(debit):
        calls.append(debit.id)
        return f"resource-{debit.id}"

    results = await asyncio.gather(
        container.purchases.purchase("user-1", 15, "Service A", side_effect),
        container.purchases.purchase("user-1", 15, "Service B", side_effect),
        return_exceptions=True,
    )

    receipts = [r for r in results if not isinstance(r, BaseException)]
    failures = [r for r in results if isinstance(r, BaseException)]
    assert len(receipts) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], InsufficientFunds)
    assert len(calls) == 1

    account = await container.db.get_account("user-1")
    assert account.balance == 5
    assert (await container.ledger_service.reconcile("user-1")).consistent


@pytest.mark.asyncio
async def test_failed_side_effect_is_refunded(tmp_path):
    db = FlakyDB()
    container = make_container(tmp_path, db=db, UPLOAD_COST=15)
    await make_account(container, "user-1", balance=20)

    db.fail_projects = True
    with pytest.raises(SideEffectFailed) as exc_info:
        await container.purchases.upload_project(
            "user-1", title="Smart irrigation", filename="deck.pdf", content=b"data"
        )

    assert exc_info.value.details["refunded"] == 15
    assert await container.ledger_service.get_balance("user-1") == 20
    kinds = [t.kind for t in await db.get_transactions("user-1")]
    assert kinds == [TransactionKind.EARN, TransactionKind.SPEND, TransactionKind.REFUND]
    assert (await container.ledger_service.reconcile("user-1")).consistent

    # The stored file is removed along with the failed project record
    assert container.storage.files == {}
    assert list(await container.notifications.list_notifications("user-1")) == []


@pytest.mark.asyncio
async def test_failed_refund_raises_debit_failed(tmp_path):
    db = FlakyDB()
    container = make_container(tmp_path, db=db)
    await make_account(container, "user-1", balance=20)

    async def side_effect(debit):
        db.fail_transactions = True
        raise RuntimeError("provider down")

    with pytest.raises(DebitFailed):
        await container.purchases.purchase("user-1", 15, "Service A", side_effect)

    # Charged without the resource; the audit ledger says so
    assert (await db.get_account("user-1")).balance == 5
    messages = [e.message for e in await db.get_ledger_entries("user-1")]
    assert "Compensating refund failed; manual correction required" in messages


@pytest.mark.asyncio
async def test_purchase_notifies_once(tmp_path):
    container = make_container(tmp_path)
    await make_account(container, "user-1", balance=20)

    async def side_effect(debit):
        # A retried notification for the same debit must not duplicate
        await container.notifications.notify(
            "user-1", "Service Purchased", "done", dedupe_key=f"purchase:{debit.id}"
        )
        return "resource-1"

    await container.purchases.purchase("user-1", 5, "Service A", side_effect)

    notifications = list(await container.notifications.list_notifications("user-1"))
    assert len(notifications) == 1
    assert len(container.queue) == 1


@pytest.mark.asyncio
async def test_zero_cost_purchase_skips_the_ledger(tmp_path):
    container = make_container(tmp_path)
    await make_account(container, "user-1", balance=0)

    async def side_effect(debit):
        return "resource-1"

    receipt = await container.purchases.purchase(
        "user-1", 0, "Free consultation", side_effect, correlation_id="abc"
    )

    assert receipt.transaction_id == "free-abc"
    assert receipt.new_balance == 0
    assert list(await container.db.get_transactions("user-1")) == []


@pytest.mark.asyncio
async def test_upload_price_and_expedite(tmp_path):
    container = make_container(tmp_path)
    await make_account(container, "user-1", balance=20)

    assert container.purchases.upload_price() == 5
    assert container.purchases.upload_price(3) == 11

    receipt = await container.purchases.upload_project(
        "user-1", title="Rush job", filename="notes.txt", content=b"hi", expedite_days=3
    )
    assert receipt.amount_charged == 11
    project = await container.db.get_project(receipt.resource_id)
    assert project.expedite is True
    assert project.expedite_days == 3


@pytest.mark.asyncio
async def test_upload_validation(tmp_path):
    container = make_container(tmp_path, MAX_UPLOAD_BYTES=4)
    await make_account(container, "user-1", balance=20)

    with pytest.raises(ValueError, match="title"):
        await container.purchases.upload_project("user-1", title=" ", filename="a.txt", content=b"x")
    with pytest.raises(ValueError, match="empty"):
        await container.purchases.upload_project("user-1", title="A", filename="a.txt", content=b"")
    with pytest.raises(ValueError, match="limit"):
        await container.purchases.upload_project(
            "user-1", title="A", filename="a.txt", content=b"12345"
        )

    assert await container.ledger_service.get_balance("user-1") == 20


@pytest.mark.asyncio
async def test_purchase_offer_per_unit_with_discount(tmp_path):
    container = make_container(tmp_path)
    admin = await make_admin(container)
    await make_account(container, "user-1", balance=50)
    offer = await container.offers.create_offer(
        admin,
        ServiceOffer(
            name="Slide design",
            point_cost=10,
            discount_percentage=10,
            per_unit_pricing=True,
        ),
    )

    receipt = await container.purchases.purchase_offer("user-1", offer.id, units=3, notes="Dark theme")

    assert receipt.amount_charged == 27
    assert receipt.new_balance == 23
    project = await container.db.get_project(receipt.resource_id)
    assert project.category == "service"
    assert project.offer_id == offer.id
    assert project.title == "Slide design x3"
    assert "Dark theme" in project.description


@pytest.mark.asyncio
async def test_purchase_unavailable_offer(tmp_path):
    container = make_container(tmp_path)
    admin = await make_admin(container)
    await make_account(container, "user-1", balance=50)

    inactive = await container.offers.create_offer(
        admin, ServiceOffer(name="Retired", point_cost=5, is_active=False)
    )
    expired = await container.offers.create_offer(
        admin,
        ServiceOffer(
            name="Launch week",
            point_cost=5,
            start_date=utcnow() - timedelta(days=10),
            end_date=utcnow() - timedelta(days=3),
        ),
    )

    with pytest.raises(OfferUnavailable):
        await container.purchases.purchase_offer("user-1", inactive.id)
    with pytest.raises(OfferUnavailable):
        await container.purchases.purchase_offer("user-1", expired.id)
    with pytest.raises(NotFound):
        await container.purchases.purchase_offer("user-1", "missing")

    assert await container.ledger_service.get_balance("user-1") == 50


@pytest.mark.asyncio
async def test_low_balance_is_part_of_the_single_purchase_notification(tmp_path):
    container = make_container(tmp_path, LOW_BALANCE_THRESHOLD=5)
    await make_account(container, "user-1", balance=12)

    async def side_effect(debit):
        return "resource-1"

    await container.purchases.purchase("user-1", 4, "Service A", side_effect)
    notifications = list(await container.notifications.list_notifications("user-1"))
    assert len(notifications) == 1
    assert "left" not in notifications[0].message

    await container.purchases.purchase("user-1", 5, "Service B", side_effect)
    notifications = list(await container.notifications.list_notifications("user-1"))
    assert len(notifications) == 2
    latest = notifications[0]
    assert latest.title == "Purchase complete"
    assert latest.type.value == "success"
    assert "You have 3 Spark Points left" in latest.message


class FailingNotificationDB(InMemoryDBManager):
    async def add_notification(self, notification):
        raise RuntimeError("notification store unavailable")


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_the_purchase(tmp_path):
    db = FailingNotificationDB()
    container = make_container(tmp_path, db=db)
    await make_account(container, "user-1", balance=20)

    async def side_effect(debit):
        return "resource-1"

    receipt = await container.purchases.purchase("user-1", 5, "Service A", side_effect)

    assert receipt.resource_id == "resource-1"
    assert receipt.new_balance == 15
    assert (await db.get_account("user-1")).balance == 15
    messages = [e.message for e in await db.get_ledger_entries("user-1")]
    assert "Purchase notification failed" in messages
