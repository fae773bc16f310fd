from __future__ import annotations

import logging
import mimetypes
from pathlib import PurePath
from typing import Awaitable, Callable, Optional
from uuid import uuid4

from ..db.base import BaseDBManager
from ..errors import (
    DebitFailed,
    InsufficientFunds,
    NotFound,
    OfferUnavailable,
    SideEffectFailed,
)
from ..logging.ledger_logger import LedgerLogger
from ..models.api_models import Receipt
from ..models.notification import NotificationType
from ..models.project import UploadedProject
from ..models.transaction import LedgerTransaction, TransactionKind
from ..storage.base import AsyncFileStorage
from .ledger_service import LedgerService
from .notification_service import NotificationService
from .offer_service import OfferService


logger = logging.getLogger(__name__)

# Receives the debit transaction, returns the id of the created resource
SideEffect = Callable[[LedgerTransaction], Awaitable[str]]


class PurchaseService:
    """
    Orchestrates point-priced actions: project uploads and service purchases.

    Funds are taken first with an atomic conditional debit, then the action
    runs. If the action fails the debit is compensated with a refund, so a
    failed purchase never leaves the user charged without the resource, and
    a resource never exists without its charge.
    """

    def __init__(
        self,
        db: BaseDBManager,
        ledger: LedgerLogger,
        ledger_service: LedgerService,
        notifications: NotificationService,
        storage: AsyncFileStorage,
        offers: OfferService,
        upload_cost: int = 5,
        expedite_cost_per_day: int = 2,
        max_upload_bytes: int = 100 * 1024 * 1024,
        low_balance_threshold: int = 5,
    ) -> None:
        self._db = db
        self._ledger = ledger
        self._ledger_service = ledger_service
        self._notifications = notifications
        self._storage = storage
        self._offers = offers
        self._upload_cost = upload_cost
        self._expedite_cost_per_day = expedite_cost_per_day
        self._max_upload_bytes = max_upload_bytes
        self._low_balance_threshold = low_balance_threshold

    async def purchase(
        self,
        account_id: str,
        cost: int,
        description: str,
        side_effect: SideEffect,
        notification_title: str = "Purchase complete",
        notification_message: str | None = None,
        correlation_id: str | None = None,
    ) -> Receipt:
        if cost < 0:
            raise ValueError("cost must not be negative")
        correlation_id = correlation_id or uuid4().hex

        if not await self._ledger_service.has_sufficient_balance(account_id, cost):
            account = await self._db.get_account(account_id)
            if account is None:
                raise NotFound(f"account {account_id} not found")
            raise InsufficientFunds(account_id, required=cost, available=account.balance)

        # Reserve funds first; the conditional debit closes the check-then-act race
        debit: Optional[LedgerTransaction] = None
        if cost > 0:
            debit = await self._ledger_service.debit(
                account_id,
                cost,
                description=description,
                kind=TransactionKind.SPEND,
                correlation_id=correlation_id,
            )
        else:
            debit = LedgerTransaction(
                id=f"free-{correlation_id}",
                account_id=account_id,
                amount=0,
                description=description,
                kind=TransactionKind.SPEND,
                balance_after=await self._current_balance(account_id),
                correlation_id=correlation_id,
            )

        try:
            resource_id = await side_effect(debit)
        except Exception as exc:
            await self._compensate(debit, exc, correlation_id)
            raise SideEffectFailed(
                f"{description} failed: {exc}",
                refunded=cost,
            ) from exc

        message = notification_message or f"{description} ({cost} Spark Points)."
        if cost > 0 and debit.balance_after < self._low_balance_threshold:
            message += (
                f" You have {debit.balance_after} Spark Points left. "
                "Top up to keep using paid services."
            )
        try:
            await self._notifications.notify(
                account_id,
                title=notification_title,
                message=message,
                notification_type=NotificationType.SUCCESS,
                dedupe_key=f"purchase:{debit.id}",
            )
        except Exception as exc:
            # Charge and resource are committed; the receipt stands
            logger.exception("Notification for purchase %s failed", debit.id)
            await self._ledger.log_error(
                message="Purchase notification failed",
                details={"transaction_id": debit.id, "error": repr(exc)},
                account_id=account_id,
                correlation_id=correlation_id,
            )

        return Receipt(
            account_id=account_id,
            transaction_id=debit.id or "",
            resource_id=resource_id,
            amount_charged=cost,
            new_balance=debit.balance_after,
        )

    async def upload_project(
        self,
        account_id: str,
        title: str,
        filename: str,
        content: bytes,
        description: str | None = None,
        category: str = "idea",
        content_type: str | None = None,
        expedite_days: int = 0,
        correlation_id: str | None = None,
    ) -> Receipt:
        title = (title or "").strip()
        if not title:
            raise ValueError("a project title is required")
        if not content:
            raise ValueError("the uploaded file is empty")
        if len(content) > self._max_upload_bytes:
            raise ValueError(
                f"file size exceeds the {self._max_upload_bytes // (1024 * 1024)}MB limit"
            )
        if expedite_days < 0:
            raise ValueError("expedite_days must not be negative")

        cost = self.upload_price(expedite_days)
        content_type = content_type or mimetypes.guess_type(filename)[0]
        suffix = PurePath(filename).suffix
        storage_path = f"{account_id}/{uuid4().hex}{suffix}"

        async def store_and_record(debit: LedgerTransaction) -> str:
            stored = await self._storage.put(storage_path, content, content_type)
            try:
                project = await self._db.add_project(
                    UploadedProject(
                        title=title,
                        description=description,
                        category=category,
                        owner_id=account_id,
                        price_charged=cost,
                        file_path=stored.path,
                        file_type=content_type,
                        file_size=stored.size,
                        expedite=expedite_days > 0,
                        expedite_days=expedite_days,
                    )
                )
            except Exception:
                await self._storage.delete(stored.path)
                raise
            return project.id or ""

        return await self.purchase(
            account_id,
            cost,
            description=f"Project upload: {title}",
            side_effect=store_and_record,
            notification_title="Project Uploaded",
            notification_message=(
                f'Your project "{title}" has been uploaded successfully and is pending review.'
            ),
            correlation_id=correlation_id,
        )

    async def purchase_offer(
        self,
        account_id: str,
        offer_id: str,
        units: int = 1,
        notes: str | None = None,
        correlation_id: str | None = None,
    ) -> Receipt:
        offer = await self._offers.get_offer(offer_id)
        if not offer.is_available():
            raise OfferUnavailable(f"offer {offer.name!r} is not currently available")
        cost = offer.compute_cost(units)
        unit_label = f" x{units}" if offer.per_unit_pricing and units > 1 else ""

        async def activate(debit: LedgerTransaction) -> str:
            order_description = offer.description or offer.name
            if notes:
                order_description = f"{order_description}\n\n{notes}"
            project = await self._db.add_project(
                UploadedProject(
                    title=f"{offer.name}{unit_label}",
                    description=order_description,
                    category="service",
                    owner_id=account_id,
                    price_charged=cost,
                    offer_id=offer.id,
                )
            )
            return project.id or ""

        return await self.purchase(
            account_id,
            cost,
            description=f"Service purchase: {offer.name}{unit_label}",
            side_effect=activate,
            notification_title="Service Purchased",
            notification_message=(
                f'Your order for "{offer.name}" was placed for {cost} Spark Points.'
            ),
            correlation_id=correlation_id,
        )

    def upload_price(self, expedite_days: int = 0) -> int:
        return self._upload_cost + max(expedite_days, 0) * self._expedite_cost_per_day

    async def _current_balance(self, account_id: str) -> int:
        account = await self._db.get_account(account_id)
        if account is None:
            raise NotFound(f"account {account_id} not found")
        return account.balance

    async def _compensate(
        self, debit: LedgerTransaction, cause: Exception, correlation_id: str
    ) -> None:
        await self._ledger.log_error(
            message="Purchase action failed after debit",
            details={"transaction_id": debit.id, "error": repr(cause)},
            account_id=debit.account_id,
            correlation_id=correlation_id,
        )
        if debit.amount == 0:
            return
        try:
            await self._ledger_service.credit(
                debit.account_id,
                -debit.amount,
                description=f"Refund: {debit.description}",
                kind=TransactionKind.REFUND,
                reference_id=debit.id,
                correlation_id=correlation_id,
            )
        except Exception as exc:
            logger.exception("Refund of transaction %s failed", debit.id)
            await self._ledger.log_error(
                message="Compensating refund failed; manual correction required",
                details={"transaction_id": debit.id, "error": repr(exc)},
                account_id=debit.account_id,
                correlation_id=correlation_id,
            )
            raise DebitFailed(
                f"purchase failed and the {-debit.amount} point charge could not be refunded",
                transaction_id=debit.id,
            ) from exc
