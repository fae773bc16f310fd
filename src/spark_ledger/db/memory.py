from __future__ import annotations

import asyncio
import copy
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Optional, TypeVar

from .base import BaseDBManager
from ..models.account import Account
from ..models.base import DBSerializableModel, utcnow
from ..models.ledger import LedgerEntry
from ..models.notification import Notification
from ..models.offer import ServiceOffer
from ..models.payment import PaymentSubmission, VerificationStatus
from ..models.project import UploadedProject
from ..models.transaction import LedgerTransaction


TModel = TypeVar("TModel", bound=DBSerializableModel)


class InMemoryDBManager(BaseDBManager):
    """
    In-memory implementation used for tests and local development.

    Transactions are real: a single asyncio lock serialises them and the
    state is snapshotted on entry and restored if the block raises. Stored
    models are copied on the way in and out so callers cannot mutate state
    behind the manager's back. The audit ledger lives outside the snapshot so
    errors logged inside a failed transaction survive its rollback.
    """

    def __init__(self) -> None:
        self._accounts: Dict[str, Account] = {}
        self._transactions: Dict[str, LedgerTransaction] = {}
        self._offers: Dict[str, ServiceOffer] = {}
        self._projects: Dict[str, UploadedProject] = {}
        self._payments: Dict[str, PaymentSubmission] = {}
        self._notifications: Dict[str, Notification] = {}
        self._ledger: List[LedgerEntry] = []
        self._id_counter: int = 0
        self._lock = asyncio.Lock()
        self._in_transaction: ContextVar[bool] = ContextVar(
            f"in_memory_tx_{id(self)}", default=False
        )

    def _next_id(self) -> str:
        self._id_counter += 1
        return str(self._id_counter)

    def _assign_id(self, model: TModel) -> TModel:
        stored = model.model_copy(deep=True)
        if getattr(stored, "id", None) is None:
            stored.id = self._next_id()  # type: ignore[attr-defined]
            model.id = stored.id  # type: ignore[attr-defined]
        return stored

    @staticmethod
    def _out(model: Optional[TModel]) -> Optional[TModel]:
        return model.model_copy(deep=True) if model is not None else None

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "_accounts": copy.deepcopy(self._accounts),
            "_transactions": copy.deepcopy(self._transactions),
            "_offers": copy.deepcopy(self._offers),
            "_projects": copy.deepcopy(self._projects),
            "_payments": copy.deepcopy(self._payments),
            "_notifications": copy.deepcopy(self._notifications),
            "_id_counter": self._id_counter,
        }

    def _restore(self, snapshot: Dict[str, Any]) -> None:
        for name, value in snapshot.items():
            setattr(self, name, value)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._in_transaction.get():
            # Nested block joins the enclosing transaction
            yield
            return

        async with self._lock:
            token = self._in_transaction.set(True)
            snapshot = self._snapshot()
            try:
                yield
            except BaseException:
                self._restore(snapshot)
                raise
            finally:
                self._in_transaction.reset(token)

    # Account operations
    async def add_account(self, account: Account) -> Account:
        if account.id is not None and account.id in self._accounts:
            raise ValueError(f"account {account.id} already exists")
        stored = self._assign_id(account)
        self._accounts[stored.id] = stored  # type: ignore[index]
        return self._out(stored)  # type: ignore[return-value]

    async def get_account(self, account_id: str) -> Optional[Account]:
        return self._out(self._accounts.get(account_id))

    async def get_account_by_referral_code(self, code: str) -> Optional[Account]:
        for account in self._accounts.values():
            if account.referral_code == code:
                return self._out(account)
        return None

    async def update_account_fields(
        self, account_id: str, fields: Mapping[str, Any]
    ) -> Optional[Account]:
        if "balance" in fields:
            raise ValueError("balance can only change through apply_balance_delta")
        account = self._accounts.get(account_id)
        if account is None:
            return None
        updated = account.model_copy(update={**fields, "updated_at": utcnow()})
        self._accounts[account_id] = updated
        return self._out(updated)

    async def apply_balance_delta(
        self, account_id: str, delta: int, floor: Optional[int] = 0
    ) -> Optional[Account]:
        # No await between the check and the write: atomic on the event loop
        account = self._accounts.get(account_id)
        if account is None:
            return None
        new_balance = account.balance + delta
        if floor is not None and new_balance < floor:
            return None
        updated = account.model_copy(
            update={"balance": new_balance, "updated_at": utcnow()}
        )
        self._accounts[account_id] = updated
        return self._out(updated)

    async def list_accounts(self) -> Iterable[Account]:
        return [self._out(a) for a in self._accounts.values()]  # type: ignore[misc]

    # Transaction log operations
    async def add_transaction(self, tx: LedgerTransaction) -> LedgerTransaction:
        stored = self._assign_id(tx)
        self._transactions[stored.id] = stored  # type: ignore[index]
        return self._out(stored)  # type: ignore[return-value]

    async def get_transaction(self, transaction_id: str) -> Optional[LedgerTransaction]:
        return self._out(self._transactions.get(transaction_id))

    async def get_transactions(self, account_id: str) -> Iterable[LedgerTransaction]:
        # Insertion order is creation order
        return [
            self._out(t)  # type: ignore[misc]
            for t in self._transactions.values()
            if t.account_id == account_id
        ]

    # Service offers
    async def add_offer(self, offer: ServiceOffer) -> ServiceOffer:
        stored = self._assign_id(offer)
        self._offers[stored.id] = stored  # type: ignore[index]
        return self._out(stored)  # type: ignore[return-value]

    async def update_offer(self, offer: ServiceOffer) -> ServiceOffer:
        if offer.id is None or offer.id not in self._offers:
            raise ValueError("Offer must exist to be updated")
        stored = offer.model_copy(deep=True)
        self._offers[offer.id] = stored
        return self._out(stored)  # type: ignore[return-value]

    async def delete_offer(self, offer_id: str) -> bool:
        return self._offers.pop(offer_id, None) is not None

    async def get_offer(self, offer_id: str) -> Optional[ServiceOffer]:
        return self._out(self._offers.get(offer_id))

    async def list_offers(self) -> Iterable[ServiceOffer]:
        return [self._out(o) for o in self._offers.values()]  # type: ignore[misc]

    # Projects
    async def add_project(self, project: UploadedProject) -> UploadedProject:
        stored = self._assign_id(project)
        self._projects[stored.id] = stored  # type: ignore[index]
        return self._out(stored)  # type: ignore[return-value]

    async def get_project(self, project_id: str) -> Optional[UploadedProject]:
        return self._out(self._projects.get(project_id))

    async def list_projects(self, owner_id: str) -> Iterable[UploadedProject]:
        return [
            self._out(p)  # type: ignore[misc]
            for p in self._projects.values()
            if p.owner_id == owner_id
        ]

    # Payment submissions
    async def add_payment(self, payment: PaymentSubmission) -> PaymentSubmission:
        stored = self._assign_id(payment)
        self._payments[stored.id] = stored  # type: ignore[index]
        return self._out(stored)  # type: ignore[return-value]

    async def get_payment(self, payment_id: str) -> Optional[PaymentSubmission]:
        return self._out(self._payments.get(payment_id))

    async def list_payments(
        self,
        account_id: Optional[str] = None,
        verification_status: Optional[VerificationStatus] = None,
    ) -> Iterable[PaymentSubmission]:
        payments = [
            p
            for p in self._payments.values()
            if (account_id is None or p.account_id == account_id)
            and (verification_status is None or p.verification_status == verification_status)
        ]
        return [self._out(p) for p in reversed(payments)]  # type: ignore[misc]

    async def transition_payment(
        self,
        payment_id: str,
        expected: VerificationStatus,
        fields: Mapping[str, Any],
    ) -> Optional[PaymentSubmission]:
        payment = self._payments.get(payment_id)
        if payment is None or payment.verification_status != expected:
            return None
        updated = payment.model_copy(update={**fields, "updated_at": utcnow()})
        self._payments[payment_id] = updated
        return self._out(updated)

    # Notifications
    async def add_notification(self, notification: Notification) -> Optional[Notification]:
        if notification.dedupe_key is not None and any(
            n.dedupe_key == notification.dedupe_key for n in self._notifications.values()
        ):
            return None
        stored = self._assign_id(notification)
        self._notifications[stored.id] = stored  # type: ignore[index]
        return self._out(stored)

    async def list_notifications(self, account_id: str) -> Iterable[Notification]:
        return [
            self._out(n)  # type: ignore[misc]
            for n in reversed(list(self._notifications.values()))
            if n.account_id == account_id
        ]

    async def mark_notification_read(self, account_id: str, notification_id: str) -> bool:
        notification = self._notifications.get(notification_id)
        if notification is None or notification.account_id != account_id:
            return False
        self._notifications[notification_id] = notification.model_copy(update={"is_read": True})
        return True

    # Audit ledger
    async def add_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry:
        # Own id sequence: the shared counter is rolled back with the snapshot
        if entry.id is None:
            entry.id = f"audit-{len(self._ledger) + 1}"
        stored = entry.model_copy(deep=True)
        self._ledger.append(stored)
        return self._out(stored)  # type: ignore[return-value]

    async def get_ledger_entries(self, account_id: str) -> Iterable[LedgerEntry]:
        return [self._out(e) for e in self._ledger if e.account_id == account_id]  # type: ignore[misc]
