from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Mapping, Optional, TypeVar

from ..models.account import Account
from ..models.ledger import LedgerEntry
from ..models.notification import Notification
from ..models.offer import ServiceOffer
from ..models.payment import PaymentSubmission, VerificationStatus
from ..models.project import UploadedProject
from ..models.transaction import LedgerTransaction


T = TypeVar("T")


class BaseDBManager(ABC):
    """
    DB-agnostic async manager interface.

    Concrete implementations (in-memory, MongoDB, ...) implement these
    methods. Multi-step mutations are made atomic by running them inside the
    `transaction()` context manager; a nested `transaction()` joins the
    enclosing one.
    """

    @abstractmethod
    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """
        Provide an atomic transaction context.
        Must rollback on exception and commit on success.
        """
        yield

    async def run_in_transaction(self, callback: Callable[[], Awaitable[T]]) -> T:
        """
        Run `callback` inside `transaction()` and return its result.

        Backends whose transactions can abort on a write conflict override
        this to run `callback` again, so `callback` must only touch the store.
        """
        async with self.transaction():
            return await callback()

    # Account operations
    @abstractmethod
    async def add_account(self, account: Account) -> Account: ...

    @abstractmethod
    async def get_account(self, account_id: str) -> Optional[Account]: ...

    @abstractmethod
    async def get_account_by_referral_code(self, code: str) -> Optional[Account]: ...

    @abstractmethod
    async def update_account_fields(
        self, account_id: str, fields: Mapping[str, Any]
    ) -> Optional[Account]:
        """
        Set profile fields on an account. Must not be used for `balance`;
        balance only moves through `apply_balance_delta`.
        """
        ...

    @abstractmethod
    async def apply_balance_delta(
        self, account_id: str, delta: int, floor: Optional[int] = 0
    ) -> Optional[Account]:
        """
        Atomically add `delta` to the account balance, but only if the result
        stays at or above `floor` (no check when `floor` is None).

        Returns the updated account, or None when the account does not exist
        or the floor would be violated. The check and the write are a single
        operation; there is no window for a concurrent debit in between.
        """
        ...

    @abstractmethod
    async def list_accounts(self) -> Iterable[Account]: ...

    # Transaction log operations
    @abstractmethod
    async def add_transaction(self, tx: LedgerTransaction) -> LedgerTransaction: ...

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Optional[LedgerTransaction]: ...

    @abstractmethod
    async def get_transactions(self, account_id: str) -> Iterable[LedgerTransaction]:
        """All transactions of an account, oldest first."""
        ...

    # Service offers
    @abstractmethod
    async def add_offer(self, offer: ServiceOffer) -> ServiceOffer: ...

    @abstractmethod
    async def update_offer(self, offer: ServiceOffer) -> ServiceOffer: ...

    @abstractmethod
    async def delete_offer(self, offer_id: str) -> bool: ...

    @abstractmethod
    async def get_offer(self, offer_id: str) -> Optional[ServiceOffer]: ...

    @abstractmethod
    async def list_offers(self) -> Iterable[ServiceOffer]: ...

    # Projects
    @abstractmethod
    async def add_project(self, project: UploadedProject) -> UploadedProject: ...

    @abstractmethod
    async def get_project(self, project_id: str) -> Optional[UploadedProject]: ...

    @abstractmethod
    async def list_projects(self, owner_id: str) -> Iterable[UploadedProject]: ...

    # Payment submissions
    @abstractmethod
    async def add_payment(self, payment: PaymentSubmission) -> PaymentSubmission: ...

    @abstractmethod
    async def get_payment(self, payment_id: str) -> Optional[PaymentSubmission]: ...

    @abstractmethod
    async def list_payments(
        self,
        account_id: Optional[str] = None,
        verification_status: Optional[VerificationStatus] = None,
    ) -> Iterable[PaymentSubmission]:
        """Payments newest first, optionally filtered."""
        ...

    @abstractmethod
    async def transition_payment(
        self,
        payment_id: str,
        expected: VerificationStatus,
        fields: Mapping[str, Any],
    ) -> Optional[PaymentSubmission]:
        """
        Apply `fields` only if the payment is still in `expected` state.
        Returns the updated payment, or None if it is missing or already moved on.
        """
        ...

    # Notifications
    @abstractmethod
    async def add_notification(self, notification: Notification) -> Optional[Notification]:
        """
        Store a notification. Returns None when one with the same
        `dedupe_key` already exists.
        """
        ...

    @abstractmethod
    async def list_notifications(self, account_id: str) -> Iterable[Notification]: ...

    @abstractmethod
    async def mark_notification_read(self, account_id: str, notification_id: str) -> bool: ...

    # Audit ledger
    @abstractmethod
    async def add_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry: ...

    @abstractmethod
    async def get_ledger_entries(self, account_id: str) -> Iterable[LedgerEntry]: ...
