from __future__ import annotations

import logging
from typing import Optional

from ..cache.base import AsyncCacheBackend
from ..db.base import BaseDBManager
from ..errors import DebitFailed, InsufficientFunds, LedgerError, NotFound
from ..logging.ledger_logger import LedgerLogger
from ..models.account import AdminCapability
from ..models.api_models import ReconciliationReport
from ..models.base import PaginatedResult
from ..models.transaction import LedgerTransaction, TransactionKind


logger = logging.getLogger(__name__)


class LedgerService:
    """
    Spark Points ledger.

    The stored balance on the account and the append-only transaction log
    only ever change together, inside one store transaction. Debits are
    conditional writes at the data layer, so a balance can never be driven
    below zero by concurrent callers that all passed `has_sufficient_balance`.
    """

    def __init__(
        self,
        db: BaseDBManager,
        ledger: LedgerLogger,
        cache: Optional[AsyncCacheBackend] = None,
        admin_adjust_limit: int = 10000,
    ) -> None:
        self._db = db
        self._ledger = ledger
        self._cache = cache
        self._admin_adjust_limit = admin_adjust_limit

    async def has_sufficient_balance(self, account_id: str, required_amount: int) -> bool:
        """
        Answer whether the stored balance covers `required_amount`.

        Reads the account record directly (never the cache). A missing account
        fails closed.
        """
        if required_amount < 0:
            raise ValueError("required_amount must not be negative")
        account = await self._db.get_account(account_id)
        if account is None:
            return False
        return account.balance >= required_amount

    async def adjust_balance(
        self,
        account_id: str,
        signed_amount: int,
        description: str,
        kind: TransactionKind,
        reference_id: str | None = None,
        correlation_id: str | None = None,
    ) -> LedgerTransaction:
        """
        Move the balance by `signed_amount` and append one transaction, atomically.

        Credits are unconditional. Debits are applied only if the balance
        stays non-negative; otherwise `InsufficientFunds` is raised and
        nothing is written. Store failures during a debit surface as
        `DebitFailed`.
        """
        if signed_amount == 0:
            raise ValueError("amount must be non-zero")
        if not description:
            raise ValueError("description is required")

        is_debit = signed_amount < 0

        async def apply() -> LedgerTransaction:
            account = await self._db.apply_balance_delta(
                account_id, signed_amount, floor=0 if is_debit else None
            )
            if account is None:
                current = await self._db.get_account(account_id)
                if current is None:
                    raise NotFound(f"account {account_id} not found")
                raise InsufficientFunds(
                    account_id, required=-signed_amount, available=current.balance
                )

            return await self._db.add_transaction(
                LedgerTransaction(
                    account_id=account_id,
                    amount=signed_amount,
                    description=description,
                    kind=kind,
                    balance_after=account.balance,
                    reference_id=reference_id,
                    correlation_id=correlation_id,
                )
            )

        try:
            tx = await self._db.run_in_transaction(apply)
        except InsufficientFunds as exc:
            await self._ledger.log_error(
                message="Insufficient balance for debit",
                details={"requested": exc.required, "available": exc.available},
                account_id=account_id,
                correlation_id=correlation_id,
            )
            raise
        except LedgerError:
            raise
        except Exception as exc:
            await self._ledger.log_error(
                message="Ledger write failed",
                details={"amount": signed_amount, "error": repr(exc)},
                account_id=account_id,
                correlation_id=correlation_id,
            )
            if is_debit:
                raise DebitFailed(
                    f"could not debit {-signed_amount} points: {exc}",
                    account_id=account_id,
                ) from exc
            raise

        await self._ledger.log_transaction(
            account_id=account_id,
            message="Points credited" if signed_amount > 0 else "Points debited",
            details={
                "transaction_id": tx.id,
                "amount": signed_amount,
                "kind": kind.value,
                "new_balance": tx.balance_after,
                "description": description,
            },
            correlation_id=correlation_id,
        )

        if self._cache:
            await self._cache.set(self._balance_cache_key(account_id), tx.balance_after)

        return tx

    async def credit(
        self,
        account_id: str,
        amount: int,
        description: str,
        kind: TransactionKind = TransactionKind.EARN,
        reference_id: str | None = None,
        correlation_id: str | None = None,
    ) -> LedgerTransaction:
        if amount <= 0:
            raise ValueError("amount must be positive")
        return await self.adjust_balance(
            account_id, amount, description, kind, reference_id, correlation_id
        )

    async def debit(
        self,
        account_id: str,
        amount: int,
        description: str,
        kind: TransactionKind = TransactionKind.SPEND,
        reference_id: str | None = None,
        correlation_id: str | None = None,
    ) -> LedgerTransaction:
        if amount <= 0:
            raise ValueError("amount must be positive")
        return await self.adjust_balance(
            account_id, -amount, description, kind, reference_id, correlation_id
        )

    async def admin_adjust(
        self,
        admin: AdminCapability,
        target_account_id: str,
        signed_amount: int,
        reason: str,
        correlation_id: str | None = None,
    ) -> LedgerTransaction:
        """
        Support adjustment by an admin. The reason is mandatory and the
        magnitude is capped by `admin_adjust_limit`.
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValueError("a reason is required for admin adjustments")
        if abs(signed_amount) > self._admin_adjust_limit:
            raise ValueError(
                f"admin adjustments are limited to {self._admin_adjust_limit} points"
            )

        tx = await self.adjust_balance(
            target_account_id,
            signed_amount,
            description=f"Admin adjustment: {reason}",
            kind=TransactionKind.ADMIN,
            correlation_id=correlation_id,
        )
        await self._ledger.log_system(
            message="Admin adjustment applied",
            details={
                "admin_id": admin.admin_id,
                "transaction_id": tx.id,
                "amount": signed_amount,
                "reason": reason,
            },
            account_id=target_account_id,
        )
        return tx

    async def get_balance(self, account_id: str) -> int:
        """Displayed balance; may be served from cache."""
        if self._cache:
            cached = await self._cache.get(self._balance_cache_key(account_id))
            if isinstance(cached, int):
                return cached
        account = await self._db.get_account(account_id)
        if account is None:
            raise NotFound(f"account {account_id} not found")
        if self._cache:
            await self._cache.set(
                self._balance_cache_key(account_id), account.balance, ttl_seconds=300
            )
        return account.balance

    async def get_history(
        self, account_id: str, limit: int = 50, offset: int = 0
    ) -> PaginatedResult:
        """Transactions newest first."""
        txs = list(await self._db.get_transactions(account_id))
        txs.reverse()
        return PaginatedResult(
            items=txs[offset : offset + limit],
            total=len(txs),
            limit=limit,
            offset=offset,
        )

    async def reconcile(self, account_id: str) -> ReconciliationReport:
        """
        Compare the stored balance with the sum of the transaction log.
        A mismatch is recorded in the audit ledger.
        """
        account = await self._db.get_account(account_id)
        if account is None:
            raise NotFound(f"account {account_id} not found")
        txs = list(await self._db.get_transactions(account_id))
        report = ReconciliationReport(
            account_id=account_id,
            stored_balance=account.balance,
            ledger_sum=sum(t.amount for t in txs),
            transaction_count=len(txs),
        )
        if not report.consistent:
            await self._ledger.log_error(
                message="Ledger out of balance",
                details=report.model_dump(),
                account_id=account_id,
            )
        return report

    @staticmethod
    def _balance_cache_key(account_id: str) -> str:
        return f"ledger:account:{account_id}:balance"
