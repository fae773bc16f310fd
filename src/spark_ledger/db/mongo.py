from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Type, TypeVar
from uuid import uuid4

from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorClientSession,
    AsyncIOMotorDatabase,
)
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

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
T = TypeVar("T")

logger = logging.getLogger(__name__)

# Attempts for a transaction aborted by a write conflict or failover
MAX_TRANSACTION_ATTEMPTS = 5

_current_session: ContextVar[Optional[AsyncIOMotorClientSession]] = ContextVar(
    "spark_ledger_mongo_session", default=None
)


class MongoDBManager(BaseDBManager):
    """
    MongoDB implementation of BaseDBManager using motor (async driver).

    IDs are stored as string-based `_id` fields and mirrored in the `id`
    attribute of each Pydantic model, which keeps the rest of the system
    agnostic of MongoDB specifics.

    `transaction()` opens a client session with a multi-document transaction
    (requires a replica set or sharded cluster). Every query issued while the
    block is active runs in that session. Audit ledger writes deliberately
    bypass the session so they survive an aborted transaction.
    """

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        client: Optional[AsyncIOMotorClient] = None,
    ) -> None:
        self._db = database
        self._client = client if client is not None else database.client

    @classmethod
    def from_client_uri(cls, uri: str, db_name: str) -> "MongoDBManager":
        client = AsyncIOMotorClient(uri)
        return cls(client[db_name], client)

    async def ensure_indexes(self) -> None:
        await self._db[Account.collection_name].create_index(
            "referral_code", unique=True, sparse=True
        )
        await self._db[LedgerTransaction.collection_name].create_index(
            [("account_id", ASCENDING), ("created_at", ASCENDING)]
        )
        await self._db[PaymentSubmission.collection_name].create_index(
            [("verification_status", ASCENDING), ("created_at", DESCENDING)]
        )
        await self._db[Notification.collection_name].create_index(
            "dedupe_key", unique=True, sparse=True
        )
        await self._db[LedgerEntry.collection_name].create_index("account_id")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if _current_session.get() is not None:
            yield
            return

        async with await self._client.start_session() as session:
            async with session.start_transaction():
                token = _current_session.set(session)
                try:
                    yield
                finally:
                    _current_session.reset(token)

    async def run_in_transaction(self, callback: Callable[[], Awaitable[T]]) -> T:
        """
        Concurrent writers to the same document abort with a
        TransientTransactionError; the whole callback is run again in a fresh
        transaction so conditional updates see the winner's committed state.
        """
        if _current_session.get() is not None:
            # The outermost caller owns the retry
            return await callback()

        attempt = 0
        while True:
            attempt += 1
            try:
                async with self.transaction():
                    return await callback()
            except PyMongoError as exc:
                if attempt >= MAX_TRANSACTION_ATTEMPTS or not exc.has_error_label(
                    "TransientTransactionError"
                ):
                    raise
                logger.warning(
                    "Transaction aborted (attempt %d/%d), retrying: %s",
                    attempt,
                    MAX_TRANSACTION_ATTEMPTS,
                    exc,
                )

    # Helper utilities
    @staticmethod
    def _session() -> Optional[AsyncIOMotorClientSession]:
        return _current_session.get()

    @staticmethod
    def _prepare_insert(model: TModel) -> Dict[str, Any]:
        data = model.serialize_for_db()
        model_id = getattr(model, "id", None)
        if not model_id:
            model_id = uuid4().hex
            setattr(model, "id", model_id)
            data["id"] = model_id
        data["_id"] = model_id
        return data

    @staticmethod
    def _prepare_update(model: TModel) -> Dict[str, Any]:
        data = model.serialize_for_db()
        model_id = getattr(model, "id", None)
        if not model_id:
            raise ValueError("Model must have id to be updated")
        data["_id"] = model_id
        return data

    @staticmethod
    def _decode(model_cls: Type[TModel], doc: Optional[Mapping[str, Any]]) -> Optional[TModel]:
        if doc is None:
            return None
        data = dict(doc)
        if "_id" in data and "id" not in data:
            data["id"] = str(data["_id"])
        data.pop("_id", None)
        return model_cls.model_validate(data)

    async def _insert(self, model: TModel) -> TModel:
        col = self._db[model.collection_name]
        await col.insert_one(self._prepare_insert(model), session=self._session())
        return model

    async def _find_one(self, model_cls: Type[TModel], query: Mapping[str, Any]) -> Optional[TModel]:
        col = self._db[model_cls.collection_name]
        doc = await col.find_one(query, session=self._session())
        return self._decode(model_cls, doc)

    async def _find_many(
        self,
        model_cls: Type[TModel],
        query: Mapping[str, Any],
        sort: Optional[list[tuple[str, int]]] = None,
    ) -> list[TModel]:
        col = self._db[model_cls.collection_name]
        cursor = col.find(query, session=self._session())
        if sort:
            cursor = cursor.sort(sort)
        docs = await cursor.to_list(length=None)
        return [self._decode(model_cls, d) for d in docs if d is not None]  # type: ignore[misc]

    # Account operations
    async def add_account(self, account: Account) -> Account:
        try:
            return await self._insert(account)
        except DuplicateKeyError as exc:
            raise ValueError(f"account {account.id} already exists") from exc

    async def get_account(self, account_id: str) -> Optional[Account]:
        return await self._find_one(Account, {"_id": account_id})

    async def get_account_by_referral_code(self, code: str) -> Optional[Account]:
        return await self._find_one(Account, {"referral_code": code})

    async def update_account_fields(
        self, account_id: str, fields: Mapping[str, Any]
    ) -> Optional[Account]:
        if "balance" in fields:
            raise ValueError("balance can only change through apply_balance_delta")
        update = {k: getattr(v, "value", v) for k, v in fields.items()}
        update["updated_at"] = utcnow()
        col = self._db[Account.collection_name]
        doc = await col.find_one_and_update(
            {"_id": account_id},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
            session=self._session(),
        )
        return self._decode(Account, doc)

    async def apply_balance_delta(
        self, account_id: str, delta: int, floor: Optional[int] = 0
    ) -> Optional[Account]:
        query: Dict[str, Any] = {"_id": account_id}
        if floor is not None:
            # balance + delta >= floor, evaluated by the server with the write
            query["balance"] = {"$gte": floor - delta}
        col = self._db[Account.collection_name]
        doc = await col.find_one_and_update(
            query,
            {"$inc": {"balance": delta}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
            session=self._session(),
        )
        return self._decode(Account, doc)

    async def list_accounts(self) -> Iterable[Account]:
        return await self._find_many(Account, {})

    # Transaction log operations
    async def add_transaction(self, tx: LedgerTransaction) -> LedgerTransaction:
        return await self._insert(tx)

    async def get_transaction(self, transaction_id: str) -> Optional[LedgerTransaction]:
        return await self._find_one(LedgerTransaction, {"_id": transaction_id})

    async def get_transactions(self, account_id: str) -> Iterable[LedgerTransaction]:
        return await self._find_many(
            LedgerTransaction, {"account_id": account_id}, sort=[("created_at", ASCENDING)]
        )

    # Service offers
    async def add_offer(self, offer: ServiceOffer) -> ServiceOffer:
        return await self._insert(offer)

    async def update_offer(self, offer: ServiceOffer) -> ServiceOffer:
        col = self._db[ServiceOffer.collection_name]
        data = self._prepare_update(offer)
        result = await col.replace_one(
            {"_id": data["_id"]}, data, upsert=False, session=self._session()
        )
        if result.matched_count == 0:
            raise ValueError("Offer must exist to be updated")
        return offer

    async def delete_offer(self, offer_id: str) -> bool:
        col = self._db[ServiceOffer.collection_name]
        result = await col.delete_one({"_id": offer_id}, session=self._session())
        return result.deleted_count > 0

    async def get_offer(self, offer_id: str) -> Optional[ServiceOffer]:
        return await self._find_one(ServiceOffer, {"_id": offer_id})

    async def list_offers(self) -> Iterable[ServiceOffer]:
        return await self._find_many(ServiceOffer, {}, sort=[("created_at", ASCENDING)])

    # Projects
    async def add_project(self, project: UploadedProject) -> UploadedProject:
        return await self._insert(project)

    async def get_project(self, project_id: str) -> Optional[UploadedProject]:
        return await self._find_one(UploadedProject, {"_id": project_id})

    async def list_projects(self, owner_id: str) -> Iterable[UploadedProject]:
        return await self._find_many(
            UploadedProject, {"owner_id": owner_id}, sort=[("created_at", DESCENDING)]
        )

    # Payment submissions
    async def add_payment(self, payment: PaymentSubmission) -> PaymentSubmission:
        return await self._insert(payment)

    async def get_payment(self, payment_id: str) -> Optional[PaymentSubmission]:
        return await self._find_one(PaymentSubmission, {"_id": payment_id})

    async def list_payments(
        self,
        account_id: Optional[str] = None,
        verification_status: Optional[VerificationStatus] = None,
    ) -> Iterable[PaymentSubmission]:
        query: Dict[str, Any] = {}
        if account_id is not None:
            query["account_id"] = account_id
        if verification_status is not None:
            query["verification_status"] = verification_status.value
        return await self._find_many(
            PaymentSubmission, query, sort=[("created_at", DESCENDING)]
        )

    async def transition_payment(
        self,
        payment_id: str,
        expected: VerificationStatus,
        fields: Mapping[str, Any],
    ) -> Optional[PaymentSubmission]:
        update = {k: getattr(v, "value", v) for k, v in fields.items()}
        update["updated_at"] = utcnow()
        col = self._db[PaymentSubmission.collection_name]
        doc = await col.find_one_and_update(
            {"_id": payment_id, "verification_status": expected.value},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
            session=self._session(),
        )
        return self._decode(PaymentSubmission, doc)

    # Notifications
    async def add_notification(self, notification: Notification) -> Optional[Notification]:
        try:
            return await self._insert(notification)
        except DuplicateKeyError:
            return None

    async def list_notifications(self, account_id: str) -> Iterable[Notification]:
        return await self._find_many(
            Notification, {"account_id": account_id}, sort=[("created_at", DESCENDING)]
        )

    async def mark_notification_read(self, account_id: str, notification_id: str) -> bool:
        col = self._db[Notification.collection_name]
        result = await col.update_one(
            {"_id": notification_id, "account_id": account_id},
            {"$set": {"is_read": True}},
            session=self._session(),
        )
        return result.matched_count > 0

    # Audit ledger; never part of a session
    async def add_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry:
        col = self._db[LedgerEntry.collection_name]
        await col.insert_one(self._prepare_insert(entry))
        return entry

    async def get_ledger_entries(self, account_id: str) -> Iterable[LedgerEntry]:
        col = self._db[LedgerEntry.collection_name]
        cursor = col.find({"account_id": account_id}).sort("created_at", ASCENDING)
        docs = await cursor.to_list(length=None)
        return [self._decode(LedgerEntry, d) for d in docs if d is not None]  # type: ignore[misc]
