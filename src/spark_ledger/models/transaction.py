from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional

from pydantic import Field

from .base import DBSerializableModel, utcnow


class TransactionKind(str, Enum):
    EARN = "earn"
    SPEND = "spend"
    ADMIN = "admin"
    REFUND = "refund"


class LedgerTransaction(DBSerializableModel):
    """
    Append-only record of one balance change. Positive amounts are credits,
    negative amounts are debits.
    """

    collection_name: ClassVar[str] = "ledger_transactions"

    id: Optional[str] = Field(default=None)
    account_id: str
    amount: int
    description: str
    kind: TransactionKind
    balance_after: int
    reference_id: Optional[str] = Field(
        default=None,
        description="Id of the project, payment or transaction this entry relates to.",
    )
    correlation_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
