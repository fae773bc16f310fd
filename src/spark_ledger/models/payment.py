from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional

from pydantic import Field

from .base import DBSerializableModel, utcnow


class VerificationStatus(str, Enum):
    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    REJECTED = "rejected"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentSubmission(DBSerializableModel):
    """
    A user's claim that they paid for a top-up, awaiting admin verification.
    """

    collection_name: ClassVar[str] = "payment_submissions"

    id: Optional[str] = Field(default=None)
    account_id: str
    amount: int = Field(gt=0)
    currency: str = "INR"
    spark_points: int = Field(
        description="Points credited on verification, bonus tier included.",
    )
    payment_method: str = "upi"
    payment_reference: str
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    status: PaymentStatus = PaymentStatus.PENDING
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
