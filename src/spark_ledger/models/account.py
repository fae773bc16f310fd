from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional

from pydantic import BaseModel, Field

from .base import DBSerializableModel, utcnow


class Role(str, Enum):
    USER = "user"
    EMPLOYEE = "employee"
    ADMIN = "admin"


class Account(DBSerializableModel):
    """
    One registered user of the platform.

    `balance` is the stored Spark Points balance. It is only ever changed
    through the ledger so it stays equal to the sum of the account's
    transactions.
    """

    collection_name: ClassVar[str] = "accounts"

    id: Optional[str] = Field(default=None)
    username: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    balance: int = 0
    role: Role = Role.USER
    referral_code: Optional[str] = Field(
        default=None,
        description="Code other accounts can redeem for a referral bonus.",
    )
    referred_by: Optional[str] = Field(
        default=None,
        description="Account id of the referrer, set once when a code is redeemed.",
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class AdminCapability(BaseModel):
    """
    Proof that `admin_id` held the admin role when the capability was issued.

    Privileged operations take one of these instead of re-checking roles.
    Only `AccountService.require_admin` should construct it.
    """

    model_config = {"frozen": True}

    admin_id: str
    issued_at: datetime = Field(default_factory=utcnow)
