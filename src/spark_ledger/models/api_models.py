from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, computed_field

from .account import Role


class Receipt(BaseModel):
    """Outcome of a successful purchase."""

    account_id: str
    transaction_id: str
    resource_id: str
    amount_charged: int
    new_balance: int


class ReconciliationReport(BaseModel):
    account_id: str
    stored_balance: int
    ledger_sum: int
    transaction_count: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def consistent(self) -> bool:
        return self.stored_balance == self.ledger_sum


class BalanceResponse(BaseModel):
    account_id: str
    balance: int


class AdminAdjustRequest(BaseModel):
    account_id: str
    amount: int
    reason: str


class OfferRequest(BaseModel):
    name: str
    description: Optional[str] = None
    point_cost: int = Field(ge=0)
    discount_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    per_unit_pricing: bool = False
    is_active: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class OfferUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    point_cost: Optional[int] = Field(default=None, ge=0)
    discount_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    per_unit_pricing: Optional[bool] = None
    is_active: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class OfferPurchaseRequest(BaseModel):
    units: int = Field(default=1, ge=1)
    notes: Optional[str] = None


class PaymentSubmitRequest(BaseModel):
    amount: int = Field(gt=0)
    payment_reference: str
    currency: Optional[str] = None
    payment_method: str = "upi"


class PaymentRejectRequest(BaseModel):
    reason: str


class RoleChangeRequest(BaseModel):
    role: Role


class ReferralRequest(BaseModel):
    code: str


class AccountRequest(BaseModel):
    username: str
    email: Optional[str] = None
    display_name: Optional[str] = None


class TopUpQuote(BaseModel):
    amount: int
    spark_points: int
