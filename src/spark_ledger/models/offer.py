from __future__ import annotations

from datetime import datetime, timezone
from typing import ClassVar, Optional

from pydantic import Field, field_validator

from .base import DBSerializableModel, utcnow


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class ServiceOffer(DBSerializableModel):
    """
    Purchasable catalogue entry priced in Spark Points.
    """

    collection_name: ClassVar[str] = "service_offers"

    id: Optional[str] = Field(default=None)
    name: str
    description: Optional[str] = None
    point_cost: int = Field(ge=0)
    discount_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    per_unit_pricing: bool = Field(
        default=False,
        description="Cost is charged per unit (page, slide, image...) ordered.",
    )
    is_active: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("start_date", "end_date")
    @classmethod
    def to_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Stored and compared as naive UTC, like every other timestamp
        return _naive_utc(value) if value is not None else None

    def is_available(self, at: Optional[datetime] = None) -> bool:
        if not self.is_active:
            return False
        at = _naive_utc(at) if at is not None else utcnow()
        if self.start_date is not None and at < self.start_date:
            return False
        if self.end_date is not None and at > self.end_date:
            return False
        return True

    def compute_cost(self, units: int = 1) -> int:
        if units < 1:
            raise ValueError("units must be at least 1")
        if not self.per_unit_pricing:
            units = 1
        gross = self.point_cost * units
        discount = self.discount_percentage or 0
        # Discounts round in the buyer's favour
        return gross * (100 - discount) // 100
