from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from ..cache.base import AsyncCacheBackend
from ..db.base import BaseDBManager
from ..errors import NotFound
from ..logging.ledger_logger import LedgerLogger
from ..models.account import AdminCapability
from ..models.base import utcnow
from ..models.offer import ServiceOffer


class OfferService:
    """
    Service catalogue: admin CRUD and cached reads for everyone.
    """

    def __init__(
        self,
        db: BaseDBManager,
        ledger: LedgerLogger,
        cache: Optional[AsyncCacheBackend] = None,
    ) -> None:
        self._db = db
        self._ledger = ledger
        self._cache = cache

    async def create_offer(self, admin: AdminCapability, offer: ServiceOffer) -> ServiceOffer:
        self._validate_window(offer.start_date, offer.end_date)
        offer.id = None
        offer = await self._db.add_offer(offer)
        await self._invalidate_offer_cache()
        await self._ledger.log_system(
            message="Service offer created",
            details={"admin_id": admin.admin_id, "offer_id": offer.id, "name": offer.name},
        )
        return offer

    async def update_offer(
        self, admin: AdminCapability, offer_id: str, changes: Mapping[str, Any]
    ) -> ServiceOffer:
        current = await self._db.get_offer(offer_id)
        if current is None:
            raise NotFound(f"offer {offer_id} not found")
        data = current.model_dump()
        data.update({k: v for k, v in changes.items() if k not in ("id", "created_at")})
        data["updated_at"] = utcnow()
        updated = ServiceOffer.model_validate(data)
        self._validate_window(updated.start_date, updated.end_date)

        updated = await self._db.update_offer(updated)
        await self._invalidate_offer_cache()
        await self._ledger.log_system(
            message="Service offer updated",
            details={"admin_id": admin.admin_id, "offer_id": offer_id, "changes": dict(changes)},
        )
        return updated

    async def delete_offer(self, admin: AdminCapability, offer_id: str) -> None:
        if not await self._db.delete_offer(offer_id):
            raise NotFound(f"offer {offer_id} not found")
        await self._invalidate_offer_cache()
        await self._ledger.log_system(
            message="Service offer deleted",
            details={"admin_id": admin.admin_id, "offer_id": offer_id},
        )

    async def set_active(
        self, admin: AdminCapability, offer_id: str, is_active: bool
    ) -> ServiceOffer:
        return await self.update_offer(admin, offer_id, {"is_active": is_active})

    async def get_offer(self, offer_id: str) -> ServiceOffer:
        cache_key = self._offer_cache_key(offer_id)
        if self._cache:
            cached = await self._cache.get(cache_key)
            if isinstance(cached, ServiceOffer):
                return cached.model_copy(deep=True)
        offer = await self._db.get_offer(offer_id)
        if offer is None:
            raise NotFound(f"offer {offer_id} not found")
        if self._cache:
            await self._cache.set(cache_key, offer.model_copy(deep=True), ttl_seconds=300)
        return offer

    async def list_offers(
        self, available_only: bool = False, at: Optional[datetime] = None
    ) -> Iterable[ServiceOffer]:
        offers = list(await self._db.list_offers())
        if available_only:
            at = at or utcnow()
            offers = [o for o in offers if o.is_available(at)]
        return offers

    @staticmethod
    def _validate_window(start: Optional[datetime], end: Optional[datetime]) -> None:
        if start is not None and end is not None and end < start:
            raise ValueError("end_date must not be before start_date")

    @staticmethod
    def _offer_cache_key(offer_id: str) -> str:
        return f"ledger:offer:{offer_id}"

    async def _invalidate_offer_cache(self) -> None:
        if self._cache:
            await self._cache.delete_prefix("ledger:offer:")
