from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, Query, UploadFile, status

from ..cache.base import AsyncCacheBackend
from ..cache.memory import InMemoryAsyncCache
from ..config import Settings, settings as default_settings
from ..db.base import BaseDBManager
from ..db.memory import InMemoryDBManager
from ..logging.ledger_logger import LedgerLogger
from ..models.account import Account, AdminCapability
from ..models.api_models import (
    AccountRequest,
    AdminAdjustRequest,
    BalanceResponse,
    OfferPurchaseRequest,
    OfferRequest,
    OfferUpdateRequest,
    PaymentRejectRequest,
    PaymentSubmitRequest,
    Receipt,
    ReconciliationReport,
    ReferralRequest,
    RoleChangeRequest,
    TopUpQuote,
)
from ..models.base import PaginatedResult
from ..models.notification import Notification
from ..models.offer import ServiceOffer
from ..models.payment import PaymentSubmission, VerificationStatus
from ..models.project import UploadedProject
from ..models.transaction import LedgerTransaction
from ..notifications.queue import AsyncNotificationQueue, InMemoryNotificationQueue
from ..services.account_service import AccountService
from ..services.ledger_service import LedgerService
from ..services.notification_service import NotificationService
from ..services.offer_service import OfferService
from ..services.payment_service import PaymentService, calculate_top_up_points
from ..services.purchase_service import PurchaseService
from ..storage.base import AsyncFileStorage
from ..storage.local import LocalFileStorage
from ..storage.memory import InMemoryFileStorage


logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    db: BaseDBManager
    cache: AsyncCacheBackend
    ledger: LedgerLogger
    queue: AsyncNotificationQueue
    storage: AsyncFileStorage
    ledger_service: LedgerService
    accounts: AccountService
    notifications: NotificationService
    offers: OfferService
    purchases: PurchaseService
    payments: PaymentService


def _create_db_manager(config: Settings) -> BaseDBManager:
    if config.MONGO_URI:
        # Imported lazily so the in-memory setup does not need a driver configured
        from ..db.mongo import MongoDBManager

        logger.info("Using MongoDB ledger store %s", config.MONGO_DB)
        return MongoDBManager.from_client_uri(config.MONGO_URI, config.MONGO_DB)
    logger.warning("MONGO_URI not set; using the in-memory ledger store")
    return InMemoryDBManager()


def _create_storage(config: Settings) -> AsyncFileStorage:
    if config.STORAGE_DIR:
        return LocalFileStorage(Path(config.STORAGE_DIR))
    return InMemoryFileStorage()


def build_container(
    config: Settings | None = None,
    db: BaseDBManager | None = None,
    storage: AsyncFileStorage | None = None,
    ledger_log_path: Path | None = None,
) -> ServiceContainer:
    config = config or default_settings
    db = db or _create_db_manager(config)
    storage = storage or _create_storage(config)
    cache = InMemoryAsyncCache()
    ledger = LedgerLogger(db=db, file_path=ledger_log_path or Path(config.LEDGER_LOG_PATH))
    queue = InMemoryNotificationQueue()

    ledger_service = LedgerService(
        db=db, ledger=ledger, cache=cache, admin_adjust_limit=config.ADMIN_ADJUST_LIMIT
    )
    notifications = NotificationService(db=db, queue=queue)
    offers = OfferService(db=db, ledger=ledger, cache=cache)
    return ServiceContainer(
        db=db,
        cache=cache,
        ledger=ledger,
        queue=queue,
        storage=storage,
        ledger_service=ledger_service,
        accounts=AccountService(
            db=db,
            ledger=ledger,
            ledger_service=ledger_service,
            signup_points=config.SIGNUP_POINTS,
            admin_signup_points=config.ADMIN_SIGNUP_POINTS,
            admin_emails=config.ADMIN_EMAILS,
            referral_bonus=config.REFERRAL_BONUS,
        ),
        notifications=notifications,
        offers=offers,
        purchases=PurchaseService(
            db=db,
            ledger=ledger,
            ledger_service=ledger_service,
            notifications=notifications,
            storage=storage,
            offers=offers,
            upload_cost=config.UPLOAD_COST,
            expedite_cost_per_day=config.EXPEDITE_COST_PER_DAY,
            max_upload_bytes=config.MAX_UPLOAD_BYTES,
            low_balance_threshold=config.LOW_BALANCE_THRESHOLD,
        ),
        payments=PaymentService(
            db=db,
            ledger=ledger,
            ledger_service=ledger_service,
            notifications=notifications,
            default_currency=config.DEFAULT_CURRENCY,
        ),
    )


def create_router(container: ServiceContainer) -> APIRouter:
    router = APIRouter(prefix="/points", tags=["points"])

    async def current_account_id(
        x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    ) -> str:
        if not x_user_id:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing user identification (X-User-Id header).",
            )
        return x_user_id

    async def admin_capability(
        account_id: str = Depends(current_account_id),
    ) -> AdminCapability:
        return await container.accounts.require_admin(account_id)

    async def correlation_id(
        x_request_id: Optional[str] = Header(default=None, alias="X-Request-Id"),
    ) -> Optional[str]:
        return x_request_id

    # Accounts
    @router.post("/accounts", response_model=Account)
    async def sign_in(
        payload: AccountRequest, account_id: str = Depends(current_account_id)
    ) -> Account:
        return await container.accounts.ensure_account(
            account_id,
            username=payload.username,
            email=payload.email,
            display_name=payload.display_name,
        )

    @router.get("/accounts/me", response_model=Account)
    async def me(account_id: str = Depends(current_account_id)) -> Account:
        return await container.accounts.get_account(account_id)

    @router.post("/accounts/me/referral", response_model=Account)
    async def redeem_referral(
        payload: ReferralRequest, account_id: str = Depends(current_account_id)
    ) -> Account:
        return await container.accounts.apply_referral_code(account_id, payload.code)

    @router.put("/admin/accounts/{account_id}/role", response_model=Account)
    async def change_role(
        account_id: str,
        payload: RoleChangeRequest,
        admin: AdminCapability = Depends(admin_capability),
    ) -> Account:
        return await container.accounts.set_role(admin, account_id, payload.role)

    # Ledger
    @router.get("/balance", response_model=BalanceResponse)
    async def get_balance(account_id: str = Depends(current_account_id)) -> BalanceResponse:
        balance = await container.ledger_service.get_balance(account_id)
        return BalanceResponse(account_id=account_id, balance=balance)

    @router.get("/transactions", response_model=PaginatedResult)
    async def get_transactions(
        limit: int = Query(default=50, ge=1, le=500),
        offset: int = Query(default=0, ge=0),
        account_id: str = Depends(current_account_id),
    ) -> PaginatedResult:
        return await container.ledger_service.get_history(account_id, limit=limit, offset=offset)

    @router.get("/reconcile", response_model=ReconciliationReport)
    async def reconcile_own(account_id: str = Depends(current_account_id)) -> ReconciliationReport:
        return await container.ledger_service.reconcile(account_id)

    @router.get("/admin/accounts/{account_id}/reconcile", response_model=ReconciliationReport)
    async def reconcile_account(
        account_id: str, admin: AdminCapability = Depends(admin_capability)
    ) -> ReconciliationReport:
        return await container.ledger_service.reconcile(account_id)

    @router.post("/admin/adjust", response_model=LedgerTransaction)
    async def admin_adjust(
        payload: AdminAdjustRequest,
        admin: AdminCapability = Depends(admin_capability),
        request_id: Optional[str] = Depends(correlation_id),
    ) -> LedgerTransaction:
        return await container.ledger_service.admin_adjust(
            admin,
            payload.account_id,
            payload.amount,
            payload.reason,
            correlation_id=request_id,
        )

    # Service offers
    @router.get("/offers", response_model=List[ServiceOffer])
    async def list_offers(available_only: bool = True) -> List[ServiceOffer]:
        return list(await container.offers.list_offers(available_only=available_only))

    @router.get("/offers/{offer_id}", response_model=ServiceOffer)
    async def get_offer(offer_id: str) -> ServiceOffer:
        return await container.offers.get_offer(offer_id)

    @router.post("/admin/offers", response_model=ServiceOffer, status_code=status.HTTP_201_CREATED)
    async def create_offer(
        payload: OfferRequest, admin: AdminCapability = Depends(admin_capability)
    ) -> ServiceOffer:
        return await container.offers.create_offer(admin, ServiceOffer(**payload.model_dump()))

    @router.patch("/admin/offers/{offer_id}", response_model=ServiceOffer)
    async def update_offer(
        offer_id: str,
        payload: OfferUpdateRequest,
        admin: AdminCapability = Depends(admin_capability),
    ) -> ServiceOffer:
        changes = payload.model_dump(exclude_unset=True)
        return await container.offers.update_offer(admin, offer_id, changes)

    @router.delete("/admin/offers/{offer_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_offer(
        offer_id: str, admin: AdminCapability = Depends(admin_capability)
    ) -> None:
        await container.offers.delete_offer(admin, offer_id)

    @router.post("/offers/{offer_id}/purchase", response_model=Receipt)
    async def purchase_offer(
        offer_id: str,
        payload: OfferPurchaseRequest,
        account_id: str = Depends(current_account_id),
        request_id: Optional[str] = Depends(correlation_id),
    ) -> Receipt:
        return await container.purchases.purchase_offer(
            account_id,
            offer_id,
            units=payload.units,
            notes=payload.notes,
            correlation_id=request_id,
        )

    # Projects
    @router.get("/projects/price")
    async def upload_price(expedite_days: int = Query(default=0, ge=0)) -> dict:
        return {
            "expedite_days": expedite_days,
            "cost": container.purchases.upload_price(expedite_days),
        }

    @router.post("/projects", response_model=Receipt, status_code=status.HTTP_201_CREATED)
    async def upload_project(
        title: str = Form(...),
        description: Optional[str] = Form(default=None),
        category: str = Form(default="idea"),
        expedite_days: int = Form(default=0),
        file: UploadFile = File(...),
        account_id: str = Depends(current_account_id),
        request_id: Optional[str] = Depends(correlation_id),
    ) -> Receipt:
        content = await file.read()
        return await container.purchases.upload_project(
            account_id,
            title=title,
            filename=file.filename or "upload",
            content=content,
            description=description,
            category=category,
            content_type=file.content_type,
            expedite_days=expedite_days,
            correlation_id=request_id,
        )

    @router.get("/projects", response_model=List[UploadedProject])
    async def list_projects(account_id: str = Depends(current_account_id)) -> List[UploadedProject]:
        return list(await container.db.list_projects(account_id))

    # Top-ups
    @router.get("/top-up/quote", response_model=TopUpQuote)
    async def top_up_quote(amount: int = Query(..., gt=0)) -> TopUpQuote:
        return TopUpQuote(amount=amount, spark_points=calculate_top_up_points(amount))

    @router.post("/payments", response_model=PaymentSubmission, status_code=status.HTTP_201_CREATED)
    async def submit_payment(
        payload: PaymentSubmitRequest, account_id: str = Depends(current_account_id)
    ) -> PaymentSubmission:
        return await container.payments.submit_payment(
            account_id,
            amount=payload.amount,
            payment_reference=payload.payment_reference,
            currency=payload.currency,
            payment_method=payload.payment_method,
        )

    @router.get("/payments", response_model=List[PaymentSubmission])
    async def list_own_payments(
        account_id: str = Depends(current_account_id),
    ) -> List[PaymentSubmission]:
        return list(await container.payments.list_account_payments(account_id))

    @router.get("/admin/payments", response_model=List[PaymentSubmission])
    async def list_payments(
        verification_status: Optional[VerificationStatus] = Query(default=None, alias="status"),
        admin: AdminCapability = Depends(admin_capability),
    ) -> List[PaymentSubmission]:
        return list(await container.payments.list_payments(admin, verification_status))

    @router.post("/admin/payments/{payment_id}/verify", response_model=PaymentSubmission)
    async def verify_payment(
        payment_id: str, admin: AdminCapability = Depends(admin_capability)
    ) -> PaymentSubmission:
        return await container.payments.verify_payment(admin, payment_id)

    @router.post("/admin/payments/{payment_id}/reject", response_model=PaymentSubmission)
    async def reject_payment(
        payment_id: str,
        payload: PaymentRejectRequest,
        admin: AdminCapability = Depends(admin_capability),
    ) -> PaymentSubmission:
        return await container.payments.reject_payment(admin, payment_id, payload.reason)

    # Notifications
    @router.get("/notifications", response_model=List[Notification])
    async def list_notifications(
        unread_only: bool = False, account_id: str = Depends(current_account_id)
    ) -> List[Notification]:
        return list(
            await container.notifications.list_notifications(account_id, unread_only=unread_only)
        )

    @router.post("/notifications/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
    async def mark_notification_read(
        notification_id: str, account_id: str = Depends(current_account_id)
    ) -> None:
        await container.notifications.mark_read(account_id, notification_id)

    return router
