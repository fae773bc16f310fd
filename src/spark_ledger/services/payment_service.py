from __future__ import annotations

from typing import Iterable, Optional

from ..db.base import BaseDBManager
from ..errors import InvalidTransition, NotFound
from ..logging.ledger_logger import LedgerLogger
from ..models.account import AdminCapability
from ..models.base import utcnow
from ..models.notification import NotificationType
from ..models.payment import PaymentStatus, PaymentSubmission, VerificationStatus
from ..models.transaction import TransactionKind
from .ledger_service import LedgerService
from .notification_service import NotificationService


# (minimum amount, bonus percent), highest tier first
TOP_UP_BONUS_TIERS: tuple[tuple[int, int], ...] = (
    (1000, 5),
    (500, 4),
    (100, 3),
)


def calculate_top_up_points(amount: int) -> int:
    """
    Points credited for a top-up of `amount`, bonus included.

    >>> calculate_top_up_points(99), calculate_top_up_points(500), calculate_top_up_points(1000)
    (99, 520, 1050)
    """
    if amount < 0:
        raise ValueError("amount must not be negative")
    for minimum, bonus_percent in TOP_UP_BONUS_TIERS:
        if amount >= minimum:
            return amount * (100 + bonus_percent) // 100
    return amount


class PaymentService:
    """
    Manual top-up workflow.

    A user submits the reference of a payment made out of band; an admin then
    verifies it (crediting the points) or rejects it with a reason. Both
    transitions are terminal.
    """

    def __init__(
        self,
        db: BaseDBManager,
        ledger: LedgerLogger,
        ledger_service: LedgerService,
        notifications: NotificationService,
        default_currency: str = "INR",
    ) -> None:
        self._db = db
        self._ledger = ledger
        self._ledger_service = ledger_service
        self._notifications = notifications
        self._default_currency = default_currency

    async def submit_payment(
        self,
        account_id: str,
        amount: int,
        payment_reference: str,
        currency: str | None = None,
        payment_method: str = "upi",
    ) -> PaymentSubmission:
        if amount <= 0:
            raise ValueError("amount must be positive")
        payment_reference = (payment_reference or "").strip()
        if not payment_reference:
            raise ValueError("a payment reference is required")
        if await self._db.get_account(account_id) is None:
            raise NotFound(f"account {account_id} not found")

        payment = await self._db.add_payment(
            PaymentSubmission(
                account_id=account_id,
                amount=amount,
                currency=currency or self._default_currency,
                spark_points=calculate_top_up_points(amount),
                payment_method=payment_method,
                payment_reference=payment_reference,
            )
        )

        await self._ledger.log_transaction(
            account_id=account_id,
            message="Top-up submitted",
            details={
                "payment_id": payment.id,
                "amount": amount,
                "spark_points": payment.spark_points,
                "reference": payment_reference,
            },
        )
        await self._notifications.notify(
            account_id,
            title="Payment Submitted",
            message=(
                "Your payment is under review. Spark Points will be added to your "
                "account after verification."
            ),
            notification_type=NotificationType.INFO,
            dedupe_key=f"payment:{payment.id}:submitted",
        )
        return payment

    async def verify_payment(
        self, admin: AdminCapability, payment_id: str
    ) -> PaymentSubmission:
        """
        unverified -> verified. The status change and the credit commit
        together, so a payment can never be credited twice.
        """
        async def verify() -> PaymentSubmission:
            verified = await self._transition(
                payment_id,
                {
                    "verification_status": VerificationStatus.VERIFIED,
                    "status": PaymentStatus.COMPLETED,
                    "verified_by": admin.admin_id,
                    "verified_at": utcnow(),
                },
            )
            await self._ledger_service.credit(
                verified.account_id,
                verified.spark_points,
                description=f"Top-up of {verified.amount} {verified.currency} verified",
                kind=TransactionKind.EARN,
                reference_id=verified.id,
            )
            return verified

        payment = await self._db.run_in_transaction(verify)

        await self._ledger.log_system(
            message="Top-up verified",
            details={"admin_id": admin.admin_id, "payment_id": payment.id},
            account_id=payment.account_id,
        )
        await self._notifications.notify(
            payment.account_id,
            title="Payment Verified",
            message=f"{payment.spark_points} Spark Points have been added to your account.",
            notification_type=NotificationType.SUCCESS,
            dedupe_key=f"payment:{payment.id}:verified",
        )
        return payment

    async def reject_payment(
        self, admin: AdminCapability, payment_id: str, reason: str
    ) -> PaymentSubmission:
        """unverified -> rejected. A non-empty reason is mandatory."""
        reason = (reason or "").strip()
        if not reason:
            raise ValueError("a rejection reason is required")

        payment = await self._transition(
            payment_id,
            {
                "verification_status": VerificationStatus.REJECTED,
                "status": PaymentStatus.FAILED,
                "verified_by": admin.admin_id,
                "verified_at": utcnow(),
                "rejection_reason": reason,
            },
        )

        await self._ledger.log_system(
            message="Top-up rejected",
            details={"admin_id": admin.admin_id, "payment_id": payment.id, "reason": reason},
            account_id=payment.account_id,
        )
        await self._notifications.notify(
            payment.account_id,
            title="Payment Verification Failed",
            message=reason,
            notification_type=NotificationType.ERROR,
            dedupe_key=f"payment:{payment.id}:rejected",
        )
        return payment

    async def get_payment(self, payment_id: str) -> PaymentSubmission:
        payment = await self._db.get_payment(payment_id)
        if payment is None:
            raise NotFound(f"payment {payment_id} not found")
        return payment

    async def list_payments(
        self,
        admin: AdminCapability,
        verification_status: Optional[VerificationStatus] = None,
    ) -> Iterable[PaymentSubmission]:
        return await self._db.list_payments(verification_status=verification_status)

    async def list_account_payments(self, account_id: str) -> Iterable[PaymentSubmission]:
        return await self._db.list_payments(account_id=account_id)

    async def _transition(self, payment_id: str, fields: dict) -> PaymentSubmission:
        payment = await self._db.transition_payment(
            payment_id, VerificationStatus.UNVERIFIED, fields
        )
        if payment is None:
            current = await self._db.get_payment(payment_id)
            if current is None:
                raise NotFound(f"payment {payment_id} not found")
            raise InvalidTransition(
                f"payment {payment_id} is already {current.verification_status.value}"
            )
        return payment
