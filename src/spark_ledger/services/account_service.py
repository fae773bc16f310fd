from __future__ import annotations

import logging
import re
import secrets
from typing import Iterable, Optional

from ..db.base import BaseDBManager
from ..errors import InvalidTransition, NotFound, Unauthorized
from ..logging.ledger_logger import LedgerLogger
from ..models.account import Account, AdminCapability, Role
from ..models.transaction import TransactionKind
from .ledger_service import LedgerService


logger = logging.getLogger(__name__)

_REFERRAL_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_referral_code(username: str) -> str:
    """Four letters of the username followed by six random characters."""
    prefix = re.sub(r"[^A-Za-z0-9]", "", username).upper()[:4] or "MPA"
    suffix = "".join(secrets.choice(_REFERRAL_ALPHABET) for _ in range(6))
    return f"{prefix}{suffix}"


class AccountService:
    """
    Account lifecycle: lazy creation on first sign-in, roles, referrals.

    The signup grant and referral bonuses are posted through the ledger so the
    stored balance always matches the transaction log.
    """

    def __init__(
        self,
        db: BaseDBManager,
        ledger: LedgerLogger,
        ledger_service: LedgerService,
        signup_points: int = 10,
        admin_signup_points: int = 1000,
        admin_emails: Iterable[str] = (),
        referral_bonus: int = 10,
    ) -> None:
        self._db = db
        self._ledger = ledger
        self._ledger_service = ledger_service
        self._signup_points = signup_points
        self._admin_signup_points = admin_signup_points
        self._admin_emails = {e.strip().lower() for e in admin_emails if e.strip()}
        self._referral_bonus = referral_bonus

    async def ensure_account(
        self,
        account_id: str,
        username: str,
        email: str | None = None,
        display_name: str | None = None,
    ) -> Account:
        """
        Return the account, creating it with the signup grant if absent.
        """
        existing = await self._db.get_account(account_id)
        if existing is not None:
            return existing

        is_admin = email is not None and email.strip().lower() in self._admin_emails
        role = Role.ADMIN if is_admin else Role.USER
        grant = self._admin_signup_points if is_admin else self._signup_points

        async def create() -> bool:
            # Re-check under the transaction; a concurrent sign-in may have won
            if await self._db.get_account(account_id) is not None:
                return False

            account = Account(
                id=account_id,
                username=username,
                display_name=display_name or username,
                email=email,
                role=role,
                referral_code=await self._unique_referral_code(username),
            )
            await self._db.add_account(account)
            if grant > 0:
                await self._ledger_service.credit(
                    account_id,
                    grant,
                    description="Signup bonus",
                    kind=TransactionKind.EARN,
                )
            return True

        if not await self._db.run_in_transaction(create):
            return await self.get_account(account_id)

        await self._ledger.log_system(
            message="Account created",
            details={"role": role.value, "signup_points": grant},
            account_id=account_id,
        )
        return await self.get_account(account_id)

    async def get_account(self, account_id: str) -> Account:
        account = await self._db.get_account(account_id)
        if account is None:
            raise NotFound(f"account {account_id} not found")
        return account

    async def require_admin(self, account_id: str) -> AdminCapability:
        """
        Single authorization check for privileged operations.

        Returns a capability to pass to admin-only service methods.
        """
        account = await self._db.get_account(account_id)
        if account is None or not account.is_admin:
            await self._ledger.log_error(
                message="Admin capability refused",
                details={},
                account_id=account_id,
            )
            raise Unauthorized("admin role required")
        return AdminCapability(admin_id=account_id)

    async def set_role(
        self, admin: AdminCapability, account_id: str, role: Role
    ) -> Account:
        if account_id == admin.admin_id and role != Role.ADMIN:
            raise InvalidTransition("admins cannot demote themselves")
        account = await self._db.update_account_fields(account_id, {"role": role})
        if account is None:
            raise NotFound(f"account {account_id} not found")
        await self._ledger.log_system(
            message="Role changed",
            details={"admin_id": admin.admin_id, "role": role.value},
            account_id=account_id,
        )
        return account

    async def apply_referral_code(self, account_id: str, code: str) -> Account:
        """
        Redeem another account's referral code once. Both the new account and
        the referrer earn the referral bonus.
        """
        code = (code or "").strip().upper()
        if not code:
            raise ValueError("referral code is required")

        async def redeem() -> None:
            account = await self.get_account(account_id)
            if account.referred_by:
                raise InvalidTransition("a referral code was already applied")

            referrer = await self._db.get_account_by_referral_code(code)
            if referrer is None:
                raise NotFound("referral code does not exist")
            if referrer.id == account_id:
                raise ValueError("you cannot use your own referral code")

            await self._db.update_account_fields(account_id, {"referred_by": referrer.id})
            if self._referral_bonus > 0:
                await self._ledger_service.credit(
                    account_id,
                    self._referral_bonus,
                    description=f"Referral bonus: joined with code {code}",
                    reference_id=referrer.id,
                )
                await self._ledger_service.credit(
                    referrer.id,  # type: ignore[arg-type]
                    self._referral_bonus,
                    description=f"Referral bonus: {account.username} joined",
                    reference_id=account_id,
                )

        await self._db.run_in_transaction(redeem)
        return await self.get_account(account_id)

    async def _unique_referral_code(self, username: str) -> str:
        for _ in range(10):
            code = generate_referral_code(username)
            if await self._db.get_account_by_referral_code(code) is None:
                return code
        raise RuntimeError("could not allocate a unique referral code")
