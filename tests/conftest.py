from __future__ import annotations

import pytest

from spark_ledger.api.router import ServiceContainer, build_container
from spark_ledger.config import Settings
from spark_ledger.db.memory import InMemoryDBManager
from spark_ledger.models.transaction import TransactionKind
from spark_ledger.storage.memory import InMemoryFileStorage


ADMIN_EMAIL = "admin@example.com"


def make_settings(**overrides) -> Settings:
    values = dict(
        MONGO_URI=None,
        SIGNUP_POINTS=0,
        ADMIN_SIGNUP_POINTS=1000,
        ADMIN_EMAILS=[ADMIN_EMAIL],
        UPLOAD_COST=5,
        EXPEDITE_COST_PER_DAY=2,
        REFERRAL_BONUS=10,
        ADMIN_ADJUST_LIMIT=10000,
    )
    values.update(overrides)
    return Settings(**values)


def make_container(tmp_path, db: InMemoryDBManager | None = None, **overrides) -> ServiceContainer:
    return build_container(
        config=make_settings(**overrides),
        db=db or InMemoryDBManager(),
        storage=InMemoryFileStorage(),
        ledger_log_path=tmp_path / "ledger.log",
    )


async def make_account(container: ServiceContainer, account_id: str, balance: int = 0):
    """Create an account and fund it through the ledger so the log matches."""
    account = await container.accounts.ensure_account(account_id, username=account_id)
    delta = balance - account.balance
    if delta:
        await container.ledger_service.adjust_balance(
            account_id, delta, description="Test funding", kind=TransactionKind.EARN
        )
    return await container.accounts.get_account(account_id)


async def make_admin(container: ServiceContainer, account_id: str = "admin-1"):
    await container.accounts.ensure_account(account_id, username=account_id, email=ADMIN_EMAIL)
    return await container.accounts.require_admin(account_id)


@pytest.fixture
def container(tmp_path) -> ServiceContainer:
    return make_container(tmp_path)
