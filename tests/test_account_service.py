from __future__ import annotations

import pytest

from conftest import ADMIN_EMAIL, make_admin, make_container
from spark_ledger.errors import InvalidTransition, NotFound, Unauthorized
from spark_ledger.models.account import Role
from spark_ledger.models.ledger import LedgerEventType
from spark_ledger.services.account_service import generate_referral_code


def test_generate_referral_code():
    code = generate_referral_code("asha.k")
    assert code.startswith("ASHA")
    assert len(code) == 10
    assert generate_referral_code("__")[:3] == "MPA"


@pytest.mark.asyncio
async def test_first_sign_in_creates_account_with_grant(tmp_path):
    container = make_container(tmp_path, SIGNUP_POINTS=10)

    account = await container.accounts.ensure_account("user-1", username="asha")
    assert account.role == Role.USER
    assert account.balance == 10
    assert account.display_name == "asha"
    assert account.referral_code

    again = await container.accounts.ensure_account("user-1", username="asha")
    assert again.balance == 10
    assert len(list(await container.db.get_transactions("user-1"))) == 1
    assert (await container.ledger_service.reconcile("user-1")).consistent


@pytest.mark.asyncio
async def test_admin_email_gets_admin_role(tmp_path):
    container = make_container(tmp_path)

    account = await container.accounts.ensure_account(
        "admin-1", username="ops", email=ADMIN_EMAIL.upper()
    )
    assert account.role == Role.ADMIN
    assert account.balance == 1000

    capability = await container.accounts.require_admin("admin-1")
    assert capability.admin_id == "admin-1"


@pytest.mark.asyncio
async def test_require_admin_refuses_users(tmp_path):
    container = make_container(tmp_path)
    await container.accounts.ensure_account("user-1", username="asha")

    with pytest.raises(Unauthorized):
        await container.accounts.require_admin("user-1")
    with pytest.raises(Unauthorized):
        await container.accounts.require_admin("missing")

    errors = [
        e
        for e in await container.db.get_ledger_entries("user-1")
        if e.event_type == LedgerEventType.ERROR
    ]
    assert [e.message for e in errors] == ["Admin capability refused"]


@pytest.mark.asyncio
async def test_set_role(tmp_path):
    container = make_container(tmp_path)
    admin = await make_admin(container)
    await container.accounts.ensure_account("user-1", username="asha")

    promoted = await container.accounts.set_role(admin, "user-1", Role.EMPLOYEE)
    assert promoted.role == Role.EMPLOYEE

    with pytest.raises(InvalidTransition):
        await container.accounts.set_role(admin, admin.admin_id, Role.USER)
    with pytest.raises(NotFound):
        await container.accounts.set_role(admin, "missing", Role.USER)


@pytest.mark.asyncio
async def test_referral_credits_both_parties(tmp_path):
    container = make_container(tmp_path, REFERRAL_BONUS=10)
    referrer = await container.accounts.ensure_account("user-1", username="asha")
    await container.accounts.ensure_account("user-2", username="ravi")

    account = await container.accounts.apply_referral_code("user-2", referrer.referral_code.lower())

    assert account.referred_by == "user-1"
    assert account.balance == 10
    assert await container.ledger_service.get_balance("user-1") == 10

    with pytest.raises(InvalidTransition):
        await container.accounts.apply_referral_code("user-2", referrer.referral_code)
    assert await container.ledger_service.get_balance("user-1") == 10


@pytest.mark.asyncio
async def test_referral_code_rules(tmp_path):
    container = make_container(tmp_path)
    own = await container.accounts.ensure_account("user-1", username="asha")

    with pytest.raises(ValueError):
        await container.accounts.apply_referral_code("user-1", "")
    with pytest.raises(NotFound):
        await container.accounts.apply_referral_code("user-1", "NOPE000000")
    with pytest.raises(ValueError):
        await container.accounts.apply_referral_code("user-1", own.referral_code)

    account = await container.accounts.get_account("user-1")
    assert account.referred_by is None
    assert account.balance == 0
