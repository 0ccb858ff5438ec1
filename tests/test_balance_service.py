"""Balance engine: conservation, no negative balance, atomic ledger pairing."""

import pytest

from viewswap.core.exceptions import InsufficientFundsError, InvalidParametersError, NotFoundError

pytestmark = pytest.mark.asyncio


async def test_signup_grants_welcome_bonus_through_ledger(db):
    from viewswap.services import accounts as accounts_service
    from viewswap.services import balance as balance_service
    account, created = await accounts_service.ensure_account("user-a")
    assert created
    assert account.balance == 100
    assert await balance_service.ledger_sum("user-a") == 100
    # Second contact does not grant again
    again, created_again = await accounts_service.ensure_account("user-a")
    assert not created_again
    assert again.balance == 100


async def test_apply_delta_credit_and_debit(make_account):
    from viewswap.services import balance as balance_service
    await make_account("user-a", 100)
    change = await balance_service.apply_delta("user-a", -40, "promotion_debit")
    assert change.new_balance == 60
    assert change.entry.amount == -40
    assert change.entry.balance_after == 60
    change = await balance_service.apply_delta("user-a", 15, "purchase")
    assert change.new_balance == 75
    assert await balance_service.get_balance("user-a") == 75
    assert await balance_service.ledger_sum("user-a") == 75


async def test_debit_beyond_balance_is_rejected_without_mutation(make_account):
    from viewswap.models.ledger_entry import LedgerEntry
    from viewswap.services import balance as balance_service
    await make_account("user-a", 30)
    entries_before = await LedgerEntry.find(LedgerEntry.account_id == "user-a").count()
    with pytest.raises(InsufficientFundsError) as exc:
        await balance_service.apply_delta("user-a", -31, "promotion_debit")
    assert exc.value.balance == 30
    assert exc.value.required == 31
    assert await balance_service.get_balance("user-a") == 30
    assert await LedgerEntry.find(LedgerEntry.account_id == "user-a").count() == entries_before


async def test_debit_to_exactly_zero_is_allowed(make_account):
    from viewswap.services import balance as balance_service
    await make_account("user-a", 30)
    change = await balance_service.apply_delta("user-a", -30, "promotion_debit")
    assert change.new_balance == 0


async def test_invalid_reason_and_amount(make_account):
    from viewswap.services import balance as balance_service
    await make_account("user-a", 30)
    with pytest.raises(InvalidParametersError):
        await balance_service.apply_delta("user-a", 5, "free_money")
    with pytest.raises(InvalidParametersError):
        await balance_service.apply_delta("user-a", 0, "purchase")


async def test_unknown_account(db):
    from viewswap.services import balance as balance_service
    with pytest.raises(NotFoundError):
        await balance_service.apply_delta("ghost", 5, "purchase")
    with pytest.raises(NotFoundError):
        await balance_service.get_balance("ghost")


async def test_idempotency_key_applies_once(make_account):
    from viewswap.services import balance as balance_service
    await make_account("user-a", 0)
    first = await balance_service.apply_delta("user-a", 100, "purchase", idempotency_key="pay_1")
    second = await balance_service.apply_delta("user-a", 100, "purchase", idempotency_key="pay_1")
    assert second.duplicate
    assert first.entry.id == second.entry.id
    assert await balance_service.get_balance("user-a") == 100


async def test_failed_ledger_append_reverts_balance(make_account, monkeypatch):
    from viewswap.models.ledger_entry import LedgerEntry
    from viewswap.services import balance as balance_service
    await make_account("user-a", 50)

    async def broken_insert(self, *args, **kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(LedgerEntry, "insert", broken_insert)
    with pytest.raises(RuntimeError):
        await balance_service.apply_delta("user-a", -20, "promotion_debit")
    monkeypatch.undo()
    assert await balance_service.get_balance("user-a") == 50
    assert await balance_service.ledger_sum("user-a") == 50


async def test_history_hides_watch_rewards_by_default(make_account):
    from viewswap.services import balance as balance_service
    await make_account("user-a", 0)
    await balance_service.apply_delta("user-a", 10, "watch_reward")
    await balance_service.apply_delta("user-a", 50, "purchase")
    feed = await balance_service.list_history("user-a")
    assert all(e.reason != "watch_reward" for e in feed)
    assert any(e.reason == "purchase" for e in feed)
    full = await balance_service.list_history("user-a", include_rewards=True)
    assert any(e.reason == "watch_reward" for e in full)


async def test_verify_integrity_reports_mismatch(make_account):
    from viewswap.models.account import Account
    from viewswap.services import balance as balance_service
    await make_account("user-a", 70)
    await make_account("user-b", 20)
    report = await balance_service.verify_integrity()
    assert report["status"] == "passed"
    assert report["accounts_checked"] == 2
    # Tamper with a balance outside the engine
    await Account.get_motor_collection().update_one({"user_id": "user-b"}, {"$inc": {"balance": 5}})
    report = await balance_service.verify_integrity()
    assert report["status"] == "failed"
    assert report["mismatches"] == [{"account_id": "user-b", "balance": 25, "ledger_sum": 20}]


async def test_purchase_vip(make_account):
    from viewswap.services import accounts as accounts_service
    await make_account("user-a", 600)
    out = await accounts_service.purchase_vip("user-a")
    assert out["new_balance"] == 100
    account = await accounts_service.get_account("user-a")
    assert account.is_vip()
    with pytest.raises(InsufficientFundsError):
        await accounts_service.purchase_vip("user-a")


async def test_credit_coins_reason_rules(make_account):
    from viewswap.services import accounts as accounts_service
    await make_account("user-a", 10)
    out = await accounts_service.credit_coins("user-a", 25, "purchase", idempotency_key="pay_9")
    assert out["new_balance"] == 35
    dup = await accounts_service.credit_coins("user-a", 25, "purchase", idempotency_key="pay_9")
    assert dup["duplicate"]
    with pytest.raises(InvalidParametersError):
        await accounts_service.credit_coins("user-a", 25, "watch_reward")
    with pytest.raises(InvalidParametersError):
        await accounts_service.credit_coins("user-a", -5, "purchase")
    out = await accounts_service.credit_coins("user-a", -5, "admin_adjustment")
    assert out["new_balance"] == 30


async def test_concurrent_credits_with_one_key_apply_once(make_account, interleaved):
    import asyncio

    from viewswap.services import accounts as accounts_service
    from viewswap.services import balance as balance_service
    await make_account("buyer", 0)
    results = await asyncio.gather(
        *[accounts_service.credit_coins("buyer", 100, "purchase", idempotency_key="pay_1") for _ in range(3)]
    )
    assert [r["duplicate"] for r in results].count(False) == 1
    assert len({r["entry_id"] for r in results}) == 1
    assert await balance_service.get_balance("buyer") == 100
    assert await balance_service.ledger_sum("buyer") == 100


async def test_concurrent_debits_never_overdraw(make_account, interleaved):
    import asyncio

    from viewswap.services import balance as balance_service
    await make_account("user-a", 100)
    results = await asyncio.gather(
        *[balance_service.apply_delta("user-a", -30, "promotion_debit") for _ in range(5)],
        return_exceptions=True,
    )
    applied = [r for r in results if isinstance(r, balance_service.BalanceChange)]
    rejected = [r for r in results if isinstance(r, InsufficientFundsError)]
    assert len(applied) == 3
    assert len(rejected) == 2
    assert sorted(c.new_balance for c in applied) == [10, 40, 70]
    assert await balance_service.get_balance("user-a") == 10
    assert await balance_service.ledger_sum("user-a") == 10


async def test_signup_bonus_granted_after_interrupted_signup(db):
    from viewswap.models.account import Account
    from viewswap.services import accounts as accounts_service
    from viewswap.services import balance as balance_service
    # Account row written but the bonus never applied
    await Account(user_id="late").insert()
    account, created = await accounts_service.ensure_account("late")
    assert not created
    assert account.balance == 100
    again, _ = await accounts_service.ensure_account("late")
    assert again.balance == 100
    assert await balance_service.ledger_sum("late") == 100
