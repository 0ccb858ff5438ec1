"""Balance engine: atomic balance updates paired with ledger entries."""

from dataclasses import dataclass
from datetime import datetime
from typing import get_args

from beanie import PydanticObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from viewswap.core.exceptions import InsufficientFundsError, InvalidParametersError, NotFoundError
from viewswap.core.logging import get_logger
from viewswap.models.account import Account
from viewswap.models.ledger_entry import LedgerEntry, LedgerReason, dedupe_key_for

log = get_logger(__name__)

REASONS = get_args(LedgerReason)

# Left out of the user-visible activity feed; visible only through the balance
FEED_HIDDEN_REASONS = ("watch_reward",)


@dataclass
class BalanceChange:
    entry: LedgerEntry
    new_balance: int
    duplicate: bool = False


async def get_balance(account_id: str) -> int:
    """Return current balance; NotFoundError if the account does not exist."""
    account = await Account.find_one(Account.user_id == account_id)
    if not account:
        raise NotFoundError("Account not found")
    return account.balance


async def _reverse(accounts, account_id: str, amount: int) -> None:
    await accounts.update_one(
        {"user_id": account_id},
        {"$inc": {"balance": -amount, "version": 1}},
    )


async def apply_delta(
    account_id: str,
    amount: int,
    reason: str,
    promotion_id: PydanticObjectId | None = None,
    description: str = "",
    idempotency_key: str | None = None,
    session=None,
) -> BalanceChange:
    """
    Atomically add ``amount`` to the balance and append the matching ledger entry.

    The balance update is a single conditional ``$inc``: for debits the filter
    requires ``balance >= -amount``, so concurrent calls serialize on the
    document and the balance can never go negative. Inside a transaction
    (``session`` given) the ledger insert commits or aborts with it; without one
    a failed insert reverses the increment before re-raising.

    An ``idempotency_key`` is applied at most once per account. Calls racing
    with the same key can all pass the lookup, but the unique ``dedupe_key``
    admits one entry; the others reverse their increment and return that
    entry as a duplicate.
    """
    if reason not in REASONS:
        raise InvalidParametersError(f"Invalid reason: {reason}")
    if not isinstance(amount, int) or amount == 0:
        raise InvalidParametersError("Amount must be a non-zero integer")

    entry_id = PydanticObjectId()
    dedupe_key = dedupe_key_for(account_id, idempotency_key, entry_id)
    if idempotency_key:
        existing = await LedgerEntry.find_one(LedgerEntry.dedupe_key == dedupe_key, session=session)
        if existing:
            return BalanceChange(existing, existing.balance_after, duplicate=True)

    accounts = Account.get_motor_collection()
    query: dict = {"user_id": account_id}
    if amount < 0:
        query["balance"] = {"$gte": -amount}
    now = datetime.utcnow()
    doc = await accounts.find_one_and_update(
        query,
        {"$inc": {"balance": amount, "version": 1}, "$set": {"updated_at": now}},
        return_document=ReturnDocument.AFTER,
        session=session,
    )
    if doc is None:
        current = await accounts.find_one({"user_id": account_id}, session=session)
        if current is None:
            raise NotFoundError("Account not found")
        log.info(
            "balance_rejected",
            account_id=account_id,
            amount=amount,
            reason=reason,
            balance=current["balance"],
        )
        raise InsufficientFundsError(balance=current["balance"], required=-amount)

    entry = LedgerEntry(
        id=entry_id,
        account_id=account_id,
        amount=amount,
        balance_after=doc["balance"],
        reason=reason,
        promotion_id=promotion_id,
        description=description,
        idempotency_key=idempotency_key,
        dedupe_key=dedupe_key,
        created_at=now,
    )
    try:
        await entry.insert(session=session)
    except DuplicateKeyError:
        if session is not None:
            # The transaction aborts and takes the increment with it
            raise
        await _reverse(accounts, account_id, amount)
        winner = await LedgerEntry.find_one(LedgerEntry.dedupe_key == dedupe_key)
        log.info("balance_duplicate_key", account_id=account_id, idempotency_key=idempotency_key)
        return BalanceChange(winner, winner.balance_after, duplicate=True)
    except Exception:
        if session is None:
            await _reverse(accounts, account_id, amount)
        log.exception("ledger_append_failed", account_id=account_id, amount=amount, reason=reason)
        raise

    log.info(
        "balance_applied",
        account_id=account_id,
        amount=amount,
        reason=reason,
        balance_after=doc["balance"],
        promotion_id=str(promotion_id) if promotion_id else None,
    )
    return BalanceChange(entry, doc["balance"])


async def list_history(
    account_id: str,
    limit: int = 50,
    offset: int = 0,
    include_rewards: bool = False,
) -> list[LedgerEntry]:
    """Ledger entries for an account, newest first. Watch rewards are hidden unless asked for."""
    filters = [LedgerEntry.account_id == account_id]
    if not include_rewards:
        filters.append({"reason": {"$nin": list(FEED_HIDDEN_REASONS)}})
    return (
        await LedgerEntry.find(*filters)
        .sort(-LedgerEntry.created_at)
        .skip(offset)
        .limit(limit)
        .to_list()
    )


async def ledger_sum(account_id: str) -> int:
    entries = await LedgerEntry.find(LedgerEntry.account_id == account_id).to_list()
    return sum(e.amount for e in entries)


async def verify_integrity(account_id: str | None = None) -> dict:
    """Compare every balance (or one) with the sum of its ledger entries. Read-only."""
    if account_id:
        accounts = await Account.find(Account.user_id == account_id).to_list()
    else:
        accounts = await Account.find_all().to_list()
    mismatches = []
    for account in accounts:
        total = await ledger_sum(account.user_id)
        if total != account.balance:
            mismatches.append({"account_id": account.user_id, "balance": account.balance, "ledger_sum": total})
    if mismatches:
        log.warning("ledger_integrity_failed", mismatched=len(mismatches))
    return {
        "accounts_checked": len(accounts),
        "mismatched_accounts": len(mismatches),
        "mismatches": mismatches,
        "status": "passed" if not mismatches else "failed",
    }
