"""Account signup, VIP membership and externally-sourced credits."""

from datetime import datetime, timedelta

from pymongo.errors import DuplicateKeyError

from viewswap.core.audit import log_event
from viewswap.core.config import get_settings
from viewswap.core.exceptions import InvalidParametersError, NotFoundError
from viewswap.core.logging import get_logger
from viewswap.db.transactions import run_in_transaction
from viewswap.models.account import Account
from viewswap.models.ledger_entry import LedgerEntry, dedupe_key_for
from viewswap.services import balance as balance_service

log = get_logger(__name__)

SIGNUP_BONUS_KEY = "signup_bonus"


async def get_account(user_id: str) -> Account:
    account = await Account.find_one(Account.user_id == user_id)
    if not account:
        raise NotFoundError("Account not found")
    return account


async def _has_signup_bonus(user_id: str) -> bool:
    key = dedupe_key_for(user_id, SIGNUP_BONUS_KEY)
    return await LedgerEntry.find_one(LedgerEntry.dedupe_key == key) is not None


async def ensure_account(user_id: str, display_name: str = "") -> tuple[Account, bool]:
    """
    Create the account on first contact from the identity provider.
    Returns (account, created). The welcome coins go through the ledger with an
    idempotency key, so a retried signup never grants them twice.
    """
    user_id = (user_id or "").strip()
    if not user_id:
        raise InvalidParametersError("user_id required")
    created = False
    account = await Account.find_one(Account.user_id == user_id)
    if account is None:
        try:
            account = Account(user_id=user_id, display_name=display_name)
            await account.insert()
            created = True
        except DuplicateKeyError:
            account = await get_account(user_id)
    bonus = get_settings().signup_bonus_coins
    # Also covers a signup that stopped between the insert and the bonus
    if bonus > 0 and not await _has_signup_bonus(user_id):
        await balance_service.apply_delta(
            user_id,
            bonus,
            "admin_adjustment",
            description="Welcome bonus",
            idempotency_key=SIGNUP_BONUS_KEY,
        )
        account = await get_account(user_id)
    if created:
        log.info("account_created", user_id=user_id, bonus=bonus)
    return account, created


async def purchase_vip(user_id: str, now: datetime | None = None) -> dict:
    """Spend VIP_PRICE_COINS for VIP_DURATION_DAYS; extends an active membership."""
    settings = get_settings()
    now = now or datetime.utcnow()
    account = await get_account(user_id)
    start = account.vip_expires_at if account.is_vip(now) and account.vip_expires_at else now
    expires_at = start + timedelta(days=settings.vip_duration_days)

    async def work(session):
        change = await balance_service.apply_delta(
            user_id,
            -settings.vip_price_coins,
            "vip_purchase",
            description=f"VIP membership ({settings.vip_duration_days} days)",
            session=session,
        )
        try:
            await Account.get_motor_collection().update_one(
                {"user_id": user_id},
                {"$set": {"vip_active": True, "vip_expires_at": expires_at, "updated_at": now}},
                session=session,
            )
        except Exception:
            if session is None:
                await balance_service.apply_delta(
                    user_id, settings.vip_price_coins, "admin_adjustment", description="VIP purchase reversal"
                )
            raise
        return change

    change = await run_in_transaction(work, name="purchase_vip")
    await log_event(user_id, "vip_purchased", "account", user_id, {"expires_at": expires_at.isoformat()})
    return {"vip_expires_at": expires_at, "new_balance": change.new_balance, "cost": settings.vip_price_coins}


async def credit_coins(
    user_id: str,
    amount: int,
    reason: str,
    description: str = "",
    idempotency_key: str | None = None,
    actor_id: str | None = None,
) -> dict:
    """
    Ledger credit from outside the watch/promote loop: coin purchases confirmed
    by the payment processor, referral bonuses, admin adjustments (which may be
    negative). Purchases should carry the processor's payment id as the key.
    """
    if reason not in ("purchase", "referral_bonus", "admin_adjustment"):
        raise InvalidParametersError(f"Reason not allowed for manual credits: {reason}")
    if reason != "admin_adjustment" and amount <= 0:
        raise InvalidParametersError("Amount must be positive")
    await get_account(user_id)
    change = await balance_service.apply_delta(
        user_id,
        amount,
        reason,
        description=description,
        idempotency_key=idempotency_key,
    )
    if not change.duplicate:
        await log_event(
            actor_id,
            "coins_credited",
            "account",
            user_id,
            {"amount": amount, "reason": reason, "entry_id": str(change.entry.id)},
        )
    return {
        "entry_id": str(change.entry.id),
        "new_balance": change.new_balance,
        "duplicate": change.duplicate,
    }
