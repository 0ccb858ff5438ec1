import hmac

from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel, Field

from viewswap.core.config import get_settings
from viewswap.core.exceptions import ForbiddenError
from viewswap.core.pagination import page_of, paginate
from viewswap.core.security import create_identity_token
from viewswap.deps import get_current_account
from viewswap.models.account import Account
from viewswap.services import accounts as accounts_service
from viewswap.services import balance as balance_service

router = APIRouter()


class SessionRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=128)
    display_name: str = Field(default="", max_length=64)


def _account_out(account: Account) -> dict:
    return {
        "user_id": account.user_id,
        "display_name": account.display_name,
        "balance": account.balance,
        "vip_active": account.is_vip(),
        "vip_expires_at": account.vip_expires_at,
    }


@router.post("/session")
async def open_session(
    body: SessionRequest,
    identity_key: str = Header(..., alias="X-Identity-Key"),
):
    """Identity-provider bridge: ensure the account exists and issue a bearer token."""
    expected = get_settings().identity_bridge_key
    if not expected or not hmac.compare_digest(expected, identity_key):
        raise ForbiddenError("Invalid identity bridge key")
    account, created = await accounts_service.ensure_account(body.user_id, body.display_name)
    return {
        "token": create_identity_token(account.user_id),
        "created": created,
        "account": _account_out(account),
    }


@router.get("/me")
async def accounts_me(account: Account = Depends(get_current_account)):
    return _account_out(account)


@router.get("/balance")
async def accounts_balance(account: Account = Depends(get_current_account)):
    """Return current coin balance."""
    return {"balance": await balance_service.get_balance(account.user_id)}


@router.get("/history")
async def accounts_history(
    account: Account = Depends(get_current_account),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Ledger entries for the activity feed, newest first; watch rewards are left out."""
    limit, offset = paginate(limit, offset)
    entries = await balance_service.list_history(account.user_id, limit + 1, offset)
    rows = [
        {
            "id": str(e.id),
            "amount": e.amount,
            "balance_after": e.balance_after,
            "reason": e.reason,
            "promotion_id": str(e.promotion_id) if e.promotion_id else None,
            "description": e.description,
            "created_at": e.created_at.isoformat(),
        }
        for e in entries
    ]
    return page_of(rows, limit, offset)


@router.post("/vip")
async def accounts_buy_vip(account: Account = Depends(get_current_account)):
    """Spend coins on a VIP membership (promotion discount)."""
    return await accounts_service.purchase_vip(account.user_id)
