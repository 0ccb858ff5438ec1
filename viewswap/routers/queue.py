from fastapi import APIRouter, Depends, Query

from viewswap.deps import get_current_account
from viewswap.models.account import Account
from viewswap.services import queue as queue_service

router = APIRouter()


@router.get("")
async def queue_next(
    account: Account = Depends(get_current_account),
    limit: int = Query(50, ge=1, le=200),
):
    """Promotions the caller can watch next (own and already-watched ones excluded)."""
    items = await queue_service.next_batch(account.user_id, limit)
    return {"items": [p.summary() for p in items]}
