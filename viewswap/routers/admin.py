from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from viewswap.core import audit
from viewswap.deps import require_admin
from viewswap.models.account import Account
from viewswap.services import accounts as accounts_service
from viewswap.services import balance as balance_service
from viewswap.services import promotions as promotions_service

router = APIRouter()


class CreditRequest(BaseModel):
    user_id: str
    amount: int
    reason: str = "purchase"
    description: str = Field(default="", max_length=200)
    idempotency_key: str | None = None


@router.post("/credits")
async def admin_credit(body: CreditRequest, admin: Account = Depends(require_admin)):
    """Admin: record a confirmed coin purchase, referral bonus or manual adjustment."""
    return await accounts_service.credit_coins(
        body.user_id,
        body.amount,
        body.reason,
        description=body.description,
        idempotency_key=body.idempotency_key,
        actor_id=admin.user_id,
    )


@router.get("/integrity")
async def admin_integrity(user_id: str | None = None, admin: Account = Depends(require_admin)):
    """Admin: compare balances with ledger sums."""
    return await balance_service.verify_integrity(user_id)


@router.post("/expire-holds")
async def admin_expire_holds(admin: Account = Depends(require_admin)):
    """Admin: run the hold-expiry sweep now."""
    return {"activated": await promotions_service.expire_holds()}


@router.get("/audit/{subject_type}/{subject_id}")
async def admin_audit(subject_type: str, subject_id: str, admin: Account = Depends(require_admin)):
    """Admin: audit events recorded for an account or promotion, newest first."""
    events = await audit.events_for(subject_type, subject_id)
    return {
        "events": [
            {
                "actor_id": e.actor_id,
                "action": e.action,
                "details": e.details,
                "created_at": e.created_at.isoformat(),
            }
            for e in events
        ]
    }
