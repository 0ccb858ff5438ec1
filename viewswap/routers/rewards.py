from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from viewswap.deps import get_current_account, parse_object_id
from viewswap.models.account import Account
from viewswap.services import rewards as rewards_service

router = APIRouter()


class ClaimRequest(BaseModel):
    promotion_id: str
    watched_seconds: int = Field(ge=0)


@router.post("/claim")
async def rewards_claim(body: ClaimRequest, account: Account = Depends(get_current_account)):
    """Report a finished watch session; pays the promotion's reward once per viewer."""
    return await rewards_service.claim_reward(
        account.user_id,
        parse_object_id(body.promotion_id),
        body.watched_seconds,
    )
