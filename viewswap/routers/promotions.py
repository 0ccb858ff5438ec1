from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from viewswap.deps import get_current_account, parse_object_id
from viewswap.models.account import Account
from viewswap.models.promotion import Promotion
from viewswap.services import pricing
from viewswap.services import promotions as promotions_service

router = APIRouter()


class PromotionCreate(BaseModel):
    video_external_id: str = Field(min_length=1, max_length=32)
    title: str
    duration_seconds: int
    target_views: int


class RepromoteRequest(BaseModel):
    additional_views: int
    duration_seconds: int


def _promotion_out(p: Promotion) -> dict:
    out = p.summary()
    out.update(
        {
            "cost_paid": p.cost_paid,
            "hold_until": p.hold_until,
            "repromoted_at": p.repromoted_at,
            "created_at": p.created_at,
            "updated_at": p.updated_at,
            "completion_rate": round(p.views_count * 100 / p.target_views, 2) if p.target_views else 0,
        }
    )
    return out


@router.get("/quote")
async def promotions_quote(
    target_views: int = Query(..., ge=1),
    duration_seconds: int = Query(..., ge=1),
    account: Account = Depends(get_current_account),
):
    """Price a promotion for the caller (VIP discount applied)."""
    return pricing.quote(target_views, duration_seconds, account.is_vip())


@router.get("/analytics")
async def promotions_analytics(account: Account = Depends(get_current_account)):
    return await promotions_service.analytics_summary(account.user_id)


@router.get("")
async def promotions_list(account: Account = Depends(get_current_account)):
    items = await promotions_service.list_promotions(account.user_id)
    return {"promotions": [_promotion_out(p) for p in items]}


@router.post("", status_code=201)
async def promotion_create(body: PromotionCreate, account: Account = Depends(get_current_account)):
    """Spend coins to put a video in the shared queue (after a hold period)."""
    return await promotions_service.promote(
        account.user_id,
        body.video_external_id,
        body.title,
        body.duration_seconds,
        body.target_views,
    )


@router.get("/{promotion_id}")
async def promotion_get(promotion_id: str, account: Account = Depends(get_current_account)):
    p = await promotions_service.get_promotion(parse_object_id(promotion_id), account.user_id)
    return _promotion_out(p)


@router.get("/{promotion_id}/eligibility")
async def promotion_eligibility(promotion_id: str, account: Account = Depends(get_current_account)):
    eligible = await promotions_service.check_eligibility(parse_object_id(promotion_id))
    return {"promotion_id": promotion_id, "eligible": eligible}


@router.delete("/{promotion_id}")
async def promotion_cancel(promotion_id: str, account: Account = Depends(get_current_account)):
    """Cancel and refund: 100% within the grace window, partial afterwards."""
    return await promotions_service.cancel(parse_object_id(promotion_id), account.user_id)


@router.post("/{promotion_id}/repromote")
async def promotion_repromote(
    promotion_id: str,
    body: RepromoteRequest,
    account: Account = Depends(get_current_account),
):
    return await promotions_service.repromote(
        parse_object_id(promotion_id),
        account.user_id,
        body.additional_views,
        body.duration_seconds,
    )


@router.post("/{promotion_id}/pause")
async def promotion_pause(promotion_id: str, account: Account = Depends(get_current_account)):
    p = await promotions_service.pause(parse_object_id(promotion_id), account.user_id)
    return _promotion_out(p)


@router.post("/{promotion_id}/resume")
async def promotion_resume(promotion_id: str, account: Account = Depends(get_current_account)):
    p = await promotions_service.resume(parse_object_id(promotion_id), account.user_id)
    return _promotion_out(p)
