"""Reward engine: watch-time verification and duplicate-proof reward issuance."""

from datetime import datetime
from typing import Any

from beanie import PydanticObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from viewswap.core.config import get_settings
from viewswap.core.exceptions import (
    AlreadyCompletedError,
    InvalidParametersError,
    InsufficientWatchTimeError,
    NotFoundError,
    PromotionUnavailableError,
    SelfViewNotAllowedError,
    TargetReachedError,
)
from viewswap.core.logging import get_logger
from viewswap.db.transactions import run_in_transaction
from viewswap.models.promotion import VIEWABLE_STATUSES, Promotion
from viewswap.models.view_record import ViewRecord
from viewswap.services import balance as balance_service
from viewswap.services import promotions as promotions_service

log = get_logger(__name__)


async def _load_claimable(promotion_id: PydanticObjectId, viewer_id: str, now: datetime, session) -> Promotion:
    promotion = await Promotion.get(promotion_id, session=session)
    if not promotion or promotion.cancelled_at is not None:
        raise NotFoundError("Promotion not found")
    promotion = await promotions_service.activate_if_hold_expired(promotion, now, session=session)
    if promotion.owner_id == viewer_id:
        raise SelfViewNotAllowedError()
    if promotion.status not in VIEWABLE_STATUSES:
        raise PromotionUnavailableError(promotion.status)
    if promotion.views_count >= promotion.target_views:
        raise TargetReachedError(promotion.views_count, promotion.target_views)
    return promotion


async def record_progress(
    promotion_id: PydanticObjectId,
    viewer_id: str,
    watched_seconds: int,
    now: datetime | None = None,
    session=None,
) -> None:
    """Merge partial watch time into the viewer's open record (keeps the maximum)."""
    now = now or datetime.utcnow()
    query: dict[str, Any] = {"promotion_id": promotion_id, "viewer_id": viewer_id}
    if not get_settings().allow_repeat_rewards:
        query["completed"] = False
    try:
        await ViewRecord.get_motor_collection().update_one(
            query,
            {
                "$max": {"watched_seconds": watched_seconds},
                "$set": {"updated_at": now},
                "$setOnInsert": {
                    "completed": False,
                    "coins_earned": 0,
                    "reward_count": 0,
                    "completed_at": None,
                    "created_at": now,
                },
            },
            upsert=True,
            session=session,
        )
    except DuplicateKeyError:
        # A completed record exists for the pair
        raise AlreadyCompletedError()


async def _complete_view(
    promotion_id: PydanticObjectId,
    viewer_id: str,
    watched_seconds: int,
    reward: int,
    now: datetime,
    session,
) -> dict | None:
    """
    Atomically mark the (promotion, viewer) record completed; the duplicate gate.

    The upsert only matches a not-yet-completed record. When a completed one
    exists the upsert tries to insert and the unique (promotion_id, viewer_id)
    index rejects it, so two racing claims cannot both pass. Returns the record
    as it was before the update (None when newly inserted).
    """
    repeat = get_settings().allow_repeat_rewards
    query: dict[str, Any] = {"promotion_id": promotion_id, "viewer_id": viewer_id}
    if not repeat:
        query["completed"] = False
    try:
        return await ViewRecord.get_motor_collection().find_one_and_update(
            query,
            {
                "$set": {"completed": True, "completed_at": now, "updated_at": now},
                "$max": {"watched_seconds": watched_seconds},
                "$inc": {"coins_earned": reward, "reward_count": 1},
                "$setOnInsert": {"created_at": now},
            },
            upsert=True,
            return_document=ReturnDocument.BEFORE,
            session=session,
        )
    except DuplicateKeyError:
        raise AlreadyCompletedError()


async def _revert_view(
    promotion_id: PydanticObjectId,
    viewer_id: str,
    before: dict | None,
    reward: int,
) -> None:
    """Undo _complete_view when the credit failed outside a transaction."""
    records = ViewRecord.get_motor_collection()
    if before is None:
        await records.update_one(
            {"promotion_id": promotion_id, "viewer_id": viewer_id},
            {"$set": {"completed": False, "completed_at": None, "coins_earned": 0, "reward_count": 0}},
        )
        return
    await records.update_one(
        {"_id": before["_id"]},
        {
            "$set": {"completed": before.get("completed", False), "completed_at": before.get("completed_at")},
            "$inc": {"coins_earned": -reward, "reward_count": -1},
        },
    )


async def _reserve_slot(promotion_id: PydanticObjectId, now: datetime, session) -> dict:
    """
    Take one of the promotion's remaining views with a single conditional
    ``$inc``, so concurrent viewers can never push views_count past the target.
    Returns the promotion as updated.
    """
    doc = await Promotion.get_motor_collection().find_one_and_update(
        {
            "_id": promotion_id,
            "status": {"$in": list(VIEWABLE_STATUSES)},
            "cancelled_at": None,
            "$expr": {"$lt": ["$views_count", "$target_views"]},
        },
        {"$inc": {"views_count": 1}, "$set": {"updated_at": now}},
        return_document=ReturnDocument.AFTER,
        session=session,
    )
    if doc is not None:
        return doc
    current = await Promotion.get(promotion_id, session=session)
    if current is None or current.cancelled_at is not None:
        raise NotFoundError("Promotion not found")
    if current.views_count >= current.target_views:
        raise TargetReachedError(current.views_count, current.target_views)
    raise PromotionUnavailableError(current.status)


async def _release_slot(promotion_id: PydanticObjectId) -> None:
    await Promotion.get_motor_collection().update_one(
        {"_id": promotion_id, "views_count": {"$gt": 0}},
        {"$inc": {"views_count": -1}},
    )


async def claim_reward(
    viewer_id: str,
    promotion_id: PydanticObjectId,
    watched_seconds: int,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Verify a watch session and pay the promotion's flat reward once per viewer.

    Order of checks: promotion exists, not self-view, viewable status, target
    not reached, not already completed, enough watch time. Marking the view
    completed, taking a view slot and crediting the viewer form one unit: if a
    later step fails the earlier ones are undone. The promotion completes when
    the last slot is taken.
    """
    if watched_seconds < 0:
        raise InvalidParametersError("watched_seconds must be >= 0")
    now = now or datetime.utcnow()
    repeat = get_settings().allow_repeat_rewards

    async def work(session):
        promotion = await _load_claimable(promotion_id, viewer_id, now, session)
        if not repeat:
            existing = await ViewRecord.find_one(
                ViewRecord.promotion_id == promotion_id,
                ViewRecord.viewer_id == viewer_id,
                session=session,
            )
            if existing and existing.completed:
                raise AlreadyCompletedError()
        if watched_seconds < promotion.duration_seconds:
            # Returned, not raised, so the progress write commits
            await record_progress(promotion_id, viewer_id, watched_seconds, now, session=session)
            return {"required_seconds": promotion.duration_seconds}

        reward = promotion.reward_per_view
        before = await _complete_view(promotion_id, viewer_id, watched_seconds, reward, now, session)
        # Repeat payouts to a viewer who already counted take no new slot
        first_view = not (before and before.get("completed"))
        views = promotion.views_count
        if first_view:
            try:
                views = (await _reserve_slot(promotion_id, now, session))["views_count"]
            except Exception:
                if session is None:
                    await _revert_view(promotion_id, viewer_id, before, reward)
                raise
        try:
            change = await balance_service.apply_delta(
                viewer_id,
                reward,
                "watch_reward",
                promotion_id=promotion_id,
                description=f"Watched: {promotion.title}",
                session=session,
            )
        except Exception:
            if session is None:
                await _revert_view(promotion_id, viewer_id, before, reward)
                if first_view:
                    await _release_slot(promotion_id)
            raise
        reached = views >= promotion.target_views
        if reached:
            await promotions_service.mark_completed(promotion_id, session=session)
        return {
            "coins_earned": reward,
            "new_balance": change.new_balance,
            "promotion_completed": reached,
            "views_count": views,
        }

    try:
        out = await run_in_transaction(work, name="claim_reward")
    except TargetReachedError:
        await promotions_service.mark_completed(promotion_id)
        raise

    if "required_seconds" in out:
        log.info(
            "reward_insufficient_watch_time",
            viewer_id=viewer_id,
            promotion_id=str(promotion_id),
            watched_seconds=watched_seconds,
            required_seconds=out["required_seconds"],
        )
        raise InsufficientWatchTimeError(watched_seconds, out["required_seconds"])

    log.info(
        "reward_claimed",
        viewer_id=viewer_id,
        promotion_id=str(promotion_id),
        coins_earned=out["coins_earned"],
        views_count=out["views_count"],
        promotion_completed=out["promotion_completed"],
    )
    return out
