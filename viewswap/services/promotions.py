"""Promotion lifecycle: create with hold period, hold expiry, completion, cancel with refund, repromote."""

from datetime import datetime, timedelta
from typing import Any

from beanie import PydanticObjectId
from pymongo import ReturnDocument

from viewswap.core.audit import log_event
from viewswap.core.config import get_settings
from viewswap.core.exceptions import InvalidParametersError, InvalidStateError, NotFoundError
from viewswap.core.logging import get_logger
from viewswap.db.transactions import run_in_transaction
from viewswap.models.ledger_entry import LedgerEntry
from viewswap.models.promotion import VIEWABLE_STATUSES, Promotion
from viewswap.models.view_record import ViewRecord
from viewswap.services import accounts as accounts_service
from viewswap.services import balance as balance_service
from viewswap.services import pricing

log = get_logger(__name__)

OPEN_STATUSES = ("on_hold", "active", "repromoted", "paused")


def validate_promotion_params(
    title: str | None,
    duration_seconds: int,
    target_views: int,
    video_external_id: str | None = "-",
) -> str:
    """Check request parameters before any state changes; returns the stripped title."""
    s = get_settings()
    errors: dict[str, str] = {}
    if not (s.min_duration_seconds <= duration_seconds <= s.max_duration_seconds):
        errors["duration_seconds"] = f"must be between {s.min_duration_seconds} and {s.max_duration_seconds}"
    if not (s.min_target_views <= target_views <= s.max_target_views):
        errors["target_views"] = f"must be between {s.min_target_views} and {s.max_target_views}"
    clean_title = (title or "").strip()
    if len(clean_title) < s.min_title_length:
        errors["title"] = f"must be at least {s.min_title_length} characters"
    elif len(clean_title) > s.max_title_length:
        errors["title"] = f"must be at most {s.max_title_length} characters"
    if not (video_external_id or "").strip():
        errors["video_external_id"] = "required"
    if errors:
        raise InvalidParametersError("Invalid promotion parameters", details=errors)
    return clean_title


async def _owned(promotion_id: PydanticObjectId, owner_id: str, session=None) -> Promotion:
    promotion = await Promotion.find_one(
        Promotion.id == promotion_id,
        Promotion.owner_id == owner_id,
        session=session,
    )
    if not promotion or promotion.cancelled_at is not None:
        raise NotFoundError("Promotion not found")
    return promotion


async def create(
    owner_id: str,
    video_external_id: str,
    title: str,
    duration_seconds: int,
    target_views: int,
    cost_paid: int,
    reward_per_view: int,
    now: datetime | None = None,
) -> Promotion:
    """Debit the owner and create the promotion on hold; both or neither."""
    title = validate_promotion_params(title, duration_seconds, target_views, video_external_id)
    if cost_paid <= 0 or reward_per_view <= 0:
        raise InvalidParametersError(
            "Cost and reward must be positive",
            details={"cost_paid": cost_paid, "reward_per_view": reward_per_view},
        )
    now = now or datetime.utcnow()
    hold_until = now + timedelta(minutes=get_settings().hold_minutes)
    promotion_id = PydanticObjectId()

    async def work(session):
        await balance_service.apply_delta(
            owner_id,
            -cost_paid,
            "promotion_debit",
            promotion_id=promotion_id,
            description=f"Promoted video: {title}",
            session=session,
        )
        promotion = Promotion(
            id=promotion_id,
            owner_id=owner_id,
            video_external_id=video_external_id.strip(),
            title=title,
            duration_seconds=duration_seconds,
            cost_paid=cost_paid,
            reward_per_view=reward_per_view,
            target_views=target_views,
            status="on_hold",
            hold_until=hold_until,
            created_at=now,
            updated_at=now,
        )
        try:
            await promotion.insert(session=session)
        except Exception:
            if session is None:
                await balance_service.apply_delta(
                    owner_id,
                    cost_paid,
                    "promotion_refund",
                    promotion_id=promotion_id,
                    description="Promotion could not be created",
                )
            raise
        return promotion

    promotion = await run_in_transaction(work, name="create_promotion")
    log.info(
        "promotion_created",
        promotion_id=str(promotion.id),
        owner_id=owner_id,
        cost_paid=cost_paid,
        target_views=target_views,
        duration_seconds=duration_seconds,
    )
    return promotion


async def promote(
    owner_id: str,
    video_external_id: str,
    title: str,
    duration_seconds: int,
    target_views: int,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Price the request for this owner (VIP discount included) and create the promotion."""
    validate_promotion_params(title, duration_seconds, target_views, video_external_id)
    account = await accounts_service.get_account(owner_id)
    cost = pricing.promotion_cost(target_views, duration_seconds, account.is_vip(now))
    reward = pricing.reward_for_duration(duration_seconds)
    promotion = await create(
        owner_id,
        video_external_id,
        title,
        duration_seconds,
        target_views,
        cost,
        reward,
        now=now,
    )
    return {
        "promotion_id": str(promotion.id),
        "cost_paid": promotion.cost_paid,
        "reward_per_view": promotion.reward_per_view,
        "status": promotion.status,
        "hold_until": promotion.hold_until,
    }


async def expire_holds(now: datetime | None = None, owner_id: str | None = None) -> int:
    """Move every on_hold promotion whose hold has passed to active. Idempotent."""
    now = now or datetime.utcnow()
    query: dict[str, Any] = {"status": "on_hold", "hold_until": {"$lte": now}}
    if owner_id:
        query["owner_id"] = owner_id
    result = await Promotion.get_motor_collection().update_many(
        query,
        {"$set": {"status": "active", "hold_until": None, "updated_at": now}},
    )
    if result.modified_count:
        log.info("holds_expired", count=result.modified_count, owner_id=owner_id)
    return result.modified_count


async def activate_if_hold_expired(promotion: Promotion, now: datetime | None = None, session=None) -> Promotion:
    """Same transition as the sweep, applied to one promotion on read."""
    now = now or datetime.utcnow()
    if not promotion.hold_expired(now):
        return promotion
    await Promotion.get_motor_collection().update_one(
        {"_id": promotion.id, "status": "on_hold", "hold_until": {"$lte": now}},
        {"$set": {"status": "active", "hold_until": None, "updated_at": now}},
        session=session,
    )
    promotion.status = "active"
    promotion.hold_until = None
    promotion.updated_at = now
    return promotion


async def mark_completed(promotion_id: PydanticObjectId, session=None) -> bool:
    """Flip an open promotion to completed; False if it was already completed."""
    result = await Promotion.get_motor_collection().update_one(
        {"_id": promotion_id, "status": {"$in": list(OPEN_STATUSES)}},
        {"$set": {"status": "completed", "hold_until": None, "updated_at": datetime.utcnow()}},
        session=session,
    )
    if result.modified_count:
        log.info("promotion_completed", promotion_id=str(promotion_id))
    return bool(result.modified_count)


async def check_eligibility(promotion_id: PydanticObjectId, now: datetime | None = None) -> bool:
    """Whether the promotion may be shown and rewarded right now."""
    promotion = await Promotion.get(promotion_id)
    if not promotion or promotion.cancelled_at is not None:
        return False
    if promotion.views_count >= promotion.target_views:
        await mark_completed(promotion.id)
        return False
    return promotion.status in VIEWABLE_STATUSES or promotion.hold_expired(now)


def refund_for(promotion: dict | Promotion, now: datetime) -> tuple[int, int]:
    """Return (refund_amount, refund_percent) by time since creation, floored."""
    s = get_settings()
    if isinstance(promotion, Promotion):
        created_at, cost_paid = promotion.created_at, promotion.cost_paid
    else:
        created_at, cost_paid = promotion["created_at"], promotion["cost_paid"]
    if now - created_at <= timedelta(minutes=s.full_refund_window_minutes):
        percent = 100
    else:
        percent = s.late_refund_percent
    return cost_paid * percent // 100, percent


async def cancel(promotion_id: PydanticObjectId, owner_id: str, now: datetime | None = None) -> dict[str, Any]:
    """
    Refund the owner and delete the promotion with its view records.

    The promotion is first claimed with a ``cancelled_at`` marker so concurrent
    cancels cannot both refund. The refund is credited before anything is
    deleted; if the credit fails the marker is released and nothing changes.
    """
    now = now or datetime.utcnow()
    promotions = Promotion.get_motor_collection()

    async def work(session):
        doc = await promotions.find_one_and_update(
            {
                "_id": promotion_id,
                "owner_id": owner_id,
                "cancelled_at": None,
                "status": {"$ne": "completed"},
            },
            {"$set": {"cancelled_at": now}},
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        if doc is None:
            existing = await promotions.find_one({"_id": promotion_id, "owner_id": owner_id}, session=session)
            if existing and existing.get("cancelled_at") is None and existing.get("status") == "completed":
                raise InvalidStateError("Completed promotions cannot be cancelled", details={"status": "completed"})
            raise NotFoundError("Promotion not found")

        refund_amount, refund_percent = refund_for(doc, now)
        if refund_amount > 0:
            try:
                await balance_service.apply_delta(
                    owner_id,
                    refund_amount,
                    "promotion_refund",
                    promotion_id=promotion_id,
                    description=f"Refund for cancelled promotion: {doc['title']} ({refund_percent}% refund)",
                    session=session,
                )
            except Exception:
                if session is None:
                    await promotions.update_one({"_id": promotion_id}, {"$set": {"cancelled_at": None}})
                raise

        deleted = await ViewRecord.get_motor_collection().delete_many({"promotion_id": promotion_id}, session=session)
        await promotions.delete_one({"_id": promotion_id}, session=session)
        return {
            "promotion_id": str(promotion_id),
            "title": doc["title"],
            "original_cost": doc["cost_paid"],
            "refund_amount": refund_amount,
            "refund_percent": refund_percent,
            "views_deleted": deleted.deleted_count,
        }

    out = await run_in_transaction(work, name="cancel_promotion")
    log.info(
        "promotion_cancelled",
        promotion_id=str(promotion_id),
        owner_id=owner_id,
        refund_amount=out["refund_amount"],
        refund_percent=out["refund_percent"],
    )
    await log_event(owner_id, "promotion_cancelled", "promotion", str(promotion_id), out)
    return out


async def repromote(
    promotion_id: PydanticObjectId,
    owner_id: str,
    additional_views: int,
    duration_seconds: int,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Buy another round of views: charge again, raise the target by
    ``additional_views`` and re-enter the queue ahead of plain active promotions.
    Viewers who already completed the promotion stay excluded.
    """
    now = now or datetime.utcnow()
    current = await _owned(promotion_id, owner_id)
    validate_promotion_params(current.title, duration_seconds, additional_views, current.video_external_id)
    account = await accounts_service.get_account(owner_id)
    cost = pricing.promotion_cost(additional_views, duration_seconds, account.is_vip(now))
    reward = pricing.reward_for_duration(duration_seconds)
    promotions = Promotion.get_motor_collection()

    async def work(session):
        promotion = await _owned(promotion_id, owner_id, session=session)
        if promotion.status == "on_hold":
            raise InvalidStateError("Promotion is still on hold", details={"status": promotion.status})
        await balance_service.apply_delta(
            owner_id,
            -cost,
            "promotion_debit",
            promotion_id=promotion_id,
            description=f"Repromoted video: {promotion.title} (+{additional_views} views)",
            session=session,
        )
        doc = await promotions.find_one_and_update(
            {"_id": promotion_id, "owner_id": owner_id, "cancelled_at": None, "status": {"$ne": "on_hold"}},
            {
                "$set": {
                    "status": "repromoted",
                    "target_views": promotion.views_count + additional_views,
                    "duration_seconds": duration_seconds,
                    "reward_per_view": reward,
                    "repromoted_at": now,
                    "hold_until": None,
                    "updated_at": now,
                },
                "$inc": {"cost_paid": cost},
            },
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        if doc is None:
            if session is None:
                await balance_service.apply_delta(
                    owner_id,
                    cost,
                    "promotion_refund",
                    promotion_id=promotion_id,
                    description="Repromotion could not be applied",
                )
            raise NotFoundError("Promotion not found")
        return doc

    doc = await run_in_transaction(work, name="repromote_promotion")
    log.info("promotion_repromoted", promotion_id=str(promotion_id), owner_id=owner_id, cost=cost)
    await log_event(
        owner_id,
        "promotion_repromoted",
        "promotion",
        str(promotion_id),
        {"cost": cost, "additional_views": additional_views, "duration_seconds": duration_seconds},
    )
    return {
        "promotion_id": str(promotion_id),
        "cost": cost,
        "status": doc["status"],
        "target_views": doc["target_views"],
        "views_count": doc["views_count"],
        "reward_per_view": doc["reward_per_view"],
    }


async def _set_status(
    promotion_id: PydanticObjectId,
    owner_id: str,
    from_statuses: tuple[str, ...],
    to_status: str,
) -> Promotion:
    promotion = await _owned(promotion_id, owner_id)
    result = await Promotion.get_motor_collection().update_one(
        {"_id": promotion_id, "owner_id": owner_id, "cancelled_at": None, "status": {"$in": list(from_statuses)}},
        {"$set": {"status": to_status, "updated_at": datetime.utcnow()}},
    )
    if not result.modified_count:
        raise InvalidStateError(
            f"Cannot move promotion from {promotion.status} to {to_status}",
            details={"status": promotion.status},
        )
    return await _owned(promotion_id, owner_id)


async def pause(promotion_id: PydanticObjectId, owner_id: str) -> Promotion:
    promotion = await _set_status(promotion_id, owner_id, VIEWABLE_STATUSES, "paused")
    log.info("promotion_paused", promotion_id=str(promotion_id))
    return promotion


async def resume(promotion_id: PydanticObjectId, owner_id: str) -> Promotion:
    promotion = await _set_status(promotion_id, owner_id, ("paused",), "active")
    if promotion.views_count >= promotion.target_views:
        await mark_completed(promotion.id)
        promotion = await _owned(promotion_id, owner_id)
    log.info("promotion_resumed", promotion_id=str(promotion_id), status=promotion.status)
    return promotion


async def get_promotion(promotion_id: PydanticObjectId, owner_id: str, now: datetime | None = None) -> Promotion:
    promotion = await _owned(promotion_id, owner_id)
    return await activate_if_hold_expired(promotion, now)


async def list_promotions(owner_id: str, now: datetime | None = None) -> list[Promotion]:
    """Owner's promotions, newest first."""
    await expire_holds(now, owner_id=owner_id)
    return (
        await Promotion.find(Promotion.owner_id == owner_id, {"cancelled_at": None})
        .sort(-Promotion.created_at)
        .to_list()
    )


async def analytics_summary(owner_id: str) -> dict[str, Any]:
    """Promotion counts by status plus coin totals from the owner's ledger."""
    promotions = await list_promotions(owner_id)
    by_status = {status: 0 for status in ("on_hold", "active", "repromoted", "completed", "paused")}
    for p in promotions:
        by_status[p.status] += 1
    entries = await LedgerEntry.find(
        LedgerEntry.account_id == owner_id,
        {"reason": {"$in": ["promotion_debit", "promotion_refund", "watch_reward"]}},
    ).to_list()
    spent = -sum(e.amount for e in entries if e.reason == "promotion_debit")
    refunded = sum(e.amount for e in entries if e.reason == "promotion_refund")
    earned = sum(e.amount for e in entries if e.reason == "watch_reward")
    return {
        "total_promotions": len(promotions),
        "by_status": by_status,
        "views_received": sum(p.views_count for p in promotions),
        "coins_spent": spent,
        "coins_refunded": refunded,
        "coins_earned_watching": earned,
    }
