"""Queue selector: promotions a viewer can watch next, best first."""

from datetime import datetime

from viewswap.core.config import get_settings
from viewswap.core.pagination import paginate
from viewswap.models.promotion import Promotion
from viewswap.models.view_record import ViewRecord


async def completed_promotion_ids(viewer_id: str) -> list:
    records = await ViewRecord.find(
        ViewRecord.viewer_id == viewer_id,
        ViewRecord.completed == True,  # noqa: E712
    ).to_list()
    return [r.promotion_id for r in records]


async def next_batch(viewer_id: str, limit: int | None = None, now: datetime | None = None) -> list[Promotion]:
    """
    Eligible promotions for ``viewer_id``: repromoted first, then active, then
    on_hold promotions whose hold has expired, each group oldest first. Never
    returns the viewer's own promotions or ones the viewer already completed.
    """
    now = now or datetime.utcnow()
    limit, _ = paginate(limit or get_settings().queue_default_limit, 0)
    base = {
        "owner_id": {"$ne": viewer_id},
        "cancelled_at": None,
        "_id": {"$nin": await completed_promotion_ids(viewer_id)},
        "$expr": {"$lt": ["$views_count", "$target_views"]},
    }
    groups = (
        {"status": "repromoted"},
        {"status": "active"},
        {"status": "on_hold", "hold_until": {"$lte": now}},
    )
    batch: list[Promotion] = []
    for group in groups:
        remaining = limit - len(batch)
        if remaining <= 0:
            break
        rows = await Promotion.find({**base, **group}).sort("+created_at").limit(remaining).to_list()
        batch.extend(rows)
    return batch[:limit]
