"""Cron: background sweeps over promotions."""

from viewswap.core.logging import get_logger
from viewswap.db.init import init_db, is_initialized
from viewswap.services import promotions as promotions_service

log = get_logger(__name__)


async def run_expire_holds() -> int:
    """Activate promotions whose hold period is over. Safe to run on any schedule."""
    if not is_initialized():
        await init_db()
    count = await promotions_service.expire_holds()
    log.info("expire_holds_run", activated=count)
    return count
