"""arq job definitions."""

import uuid
from typing import Any, Awaitable

from arq.connections import RedisSettings

from viewswap.core.config import get_settings
from viewswap.core.logging import bind_job, get_logger

log = get_logger(__name__)


async def _run_with_dlq(ctx: dict[str, Any], job_name: str, payload: dict[str, Any], coro: Awaitable) -> Any:
    """Await ``coro``; on failure record a FailedJob and re-raise so arq sees it."""
    job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else str(uuid.uuid4())
    bind_job(job_name, job_id)
    try:
        return await coro
    except Exception as e:
        from viewswap.models.failed_job import FailedJob
        await FailedJob(
            job_name=job_name,
            job_id=job_id,
            job_try=ctx.get("job_try") or 1,
            payload=payload,
            error_type=type(e).__name__,
            error=str(e)[:2000],
        ).insert()
        log.exception("job_failed", error_type=type(e).__name__)
        raise


async def expire_holds(ctx: dict[str, Any]) -> int:
    """Cron job: move promotions whose hold ended into the queue."""
    from viewswap.worker.cron import run_expire_holds
    return await _run_with_dlq(ctx, "expire_holds", {}, run_expire_holds())


async def startup(ctx: dict) -> None:
    from viewswap.core.logging import configure_logging
    from viewswap.db.init import init_db
    configure_logging(debug=get_settings().debug)
    await init_db()
    log.info("worker_started", transactions=get_settings().mongodb_transactions)


async def shutdown(ctx: dict) -> None:
    log.info("worker_stopped")


def get_redis_settings() -> RedisSettings:
    return RedisSettings.from_dsn(get_settings().redis_url)
