"""Unit-of-work runner: MongoDB transactions with bounded retry on write conflicts."""

import asyncio
from typing import Awaitable, Callable, TypeVar

from pymongo.errors import PyMongoError

from viewswap.core.config import get_settings
from viewswap.core.exceptions import ConcurrencyConflictError
from viewswap.core.logging import get_logger
from viewswap.db.init import get_client

log = get_logger(__name__)

T = TypeVar("T")

TRANSIENT_LABEL = "TransientTransactionError"


def _is_transient(exc: PyMongoError) -> bool:
    return exc.has_error_label(TRANSIENT_LABEL)


async def run_in_transaction(
    work: Callable[..., Awaitable[T]],
    *,
    name: str = "unit_of_work",
) -> T:
    """
    Run ``work(session)`` as one all-or-nothing unit.

    With MONGODB_TRANSACTIONS on, ``work`` runs inside a multi-document
    transaction and is re-run from scratch on transient write conflicts, with
    exponential backoff, up to TRANSACTION_MAX_ATTEMPTS times; exhausting the
    attempts raises ConcurrencyConflictError. With transactions off, ``work``
    gets ``session=None`` and is responsible for compensating its own writes.
    """
    settings = get_settings()
    if not settings.mongodb_transactions:
        return await work(None)

    attempts = max(1, settings.transaction_max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            async with await get_client().start_session() as session:
                async with session.start_transaction():
                    return await work(session)
        except PyMongoError as exc:
            if not _is_transient(exc):
                raise
            if attempt == attempts:
                log.warning("transaction_conflict", unit=name, attempts=attempts)
                raise ConcurrencyConflictError() from exc
            delay = settings.transaction_retry_base_ms * (2 ** (attempt - 1)) / 1000
            log.info("transaction_retry", unit=name, attempt=attempt, delay_s=delay)
            await asyncio.sleep(delay)
    raise ConcurrencyConflictError()
