"""Unit-of-work runner against a fake session: retry on transient conflicts."""

import pytest
from pymongo.errors import OperationFailure, PyMongoError

from viewswap.core.exceptions import ConcurrencyConflictError

pytestmark = pytest.mark.asyncio


class FakeTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, client):
        self.client = client

    async def __aenter__(self):
        self.client.sessions += 1
        return self

    async def __aexit__(self, *exc):
        return False

    def start_transaction(self):
        return FakeTransaction()


class FakeClient:
    def __init__(self):
        self.sessions = 0

    async def start_session(self):
        return FakeSession(self)


def write_conflict() -> PyMongoError:
    return PyMongoError("write conflict", error_labels=["TransientTransactionError"])


@pytest.fixture
def fake_client(monkeypatch):
    from viewswap.core.config import get_settings
    from viewswap.db import transactions
    client = FakeClient()
    monkeypatch.setattr(transactions, "get_client", lambda: client)
    settings = get_settings()
    monkeypatch.setattr(settings, "mongodb_transactions", True)
    monkeypatch.setattr(settings, "transaction_max_attempts", 3)
    monkeypatch.setattr(settings, "transaction_retry_base_ms", 0)
    return client


async def test_transient_conflict_is_retried(fake_client):
    from viewswap.db.transactions import run_in_transaction
    calls = []

    async def work(session):
        calls.append(session)
        if len(calls) == 1:
            raise write_conflict()
        return "done"

    assert await run_in_transaction(work, name="test") == "done"
    assert len(calls) == 2
    assert all(isinstance(s, FakeSession) for s in calls)
    assert fake_client.sessions == 2


async def test_exhausted_retries_raise_concurrency_conflict(fake_client):
    from viewswap.db.transactions import run_in_transaction
    calls = []

    async def work(session):
        calls.append(session)
        raise write_conflict()

    with pytest.raises(ConcurrencyConflictError) as exc:
        await run_in_transaction(work, name="test")
    assert exc.value.retryable
    assert exc.value.code == "CONCURRENCY_CONFLICT"
    assert len(calls) == 3


async def test_non_transient_error_is_not_retried(fake_client):
    from viewswap.db.transactions import run_in_transaction
    calls = []

    async def work(session):
        calls.append(session)
        raise OperationFailure("bad query", code=2)

    with pytest.raises(OperationFailure):
        await run_in_transaction(work, name="test")
    assert len(calls) == 1


async def test_transactions_off_runs_without_session(monkeypatch):
    from viewswap.core.config import get_settings
    from viewswap.db.transactions import run_in_transaction
    monkeypatch.setattr(get_settings(), "mongodb_transactions", False)

    async def work(session):
        return session

    assert await run_in_transaction(work) is None
