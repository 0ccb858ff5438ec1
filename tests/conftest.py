import asyncio
import os
from datetime import datetime
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# In-memory MongoDB has no transactions; services fall back to compensation
os.environ["MONGODB_TRANSACTIONS"] = "false"
os.environ.setdefault("MONGODB_DB_NAME", "viewswap_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("IDENTITY_BRIDGE_KEY", "test-bridge-key")
os.environ.setdefault("ADMIN_USER_IDS", "admin-1")
os.environ.setdefault("SIGNUP_BONUS_COINS", "100")

T0 = datetime(2025, 7, 29, 12, 0, 0)


@pytest_asyncio.fixture
async def db():
    from mongomock_motor import AsyncMongoMockClient

    from viewswap.db.init import init_db
    await init_db(client=AsyncMongoMockClient())
    yield


@pytest.fixture
def make_account(db):
    """Create an account holding exactly ``coins``."""
    from viewswap.services import accounts as accounts_service
    from viewswap.services import balance as balance_service

    async def _make(user_id: str, coins: int = 100):
        account, _ = await accounts_service.ensure_account(user_id)
        delta = coins - account.balance
        if delta:
            await balance_service.apply_delta(user_id, delta, "admin_adjustment", description="test setup")
        return await accounts_service.get_account(user_id)

    return _make


@pytest.fixture
def make_promotion(make_account):
    """Create a promotion for ``owner`` at T0 with explicit cost and reward."""
    from viewswap.services import promotions as promotions_service

    async def _make(
        owner: str,
        cost: int = 40,
        target_views: int = 2,
        reward: int = 10,
        duration: int = 30,
        now: datetime = T0,
    ):
        return await promotions_service.create(
            owner,
            "dQw4w9WgXcQ",
            "Sample promotion video",
            duration,
            target_views,
            cost,
            reward,
            now=now,
        )

    return _make


@pytest_asyncio.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    from viewswap.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


YIELDING_METHODS = (
    "count_documents",
    "delete_many",
    "delete_one",
    "find_one",
    "find_one_and_update",
    "insert_one",
    "update_many",
    "update_one",
)


@pytest.fixture
def interleaved(monkeypatch):
    """
    Make every in-memory collection call yield to the event loop first, the way
    a network driver does, so coroutines under asyncio.gather really interleave
    between their reads and writes.
    """
    from mongomock_motor import AsyncMongoMockCollection

    def yielding(method):
        async def call(self, *args, **kwargs):
            await asyncio.sleep(0)
            return await method(self, *args, **kwargs)
        return call

    for name in YIELDING_METHODS:
        monkeypatch.setattr(AsyncMongoMockCollection, name, yielding(getattr(AsyncMongoMockCollection, name)))
