import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from viewswap.core.config import get_settings
from viewswap.models.account import Account
from viewswap.models.audit_log import AuditLog
from viewswap.models.failed_job import FailedJob
from viewswap.models.ledger_entry import LedgerEntry
from viewswap.models.promotion import Promotion
from viewswap.models.view_record import ViewRecord

DOCUMENT_MODELS = [
    Account,
    LedgerEntry,
    Promotion,
    ViewRecord,
    AuditLog,
    FailedJob,
]

_client = None


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


def is_initialized() -> bool:
    return _client is not None


def get_client():
    """Client bound by the last init_db call; sessions for transactions start from it."""
    if _client is None:
        raise RuntimeError("init_db() has not been called")
    return _client


async def init_db(client=None) -> None:
    """Connect and register documents. Tests pass an in-memory client."""
    global _client
    settings = get_settings()
    if client is None:
        # Atlas in Docker: tlsCAFile + tlsDisableOCSPEndpointCheck avoid TLSV1_ALERT_INTERNAL_ERROR
        kwargs = {}
        if _use_tls(settings.mongodb_uri):
            kwargs["tlsCAFile"] = certifi.where()
            kwargs["tlsDisableOCSPEndpointCheck"] = True
        client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
    _client = client
    database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
