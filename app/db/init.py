import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from app.core.config import get_settings
from app.models import (
    AuditLog,
    FailedJob,
    ShardBalance,
    ShardLedgerEntry,
    ShardTransaction,
    ShopAdmin,
    ShopBan,
    ShopItem,
    ShopPurchase,
    ShopSet,
    VoteCooldown,
    VoteLog,
    VoteSite,
)

DOCUMENT_MODELS = [
    ShardBalance,
    ShardLedgerEntry,
    ShardTransaction,
    ShopItem,
    ShopSet,
    ShopPurchase,
    ShopBan,
    ShopAdmin,
    VoteSite,
    VoteLog,
    VoteCooldown,
    AuditLog,
    FailedJob,
]

_client: AsyncIOMotorClient | None = None


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


def get_client() -> AsyncIOMotorClient:
    """Process-wide Motor client, created on first use."""
    global _client
    if _client is None:
        settings = get_settings()
        kwargs = {}
        if _use_tls(settings.mongodb_uri):
            kwargs["tlsCAFile"] = certifi.where()
            kwargs["tlsDisableOCSPEndpointCheck"] = True
        _client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
    return _client


async def init_db(client: AsyncIOMotorClient | None = None) -> None:
    """Bind Beanie documents; `client` overrides the configured one (tests)."""
    global _client
    if client is not None:
        _client = client
    settings = get_settings()
    database = get_client()[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)


def close_db() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None
