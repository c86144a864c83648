"""Game server databases: `auth` (accounts) and `characters`.

Only the columns this service reads or writes are declared. The schemas are
owned by the game server; nothing here creates or migrates them.
"""

from typing import Literal

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Integer,
    LargeBinary,
    MetaData,
    SmallInteger,
    String,
    Table,
    func,
)
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from app.core.config import get_settings

RealmDatabase = Literal["auth", "characters"]

auth_metadata = MetaData()
characters_metadata = MetaData()

account_table = Table(
    "account",
    auth_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(32), nullable=False, unique=True),
    Column("salt", LargeBinary(32), nullable=False),
    Column("verifier", LargeBinary(32), nullable=False),
    Column("email", String(255), nullable=False, default=""),
    Column("reg_mail", String(255), nullable=False, default=""),
    Column("joindate", DateTime, server_default=func.now()),
    Column("expansion", SmallInteger, nullable=False, default=2),
)

characters_table = Table(
    "characters",
    characters_metadata,
    Column("guid", Integer, primary_key=True),
    Column("account", Integer, nullable=False, index=True),
    Column("name", String(12), nullable=False),
    Column("race", SmallInteger, nullable=False),
    Column("class", SmallInteger, nullable=False),
    Column("level", SmallInteger, nullable=False, default=1),
    Column("online", SmallInteger, nullable=False, default=0),
)

mail_table = Table(
    "mail",
    characters_metadata,
    Column("id", Integer, primary_key=True),
    Column("messageType", SmallInteger, nullable=False, default=0),
    Column("receiver", Integer, nullable=False, index=True),
    Column("subject", String(128)),
    Column("has_items", SmallInteger, nullable=False, default=0),
)

mail_items_table = Table(
    "mail_items",
    characters_metadata,
    Column("mail_id", Integer, nullable=False),
    Column("item_guid", BigInteger, primary_key=True),
    Column("receiver", Integer, nullable=False, index=True),
)

item_instance_table = Table(
    "item_instance",
    characters_metadata,
    Column("guid", BigInteger, primary_key=True),
    Column("itemEntry", Integer, nullable=False),
    Column("owner_guid", Integer, nullable=False, index=True),
)

character_inventory_table = Table(
    "character_inventory",
    characters_metadata,
    Column("guid", Integer, nullable=False, index=True),
    Column("bag", Integer, nullable=False, default=0),
    Column("slot", SmallInteger, nullable=False),
    Column("item", BigInteger, primary_key=True),
)

_engines: dict[str, AsyncEngine] = {}


def _url_for(name: RealmDatabase) -> str:
    settings = get_settings()
    if name == "auth":
        return settings.realm_auth_db_url
    return settings.realm_characters_db_url


def get_engine(name: RealmDatabase) -> AsyncEngine:
    """Shared engine per realm database, created on first use."""
    engine = _engines.get(name)
    if engine is None:
        engine = create_async_engine(_url_for(name), pool_pre_ping=True)
        _engines[name] = engine
    return engine


def init_realm_engines(auth_url: str, characters_url: str) -> None:
    """Point the realm engines at explicit URLs (tests, tooling)."""
    _engines["auth"] = create_async_engine(auth_url)
    _engines["characters"] = create_async_engine(characters_url)


async def dispose_realm_engines() -> None:
    for engine in _engines.values():
        await engine.dispose()
    _engines.clear()
