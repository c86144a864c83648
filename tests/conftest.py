import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert

# In-memory Mongo has no sessions; realm databases are SQLite files per test.
os.environ.setdefault("MONGODB_DB_NAME", "realm_shop_test")
os.environ.setdefault("MONGODB_TRANSACTIONS", "false")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("CRON_SECRET", "cron-test-secret")
os.environ.setdefault("SHOP_NAME", "Realm Shop")


@pytest_asyncio.fixture
async def db(monkeypatch) -> AsyncGenerator[None, None]:
    from mongomock_motor import AsyncMongoMockClient

    from app.db import init as db_init

    monkeypatch.setattr(db_init, "_client", None)
    await db_init.init_db(AsyncMongoMockClient())
    yield
    monkeypatch.setattr(db_init, "_client", None)


@pytest_asyncio.fixture
async def realm(tmp_path) -> AsyncGenerator[None, None]:
    from app.db.realm import (
        auth_metadata,
        characters_metadata,
        dispose_realm_engines,
        get_engine,
        init_realm_engines,
    )

    init_realm_engines(
        f"sqlite+aiosqlite:///{tmp_path / 'auth.db'}",
        f"sqlite+aiosqlite:///{tmp_path / 'characters.db'}",
    )
    async with get_engine("auth").begin() as conn:
        await conn.run_sync(auth_metadata.create_all)
    async with get_engine("characters").begin() as conn:
        await conn.run_sync(characters_metadata.create_all)
    yield
    await dispose_realm_engines()


@pytest.fixture
def add_character(realm):
    """Insert a character row; returns an async callable."""
    from app.db.realm import characters_table, get_engine

    async def _add(guid, account, name, race=1, class_id=1, level=80, online=False):
        async with get_engine("characters").begin() as conn:
            await conn.execute(
                insert(characters_table).values(
                    {
                        "guid": guid,
                        "account": account,
                        "name": name,
                        "race": race,
                        "class": class_id,
                        "level": level,
                        "online": int(online),
                    }
                )
            )

    return _add


@pytest.fixture
def add_item(realm):
    """Place an item instance in a character's mailbox or bags."""
    from app.db.realm import (
        character_inventory_table,
        get_engine,
        item_instance_table,
        mail_items_table,
        mail_table,
    )

    async def _add(owner_guid, item_guid, item_entry, mail_id=None, subject="Realm Shop"):
        async with get_engine("characters").begin() as conn:
            await conn.execute(
                insert(item_instance_table).values(guid=item_guid, itemEntry=item_entry, owner_guid=owner_guid)
            )
            if mail_id is not None:
                await conn.execute(
                    insert(mail_table)
                    .prefix_with("OR IGNORE")
                    .values(id=mail_id, messageType=0, receiver=owner_guid, subject=subject, has_items=1)
                )
                await conn.execute(
                    insert(mail_items_table).values(mail_id=mail_id, item_guid=item_guid, receiver=owner_guid)
                )
            else:
                await conn.execute(
                    insert(character_inventory_table).values(guid=owner_guid, bag=0, slot=23, item=item_guid)
                )

    return _add


@pytest_asyncio.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    from app.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def login(client):
    """Sign the test client in as a game account."""
    from app.core.security import create_session_cookie
    from app.deps import SESSION_COOKIE_NAME

    def _login(account_id: int, username: str = "TESTER") -> None:
        client.cookies.set(
            SESSION_COOKIE_NAME,
            create_session_cookie({"account_id": account_id, "username": username}),
        )

    return _login
