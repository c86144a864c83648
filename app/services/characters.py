"""Character, mail and inventory lookups against the realm characters database."""

from dataclasses import dataclass
from typing import Literal

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from app.core.logging import get_logger
from app.db.realm import (
    character_inventory_table,
    characters_table,
    get_engine,
    item_instance_table,
    mail_items_table,
    mail_table,
)

log = get_logger(__name__)

MAIL_NON_RETURNABLE = 3
ALLIANCE_RACES = frozenset({1, 3, 4, 7, 11})


@dataclass
class Character:
    guid: int
    account: int
    name: str
    race: int
    class_id: int
    level: int
    online: bool

    @property
    def is_alliance(self) -> bool:
        return self.race in ALLIANCE_RACES


@dataclass
class ItemLocation:
    location: Literal["mail", "inventory"]
    item_guid: int
    mail_id: int | None = None


def _columns():
    c = characters_table.c
    return [c.guid, c.account, c.name, c.race, c["class"], c.level, c.online]


def _to_character(row) -> Character:
    return Character(
        guid=row["guid"],
        account=row["account"],
        name=row["name"],
        race=row["race"],
        class_id=row["class"],
        level=row["level"],
        online=bool(row["online"]),
    )


async def _fetch_one(stmt) -> Character | None:
    async with get_engine("characters").connect() as conn:
        row = (await conn.execute(stmt)).mappings().first()
    return _to_character(row) if row else None


async def get_characters_by_account(account_id: int) -> list[Character]:
    stmt = (
        select(*_columns())
        .where(characters_table.c.account == account_id)
        .order_by(characters_table.c.level.desc())
    )
    async with get_engine("characters").connect() as conn:
        rows = (await conn.execute(stmt)).mappings().all()
    return [_to_character(r) for r in rows]


async def get_character_by_guid(guid: int) -> Character | None:
    return await _fetch_one(select(*_columns()).where(characters_table.c.guid == guid))


async def get_character_by_name(name: str) -> Character | None:
    """Exact (case-insensitive) character name lookup."""
    stmt = select(*_columns()).where(func.lower(characters_table.c.name) == name.lower())
    return await _fetch_one(stmt)


async def find_item_location(owner_guid: int, item_entry: int) -> ItemLocation | None:
    """Locate one copy of `item_entry` in the character's mailbox, else inventory."""
    ii = item_instance_table.c
    mi = mail_items_table.c
    ci = character_inventory_table.c
    mail_stmt = (
        select(mi.mail_id, mi.item_guid)
        .join(item_instance_table, ii.guid == mi.item_guid)
        .where(mi.receiver == owner_guid, ii.itemEntry == item_entry)
        .order_by(mi.mail_id.desc())
        .limit(1)
    )
    inventory_stmt = (
        select(ci.item)
        .join(item_instance_table, ii.guid == ci.item)
        .where(ci.guid == owner_guid, ii.itemEntry == item_entry)
        .limit(1)
    )
    async with get_engine("characters").connect() as conn:
        row = (await conn.execute(mail_stmt)).mappings().first()
        if row:
            return ItemLocation("mail", item_guid=row["item_guid"], mail_id=row["mail_id"])
        row = (await conn.execute(inventory_stmt)).mappings().first()
        if row:
            return ItemLocation("inventory", item_guid=row["item"])
    return None


async def remove_item(loc: ItemLocation) -> None:
    """Delete a located item instance (and its mail attachment or inventory slot)."""
    async with get_engine("characters").begin() as conn:
        if loc.location == "mail":
            await conn.execute(delete(mail_items_table).where(mail_items_table.c.item_guid == loc.item_guid))
            remaining = await conn.scalar(
                select(func.count()).select_from(mail_items_table).where(mail_items_table.c.mail_id == loc.mail_id)
            )
            if not remaining:
                await conn.execute(update(mail_table).where(mail_table.c.id == loc.mail_id).values(has_items=0))
        else:
            await conn.execute(
                delete(character_inventory_table).where(character_inventory_table.c.item == loc.item_guid)
            )
        await conn.execute(delete(item_instance_table).where(item_instance_table.c.guid == loc.item_guid))
    log.info("item_removed", location=loc.location, item_guid=loc.item_guid)


async def find_mail_by_subject(receiver_name: str, subject: str) -> int | None:
    """Id of the newest mail with `subject` received by the named character."""
    receiver = select(characters_table.c.guid).where(
        func.lower(characters_table.c.name) == receiver_name.lower()
    ).scalar_subquery()
    stmt = (
        select(mail_table.c.id)
        .where(mail_table.c.receiver == receiver, mail_table.c.subject == subject)
        .order_by(mail_table.c.id.desc())
        .limit(1)
    )
    async with get_engine("characters").connect() as conn:
        return await conn.scalar(stmt)


async def mark_mail_non_returnable(receiver_name: str, subject: str) -> None:
    """Stop the shop mail from bouncing back to the (non-existent) sender."""
    try:
        mail_id = await find_mail_by_subject(receiver_name, subject)
        if mail_id is None:
            return
        async with get_engine("characters").begin() as conn:
            await conn.execute(
                update(mail_table).where(mail_table.c.id == mail_id).values(messageType=MAIL_NON_RETURNABLE)
            )
    except SQLAlchemyError as e:
        log.warning("mark_mail_non_returnable_failed", character=receiver_name, error=str(e))
