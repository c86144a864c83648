"""Shop purchases: eligibility checks, debit + purchase row, then delivery."""

from beanie import PydanticObjectId

from app.core.audit import log_event
from app.core.exceptions import BadRequestError, NotFoundError, PolicyBlockedError
from app.core.logging import get_logger
from app.db.transaction import run_atomic
from app.models.shop_item import Faction, ShopItem
from app.models.shop_purchase import PurchaseStatus, ShopPurchase
from app.models.shop_set import ShopSet
from app.services import bans, characters, delivery, ledger
from app.services.characters import Character
from app.services.delivery import DeliveryResult

log = get_logger(__name__)


def faction_allows(faction: Faction, character: Character) -> bool:
    if faction == "both":
        return True
    return (faction == "alliance") == character.is_alliance


def check_restrictions(
    catalog: ShopItem | ShopSet,
    character: Character,
    prefix: str = "",
) -> None:
    """Raise the first restriction `character` fails.

    `prefix` is "giftRecipient" when checking a gift's recipient, which turns
    e.g. `raceRestricted` into `giftRecipientRaceRestricted`.
    """

    def code(name: str) -> str:
        return f"{prefix}{name[0].upper()}{name[1:]}" if prefix else name

    race_ids = getattr(catalog, "race_ids", None)
    if race_ids and character.race not in race_ids:
        raise PolicyBlockedError(code("raceRestricted"))
    if catalog.class_ids and character.class_id not in catalog.class_ids:
        raise PolicyBlockedError(code("classRestricted"))
    if not faction_allows(catalog.faction, character):
        raise PolicyBlockedError(code("factionRestricted"))
    if catalog.min_level > 0 and character.level < catalog.min_level:
        raise PolicyBlockedError(code("levelRestricted"))


async def _resolve_gift_recipient(catalog: ShopItem | ShopSet, gift_to_character_name: str | None) -> Character:
    if not gift_to_character_name:
        raise PolicyBlockedError("giftCharacterRequired")
    recipient = await characters.get_character_by_name(gift_to_character_name)
    if not recipient:
        raise PolicyBlockedError("giftRecipientNotFound")
    check_restrictions(catalog, recipient, prefix="giftRecipient")
    return recipient


async def create_purchase(
    account_id: int,
    character_guid: int,
    character_name: str,
    realm_id: int,
    item_id: PydanticObjectId | None = None,
    set_id: PydanticObjectId | None = None,
    is_gift: bool = False,
    gift_to_character_name: str | None = None,
    gift_message: str | None = None,
) -> tuple[ShopPurchase, DeliveryResult | None]:
    """Buy an item or set for one of the account's characters (or as a gift).

    The debit, the purchase row and its audit entry commit together. Delivery
    runs after commit; a failed delivery leaves the purchase pending for the
    retry sweep and is reported back as a DeliveryResult with success False.
    """
    await bans.ensure_not_banned(account_id)
    if not character_guid or not character_name or not realm_id or not (item_id or set_id):
        raise BadRequestError("Missing purchase fields", code="missingFields")

    owned = await characters.get_characters_by_account(account_id)
    character = next((c for c in owned if c.guid == character_guid), None)
    if character is None:
        raise PolicyBlockedError("characterNotFound")

    catalog: ShopItem | ShopSet
    if set_id:
        shop_set = await ShopSet.get(set_id)
        if not shop_set or not shop_set.is_active:
            raise NotFoundError("Set not found", code="setNotFound")
        catalog = shop_set
        item_entries = list(shop_set.item_entries)
        category, service_type, is_refundable = "sets", None, True
    else:
        item = await ShopItem.get(item_id)
        if not item or not item.is_active:
            raise NotFoundError("Item not found", code="itemNotFound")
        if item.realm_ids and realm_id not in item.realm_ids:
            raise PolicyBlockedError("realmRestricted")
        if is_gift and item.is_service:
            raise PolicyBlockedError("giftNotAvailableForServices")
        catalog = item
        item_entries = [item.item_entry] if item.item_entry and not item.is_service else []
        category, service_type, is_refundable = item.category, item.service_type, item.is_refundable

    if is_gift:
        if catalog.min_level > 0 and character.level < catalog.min_level:
            raise PolicyBlockedError("levelRestricted")
        recipient = await _resolve_gift_recipient(catalog, gift_to_character_name)
        gift_to_character_name = recipient.name
    else:
        check_restrictions(catalog, character)
        gift_to_character_name = None
        gift_message = None

    price = catalog.price_after_discount
    status: PurchaseStatus = "pending_delivery" if item_entries else "completed"
    purchase = ShopPurchase(
        account_id=account_id,
        item_ref=item_id if not set_id else None,
        set_ref=set_id,
        character_guid=character.guid,
        character_name=character.name,
        realm_id=realm_id,
        is_gift=is_gift,
        gift_to_character_name=gift_to_character_name,
        gift_message=gift_message,
        price_paid=price,
        original_price=catalog.price,
        discount_applied=catalog.discount_percentage,
        category=category,
        service_type=service_type,
        item_entries=item_entries,
        is_refundable=is_refundable,
        status=status,
    )

    purchase.id = PydanticObjectId()

    async def charge(session) -> int:
        balance = await ledger.debit(
            account_id,
            price,
            "shop_purchase",
            reference_type="shop_purchase",
            reference_id=str(purchase.id),
            session=session,
        )
        await purchase.insert(session=session)
        await log_event(
            account_id,
            "shop_purchase",
            "shop_purchase",
            str(purchase.id),
            {
                "price": price,
                "balance_after": balance,
                "item_ref": str(item_id) if item_id else None,
                "set_ref": str(set_id) if set_id else None,
                "is_gift": is_gift,
            },
            session=session,
        )
        return balance

    await run_atomic(charge)
    log.info("shop_purchase_created", purchase_id=str(purchase.id), account_id=account_id, price=price, status=status)

    if status != "pending_delivery":
        return purchase, None
    result = await delivery.attempt_delivery(purchase.id, actor_id=account_id, trigger="purchase")
    refreshed = await ShopPurchase.get(purchase.id)
    return refreshed or purchase, result


async def get_purchase(purchase_id: PydanticObjectId) -> ShopPurchase:
    purchase = await ShopPurchase.get(purchase_id)
    if not purchase:
        raise NotFoundError("Purchase not found", code="purchaseNotFound")
    return purchase


async def get_own_purchase(purchase_id: PydanticObjectId, account_id: int) -> ShopPurchase:
    purchase = await ShopPurchase.get(purchase_id)
    if not purchase or purchase.account_id != account_id:
        raise NotFoundError("Purchase not found", code="purchaseNotFound")
    return purchase


async def list_purchases(account_id: int, limit: int = 50, offset: int = 0) -> list[ShopPurchase]:
    return (
        await ShopPurchase.find(ShopPurchase.account_id == account_id)
        .sort(-ShopPurchase.created_at)
        .skip(offset)
        .limit(limit)
        .to_list()
    )


async def list_all_purchases(
    status: PurchaseStatus | None = None,
    account_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[ShopPurchase], int]:
    query = {}
    if status:
        query["status"] = status
    if account_id is not None:
        query["account_id"] = account_id
    finder = ShopPurchase.find(query)
    total = await finder.count()
    items = await finder.sort(-ShopPurchase.created_at).skip(offset).limit(limit).to_list()
    return items, total


def purchase_to_dict(p: ShopPurchase) -> dict:
    return {
        "id": str(p.id),
        "account_id": p.account_id,
        "item_ref": str(p.item_ref) if p.item_ref else None,
        "set_ref": str(p.set_ref) if p.set_ref else None,
        "character_guid": p.character_guid,
        "character_name": p.character_name,
        "realm_id": p.realm_id,
        "is_gift": p.is_gift,
        "gift_to_character_name": p.gift_to_character_name,
        "price_paid": p.price_paid,
        "original_price": p.original_price,
        "discount_applied": p.discount_applied,
        "category": p.category,
        "service_type": p.service_type,
        "is_refundable": p.is_refundable,
        "status": p.status,
        "delivery_attempts": p.delivery_attempts,
        "last_delivery_error": p.last_delivery_error,
        "delivered_at": p.delivered_at.isoformat() if p.delivered_at else None,
        "refunded_at": p.refunded_at.isoformat() if p.refunded_at else None,
        "created_at": p.created_at.isoformat(),
    }
