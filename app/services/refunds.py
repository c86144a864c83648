"""Refunds: eligibility rules and the refund operation itself.

A purchase can be handed back within two hours of buying it, as long as the
recipient is offline and every delivered item can still be found in their
mailbox or bags. Refunding credits the price back and removes those items.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Literal, Protocol

from beanie import PydanticObjectId
from pymongo import ReturnDocument
from sqlalchemy.exc import SQLAlchemyError

from app.core.audit import log_event
from app.core.exceptions import NotFoundError, PolicyBlockedError
from app.core.logging import get_logger
from app.db.transaction import run_atomic
from app.models.shop_purchase import ShopPurchase
from app.services import characters, ledger
from app.services.characters import Character, ItemLocation

log = get_logger(__name__)

REFUND_WINDOW = timedelta(hours=2)

RefundBlockedReason = Literal[
    "purchaseNotRefundable",
    "itemNotRefundable",
    "refundExpired",
    "characterOnline",
    "recipientNotFound",
    "itemNotInInventory",
]


class GameWorldProbe(Protocol):
    """What the evaluator needs to know about the game world.

    The `characters` service module satisfies this; tests pass fakes.
    """

    async def get_character_by_guid(self, guid: int) -> Character | None: ...

    async def get_character_by_name(self, name: str) -> Character | None: ...

    async def find_item_location(self, owner_guid: int, item_entry: int) -> ItemLocation | None: ...


@dataclass
class RefundCheck:
    reason: RefundBlockedReason | None = None
    item_locations: list[ItemLocation] = field(default_factory=list)

    @property
    def allowed(self) -> bool:
        return self.reason is None


def _skips_world_checks(purchase: ShopPurchase, by_admin: bool) -> bool:
    # Operators may refund services; there is nothing in the world to take back.
    return by_admin and (purchase.is_service or not purchase.item_entries)


def evaluate_static(purchase: ShopPurchase, now: datetime, by_admin: bool = False) -> RefundBlockedReason | None:
    """Checks that need no game-world data: status, refundability, kind, age."""
    if purchase.status != "completed":
        return "purchaseNotRefundable"
    if not purchase.is_refundable:
        return "itemNotRefundable"
    if _skips_world_checks(purchase, by_admin):
        return None
    if purchase.is_service or not purchase.item_entries:
        return "itemNotRefundable"
    if now - purchase.created_at > REFUND_WINDOW:
        return "refundExpired"
    return None


async def _check(
    purchase: ShopPurchase,
    now: datetime,
    world: GameWorldProbe,
    by_admin: bool,
) -> RefundCheck:
    reason = evaluate_static(purchase, now, by_admin)
    if reason or _skips_world_checks(purchase, by_admin):
        return RefundCheck(reason)

    if purchase.is_gift and purchase.gift_to_character_name:
        recipient = await world.get_character_by_name(purchase.gift_to_character_name)
        if recipient is None:
            return RefundCheck("recipientNotFound")
        recipient_guid = recipient.guid
    else:
        recipient = await world.get_character_by_guid(purchase.character_guid)
        recipient_guid = purchase.character_guid
    # The worldserver caches an online character's items in memory.
    if recipient is not None and recipient.online:
        return RefundCheck("characterOnline")

    locations = []
    for entry in purchase.item_entries:
        loc = await world.find_item_location(recipient_guid, entry)
        if loc is None:
            return RefundCheck("itemNotInInventory")
        locations.append(loc)
    return RefundCheck(item_locations=locations)


async def evaluate(
    purchase: ShopPurchase,
    now: datetime,
    world: GameWorldProbe = characters,
    by_admin: bool = False,
) -> RefundBlockedReason | None:
    """First refund rule the purchase fails, or None if it may be refunded."""
    return (await _check(purchase, now, world, by_admin)).reason


async def _remove_items(purchase: ShopPurchase, locations: list[ItemLocation]) -> int:
    removed = 0
    for loc in locations:
        try:
            await characters.remove_item(loc)
            removed += 1
        except SQLAlchemyError as e:
            # The refund has committed; a leftover item is an operator follow-up.
            log.error(
                "refund_item_removal_failed",
                purchase_id=str(purchase.id),
                item_guid=loc.item_guid,
                error=str(e),
            )
    return removed


async def refund_purchase(
    purchase_id: PydanticObjectId,
    account_id: int | None = None,
    admin_id: int | None = None,
    world: GameWorldProbe = characters,
) -> ShopPurchase:
    """Refund a purchase for its owner (`account_id`) or an operator (`admin_id`).

    The status flip, the shard credit and the audit row commit together; the
    delivered items are removed afterwards on a best-effort basis.
    """
    purchase = await ShopPurchase.get(purchase_id)
    if not purchase or (account_id is not None and purchase.account_id != account_id):
        raise NotFoundError("Purchase not found", code="purchaseNotFound")

    by_admin = admin_id is not None
    check = await _check(purchase, datetime.utcnow(), world, by_admin)
    if not check.allowed:
        raise PolicyBlockedError(check.reason)

    async def claim_and_credit(session) -> dict:
        now = datetime.utcnow()
        raw = await ShopPurchase.get_motor_collection().find_one_and_update(
            {"_id": purchase.id, "status": "completed"},
            {"$set": {"status": "refunded", "refunded_at": now, "refunded_by": admin_id, "updated_at": now}},
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        if raw is None:
            raise PolicyBlockedError("purchaseNotRefundable")
        balance = None
        if purchase.price_paid > 0:
            balance = await ledger.credit(
                purchase.account_id,
                purchase.price_paid,
                "refund",
                reference_type="shop_purchase",
                reference_id=str(purchase.id),
                session=session,
            )
        await log_event(
            admin_id if by_admin else purchase.account_id,
            "refund_purchase",
            "shop_purchase",
            str(purchase.id),
            {
                "account_id": purchase.account_id,
                "price_refunded": purchase.price_paid,
                "balance_after": balance,
                "by_admin": by_admin,
            },
            session=session,
        )
        return raw

    raw = await run_atomic(claim_and_credit)
    removed = await _remove_items(purchase, check.item_locations)
    log.info(
        "purchase_refunded",
        purchase_id=str(purchase.id),
        account_id=purchase.account_id,
        by_admin=by_admin,
        items_removed=removed,
    )
    return ShopPurchase.model_validate(raw)
