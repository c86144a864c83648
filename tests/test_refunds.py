from datetime import datetime, timedelta

import pytest

from app.core.exceptions import PolicyBlockedError
from app.models.shop_purchase import ShopPurchase
from app.services import characters, ledger, refunds
from app.services.characters import Character, ItemLocation

pytestmark = [pytest.mark.asyncio, pytest.mark.usefixtures("db")]

NOW = datetime(2026, 3, 1, 12, 0, 0)


class FakeWorld:
    def __init__(self, chars=(), items=None):
        self.chars = {c.guid: c for c in chars}
        self.items = items or {}

    async def get_character_by_guid(self, guid):
        return self.chars.get(guid)

    async def get_character_by_name(self, name):
        return next((c for c in self.chars.values() if c.name.lower() == name.lower()), None)

    async def find_item_location(self, owner_guid, item_entry):
        return self.items.get((owner_guid, item_entry))


def _char(guid=10, name="Arthas", online=False):
    return Character(guid=guid, account=1, name=name, race=1, class_id=1, level=80, online=online)


def _purchase(**kwargs) -> ShopPurchase:
    fields = dict(
        account_id=1,
        character_guid=10,
        character_name="Arthas",
        realm_id=1,
        price_paid=500,
        original_price=500,
        item_entries=[49426],
        category="mounts",
        is_refundable=True,
        status="completed",
        created_at=NOW - timedelta(minutes=30),
    )
    fields.update(kwargs)
    return ShopPurchase(**fields)


def _world_with_item(online=False):
    return FakeWorld([_char(online=online)], {(10, 49426): ItemLocation("mail", item_guid=1, mail_id=1)})


async def test_eligible():
    assert await refunds.evaluate(_purchase(), NOW, _world_with_item()) is None


async def test_status_must_be_completed():
    for status in ("pending_delivery", "failed", "refunded"):
        reason = await refunds.evaluate(_purchase(status=status), NOW, _world_with_item())
        assert reason == "purchaseNotRefundable"


async def test_not_refundable_item():
    assert refunds.evaluate_static(_purchase(is_refundable=False), NOW) == "itemNotRefundable"


async def test_services_are_not_refundable():
    service = _purchase(category="services", service_type="rename", item_entries=[])
    assert refunds.evaluate_static(service, NOW) == "itemNotRefundable"


async def test_window_boundary():
    at_limit = _purchase(created_at=NOW - refunds.REFUND_WINDOW)
    just_past = _purchase(created_at=NOW - refunds.REFUND_WINDOW - timedelta(seconds=1))
    assert refunds.evaluate_static(at_limit, NOW) is None
    assert refunds.evaluate_static(just_past, NOW) == "refundExpired"


async def test_recipient_online():
    assert await refunds.evaluate(_purchase(), NOW, _world_with_item(online=True)) == "characterOnline"


async def test_gift_recipient_missing():
    gift = _purchase(is_gift=True, gift_to_character_name="Jaina")
    assert await refunds.evaluate(gift, NOW, _world_with_item()) == "recipientNotFound"


async def test_item_gone():
    assert await refunds.evaluate(_purchase(), NOW, FakeWorld([_char()])) == "itemNotInInventory"


async def test_every_set_item_must_be_present():
    bundle = _purchase(category="sets", item_entries=[1, 2])
    world = FakeWorld([_char()], {(10, 1): ItemLocation("inventory", item_guid=5)})
    assert await refunds.evaluate(bundle, NOW, world) == "itemNotInInventory"


async def test_admin_may_refund_services():
    service = _purchase(category="services", service_type="rename", item_entries=[], created_at=NOW - timedelta(days=3))
    assert await refunds.evaluate(service, NOW, FakeWorld(), by_admin=True) is None


async def test_refund_credits_and_removes_item(db, add_character, add_item):
    await add_character(10, 1, "Arthas")
    await add_item(10, item_guid=777, item_entry=49426, mail_id=3)
    purchase = _purchase(created_at=datetime.utcnow() - timedelta(minutes=5))
    await purchase.insert()

    refunded = await refunds.refund_purchase(purchase.id, account_id=1)

    assert refunded.status == "refunded"
    assert refunded.refunded_by is None
    assert await ledger.get_balance(1) == 500
    assert await characters.find_item_location(10, 49426) is None
    with pytest.raises(PolicyBlockedError) as exc:
        await refunds.refund_purchase(purchase.id, account_id=1)
    assert exc.value.code == "purchaseNotRefundable"
    assert await ledger.get_balance(1) == 500


async def test_refund_blocked_when_item_in_bags_of_online_character(db, add_character, add_item):
    await add_character(10, 1, "Arthas", online=True)
    await add_item(10, item_guid=778, item_entry=49426)
    purchase = _purchase(created_at=datetime.utcnow())
    await purchase.insert()

    with pytest.raises(PolicyBlockedError) as exc:
        await refunds.refund_purchase(purchase.id, account_id=1)
    assert exc.value.code == "characterOnline"
    assert (await ShopPurchase.get(purchase.id)).status == "completed"


async def test_admin_refund_records_operator(db, realm):
    service = _purchase(category="services", service_type="rename", item_entries=[])
    await service.insert()
    refunded = await refunds.refund_purchase(service.id, admin_id=42)
    assert refunded.refunded_by == 42
    assert await ledger.get_balance(1) == 500
