from datetime import datetime, timedelta

import pytest
import pytest_asyncio

from app.models.audit_log import AuditLog
from app.models.failed_job import FailedJob
from app.models.shop_admin import ShopAdmin
from app.models.shop_purchase import ShopPurchase
from app.services import bans, soap

pytestmark = pytest.mark.asyncio

ADMIN_ID = 99


@pytest_asyncio.fixture
async def admin(client, login):
    await ShopAdmin(account_id=ADMIN_ID, role="admin", display_name="GM").insert()
    login(ADMIN_ID, "GAMEMASTER")


async def _pending_purchase() -> ShopPurchase:
    purchase = ShopPurchase(
        account_id=1,
        character_guid=10,
        character_name="Arthas",
        realm_id=1,
        price_paid=100,
        original_price=100,
        item_entries=[49426],
    )
    await purchase.insert()
    return purchase


async def test_non_admin_is_forbidden(client, login):
    login(1)
    r = await client.get("/v1/admin/purchases")
    assert r.status_code == 403


async def test_list_purchases_filters_by_status(client, admin):
    await _pending_purchase()
    r = await client.get("/v1/admin/purchases", params={"status": "pending_delivery"})
    assert r.status_code == 200
    body = r.json()
    assert body["total"] == 1
    assert body["purchases"][0]["status"] == "pending_delivery"
    r = await client.get("/v1/admin/purchases", params={"status": "completed"})
    assert r.json()["total"] == 0


async def test_retry_and_fail(client, admin, add_character, monkeypatch):
    await add_character(10, 1, "Arthas")

    async def fake_send(character_name, subject, body, items, client=None):
        return soap.CommandResult(False, "Player not found")

    monkeypatch.setattr(soap, "send_items", fake_send)
    purchase = await _pending_purchase()

    r = await client.post(f"/v1/admin/purchases/{purchase.id}/retry")
    assert r.json() == {"success": False, "message": "Player not found"}

    r = await client.post(f"/v1/admin/purchases/{purchase.id}/fail", json={"reason": "character deleted"})
    assert r.status_code == 200
    assert r.json()["purchase"]["status"] == "failed"

    r = await client.post(f"/v1/admin/purchases/{purchase.id}/retry")
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "notPendingDelivery"

    actions = {a.action for a in await AuditLog.find(AuditLog.actor_id == ADMIN_ID).to_list()}
    assert {"deliver_purchase", "fail_delivery"} <= actions


async def test_ban_lifecycle(client, admin):
    r = await client.post("/v1/admin/bans", json={"account_id": 5, "reason": "chargeback"})
    assert r.status_code == 200
    ban_id = r.json()["id"]
    assert r.json()["in_effect"] is True
    assert await bans.get_active_ban(5) is not None

    r = await client.patch(f"/v1/admin/bans/{ban_id}", json={"reason": "chargeback, confirmed"})
    assert r.json()["reason"] == "chargeback, confirmed"

    r = await client.delete(f"/v1/admin/bans/{ban_id}")
    assert r.json()["is_active"] is False
    assert await bans.get_active_ban(5) is None

    r = await client.get("/v1/admin/bans", params={"account_id": 5})
    assert r.json()["total"] == 1

    r = await client.get("/v1/admin/audit", params={"target_type": "shop_ban"})
    assert sorted(e["action"] for e in r.json()["entries"]) == ["create_ban", "delete_ban", "update_ban"]


async def test_expired_ban_is_not_in_effect(db):
    await bans.create_ban(6, "cooldown", banned_by=ADMIN_ID, expires_at=datetime.utcnow() - timedelta(minutes=1))
    assert await bans.get_active_ban(6) is None
    await bans.create_ban(6, "again", banned_by=ADMIN_ID, expires_at=datetime.utcnow() + timedelta(days=1))
    assert (await bans.get_active_ban(6)).reason == "again"


async def test_failed_jobs_listing(client, admin):
    await FailedJob(job_name="retry_pending_deliveries", job_id="j1", error_type="RuntimeError", reason="boom").insert()
    r = await client.get("/v1/admin/failed-jobs", params={"job_name": "retry_pending_deliveries"})
    assert r.status_code == 200
    body = r.json()
    assert body["total"] == 1
    assert body["jobs"][0]["error_type"] == "RuntimeError"
