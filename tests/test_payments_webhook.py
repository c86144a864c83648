import hashlib
import hmac
import json
import threading

import pytest

from app.services import ledger, transactions
from app.services import payments as payments_service

pytestmark = pytest.mark.asyncio

SECRET = "whsec_test"


def _event(event: str, link_id: str, payment_id: str = "pay_1") -> bytes:
    body = {
        "event": event,
        "payload": {
            "payment_link": {"entity": {"id": link_id, "status": event.split(".")[1]}},
            "payment": {"entity": {"id": payment_id}},
        },
    }
    return json.dumps(body).encode()


def _sign(body: bytes) -> str:
    return hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()


async def _post(client, body: bytes, signature: str | None):
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers["X-Razorpay-Signature"] = signature
    return await client.post("/v1/payments/webhook", content=body, headers=headers)


async def test_bad_signature_rejected(client):
    await transactions.record_pending_transaction(1, "plink_a", 500, 500)
    body = _event("payment_link.paid", "plink_a")
    r = await _post(client, body, "0" * 64)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalidSignature"
    assert await ledger.get_balance(1) == 0


async def test_missing_signature_rejected(client):
    r = await _post(client, _event("payment_link.paid", "plink_a"), None)
    assert r.status_code == 400


async def test_paid_credits_and_duplicate_is_acked(client):
    await transactions.record_pending_transaction(2, "plink_b", 1150, 1000)
    body = _event("payment_link.paid", "plink_b")
    for _ in range(2):
        r = await _post(client, body, _sign(body))
        assert r.status_code == 200
        assert r.json() == {"status": "ok"}
    assert await ledger.get_balance(2) == 1150


async def test_unknown_session_is_acked(client):
    body = _event("payment_link.paid", "plink_unknown")
    r = await _post(client, body, _sign(body))
    assert r.status_code == 200


async def test_expired_and_cancelled(client):
    await transactions.record_pending_transaction(3, "plink_c", 500, 500)
    await transactions.record_pending_transaction(3, "plink_d", 500, 500)
    for event, link in (("payment_link.expired", "plink_c"), ("payment_link.cancelled", "plink_d")):
        body = _event(event, link)
        assert (await _post(client, body, _sign(body))).status_code == 200
    assert (await transactions.get_transaction("plink_c")).status == "expired"
    assert (await transactions.get_transaction("plink_d")).status == "failed"


class FakePaymentLinks:
    def __init__(self):
        self.calls = []

    def create(self, data):
        self.calls.append((data, threading.current_thread() is threading.main_thread()))
        return {"id": "plink_checkout", "short_url": "https://rzp.io/i/abc"}


async def test_checkout_creates_link_off_the_event_loop(db, monkeypatch):
    links = FakePaymentLinks()
    fake_client = type("FakeClient", (), {"payment_link": links})()
    monkeypatch.setattr(payments_service, "get_razorpay_client", lambda: fake_client)

    out = await payments_service.create_checkout(7, "THRALL", "shards_1000")

    assert out == {"session_id": "plink_checkout", "url": "https://rzp.io/i/abc"}
    data, on_main_thread = links.calls[0]
    assert not on_main_thread
    assert data["amount"] == 1000
    assert data["notes"]["account_id"] == "7"
    tx = await transactions.get_transaction("plink_checkout")
    assert tx.status == "pending"
    assert tx.package_units == 1150
