"""Razorpay payment links for shard packages, and the webhook that settles them."""

import asyncio
import json
import time
from dataclasses import dataclass
from functools import lru_cache

import razorpay

from app.core.config import get_settings
from app.core.exceptions import BadRequestError, NotFoundError
from app.core.logging import get_logger
from app.core.security import verify_razorpay_webhook
from app.services import bans, transactions

log = get_logger(__name__)


@dataclass(frozen=True)
class ShardPackage:
    id: str
    units: int
    price_minor: int  # cents


SHARD_PACKAGES: dict[str, ShardPackage] = {
    p.id: p
    for p in (
        ShardPackage("shards_500", 500, 500),
        ShardPackage("shards_1000", 1150, 1000),
        ShardPackage("shards_2500", 3000, 2500),
        ShardPackage("shards_5000", 6250, 5000),
        ShardPackage("shards_10000", 14000, 10000),
    )
}


@lru_cache
def get_razorpay_client() -> razorpay.Client:
    settings = get_settings()
    if not settings.razorpay_key_id or not settings.razorpay_key_secret:
        raise BadRequestError("Payments not configured")
    return razorpay.Client(auth=(settings.razorpay_key_id, settings.razorpay_key_secret))


def list_packages() -> list[dict]:
    currency = get_settings().payments_currency
    return [
        {"id": p.id, "units": p.units, "price_minor": p.price_minor, "currency": currency}
        for p in SHARD_PACKAGES.values()
    ]


async def create_checkout(account_id: int, username: str, package_id: str) -> dict:
    """Open a payment link for a package and record the pending transaction."""
    await bans.ensure_not_banned(account_id)
    package = SHARD_PACKAGES.get(package_id)
    if package is None:
        raise NotFoundError("Unknown shard package", code="invalidPackage")
    settings = get_settings()
    client = get_razorpay_client()
    # razorpay.Client is blocking.
    link = await asyncio.to_thread(
        client.payment_link.create,
        {
            "amount": package.price_minor,
            "currency": settings.payments_currency,
            "description": f"{package.units} shards",
            "callback_url": f"{settings.public_base_url}/shop?checkout=success",
            "callback_method": "get",
            "notes": {"account_id": str(account_id), "username": username, "package_id": package.id},
            "expire_by": _expire_by(settings.checkout_expiry_seconds),
        }
    )
    await transactions.record_pending_transaction(
        account_id,
        link["id"],
        package.units,
        package.price_minor,
        package_id=package.id,
        currency=settings.payments_currency,
    )
    log.info("checkout_created", account_id=account_id, package_id=package.id, session_id=link["id"])
    return {"session_id": link["id"], "url": link["short_url"]}


def _expire_by(seconds: int) -> int:
    # Razorpay refuses expiries less than 15 minutes out.
    return int(time.time()) + max(seconds, 16 * 60)


def _entity(data: dict, name: str) -> dict:
    return data.get("payload", {}).get(name, {}).get("entity", {}) or {}


async def handle_webhook(payload: bytes, signature: str | None) -> str | None:
    """Verify the HMAC, then apply the event to its transaction.

    Returns the outcome for logging. Duplicate and unknown events are no-ops;
    the caller acknowledges them like any other verified event.
    """
    settings = get_settings()
    if not settings.razorpay_webhook_secret:
        raise BadRequestError("Webhook secret not configured")
    if not signature or not verify_razorpay_webhook(payload, signature, settings.razorpay_webhook_secret):
        raise BadRequestError("Invalid webhook signature", code="invalidSignature")
    try:
        data = json.loads(payload.decode())
    except ValueError as e:
        raise BadRequestError("Malformed webhook body") from e

    event = data.get("event")
    session_id = _entity(data, "payment_link").get("id")
    if not session_id:
        log.info("payment_webhook_ignored", webhook_event=event)
        return None

    if event == "payment_link.paid":
        payment_ref = _entity(data, "payment").get("id")
        outcome = await transactions.complete_transaction(session_id, payment_ref)
        log.info("payment_webhook_paid", session_id=session_id, outcome=outcome.value)
        return outcome.value
    if event == "payment_link.expired":
        await transactions.expire_transaction(session_id)
        return "expired"
    if event == "payment_link.cancelled":
        await transactions.fail_transaction(session_id)
        return "failed"
    log.info("payment_webhook_ignored", webhook_event=event, session_id=session_id)
    return None
