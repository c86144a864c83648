"""Purchase delivery: pending_delivery -> completed | failed, retried out of band.

Delivery is at-least-once. A caller first takes a short lease on the purchase
so that only one of them sends at a time. Every shop mail carries the purchase
id in its subject, and once a send may have happened (a counted attempt, or a
purchase older than the grace period) the realm is asked whether that mail
already arrived; if it did, the purchase is completed without a second copy.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal

from beanie import PydanticObjectId
from pymongo import ReturnDocument
from sqlalchemy.exc import SQLAlchemyError

from app.core.audit import log_event
from app.core.config import get_settings
from app.core.exceptions import ConflictError, NotFoundError, NotPendingDeliveryError
from app.core.logging import get_logger
from app.models.shop_purchase import ShopPurchase
from app.services import characters, soap

log = get_logger(__name__)

DeliveryTrigger = Literal["purchase", "admin", "cron"]

DELIVERY_IN_PROGRESS = "deliveryInProgress"


@dataclass
class DeliveryResult:
    success: bool
    message: str


def mail_subject(purchase: ShopPurchase) -> str:
    """Per-purchase subject; doubles as the idempotency key checked on retry."""
    prefix = "Gift from " if purchase.is_gift else ""
    return soap.sanitize(f"{prefix}{get_settings().shop_name} order {purchase.id}")


def mail_body(purchase: ShopPurchase) -> str:
    if purchase.is_gift and purchase.gift_message:
        return purchase.gift_message
    if purchase.is_refundable:
        return "Thank you for your purchase! Refundable within 2h if kept."
    return "Thank you for your purchase!"


async def _load_pending(purchase_id: PydanticObjectId) -> ShopPurchase:
    purchase = await ShopPurchase.get(purchase_id)
    if not purchase:
        raise NotFoundError("Purchase not found", code="purchaseNotFound")
    if purchase.status != "pending_delivery":
        raise NotPendingDeliveryError(purchase.status)
    return purchase


def _unlocked(now: datetime) -> dict:
    return {"$or": [{"delivery_lock_until": None}, {"delivery_lock_until": {"$lte": now}}]}


async def _claim(purchase_id: PydanticObjectId) -> ShopPurchase | None:
    """Take the delivery lease; None if another caller holds it or the purchase settled."""
    now = datetime.utcnow()
    lease = timedelta(seconds=get_settings().delivery_lease_seconds)
    raw = await ShopPurchase.get_motor_collection().find_one_and_update(
        {"_id": purchase_id, "status": "pending_delivery", **_unlocked(now)},
        {"$set": {"delivery_lock_until": now + lease, "updated_at": now}},
        return_document=ReturnDocument.AFTER,
    )
    return ShopPurchase.model_validate(raw) if raw else None


async def _mark_delivered(purchase: ShopPurchase) -> bool:
    now = datetime.utcnow()
    result = await ShopPurchase.get_motor_collection().update_one(
        {"_id": purchase.id, "status": "pending_delivery"},
        {
            "$set": {
                "status": "completed",
                "delivered_at": now,
                "updated_at": now,
                "last_delivery_error": None,
                "delivery_lock_until": None,
            },
            "$inc": {"delivery_attempts": 1},
        },
    )
    return result.modified_count == 1


async def _record_failure(purchase: ShopPurchase, message: str) -> None:
    await ShopPurchase.get_motor_collection().update_one(
        {"_id": purchase.id, "status": "pending_delivery"},
        {
            "$set": {
                "last_delivery_error": message[:500],
                "updated_at": datetime.utcnow(),
                "delivery_lock_until": None,
            },
            "$inc": {"delivery_attempts": 1},
        },
    )


def _may_have_been_sent(purchase: ShopPurchase, now: datetime) -> bool:
    grace = timedelta(seconds=get_settings().delivery_grace_seconds)
    return purchase.delivery_attempts > 0 or now - purchase.created_at >= grace


async def _already_delivered(purchase: ShopPurchase, subject: str) -> bool:
    try:
        return await characters.find_mail_by_subject(purchase.recipient_name, subject) is not None
    except SQLAlchemyError as e:
        # Without the check a resend could duplicate items; treat as a failed attempt.
        log.warning("delivery_postcondition_check_failed", purchase_id=str(purchase.id), error=str(e))
        raise


async def attempt_delivery(
    purchase_id: PydanticObjectId,
    actor_id: int | None = None,
    trigger: DeliveryTrigger = "admin",
) -> DeliveryResult:
    """Send a pending purchase's items to its recipient.

    Success moves it to `completed`. Failure or timeout leaves it in
    `pending_delivery` with the attempt counted. The outcome is always audited.
    While another caller holds the lease nothing is sent, counted or audited
    and the result message is `deliveryInProgress`.
    """
    await _load_pending(purchase_id)
    purchase = await _claim(purchase_id)
    if purchase is None:
        await _load_pending(purchase_id)
        log.info("purchase_delivery_in_progress", purchase_id=str(purchase_id), trigger=trigger)
        return DeliveryResult(False, DELIVERY_IN_PROGRESS)
    subject = mail_subject(purchase)

    if not purchase.item_entries:
        result = DeliveryResult(False, "No items to deliver")
    else:
        try:
            delivered_before = _may_have_been_sent(purchase, datetime.utcnow()) and await _already_delivered(
                purchase, subject
            )
        except SQLAlchemyError as e:
            delivered_before = None
            result = DeliveryResult(False, f"Realm database unavailable: {e}")
        if delivered_before:
            result = DeliveryResult(True, "alreadyDelivered")
        elif delivered_before is not None:
            sent = await soap.send_items(
                purchase.recipient_name,
                subject,
                mail_body(purchase),
                [(entry, 1) for entry in purchase.item_entries],
            )
            result = DeliveryResult(sent.success, sent.message)

    if result.success:
        await _mark_delivered(purchase)
        await characters.mark_mail_non_returnable(purchase.recipient_name, subject)
        log.info("purchase_delivered", purchase_id=str(purchase.id), trigger=trigger)
    else:
        await _record_failure(purchase, result.message)
        log.warning("purchase_delivery_failed", purchase_id=str(purchase.id), trigger=trigger, error=result.message)

    await log_event(
        actor_id,
        "deliver_purchase",
        "shop_purchase",
        str(purchase.id),
        {
            "account_id": purchase.account_id,
            "trigger": trigger,
            "success": result.success,
            "message": result.message[:500],
        },
    )
    return result


async def mark_delivery_failed(purchase_id: PydanticObjectId, actor_id: int | None, reason: str) -> ShopPurchase:
    """Operator (or attempt cap) gives up on delivery. The debit is not reversed."""
    purchase = await _load_pending(purchase_id)
    now = datetime.utcnow()
    result = await ShopPurchase.get_motor_collection().update_one(
        {"_id": purchase.id, "status": "pending_delivery", **_unlocked(now)},
        {"$set": {"status": "failed", "last_delivery_error": reason[:500], "updated_at": now}},
    )
    if result.modified_count != 1:
        await _load_pending(purchase_id)
        raise ConflictError("A delivery attempt is in progress", code=DELIVERY_IN_PROGRESS)
    await log_event(
        actor_id,
        "fail_delivery",
        "shop_purchase",
        str(purchase.id),
        {"account_id": purchase.account_id, "reason": reason},
    )
    log.info("purchase_delivery_abandoned", purchase_id=str(purchase.id), reason=reason)
    purchase.status = "failed"
    return purchase


async def get_pending_deliveries(limit: int = 100, now: datetime | None = None) -> list[ShopPurchase]:
    """Pending purchases due for a retry.

    Never-attempted purchases younger than the grace period are left to the
    request that created them.
    """
    now = now or datetime.utcnow()
    settled_before = now - timedelta(seconds=get_settings().delivery_grace_seconds)
    return (
        await ShopPurchase.find(
            {
                "status": "pending_delivery",
                "$or": [{"delivery_attempts": {"$gt": 0}}, {"created_at": {"$lte": settled_before}}],
            }
        )
        .sort(+ShopPurchase.created_at)
        .limit(limit)
        .to_list()
    )


async def sweep_pending_deliveries(max_attempts: int | None = None) -> dict[str, int]:
    """Retry every due pending delivery once; give up on those past the attempt cap."""
    settings = get_settings()
    cap = max_attempts if max_attempts is not None else settings.max_delivery_attempts
    purchases = await get_pending_deliveries(settings.delivery_sweep_batch)
    stats = {"processed": len(purchases), "succeeded": 0, "failed": 0, "abandoned": 0, "in_progress": 0}
    for purchase in purchases:
        try:
            if cap and purchase.delivery_attempts >= cap:
                await mark_delivery_failed(purchase.id, None, f"Gave up after {purchase.delivery_attempts} attempts")
                stats["abandoned"] += 1
                continue
            result = await attempt_delivery(purchase.id, trigger="cron")
        except NotPendingDeliveryError:
            # Settled by a concurrent admin retry.
            continue
        except ConflictError:
            stats["in_progress"] += 1
            continue
        if result.success:
            stats["succeeded"] += 1
        elif result.message == DELIVERY_IN_PROGRESS:
            stats["in_progress"] += 1
        else:
            stats["failed"] += 1
    log.info("delivery_sweep_done", **stats)
    return stats
