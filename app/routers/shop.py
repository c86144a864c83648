from datetime import datetime

from beanie import PydanticObjectId
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from app.deps import AccountSession, get_current_account, require_cron
from app.services import delivery, purchases, refunds

router = APIRouter()


class PurchaseRequest(BaseModel):
    character_guid: int
    character_name: str
    realm_id: int
    item_id: PydanticObjectId | None = None
    set_id: PydanticObjectId | None = None
    is_gift: bool = False
    gift_to_character_name: str | None = None
    gift_message: str | None = None


@router.post("/purchase")
async def shop_purchase(body: PurchaseRequest, account: AccountSession = Depends(get_current_account)):
    purchase, result = await purchases.create_purchase(
        account.account_id,
        body.character_guid,
        body.character_name,
        body.realm_id,
        item_id=body.item_id,
        set_id=body.set_id,
        is_gift=body.is_gift,
        gift_to_character_name=body.gift_to_character_name,
        gift_message=body.gift_message,
    )
    out = {"success": True, "purchase_id": str(purchase.id), "status": purchase.status}
    if result is not None and not result.success:
        out["warning"] = "deliveryPending"
    return out


@router.get("/purchases")
async def shop_purchases(
    account: AccountSession = Depends(get_current_account),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    items = await purchases.list_purchases(account.account_id, limit=limit, offset=offset)
    return {"purchases": [purchases.purchase_to_dict(p) for p in items], "limit": limit, "offset": offset}


@router.get("/purchases/{purchase_id}/refund-eligibility")
async def shop_refund_eligibility(
    purchase_id: PydanticObjectId,
    account: AccountSession = Depends(get_current_account),
):
    purchase = await purchases.get_own_purchase(purchase_id, account.account_id)
    reason = await refunds.evaluate(purchase, datetime.utcnow())
    return {"refundable": reason is None, "reason": reason}


@router.post("/purchases/{purchase_id}/refund")
async def shop_refund(purchase_id: PydanticObjectId, account: AccountSession = Depends(get_current_account)):
    """Self-refund within the refund window; the items are taken back."""
    purchase = await refunds.refund_purchase(purchase_id, account_id=account.account_id)
    return {"success": True, "purchase": purchases.purchase_to_dict(purchase)}


@router.post("/cron/retry-deliveries", dependencies=[Depends(require_cron)])
async def shop_retry_deliveries():
    """Scheduler hook: retry every pending delivery once."""
    stats = await delivery.sweep_pending_deliveries()
    return {"success": True, **stats}
