from datetime import datetime

from beanie import PydanticObjectId
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.core.pagination import PageParams, page_params, page_response
from app.deps import require_admin
from app.models.audit_log import AuditLog
from app.models.failed_job import FailedJob
from app.models.shard_transaction import TransactionStatus
from app.models.shop_admin import ShopAdmin
from app.models.shop_ban import ShopBan
from app.models.shop_purchase import PurchaseStatus
from app.services import bans, delivery, purchases, refunds
from app.services import transactions as transaction_service

router = APIRouter()


class FailDeliveryRequest(BaseModel):
    reason: str = "Marked failed by operator"


class CreateBanRequest(BaseModel):
    account_id: int
    reason: str
    expires_at: datetime | None = None


class UpdateBanRequest(BaseModel):
    reason: str | None = None
    expires_at: datetime | None = None
    permanent: bool = False
    is_active: bool | None = None


def _ban_to_dict(b: ShopBan) -> dict:
    return {
        "id": str(b.id),
        "account_id": b.account_id,
        "reason": b.reason,
        "banned_by": b.banned_by,
        "expires_at": b.expires_at.isoformat() if b.expires_at else None,
        "is_active": b.is_active,
        "in_effect": b.is_in_effect(datetime.utcnow()),
        "created_at": b.created_at.isoformat(),
    }


@router.get("/purchases")
async def admin_purchases(
    status: PurchaseStatus | None = None,
    account_id: int | None = None,
    page: PageParams = Depends(page_params),
    admin: ShopAdmin = Depends(require_admin),
):
    """Admin: all purchases, newest first; filter by status to find stuck deliveries."""
    items, total = await purchases.list_all_purchases(status, account_id, page.limit, page.offset)
    return page_response("purchases", [purchases.purchase_to_dict(p) for p in items], total, page)


@router.post("/purchases/{purchase_id}/retry")
async def admin_retry_delivery(purchase_id: PydanticObjectId, admin: ShopAdmin = Depends(require_admin)):
    result = await delivery.attempt_delivery(purchase_id, actor_id=admin.account_id, trigger="admin")
    return {"success": result.success, "message": result.message}


@router.post("/purchases/{purchase_id}/fail")
async def admin_fail_delivery(
    purchase_id: PydanticObjectId,
    body: FailDeliveryRequest,
    admin: ShopAdmin = Depends(require_admin),
):
    purchase = await delivery.mark_delivery_failed(purchase_id, admin.account_id, body.reason)
    return {"success": True, "purchase": purchases.purchase_to_dict(purchase)}


@router.post("/purchases/{purchase_id}/refund")
async def admin_refund(purchase_id: PydanticObjectId, admin: ShopAdmin = Depends(require_admin)):
    purchase = await refunds.refund_purchase(purchase_id, admin_id=admin.account_id)
    return {"success": True, "purchase": purchases.purchase_to_dict(purchase)}


@router.get("/bans")
async def admin_bans(
    account_id: int | None = None,
    active_only: bool = False,
    page: PageParams = Depends(page_params),
    admin: ShopAdmin = Depends(require_admin),
):
    items, total = await bans.list_bans(account_id, active_only, page.limit, page.offset)
    return page_response("bans", [_ban_to_dict(b) for b in items], total, page)


@router.post("/bans")
async def admin_create_ban(body: CreateBanRequest, admin: ShopAdmin = Depends(require_admin)):
    ban = await bans.create_ban(body.account_id, body.reason, admin.account_id, body.expires_at)
    return _ban_to_dict(ban)


@router.patch("/bans/{ban_id}")
async def admin_update_ban(ban_id: PydanticObjectId, body: UpdateBanRequest, admin: ShopAdmin = Depends(require_admin)):
    ban = await bans.update_ban(
        ban_id,
        admin.account_id,
        reason=body.reason,
        expires_at=body.expires_at,
        clear_expiry=body.permanent,
        is_active=body.is_active,
    )
    return _ban_to_dict(ban)


@router.delete("/bans/{ban_id}")
async def admin_delete_ban(ban_id: PydanticObjectId, admin: ShopAdmin = Depends(require_admin)):
    ban = await bans.deactivate_ban(ban_id, admin.account_id)
    return _ban_to_dict(ban)


@router.get("/audit")
async def admin_audit(
    action: str | None = None,
    target_type: str | None = None,
    page: PageParams = Depends(page_params),
    admin: ShopAdmin = Depends(require_admin),
):
    query = {}
    if action:
        query["action"] = action
    if target_type:
        query["target_type"] = target_type
    finder = AuditLog.find(query)
    total = await finder.count()
    entries = await finder.sort(-AuditLog.created_at).skip(page.offset).limit(page.limit).to_list()
    out = [
        {
            "id": str(e.id),
            "actor_id": e.actor_id,
            "action": e.action,
            "target_type": e.target_type,
            "target_id": e.target_id,
            "details": e.details,
            "created_at": e.created_at.isoformat(),
        }
        for e in entries
    ]
    return page_response("entries", out, total, page)


@router.get("/transactions")
async def admin_transactions(
    status: TransactionStatus | None = None,
    account_id: int | None = None,
    page: PageParams = Depends(page_params),
    admin: ShopAdmin = Depends(require_admin),
):
    items, total = await transaction_service.list_all_transactions(status, account_id, page.limit, page.offset)
    out = [
        {
            "id": str(t.id),
            "account_id": t.account_id,
            "session_id": t.external_session_id,
            "payment_ref": t.external_payment_ref,
            "package_id": t.package_id,
            "units": t.package_units,
            "price_minor": t.price_minor_units,
            "currency": t.currency,
            "status": t.status,
            "created_at": t.created_at.isoformat(),
            "credited_at": t.credited_at.isoformat() if t.credited_at else None,
        }
        for t in items
    ]
    return page_response("transactions", out, total, page)


@router.get("/failed-jobs")
async def admin_failed_jobs(
    job_name: str | None = None,
    page: PageParams = Depends(page_params),
    admin: ShopAdmin = Depends(require_admin),
):
    """Admin: background sweeps that raised, newest first."""
    finder = FailedJob.find({"job_name": job_name} if job_name else {})
    total = await finder.count()
    jobs = await finder.sort(-FailedJob.created_at).skip(page.offset).limit(page.limit).to_list()
    out = [
        {
            "id": str(j.id),
            "job_name": j.job_name,
            "job_id": j.job_id,
            "error_type": j.error_type,
            "reason": j.reason,
            "context": j.context,
            "created_at": j.created_at.isoformat(),
        }
        for j in jobs
    ]
    return page_response("jobs", out, total, page)
