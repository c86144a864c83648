from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from app.deps import AccountSession, get_current_account
from app.services import ledger
from app.services import payments as payments_service
from app.services import transactions as transaction_service

router = APIRouter()


class CheckoutRequest(BaseModel):
    package_id: str


@router.get("/balance")
async def shards_balance(account: AccountSession = Depends(get_current_account)):
    """Return current shard balance."""
    balance = await ledger.get_balance(account.account_id)
    return {"balance": balance}


@router.get("/ledger")
async def shards_ledger(
    account: AccountSession = Depends(get_current_account),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Return ledger entries for the current account (newest first)."""
    entries = await ledger.list_entries(account.account_id, limit=limit, offset=offset)
    out = [
        {
            "id": str(e.id),
            "amount": e.amount,
            "balance_after": e.balance_after,
            "reason": e.reason,
            "reference_type": e.reference_type,
            "reference_id": e.reference_id,
            "created_at": e.created_at.isoformat(),
        }
        for e in entries
    ]
    return {"entries": out, "limit": limit, "offset": offset}


@router.get("/packages")
async def shards_packages():
    return {"packages": payments_service.list_packages()}


@router.get("/transactions")
async def shards_transactions(account: AccountSession = Depends(get_current_account)):
    txs = await transaction_service.list_transactions(account.account_id)
    return {
        "transactions": [
            {
                "id": str(t.id),
                "package_id": t.package_id,
                "units": t.package_units,
                "price_minor": t.price_minor_units,
                "currency": t.currency,
                "status": t.status,
                "created_at": t.created_at.isoformat(),
                "credited_at": t.credited_at.isoformat() if t.credited_at else None,
            }
            for t in txs
        ]
    }


@router.post("/checkout")
async def shards_checkout(body: CheckoutRequest, account: AccountSession = Depends(get_current_account)):
    """Open a Razorpay payment link; the webhook credits the shards once paid."""
    return await payments_service.create_checkout(account.account_id, account.username, body.package_id)
