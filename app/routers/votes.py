from beanie import PydanticObjectId
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from app.core.logging import get_logger
from app.deps import AccountSession, get_current_account
from app.services import votes as vote_service

router = APIRouter()
log = get_logger(__name__)


class ClaimRequest(BaseModel):
    site_id: PydanticObjectId


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.headers.get("x-real-ip") or (request.client.host if request.client else None)


@router.get("/sites")
async def vote_sites(account: AccountSession = Depends(get_current_account)):
    return {"sites": await vote_service.sites_with_status(account.account_id)}


@router.post("/claim")
async def vote_claim(body: ClaimRequest, request: Request, account: AccountSession = Depends(get_current_account)):
    return await vote_service.claim_vote(account.account_id, body.site_id, _client_ip(request))


@router.post("/pingback/gtop100")
async def vote_pingback_gtop100(request: Request):
    """Gtop100 vote callback. Always 200 so the site does not retry."""
    content_type = request.headers.get("content-type", "")
    try:
        if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
            payload = dict(await request.form())
        else:
            payload = await request.json()
    except ValueError:
        log.warning("gtop100_pingback_unparseable", content_type=content_type)
        return {"status": "ok"}
    if not isinstance(payload, dict):
        return {"status": "ok"}
    try:
        recorded = await vote_service.handle_gtop100_pingback(payload)
    except Exception:
        # gtop100 re-posts on anything but a 200.
        log.exception("gtop100_pingback_failed")
    else:
        log.info("gtop100_pingback", recorded=recorded)
    return {"status": "ok"}
