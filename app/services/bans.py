"""Shop bans: an account with an active, unexpired ban cannot buy or check out."""

from datetime import datetime

from beanie import PydanticObjectId
from beanie.operators import Or

from app.core.audit import log_event
from app.core.exceptions import NotFoundError, PolicyBlockedError
from app.core.logging import get_logger
from app.models.shop_ban import ShopBan

log = get_logger(__name__)


async def get_active_ban(account_id: int, now: datetime | None = None) -> ShopBan | None:
    now = now or datetime.utcnow()
    return await ShopBan.find_one(
        ShopBan.account_id == account_id,
        ShopBan.is_active == True,  # noqa: E712
        Or(ShopBan.expires_at == None, ShopBan.expires_at > now),  # noqa: E711
    )


async def ensure_not_banned(account_id: int) -> None:
    ban = await get_active_ban(account_id)
    if ban:
        raise PolicyBlockedError(
            "accountBanned",
            "This account is banned from the shop",
            status_code=403,
            details={
                "reason": ban.reason,
                "expires_at": ban.expires_at.isoformat() if ban.expires_at else None,
            },
        )


async def create_ban(account_id: int, reason: str, banned_by: int, expires_at: datetime | None = None) -> ShopBan:
    ban = ShopBan(account_id=account_id, reason=reason, banned_by=banned_by, expires_at=expires_at)
    await ban.insert()
    await log_event(
        banned_by,
        "create_ban",
        "shop_ban",
        str(ban.id),
        {
            "account_id": account_id,
            "reason": reason,
            "expires_at": expires_at.isoformat() if expires_at else None,
        },
    )
    log.info("shop_ban_created", account_id=account_id, banned_by=banned_by)
    return ban


async def _get(ban_id: PydanticObjectId) -> ShopBan:
    ban = await ShopBan.get(ban_id)
    if not ban:
        raise NotFoundError("Ban not found")
    return ban


async def update_ban(
    ban_id: PydanticObjectId,
    actor_id: int,
    reason: str | None = None,
    expires_at: datetime | None = None,
    clear_expiry: bool = False,
    is_active: bool | None = None,
) -> ShopBan:
    ban = await _get(ban_id)
    changes = {}
    if reason is not None:
        ban.reason = reason
        changes["reason"] = reason
    if clear_expiry:
        ban.expires_at = None
        changes["expires_at"] = None
    elif expires_at is not None:
        ban.expires_at = expires_at
        changes["expires_at"] = expires_at.isoformat()
    if is_active is not None:
        ban.is_active = is_active
        changes["is_active"] = is_active
    await ban.save()
    await log_event(actor_id, "update_ban", "shop_ban", str(ban.id), {"account_id": ban.account_id, **changes})
    return ban


async def deactivate_ban(ban_id: PydanticObjectId, actor_id: int) -> ShopBan:
    """Soft delete; the row stays for the audit trail."""
    ban = await _get(ban_id)
    ban.is_active = False
    await ban.save()
    await log_event(actor_id, "delete_ban", "shop_ban", str(ban.id), {"account_id": ban.account_id})
    log.info("shop_ban_lifted", account_id=ban.account_id, actor_id=actor_id)
    return ban


async def list_bans(
    account_id: int | None = None,
    active_only: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[ShopBan], int]:
    query = {}
    if account_id is not None:
        query["account_id"] = account_id
    if active_only:
        query["is_active"] = True
    finder = ShopBan.find(query)
    total = await finder.count()
    items = await finder.sort(-ShopBan.created_at).skip(offset).limit(limit).to_list()
    return items, total
