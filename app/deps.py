"""Shared FastAPI dependencies."""

from dataclasses import dataclass

from fastapi import Header, Request

from app.core.exceptions import ForbiddenError, UnauthorizedError
from app.core.logging import bind_account_id
from app.core.security import load_session_cookie, verify_cron_authorization
from app.models.shop_admin import ShopAdmin

SESSION_COOKIE_NAME = "realm_session"


@dataclass
class AccountSession:
    account_id: int
    username: str


async def get_current_account(request: Request) -> AccountSession:
    """Dependency: the game account signed into the session cookie."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        raise UnauthorizedError("Not authenticated")
    payload = load_session_cookie(cookie)
    if not payload:
        raise UnauthorizedError("Invalid or expired session")
    account_id = payload.get("account_id")
    if not isinstance(account_id, int):
        raise UnauthorizedError("Invalid session")
    bind_account_id(account_id)
    return AccountSession(account_id=account_id, username=payload.get("username", ""))


async def require_admin(request: Request) -> ShopAdmin:
    """Dependency: require the current account to be a shop operator."""
    account = await get_current_account(request)
    admin = await ShopAdmin.find_one(ShopAdmin.account_id == account.account_id)
    if not admin:
        raise ForbiddenError("Admin only")
    return admin


async def require_cron(authorization: str | None = Header(None)) -> None:
    """Dependency: `Authorization: Bearer <CRON_SECRET>` from the scheduler."""
    if not verify_cron_authorization(authorization):
        raise UnauthorizedError("Invalid cron credentials")
