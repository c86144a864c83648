from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from app.core.security import SESSION_MAX_AGE, create_session_cookie
from app.deps import SESSION_COOKIE_NAME, AccountSession, get_current_account
from app.models.shop_admin import ShopAdmin
from app.services import accounts as account_service

router = APIRouter()


class RegisterRequest(BaseModel):
    username: str
    email: str
    password: str


class LoginRequest(BaseModel):
    username: str
    password: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


def _set_session(response: Response, account: account_service.Account) -> None:
    session_value = create_session_cookie({"account_id": account.id, "username": account.username})
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=session_value,
        max_age=SESSION_MAX_AGE,
        httponly=True,
        secure=False,  # set True in prod with HTTPS
        samesite="lax",
        path="/",
    )


@router.post("/register")
async def auth_register(body: RegisterRequest, response: Response):
    """Create a game account and sign it in."""
    account = await account_service.register(body.username, body.email, body.password)
    _set_session(response, account)
    return {"account": {"id": account.id, "username": account.username}}


@router.post("/login")
async def auth_login(body: LoginRequest, response: Response):
    account = await account_service.authenticate(body.username, body.password)
    _set_session(response, account)
    return {"account": {"id": account.id, "username": account.username}}


@router.post("/logout")
async def auth_logout(response: Response):
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return {"status": "ok"}


@router.get("/me")
async def auth_me(account: AccountSession = Depends(get_current_account)):
    """Return the signed-in account. Requires session cookie."""
    admin = await ShopAdmin.find_one(ShopAdmin.account_id == account.account_id)
    return {
        "id": account.account_id,
        "username": account.username,
        "role": admin.role if admin else None,
    }


@router.post("/change-password")
async def auth_change_password(
    body: ChangePasswordRequest,
    account: AccountSession = Depends(get_current_account),
):
    await account_service.change_password(account.account_id, body.current_password, body.new_password)
    return {"status": "ok"}
