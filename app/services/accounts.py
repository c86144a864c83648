"""Game accounts in the realm auth database: register, login, change password."""

import re
from dataclasses import dataclass

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError

from app.core import srp6
from app.core.audit import log_event
from app.core.config import get_settings
from app.core.exceptions import BadRequestError, ConflictError, UnauthorizedError
from app.core.logging import get_logger
from app.db.realm import account_table, get_engine

log = get_logger(__name__)

USERNAME_RE = re.compile(r"^[A-Za-z0-9]{3,16}$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PASSWORD_MIN, PASSWORD_MAX = 6, 16

# Salt for the throwaway derivation on unknown usernames, so both login
# failures cost one verifier computation.
_DUMMY_SALT = bytes(srp6.SALT_LENGTH)


@dataclass
class Account:
    id: int
    username: str
    email: str
    salt: bytes
    verifier: bytes


def _to_account(row) -> Account:
    return Account(
        id=row["id"],
        username=row["username"],
        email=row["email"] or "",
        salt=bytes(row["salt"]),
        verifier=bytes(row["verifier"]),
    )


def validate_registration(username: str, email: str, password: str) -> None:
    if not username or not email or not password:
        raise BadRequestError("Username, email and password are required", code="missingFields")
    if not USERNAME_RE.match(username):
        raise BadRequestError("Username must be 3-16 letters or digits", code="invalidUsername")
    if not EMAIL_RE.match(email):
        raise BadRequestError("Invalid email address", code="invalidEmail")
    validate_password(password)


def validate_password(password: str) -> None:
    if not PASSWORD_MIN <= len(password) <= PASSWORD_MAX:
        raise BadRequestError(
            f"Password must be {PASSWORD_MIN}-{PASSWORD_MAX} characters",
            code="invalidPassword",
        )


async def find_account_by_username(username: str) -> Account | None:
    stmt = select(account_table).where(account_table.c.username == username.upper())
    async with get_engine("auth").connect() as conn:
        row = (await conn.execute(stmt)).mappings().first()
    return _to_account(row) if row else None


async def get_account(account_id: int) -> Account | None:
    async with get_engine("auth").connect() as conn:
        row = (
            await conn.execute(select(account_table).where(account_table.c.id == account_id))
        ).mappings().first()
    return _to_account(row) if row else None


async def register(username: str, email: str, password: str) -> Account:
    """Create a game account with a fresh salt and verifier."""
    validate_registration(username, email, password)
    username = username.upper()
    if await find_account_by_username(username):
        raise ConflictError("Username is already taken", code="usernameTaken")

    salt = srp6.generate_salt()
    verifier = srp6.derive_verifier(username, password, salt)
    stmt = insert(account_table).values(
        username=username,
        salt=salt,
        verifier=verifier,
        email=email,
        reg_mail=email,
        expansion=get_settings().realm_expansion,
    )
    try:
        async with get_engine("auth").begin() as conn:
            result = await conn.execute(stmt)
    except IntegrityError as e:
        # Lost a race with a concurrent registration of the same name.
        raise ConflictError("Username is already taken", code="usernameTaken") from e
    account = Account(id=result.inserted_primary_key[0], username=username, email=email, salt=salt, verifier=verifier)
    log.info("account_registered", account_id=account.id, username=username)
    await log_event(account.id, "account_registered", "account", account.id, {"username": username})
    return account


async def authenticate(username: str, password: str) -> Account:
    """Check a login. Unknown accounts and wrong passwords fail identically."""
    account = await find_account_by_username(username) if username else None
    if account is None:
        srp6.derive_verifier(username or "", password or "", _DUMMY_SALT)
        log.info("login_failed", reason="unknown_account")
        raise UnauthorizedError("Invalid username or password", code="invalidCredentials")
    if not srp6.verify_login(account.username, password or "", account.salt, account.verifier):
        log.info("login_failed", reason="bad_password", account_id=account.id)
        raise UnauthorizedError("Invalid username or password", code="invalidCredentials")
    log.info("login_succeeded", account_id=account.id)
    return account


async def change_password(account_id: int, current_password: str, new_password: str) -> None:
    """Replace the verifier after re-checking the current password. Salt is rotated too."""
    validate_password(new_password)
    account = await get_account(account_id)
    if account is None:
        raise UnauthorizedError("Account not found")
    if not srp6.verify_login(account.username, current_password, account.salt, account.verifier):
        raise BadRequestError("Current password is incorrect", code="invalidCurrentPassword")

    salt = srp6.generate_salt()
    verifier = srp6.derive_verifier(account.username, new_password, salt)
    async with get_engine("auth").begin() as conn:
        await conn.execute(
            update(account_table).where(account_table.c.id == account_id).values(salt=salt, verifier=verifier)
        )
    log.info("password_changed", account_id=account_id)
    await log_event(account_id, "password_changed", "account", account_id)
