import pytest

from app.core import srp6
from app.core.exceptions import BadRequestError, ConflictError, UnauthorizedError
from app.models.audit_log import AuditLog
from app.services import accounts

pytestmark = [pytest.mark.asyncio, pytest.mark.usefixtures("db", "realm")]


async def test_register_stores_uppercase_name_and_verifier():
    account = await accounts.register("Thrall", "thrall@example.com", "Lok1Tar")
    stored = await accounts.find_account_by_username("thrall")
    assert stored.id == account.id
    assert stored.username == "THRALL"
    assert len(stored.salt) == 32
    assert stored.verifier == srp6.derive_verifier("THRALL", "LOK1TAR", stored.salt)
    assert await AuditLog.find_one(AuditLog.action == "account_registered") is not None


@pytest.mark.parametrize(
    "username,email,password,code",
    [
        ("", "a@b.co", "secret1", "missingFields"),
        ("ab", "a@b.co", "secret1", "invalidUsername"),
        ("bad name", "a@b.co", "secret1", "invalidUsername"),
        ("valid", "not-an-email", "secret1", "invalidEmail"),
        ("valid", "a@b.co", "short", "invalidPassword"),
        ("valid", "a@b.co", "x" * 17, "invalidPassword"),
    ],
)
async def test_register_validation(username, email, password, code):
    with pytest.raises(BadRequestError) as exc:
        await accounts.register(username, email, password)
    assert exc.value.code == code


async def test_username_taken():
    await accounts.register("jaina", "j@example.com", "secret1")
    with pytest.raises(ConflictError) as exc:
        await accounts.register("JAINA", "j2@example.com", "secret2")
    assert exc.value.code == "usernameTaken"


async def test_login_failures_are_indistinguishable():
    await accounts.register("sylvanas", "s@example.com", "secret1")
    with pytest.raises(UnauthorizedError) as wrong_password:
        await accounts.authenticate("sylvanas", "secret2")
    with pytest.raises(UnauthorizedError) as unknown:
        await accounts.authenticate("nobody", "secret1")
    assert wrong_password.value.code == unknown.value.code == "invalidCredentials"
    assert wrong_password.value.message == unknown.value.message


async def test_login_is_case_insensitive():
    account = await accounts.register("uther", "u@example.com", "Light1")
    assert (await accounts.authenticate("UTHER", "LIGHT1")).id == account.id


async def test_change_password_rotates_salt():
    account = await accounts.register("varian", "v@example.com", "secret1")
    before = await accounts.get_account(account.id)
    with pytest.raises(BadRequestError) as exc:
        await accounts.change_password(account.id, "wrong1", "newpass1")
    assert exc.value.code == "invalidCurrentPassword"

    await accounts.change_password(account.id, "secret1", "newpass1")

    after = await accounts.get_account(account.id)
    assert after.salt != before.salt
    await accounts.authenticate("varian", "newpass1")
    with pytest.raises(UnauthorizedError):
        await accounts.authenticate("varian", "secret1")


async def test_login_endpoint_sets_session(client):
    await accounts.register("anduin", "a@example.com", "secret1")
    r = await client.post("/v1/auth/login", json={"username": "anduin", "password": "secret1"})
    assert r.status_code == 200
    assert r.json()["account"]["username"] == "ANDUIN"
    me = await client.get("/v1/auth/me")
    assert me.status_code == 200
    assert me.json()["username"] == "ANDUIN"

    bad = await client.post("/v1/auth/login", json={"username": "anduin", "password": "nope123"})
    assert bad.status_code == 401
    assert bad.json()["error"]["code"] == "invalidCredentials"


async def test_me_requires_session(client):
    r = await client.get("/v1/auth/me")
    assert r.status_code == 401
