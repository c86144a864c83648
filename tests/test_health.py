import pytest

pytestmark = pytest.mark.asyncio


async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
    assert r.headers["X-Request-ID"]


async def test_packages_are_public(client):
    r = await client.get("/v1/shards/packages")
    assert r.status_code == 200
    units = {p["id"]: p["units"] for p in r.json()["packages"]}
    assert units["shards_1000"] == 1150
    assert units["shards_10000"] == 14000
