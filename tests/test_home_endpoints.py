from httpx import AsyncClient


async def test_root_index(client: AsyncClient):
    r = await client.get("/")
    assert r.status_code == 200
    assert r.json().get("message", "").lower().startswith("welcome")


async def test_info(client: AsyncClient, container):
    r = await client.get("/info")
    assert r.status_code == 200
    assert r.json() == {"app": container.settings.APP_NAME, "version": container.settings.APP_VERSION}


async def test_health(client: AsyncClient):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


async def test_readiness_pings_database(client: AsyncClient):
    r = await client.get("/health/ready")
    assert r.status_code == 200
    assert r.json() == {"status": "ready"}


async def test_docs_served(client: AsyncClient):
    assert (await client.get("/docs")).status_code == 200
    assert (await client.get("/openapi.json")).status_code == 200
