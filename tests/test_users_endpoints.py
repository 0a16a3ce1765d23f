from httpx import AsyncClient


async def test_create_user_with_starting_coins(client: AsyncClient):
    r = await client.post("/users", json={"email": "Alice@Example.com", "name": "alice", "coins": 250})
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["email"] == "alice@example.com"
    assert body["coins"] == 250

    r = await client.get(f"/users/{body['id']}/balance")
    assert r.status_code == 200
    assert r.json() == {"user_id": body["id"], "balance": 250}


async def test_duplicate_email_is_conflict(client: AsyncClient):
    payload = {"email": "bob@example.com", "name": "bob"}
    assert (await client.post("/users", json=payload)).status_code == 201

    r = await client.post("/users", json=payload)
    assert r.status_code == 409
    assert r.json()["error"] == "conflict"


async def test_invalid_email_is_rejected(client: AsyncClient):
    r = await client.post("/users", json={"email": "not-an-email"})
    assert r.status_code == 422
    assert r.json()["error"] == "validation_error"


async def test_topup_and_transactions(client: AsyncClient):
    uid = (await client.post("/users", json={"email": "carol@example.com"})).json()["id"]

    r = await client.post(f"/users/{uid}/topup", json={"amount": 40})
    assert r.status_code == 200
    assert r.json()["balance"] == 40

    r = await client.get(f"/users/{uid}/transactions")
    assert r.status_code == 200
    items = r.json()
    assert [(i["amount"], i["kind"], i["meta"]) for i in items] == [(40, "topup", "admin")]


async def test_topup_must_be_positive(client: AsyncClient):
    uid = (await client.post("/users", json={"email": "dave@example.com"})).json()["id"]
    r = await client.post(f"/users/{uid}/topup", json={"amount": 0})
    assert r.status_code == 422


async def test_unknown_user_is_404(client: AsyncClient):
    r = await client.get("/users/missing/balance")
    assert r.status_code == 404
    assert r.json()["error"] == "not_found"

    assert (await client.get("/users/missing/transactions")).status_code == 404
    assert (await client.post("/users/missing/topup", json={"amount": 5})).status_code == 404


async def test_list_users_includes_seeded_admin(client: AsyncClient, container):
    r = await client.get("/users")
    assert r.status_code == 200
    admin = next(u for u in r.json() if u["email"] == container.settings.ADMIN_EMAIL)
    assert admin["is_admin"] is True
    assert admin["coins"] == container.settings.ADMIN_COINS

    assert (await client.get("/users", params={"limit": 0})).status_code == 422
