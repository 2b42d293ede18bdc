import uuid

import pytest

from storyverse.models.user import User


async def _user(session_factory, make_user, **kw) -> User:
    async with session_factory() as s:
        user = await make_user(s, **kw)
        await s.commit()
    return user


@pytest.mark.asyncio
async def test_admin_routes_reject_readers(client, session_factory, make_user, auth):
    reader = await _user(session_factory, make_user)
    for path in ("/api/admin/coins/summary", "/api/admin/coins/transactions", "/api/admin/coins/reconcile", "/api/admin/reward-rules"):
        r = await client.get(path, headers=auth(reader))
        assert r.status_code == 403, path
    r = await client.post("/api/admin/coins/adjust", headers=auth(reader), json={"user_id": str(reader.id), "delta": 1000})
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_adjust_and_refund_flow(client, session_factory, make_user, auth):
    admin = await _user(session_factory, make_user, is_admin=True)
    reader = await _user(session_factory, make_user)
    hdrs = auth(admin)

    r = await client.post("/api/admin/coins/adjust", headers=hdrs, json={"user_id": str(reader.id), "delta": 30, "reason": "goodwill"})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["user"]["coins"] == 30
    assert body["transaction"]["reason"] == "goodwill"
    assert body["transaction"]["meta"]["by_admin"] == str(admin.id)
    tx_id = body["transaction"]["id"]

    r = await client.post("/api/admin/coins/adjust", headers=hdrs, json={"user_id": str(reader.id), "delta": -50})
    assert r.status_code == 409
    assert r.json() == {"error": "INSUFFICIENT_BALANCE", "available": 30, "required": 50}

    r = await client.post("/api/admin/coins/refund", headers=hdrs, json={"transaction_id": tx_id})
    assert r.status_code == 200, r.text
    assert r.json()["delta"] == -30
    assert r.json()["user"]["coins"] == 0
    assert r.json()["transaction"]["refund_of_id"] == tx_id

    r = await client.post("/api/admin/coins/refund", headers=hdrs, json={"transaction_id": tx_id})
    assert r.status_code == 409
    assert r.json()["error"] == "ALREADY_REFUNDED"

    r = await client.get(f"/api/admin/coins/summary?user_id={reader.id}", headers=hdrs)
    assert r.json() == {"available": 0, "used": 0, "earned": 30}

    r = await client.get("/api/admin/coins/reconcile", headers=hdrs)
    assert r.json() == {"ok": True, "drift": []}


@pytest.mark.asyncio
async def test_adjust_validation(client, session_factory, make_user, auth):
    admin = await _user(session_factory, make_user, is_admin=True)
    hdrs = auth(admin)

    r = await client.post("/api/admin/coins/adjust", headers=hdrs, json={"user_id": str(admin.id), "delta": 0})
    assert r.status_code == 400
    assert r.json()["error"] == "INVALID_AMOUNT"

    r = await client.post("/api/admin/coins/adjust", headers=hdrs, json={"user_id": str(uuid.uuid4()), "delta": 5})
    assert r.status_code == 404
    assert r.json()["error"] == "USER_NOT_FOUND"

    r = await client.post("/api/admin/coins/refund", headers=hdrs, json={"transaction_id": str(uuid.uuid4())})
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_transaction_listing(client, session_factory, make_user, auth):
    admin = await _user(session_factory, make_user, is_admin=True)
    a = await _user(session_factory, make_user, balance=10)
    await _user(session_factory, make_user, balance=20)
    hdrs = auth(admin)

    r = await client.get("/api/admin/coins/transactions", headers=hdrs)
    assert r.status_code == 200
    assert len(r.json()["transactions"]) == 2

    r = await client.get(f"/api/admin/coins/transactions?q={a.email}", headers=hdrs)
    [tx] = r.json()["transactions"]
    assert tx["email"] == a.email and tx["coins"] == 10

    r = await client.get("/api/admin/coins/transactions?type=redeem", headers=hdrs)
    assert r.json()["transactions"] == []

    r = await client.get("/api/admin/coins/transactions?type=nope", headers=hdrs)
    assert r.status_code == 400

    r = await client.get("/api/admin/coins/transactions?limit=1", headers=hdrs)
    assert len(r.json()["transactions"]) == 1

    r = await client.get("/api/admin/coins/summary", headers=hdrs)
    assert r.json()["available"] == 30


@pytest.mark.asyncio
@pytest.mark.parametrize("delta", [True, "7", 2.5, None])
async def test_adjust_rejects_non_integer_delta(client, session_factory, make_user, auth, delta):
    admin = await _user(session_factory, make_user, is_admin=True)
    reader = await _user(session_factory, make_user, balance=5)

    r = await client.post("/api/admin/coins/adjust", headers=auth(admin), json={"user_id": str(reader.id), "delta": delta})
    assert r.status_code == 422

    r = await client.get(f"/api/admin/coins/transactions?user_id={reader.id}", headers=auth(admin))
    assert [tx["coins"] for tx in r.json()["transactions"]] == [5]
    async with session_factory() as s:
        assert (await s.get(User, reader.id)).coins == 5
